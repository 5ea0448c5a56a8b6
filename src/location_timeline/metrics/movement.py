"""
Movement classification of sample windows.

A window is traveling only when BOTH its average speed reaches the speed floor
AND its displacement reaches the distance floor. Either condition alone is
what GPS jitter at a single place produces, so it never suffices. Average
speeds below the "definitely still" threshold force stationary regardless of
displacement.
"""

import logging

import numpy as np
import pandas as pd

from ..models import MovementClass, MovementClassification, RawSample
from .base import BaseWindowCalculator, samples_to_frame
from .geo import haversine_array, hop_distances

logger = logging.getLogger(__name__)


class MovementClassifier(BaseWindowCalculator):
    """Labels windows stationary, traveling or insufficient-evidence."""

    def classify(self, samples: list[RawSample]) -> MovementClassification:
        """Classify a window given as RawSample objects."""
        return self.calculate(samples_to_frame(samples))

    def calculate(self, window_df: pd.DataFrame) -> MovementClassification:
        """
        Classify one window of location fixes.

        Args:
            window_df: DataFrame of fixes in time order

        Returns:
            MovementClassification with the label and the evidence behind it
        """
        cfg = self.settings.movement
        usable = self._filter_accurate(window_df)
        duration = self._get_total_duration(usable)

        if len(usable) < cfg.min_samples:
            logger.debug(
                f"Window has {len(usable)} usable fixes (< {cfg.min_samples}), "
                "marking insufficient-evidence"
            )
            return MovementClassification(
                movement=MovementClass.INSUFFICIENT_EVIDENCE,
                certainty=0.0,
                sample_count=len(usable),
                duration_s=duration,
            )

        path_length = self._path_length(usable)
        average_speed = self._average_speed(usable, path_length, duration)
        displacement, net_displacement = self._displacement(usable)

        movement, certainty = self._decide(average_speed, displacement)

        return MovementClassification(
            movement=movement,
            certainty=certainty,
            sample_count=len(usable),
            average_speed_mps=average_speed,
            displacement_m=displacement,
            net_displacement_m=net_displacement,
            path_length_m=path_length,
            duration_s=duration,
        )

    def _filter_accurate(self, window_df: pd.DataFrame) -> pd.DataFrame:
        """Drop fixes whose reported accuracy is worse than the limit."""
        if window_df.empty:
            return window_df
        accuracy = window_df["accuracy_m"]
        keep = accuracy.isna() | (accuracy <= self.settings.movement.max_accuracy_m)
        return window_df[keep].reset_index(drop=True)

    def _path_length(self, window_df: pd.DataFrame) -> float:
        """Path length with hops below the drift threshold counted as zero."""
        hops = hop_distances(window_df)
        hops = np.where(hops < self.settings.movement.drift_hop_m, 0.0, hops)
        return float(hops.sum())

    def _average_speed(
        self, window_df: pd.DataFrame, path_length: float, duration: float
    ) -> float:
        """
        Average speed of the window in m/s.

        Uses the time-weighted mean of reported speeds when enough fixes carry
        one, otherwise drift-suppressed path length over duration.
        """
        speeds = window_df["speed_mps"].dropna()
        if len(speeds) >= len(window_df) * 0.5 and not speeds.empty:
            return self._time_weighted_mean(speeds, window_df)
        if duration <= 0:
            return 0.0
        return path_length / duration

    def _displacement(self, window_df: pd.DataFrame) -> tuple[float, float]:
        """Largest excursion from the first fix, and first-to-last distance."""
        lats = window_df["latitude"].to_numpy(dtype=float)
        lons = window_df["longitude"].to_numpy(dtype=float)
        excursions = haversine_array(lats, lons, lats[0], lons[0])
        return float(excursions.max()), float(excursions[-1])

    def _decide(self, average_speed: float, displacement: float) -> tuple[MovementClass, float]:
        """Apply the speed AND distance rule with the still override."""
        cfg = self.settings.movement

        if average_speed < cfg.still_speed_mps:
            certainty = 0.75 + 0.25 * (1.0 - average_speed / cfg.still_speed_mps)
            return MovementClass.STATIONARY, min(1.0, certainty)

        speed_margin = (average_speed - cfg.speed_floor_mps) / cfg.speed_floor_mps
        distance_margin = (displacement - cfg.distance_floor_m) / cfg.distance_floor_m

        if speed_margin >= 0 and distance_margin >= 0:
            margin = min(speed_margin, distance_margin)
            return MovementClass.TRAVELING, 0.5 + 0.5 * min(1.0, margin)

        # Stationary: certainty grows with how far the failing condition missed
        misses = [-m for m in (speed_margin, distance_margin) if m < 0]
        return MovementClass.STATIONARY, 0.5 + 0.5 * min(1.0, max(misses))
