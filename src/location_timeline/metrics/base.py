"""
Base helpers for window-level calculators.

Defines the interface that window calculators follow and the shared time
handling they use.
"""

from abc import ABC, abstractmethod
from typing import Any, Protocol

import pandas as pd

from ..settings import Settings

WINDOW_COLUMNS = [
    "timestamp",
    "latitude",
    "longitude",
    "accuracy_m",
    "speed_mps",
]


class WindowCalculatorProtocol(Protocol):
    """Protocol defining the interface for window calculators."""

    def calculate(self, window_df: pd.DataFrame) -> Any:
        """
        Calculate a result from one window of location fixes.

        Args:
            window_df: DataFrame of fixes with WINDOW_COLUMNS, in time order

        Returns:
            Calculator-specific result
        """
        ...


class BaseWindowCalculator(ABC):
    """
    Abstract base class for window calculators.

    Provides common functionality and enforces interface consistency.
    """

    def __init__(self, settings: Settings):
        """
        Initialize calculator with settings.

        Args:
            settings: Application settings containing thresholds and configuration
        """
        self.settings = settings

    @abstractmethod
    def calculate(self, window_df: pd.DataFrame) -> Any:
        """Calculate a result from one window of location fixes."""
        raise NotImplementedError("Subclasses must implement calculate()")

    def _calculate_time_deltas(self, window_df: pd.DataFrame) -> pd.Series:
        """
        Seconds between consecutive fixes.

        The first fix gets the second fix's delta so every fix carries a
        weight; a single fix gets a weight of one second.
        """
        if len(window_df) == 0:
            return pd.Series(dtype=float)

        time_diffs = window_df["timestamp"].diff().dt.total_seconds()
        time_diffs.iloc[0] = time_diffs.iloc[1] if len(time_diffs) > 1 else 1.0

        # Duplicate timestamps still count
        return time_diffs.clip(lower=1.0)

    def _time_weighted_mean(self, values: pd.Series, window_df: pd.DataFrame) -> float:
        """
        Calculate time-weighted mean of a series.

        Args:
            values: Series of values to average (index aligned with window_df)
            window_df: DataFrame containing 'timestamp' column for weighting

        Returns:
            Time-weighted mean
        """
        if values.empty:
            return 0.0

        time_deltas = self._calculate_time_deltas(window_df).loc[values.index]

        # Σ(value × Δt) / Σ(Δt)
        weighted_sum = (values * time_deltas).sum()
        total_time = time_deltas.sum()

        return float(weighted_sum / total_time) if total_time > 0 else 0.0

    def _get_total_duration(self, window_df: pd.DataFrame) -> float:
        """Seconds between the first and last fix."""
        if len(window_df) < 2:
            return 0.0
        return float(
            (window_df["timestamp"].iloc[-1] - window_df["timestamp"].iloc[0]).total_seconds()
        )


def samples_to_frame(samples) -> pd.DataFrame:
    """
    Build a window DataFrame from RawSample objects.

    Only samples with coordinates are kept; rows are sorted by time.
    """
    rows = [
        {
            "timestamp": s.timestamp,
            "latitude": s.latitude,
            "longitude": s.longitude,
            "accuracy_m": s.accuracy_m,
            "speed_mps": s.speed_mps,
        }
        for s in samples
        if s.has_position
    ]
    if not rows:
        return pd.DataFrame(columns=WINDOW_COLUMNS)
    frame = pd.DataFrame(rows, columns=WINDOW_COLUMNS)
    frame["timestamp"] = pd.to_datetime(frame["timestamp"], utc=True)
    frame = frame.astype({"accuracy_m": float, "speed_mps": float})
    return frame.sort_values("timestamp", kind="stable").reset_index(drop=True)
