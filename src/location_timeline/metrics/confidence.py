"""
Segment confidence scoring.

Confidence combines three parts:
- sample density: location fixes per hour against the expected rate
- classification certainty from the movement classifier
- corroboration from screen-usage and health samples overlapping the window

Corroborating evidence raises confidence, conflicting evidence lowers it.
The result is clamped to [0, 1].
"""

import logging
from datetime import datetime

from ..constants import ConfidenceWeights, TimeConstants
from ..models import (
    HealthKind,
    MovementClass,
    MovementClassification,
    RawSample,
    SampleSource,
    SegmentEvidence,
)
from ..settings import Settings

logger = logging.getLogger(__name__)


def overlap_seconds(
    sample: RawSample, start: datetime, end: datetime
) -> float:
    """Seconds of a sample's interval inside [start, end]."""
    latest_start = max(sample.timestamp, start)
    earliest_end = min(sample.interval_end, end)
    return max(0.0, (earliest_end - latest_start).total_seconds())


def touches(sample: RawSample, start: datetime, end: datetime) -> bool:
    """Whether a sample falls inside or overlaps [start, end]."""
    return sample.timestamp <= end and sample.interval_end >= start


class ConfidenceScorer:
    """Scores a classified window and assembles its evidence bundle."""

    def __init__(self, settings: Settings):
        """
        Initialize the scorer.

        Args:
            settings: Application settings
        """
        self.settings = settings

    def score(
        self,
        classification: MovementClassification,
        start: datetime,
        end: datetime,
        context: list[RawSample],
    ) -> tuple[float, SegmentEvidence]:
        """
        Score one window.

        Args:
            classification: Movement classification of the window
            start: Window start
            end: Window end
            context: Screen-usage and health samples of the day

        Returns:
            Tuple of (confidence, evidence bundle)
        """
        duration = max((end - start).total_seconds(), 1.0)
        hours = duration / TimeConstants.SECONDS_PER_HOUR

        expected = max(hours * ConfidenceWeights.EXPECTED_SAMPLES_PER_HOUR, 1.0)
        density = min(1.0, classification.sample_count / expected)

        screen = [
            s
            for s in context
            if s.source is SampleSource.SCREEN_USAGE and touches(s, start, end)
        ]
        health = [
            s for s in context if s.source is SampleSource.HEALTH and touches(s, start, end)
        ]
        screen_seconds = sum(overlap_seconds(s, start, end) for s in screen)
        health_kinds = sorted({s.health_kind.value for s in health if s.health_kind})
        steps = self._steps_in_window(health, start, end)

        adjustments = self._corroboration(
            classification.movement, screen_seconds, health_kinds, steps / hours
        )

        confidence = (
            ConfidenceWeights.BASE_SCORE
            + ConfidenceWeights.DENSITY_WEIGHT * density
            + ConfidenceWeights.CERTAINTY_WEIGHT * classification.certainty
            + sum(adjustments.values())
        )
        confidence = round(min(1.0, max(0.0, confidence)), 4)

        evidence = SegmentEvidence(
            location_samples=classification.sample_count,
            screen_samples=len(screen),
            screen_seconds=screen_seconds,
            health_kinds=health_kinds,
            steps=steps,
            average_speed_mps=classification.average_speed_mps,
            displacement_m=classification.displacement_m,
            net_displacement_m=classification.net_displacement_m,
            path_length_m=classification.path_length_m,
            certainty=classification.certainty,
            adjustments=adjustments,
        )
        return confidence, evidence

    def _steps_in_window(
        self, health: list[RawSample], start: datetime, end: datetime
    ) -> float:
        """Step count inside the window, prorating interval samples."""
        steps = 0.0
        for sample in health:
            if sample.health_kind is not HealthKind.STEPS or sample.value is None:
                continue
            span = (sample.interval_end - sample.timestamp).total_seconds()
            if span <= 0:
                steps += sample.value
            else:
                steps += sample.value * overlap_seconds(sample, start, end) / span
        return steps

    def _corroboration(
        self,
        movement: MovementClass,
        screen_seconds: float,
        health_kinds: list[str],
        steps_per_hour: float,
    ) -> dict[str, float]:
        """Confidence adjustments from corroborating or conflicting evidence."""
        adjustments: dict[str, float] = {}
        stationary = movement is MovementClass.STATIONARY

        if stationary and screen_seconds > 0:
            adjustments["screen_usage"] = ConfidenceWeights.SCREEN_STATIONARY_BOOST
        if HealthKind.SLEEP.value in health_kinds:
            adjustments["sleep"] = (
                ConfidenceWeights.SLEEP_STATIONARY_BOOST
                if stationary
                else ConfidenceWeights.SLEEP_TRAVELING_PENALTY
            )
        if not stationary and HealthKind.WORKOUT.value in health_kinds:
            adjustments["workout"] = ConfidenceWeights.WORKOUT_TRAVELING_BOOST
        if stationary and steps_per_hour > ConfidenceWeights.HIGH_STEPS_PER_HOUR:
            adjustments["steps"] = ConfidenceWeights.STEPS_STATIONARY_PENALTY

        if adjustments:
            logger.debug(f"Corroboration adjustments for {movement.value}: {adjustments}")
        return adjustments
