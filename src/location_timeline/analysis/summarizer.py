"""
Hourly summaries.

This module condenses a day's blocks and raw samples into one summary per
local hour: which block kind dominated the hour, where, and how much
evidence there was.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Protocol

from ..constants import TimeConstants
from ..metrics.confidence import overlap_seconds
from ..models import BlockKind, HourlySummary, LocationBlock, RawSample, SampleSource
from ..settings import Settings

logger = logging.getLogger(__name__)


class SummarizerProtocol(Protocol):
    """Protocol for summarizers."""

    def summarize(
        self,
        user_id: str,
        day: date,
        blocks: list[LocationBlock],
        samples: list[RawSample],
    ) -> list[HourlySummary]:
        """Create hourly summaries for a day."""
        ...


class HourlySummarizer:
    """
    Service for creating hourly summaries of a day.

    Summaries are derived data: they are regenerated on every reprocess and
    never read back as input.
    """

    def __init__(self, settings: Settings):
        """
        Initialize the summarizer service.

        Args:
            settings: Application settings
        """
        self.settings = settings
        self.logger = logging.getLogger(__name__)

    def summarize(
        self,
        user_id: str,
        day: date,
        blocks: list[LocationBlock],
        samples: list[RawSample],
    ) -> list[HourlySummary]:
        """
        Summarize every local hour of a day.

        Args:
            user_id: Owning user
            day: Local day
            blocks: The day's blocks
            samples: Raw samples touching the day

        Returns:
            One summary per local hour, in order
        """
        tz = self.settings.tz
        summaries = []
        for hour in range(TimeConstants.HOURS_PER_DAY):
            start = datetime.combine(day, time(hour=hour), tzinfo=tz)
            end = start + timedelta(hours=1)
            summaries.append(self._summarize_hour(user_id, day, hour, start, end, blocks, samples))

        self.logger.debug(f"Summarized {len(summaries)} hours for {user_id} on {day}")
        return summaries

    def _summarize_hour(
        self,
        user_id: str,
        day: date,
        hour: int,
        start: datetime,
        end: datetime,
        blocks: list[LocationBlock],
        samples: list[RawSample],
    ) -> HourlySummary:
        dominant = None
        best = 0.0
        for block in blocks:
            overlap = block.overlap_seconds(start, end)
            if overlap > best:
                dominant, best = block, overlap

        fixes = sum(
            1
            for s in samples
            if s.source is SampleSource.BACKGROUND_LOCATION and start <= s.timestamp < end
        )
        screen_seconds = sum(
            overlap_seconds(s, start, end)
            for s in samples
            if s.source is SampleSource.SCREEN_USAGE
        )

        kind = dominant.kind if dominant is not None else BlockKind.UNKNOWN
        label = dominant.label if dominant is not None else None
        category = dominant.category if dominant is not None else None

        return HourlySummary(
            user_id=user_id,
            day=day,
            hour=hour,
            dominant_kind=kind,
            label=label,
            category=category,
            location_samples=fixes,
            screen_minutes=round(screen_seconds / TimeConstants.SECONDS_PER_MINUTE, 2),
            summary=self._describe(kind, label, category, fixes),
        )

    @staticmethod
    def _describe(
        kind: BlockKind, label: str | None, category: str | None, fixes: int
    ) -> str:
        """Short text for an hour."""
        place = label or category
        if kind is BlockKind.TRAVEL:
            text = "Travelling"
        elif kind is BlockKind.SLEEP_CANDIDATE:
            text = f"Probably asleep at {place}" if label else "Probably asleep"
        elif kind is BlockKind.GAP_FILLED:
            text = f"Likely still at {place}" if place else "Likely at the previous place"
        elif kind is BlockKind.STATIONARY:
            text = f"At {place}" if place else "At an unnamed place"
        else:
            return "No location data" if fixes == 0 else "Location uncertain"
        return f"{text} ({fixes} fixes)"
