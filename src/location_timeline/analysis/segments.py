"""
Segment construction.

This module turns a day's raw samples into immutable ActivitySegments:
1. Split location fixes into candidate windows
2. Classify every window
3. Fold stays shorter than the minimum dwell into adjacent travel
4. Resolve anchors for the remaining stationary windows
5. Score confidence and freeze each window into a segment

Windows without enough evidence produce no segment; their time stays a gap.
"""

import logging
from dataclasses import dataclass, field
from datetime import date

from ..data.windows import ClassifiedWindow, WindowSplitter, local_day_bounds
from ..metrics.confidence import ConfidenceScorer
from ..metrics.geo import centroid, encode_geohash
from ..metrics.movement import MovementClassifier
from ..models import ActivitySegment, Anchor, MovementClass, RawSample, SampleSource
from ..settings import Settings
from .anchors import AnchorIndex, AnchorResolver, fold_short_stays

logger = logging.getLogger(__name__)


@dataclass
class DayBuild:
    """Segments rebuilt for one day and what it took."""

    segments: list[ActivitySegment] = field(default_factory=list)
    places_looked_up: int = 0
    anchors_matched: int = 0
    windows_skipped: int = 0
    errors: list[str] = field(default_factory=list)


class SegmentBuilder:
    """
    Builds activity segments from classified windows.

    Coordinates the splitter, classifier, anchor resolver and confidence
    scorer; it does not persist anything.
    """

    def __init__(self, settings: Settings, resolver: AnchorResolver):
        """
        Initialize the builder.

        Args:
            settings: Application settings
            resolver: Anchor resolver (carries the place lookup)
        """
        self.settings = settings
        self.resolver = resolver
        self.splitter = WindowSplitter(settings)
        self.classifier = MovementClassifier(settings)
        self.scorer = ConfidenceScorer(settings)
        self.logger = logging.getLogger(__name__)

    def classify_windows(self, samples: list[RawSample]) -> list[ClassifiedWindow]:
        """Split, classify and fold short stays."""
        windows = self.splitter.split(samples)
        classified = [
            ClassifiedWindow(window=w, classification=self.classifier.classify(w.samples))
            for w in windows
        ]
        return fold_short_stays(
            classified,
            min_dwell_s=self.settings.windows.min_dwell_s,
            max_gap_s=self.settings.windows.max_sample_gap_s,
        )

    async def build_day(
        self,
        user_id: str,
        day: date,
        samples: list[RawSample],
        index: AnchorIndex,
    ) -> DayBuild:
        """
        Rebuild all segments of one local day.

        Args:
            user_id: Owning user
            day: Local day
            samples: All samples touching the day, any source
            index: The user's anchor index; the caller holds the user's lock

        Returns:
            DayBuild with the segments in time order
        """
        day_start, day_end = local_day_bounds(day, self.settings.tz)
        location = [
            s
            for s in samples
            if s.source is SampleSource.BACKGROUND_LOCATION
            and day_start <= s.timestamp < day_end
        ]
        context = [s for s in samples if s.source is not SampleSource.BACKGROUND_LOCATION]

        build = DayBuild()
        for cw in self.classify_windows(location):
            movement = cw.classification.movement
            if movement is MovementClass.INSUFFICIENT_EVIDENCE or cw.end <= cw.start:
                build.windows_skipped += 1
                continue

            anchor = None
            if (
                movement is MovementClass.STATIONARY
                and cw.duration_seconds >= self.settings.windows.min_dwell_s
            ):
                resolution = await self.resolver.resolve(index, cw)
                anchor = resolution.anchor
                build.anchors_matched += int(resolution.matched)
                build.places_looked_up += int(resolution.looked_up)
                if resolution.error:
                    build.errors.append(resolution.error)

            build.segments.append(self.build(user_id, cw, anchor, context))

        self.logger.info(
            f"Built {len(build.segments)} segments for {user_id} on {day} "
            f"({build.windows_skipped} windows skipped, "
            f"{build.places_looked_up} lookups)"
        )
        return build

    def build(
        self,
        user_id: str,
        window: ClassifiedWindow,
        anchor: Anchor | None,
        context: list[RawSample],
    ) -> ActivitySegment:
        """
        Freeze one classified window into a segment.

        Args:
            user_id: Owning user
            window: A stationary or traveling window
            anchor: Resolved anchor for stationary windows
            context: Screen-usage and health samples for corroboration

        Returns:
            The immutable segment
        """
        samples = window.window.samples
        first, last = samples[0], samples[-1]
        lat, lng = centroid(
            [s.latitude for s in samples], [s.longitude for s in samples]
        )
        confidence, evidence = self.scorer.score(
            window.classification, first.timestamp, last.timestamp, context
        )
        movement = window.classification.movement

        return ActivitySegment(
            id=ActivitySegment.make_id(user_id, first.timestamp, last.timestamp, movement),
            user_id=user_id,
            start=first.timestamp,
            end=last.timestamp,
            movement=movement,
            anchor_id=anchor.id if anchor is not None else None,
            latitude=lat,
            longitude=lng,
            start_latitude=first.latitude,
            start_longitude=first.longitude,
            end_latitude=last.latitude,
            end_longitude=last.longitude,
            geohash=encode_geohash(lat, lng),
            confidence=confidence,
            evidence=evidence,
        )
