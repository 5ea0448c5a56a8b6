"""
High-level service for timeline processing.

This service coordinates ingestion, upload, segment rebuilding, block
grouping, verification and pattern mining for any number of users. Each
user's anchor and pattern indexes live in an explicit state object; updates
to them are serialized by the user's lock.
"""

import logging
from collections.abc import Iterable
from datetime import date, timedelta
from typing import Any, Protocol

from ..analysis.anchors import AnchorIndex, AnchorResolver
from ..analysis.blocks import BlockGrouper
from ..analysis.patterns import PatternIndex, anomalies_for_day, predictions_for_day
from ..analysis.segments import SegmentBuilder
from ..analysis.summarizer import HourlySummarizer
from ..analysis.verification import VerificationEngine
from ..data.ingestion import SampleIngestor
from ..data.place_lookup import NominatimPlaceLookup, PlaceLookup
from ..data.repository import TimelineRepository
from ..data.store import SampleStore
from ..data.windows import local_day_bounds
from ..exceptions import LocationTimelineError, ProcessingError, ValidationError
from ..models import (
    ActivitySegment,
    Anchor,
    AnomalyReport,
    IngestResult,
    LocationBlock,
    PatternPrediction,
    ReprocessResult,
    UploadResult,
    VerificationResult,
)
from ..settings import Settings
from .calendar import CalendarSource, FileCalendarSource, fetch_with_timeout
from .state import UserState, UserStateRegistry
from .uploader import HttpSampleSink, RepositorySampleSink, SampleSink, SampleUploader

logger = logging.getLogger(__name__)


class TimelineServiceProtocol(Protocol):
    """Protocol for timeline services."""

    async def reprocess_day(self, user_id: str, day: date) -> ReprocessResult:
        """Rebuild a day's segments."""
        ...

    async def get_blocks(self, user_id: str, day: date) -> list[LocationBlock]:
        """Get a day's location blocks."""
        ...


class TimelineService:
    """
    High-level service for timeline operations.

    Segments are the only persisted ground truth besides samples and anchors;
    blocks are derived on read and cached per segment-set version.
    """

    def __init__(
        self,
        settings: Settings,
        lookup: PlaceLookup | None = None,
        calendar: CalendarSource | None = None,
        sink: SampleSink | None = None,
        store: SampleStore | None = None,
        repository: TimelineRepository | None = None,
    ):
        """
        Initialize the timeline service.

        Args:
            settings: Application settings
            lookup: Place lookup; defaults to Nominatim when enabled
            calendar: Planned-event source; defaults to per-day files
            sink: Upload destination; defaults to the HTTP endpoint when
                configured, otherwise the local timeline database
            store: Pending-sample store
            repository: Timeline database
        """
        self.settings = settings
        self.logger = logging.getLogger(__name__)

        # Storage
        self.store = store or SampleStore(settings.store_file, settings.store.max_pending)
        self.repository = repository or TimelineRepository(settings.database_file)

        # Collaborators
        if lookup is None and settings.place_lookup.enabled:
            lookup = NominatimPlaceLookup(settings.place_lookup)
        self.lookup = lookup
        self.calendar = calendar or FileCalendarSource(settings.calendar_dir)
        if sink is None:
            if settings.upload.endpoint:
                sink = HttpSampleSink(settings.upload)
            else:
                sink = RepositorySampleSink(self.repository)
        self.sink = sink

        # Components
        self.ingestor = SampleIngestor(self.store)
        self.uploader = SampleUploader(
            self.store, self.sink, settings.store.peek_batch, settings.upload.timeout_s
        )
        self.resolver = AnchorResolver(settings, self.lookup)
        self.builder = SegmentBuilder(settings, self.resolver)
        self.grouper = BlockGrouper(settings.blocks, settings.tz)
        self.summarizer = HourlySummarizer(settings)
        self.verifier = VerificationEngine(settings.verification)

        self.states = UserStateRegistry(
            anchor_factory=self._load_anchor_index,
            pattern_factory=lambda user_id: PatternIndex(
                user_id, settings.patterns, settings.tz
            ),
        )
        self._block_cache: dict[tuple[str, date, int], list[LocationBlock]] = {}

    def _load_anchor_index(self, user_id: str) -> AnchorIndex:
        anchors = self.repository.load_anchors(user_id)
        return AnchorIndex(user_id, self.settings.anchors, anchors)

    # ------------------------------------------------------------------
    # Ingestion & upload
    # ------------------------------------------------------------------

    def ingest(self, user_id: str, records: Iterable[dict[str, Any]]) -> IngestResult:
        """Validate raw records and append them to the pending store."""
        return self.ingestor.ingest(user_id, records)

    async def flush(self, user_id: str) -> UploadResult:
        """Upload a user's pending samples."""
        return await self.uploader.flush(user_id)

    # ------------------------------------------------------------------
    # Reprocessing
    # ------------------------------------------------------------------

    async def reprocess_day(self, user_id: str, day: date) -> ReprocessResult:
        """
        Rebuild all segments of one local day.

        Steps:
        1. Load the day's samples
        2. Rebuild segments, resolving anchors (may call the place lookup)
        3. Replace the stored segment set and persist changed anchors
        4. Regenerate hourly summaries and the day's pattern contribution

        Args:
            user_id: User to process
            day: Local day

        Returns:
            ReprocessResult with counts and degradation warnings

        Raises:
            ReprocessInProgressError: If the same day is already being rebuilt
            ProcessingError: If rebuilding fails
        """
        with self.states.reprocessing(user_id, day):
            state = self.states.get(user_id)
            try:
                async with state.lock:
                    result = await self._rebuild(state, day)
            except LocationTimelineError:
                raise
            except Exception as e:
                raise ProcessingError(f"Failed to reprocess {user_id} on {day}: {e}") from e

        self._invalidate(user_id)
        self.logger.info(
            f"Reprocessed {user_id} on {day}: {result.segments_created} segments, "
            f"{result.places_looked_up} lookups, v{result.version}"
        )
        return result

    async def _rebuild(self, state: UserState, day: date) -> ReprocessResult:
        """Rebuild one day; the caller holds the user's lock."""
        user_id = state.user_id
        day_start, day_end = local_day_bounds(day, self.settings.tz)
        samples = self.repository.samples_between(user_id, day_start, day_end)

        build = await self.builder.build_day(user_id, day, samples, state.anchors)
        version = self.repository.replace_segments(user_id, day, build.segments)

        self.resolver.infer_categories(
            state.anchors, self._recent_segments(user_id, day), self.settings.tz
        )
        removed = state.anchors.prune(day_end)
        self.repository.delete_anchors(user_id, removed)
        self.repository.save_anchors(state.anchors.take_dirty())

        blocks = self.grouper.group(user_id, day, build.segments, self._anchor_map(state))
        summaries = self.summarizer.summarize(user_id, day, blocks, samples)
        stored = self.repository.replace_summaries(user_id, day, summaries)

        self._ensure_patterns(state)
        state.patterns.observe(day, blocks)

        return ReprocessResult(
            user_id=user_id,
            day=day,
            segments_created=len(build.segments),
            places_looked_up=build.places_looked_up,
            summaries_generated=stored,
            version=version,
            errors=build.errors,
        )

    def _recent_segments(self, user_id: str, day: date) -> list[ActivitySegment]:
        """Segments of the anchor history window ending at day."""
        first = day - timedelta(days=self.settings.anchors.history_days)
        segments = []
        for segment_day in self.repository.segment_days(user_id):
            if first <= segment_day <= day:
                segments.extend(self.repository.segments_for_day(user_id, segment_day))
        return segments

    def _ensure_patterns(self, state: UserState) -> None:
        """Seed a user's pattern index from stored segment history once."""
        if state.patterns_loaded:
            return
        days = self.repository.segment_days(state.user_id)
        if days:
            first = days[-1] - timedelta(days=self.settings.patterns.history_days)
            anchors = self._anchor_map(state)
            for segment_day in days:
                if segment_day < first:
                    continue
                segments = self.repository.segments_for_day(state.user_id, segment_day)
                blocks = self.grouper.group(state.user_id, segment_day, segments, anchors)
                state.patterns.observe(segment_day, blocks)
        state.patterns_loaded = True
        self.logger.debug(f"Loaded pattern history for {state.user_id} ({len(days)} days)")

    # ------------------------------------------------------------------
    # Read paths
    # ------------------------------------------------------------------

    async def get_blocks(self, user_id: str, day: date) -> list[LocationBlock]:
        """
        Get a day's location blocks.

        Blocks are derived from the stored segments on read and cached per
        segment-set version.
        """
        version = self.repository.segment_version(user_id, day)
        key = (user_id, day, version)
        cached = self._block_cache.get(key)
        if cached is not None:
            return list(cached)

        state = self.states.get(user_id)
        segments = self.repository.segments_for_day(user_id, day)
        blocks = self.grouper.group(user_id, day, segments, self._anchor_map(state))
        self._block_cache[key] = blocks
        return list(blocks)

    async def verify(self, user_id: str, day: date) -> list[VerificationResult]:
        """Compare a day's planned events with its blocks."""
        events, error = await fetch_with_timeout(
            self.calendar, user_id, day, self.settings.calendar.timeout_s
        )
        if error:
            self.logger.warning(f"Verifying {user_id} on {day} without a plan: {error}")
        blocks = await self.get_blocks(user_id, day)
        return self.verifier.verify(events, blocks)

    async def anomalies(self, user_id: str, day: date) -> AnomalyReport:
        """Score a day against its weekday's history."""
        state = self.states.get(user_id)
        async with state.lock:
            self._ensure_patterns(state)
        blocks = await self.get_blocks(user_id, day)
        return anomalies_for_day(state.patterns, day, blocks)

    async def predictions(self, user_id: str, day: date) -> list[PatternPrediction]:
        """Predict a day's categories slot by slot."""
        state = self.states.get(user_id)
        async with state.lock:
            self._ensure_patterns(state)
        return predictions_for_day(state.patterns, day)

    def anchors(self, user_id: str) -> list[Anchor]:
        """A user's anchors ordered by id."""
        return self.states.get(user_id).anchors.all()

    async def confirm_anchor(
        self, user_id: str, anchor_id: str, label: str, category: str | None = None
    ) -> Anchor:
        """
        Attach a user-confirmed label to an anchor.

        Raises:
            ValidationError: If the anchor does not exist
        """
        state = self.states.get(user_id)
        async with state.lock:
            try:
                anchor = state.anchors.confirm(anchor_id, label, category)
            except KeyError as e:
                raise ValidationError(f"Unknown anchor {anchor_id} for {user_id}") from e
            self.repository.save_anchors(state.anchors.take_dirty())
        self._invalidate(user_id)
        return anchor

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _anchor_map(state: UserState) -> dict[str, Anchor]:
        return {anchor.id: anchor for anchor in state.anchors.all()}

    def _invalidate(self, user_id: str) -> None:
        """Drop cached blocks of a user (anchor labels may have changed)."""
        for key in [k for k in self._block_cache if k[0] == user_id]:
            del self._block_cache[key]

    async def close(self) -> None:
        """Close HTTP clients of the default collaborators."""
        for collaborator in (self.lookup, self.sink):
            close = getattr(collaborator, "close", None)
            if close is not None:
                await close()
