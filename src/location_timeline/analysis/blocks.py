"""
Location block grouping.

A pure view over one day's segments (no I/O, no clock): identical input
yields bit-identical blocks.

1. Segments are walked in time order; overlapping segments are an invariant
   violation and raise.
2. Consecutive segments merge when they share an anchor id (travel merges
   with travel) and the gap between them is at most the merge threshold.
   Labels play no part. Stationary segments without an anchor never merge.
3. A gap up to the merge threshold extends the previous block when that
   block is travel, or a stay whose anchor is close to the next block.
   Other gaps are resolved in this order:
   - mostly inside the rest window: a sleep candidate, anchored only when
     both neighbours share an anchor and the gap is within the overnight cap
   - after an anchored stay, within the daytime cap and with the next block
     close to that anchor: the anchor is carried forward as a gap-filled block
   - anything else: unknown
4. The blocks cover the whole local day.
"""

import hashlib
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from ..constants import PlaceCategories
from ..data.windows import local_day_bounds, seconds_in_daily_window
from ..exceptions import InvariantViolationError
from ..metrics.geo import haversine_m
from ..models import (
    ActivitySegment,
    Anchor,
    BlockConfig,
    BlockKind,
    LocationBlock,
    MovementClass,
)

logger = logging.getLogger(__name__)


@dataclass
class _Draft:
    """A block under construction."""

    kind: BlockKind
    start: datetime
    end: datetime
    segments: list[ActivitySegment] = field(default_factory=list)
    anchor_id: str | None = None
    confidence: float = 0.0
    carried_from: "_Draft | None" = None

    @property
    def merge_key(self) -> tuple[str, str] | None:
        if self.kind is BlockKind.TRAVEL:
            return ("travel", "")
        if self.kind is BlockKind.STATIONARY and self.anchor_id is not None:
            return ("anchor", self.anchor_id)
        return None


class BlockGrouper:
    """Groups a day's segments into location blocks."""

    def __init__(self, config: BlockConfig, tz: ZoneInfo):
        """
        Initialize the grouper.

        Args:
            config: Merge and gap-fill thresholds
            tz: Timezone of the local day and rest window
        """
        self.config = config
        self.tz = tz

    def group(
        self,
        user_id: str,
        day: date,
        segments: list[ActivitySegment],
        anchors: Mapping[str, Anchor],
    ) -> list[LocationBlock]:
        """
        Group segments into blocks covering the local day.

        Args:
            user_id: Owning user
            day: Local day
            segments: The day's segments, in any order
            anchors: Anchors by id, for labels and carry-forward distances

        Returns:
            Blocks ordered by start time

        Raises:
            InvariantViolationError: If two segments overlap
        """
        day_start, day_end = (
            bound.astimezone(timezone.utc) for bound in local_day_bounds(day, self.tz)
        )
        ordered = self._clip_and_sort(segments, day_start, day_end)
        self._check_no_overlap(ordered)

        runs = self._merge_runs(ordered)
        drafts = self._fill_gaps(runs, day_start, day_end, anchors)

        blocks = [self._finalize(user_id, d, anchors) for d in drafts]
        logger.debug(
            f"Grouped {len(ordered)} segments into {len(blocks)} blocks "
            f"for {user_id} on {day}"
        )
        return blocks

    def _clip_and_sort(
        self, segments: list[ActivitySegment], day_start: datetime, day_end: datetime
    ) -> list[ActivitySegment]:
        """Segments touching the day, clipped to it, in time order."""
        clipped = []
        for segment in segments:
            start = max(segment.start, day_start)
            end = min(segment.end, day_end)
            if end <= start:
                continue
            if start != segment.start or end != segment.end:
                segment = segment.model_copy(update={"start": start, "end": end})
            clipped.append(segment)
        return sorted(clipped, key=lambda s: (s.start, s.end, s.id))

    def _check_no_overlap(self, ordered: list[ActivitySegment]) -> None:
        for prev, nxt in zip(ordered, ordered[1:]):
            if nxt.start < prev.end:
                raise InvariantViolationError(
                    f"Segments {prev.id} and {nxt.id} overlap "
                    f"({prev.start} - {prev.end} vs {nxt.start} - {nxt.end})"
                )

    def _merge_runs(self, ordered: list[ActivitySegment]) -> list[_Draft]:
        """Merge consecutive same-anchor (or travel) segments."""
        runs: list[_Draft] = []
        for segment in ordered:
            draft = self._draft_for(segment)
            if runs:
                last = runs[-1]
                gap = (segment.start - last.end).total_seconds()
                if (
                    draft.merge_key is not None
                    and draft.merge_key == last.merge_key
                    and gap <= self.config.merge_gap_s
                ):
                    last.segments.append(segment)
                    last.end = segment.end
                    continue
            runs.append(draft)

        for run in runs:
            run.confidence = self._weighted_confidence(run.segments)
        return runs

    def _draft_for(self, segment: ActivitySegment) -> _Draft:
        if segment.movement is MovementClass.TRAVELING:
            kind = BlockKind.TRAVEL
        elif segment.anchor_id is not None:
            kind = BlockKind.STATIONARY
        else:
            kind = BlockKind.UNKNOWN
        return _Draft(
            kind=kind,
            start=segment.start,
            end=segment.end,
            segments=[segment],
            anchor_id=segment.anchor_id if kind is BlockKind.STATIONARY else None,
        )

    @staticmethod
    def _weighted_confidence(segments: list[ActivitySegment]) -> float:
        """Duration-weighted mean confidence of segments."""
        total = sum(s.duration_seconds for s in segments)
        if total <= 0:
            return 0.0
        return sum(s.confidence * s.duration_seconds for s in segments) / total

    def _fill_gaps(
        self,
        runs: list[_Draft],
        day_start: datetime,
        day_end: datetime,
        anchors: Mapping[str, Anchor],
    ) -> list[_Draft]:
        """Interleave runs with gap blocks so the day is fully covered."""
        drafts: list[_Draft] = []
        cursor = day_start
        prev_run: _Draft | None = None

        for run in runs:
            gap = (run.start - cursor).total_seconds()
            if gap > 0:
                if gap <= self.config.merge_gap_s and self._can_absorb(
                    prev_run, run, gap, anchors
                ):
                    # Sampling-interval gap: the previous block runs up to this one
                    drafts[-1].end = run.start
                else:
                    drafts.append(self._resolve_gap(cursor, run.start, prev_run, run, anchors))
            drafts.append(run)
            cursor = run.end
            prev_run = run

        if cursor < day_end:
            drafts.append(self._resolve_gap(cursor, day_end, prev_run, None, anchors))
        return drafts

    def _can_absorb(
        self,
        prev_run: _Draft | None,
        next_run: _Draft,
        gap: float,
        anchors: Mapping[str, Anchor],
    ) -> bool:
        """
        Whether a sampling-interval gap can extend the previous block.

        Travel carries no place, so it may always run up to the next block.
        A stay is only extended under the carry-forward distance rule.
        """
        if prev_run is None:
            return False
        if prev_run.kind is BlockKind.TRAVEL:
            return True
        return self._can_carry_forward(prev_run, next_run, gap, anchors)

    def _resolve_gap(
        self,
        start: datetime,
        end: datetime,
        prev_run: _Draft | None,
        next_run: _Draft | None,
        anchors: Mapping[str, Anchor],
    ) -> _Draft:
        """Decide what a gap between two runs becomes."""
        cfg = self.config
        duration = (end - start).total_seconds()

        rest = seconds_in_daily_window(
            start.astimezone(self.tz),
            end,
            cfg.rest_window_start_hour,
            cfg.rest_window_end_hour,
        )
        if duration > 0 and rest / duration >= cfg.sleep_overlap_ratio:
            draft = _Draft(kind=BlockKind.SLEEP_CANDIDATE, start=start, end=end)
            if (
                prev_run is not None
                and next_run is not None
                and prev_run.merge_key is not None
                and prev_run.kind is BlockKind.STATIONARY
                and prev_run.merge_key == next_run.merge_key
                and duration <= cfg.overnight_carry_cap_s
            ):
                draft.anchor_id = prev_run.anchor_id
                draft.carried_from = prev_run
                draft.confidence = prev_run.confidence * cfg.carry_confidence_decay
            return draft

        if self._can_carry_forward(prev_run, next_run, duration, anchors):
            return _Draft(
                kind=BlockKind.GAP_FILLED,
                start=start,
                end=end,
                anchor_id=prev_run.anchor_id,
                carried_from=prev_run,
                confidence=prev_run.confidence * cfg.carry_confidence_decay,
            )

        return _Draft(kind=BlockKind.UNKNOWN, start=start, end=end)

    def _can_carry_forward(
        self,
        prev_run: _Draft | None,
        next_run: _Draft | None,
        duration: float,
        anchors: Mapping[str, Anchor],
    ) -> bool:
        """Bounded carry-forward: anchored predecessor, short gap, nearby successor."""
        if prev_run is None or next_run is None:
            return False
        if prev_run.kind is not BlockKind.STATIONARY or prev_run.anchor_id is None:
            return False
        if duration > self.config.daytime_carry_cap_s:
            return False

        prev_anchor = anchors.get(prev_run.anchor_id)
        if prev_anchor is not None:
            from_lat, from_lng = prev_anchor.latitude, prev_anchor.longitude
        else:
            last = prev_run.segments[-1]
            from_lat, from_lng = last.latitude, last.longitude

        next_anchor = anchors.get(next_run.anchor_id) if next_run.anchor_id else None
        if next_anchor is not None:
            to_lat, to_lng = next_anchor.latitude, next_anchor.longitude
        else:
            first = next_run.segments[0]
            to_lat, to_lng = first.start_latitude, first.start_longitude

        distance = haversine_m(from_lat, from_lng, to_lat, to_lng)
        return distance <= self.config.max_carry_distance_m

    def _finalize(
        self, user_id: str, draft: _Draft, anchors: Mapping[str, Anchor]
    ) -> LocationBlock:
        """Freeze a draft into a LocationBlock with a deterministic id."""
        anchor = anchors.get(draft.anchor_id) if draft.anchor_id else None
        segment_ids = [s.id for s in draft.segments]

        label = anchor.label if anchor is not None else None
        category = anchor.category if anchor is not None else None
        if draft.kind is BlockKind.TRAVEL:
            category = PlaceCategories.TRAVEL
        elif draft.kind is BlockKind.SLEEP_CANDIDATE:
            category = PlaceCategories.SLEEP

        latitude = longitude = None
        if anchor is not None:
            latitude, longitude = anchor.latitude, anchor.longitude
        elif draft.kind is BlockKind.UNKNOWN and draft.segments:
            latitude = draft.segments[0].latitude
            longitude = draft.segments[0].longitude

        carried_from = None
        if draft.carried_from is not None:
            carried_from = self._block_id(user_id, draft.carried_from)

        return LocationBlock(
            id=self._block_id(user_id, draft),
            user_id=user_id,
            kind=draft.kind,
            start=draft.start,
            end=draft.end,
            segment_ids=segment_ids,
            anchor_id=draft.anchor_id,
            label=label,
            category=category,
            confidence=round(min(1.0, max(0.0, draft.confidence)), 4),
            sample_count=sum(s.evidence.location_samples for s in draft.segments),
            latitude=latitude,
            longitude=longitude,
            carried_from=carried_from,
        )

    @staticmethod
    def _block_id(user_id: str, draft: _Draft) -> str:
        """Deterministic id from the block's content."""
        parts = [
            user_id,
            draft.kind.value,
            draft.start.isoformat(),
            draft.end.isoformat(),
            draft.anchor_id or "",
            ",".join(s.id for s in draft.segments),
        ]
        return hashlib.sha1("|".join(parts).encode("utf-8")).hexdigest()[:16]
