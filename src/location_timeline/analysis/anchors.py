"""
Anchor and place resolution.

Stationary windows are matched to anchors of the user's rolling index by
geohash-prefix candidate cells and haversine proximity. Labels are display
data only: two anchors with the same label are still two places. Unmatched
windows trigger a best-effort external place lookup; when that fails the new
anchor is keyed by its geohash alone and carries no label.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import numpy as np

from ..constants import AnchorDefaults, GeoConstants, PlaceCategories, TimeConstants
from ..data.place_lookup import PlaceLookup, resolve_with_timeout
from ..data.windows import ClassifiedWindow, seconds_in_daily_window
from ..exceptions import InvariantViolationError
from ..metrics.geo import (
    centroid,
    encode_geohash,
    haversine_array,
    neighbor_prefixes,
)
from ..models import (
    ActivitySegment,
    Anchor,
    AnchorConfig,
    AnchorProvenance,
    MovementClass,
)
from ..settings import Settings

logger = logging.getLogger(__name__)


def _index_cell(geohash: str) -> str:
    return geohash[: GeoConstants.INDEX_GEOHASH_PRECISION]


class AnchorIndex:
    """
    Per-user rolling index of anchors.

    Anchors are bucketed by a coarse geohash prefix; matching looks at the
    cells around a point and measures real distances.
    """

    def __init__(
        self, user_id: str, config: AnchorConfig, anchors: list[Anchor] | None = None
    ):
        self.user_id = user_id
        self.config = config
        self._anchors: dict[str, Anchor] = {}
        self._cells: dict[str, set[str]] = {}
        self._dirty: set[str] = set()
        for anchor in anchors or []:
            self._insert(anchor)

    def __len__(self) -> int:
        return len(self._anchors)

    def __contains__(self, anchor_id: object) -> bool:
        return anchor_id in self._anchors

    def _insert(self, anchor: Anchor) -> None:
        if anchor.user_id != self.user_id:
            raise InvariantViolationError(
                f"Anchor {anchor.id} belongs to {anchor.user_id}, not {self.user_id}"
            )
        previous = self._anchors.get(anchor.id)
        if previous is not None:
            self._cells.get(_index_cell(previous.geohash), set()).discard(anchor.id)
        self._anchors[anchor.id] = anchor
        self._cells.setdefault(_index_cell(anchor.geohash), set()).add(anchor.id)

    def get(self, anchor_id: str) -> Anchor | None:
        return self._anchors.get(anchor_id)

    def all(self) -> list[Anchor]:
        """All anchors ordered by id."""
        return [self._anchors[k] for k in sorted(self._anchors)]

    def put(self, anchor: Anchor) -> None:
        """Insert or replace an anchor and mark it for persistence."""
        self._insert(anchor)
        self._dirty.add(anchor.id)

    def take_dirty(self) -> list[Anchor]:
        """Anchors changed since the last call."""
        dirty = [self._anchors[k] for k in sorted(self._dirty) if k in self._anchors]
        self._dirty.clear()
        return dirty

    def match(self, lat: float, lng: float) -> tuple[Anchor, float] | None:
        """
        Nearest anchor whose reach covers the point.

        An anchor reaches max(match radius, its own radius). Ties on distance
        are broken by id so matching is deterministic.
        """
        search_radius = max(self.config.match_radius_m, self.config.max_radius_m)
        candidate_ids: set[str] = set()
        for cell in neighbor_prefixes(lat, lng, search_radius):
            candidate_ids |= self._cells.get(cell, set())
        if not candidate_ids:
            return None

        candidates = [self._anchors[k] for k in sorted(candidate_ids)]
        distances = haversine_array(
            np.array([a.latitude for a in candidates]),
            np.array([a.longitude for a in candidates]),
            lat,
            lng,
        )
        best: tuple[Anchor, float] | None = None
        for anchor, distance in zip(candidates, distances):
            reach = max(self.config.match_radius_m, anchor.radius_m)
            if distance <= reach and (best is None or distance < best[1]):
                best = (anchor, float(distance))
        return best

    def prune(self, as_of: datetime) -> list[str]:
        """
        Drop anchors unseen for the whole history window.

        User-confirmed anchors are kept.

        Returns:
            Ids of removed anchors
        """
        cutoff = as_of - timedelta(days=self.config.history_days)
        removed = [
            a.id
            for a in self._anchors.values()
            if a.last_seen < cutoff and a.provenance is not AnchorProvenance.USER_CONFIRMED
        ]
        for anchor_id in removed:
            anchor = self._anchors.pop(anchor_id)
            self._cells.get(_index_cell(anchor.geohash), set()).discard(anchor_id)
            self._dirty.discard(anchor_id)
        if removed:
            logger.info(f"Aged out {len(removed)} anchors for {self.user_id}")
        return sorted(removed)

    def confirm(self, anchor_id: str, label: str, category: str | None = None) -> Anchor:
        """Attach a user-confirmed label and category to an anchor."""
        anchor = self._anchors.get(anchor_id)
        if anchor is None:
            raise KeyError(f"Unknown anchor {anchor_id}")
        updated = anchor.model_copy(
            update={
                "label": label,
                "category": category if category is not None else anchor.category,
                "provenance": AnchorProvenance.USER_CONFIRMED,
            }
        )
        self.put(updated)
        return updated


@dataclass
class AnchorResolution:
    """Anchor chosen for a stationary window and how it was found."""

    anchor: Anchor
    matched: bool
    looked_up: bool = False
    error: str | None = None


def fold_short_stays(
    windows: list[ClassifiedWindow], min_dwell_s: float, max_gap_s: float
) -> list[ClassifiedWindow]:
    """
    Absorb stationary windows shorter than the minimum dwell into adjacent travel.

    A short stay between or next to traveling windows becomes part of the
    preceding traveling window (or the following one when there is none
    before it). Neighbours further apart than max_gap_s do not count as
    adjacent. Short stays with no traveling neighbour are left as they are;
    they never get an anchor.
    """
    result: list[ClassifiedWindow] = []
    pending: ClassifiedWindow | None = None

    def is_short_stay(cw: ClassifiedWindow) -> bool:
        return (
            cw.classification.movement is MovementClass.STATIONARY
            and cw.duration_seconds < min_dwell_s
        )

    def adjacent(earlier: ClassifiedWindow, later: ClassifiedWindow) -> bool:
        return (later.start - earlier.end).total_seconds() <= max_gap_s

    def traveling(cw: ClassifiedWindow) -> bool:
        return cw.classification.movement is MovementClass.TRAVELING

    def absorb(host: ClassifiedWindow, guest: ClassifiedWindow) -> ClassifiedWindow:
        samples = sorted(
            {s.dedupe_key: s for s in host.window.samples + guest.window.samples}
            .values(),
            key=lambda s: s.timestamp,
        )
        window = type(host.window)(samples=samples, hint=host.window.hint)
        classification = host.classification.model_copy(
            update={
                "sample_count": len(samples),
                "duration_s": (
                    samples[-1].timestamp - samples[0].timestamp
                ).total_seconds(),
            }
        )
        return ClassifiedWindow(
            window=window,
            classification=classification,
            folded=host.folded + [guest.window] + guest.folded,
        )

    for cw in windows:
        if pending is not None:
            if traveling(cw) and adjacent(pending, cw):
                cw = absorb(cw, pending)
            else:
                result.append(pending)
            pending = None

        if is_short_stay(cw):
            if result and traveling(result[-1]) and adjacent(result[-1], cw):
                result[-1] = absorb(result[-1], cw)
                logger.debug(f"Folded {cw.duration_seconds:.0f}s stay into preceding travel")
            else:
                pending = cw
            continue
        result.append(cw)

    if pending is not None:
        result.append(pending)
    return result


class AnchorResolver:
    """Resolves stationary windows to anchors of the user's index."""

    def __init__(self, settings: Settings, lookup: PlaceLookup | None = None):
        """
        Initialize the resolver.

        Args:
            settings: Application settings
            lookup: External place lookup; None disables lookups
        """
        self.settings = settings
        self.lookup = lookup
        self.logger = logging.getLogger(__name__)

    async def resolve(self, index: AnchorIndex, window: ClassifiedWindow) -> AnchorResolution:
        """
        Find or create the anchor of one stationary window.

        Args:
            index: The user's anchor index (caller holds the user's lock)
            window: A stationary window of at least the minimum dwell

        Returns:
            AnchorResolution describing the anchor and how it was found
        """
        lats = np.array([s.latitude for s in window.window.samples], dtype=float)
        lons = np.array([s.longitude for s in window.window.samples], dtype=float)
        lat, lng = centroid(lats, lons)
        spread = float(haversine_array(lats, lons, lat, lng).max()) if len(lats) else 0.0

        matched = index.match(lat, lng)
        if matched is not None:
            anchor, distance = matched
            # Windows inside the seen span were already counted by an earlier build
            new_visit = window.start > anchor.last_seen or window.end < anchor.first_seen
            updated = anchor.model_copy(
                update={
                    "last_seen": max(anchor.last_seen, window.end),
                    "first_seen": min(anchor.first_seen, window.start),
                    "visit_count": anchor.visit_count + int(new_visit),
                    "radius_m": self._radius(max(anchor.radius_m, distance + spread)),
                }
            )
            index.put(updated)
            self.logger.debug(f"Window at ({lat:.5f}, {lng:.5f}) matched anchor {anchor.id}")
            return AnchorResolution(anchor=updated, matched=True)

        label = None
        category = None
        alternatives: list[str] = []
        provenance = AnchorProvenance.INFERRED
        looked_up = False
        error = None

        if self.lookup is not None and self.settings.place_lookup.enabled:
            looked_up = True
            resolution = await resolve_with_timeout(
                self.lookup,
                lat,
                lng,
                (window.start, window.end),
                self.settings.place_lookup.timeout_s,
            )
            if resolution.degraded:
                error = resolution.error
            elif resolution.candidate is not None:
                label = resolution.candidate.name
                category = resolution.candidate.category
                alternatives = resolution.candidate.alternatives
                provenance = AnchorProvenance.EXTERNAL_LOOKUP

        anchor = Anchor(
            id=uuid.uuid4().hex,
            user_id=index.user_id,
            latitude=lat,
            longitude=lng,
            radius_m=self._radius(spread),
            label=label,
            category=category,
            provenance=provenance,
            geohash=encode_geohash(lat, lng),
            first_seen=window.start,
            last_seen=window.end,
            visit_count=1,
            alternatives=alternatives,
        )
        index.put(anchor)
        self.logger.info(
            f"Created {provenance.value} anchor {anchor.id} "
            f"({label or anchor.geohash}) for {index.user_id}"
        )
        return AnchorResolution(anchor=anchor, matched=False, looked_up=looked_up, error=error)

    def _radius(self, spread: float) -> float:
        cfg = self.settings.anchors
        return float(min(cfg.max_radius_m, max(cfg.min_radius_m, spread)))

    def infer_categories(
        self, index: AnchorIndex, segments: list[ActivitySegment], tz: ZoneInfo
    ) -> list[Anchor]:
        """
        Infer home and office categories for anchors that have none.

        An anchor with at least two hours of overnight dwell (22:00 to 06:00
        local) is home; one with at least three hours of weekday working-hours
        dwell (09:00 to 17:00) is an office. User-confirmed anchors and anchors
        with a category are left alone.

        Returns:
            Anchors whose category was set
        """
        if not self.settings.anchors.infer_categories:
            return []

        night: dict[str, float] = {}
        work: dict[str, float] = {}
        for segment in segments:
            if segment.anchor_id is None or segment.movement is not MovementClass.STATIONARY:
                continue
            start = segment.start.astimezone(tz)
            end = segment.end.astimezone(tz)
            night_s = seconds_in_daily_window(
                start,
                end,
                AnchorDefaults.HOME_NIGHT_START_HOUR,
                AnchorDefaults.HOME_NIGHT_END_HOUR,
            )
            work_s = seconds_in_daily_window(
                start,
                end,
                AnchorDefaults.WORK_START_HOUR,
                AnchorDefaults.WORK_END_HOUR,
                weekdays_only=True,
            )
            hours = TimeConstants.SECONDS_PER_HOUR
            night[segment.anchor_id] = night.get(segment.anchor_id, 0.0) + night_s / hours
            work[segment.anchor_id] = work.get(segment.anchor_id, 0.0) + work_s / hours

        updated = []
        for anchor_id in sorted(set(night) | set(work)):
            anchor = index.get(anchor_id)
            if anchor is None or anchor.category is not None:
                continue
            if anchor.provenance is AnchorProvenance.USER_CONFIRMED:
                continue
            category = None
            if night.get(anchor_id, 0.0) >= AnchorDefaults.HOME_MIN_HOURS:
                category = PlaceCategories.HOME
            elif work.get(anchor_id, 0.0) >= AnchorDefaults.WORK_MIN_HOURS:
                category = PlaceCategories.OFFICE
            if category is not None:
                anchor = anchor.model_copy(update={"category": category})
                index.put(anchor)
                updated.append(anchor)
                self.logger.info(f"Inferred category {category} for anchor {anchor_id}")
        return updated

