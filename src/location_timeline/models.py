"""
Data models for the Location Timeline package.

This module defines all the core data structures used throughout the application,
ensuring type safety and data validation using Pydantic models.
"""

import hashlib
import math
from datetime import date, datetime, time, timezone
from enum import Enum

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)

from .constants import (
    AnchorDefaults,
    BlockDefaults,
    GeoConstants,
    MovementDefaults,
    PatternDefaults,
    StoreDefaults,
    TimeConstants,
    VerificationDefaults,
    WindowDefaults,
)


def _as_utc(value: datetime) -> datetime:
    """Normalize a datetime to tz-aware UTC, treating naive values as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ============================================================================
# Enumerations
# ============================================================================


class SampleSource(str, Enum):
    """Origin of a raw sample."""

    BACKGROUND_LOCATION = "background-location"
    SCREEN_USAGE = "screen-usage"
    HEALTH = "health"


class HealthKind(str, Enum):
    """Kinds of health samples that can corroborate a segment."""

    SLEEP = "sleep"
    WORKOUT = "workout"
    STEPS = "steps"
    HEART_RATE = "heart_rate"


class MovementClass(str, Enum):
    """Movement label assigned to a sample window."""

    STATIONARY = "stationary"
    TRAVELING = "traveling"
    INSUFFICIENT_EVIDENCE = "insufficient-evidence"


class AnchorProvenance(str, Enum):
    """How an anchor came to exist."""

    USER_CONFIRMED = "user-confirmed"
    INFERRED = "inferred"
    EXTERNAL_LOOKUP = "external-lookup"


class BlockKind(str, Enum):
    """Kind of a derived location block."""

    STATIONARY = "stationary"
    TRAVEL = "travel"
    GAP_FILLED = "gap-filled"
    SLEEP_CANDIDATE = "sleep-candidate"
    UNKNOWN = "unknown"


class VerificationStatus(str, Enum):
    """Outcome of comparing a planned event with observed blocks."""

    VERIFIED = "verified"
    CONTRADICTED = "contradicted"
    NO_EXPECTATION = "no-expectation"
    INSUFFICIENT_EVIDENCE = "insufficient-evidence"


# ============================================================================
# Raw samples
# ============================================================================


class RawSample(BaseModel):
    """A single normalized sensor sample from any source."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    timestamp: datetime = Field(..., description="Sample time (UTC)")
    source: SampleSource = Field(..., description="Source tag")
    latitude: float | None = Field(None, description="Latitude in degrees")
    longitude: float | None = Field(None, description="Longitude in degrees")
    accuracy_m: float | None = Field(None, description="Horizontal accuracy (m)")
    speed_mps: float | None = Field(None, description="Reported speed (m/s)")
    heading_deg: float | None = Field(None, description="Heading in [0, 360)")

    # Screen-usage sessions and health intervals
    end_timestamp: datetime | None = Field(None, description="Interval end (UTC)")
    app: str | None = Field(None, description="Foreground app for screen usage")
    app_category: str | None = Field(None, description="App category")
    health_kind: HealthKind | None = Field(None, description="Health sample kind")
    value: float | None = Field(None, description="Health measurement value")

    @field_validator("timestamp", "end_timestamp")
    @classmethod
    def normalize_timestamps(cls, v: datetime | None) -> datetime | None:
        """Store all timestamps as tz-aware UTC."""
        return _as_utc(v) if v is not None else None

    @field_validator("latitude", "longitude", "accuracy_m", "speed_mps", "heading_deg", "value")
    @classmethod
    def check_finite(cls, v: float | None, info) -> float | None:
        """Reject non-finite and physically impossible values."""
        if v is None:
            return v
        if not math.isfinite(v):
            raise ValueError(f"{info.field_name} must be finite")
        if info.field_name == "latitude" and not (
            GeoConstants.MIN_LATITUDE <= v <= GeoConstants.MAX_LATITUDE
        ):
            raise ValueError("latitude must be between -90 and 90")
        if info.field_name == "longitude" and not (
            GeoConstants.MIN_LONGITUDE <= v <= GeoConstants.MAX_LONGITUDE
        ):
            raise ValueError("longitude must be between -180 and 180")
        if info.field_name in ("accuracy_m", "speed_mps") and v < 0:
            raise ValueError(f"{info.field_name} must not be negative")
        if info.field_name == "heading_deg":
            return v % GeoConstants.FULL_CIRCLE_DEG
        return v

    @model_validator(mode="after")
    def check_source_shape(self) -> "RawSample":
        """Location samples need coordinates, intervals must not run backwards."""
        if self.source is SampleSource.BACKGROUND_LOCATION and (
            self.latitude is None or self.longitude is None
        ):
            raise ValueError("location samples require latitude and longitude")
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be given together")
        if self.end_timestamp is not None and self.end_timestamp < self.timestamp:
            raise ValueError("end_timestamp must not precede timestamp")
        if self.source is SampleSource.HEALTH and self.health_kind is None:
            raise ValueError("health samples require a health_kind")
        return self

    @computed_field  # type: ignore[prop-decorator]
    @property
    def dedupe_key(self) -> str:
        """Key built from time, rounded position, source and variant."""
        epoch_ms = int(self.timestamp.timestamp() * 1000)
        decimals = GeoConstants.DEDUPE_COORD_DECIMALS
        lat = f"{self.latitude:.{decimals}f}" if self.latitude is not None else "na"
        lng = f"{self.longitude:.{decimals}f}" if self.longitude is not None else "na"
        key = f"{epoch_ms}:{lat}:{lng}:{self.source.value}"
        if self.source is SampleSource.HEALTH and self.health_kind is not None:
            key += f":{self.health_kind.value}"
        elif self.source is SampleSource.SCREEN_USAGE and self.app:
            key += f":{self.app}"
        return key

    @property
    def has_position(self) -> bool:
        """Whether the sample carries coordinates."""
        return self.latitude is not None and self.longitude is not None

    @property
    def interval_end(self) -> datetime:
        """End of the interval the sample covers (its own time for point samples)."""
        return self.end_timestamp or self.timestamp


# ============================================================================
# Classification & segments
# ============================================================================


class MovementClassification(BaseModel):
    """Result of classifying one sample window."""

    movement: MovementClass = Field(..., description="Assigned movement label")
    certainty: float = Field(0.0, ge=0.0, le=1.0, description="Label certainty")
    sample_count: int = Field(0, description="Usable location fixes")
    average_speed_mps: float = Field(0.0, description="Average speed (m/s)")
    displacement_m: float = Field(
        0.0, description="Largest straight-line excursion from the first fix"
    )
    net_displacement_m: float = Field(0.0, description="First-to-last fix distance")
    path_length_m: float = Field(0.0, description="Drift-suppressed path length")
    duration_s: float = Field(0.0, description="Window duration in seconds")


class SegmentEvidence(BaseModel):
    """Evidence bundle attached to a segment."""

    model_config = ConfigDict(frozen=True)

    location_samples: int = Field(..., description="Usable location fixes")
    screen_samples: int = Field(0, description="Overlapping screen sessions")
    screen_seconds: float = Field(0.0, description="Overlapping screen time (s)")
    health_kinds: list[str] = Field(
        default_factory=list, description="Overlapping health sample kinds"
    )
    steps: float = Field(0.0, description="Steps recorded inside the window")
    average_speed_mps: float = Field(0.0, description="Average speed (m/s)")
    displacement_m: float = Field(0.0, description="Maximum excursion (m)")
    net_displacement_m: float = Field(0.0, description="First-to-last distance (m)")
    path_length_m: float = Field(0.0, description="Path length (m)")
    certainty: float = Field(0.0, description="Classification certainty")
    adjustments: dict[str, float] = Field(
        default_factory=dict, description="Corroboration adjustments applied"
    )


class ActivitySegment(BaseModel):
    """Immutable unit of classified time."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Deterministic segment id")
    user_id: str = Field(..., description="Owning user")
    start: datetime = Field(..., description="First fix time (UTC)")
    end: datetime = Field(..., description="Last fix time (UTC)")
    movement: MovementClass = Field(..., description="stationary or traveling")
    anchor_id: str | None = Field(None, description="Resolved anchor, if any")
    latitude: float = Field(..., description="Centroid latitude")
    longitude: float = Field(..., description="Centroid longitude")
    start_latitude: float = Field(..., description="First fix latitude")
    start_longitude: float = Field(..., description="First fix longitude")
    end_latitude: float = Field(..., description="Last fix latitude")
    end_longitude: float = Field(..., description="Last fix longitude")
    geohash: str = Field(..., description="Geohash of the centroid")
    confidence: float = Field(..., ge=0.0, le=1.0, description="Confidence score")
    evidence: SegmentEvidence = Field(..., description="Evidence bundle")

    @field_validator("start", "end")
    @classmethod
    def normalize_times(cls, v: datetime) -> datetime:
        """Store segment bounds as UTC."""
        return _as_utc(v)

    @field_validator("movement")
    @classmethod
    def check_movement(cls, v: MovementClass) -> MovementClass:
        """Segments are only built from decided windows."""
        if v is MovementClass.INSUFFICIENT_EVIDENCE:
            raise ValueError("segments must be stationary or traveling")
        return v

    @model_validator(mode="after")
    def check_bounds(self) -> "ActivitySegment":
        """End must be strictly after start."""
        if self.end <= self.start:
            raise ValueError("segment end must be after start")
        return self

    @staticmethod
    def make_id(
        user_id: str, start: datetime, end: datetime, movement: MovementClass
    ) -> str:
        """Build the deterministic id of a segment."""
        raw = f"{user_id}|{_as_utc(start).isoformat()}|{_as_utc(end).isoformat()}|{movement.value}"
        return hashlib.sha1(raw.encode("utf-8")).hexdigest()[:16]

    @property
    def duration_seconds(self) -> float:
        """Segment duration in seconds."""
        return (self.end - self.start).total_seconds()


# ============================================================================
# Anchors & place lookup
# ============================================================================


class Anchor(BaseModel):
    """A resolved geographic cluster representing one real-world place."""

    id: str = Field(..., description="Anchor id")
    user_id: str = Field(..., description="Owning user")
    latitude: float = Field(..., ge=-90.0, le=90.0, description="Centroid latitude")
    longitude: float = Field(
        ..., ge=-180.0, le=180.0, description="Centroid longitude"
    )
    radius_m: float = Field(
        AnchorDefaults.MIN_RADIUS_M, gt=0, description="Effective radius (m)"
    )
    label: str | None = Field(None, description="Human label, never used to match")
    category: str | None = Field(None, description="Place category")
    provenance: AnchorProvenance = Field(..., description="How the anchor was made")
    geohash: str = Field(..., description="Geohash of the centroid")
    first_seen: datetime = Field(..., description="First observation (UTC)")
    last_seen: datetime = Field(..., description="Latest observation (UTC)")
    visit_count: int = Field(1, ge=0, description="Stationary windows matched")
    alternatives: list[str] = Field(
        default_factory=list, description="Alternative names from lookup"
    )

    @field_validator("first_seen", "last_seen")
    @classmethod
    def normalize_times(cls, v: datetime) -> datetime:
        """Store observation times as UTC."""
        return _as_utc(v)


class PlaceCandidate(BaseModel):
    """A place name returned by the lookup collaborator."""

    name: str = Field(..., description="Best place name")
    alternatives: list[str] = Field(default_factory=list, description="Other names")
    category: str | None = Field(None, description="Mapped place category")


class PlaceResolution(BaseModel):
    """Outcome of a best-effort place lookup."""

    candidate: PlaceCandidate | None = Field(None, description="Resolved candidate")
    degraded: bool = Field(False, description="True when the lookup failed")
    error: str | None = Field(None, description="Failure description")

    @classmethod
    def resolved(cls, candidate: PlaceCandidate | None) -> "PlaceResolution":
        """Build a successful resolution."""
        return cls(candidate=candidate)

    @classmethod
    def degraded_result(cls, error: str) -> "PlaceResolution":
        """Build a degraded resolution carrying the failure reason."""
        return cls(degraded=True, error=error)


# ============================================================================
# Blocks, verification, patterns
# ============================================================================


class LocationBlock(BaseModel):
    """Derived contiguous span of same-place time."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Deterministic block id")
    user_id: str = Field(..., description="Owning user")
    kind: BlockKind = Field(..., description="Block kind")
    start: datetime = Field(..., description="Block start (UTC)")
    end: datetime = Field(..., description="Block end (UTC)")
    segment_ids: list[str] = Field(
        default_factory=list, description="Member segments in time order"
    )
    anchor_id: str | None = Field(None, description="Anchor shared by all members")
    label: str | None = Field(None, description="Anchor label for display")
    category: str | None = Field(None, description="Anchor or block category")
    confidence: float = Field(0.0, ge=0.0, le=1.0, description="Block confidence")
    sample_count: int = Field(0, description="Location fixes behind the block")
    latitude: float | None = Field(None, description="Representative latitude")
    longitude: float | None = Field(None, description="Representative longitude")
    carried_from: str | None = Field(
        None, description="Block whose place was carried into this gap"
    )

    @property
    def duration_seconds(self) -> float:
        """Block duration in seconds."""
        return (self.end - self.start).total_seconds()

    def overlap_seconds(self, start: datetime, end: datetime) -> float:
        """Seconds of overlap between the block and [start, end)."""
        latest_start = max(self.start, _as_utc(start))
        earliest_end = min(self.end, _as_utc(end))
        return max(0.0, (earliest_end - latest_start).total_seconds())


class PlannedEvent(BaseModel):
    """A planned calendar event supplied by the calendar collaborator."""

    id: str = Field(..., description="Event id")
    title: str = Field("", description="Event title")
    start: datetime = Field(..., description="Planned start (UTC)")
    end: datetime = Field(..., description="Planned end (UTC)")
    category: str = Field(..., description="Event category")

    @field_validator("start", "end")
    @classmethod
    def normalize_times(cls, v: datetime) -> datetime:
        """Store event bounds as UTC."""
        return _as_utc(v)

    @field_validator("category")
    @classmethod
    def normalize_category(cls, v: str) -> str:
        """Categories compare case-insensitively."""
        return v.strip().lower()

    @model_validator(mode="after")
    def check_bounds(self) -> "PlannedEvent":
        """End must be after start."""
        if self.end <= self.start:
            raise ValueError("event end must be after start")
        return self


class VerificationResult(BaseModel):
    """Verification status of one planned event."""

    event_id: str = Field(..., description="Planned event id")
    status: VerificationStatus = Field(..., description="Verification outcome")
    matched_block_ids: list[str] = Field(
        default_factory=list, description="Blocks at an expected place"
    )
    expected_categories: list[str] = Field(
        default_factory=list, description="Place categories the event expects"
    )
    overlap_ratio: float = Field(
        0.0, description="Share of evidence time spent at an expected place"
    )
    confidence: float = Field(0.0, ge=0.0, le=1.0, description="Result confidence")


class PatternSlot(BaseModel):
    """Histogram of categories for one weekday and time-of-day bucket."""

    weekday: int = Field(..., ge=0, le=6, description="Monday=0 .. Sunday=6")
    slot: int = Field(..., ge=0, description="Bucket index within the day")
    histogram: dict[str, float] = Field(
        default_factory=dict, description="Confidence-weighted category counts"
    )
    sample_count: int = Field(0, description="Observations in the slot")

    @property
    def mode_category(self) -> str | None:
        """Category with the largest weight."""
        if not self.histogram:
            return None
        return max(sorted(self.histogram), key=lambda c: self.histogram[c])

    @property
    def mode_confidence(self) -> float:
        """Share of the total weight held by the mode category."""
        total = sum(self.histogram.values())
        if total <= 0 or self.mode_category is None:
            return 0.0
        return self.histogram[self.mode_category] / total


class PatternAnomaly(BaseModel):
    """A slot whose observed category diverges from its historical mode."""

    weekday: int = Field(..., description="Weekday of the slot")
    slot: int = Field(..., description="Bucket index")
    slot_start: time = Field(..., description="Local start time of the slot")
    expected_category: str = Field(..., description="Historical mode")
    actual_category: str = Field(..., description="Observed category")
    confidence: float = Field(..., description="Historical mode confidence")


class AnomalyReport(BaseModel):
    """Per-day anomaly summary."""

    user_id: str = Field(..., description="User")
    day: date = Field(..., description="Scored day")
    anomalies: list[PatternAnomaly] = Field(default_factory=list)
    slots_evaluated: int = Field(0, description="High-confidence slots compared")
    score: float = Field(0.0, description="Fraction of divergent slots")


class PatternPrediction(BaseModel):
    """Predicted category for one slot of a future day."""

    day: date = Field(..., description="Predicted day")
    slot: int = Field(..., description="Bucket index")
    start: time = Field(..., description="Local slot start")
    end: time = Field(..., description="Local slot end")
    category: str = Field(..., description="Most likely category")
    confidence: float = Field(..., description="Historical mode confidence")


class HourlySummary(BaseModel):
    """Summary of one local hour of a day."""

    user_id: str = Field(..., description="User")
    day: date = Field(..., description="Local day")
    hour: int = Field(..., ge=0, le=23, description="Local hour")
    dominant_kind: BlockKind = Field(..., description="Block kind covering most time")
    label: str | None = Field(None, description="Dominant place label")
    category: str | None = Field(None, description="Dominant category")
    location_samples: int = Field(0, description="Location fixes in the hour")
    screen_minutes: float = Field(0.0, description="Screen time in the hour")
    summary: str = Field("", description="Short human-readable text")


# ============================================================================
# Operation results
# ============================================================================


class IngestResult(BaseModel):
    """Counts produced by one ingestion batch."""

    ingested: int = Field(0, description="Samples accepted into the store")
    rejected: int = Field(0, description="Records dropped as invalid")
    duplicates: int = Field(0, description="Valid records already pending")
    by_source: dict[str, int] = Field(
        default_factory=dict, description="Accepted samples per source"
    )


class ReprocessResult(BaseModel):
    """Counts produced by reprocessing one day."""

    user_id: str = Field(..., description="User")
    day: date = Field(..., description="Reprocessed local day")
    segments_created: int = Field(0, description="Segments written")
    places_looked_up: int = Field(0, description="External place lookups issued")
    summaries_generated: int = Field(0, description="Hourly summaries regenerated")
    version: int = Field(0, description="Segment-set version after the rebuild")
    errors: list[str] = Field(default_factory=list, description="Degradation warnings")


class UploadResult(BaseModel):
    """Counts produced by flushing the sample store."""

    uploaded: int = Field(0, description="Samples acknowledged by the sink")
    remaining: int = Field(0, description="Samples still pending")
    errors: list[str] = Field(default_factory=list, description="Upload failures")


# ============================================================================
# Configuration models
# ============================================================================


class MovementConfig(BaseModel):
    """Thresholds for the movement classifier."""

    max_accuracy_m: float = Field(
        MovementDefaults.MAX_ACCURACY_M, description="Drop fixes less accurate than this"
    )
    min_samples: int = Field(
        MovementDefaults.MIN_SAMPLES, description="Minimum usable fixes per window"
    )
    speed_floor_mps: float = Field(
        MovementDefaults.SPEED_FLOOR_MPS, description="Travel speed floor (m/s)"
    )
    distance_floor_m: float = Field(
        MovementDefaults.DISTANCE_FLOOR_M, description="Travel displacement floor (m)"
    )
    still_speed_mps: float = Field(
        MovementDefaults.STILL_SPEED_MPS, description="Definitely-still speed (m/s)"
    )
    drift_hop_m: float = Field(
        MovementDefaults.DRIFT_HOP_M, description="Hops shorter than this are drift"
    )

    @field_validator("*")
    @classmethod
    def check_positive(cls, v: float | int, info) -> float | int:
        """Validate thresholds are positive."""
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive")
        return v

    @model_validator(mode="after")
    def check_ordering(self) -> "MovementConfig":
        """The still override must sit below the speed floor."""
        if self.still_speed_mps >= self.speed_floor_mps:
            raise ValueError("still_speed_mps must be below speed_floor_mps")
        return self


class WindowConfig(BaseModel):
    """Parameters for splitting a sample stream into windows."""

    stay_radius_m: float = Field(
        WindowDefaults.STAY_RADIUS_M, description="Radius of a stay point (m)"
    )
    max_sample_gap_s: int = Field(
        WindowDefaults.MAX_SAMPLE_GAP_S, description="Gap that closes a window (s)"
    )
    min_dwell_s: int = Field(
        WindowDefaults.MIN_DWELL_S, description="Shortest anchor-backed stay (s)"
    )

    @field_validator("*")
    @classmethod
    def check_positive(cls, v: float | int, info) -> float | int:
        """Validate parameters are positive."""
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive")
        return v


class AnchorConfig(BaseModel):
    """Parameters for anchor matching and retention."""

    match_radius_m: float = Field(
        AnchorDefaults.MATCH_RADIUS_M, description="Proximity radius for matching (m)"
    )
    min_radius_m: float = Field(
        AnchorDefaults.MIN_RADIUS_M, description="Smallest effective radius (m)"
    )
    max_radius_m: float = Field(
        AnchorDefaults.MAX_RADIUS_M, description="Largest effective radius (m)"
    )
    history_days: int = Field(
        AnchorDefaults.HISTORY_DAYS, description="Rolling index window (days)"
    )
    infer_categories: bool = Field(
        True, description="Infer home/office for unlabeled anchors"
    )

    @model_validator(mode="after")
    def check_radii(self) -> "AnchorConfig":
        """Radii must be positive and ordered."""
        if self.min_radius_m <= 0 or self.match_radius_m <= 0:
            raise ValueError("radii must be positive")
        if self.max_radius_m < self.min_radius_m:
            raise ValueError("max_radius_m must not be below min_radius_m")
        if self.history_days < 1:
            raise ValueError("history_days must be at least 1")
        return self


class BlockConfig(BaseModel):
    """Parameters for block merging and gap filling."""

    merge_gap_s: int = Field(
        BlockDefaults.MERGE_GAP_S, description="Largest gap merged into one block (s)"
    )
    daytime_carry_cap_s: int = Field(
        BlockDefaults.DAYTIME_CARRY_CAP_S, description="Daytime carry-forward cap (s)"
    )
    overnight_carry_cap_s: int = Field(
        BlockDefaults.OVERNIGHT_CARRY_CAP_S,
        description="Carry-forward cap for sleep-like gaps (s)",
    )
    max_carry_distance_m: float = Field(
        BlockDefaults.MAX_CARRY_DISTANCE_M, description="Carry-forward distance cap (m)"
    )
    rest_window_start_hour: int = Field(
        BlockDefaults.REST_WINDOW_START_HOUR, description="Rest window start (local)"
    )
    rest_window_end_hour: int = Field(
        BlockDefaults.REST_WINDOW_END_HOUR, description="Rest window end (local)"
    )
    sleep_overlap_ratio: float = Field(
        BlockDefaults.SLEEP_OVERLAP_RATIO,
        description="Share of a gap inside the rest window that marks sleep",
    )
    carry_confidence_decay: float = Field(
        BlockDefaults.CARRY_CONFIDENCE_DECAY,
        description="Multiplier applied to carried-forward confidence",
    )

    @field_validator("*")
    @classmethod
    def check_values(cls, v: float | int, info) -> float | int:
        """Validate block parameters are in range."""
        if info.field_name.endswith("_hour") and not 0 <= v <= 23:
            raise ValueError(f"{info.field_name} must be between 0 and 23")
        if info.field_name in ("sleep_overlap_ratio", "carry_confidence_decay") and not (
            0 < v <= 1
        ):
            raise ValueError(f"{info.field_name} must be in (0, 1]")
        if not info.field_name.endswith("_hour") and v < 0:
            raise ValueError(f"{info.field_name} must not be negative")
        return v

    @model_validator(mode="after")
    def check_caps(self) -> "BlockConfig":
        """Overnight gaps may be carried further than daytime gaps, never less."""
        if self.overnight_carry_cap_s < self.daytime_carry_cap_s:
            raise ValueError("overnight_carry_cap_s must not be below the daytime cap")
        return self


class VerificationConfig(BaseModel):
    """Category to expected-place mapping for verification."""

    category_expectations: dict[str, list[str]] = Field(
        default_factory=lambda: {
            k: list(v) for k, v in VerificationDefaults.CATEGORY_EXPECTATIONS.items()
        },
        description="Event category -> expected place categories",
    )
    min_match_ratio: float = Field(
        VerificationDefaults.MIN_MATCH_RATIO,
        description="Share of evidence time needed to verify",
    )

    @field_validator("category_expectations")
    @classmethod
    def normalize_keys(cls, v: dict[str, list[str]]) -> dict[str, list[str]]:
        """Compare categories case-insensitively."""
        return {
            k.strip().lower(): [c.strip().lower() for c in cats] for k, cats in v.items()
        }


class PatternConfig(BaseModel):
    """Parameters for the pattern index."""

    slot_minutes: int = Field(PatternDefaults.SLOT_MINUTES, description="Bucket size")
    min_confidence: float = Field(
        PatternDefaults.MIN_CONFIDENCE, description="Mode confidence threshold"
    )
    history_days: int = Field(
        PatternDefaults.HISTORY_DAYS, description="Rolling history window (days)"
    )

    @field_validator("slot_minutes")
    @classmethod
    def check_slot(cls, v: int) -> int:
        """Buckets must tile the day."""
        if v <= 0 or TimeConstants.MINUTES_PER_DAY % v != 0:
            raise ValueError("slot_minutes must divide 1440")
        return v

    @field_validator("min_confidence")
    @classmethod
    def check_confidence(cls, v: float) -> float:
        """Confidence threshold is a probability."""
        if not 0 <= v <= 1:
            raise ValueError("min_confidence must be between 0 and 1")
        return v


class StoreConfig(BaseModel):
    """Parameters for the pending-sample store."""

    max_pending: int = Field(
        StoreDefaults.MAX_PENDING, gt=0, description="Per-user pending cap"
    )
    peek_batch: int = Field(
        StoreDefaults.PEEK_BATCH, gt=0, description="Samples per upload batch"
    )


class PlaceLookupConfig(BaseModel):
    """External place lookup (Nominatim) configuration."""

    enabled: bool = Field(True, description="Call the lookup service at all")
    base_url: str = Field(
        "https://nominatim.openstreetmap.org", description="Nominatim base URL"
    )
    user_agent: str = Field("location-timeline/0.3", description="User-Agent header")
    timeout_s: float = Field(5.0, gt=0, description="Per-call timeout (s)")
    rate_limit_s: float = Field(1.0, ge=0, description="Minimum spacing of calls (s)")


class CalendarConfig(BaseModel):
    """Planned-calendar source configuration."""

    events_dir: str = Field("calendar", description="Directory of per-day event files")
    timeout_s: float = Field(5.0, gt=0, description="Per-fetch timeout (s)")


class UploadConfig(BaseModel):
    """Sample upload configuration."""

    endpoint: str | None = Field(None, description="HTTP ingestion endpoint")
    timeout_s: float = Field(10.0, gt=0, description="Per-batch timeout (s)")
