"""
Shared pytest fixtures for Location Timeline tests.

This module provides reusable fixtures for:
- Settings configurations
- Raw sample builders and canned sample streams
- Segments, anchors and blocks
- Fake external collaborators
"""

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import yaml

from location_timeline.constants import GeoConstants
from location_timeline.exceptions import PlaceLookupError
from location_timeline.metrics.geo import encode_geohash
from location_timeline.models import (
    ActivitySegment,
    Anchor,
    AnchorProvenance,
    BlockKind,
    LocationBlock,
    MovementClass,
    PlaceCandidate,
    RawSample,
    SampleSource,
    SegmentEvidence,
)
from location_timeline.settings import Settings

# Tuesday noon, UTC
BASE_TIME = datetime(2024, 3, 5, 12, 0, tzinfo=timezone.utc)
HOME_LAT = 52.0
HOME_LNG = 4.0
METERS_PER_DEGREE_LAT = GeoConstants.EARTH_RADIUS_M * 3.141592653589793 / 180.0


def north_of(lat: float, meters: float) -> float:
    """Latitude the given distance north of lat."""
    return lat + meters / METERS_PER_DEGREE_LAT


def make_fix(
    at: datetime,
    lat: float = HOME_LAT,
    lng: float = HOME_LNG,
    speed: float | None = None,
    accuracy: float | None = 10.0,
) -> RawSample:
    """Build a background location fix."""
    return RawSample(
        timestamp=at,
        source=SampleSource.BACKGROUND_LOCATION,
        latitude=lat,
        longitude=lng,
        accuracy_m=accuracy,
        speed_mps=speed,
    )


def make_segment(
    start: datetime,
    end: datetime,
    movement: MovementClass = MovementClass.STATIONARY,
    anchor_id: str | None = None,
    lat: float = HOME_LAT,
    lng: float = HOME_LNG,
    confidence: float = 0.8,
    user_id: str = "user-1",
) -> ActivitySegment:
    """Build a segment directly, bypassing classification."""
    return ActivitySegment(
        id=ActivitySegment.make_id(user_id, start, end, movement),
        user_id=user_id,
        start=start,
        end=end,
        movement=movement,
        anchor_id=anchor_id,
        latitude=lat,
        longitude=lng,
        start_latitude=lat,
        start_longitude=lng,
        end_latitude=lat,
        end_longitude=lng,
        geohash=encode_geohash(lat, lng),
        confidence=confidence,
        evidence=SegmentEvidence(location_samples=10),
    )


def make_anchor(
    anchor_id: str,
    lat: float = HOME_LAT,
    lng: float = HOME_LNG,
    label: str | None = None,
    category: str | None = None,
    user_id: str = "user-1",
    last_seen: datetime = BASE_TIME,
    provenance: AnchorProvenance = AnchorProvenance.INFERRED,
) -> Anchor:
    """Build an anchor."""
    return Anchor(
        id=anchor_id,
        user_id=user_id,
        latitude=lat,
        longitude=lng,
        radius_m=50.0,
        label=label,
        category=category,
        provenance=provenance,
        geohash=encode_geohash(lat, lng),
        first_seen=last_seen - timedelta(hours=1),
        last_seen=last_seen,
    )


def make_block(
    start: datetime,
    end: datetime,
    category: str | None = None,
    kind: BlockKind = BlockKind.STATIONARY,
    confidence: float = 0.8,
    label: str | None = None,
    block_id: str | None = None,
    user_id: str = "user-1",
) -> LocationBlock:
    """Build a block directly, bypassing grouping."""
    return LocationBlock(
        id=block_id or f"{kind.value}-{start:%Y%m%d%H%M}-{end:%H%M}",
        user_id=user_id,
        kind=kind,
        start=start,
        end=end,
        label=label,
        category=category,
        confidence=confidence,
    )


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def temp_config_file(tmp_path: Path) -> Path:
    """Create a temporary YAML config file path for testing."""
    return tmp_path / "config.yaml"


@pytest.fixture
def sample_config_dict() -> dict:
    """Provide a sample configuration dictionary."""
    return {
        "data_dir": "data",
        "timezone": "Europe/Amsterdam",
        "movement": {"speed_floor_mps": 1.2, "distance_floor_m": 250},
        "blocks": {"merge_gap_s": 120},
        "place_lookup": {"enabled": False},
    }


@pytest.fixture
def sample_config_file(temp_config_file: Path, sample_config_dict: dict) -> Path:
    """Create a temporary config file with sample data."""
    with open(temp_config_file, "w") as f:
        yaml.dump(sample_config_dict, f)
    return temp_config_file


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Provide settings rooted in a temporary directory, lookups disabled."""
    return Settings(data_dir=tmp_path / "data", place_lookup={"enabled": False})


# ============================================================================
# Data Fixtures - Sample Streams
# ============================================================================


@pytest.fixture
def travel_dwell_travel() -> list[RawSample]:
    """
    Ten minutes of driving, a seven-minute stop, ten more minutes of driving.

    Fixes every minute; the car moves 600 m per minute due north.
    """
    samples = []
    lat = HOME_LAT
    at = BASE_TIME
    for _ in range(11):
        samples.append(make_fix(at, lat=lat, speed=10.0))
        lat = north_of(lat, 600)
        at += timedelta(minutes=1)

    stop_lat = lat
    for i in range(8):
        jitter = 5.0 if i % 2 else -5.0
        samples.append(make_fix(at, lat=north_of(stop_lat, jitter), speed=0.0))
        at += timedelta(minutes=1)

    lat = north_of(stop_lat, 600)
    for _ in range(11):
        samples.append(make_fix(at, lat=lat, speed=10.0))
        lat = north_of(lat, 600)
        at += timedelta(minutes=1)
    return samples


@pytest.fixture
def hour_of_jitter() -> list[RawSample]:
    """One hour at a single place with up to 20 m of GPS jitter and no speeds."""
    samples = []
    for minute in range(61):
        offset = 15.0 if minute % 2 else -15.0
        samples.append(
            make_fix(
                BASE_TIME + timedelta(minutes=minute),
                lat=north_of(HOME_LAT, offset),
                lng=HOME_LNG,
            )
        )
    return samples


@pytest.fixture
def raw_location_record() -> dict:
    """Provide a valid raw background-location record."""
    return {
        "timestamp": "2024-03-05T12:00:00Z",
        "source": "background-location",
        "lat": HOME_LAT,
        "lng": HOME_LNG,
        "accuracy_m": 12.0,
        "speed_mps": 0.4,
        "heading_deg": 90.0,
    }


# ============================================================================
# Fake Collaborators
# ============================================================================


class FakePlaceLookup:
    """Place lookup returning a fixed candidate and recording calls."""

    def __init__(
        self,
        candidate: PlaceCandidate | None = None,
        fail: bool = False,
        delay_s: float = 0.0,
    ):
        self.candidate = candidate
        self.fail = fail
        self.delay_s = delay_s
        self.calls: list[tuple[float, float]] = []

    async def lookup_place(self, lat, lng, window):
        self.calls.append((lat, lng))
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.fail:
            raise PlaceLookupError("service unavailable")
        return self.candidate


@pytest.fixture
def cafe_lookup() -> FakePlaceLookup:
    """Lookup that names every place 'Corner Cafe'."""
    return FakePlaceLookup(PlaceCandidate(name="Corner Cafe", category="cafe"))


@pytest.fixture
def failing_lookup() -> FakePlaceLookup:
    """Lookup that always fails."""
    return FakePlaceLookup(fail=True)
