"""Unit tests for segment construction."""

from datetime import timedelta

import pytest
from conftest import BASE_TIME, HOME_LAT, make_fix, north_of

from location_timeline.analysis.anchors import AnchorIndex, AnchorResolver
from location_timeline.analysis.segments import SegmentBuilder
from location_timeline.models import MovementClass, RawSample, SampleSource
from location_timeline.settings import Settings

DAY = BASE_TIME.date()


@pytest.fixture
def builder(settings: Settings) -> SegmentBuilder:
    return SegmentBuilder(settings, AnchorResolver(settings))


@pytest.fixture
def index(settings: Settings) -> AnchorIndex:
    return AnchorIndex("user-1", settings.anchors)


class TestBuildDay:
    """Test rebuilding a day from raw samples."""

    @pytest.mark.asyncio
    async def test_travel_dwell_travel(self, builder, index, travel_dwell_travel):
        build = await builder.build_day("user-1", DAY, travel_dwell_travel, index)

        movements = [s.movement for s in build.segments]
        assert movements == [
            MovementClass.TRAVELING,
            MovementClass.STATIONARY,
            MovementClass.TRAVELING,
        ]
        drive_in, stop, drive_out = build.segments
        assert stop.anchor_id is not None
        assert drive_in.anchor_id is None and drive_out.anchor_id is None
        assert stop.duration_seconds == 420
        # Consecutive segments touch
        assert drive_in.end == stop.start
        assert stop.end == drive_out.start
        assert len(index) == 1

    @pytest.mark.asyncio
    async def test_short_dwell_has_no_anchor(self, builder, index):
        samples = [
            make_fix(BASE_TIME + timedelta(minutes=i), lat=north_of(HOME_LAT, 600 * i), speed=10.0)
            for i in range(6)
        ]
        stop_lat = north_of(HOME_LAT, 3600)
        samples += [
            make_fix(BASE_TIME + timedelta(minutes=6 + i), lat=stop_lat, speed=0.0)
            for i in range(4)
        ]
        samples += [
            make_fix(
                BASE_TIME + timedelta(minutes=10 + i),
                lat=north_of(stop_lat, 600 * (i + 1)),
                speed=10.0,
            )
            for i in range(6)
        ]

        build = await builder.build_day("user-1", DAY, samples, index)

        assert [s.movement for s in build.segments] == [MovementClass.TRAVELING]
        assert build.segments[0].anchor_id is None
        assert len(index) == 0

    @pytest.mark.asyncio
    async def test_jitter_hour_is_one_stationary_segment(self, builder, index, hour_of_jitter):
        build = await builder.build_day("user-1", DAY, hour_of_jitter, index)

        assert len(build.segments) == 1
        segment = build.segments[0]
        assert segment.movement is MovementClass.STATIONARY
        assert segment.evidence.location_samples == 61
        assert 0.0 <= segment.confidence <= 1.0

    @pytest.mark.asyncio
    async def test_rebuild_is_deterministic(self, builder, index, travel_dwell_travel):
        first = await builder.build_day("user-1", DAY, travel_dwell_travel, index)
        second = await builder.build_day("user-1", DAY, travel_dwell_travel, index)

        assert [s.id for s in first.segments] == [s.id for s in second.segments]
        assert [s.anchor_id for s in first.segments] == [s.anchor_id for s in second.segments]
        assert second.anchors_matched == 1
        assert len(index) == 1

    @pytest.mark.asyncio
    async def test_insufficient_evidence_leaves_gap(self, builder, index):
        samples = [
            make_fix(BASE_TIME, speed=10.0),
            make_fix(BASE_TIME + timedelta(minutes=10), lat=north_of(HOME_LAT, 6000), speed=10.0),
        ]

        build = await builder.build_day("user-1", DAY, samples, index)

        assert build.segments == []
        assert build.windows_skipped == 1

    @pytest.mark.asyncio
    async def test_samples_outside_day_ignored(self, builder, index, hour_of_jitter):
        next_day = [
            make_fix(s.timestamp + timedelta(days=1), lat=s.latitude) for s in hour_of_jitter
        ]

        build = await builder.build_day("user-1", DAY, hour_of_jitter + next_day, index)

        assert len(build.segments) == 1
        assert build.segments[0].start.date() == DAY

    @pytest.mark.asyncio
    async def test_screen_usage_corroborates_stationary(self, builder, index, hour_of_jitter):
        screen = RawSample(
            timestamp=BASE_TIME + timedelta(minutes=10),
            end_timestamp=BASE_TIME + timedelta(minutes=20),
            source=SampleSource.SCREEN_USAGE,
            app="mail",
        )

        build = await builder.build_day("user-1", DAY, hour_of_jitter + [screen], index)

        evidence = build.segments[0].evidence
        assert evidence.screen_samples == 1
        assert evidence.screen_seconds == 600
        assert "screen_usage" in evidence.adjustments

    @pytest.mark.asyncio
    async def test_failed_lookup_recorded_not_raised(
        self, tmp_path, failing_lookup, hour_of_jitter
    ):
        settings = Settings(
            data_dir=tmp_path, place_lookup={"enabled": True, "rate_limit_s": 0}
        )
        builder = SegmentBuilder(settings, AnchorResolver(settings, failing_lookup))
        index = AnchorIndex("user-1", settings.anchors)

        build = await builder.build_day("user-1", DAY, hour_of_jitter, index)

        assert len(build.segments) == 1
        assert build.segments[0].anchor_id is not None
        assert build.places_looked_up == 1
        assert len(build.errors) == 1
