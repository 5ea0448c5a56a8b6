"""Integration-style tests for the timeline service, pipeline and CLI."""

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest
from click.testing import CliRunner
from conftest import BASE_TIME, FakePlaceLookup

from location_timeline.cli import main
from location_timeline.exceptions import ReprocessInProgressError, ValidationError
from location_timeline.models import (
    AnchorProvenance,
    BlockKind,
    PlaceCandidate,
    PlannedEvent,
    VerificationStatus,
)
from location_timeline.pipeline import Pipeline
from location_timeline.services import StaticCalendarSource, TimelineService
from location_timeline.settings import Settings

DAY = BASE_TIME.date()


def to_records(samples) -> list[dict]:
    """Raw records as a phone would send them."""
    return [
        {
            "timestamp": s.timestamp.isoformat(),
            "source": s.source.value,
            "lat": s.latitude,
            "lng": s.longitude,
            "accuracy_m": s.accuracy_m,
            "speed_mps": s.speed_mps,
        }
        for s in samples
    ]


@pytest.fixture
def calendar() -> StaticCalendarSource:
    return StaticCalendarSource()


@pytest.fixture
def service(settings, calendar) -> TimelineService:
    return TimelineService(settings, calendar=calendar)


async def ingest_and_flush(service: TimelineService, samples) -> None:
    service.ingest("user-1", to_records(samples))
    await service.flush("user-1")


class TestReprocessDay:
    """Test rebuilding days through the service."""

    @pytest.mark.asyncio
    async def test_end_to_end(self, service, travel_dwell_travel):
        ingest = service.ingest("user-1", to_records(travel_dwell_travel))
        upload = await service.flush("user-1")
        result = await service.reprocess_day("user-1", DAY)
        blocks = await service.get_blocks("user-1", DAY)

        assert ingest.ingested == len(travel_dwell_travel)
        assert upload.uploaded == len(travel_dwell_travel)
        assert result.segments_created == 3
        assert result.summaries_generated == 24
        assert result.version == 1
        assert [b.kind for b in blocks if b.kind is not BlockKind.UNKNOWN] == [
            BlockKind.TRAVEL,
            BlockKind.STATIONARY,
            BlockKind.TRAVEL,
        ]
        assert blocks[0].start == datetime(2024, 3, 5, tzinfo=timezone.utc)
        assert blocks[-1].end == datetime(2024, 3, 6, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_reprocess_is_idempotent(self, service, travel_dwell_travel):
        await ingest_and_flush(service, travel_dwell_travel)

        await service.reprocess_day("user-1", DAY)
        first = await service.get_blocks("user-1", DAY)
        first_anchors = service.anchors("user-1")
        second_result = await service.reprocess_day("user-1", DAY)
        second = await service.get_blocks("user-1", DAY)

        assert second_result.version == 2
        assert [b.id for b in first] == [b.id for b in second]
        assert service.anchors("user-1") == first_anchors

    @pytest.mark.asyncio
    async def test_pending_samples_are_not_processed(self, service, travel_dwell_travel):
        service.ingest("user-1", to_records(travel_dwell_travel))

        result = await service.reprocess_day("user-1", DAY)

        assert result.segments_created == 0

    @pytest.mark.asyncio
    async def test_concurrent_reprocess_of_same_day_rejected(
        self, tmp_path, calendar, hour_of_jitter
    ):
        settings = Settings(
            data_dir=tmp_path / "data",
            place_lookup={"enabled": True, "rate_limit_s": 0, "timeout_s": 2.0},
        )
        slow = FakePlaceLookup(PlaceCandidate(name="Library"), delay_s=0.2)
        service = TimelineService(settings, lookup=slow, calendar=calendar)
        await ingest_and_flush(service, hour_of_jitter)

        results = await asyncio.gather(
            service.reprocess_day("user-1", DAY),
            service.reprocess_day("user-1", DAY),
            return_exceptions=True,
        )

        assert isinstance(results[1], ReprocessInProgressError)
        assert results[0].segments_created == 1
        assert not service.states.is_reprocessing("user-1", DAY)

    @pytest.mark.asyncio
    async def test_cancelled_reprocess_releases_day_and_lock(
        self, tmp_path, calendar, hour_of_jitter
    ):
        settings = Settings(
            data_dir=tmp_path / "data",
            place_lookup={"enabled": True, "rate_limit_s": 0, "timeout_s": 5.0},
        )
        slow = FakePlaceLookup(PlaceCandidate(name="Library"), delay_s=1.0)
        service = TimelineService(settings, lookup=slow, calendar=calendar)
        await ingest_and_flush(service, hour_of_jitter)

        task = asyncio.create_task(service.reprocess_day("user-1", DAY))
        while not slow.calls:
            await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert not service.states.is_reprocessing("user-1", DAY)
        assert not service.states.get("user-1").lock.locked()
        assert service.repository.segment_version("user-1", DAY) == 0

        slow.delay_s = 0.0
        result = await service.reprocess_day("user-1", DAY)

        assert result.segments_created == 1
        assert result.version == 1

    @pytest.mark.asyncio
    async def test_cancelled_read_propagates(self, service, travel_dwell_travel):
        await ingest_and_flush(service, travel_dwell_travel)
        await service.reprocess_day("user-1", DAY)

        class StalledCalendar:
            async def fetch_events(self, user_id, day):
                await asyncio.sleep(10)
                return []

        service.calendar = StalledCalendar()
        task = asyncio.create_task(service.verify("user-1", DAY))
        await asyncio.sleep(0.05)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert len(await service.get_blocks("user-1", DAY)) > 0

    @pytest.mark.asyncio
    async def test_failed_lookup_reported_as_warning(
        self, tmp_path, calendar, failing_lookup, hour_of_jitter
    ):
        settings = Settings(
            data_dir=tmp_path / "data", place_lookup={"enabled": True, "rate_limit_s": 0}
        )
        service = TimelineService(settings, lookup=failing_lookup, calendar=calendar)
        await ingest_and_flush(service, hour_of_jitter)

        result = await service.reprocess_day("user-1", DAY)

        assert result.segments_created == 1
        assert result.places_looked_up == 1
        assert len(result.errors) == 1


class TestAnchorsAndVerification:
    """Test anchor confirmation and verification through the service."""

    @pytest.mark.asyncio
    async def test_confirmed_anchor_labels_blocks_and_verifies(
        self, service, calendar, travel_dwell_travel
    ):
        await ingest_and_flush(service, travel_dwell_travel)
        await service.reprocess_day("user-1", DAY)
        calendar.add(
            "user-1",
            DAY,
            [
                PlannedEvent(
                    id="meeting",
                    start=BASE_TIME + timedelta(minutes=12),
                    end=BASE_TIME + timedelta(minutes=17),
                    category="work",
                )
            ],
        )

        before = await service.verify("user-1", DAY)
        anchor = service.anchors("user-1")[0]
        await service.confirm_anchor("user-1", anchor.id, "Office", "office")
        blocks = await service.get_blocks("user-1", DAY)
        after = await service.verify("user-1", DAY)

        assert before[0].status is VerificationStatus.INSUFFICIENT_EVIDENCE
        stationary = [b for b in blocks if b.kind is BlockKind.STATIONARY]
        assert stationary[0].label == "Office"
        assert after[0].status is VerificationStatus.VERIFIED

    @pytest.mark.asyncio
    async def test_confirmation_persists(self, settings, service, travel_dwell_travel):
        await ingest_and_flush(service, travel_dwell_travel)
        await service.reprocess_day("user-1", DAY)
        anchor_id = service.anchors("user-1")[0].id
        await service.confirm_anchor("user-1", anchor_id, "Home")

        reopened = TimelineService(settings, calendar=StaticCalendarSource())
        anchors = reopened.anchors("user-1")

        assert [a.id for a in anchors] == [anchor_id]
        assert anchors[0].provenance is AnchorProvenance.USER_CONFIRMED

    @pytest.mark.asyncio
    async def test_confirm_unknown_anchor(self, service):
        with pytest.raises(ValidationError):
            await service.confirm_anchor("user-1", "missing", "Home")

    @pytest.mark.asyncio
    async def test_users_do_not_share_anchors(self, service, hour_of_jitter):
        await ingest_and_flush(service, hour_of_jitter)
        await service.reprocess_day("user-1", DAY)

        assert len(service.anchors("user-1")) == 1
        assert service.anchors("user-2") == []

    @pytest.mark.asyncio
    async def test_patterns_without_history(self, service, travel_dwell_travel):
        await ingest_and_flush(service, travel_dwell_travel)
        await service.reprocess_day("user-1", DAY)

        report = await service.anomalies("user-1", DAY)
        predictions = await service.predictions("user-1", DAY + timedelta(days=1))

        assert report.slots_evaluated == 0
        assert report.score == 0.0
        assert predictions == []


class TestPipeline:
    """Test the batch pipeline."""

    @pytest.mark.asyncio
    async def test_run_flushes_and_rebuilds_sample_days(
        self, settings, service, hour_of_jitter
    ):
        service.ingest("user-1", to_records(hour_of_jitter))

        upload, results = await Pipeline(settings, service).run_async("user-1")

        assert upload.uploaded == len(hour_of_jitter)
        assert [r.day for r in results] == [DAY]
        assert results[0].segments_created == 1


class TestCli:
    """Test the command-line entry points."""

    def test_ingest_run_and_blocks(self, tmp_path, hour_of_jitter):
        config = tmp_path / "config.yaml"
        config.write_text("data_dir: data\nplace_lookup:\n  enabled: false\n")
        batch = tmp_path / "batch.json"
        batch.write_text(json.dumps(to_records(hour_of_jitter)))
        runner = CliRunner()

        ingested = runner.invoke(
            main, ["ingest", "--config", str(config), "--user", "user-1", str(batch)]
        )
        ran = runner.invoke(main, ["run", "--config", str(config), "--user", "user-1"])
        shown = runner.invoke(
            main,
            [
                "blocks",
                "--config",
                str(config),
                "--user",
                "user-1",
                "--date",
                DAY.isoformat(),
                "--json",
            ],
        )

        assert ingested.exit_code == 0, ingested.output
        assert "Ingested 61 samples" in ingested.output
        assert ran.exit_code == 0, ran.output
        assert "rebuilt 1 days" in ran.output
        assert shown.exit_code == 0, shown.output
        kinds = [b["kind"] for b in json.loads(shown.stdout)]
        assert "stationary" in kinds

    def test_missing_label_is_usage_error(self, tmp_path):
        config = tmp_path / "config.yaml"
        config.write_text("data_dir: data\nplace_lookup:\n  enabled: false\n")

        result = CliRunner().invoke(
            main, ["anchors", "--config", str(config), "--user", "u", "--confirm", "a1"]
        )

        assert result.exit_code != 0
