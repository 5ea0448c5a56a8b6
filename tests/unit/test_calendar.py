"""Unit tests for planned-event sources and file loading."""

import asyncio
import json
from datetime import date, datetime, timezone

import pytest
import yaml

from location_timeline.data.loader import SampleDataLoader
from location_timeline.exceptions import CalendarFetchError, DataLoadError
from location_timeline.models import PlannedEvent
from location_timeline.services.calendar import (
    FileCalendarSource,
    StaticCalendarSource,
    fetch_with_timeout,
)

DAY = date(2024, 3, 5)


@pytest.fixture
def events_dir(tmp_path):
    directory = tmp_path / "calendar"
    (directory / "user-1").mkdir(parents=True)
    return directory


@pytest.fixture
def event_file(events_dir):
    path = events_dir / "user-1" / "2024-03-05.yaml"
    with open(path, "w") as f:
        yaml.dump(
            {
                "events": [
                    {
                        "id": "standup",
                        "title": "Standup",
                        "start": "2024-03-05T09:00:00Z",
                        "end": "2024-03-05T09:15:00Z",
                        "category": "Work",
                    }
                ]
            },
            f,
        )
    return path


class SlowSource:
    async def fetch_events(self, user_id, day):
        await asyncio.sleep(1.0)
        return []


class TestFileCalendarSource:
    """Test reading per-day event files."""

    @pytest.mark.asyncio
    async def test_reads_day_file(self, events_dir, event_file):
        events = await FileCalendarSource(events_dir).fetch_events("user-1", DAY)

        assert [e.id for e in events] == ["standup"]
        assert events[0].category == "work"
        assert events[0].start == datetime(2024, 3, 5, 9, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_missing_file_means_no_events(self, events_dir):
        assert await FileCalendarSource(events_dir).fetch_events("user-2", DAY) == []

    @pytest.mark.asyncio
    async def test_malformed_file_raises(self, events_dir):
        (events_dir / "user-1" / "2024-03-05.json").write_text("{not json")

        with pytest.raises(CalendarFetchError):
            await FileCalendarSource(events_dir).fetch_events("user-1", DAY)


class TestFetchWithTimeout:
    """Test degraded calendar fetches."""

    @pytest.mark.asyncio
    async def test_success(self):
        event = PlannedEvent(
            id="gym",
            start=datetime(2024, 3, 5, 18, tzinfo=timezone.utc),
            end=datetime(2024, 3, 5, 19, tzinfo=timezone.utc),
            category="health",
        )
        source = StaticCalendarSource()
        source.add("user-1", DAY, [event])

        events, error = await fetch_with_timeout(source, "user-1", DAY, 1.0)

        assert events == [event]
        assert error is None

    @pytest.mark.asyncio
    async def test_timeout_degrades_to_empty_plan(self):
        events, error = await fetch_with_timeout(SlowSource(), "user-1", DAY, 0.05)

        assert events == []
        assert "timed out" in error

    @pytest.mark.asyncio
    async def test_failure_degrades_to_empty_plan(self, events_dir):
        (events_dir / "user-1" / "2024-03-05.yaml").write_text("- id: x\n  start: nope\n")

        events, error = await fetch_with_timeout(
            FileCalendarSource(events_dir), "user-1", DAY, 1.0
        )

        assert events == []
        assert "failed" in error


class TestSampleDataLoader:
    """Test loading raw sample batches."""

    def test_csv_drops_empty_cells(self, tmp_path):
        path = tmp_path / "samples.csv"
        path.write_text(
            "timestamp,lat,lng,speed_mps\n"
            "2024-03-05T12:00:00Z,52.0,4.0,1.5\n"
            "2024-03-05T12:01:00Z,52.0,4.0,\n"
        )

        records = SampleDataLoader().load_sample_records(path)

        assert len(records) == 2
        assert records[0]["speed_mps"] == 1.5
        assert "speed_mps" not in records[1]

    def test_json_object_with_samples(self, tmp_path):
        path = tmp_path / "samples.json"
        path.write_text(json.dumps({"samples": [{"timestamp": 1, "lat": 1, "lng": 2}, "junk"]}))

        records = SampleDataLoader().load_sample_records(path)

        assert records == [{"timestamp": 1, "lat": 1, "lng": 2}]

    def test_missing_file(self, tmp_path):
        with pytest.raises(DataLoadError):
            SampleDataLoader().load_sample_records(tmp_path / "missing.json")

    def test_unsupported_type(self, tmp_path):
        path = tmp_path / "samples.parquet"
        path.write_text("")
        with pytest.raises(DataLoadError):
            SampleDataLoader().load_sample_records(path)

    def test_invalid_event_raises(self, tmp_path):
        path = tmp_path / "events.json"
        path.write_text(
            json.dumps(
                [
                    {
                        "id": "backwards",
                        "start": "2024-03-05T10:00:00Z",
                        "end": "2024-03-05T09:00:00Z",
                        "category": "work",
                    }
                ]
            )
        )
        with pytest.raises(DataLoadError):
            SampleDataLoader().load_events(path)

    def test_event_file_lookup_prefers_yaml(self, events_dir, event_file):
        (events_dir / "user-1" / "2024-03-05.json").write_text("[]")

        assert SampleDataLoader.event_file(events_dir, "user-1", DAY) == event_file
        assert SampleDataLoader.event_file(events_dir, "user-1", date(2024, 3, 6)) is None
