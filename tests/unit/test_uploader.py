"""Unit tests for flushing pending samples."""

import asyncio
import json
from datetime import timedelta

import httpx
import pytest
from conftest import BASE_TIME, make_fix

from location_timeline.data.repository import TimelineRepository
from location_timeline.data.store import SampleStore
from location_timeline.exceptions import UploadError
from location_timeline.models import UploadConfig
from location_timeline.services.uploader import (
    HttpSampleSink,
    RepositorySampleSink,
    SampleUploader,
)


class FailingSink:
    async def upload(self, user_id, samples):
        raise UploadError("connection refused")


class SlowSink:
    async def upload(self, user_id, samples):
        await asyncio.sleep(1.0)
        return [s.dedupe_key for s in samples]


class PartialSink:
    """Accepts only the first `accept` samples of every batch."""

    def __init__(self, accept: int):
        self.accept = accept
        self.received: list[int] = []

    async def upload(self, user_id, samples):
        self.received.append(len(samples))
        return [s.dedupe_key for s in samples[: self.accept]]


@pytest.fixture
def store(tmp_path) -> SampleStore:
    store = SampleStore(tmp_path / "pending.sqlite3")
    store.enqueue("user-1", [make_fix(BASE_TIME + timedelta(minutes=i)) for i in range(5)])
    return store


class TestSampleUploader:
    """Test the flush loop."""

    @pytest.mark.asyncio
    async def test_flush_all_in_batches(self, store, tmp_path):
        repository = TimelineRepository(tmp_path / "timeline.sqlite3")
        uploader = SampleUploader(store, RepositorySampleSink(repository), 2, 5.0)

        result = await uploader.flush("user-1")

        assert result.uploaded == 5
        assert result.remaining == 0
        assert result.errors == []
        assert len(repository.samples_between("user-1", BASE_TIME, BASE_TIME + timedelta(hours=1))) == 5

    @pytest.mark.asyncio
    async def test_failed_upload_keeps_samples(self, store):
        result = await SampleUploader(store, FailingSink(), 2, 5.0).flush("user-1")

        assert result.uploaded == 0
        assert result.remaining == 5
        assert "connection refused" in result.errors[0]

    @pytest.mark.asyncio
    async def test_timeout_keeps_samples(self, store):
        result = await SampleUploader(store, SlowSink(), 10, 0.05).flush("user-1")

        assert result.remaining == 5
        assert "timed out" in result.errors[0]

    @pytest.mark.asyncio
    async def test_only_acknowledged_samples_removed(self, store):
        sink = PartialSink(accept=3)

        result = await SampleUploader(store, sink, 10, 5.0).flush("user-1")

        assert result.uploaded == 3
        assert result.remaining == 2
        assert sink.received == [5]
        # The oldest samples were acknowledged
        assert store.peek("user-1", 10)[0].timestamp == BASE_TIME + timedelta(minutes=3)

    @pytest.mark.asyncio
    async def test_no_acknowledgement_stops_flush(self, store):
        result = await SampleUploader(store, PartialSink(accept=0), 2, 5.0).flush("user-1")

        assert result.uploaded == 0
        assert result.remaining == 5
        assert result.errors == ["sink acknowledged no samples"]

    @pytest.mark.asyncio
    async def test_empty_store(self, tmp_path):
        store = SampleStore(tmp_path / "empty.sqlite3")

        result = await SampleUploader(store, FailingSink(), 2, 5.0).flush("user-1")

        assert result.uploaded == 0
        assert result.errors == []


class TestHttpSampleSink:
    """Test the HTTP sink against a mock transport."""

    def test_requires_endpoint(self):
        with pytest.raises(UploadError):
            HttpSampleSink(UploadConfig())

    @pytest.mark.asyncio
    async def test_posts_batch_and_reads_accepted_keys(self):
        samples = [make_fix(BASE_TIME + timedelta(minutes=i)) for i in range(3)]
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            requests.append(body)
            return httpx.Response(200, json={"accepted": [samples[0].dedupe_key, "bogus"]})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        sink = HttpSampleSink(UploadConfig(endpoint="https://ingest.test/samples"), client)

        keys = await sink.upload("user-1", samples)
        await sink.close()

        assert keys == [samples[0].dedupe_key]
        assert requests[0]["user_id"] == "user-1"
        assert len(requests[0]["samples"]) == 3

    @pytest.mark.asyncio
    async def test_missing_accepted_list_acknowledges_all(self):
        samples = [make_fix(BASE_TIME)]
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(202, json={}))
        )
        sink = HttpSampleSink(UploadConfig(endpoint="https://ingest.test/samples"), client)

        assert await sink.upload("user-1", samples) == [samples[0].dedupe_key]
        await sink.close()

    @pytest.mark.asyncio
    async def test_server_error_raises_upload_error(self):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(503))
        )
        sink = HttpSampleSink(UploadConfig(endpoint="https://ingest.test/samples"), client)

        with pytest.raises(UploadError):
            await sink.upload("user-1", [make_fix(BASE_TIME)])
        await sink.close()
