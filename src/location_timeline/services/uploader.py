"""
Flushing the pending-sample store into a sink.

A flush peeks a batch, uploads it with a timeout and removes only the keys
the sink acknowledged. Anything not acknowledged stays pending for the next
flush, so a failed or interrupted upload never loses samples.
"""

import asyncio
import logging
from typing import Protocol

import httpx

from ..data.repository import TimelineRepository
from ..data.store import SampleStore
from ..exceptions import StorageError, UploadError
from ..models import RawSample, UploadConfig, UploadResult

logger = logging.getLogger(__name__)


class SampleSink(Protocol):
    """Capability receiving uploaded samples."""

    async def upload(self, user_id: str, samples: list[RawSample]) -> list[str]:
        """
        Upload samples.

        Returns:
            Dedupe keys of the samples the sink accepted

        Raises:
            UploadError: If the upload fails
        """
        ...


class RepositorySampleSink:
    """Sink writing straight into the local timeline database."""

    def __init__(self, repository: TimelineRepository):
        self.repository = repository

    async def upload(self, user_id: str, samples: list[RawSample]) -> list[str]:
        try:
            self.repository.add_samples(user_id, samples)
        except StorageError as e:
            raise UploadError(f"Failed to store uploaded samples: {e}") from e
        # Keys already present count as accepted
        return [s.dedupe_key for s in samples]


class HttpSampleSink:
    """Sink posting batches to an HTTP ingestion endpoint."""

    def __init__(self, config: UploadConfig, client: httpx.AsyncClient | None = None):
        if not config.endpoint:
            raise UploadError("No upload endpoint configured")
        self.config = config
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.timeout_s)
        return self._client

    async def upload(self, user_id: str, samples: list[RawSample]) -> list[str]:
        payload = {
            "user_id": user_id,
            "samples": [s.model_dump(mode="json") for s in samples],
        }
        try:
            response = await self._get_client().post(self.config.endpoint, json=payload)
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise UploadError(f"Upload to {self.config.endpoint} failed: {e}") from e

        accepted = body.get("accepted") if isinstance(body, dict) else None
        if accepted is None:
            return [s.dedupe_key for s in samples]
        sent = {s.dedupe_key for s in samples}
        return [key for key in accepted if key in sent]

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class SampleUploader:
    """Moves pending samples from the store into a sink."""

    def __init__(
        self,
        store: SampleStore,
        sink: SampleSink,
        batch_size: int,
        timeout_s: float,
    ):
        """
        Initialize the uploader.

        Args:
            store: Pending-sample store
            sink: Destination of the samples
            batch_size: Samples per upload
            timeout_s: Timeout of one upload
        """
        self.store = store
        self.sink = sink
        self.batch_size = batch_size
        self.timeout_s = timeout_s
        self.logger = logging.getLogger(__name__)

    async def flush(self, user_id: str) -> UploadResult:
        """
        Upload everything pending for a user.

        Stops at the first failed or empty-handed batch and leaves the
        remainder pending.

        Returns:
            UploadResult with counts and any errors
        """
        uploaded = 0
        errors: list[str] = []

        while True:
            batch = self.store.peek(user_id, self.batch_size)
            if not batch:
                break
            try:
                keys = await asyncio.wait_for(
                    self.sink.upload(user_id, batch), timeout=self.timeout_s
                )
            except asyncio.TimeoutError:
                message = f"upload timed out after {self.timeout_s}s"
                self.logger.warning(f"Flush for {user_id}: {message}")
                errors.append(message)
                break
            except UploadError as e:
                self.logger.warning(f"Flush for {user_id} failed: {e}")
                errors.append(str(e))
                break

            removed = self.store.remove(user_id, keys)
            uploaded += removed
            if removed == 0:
                errors.append("sink acknowledged no samples")
                break
            if len(batch) < self.batch_size:
                break

        remaining = self.store.pending_count(user_id)
        self.logger.info(f"Flushed {uploaded} samples for {user_id}, {remaining} pending")
        return UploadResult(uploaded=uploaded, remaining=remaining, errors=errors)
