"""
Sample ingestion and validation.

This module converts heterogeneous raw records (background location fixes,
screen-usage sessions, health samples) into RawSample objects. The source tag
is dispatched once to one normalizer per variant; downstream code never
branches on the raw record shape again. Invalid records are counted and
dropped, never raised.
"""

import logging
import math
from collections import Counter
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime
from typing import Any, Protocol

import pandas as pd
from pydantic import ValidationError as PydanticValidationError

from ..exceptions import InvalidSampleError
from ..models import HealthKind, IngestResult, RawSample, SampleSource
from .store import SampleStoreProtocol

logger = logging.getLogger(__name__)

RawRecord = Mapping[str, Any]


def parse_timestamp(value: Any) -> datetime:
    """
    Parse a timestamp given as datetime, ISO string or epoch number.

    Epoch numbers above 1e11 are read as milliseconds, otherwise seconds.

    Raises:
        InvalidSampleError: If the value cannot be read as a finite time
    """
    if value is None:
        raise InvalidSampleError("missing timestamp")
    try:
        if isinstance(value, bool):
            raise InvalidSampleError("boolean is not a timestamp")
        if isinstance(value, (int, float)):
            if not math.isfinite(value):
                raise InvalidSampleError("non-finite timestamp")
            unit = "ms" if abs(value) > 1e11 else "s"
            ts = pd.to_datetime(value, unit=unit, utc=True)
        else:
            ts = pd.Timestamp(value)
            ts = ts.tz_localize("UTC") if ts.tzinfo is None else ts.tz_convert("UTC")
    except (ValueError, TypeError, OverflowError) as e:
        raise InvalidSampleError(f"unparseable timestamp {value!r}: {e}") from e
    if pd.isna(ts):
        raise InvalidSampleError("missing timestamp")
    return ts.to_pydatetime()


def _optional_float(record: RawRecord, *names: str) -> float | None:
    """First present value among names, as float."""
    for name in names:
        if name in record and record[name] is not None:
            return float(record[name])
    return None


class SampleIngestorProtocol(Protocol):
    """Protocol for sample ingestors."""

    def ingest(self, user_id: str, records: Iterable[RawRecord]) -> IngestResult:
        """Validate records and append the valid ones to the store."""
        ...


class SampleIngestor:
    """
    Normalizes raw records and appends valid samples to the sample store.

    One normalizer per source variant is registered in a dispatch table.
    """

    def __init__(self, store: SampleStoreProtocol):
        """
        Initialize the ingestor.

        Args:
            store: Pending-sample store receiving valid samples
        """
        self.store = store
        self.logger = logging.getLogger(__name__)
        self._normalizers: dict[SampleSource, Callable[[RawRecord], RawSample]] = {
            SampleSource.BACKGROUND_LOCATION: self._normalize_location,
            SampleSource.SCREEN_USAGE: self._normalize_screen_usage,
            SampleSource.HEALTH: self._normalize_health,
        }

    def ingest(self, user_id: str, records: Iterable[RawRecord]) -> IngestResult:
        """
        Validate a batch of raw records and enqueue the valid ones.

        Args:
            user_id: Owning user
            records: Raw records of any source

        Returns:
            IngestResult with ingested, rejected and duplicate counts
        """
        samples, rejected = self.normalize(records)
        inserted = self.store.enqueue(user_id, samples)
        by_source = Counter(s.source.value for s in samples)

        result = IngestResult(
            ingested=inserted,
            rejected=rejected,
            duplicates=len(samples) - inserted,
            by_source=dict(by_source),
        )
        self.logger.info(
            f"Ingested {result.ingested} samples for {user_id} "
            f"({result.rejected} rejected, {result.duplicates} duplicates)"
        )
        return result

    def normalize(self, records: Iterable[RawRecord]) -> tuple[list[RawSample], int]:
        """
        Convert raw records into samples.

        Args:
            records: Raw records of any source

        Returns:
            Tuple of (valid samples, number of rejected records)
        """
        samples: list[RawSample] = []
        rejected = 0
        for record in records:
            try:
                samples.append(self.normalize_one(record))
            except (
                InvalidSampleError,
                PydanticValidationError,
                ValueError,
                TypeError,
                KeyError,
            ) as e:
                rejected += 1
                self.logger.debug(f"Rejected sample: {e}")
        return samples, rejected

    def normalize_one(self, record: RawRecord) -> RawSample:
        """
        Convert a single raw record.

        Raises:
            InvalidSampleError: If the record is not a mapping or has an
                unknown source
            pydantic.ValidationError: If a value is out of range
        """
        if not isinstance(record, Mapping):
            raise InvalidSampleError(f"record must be a mapping, got {type(record)}")
        try:
            source = SampleSource(record.get("source", SampleSource.BACKGROUND_LOCATION))
        except ValueError as e:
            raise InvalidSampleError(f"unknown source {record.get('source')!r}") from e
        return self._normalizers[source](record)

    def _normalize_location(self, record: RawRecord) -> RawSample:
        """Background location fix."""
        heading = _optional_float(record, "heading_deg", "heading")
        if heading is not None and heading < 0:
            # Platforms report -1 when the heading is unknown
            heading = None
        return RawSample(
            timestamp=parse_timestamp(record.get("timestamp")),
            source=SampleSource.BACKGROUND_LOCATION,
            latitude=_optional_float(record, "lat", "latitude"),
            longitude=_optional_float(record, "lng", "lon", "longitude"),
            accuracy_m=_optional_float(record, "accuracy_m", "accuracy"),
            speed_mps=_optional_float(record, "speed_mps", "speed"),
            heading_deg=heading,
        )

    def _normalize_screen_usage(self, record: RawRecord) -> RawSample:
        """Screen-usage session, optionally with the position it was used at."""
        start = parse_timestamp(record.get("timestamp", record.get("start")))
        end_value = record.get("end_timestamp", record.get("end"))
        return RawSample(
            timestamp=start,
            end_timestamp=parse_timestamp(end_value) if end_value is not None else None,
            source=SampleSource.SCREEN_USAGE,
            latitude=_optional_float(record, "lat", "latitude"),
            longitude=_optional_float(record, "lng", "lon", "longitude"),
            accuracy_m=_optional_float(record, "accuracy_m", "accuracy"),
            app=record.get("app"),
            app_category=record.get("app_category", record.get("category")),
        )

    def _normalize_health(self, record: RawRecord) -> RawSample:
        """Health sample (sleep, workout, steps, heart rate)."""
        start = parse_timestamp(record.get("timestamp", record.get("start")))
        end_value = record.get("end_timestamp", record.get("end"))
        kind = record.get("health_kind", record.get("kind"))
        return RawSample(
            timestamp=start,
            end_timestamp=parse_timestamp(end_value) if end_value is not None else None,
            source=SampleSource.HEALTH,
            latitude=_optional_float(record, "lat", "latitude"),
            longitude=_optional_float(record, "lng", "lon", "longitude"),
            health_kind=HealthKind(kind) if kind is not None else None,
            value=_optional_float(record, "value"),
        )
