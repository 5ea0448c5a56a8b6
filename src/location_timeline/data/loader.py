"""
Data loading functionality.

This module reads raw sample batches (JSON or CSV) and planned-event files
(YAML or JSON) from disk.
"""

import json
import logging
from datetime import date
from pathlib import Path
from typing import Any, Protocol

import pandas as pd
import yaml
from pydantic import ValidationError as PydanticValidationError

from ..constants import FileExtensions
from ..exceptions import DataLoadError
from ..models import PlannedEvent

logger = logging.getLogger(__name__)


class DataLoaderProtocol(Protocol):
    """Protocol for data loaders."""

    def load_sample_records(self, path: Path) -> list[dict[str, Any]]:
        """Load raw sample records."""
        ...

    def load_events(self, path: Path) -> list[PlannedEvent]:
        """Load planned events."""
        ...


class SampleDataLoader:
    """
    Handles loading of raw samples and planned events from files.

    Records are returned untouched apart from dropping empty CSV cells;
    validation happens at ingestion.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def load_sample_records(self, path: Path) -> list[dict[str, Any]]:
        """
        Load raw sample records from a JSON or CSV file.

        JSON files hold either a list of records or an object with a
        "samples" list.

        Args:
            path: File to read

        Returns:
            List of record dicts

        Raises:
            DataLoadError: If the file is missing or malformed
        """
        if not path.exists():
            raise DataLoadError(f"Sample file not found: {path}")

        try:
            self.logger.info(f"Loading samples from {path}")
            suffix = path.suffix.lower()
            if suffix == FileExtensions.CSV:
                df = pd.read_csv(path)
                records = [
                    {k: v for k, v in row.items() if pd.notna(v)}
                    for row in df.to_dict(orient="records")
                ]
            elif suffix == FileExtensions.JSON:
                payload = json.loads(path.read_text(encoding="utf-8"))
                if isinstance(payload, dict):
                    payload = payload.get("samples", [])
                if not isinstance(payload, list):
                    raise DataLoadError(f"Expected a list of samples in {path}")
                records = [r for r in payload if isinstance(r, dict)]
            else:
                raise DataLoadError(f"Unsupported sample file type: {path.suffix}")
        except DataLoadError:
            raise
        except Exception as e:
            raise DataLoadError(f"Failed to load samples from {path}: {e}") from e

        self.logger.info(f"Loaded {len(records)} sample records")
        return records

    def load_events(self, path: Path) -> list[PlannedEvent]:
        """
        Load planned events from a YAML or JSON file.

        The file holds a list of events or an object with an "events" list.

        Raises:
            DataLoadError: If the file is malformed or an event is invalid
        """
        if not path.exists():
            raise DataLoadError(f"Event file not found: {path}")

        try:
            text = path.read_text(encoding="utf-8")
            if path.suffix.lower() == FileExtensions.JSON:
                payload = json.loads(text)
            else:
                payload = yaml.safe_load(text)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise DataLoadError(f"Failed to read events from {path}: {e}") from e

        if isinstance(payload, dict):
            payload = payload.get("events", [])
        if payload is None:
            return []
        if not isinstance(payload, list):
            raise DataLoadError(f"Expected a list of events in {path}")

        try:
            events = [PlannedEvent(**item) for item in payload]
        except (PydanticValidationError, TypeError) as e:
            raise DataLoadError(f"Invalid event in {path}: {e}") from e

        self.logger.debug(f"Loaded {len(events)} events from {path}")
        return events

    @staticmethod
    def event_file(directory: Path, user_id: str, day: date) -> Path | None:
        """
        Locate a user's event file for a day.

        Looks for <dir>/<user_id>/<YYYY-MM-DD>.(yaml|yml|json).
        """
        base = directory / user_id
        for extension in (FileExtensions.YAML, FileExtensions.YML, FileExtensions.JSON):
            candidate = base / f"{day.isoformat()}{extension}"
            if candidate.exists():
                return candidate
        return None
