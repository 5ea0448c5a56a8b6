"""
Planned-event sources.

Calendar-provider integration is out of scope; the default source reads
per-day YAML/JSON files. Callers go through fetch_with_timeout(), which
turns failures into an empty plan plus an error message.
"""

import asyncio
import logging
from datetime import date
from pathlib import Path
from typing import Protocol

from ..data.loader import SampleDataLoader
from ..exceptions import CalendarFetchError, DataLoadError
from ..models import PlannedEvent

logger = logging.getLogger(__name__)


class CalendarSource(Protocol):
    """Capability for fetching a user's planned events."""

    async def fetch_events(self, user_id: str, day: date) -> list[PlannedEvent]:
        """
        Fetch the planned events of a local day.

        Raises:
            CalendarFetchError: If the source cannot be read
        """
        ...


class FileCalendarSource:
    """Reads planned events from <events_dir>/<user_id>/<YYYY-MM-DD>.yaml|json."""

    def __init__(self, events_dir: Path, loader: SampleDataLoader | None = None):
        self.events_dir = events_dir
        self.loader = loader or SampleDataLoader()

    async def fetch_events(self, user_id: str, day: date) -> list[PlannedEvent]:
        path = self.loader.event_file(self.events_dir, user_id, day)
        if path is None:
            logger.debug(f"No event file for {user_id} on {day}")
            return []
        try:
            return self.loader.load_events(path)
        except DataLoadError as e:
            raise CalendarFetchError(str(e)) from e


class StaticCalendarSource:
    """In-memory events keyed by (user_id, day)."""

    def __init__(self, events: dict[tuple[str, date], list[PlannedEvent]] | None = None):
        self.events = events or {}

    def add(self, user_id: str, day: date, events: list[PlannedEvent]) -> None:
        self.events.setdefault((user_id, day), []).extend(events)

    async def fetch_events(self, user_id: str, day: date) -> list[PlannedEvent]:
        return list(self.events.get((user_id, day), []))


async def fetch_with_timeout(
    source: CalendarSource, user_id: str, day: date, timeout_s: float
) -> tuple[list[PlannedEvent], str | None]:
    """
    Fetch events with a timeout.

    Returns:
        (events, error); on timeout or failure events is empty and error
        describes what went wrong
    """
    try:
        events = await asyncio.wait_for(source.fetch_events(user_id, day), timeout=timeout_s)
    except asyncio.TimeoutError:
        logger.warning(f"Calendar fetch for {user_id} on {day} timed out after {timeout_s}s")
        return [], f"calendar fetch timed out after {timeout_s}s"
    except CalendarFetchError as e:
        logger.warning(f"Calendar fetch for {user_id} on {day} failed: {e}")
        return [], f"calendar fetch failed: {e}"
    return events, None
