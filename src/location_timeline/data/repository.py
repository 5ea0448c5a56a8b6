"""
Repository pattern for timeline data access.

This module persists uploaded samples, activity segments, anchors, per-day
segment-set versions and hourly summaries in SQLite. Location blocks and
verification results are derived on read and never stored here.
"""

import logging
import sqlite3
from collections.abc import Iterable
from datetime import date, datetime
from pathlib import Path
from typing import Protocol
from zoneinfo import ZoneInfo

import pandas as pd

from ..exceptions import StorageError
from ..models import ActivitySegment, Anchor, HourlySummary, RawSample, SampleSource

logger = logging.getLogger(__name__)


class RepositoryProtocol(Protocol):
    """Protocol for timeline repositories."""

    def samples_between(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[RawSample]:
        """Get samples whose interval touches [start, end)."""
        ...

    def replace_segments(
        self, user_id: str, day: date, segments: list[ActivitySegment]
    ) -> int:
        """Replace a day's segments, returning the new segment-set version."""
        ...

    def segments_for_day(self, user_id: str, day: date) -> list[ActivitySegment]:
        """Get a day's segments in time order."""
        ...


class TimelineRepository:
    """
    SQLite repository for timeline ground truth.

    Provides high-level queries over samples, segments and anchors,
    abstracting away the underlying storage.
    """

    def __init__(self, path: Path):
        """
        Initialize the repository.

        Args:
            path: SQLite database file
        """
        self.path = Path(path)
        self.logger = logging.getLogger(__name__)

    def get_connection(self) -> sqlite3.Connection:
        """Get database connection, creating tables if needed."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.path))
            conn.row_factory = sqlite3.Row
            cursor = conn.cursor()

            # Uploaded samples (ingestion audit trail)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS samples (
                    user_id TEXT NOT NULL,
                    dedupe_key TEXT NOT NULL,
                    source TEXT NOT NULL,
                    recorded_at REAL NOT NULL,
                    ends_at REAL NOT NULL,
                    payload TEXT NOT NULL,
                    PRIMARY KEY (user_id, dedupe_key)
                )
            """)

            # Activity segments, grouped by local day
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS segments (
                    id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    day TEXT NOT NULL,
                    start_at REAL NOT NULL,
                    end_at REAL NOT NULL,
                    payload TEXT NOT NULL,
                    PRIMARY KEY (user_id, id)
                )
            """)

            # Rolling anchor index
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS anchors (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    geohash TEXT NOT NULL,
                    last_seen REAL NOT NULL,
                    payload TEXT NOT NULL
                )
            """)

            # Segment-set versions, bumped by every reprocess
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS segment_versions (
                    user_id TEXT NOT NULL,
                    day TEXT NOT NULL,
                    version INTEGER NOT NULL DEFAULT 0,
                    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (user_id, day)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS hourly_summaries (
                    user_id TEXT NOT NULL,
                    day TEXT NOT NULL,
                    hour INTEGER NOT NULL,
                    payload TEXT NOT NULL,
                    PRIMARY KEY (user_id, day, hour)
                )
            """)

            # Indexes for common queries
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_samples_time "
                "ON samples(user_id, recorded_at)"
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_segments_day ON segments(user_id, day)"
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_anchors_user ON anchors(user_id, geohash)"
            )
            return conn
        except sqlite3.Error as e:
            raise StorageError(f"Failed to open timeline database {self.path}: {e}") from e

    # ------------------------------------------------------------------
    # Samples
    # ------------------------------------------------------------------

    def add_samples(self, user_id: str, samples: Iterable[RawSample]) -> int:
        """
        Store uploaded samples, ignoring keys already present.

        Returns:
            Number of samples newly stored
        """
        rows = [
            (
                user_id,
                s.dedupe_key,
                s.source.value,
                s.timestamp.timestamp(),
                s.interval_end.timestamp(),
                s.model_dump_json(),
            )
            for s in samples
        ]
        if not rows:
            return 0
        conn = self.get_connection()
        try:
            with conn:
                before = conn.total_changes
                conn.executemany(
                    "INSERT OR IGNORE INTO samples "
                    "(user_id, dedupe_key, source, recorded_at, ends_at, payload) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    rows,
                )
                return conn.total_changes - before
        except sqlite3.Error as e:
            raise StorageError(f"Failed to store samples: {e}") from e
        finally:
            conn.close()

    def samples_between(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
        sources: Iterable[SampleSource] | None = None,
    ) -> list[RawSample]:
        """
        Get samples whose interval touches [start, end), in time order.

        Args:
            user_id: Owning user
            start: Range start (aware)
            end: Range end (aware)
            sources: Restrict to these sources

        Returns:
            Samples ordered by timestamp
        """
        query = (
            "SELECT payload FROM samples WHERE user_id = ? "
            "AND recorded_at < ? AND ends_at >= ?"
        )
        params: list = [user_id, end.timestamp(), start.timestamp()]
        if sources is not None:
            source_values = [s.value for s in sources]
            query += f" AND source IN ({','.join('?' for _ in source_values)})"
            params.extend(source_values)
        query += " ORDER BY recorded_at ASC, dedupe_key ASC"

        conn = self.get_connection()
        try:
            rows = conn.execute(query, params).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read samples: {e}") from e
        finally:
            conn.close()
        return [RawSample.model_validate_json(row["payload"]) for row in rows]

    def sample_days(self, user_id: str, tz: ZoneInfo) -> list[date]:
        """Local days that hold at least one sample."""
        conn = self.get_connection()
        try:
            rows = conn.execute(
                "SELECT recorded_at FROM samples WHERE user_id = ?", (user_id,)
            ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read sample days: {e}") from e
        finally:
            conn.close()
        if not rows:
            return []
        stamps = pd.to_datetime(
            pd.Series([row["recorded_at"] for row in rows]), unit="s", utc=True
        )
        return sorted(set(stamps.dt.tz_convert(tz).dt.date))

    # ------------------------------------------------------------------
    # Segments
    # ------------------------------------------------------------------

    def replace_segments(
        self, user_id: str, day: date, segments: list[ActivitySegment]
    ) -> int:
        """
        Delete a day's segments and store the rebuilt set in one transaction.

        Returns:
            The new segment-set version of the day
        """
        day_key = day.isoformat()
        conn = self.get_connection()
        try:
            with conn:
                conn.execute(
                    "DELETE FROM segments WHERE user_id = ? AND day = ?",
                    (user_id, day_key),
                )
                conn.executemany(
                    "INSERT OR REPLACE INTO segments "
                    "(id, user_id, day, start_at, end_at, payload) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    [
                        (
                            s.id,
                            user_id,
                            day_key,
                            s.start.timestamp(),
                            s.end.timestamp(),
                            s.model_dump_json(),
                        )
                        for s in segments
                    ],
                )
                conn.execute(
                    """
                    INSERT INTO segment_versions (user_id, day, version)
                    VALUES (?, ?, 1)
                    ON CONFLICT(user_id, day) DO UPDATE SET
                        version = version + 1,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (user_id, day_key),
                )
                version = conn.execute(
                    "SELECT version FROM segment_versions WHERE user_id = ? AND day = ?",
                    (user_id, day_key),
                ).fetchone()["version"]
        except sqlite3.Error as e:
            raise StorageError(f"Failed to replace segments for {day}: {e}") from e
        finally:
            conn.close()

        self.logger.debug(
            f"Stored {len(segments)} segments for {user_id} on {day} (v{version})"
        )
        return version

    def segments_for_day(self, user_id: str, day: date) -> list[ActivitySegment]:
        """Get a day's segments in time order."""
        conn = self.get_connection()
        try:
            rows = conn.execute(
                "SELECT payload FROM segments WHERE user_id = ? AND day = ? "
                "ORDER BY start_at ASC, end_at ASC",
                (user_id, day.isoformat()),
            ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read segments: {e}") from e
        finally:
            conn.close()
        return [ActivitySegment.model_validate_json(row["payload"]) for row in rows]

    def segment_version(self, user_id: str, day: date) -> int:
        """Current segment-set version of a day (0 if never built)."""
        conn = self.get_connection()
        try:
            row = conn.execute(
                "SELECT version FROM segment_versions WHERE user_id = ? AND day = ?",
                (user_id, day.isoformat()),
            ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read segment version: {e}") from e
        finally:
            conn.close()
        return row["version"] if row else 0

    def segment_days(self, user_id: str) -> list[date]:
        """Days that have a built segment set."""
        conn = self.get_connection()
        try:
            rows = conn.execute(
                "SELECT day FROM segment_versions WHERE user_id = ? ORDER BY day",
                (user_id,),
            ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read segment days: {e}") from e
        finally:
            conn.close()
        return [date.fromisoformat(row["day"]) for row in rows]

    # ------------------------------------------------------------------
    # Anchors
    # ------------------------------------------------------------------

    def load_anchors(self, user_id: str) -> list[Anchor]:
        """Get all anchors of a user."""
        conn = self.get_connection()
        try:
            rows = conn.execute(
                "SELECT payload FROM anchors WHERE user_id = ? ORDER BY id",
                (user_id,),
            ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read anchors: {e}") from e
        finally:
            conn.close()
        return [Anchor.model_validate_json(row["payload"]) for row in rows]

    def save_anchors(self, anchors: Iterable[Anchor]) -> None:
        """Insert or update anchors."""
        rows = [
            (a.id, a.user_id, a.geohash, a.last_seen.timestamp(), a.model_dump_json())
            for a in anchors
        ]
        if not rows:
            return
        conn = self.get_connection()
        try:
            with conn:
                conn.executemany(
                    "INSERT OR REPLACE INTO anchors "
                    "(id, user_id, geohash, last_seen, payload) VALUES (?, ?, ?, ?, ?)",
                    rows,
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to save anchors: {e}") from e
        finally:
            conn.close()

    def delete_anchors(self, user_id: str, anchor_ids: Iterable[str]) -> int:
        """Delete anchors by id."""
        params = [(user_id, anchor_id) for anchor_id in anchor_ids]
        if not params:
            return 0
        conn = self.get_connection()
        try:
            with conn:
                before = conn.total_changes
                conn.executemany(
                    "DELETE FROM anchors WHERE user_id = ? AND id = ?", params
                )
                return conn.total_changes - before
        except sqlite3.Error as e:
            raise StorageError(f"Failed to delete anchors: {e}") from e
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Hourly summaries
    # ------------------------------------------------------------------

    def replace_summaries(
        self, user_id: str, day: date, summaries: list[HourlySummary]
    ) -> int:
        """Replace a day's hourly summaries, returning how many were stored."""
        day_key = day.isoformat()
        conn = self.get_connection()
        try:
            with conn:
                conn.execute(
                    "DELETE FROM hourly_summaries WHERE user_id = ? AND day = ?",
                    (user_id, day_key),
                )
                conn.executemany(
                    "INSERT INTO hourly_summaries (user_id, day, hour, payload) "
                    "VALUES (?, ?, ?, ?)",
                    [(user_id, day_key, s.hour, s.model_dump_json()) for s in summaries],
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to store summaries for {day}: {e}") from e
        finally:
            conn.close()
        return len(summaries)

    def summaries_for_day(self, user_id: str, day: date) -> list[HourlySummary]:
        """Get a day's hourly summaries ordered by hour."""
        conn = self.get_connection()
        try:
            rows = conn.execute(
                "SELECT payload FROM hourly_summaries WHERE user_id = ? AND day = ? "
                "ORDER BY hour",
                (user_id, day.isoformat()),
            ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read summaries: {e}") from e
        finally:
            conn.close()
        return [HourlySummary.model_validate_json(row["payload"]) for row in rows]

