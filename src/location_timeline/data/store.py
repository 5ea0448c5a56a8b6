"""
Durable buffer of raw samples pending upload.

Samples are kept in a local SQLite database keyed by (user, dedupe key), so
re-enqueueing the same sample is a no-op and pending samples survive process
restarts. Every operation commits before returning; a crash between peek() and
remove() re-delivers the same samples on the next flush.
"""

import logging
import sqlite3
from collections.abc import Iterable
from pathlib import Path
from typing import Protocol

from ..constants import StoreDefaults
from ..exceptions import StorageError
from ..models import RawSample

logger = logging.getLogger(__name__)


class SampleStoreProtocol(Protocol):
    """Protocol for pending-sample stores."""

    def enqueue(self, user_id: str, samples: Iterable[RawSample]) -> int:
        """Store new samples, returning how many were not already pending."""
        ...

    def peek(self, user_id: str, limit: int) -> list[RawSample]:
        """Return the oldest pending samples without removing them."""
        ...

    def remove(self, user_id: str, keys: Iterable[str]) -> int:
        """Delete acknowledged samples."""
        ...

    def clear(self, user_id: str) -> int:
        """Delete all pending samples of a user."""
        ...


class SampleStore:
    """SQLite-backed pending-sample store."""

    def __init__(self, path: Path, max_pending: int = StoreDefaults.MAX_PENDING):
        """
        Initialize the store.

        Args:
            path: SQLite database file
            max_pending: Per-user cap; the oldest samples are dropped beyond it
        """
        self.path = Path(path)
        self.max_pending = max_pending
        self.logger = logging.getLogger(__name__)

    def get_connection(self) -> sqlite3.Connection:
        """Get database connection, creating tables if needed."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.path))
            conn.row_factory = sqlite3.Row
            conn.execute("""
                CREATE TABLE IF NOT EXISTS pending_samples (
                    user_id TEXT NOT NULL,
                    dedupe_key TEXT NOT NULL,
                    recorded_at REAL NOT NULL,
                    source TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    PRIMARY KEY (user_id, dedupe_key)
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_pending_user_time "
                "ON pending_samples(user_id, recorded_at)"
            )
            return conn
        except sqlite3.Error as e:
            raise StorageError(f"Failed to open sample store {self.path}: {e}") from e

    def enqueue(self, user_id: str, samples: Iterable[RawSample]) -> int:
        """
        Append samples, skipping any whose dedupe key is already pending.

        Args:
            user_id: Owning user
            samples: Validated samples

        Returns:
            Number of samples newly stored
        """
        rows = [
            (
                user_id,
                s.dedupe_key,
                s.timestamp.timestamp(),
                s.source.value,
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
                    "INSERT OR IGNORE INTO pending_samples "
                    "(user_id, dedupe_key, recorded_at, source, payload) "
                    "VALUES (?, ?, ?, ?, ?)",
                    rows,
                )
                inserted = conn.total_changes - before
                dropped = self._enforce_cap(conn, user_id)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to enqueue samples: {e}") from e
        finally:
            conn.close()

        if dropped:
            self.logger.warning(
                f"Pending cap of {self.max_pending} reached for {user_id}, "
                f"dropped {dropped} oldest samples"
            )
        self.logger.debug(f"Enqueued {inserted}/{len(rows)} samples for {user_id}")
        return inserted

    def _enforce_cap(self, conn: sqlite3.Connection, user_id: str) -> int:
        """Drop the oldest samples beyond the per-user cap."""
        count = conn.execute(
            "SELECT COUNT(*) FROM pending_samples WHERE user_id = ?", (user_id,)
        ).fetchone()[0]
        excess = count - self.max_pending
        if excess <= 0:
            return 0
        conn.execute(
            """
            DELETE FROM pending_samples WHERE rowid IN (
                SELECT rowid FROM pending_samples WHERE user_id = ?
                ORDER BY recorded_at ASC, rowid ASC LIMIT ?
            )
            """,
            (user_id, excess),
        )
        return excess

    def peek(self, user_id: str, limit: int = StoreDefaults.PEEK_BATCH) -> list[RawSample]:
        """
        Return the oldest pending samples without removing them.

        Args:
            user_id: Owning user
            limit: Maximum number of samples

        Returns:
            Samples ordered by time
        """
        conn = self.get_connection()
        try:
            rows = conn.execute(
                "SELECT payload FROM pending_samples WHERE user_id = ? "
                "ORDER BY recorded_at ASC, rowid ASC LIMIT ?",
                (user_id, limit),
            ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read pending samples: {e}") from e
        finally:
            conn.close()
        return [RawSample.model_validate_json(row["payload"]) for row in rows]

    def remove(self, user_id: str, keys: Iterable[str]) -> int:
        """
        Delete acknowledged samples.

        Args:
            user_id: Owning user
            keys: Dedupe keys acknowledged by the sink

        Returns:
            Number of samples deleted
        """
        params = [(user_id, key) for key in keys]
        if not params:
            return 0

        conn = self.get_connection()
        try:
            with conn:
                before = conn.total_changes
                conn.executemany(
                    "DELETE FROM pending_samples WHERE user_id = ? AND dedupe_key = ?",
                    params,
                )
                removed = conn.total_changes - before
        except sqlite3.Error as e:
            raise StorageError(f"Failed to remove samples: {e}") from e
        finally:
            conn.close()
        return removed

    def clear(self, user_id: str) -> int:
        """Delete all pending samples of a user."""
        conn = self.get_connection()
        try:
            with conn:
                cursor = conn.execute(
                    "DELETE FROM pending_samples WHERE user_id = ?", (user_id,)
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to clear samples: {e}") from e
        finally:
            conn.close()
        self.logger.info(f"Cleared {cursor.rowcount} pending samples for {user_id}")
        return cursor.rowcount

    def pending_count(self, user_id: str) -> int:
        """Number of samples pending for a user."""
        conn = self.get_connection()
        try:
            return conn.execute(
                "SELECT COUNT(*) FROM pending_samples WHERE user_id = ?", (user_id,)
            ).fetchone()[0]
        except sqlite3.Error as e:
            raise StorageError(f"Failed to count samples: {e}") from e
        finally:
            conn.close()
