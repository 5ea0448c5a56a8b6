"""
Explicit per-user state.

Each user owns an anchor index, a pattern index and an asyncio.Lock that
serializes updates to both. The registry also tracks which (user, day)
reprocesses are in flight.
"""

import asyncio
import logging
from collections.abc import Callable
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date

from ..analysis.anchors import AnchorIndex
from ..analysis.patterns import PatternIndex
from ..exceptions import ReprocessInProgressError

logger = logging.getLogger(__name__)


@dataclass
class UserState:
    """Mutable state of one user."""

    user_id: str
    anchors: AnchorIndex
    patterns: PatternIndex
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    patterns_loaded: bool = False


class UserStateRegistry:
    """Creates and holds UserState objects on first use."""

    def __init__(
        self,
        anchor_factory: Callable[[str], AnchorIndex],
        pattern_factory: Callable[[str], PatternIndex],
    ):
        """
        Initialize the registry.

        Args:
            anchor_factory: Builds a user's anchor index (e.g. from storage)
            pattern_factory: Builds a user's empty pattern index
        """
        self._anchor_factory = anchor_factory
        self._pattern_factory = pattern_factory
        self._states: dict[str, UserState] = {}
        self._in_flight: set[tuple[str, date]] = set()

    def get(self, user_id: str) -> UserState:
        """State of a user, created on first access."""
        state = self._states.get(user_id)
        if state is None:
            state = UserState(
                user_id=user_id,
                anchors=self._anchor_factory(user_id),
                patterns=self._pattern_factory(user_id),
            )
            self._states[user_id] = state
            logger.debug(f"Created state for {user_id} ({len(state.anchors)} anchors)")
        return state

    def is_reprocessing(self, user_id: str, day: date) -> bool:
        return (user_id, day) in self._in_flight

    @contextmanager
    def reprocessing(self, user_id: str, day: date):
        """
        Mark a (user, day) reprocess as in flight for the duration of the block.

        Raises:
            ReprocessInProgressError: If one is already running
        """
        key = (user_id, day)
        if key in self._in_flight:
            raise ReprocessInProgressError(user_id, day)
        self._in_flight.add(key)
        try:
            yield
        finally:
            self._in_flight.discard(key)
