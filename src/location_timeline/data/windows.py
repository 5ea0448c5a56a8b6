"""
Splitting a day's location fixes into candidate windows.

Windows are proposed with a stay-point sweep:
1. Starting at fix i, extend while fixes stay within the stay radius of fix i
   and consecutive fixes are no further apart than the maximum sample gap.
2. If that run lasts at least the minimum dwell it becomes a "stay" window.
3. Otherwise fix i joins the current "move" window.

Move windows borrow the boundary fixes of the neighbouring stays so that
segments built from them touch instead of leaving sampling-interval gaps.
The movement classifier has the final word on every window's label.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Protocol
from zoneinfo import ZoneInfo

import pandas as pd

from ..metrics.base import samples_to_frame
from ..metrics.geo import haversine_m
from ..models import MovementClassification, RawSample
from ..settings import Settings

logger = logging.getLogger(__name__)

STAY = "stay"
MOVE = "move"


def local_day_bounds(day: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """UTC-aware bounds [start, end) of a local calendar day."""
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start, end


@dataclass
class SampleWindow:
    """An ordered run of location fixes proposed as one segment."""

    samples: list[RawSample]
    hint: str = MOVE

    @property
    def start(self) -> datetime:
        return self.samples[0].timestamp

    @property
    def end(self) -> datetime:
        return self.samples[-1].timestamp

    @property
    def duration_seconds(self) -> float:
        return (self.end - self.start).total_seconds()

    def frame(self) -> pd.DataFrame:
        """The window's fixes as a DataFrame."""
        return samples_to_frame(self.samples)


@dataclass
class ClassifiedWindow:
    """A window together with its movement classification."""

    window: SampleWindow
    classification: MovementClassification
    folded: list[SampleWindow] = field(default_factory=list)

    @property
    def start(self) -> datetime:
        return self.window.start

    @property
    def end(self) -> datetime:
        return self.window.end

    @property
    def duration_seconds(self) -> float:
        return self.window.duration_seconds


class WindowSplitterProtocol(Protocol):
    """Protocol for window splitters."""

    def split(self, samples: list[RawSample]) -> list[SampleWindow]:
        """Split time-ordered fixes into candidate windows."""
        ...


class WindowSplitter:
    """Proposes stay and move windows from a day's location fixes."""

    def __init__(self, settings: Settings):
        """
        Initialize the splitter.

        Args:
            settings: Application settings with window and accuracy thresholds
        """
        self.settings = settings
        self.logger = logging.getLogger(__name__)

    def split(self, samples: list[RawSample]) -> list[SampleWindow]:
        """
        Split fixes into candidate windows.

        Args:
            samples: Raw samples of any source; only accurate fixes are used

        Returns:
            Windows in time order
        """
        fixes = self._usable_fixes(samples)
        if not fixes:
            self.logger.debug("No usable fixes to split")
            return []

        cfg = self.settings.windows
        windows: list[SampleWindow] = []
        moving: list[RawSample] = []
        i = 0
        while i < len(fixes):
            j = self._extend_stay(fixes, i)
            dwell = (fixes[j].timestamp - fixes[i].timestamp).total_seconds()
            if j > i and dwell >= cfg.min_dwell_s:
                stay = fixes[i : j + 1]
                self._flush_moving(windows, moving, next_fix=stay[0])
                windows.append(SampleWindow(samples=stay, hint=STAY))
                moving = []
                i = j + 1
            else:
                moving.append(fixes[i])
                i += 1
        self._flush_moving(windows, moving, next_fix=None)

        self.logger.debug(
            f"Split {len(fixes)} fixes into {len(windows)} windows "
            f"({sum(w.hint == STAY for w in windows)} stays)"
        )
        return windows

    def _usable_fixes(self, samples: list[RawSample]) -> list[RawSample]:
        """Location fixes within the accuracy limit, deduplicated and sorted."""
        limit = self.settings.movement.max_accuracy_m
        seen: set[str] = set()
        fixes = []
        for sample in sorted(samples, key=lambda s: s.timestamp):
            if not sample.has_position or sample.dedupe_key in seen:
                continue
            if sample.accuracy_m is not None and sample.accuracy_m > limit:
                continue
            seen.add(sample.dedupe_key)
            fixes.append(sample)
        return fixes

    def _extend_stay(self, fixes: list[RawSample], i: int) -> int:
        """Index of the last fix of the stay run starting at i."""
        cfg = self.settings.windows
        anchor = fixes[i]
        j = i
        while j + 1 < len(fixes):
            nxt = fixes[j + 1]
            gap = (nxt.timestamp - fixes[j].timestamp).total_seconds()
            if gap > cfg.max_sample_gap_s:
                break
            distance = haversine_m(
                anchor.latitude, anchor.longitude, nxt.latitude, nxt.longitude
            )
            if distance > cfg.stay_radius_m:
                break
            j += 1
        return j

    def _flush_moving(
        self,
        windows: list[SampleWindow],
        moving: list[RawSample],
        next_fix: RawSample | None,
    ) -> None:
        """Close the pending move run, splitting it at large gaps."""
        max_gap = self.settings.windows.max_sample_gap_s
        run = list(moving)

        # Borrow boundary fixes from adjacent stays
        if windows and windows[-1].hint == STAY and run:
            prev_fix = windows[-1].samples[-1]
            if (run[0].timestamp - prev_fix.timestamp).total_seconds() <= max_gap:
                run.insert(0, prev_fix)
        if next_fix is not None and run:
            if (next_fix.timestamp - run[-1].timestamp).total_seconds() <= max_gap:
                run.append(next_fix)

        if len(run) < 2:
            return

        current = [run[0]]
        for sample in run[1:]:
            if (sample.timestamp - current[-1].timestamp).total_seconds() > max_gap:
                self._append_move(windows, current)
                current = []
            current.append(sample)
        self._append_move(windows, current)

    def _append_move(self, windows: list[SampleWindow], run: list[RawSample]) -> None:
        """Append a move window if it spans any time."""
        if len(run) >= 2 and run[-1].timestamp > run[0].timestamp:
            windows.append(SampleWindow(samples=list(run), hint=MOVE))


def seconds_in_daily_window(
    start: datetime,
    end: datetime,
    from_hour: int,
    to_hour: int,
    weekdays_only: bool = False,
) -> float:
    """
    Seconds of [start, end) inside a window that recurs every local day.

    Hours are read in start's timezone. The window wraps midnight when
    from_hour > to_hour (e.g. 22 to 7); weekdays_only keeps only windows
    that open Monday to Friday.
    """
    tz = start.tzinfo
    end = end.astimezone(tz)
    length = timedelta(hours=(to_hour - from_hour) % 24 or 24)
    total = 0.0
    day = start.date() - timedelta(days=1)
    while day <= end.date():
        window_start = datetime.combine(day, time(hour=from_hour), tzinfo=tz)
        window_end = window_start + length
        if not weekdays_only or window_start.weekday() < 5:
            overlap = (min(end, window_end) - max(start, window_start)).total_seconds()
            total += max(0.0, overlap)
        day += timedelta(days=1)
    return total
