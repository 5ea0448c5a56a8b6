"""
Recurring time-of-day patterns.

The index keeps one row per (day, slot, category) contribution in a pandas
DataFrame. Each local day is cut into fixed slots; every block overlapping a
slot adds its category with weight = block confidence x covered share of the
slot. Histograms for a (weekday, slot) are the sum over the days of a
rolling history window.

Unknown blocks and blocks without a category contribute nothing.
"""

import logging
from collections.abc import Mapping
from datetime import date, datetime, time, timedelta
from typing import Protocol
from zoneinfo import ZoneInfo

import pandas as pd

from ..constants import TimeConstants
from ..models import (
    AnomalyReport,
    BlockKind,
    LocationBlock,
    PatternAnomaly,
    PatternConfig,
    PatternPrediction,
    PatternSlot,
)

logger = logging.getLogger(__name__)

CONTRIBUTION_COLUMNS = ["day", "weekday", "slot", "category", "weight"]


class PatternIndexProtocol(Protocol):
    """Protocol for per-user pattern indexes."""

    def observe(self, day: date, blocks: list[LocationBlock]) -> None:
        """Record (or replace) one day's contribution."""
        ...

    def slots(self, weekday: int, as_of: date | None = None) -> dict[int, PatternSlot]:
        """Histograms for a weekday."""
        ...


def slot_bounds(
    day: date, slot: int, slot_minutes: int, tz: ZoneInfo
) -> tuple[datetime, datetime]:
    """Aware [start, end) of a slot on a local day (wall-clock based)."""
    start_minute = slot * slot_minutes
    start = datetime.combine(day, time.min, tzinfo=tz) + timedelta(minutes=start_minute)
    end_minute = start_minute + slot_minutes
    if end_minute >= TimeConstants.MINUTES_PER_DAY:
        end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    else:
        end = start + timedelta(minutes=slot_minutes)
    return start, end


def slot_times(slot: int, slot_minutes: int) -> tuple[time, time]:
    """Local start and end clock times of a slot."""
    start_minute = slot * slot_minutes
    end_minute = start_minute + slot_minutes
    start = time(hour=start_minute // 60, minute=start_minute % 60)
    if end_minute >= TimeConstants.MINUTES_PER_DAY:
        return start, time.max
    return start, time(hour=end_minute // 60, minute=end_minute % 60)


def block_category(block: LocationBlock) -> str | None:
    """Category a block contributes to patterns, if any."""
    if block.kind is BlockKind.UNKNOWN:
        return None
    return block.category


def day_contributions(
    day: date, blocks: list[LocationBlock], config: PatternConfig, tz: ZoneInfo
) -> pd.DataFrame:
    """
    Slot contributions of one local day.

    Args:
        day: Local day
        blocks: The day's blocks
        config: Slot size
        tz: User timezone

    Returns:
        DataFrame with CONTRIBUTION_COLUMNS, one row per (slot, category)
    """
    slot_count = TimeConstants.MINUTES_PER_DAY // config.slot_minutes
    rows = []
    for slot in range(slot_count):
        start, end = slot_bounds(day, slot, config.slot_minutes, tz)
        length = (end - start).total_seconds()
        if length <= 0:
            continue
        weights: dict[str, float] = {}
        for block in blocks:
            category = block_category(block)
            if category is None:
                continue
            overlap = block.overlap_seconds(start, end)
            if overlap <= 0:
                continue
            weights[category] = weights.get(category, 0.0) + block.confidence * overlap / length
        for category, weight in weights.items():
            if weight > 0:
                rows.append((day, day.weekday(), slot, category, weight))
    return pd.DataFrame(rows, columns=CONTRIBUTION_COLUMNS)


def dominant_categories(contributions: pd.DataFrame) -> dict[int, str]:
    """Heaviest category per slot, ties broken alphabetically."""
    if contributions.empty:
        return {}
    ordered = contributions.sort_values(
        ["slot", "weight", "category"], ascending=[True, False, True]
    )
    firsts = ordered.drop_duplicates("slot", keep="first")
    return dict(zip(firsts["slot"].astype(int), firsts["category"]))


class PatternIndex:
    """
    Per-user index of (weekday, slot) category histograms.

    Re-observing a day replaces its earlier rows; days older than the
    history window behind the newest observed day are pruned.
    """

    def __init__(self, user_id: str, config: PatternConfig, tz: ZoneInfo):
        self.user_id = user_id
        self.config = config
        self.tz = tz
        self._contributions = pd.DataFrame(columns=CONTRIBUTION_COLUMNS)
        self.logger = logging.getLogger(__name__)

    @property
    def days(self) -> list[date]:
        """Observed days, oldest first."""
        return sorted(set(self._contributions["day"]))

    @property
    def newest_day(self) -> date | None:
        days = self.days
        return days[-1] if days else None

    def observe(self, day: date, blocks: list[LocationBlock]) -> None:
        """Record one day's blocks, replacing any earlier record of that day."""
        fresh = day_contributions(day, blocks, self.config, self.tz)
        kept = self._contributions[self._contributions["day"] != day]
        frames = [f for f in (kept, fresh) if not f.empty]
        self._contributions = (
            pd.concat(frames, ignore_index=True)
            if frames
            else pd.DataFrame(columns=CONTRIBUTION_COLUMNS)
        )
        self.prune()
        self.logger.debug(
            f"Observed {day} for {self.user_id}: {len(fresh)} slot contributions"
        )

    def prune(self, as_of: date | None = None) -> int:
        """Drop days older than the history window; returns the number of days dropped."""
        as_of = as_of or self.newest_day
        if as_of is None:
            return 0
        cutoff = as_of - timedelta(days=self.config.history_days)
        stale = self._contributions["day"] < cutoff
        dropped = len(set(self._contributions.loc[stale, "day"]))
        if dropped:
            self._contributions = self._contributions[~stale].reset_index(drop=True)
        return dropped

    def history(self, as_of: date | None = None) -> pd.DataFrame:
        """
        Contributions inside the history window.

        With as_of, the window is [as_of - history_days, as_of) so a day is
        never compared with itself; without it, every retained day is used.
        """
        df = self._contributions
        if as_of is None:
            return df
        start = as_of - timedelta(days=self.config.history_days)
        return df[(df["day"] >= start) & (df["day"] < as_of)]

    def slots(self, weekday: int, as_of: date | None = None) -> dict[int, PatternSlot]:
        """Histograms of every observed slot of a weekday."""
        df = self.history(as_of)
        df = df[df["weekday"] == weekday]
        if df.empty:
            return {}

        weights = df.groupby(["slot", "category"])["weight"].sum()
        counts = df.groupby("slot")["day"].nunique()

        result: dict[int, PatternSlot] = {}
        for slot, count in counts.items():
            histogram = {
                str(category): float(weight)
                for category, weight in weights.loc[slot].items()
            }
            result[int(slot)] = PatternSlot(
                weekday=weekday,
                slot=int(slot),
                histogram=histogram,
                sample_count=int(count),
            )
        return result


def build_index(
    user_id: str,
    history: Mapping[date, list[LocationBlock]],
    config: PatternConfig,
    tz: ZoneInfo,
) -> PatternIndex:
    """Fold a history of daily blocks into a fresh index."""
    index = PatternIndex(user_id, config, tz)
    for day in sorted(history):
        index.observe(day, history[day])
    return index


def anomalies_for_day(
    index: PatternIndex,
    day: date,
    blocks: list[LocationBlock],
    min_confidence: float | None = None,
) -> AnomalyReport:
    """
    Compare a day with its weekday's history.

    A slot is evaluated when its historical mode has confidence of at least
    min_confidence and the day has an observed category there. The score is
    the share of evaluated slots whose category differs from the mode.
    """
    threshold = index.config.min_confidence if min_confidence is None else min_confidence
    weekday = day.weekday()
    history = index.slots(weekday, as_of=day)
    actual = dominant_categories(day_contributions(day, blocks, index.config, index.tz))

    anomalies = []
    evaluated = 0
    for slot in sorted(history):
        pattern = history[slot]
        expected = pattern.mode_category
        observed = actual.get(slot)
        if expected is None or observed is None:
            continue
        if pattern.mode_confidence < threshold:
            continue
        evaluated += 1
        if observed != expected:
            anomalies.append(
                PatternAnomaly(
                    weekday=weekday,
                    slot=slot,
                    slot_start=slot_times(slot, index.config.slot_minutes)[0],
                    expected_category=expected,
                    actual_category=observed,
                    confidence=round(pattern.mode_confidence, 4),
                )
            )

    score = len(anomalies) / evaluated if evaluated else 0.0
    logger.debug(
        f"Anomalies for {index.user_id} on {day}: "
        f"{len(anomalies)}/{evaluated} slots diverge"
    )
    return AnomalyReport(
        user_id=index.user_id,
        day=day,
        anomalies=anomalies,
        slots_evaluated=evaluated,
        score=round(score, 4),
    )


def predictions_for_day(
    index: PatternIndex,
    day: date,
    min_confidence: float | None = None,
) -> list[PatternPrediction]:
    """Mode category of every confident slot of the day's weekday, by slot."""
    threshold = index.config.min_confidence if min_confidence is None else min_confidence
    predictions = []
    for slot, pattern in sorted(index.slots(day.weekday()).items()):
        category = pattern.mode_category
        if category is None or pattern.mode_confidence < threshold:
            continue
        start, end = slot_times(slot, index.config.slot_minutes)
        predictions.append(
            PatternPrediction(
                day=day,
                slot=slot,
                start=start,
                end=end,
                category=category,
                confidence=round(pattern.mode_confidence, 4),
            )
        )
    return predictions
