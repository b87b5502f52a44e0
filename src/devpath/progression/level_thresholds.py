"""Level thresholds and computation.

The table is configuration (``Settings.level_thresholds``); ``resolve`` is a
pure function of it and the total XP.
"""

from __future__ import annotations

from bisect import bisect_right
from collections.abc import Sequence
from dataclasses import dataclass

from devpath.config import DEFAULT_LEVEL_THRESHOLDS, LevelThreshold
from devpath.db.models import UserProgress


@dataclass(frozen=True)
class LevelInfo:
    level: int
    title: str
    xp_into_level: int
    xp_for_next_level: int
    next_level: int | None
    next_title: str | None


@dataclass(frozen=True)
class LevelChange:
    level: int
    title: str
    leveled_up: bool
    previous_level: int


def validate_thresholds(thresholds: Sequence[LevelThreshold]) -> None:
    """Raise ValueError unless levels and cumulative XP both strictly increase from 0."""
    if not thresholds:
        raise ValueError("Level table is empty")
    if thresholds[0].cumulative != 0:
        raise ValueError("First level must start at 0 XP")
    for prev, cur in zip(thresholds, thresholds[1:]):
        if cur.cumulative <= prev.cumulative or cur.level <= prev.level:
            raise ValueError(
                f"Level table must strictly increase: level {prev.level} ({prev.cumulative} XP) "
                f"-> level {cur.level} ({cur.cumulative} XP)"
            )


def resolve(total_xp: int, thresholds: Sequence[LevelThreshold] | None = None) -> LevelInfo:
    """Compute level info from total XP.

    Picks the highest level whose threshold is <= total_xp. Totals below the
    first threshold floor to the first level.
    """
    table = thresholds if thresholds is not None else DEFAULT_LEVEL_THRESHOLDS
    cumulative = [t.cumulative for t in table]
    idx = max(bisect_right(cumulative, total_xp) - 1, 0)
    current = table[idx]

    # At max level there is nothing left to earn
    if idx == len(table) - 1:
        return LevelInfo(
            level=current.level,
            title=current.title,
            xp_into_level=max(total_xp - current.cumulative, 0),
            xp_for_next_level=0,
            next_level=None,
            next_title=None,
        )

    nxt = table[idx + 1]
    return LevelInfo(
        level=current.level,
        title=current.title,
        xp_into_level=max(total_xp - current.cumulative, 0),
        xp_for_next_level=nxt.cumulative - max(total_xp, current.cumulative),
        next_level=nxt.level,
        next_title=nxt.title,
    )


def recompute(
    progress: UserProgress,
    thresholds: Sequence[LevelThreshold] | None = None,
) -> LevelChange:
    """Re-derive the cached level from ``progress.total_xp`` and report a level-up."""
    previous = progress.level
    info = resolve(progress.total_xp, thresholds)
    progress.level = info.level
    progress.level_title = info.title
    return LevelChange(
        level=info.level,
        title=info.title,
        leveled_up=info.level > previous,
        previous_level=previous,
    )
