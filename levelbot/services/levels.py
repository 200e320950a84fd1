# levelbot/services/levels.py
from __future__ import annotations

import math
from dataclasses import dataclass

# XP needed per "step" of the quadratic curve: level n starts at (n-1)^2 * XP_STEP
XP_STEP = 100


def level_for_xp(xp: int) -> int:
    """floor(sqrt(xp / 100)) + 1, computed with integers so big totals stay exact."""
    if xp < 0:
        raise ValueError(f"xp must be non-negative, got {xp}")
    return math.isqrt(int(xp) // XP_STEP) + 1


def xp_for_level(level: int) -> int:
    """Total XP at which `level` is reached. xp_for_level(1) == 0."""
    if level < 1:
        raise ValueError(f"level must be >= 1, got {level}")
    return (int(level) - 1) ** 2 * XP_STEP


@dataclass(frozen=True)
class LevelProgress:
    level: int
    into_level: int   # XP earned since the current level started
    span: int         # XP between the current level and the next
    percent: int

    @property
    def remaining(self) -> int:
        return self.span - self.into_level


def progress(xp: int) -> LevelProgress:
    level = level_for_xp(xp)
    start = xp_for_level(level)
    span = xp_for_level(level + 1) - start
    into = xp - start
    return LevelProgress(level=level, into_level=into, span=span, percent=round(into * 100 / span))


def progress_bar(percent: int, length: int = 20) -> str:
    percent = max(0, min(100, int(percent)))
    filled = round(percent / 100 * length)
    return "█" * filled + "░" * (length - filled)
