"""XP -> level math shared by quest difficulty scaling and progress display.

Advancing from level ``L`` to ``L + 1`` costs ``XP_PER_LEVEL * L`` XP, so with
the default of 100 level 2 starts at 100 XP, level 3 at 300 and level 4 at 600.
"""

from __future__ import annotations

import math
from typing import NamedTuple

XP_PER_LEVEL = 100
DIFFICULTY_STEP = 0.1


class LevelInfo(NamedTuple):
    level: int
    progress: float
    xp_into_level: int
    xp_for_next: int


def xp_for_level(level: int) -> int:
    """Total cumulative XP required to reach ``level``."""
    if level <= 1:
        return 0
    return XP_PER_LEVEL * level * (level - 1) // 2


def level_for_xp(xp: int) -> int:
    xp = max(0, int(xp))
    level = (1 + math.isqrt(1 + 4 * (2 * xp // XP_PER_LEVEL))) // 2
    while xp_for_level(level + 1) <= xp:
        level += 1
    while level > 1 and xp_for_level(level) > xp:
        level -= 1
    return max(1, level)


def level_info(xp: int) -> LevelInfo:
    xp = max(0, int(xp))
    level = level_for_xp(xp)
    start = xp_for_level(level)
    needed = xp_for_level(level + 1) - start
    into = xp - start
    return LevelInfo(level=level, progress=into / needed, xp_into_level=into, xp_for_next=needed)


def difficulty_multiplier(level: int) -> float:
    return 1 + DIFFICULTY_STEP * max(0, level - 1)


def scaled_value(base: int, level: int) -> int:
    # Half-up rounding, so 16.5 reps shows as 17.
    return int(math.floor(base * difficulty_multiplier(level) + 0.5))
