"""Level thresholds and computation.

This is the one canonical table; every level check in the service goes
through ``resolve_level``.
"""

from __future__ import annotations

LEVEL_THRESHOLDS: list[dict] = [
    {"level": 1, "xp_required": 0},
    {"level": 2, "xp_required": 100},
    {"level": 3, "xp_required": 250},
    {"level": 4, "xp_required": 500},
    {"level": 5, "xp_required": 1000},
    {"level": 6, "xp_required": 2000},
    {"level": 7, "xp_required": 3500},
    {"level": 8, "xp_required": 5000},
    {"level": 9, "xp_required": 7000},
    {"level": 10, "xp_required": 10000},
]

# Level 10 spans 10000-14999; past that every 1000 XP is one level.
OPEN_ENDED_FROM_XP = 15000
XP_PER_OPEN_ENDED_LEVEL = 1000

LEVEL_UP_BONUS_PER_LEVEL = 10


def resolve_level(experience_points: int) -> int:
    """Map accumulated XP to a level number. Total: never raises."""
    xp = max(0, experience_points)
    if xp >= OPEN_ENDED_FROM_XP:
        return xp // XP_PER_OPEN_ENDED_LEVEL + 1

    level = LEVEL_THRESHOLDS[0]["level"]
    for entry in LEVEL_THRESHOLDS:
        if xp >= entry["xp_required"]:
            level = entry["level"]
    return level


def level_threshold(level: int) -> int:
    """Minimum XP for a level (inverse of resolve_level)."""
    for entry in LEVEL_THRESHOLDS:
        if entry["level"] == level:
            return entry["xp_required"]
    if level < 1:
        return 0
    # 11-15 are never resolved: 15000 XP goes straight from level 10 to 16.
    return max(OPEN_ENDED_FROM_XP, (level - 1) * XP_PER_OPEN_ENDED_LEVEL)


def level_up_bonus(new_level: int) -> int:
    """Flat XP bonus granted on reaching ``new_level``."""
    return new_level * LEVEL_UP_BONUS_PER_LEVEL


def level_progress(experience_points: int) -> dict:
    """Progress summary for a user's XP: current level, next level, percentage."""
    xp = max(0, experience_points)
    level = resolve_level(xp)
    next_level = resolve_level(_next_threshold(xp))
    floor_xp = level_threshold(level)
    ceiling_xp = level_threshold(next_level)

    xp_for_level = ceiling_xp - floor_xp
    xp_into_level = xp - floor_xp

    return {
        "level": level,
        "experience_points": xp,
        "level_xp": floor_xp,
        "next_level": next_level,
        "next_level_xp": ceiling_xp,
        "xp_into_level": xp_into_level,
        "xp_for_level": xp_for_level,
        "progress_percentage": round(xp_into_level / xp_for_level * 100, 2),
    }


def _next_threshold(xp: int) -> int:
    for entry in LEVEL_THRESHOLDS:
        if entry["xp_required"] > xp:
            return entry["xp_required"]
    if xp < OPEN_ENDED_FROM_XP:
        return OPEN_ENDED_FROM_XP
    return (xp // XP_PER_OPEN_ENDED_LEVEL + 1) * XP_PER_OPEN_ENDED_LEVEL
