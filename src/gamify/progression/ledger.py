"""Experience ledger: append-only XP log kept in step with users.experience_points."""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from gamify.db.models import ExperienceLog
from gamify.progression.levels import resolve_level
from gamify.progression.store import UserState, bump_user, utcnow

logger = logging.getLogger(__name__)

# Activity types (ExperienceLog.activity_type taxonomy)
REGISTRATION = "registration"
LOGIN = "login"
ACTIVITY_COMPLETION = "activity_completion"
BADGE_AWARD = "badge_award"
ACHIEVEMENT_UNLOCK = "achievement_unlock"
LEVEL_UP = "level_up"
LEVEL_BADGE_AWARD = "level_badge_award"
PROFILE_COMPLETION = "profile_completion"

# Types an external trigger may start a cascade with; the rest are derived.
TRIGGER_TYPES = frozenset({
    REGISTRATION,
    LOGIN,
    ACTIVITY_COMPLETION,
    BADGE_AWARD,
    PROFILE_COMPLETION,
})

ACTIVITY_TYPES = TRIGGER_TYPES | {ACHIEVEMENT_UNLOCK, LEVEL_UP, LEVEL_BADGE_AWARD}


async def append(
    db: AsyncSession,
    user_id: int,
    activity_type: str,
    activity_id: int | None,
    delta: int,
    previous_level: int | None = None,
    new_level: int | None = None,
) -> UserState:
    """Write one ledger row and add ``delta`` to the user's XP.

    Both writes happen in the caller's transaction. When the levels are not
    given they are derived: previous is the stored level, new is what the
    resulting XP resolves to (never below the stored level).
    """
    state = await bump_user(db, user_id, xp=delta)

    if previous_level is None:
        previous_level = state.current_level
    if new_level is None:
        new_level = max(state.current_level, resolve_level(state.experience_points))

    db.add(ExperienceLog(
        user_id=user_id,
        activity_type=activity_type,
        activity_id=activity_id,
        experience_change=delta,
        previous_level=previous_level,
        new_level=new_level,
        created_at=utcnow(),
    ))
    await db.flush()

    logger.debug(
        "Ledger +%d XP for user %s (%s:%s) -> %d",
        delta, user_id, activity_type, activity_id, state.experience_points,
    )
    return state


async def history(
    db: AsyncSession,
    user_id: int,
    limit: int = 50,
    offset: int = 0,
    activity_type: str | None = None,
) -> tuple[list[ExperienceLog], int]:
    """Return a page of ledger rows (newest first) and the total row count."""
    where = [ExperienceLog.user_id == user_id]
    if activity_type:
        where.append(ExperienceLog.activity_type == activity_type)

    total = (
        await db.execute(select(func.count(ExperienceLog.id)).where(*where))
    ).scalar() or 0

    result = await db.execute(
        select(ExperienceLog)
        .where(*where)
        .order_by(ExperienceLog.created_at.desc(), ExperienceLog.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all()), total


async def experience_stats(db: AsyncSession, user_id: int) -> dict:
    """Totals per activity type for one user."""
    result = await db.execute(
        select(
            ExperienceLog.activity_type,
            func.sum(ExperienceLog.experience_change),
            func.count(ExperienceLog.id),
        )
        .where(ExperienceLog.user_id == user_id)
        .group_by(ExperienceLog.activity_type)
        .order_by(ExperienceLog.activity_type)
    )
    by_type = {
        activity_type: {"experience": int(total or 0), "count": count}
        for activity_type, total, count in result.all()
    }
    return {
        "total_experience": sum(v["experience"] for v in by_type.values()),
        "log_count": sum(v["count"] for v in by_type.values()),
        "by_activity_type": by_type,
    }
