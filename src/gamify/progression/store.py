"""Data access for the reward cascade.

Every function takes the caller's ``AsyncSession``; the session's open
transaction is the unit of atomicity. Counters are changed with single
``UPDATE ... SET x = x + n`` statements so concurrent triggers for the same
user never lose an increment, and grant rows are written with
``INSERT ... ON CONFLICT DO NOTHING`` so the UNIQUE constraint alone decides
who wins a race.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from gamify.db.models import (
    Achievement,
    Activity,
    Badge,
    ExperienceLog,
    Level,
    User,
    UserAchievement,
    UserActivity,
    UserBadge,
)
from gamify.errors import NotFoundError, StorageError

logger = logging.getLogger(__name__)

_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class UserState:
    """The engine-owned part of a user row, read fresh from the database."""

    user_id: int
    experience_points: int
    current_level: int
    total_badges: int
    total_achievements: int


_STATE_COLUMNS = (
    User.id,
    User.experience_points,
    User.current_level,
    User.total_badges,
    User.total_achievements,
)


def _to_state(row: Any) -> UserState:
    return UserState(
        user_id=row.id,
        experience_points=row.experience_points,
        current_level=row.current_level,
        total_badges=row.total_badges,
        total_achievements=row.total_achievements,
    )


# ---------------------------------------------------------------------------
# User aggregate
# ---------------------------------------------------------------------------


async def load_user_state(db: AsyncSession, user_id: int) -> UserState:
    """Read the user's XP, level and counters. Raises NotFoundError."""
    result = await db.execute(select(*_STATE_COLUMNS).where(User.id == user_id))
    row = result.one_or_none()
    if row is None:
        raise NotFoundError(f"User {user_id} not found")
    return _to_state(row)


async def lock_user_state(db: AsyncSession, user_id: int) -> UserState:
    """Like ``load_user_state`` but holds the row lock until the transaction ends."""
    result = await db.execute(
        select(*_STATE_COLUMNS).where(User.id == user_id).with_for_update()
    )
    row = result.one_or_none()
    if row is None:
        raise NotFoundError(f"User {user_id} not found")
    return _to_state(row)


async def get_active_user(db: AsyncSession, user_id: int, *, lock: bool = False) -> User:
    """Fetch a user that may receive rewards. Raises NotFoundError.

    Triggers pass ``lock=True`` before writing any grant or receipt row.
    Those rows reference the user, and taking the user lock first keeps the
    lock order the same for every trigger.
    """
    stmt = select(User).where(User.id == user_id, User.is_active.is_(True))
    if lock:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFoundError(f"User {user_id} not found or inactive")
    return user


async def bump_user(
    db: AsyncSession,
    user_id: int,
    *,
    xp: int = 0,
    badges: int = 0,
    achievements: int = 0,
) -> UserState:
    """Atomically add to the user's XP and counters; returns the new state."""
    result = await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(
            experience_points=User.experience_points + xp,
            total_badges=User.total_badges + badges,
            total_achievements=User.total_achievements + achievements,
            updated_at=utcnow(),
        )
        .returning(*_STATE_COLUMNS)
    )
    row = result.one_or_none()
    if row is None:
        raise NotFoundError(f"User {user_id} not found")
    return _to_state(row)


async def raise_level(db: AsyncSession, user_id: int, level: int) -> UserState:
    """Set current_level to ``level`` unless it is already at or above it."""
    await db.execute(
        update(User)
        .where(User.id == user_id, User.current_level < level)
        .values(current_level=level, updated_at=utcnow())
    )
    return await load_user_state(db, user_id)


# ---------------------------------------------------------------------------
# Idempotent inserts
# ---------------------------------------------------------------------------


async def insert_ignore(db: AsyncSession, model: type, **values: Any) -> bool:
    """Insert a row unless it collides with a unique constraint.

    Returns True if this call created the row, False if one already existed
    (including a row committed by a concurrent transaction).
    """
    dialect = db.get_bind().dialect.name
    insert = _INSERTS.get(dialect)
    if insert is None:
        raise StorageError(f"Unsupported database dialect: {dialect}")

    stmt = (
        insert(model)
        .values(**values)
        .on_conflict_do_nothing()
        .returning(model.id)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none() is not None


# ---------------------------------------------------------------------------
# Catalog reads
# ---------------------------------------------------------------------------


async def get_badge(db: AsyncSession, badge_id: int) -> Badge:
    badge = await db.get(Badge, badge_id)
    if badge is None:
        raise NotFoundError(f"Badge {badge_id} not found")
    return badge


async def find_active_badge_by_name(db: AsyncSession, name: str) -> Badge | None:
    result = await db.execute(
        select(Badge).where(Badge.name == name, Badge.is_active.is_(True))
    )
    return result.scalar_one_or_none()


async def list_active_badges(db: AsyncSession) -> list[Badge]:
    result = await db.execute(
        select(Badge).where(Badge.is_active.is_(True)).order_by(Badge.id)
    )
    return list(result.scalars().all())


async def list_active_achievements(db: AsyncSession) -> list[Achievement]:
    result = await db.execute(
        select(Achievement).where(Achievement.is_active.is_(True)).order_by(Achievement.id)
    )
    return list(result.scalars().unique().all())


async def get_level_entry(db: AsyncSession, level_number: int) -> Level | None:
    result = await db.execute(select(Level).where(Level.level_number == level_number))
    return result.scalars().unique().one_or_none()


async def get_active_activity(db: AsyncSession, activity_id: int) -> Activity:
    result = await db.execute(
        select(Activity).where(Activity.id == activity_id, Activity.is_active.is_(True))
    )
    activity = result.scalars().unique().one_or_none()
    if activity is None:
        raise NotFoundError(f"Activity {activity_id} not found or inactive")
    return activity


# ---------------------------------------------------------------------------
# Grant and completion reads
# ---------------------------------------------------------------------------


async def owned_badge_ids(db: AsyncSession, user_id: int) -> set[int]:
    result = await db.execute(select(UserBadge.badge_id).where(UserBadge.user_id == user_id))
    return set(result.scalars().all())


async def unlocked_achievement_ids(db: AsyncSession, user_id: int) -> set[int]:
    result = await db.execute(
        select(UserAchievement.achievement_id).where(UserAchievement.user_id == user_id)
    )
    return set(result.scalars().all())


async def list_user_badges(db: AsyncSession, user_id: int) -> list[tuple[UserBadge, Badge]]:
    """Badges the user holds with their catalog entries, newest first."""
    result = await db.execute(
        select(UserBadge, Badge)
        .join(Badge, Badge.id == UserBadge.badge_id)
        .where(UserBadge.user_id == user_id)
        .order_by(UserBadge.awarded_at.desc(), UserBadge.id.desc())
    )
    return [(row.UserBadge, row.Badge) for row in result.unique().all()]


async def list_user_achievements(
    db: AsyncSession, user_id: int,
) -> list[tuple[UserAchievement, Achievement]]:
    """Achievements the user unlocked with their catalog entries, newest first."""
    result = await db.execute(
        select(UserAchievement, Achievement)
        .join(Achievement, Achievement.id == UserAchievement.achievement_id)
        .where(UserAchievement.user_id == user_id)
        .order_by(UserAchievement.unlocked_at.desc(), UserAchievement.id.desc())
    )
    return [(row.UserAchievement, row.Achievement) for row in result.unique().all()]


async def count_completed_activities(db: AsyncSession, user_id: int) -> int:
    """Number of distinct activities the user has completed."""
    result = await db.execute(
        select(func.count(UserActivity.id)).where(UserActivity.user_id == user_id)
    )
    return result.scalar() or 0


async def get_completion(db: AsyncSession, user_id: int, activity_id: int) -> UserActivity | None:
    result = await db.execute(
        select(UserActivity).where(
            UserActivity.user_id == user_id,
            UserActivity.activity_id == activity_id,
        )
    )
    return result.scalar_one_or_none()


async def record_repeat_completion(
    db: AsyncSession,
    user_id: int,
    activity_id: int,
    experience: int,
) -> None:
    """Count another completion of a repeatable activity."""
    await db.execute(
        update(UserActivity)
        .where(
            UserActivity.user_id == user_id,
            UserActivity.activity_id == activity_id,
        )
        .values(
            completion_count=UserActivity.completion_count + 1,
            experience_gained=UserActivity.experience_gained + experience,
            last_completed_at=utcnow(),
        )
    )


# ---------------------------------------------------------------------------
# Invariant checks
# ---------------------------------------------------------------------------


async def consistency_report(db: AsyncSession, user_id: int) -> dict:
    """Compare denormalized user fields with the rows they summarize."""
    state = await load_user_state(db, user_id)

    ledger_sum = (
        await db.execute(
            select(func.coalesce(func.sum(ExperienceLog.experience_change), 0)).where(
                ExperienceLog.user_id == user_id
            )
        )
    ).scalar()
    badge_rows = (
        await db.execute(select(func.count(UserBadge.id)).where(UserBadge.user_id == user_id))
    ).scalar()
    achievement_rows = (
        await db.execute(
            select(func.count(UserAchievement.id)).where(UserAchievement.user_id == user_id)
        )
    ).scalar()

    return {
        "user_id": user_id,
        "experience_points": state.experience_points,
        "ledger_sum": ledger_sum,
        "total_badges": state.total_badges,
        "badge_rows": badge_rows,
        "total_achievements": state.total_achievements,
        "achievement_rows": achievement_rows,
        "consistent": (
            state.experience_points == ledger_sum
            and state.total_badges == badge_rows
            and state.total_achievements == achievement_rows
        ),
    }
