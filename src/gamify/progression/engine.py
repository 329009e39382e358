"""Reward cascade orchestrator.

``RewardEngine.apply_trigger`` is the single transition function for a
user's progression state (XP, level, badges, achievements). Everything it
does runs in one database transaction:

1. Lock the user row, then apply the primary XP delta through the ledger.
2. Grant any badges the trigger itself carries.
3. Repeat until a pass grants nothing:
   a. resolve the level; for each level gained, grant the level's catalog
      badge and add the level-up bonus through the ledger
   b. run the badge evaluator
   c. run the achievement evaluator
4. Commit and return a ``RewardOutcome`` for the caller to publish.

The loop terminates because every grant happens at most once per user and
levels only go up.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from gamify.db.models import Badge
from gamify.errors import ProgressionError, StorageError, ValidationError
from gamify.progression import ledger, store
from gamify.progression.achievement_service import AchievementEvaluator, AchievementUnlock
from gamify.progression.badge_service import BadgeEvaluator, BadgeGrant, grant_badge
from gamify.progression.events import (
    ACHIEVEMENT_UNLOCKED,
    BADGE_AWARDED,
    LEVEL_UP,
    XP_GAINED,
    RewardEvent,
)
from gamify.progression.levels import level_up_bonus, resolve_level

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LevelUp:
    previous_level: int
    new_level: int
    bonus_xp: int
    badge_grants: tuple[BadgeGrant, ...] = ()


@dataclass
class RewardOutcome:
    """Result of one trigger: the final user state plus everything granted."""

    user_id: int
    activity_type: str
    activity_id: int | None
    previous_xp: int
    new_xp: int
    previous_level: int
    new_level: int
    total_badges: int
    total_achievements: int
    granted_badges: list[BadgeGrant] = field(default_factory=list)
    unlocked_achievements: list[AchievementUnlock] = field(default_factory=list)
    level_ups: list[LevelUp] = field(default_factory=list)
    already_completed: bool = False
    completed_at: datetime | None = None
    steps: list[BadgeGrant | AchievementUnlock | LevelUp] = field(default_factory=list)

    @property
    def xp_gained(self) -> int:
        return self.new_xp - self.previous_xp

    def record(self, step: BadgeGrant | AchievementUnlock | LevelUp) -> None:
        """Add a grant, unlock or level-up in the order the cascade made it."""
        if isinstance(step, BadgeGrant):
            self.granted_badges.append(step)
        elif isinstance(step, AchievementUnlock):
            self.unlocked_achievements.append(step)
        else:
            self.level_ups.append(step)
        self.steps.append(step)

    def events(self) -> list[RewardEvent]:
        """Notification events for an external dispatcher.

        The XP summary comes first, then one event per step in the order the
        cascade took it. Events describe only what this call changed, so an
        outcome that changed nothing has none, whatever ``already_completed``
        says.
        """
        events: list[RewardEvent] = []
        if self.xp_gained > 0:
            events.append(RewardEvent(XP_GAINED, self.user_id, {
                "type": self.activity_type,
                "activity_id": self.activity_id,
                "amount": self.xp_gained,
                "total_xp": self.new_xp,
            }))
        for step in self.steps:
            if isinstance(step, BadgeGrant):
                events.append(RewardEvent(BADGE_AWARDED, self.user_id, {
                    "badge_id": step.badge_id,
                    "name": step.name,
                    "rarity": step.rarity,
                    "experience_gained": step.experience_reward,
                    "awarded_by": step.awarded_by,
                }))
            elif isinstance(step, AchievementUnlock):
                events.append(RewardEvent(ACHIEVEMENT_UNLOCKED, self.user_id, {
                    "achievement_id": step.achievement_id,
                    "name": step.name,
                    "experience_gained": step.experience_reward,
                    "badge_id": step.badge_grant.badge_id if step.badge_grant else None,
                }))
            else:
                events.append(RewardEvent(LEVEL_UP, self.user_id, {
                    "previous_level": step.previous_level,
                    "new_level": step.new_level,
                    "bonus_xp": step.bonus_xp,
                }))
        return events


class RewardEngine:
    """Applies triggers to a user's progression state inside one transaction.

    The session passed in is the transaction handle; the engine keeps no
    state between calls beyond a per-instance catalog cache.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db
        self.badges = BadgeEvaluator(db)
        self.achievements = AchievementEvaluator(db)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Commit on success; roll back everything on any error."""
        try:
            yield
            await self.db.commit()
        except ProgressionError:
            await self.db.rollback()
            raise
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.exception("Reward transaction failed")
            raise StorageError("Reward transaction failed; nothing was committed") from exc
        except BaseException:
            await self.db.rollback()
            raise

    async def apply_trigger(
        self,
        user_id: int,
        activity_type: str,
        activity_id: int | None = None,
        xp_delta: int = 0,
    ) -> RewardOutcome:
        """Apply a trigger and its full cascade atomically."""
        validate_trigger(activity_type, xp_delta)
        async with self.transaction():
            return await self.cascade(user_id, activity_type, activity_id, xp_delta)

    async def cascade(
        self,
        user_id: int,
        activity_type: str,
        activity_id: int | None,
        xp_delta: int,
        *,
        badges: Sequence[Badge] = (),
        awarded_by: int | None = None,
    ) -> RewardOutcome:
        """Run the cascade in the caller's transaction (see ``transaction``).

        The user row is locked before anything is written, so every trigger
        for one user takes its locks in the same order.
        """
        before = await store.lock_user_state(self.db, user_id)
        outcome = RewardOutcome(
            user_id=user_id,
            activity_type=activity_type,
            activity_id=activity_id,
            previous_xp=before.experience_points,
            new_xp=before.experience_points,
            previous_level=before.current_level,
            new_level=before.current_level,
            total_badges=before.total_badges,
            total_achievements=before.total_achievements,
        )

        if xp_delta:
            await ledger.append(self.db, user_id, activity_type, activity_id, xp_delta)

        for badge in badges:
            grant = await grant_badge(
                self.db, user_id, badge, source=ledger.BADGE_AWARD, awarded_by=awarded_by,
            )
            if grant is not None:
                outcome.record(grant)

        passes = 0
        while True:
            passes += 1
            progressed = await self._settle_level(user_id, outcome)

            badge_grants = await self.badges.evaluate_and_award(user_id)
            for grant in badge_grants:
                outcome.record(grant)

            unlocks = await self.achievements.evaluate_and_unlock(user_id)
            for unlock in unlocks:
                outcome.record(unlock)
                if unlock.badge_grant:
                    outcome.record(unlock.badge_grant)

            if not (progressed or badge_grants or unlocks):
                break

        after = await store.load_user_state(self.db, user_id)
        outcome.new_xp = after.experience_points
        outcome.new_level = after.current_level
        outcome.total_badges = after.total_badges
        outcome.total_achievements = after.total_achievements

        logger.info(
            "Trigger %s for user %s: XP %d -> %d, level %d -> %d, "
            "%d badge(s), %d achievement(s), %d pass(es)",
            activity_type, user_id, outcome.previous_xp, outcome.new_xp,
            outcome.previous_level, outcome.new_level,
            len(outcome.granted_badges), len(outcome.unlocked_achievements), passes,
        )
        return outcome

    async def snapshot(
        self,
        user_id: int,
        activity_type: str,
        activity_id: int | None = None,
        *,
        already_completed: bool = False,
        completed_at: datetime | None = None,
    ) -> RewardOutcome:
        """An outcome with no changes, describing the user's current state."""
        state = await store.load_user_state(self.db, user_id)
        return RewardOutcome(
            user_id=user_id,
            activity_type=activity_type,
            activity_id=activity_id,
            previous_xp=state.experience_points,
            new_xp=state.experience_points,
            previous_level=state.current_level,
            new_level=state.current_level,
            total_badges=state.total_badges,
            total_achievements=state.total_achievements,
            already_completed=already_completed,
            completed_at=completed_at,
        )

    async def _settle_level(self, user_id: int, outcome: RewardOutcome) -> bool:
        """Raise current_level to match XP. Returns True if the level changed.

        Every level passed gets its catalog badge and its bonus, so a jump
        from 1 to 3 rewards levels 2 and 3.
        """
        state = await store.load_user_state(self.db, user_id)
        target = resolve_level(state.experience_points)
        if target <= state.current_level:
            return False

        previous = state.current_level
        await store.raise_level(self.db, user_id, target)

        bonus_total = 0
        level_badges: list[BadgeGrant] = []
        for level_number in range(previous + 1, target + 1):
            entry = await store.get_level_entry(self.db, level_number)
            badge = entry.badge_reward if entry else None
            if badge is not None and badge.is_active:
                grant = await grant_badge(
                    self.db, user_id, badge, source=ledger.LEVEL_BADGE_AWARD,
                )
                if grant is not None:
                    level_badges.append(grant)

            bonus = level_up_bonus(level_number)
            await ledger.append(
                self.db, user_id, ledger.LEVEL_UP, level_number, bonus,
                previous_level=level_number - 1, new_level=level_number,
            )
            bonus_total += bonus

        outcome.record(LevelUp(
            previous_level=previous,
            new_level=target,
            bonus_xp=bonus_total,
            badge_grants=tuple(level_badges),
        ))
        for grant in level_badges:
            outcome.record(grant)
        logger.info("User %s levelled up %d -> %d (+%d XP bonus)", user_id, previous, target, bonus_total)
        return True


def validate_trigger(activity_type: str, xp_delta: int) -> None:
    """Reject trigger input the engine cannot apply."""
    if activity_type not in ledger.TRIGGER_TYPES:
        raise ValidationError(f"Unknown trigger activity type: {activity_type!r}")
    if not isinstance(xp_delta, int) or isinstance(xp_delta, bool):
        raise ValidationError("xp_delta must be an integer")
    if xp_delta < 0:
        raise ValidationError("xp_delta must not be negative")
