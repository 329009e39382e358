"""Achievement unlocks, including the badge an achievement may carry."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from gamify.db.models import Achievement, UserAchievement
from gamify.progression import ledger, store
from gamify.progression.badge_service import BadgeGrant, grant_badge
from gamify.progression.criteria import achievement_eligible

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AchievementUnlock:
    """An achievement newly unlocked during a cascade."""

    achievement_id: int
    name: str
    experience_reward: int
    badge_grant: BadgeGrant | None = None


class AchievementEvaluator:
    """Unlocks every active achievement whose criteria the user now meets."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db
        self._achievement_cache: list[Achievement] | None = None

    async def _load_achievements(self) -> list[Achievement]:
        if self._achievement_cache is None:
            self._achievement_cache = await store.list_active_achievements(self.db)
        return self._achievement_cache

    async def evaluate_and_unlock(self, user_id: int) -> list[AchievementUnlock]:
        """One pass over the catalog. Returns the achievements unlocked by this pass."""
        achievements = await self._load_achievements()
        unlocked = await store.unlocked_achievement_ids(self.db, user_id)
        state = await store.load_user_state(self.db, user_id)
        activities_completed = await store.count_completed_activities(self.db, user_id)

        results: list[AchievementUnlock] = []
        for achievement in achievements:
            if achievement.id in unlocked:
                continue
            if not achievement_eligible(achievement, state, activities_completed):
                continue

            unlock = await self.unlock(user_id, achievement)
            unlocked.add(achievement.id)
            if unlock is not None:
                results.append(unlock)
                state = await store.load_user_state(self.db, user_id)

        return results

    async def unlock(self, user_id: int, achievement: Achievement) -> AchievementUnlock | None:
        """Unlock one achievement. Returns None if it was already unlocked.

        On unlock:
        1. Insert into user_achievements (UNIQUE(user_id, achievement_id))
        2. Increment users.total_achievements
        3. Add the achievement's XP through the ledger
        4. Grant the bound badge reward, if any, unless already held
        """
        inserted = await store.insert_ignore(
            self.db,
            UserAchievement,
            user_id=user_id,
            achievement_id=achievement.id,
            unlocked_at=store.utcnow(),
        )
        if not inserted:
            logger.debug("Achievement %s already unlocked by user %s", achievement.id, user_id)
            return None

        await store.bump_user(self.db, user_id, achievements=1)
        if achievement.experience_reward:
            await ledger.append(
                self.db, user_id, ledger.ACHIEVEMENT_UNLOCK, achievement.id,
                achievement.experience_reward,
            )

        badge_grant = None
        badge = achievement.badge_reward
        if badge is not None and badge.is_active:
            badge_grant = await grant_badge(self.db, user_id, badge)

        logger.info(
            "Unlocked achievement %r for user %s (+%d XP%s)",
            achievement.name, user_id, achievement.experience_reward,
            f", badge {badge_grant.name!r}" if badge_grant else "",
        )
        return AchievementUnlock(
            achievement_id=achievement.id,
            name=achievement.name,
            experience_reward=achievement.experience_reward,
            badge_grant=badge_grant,
        )
