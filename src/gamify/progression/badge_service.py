"""Badge grants with duplicate prevention, and the criteria-driven badge evaluator."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from gamify.db.models import Badge, UserBadge
from gamify.progression import ledger, store
from gamify.progression.criteria import badge_eligible

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BadgeGrant:
    """A badge newly granted during a cascade."""

    badge_id: int
    name: str
    rarity: str
    experience_reward: int
    source: str
    awarded_by: int | None = None


async def grant_badge(
    db: AsyncSession,
    user_id: int,
    badge: Badge,
    *,
    source: str = ledger.BADGE_AWARD,
    awarded_by: int | None = None,
) -> BadgeGrant | None:
    """Grant a badge if the user does not hold it yet.

    Returns the grant, or None if a user_badges row already existed. The
    UNIQUE(user_id, badge_id) constraint decides: a concurrent grant that
    commits first turns this call into a no-op.

    On grant:
    1. Insert into user_badges
    2. Increment users.total_badges
    3. Add the badge's XP through the ledger, tagged ``source``
    """
    inserted = await store.insert_ignore(
        db,
        UserBadge,
        user_id=user_id,
        badge_id=badge.id,
        awarded_by=awarded_by,
        awarded_at=store.utcnow(),
    )
    if not inserted:
        logger.debug("Badge %s already held by user %s", badge.id, user_id)
        return None

    await store.bump_user(db, user_id, badges=1)
    if badge.experience_reward:
        await ledger.append(db, user_id, source, badge.id, badge.experience_reward)

    logger.info(
        "Granted badge %r to user %s (+%d XP, %s)",
        badge.name, user_id, badge.experience_reward, source,
    )
    return BadgeGrant(
        badge_id=badge.id,
        name=badge.name,
        rarity=badge.rarity,
        experience_reward=badge.experience_reward,
        source=source,
        awarded_by=awarded_by,
    )


class BadgeEvaluator:
    """Grants every active badge whose criteria the user now meets."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db
        self._badge_cache: list[Badge] | None = None

    async def _load_badges(self) -> list[Badge]:
        """Load and cache active badge definitions for this cascade."""
        if self._badge_cache is None:
            self._badge_cache = await store.list_active_badges(self.db)
        return self._badge_cache

    async def evaluate_and_award(self, user_id: int) -> list[BadgeGrant]:
        """One pass over the catalog. Returns the badges granted by this pass.

        The user's aggregates are re-read after each grant so a badge that
        counts badges can be satisfied by one granted earlier in the pass.
        """
        badges = await self._load_badges()
        owned = await store.owned_badge_ids(self.db, user_id)
        state = await store.load_user_state(self.db, user_id)
        activities_completed = await store.count_completed_activities(self.db, user_id)

        granted: list[BadgeGrant] = []
        for badge in badges:
            if badge.id in owned:
                continue
            if not badge_eligible(badge, state, activities_completed):
                continue

            grant = await grant_badge(self.db, user_id, badge)
            owned.add(badge.id)
            if grant is not None:
                granted.append(grant)
                state = await store.load_user_state(self.db, user_id)

        return granted
