"""Trigger service: the reward rules for each user-facing event.

Route handlers call these methods and nothing else. Each method opens one
engine transaction, locks the user row, records whatever makes the trigger
idempotent and then runs the reward cascade.
"""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from gamify.config import Settings, get_settings
from gamify.db.models import Badge, TriggerReceipt, UserActivity
from gamify.errors import ValidationError
from gamify.progression import ledger, store
from gamify.progression.engine import RewardEngine, RewardOutcome

logger = logging.getLogger(__name__)


class TriggerService:
    """Registration, login, activity completion, manual badge award, profile completion."""

    def __init__(self, db: AsyncSession, settings: Settings | None = None) -> None:
        self.db = db
        self.settings = settings or get_settings()
        self.engine = RewardEngine(db)

    # --- Once-per-user triggers ---

    async def register(self, user_id: int) -> RewardOutcome:
        """Registration XP plus the onboarding badge. Only the first call counts."""
        return await self._once(
            user_id,
            ledger.REGISTRATION,
            self.settings.registration_xp,
            self.settings.registration_badge_name,
        )

    async def complete_profile(self, user_id: int) -> RewardOutcome:
        """Profile-completion XP plus the profile badge. Only the first call counts.

        The profile must have a first name, last name and avatar.
        """
        return await self._once(
            user_id,
            ledger.PROFILE_COMPLETION,
            self.settings.profile_completion_xp,
            self.settings.profile_badge_name,
            require_profile=True,
        )

    async def _once(
        self,
        user_id: int,
        trigger_type: str,
        xp: int,
        badge_name: str,
        *,
        require_profile: bool = False,
    ) -> RewardOutcome:
        async with self.engine.transaction():
            user = await store.get_active_user(self.db, user_id, lock=True)
            if require_profile and not (user.first_name and user.last_name and user.avatar_url):
                raise ValidationError(
                    "Profile is incomplete: first name, last name and avatar are required"
                )

            first_time = await store.insert_ignore(
                self.db,
                TriggerReceipt,
                user_id=user_id,
                trigger_type=trigger_type,
                received_at=store.utcnow(),
            )
            if not first_time:
                logger.info("Trigger %s already applied for user %s", trigger_type, user_id)
                return await self.engine.snapshot(user_id, trigger_type, already_completed=True)

            badges = await self._named_badges(badge_name)
            return await self.engine.cascade(user_id, trigger_type, None, xp, badges=badges)

    # --- Repeatable triggers ---

    async def login(self, user_id: int) -> RewardOutcome:
        """Login XP. Every login counts."""
        async with self.engine.transaction():
            await store.get_active_user(self.db, user_id, lock=True)
            return await self.engine.cascade(user_id, ledger.LOGIN, None, self.settings.login_xp)

    async def complete_activity(self, user_id: int, activity_id: int) -> RewardOutcome:
        """Record an activity completion and grant its XP and badge.

        A non-repeatable activity completed before (including by a concurrent
        request that committed first) returns ``already_completed=True`` and
        changes nothing.
        """
        async with self.engine.transaction():
            activity = await store.get_active_activity(self.db, activity_id)
            await store.get_active_user(self.db, user_id, lock=True)

            now = store.utcnow()
            first_time = await store.insert_ignore(
                self.db,
                UserActivity,
                user_id=user_id,
                activity_id=activity.id,
                experience_gained=activity.experience_reward,
                completion_count=1,
                completed_at=now,
                last_completed_at=now,
            )
            if not first_time:
                if not activity.is_repeatable:
                    existing = await store.get_completion(self.db, user_id, activity.id)
                    return await self.engine.snapshot(
                        user_id,
                        ledger.ACTIVITY_COMPLETION,
                        activity.id,
                        already_completed=True,
                        completed_at=existing.completed_at if existing else None,
                    )
                await store.record_repeat_completion(
                    self.db, user_id, activity.id, activity.experience_reward,
                )

            badges = []
            if activity.badge_reward is not None and activity.badge_reward.is_active:
                badges.append(activity.badge_reward)

            outcome = await self.engine.cascade(
                user_id,
                ledger.ACTIVITY_COMPLETION,
                activity.id,
                activity.experience_reward,
                badges=badges,
            )
            outcome.completed_at = now
            return outcome

    async def award_badge(
        self,
        user_id: int,
        badge_id: int,
        awarded_by: int | None = None,
    ) -> RewardOutcome:
        """Manually award a badge. Re-awarding a held badge is not an error."""
        async with self.engine.transaction():
            badge = await store.get_badge(self.db, badge_id)
            if not badge.is_active:
                raise ValidationError(f"Badge {badge_id} is not active")
            await store.get_active_user(self.db, user_id, lock=True)

            if badge.id in await store.owned_badge_ids(self.db, user_id):
                return await self.engine.snapshot(
                    user_id, ledger.BADGE_AWARD, badge.id, already_completed=True,
                )

            outcome = await self.engine.cascade(
                user_id,
                ledger.BADGE_AWARD,
                badge.id,
                0,
                badges=[badge],
                awarded_by=awarded_by,
            )
            # The requested badge was already held when the insert ran. Grants the
            # evaluators made in this cascade are still real and keep their events.
            if not any(g.badge_id == badge.id for g in outcome.granted_badges):
                outcome.already_completed = True
            return outcome

    async def _named_badges(self, name: str) -> list[Badge]:
        if not name:
            return []
        badge = await store.find_active_badge_by_name(self.db, name)
        if badge is None:
            logger.warning("Badge %r not found in catalog; skipping", name)
            return []
        return [badge]
