"""Progression API endpoints: triggers and read models."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from gamify.config import Settings
from gamify.dependencies import get_db, get_redis_dep, get_settings_dep
from gamify.errors import ValidationError
from gamify.progression import ledger, store
from gamify.progression.leaderboard import get_leaderboard, get_user_positions
from gamify.progression.engine import RewardOutcome
from gamify.progression.events import publish_outcome
from gamify.progression.levels import level_progress
from gamify.progression.schemas import (
    AchievementUnlockResponse,
    ActivityTypeStats,
    AwardBadgeRequest,
    BadgeGrantResponse,
    ExperienceLogEntry,
    ExperienceLogResponse,
    ExperienceStatsResponse,
    LeaderboardEntryResponse,
    LeaderboardPositionResponse,
    LeaderboardResponse,
    LevelProgressResponse,
    LevelUpResponse,
    RewardEventResponse,
    RewardOutcomeResponse,
    UserAchievementResponse,
    UserAchievementsResponse,
    UserBadgeResponse,
    UserBadgesResponse,
    UserRankResponse,
)
from gamify.progression.triggers import TriggerService

router = APIRouter(prefix="/api/v1/users/{user_id}", tags=["Progression"])
leaderboard_router = APIRouter(prefix="/api/v1/leaderboards", tags=["Leaderboards"])


def _outcome_response(outcome: RewardOutcome) -> RewardOutcomeResponse:
    return RewardOutcomeResponse(
        user_id=outcome.user_id,
        activity_type=outcome.activity_type,
        activity_id=outcome.activity_id,
        already_completed=outcome.already_completed,
        completed_at=outcome.completed_at,
        previous_xp=outcome.previous_xp,
        new_xp=outcome.new_xp,
        xp_gained=outcome.xp_gained,
        previous_level=outcome.previous_level,
        new_level=outcome.new_level,
        total_badges=outcome.total_badges,
        total_achievements=outcome.total_achievements,
        granted_badges=[
            BadgeGrantResponse(
                badge_id=g.badge_id,
                name=g.name,
                rarity=g.rarity,
                experience_reward=g.experience_reward,
                source=g.source,
                awarded_by=g.awarded_by,
            )
            for g in outcome.granted_badges
        ],
        unlocked_achievements=[
            AchievementUnlockResponse(
                achievement_id=u.achievement_id,
                name=u.name,
                experience_reward=u.experience_reward,
                badge_id=u.badge_grant.badge_id if u.badge_grant else None,
            )
            for u in outcome.unlocked_achievements
        ],
        level_ups=[
            LevelUpResponse(
                previous_level=lu.previous_level,
                new_level=lu.new_level,
                bonus_xp=lu.bonus_xp,
            )
            for lu in outcome.level_ups
        ],
        events=[RewardEventResponse(event=e.type, data=e.data) for e in outcome.events()],
    )


async def _respond(outcome: RewardOutcome, redis: object | None) -> RewardOutcomeResponse:
    await publish_outcome(redis, outcome)
    return _outcome_response(outcome)


# ── Triggers ──


@router.post("/triggers/registration", response_model=RewardOutcomeResponse)
async def registration_trigger(
    user_id: int,
    db: AsyncSession = Depends(get_db),  # noqa: B008
    redis: object | None = Depends(get_redis_dep),  # noqa: B008
    settings: Settings = Depends(get_settings_dep),  # noqa: B008
):
    """Apply the one-time registration reward."""
    outcome = await TriggerService(db, settings).register(user_id)
    return await _respond(outcome, redis)


@router.post("/triggers/login", response_model=RewardOutcomeResponse)
async def login_trigger(
    user_id: int,
    db: AsyncSession = Depends(get_db),  # noqa: B008
    redis: object | None = Depends(get_redis_dep),  # noqa: B008
    settings: Settings = Depends(get_settings_dep),  # noqa: B008
):
    """Apply the per-login reward."""
    outcome = await TriggerService(db, settings).login(user_id)
    return await _respond(outcome, redis)


@router.post("/triggers/profile-completion", response_model=RewardOutcomeResponse)
async def profile_completion_trigger(
    user_id: int,
    db: AsyncSession = Depends(get_db),  # noqa: B008
    redis: object | None = Depends(get_redis_dep),  # noqa: B008
    settings: Settings = Depends(get_settings_dep),  # noqa: B008
):
    """Apply the one-time profile-completion reward."""
    outcome = await TriggerService(db, settings).complete_profile(user_id)
    return await _respond(outcome, redis)


@router.post("/activities/{activity_id}/complete", response_model=RewardOutcomeResponse)
async def complete_activity(
    user_id: int,
    activity_id: int,
    db: AsyncSession = Depends(get_db),  # noqa: B008
    redis: object | None = Depends(get_redis_dep),  # noqa: B008
    settings: Settings = Depends(get_settings_dep),  # noqa: B008
):
    """Complete an activity. Repeating a non-repeatable one returns already_completed."""
    outcome = await TriggerService(db, settings).complete_activity(user_id, activity_id)
    return await _respond(outcome, redis)


@router.post("/badges/{badge_id}", response_model=RewardOutcomeResponse)
async def award_badge(
    user_id: int,
    badge_id: int,
    body: AwardBadgeRequest | None = None,
    db: AsyncSession = Depends(get_db),  # noqa: B008
    redis: object | None = Depends(get_redis_dep),  # noqa: B008
    settings: Settings = Depends(get_settings_dep),  # noqa: B008
):
    """Manually award a badge."""
    awarded_by = body.awarded_by if body else None
    outcome = await TriggerService(db, settings).award_badge(user_id, badge_id, awarded_by)
    return await _respond(outcome, redis)


# ── Read models ──


@router.get("/progress", response_model=LevelProgressResponse)
async def get_progress(user_id: int, db: AsyncSession = Depends(get_db)):  # noqa: B008
    """Current level and progress toward the next one."""
    state = await store.load_user_state(db, user_id)
    progress = level_progress(state.experience_points)
    return LevelProgressResponse(
        user_id=user_id,
        total_badges=state.total_badges,
        total_achievements=state.total_achievements,
        **progress,
    )


@router.get("/experience-log", response_model=ExperienceLogResponse)
async def get_experience_log(
    user_id: int,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    activity_type: str | None = Query(None),
    db: AsyncSession = Depends(get_db),  # noqa: B008
):
    """Paginated XP history, newest first."""
    if activity_type is not None and activity_type not in ledger.ACTIVITY_TYPES:
        raise ValidationError(f"Unknown activity type: {activity_type!r}")
    await store.load_user_state(db, user_id)
    rows, total = await ledger.history(db, user_id, limit, offset, activity_type)
    return ExperienceLogResponse(
        entries=[
            ExperienceLogEntry(
                id=r.id,
                activity_type=r.activity_type,
                activity_id=r.activity_id,
                experience_change=r.experience_change,
                previous_level=r.previous_level,
                new_level=r.new_level,
                created_at=r.created_at,
            )
            for r in rows
        ],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/experience-stats", response_model=ExperienceStatsResponse)
async def get_experience_stats(user_id: int, db: AsyncSession = Depends(get_db)):  # noqa: B008
    """XP totals grouped by activity type."""
    await store.load_user_state(db, user_id)
    stats = await ledger.experience_stats(db, user_id)
    return ExperienceStatsResponse(
        user_id=user_id,
        total_experience=stats["total_experience"],
        log_count=stats["log_count"],
        by_activity_type={
            k: ActivityTypeStats(**v) for k, v in stats["by_activity_type"].items()
        },
    )


@router.get("/badges", response_model=UserBadgesResponse)
async def get_user_badges(user_id: int, db: AsyncSession = Depends(get_db)):  # noqa: B008
    """Badges the user holds, newest first."""
    await store.load_user_state(db, user_id)
    held = await store.list_user_badges(db, user_id)
    return UserBadgesResponse(
        user_id=user_id,
        badges=[
            UserBadgeResponse(
                badge_id=badge.id,
                name=badge.name,
                description=badge.description,
                icon_url=badge.icon_url,
                rarity=badge.rarity,
                experience_reward=badge.experience_reward,
                awarded_at=grant.awarded_at,
                awarded_by=grant.awarded_by,
            )
            for grant, badge in held
        ],
        total=len(held),
    )


@router.get("/achievements", response_model=UserAchievementsResponse)
async def get_user_achievements(user_id: int, db: AsyncSession = Depends(get_db)):  # noqa: B008
    """Achievements the user unlocked, newest first."""
    await store.load_user_state(db, user_id)
    unlocked = await store.list_user_achievements(db, user_id)
    return UserAchievementsResponse(
        user_id=user_id,
        achievements=[
            UserAchievementResponse(
                achievement_id=achievement.id,
                name=achievement.name,
                description=achievement.description,
                experience_reward=achievement.experience_reward,
                badge_id=achievement.badge_reward_id,
                unlocked_at=unlock.unlocked_at,
            )
            for unlock, achievement in unlocked
        ],
        total=len(unlocked),
    )


@router.get("/leaderboard-position", response_model=LeaderboardPositionResponse)
async def get_leaderboard_position(user_id: int, db: AsyncSession = Depends(get_db)):  # noqa: B008
    """The user's rank by XP, badges, achievements and level."""
    positions = await get_user_positions(db, user_id)
    return LeaderboardPositionResponse(
        user_id=user_id,
        **{metric: UserRankResponse(**rank) for metric, rank in positions.items()},
    )


# ── Leaderboards ──


@leaderboard_router.get("/{metric}", response_model=LeaderboardResponse)
async def get_metric_leaderboard(
    metric: str,
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),  # noqa: B008
):
    """Active players ranked by experience, badges, achievements or level."""
    data = await get_leaderboard(db, metric, page, per_page)
    return LeaderboardResponse(
        metric=data["metric"],
        entries=[LeaderboardEntryResponse(**e) for e in data["entries"]],
        total=data["total"],
        page=data["page"],
        per_page=data["per_page"],
        average_score=data["average_score"],
        top_score=data["top_score"],
    )
