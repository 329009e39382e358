"""Pydantic request/response models for progression endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel

# --- Requests ---


class AwardBadgeRequest(BaseModel):
    awarded_by: int | None = None


# --- Outcome ---


class BadgeGrantResponse(BaseModel):
    badge_id: int
    name: str
    rarity: str
    experience_reward: int
    source: str
    awarded_by: int | None = None


class AchievementUnlockResponse(BaseModel):
    achievement_id: int
    name: str
    experience_reward: int
    badge_id: int | None = None


class LevelUpResponse(BaseModel):
    previous_level: int
    new_level: int
    bonus_xp: int


class RewardEventResponse(BaseModel):
    event: str
    data: dict[str, Any]


class RewardOutcomeResponse(BaseModel):
    user_id: int
    activity_type: str
    activity_id: int | None = None
    already_completed: bool = False
    completed_at: datetime | None = None
    previous_xp: int
    new_xp: int
    xp_gained: int
    previous_level: int
    new_level: int
    total_badges: int
    total_achievements: int
    granted_badges: list[BadgeGrantResponse] = []
    unlocked_achievements: list[AchievementUnlockResponse] = []
    level_ups: list[LevelUpResponse] = []
    events: list[RewardEventResponse] = []


# --- Progress / ledger ---


class LevelProgressResponse(BaseModel):
    user_id: int
    level: int
    experience_points: int
    level_xp: int
    next_level: int
    next_level_xp: int
    xp_into_level: int
    xp_for_level: int
    progress_percentage: float
    total_badges: int
    total_achievements: int


class ExperienceLogEntry(BaseModel):
    id: int
    activity_type: str
    activity_id: int | None = None
    experience_change: int
    previous_level: int
    new_level: int
    created_at: datetime


class ExperienceLogResponse(BaseModel):
    entries: list[ExperienceLogEntry]
    total: int
    limit: int
    offset: int


class ActivityTypeStats(BaseModel):
    experience: int
    count: int


class ExperienceStatsResponse(BaseModel):
    user_id: int
    total_experience: int
    log_count: int
    by_activity_type: dict[str, ActivityTypeStats]


# --- Holdings ---


class UserBadgeResponse(BaseModel):
    badge_id: int
    name: str
    description: str | None = None
    icon_url: str | None = None
    rarity: str
    experience_reward: int
    awarded_at: datetime
    awarded_by: int | None = None


class UserBadgesResponse(BaseModel):
    user_id: int
    badges: list[UserBadgeResponse]
    total: int


class UserAchievementResponse(BaseModel):
    achievement_id: int
    name: str
    description: str | None = None
    experience_reward: int
    badge_id: int | None = None
    unlocked_at: datetime


class UserAchievementsResponse(BaseModel):
    user_id: int
    achievements: list[UserAchievementResponse]
    total: int


# --- Leaderboards ---


class LeaderboardEntryResponse(BaseModel):
    rank: int
    user_id: int
    username: str
    first_name: str | None = None
    last_name: str | None = None
    avatar_url: str | None = None
    experience_points: int
    current_level: int
    score: int


class LeaderboardResponse(BaseModel):
    metric: str
    entries: list[LeaderboardEntryResponse]
    total: int
    page: int
    per_page: int
    average_score: float
    top_score: int


class UserRankResponse(BaseModel):
    rank: int
    score: int
    total: int
    percentile: float


class LeaderboardPositionResponse(BaseModel):
    user_id: int
    experience: UserRankResponse
    badges: UserRankResponse
    achievements: UserRankResponse
    level: UserRankResponse
