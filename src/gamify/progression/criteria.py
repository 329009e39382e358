"""Criteria rules shared by the badge and achievement evaluators."""

from __future__ import annotations

from gamify.progression.store import UserState

EXPERIENCE = "experience"
BADGES = "badges"
ACTIVITIES = "activities"
REGISTRATION = "registration"


def threshold_met(
    criteria_type: str,
    criteria_value: int | None,
    state: UserState,
    activities_completed: int,
) -> bool:
    """Aggregate thresholds common to badges and achievements.

    ``achievements`` and ``custom`` have no generic rule and never match.
    """
    if criteria_value is None:
        return False
    if criteria_type == EXPERIENCE:
        return state.experience_points >= criteria_value
    if criteria_type == BADGES:
        return state.total_badges >= criteria_value
    if criteria_type == ACTIVITIES:
        return activities_completed >= criteria_value
    return False


def badge_eligible(badge, state: UserState, activities_completed: int) -> bool:
    return threshold_met(badge.criteria_type, badge.criteria_value, state, activities_completed)


def achievement_eligible(achievement, state: UserState, activities_completed: int) -> bool:
    if achievement.criteria_type == REGISTRATION:
        return True
    return threshold_met(
        achievement.criteria_type, achievement.criteria_value, state, activities_completed
    )
