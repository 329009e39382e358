"""Progression API tests: triggers, read models and error mapping over HTTP."""

from __future__ import annotations

import pytest
import pytest_asyncio
from httpx import AsyncClient

from gamify.errors import StorageError
from gamify.progression.triggers import TriggerService


class TestTriggerEndpoints:
    """POST /api/v1/users/{user_id}/..."""

    @pytest.mark.asyncio
    async def test_registration(self, client: AsyncClient, factory, onboarding_badges):
        user = await factory.user()

        response = await client.post(f"/api/v1/users/{user.id}/triggers/registration")

        assert response.status_code == 200
        data = response.json()
        assert data["new_xp"] == 35
        assert data["xp_gained"] == 35
        assert data["already_completed"] is False
        assert data["granted_badges"][0]["name"] == "First Steps"
        assert [e["event"] for e in data["events"]] == ["xp-gained", "badge-awarded"]

    @pytest.mark.asyncio
    async def test_registration_twice(self, client: AsyncClient, factory, onboarding_badges):
        user = await factory.user()

        await client.post(f"/api/v1/users/{user.id}/triggers/registration")
        response = await client.post(f"/api/v1/users/{user.id}/triggers/registration")

        assert response.status_code == 200
        data = response.json()
        assert data["already_completed"] is True
        assert data["xp_gained"] == 0
        assert data["events"] == []

    @pytest.mark.asyncio
    async def test_login(self, client: AsyncClient, factory):
        user = await factory.user()

        response = await client.post(f"/api/v1/users/{user.id}/triggers/login")

        assert response.status_code == 200
        assert response.json()["new_xp"] == 10

    @pytest.mark.asyncio
    async def test_incomplete_profile_is_422(self, client: AsyncClient, factory):
        user = await factory.user()

        response = await client.post(f"/api/v1/users/{user.id}/triggers/profile-completion")

        assert response.status_code == 422
        assert "incomplete" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_activity_completion_levels_up(self, client: AsyncClient, factory):
        level_badge = await factory.badge("Level Two", rarity="uncommon")
        await factory.level(2, 100, badge=level_badge)
        user = await factory.user(experience_points=90)
        activity = await factory.activity("Read the guide", 15)

        response = await client.post(f"/api/v1/users/{user.id}/activities/{activity.id}/complete")

        assert response.status_code == 200
        data = response.json()
        assert data["previous_level"] == 1
        assert data["new_level"] == 2
        assert data["total_badges"] == 1
        assert data["level_ups"] == [{"previous_level": 1, "new_level": 2, "bonus_xp": 20}]
        assert data["completed_at"] is not None

    @pytest.mark.asyncio
    async def test_activity_completed_twice(self, client: AsyncClient, factory):
        user = await factory.user()
        activity = await factory.activity("Read the guide", 15)
        url = f"/api/v1/users/{user.id}/activities/{activity.id}/complete"

        await client.post(url)
        response = await client.post(url)

        assert response.status_code == 200
        assert response.json()["already_completed"] is True
        assert response.json()["new_xp"] == 15

    @pytest.mark.asyncio
    async def test_unknown_activity_is_404(self, client: AsyncClient, factory):
        user = await factory.user()

        response = await client.post(f"/api/v1/users/{user.id}/activities/999/complete")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_award_badge_with_body(self, client: AsyncClient, factory):
        admin = await factory.user()
        user = await factory.user()
        badge = await factory.badge("Helpful", experience_reward=30)

        response = await client.post(
            f"/api/v1/users/{user.id}/badges/{badge.id}",
            json={"awarded_by": admin.id},
        )

        assert response.status_code == 200
        grant = response.json()["granted_badges"][0]
        assert grant["badge_id"] == badge.id
        assert grant["awarded_by"] == admin.id

    @pytest.mark.asyncio
    async def test_award_badge_without_body(self, client: AsyncClient, factory):
        user = await factory.user()
        badge = await factory.badge("Helpful", experience_reward=30)

        response = await client.post(f"/api/v1/users/{user.id}/badges/{badge.id}")

        assert response.status_code == 200
        assert response.json()["new_xp"] == 30

    @pytest.mark.asyncio
    async def test_unknown_user_is_404(self, client: AsyncClient):
        response = await client.post("/api/v1/users/404/triggers/login")

        assert response.status_code == 404
        assert response.json()["detail"] == "User 404 not found or inactive"

    @pytest.mark.asyncio
    async def test_storage_error_is_503(self, client: AsyncClient, factory, monkeypatch):
        user = await factory.user()

        async def failing_login(self, user_id):
            raise StorageError("Reward transaction failed; nothing was committed")

        monkeypatch.setattr(TriggerService, "login", failing_login)
        response = await client.post(f"/api/v1/users/{user.id}/triggers/login")

        assert response.status_code == 503
        assert response.headers["retry-after"] == "1"


class TestReadEndpoints:
    """GET progress, experience log and stats."""

    @pytest.mark.asyncio
    async def test_progress(self, client: AsyncClient, factory):
        user = await factory.user(experience_points=150, current_level=2)

        response = await client.get(f"/api/v1/users/{user.id}/progress")

        assert response.status_code == 200
        data = response.json()
        assert data["level"] == 2
        assert data["next_level"] == 3
        assert data["xp_into_level"] == 50
        assert data["total_badges"] == 0

    @pytest.mark.asyncio
    async def test_progress_unknown_user(self, client: AsyncClient):
        response = await client.get("/api/v1/users/404/progress")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_experience_log(self, client: AsyncClient, factory, onboarding_badges):
        user = await factory.user()
        await client.post(f"/api/v1/users/{user.id}/triggers/registration")
        await client.post(f"/api/v1/users/{user.id}/triggers/login")

        response = await client.get(f"/api/v1/users/{user.id}/experience-log?limit=2")

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 3
        assert data["limit"] == 2
        assert len(data["entries"]) == 2
        assert data["entries"][0]["activity_type"] == "login"

    @pytest.mark.asyncio
    async def test_experience_log_filter(self, client: AsyncClient, factory):
        user = await factory.user()
        await client.post(f"/api/v1/users/{user.id}/triggers/login")
        await client.post(f"/api/v1/users/{user.id}/triggers/registration")

        response = await client.get(
            f"/api/v1/users/{user.id}/experience-log", params={"activity_type": "login"},
        )

        assert response.json()["total"] == 1

    @pytest.mark.asyncio
    async def test_experience_log_unknown_type(self, client: AsyncClient, factory):
        user = await factory.user()

        response = await client.get(
            f"/api/v1/users/{user.id}/experience-log", params={"activity_type": "teleport"},
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_experience_log_bad_limit(self, client: AsyncClient, factory):
        user = await factory.user()

        response = await client.get(f"/api/v1/users/{user.id}/experience-log?limit=0")

        assert response.status_code == 422
        assert response.json()["detail"] == "Validation error"

    @pytest.mark.asyncio
    async def test_experience_stats(self, client: AsyncClient, factory):
        user = await factory.user()
        await client.post(f"/api/v1/users/{user.id}/triggers/login")
        await client.post(f"/api/v1/users/{user.id}/triggers/login")

        response = await client.get(f"/api/v1/users/{user.id}/experience-stats")

        assert response.status_code == 200
        data = response.json()
        assert data["total_experience"] == 20
        assert data["by_activity_type"]["login"] == {"experience": 20, "count": 2}


class TestHoldingsEndpoints:
    """GET badges and achievements a user holds."""

    @pytest.mark.asyncio
    async def test_badges(self, client: AsyncClient, factory, onboarding_badges):
        admin = await factory.user()
        user = await factory.user()
        helpful = await factory.badge("Helpful", experience_reward=30, rarity="rare")
        await client.post(f"/api/v1/users/{user.id}/triggers/registration")
        await client.post(f"/api/v1/users/{user.id}/badges/{helpful.id}", json={"awarded_by": admin.id})

        response = await client.get(f"/api/v1/users/{user.id}/badges")

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        by_name = {b["name"]: b for b in data["badges"]}
        assert set(by_name) == {"First Steps", "Helpful"}
        assert by_name["Helpful"]["awarded_by"] == admin.id
        assert by_name["Helpful"]["rarity"] == "rare"
        assert by_name["First Steps"]["awarded_by"] is None
        assert by_name["First Steps"]["awarded_at"] is not None

    @pytest.mark.asyncio
    async def test_no_badges(self, client: AsyncClient, factory):
        user = await factory.user()

        response = await client.get(f"/api/v1/users/{user.id}/badges")

        assert response.status_code == 200
        assert response.json() == {"user_id": user.id, "badges": [], "total": 0}

    @pytest.mark.asyncio
    async def test_achievements(self, client: AsyncClient, factory):
        trophy = await factory.badge("Trophy")
        await factory.achievement(
            "Welcome Aboard", badge=trophy, criteria_type="registration", experience_reward=5,
        )
        user = await factory.user()
        await client.post(f"/api/v1/users/{user.id}/triggers/login")

        response = await client.get(f"/api/v1/users/{user.id}/achievements")

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        unlocked = data["achievements"][0]
        assert unlocked["name"] == "Welcome Aboard"
        assert unlocked["badge_id"] == trophy.id
        assert unlocked["unlocked_at"] is not None

    @pytest.mark.asyncio
    async def test_unknown_user_is_404(self, client: AsyncClient):
        assert (await client.get("/api/v1/users/404/badges")).status_code == 404
        assert (await client.get("/api/v1/users/404/achievements")).status_code == 404


class TestLeaderboardEndpoints:
    """GET /api/v1/leaderboards/{metric} and a user's position."""

    @pytest_asyncio.fixture
    async def players(self, factory):
        return [
            await factory.user(experience_points=80),
            await factory.user(experience_points=80),
            await factory.user(experience_points=50),
            await factory.user(experience_points=500, is_active=False),
        ]

    @pytest.mark.asyncio
    async def test_experience_board(self, client: AsyncClient, players):
        response = await client.get("/api/v1/leaderboards/experience")

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 3
        assert [e["user_id"] for e in data["entries"]] == [p.id for p in players[:3]]
        assert [e["rank"] for e in data["entries"]] == [1, 1, 3]
        assert [e["score"] for e in data["entries"]] == [80, 80, 50]
        assert data["top_score"] == 80
        assert data["average_score"] == 70.0

    @pytest.mark.asyncio
    async def test_ranks_carry_across_pages(self, client: AsyncClient, players):
        second = await client.get("/api/v1/leaderboards/experience?per_page=1&page=2")
        third = await client.get("/api/v1/leaderboards/experience?per_page=1&page=3")

        assert second.json()["entries"][0]["rank"] == 1
        assert third.json()["entries"][0]["rank"] == 3

    @pytest.mark.asyncio
    async def test_unknown_metric_is_422(self, client: AsyncClient):
        response = await client.get("/api/v1/leaderboards/hashrate")

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_position(self, client: AsyncClient, players):
        response = await client.get(f"/api/v1/users/{players[2].id}/leaderboard-position")

        assert response.status_code == 200
        data = response.json()
        assert data["experience"] == {"rank": 3, "score": 50, "total": 3, "percentile": 0.0}
        assert data["badges"]["rank"] == 1
        assert data["level"] == {"rank": 1, "score": 1, "total": 3, "percentile": 66.67}

    @pytest.mark.asyncio
    async def test_position_of_inactive_user_is_404(self, client: AsyncClient, players):
        response = await client.get(f"/api/v1/users/{players[3].id}/leaderboard-position")

        assert response.status_code == 404
