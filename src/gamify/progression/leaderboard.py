"""Leaderboards over the engine-owned user counters.

Boards are read straight from ``users``: the counters the cascade keeps are
already the ranking scores, and Redis is optional in this service. Ranks are
competition ranks. A player's rank is one more than the number of active
players with a strictly higher score, so ties share a rank and a player's
position matches the rank shown on the board.
"""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from gamify.db.models import User
from gamify.errors import ValidationError
from gamify.progression import store

METRICS = {
    "experience": User.experience_points,
    "badges": User.total_badges,
    "achievements": User.total_achievements,
    "level": User.current_level,
}


def metric_column(metric: str):
    column = METRICS.get(metric)
    if column is None:
        raise ValidationError(f"Unknown leaderboard metric: {metric!r}")
    return column


def _percentile(rank: int, total: int) -> float:
    return round(100 - (rank / total * 100), 2) if total > 0 else 0


async def get_leaderboard(
    db: AsyncSession,
    metric: str,
    page: int = 1,
    per_page: int = 10,
) -> dict:
    """One page of active players ordered by ``metric``, highest first."""
    column = metric_column(metric)
    active = User.is_active.is_(True)

    summary = (
        await db.execute(
            select(
                func.count(User.id),
                func.coalesce(func.avg(column), 0),
                func.coalesce(func.max(column), 0),
            ).where(active)
        )
    ).one()
    total = summary[0]

    result = await db.execute(
        select(
            User.id,
            User.username,
            User.first_name,
            User.last_name,
            User.avatar_url,
            User.experience_points,
            User.current_level,
            column.label("score"),
        )
        .where(active)
        .order_by(column.desc(), User.id)
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    rows = result.all()

    entries: list[dict] = []
    if rows:
        # The first row's rank depends on rows above this page.
        higher = (
            await db.execute(select(func.count(User.id)).where(active, column > rows[0].score))
        ).scalar() or 0
        rank = higher + 1
        for index, row in enumerate(rows):
            if index and row.score != rows[index - 1].score:
                rank = (page - 1) * per_page + index + 1
            entries.append({
                "rank": rank,
                "user_id": row.id,
                "username": row.username,
                "first_name": row.first_name,
                "last_name": row.last_name,
                "avatar_url": row.avatar_url,
                "experience_points": row.experience_points,
                "current_level": row.current_level,
                "score": row.score,
            })

    return {
        "metric": metric,
        "entries": entries,
        "total": total,
        "page": page,
        "per_page": per_page,
        "average_score": round(float(summary[1]), 2),
        "top_score": int(summary[2]),
    }


async def get_user_positions(db: AsyncSession, user_id: int) -> dict[str, dict]:
    """The player's rank on every board. Raises NotFoundError for inactive users."""
    user = await store.get_active_user(db, user_id)
    active = User.is_active.is_(True)
    total = (await db.execute(select(func.count(User.id)).where(active))).scalar() or 0

    positions: dict[str, dict] = {}
    for metric, column in METRICS.items():
        score = getattr(user, column.key)
        higher = (
            await db.execute(select(func.count(User.id)).where(active, column > score))
        ).scalar() or 0
        rank = higher + 1
        positions[metric] = {
            "rank": rank,
            "score": score,
            "total": total,
            "percentile": _percentile(rank, total),
        }
    return positions
