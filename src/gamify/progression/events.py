"""Reward events and their hand-off to Redis pub/sub.

Events are published after the trigger's transaction commits. Delivery
(WebSocket fan-out, push, e-mail) belongs to whoever subscribes to
``ws:user:{user_id}``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from gamify.progression.engine import RewardOutcome

logger = structlog.get_logger()

XP_GAINED = "xp-gained"
BADGE_AWARDED = "badge-awarded"
ACHIEVEMENT_UNLOCKED = "achievement-unlocked"
LEVEL_UP = "level-up"


@dataclass(frozen=True)
class RewardEvent:
    type: str
    user_id: int
    data: dict[str, Any] = field(default_factory=dict)

    def to_message(self) -> str:
        return json.dumps({"event": self.type, "data": self.data}, default=str)


def user_channel(user_id: int) -> str:
    return f"ws:user:{user_id}"


async def publish_outcome(redis: object | None, outcome: RewardOutcome) -> int:
    """Publish every event of a committed outcome. Returns how many were sent.

    Best effort: a Redis failure is logged and the remaining events are
    dropped; the rewards themselves are already committed.
    """
    if redis is None:
        return 0

    events = outcome.events()
    sent = 0
    for event in events:
        try:
            await redis.publish(user_channel(event.user_id), event.to_message())  # type: ignore[union-attr]
        except Exception:
            logger.warning(
                "reward_event_publish_failed",
                user_id=event.user_id,
                event=event.type,
                dropped=len(events) - sent,
                exc_info=True,
            )
            break
        sent += 1
    return sent
