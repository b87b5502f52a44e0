"""Post-commit pub/sub fan-out of progression events."""

from __future__ import annotations

import json
import logging

from devpath.progression.schemas import ProgressionResult

logger = logging.getLogger(__name__)

LEVEL_UP_CHANNEL = "pubsub:level_up"
QUEST_COMPLETED_CHANNEL = "pubsub:quest_completed"
BADGE_EARNED_CHANNEL = "pubsub:badge_earned"


def build_messages(result: ProgressionResult) -> list[tuple[str, dict]]:
    """Channel/payload pairs for everything worth broadcasting in a result."""
    messages: list[tuple[str, dict]] = []
    if result.level_up is not None:
        messages.append((LEVEL_UP_CHANNEL, {
            "user_id": result.user_id,
            "old_level": result.level_up.previous_level,
            "new_level": result.level_up.new_level,
            "title": result.level_up.title,
        }))
    for quest in result.quests_completed:
        messages.append((QUEST_COMPLETED_CHANNEL, {
            "user_id": result.user_id,
            "quest": quest.quest,
            "title": quest.title,
            "xp_reward": quest.xp_reward,
        }))
    for badge in result.badges_unlocked:
        messages.append((BADGE_EARNED_CHANNEL, {
            "user_id": result.user_id,
            "badge_slug": badge.slug,
            "badge_name": badge.name,
            "rarity": badge.rarity,
            "title": badge.title,
        }))
    return messages


async def publish_result(redis: object | None, result: ProgressionResult) -> int:
    """Publish a committed result. Failures are logged, never raised.

    Returns the number of messages published.
    """
    if redis is None or result.duplicate:
        return 0

    published = 0
    for channel, payload in build_messages(result):
        try:
            await redis.publish(channel, json.dumps(payload))  # type: ignore[union-attr]
            published += 1
        except Exception:
            logger.warning("Failed to publish %s notification", channel, exc_info=True)
    return published
