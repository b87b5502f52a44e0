"""Pub/sub fan-out tests: best-effort, after commit."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest

from devpath.progression.notifications import build_messages, publish_result
from devpath.progression.schemas import BadgeUnlock, LevelUp, ProgressionResult, QuestCompletion


def _result(**kwargs) -> ProgressionResult:
    return ProgressionResult(user_id=7, action_kind="quiz_completed", **kwargs)


class TestBuildMessages:

    def test_nothing_to_broadcast(self):
        assert build_messages(_result()) == []

    def test_all_channels(self):
        result = _result(
            level_up=LevelUp(previous_level=1, new_level=2, title="Bug Hunter"),
            quests_completed=[QuestCompletion(quest="intro", title="Welcome", xp_reward=100)],
            badges_unlocked=[BadgeUnlock(slug="first_quiz", name="First Steps", rarity="common", xp_reward=25)],
        )
        channels = [channel for channel, _ in build_messages(result)]
        assert channels == ["pubsub:level_up", "pubsub:quest_completed", "pubsub:badge_earned"]


class TestPublishResult:

    @pytest.mark.asyncio
    async def test_publishes_json_payload(self):
        redis = AsyncMock()
        result = _result(level_up=LevelUp(previous_level=1, new_level=2, title="Bug Hunter"))

        assert await publish_result(redis, result) == 1
        channel, payload = redis.publish.await_args.args
        assert channel == "pubsub:level_up"
        assert json.loads(payload) == {"user_id": 7, "old_level": 1, "new_level": 2, "title": "Bug Hunter"}

    @pytest.mark.asyncio
    async def test_redis_failure_is_swallowed(self):
        redis = AsyncMock()
        redis.publish.side_effect = ConnectionError("redis down")
        result = _result(level_up=LevelUp(previous_level=1, new_level=2, title="Bug Hunter"))

        assert await publish_result(redis, result) == 0

    @pytest.mark.asyncio
    async def test_duplicates_and_missing_redis_publish_nothing(self):
        redis = AsyncMock()
        result = _result(duplicate=True, level_up=LevelUp(previous_level=1, new_level=2, title="Bug Hunter"))

        assert await publish_result(redis, result) == 0
        assert await publish_result(None, _result()) == 0
        redis.publish.assert_not_awaited()
