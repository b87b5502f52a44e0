"""Progression orchestrator tests: atomic apply_action and aggregated results."""

from __future__ import annotations

import asyncio

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from devpath.config import LevelThreshold, XPPolicy
from devpath.db.models import BadgeDefinition, Quest, SkillNode, SkillPath, XPEvent
from devpath.progression import xp_service
from devpath.progression.errors import PathMismatch, StoreConflict
from devpath.progression.locks import LocalUserLocks
from devpath.progression.orchestrator import ProgressionOrchestrator
from devpath.progression.schemas import (
    LearningMilestone,
    MentorSession,
    QuestObjectiveProgress,
    QuestStarted,
    QuizCompleted,
    SkillPractice,
)


async def _ledger_sum(session_factory, user_id: int) -> int:
    async with session_factory() as db:
        return await xp_service.total_xp(db, user_id)


TWO_LEVELS = [
    LevelThreshold(level=1, title="Novice", cumulative=0),
    LevelThreshold(level=2, title="Adept", cumulative=100),
]


@pytest_asyncio.fixture
async def level_catalog(session_factory) -> None:
    """One-node path, one reward quest and a badge for reaching level 2."""
    async with session_factory() as db:
        path = SkillPath(slug="p", title="Path")
        db.add(path)
        await db.flush()
        db.add(SkillNode(slug="a", path_id=path.id, title="A", target=10, xp_reward=50, prerequisites=[]))
        db.add(Quest(
            slug="warmup",
            title="Warm-up",
            xp_reward=50,
            objectives=[{"id": "one", "target_type": "learning_milestones", "target_value": 1}],
            required_quests=[],
        ))
        db.add(BadgeDefinition(
            slug="lvl2",
            name="Adept",
            description="Reach level 2",
            category="progression",
            rarity="common",
            xp_reward=0,
            trigger_type="level_reached",
            trigger_config={"threshold": 2},
        ))
        await db.commit()


class TestLevelUpScenario:
    """60 XP then 50 XP: level 2 is reached on the second call."""

    @pytest.mark.asyncio
    async def test_level_up_on_second_action(self, session_factory, clock, user_id):
        orchestrator = ProgressionOrchestrator(
            session_factory, clock=clock, policy=XPPolicy(learning_milestone=60)
        )

        first = await orchestrator.apply_action(user_id, LearningMilestone(milestone_id="m1"))
        assert first.total_xp == 60
        assert first.level.level == 1
        assert first.level_up is None

        second = await orchestrator.apply_action(user_id, QuizCompleted(quiz_id="q1", score=70))
        assert second.xp_awarded == 50
        assert second.total_xp == 110
        assert second.level.level == 2
        assert second.level_up is not None
        assert second.level_up.previous_level == 1
        assert second.level_up.title == "Bug Hunter"


class TestRewardLevelUps:
    """Rewards granted by the engines inside an action can unlock level badges."""

    @pytest.mark.asyncio
    async def test_skill_reward_unlocks_level_badge(self, session_factory, level_catalog, clock, user_id):
        orchestrator = ProgressionOrchestrator(
            session_factory, clock=clock, thresholds=TWO_LEVELS, policy=XPPolicy(learning_milestone=60)
        )
        first = await orchestrator.apply_action(user_id, LearningMilestone(milestone_id="m1"))
        assert first.total_xp == 60
        assert first.badges_unlocked == []

        await orchestrator.choose_path(user_id, "p")
        result = await orchestrator.apply_action(user_id, SkillPractice(node="a", amount=10))

        assert result.skills_unlocked == ["a"]
        assert result.total_xp == 110
        assert result.level_up is not None
        assert result.level_up.title == "Adept"
        assert [b.slug for b in result.badges_unlocked] == ["lvl2"]

    @pytest.mark.asyncio
    async def test_quest_reward_unlocks_level_badge(self, session_factory, level_catalog, clock, user_id):
        orchestrator = ProgressionOrchestrator(
            session_factory, clock=clock, thresholds=TWO_LEVELS, policy=XPPolicy(learning_milestone=60)
        )
        await orchestrator.apply_action(user_id, QuestStarted(quest="warmup"))
        result = await orchestrator.apply_action(user_id, LearningMilestone(milestone_id="m1"))

        assert [q.quest for q in result.quests_completed] == ["warmup"]
        assert result.total_xp == 110
        assert result.level_up is not None
        assert [b.slug for b in result.badges_unlocked] == ["lvl2"]


class TestApplyAction:
    """End-to-end progression over the seeded catalog."""

    @pytest.mark.asyncio
    async def test_first_quiz(self, orchestrator, user_id):
        result = await orchestrator.apply_action(user_id, QuizCompleted(quiz_id="q1", score=80))

        assert result.xp_awarded == 75
        assert [b.slug for b in result.badges_unlocked] == ["first_quiz"]
        assert {a.source for a in result.xp_breakdown} == {"quiz_completed", "badge"}
        assert result.streak.current_streak == 1
        assert result.quests_available == ["intro", "first_skill"]

    @pytest.mark.asyncio
    async def test_intro_quest_flow(self, orchestrator, user_id):
        started = await orchestrator.apply_action(user_id, QuestStarted(quest="intro"))
        assert started.quests_started == ["intro"]

        quiz = await orchestrator.apply_action(user_id, QuizCompleted(quiz_id="q1", score=80))
        assert [(u.quest, u.objective, u.progress) for u in quiz.objective_updates] == [("intro", "first_quiz", 1)]
        assert quiz.quests_completed == []

        mentor = await orchestrator.apply_action(user_id, MentorSession(session_type="chat"))
        assert [q.quest for q in mentor.quests_completed] == ["intro"]
        assert mentor.quests_completed[0].xp_reward == 100
        assert {b.slug for b in mentor.badges_unlocked} == {"first_mentor_session", "first_quest"}
        assert mentor.xp_awarded == 25 + 100 + 25 + 50
        assert mentor.total_xp == 275
        assert mentor.level_up is not None
        assert mentor.level_up.new_level == 2
        assert mentor.quests_available == ["quiz_master", "interview_ready"]

        # Progress on a completed quest is a benign no-op
        repeat = await orchestrator.apply_action(
            user_id, QuestObjectiveProgress(quest="intro", objective="meet_mentor")
        )
        assert [e.error for e in repeat.ignored] == ["InvalidTransition"]
        assert repeat.xp_awarded == 0
        assert repeat.total_xp == 275

    @pytest.mark.asyncio
    async def test_duplicate_start_is_ignored(self, orchestrator, user_id):
        await orchestrator.apply_action(user_id, QuestStarted(quest="intro"))
        again = await orchestrator.apply_action(user_id, QuestStarted(quest="intro"))
        assert again.quests_started == []
        assert [e.error for e in again.ignored] == ["InvalidTransition"]

    @pytest.mark.asyncio
    async def test_skill_unlock_triggers_badge(self, orchestrator, user_id):
        await orchestrator.choose_path(user_id, "frontend")
        result = await orchestrator.apply_action(user_id, SkillPractice(node="html-css", amount=100))

        assert result.skills_unlocked == ["html-css"]
        assert result.skill_progress.unlocked is True
        assert [b.slug for b in result.badges_unlocked] == ["first_skill"]
        assert result.xp_awarded == 50 + 25

    @pytest.mark.asyncio
    async def test_quiz_practice_outside_path_is_ignored(self, orchestrator, user_id):
        result = await orchestrator.apply_action(
            user_id, QuizCompleted(quiz_id="q1", score=80, skill_node="html-css", practice_points=10)
        )
        assert [e.error for e in result.ignored] == ["PathMismatch"]
        assert result.skill_progress is None
        assert result.xp_awarded == 75

    @pytest.mark.asyncio
    async def test_failed_action_commits_nothing(self, orchestrator, session_factory, user_id):
        with pytest.raises(PathMismatch):
            await orchestrator.apply_action(user_id, SkillPractice(node="html-css", amount=10))

        progress = await orchestrator.get_progress(user_id)
        assert progress.total_xp == 0
        assert progress.current_streak == 0
        assert await _ledger_sum(session_factory, user_id) == 0

    @pytest.mark.asyncio
    async def test_weekly_streak_milestone(self, orchestrator, clock, user_id):
        for day in range(7):
            result = await orchestrator.apply_action(user_id, LearningMilestone(milestone_id=f"m{day}"))
            clock.advance(days=1)

        assert result.streak.current_streak == 7
        assert result.streak.milestone == 7
        assert "streak_milestone" in {a.source for a in result.xp_breakdown}
        assert "streak_7" in {b.slug for b in result.badges_unlocked}
        assert "Consistent" in result.titles_unlocked


class TestIdempotency:
    """Retried actions return the stored result without re-applying."""

    @pytest.mark.asyncio
    async def test_duplicate_key_returns_original_result(self, orchestrator, session_factory, user_id):
        action = QuizCompleted(quiz_id="q1", score=80, idempotency_key="quiz-q1-attempt-1")

        first = await orchestrator.apply_action(user_id, action)
        second = await orchestrator.apply_action(user_id, action)

        assert first.duplicate is False
        assert second.duplicate is True
        assert second.total_xp == first.total_xp == 75
        assert second.badges_unlocked == first.badges_unlocked

        async with session_factory() as db:
            count = await db.execute(
                select(func.count()).select_from(XPEvent).where(XPEvent.user_id == user_id)
            )
        assert count.scalar_one() == 2
        assert await _ledger_sum(session_factory, user_id) == 75


class TestConcurrency:
    """Concurrent actions for one user lose no update."""

    @pytest.mark.asyncio
    async def test_concurrent_actions_same_user(self, orchestrator, session_factory, user_id):
        results = await asyncio.gather(*[
            orchestrator.apply_action(user_id, LearningMilestone(milestone_id=f"m{i}"))
            for i in range(5)
        ])

        assert max(r.total_xp for r in results) == 5 * 75 + 25
        assert sum(len(r.badges_unlocked) for r in results) == 1
        progress = await orchestrator.get_progress(user_id)
        assert progress.total_xp == await _ledger_sum(session_factory, user_id) == 400
        assert progress.stats["learning_milestones"] == 5

    @pytest.mark.asyncio
    async def test_store_conflict_retried_once(self, orchestrator, user_id):
        original = orchestrator._run
        calls = 0

        async def flaky(db, uid, action):
            nonlocal calls
            calls += 1
            if calls == 1:
                raise StaleDataError("user_progress row was updated concurrently")
            return await original(db, uid, action)

        orchestrator._run = flaky
        result = await orchestrator.apply_action(user_id, LearningMilestone(milestone_id="m1"))

        assert calls == 2
        assert result.total_xp == 100

    @pytest.mark.asyncio
    async def test_persistent_conflict_surfaces(self, session_factory, seeded, clock, user_id):
        orchestrator = ProgressionOrchestrator(session_factory, locks=LocalUserLocks(), clock=clock)

        async def always_stale(db, uid, action):
            raise StaleDataError("stale")

        orchestrator._run = always_stale
        with pytest.raises(StoreConflict):
            await orchestrator.apply_action(user_id, LearningMilestone(milestone_id="m1"))


class TestIntegrityErrors:
    """Only unique-key races are retryable conflicts."""

    @pytest.mark.asyncio
    async def test_unique_violation_retried(self, orchestrator, user_id):
        original = orchestrator._run
        calls = 0

        async def racing(db, uid, action):
            nonlocal calls
            calls += 1
            if calls == 1:
                raise IntegrityError(
                    "INSERT INTO user_badges", {}, Exception("UNIQUE constraint failed: user_badges.user_id")
                )
            return await original(db, uid, action)

        orchestrator._run = racing
        result = await orchestrator.apply_action(user_id, LearningMilestone(milestone_id="m1"))

        assert calls == 2
        assert result.total_xp == 100

    @pytest.mark.asyncio
    async def test_other_integrity_error_not_retried(self, orchestrator, user_id):
        calls = 0

        async def broken(db, uid, action):
            nonlocal calls
            calls += 1
            raise IntegrityError(
                "INSERT INTO xp_events", {}, Exception("NOT NULL constraint failed: xp_events.action_kind")
            )

        orchestrator._run = broken
        with pytest.raises(IntegrityError):
            await orchestrator.apply_action(user_id, LearningMilestone(milestone_id="m1"))
        assert calls == 1


class TestReadModels:
    """get_progress and leaderboard."""

    @pytest.mark.asyncio
    async def test_get_progress(self, orchestrator, user_id):
        await orchestrator.apply_action(user_id, QuizCompleted(quiz_id="q1", score=100))
        progress = await orchestrator.get_progress(user_id)

        assert progress.total_xp == 150 + 25 + 50
        assert progress.stats["perfect_scores"] == 1
        assert {b.slug for b in progress.badges} == {"first_quiz", "perfect_score"}
        assert progress.titles == ["Perfectionist"]
        assert {q.quest for q in progress.quests} == {"intro", "first_skill"}

    @pytest.mark.asyncio
    async def test_leaderboard_orders_by_xp(self, orchestrator, make_user, user_id):
        other = await make_user("learner-2", "Linus")
        await orchestrator.apply_action(user_id, LearningMilestone(milestone_id="m1"))
        await orchestrator.apply_action(other, QuizCompleted(quiz_id="q1", score=100))

        entries = await orchestrator.leaderboard(limit=10)
        assert [e.user_id for e in entries] == [other, user_id]
        assert entries[0].rank == 1
        assert entries[0].display_name == "Linus"
