"""Progression orchestrator: the single entry point that applies a user action.

One call runs inside one per-user exclusivity scope and one database
transaction:

1. resolve XP for the action and append it to the ledger
2. recompute the cached level
3. drive the quest and skill-tree engines the action implies
4. evaluate badges for every trigger category touched, repeating while
   badge XP keeps unlocking more
5. final level recompute and quest availability refresh

Either everything commits or nothing does. Notifications go out after commit.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import asdict
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from devpath.config import DEFAULT_LEVEL_THRESHOLDS, LevelThreshold, XPPolicy
from devpath.db.models import ProcessedAction, User, UserProgress
from devpath.progression import (
    activity_service,
    badge_service,
    level_thresholds,
    quest_service,
    skill_tree_service,
    xp_service,
)
from devpath.progression.errors import InvalidTransition, PathMismatch, StoreConflict
from devpath.progression.locks import LocalUserLocks, UserLockProvider
from devpath.progression.notifications import publish_result
from devpath.progression.policy import resolve_award
from devpath.progression.quest_service import QuestAdvance
from devpath.progression.schemas import (
    Action,
    BadgeUnlock,
    EarnedBadgeResponse,
    IgnoredError,
    LeaderboardEntry,
    LevelSummary,
    LevelUp,
    LearningMilestone,
    MentorSession,
    ObjectiveUpdate,
    ProgressionResult,
    ProgressResponse,
    QuestCompletion,
    QuestObjectiveProgress,
    QuestStarted,
    QuizCompleted,
    SkillPractice,
    SkillProgressSummary,
    StreakSummary,
    UserQuestResponse,
    XPAward,
)
from devpath.progression.skill_tree_service import PracticeOutcome

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_unique_violation(exc: IntegrityError) -> bool:
    """True for a unique-constraint race (another writer inserted the same key first)."""
    orig = exc.orig
    if getattr(orig, "sqlstate", None) == "23505":
        return True
    message = str(orig)
    return "UNIQUE constraint failed" in message or "duplicate key value" in message


class ProgressionOrchestrator:
    """Applies actions atomically per user and aggregates the outcome."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        locks: UserLockProvider | None = None,
        redis: object | None = None,
        thresholds: Sequence[LevelThreshold] | None = None,
        policy: XPPolicy | None = None,
        clock: Callable[[], datetime] | None = None,
        max_attempts: int = 2,
    ) -> None:
        self.session_factory = session_factory
        self.locks = locks or LocalUserLocks()
        self.redis = redis
        self.thresholds = list(thresholds or DEFAULT_LEVEL_THRESHOLDS)
        level_thresholds.validate_thresholds(self.thresholds)
        self.policy = policy or XPPolicy()
        self.clock = clock or _utcnow
        self.max_attempts = max_attempts

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    async def apply_action(self, user_id: int, action: Action) -> ProgressionResult:
        """Apply one action. StoreConflict is retried once on a fresh transaction."""
        attempt = 0
        while True:
            attempt += 1
            try:
                async with self.locks.hold(user_id):
                    result = await self._apply_once(user_id, action)
                break
            except StoreConflict:
                if attempt >= self.max_attempts:
                    raise
                logger.warning(
                    "Store conflict applying %s for user %s, retrying (attempt %d)",
                    action.kind, user_id, attempt,
                )

        await publish_result(self.redis, result)
        return result

    async def _apply_once(self, user_id: int, action: Action) -> ProgressionResult:
        async with self.session_factory() as db:
            try:
                result = await self._run(db, user_id, action)
                await db.commit()
            except IntegrityError as exc:
                await db.rollback()
                if not _is_unique_violation(exc):
                    raise
                raise StoreConflict(
                    f"Concurrent insert of progression state for user {user_id}",
                    user_id=user_id,
                ) from exc
            except StaleDataError as exc:
                await db.rollback()
                raise StoreConflict(
                    f"Concurrent update of progression state for user {user_id}",
                    user_id=user_id,
                ) from exc
            except Exception:
                await db.rollback()
                raise
        return result

    async def _run(self, db: AsyncSession, user_id: int, action: Action) -> ProgressionResult:
        now = self.clock()

        if action.idempotency_key is not None:
            previous = await self._processed(db, user_id, action.idempotency_key)
            if previous is not None:
                logger.info("Duplicate action %s for user %s", action.idempotency_key, user_id)
                return previous

        result = ProgressionResult(user_id=user_id, action_kind=action.kind)

        progress = await xp_service.get_or_create_progress(db, user_id, lock=True, thresholds=self.thresholds)
        level_thresholds.recompute(progress, self.thresholds)
        start_level = progress.level
        start_xp = progress.total_xp

        streak = activity_service.update_streak(progress, now.date(), self.policy.streak_milestone_days)
        result.streak = StreakSummary(**asdict(streak))
        counters_changed = activity_service.record_activity(progress, action)

        # 1-2: ledger
        award = resolve_award(action, self.policy, streak.current_streak)
        if award.amount > 0:
            key = f"action:{user_id}:{action.idempotency_key}" if action.idempotency_key else None
            event = await xp_service.append(
                db, user_id, award.amount, action.kind,
                {**action.metadata, **award.metadata}, idempotency_key=key, now=now,
            )
            if event is not None:
                result.xp_breakdown.append(XPAward(source=action.kind, amount=event.amount))

        if streak.milestone is not None and self.policy.streak_milestone > 0:
            event = await xp_service.append(
                db, user_id, self.policy.streak_milestone, "streak_milestone",
                {"days": streak.milestone},
                idempotency_key=f"streak:{user_id}:{now.date().isoformat()}", now=now,
            )
            if event is not None:
                result.xp_breakdown.append(
                    XPAward(source="streak_milestone", amount=event.amount, detail=f"{streak.milestone} days")
                )

        # 3: level
        level_thresholds.recompute(progress, self.thresholds)

        # 4: engines
        await self._dispatch(db, user_id, action, progress, result, now)

        # 5: badges, repeated while badge XP unlocks more
        triggers: set[str] = set()
        if progress.total_xp > start_xp or counters_changed or streak.is_new_record:
            triggers.add(badge_service.XP_CHANGE)
        if result.quests_completed:
            triggers.add(badge_service.QUEST_COMPLETED)
        if result.skills_unlocked:
            triggers.add(badge_service.SKILL_UNLOCKED)

        while triggers:
            before = progress.total_xp
            # level_reached badges read the cached level; engine rewards may have moved it
            level_thresholds.recompute(progress, self.thresholds)
            for trigger in sorted(triggers):
                for user_badge in await badge_service.evaluate(db, user_id, trigger, now):
                    self._record_badge(result, user_badge)
            triggers = {badge_service.XP_CHANGE} if progress.total_xp > before else set()

        # final level and quest availability
        level_thresholds.recompute(progress, self.thresholds)
        if progress.level > start_level:
            result.level_up = LevelUp(
                previous_level=start_level,
                new_level=progress.level,
                title=progress.level_title,
            )
            logger.info("User %s leveled up %d -> %d", user_id, start_level, progress.level)

        result.quests_available = await quest_service.refresh_availability(db, user_id, progress.level, now)

        progress.updated_at = now
        result.total_xp = progress.total_xp
        result.xp_awarded = progress.total_xp - start_xp
        result.level = self._level_summary(progress.total_xp)

        if action.idempotency_key is not None:
            db.add(ProcessedAction(
                user_id=user_id,
                idempotency_key=action.idempotency_key,
                action_kind=action.kind,
                result=result.model_dump(mode="json"),
                created_at=now,
            ))
        await db.flush()
        return result

    async def _dispatch(
        self,
        db: AsyncSession,
        user_id: int,
        action: Action,
        progress: UserProgress,
        result: ProgressionResult,
        now: datetime,
    ) -> None:
        if isinstance(action, QuizCompleted):
            await self._track(db, user_id, "quiz_completed", {"score": action.score}, result, now)
            if action.skill_node and action.practice_points > 0:
                try:
                    outcome = await skill_tree_service.record_practice(
                        db, user_id, action.skill_node, action.practice_points, now
                    )
                except PathMismatch as exc:
                    result.ignored.append(IgnoredError(error=exc.code, detail=exc.message))
                else:
                    await self._record_practice(db, user_id, outcome, result, now)

        elif isinstance(action, QuestStarted):
            try:
                await quest_service.start(db, user_id, action.quest, progress.level, now)
            except InvalidTransition as exc:
                if not exc.already_reached:
                    raise
                result.ignored.append(IgnoredError(error=exc.code, detail=exc.message))
            else:
                result.quests_started.append(action.quest)

        elif isinstance(action, QuestObjectiveProgress):
            try:
                advance = await quest_service.advance_objective(
                    db, user_id, action.quest, action.objective, action.delta, now
                )
            except InvalidTransition as exc:
                if not exc.already_reached:
                    raise
                result.ignored.append(IgnoredError(error=exc.code, detail=exc.message))
            else:
                await self._record_advances(db, user_id, [advance], result, now)

        elif isinstance(action, SkillPractice):
            outcome = await skill_tree_service.record_practice(db, user_id, action.node, action.amount, now)
            await self._record_practice(db, user_id, outcome, result, now)

        elif isinstance(action, MentorSession):
            await self._track(db, user_id, "mentor_session", {"session_type": action.session_type}, result, now)

        elif isinstance(action, LearningMilestone):
            await self._track(db, user_id, "learning_milestone", {"milestone_id": action.milestone_id}, result, now)

        else:
            raise TypeError(f"Unhandled action kind: {getattr(action, 'kind', type(action).__name__)}")

    async def _track(
        self,
        db: AsyncSession,
        user_id: int,
        activity: str,
        data: dict,
        result: ProgressionResult,
        now: datetime,
    ) -> None:
        advances = await quest_service.track_activity(db, user_id, activity, data, now)
        await self._record_advances(db, user_id, advances, result, now)

    async def _record_practice(
        self,
        db: AsyncSession,
        user_id: int,
        outcome: PracticeOutcome,
        result: ProgressionResult,
        now: datetime,
    ) -> None:
        result.skill_progress = SkillProgressSummary(
            node=outcome.node,
            progress=outcome.progress,
            target=outcome.target,
            unlocked=outcome.node_unlocked,
        )
        for node in outcome.unlocked_nodes:
            result.skills_unlocked.append(node.slug)
            if node.xp_reward > 0:
                result.xp_breakdown.append(XPAward(source="skill_unlocked", amount=node.xp_reward, detail=node.slug))
        if outcome.unlocked:
            await self._track(db, user_id, "skill_unlocked", {"nodes": outcome.unlocked}, result, now)

    async def _record_advances(
        self,
        db: AsyncSession,
        user_id: int,
        advances: list[QuestAdvance],
        result: ProgressionResult,
        now: datetime,
    ) -> None:
        for advance in advances:
            result.objective_updates.append(ObjectiveUpdate(
                quest=advance.quest,
                objective=advance.objective,
                progress=advance.progress,
                target=advance.target,
            ))
            if advance.completed:
                result.quests_completed.append(QuestCompletion(
                    quest=advance.quest,
                    title=advance.title,
                    xp_reward=advance.xp_awarded,
                ))
                if advance.xp_awarded > 0:
                    result.xp_breakdown.append(
                        XPAward(source="quest_completed", amount=advance.xp_awarded, detail=advance.quest)
                    )

    def _record_badge(self, result: ProgressionResult, user_badge) -> None:
        badge = user_badge.badge
        result.badges_unlocked.append(BadgeUnlock(
            slug=badge.slug,
            name=badge.name,
            rarity=badge.rarity,
            xp_reward=badge.xp_reward,
            title=badge.title,
        ))
        if badge.xp_reward > 0:
            result.xp_breakdown.append(XPAward(source="badge", amount=badge.xp_reward, detail=badge.slug))
        if badge.title:
            result.titles_unlocked.append(badge.title)

    async def _processed(self, db: AsyncSession, user_id: int, key: str) -> ProgressionResult | None:
        row = await db.execute(
            select(ProcessedAction).where(
                ProcessedAction.user_id == user_id,
                ProcessedAction.idempotency_key == key,
            )
        )
        processed = row.scalar_one_or_none()
        if processed is None:
            return None
        previous = ProgressionResult.model_validate(processed.result)
        previous.duplicate = True
        return previous

    def _level_summary(self, total_xp: int) -> LevelSummary:
        return LevelSummary(**asdict(level_thresholds.resolve(total_xp, self.thresholds)))

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------

    async def get_progress(self, user_id: int) -> ProgressResponse:
        """Progress snapshot for the presentation layer. Makes newly eligible quests available."""
        async with self.locks.hold(user_id):
            async with self.session_factory() as db:
                progress = await xp_service.get_or_create_progress(db, user_id, thresholds=self.thresholds)
                level_thresholds.recompute(progress, self.thresholds)
                await quest_service.refresh_availability(db, user_id, progress.level, self.clock())
                badges = await badge_service.list_user_badges(db, user_id)
                quests = await quest_service.list_user_quests(db, user_id)
                await db.commit()

        return ProgressResponse(
            user_id=user_id,
            total_xp=progress.total_xp,
            level=self._level_summary(progress.total_xp),
            primary_path=progress.primary_path,
            current_streak=progress.current_streak,
            longest_streak=progress.longest_streak,
            last_active_date=progress.last_active_date,
            stats={
                "quizzes_completed": progress.quizzes_completed,
                "perfect_scores": progress.perfect_scores,
                "mentor_sessions": progress.mentor_sessions,
                "learning_milestones": progress.learning_milestones,
                "quests_completed": progress.quests_completed,
                "skills_unlocked": progress.skills_unlocked,
                "badges_earned": progress.badges_earned,
            },
            badges=[
                EarnedBadgeResponse(
                    slug=ub.badge.slug,
                    name=ub.badge.name,
                    title=ub.badge.title,
                    earned_at=ub.earned_at,
                )
                for ub in badges
            ],
            titles=[ub.badge.title for ub in badges if ub.badge.title],
            quests=[
                UserQuestResponse(
                    quest=uq.quest.slug,
                    title=uq.quest.title,
                    status=uq.status,
                    xp_reward=uq.quest.xp_reward,
                    objectives=list(uq.objectives_progress or []),
                    started_at=uq.started_at,
                    completed_at=uq.completed_at,
                )
                for uq in quests
            ],
        )

    async def choose_path(self, user_id: int, path_slug: str) -> ProgressResponse:
        async with self.locks.hold(user_id):
            async with self.session_factory() as db:
                await skill_tree_service.choose_path(db, user_id, path_slug)
                await db.commit()
        return await self.get_progress(user_id)

    async def leaderboard(self, limit: int = 50) -> list[LeaderboardEntry]:
        """Top users by total XP. Read-only."""
        async with self.session_factory() as db:
            rows = await db.execute(
                select(UserProgress, User.display_name)
                .join(User, User.id == UserProgress.user_id)
                .where(User.is_active.is_(True))
                .order_by(UserProgress.total_xp.desc(), UserProgress.user_id)
                .limit(limit)
            )
            entries: list[LeaderboardEntry] = []
            for rank, (progress, display_name) in enumerate(rows.all(), start=1):
                info = level_thresholds.resolve(progress.total_xp, self.thresholds)
                entries.append(LeaderboardEntry(
                    rank=rank,
                    user_id=progress.user_id,
                    display_name=display_name,
                    total_xp=progress.total_xp,
                    level=info.level,
                    level_title=info.title,
                ))
            return entries
