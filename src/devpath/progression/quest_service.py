"""Quest engine: per-user state machine: available -> active -> completed."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from devpath.db.models import Quest, UserQuest
from devpath.progression import xp_service
from devpath.progression.errors import InvalidTransition, NotFound

logger = logging.getLogger(__name__)

AVAILABLE = "available"
ACTIVE = "active"
COMPLETED = "completed"

VALID_TRANSITIONS: dict[str, list[str]] = {
    AVAILABLE: [ACTIVE],
    ACTIVE: [COMPLETED],
    COMPLETED: [],
}

_STATUS_ORDER = {AVAILABLE: 0, ACTIVE: 1, COMPLETED: 2}


def validate_transition(current_status: str, target_status: str) -> None:
    """Validate a state transition. Raises InvalidTransition if invalid."""
    valid = VALID_TRANSITIONS.get(current_status, [])
    if target_status not in valid:
        raise InvalidTransition(
            f"Invalid transition: {current_status} -> {target_status}. "
            f"Valid transitions: {valid}",
            already_reached=_STATUS_ORDER.get(current_status, -1) >= _STATUS_ORDER.get(target_status, 99),
            status=current_status,
        )


@dataclass
class QuestAdvance:
    quest: str
    objective: str
    progress: int
    target: int
    title: str = ""
    completed: bool = False
    xp_awarded: int = 0


async def get_quest(db: AsyncSession, slug: str) -> Quest:
    """Fetch a quest template by slug or raise NotFound."""
    result = await db.execute(select(Quest).where(Quest.slug == slug))
    quest = result.scalar_one_or_none()
    if quest is None or not quest.is_published:
        raise NotFound(f"Quest not found: {slug}", quest=slug)
    return quest


async def get_user_quest(db: AsyncSession, user_id: int, quest_id: int) -> UserQuest | None:
    result = await db.execute(
        select(UserQuest).where(UserQuest.user_id == user_id, UserQuest.quest_id == quest_id)
    )
    return result.scalar_one_or_none()


async def list_user_quests(db: AsyncSession, user_id: int, status: str | None = None) -> list[UserQuest]:
    stmt = select(UserQuest).where(UserQuest.user_id == user_id)
    if status is not None:
        stmt = stmt.where(UserQuest.status == status)
    result = await db.execute(stmt.order_by(UserQuest.id))
    return list(result.scalars().all())


async def _completed_slugs(db: AsyncSession, user_id: int) -> set[str]:
    return {uq.quest.slug for uq in await list_user_quests(db, user_id, COMPLETED)}


def _fresh_objectives(quest: Quest) -> list[dict[str, Any]]:
    return [
        {
            "objective_id": o["id"],
            "target_type": o["target_type"],
            "target_value": o["target_value"],
            "target_ref": o.get("target_ref"),
            "optional": o.get("optional", False),
            "current_progress": 0,
            "completed_at": None,
        }
        for o in quest.objectives
    ]


def _required_met(objectives: list[dict[str, Any]]) -> bool:
    return all(
        o["current_progress"] >= o["target_value"]
        for o in objectives
        if not o.get("optional", False)
    )


async def start(
    db: AsyncSession,
    user_id: int,
    quest_slug: str,
    level: int,
    now: datetime | None = None,
) -> UserQuest:
    """Move a quest from available to active with zero progress on every objective."""
    quest = await get_quest(db, quest_slug)
    user_quest = await get_user_quest(db, user_id, quest.id)

    if user_quest is not None:
        validate_transition(user_quest.status, ACTIVE)

    if level < quest.required_level:
        raise InvalidTransition(
            f"Quest {quest.slug} requires level {quest.required_level}",
            quest=quest.slug,
            level=level,
        )

    if quest.required_quests:
        missing = set(quest.required_quests) - await _completed_slugs(db, user_id)
        if missing:
            raise InvalidTransition(
                f"Quest {quest.slug} requires completing: {', '.join(sorted(missing))}",
                quest=quest.slug,
            )

    now = now or datetime.now(timezone.utc)
    if user_quest is None:
        user_quest = UserQuest(user_id=user_id, quest_id=quest.id, status=AVAILABLE, reward_granted=False)
        user_quest.quest = quest
        db.add(user_quest)

    user_quest.status = ACTIVE
    user_quest.objectives_progress = _fresh_objectives(quest)
    user_quest.started_at = now
    user_quest.updated_at = now
    await db.flush()

    logger.info("User %s started quest %s", user_id, quest.slug)
    return user_quest


async def advance_objective(
    db: AsyncSession,
    user_id: int,
    quest_slug: str,
    objective_id: str,
    delta: int,
    now: datetime | None = None,
) -> QuestAdvance:
    """Add progress to one objective of an active quest; completes the quest when all required objectives are met."""
    quest = await get_quest(db, quest_slug)
    user_quest = await get_user_quest(db, user_id, quest.id)

    if user_quest is None or user_quest.status == AVAILABLE:
        raise InvalidTransition(f"Quest {quest.slug} has not been started", quest=quest.slug)
    if user_quest.status == COMPLETED:
        raise InvalidTransition(
            f"Quest {quest.slug} is already completed",
            already_reached=True,
            quest=quest.slug,
        )
    if delta < 0:
        raise InvalidTransition(
            f"Objective progress cannot decrease (delta={delta})",
            quest=quest.slug,
            objective=objective_id,
        )

    now = now or datetime.now(timezone.utc)

    # Reassign a new list so the JSON column change is detected
    objectives = [dict(o) for o in user_quest.objectives_progress]
    target = next((o for o in objectives if o["objective_id"] == objective_id), None)
    if target is None:
        raise NotFound(f"Objective {objective_id} not found in quest {quest.slug}", objective=objective_id)

    target["current_progress"] = min(target["current_progress"] + delta, target["target_value"])
    if target["current_progress"] >= target["target_value"] and target["completed_at"] is None:
        target["completed_at"] = now.isoformat()

    user_quest.objectives_progress = objectives
    user_quest.updated_at = now

    advance = QuestAdvance(
        quest=quest.slug,
        objective=objective_id,
        progress=target["current_progress"],
        target=target["target_value"],
        title=quest.title,
    )

    if _required_met(objectives):
        advance.completed = True
        advance.xp_awarded = await _complete(db, user_id, user_quest, quest, now)

    await db.flush()
    return advance


async def _complete(
    db: AsyncSession,
    user_id: int,
    user_quest: UserQuest,
    quest: Quest,
    now: datetime,
) -> int:
    """Mark completed and grant the reward exactly once. Returns XP granted."""
    validate_transition(user_quest.status, COMPLETED)
    user_quest.status = COMPLETED
    user_quest.completed_at = now

    if user_quest.reward_granted:
        return 0
    user_quest.reward_granted = True

    progress = await xp_service.get_or_create_progress(db, user_id)
    progress.quests_completed += 1

    granted = 0
    if quest.xp_reward > 0:
        event = await xp_service.append(
            db,
            user_id,
            quest.xp_reward,
            "quest_completed",
            {"quest": quest.slug, "title": quest.title},
            idempotency_key=f"quest:{user_id}:{quest.slug}",
            now=now,
        )
        if event is not None:
            granted = event.amount

    logger.info("User %s completed quest %s (+%d XP)", user_id, quest.slug, granted)
    return granted


async def refresh_availability(
    db: AsyncSession,
    user_id: int,
    level: int,
    now: datetime | None = None,
) -> list[str]:
    """Create 'available' rows for quests the user just became eligible for."""
    result = await db.execute(
        select(Quest).where(Quest.is_published.is_(True)).order_by(Quest.sort_order, Quest.id)
    )
    quests = list(result.scalars().all())

    rows = await list_user_quests(db, user_id)
    known = {uq.quest_id for uq in rows}
    completed = {uq.quest.slug for uq in rows if uq.status == COMPLETED}

    now = now or datetime.now(timezone.utc)
    unlocked: list[str] = []
    for quest in quests:
        if quest.id in known or level < quest.required_level:
            continue
        if not set(quest.required_quests) <= completed:
            continue
        user_quest = UserQuest(
            user_id=user_id,
            quest_id=quest.id,
            status=AVAILABLE,
            objectives_progress=[],
            reward_granted=False,
            updated_at=now,
        )
        user_quest.quest = quest
        db.add(user_quest)
        unlocked.append(quest.slug)

    if unlocked:
        await db.flush()
    return unlocked


def _activity_delta(objective: dict[str, Any], activity: str, data: dict[str, Any]) -> int:
    """How much an activity advances one objective (0 if it does not apply)."""
    target_type = objective["target_type"]
    ref = objective.get("target_ref")
    remaining = objective["target_value"] - objective["current_progress"]

    if activity == "quiz_completed":
        if target_type == "quiz_count":
            return 1
        if target_type == "quiz_score" and data.get("score", 0) >= objective["target_value"]:
            return remaining
    elif activity == "skill_unlocked" and target_type == "skill_unlock":
        nodes = data.get("nodes", [])
        return len([n for n in nodes if ref is None or n == ref])
    elif activity == "mentor_session" and target_type == "mentor_sessions":
        return 1
    elif activity == "learning_milestone" and target_type == "learning_milestones":
        return 1
    return 0


async def track_activity(
    db: AsyncSession,
    user_id: int,
    activity: str,
    data: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> list[QuestAdvance]:
    """Advance objectives of active quests that the activity contributes to."""
    data = data or {}
    advances: list[QuestAdvance] = []

    for user_quest in await list_user_quests(db, user_id, ACTIVE):
        for objective in list(user_quest.objectives_progress):
            if user_quest.status != ACTIVE:
                break
            if objective["current_progress"] >= objective["target_value"]:
                continue
            delta = _activity_delta(objective, activity, data)
            if delta <= 0:
                continue
            advances.append(
                await advance_objective(
                    db, user_id, user_quest.quest.slug, objective["objective_id"], delta, now
                )
            )

    return advances
