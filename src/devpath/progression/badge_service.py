"""Badge evaluator: threshold criteria per trigger category, awarded at most once."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from devpath.db.models import BadgeDefinition, UserBadge, UserProgress
from devpath.progression import xp_service

logger = logging.getLogger(__name__)

XP_CHANGE = "xp_change"
QUEST_COMPLETED = "quest_completed"
SKILL_UNLOCKED = "skill_unlocked"

TRIGGER_CATEGORIES: dict[str, frozenset[str]] = {
    XP_CHANGE: frozenset({
        "xp_total",
        "quiz_count",
        "perfect_scores",
        "mentor_sessions",
        "learning_milestones",
        "daily_streak",
        "level_reached",
    }),
    QUEST_COMPLETED: frozenset({"quest_completions"}),
    SKILL_UNLOCKED: frozenset({"skills_unlocked"}),
}

# trigger_type -> progress column the threshold is compared against.
# daily_streak reads the longest streak so a broken streak never un-earns eligibility.
_METRICS: dict[str, str] = {
    "xp_total": "total_xp",
    "quiz_count": "quizzes_completed",
    "perfect_scores": "perfect_scores",
    "mentor_sessions": "mentor_sessions",
    "learning_milestones": "learning_milestones",
    "daily_streak": "longest_streak",
    "level_reached": "level",
    "quest_completions": "quests_completed",
    "skills_unlocked": "skills_unlocked",
}


def badge_threshold(badge: BadgeDefinition) -> int:
    return int((badge.trigger_config or {}).get("threshold", 1))


def metric_value(progress: UserProgress, trigger_type: str) -> int:
    """Current value of the counter a trigger type reads."""
    return int(getattr(progress, _METRICS[trigger_type]) or 0)


async def get_badge_by_slug(db: AsyncSession, slug: str) -> BadgeDefinition | None:
    """Fetch a badge definition by slug."""
    result = await db.execute(select(BadgeDefinition).where(BadgeDefinition.slug == slug))
    return result.scalar_one_or_none()


async def has_badge(db: AsyncSession, user_id: int, badge_id: int) -> bool:
    """Check if user already has a specific badge."""
    result = await db.execute(
        select(UserBadge.id).where(UserBadge.user_id == user_id, UserBadge.badge_id == badge_id)
    )
    return result.scalar_one_or_none() is not None


async def list_badges(db: AsyncSession) -> list[BadgeDefinition]:
    result = await db.execute(
        select(BadgeDefinition)
        .where(BadgeDefinition.is_active.is_(True))
        .order_by(BadgeDefinition.sort_order, BadgeDefinition.id)
    )
    return list(result.scalars().all())


async def list_user_badges(db: AsyncSession, user_id: int) -> list[UserBadge]:
    result = await db.execute(
        select(UserBadge).where(UserBadge.user_id == user_id).order_by(UserBadge.earned_at, UserBadge.id)
    )
    return list(result.scalars().all())


async def evaluate(
    db: AsyncSession,
    user_id: int,
    trigger: str,
    now: datetime | None = None,
) -> list[UserBadge]:
    """Award every badge in the trigger's category whose threshold is now met.

    Returns the newly inserted UserBadge rows. Calling again with no counter
    change returns an empty list.
    """
    if trigger not in TRIGGER_CATEGORIES:
        raise ValueError(f"Unknown badge trigger: {trigger}")

    trigger_types = TRIGGER_CATEGORIES[trigger]
    progress = await xp_service.get_or_create_progress(db, user_id)
    held = {ub.badge_id for ub in await list_user_badges(db, user_id)}
    now = now or datetime.now(timezone.utc)

    awarded: list[UserBadge] = []
    for badge in await list_badges(db):
        if badge.trigger_type not in trigger_types or badge.id in held:
            continue
        value = metric_value(progress, badge.trigger_type)
        if value < badge_threshold(badge):
            continue

        user_badge = UserBadge(
            user_id=user_id,
            badge_id=badge.id,
            earned_at=now,
            badge_metadata={"trigger": trigger, "value": value},
        )
        user_badge.badge = badge
        db.add(user_badge)
        # UNIQUE(user_id, badge_id) surfaces a concurrent award as IntegrityError here
        await db.flush()

        progress.badges_earned += 1
        if badge.xp_reward > 0:
            await xp_service.append(
                db,
                user_id,
                badge.xp_reward,
                "badge",
                {"badge": badge.slug, "name": badge.name},
                idempotency_key=f"badge:{user_id}:{badge.slug}",
                now=now,
            )
        held.add(badge.id)
        awarded.append(user_badge)
        logger.info("User %s earned badge %s", user_id, badge.slug)

    return awarded
