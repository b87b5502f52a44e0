"""XP ledger: append-only events with idempotency and a cached running total."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from devpath.config import LevelThreshold
from devpath.db.models import UserProgress, XPEvent
from devpath.progression.errors import InvalidAmount
from devpath.progression.level_thresholds import resolve

logger = logging.getLogger(__name__)


async def get_or_create_progress(
    db: AsyncSession,
    user_id: int,
    *,
    lock: bool = False,
    thresholds: Sequence[LevelThreshold] | None = None,
) -> UserProgress:
    """Get or create the denormalized progress row for a user.

    With ``lock=True`` the row is read with SELECT ... FOR UPDATE (a no-op on
    SQLite, which serializes writers on its own).

    A new row starts at the first level of ``thresholds`` (the default table when omitted).
    """
    stmt = select(UserProgress).where(UserProgress.user_id == user_id)
    if lock:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    progress = result.scalar_one_or_none()
    if progress is None:
        base = resolve(0, thresholds)
        progress = UserProgress(
            user_id=user_id,
            total_xp=0,
            level=base.level,
            level_title=base.title,
            quizzes_completed=0,
            perfect_scores=0,
            mentor_sessions=0,
            learning_milestones=0,
            quests_completed=0,
            skills_unlocked=0,
            badges_earned=0,
            current_streak=0,
            longest_streak=0,
            updated_at=datetime.now(timezone.utc),
        )
        db.add(progress)
        await db.flush()
    return progress


async def append(
    db: AsyncSession,
    user_id: int,
    amount: int,
    action_kind: str,
    metadata: dict[str, Any] | None = None,
    idempotency_key: str | None = None,
    now: datetime | None = None,
) -> XPEvent | None:
    """Append an XP event and bump the cached total in the same transaction.

    Returns the new event, or None if ``idempotency_key`` was already used
    (nothing is changed in that case). Level recomputation is the caller's job.
    """
    if amount <= 0:
        raise InvalidAmount(f"XP amount must be positive, got {amount}", amount=amount)

    if idempotency_key is not None:
        existing = await db.execute(
            select(XPEvent.id).where(XPEvent.idempotency_key == idempotency_key)
        )
        if existing.scalar_one_or_none() is not None:
            logger.info("Duplicate XP grant ignored: %s", idempotency_key)
            return None

    now = now or datetime.now(timezone.utc)
    event = XPEvent(
        user_id=user_id,
        amount=amount,
        action_kind=action_kind,
        event_metadata=metadata or {},
        idempotency_key=idempotency_key,
        created_at=now,
    )
    db.add(event)

    progress = await get_or_create_progress(db, user_id)
    progress.total_xp += amount
    progress.updated_at = now

    await db.flush()
    return event


async def total_xp(db: AsyncSession, user_id: int) -> int:
    """Sum of all ledger events for the user (the source of truth for the cache)."""
    result = await db.execute(
        select(func.coalesce(func.sum(XPEvent.amount), 0)).where(XPEvent.user_id == user_id)
    )
    return int(result.scalar_one())


async def xp_history(
    db: AsyncSession,
    user_id: int,
    page: int = 1,
    per_page: int = 20,
) -> tuple[list[XPEvent], int]:
    """Return one page of the user's XP events (newest first) and the total count."""
    count = await db.execute(
        select(func.count()).select_from(XPEvent).where(XPEvent.user_id == user_id)
    )
    result = await db.execute(
        select(XPEvent)
        .where(XPEvent.user_id == user_id)
        .order_by(XPEvent.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    return list(result.scalars().all()), count.scalar_one()
