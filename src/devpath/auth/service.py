"""User lookup and first-sight provisioning."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from devpath.db.models import User

logger = logging.getLogger(__name__)


async def get_user_by_subject(db: AsyncSession, subject: str) -> User | None:
    result = await db.execute(select(User).where(User.subject == subject))
    return result.scalar_one_or_none()


async def get_or_create_user(db: AsyncSession, subject: str, display_name: str | None = None) -> User:
    """Return the user for an identity subject, creating the row on first sight."""
    user = await get_user_by_subject(db, subject)
    if user is not None:
        return user

    user = User(subject=subject, display_name=display_name, is_active=True)
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        # Another request created the same subject first
        await db.rollback()
        user = await get_user_by_subject(db, subject)
        if user is None:
            raise
        return user

    logger.info("Provisioned user %s for subject %s", user.id, subject)
    return user
