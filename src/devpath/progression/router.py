"""Progression API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from devpath.auth.dependencies import get_current_user
from devpath.config import get_settings
from devpath.database import get_session
from devpath.db.models import Quest, User
from devpath.dependencies import get_orchestrator
from devpath.progression import badge_service, skill_tree_service, xp_service
from devpath.progression.orchestrator import ProgressionOrchestrator
from devpath.progression.schemas import (
    ActionRequest,
    AllBadgesResponse,
    AllLevelsResponse,
    BadgeDefinitionResponse,
    ChoosePathRequest,
    LeaderboardResponse,
    LevelEntry,
    ProgressionResult,
    ProgressResponse,
    QuestCatalogEntry,
    QuestCatalogResponse,
    SkillTreeResponse,
    XPHistoryEntry,
    XPHistoryResponse,
)

router = APIRouter(prefix="/api/v1", tags=["Progression"])


# ── Public endpoints ──


@router.get("/levels", response_model=AllLevelsResponse)
async def list_levels(orchestrator: ProgressionOrchestrator = Depends(get_orchestrator)):
    """Get the configured level table."""
    return AllLevelsResponse(
        levels=[
            LevelEntry(level=t.level, title=t.title, cumulative=t.cumulative)
            for t in orchestrator.thresholds
        ]
    )


@router.get("/badges", response_model=AllBadgesResponse)
async def list_badges(db: AsyncSession = Depends(get_session)):
    """Get all active badge definitions."""
    badges = await badge_service.list_badges(db)
    return AllBadgesResponse(
        badges=[
            BadgeDefinitionResponse(
                slug=b.slug,
                name=b.name,
                description=b.description,
                category=b.category,
                rarity=b.rarity,
                title=b.title,
                xp_reward=b.xp_reward,
                trigger_type=b.trigger_type,
                threshold=badge_service.badge_threshold(b),
            )
            for b in badges
        ]
    )


@router.get("/quests", response_model=QuestCatalogResponse)
async def list_quests(db: AsyncSession = Depends(get_session)):
    """Get all published quest templates."""
    result = await db.execute(
        select(Quest).where(Quest.is_published.is_(True)).order_by(Quest.sort_order, Quest.id)
    )
    return QuestCatalogResponse(
        quests=[
            QuestCatalogEntry(
                slug=q.slug,
                title=q.title,
                description=q.description,
                quest_type=q.quest_type,
                required_level=q.required_level,
                xp_reward=q.xp_reward,
                objectives=list(q.objectives),
                required_quests=list(q.required_quests),
            )
            for q in result.scalars()
        ]
    )


@router.get("/leaderboard", response_model=LeaderboardResponse)
async def leaderboard(
    limit: int | None = Query(default=None, ge=1, le=500),
    orchestrator: ProgressionOrchestrator = Depends(get_orchestrator),
):
    """Top users by total XP."""
    entries = await orchestrator.leaderboard(limit or get_settings().leaderboard_size)
    return LeaderboardResponse(entries=entries)


# ── Authenticated endpoints ──


@router.get("/skill-trees/{path}", response_model=SkillTreeResponse)
async def get_skill_tree(
    path: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Skill tree of a path with the user's progress and lock reasons."""
    return SkillTreeResponse(**await skill_tree_service.get_tree(db, user.id, path))


@router.get("/users/me/progress", response_model=ProgressResponse)
async def get_my_progress(
    user: User = Depends(get_current_user),
    orchestrator: ProgressionOrchestrator = Depends(get_orchestrator),
):
    """Current XP, level, streak, badges and quests."""
    return await orchestrator.get_progress(user.id)


@router.get("/users/me/xp/history", response_model=XPHistoryResponse)
async def get_my_xp_history(
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=20, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Paginated XP ledger, newest first."""
    events, total = await xp_service.xp_history(db, user.id, page, per_page)
    return XPHistoryResponse(
        entries=[
            XPHistoryEntry(
                amount=e.amount,
                action_kind=e.action_kind,
                metadata=e.event_metadata or {},
                created_at=e.created_at,
            )
            for e in events
        ],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.post("/users/me/skill-path", response_model=ProgressResponse)
async def choose_skill_path(
    body: ChoosePathRequest,
    user: User = Depends(get_current_user),
    orchestrator: ProgressionOrchestrator = Depends(get_orchestrator),
):
    """Choose the primary skill path."""
    return await orchestrator.choose_path(user.id, body.path)


@router.post("/progression/actions", response_model=ProgressionResult)
async def apply_action(
    body: ActionRequest,
    user: User = Depends(get_current_user),
    orchestrator: ProgressionOrchestrator = Depends(get_orchestrator),
):
    """Apply one user action and return everything it unlocked."""
    return await orchestrator.apply_action(user.id, body.action)
