"""Skill tree engine: practice progress and prerequisite-gated unlocking."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from devpath.db.models import SkillNode, SkillPath, UserSkillProgress
from devpath.progression import xp_service
from devpath.progression.errors import InvalidAmount, NotFound, PathMismatch

logger = logging.getLogger(__name__)


@dataclass
class PracticeOutcome:
    node: str
    progress: int
    target: int
    unlocked_nodes: list[SkillNode] = field(default_factory=list)
    xp_awarded: int = 0
    node_unlocked: bool = False

    @property
    def unlocked(self) -> list[str]:
        return [n.slug for n in self.unlocked_nodes]


async def get_path(db: AsyncSession, slug: str) -> SkillPath:
    """Fetch a skill path by slug or raise NotFound."""
    result = await db.execute(select(SkillPath).where(SkillPath.slug == slug))
    path = result.scalar_one_or_none()
    if path is None:
        raise NotFound(f"Skill path not found: {slug}", path=slug)
    return path


async def get_node(db: AsyncSession, slug: str) -> SkillNode:
    """Fetch a skill node by slug or raise NotFound."""
    result = await db.execute(select(SkillNode).where(SkillNode.slug == slug))
    node = result.scalar_one_or_none()
    if node is None:
        raise NotFound(f"Skill node not found: {slug}", node=slug)
    return node


async def list_paths(db: AsyncSession) -> list[SkillPath]:
    result = await db.execute(select(SkillPath).order_by(SkillPath.sort_order, SkillPath.id))
    return list(result.scalars().all())


async def choose_path(db: AsyncSession, user_id: int, path_slug: str) -> SkillPath:
    """Set the user's primary path. Progress on other paths is kept but frozen."""
    path = await get_path(db, path_slug)
    progress = await xp_service.get_or_create_progress(db, user_id)
    if progress.primary_path != path.slug:
        logger.info("User %s switched skill path %s -> %s", user_id, progress.primary_path, path.slug)
        progress.primary_path = path.slug
        progress.updated_at = datetime.now(timezone.utc)
        await db.flush()
    return path


async def _load_path_state(
    db: AsyncSession,
    user_id: int,
    path_id: int,
) -> tuple[list[SkillNode], dict[int, UserSkillProgress]]:
    """Load all nodes of a path and the user's progress rows keyed by node id."""
    nodes_result = await db.execute(
        select(SkillNode).where(SkillNode.path_id == path_id).order_by(SkillNode.tier, SkillNode.id)
    )
    nodes = list(nodes_result.scalars().all())

    progress_result = await db.execute(
        select(UserSkillProgress).where(
            UserSkillProgress.user_id == user_id,
            UserSkillProgress.node_id.in_([n.id for n in nodes]),
        )
    )
    return nodes, {p.node_id: p for p in progress_result.scalars()}


async def record_practice(
    db: AsyncSession,
    user_id: int,
    node_slug: str,
    amount: int,
    now: datetime | None = None,
) -> PracticeOutcome:
    """Add practice points to a node (capped at its target) and unlock what became eligible."""
    if amount <= 0:
        raise InvalidAmount(f"Practice amount must be positive, got {amount}", amount=amount)

    node = await get_node(db, node_slug)
    progress = await xp_service.get_or_create_progress(db, user_id)
    if progress.primary_path != node.path.slug:
        raise PathMismatch(
            f"Node {node.slug} belongs to path {node.path.slug}, "
            f"user path is {progress.primary_path or 'not chosen'}",
            node=node.slug,
            path=progress.primary_path,
        )

    now = now or datetime.now(timezone.utc)
    nodes, progress_map = await _load_path_state(db, user_id, node.path_id)

    row = progress_map.get(node.id)
    if row is None:
        row = UserSkillProgress(
            user_id=user_id,
            node_id=node.id,
            current_progress=0,
            target=node.target,
        )
        db.add(row)
        progress_map[node.id] = row
    row.current_progress = min(row.current_progress + amount, row.target)
    row.updated_at = now
    await db.flush()

    unlocked, xp_awarded = await _unlock_eligible(db, user_id, nodes, progress_map, now)
    return PracticeOutcome(
        node=node.slug,
        progress=row.current_progress,
        target=row.target,
        unlocked_nodes=unlocked,
        xp_awarded=xp_awarded,
        node_unlocked=row.unlocked_at is not None,
    )


async def evaluate_unlocks(
    db: AsyncSession,
    user_id: int,
    now: datetime | None = None,
) -> list[SkillNode]:
    """Re-run unlock evaluation on the user's chosen path. Idempotent."""
    progress = await xp_service.get_or_create_progress(db, user_id)
    if progress.primary_path is None:
        return []
    path = await get_path(db, progress.primary_path)
    nodes, progress_map = await _load_path_state(db, user_id, path.id)
    unlocked, _ = await _unlock_eligible(db, user_id, nodes, progress_map, now or datetime.now(timezone.utc))
    return unlocked


async def _unlock_eligible(
    db: AsyncSession,
    user_id: int,
    nodes: list[SkillNode],
    progress_map: dict[int, UserSkillProgress],
    now: datetime,
) -> tuple[list[SkillNode], int]:
    """Unlock nodes until a fixpoint: threshold met and every prerequisite unlocked."""
    unlocked_slugs = {
        n.slug for n in nodes
        if n.id in progress_map and progress_map[n.id].unlocked_at is not None
    }
    newly: list[SkillNode] = []

    changed = True
    while changed:
        changed = False
        for node in nodes:
            if node.slug in unlocked_slugs:
                continue
            row = progress_map.get(node.id)
            if row is None or row.current_progress < row.target:
                continue
            if not all(p in unlocked_slugs for p in node.prerequisites):
                continue
            row.unlocked_at = now
            unlocked_slugs.add(node.slug)
            newly.append(node)
            changed = True

    xp_awarded = 0
    if newly:
        progress = await xp_service.get_or_create_progress(db, user_id)
        progress.skills_unlocked += len(newly)
        for node in newly:
            if node.xp_reward <= 0:
                continue
            event = await xp_service.append(
                db,
                user_id,
                node.xp_reward,
                "skill_unlocked",
                {"node": node.slug, "title": node.title},
                idempotency_key=f"skill:{user_id}:{node.slug}",
                now=now,
            )
            if event is not None:
                xp_awarded += event.amount
        await db.flush()
        logger.info("User %s unlocked skill nodes: %s", user_id, [n.slug for n in newly])

    return newly, xp_awarded


def lock_reason(
    node: SkillNode,
    unlocked_slugs: set[str],
    titles: dict[str, str],
    row: UserSkillProgress | None,
) -> str | None:
    """Human-readable reason a node is still locked, or None if it is unlocked."""
    if node.slug in unlocked_slugs:
        return None
    missing = [p for p in node.prerequisites if p not in unlocked_slugs]
    if missing:
        return "Complete: " + ", ".join(titles.get(p, p) for p in missing)
    current = row.current_progress if row is not None else 0
    if current < node.target:
        return f"Practice {node.target - current} more points"
    return "Requirements not met"


async def get_tree(db: AsyncSession, user_id: int, path_slug: str) -> dict:
    """Path nodes with the user's progress, unlock status and lock reasons."""
    path = await get_path(db, path_slug)
    progress = await xp_service.get_or_create_progress(db, user_id)
    nodes, progress_map = await _load_path_state(db, user_id, path.id)

    unlocked_slugs = {
        n.slug for n in nodes
        if n.id in progress_map and progress_map[n.id].unlocked_at is not None
    }
    titles = {n.slug: n.title for n in nodes}

    items = []
    for node in nodes:
        row = progress_map.get(node.id)
        items.append({
            "slug": node.slug,
            "title": node.title,
            "tier": node.tier,
            "target": node.target,
            "progress": row.current_progress if row is not None else 0,
            "xp_reward": node.xp_reward,
            "prerequisites": list(node.prerequisites),
            "unlocked": node.slug in unlocked_slugs,
            "lock_reason": lock_reason(node, unlocked_slugs, titles, row),
        })

    return {
        "path": path.slug,
        "title": path.title,
        "is_chosen": progress.primary_path == path.slug,
        "nodes": items,
        "unlocked_count": len(unlocked_slugs),
        "completion_percentage": (len(unlocked_slugs) / len(nodes)) * 100 if nodes else 0.0,
    }
