"""Catalog seed data: badges, quests and skill trees, upserted on startup."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from devpath.db.models import BadgeDefinition, Quest, SkillNode, SkillPath
from devpath.progression.schemas import QuestDefinition, SkillPathDefinition

logger = logging.getLogger(__name__)

BADGE_SEED_DATA: list[dict] = [
    # Learning
    {
        "slug": "first_quiz",
        "name": "First Steps",
        "description": "Complete your very first quiz",
        "category": "learning",
        "rarity": "common",
        "xp_reward": 25,
        "trigger_type": "quiz_count",
        "trigger_config": {"threshold": 1},
        "sort_order": 1,
    },
    {
        "slug": "quiz_10",
        "name": "Quiz Enthusiast",
        "description": "Complete 10 quizzes",
        "category": "learning",
        "rarity": "common",
        "title": "Quiz Enthusiast",
        "xp_reward": 100,
        "trigger_type": "quiz_count",
        "trigger_config": {"threshold": 10},
        "sort_order": 2,
    },
    {
        "slug": "quiz_50",
        "name": "Quiz Machine",
        "description": "Complete 50 quizzes",
        "category": "learning",
        "rarity": "rare",
        "xp_reward": 300,
        "trigger_type": "quiz_count",
        "trigger_config": {"threshold": 50},
        "sort_order": 3,
    },
    {
        "slug": "perfect_score",
        "name": "Flawless",
        "description": "Score 100% on a quiz",
        "category": "learning",
        "rarity": "rare",
        "title": "Perfectionist",
        "xp_reward": 50,
        "trigger_type": "perfect_scores",
        "trigger_config": {"threshold": 1},
        "sort_order": 4,
    },
    {
        "slug": "perfect_10",
        "name": "Untouchable",
        "description": "Score 100% on 10 quizzes",
        "category": "learning",
        "rarity": "epic",
        "xp_reward": 250,
        "trigger_type": "perfect_scores",
        "trigger_config": {"threshold": 10},
        "sort_order": 5,
    },
    {
        "slug": "first_milestone",
        "name": "On the Map",
        "description": "Reach your first learning milestone",
        "category": "learning",
        "rarity": "common",
        "xp_reward": 25,
        "trigger_type": "learning_milestones",
        "trigger_config": {"threshold": 1},
        "sort_order": 6,
    },
    # Mentoring
    {
        "slug": "first_mentor_session",
        "name": "Hello, Mentor",
        "description": "Have your first session with the AI mentor",
        "category": "mentoring",
        "rarity": "common",
        "xp_reward": 25,
        "trigger_type": "mentor_sessions",
        "trigger_config": {"threshold": 1},
        "sort_order": 10,
    },
    {
        "slug": "mentor_25",
        "name": "Regular",
        "description": "Complete 25 mentor sessions",
        "category": "mentoring",
        "rarity": "rare",
        "title": "Mentee",
        "xp_reward": 150,
        "trigger_type": "mentor_sessions",
        "trigger_config": {"threshold": 25},
        "sort_order": 11,
    },
    # Streaks
    {
        "slug": "streak_7",
        "name": "Week Warrior",
        "description": "Stay active 7 days in a row",
        "category": "streak",
        "rarity": "rare",
        "title": "Consistent",
        "xp_reward": 100,
        "trigger_type": "daily_streak",
        "trigger_config": {"threshold": 7},
        "sort_order": 20,
    },
    {
        "slug": "streak_30",
        "name": "Habit Formed",
        "description": "Stay active 30 days in a row",
        "category": "streak",
        "rarity": "epic",
        "title": "Unstoppable",
        "xp_reward": 500,
        "trigger_type": "daily_streak",
        "trigger_config": {"threshold": 30},
        "sort_order": 21,
    },
    # Progression
    {
        "slug": "xp_1000",
        "name": "Four Digits",
        "description": "Earn 1,000 XP",
        "category": "progression",
        "rarity": "common",
        "xp_reward": 50,
        "trigger_type": "xp_total",
        "trigger_config": {"threshold": 1000},
        "sort_order": 30,
    },
    {
        "slug": "level_5",
        "name": "Sage Status",
        "description": "Reach level 5",
        "category": "progression",
        "rarity": "epic",
        "title": "Sage",
        "xp_reward": 200,
        "trigger_type": "level_reached",
        "trigger_config": {"threshold": 5},
        "sort_order": 31,
    },
    # Quests
    {
        "slug": "first_quest",
        "name": "Adventurer",
        "description": "Complete your first quest",
        "category": "quests",
        "rarity": "common",
        "xp_reward": 50,
        "trigger_type": "quest_completions",
        "trigger_config": {"threshold": 1},
        "sort_order": 40,
    },
    {
        "slug": "quest_10",
        "name": "Questmaster",
        "description": "Complete 10 quests",
        "category": "quests",
        "rarity": "epic",
        "title": "Questmaster",
        "xp_reward": 300,
        "trigger_type": "quest_completions",
        "trigger_config": {"threshold": 10},
        "sort_order": 41,
    },
    # Skills
    {
        "slug": "first_skill",
        "name": "Skill Unlocked",
        "description": "Unlock your first skill node",
        "category": "skills",
        "rarity": "common",
        "xp_reward": 25,
        "trigger_type": "skills_unlocked",
        "trigger_config": {"threshold": 1},
        "sort_order": 50,
    },
    {
        "slug": "skills_5",
        "name": "Specialist",
        "description": "Unlock 5 skill nodes",
        "category": "skills",
        "rarity": "rare",
        "title": "Specialist",
        "xp_reward": 150,
        "trigger_type": "skills_unlocked",
        "trigger_config": {"threshold": 5},
        "sort_order": 51,
    },
]

QUEST_SEED_DATA: list[dict] = [
    {
        "slug": "intro",
        "title": "Welcome to DevPath",
        "description": "Take a quiz and say hello to your mentor",
        "quest_type": "main",
        "xp_reward": 100,
        "objectives": [
            {"id": "first_quiz", "target_type": "quiz_count", "target_value": 1,
             "description": "Complete any quiz"},
            {"id": "meet_mentor", "target_type": "mentor_sessions", "target_value": 1,
             "description": "Chat with your AI mentor"},
        ],
        "sort_order": 1,
    },
    {
        "slug": "quiz_master",
        "title": "Quiz Master",
        "description": "Prove your knowledge across five quizzes",
        "quest_type": "main",
        "xp_reward": 200,
        "required_quests": ["intro"],
        "objectives": [
            {"id": "five_quizzes", "target_type": "quiz_count", "target_value": 5,
             "description": "Complete 5 quizzes"},
            {"id": "ace_one", "target_type": "quiz_score", "target_value": 90, "optional": True,
             "description": "Score at least 90% on a quiz"},
        ],
        "sort_order": 2,
    },
    {
        "slug": "first_skill",
        "title": "Growing Roots",
        "description": "Unlock your first node in the skill tree",
        "quest_type": "side",
        "xp_reward": 150,
        "objectives": [
            {"id": "unlock_node", "target_type": "skill_unlock", "target_value": 1,
             "description": "Unlock a skill node"},
        ],
        "sort_order": 3,
    },
    {
        "slug": "interview_ready",
        "title": "Interview Ready",
        "description": "Practice with your mentor until interviews feel routine",
        "quest_type": "side",
        "required_level": 2,
        "xp_reward": 150,
        "objectives": [
            {"id": "mentor_sessions", "target_type": "mentor_sessions", "target_value": 5,
             "description": "Complete 5 mentor sessions"},
        ],
        "sort_order": 4,
    },
    {
        "slug": "lifelong_learner",
        "title": "Lifelong Learner",
        "description": "Keep hitting learning milestones",
        "quest_type": "storyline",
        "required_level": 3,
        "xp_reward": 300,
        "required_quests": ["quiz_master"],
        "objectives": [
            {"id": "milestones", "target_type": "learning_milestones", "target_value": 3,
             "description": "Reach 3 learning milestones"},
        ],
        "sort_order": 5,
    },
]

SKILL_TREE_SEED_DATA: list[dict] = [
    {
        "slug": "frontend",
        "title": "Frontend Developer",
        "description": "Build interfaces people love to use",
        "sort_order": 1,
        "nodes": [
            {"slug": "html-css", "title": "HTML & CSS", "tier": 1, "target": 100, "xp_reward": 50},
            {"slug": "javascript", "title": "JavaScript", "tier": 2, "target": 150, "xp_reward": 75,
             "prerequisites": ["html-css"]},
            {"slug": "react", "title": "React", "tier": 3, "target": 200, "xp_reward": 100,
             "prerequisites": ["javascript"]},
            {"slug": "typescript", "title": "TypeScript", "tier": 3, "target": 150, "xp_reward": 100,
             "prerequisites": ["javascript"]},
        ],
    },
    {
        "slug": "backend",
        "title": "Backend Developer",
        "description": "Design the services behind the screen",
        "sort_order": 2,
        "nodes": [
            {"slug": "python-basics", "title": "Python Basics", "tier": 1, "target": 100, "xp_reward": 50},
            {"slug": "sql", "title": "SQL", "tier": 2, "target": 150, "xp_reward": 75,
             "prerequisites": ["python-basics"]},
            {"slug": "web-apis", "title": "Web APIs", "tier": 3, "target": 200, "xp_reward": 100,
             "prerequisites": ["python-basics", "sql"]},
        ],
    },
    {
        "slug": "data-science",
        "title": "Data Scientist",
        "description": "Turn data into decisions",
        "sort_order": 3,
        "nodes": [
            {"slug": "statistics", "title": "Statistics", "tier": 1, "target": 100, "xp_reward": 50},
            {"slug": "pandas", "title": "Pandas", "tier": 2, "target": 150, "xp_reward": 75,
             "prerequisites": ["statistics"]},
            {"slug": "machine-learning", "title": "Machine Learning", "tier": 3, "target": 250, "xp_reward": 150,
             "prerequisites": ["pandas"]},
        ],
    },
]


def _insert_for(db: AsyncSession):
    """Dialect-specific INSERT supporting ON CONFLICT."""
    if db.get_bind().dialect.name == "sqlite":
        return sqlite_insert
    return pg_insert


def _upsert(db: AsyncSession, model: type, values: dict, update: list[str]):
    stmt = _insert_for(db)(model).values(**values)
    return stmt.on_conflict_do_update(
        index_elements=["slug"],
        set_={col: getattr(stmt.excluded, col) for col in update},
    )


async def seed_badges(db: AsyncSession, badges: list[dict] | None = None) -> int:
    """Upsert badge definitions. Returns number of badges seeded."""
    seeded = 0
    for badge_data in badges if badges is not None else BADGE_SEED_DATA:
        values = {"title": None, **badge_data}
        update = [k for k in values if k != "slug"]
        await db.execute(_upsert(db, BadgeDefinition, values, update))
        seeded += 1
    await db.flush()
    return seeded


async def seed_quests(db: AsyncSession, quests: list[dict] | None = None) -> int:
    """Upsert quest templates after validating them."""
    seeded = 0
    for quest_data in quests if quests is not None else QUEST_SEED_DATA:
        definition = QuestDefinition.model_validate(quest_data)
        values = definition.model_dump()
        update = [k for k in values if k != "slug"]
        await db.execute(_upsert(db, Quest, values, update))
        seeded += 1
    await db.flush()
    return seeded


async def seed_skill_trees(db: AsyncSession, paths: list[dict] | None = None) -> int:
    """Upsert skill paths and their nodes. Returns number of nodes seeded."""
    seeded = 0
    for path_data in paths if paths is not None else SKILL_TREE_SEED_DATA:
        definition = SkillPathDefinition.model_validate(path_data)
        await db.execute(_upsert(
            db,
            SkillPath,
            {
                "slug": definition.slug,
                "title": definition.title,
                "description": definition.description,
                "sort_order": definition.sort_order,
            },
            ["title", "description", "sort_order"],
        ))
        path_id = (
            await db.execute(select(SkillPath.id).where(SkillPath.slug == definition.slug))
        ).scalar_one()

        for node in definition.nodes:
            values = {**node.model_dump(), "path_id": path_id}
            update = [k for k in values if k != "slug"]
            await db.execute(_upsert(db, SkillNode, values, update))
            seeded += 1
    await db.flush()
    return seeded


async def seed_catalog(db: AsyncSession) -> dict[str, int]:
    """Seed every catalog table and commit."""
    counts = {
        "badges": await seed_badges(db),
        "quests": await seed_quests(db),
        "skill_nodes": await seed_skill_trees(db),
    }
    await db.commit()
    logger.info("Seeded progression catalog: %s", counts)
    return counts
