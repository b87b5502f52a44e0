"""Progression tables.

Creates users, user_progress, xp_events, processed_actions, skill_paths,
skill_nodes, user_skill_progress, quests, user_quests, badge_definitions
and user_badges.

Revision ID: 001_progression_tables
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_progression_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Users ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id BIGSERIAL PRIMARY KEY,
            subject VARCHAR(128) UNIQUE NOT NULL,
            display_name VARCHAR(64),
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # --- User Progress (denormalized, one row per user) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_progress (
            user_id BIGINT PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
            total_xp INTEGER NOT NULL DEFAULT 0,
            level INTEGER NOT NULL DEFAULT 1,
            level_title VARCHAR(64) NOT NULL DEFAULT '',
            primary_path VARCHAR(64),
            quizzes_completed INTEGER NOT NULL DEFAULT 0,
            perfect_scores INTEGER NOT NULL DEFAULT 0,
            mentor_sessions INTEGER NOT NULL DEFAULT 0,
            learning_milestones INTEGER NOT NULL DEFAULT 0,
            quests_completed INTEGER NOT NULL DEFAULT 0,
            skills_unlocked INTEGER NOT NULL DEFAULT 0,
            badges_earned INTEGER NOT NULL DEFAULT 0,
            current_streak INTEGER NOT NULL DEFAULT 0,
            longest_streak INTEGER NOT NULL DEFAULT 0,
            last_active_date DATE,
            version INTEGER NOT NULL,
            updated_at TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_user_progress_total_xp
        ON user_progress(total_xp DESC)
    """)

    # --- XP Ledger ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS xp_events (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            amount INTEGER NOT NULL CHECK (amount > 0),
            action_kind VARCHAR(32) NOT NULL,
            metadata JSONB NOT NULL DEFAULT '{}',
            idempotency_key VARCHAR(256) UNIQUE,
            created_at TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_xp_events_user_id
        ON xp_events(user_id)
    """)

    # --- Processed actions (request idempotency) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS processed_actions (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            idempotency_key VARCHAR(256) NOT NULL,
            action_kind VARCHAR(32) NOT NULL,
            result JSONB NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT processed_actions_user_id_key_key UNIQUE (user_id, idempotency_key)
        )
    """)

    # --- Skill trees ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS skill_paths (
            id SERIAL PRIMARY KEY,
            slug VARCHAR(64) UNIQUE NOT NULL,
            title VARCHAR(128) NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            sort_order INTEGER NOT NULL DEFAULT 0
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS skill_nodes (
            id SERIAL PRIMARY KEY,
            slug VARCHAR(64) UNIQUE NOT NULL,
            path_id INTEGER NOT NULL REFERENCES skill_paths(id),
            title VARCHAR(128) NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            tier INTEGER NOT NULL DEFAULT 1,
            target INTEGER NOT NULL,
            xp_reward INTEGER NOT NULL DEFAULT 0,
            prerequisites JSONB NOT NULL DEFAULT '[]'
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_skill_nodes_path_id
        ON skill_nodes(path_id)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_skill_progress (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            node_id INTEGER NOT NULL REFERENCES skill_nodes(id),
            current_progress INTEGER NOT NULL DEFAULT 0,
            target INTEGER NOT NULL,
            unlocked_at TIMESTAMPTZ,
            updated_at TIMESTAMPTZ,
            CONSTRAINT user_skill_progress_user_id_node_id_key UNIQUE (user_id, node_id)
        )
    """)

    # --- Quests ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS quests (
            id SERIAL PRIMARY KEY,
            slug VARCHAR(64) UNIQUE NOT NULL,
            title VARCHAR(128) NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            quest_type VARCHAR(32) NOT NULL DEFAULT 'main',
            required_level INTEGER NOT NULL DEFAULT 1,
            xp_reward INTEGER NOT NULL DEFAULT 0,
            objectives JSONB NOT NULL DEFAULT '[]',
            required_quests JSONB NOT NULL DEFAULT '[]',
            is_published BOOLEAN NOT NULL DEFAULT true,
            sort_order INTEGER NOT NULL DEFAULT 0
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_quests (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            quest_id INTEGER NOT NULL REFERENCES quests(id),
            status VARCHAR(16) NOT NULL DEFAULT 'available'
                CHECK (status IN ('available', 'active', 'completed')),
            objectives_progress JSONB NOT NULL DEFAULT '[]',
            reward_granted BOOLEAN NOT NULL DEFAULT false,
            started_at TIMESTAMPTZ,
            completed_at TIMESTAMPTZ,
            updated_at TIMESTAMPTZ,
            CONSTRAINT user_quests_user_id_quest_id_key UNIQUE (user_id, quest_id)
        )
    """)

    # --- Badges ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS badge_definitions (
            id SERIAL PRIMARY KEY,
            slug VARCHAR(64) UNIQUE NOT NULL,
            name VARCHAR(128) NOT NULL,
            description TEXT NOT NULL,
            category VARCHAR(32) NOT NULL,
            rarity VARCHAR(16) NOT NULL,
            title VARCHAR(64),
            xp_reward INTEGER NOT NULL DEFAULT 0,
            trigger_type VARCHAR(32) NOT NULL,
            trigger_config JSONB NOT NULL DEFAULT '{}',
            sort_order INTEGER NOT NULL DEFAULT 0,
            is_active BOOLEAN NOT NULL DEFAULT true
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_badge_defs_trigger
        ON badge_definitions(trigger_type)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_badges (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            badge_id INTEGER NOT NULL REFERENCES badge_definitions(id),
            earned_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            metadata JSONB NOT NULL DEFAULT '{}',
            CONSTRAINT user_badges_user_id_badge_id_key UNIQUE (user_id, badge_id)
        )
    """)


def downgrade() -> None:
    for table in (
        "user_badges",
        "badge_definitions",
        "user_quests",
        "quests",
        "user_skill_progress",
        "skill_nodes",
        "skill_paths",
        "processed_actions",
        "xp_events",
        "user_progress",
        "users",
    ):
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE")
