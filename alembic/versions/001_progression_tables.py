"""Progression tables.

Creates users, the reward catalog (badges, levels, achievements, activities),
the per-user grant tables and the experience ledger.

Revision ID: 001_progression_tables
Revises: None
Create Date: 2026-10-18
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
            username VARCHAR(64) UNIQUE NOT NULL,
            email VARCHAR(320) UNIQUE NOT NULL,
            first_name VARCHAR(64),
            last_name VARCHAR(64),
            avatar_url TEXT,
            is_active BOOLEAN NOT NULL DEFAULT true,
            experience_points INTEGER NOT NULL DEFAULT 0,
            current_level INTEGER NOT NULL DEFAULT 1,
            total_badges INTEGER NOT NULL DEFAULT 0,
            total_achievements INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ,
            CONSTRAINT ck_users_experience_points CHECK (experience_points >= 0),
            CONSTRAINT ck_users_current_level CHECK (current_level >= 1)
        )
    """)

    # --- Catalog ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS badges (
            id SERIAL PRIMARY KEY,
            name VARCHAR(128) UNIQUE NOT NULL,
            description TEXT,
            icon_url VARCHAR(256),
            criteria_type VARCHAR(32) NOT NULL DEFAULT 'custom',
            criteria_value INTEGER,
            experience_reward INTEGER NOT NULL DEFAULT 0,
            rarity VARCHAR(16) NOT NULL DEFAULT 'common',
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS levels (
            id SERIAL PRIMARY KEY,
            level_number INTEGER UNIQUE NOT NULL,
            name VARCHAR(64),
            experience_required INTEGER NOT NULL DEFAULT 0,
            badge_reward_id INTEGER REFERENCES badges(id) ON DELETE SET NULL
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS achievements (
            id SERIAL PRIMARY KEY,
            name VARCHAR(128) UNIQUE NOT NULL,
            description TEXT,
            category VARCHAR(32),
            criteria_type VARCHAR(32) NOT NULL DEFAULT 'custom',
            criteria_value INTEGER,
            experience_reward INTEGER NOT NULL DEFAULT 0,
            badge_reward_id INTEGER REFERENCES badges(id) ON DELETE SET NULL,
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS activities (
            id SERIAL PRIMARY KEY,
            name VARCHAR(128) NOT NULL,
            description TEXT,
            category VARCHAR(32),
            experience_reward INTEGER NOT NULL DEFAULT 0,
            badge_reward_id INTEGER REFERENCES badges(id) ON DELETE SET NULL,
            is_repeatable BOOLEAN NOT NULL DEFAULT false,
            is_active BOOLEAN NOT NULL DEFAULT true
        )
    """)

    # --- Grant rows ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_badges (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            badge_id INTEGER NOT NULL REFERENCES badges(id) ON DELETE CASCADE,
            awarded_at TIMESTAMPTZ NOT NULL,
            awarded_by BIGINT REFERENCES users(id) ON DELETE SET NULL,
            CONSTRAINT uq_user_badges_user_badge UNIQUE (user_id, badge_id)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_achievements (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            achievement_id INTEGER NOT NULL REFERENCES achievements(id) ON DELETE CASCADE,
            unlocked_at TIMESTAMPTZ NOT NULL,
            CONSTRAINT uq_user_achievements_user_achievement UNIQUE (user_id, achievement_id)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_activities (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            activity_id INTEGER NOT NULL REFERENCES activities(id) ON DELETE CASCADE,
            experience_gained INTEGER NOT NULL DEFAULT 0,
            completion_count INTEGER NOT NULL DEFAULT 1,
            completed_at TIMESTAMPTZ NOT NULL,
            last_completed_at TIMESTAMPTZ NOT NULL,
            CONSTRAINT uq_user_activities_user_activity UNIQUE (user_id, activity_id)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS trigger_receipts (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            trigger_type VARCHAR(32) NOT NULL,
            received_at TIMESTAMPTZ NOT NULL,
            CONSTRAINT uq_trigger_receipts_user_trigger UNIQUE (user_id, trigger_type)
        )
    """)

    # --- Experience ledger ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS experience_logs (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            activity_type VARCHAR(32) NOT NULL,
            activity_id INTEGER,
            experience_change INTEGER NOT NULL,
            previous_level INTEGER NOT NULL,
            new_level INTEGER NOT NULL,
            created_at TIMESTAMPTZ NOT NULL
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_experience_logs_user_created
        ON experience_logs(user_id, created_at)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS experience_logs CASCADE")
    op.execute("DROP TABLE IF EXISTS trigger_receipts CASCADE")
    op.execute("DROP TABLE IF EXISTS user_activities CASCADE")
    op.execute("DROP TABLE IF EXISTS user_achievements CASCADE")
    op.execute("DROP TABLE IF EXISTS user_badges CASCADE")
    op.execute("DROP TABLE IF EXISTS activities CASCADE")
    op.execute("DROP TABLE IF EXISTS achievements CASCADE")
    op.execute("DROP TABLE IF EXISTS levels CASCADE")
    op.execute("DROP TABLE IF EXISTS badges CASCADE")
    op.execute("DROP TABLE IF EXISTS users CASCADE")
