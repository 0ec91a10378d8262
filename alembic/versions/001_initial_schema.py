"""Initial schema: users, event store, XP ledger, quests, referrals and leaderboard snapshots.

Revision ID: 001_initial_schema
Revises: None
Create Date: 2026-10-18
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Users ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id BIGSERIAL PRIMARY KEY,
            wallet_address VARCHAR(64) NOT NULL,
            referral_code VARCHAR(16) NOT NULL,
            is_active BOOLEAN NOT NULL DEFAULT true,
            is_admin BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_users_wallet_address UNIQUE (wallet_address),
            CONSTRAINT uq_users_referral_code UNIQUE (referral_code)
        )
    """)

    # --- Events ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS events (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            type VARCHAR(32) NOT NULL,
            dedup_key VARCHAR(256) NOT NULL,
            metadata JSONB NOT NULL DEFAULT '{}',
            occurred_at TIMESTAMPTZ NOT NULL,
            status VARCHAR(16) NOT NULL DEFAULT 'pending',
            verified_at TIMESTAMPTZ,
            processed_at TIMESTAMPTZ,
            error_message VARCHAR(512),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_events_dedup_key UNIQUE (dedup_key)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_events_user_type ON events(user_id, type)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_events_user_occurred ON events(user_id, occurred_at)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_events_status_created ON events(status, created_at)")

    # --- XP rules ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS xp_rules (
            id SERIAL PRIMARY KEY,
            event_type VARCHAR(32) NOT NULL,
            xp_amount INTEGER NOT NULL,
            "window" VARCHAR(16),
            max_awards INTEGER,
            description VARCHAR(256),
            is_active BOOLEAN NOT NULL DEFAULT true,
            CONSTRAINT uq_xp_rules_event_type UNIQUE (event_type)
        )
    """)

    # --- XP ledger (append-only) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS xp_ledger (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            delta_xp INTEGER NOT NULL,
            reason VARCHAR(32) NOT NULL,
            description VARCHAR(256),
            related_event_id BIGINT REFERENCES events(id),
            idempotency_key VARCHAR(256),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_xp_ledger_idempotency_key UNIQUE (idempotency_key)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_xp_ledger_user_created ON xp_ledger(user_id, created_at)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_xp_ledger_created ON xp_ledger(created_at)")

    # --- User XP (denormalized) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_xp (
            user_id BIGINT PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
            total_xp BIGINT NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- Quests ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS quests (
            id SERIAL PRIMARY KEY,
            name VARCHAR(128) NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            cadence VARCHAR(16) NOT NULL DEFAULT 'daily',
            start_at TIMESTAMPTZ NOT NULL,
            end_at TIMESTAMPTZ,
            rule JSONB NOT NULL,
            reward_xp INTEGER NOT NULL,
            is_active BOOLEAN NOT NULL DEFAULT true,
            display_order INTEGER NOT NULL DEFAULT 0,
            metadata JSONB NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_quests_cadence_active ON quests(cadence, is_active)")

    op.execute("""
        CREATE TABLE IF NOT EXISTS quest_progress (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            quest_id INTEGER NOT NULL REFERENCES quests(id) ON DELETE CASCADE,
            period_key VARCHAR(32) NOT NULL,
            period_start TIMESTAMPTZ,
            period_end TIMESTAMPTZ,
            progress_value BIGINT NOT NULL DEFAULT 0,
            is_completed BOOLEAN NOT NULL DEFAULT false,
            completed_at TIMESTAMPTZ,
            is_claimed BOOLEAN NOT NULL DEFAULT false,
            claimed_at TIMESTAMPTZ,
            last_event_id BIGINT REFERENCES events(id),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_quest_progress_user_quest_period UNIQUE (user_id, quest_id, period_key)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_quest_progress_user_claimed ON quest_progress(user_id, is_claimed)")

    # --- Referrals ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS referrals (
            id BIGSERIAL PRIMARY KEY,
            inviter_user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            invitee_user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            referral_code_used VARCHAR(16) NOT NULL,
            status VARCHAR(16) NOT NULL DEFAULT 'pending',
            metadata JSONB NOT NULL DEFAULT '{}',
            verified_at TIMESTAMPTZ,
            rewarded_at TIMESTAMPTZ,
            rejected_at TIMESTAMPTZ,
            rejection_reason VARCHAR(256),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_referrals_invitee_user_id UNIQUE (invitee_user_id)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_referrals_inviter_status ON referrals(inviter_user_id, status)")

    # --- Leaderboard snapshots ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS leaderboard_snapshots (
            id BIGSERIAL PRIMARY KEY,
            period VARCHAR(16) NOT NULL,
            window_start TIMESTAMPTZ NOT NULL,
            window_end TIMESTAMPTZ NOT NULL,
            started_at TIMESTAMPTZ NOT NULL,
            generated_at TIMESTAMPTZ,
            status VARCHAR(16) NOT NULL DEFAULT 'generating',
            total_users INTEGER NOT NULL DEFAULT 0,
            top_score BIGINT NOT NULL DEFAULT 0,
            average_score DOUBLE PRECISION NOT NULL DEFAULT 0,
            error_message VARCHAR(512)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_lb_snapshots_period_status_generated
        ON leaderboard_snapshots(period, status, generated_at)
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS leaderboard_rows (
            id BIGSERIAL PRIMARY KEY,
            snapshot_id BIGINT NOT NULL REFERENCES leaderboard_snapshots(id) ON DELETE CASCADE,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            rank INTEGER NOT NULL,
            score BIGINT NOT NULL,
            metadata JSONB NOT NULL DEFAULT '{}',
            CONSTRAINT uq_leaderboard_rows_snapshot_rank UNIQUE (snapshot_id, rank),
            CONSTRAINT uq_leaderboard_rows_snapshot_user UNIQUE (snapshot_id, user_id)
        )
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS leaderboard_rows")
    op.execute("DROP TABLE IF EXISTS leaderboard_snapshots")
    op.execute("DROP TABLE IF EXISTS referrals")
    op.execute("DROP TABLE IF EXISTS quest_progress")
    op.execute("DROP TABLE IF EXISTS quests")
    op.execute("DROP TABLE IF EXISTS user_xp")
    op.execute("DROP TABLE IF EXISTS xp_ledger")
    op.execute("DROP TABLE IF EXISTS xp_rules")
    op.execute("DROP TABLE IF EXISTS events")
    op.execute("DROP TABLE IF EXISTS users")
