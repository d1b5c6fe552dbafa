"""Initial schema: users, challenges, submissions, wallets, ledger, reminders.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19
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
            id VARCHAR(36) PRIMARY KEY,
            phone VARCHAR(32) UNIQUE,
            display_name VARCHAR(64),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- Challenges ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS challenges (
            id VARCHAR(36) PRIMARY KEY,
            owner_id VARCHAR(36) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            title VARCHAR(200) NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            verification_method VARCHAR(64),
            verification_details TEXT,
            stake BIGINT NOT NULL CHECK (stake > 0),
            deadline TIMESTAMPTZ NOT NULL,
            status VARCHAR(32) NOT NULL DEFAULT 'active'
                CHECK (status IN ('active', 'pending_verification', 'completed', 'failed')),
            settled_at TIMESTAMPTZ,
            settlement_outcome VARCHAR(32),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_challenges_owner_status
        ON challenges(owner_id, status)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_challenges_open_deadline
        ON challenges(deadline)
        WHERE status IN ('active', 'pending_verification')
    """)

    # --- Submissions (one row per challenge) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS submissions (
            id VARCHAR(36) PRIMARY KEY,
            challenge_id VARCHAR(36) NOT NULL UNIQUE REFERENCES challenges(id) ON DELETE CASCADE,
            proof_text TEXT,
            media_url TEXT,
            media_metadata JSON,
            verification_status VARCHAR(32) NOT NULL DEFAULT 'pending'
                CHECK (verification_status IN ('pending', 'approved', 'failed', 'manual_review')),
            verified BOOLEAN,
            metadata_attempts INTEGER NOT NULL DEFAULT 0 CHECK (metadata_attempts >= 0),
            ai_attempts INTEGER NOT NULL DEFAULT 0 CHECK (ai_attempts >= 0),
            verification_notes TEXT,
            claimed_at TIMESTAMPTZ,
            submitted_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- Wallets ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS wallets (
            id VARCHAR(36) PRIMARY KEY,
            owner_id VARCHAR(36) NOT NULL UNIQUE REFERENCES users(id) ON DELETE CASCADE,
            balance BIGINT NOT NULL DEFAULT 0 CHECK (balance >= 0),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- Transactions (append-only ledger) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS transactions (
            id VARCHAR(36) PRIMARY KEY,
            owner_id VARCHAR(36) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            amount BIGINT NOT NULL,
            type VARCHAR(16) NOT NULL CHECK (type IN ('deposit', 'deduction', 'refund')),
            description VARCHAR(256),
            challenge_id VARCHAR(36) REFERENCES challenges(id) ON DELETE SET NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_transactions_owner_created
        ON transactions(owner_id, created_at)
    """)
    # At most one deduction per challenge, whatever the application does
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_transactions_challenge_deduction
        ON transactions(challenge_id)
        WHERE type = 'deduction'
    """)

    # --- Reminders ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS reminders (
            id VARCHAR(36) PRIMARY KEY,
            owner_id VARCHAR(36) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            challenge_id VARCHAR(36) NOT NULL REFERENCES challenges(id) ON DELETE CASCADE,
            remind_at TIMESTAMPTZ NOT NULL,
            sent BOOLEAN NOT NULL DEFAULT FALSE,
            attempts INTEGER NOT NULL DEFAULT 0,
            sent_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_reminders_due
        ON reminders(sent, remind_at)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS reminders CASCADE")
    op.execute("DROP TABLE IF EXISTS transactions CASCADE")
    op.execute("DROP TABLE IF EXISTS wallets CASCADE")
    op.execute("DROP TABLE IF EXISTS submissions CASCADE")
    op.execute("DROP TABLE IF EXISTS challenges CASCADE")
    op.execute("DROP TABLE IF EXISTS users CASCADE")
