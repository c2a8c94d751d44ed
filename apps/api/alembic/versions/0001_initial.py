"""Initial schema - accounts, aliases, mediation requests, conversations, jobs

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-17

Partial unique indexes enforce the concurrency rules: one active request
per (kind, requester, target) and one live conversation per pair.
"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '0001_initial'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all tables."""

    op.execute('CREATE EXTENSION IF NOT EXISTS pgcrypto')  # For gen_random_uuid()

    # ==========================================================================
    # Accounts and aliases
    # ==========================================================================
    op.execute('''
        CREATE TABLE accounts (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            role VARCHAR(20) NOT NULL,
            display_name VARCHAR(255) NOT NULL,
            email VARCHAR(320) UNIQUE NOT NULL,
            phone VARCHAR(32),
            is_active BOOLEAN NOT NULL DEFAULT true,
            token_version INTEGER NOT NULL DEFAULT 1,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    op.execute('''
        CREATE TABLE alias_bindings (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            account_id UUID UNIQUE NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            prefix VARCHAR(8) NOT NULL,
            sequence INTEGER NOT NULL,
            code VARCHAR(20) UNIQUE NOT NULL,
            label VARCHAR(50) NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_alias_prefix_sequence UNIQUE (prefix, sequence)
        )
    ''')

    # ==========================================================================
    # Conversations
    # ==========================================================================
    op.execute('''
        CREATE TABLE conversations (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            pair_key VARCHAR(80) NOT NULL,
            message_budget INTEGER NOT NULL,
            unsupervised_message_count INTEGER NOT NULL DEFAULT 0,
            gate_state VARCHAR(30) NOT NULL DEFAULT 'open',
            disclosure_state VARCHAR(20) NOT NULL DEFAULT 'locked',
            disclosure_basis VARCHAR(20),
            disclosed_at TIMESTAMPTZ,
            suspended_at TIMESTAMPTZ,
            approved_by_id UUID REFERENCES accounts(id) ON DELETE SET NULL,
            approved_at TIMESTAMPTZ,
            closed_by_id UUID REFERENCES accounts(id) ON DELETE SET NULL,
            closed_at TIMESTAMPTZ,
            last_activity_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('''
        CREATE UNIQUE INDEX uq_conversations_live_pair
        ON conversations(pair_key) WHERE gate_state <> 'closed'
    ''')
    op.execute('CREATE INDEX idx_conversations_gate ON conversations(gate_state, updated_at)')

    op.execute('''
        CREATE TABLE conversation_participants (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            conversation_id UUID NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
            account_id UUID NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            role VARCHAR(20) NOT NULL,
            alias_code VARCHAR(20) NOT NULL,
            alias_label VARCHAR(50) NOT NULL,
            joined_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_conversation_participant UNIQUE (conversation_id, account_id)
        )
    ''')
    op.execute('''
        CREATE INDEX idx_conversation_participants_account
        ON conversation_participants(account_id)
    ''')

    op.execute('''
        CREATE TABLE messages (
            id BIGSERIAL PRIMARY KEY,
            conversation_id UUID NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
            sender_id UUID NOT NULL REFERENCES accounts(id) ON DELETE RESTRICT,
            sender_alias VARCHAR(50) NOT NULL,
            content TEXT NOT NULL,
            delivered BOOLEAN NOT NULL DEFAULT false,
            is_read BOOLEAN NOT NULL DEFAULT false,
            read_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('''
        CREATE INDEX idx_messages_conversation_created
        ON messages(conversation_id, created_at, id)
    ''')

    # ==========================================================================
    # Mediation requests
    # ==========================================================================
    op.execute('''
        CREATE TABLE mediation_requests (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            kind VARCHAR(30) NOT NULL,
            requester_id UUID NOT NULL REFERENCES accounts(id) ON DELETE RESTRICT,
            target_id UUID NOT NULL REFERENCES accounts(id) ON DELETE RESTRICT,
            payload JSONB NOT NULL DEFAULT '{}'::jsonb,
            status VARCHAR(40) NOT NULL,
            admin_edited_payload TEXT,
            counterparty_response TEXT,
            close_reason VARCHAR(50),
            shared_with_target_at TIMESTAMPTZ,
            scheduled_for TIMESTAMPTZ,
            meeting_url VARCHAR(500),
            conversation_id UUID REFERENCES conversations(id) ON DELETE SET NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('''
        CREATE UNIQUE INDEX uq_mediation_requests_active_pair
        ON mediation_requests(kind, requester_id, target_id)
        WHERE status NOT IN ('closed-accepted', 'closed-rejected', 'completed', 'rejected')
    ''')
    op.execute('CREATE INDEX idx_mediation_requests_status ON mediation_requests(status, created_at)')
    op.execute('CREATE INDEX idx_mediation_requests_target ON mediation_requests(target_id, status)')

    op.execute('''
        CREATE TABLE mediation_request_events (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            request_id UUID NOT NULL REFERENCES mediation_requests(id) ON DELETE CASCADE,
            sequence INTEGER NOT NULL,
            actor_id UUID REFERENCES accounts(id) ON DELETE SET NULL,
            action VARCHAR(30) NOT NULL,
            from_status VARCHAR(40),
            to_status VARCHAR(40) NOT NULL,
            note TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_mediation_event_sequence UNIQUE (request_id, sequence)
        )
    ''')

    # ==========================================================================
    # Jobs (notification outbox)
    # ==========================================================================
    op.execute('''
        CREATE TABLE jobs (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            job_type VARCHAR(50) NOT NULL,
            payload JSONB NOT NULL DEFAULT '{}'::jsonb,
            run_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            status VARCHAR(20) NOT NULL DEFAULT 'pending',
            attempts INTEGER NOT NULL DEFAULT 0,
            max_attempts INTEGER NOT NULL DEFAULT 3,
            last_error TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            completed_at TIMESTAMPTZ,
            idempotency_key VARCHAR(255)
        )
    ''')
    op.execute('''
        CREATE INDEX idx_jobs_pending ON jobs(status, run_at) WHERE status = 'pending'
    ''')
    op.execute('''
        CREATE UNIQUE INDEX uq_job_idempotency
        ON jobs(idempotency_key) WHERE idempotency_key IS NOT NULL
    ''')


def downgrade() -> None:
    """Drop all tables."""

    # Drop tables in reverse order (respecting foreign keys)
    op.execute('DROP TABLE IF EXISTS jobs')
    op.execute('DROP TABLE IF EXISTS mediation_request_events')
    op.execute('DROP TABLE IF EXISTS mediation_requests')
    op.execute('DROP TABLE IF EXISTS messages')
    op.execute('DROP TABLE IF EXISTS conversation_participants')
    op.execute('DROP TABLE IF EXISTS conversations')
    op.execute('DROP TABLE IF EXISTS alias_bindings')
    op.execute('DROP TABLE IF EXISTS accounts')
