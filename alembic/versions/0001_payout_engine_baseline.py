"""payout engine baseline

Revision ID: 0001_payout_engine_baseline
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""

from __future__ import annotations

from alembic import op


revision = "0001_payout_engine_baseline"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("CREATE SCHEMA IF NOT EXISTS app;")
    op.execute("CREATE SCHEMA IF NOT EXISTS identity;")
    op.execute("CREATE SCHEMA IF NOT EXISTS royalties;")

    # read models owned by the identity and royalty modules
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS identity.creator_accounts (
            creator_id text PRIMARY KEY,
            provider_account_ref text,
            onboarded boolean NOT NULL DEFAULT false,
            transfers_capable boolean NOT NULL DEFAULT false,
            standing text NOT NULL DEFAULT 'good',
            verified boolean NOT NULL DEFAULT false,
            updated_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS royalties.royalty_statements (
            id text PRIMARY KEY,
            creator_id text NOT NULL,
            period_start date,
            period_end date,
            net_payable_cents bigint NOT NULL CHECK (net_payable_cents >= 0),
            status text NOT NULL DEFAULT 'DRAFT',
            disputed boolean NOT NULL DEFAULT false,
            payout_id uuid,
            paid_at timestamptz,
            created_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )
    op.execute(
        """
        CREATE INDEX IF NOT EXISTS royalty_statements_unpaid_idx
        ON royalties.royalty_statements (creator_id)
        WHERE paid_at IS NULL;
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.payouts (
            id uuid PRIMARY KEY,
            creator_id text NOT NULL,
            amount_cents bigint NOT NULL CHECK (amount_cents > 0),
            currency text NOT NULL DEFAULT 'usd',
            idempotency_key text NOT NULL,
            status text NOT NULL CHECK (status IN (
                'REQUESTED', 'ELIGIBLE', 'RESERVED', 'SUBMITTED',
                'RETRY_SCHEDULED', 'COMPLETED', 'FAILED'
            )),
            statement_ids text[] NOT NULL DEFAULT '{}',
            requested_by text,
            provider_ref text,
            retry_count integer NOT NULL DEFAULT 0,
            last_retry_at timestamptz,
            next_retry_at timestamptz,
            failure_reason text,
            failure_message text,
            created_at timestamptz NOT NULL DEFAULT now(),
            updated_at timestamptz NOT NULL DEFAULT now(),
            completed_at timestamptz,
            CONSTRAINT payouts_creator_idempotency_key_uq UNIQUE (creator_id, idempotency_key),
            CONSTRAINT payouts_provider_ref_uq UNIQUE (provider_ref),
            CONSTRAINT payouts_completed_requires_provider_ref
                CHECK (status <> 'COMPLETED' OR provider_ref IS NOT NULL)
        );
        """
    )
    # at most one in-flight payout per creator
    op.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS payouts_one_active_per_creator_uq
        ON app.payouts (creator_id)
        WHERE status IN ('REQUESTED', 'ELIGIBLE', 'RESERVED', 'SUBMITTED', 'RETRY_SCHEDULED');
        """
    )
    op.execute(
        """
        CREATE INDEX IF NOT EXISTS payouts_retry_due_idx
        ON app.payouts (next_retry_at)
        WHERE status = 'RETRY_SCHEDULED';
        """
    )
    op.execute(
        """
        CREATE INDEX IF NOT EXISTS payouts_status_updated_idx
        ON app.payouts (status, updated_at);
        """
    )
    op.execute(
        """
        CREATE INDEX IF NOT EXISTS payouts_creator_created_idx
        ON app.payouts (creator_id, created_at DESC);
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.payout_attempts (
            payout_id uuid NOT NULL REFERENCES app.payouts (id),
            attempt_number integer NOT NULL,
            idempotency_key text NOT NULL,
            response_code text,
            http_status integer,
            outcome text NOT NULL,
            unmapped boolean NOT NULL DEFAULT false,
            created_at timestamptz NOT NULL DEFAULT now(),
            PRIMARY KEY (payout_id, attempt_number)
        );
        """
    )
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.payout_transitions (
            id bigserial PRIMARY KEY,
            payout_id uuid NOT NULL REFERENCES app.payouts (id),
            from_status text,
            to_status text NOT NULL,
            reason text,
            created_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )
    op.execute(
        """
        CREATE INDEX IF NOT EXISTS payout_transitions_payout_idx
        ON app.payout_transitions (payout_id, id);
        """
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS app.payout_transitions;")
    op.execute("DROP TABLE IF EXISTS app.payout_attempts;")
    op.execute("DROP TABLE IF EXISTS app.payouts;")
    op.execute("DROP TABLE IF EXISTS royalties.royalty_statements;")
    op.execute("DROP TABLE IF EXISTS identity.creator_accounts;")
