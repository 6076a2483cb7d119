"""Initial schema for the Solana wallet ledger."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from alembic import op

logger = logging.getLogger(__name__)

# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


TABLE_DDL: tuple[str, ...] = (
    """
    CREATE TABLE tracked_wallets (
        owner_id TEXT NOT NULL,
        address TEXT NOT NULL,
        alias TEXT,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        created_at_utc TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        CONSTRAINT pk_tracked_wallets PRIMARY KEY (owner_id, address),
        CONSTRAINT uq_tracked_wallets_owner_alias UNIQUE (owner_id, alias),
        CONSTRAINT ck_tracked_wallets_owner_not_blank CHECK (length(trim(owner_id)) > 0),
        CONSTRAINT ck_tracked_wallets_address_not_blank CHECK (length(trim(address)) > 0)
    );
    """,
    """
    CREATE TABLE transactions (
        transaction_id TEXT NOT NULL,
        owner_id TEXT NOT NULL,
        wallet TEXT NOT NULL,
        signature TEXT NOT NULL,
        block_slot BIGINT NOT NULL,
        block_time BIGINT NOT NULL,
        fee_sol NUMERIC(38,18) NOT NULL,
        sol_change NUMERIC(38,18) NOT NULL,
        transaction_type TEXT NOT NULL,
        parsed_message TEXT NOT NULL,
        raw_data_json TEXT NOT NULL,
        notification_status TEXT NOT NULL DEFAULT 'PENDING',
        processed_at_utc TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        CONSTRAINT pk_transactions PRIMARY KEY (transaction_id),
        CONSTRAINT uq_transactions_owner_wallet_signature UNIQUE (owner_id, wallet, signature),
        CONSTRAINT fk_transactions_tracked_wallet FOREIGN KEY (owner_id, wallet)
            REFERENCES tracked_wallets (owner_id, address) ON DELETE CASCADE,
        CONSTRAINT ck_transactions_block_slot_nonneg CHECK (block_slot >= 0),
        CONSTRAINT ck_transactions_fee_nonneg CHECK (fee_sol >= 0),
        CONSTRAINT ck_transactions_type_valid CHECK (
            transaction_type IN (
                'TOKEN_PURCHASE_SOL', 'TOKEN_SALE_SOL', 'TOKEN_SALE', 'TOKEN_PURCHASE',
                'TOKEN_SWAP', 'TOKEN_TRANSFER', 'SOL_TRANSFER', 'UNKNOWN'
            )
        ),
        CONSTRAINT ck_transactions_notification_status_valid CHECK (
            notification_status IN ('PENDING', 'SENT', 'FAILED', 'SKIPPED')
        )
    );
    """,
    """
    CREATE TABLE token_movements (
        movement_id TEXT NOT NULL,
        transaction_id TEXT NOT NULL,
        mint TEXT NOT NULL,
        amount_ui TEXT NOT NULL,
        action TEXT NOT NULL,
        decimals SMALLINT NOT NULL,
        CONSTRAINT pk_token_movements PRIMARY KEY (movement_id),
        CONSTRAINT uq_token_movements_transaction_mint UNIQUE (transaction_id, mint),
        CONSTRAINT fk_token_movements_transaction FOREIGN KEY (transaction_id)
            REFERENCES transactions (transaction_id) ON DELETE CASCADE,
        CONSTRAINT ck_token_movements_action_valid CHECK (action IN ('Received', 'Sent')),
        CONSTRAINT ck_token_movements_decimals_nonneg CHECK (decimals >= 0)
    );
    """,
    """
    CREATE TABLE token_acquisitions (
        lot_id TEXT NOT NULL,
        transaction_id TEXT NOT NULL,
        owner_id TEXT NOT NULL,
        wallet TEXT NOT NULL,
        signature TEXT NOT NULL,
        mint TEXT NOT NULL,
        block_time BIGINT NOT NULL,
        block_slot BIGINT NOT NULL,
        amount_acquired NUMERIC(38,18) NOT NULL,
        cost_per_unit NUMERIC(38,18) NOT NULL,
        total_cost NUMERIC(38,18) NOT NULL,
        amount_remaining NUMERIC(38,18) NOT NULL,
        CONSTRAINT pk_token_acquisitions PRIMARY KEY (lot_id),
        CONSTRAINT uq_token_acquisitions_transaction_mint UNIQUE (transaction_id, mint),
        CONSTRAINT fk_token_acquisitions_transaction FOREIGN KEY (transaction_id)
            REFERENCES transactions (transaction_id) ON DELETE CASCADE,
        CONSTRAINT ck_token_acquisitions_amount_pos CHECK (amount_acquired > 0),
        CONSTRAINT ck_token_acquisitions_unit_cost_nonneg CHECK (cost_per_unit >= 0),
        CONSTRAINT ck_token_acquisitions_total_cost_nonneg CHECK (total_cost >= 0),
        CONSTRAINT ck_token_acquisitions_remaining_range CHECK (
            amount_remaining >= 0 AND amount_remaining <= amount_acquired
        )
    );
    """,
    """
    CREATE TABLE token_disposals_pnl (
        disposal_id TEXT NOT NULL,
        transaction_id TEXT NOT NULL,
        owner_id TEXT NOT NULL,
        wallet TEXT NOT NULL,
        signature TEXT NOT NULL,
        mint TEXT NOT NULL,
        block_time BIGINT NOT NULL,
        amount_sold NUMERIC(38,18) NOT NULL,
        proceeds_per_unit NUMERIC(38,18) NOT NULL,
        total_proceeds NUMERIC(38,18) NOT NULL,
        cost_of_goods_sold NUMERIC(38,18) NOT NULL,
        amount_covered NUMERIC(38,18) NOT NULL,
        realized_pnl NUMERIC(38,18) NOT NULL,
        CONSTRAINT pk_token_disposals_pnl PRIMARY KEY (disposal_id),
        CONSTRAINT uq_token_disposals_pnl_transaction_mint UNIQUE (transaction_id, mint),
        CONSTRAINT fk_token_disposals_pnl_transaction FOREIGN KEY (transaction_id)
            REFERENCES transactions (transaction_id) ON DELETE CASCADE,
        CONSTRAINT ck_token_disposals_pnl_amount_pos CHECK (amount_sold > 0),
        CONSTRAINT ck_token_disposals_pnl_cogs_nonneg CHECK (cost_of_goods_sold >= 0),
        CONSTRAINT ck_token_disposals_pnl_covered_range CHECK (
            amount_covered >= 0 AND amount_covered <= amount_sold
        )
    );
    """,
    """
    CREATE TABLE portfolio_positions (
        owner_id TEXT NOT NULL,
        wallet TEXT NOT NULL,
        mint TEXT NOT NULL,
        balance NUMERIC(38,18) NOT NULL,
        average_cost_basis NUMERIC(38,18) NOT NULL,
        total_invested NUMERIC(38,18) NOT NULL,
        last_updated BIGINT NOT NULL,
        CONSTRAINT pk_portfolio_positions PRIMARY KEY (owner_id, wallet, mint),
        CONSTRAINT fk_portfolio_positions_tracked_wallet FOREIGN KEY (owner_id, wallet)
            REFERENCES tracked_wallets (owner_id, address) ON DELETE CASCADE,
        CONSTRAINT ck_portfolio_positions_balance_pos CHECK (balance > 0)
    );
    """,
    """
    CREATE TABLE ingestion_cursor (
        owner_id TEXT NOT NULL,
        wallet TEXT NOT NULL,
        last_block_slot BIGINT NOT NULL,
        last_signature TEXT NOT NULL,
        updated_at_utc TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        CONSTRAINT pk_ingestion_cursor PRIMARY KEY (owner_id, wallet),
        CONSTRAINT fk_ingestion_cursor_tracked_wallet FOREIGN KEY (owner_id, wallet)
            REFERENCES tracked_wallets (owner_id, address) ON DELETE CASCADE,
        CONSTRAINT ck_ingestion_cursor_slot_nonneg CHECK (last_block_slot >= 0)
    );
    """,
    """
    CREATE TABLE ingestion_event_log (
        event_id TEXT NOT NULL,
        event_ts_utc TIMESTAMPTZ NOT NULL,
        owner_id TEXT,
        wallet TEXT,
        event_type TEXT NOT NULL,
        status TEXT NOT NULL,
        details TEXT NOT NULL,
        CONSTRAINT pk_ingestion_event_log PRIMARY KEY (event_id)
    );
    """,
)

INDEX_DDL: tuple[str, ...] = (
    "CREATE INDEX idx_transactions_owner_wallet_slot ON transactions USING btree (owner_id, wallet, block_slot);",
    """
    CREATE INDEX idx_token_acquisitions_fifo
        ON token_acquisitions USING btree (owner_id, wallet, mint, block_time, block_slot, signature);
    """,
    "CREATE INDEX idx_token_disposals_pnl_owner_wallet ON token_disposals_pnl USING btree (owner_id, wallet);",
    "CREATE INDEX idx_ingestion_event_log_ts ON ingestion_event_log USING btree (event_ts_utc);",
)

DROP_DDL: tuple[str, ...] = (
    "DROP TABLE IF EXISTS ingestion_event_log;",
    "DROP TABLE IF EXISTS ingestion_cursor;",
    "DROP TABLE IF EXISTS portfolio_positions;",
    "DROP TABLE IF EXISTS token_disposals_pnl;",
    "DROP TABLE IF EXISTS token_acquisitions;",
    "DROP TABLE IF EXISTS token_movements;",
    "DROP TABLE IF EXISTS transactions;",
    "DROP TABLE IF EXISTS tracked_wallets;",
)


def _execute_all(statements: Sequence[str]) -> None:
    """Execute an ordered sequence of SQL statements."""

    for statement in statements:
        try:
            op.execute(statement)
        except Exception:
            logger.exception("Migration statement failed.")
            raise


def upgrade() -> None:
    """Apply the initial wallet ledger schema."""

    logger.info("Starting initial schema migration upgrade.")
    _execute_all(TABLE_DDL)
    _execute_all(INDEX_DDL)
    logger.info("Completed initial schema migration upgrade.")


def downgrade() -> None:
    """Revert the initial wallet ledger schema."""

    logger.info("Starting initial schema migration downgrade.")
    _execute_all(DROP_DDL)
    logger.info("Completed initial schema migration downgrade.")
