"""Transaction ledger, FIFO lot and portfolio position model definitions."""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    ForeignKeyConstraint,
    Index,
    Numeric,
    PrimaryKeyConstraint,
    SmallInteger,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from backend.db.base import Base
from backend.db.enums import MovementAction, NotificationStatus, TransactionType, enum_check_sql

logger = logging.getLogger(__name__)


class LedgerTransaction(Base):
    """One committed transaction per (owner, wallet, signature), kept for audit and replay."""

    __tablename__ = "transactions"
    __table_args__ = (
        PrimaryKeyConstraint("transaction_id", name="pk_transactions"),
        UniqueConstraint("owner_id", "wallet", "signature", name="uq_transactions_owner_wallet_signature"),
        ForeignKeyConstraint(
            ["owner_id", "wallet"],
            ["tracked_wallets.owner_id", "tracked_wallets.address"],
            name="fk_transactions_tracked_wallet",
            ondelete="CASCADE",
        ),
        CheckConstraint("block_slot >= 0", name="ck_transactions_block_slot_nonneg"),
        CheckConstraint("fee_sol >= 0", name="ck_transactions_fee_nonneg"),
        CheckConstraint(
            enum_check_sql("transaction_type", TransactionType),
            name="ck_transactions_type_valid",
        ),
        CheckConstraint(
            enum_check_sql("notification_status", NotificationStatus),
            name="ck_transactions_notification_status_valid",
        ),
        Index("idx_transactions_owner_wallet_slot", "owner_id", "wallet", "block_slot"),
    )

    transaction_id: Mapped[str] = mapped_column(Text, nullable=False)
    owner_id: Mapped[str] = mapped_column(Text, nullable=False)
    wallet: Mapped[str] = mapped_column(Text, nullable=False)
    signature: Mapped[str] = mapped_column(Text, nullable=False)
    block_slot: Mapped[int] = mapped_column(BigInteger, nullable=False)
    block_time: Mapped[int] = mapped_column(BigInteger, nullable=False)
    fee_sol: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)
    sol_change: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)
    transaction_type: Mapped[str] = mapped_column(Text, nullable=False)
    parsed_message: Mapped[str] = mapped_column(Text, nullable=False)
    raw_data_json: Mapped[str] = mapped_column(Text, nullable=False)
    notification_status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        server_default=text("'PENDING'"),
    )
    processed_at_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )


class TokenMovement(Base):
    """Net token balance change of the tracked wallet inside one transaction."""

    __tablename__ = "token_movements"
    __table_args__ = (
        PrimaryKeyConstraint("movement_id", name="pk_token_movements"),
        UniqueConstraint("transaction_id", "mint", name="uq_token_movements_transaction_mint"),
        CheckConstraint(
            enum_check_sql("action", MovementAction),
            name="ck_token_movements_action_valid",
        ),
        CheckConstraint("decimals >= 0", name="ck_token_movements_decimals_nonneg"),
    )

    movement_id: Mapped[str] = mapped_column(Text, nullable=False)
    transaction_id: Mapped[str] = mapped_column(
        Text,
        ForeignKey(
            "transactions.transaction_id",
            name="fk_token_movements_transaction",
            ondelete="CASCADE",
        ),
        nullable=False,
    )
    mint: Mapped[str] = mapped_column(Text, nullable=False)
    amount_ui: Mapped[str] = mapped_column(Text, nullable=False)
    action: Mapped[str] = mapped_column(Text, nullable=False)
    decimals: Mapped[int] = mapped_column(SmallInteger, nullable=False)


class TokenAcquisition(Base):
    """FIFO acquisition lot with remaining quantity tracking."""

    __tablename__ = "token_acquisitions"
    __table_args__ = (
        PrimaryKeyConstraint("lot_id", name="pk_token_acquisitions"),
        UniqueConstraint("transaction_id", "mint", name="uq_token_acquisitions_transaction_mint"),
        CheckConstraint("amount_acquired > 0", name="ck_token_acquisitions_amount_pos"),
        CheckConstraint("cost_per_unit >= 0", name="ck_token_acquisitions_unit_cost_nonneg"),
        CheckConstraint("total_cost >= 0", name="ck_token_acquisitions_total_cost_nonneg"),
        CheckConstraint(
            "amount_remaining >= 0 AND amount_remaining <= amount_acquired",
            name="ck_token_acquisitions_remaining_range",
        ),
        Index(
            "idx_token_acquisitions_fifo",
            "owner_id",
            "wallet",
            "mint",
            "block_time",
            "block_slot",
            "signature",
        ),
    )

    lot_id: Mapped[str] = mapped_column(Text, nullable=False)
    transaction_id: Mapped[str] = mapped_column(
        Text,
        ForeignKey(
            "transactions.transaction_id",
            name="fk_token_acquisitions_transaction",
            ondelete="CASCADE",
        ),
        nullable=False,
    )
    owner_id: Mapped[str] = mapped_column(Text, nullable=False)
    wallet: Mapped[str] = mapped_column(Text, nullable=False)
    signature: Mapped[str] = mapped_column(Text, nullable=False)
    mint: Mapped[str] = mapped_column(Text, nullable=False)
    block_time: Mapped[int] = mapped_column(BigInteger, nullable=False)
    block_slot: Mapped[int] = mapped_column(BigInteger, nullable=False)
    amount_acquired: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)
    cost_per_unit: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)
    total_cost: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)
    amount_remaining: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)


class TokenDisposalPnl(Base):
    """Append-only disposal record carrying FIFO cost of goods sold and realized PnL."""

    __tablename__ = "token_disposals_pnl"
    __table_args__ = (
        PrimaryKeyConstraint("disposal_id", name="pk_token_disposals_pnl"),
        UniqueConstraint("transaction_id", "mint", name="uq_token_disposals_pnl_transaction_mint"),
        CheckConstraint("amount_sold > 0", name="ck_token_disposals_pnl_amount_pos"),
        CheckConstraint("cost_of_goods_sold >= 0", name="ck_token_disposals_pnl_cogs_nonneg"),
        CheckConstraint(
            "amount_covered >= 0 AND amount_covered <= amount_sold",
            name="ck_token_disposals_pnl_covered_range",
        ),
        Index("idx_token_disposals_pnl_owner_wallet", "owner_id", "wallet"),
    )

    disposal_id: Mapped[str] = mapped_column(Text, nullable=False)
    transaction_id: Mapped[str] = mapped_column(
        Text,
        ForeignKey(
            "transactions.transaction_id",
            name="fk_token_disposals_pnl_transaction",
            ondelete="CASCADE",
        ),
        nullable=False,
    )
    owner_id: Mapped[str] = mapped_column(Text, nullable=False)
    wallet: Mapped[str] = mapped_column(Text, nullable=False)
    signature: Mapped[str] = mapped_column(Text, nullable=False)
    mint: Mapped[str] = mapped_column(Text, nullable=False)
    block_time: Mapped[int] = mapped_column(BigInteger, nullable=False)
    amount_sold: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)
    proceeds_per_unit: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)
    total_proceeds: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)
    cost_of_goods_sold: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)
    amount_covered: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)
    realized_pnl: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)


class PortfolioPosition(Base):
    """Running position per (owner, wallet, mint); removed once the balance reaches zero."""

    __tablename__ = "portfolio_positions"
    __table_args__ = (
        PrimaryKeyConstraint("owner_id", "wallet", "mint", name="pk_portfolio_positions"),
        ForeignKeyConstraint(
            ["owner_id", "wallet"],
            ["tracked_wallets.owner_id", "tracked_wallets.address"],
            name="fk_portfolio_positions_tracked_wallet",
            ondelete="CASCADE",
        ),
        CheckConstraint("balance > 0", name="ck_portfolio_positions_balance_pos"),
    )

    owner_id: Mapped[str] = mapped_column(Text, nullable=False)
    wallet: Mapped[str] = mapped_column(Text, nullable=False)
    mint: Mapped[str] = mapped_column(Text, nullable=False)
    balance: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)
    average_cost_basis: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)
    total_invested: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)
    last_updated: Mapped[int] = mapped_column(BigInteger, nullable=False)
