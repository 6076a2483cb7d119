"""Ingestion cursor and operator event log model definitions."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKeyConstraint,
    Index,
    PrimaryKeyConstraint,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from backend.db.base import Base

logger = logging.getLogger(__name__)


class IngestionCursor(Base):
    """Per-wallet watermark of the last processed (block_slot, signature)."""

    __tablename__ = "ingestion_cursor"
    __table_args__ = (
        PrimaryKeyConstraint("owner_id", "wallet", name="pk_ingestion_cursor"),
        ForeignKeyConstraint(
            ["owner_id", "wallet"],
            ["tracked_wallets.owner_id", "tracked_wallets.address"],
            name="fk_ingestion_cursor_tracked_wallet",
            ondelete="CASCADE",
        ),
        CheckConstraint("last_block_slot >= 0", name="ck_ingestion_cursor_slot_nonneg"),
    )

    owner_id: Mapped[str] = mapped_column(Text, nullable=False)
    wallet: Mapped[str] = mapped_column(Text, nullable=False)
    last_block_slot: Mapped[int] = mapped_column(BigInteger, nullable=False)
    last_signature: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )


class IngestionEventLog(Base):
    """Operator-visible record of ingestion failures and lifecycle events."""

    __tablename__ = "ingestion_event_log"
    __table_args__ = (
        PrimaryKeyConstraint("event_id", name="pk_ingestion_event_log"),
        Index("idx_ingestion_event_log_ts", "event_ts_utc"),
    )

    event_id: Mapped[str] = mapped_column(Text, nullable=False)
    event_ts_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    owner_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    wallet: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    event_type: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[str] = mapped_column(Text, nullable=False)
