"""Tracked wallet registry model definitions."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    PrimaryKeyConstraint,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from backend.db.base import Base

logger = logging.getLogger(__name__)


class TrackedWallet(Base):
    """Wallet address followed on behalf of one owner."""

    __tablename__ = "tracked_wallets"
    __table_args__ = (
        PrimaryKeyConstraint("owner_id", "address", name="pk_tracked_wallets"),
        UniqueConstraint("owner_id", "alias", name="uq_tracked_wallets_owner_alias"),
        CheckConstraint(
            "length(trim(owner_id)) > 0",
            name="ck_tracked_wallets_owner_not_blank",
        ),
        CheckConstraint(
            "length(trim(address)) > 0",
            name="ck_tracked_wallets_address_not_blank",
        ),
    )

    owner_id: Mapped[str] = mapped_column(Text, nullable=False)
    address: Mapped[str] = mapped_column(Text, nullable=False)
    alias: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        server_default=text("TRUE"),
    )
    created_at_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
