"""Enumerated value contracts for the wallet ledger schema."""

from __future__ import annotations

import enum
import logging

logger = logging.getLogger(__name__)


class TransactionType(str, enum.Enum):
    """Classification assigned to an ingested transaction."""

    TOKEN_PURCHASE_SOL = "TOKEN_PURCHASE_SOL"
    TOKEN_SALE_SOL = "TOKEN_SALE_SOL"
    TOKEN_SALE = "TOKEN_SALE"
    TOKEN_PURCHASE = "TOKEN_PURCHASE"
    TOKEN_SWAP = "TOKEN_SWAP"
    TOKEN_TRANSFER = "TOKEN_TRANSFER"
    SOL_TRANSFER = "SOL_TRANSFER"
    UNKNOWN = "UNKNOWN"


class MovementAction(str, enum.Enum):
    """Direction of a token balance change for the tracked wallet."""

    RECEIVED = "Received"
    SENT = "Sent"


class NotificationStatus(str, enum.Enum):
    """Delivery outcome of the rendered transaction message."""

    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


def enum_check_sql(column: str, enum_cls: type[enum.Enum]) -> str:
    """Render a portable CHECK expression restricting a text column to enum values."""
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    return f"{column} IN ({values})"
