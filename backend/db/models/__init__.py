"""Model module imports for SQLAlchemy metadata registration."""

from __future__ import annotations

import logging

from backend.db.models.ingestion import IngestionCursor, IngestionEventLog
from backend.db.models.ledger import (
    LedgerTransaction,
    PortfolioPosition,
    TokenAcquisition,
    TokenDisposalPnl,
    TokenMovement,
)
from backend.db.models.wallet import TrackedWallet

logger = logging.getLogger(__name__)

__all__ = [
    "IngestionCursor",
    "IngestionEventLog",
    "LedgerTransaction",
    "PortfolioPosition",
    "TokenAcquisition",
    "TokenDisposalPnl",
    "TokenMovement",
    "TrackedWallet",
]
