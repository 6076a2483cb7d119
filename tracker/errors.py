"""Failure taxonomy for transaction ingestion and ledger accounting."""

from __future__ import annotations

from typing import Optional


class LedgerError(RuntimeError):
    """Base class for recoverable ingestion failures handled per wallet."""


class ParseError(LedgerError):
    """Raised when a raw provider record cannot be turned into a typed transaction."""

    def __init__(self, reason: str, *, signature: Optional[str] = None, block_slot: Optional[int] = None) -> None:
        self.reason = reason
        self.signature = signature
        self.block_slot = block_slot
        super().__init__(f"signature={signature or '<missing>'}: {reason}")


class ProviderError(LedgerError):
    """Raised when the transaction data provider fails or times out."""


class NotificationError(LedgerError):
    """Raised when a rendered message could not be delivered."""


class PersistenceError(LedgerError):
    """Raised when a transaction's ledger effects could not be committed atomically."""


class InsufficientInventoryWarning(UserWarning):
    """FIFO lots were exhausted before a disposal was fully covered."""
