"""Per-wallet ingestion watermark and new-transaction selection."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Protocol, Sequence, TypeVar

from tracker.common import LedgerClock, LedgerDatabase


@dataclass(frozen=True, order=True)
class CursorPosition:
    """Ordered (block_slot, signature) watermark."""

    block_slot: int
    signature: str


class Positioned(Protocol):
    """Anything carrying a block slot and signature."""

    block_slot: Optional[int]
    signature: Optional[str]


T = TypeVar("T", bound=Positioned)


def is_new(item: Positioned, cursor: Optional[CursorPosition]) -> bool:
    """True when ``item`` lies beyond ``cursor`` or shares its slot with another signature."""
    if item.block_slot is None:
        return False
    if cursor is None:
        return True
    if item.block_slot > cursor.block_slot:
        return True
    return item.block_slot == cursor.block_slot and item.signature != cursor.signature


def select_new_transactions(items: Iterable[T], cursor: Optional[CursorPosition]) -> list[T]:
    """Filter against ``cursor`` and sort ascending by (block_slot, signature)."""
    survivors = [item for item in items if is_new(item, cursor)]
    survivors.sort(key=lambda item: (int(item.block_slot or 0), item.signature or ""))
    return survivors


def latest_position(items: Sequence[Positioned]) -> Optional[CursorPosition]:
    """Greatest (block_slot, signature) among items that carry both."""
    positions = [
        CursorPosition(block_slot=int(item.block_slot), signature=str(item.signature))
        for item in items
        if item.block_slot is not None and item.signature
    ]
    return max(positions) if positions else None


class IngestionCursorStore:
    """Durable cursor rows; the in-memory copy in a wallet context is only a cache."""

    def __init__(self, db: LedgerDatabase, clock: LedgerClock | None = None) -> None:
        self._db = db
        self._clock = clock or LedgerClock()

    def load(self, owner_id: str, wallet: str) -> Optional[CursorPosition]:
        row = self._db.fetch_one(
            """
            SELECT last_block_slot, last_signature
            FROM ingestion_cursor
            WHERE owner_id = :owner_id AND wallet = :wallet
            """,
            {"owner_id": owner_id, "wallet": wallet},
        )
        if row is None:
            return None
        return CursorPosition(block_slot=int(row["last_block_slot"]), signature=str(row["last_signature"]))

    def advance(self, owner_id: str, wallet: str, position: CursorPosition) -> bool:
        """Move the cursor forward to ``position``; never moves it backwards.

        Runs inside the caller's unit of work. Returns False when the stored
        cursor is already at or beyond ``position``.
        """
        current = self.load(owner_id, wallet)
        if current is not None and position <= current:
            return False
        self._db.execute(
            """
            INSERT INTO ingestion_cursor (owner_id, wallet, last_block_slot, last_signature, updated_at_utc)
            VALUES (:owner_id, :wallet, :last_block_slot, :last_signature, :updated_at_utc)
            ON CONFLICT (owner_id, wallet) DO UPDATE SET
                last_block_slot = excluded.last_block_slot,
                last_signature = excluded.last_signature,
                updated_at_utc = excluded.updated_at_utc
            """,
            {
                "owner_id": owner_id,
                "wallet": wallet,
                "last_block_slot": position.block_slot,
                "last_signature": position.signature,
                "updated_at_utc": self._clock.now_utc(),
            },
        )
        return True

    def reset(self, owner_id: str, wallet: str) -> None:
        """Forget the cursor so the next poll re-initializes it."""
        self._db.execute(
            "DELETE FROM ingestion_cursor WHERE owner_id = :owner_id AND wallet = :wallet",
            {"owner_id": owner_id, "wallet": wallet},
        )
