"""Tracked wallet registry: add, remove, list and alias lookup."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from tracker.common import LedgerDatabase


@dataclass(frozen=True)
class TrackedWalletRecord:
    owner_id: str
    address: str
    alias: Optional[str]
    is_active: bool


def _record_from_row(row: Mapping[str, Any]) -> TrackedWalletRecord:
    alias = row.get("alias")
    return TrackedWalletRecord(
        owner_id=str(row["owner_id"]),
        address=str(row["address"]),
        alias=str(alias) if alias is not None else None,
        is_active=bool(row["is_active"]),
    )


class TrackedWalletRegistry:
    """Owner-scoped wallet registry; mutations run in their own unit of work."""

    def __init__(self, db: LedgerDatabase) -> None:
        self._db = db

    def add(self, owner_id: str, address: str, alias: str | None = None) -> TrackedWalletRecord:
        """Track ``address``; re-adding an existing address only updates its alias."""
        address = address.strip()
        if not owner_id.strip() or not address:
            raise ValueError("owner_id and address must be non-empty")
        alias = alias.strip() if alias and alias.strip() else None

        self._db.begin()
        try:
            self._db.execute(
                """
                INSERT INTO tracked_wallets (owner_id, address, alias, is_active)
                VALUES (:owner_id, :address, :alias, :is_active)
                ON CONFLICT (owner_id, address) DO UPDATE SET alias = excluded.alias
                """,
                {"owner_id": owner_id, "address": address, "alias": alias, "is_active": True},
            )
            self._db.commit()
        except Exception:
            self._db.rollback()
            raise
        record = self.find(owner_id, address)
        if record is None:
            raise RuntimeError(f"Tracked wallet was not persisted: {address}")
        return record

    def find(self, owner_id: str, address_or_alias: str) -> Optional[TrackedWalletRecord]:
        """Resolve a wallet by exact address or alias."""
        row = self._db.fetch_one(
            """
            SELECT owner_id, address, alias, is_active
            FROM tracked_wallets
            WHERE owner_id = :owner_id
              AND (address = :needle OR alias = :needle)
            ORDER BY CASE WHEN address = :needle THEN 0 ELSE 1 END
            """,
            {"owner_id": owner_id, "needle": address_or_alias.strip()},
        )
        return _record_from_row(row) if row is not None else None

    def remove(self, owner_id: str, address_or_alias: str) -> bool:
        """Stop tracking; the wallet's ledger rows and cursor cascade away."""
        record = self.find(owner_id, address_or_alias)
        if record is None:
            return False
        self._db.begin()
        try:
            self._db.execute(
                "DELETE FROM tracked_wallets WHERE owner_id = :owner_id AND address = :address",
                {"owner_id": owner_id, "address": record.address},
            )
            self._db.commit()
        except Exception:
            self._db.rollback()
            raise
        return True

    def set_active(self, owner_id: str, address: str, is_active: bool) -> None:
        self._db.begin()
        try:
            self._db.execute(
                """
                UPDATE tracked_wallets
                SET is_active = :is_active
                WHERE owner_id = :owner_id AND address = :address
                """,
                {"owner_id": owner_id, "address": address, "is_active": is_active},
            )
            self._db.commit()
        except Exception:
            self._db.rollback()
            raise

    def list_wallets(self, owner_id: str | None = None) -> list[TrackedWalletRecord]:
        """Tracked wallets for one owner, or all owners when ``owner_id`` is None."""
        sql = "SELECT owner_id, address, alias, is_active FROM tracked_wallets"
        params: dict[str, Any] = {}
        if owner_id is not None:
            sql += " WHERE owner_id = :owner_id"
            params["owner_id"] = owner_id
        sql += " ORDER BY owner_id ASC, address ASC"
        return [_record_from_row(row) for row in self._db.fetch_all(sql, params)]
