"""Incrementally maintained portfolio positions per (owner, wallet, mint)."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping, Optional

from tracker.common import EPSILON, LedgerDatabase, normalize_decimal, to_decimal


@dataclass(frozen=True)
class PositionState:
    """Current aggregate holding for one mint in one wallet."""

    owner_id: str
    wallet: str
    mint: str
    balance: Decimal
    average_cost_basis: Decimal
    total_invested: Decimal
    last_updated: int


def _position_from_row(row: Mapping[str, Any]) -> PositionState:
    return PositionState(
        owner_id=str(row["owner_id"]),
        wallet=str(row["wallet"]),
        mint=str(row["mint"]),
        balance=to_decimal(row["balance"]),
        average_cost_basis=to_decimal(row["average_cost_basis"]),
        total_invested=to_decimal(row["total_invested"]),
        last_updated=int(row["last_updated"]),
    )


class PositionAggregator:
    """Applies ledger deltas to the running position rows; never recomputes from lots."""

    def __init__(self, db: LedgerDatabase) -> None:
        self._db = db

    def get_position(self, owner_id: str, wallet: str, mint: str) -> Optional[PositionState]:
        row = self._db.fetch_one(
            """
            SELECT owner_id, wallet, mint, balance, average_cost_basis, total_invested, last_updated
            FROM portfolio_positions
            WHERE owner_id = :owner_id AND wallet = :wallet AND mint = :mint
            """,
            {"owner_id": owner_id, "wallet": wallet, "mint": mint},
        )
        return _position_from_row(row) if row is not None else None

    def list_positions(self, owner_id: str, wallet: str | None = None) -> list[PositionState]:
        """Open positions for an owner, optionally restricted to one wallet."""
        sql = """
            SELECT owner_id, wallet, mint, balance, average_cost_basis, total_invested, last_updated
            FROM portfolio_positions
            WHERE owner_id = :owner_id
        """
        params: dict[str, Any] = {"owner_id": owner_id}
        if wallet is not None:
            sql += " AND wallet = :wallet"
            params["wallet"] = wallet
        sql += " ORDER BY wallet ASC, mint ASC"
        return [_position_from_row(row) for row in self._db.fetch_all(sql, params)]

    def apply_delta(
        self,
        *,
        owner_id: str,
        wallet: str,
        mint: str,
        amount_delta: Decimal,
        value_delta: Decimal,
        block_time: int,
    ) -> Optional[PositionState]:
        """Fold one acquisition (positive) or disposal (negative) delta into the position.

        Acquisitions re-derive the average cost as total invested over the new
        balance. Disposals keep the average cost and reduce total invested by
        the consumed cost (``value_delta`` is ``-cogs``). A resulting balance at
        or below ``EPSILON`` deletes the row and returns None.
        """
        current = self.get_position(owner_id, wallet, mint)
        if current is None:
            new_balance = amount_delta
            new_total_invested = value_delta
            new_average = value_delta / amount_delta if amount_delta > 0 else Decimal("0")
        else:
            new_balance = current.balance + amount_delta
            new_total_invested = current.total_invested + value_delta
            if amount_delta > 0:
                new_average = new_total_invested / new_balance if new_balance > 0 else Decimal("0")
            else:
                new_average = current.average_cost_basis

        key = {"owner_id": owner_id, "wallet": wallet, "mint": mint}
        if new_balance <= EPSILON:
            self._db.execute(
                "DELETE FROM portfolio_positions WHERE owner_id = :owner_id AND wallet = :wallet AND mint = :mint",
                key,
            )
            return None

        position = PositionState(
            owner_id=owner_id,
            wallet=wallet,
            mint=mint,
            balance=normalize_decimal(new_balance),
            average_cost_basis=normalize_decimal(new_average),
            total_invested=normalize_decimal(new_total_invested),
            last_updated=block_time,
        )
        self._db.execute(
            """
            INSERT INTO portfolio_positions (
                owner_id, wallet, mint, balance, average_cost_basis, total_invested, last_updated
            ) VALUES (
                :owner_id, :wallet, :mint, :balance, :average_cost_basis, :total_invested, :last_updated
            )
            ON CONFLICT (owner_id, wallet, mint) DO UPDATE SET
                balance = excluded.balance,
                average_cost_basis = excluded.average_cost_basis,
                total_invested = excluded.total_invested,
                last_updated = excluded.last_updated
            """,
            {
                **key,
                "balance": position.balance,
                "average_cost_basis": position.average_cost_basis,
                "total_invested": position.total_invested,
                "last_updated": position.last_updated,
            },
        )
        return position
