"""FIFO acquisition lots, disposal records and realized PnL queries."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
import logging
from typing import Any, Mapping, Sequence
import warnings

from tracker.common import EPSILON, LedgerDatabase, normalize_decimal, stable_uuid, to_decimal
from tracker.errors import InsufficientInventoryWarning

logger = logging.getLogger(__name__)

_OPEN_LOTS_SQL = """
    SELECT lot_id, transaction_id, owner_id, wallet, signature, mint, block_time, block_slot,
           amount_acquired, cost_per_unit, total_cost, amount_remaining
    FROM token_acquisitions
    WHERE owner_id = :owner_id
      AND wallet = :wallet
      AND mint = :mint
      AND amount_remaining > 0
    ORDER BY block_time ASC, block_slot ASC, signature ASC
"""


@dataclass(frozen=True)
class AcquisitionLot:
    """Persisted acquisition lot."""

    lot_id: str
    transaction_id: str
    owner_id: str
    wallet: str
    signature: str
    mint: str
    block_time: int
    block_slot: int
    amount_acquired: Decimal
    cost_per_unit: Decimal
    total_cost: Decimal
    amount_remaining: Decimal


@dataclass(frozen=True)
class DisposalRecord:
    """Persisted disposal with FIFO cost of goods sold."""

    disposal_id: str
    transaction_id: str
    owner_id: str
    wallet: str
    signature: str
    mint: str
    block_time: int
    amount_sold: Decimal
    proceeds: Decimal
    proceeds_per_unit: Decimal
    cost_of_goods_sold: Decimal
    amount_covered: Decimal
    realized_pnl: Decimal


@dataclass(frozen=True)
class FifoConsumption:
    """Outcome of walking open lots oldest-first for a disposal amount."""

    cost_of_goods_sold: Decimal
    amount_covered: Decimal
    shortfall: Decimal


@dataclass(frozen=True)
class RealizedPnlSummary:
    total_pnl: Decimal
    disposal_count: int


@dataclass(frozen=True)
class WalletPnl:
    wallet: str
    total_pnl: Decimal
    disposal_count: int


def _lot_from_row(row: Mapping[str, Any]) -> AcquisitionLot:
    return AcquisitionLot(
        lot_id=str(row["lot_id"]),
        transaction_id=str(row["transaction_id"]),
        owner_id=str(row["owner_id"]),
        wallet=str(row["wallet"]),
        signature=str(row["signature"]),
        mint=str(row["mint"]),
        block_time=int(row["block_time"]),
        block_slot=int(row["block_slot"]),
        amount_acquired=to_decimal(row["amount_acquired"]),
        cost_per_unit=to_decimal(row["cost_per_unit"]),
        total_cost=to_decimal(row["total_cost"]),
        amount_remaining=to_decimal(row["amount_remaining"]),
    )


def walk_lots(lots: Sequence[AcquisitionLot], amount: Decimal) -> tuple[FifoConsumption, list[tuple[str, Decimal]]]:
    """Consume ``amount`` from ``lots`` in the given order.

    Returns the consumption summary and the new ``amount_remaining`` per
    touched lot. Remainders at or below ``EPSILON`` are snapped to zero.
    """
    to_cover = amount
    cost_of_goods_sold = Decimal("0")
    updates: list[tuple[str, Decimal]] = []
    for lot in lots:
        if to_cover <= EPSILON:
            break
        take = min(lot.amount_remaining, to_cover)
        cost_of_goods_sold += take * lot.cost_per_unit
        to_cover -= take
        remaining = lot.amount_remaining - take
        updates.append((lot.lot_id, Decimal("0") if remaining <= EPSILON else remaining))

    shortfall = to_cover if to_cover > EPSILON else Decimal("0")
    return (
        FifoConsumption(
            cost_of_goods_sold=cost_of_goods_sold,
            amount_covered=amount - shortfall,
            shortfall=shortfall,
        ),
        updates,
    )


class FifoLedger:
    """Inventory of acquisition lots scoped per (owner, wallet, mint)."""

    def __init__(self, db: LedgerDatabase) -> None:
        self._db = db

    def open_lots(self, owner_id: str, wallet: str, mint: str) -> list[AcquisitionLot]:
        """Lots with remaining inventory in consumption order."""
        rows = self._db.fetch_all(_OPEN_LOTS_SQL, {"owner_id": owner_id, "wallet": wallet, "mint": mint})
        return [_lot_from_row(row) for row in rows]

    def record_acquisition(
        self,
        *,
        owner_id: str,
        wallet: str,
        transaction_id: str,
        signature: str,
        mint: str,
        block_time: int,
        block_slot: int,
        amount: Decimal,
        cost_per_unit: Decimal,
        total_cost: Decimal | None = None,
    ) -> AcquisitionLot:
        """Append a new lot; lots are never merged."""
        if amount <= 0:
            raise ValueError(f"Acquisition amount must be positive: {amount}")
        lot = AcquisitionLot(
            lot_id=stable_uuid("token_acquisition", (owner_id, wallet, signature, mint)),
            transaction_id=transaction_id,
            owner_id=owner_id,
            wallet=wallet,
            signature=signature,
            mint=mint,
            block_time=block_time,
            block_slot=block_slot,
            amount_acquired=normalize_decimal(amount),
            cost_per_unit=normalize_decimal(cost_per_unit),
            total_cost=normalize_decimal(total_cost if total_cost is not None else amount * cost_per_unit),
            amount_remaining=normalize_decimal(amount),
        )
        self._db.execute(
            """
            INSERT INTO token_acquisitions (
                lot_id, transaction_id, owner_id, wallet, signature, mint, block_time, block_slot,
                amount_acquired, cost_per_unit, total_cost, amount_remaining
            ) VALUES (
                :lot_id, :transaction_id, :owner_id, :wallet, :signature, :mint, :block_time, :block_slot,
                :amount_acquired, :cost_per_unit, :total_cost, :amount_remaining
            )
            """,
            {
                "lot_id": lot.lot_id,
                "transaction_id": lot.transaction_id,
                "owner_id": lot.owner_id,
                "wallet": lot.wallet,
                "signature": lot.signature,
                "mint": lot.mint,
                "block_time": lot.block_time,
                "block_slot": lot.block_slot,
                "amount_acquired": lot.amount_acquired,
                "cost_per_unit": lot.cost_per_unit,
                "total_cost": lot.total_cost,
                "amount_remaining": lot.amount_remaining,
            },
        )
        return lot

    def quote_disposal(self, owner_id: str, wallet: str, mint: str, amount: Decimal) -> FifoConsumption:
        """Read-only FIFO cost of goods sold for ``amount``; lots are not touched."""
        consumption, _ = walk_lots(self.open_lots(owner_id, wallet, mint), amount)
        return consumption

    def consume_for_disposal(self, owner_id: str, wallet: str, mint: str, amount: Decimal) -> FifoConsumption:
        """Deduct ``amount`` from the oldest lots first.

        An uncovered remainder is costed at zero and reported through
        ``InsufficientInventoryWarning``; it is never raised.
        """
        consumption, updates = walk_lots(self.open_lots(owner_id, wallet, mint), amount)
        for lot_id, remaining in updates:
            self._db.execute(
                "UPDATE token_acquisitions SET amount_remaining = :amount_remaining WHERE lot_id = :lot_id",
                {"lot_id": lot_id, "amount_remaining": normalize_decimal(remaining)},
            )

        if consumption.shortfall > 0:
            message = (
                f"Insufficient acquisition history for {amount} of mint={mint} on wallet={wallet}; "
                f"uncovered={consumption.shortfall} costed at zero"
            )
            logger.warning(message)
            warnings.warn(message, InsufficientInventoryWarning, stacklevel=2)
        return consumption

    def record_disposal(
        self,
        *,
        owner_id: str,
        wallet: str,
        transaction_id: str,
        signature: str,
        mint: str,
        block_time: int,
        amount_sold: Decimal,
        proceeds: Decimal,
        consumption: FifoConsumption,
    ) -> DisposalRecord:
        """Insert the append-only disposal row with ``realized_pnl = proceeds - cogs``."""
        proceeds_per_unit = proceeds / amount_sold if amount_sold > 0 else Decimal("0")
        record = DisposalRecord(
            disposal_id=stable_uuid("token_disposal", (owner_id, wallet, signature, mint)),
            transaction_id=transaction_id,
            owner_id=owner_id,
            wallet=wallet,
            signature=signature,
            mint=mint,
            block_time=block_time,
            amount_sold=normalize_decimal(amount_sold),
            proceeds=normalize_decimal(proceeds),
            proceeds_per_unit=normalize_decimal(proceeds_per_unit),
            cost_of_goods_sold=normalize_decimal(consumption.cost_of_goods_sold),
            amount_covered=normalize_decimal(consumption.amount_covered),
            realized_pnl=normalize_decimal(proceeds - consumption.cost_of_goods_sold),
        )
        self._db.execute(
            """
            INSERT INTO token_disposals_pnl (
                disposal_id, transaction_id, owner_id, wallet, signature, mint, block_time,
                amount_sold, proceeds_per_unit, total_proceeds, cost_of_goods_sold,
                amount_covered, realized_pnl
            ) VALUES (
                :disposal_id, :transaction_id, :owner_id, :wallet, :signature, :mint, :block_time,
                :amount_sold, :proceeds_per_unit, :total_proceeds, :cost_of_goods_sold,
                :amount_covered, :realized_pnl
            )
            """,
            {
                "disposal_id": record.disposal_id,
                "transaction_id": record.transaction_id,
                "owner_id": record.owner_id,
                "wallet": record.wallet,
                "signature": record.signature,
                "mint": record.mint,
                "block_time": record.block_time,
                "amount_sold": record.amount_sold,
                "proceeds_per_unit": record.proceeds_per_unit,
                "total_proceeds": record.proceeds,
                "cost_of_goods_sold": record.cost_of_goods_sold,
                "amount_covered": record.amount_covered,
                "realized_pnl": record.realized_pnl,
            },
        )
        return record

    def total_realized_pnl(self, owner_id: str, wallet: str | None = None) -> RealizedPnlSummary:
        """Sum of realized PnL for an owner, optionally restricted to one wallet."""
        sql = """
            SELECT COALESCE(SUM(realized_pnl), 0) AS total_pnl, COUNT(*) AS disposal_count
            FROM token_disposals_pnl
            WHERE owner_id = :owner_id
        """
        params: dict[str, Any] = {"owner_id": owner_id}
        if wallet is not None:
            sql += " AND wallet = :wallet"
            params["wallet"] = wallet
        row = self._db.fetch_one(sql, params)
        if row is None:
            return RealizedPnlSummary(total_pnl=Decimal("0"), disposal_count=0)
        return RealizedPnlSummary(
            total_pnl=to_decimal(row["total_pnl"]),
            disposal_count=int(row["disposal_count"]),
        )

    def pnl_by_wallet(self, owner_id: str) -> list[WalletPnl]:
        """Realized PnL per wallet, best performer first."""
        rows = self._db.fetch_all(
            """
            SELECT wallet, COALESCE(SUM(realized_pnl), 0) AS total_pnl, COUNT(*) AS disposal_count
            FROM token_disposals_pnl
            WHERE owner_id = :owner_id
            GROUP BY wallet
            ORDER BY total_pnl DESC, wallet ASC
            """,
            {"owner_id": owner_id},
        )
        return [
            WalletPnl(
                wallet=str(row["wallet"]),
                total_pnl=to_decimal(row["total_pnl"]),
                disposal_count=int(row["disposal_count"]),
            )
            for row in rows
        ]
