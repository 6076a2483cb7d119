"""Atomic persistence of one classified transaction and its ledger effects."""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging

from backend.db.enums import NotificationStatus
from tracker.classifier import ClassifiedTransaction
from tracker.common import EPSILON, LedgerClock, LedgerDatabase, normalize_decimal, stable_uuid
from tracker.cursor import CursorPosition, IngestionCursorStore
from tracker.errors import PersistenceError
from tracker.fifo_ledger import AcquisitionLot, DisposalRecord, FifoLedger
from tracker.positions import PositionAggregator
from tracker.provider_contract import RawTransaction

logger = logging.getLogger(__name__)


def transaction_id_for(owner_id: str, wallet: str, signature: str) -> str:
    return stable_uuid("transaction", (owner_id, wallet, signature))


@dataclass(frozen=True)
class CommitResult:
    """What a commit wrote; ``duplicate`` means the signature was already persisted."""

    transaction_id: str
    duplicate: bool
    lots: tuple[AcquisitionLot, ...]
    disposals: tuple[DisposalRecord, ...]
    cursor_advanced: bool


class TransactionLedgerWriter:
    """Writes the transaction row, movements, lots, lot deductions, disposals,
    position updates and the cursor advance as a single unit of work."""

    def __init__(
        self,
        db: LedgerDatabase,
        *,
        fifo: FifoLedger | None = None,
        positions: PositionAggregator | None = None,
        cursor_store: IngestionCursorStore | None = None,
        clock: LedgerClock | None = None,
    ) -> None:
        self._db = db
        self._clock = clock or LedgerClock()
        self.fifo = fifo or FifoLedger(db)
        self.positions = positions or PositionAggregator(db)
        self.cursor_store = cursor_store or IngestionCursorStore(db, self._clock)

    def is_persisted(self, owner_id: str, wallet: str, signature: str) -> bool:
        row = self._db.fetch_one(
            """
            SELECT transaction_id
            FROM transactions
            WHERE owner_id = :owner_id AND wallet = :wallet AND signature = :signature
            """,
            {"owner_id": owner_id, "wallet": wallet, "signature": signature},
        )
        return row is not None

    def _insert_transaction(
        self, transaction_id: str, owner_id: str, wallet: str, raw: RawTransaction, classified: ClassifiedTransaction
    ) -> None:
        normalized = classified.normalized
        self._db.execute(
            """
            INSERT INTO transactions (
                transaction_id, owner_id, wallet, signature, block_slot, block_time, fee_sol,
                sol_change, transaction_type, parsed_message, raw_data_json, notification_status,
                processed_at_utc
            ) VALUES (
                :transaction_id, :owner_id, :wallet, :signature, :block_slot, :block_time, :fee_sol,
                :sol_change, :transaction_type, :parsed_message, :raw_data_json, :notification_status,
                :processed_at_utc
            )
            """,
            {
                "transaction_id": transaction_id,
                "owner_id": owner_id,
                "wallet": wallet,
                "signature": normalized.signature,
                "block_slot": normalized.block_slot,
                "block_time": normalized.block_time,
                "fee_sol": normalize_decimal(normalized.fee_sol),
                "sol_change": normalize_decimal(normalized.sol_change),
                "transaction_type": classified.transaction_type.value,
                "parsed_message": classified.display_message,
                "raw_data_json": json.dumps(dict(raw.payload), sort_keys=True, default=str),
                "notification_status": NotificationStatus.PENDING.value,
                "processed_at_utc": self._clock.now_utc(),
            },
        )
        for movement in classified.movements:
            self._db.execute(
                """
                INSERT INTO token_movements (movement_id, transaction_id, mint, amount_ui, action, decimals)
                VALUES (:movement_id, :transaction_id, :mint, :amount_ui, :action, :decimals)
                """,
                {
                    "movement_id": stable_uuid("token_movement", (transaction_id, movement.mint)),
                    "transaction_id": transaction_id,
                    "mint": movement.mint,
                    "amount_ui": movement.amount_ui,
                    "action": movement.action.value,
                    "decimals": movement.decimals,
                },
            )

    def commit(
        self, *, owner_id: str, wallet: str, raw: RawTransaction, classified: ClassifiedTransaction
    ) -> CommitResult:
        """Persist ``classified`` and advance the cursor to its position, all or nothing."""
        normalized = classified.normalized
        transaction_id = transaction_id_for(owner_id, wallet, normalized.signature)
        position = CursorPosition(block_slot=normalized.block_slot, signature=normalized.signature)

        self._db.begin()
        try:
            if self.is_persisted(owner_id, wallet, normalized.signature):
                advanced = self.cursor_store.advance(owner_id, wallet, position)
                self._db.commit()
                return CommitResult(
                    transaction_id=transaction_id,
                    duplicate=True,
                    lots=(),
                    disposals=(),
                    cursor_advanced=advanced,
                )

            self._insert_transaction(transaction_id, owner_id, wallet, raw, classified)

            lots: list[AcquisitionLot] = []
            for acquisition in classified.acquisitions:
                lots.append(
                    self.fifo.record_acquisition(
                        owner_id=owner_id,
                        wallet=wallet,
                        transaction_id=transaction_id,
                        signature=normalized.signature,
                        mint=acquisition.mint,
                        block_time=normalized.block_time,
                        block_slot=normalized.block_slot,
                        amount=acquisition.amount,
                        cost_per_unit=acquisition.cost_per_unit,
                        total_cost=acquisition.total_cost,
                    )
                )
                self.positions.apply_delta(
                    owner_id=owner_id,
                    wallet=wallet,
                    mint=acquisition.mint,
                    amount_delta=acquisition.amount,
                    value_delta=acquisition.total_cost,
                    block_time=normalized.block_time,
                )

            disposals: list[DisposalRecord] = []
            for disposal in classified.disposals:
                consumption = self.fifo.consume_for_disposal(owner_id, wallet, disposal.mint, disposal.amount_sold)
                if (
                    abs(consumption.cost_of_goods_sold - disposal.cost_of_goods_sold) > EPSILON
                    or abs(consumption.amount_covered - disposal.amount_covered) > EPSILON
                ):
                    raise PersistenceError(
                        f"FIFO lots for mint={disposal.mint} changed between classification and commit "
                        f"(quoted={disposal.cost_of_goods_sold}, consumed={consumption.cost_of_goods_sold})"
                    )
                disposals.append(
                    self.fifo.record_disposal(
                        owner_id=owner_id,
                        wallet=wallet,
                        transaction_id=transaction_id,
                        signature=normalized.signature,
                        mint=disposal.mint,
                        block_time=normalized.block_time,
                        amount_sold=disposal.amount_sold,
                        proceeds=disposal.proceeds,
                        consumption=consumption,
                    )
                )
                self.positions.apply_delta(
                    owner_id=owner_id,
                    wallet=wallet,
                    mint=disposal.mint,
                    amount_delta=-disposal.amount_sold,
                    value_delta=-consumption.cost_of_goods_sold,
                    block_time=normalized.block_time,
                )

            advanced = self.cursor_store.advance(owner_id, wallet, position)
            self._db.commit()
        except Exception as exc:
            self._db.rollback()
            logger.error("Ledger commit rolled back for signature=%s: %s", normalized.signature, exc)
            if isinstance(exc, PersistenceError):
                raise
            raise PersistenceError(f"Ledger commit failed for signature={normalized.signature}: {exc}") from exc

        logger.info(
            "Committed signature=%s slot=%s type=%s lots=%d disposals=%d",
            normalized.signature,
            normalized.block_slot,
            classified.transaction_type.value,
            len(lots),
            len(disposals),
        )
        return CommitResult(
            transaction_id=transaction_id,
            duplicate=False,
            lots=tuple(lots),
            disposals=tuple(disposals),
            cursor_advanced=advanced,
        )

    def advance_cursor(self, owner_id: str, wallet: str, position: CursorPosition) -> bool:
        """Advance the cursor on its own, for skipped or unparseable transactions."""
        self._db.begin()
        try:
            advanced = self.cursor_store.advance(owner_id, wallet, position)
            self._db.commit()
        except Exception as exc:
            self._db.rollback()
            raise PersistenceError(f"Cursor advance failed for wallet={wallet}: {exc}") from exc
        return advanced

    def mark_notification(self, owner_id: str, wallet: str, signature: str, status: NotificationStatus) -> None:
        self._db.begin()
        try:
            self._db.execute(
                """
                UPDATE transactions
                SET notification_status = :notification_status
                WHERE owner_id = :owner_id AND wallet = :wallet AND signature = :signature
                """,
                {
                    "owner_id": owner_id,
                    "wallet": wallet,
                    "signature": signature,
                    "notification_status": status.value,
                },
            )
            self._db.commit()
        except Exception as exc:
            self._db.rollback()
            raise PersistenceError(f"Notification status update failed for signature={signature}: {exc}") from exc
