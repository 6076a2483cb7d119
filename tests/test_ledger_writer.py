from __future__ import annotations

from collections import defaultdict
from decimal import Decimal
import json
from typing import Any, Mapping

import pytest

from backend.db.enums import NotificationStatus, TransactionType
from tests.utils.ledger_fakes import FakeDB
from tests.utils.payloads import MINT_X, MINT_Y, OWNER, WALLET, buy_payload, make_payload, sell_payload, token_balance
from tests.utils.pipeline import classify_payload, ingest
from tracker.common import to_decimal
from tracker.cursor import CursorPosition
from tracker.errors import InsufficientInventoryWarning, PersistenceError
from tracker.ledger_writer import TransactionLedgerWriter, transaction_id_for


def _count(db, table: str) -> int:
    row = db.fetch_one(f"SELECT COUNT(*) AS n FROM {table}", {})
    return int(row["n"])


def test_commit_persists_transaction_lots_positions_and_cursor(ledger_db, track_wallet, clock) -> None:
    track_wallet()
    writer = TransactionLedgerWriter(ledger_db, clock=clock)
    payload = buy_payload("sig-1", 100, MINT_X, "10", "2")

    result = ingest(writer, payload)

    assert result.duplicate is False
    assert result.cursor_advanced is True
    assert result.transaction_id == transaction_id_for(OWNER, WALLET, "sig-1")
    assert len(result.lots) == 1
    assert result.lots[0].amount_remaining == Decimal("10")

    row = ledger_db.fetch_one(
        "SELECT signature, block_slot, transaction_type, notification_status, raw_data_json FROM transactions",
        {},
    )
    assert row["signature"] == "sig-1"
    assert row["block_slot"] == 100
    assert row["transaction_type"] == TransactionType.TOKEN_PURCHASE_SOL.value
    assert row["notification_status"] == NotificationStatus.PENDING.value
    assert json.loads(row["raw_data_json"])["block_slot"] == 100

    movements = ledger_db.fetch_all("SELECT mint, amount_ui, action, decimals FROM token_movements", {})
    assert movements == [{"mint": MINT_X, "amount_ui": "10.000000", "action": "Received", "decimals": 6}]

    assert writer.positions.get_position(OWNER, WALLET, MINT_X).balance == Decimal("10")
    assert writer.cursor_store.load(OWNER, WALLET) == CursorPosition(100, "sig-1")


def test_reingesting_a_signature_is_a_no_op(ledger_db, track_wallet, clock) -> None:
    track_wallet()
    writer = TransactionLedgerWriter(ledger_db, clock=clock)
    payload = buy_payload("sig-1", 100, MINT_X, "10", "2")
    ingest(writer, payload)

    again = ingest(writer, payload)

    assert again.duplicate is True
    assert again.cursor_advanced is False
    assert again.lots == ()
    assert _count(ledger_db, "transactions") == 1
    assert _count(ledger_db, "token_acquisitions") == 1
    assert writer.positions.get_position(OWNER, WALLET, MINT_X).balance == Decimal("10")
    assert writer.is_persisted(OWNER, WALLET, "sig-1") is True
    assert writer.is_persisted(OWNER, WALLET, "sig-2") is False


def test_inventory_matches_positions_after_mixed_activity(ledger_db, track_wallet, clock) -> None:
    track_wallet()
    writer = TransactionLedgerWriter(ledger_db, clock=clock)

    basket = make_payload(
        "sig-basket",
        100,
        sol_delta="-10",
        post_tokens=[token_balance(MINT_X, "2"), token_balance(MINT_Y, "3", index=3)],
    )
    basket_result = ingest(writer, basket)
    assert sorted(lot.total_cost for lot in basket_result.lots) == [Decimal("4"), Decimal("6")]

    ingest(writer, buy_payload("sig-x2", 101, MINT_X, "6", "3", held_before="2"))
    ingest(writer, sell_payload("sig-x3", 102, MINT_X, "5", "4", held_before="8"))
    ingest(writer, sell_payload("sig-y2", 103, MINT_Y, "3", "9", held_before="3"))

    remaining: dict[str, Decimal] = defaultdict(Decimal)
    for row in ledger_db.fetch_all("SELECT mint, amount_remaining FROM token_acquisitions", {}):
        remaining[str(row["mint"])] += to_decimal(row["amount_remaining"])

    balances = {position.mint: position.balance for position in writer.positions.list_positions(OWNER)}
    assert remaining[MINT_X] == balances[MINT_X] == Decimal("3")
    assert remaining[MINT_Y] == Decimal("0")
    assert MINT_Y not in balances

    acquired = ledger_db.fetch_one("SELECT SUM(amount_acquired) AS total FROM token_acquisitions WHERE mint = :mint", {"mint": MINT_X})
    covered = ledger_db.fetch_one("SELECT SUM(amount_covered) AS total FROM token_disposals_pnl WHERE mint = :mint", {"mint": MINT_X})
    assert to_decimal(acquired["total"]) - to_decimal(covered["total"]) == remaining[MINT_X]

    assert writer.fifo.total_realized_pnl(OWNER).total_pnl == Decimal("1.5")


def test_failure_rolls_back_every_write(ledger_db, track_wallet, clock, monkeypatch: pytest.MonkeyPatch) -> None:
    track_wallet()
    writer = TransactionLedgerWriter(ledger_db, clock=clock)

    def _boom(**_kwargs: Any) -> None:
        raise RuntimeError("position store unavailable")

    monkeypatch.setattr(writer.positions, "apply_delta", _boom)
    with pytest.raises(PersistenceError, match="position store unavailable"):
        ingest(writer, buy_payload("sig-1", 100, MINT_X, "10", "2"))

    assert _count(ledger_db, "transactions") == 0
    assert _count(ledger_db, "token_movements") == 0
    assert _count(ledger_db, "token_acquisitions") == 0
    assert writer.cursor_store.load(OWNER, WALLET) is None


def test_lots_consumed_after_classification_abort_commit(ledger_db, track_wallet, clock) -> None:
    track_wallet()
    writer = TransactionLedgerWriter(ledger_db, clock=clock)
    ingest(writer, buy_payload("sig-1", 100, MINT_X, "10", "10"))

    raw, stale = classify_payload(writer, sell_payload("sig-2", 101, MINT_X, "5", "6", held_before="10"))
    ingest(writer, sell_payload("sig-3", 102, MINT_X, "10", "12", held_before="10"))

    with pytest.warns(InsufficientInventoryWarning):
        with pytest.raises(PersistenceError, match="changed between classification and commit"):
            writer.commit(owner_id=OWNER, wallet=WALLET, raw=raw, classified=stale)

    assert writer.is_persisted(OWNER, WALLET, "sig-2") is False
    assert writer.cursor_store.load(OWNER, WALLET) == CursorPosition(102, "sig-3")


def test_mark_notification_updates_status(ledger_db, track_wallet, clock) -> None:
    track_wallet()
    writer = TransactionLedgerWriter(ledger_db, clock=clock)
    ingest(writer, buy_payload("sig-1", 100, MINT_X, "1", "1"))

    writer.mark_notification(OWNER, WALLET, "sig-1", NotificationStatus.FAILED)

    row = ledger_db.fetch_one("SELECT notification_status FROM transactions WHERE signature = :s", {"s": "sig-1"})
    assert row["notification_status"] == "FAILED"


class _ExplodingDB(FakeDB):
    def execute(self, sql: str, params: Mapping[str, Any]) -> None:
        raise RuntimeError("disk full")


def test_cursor_advance_failure_is_wrapped_and_rolled_back() -> None:
    db = _ExplodingDB()
    writer = TransactionLedgerWriter(db)
    with pytest.raises(PersistenceError, match="Cursor advance failed"):
        writer.advance_cursor(OWNER, WALLET, CursorPosition(1, "sig"))
    assert db.rollbacks == 1
    assert db.commits == 0
