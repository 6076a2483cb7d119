from __future__ import annotations

from decimal import Decimal

import pytest

from tests.utils.payloads import COUNTERPARTY, MINT_X, MINT_Y, OTHER_WALLET, WALLET, make_payload, token_balance
from tracker.errors import ParseError
from tracker.normalizer import normalize_transaction
from tracker.raw_transaction import parse_raw_transaction


def test_sol_and_token_deltas_for_tracked_wallet() -> None:
    raw = parse_raw_transaction(
        make_payload(
            "sig-n1",
            10,
            sol_delta="-2",
            pre_tokens=[token_balance(MINT_X, "1.5"), token_balance(MINT_Y, "4", owner=COUNTERPARTY)],
            post_tokens=[token_balance(MINT_X, "4"), token_balance(MINT_Y, "1", owner=COUNTERPARTY)],
            fee=5000,
        )
    )
    normalized = normalize_transaction(raw, WALLET)

    assert normalized.sol_change == Decimal("-2")
    assert normalized.fee_sol == Decimal("0.000005")
    assert normalized.wallet_in_account_keys is True
    assert list(normalized.token_deltas) == [MINT_X]
    assert normalized.token_deltas[MINT_X].change == Decimal("2.5")
    assert normalized.token_deltas[MINT_X].decimals == 6


def test_token_accounts_are_summed_per_mint() -> None:
    raw = parse_raw_transaction(
        make_payload(
            "sig-n2",
            11,
            pre_tokens=[token_balance(MINT_X, "1", index=2), token_balance(MINT_X, "1", index=3)],
            post_tokens=[token_balance(MINT_X, "0", index=2), token_balance(MINT_X, "5", index=3)],
        )
    )
    normalized = normalize_transaction(raw, WALLET)
    assert normalized.token_deltas[MINT_X].change == Decimal("3")


def test_closed_token_account_counts_as_full_outflow() -> None:
    raw = parse_raw_transaction(make_payload("sig-n3", 12, pre_tokens=[token_balance(MINT_X, "7")], post_tokens=[]))
    normalized = normalize_transaction(raw, WALLET)
    assert normalized.token_deltas[MINT_X].change == Decimal("-7")


def test_dust_deltas_are_dropped() -> None:
    raw = parse_raw_transaction(
        make_payload(
            "sig-n4",
            13,
            pre_tokens=[token_balance(MINT_X, "1.0000000000", decimals=10)],
            post_tokens=[token_balance(MINT_X, "1.0000000005", decimals=10)],
        )
    )
    assert normalize_transaction(raw, WALLET).token_deltas == {}


def test_wallet_outside_account_keys_has_zero_sol_change() -> None:
    raw = parse_raw_transaction(
        make_payload(
            "sig-n5",
            14,
            sol_delta="3",
            account_keys=[COUNTERPARTY, OTHER_WALLET],
            post_tokens=[token_balance(MINT_X, "2")],
        )
    )
    normalized = normalize_transaction(raw, WALLET)
    assert normalized.wallet_in_account_keys is False
    assert normalized.sol_change == Decimal("0")
    assert normalized.token_deltas[MINT_X].change == Decimal("2")


def test_short_balance_arrays_raise_parse_error() -> None:
    payload = make_payload("sig-n6", 15)
    payload["raw_transaction"]["meta"]["postBalances"] = []
    raw = parse_raw_transaction(payload)
    with pytest.raises(ParseError, match="account index 0") as exc:
        normalize_transaction(raw, WALLET)
    assert exc.value.signature == "sig-n6"
    assert exc.value.block_slot == 15
