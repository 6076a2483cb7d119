"""Balance-diff normalization of raw transactions for one tracked address."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Mapping

from tracker.common import EPSILON, LAMPORTS_PER_SOL
from tracker.errors import ParseError
from tracker.provider_contract import RawTransaction


@dataclass(frozen=True)
class TokenDelta:
    """Net change of one mint for the tracked address."""

    change: Decimal
    decimals: int


@dataclass(frozen=True)
class NormalizedTransaction:
    """SOL and per-mint token balance changes seen from the tracked address."""

    signature: str
    block_slot: int
    block_time: int
    sol_change: Decimal
    fee_sol: Decimal
    wallet_in_account_keys: bool
    token_deltas: Mapping[str, TokenDelta]


def normalize_transaction(raw: RawTransaction, address: str) -> NormalizedTransaction:
    """Extract net SOL change, fee and token deltas for ``address``.

    Token changes are summed per mint over balances owned by ``address``
    (post minus pre) and keep the order in which mints first appear. Deltas
    whose magnitude does not exceed ``EPSILON`` are dropped.
    """
    sol_change = Decimal("0")
    wallet_in_account_keys = address in raw.account_keys
    if wallet_in_account_keys:
        index = raw.account_keys.index(address)
        if index >= len(raw.pre_balances) or index >= len(raw.post_balances):
            raise ParseError(
                f"balance arrays do not cover account index {index}",
                signature=raw.signature,
                block_slot=raw.block_slot,
            )
        sol_change = Decimal(raw.post_balances[index] - raw.pre_balances[index]) / LAMPORTS_PER_SOL

    changes: dict[str, Decimal] = {}
    decimals_by_mint: dict[str, int] = {}
    for balance in raw.pre_token_balances:
        if balance.owner != address:
            continue
        changes[balance.mint] = changes.get(balance.mint, Decimal("0")) - Decimal(balance.ui_amount_string)
        decimals_by_mint[balance.mint] = balance.decimals
    for balance in raw.post_token_balances:
        if balance.owner != address:
            continue
        changes[balance.mint] = changes.get(balance.mint, Decimal("0")) + Decimal(balance.ui_amount_string)
        decimals_by_mint[balance.mint] = balance.decimals

    token_deltas = {
        mint: TokenDelta(change=change, decimals=decimals_by_mint[mint])
        for mint, change in changes.items()
        if abs(change) > EPSILON
    }

    return NormalizedTransaction(
        signature=raw.signature,
        block_slot=raw.block_slot,
        block_time=raw.block_time,
        sol_change=sol_change,
        fee_sol=Decimal(raw.fee_lamports) / LAMPORTS_PER_SOL,
        wallet_in_account_keys=wallet_in_account_keys,
        token_deltas=token_deltas,
    )
