"""Provider and notification protocols plus typed raw transaction payloads."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, Sequence


@dataclass(frozen=True)
class TokenBalance:
    """Per-account, per-mint token balance snapshot."""

    account_index: int
    owner: str
    mint: str
    ui_amount_string: str
    decimals: int


@dataclass(frozen=True)
class RawTransaction:
    """Validated provider transaction record."""

    signature: str
    block_slot: int
    block_time: int
    account_keys: tuple[str, ...]
    pre_balances: tuple[int, ...]
    post_balances: tuple[int, ...]
    pre_token_balances: tuple[TokenBalance, ...]
    post_token_balances: tuple[TokenBalance, ...]
    log_messages: tuple[str, ...]
    fee_lamports: int
    failed: bool
    payload: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)


class TransactionProvider(Protocol):
    """Source of recent raw transactions for a wallet address."""

    def fetch(self, address: str, limit: int) -> Sequence[Mapping[str, Any]]:
        """Return up to ``limit`` recent raw payloads; ordering is not guaranteed."""


class NotificationSink(Protocol):
    """Fire-and-forget delivery of rendered transaction messages."""

    def send(self, recipient_id: str, text: str) -> None:
        """Deliver ``text`` to ``recipient_id`` or raise NotificationError."""
