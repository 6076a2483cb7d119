"""Shared deterministic helpers for the wallet ledger engine."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_EVEN, Decimal
from hashlib import sha256
from typing import Any, Iterable, Mapping, Optional, Protocol, Sequence
import uuid

NUMERIC_18 = Decimal("0.000000000000000001")

# Balance deltas at or below this magnitude are treated as numerical noise.
EPSILON = Decimal("1e-9")

# SOL movement required before an inflow/outflow counts as paid in SOL.
SOL_CHANGE_THRESHOLD = Decimal("1e-6")

LAMPORTS_PER_SOL = Decimal("1000000000")

SOL_MINT = "So11111111111111111111111111111111111111112"


class LedgerDatabase(Protocol):
    """Minimal DB protocol used by the ledger engine."""

    def fetch_one(self, sql: str, params: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
        """Fetch one row."""

    def fetch_all(self, sql: str, params: Mapping[str, Any]) -> Sequence[Mapping[str, Any]]:
        """Fetch rows."""

    def execute(self, sql: str, params: Mapping[str, Any]) -> None:
        """Execute mutation statement."""

    def begin(self) -> None:
        """Open a unit of work if one is not already open."""

    def commit(self) -> None:
        """Commit the open unit of work."""

    def rollback(self) -> None:
        """Discard the open unit of work."""


@dataclass(frozen=True)
class LedgerClock:
    """Injectable UTC clock for deterministic testing."""

    def now_utc(self) -> datetime:
        """Return current UTC timestamp."""
        return datetime.now(tz=timezone.utc)


def normalize_decimal(value: Decimal, scale: Decimal = NUMERIC_18) -> Decimal:
    """Quantize decimals to the persisted precision."""
    return value.quantize(scale, rounding=ROUND_HALF_EVEN)


def to_decimal(value: Any) -> Decimal:
    """Coerce DB/JSON numerics to Decimal without binary float artifacts."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def normalize_token(value: Any) -> str:
    """Serialize primitive values deterministically for hashing."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, Decimal):
        return format(normalize_decimal(value), "f")
    if isinstance(value, datetime):
        return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
    return str(value)


def stable_hash(tokens: Iterable[Any]) -> str:
    """Compute a stable SHA256 hash over canonical token serialization."""
    preimage = "|".join(normalize_token(token) for token in tokens)
    return sha256(preimage.encode("utf-8")).hexdigest()


def stable_uuid(namespace: str, tokens: Iterable[Any]) -> str:
    """Generate a deterministic UUIDv5 string from canonical tokens."""
    name = f"{namespace}|{stable_hash(tokens)}"
    return str(uuid.uuid5(uuid.NAMESPACE_URL, name))


def decimal_to_str(value: Decimal) -> str:
    """Canonical decimal serialization."""
    return format(value.normalize(), "f") if value != 0 else "0"


def block_time_to_utc(block_time_us: int) -> datetime:
    """Convert provider epoch-microsecond block time to an aware UTC datetime."""
    return datetime.fromtimestamp(block_time_us / 1_000_000, tz=timezone.utc)
