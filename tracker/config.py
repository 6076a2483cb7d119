"""Environment-backed configuration for the wallet ledger daemon."""

from __future__ import annotations

from dataclasses import dataclass
import os


@dataclass(frozen=True)
class TrackerConfig:
    """Canonical configuration surface for ingestion and polling."""

    dune_api_key: str
    dune_api_base_url: str
    fetch_limit: int
    poll_interval_seconds: float
    request_timeout_seconds: float
    start_from_latest: bool
    notifications_enabled: bool
    explorer_tx_url: str
    token_list_url: str | None
    resolve_token_symbols: bool
    max_consecutive_failures: int
    failure_backoff_seconds: float
    database_url: str | None


def _read_env(name: str, default: str | None = None) -> str:
    value = os.getenv(name, default)
    if value is None or value.strip() == "":
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value.strip()


def _read_optional(name: str) -> str | None:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return None
    return value.strip()


def _read_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    normalized = raw.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise RuntimeError(f"Invalid boolean value for {name}: {raw}")


def _read_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw.strip())
    except ValueError as exc:
        raise RuntimeError(f"Invalid integer value for {name}: {raw}") from exc
    return value


def _read_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw.strip())
    except ValueError as exc:
        raise RuntimeError(f"Invalid float value for {name}: {raw}") from exc
    return value


def load_tracker_config() -> TrackerConfig:
    """Load and validate daemon configuration from environment."""
    fetch_limit = _read_int("TRACKER_FETCH_LIMIT", 50)
    if fetch_limit <= 0:
        raise RuntimeError("TRACKER_FETCH_LIMIT must be positive")

    request_timeout = _read_float("TRACKER_REQUEST_TIMEOUT_SECONDS", 5.0)
    if request_timeout <= 0:
        raise RuntimeError("TRACKER_REQUEST_TIMEOUT_SECONDS must be positive")

    max_failures = _read_int("TRACKER_MAX_CONSECUTIVE_FAILURES", 10)
    if max_failures <= 0:
        raise RuntimeError("TRACKER_MAX_CONSECUTIVE_FAILURES must be positive")

    return TrackerConfig(
        dune_api_key=_read_env("DUNE_API_KEY"),
        dune_api_base_url=_read_env("DUNE_API_BASE_URL", "https://api.sim.dune.com"),
        fetch_limit=fetch_limit,
        poll_interval_seconds=_read_float("TRACKER_POLL_INTERVAL_SECONDS", 5.0),
        request_timeout_seconds=request_timeout,
        start_from_latest=_read_bool("TRACKER_START_FROM_LATEST", True),
        notifications_enabled=_read_bool("TRACKER_NOTIFICATIONS_ENABLED", True),
        explorer_tx_url=os.getenv("TRACKER_EXPLORER_TX_URL", "https://solscan.io/tx/").strip(),
        token_list_url=_read_optional("TRACKER_TOKEN_LIST_URL"),
        resolve_token_symbols=_read_bool("TRACKER_RESOLVE_TOKEN_SYMBOLS", False),
        max_consecutive_failures=max_failures,
        failure_backoff_seconds=_read_float("TRACKER_FAILURE_BACKOFF_SECONDS", 30.0),
        database_url=_read_optional("TRACKER_DATABASE_URL"),
    )
