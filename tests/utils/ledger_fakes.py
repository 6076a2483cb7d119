"""Test doubles for wallet ledger unit tests."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional, Sequence

from tracker.config import TrackerConfig
from tracker.errors import NotificationError


class FakeDB:
    """Small in-memory DB double keyed by SQL markers."""

    def __init__(self) -> None:
        self.executed: list[tuple[str, dict[str, Any]]] = []
        self.one_responses: dict[str, Mapping[str, Any] | None] = {}
        self.all_responses: dict[str, Sequence[Mapping[str, Any]]] = {}
        self.begun = 0
        self.commits = 0
        self.rollbacks = 0

    def set_one(self, marker: str, value: Mapping[str, Any] | None) -> None:
        self.one_responses[marker] = value

    def set_all(self, marker: str, value: Sequence[Mapping[str, Any]]) -> None:
        self.all_responses[marker] = value

    def fetch_one(self, sql: str, params: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
        for marker, value in self.one_responses.items():
            if marker in sql:
                return value
        rows = self.fetch_all(sql, params)
        return rows[0] if rows else None

    def fetch_all(self, sql: str, params: Mapping[str, Any]) -> Sequence[Mapping[str, Any]]:
        for marker, value in self.all_responses.items():
            if marker in sql:
                return list(value)
        return []

    def execute(self, sql: str, params: Mapping[str, Any]) -> None:
        self.executed.append((sql, dict(params)))

    def begin(self) -> None:
        self.begun += 1

    def commit(self) -> None:
        self.commits += 1

    def rollback(self) -> None:
        self.rollbacks += 1


class FixedClock:
    """Clock advancing one second per call."""

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2026, 1, 1, tzinfo=timezone.utc)

    def now_utc(self) -> datetime:
        current = self._now
        self._now = current + timedelta(seconds=1)
        return current


class FakeProvider:
    """Returns canned payloads per address; an Exception value is raised instead."""

    def __init__(self, payloads: Mapping[str, Any] | None = None) -> None:
        self.payloads: dict[str, Any] = dict(payloads or {})
        self.calls: list[tuple[str, int]] = []

    def fetch(self, address: str, limit: int) -> Sequence[Mapping[str, Any]]:
        self.calls.append((address, limit))
        value = self.payloads.get(address, [])
        if isinstance(value, Exception):
            raise value
        return list(value)


class RecordingNotifier:
    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []

    def send(self, recipient_id: str, text: str) -> None:
        self.messages.append((recipient_id, text))


class FailingNotifier:
    def __init__(self) -> None:
        self.attempts = 0

    def send(self, recipient_id: str, text: str) -> None:
        self.attempts += 1
        raise NotificationError(f"delivery to {recipient_id} refused")


BASE_CONFIG = TrackerConfig(
    dune_api_key="test-key",
    dune_api_base_url="https://api.sim.dune.com",
    fetch_limit=50,
    poll_interval_seconds=0.0,
    request_timeout_seconds=5.0,
    start_from_latest=False,
    notifications_enabled=True,
    explorer_tx_url="https://solscan.io/tx/",
    token_list_url=None,
    resolve_token_symbols=False,
    max_consecutive_failures=3,
    failure_backoff_seconds=0.0,
    database_url=None,
)


def make_config(**overrides: Any) -> TrackerConfig:
    return replace(BASE_CONFIG, **overrides)
