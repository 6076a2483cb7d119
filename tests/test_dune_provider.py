from __future__ import annotations

import io
import json
from typing import Any
from urllib.error import HTTPError, URLError

import pytest

from tests.utils.payloads import WALLET, make_payload
from tracker.dune_provider import DuneTransactionProvider
from tracker.errors import ProviderError
import tracker.dune_provider as dune_module


class _FakeResponse:
    def __init__(self, body: bytes) -> None:
        self._body = body

    def __enter__(self) -> "_FakeResponse":
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        return None

    def read(self) -> bytes:
        return self._body


def _provider(**kwargs: Any) -> DuneTransactionProvider:
    return DuneTransactionProvider(api_key="sim-key", base_url="https://api.sim.dune.com/", timeout_seconds=2.0, **kwargs)


def test_requester_receives_path_and_limit() -> None:
    seen: list[tuple[str, dict[str, Any]]] = []
    payload = make_payload("sig-1", 10)

    def _requester(path: str, params: dict[str, Any]) -> Any:
        seen.append((path, params))
        return {"transactions": [payload, "garbage"], "next_offset": None}

    provider = _provider(requester=_requester)
    rows = provider.fetch(WALLET, 25)

    assert seen == [(f"/beta/svm/transactions/{WALLET}", {"limit": 25})]
    assert rows == [payload]
    assert provider.call_count == 1


def test_missing_transactions_field_is_empty() -> None:
    provider = _provider(requester=lambda _path, _params: {})
    assert provider.fetch(WALLET, 5) == []


@pytest.mark.parametrize(
    ("body", "message"),
    [
        ([], "must be a JSON object"),
        ({"transactions": {"a": 1}}, "'transactions' must be a list"),
    ],
)
def test_unexpected_shapes_raise(body: Any, message: str) -> None:
    provider = _provider(requester=lambda _path, _params: body)
    with pytest.raises(ProviderError, match=message):
        provider.fetch(WALLET, 5)


def test_urlopen_sends_api_key_and_timeout(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, Any] = {}

    def _fake_urlopen(request: Any, timeout: float) -> _FakeResponse:
        captured["url"] = request.full_url
        captured["key"] = request.get_header("X-sim-api-key")
        captured["timeout"] = timeout
        return _FakeResponse(json.dumps({"transactions": []}).encode("utf-8"))

    monkeypatch.setattr(dune_module, "urlopen", _fake_urlopen)
    assert _provider().fetch(WALLET, 7) == []
    assert captured == {
        "url": f"https://api.sim.dune.com/beta/svm/transactions/{WALLET}?limit=7",
        "key": "sim-key",
        "timeout": 2.0,
    }


@pytest.mark.parametrize(
    ("error", "message"),
    [
        (HTTPError("https://api.sim.dune.com", 429, "Too Many Requests", {}, io.BytesIO(b"")), "HTTP 429"),
        (TimeoutError("read timed out"), "timed out after 2.0s"),
        (URLError("connection refused"), "connection refused"),
    ],
)
def test_transport_failures_become_provider_errors(monkeypatch: pytest.MonkeyPatch, error: Exception, message: str) -> None:
    def _failing_urlopen(request: Any, timeout: float) -> Any:
        raise error

    monkeypatch.setattr(dune_module, "urlopen", _failing_urlopen)
    with pytest.raises(ProviderError, match=message):
        _provider().fetch(WALLET, 5)


def test_malformed_json_becomes_provider_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(dune_module, "urlopen", lambda request, timeout: _FakeResponse(b"<html>"))
    with pytest.raises(ProviderError, match="malformed JSON"):
        _provider().fetch(WALLET, 5)
