"""Dune SIM SVM transactions endpoint adapter."""

from __future__ import annotations

import json
import socket
from typing import Any, Callable, Mapping, Optional, Sequence
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode
from urllib.request import Request, urlopen

from tracker.errors import ProviderError


class DuneTransactionProvider:
    """Fetches recent raw transactions for an address; one attempt per call.

    Timeouts and HTTP failures surface as ProviderError so the poller can
    abandon the tick and retry on the next one.
    """

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str,
        timeout_seconds: float = 5.0,
        requester: Optional[Callable[[str, dict[str, Any]], Any]] = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._requester = requester
        self._call_count = 0

    @property
    def call_count(self) -> int:
        return self._call_count

    def _request_json(self, path: str, params: dict[str, Any]) -> Any:
        self._call_count += 1
        if self._requester is not None:
            return self._requester(path, params)

        request = Request(
            url=f"{self._base_url}{path}?{urlencode(params)}",
            headers={"X-Sim-Api-Key": self._api_key, "Accept": "application/json"},
            method="GET",
        )
        try:
            with urlopen(request, timeout=self._timeout_seconds) as response:
                return json.loads(response.read().decode("utf-8"))
        except HTTPError as exc:
            raise ProviderError(f"Dune API returned HTTP {exc.code} for {path}") from exc
        except (TimeoutError, socket.timeout) as exc:
            raise ProviderError(f"Dune API request timed out after {self._timeout_seconds}s for {path}") from exc
        except URLError as exc:
            raise ProviderError(f"Dune API request failed for {path}: {exc.reason}") from exc
        except ValueError as exc:
            raise ProviderError(f"Dune API returned malformed JSON for {path}") from exc

    def fetch(self, address: str, limit: int) -> Sequence[Mapping[str, Any]]:
        payload = self._request_json(f"/beta/svm/transactions/{quote(address, safe='')}", {"limit": limit})
        if not isinstance(payload, Mapping):
            raise ProviderError("Dune API response must be a JSON object")
        rows = payload.get("transactions") or []
        if not isinstance(rows, list):
            raise ProviderError("Dune API response field 'transactions' must be a list")
        return [row for row in rows if isinstance(row, Mapping)]
