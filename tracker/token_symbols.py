"""Mint address to display symbol resolution with optional token-list lookup."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Iterable, Mapping, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from tracker.common import SOL_MINT

logger = logging.getLogger(__name__)

KNOWN_SYMBOLS: Mapping[str, str] = {
    SOL_MINT: "SOL",
    "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v": "USDC",
    "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCE8BenwNYB": "USDT",
}


def truncate_mint(mint: str) -> str:
    """Short display form used when no symbol is known."""
    if len(mint) <= 10:
        return mint
    return f"{mint[:6]}...{mint[-4:]}"


class TokenSymbolResolver:
    """Static map plus in-memory cache of symbols fetched from a token list."""

    def __init__(
        self,
        *,
        token_list_url: str | None = None,
        timeout_seconds: float = 3.0,
        known_symbols: Optional[Mapping[str, str]] = None,
        requester: Optional[Callable[[str], Any]] = None,
    ) -> None:
        self._token_list_url = token_list_url
        self._timeout_seconds = timeout_seconds
        self._known = dict(KNOWN_SYMBOLS if known_symbols is None else known_symbols)
        self._fetched: dict[str, str] = {}
        self._requester = requester
        self._token_list_loaded = False

    def symbol_for(self, mint: str) -> str:
        """Return the cached symbol for ``mint`` or its truncated address."""
        return self._known.get(mint) or self._fetched.get(mint) or truncate_mint(mint)

    def _request_token_list(self) -> Any:
        if self._requester is not None:
            return self._requester(str(self._token_list_url))
        request = Request(
            url=str(self._token_list_url),
            headers={"Accept": "application/json"},
            method="GET",
        )
        with urlopen(request, timeout=self._timeout_seconds) as response:
            return json.loads(response.read().decode("utf-8"))

    def preload(self, mints: Iterable[str]) -> None:
        """Fetch the token list once and cache symbols for unknown ``mints``."""
        wanted = {mint for mint in mints if mint not in self._known and mint not in self._fetched}
        if not wanted or self._token_list_url is None or self._token_list_loaded:
            return

        try:
            payload = self._request_token_list()
        except (HTTPError, URLError, TimeoutError, ValueError) as exc:
            logger.warning("Token list fetch failed from %s: %s", self._token_list_url, exc)
            return
        self._token_list_loaded = True

        rows = payload.get("tokens", ()) if isinstance(payload, Mapping) else payload
        for row in rows or ():
            if not isinstance(row, Mapping):
                continue
            address = row.get("address")
            symbol = row.get("symbol")
            if isinstance(address, str) and isinstance(symbol, str) and symbol:
                self._fetched[address] = symbol
        logger.info("Loaded %d token symbols from %s", len(self._fetched), self._token_list_url)
