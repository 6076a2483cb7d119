"""Single-process polling scheduler over all tracked wallets."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import time
from typing import Mapping, Optional

from tracker.common import LedgerClock, LedgerDatabase
from tracker.config import TrackerConfig
from tracker.cursor import IngestionCursorStore
from tracker.event_log import IngestionEventLog
from tracker.ledger_writer import TransactionLedgerWriter
from tracker.poller import TickOutcome, TickResult, WalletContext, WalletPoller
from tracker.provider_contract import NotificationSink, TransactionProvider
from tracker.token_symbols import TokenSymbolResolver
from tracker.tracking import TrackedWalletRecord, TrackedWalletRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WalletStatus:
    owner_id: str
    wallet: str
    alias: Optional[str]
    suspended: bool
    last_block_slot: Optional[int]
    last_signature: Optional[str]
    last_outcome: Optional[str]


@dataclass(frozen=True)
class DaemonStatus:
    """User-facing daemon status payload."""

    tracked_wallet_count: int
    active_wallet_count: int
    wallets: tuple[WalletStatus, ...]
    last_cycle_status: Optional[str]


class WalletControl:
    """Suspend, resume, cursor reset and status over the registry and cursor table.

    Needs only the ledger database, so operators can manage wallets without
    provider credentials.
    """

    def __init__(self, db: LedgerDatabase, *, owner_id: Optional[str] = None, clock: LedgerClock | None = None) -> None:
        self._db = db
        self._owner_id = owner_id
        self._clock = clock or LedgerClock()
        self.registry = TrackedWalletRegistry(db)
        self.cursor_store = IngestionCursorStore(db, self._clock)
        self._events = IngestionEventLog(db, self._clock)

    def _safe_log_event(self, event_type: str, status: str, details: str) -> None:
        self._events.safe_log_event(event_type, status, details, owner_id=self._owner_id)

    def resolve(self, owner_id: str, address_or_alias: str) -> TrackedWalletRecord:
        record = self.registry.find(owner_id, address_or_alias)
        if record is None:
            raise ValueError(f"Wallet is not tracked: {address_or_alias}")
        return record

    def suspend(self, owner_id: str, address_or_alias: str) -> TrackedWalletRecord:
        """Stop polling a wallet from the next tick boundary."""
        record = self.resolve(owner_id, address_or_alias)
        self.registry.set_active(owner_id, record.address, False)
        self._safe_log_event("WALLET", "SUSPENDED", f"wallet={record.address}")
        return self.resolve(owner_id, record.address)

    def resume(self, owner_id: str, address_or_alias: str) -> TrackedWalletRecord:
        record = self.resolve(owner_id, address_or_alias)
        self.registry.set_active(owner_id, record.address, True)
        self._safe_log_event("WALLET", "RESUMED", f"wallet={record.address}")
        return self.resolve(owner_id, record.address)

    def reset_cursor(self, owner_id: str, address_or_alias: str) -> TrackedWalletRecord:
        """Drop the persisted cursor; the next tick re-initializes it."""
        record = self.resolve(owner_id, address_or_alias)
        self._db.begin()
        try:
            self.cursor_store.reset(owner_id, record.address)
            self._db.commit()
        except Exception:
            self._db.rollback()
            raise
        self._safe_log_event("CURSOR", "RESET", f"wallet={record.address}")
        return record

    def status(
        self,
        last_outcomes: Mapping[tuple[str, str], Optional[TickOutcome]] | None = None,
        last_cycle_status: Optional[str] = None,
    ) -> DaemonStatus:
        """Read tracked wallets with their persisted cursors."""
        outcomes = last_outcomes or {}
        wallets: list[WalletStatus] = []
        for record in self.registry.list_wallets(self._owner_id):
            cursor = self.cursor_store.load(record.owner_id, record.address)
            outcome = outcomes.get((record.owner_id, record.address))
            wallets.append(
                WalletStatus(
                    owner_id=record.owner_id,
                    wallet=record.address,
                    alias=record.alias,
                    suspended=not record.is_active,
                    last_block_slot=None if cursor is None else cursor.block_slot,
                    last_signature=None if cursor is None else cursor.signature,
                    last_outcome=None if outcome is None else outcome.value,
                )
            )
        return DaemonStatus(
            tracked_wallet_count=len(wallets),
            active_wallet_count=sum(1 for wallet in wallets if not wallet.suspended),
            wallets=tuple(wallets),
            last_cycle_status=last_cycle_status,
        )


class TrackerDaemon:
    """Ticks every tracked, non-suspended wallet once per cycle.

    A wallet whose tick raises is logged and skipped; the remaining wallets
    of the cycle still run.
    """

    def __init__(
        self,
        *,
        db: LedgerDatabase,
        provider: TransactionProvider,
        config: TrackerConfig,
        notifier: Optional[NotificationSink] = None,
        symbols: Optional[TokenSymbolResolver] = None,
        owner_id: Optional[str] = None,
        clock: LedgerClock | None = None,
    ) -> None:
        self._config = config
        self._owner_id = owner_id
        self._clock = clock or LedgerClock()
        self._control = WalletControl(db, owner_id=owner_id, clock=self._clock)
        self._events = IngestionEventLog(db, self._clock)
        self._writer = TransactionLedgerWriter(db, clock=self._clock)
        self._poller = WalletPoller(
            provider=provider,
            writer=self._writer,
            config=config,
            events=self._events,
            notifier=notifier,
            symbols=symbols
            or TokenSymbolResolver(
                token_list_url=config.token_list_url,
                timeout_seconds=config.request_timeout_seconds,
            ),
            clock=self._clock,
        )
        self._contexts: dict[tuple[str, str], WalletContext] = {}
        self._last_cycle_status: Optional[str] = None

    def _safe_log_event(self, event_type: str, status: str, details: str) -> None:
        self._events.safe_log_event(event_type, status, details, owner_id=self._owner_id)

    @property
    def contexts(self) -> tuple[WalletContext, ...]:
        return tuple(self._contexts[key] for key in sorted(self._contexts))

    def refresh_wallets(self) -> tuple[WalletContext, ...]:
        """Sync wallet contexts with the registry; suspension follows ``is_active``."""
        records = self._control.registry.list_wallets(self._owner_id)
        seen: set[tuple[str, str]] = set()
        for record in records:
            key = (record.owner_id, record.address)
            seen.add(key)
            context = self._contexts.get(key)
            if context is None:
                context = WalletContext(owner_id=record.owner_id, wallet=record.address)
                self._contexts[key] = context
            context.suspended = not record.is_active
        for key in set(self._contexts) - seen:
            del self._contexts[key]
        return self.contexts

    def suspend(self, owner_id: str, address_or_alias: str) -> TrackedWalletRecord:
        record = self._control.suspend(owner_id, address_or_alias)
        context = self._contexts.get((owner_id, record.address))
        if context is not None:
            context.suspended = True
        return record

    def resume(self, owner_id: str, address_or_alias: str) -> TrackedWalletRecord:
        record = self._control.resume(owner_id, address_or_alias)
        context = self._contexts.get((owner_id, record.address))
        if context is not None:
            context.suspended = False
        return record

    def reset_cursor(self, owner_id: str, address_or_alias: str) -> None:
        record = self._control.reset_cursor(owner_id, address_or_alias)
        context = self._contexts.get((owner_id, record.address))
        if context is not None:
            context.cursor = None

    def _run_once_cycle(self) -> list[TickResult]:
        results: list[TickResult] = []
        failed = 0
        for context in self.refresh_wallets():
            try:
                results.append(self._poller.run_tick(context))
            except Exception as exc:
                failed += 1
                logger.exception("Tick failed for wallet=%s", context.wallet)
                self._safe_log_event(
                    "TICK",
                    "FAILED",
                    f"wallet={context.wallet},error={type(exc).__name__}:{exc}",
                )
        if failed:
            self._last_cycle_status = f"PARTIAL:failed_wallets={failed}"
        else:
            self._last_cycle_status = "COMPLETED"
        committed = sum(result.committed for result in results)
        aborted = sum(1 for result in results if result.outcome == TickOutcome.ABORTED)
        logger.info(
            "Cycle finished: wallets=%d committed=%d aborted=%d failed=%d",
            len(results) + failed,
            committed,
            aborted,
            failed,
        )
        return results

    def run_once(self) -> list[TickResult]:
        """Execute one polling cycle over every tracked wallet."""
        return self._run_once_cycle()

    def daemon_loop(self, *, max_cycles: int | None = None) -> None:
        """Poll until interrupted or ``max_cycles`` completed cycles."""
        self._safe_log_event("DAEMON", "STARTED", f"max_cycles={max_cycles if max_cycles is not None else 'infinite'}")
        cycles = 0
        consecutive_failures = 0
        try:
            while True:
                try:
                    self._run_once_cycle()
                    consecutive_failures = 0
                except Exception as exc:
                    consecutive_failures += 1
                    self._safe_log_event(
                        "DAEMON_CYCLE",
                        "FAILED",
                        f"failure_count={consecutive_failures},error={type(exc).__name__}:{exc}",
                    )
                    if consecutive_failures >= self._config.max_consecutive_failures:
                        raise RuntimeError(
                            f"Tracker daemon exceeded max consecutive failures ({self._config.max_consecutive_failures})"
                        ) from exc
                    time.sleep(self._config.failure_backoff_seconds)
                    continue

                cycles += 1
                if max_cycles is not None and cycles >= max_cycles:
                    return
                time.sleep(self._config.poll_interval_seconds)
        finally:
            self._safe_log_event("DAEMON", "STOPPED", f"completed_cycles={cycles}")

    def get_status(self) -> DaemonStatus:
        """Read tracked wallets with their persisted cursors and last tick outcomes."""
        self.refresh_wallets()
        outcomes = {key: context.last_outcome for key, context in self._contexts.items()}
        return self._control.status(outcomes, self._last_cycle_status)
