"""Per-wallet poll tick: fetch, filter against the cursor, process in order."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import logging
import threading
from typing import Any, Mapping, Optional, Sequence

from backend.db.enums import NotificationStatus
from tracker.classifier import ClassifiedTransaction, classify_transaction
from tracker.common import LedgerClock
from tracker.config import TrackerConfig
from tracker.cursor import CursorPosition, latest_position, select_new_transactions
from tracker.errors import ParseError, PersistenceError, ProviderError
from tracker.event_log import IngestionEventLog
from tracker.ledger_writer import TransactionLedgerWriter
from tracker.normalizer import normalize_transaction
from tracker.provider_contract import NotificationSink, RawTransaction, TransactionProvider
from tracker.raw_transaction import parse_raw_transaction
from tracker.token_symbols import TokenSymbolResolver

logger = logging.getLogger(__name__)


class TickState(str, Enum):
    IDLE = "IDLE"
    FETCHING = "FETCHING"
    FILTERING = "FILTERING"
    PROCESSING = "PROCESSING"
    COMMITTED = "COMMITTED"
    SKIPPED = "SKIPPED"


class TickOutcome(str, Enum):
    COMPLETED = "COMPLETED"
    CURSOR_INITIALIZED = "CURSOR_INITIALIZED"
    SKIPPED_SUSPENDED = "SKIPPED_SUSPENDED"
    SKIPPED_IN_FLIGHT = "SKIPPED_IN_FLIGHT"
    PROVIDER_FAILED = "PROVIDER_FAILED"
    ABORTED = "ABORTED"


@dataclass
class WalletContext:
    """Mutable per-wallet scheduling state.

    ``cursor`` only caches the persisted cursor; every tick rehydrates it
    from storage before filtering.
    """

    owner_id: str
    wallet: str
    suspended: bool = False
    cursor: Optional[CursorPosition] = None
    state: TickState = TickState.IDLE
    last_tick_utc: Optional[datetime] = None
    last_outcome: Optional[TickOutcome] = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def in_flight(self) -> bool:
        return self.lock.locked()


@dataclass(frozen=True)
class TickResult:
    """Counters for one wallet tick."""

    owner_id: str
    wallet: str
    outcome: TickOutcome
    fetched: int = 0
    new: int = 0
    committed: int = 0
    duplicates: int = 0
    parse_failures: int = 0
    notifications_failed: int = 0
    cursor: Optional[CursorPosition] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class _PendingItem:
    block_slot: Optional[int]
    signature: Optional[str]
    raw: Optional[RawTransaction] = None
    error: Optional[ParseError] = None


def _pending_from_payload(payload: Mapping[str, Any]) -> _PendingItem:
    try:
        raw = parse_raw_transaction(payload)
    except ParseError as exc:
        return _PendingItem(block_slot=exc.block_slot, signature=exc.signature, error=exc)
    return _PendingItem(block_slot=raw.block_slot, signature=raw.signature, raw=raw)


class WalletPoller:
    """Runs ticks for wallet contexts; at most one in-flight tick per wallet."""

    def __init__(
        self,
        *,
        provider: TransactionProvider,
        writer: TransactionLedgerWriter,
        config: TrackerConfig,
        events: IngestionEventLog,
        notifier: Optional[NotificationSink] = None,
        symbols: Optional[TokenSymbolResolver] = None,
        clock: LedgerClock | None = None,
    ) -> None:
        self._provider = provider
        self._writer = writer
        self._config = config
        self._events = events
        self._notifier = notifier
        self._symbols = symbols or TokenSymbolResolver(token_list_url=config.token_list_url)
        self._clock = clock or LedgerClock()

    def run_tick(self, context: WalletContext) -> TickResult:
        """Poll ``context.wallet`` once unless it is suspended or already in flight."""
        if context.suspended:
            context.last_outcome = TickOutcome.SKIPPED_SUSPENDED
            return TickResult(
                owner_id=context.owner_id,
                wallet=context.wallet,
                outcome=TickOutcome.SKIPPED_SUSPENDED,
                cursor=context.cursor,
            )
        if not context.lock.acquire(blocking=False):
            logger.info("Tick skipped for wallet=%s: previous tick still in flight", context.wallet)
            return TickResult(
                owner_id=context.owner_id,
                wallet=context.wallet,
                outcome=TickOutcome.SKIPPED_IN_FLIGHT,
                cursor=context.cursor,
            )
        try:
            result = self._run_locked_tick(context)
        finally:
            context.state = TickState.IDLE
            context.last_tick_utc = self._clock.now_utc()
            context.lock.release()
        context.last_outcome = result.outcome
        return result

    def _log(self, context: WalletContext, event_type: str, status: str, details: str) -> None:
        self._events.safe_log_event(event_type, status, details, owner_id=context.owner_id, wallet=context.wallet)

    def _run_locked_tick(self, context: WalletContext) -> TickResult:
        context.cursor = self._writer.cursor_store.load(context.owner_id, context.wallet)

        context.state = TickState.FETCHING
        try:
            payloads = self._provider.fetch(context.wallet, self._config.fetch_limit)
        except ProviderError as exc:
            logger.warning("Fetch failed for wallet=%s: %s", context.wallet, exc)
            self._log(context, "FETCH", "FAILED", f"error={type(exc).__name__}:{exc}")
            return TickResult(
                owner_id=context.owner_id,
                wallet=context.wallet,
                outcome=TickOutcome.PROVIDER_FAILED,
                cursor=context.cursor,
                error=str(exc),
            )

        context.state = TickState.FILTERING
        pending: list[_PendingItem] = []
        for payload in payloads:
            item = _pending_from_payload(payload)
            if item.block_slot is None or not item.signature:
                logger.warning("Dropping provider record without slot or signature: %s", item.error)
                self._log(context, "PARSE", "DROPPED", f"error={item.error}")
                continue
            pending.append(item)

        if context.cursor is None and self._config.start_from_latest:
            return self._initialize_cursor(context, pending, fetched=len(payloads))

        batch = select_new_transactions(pending, context.cursor)
        committed = duplicates = parse_failures = notifications_failed = 0
        outcome = TickOutcome.COMPLETED
        error: Optional[str] = None

        for item in batch:
            context.state = TickState.PROCESSING
            position = CursorPosition(block_slot=int(item.block_slot or 0), signature=str(item.signature))
            try:
                if item.raw is None:
                    if self._skip_unparseable(context, position, item.error):
                        parse_failures += 1
                    continue
                if self._writer.is_persisted(context.owner_id, context.wallet, position.signature):
                    duplicates += 1
                    self._writer.advance_cursor(context.owner_id, context.wallet, position)
                    context.state = TickState.SKIPPED
                    continue
                try:
                    classified = self._classify(context, item.raw)
                except ParseError as exc:
                    if self._skip_unparseable(context, position, exc):
                        parse_failures += 1
                    continue

                commit = self._writer.commit(
                    owner_id=context.owner_id,
                    wallet=context.wallet,
                    raw=item.raw,
                    classified=classified,
                )
            except PersistenceError as exc:
                # Later items would be costed against an incomplete ledger.
                logger.error("Abandoning batch for wallet=%s at signature=%s: %s", context.wallet, position.signature, exc)
                self._log(context, "COMMIT", "FAILED", f"signature={position.signature},error={exc}")
                outcome = TickOutcome.ABORTED
                error = str(exc)
                break

            if commit.duplicate:
                duplicates += 1
                context.state = TickState.SKIPPED
                continue
            committed += 1
            context.state = TickState.COMMITTED
            if not self._notify(context, classified):
                notifications_failed += 1

        context.cursor = self._writer.cursor_store.load(context.owner_id, context.wallet)
        return TickResult(
            owner_id=context.owner_id,
            wallet=context.wallet,
            outcome=outcome,
            fetched=len(payloads),
            new=len(batch),
            committed=committed,
            duplicates=duplicates,
            parse_failures=parse_failures,
            notifications_failed=notifications_failed,
            cursor=context.cursor,
            error=error,
        )

    def _initialize_cursor(self, context: WalletContext, pending: Sequence[_PendingItem], *, fetched: int) -> TickResult:
        latest = latest_position(pending)
        if latest is None:
            return TickResult(
                owner_id=context.owner_id,
                wallet=context.wallet,
                outcome=TickOutcome.COMPLETED,
                fetched=fetched,
            )
        try:
            self._writer.advance_cursor(context.owner_id, context.wallet, latest)
        except PersistenceError as exc:
            self._log(context, "CURSOR", "FAILED", f"error={exc}")
            return TickResult(
                owner_id=context.owner_id,
                wallet=context.wallet,
                outcome=TickOutcome.ABORTED,
                fetched=fetched,
                error=str(exc),
            )
        context.cursor = latest
        logger.info("Initialized cursor for wallet=%s at slot=%s", context.wallet, latest.block_slot)
        self._log(context, "CURSOR", "INITIALIZED", f"slot={latest.block_slot},signature={latest.signature}")
        return TickResult(
            owner_id=context.owner_id,
            wallet=context.wallet,
            outcome=TickOutcome.CURSOR_INITIALIZED,
            fetched=fetched,
            cursor=latest,
        )

    def _skip_unparseable(self, context: WalletContext, position: CursorPosition, error: Optional[ParseError]) -> bool:
        """Move the cursor past a bad record; report it only the first time it is passed."""
        context.state = TickState.SKIPPED
        if not self._writer.advance_cursor(context.owner_id, context.wallet, position):
            # Same slot as the cursor but already behind it: seen on an earlier tick.
            return False
        logger.warning("Skipping unparseable transaction signature=%s: %s", position.signature, error)
        self._log(context, "PARSE", "FAILED", f"signature={position.signature},error={error}")
        return True

    def _classify(self, context: WalletContext, raw: RawTransaction) -> ClassifiedTransaction:
        try:
            normalized = normalize_transaction(raw, context.wallet)
            if self._config.resolve_token_symbols:
                self._symbols.preload(normalized.token_deltas)
            return classify_transaction(
                normalized,
                raw.log_messages,
                owner_id=context.owner_id,
                wallet=context.wallet,
                fifo=self._writer.fifo,
                symbols=self._symbols,
                explorer_tx_url=self._config.explorer_tx_url,
            )
        except ArithmeticError as exc:
            raise ParseError(
                f"balance arithmetic failed: {type(exc).__name__}",
                signature=raw.signature,
                block_slot=raw.block_slot,
            ) from exc

    def _notify(self, context: WalletContext, classified: ClassifiedTransaction) -> bool:
        """Deliver the rendered message after commit; the ledger is never rolled back here."""
        delivered = True
        if not self._config.notifications_enabled or self._notifier is None:
            status = NotificationStatus.SKIPPED
        else:
            try:
                self._notifier.send(context.owner_id, classified.display_message)
                status = NotificationStatus.SENT
            except Exception as exc:
                delivered = False
                status = NotificationStatus.FAILED
                logger.warning("Notification failed for signature=%s: %s", classified.signature, exc)
                self._log(
                    context,
                    "NOTIFICATION",
                    "FAILED",
                    f"signature={classified.signature},error={type(exc).__name__}:{exc}",
                )

        try:
            self._writer.mark_notification(context.owner_id, context.wallet, classified.signature, status)
        except PersistenceError as exc:
            logger.warning("Could not record notification status for signature=%s: %s", classified.signature, exc)
        return delivered
