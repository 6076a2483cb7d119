"""Solana wallet transaction accounting engine."""

from tracker.classifier import ClassifiedTransaction, classify_from_logs, classify_transaction
from tracker.config import TrackerConfig, load_tracker_config
from tracker.cursor import CursorPosition, IngestionCursorStore, select_new_transactions
from tracker.daemon import DaemonStatus, TrackerDaemon, WalletControl
from tracker.errors import (
    InsufficientInventoryWarning,
    LedgerError,
    NotificationError,
    ParseError,
    PersistenceError,
    ProviderError,
)
from tracker.fifo_ledger import FifoConsumption, FifoLedger
from tracker.ledger_writer import CommitResult, TransactionLedgerWriter
from tracker.normalizer import NormalizedTransaction, normalize_transaction
from tracker.poller import TickOutcome, TickResult, WalletContext, WalletPoller
from tracker.positions import PositionAggregator, PositionState
from tracker.raw_transaction import parse_raw_transaction
from tracker.tracking import TrackedWalletRecord, TrackedWalletRegistry

__all__ = [
    "ClassifiedTransaction",
    "CommitResult",
    "CursorPosition",
    "DaemonStatus",
    "FifoConsumption",
    "FifoLedger",
    "IngestionCursorStore",
    "InsufficientInventoryWarning",
    "LedgerError",
    "NormalizedTransaction",
    "NotificationError",
    "ParseError",
    "PersistenceError",
    "PositionAggregator",
    "PositionState",
    "ProviderError",
    "TickOutcome",
    "TickResult",
    "TrackedWalletRecord",
    "TrackedWalletRegistry",
    "TrackerConfig",
    "TrackerDaemon",
    "TransactionLedgerWriter",
    "WalletContext",
    "WalletControl",
    "WalletPoller",
    "classify_from_logs",
    "classify_transaction",
    "load_tracker_config",
    "normalize_transaction",
    "parse_raw_transaction",
    "select_new_transactions",
]
