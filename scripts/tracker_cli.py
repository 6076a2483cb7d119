#!/usr/bin/env python3
"""Wallet ledger tracker CLI: polling daemon, wallet registry and PnL reports."""

from __future__ import annotations

import argparse
from dataclasses import asdict
from datetime import datetime
from decimal import Decimal
from enum import Enum
import json
import logging
import os
from pathlib import Path
import sys
from typing import Any, Sequence

import psycopg

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from tracker.common import decimal_to_str
from tracker.config import load_tracker_config
from tracker.daemon import TrackerDaemon, WalletControl
from tracker.db import PsycopgLedgerDB, SqlAlchemyLedgerDB, create_ledger_engine, initialize_schema
from tracker.dune_provider import DuneTransactionProvider
from tracker.event_log import IngestionEventLog
from tracker.fifo_ledger import FifoLedger
from tracker.notifier import LoggingNotificationSink
from tracker.positions import PositionAggregator
from tracker.token_symbols import TokenSymbolResolver
from tracker.tracking import TrackedWalletRegistry

_POLLING_COMMANDS = {"daemon", "run-once"}
_CONTROL_COMMANDS = {"status", "suspend", "resume", "reset-cursor"}


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return decimal_to_str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _emit(payload: Any) -> None:
    print(json.dumps(payload, sort_keys=True, default=_json_default))


def _resolve_connection(args: argparse.Namespace) -> psycopg.Connection[Any]:
    if args.dsn:
        return psycopg.connect(args.dsn, autocommit=False)

    host = args.host or os.getenv("DB_HOST") or os.getenv("TEST_DB_HOST")
    port = args.port or os.getenv("DB_PORT") or os.getenv("TEST_DB_PORT")
    dbname = args.dbname or os.getenv("DB_NAME") or os.getenv("TEST_DB_NAME")
    user = args.user or os.getenv("DB_USER") or os.getenv("TEST_DB_USER")
    password = args.password or os.getenv("DB_PASSWORD") or os.getenv("TEST_DB_PASSWORD")

    missing = [
        key
        for key, value in (("host", host), ("port", port), ("dbname", dbname), ("user", user), ("password", password))
        if not value
    ]
    if missing:
        raise SystemExit(
            "Missing DB connection args. Provide --database-url, --dsn or set --host/--port/--dbname/--user/--password "
            f"(missing: {', '.join(missing)})."
        )

    return psycopg.connect(host=host, port=port, dbname=dbname, user=user, password=password, autocommit=False)


def _resolve_db(args: argparse.Namespace) -> PsycopgLedgerDB | SqlAlchemyLedgerDB:
    database_url = args.database_url or os.getenv("TRACKER_DATABASE_URL")
    if database_url:
        return SqlAlchemyLedgerDB(create_ledger_engine(database_url))
    return PsycopgLedgerDB(_resolve_connection(args))


def _build_daemon(args: argparse.Namespace, db: PsycopgLedgerDB | SqlAlchemyLedgerDB) -> TrackerDaemon:
    cfg = load_tracker_config()
    provider = DuneTransactionProvider(
        api_key=cfg.dune_api_key,
        base_url=cfg.dune_api_base_url,
        timeout_seconds=cfg.request_timeout_seconds,
    )
    symbols = TokenSymbolResolver(
        token_list_url=cfg.token_list_url,
        timeout_seconds=cfg.request_timeout_seconds,
    )
    return TrackerDaemon(
        db=db,
        provider=provider,
        config=cfg,
        notifier=LoggingNotificationSink(),
        symbols=symbols,
        owner_id=args.owner,
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Solana wallet ledger tracker CLI")
    parser.add_argument("--database-url", help="SQLAlchemy database URL (overrides psycopg args)")
    parser.add_argument("--dsn", help="PostgreSQL DSN (optional)")
    parser.add_argument("--host", help="DB host")
    parser.add_argument("--port", help="DB port")
    parser.add_argument("--dbname", help="DB name")
    parser.add_argument("--user", help="DB user")
    parser.add_argument("--password", help="DB password")
    parser.add_argument("--owner", default=None, help="Owner id scoping wallet commands")
    parser.add_argument("--log-level", default="INFO", help="Python logging level")

    subparsers = parser.add_subparsers(dest="command", required=True)

    daemon_cmd = subparsers.add_parser("daemon", help="Start polling loop")
    daemon_cmd.add_argument("--max-cycles", type=int, default=None)

    subparsers.add_parser("run-once", help="Poll every tracked wallet once")
    subparsers.add_parser("status", help="Show tracked wallets and cursors")
    subparsers.add_parser("init-db", help="Create the ledger schema")

    pnl = subparsers.add_parser("pnl", help="Realized PnL for an owner")
    pnl.add_argument("--wallet", default=None, help="Address or alias")

    positions = subparsers.add_parser("positions", help="Open positions for an owner")
    positions.add_argument("--wallet", default=None, help="Address or alias")

    track = subparsers.add_parser("track", help="Start tracking a wallet")
    track.add_argument("address")
    track.add_argument("alias", nargs="?", default=None)

    untrack = subparsers.add_parser("untrack", help="Stop tracking a wallet and drop its ledger")
    untrack.add_argument("wallet", help="Address or alias")

    subparsers.add_parser("list-tracked", help="List tracked wallets")

    for name, help_text in (
        ("suspend", "Pause polling for a wallet"),
        ("resume", "Resume polling for a wallet"),
        ("reset-cursor", "Forget a wallet's ingestion cursor"),
    ):
        cmd = subparsers.add_parser(name, help=help_text)
        cmd.add_argument("wallet", help="Address or alias")

    events = subparsers.add_parser("events", help="Recent ingestion events")
    events.add_argument("--limit", type=int, default=20)

    return parser


def _require_owner(args: argparse.Namespace) -> str:
    if not args.owner:
        raise SystemExit(f"--owner is required for '{args.command}'")
    return str(args.owner)


def _resolve_wallet(registry: TrackedWalletRegistry, owner_id: str, wallet: str | None) -> str | None:
    if wallet is None:
        return None
    record = registry.find(owner_id, wallet)
    if record is None:
        raise SystemExit(f"Wallet is not tracked: {wallet}")
    return record.address


def _run_registry_command(args: argparse.Namespace, db: PsycopgLedgerDB | SqlAlchemyLedgerDB) -> int:
    registry = TrackedWalletRegistry(db)

    if args.command == "list-tracked":
        _emit([asdict(record) for record in registry.list_wallets(args.owner)])
        return 0

    owner_id = _require_owner(args)

    if args.command == "track":
        _emit(asdict(registry.add(owner_id, args.address, args.alias)))
        return 0

    if args.command == "untrack":
        removed = registry.remove(owner_id, args.wallet)
        _emit({"removed": removed, "wallet": args.wallet})
        return 0 if removed else 1

    if args.command == "pnl":
        fifo = FifoLedger(db)
        wallet = _resolve_wallet(registry, owner_id, args.wallet)
        summary = fifo.total_realized_pnl(owner_id, wallet)
        payload: dict[str, Any] = {"owner_id": owner_id, "wallet": wallet, **asdict(summary)}
        if wallet is None:
            payload["by_wallet"] = [asdict(row) for row in fifo.pnl_by_wallet(owner_id)]
        _emit(payload)
        return 0

    if args.command == "positions":
        wallet = _resolve_wallet(registry, owner_id, args.wallet)
        _emit([asdict(position) for position in PositionAggregator(db).list_positions(owner_id, wallet)])
        return 0

    raise SystemExit(f"Unknown command: {args.command}")


def _run_daemon_command(args: argparse.Namespace, daemon: TrackerDaemon) -> int:
    if args.command == "run-once":
        results = daemon.run_once()
        _emit([asdict(result) for result in results])
        return 0

    if args.command == "daemon":
        daemon.daemon_loop(max_cycles=args.max_cycles)
        return 0

    raise SystemExit(f"Unknown command: {args.command}")


def _run_control_command(args: argparse.Namespace, control: WalletControl) -> int:
    if args.command == "status":
        _emit(asdict(control.status()))
        return 0

    owner_id = _require_owner(args)
    try:
        if args.command == "suspend":
            _emit(asdict(control.suspend(owner_id, args.wallet)))
            return 0
        if args.command == "resume":
            _emit(asdict(control.resume(owner_id, args.wallet)))
            return 0
        if args.command == "reset-cursor":
            control.reset_cursor(owner_id, args.wallet)
            _emit({"reset": True, "wallet": args.wallet})
            return 0
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc

    raise SystemExit(f"Unknown command: {args.command}")


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "init-db":
        database_url = args.database_url or os.getenv("TRACKER_DATABASE_URL")
        if not database_url:
            raise SystemExit("init-db requires --database-url or TRACKER_DATABASE_URL")
        engine = create_ledger_engine(database_url)
        try:
            method = initialize_schema(engine)
        finally:
            engine.dispose()
        _emit({"initialized": True, "method": method})
        return 0

    db = _resolve_db(args)
    try:
        if args.command == "events":
            _emit(IngestionEventLog(db).recent_events(args.limit, owner_id=args.owner))
            db.commit()
            return 0

        if args.command in _POLLING_COMMANDS:
            exit_code = _run_daemon_command(args, _build_daemon(args, db))
        elif args.command in _CONTROL_COMMANDS:
            exit_code = _run_control_command(args, WalletControl(db, owner_id=args.owner))
        else:
            exit_code = _run_registry_command(args, db)
        db.commit()
        return exit_code
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    raise SystemExit(main())
