"""Pytest fixtures shared across unit and integration tests."""

from __future__ import annotations

import os
from typing import Any, Callable

import psycopg
import pytest
from sqlalchemy import Engine

from backend.db.base import metadata
from tests.utils.ledger_fakes import FixedClock
from tests.utils.payloads import OWNER, WALLET
from tracker.db import PsycopgLedgerDB, SqlAlchemyLedgerDB, create_ledger_engine
from tracker.tracking import TrackedWalletRecord, TrackedWalletRegistry


@pytest.fixture(scope="session")
def pg_conn() -> Any:
    """Session-scoped psycopg connection for integration tests."""
    host = os.getenv("TEST_DB_HOST")
    port = os.getenv("TEST_DB_PORT")
    dbname = os.getenv("TEST_DB_NAME")
    user = os.getenv("TEST_DB_USER")
    password = os.getenv("TEST_DB_PASSWORD")

    if not all([host, port, dbname, user, password]):
        pytest.skip("Integration DB env vars are missing; set TEST_DB_* to run against PostgreSQL")

    conn = psycopg.connect(
        host=host,
        port=port,
        dbname=dbname,
        user=user,
        password=password,
        autocommit=False,
    )
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture
def pg_ledger_db(pg_conn: Any) -> PsycopgLedgerDB:
    """PostgreSQL ledger adapter fixture."""
    return PsycopgLedgerDB(pg_conn)


@pytest.fixture
def ledger_engine() -> Engine:
    """In-memory SQLite engine with the ORM schema created."""
    engine = create_ledger_engine("sqlite://")
    metadata.create_all(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def ledger_db(ledger_engine: Engine) -> SqlAlchemyLedgerDB:
    db = SqlAlchemyLedgerDB(ledger_engine)
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def track_wallet(ledger_db: SqlAlchemyLedgerDB) -> Callable[..., TrackedWalletRecord]:
    """Register a wallet so ledger rows satisfy their foreign keys."""
    registry = TrackedWalletRegistry(ledger_db)

    def _track(address: str = WALLET, alias: str | None = None, owner_id: str = OWNER) -> TrackedWalletRecord:
        return registry.add(owner_id, address, alias)

    return _track
