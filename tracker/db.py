"""Database adapters implementing the ledger DB protocol."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
import importlib
import re
from typing import Any, Mapping, Optional, Sequence

from alembic.migration import MigrationContext
from alembic.operations import Operations
from psycopg import Connection
from psycopg.rows import dict_row
from sqlalchemy import Engine, create_engine, event, text
from sqlalchemy.pool import StaticPool

from backend.db.base import metadata

INITIAL_MIGRATION_MODULE = "backend.db.migrations.versions.0001_initial_schema"

_NAMED_PARAM_RE = re.compile(r"(?<!:):([a-zA-Z_][a-zA-Z0-9_]*)")


def _convert_named_params(sql: str) -> str:
    """Convert :named params to psycopg %(named)s format."""
    return _NAMED_PARAM_RE.sub(r"%(\1)s", sql)


class PsycopgLedgerDB:
    """psycopg 3 adapter; the connection is expected to run with autocommit off."""

    def __init__(self, conn: Connection[Any]) -> None:
        self.conn = conn

    def begin(self) -> None:
        # psycopg opens a transaction implicitly on the first statement.
        return None

    def commit(self) -> None:
        self.conn.commit()

    def rollback(self) -> None:
        self.conn.rollback()

    def fetch_one(self, sql: str, params: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
        rows = self.fetch_all(sql, params)
        return rows[0] if rows else None

    def fetch_all(self, sql: str, params: Mapping[str, Any]) -> Sequence[Mapping[str, Any]]:
        converted = _convert_named_params(sql)
        with self.conn.cursor(row_factory=dict_row) as cur:
            cur.execute(converted, dict(params))
            return [dict(row) for row in cur.fetchall()]

    def execute(self, sql: str, params: Mapping[str, Any]) -> None:
        converted = _convert_named_params(sql)
        with self.conn.cursor() as cur:
            cur.execute(converted, dict(params))

    def close(self) -> None:
        self.conn.close()


def create_ledger_engine(url: str) -> Engine:
    """Build an engine; SQLite gets foreign keys enforced and a shared in-memory pool."""
    if not url.startswith("sqlite"):
        return create_engine(url)

    kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    if ":memory:" in url or url.rstrip("/") in {"sqlite:", "sqlite+pysqlite:"}:
        kwargs["poolclass"] = StaticPool
    engine = create_engine(url, **kwargs)

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection: Any, _record: Any) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


class SqlAlchemyLedgerDB:
    """Adapter over one SQLAlchemy connection using commit-as-you-go semantics."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._conn = engine.connect()
        self._coerce_values = engine.dialect.name == "sqlite"

    def _bind(self, params: Mapping[str, Any]) -> dict[str, Any]:
        if not self._coerce_values:
            return dict(params)
        # sqlite3 has no Decimal adapter and a deprecated datetime one.
        bound: dict[str, Any] = {}
        for key, value in params.items():
            if isinstance(value, Decimal):
                bound[key] = str(value)
            elif isinstance(value, datetime):
                bound[key] = value.isoformat()
            else:
                bound[key] = value
        return bound

    def begin(self) -> None:
        if not self._conn.in_transaction():
            self._conn.begin()

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    def fetch_one(self, sql: str, params: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
        rows = self.fetch_all(sql, params)
        return rows[0] if rows else None

    def fetch_all(self, sql: str, params: Mapping[str, Any]) -> Sequence[Mapping[str, Any]]:
        result = self._conn.execute(text(sql), self._bind(params))
        return [dict(row) for row in result.mappings()]

    def execute(self, sql: str, params: Mapping[str, Any]) -> None:
        self._conn.execute(text(sql), self._bind(params))

    def close(self) -> None:
        self._conn.close()


def initialize_schema(engine: Engine) -> str:
    """Create the ledger schema.

    PostgreSQL runs the Alembic revision so the DDL matches migrated
    databases; other dialects build it from the ORM metadata.
    """
    if engine.dialect.name == "postgresql":
        migration = importlib.import_module(INITIAL_MIGRATION_MODULE)
        with engine.begin() as conn:
            context = MigrationContext.configure(conn)
            with Operations.context(context):
                migration.upgrade()
        return "alembic"

    metadata.create_all(engine)
    return "metadata"
