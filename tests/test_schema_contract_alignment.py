"""Schema contract alignment checks between the migration DDL and ORM metadata."""

from __future__ import annotations

import importlib.util
import re
from pathlib import Path
import sys
from typing import Any

from sqlalchemy import inspect

import backend.db.models  # noqa: F401  # Ensure all mapped classes are registered.
from backend.db.base import Base
from tracker.db import create_ledger_engine, initialize_schema

MIGRATION_PATH = Path(__file__).resolve().parents[1] / "backend" / "db" / "migrations" / "versions" / "0001_initial_schema.py"

_TABLE_RE = re.compile(r"CREATE TABLE (\w+) \((.*)\);", re.S)
_COLUMN_RE = re.compile(r"^(\w+) (TEXT|BIGINT|SMALLINT|NUMERIC|BOOLEAN|TIMESTAMPTZ)\b")
_CONSTRAINT_RE = re.compile(r"CONSTRAINT (\w+)")
_INDEX_RE = re.compile(r"CREATE INDEX (\w+)")


def _load_migration() -> Any:
    module_name = "migration_0001_contract"
    if module_name in sys.modules:
        return sys.modules[module_name]
    spec = importlib.util.spec_from_file_location(module_name, MIGRATION_PATH)
    assert spec is not None and spec.loader is not None
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    spec.loader.exec_module(module)
    return module


def _ddl_tables() -> dict[str, tuple[set[str], set[str]]]:
    tables: dict[str, tuple[set[str], set[str]]] = {}
    for statement in _load_migration().TABLE_DDL:
        match = _TABLE_RE.search(statement)
        assert match is not None, statement
        table_name, body = match.groups()
        columns = {
            column.group(1)
            for column in (_COLUMN_RE.match(line.strip()) for line in body.splitlines())
            if column is not None
        }
        tables[table_name] = (columns, set(_CONSTRAINT_RE.findall(body)))
    return tables


def _orm_constraint_names(table: Any) -> set[str]:
    return {str(constraint.name) for constraint in table.constraints if constraint.name is not None}


def test_orm_tables_and_columns_match_migration() -> None:
    """ORM models must cover the migrated tables and columns exactly."""

    ddl = _ddl_tables()
    mapped_tables = Base.metadata.tables

    assert sorted(ddl) == sorted(mapped_tables)

    column_mismatches: dict[str, dict[str, list[str]]] = {}
    for table_name, (ddl_columns, _) in ddl.items():
        orm_columns = {column.name for column in mapped_tables[table_name].columns}
        missing_columns = sorted(ddl_columns - orm_columns)
        extra_columns = sorted(orm_columns - ddl_columns)
        if missing_columns or extra_columns:
            column_mismatches[table_name] = {
                "missing_columns": missing_columns,
                "extra_columns": extra_columns,
            }

    assert column_mismatches == {}, f"Migration/ORM column mismatches detected: {column_mismatches}"


def test_constraint_names_match_migration() -> None:
    ddl = _ddl_tables()
    mismatches = {
        table_name: sorted(constraints ^ _orm_constraint_names(Base.metadata.tables[table_name]))
        for table_name, (_, constraints) in ddl.items()
        if constraints != _orm_constraint_names(Base.metadata.tables[table_name])
    }
    assert mismatches == {}


def test_index_names_match_migration() -> None:
    ddl_indexes = {name for statement in _load_migration().INDEX_DDL for name in _INDEX_RE.findall(statement)}
    orm_indexes = {str(index.name) for table in Base.metadata.tables.values() for index in table.indexes}
    assert ddl_indexes == orm_indexes


def test_initialize_schema_builds_metadata_on_sqlite(tmp_path: Path) -> None:
    engine = create_ledger_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    try:
        assert initialize_schema(engine) == "metadata"
        assert sorted(inspect(engine).get_table_names()) == sorted(Base.metadata.tables)
    finally:
        engine.dispose()
