"""Live-schema negotiation.

The code may run against a database whose schema lags the table definitions
in ``township_server.db`` (an older revision, a hand-managed Postgres). Rather
than inserting, catching "column does not exist" and retrying, callers ask
which optional columns and tables the live database actually has. Results are
cached per engine and table name; call ``reset_cache`` after migrating.
"""

from __future__ import annotations

import threading
from typing import Any

from sqlalchemy import Table, inspect
from sqlalchemy.orm import Session

from township_server.observability import log_event

_lock = threading.Lock()
_columns: dict[tuple[str, str], frozenset[str]] = {}
_tables: dict[tuple[str, str], bool] = {}


def _engine_key(session: Session) -> str:
    return str(session.get_bind().url)


def live_columns(session: Session, table: Table) -> frozenset[str]:
    key = (_engine_key(session), table.name)
    with _lock:
        cached = _columns.get(key)
    if cached is not None:
        return cached
    insp = inspect(session.connection())
    if insp.has_table(table.name):
        names = frozenset(c["name"] for c in insp.get_columns(table.name))
    else:
        names = frozenset()
    with _lock:
        _columns[key] = names
    return names


def table_exists(session: Session, table: Table) -> bool:
    key = (_engine_key(session), table.name)
    with _lock:
        cached = _tables.get(key)
    if cached is not None:
        return cached
    exists = inspect(session.connection()).has_table(table.name)
    with _lock:
        _tables[key] = exists
    return exists


def supported_values(session: Session, table: Table, optional: dict[str, Any]) -> dict[str, Any]:
    """Return the subset of ``optional`` whose columns exist in the live table."""
    if not optional:
        return {}
    columns = live_columns(session, table)
    kept = {k: v for k, v in optional.items() if k in columns}
    dropped = sorted(set(optional) - set(kept))
    if dropped:
        log_event("schema.optional_columns_skipped", table=table.name, columns=dropped)
    return kept


def insert_with_optional_columns(
    session: Session, table: Table, required: dict[str, Any], optional: dict[str, Any]
) -> None:
    values = dict(required)
    values.update(supported_values(session, table, optional))
    session.execute(table.insert().values(**values))


def reset_cache() -> None:
    with _lock:
        _columns.clear()
        _tables.clear()
