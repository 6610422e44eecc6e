from __future__ import annotations

import logging
import os
import re
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator

import duckdb
import pyarrow as pa

from .config import Settings, settings
from .errors import EngineError, InvalidIdentifier
from .json_values import with_engine_types
from .models import DataSource, Initializer, Query

logger = logging.getLogger(__name__)

_IDENT_RE = re.compile(r"[A-Za-z0-9_-]+")


# --- Identifier guard ---
def validate_identifier(name: str) -> None:
    """Reject any source/query name outside [A-Za-z0-9_-]+."""
    if not isinstance(name, str) or not _IDENT_RE.fullmatch(name):
        raise InvalidIdentifier(name)


def quote_identifier(name: str) -> str:
    return '"' + str(name).replace('"', '""') + '"'


def _quote_literal(value: str) -> str:
    return "'" + str(value).replace("'", "''") + "'"


# --- Shared connection ---
def _compute_duck_config(cfg: Settings) -> dict:
    """Connect-time DuckDB config derived from settings."""
    out: dict = {
        "allow_unsigned_extensions": "true" if cfg.allow_unsigned_extensions else "false",
    }
    if cfg.duckdb_threads:
        out["threads"] = int(cfg.duckdb_threads)
    if cfg.duckdb_memory_limit:
        out["memory_limit"] = str(cfg.duckdb_memory_limit)
    return out


def _normalize_duck_path(p: str) -> str:
    t = p or ""
    if t and t != ":memory:" and not os.path.isabs(t):
        t = os.path.abspath(t)
    return t or ":memory:"


class SharedConnection:
    """The single DuckDB connection of the process, guarded by one exclusive lock.

    Every engine operation (view create/replace, COUNT + SELECT, initializers) runs
    inside `locked()`. The lock is only ever held for synchronous calls.
    """

    def __init__(self, cfg: Settings | None = None):
        cfg = cfg or settings
        self.path = _normalize_duck_path(cfg.duckdb_path)
        try:
            self._con = duckdb.connect(self.path, config=_compute_duck_config(cfg))
        except duckdb.Error as exc:
            raise EngineError(f"Could not open DuckDB at {self.path}: {exc}") from exc
        self._lock = threading.Lock()

    @contextmanager
    def locked(self) -> Iterator[duckdb.DuckDBPyConnection]:
        with self._lock:
            try:
                yield self._con
            except duckdb.Error as exc:
                raise EngineError(str(exc)) from exc

    def execute(self, sql: str) -> None:
        with self.locked() as con:
            con.execute(sql)

    def close(self) -> None:
        with self._lock:
            self._con.close()


def fetch_arrow_table(con: duckdb.DuckDBPyConnection, sql: str) -> pa.Table:
    """Run `sql` and return its full result as an Arrow table (schema included).

    The DuckDB column types are attached to the schema metadata, since UHUGEINT
    has no Arrow counterpart and is exported as a signed decimal128.
    """
    rel = con.sql(sql)
    engine_types = [str(t) for t in rel.types]
    arrow_result = rel.arrow()
    if isinstance(arrow_result, pa.Table):
        table = arrow_result
    elif hasattr(arrow_result, "read_all"):
        table = arrow_result.read_all()
    elif hasattr(arrow_result, "to_arrow_table"):
        table = arrow_result.to_arrow_table()
    else:
        table = pa.Table.from_batches(list(arrow_result))
    return with_engine_types(table, engine_types)


# --- View registrar ---
def source_view_sql(source: DataSource, scratch_dir: Path) -> str:
    validate_identifier(source.name)
    path = source.json_path(scratch_dir)
    return (
        f"CREATE OR REPLACE VIEW {quote_identifier(source.name)} AS "
        f"SELECT * FROM read_json({_quote_literal(str(path))}, ignore_errors = true, format = 'auto');"
    )


def ensure_source_view(conn: SharedConnection, source: DataSource, scratch_dir: Path) -> None:
    sql = source_view_sql(source, scratch_dir)
    conn.execute(sql)
    logger.debug(f"[Views] Registered source view {source.name}")


def query_view_sql(query: Query) -> str:
    validate_identifier(query.name)
    return f"CREATE OR REPLACE VIEW {quote_identifier(query.name)} AS {query.sql()}"


def ensure_query_view(conn: SharedConnection, query: Query) -> None:
    sql = query_view_sql(query)
    conn.execute(sql)
    logger.debug(f"[Views] Registered query view {query.name}")


def run_initializers(conn: SharedConnection, initializers: Iterable[Initializer]) -> int:
    """Execute each setup statement batch once, in order."""
    count = 0
    with conn.locked() as con:
        for init in initializers:
            con.execute(init.sql)
            count += 1
    if count:
        logger.info(f"[Startup] Ran {count} initializer(s)")
    return count
