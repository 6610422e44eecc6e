from __future__ import annotations

import logging
import os
import subprocess
import tempfile
import time
from pathlib import Path
from typing import Iterable, List, Protocol, Sequence

import sqlglot
from sqlglot import exp

from .errors import RefreshFailed
from .metrics import counter_inc, summary_observe
from .models import DataSource, JsonCmd, JsonFile

logger = logging.getLogger(__name__)


# --- Dependency resolution ---
class DependencyResolver(Protocol):
    def resolve(self, sql: str, sources: Sequence[DataSource]) -> List[DataSource]:
        """Return the sources `sql` depends on, in configuration order."""
        ...


class SubstringResolver:
    """A source is a dependency when its name occurs anywhere in the SQL text.

    Over-matches names that only appear inside other identifiers or string literals,
    and misses sources that are only reached through computed SQL.
    """

    def resolve(self, sql: str, sources: Sequence[DataSource]) -> List[DataSource]:
        return [s for s in sources if s.name in sql]


class SqlglotResolver:
    """Match table references found by sqlglot against source names.

    Falls back to the substring heuristic when the SQL does not parse.
    """

    def __init__(self, dialect: str = "duckdb"):
        self.dialect = dialect
        self._fallback = SubstringResolver()

    def table_names(self, sql: str) -> set[str]:
        names: set[str] = set()
        for statement in sqlglot.parse(sql, read=self.dialect):
            if statement is None:
                continue
            for table in statement.find_all(exp.Table):
                if table.name:
                    names.add(table.name)
        return names

    def resolve(self, sql: str, sources: Sequence[DataSource]) -> List[DataSource]:
        try:
            names = self.table_names(sql)
        except sqlglot.errors.SqlglotError as e:
            logger.warning(f"[Deps] sqlglot could not parse query, using substring match: {e}")
            return self._fallback.resolve(sql, sources)
        return [s for s in sources if s.name in names]


def make_resolver(kind: str) -> DependencyResolver:
    if kind == "sqlglot":
        return SqlglotResolver()
    if kind == "substring":
        return SubstringResolver()
    raise ValueError(f"Unknown dependency resolver: {kind}")


# --- Refresh ---
class SourceRefresher:
    """Re-runs command-backed sources and caches their stdout as JSON.

    Never touches the database connection; views are rebuilt by the caller.
    """

    def __init__(self, scratch_dir: Path):
        self.scratch_dir = Path(scratch_dir)

    def refresh(self, sources: Iterable[DataSource]) -> List[DataSource]:
        refreshed: List[DataSource] = []
        for source in sources:
            self.refresh_one(source)
            refreshed.append(source)
        return refreshed

    def refresh_one(self, source: DataSource) -> None:
        match source.source:
            case JsonFile():
                return
            case JsonCmd(command=command):
                self._run_command(source, command)

    def _run_command(self, source: DataSource, command: str) -> None:
        started = time.perf_counter()
        r = subprocess.run(command, shell=True, capture_output=True)
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        if r.returncode != 0:
            stderr = r.stderr.decode("utf-8", errors="replace")
            counter_inc("frogtable_source_refresh_total", {"source": source.name, "status": "failed"})
            logger.error(f"[Refresh] {source.name}: `{command}` exited with {r.returncode} after {elapsed_ms}ms")
            raise RefreshFailed(command, r.returncode, stderr)
        target = source.cache_path(self.scratch_dir)
        _write_atomic(target, r.stdout)
        counter_inc("frogtable_source_refresh_total", {"source": source.name, "status": "ok"})
        summary_observe("frogtable_source_refresh_duration_ms", elapsed_ms, {"source": source.name})
        logger.info(f"[Refresh] {source.name}: wrote {len(r.stdout)} bytes to {target} in {elapsed_ms}ms")


def _write_atomic(target: Path, data: bytes) -> None:
    """Replace `target` with `data`; a reader never sees a partially written file."""
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        os.replace(tmp, target)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise
