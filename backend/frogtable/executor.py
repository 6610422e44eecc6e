from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Sequence

from pydantic import BaseModel

from .db import SharedConnection, ensure_query_view, fetch_arrow_table, quote_identifier
from .errors import InvalidPage
from .json_values import arrow_table_to_rows, schema_to_json
from .metrics import counter_inc, summary_observe
from .models import Query

logger = logging.getLogger(__name__)

DEFAULT_PAGE = 1
DEFAULT_PAGE_SIZE = 100


class Direction(str, Enum):
    Asc = "Asc"
    Desc = "Desc"


class Ordering(BaseModel):
    column: str
    direction: Direction

    def to_sql(self) -> str:
        keyword = "ASC" if self.direction == Direction.Asc else "DESC"
        return f"{quote_identifier(self.column)} {keyword}"


@dataclass(slots=True)
class ExecResult:
    """Outcome of one query execution."""

    total_count: int
    data: List[List[Any]]
    schema: dict = field(default_factory=dict)


def build_order_clause(orderings: Sequence[Ordering]) -> str:
    if not orderings:
        return ""
    return "ORDER BY " + ", ".join(o.to_sql() for o in orderings)


def _check_page(page: int, page_size: int) -> None:
    if page < 1:
        raise InvalidPage(f"page must be >= 1, got {page}")
    if page_size < 1:
        raise InvalidPage(f"page_size must be >= 1, got {page_size}")


def build_page_sql(view: str, page: int, page_size: int, orderings: Sequence[Ordering]) -> str:
    _check_page(page, page_size)
    parts = [f"SELECT * FROM {view}"]
    order_clause = build_order_clause(orderings)
    if order_clause:
        parts.append(order_clause)
    parts.append(f"LIMIT {int(page_size)} OFFSET {(int(page) - 1) * int(page_size)}")
    return " ".join(parts) + ";"


def execute(
    conn: SharedConnection,
    query: Query,
    page: int = DEFAULT_PAGE,
    page_size: int = DEFAULT_PAGE_SIZE,
    orderings: Sequence[Ordering] = (),
) -> ExecResult:
    """Rebuild the query's view, then count it and fetch one ordered page.

    The schema comes from the executed page, so it is only known afterwards.
    """
    _check_page(page, page_size)
    started = time.perf_counter()
    try:
        ensure_query_view(conn, query)
        view = quote_identifier(query.name)
        wrapped_sql = build_page_sql(view, page, page_size, orderings)
        with conn.locked() as con:
            total_count = int(con.execute(f"SELECT COUNT(*) FROM {view};").fetchone()[0])
            table = fetch_arrow_table(con, wrapped_sql)
        rows = arrow_table_to_rows(table)
    except Exception:
        counter_inc("frogtable_query_exec_total", {"query": query.name, "status": "failed"})
        raise
    elapsed_ms = int((time.perf_counter() - started) * 1000)
    counter_inc("frogtable_query_exec_total", {"query": query.name, "status": "ok"})
    summary_observe("frogtable_query_duration_ms", elapsed_ms, {"query": query.name})
    logger.info(
        f"[Exec] {query.name}: page={page} page_size={page_size} "
        f"order_by={[o.to_sql() for o in orderings]} rows={len(rows)}/{total_count} in {elapsed_ms}ms"
    )
    return ExecResult(total_count=total_count, data=rows, schema=schema_to_json(table.schema))
