from __future__ import annotations

import logging
from typing import List, Sequence

from .config import Settings, settings as default_settings
from .db import SharedConnection, ensure_source_view, run_initializers
from .events import EventBroadcaster
from .executor import DEFAULT_PAGE, DEFAULT_PAGE_SIZE, ExecResult, Ordering, execute
from .models import DataSource, Query, RootConfig
from .sources import DependencyResolver, SourceRefresher, make_resolver

logger = logging.getLogger(__name__)

ALL_SOURCES = "all"


class ServingEngine:
    """Shared handle over the configuration, the DuckDB connection and the live-update hub.

    One instance per process; the HTTP layer and background tasks all hold the same one.
    """

    def __init__(
        self,
        config: RootConfig,
        cfg: Settings | None = None,
        conn: SharedConnection | None = None,
        hub: EventBroadcaster | None = None,
        resolver: DependencyResolver | None = None,
    ):
        self.config = config
        self.settings = cfg or default_settings
        self.conn = conn or SharedConnection(self.settings)
        self.hub = hub or EventBroadcaster(self.settings.subscriber_queue_size, self.settings.greeting)
        self.resolver = resolver or make_resolver(self.settings.dependency_resolver)
        self.refresher = SourceRefresher(self.settings.scratch_dir)

    def init(self) -> None:
        """Run initializers once, then refresh every source and register its view."""
        run_initializers(self.conn, self.config.initializers)
        self.refresh_sources(ALL_SOURCES)
        logger.info(
            f"[Startup] {len(self.config.sources)} source(s), {len(self.config.queries)} query(ies) registered"
        )

    def refresh_sources(self, target: str) -> List[DataSource]:
        """Refresh every source ("all") or only those the named query depends on.

        Commands run outside the connection lock; each refreshed source's view is then rebuilt.
        """
        if target == ALL_SOURCES:
            sources: Sequence[DataSource] = self.config.sources
        else:
            sources = self.find_dependent_sources(target)
        refreshed = self.refresher.refresh(sources)
        for source in refreshed:
            ensure_source_view(self.conn, source, self.settings.scratch_dir)
        return refreshed

    def find_dependent_sources(self, query_name: str) -> List[DataSource]:
        query = self.config.get_query(query_name)
        return self.resolver.resolve(query.sql(), self.config.sources)

    def exec_query(
        self,
        name: str,
        page: int = DEFAULT_PAGE,
        page_size: int = DEFAULT_PAGE_SIZE,
        order_by: Sequence[Ordering] = (),
    ) -> ExecResult:
        query = self.config.get_query(name)
        return execute(self.conn, query, page, page_size, order_by)

    def list_queries(self) -> List[Query]:
        return list(self.config.queries)

    def close(self) -> None:
        self.conn.close()
