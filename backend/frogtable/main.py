from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.responses import PlainTextResponse
from fastapi.staticfiles import StaticFiles

from .engine import ServingEngine
from .errors import (
    ConfigurationError,
    FrogtableError,
    InvalidIdentifier,
    InvalidPage,
    QueryNotFound,
    SourceNotFound,
)
from .metrics import counter_inc, gauge_dec, gauge_inc, render_prometheus, summary_observe
from .routers import live as live_router
from .routers import rpc as rpc_router
from .scheduler import list_jobs, schedule_keepalive, shutdown_scheduler
from .schemas import HealthResponse
from .watcher import ChangeWatcher

logger = logging.getLogger(__name__)


def _status_for(exc: FrogtableError) -> int:
    if isinstance(exc, (QueryNotFound, SourceNotFound)):
        return 404
    if isinstance(exc, (InvalidIdentifier, ConfigurationError)):
        return 400
    if isinstance(exc, InvalidPage):
        return 422
    return 500


@asynccontextmanager
async def _lifespan(app: FastAPI):
    engine: ServingEngine = app.state.engine
    watcher = ChangeWatcher(engine.config.queries, engine.hub, force_polling=engine.settings.watch_force_polling)
    task = asyncio.create_task(watcher.run())
    schedule_keepalive(engine.hub, engine.settings.keepalive_interval_seconds)
    try:
        yield
    finally:
        watcher.stop()
        try:
            await asyncio.wait_for(task, timeout=5.0)
        except asyncio.TimeoutError:
            task.cancel()
        shutdown_scheduler(wait=False)
        engine.close()
        logger.info("[Shutdown] Engine closed")


def create_app(engine: ServingEngine) -> FastAPI:
    """Build the HTTP application around an initialized engine.

    The lifespan starts the query file watcher and the keepalive job, and closes
    the engine on shutdown.
    """
    app = FastAPI(title=engine.settings.app_name, lifespan=_lifespan)
    app.state.engine = engine

    # Request duration and in-flight gauge, labelled by path
    @app.middleware("http")
    async def _metrics_mw(request: Request, call_next):
        path = request.url.path or ""
        method = request.method or "GET"
        # The live stream stays open for the whole session
        tracked = path != "/sse"
        if tracked:
            gauge_inc("frogtable_active_requests", 1.0, {"path": path, "method": method})
        started = time.perf_counter()
        try:
            resp: Response = await call_next(request)
            return resp
        finally:
            elapsed_ms = int((time.perf_counter() - started) * 1000)
            if tracked:
                gauge_dec("frogtable_active_requests", 1.0, {"path": path, "method": method})
                summary_observe("frogtable_request_duration_ms", elapsed_ms, {"path": path, "method": method})

    @app.exception_handler(FrogtableError)
    async def _engine_error(request: Request, exc: FrogtableError) -> PlainTextResponse:
        status = _status_for(exc)
        counter_inc("frogtable_request_errors_total", {"error": type(exc).__name__})
        if status >= 500:
            logger.error(f"[HTTP] {request.method} {request.url.path} failed: {exc}")
        else:
            logger.info(f"[HTTP] {request.method} {request.url.path} rejected ({status}): {exc}")
        return PlainTextResponse(str(exc), status_code=status)

    app.include_router(rpc_router.router)
    app.include_router(live_router.router)

    @app.get("/healthz", response_model=HealthResponse)
    async def healthz() -> HealthResponse:
        return HealthResponse(
            status="ok",
            app=engine.settings.app_name,
            sources=len(engine.config.sources),
            queries=len(engine.config.queries),
            subscribers=engine.hub.subscriber_count,
            jobs=list_jobs(),
        )

    @app.get("/metrics")
    async def metrics() -> Response:
        return Response(render_prometheus(), media_type="text/plain; version=0.0.4")

    # Mounted last so the routes above take precedence
    web_dist = engine.settings.web_dist
    if web_dist is not None:
        if web_dist.is_dir():
            app.mount("/", StaticFiles(directory=str(web_dist), html=True), name="web")
            logger.info(f"[Startup] Serving web UI from {web_dist}")
        else:
            logger.warning(f"[Startup] Web UI directory {web_dist} does not exist, not serving it")

    return app
