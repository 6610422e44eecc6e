from __future__ import annotations

import logging
from typing import AsyncIterator

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from ..engine import ServingEngine
from ..events import Subscription
from .deps import get_engine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["live"])

KEEPALIVE_COMMENT = ": keep-alive-text\n\n"


def format_event(event) -> str:
    return f"data: {event.model_dump_json()}\n\n"


async def event_stream(sub: Subscription, keepalive_seconds: float) -> AsyncIterator[str]:
    """Yield SSE frames for one subscriber until the client goes away.

    A comment frame is sent whenever `keepalive_seconds` pass without an event.
    """
    try:
        while not sub.closed:
            events = await sub.next_batch(timeout=keepalive_seconds)
            if not events:
                yield KEEPALIVE_COMMENT
                continue
            for event in events:
                yield format_event(event)
    finally:
        sub.close()
        logger.debug("[SSE] Subscriber disconnected")


@router.get("/sse")
async def sse(engine: ServingEngine = Depends(get_engine)) -> StreamingResponse:
    sub = engine.hub.subscribe()
    return StreamingResponse(
        event_stream(sub, engine.settings.sse_keepalive_seconds),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
