from __future__ import annotations

import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .events import EventBroadcaster, Ping

logger = logging.getLogger(__name__)

KEEPALIVE_JOB_ID = "keepalive:ping"

_scheduler: Optional[BackgroundScheduler] = None


def ensure_scheduler_started() -> BackgroundScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = BackgroundScheduler(timezone="UTC")
        _scheduler.start()
    return _scheduler


def shutdown_scheduler(wait: bool = True) -> None:
    """Shut down the singleton scheduler if running so no job thread outlives the app."""
    global _scheduler
    if _scheduler is None:
        return
    try:
        _scheduler.shutdown(wait=wait)
    finally:
        _scheduler = None


def send_keepalive(hub: EventBroadcaster) -> None:
    hub.publish(Ping(data="keepalive"))


def schedule_keepalive(hub: EventBroadcaster, interval_seconds: float) -> None:
    """Publish a Ping every `interval_seconds` so idle live-update streams stay open."""
    sched = ensure_scheduler_started()
    sched.add_job(
        func=send_keepalive,
        trigger=IntervalTrigger(seconds=interval_seconds),
        id=KEEPALIVE_JOB_ID,
        replace_existing=True,
        kwargs={"hub": hub},
        max_instances=1,
        coalesce=True,
    )
    logger.info(f"[Startup] Keepalive ping every {interval_seconds}s")


def list_jobs() -> list[dict]:
    if _scheduler is None:
        return []
    return [
        {"id": j.id, "nextRunAt": j.next_run_time.isoformat() if j.next_run_time else None}
        for j in _scheduler.get_jobs()
    ]
