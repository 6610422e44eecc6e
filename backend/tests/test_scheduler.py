"""
Tests for the keepalive job.
"""
import pytest

from frogtable.events import EventBroadcaster, Ping
from frogtable.scheduler import KEEPALIVE_JOB_ID, list_jobs, schedule_keepalive, send_keepalive, shutdown_scheduler


@pytest.fixture(autouse=True)
def _stop_scheduler():
    yield
    shutdown_scheduler(wait=False)


class TestKeepalive:
    """Periodic Ping"""

    def test_send_keepalive_publishes_ping(self):
        hub = EventBroadcaster()
        sub = hub.subscribe()
        sub.drain()
        send_keepalive(hub)
        assert sub.drain() == [Ping(data="keepalive")]

    def test_schedule_is_idempotent(self):
        hub = EventBroadcaster()
        schedule_keepalive(hub, 5.0)
        schedule_keepalive(hub, 5.0)
        ids = [j["id"] for j in list_jobs()]
        assert ids == [KEEPALIVE_JOB_ID]

    def test_no_jobs_without_scheduler(self):
        shutdown_scheduler(wait=False)
        assert list_jobs() == []
