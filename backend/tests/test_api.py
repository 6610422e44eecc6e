"""
Tests for the HTTP surface: /rpc, /healthz, /metrics and the static UI.
"""
import pyarrow as pa
import pytest
from fastapi.testclient import TestClient

from frogtable.config import Settings
from frogtable.engine import ServingEngine
from frogtable.errors import InvalidPage
from frogtable.main import create_app
from frogtable.models import DataSource, JsonCmd, Query, RootConfig, SqlString
from frogtable.scheduler import KEEPALIVE_JOB_ID, shutdown_scheduler


@pytest.fixture
def client(engine):
    return TestClient(create_app(engine))


def _exec(client, **body):
    return client.post("/rpc", json={"rpcType": "ExecQuery", **body})


class TestListQueries:
    """rpcType=ListQueries"""

    def test_lists_configured_queries(self, client, adults_sql):
        resp = client.post("/rpc", json={"rpcType": "ListQueries"})
        assert resp.status_code == 200
        assert resp.json() == {
            "rpcType": "ListQueries",
            "queries": [
                {"name": "adults", "source": {"type": "SqlFile", "path": str(adults_sql)}},
                {"name": "q1", "source": {"type": "SqlString", "sql": "SELECT * FROM events"}},
            ],
        }


class TestExecQuery:
    """rpcType=ExecQuery"""

    def test_command_source_scenario(self, client):
        resp = _exec(client, name="q1")
        assert resp.status_code == 200
        body = resp.json()
        assert body["rpcType"] == "ExecQuery"
        assert body["total_count"] == 1
        assert body["data"] == [[1]]
        assert [f["name"] for f in body["schema"]["fields"]] == ["id"]

    def test_paging_and_ordering(self, client):
        resp = _exec(
            client,
            name="adults",
            page=2,
            page_size=2,
            order_by=[{"column": "age", "direction": "Desc"}],
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["total_count"] == 4
        assert [row[1] for row in body["data"]] == ["alan", "ada"]

    def test_exec_refreshes_dependencies(self, client, engine, cfg):
        cache = cfg.scratch_dir / "sources" / "events.json"
        cache.write_text('[{"id": 99}]', encoding="utf-8")
        assert _exec(client, name="q1").json()["data"] == [[1]]

    def test_unknown_query_is_404(self, client):
        resp = _exec(client, name="nope")
        assert resp.status_code == 404
        assert resp.headers["content-type"].startswith("text/plain")
        assert resp.text == "Query not found: nope"

    def test_bad_name_is_400(self, cfg):
        config = RootConfig(queries=[Query(name="bad name!", source=SqlString(sql="SELECT 1"))])
        client = TestClient(create_app(ServingEngine(config, cfg)))
        resp = _exec(client, name="bad name!")
        assert resp.status_code == 400
        assert resp.text == "Invalid table name: bad name!"

    def test_failed_refresh_is_500_with_stderr(self, cfg):
        config = RootConfig(
            sources=[DataSource(name="feed", source=JsonCmd(command="echo 'feed is down' >&2; exit 2"))],
            queries=[Query(name="latest", source=SqlString(sql="SELECT * FROM feed"))],
        )
        client = TestClient(create_app(ServingEngine(config, cfg)))
        resp = _exec(client, name="latest")
        assert resp.status_code == 500
        assert "feed is down" in resp.text

    @pytest.mark.parametrize(
        "body",
        [
            {"rpcType": "Nope"},
            {"name": "q1"},
            {},
            {"rpcType": "ExecQuery"},
            {"rpcType": "ExecQuery", "name": "q1", "page": 0},
            {"rpcType": "ExecQuery", "name": "q1", "page_size": -1},
            {"rpcType": "ExecQuery", "name": "q1", "order_by": [{"column": "id"}]},
            {"rpcType": "ExecQuery", "name": "q1", "order_by": [{"column": "id", "direction": "Up"}]},
        ],
    )
    def test_malformed_requests_are_422(self, client, body):
        assert client.post("/rpc", json=body).status_code == 422


class TestErrorStatuses:
    """Only engine errors become client errors"""

    def test_invalid_page_from_engine_is_422(self, engine, monkeypatch):
        def _bad_page(*args, **kwargs):
            raise InvalidPage("page must be >= 1, got 0")

        monkeypatch.setattr(engine, "exec_query", _bad_page)
        resp = _exec(TestClient(create_app(engine)), name="q1")
        assert resp.status_code == 422
        assert resp.text == "page must be >= 1, got 0"

    def test_arrow_failure_is_a_server_error(self, engine, monkeypatch):
        def _arrow_fails(*args, **kwargs):
            raise pa.ArrowInvalid("bad cast")

        monkeypatch.setattr(engine, "exec_query", _arrow_fails)
        client = TestClient(create_app(engine), raise_server_exceptions=False)
        assert _exec(client, name="q1").status_code == 500


class TestOperationalEndpoints:
    """Health, metrics and static files"""

    def test_healthz(self, client):
        body = client.get("/healthz").json()
        assert body["status"] == "ok"
        assert body["app"] == "frogtable"
        assert body["sources"] == 2
        assert body["queries"] == 2
        assert body["subscribers"] == 0

    def test_metrics_after_a_query(self, client):
        _exec(client, name="q1")
        resp = client.get("/metrics")
        assert resp.status_code == 200
        assert 'frogtable_query_exec_total{query="q1",status="ok"}' in resp.text
        assert "# TYPE frogtable_request_duration_ms summary" in resp.text

    def test_static_ui(self, root_config, tmp_path):
        dist = tmp_path / "dist"
        dist.mkdir()
        (dist / "index.html").write_text("<html>frogtable</html>", encoding="utf-8")
        cfg = Settings(scratch_dir=tmp_path / "scratch", web_dist=dist)
        client = TestClient(create_app(ServingEngine(root_config, cfg)))
        assert "frogtable" in client.get("/").text
        # API routes still win over the mount
        assert client.get("/healthz").status_code == 200


class TestLifespan:
    """Background work started and stopped with the app"""

    def test_keepalive_job_runs_while_serving(self, root_config, cfg):
        engine = ServingEngine(root_config, cfg)
        engine.init()
        try:
            with TestClient(create_app(engine)) as client:
                jobs = client.get("/healthz").json()["jobs"]
                assert KEEPALIVE_JOB_ID in [j["id"] for j in jobs]
        finally:
            shutdown_scheduler(wait=False)
