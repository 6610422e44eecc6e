import json
from pathlib import Path

import pytest

from frogtable.config import Settings
from frogtable.engine import ServingEngine
from frogtable.models import DataSource, JsonCmd, JsonFile, Query, RootConfig, SqlFile, SqlString


@pytest.fixture
def cfg(tmp_path: Path) -> Settings:
    return Settings(scratch_dir=tmp_path / "scratch", duckdb_path=":memory:", web_dist=None)


@pytest.fixture
def people_json(tmp_path: Path) -> Path:
    path = tmp_path / "people.json"
    rows = [
        {"id": 1, "name": "ada", "age": 36},
        {"id": 2, "name": "grace", "age": 45},
        {"id": 3, "name": "alan", "age": 41},
        {"id": 4, "name": "edsger", "age": 72},
        {"id": 5, "name": "barbara", "age": 28},
    ]
    path.write_text("\n".join(json.dumps(row) for row in rows) + "\n", encoding="utf-8")
    return path


@pytest.fixture
def adults_sql(tmp_path: Path) -> Path:
    path = tmp_path / "adults.sql"
    path.write_text("SELECT id, name, age FROM people WHERE age > 30", encoding="utf-8")
    return path


@pytest.fixture
def root_config(people_json: Path, adults_sql: Path) -> RootConfig:
    return RootConfig(
        sources=[
            DataSource(name="people", source=JsonFile(path=people_json)),
            DataSource(name="events", source=JsonCmd(command="echo '[{\"id\":1}]'")),
        ],
        queries=[
            Query(name="adults", source=SqlFile(path=adults_sql)),
            Query(name="q1", source=SqlString(sql="SELECT * FROM events")),
        ],
    )


@pytest.fixture
def engine(root_config: RootConfig, cfg: Settings):
    eng = ServingEngine(root_config, cfg)
    eng.init()
    yield eng
    eng.close()


@pytest.fixture
def scores_json(tmp_path: Path) -> Path:
    """A static file holding one top-level JSON array."""
    path = tmp_path / "scores.json"
    path.write_text(json.dumps([{"id": 1, "score": 7}, {"id": 2, "score": 9}, {"id": 3, "score": 4}]), encoding="utf-8")
    return path
