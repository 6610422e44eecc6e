from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, AliasChoices
from typing import Literal, Optional
from pathlib import Path


def _default_scratch_dir() -> Path:
    return Path.home() / ".cache" / "frogtable"


class Settings(BaseSettings):
    """Process configuration using Pydantic v2 settings.

    - Reads FROGTABLE_* environment variables (and a local .env)
    - Ignores unknown env keys
    - Sources and queries are not configured here; the CLI builds a RootConfig for those
    """

    model_config = SettingsConfigDict(
        env_prefix="FROGTABLE_", env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    app_name: str = "frogtable"

    # HTTP server
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=3000)

    # Embedded analytical engine (DuckDB)
    duckdb_path: str = Field(default=":memory:")
    duckdb_threads: Optional[int] = Field(default=None, ge=1)
    duckdb_memory_limit: Optional[str] = Field(default=None, description="e.g. '2GB'")
    allow_unsigned_extensions: bool = Field(default=True)

    # Cached output of command-backed sources lives under <scratch_dir>/sources/
    scratch_dir: Path = Field(default_factory=_default_scratch_dir)

    # Live updates
    keepalive_interval_seconds: float = Field(default=5.0, gt=0)
    sse_keepalive_seconds: float = Field(default=30.0, gt=0)
    subscriber_queue_size: int = Field(default=16, ge=1)
    greeting: str = Field(default="Hello from the server!")

    # Which heuristic decides the sources a query depends on
    dependency_resolver: Literal["substring", "sqlglot"] = Field(default="substring")

    # None lets watchfiles decide; set true on filesystems without native notifications
    watch_force_polling: Optional[bool] = Field(default=None)

    # Pre-built web UI served at "/" when set
    web_dist: Optional[Path] = Field(
        default=None,
        validation_alias=AliasChoices("FROGTABLE_WEB_DIST", "WEB_DIST"),
    )

    log_level: str = Field(default="info")

    @property
    def sources_dir(self) -> Path:
        return self.scratch_dir / "sources"

    @property
    def base_url(self) -> str:
        host = "localhost" if self.host in ("0.0.0.0", "127.0.0.1", "") else self.host
        return f"http://{host}:{self.port}"


settings = Settings()
