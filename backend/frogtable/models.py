from __future__ import annotations

from pathlib import Path
from typing import Annotated, List, Literal, Union

from pydantic import BaseModel, Field, model_validator

from .errors import ConfigurationError, QueryNotFound, QueryReadError, SourceNotFound


# --- Data sources ---
class JsonFile(BaseModel):
    type: Literal["JsonFile"] = "JsonFile"
    path: Path


class JsonCmd(BaseModel):
    type: Literal["JsonCmd"] = "JsonCmd"
    command: str


SourceOrigin = Annotated[Union[JsonFile, JsonCmd], Field(discriminator="type")]


class DataSource(BaseModel):
    name: str
    source: SourceOrigin

    def cache_path(self, scratch_dir: Path) -> Path:
        """Where the output of a command-backed source is written on refresh."""
        return scratch_dir / "sources" / f"{self.name}.json"

    def json_path(self, scratch_dir: Path) -> Path:
        match self.source:
            case JsonFile(path=path):
                return path
            case JsonCmd():
                return self.cache_path(scratch_dir)


# --- Queries ---
class SqlFile(BaseModel):
    type: Literal["SqlFile"] = "SqlFile"
    path: Path


class SqlString(BaseModel):
    type: Literal["SqlString"] = "SqlString"
    sql: str


QueryOrigin = Annotated[Union[SqlFile, SqlString], Field(discriminator="type")]


class Query(BaseModel):
    name: str
    source: QueryOrigin

    def sql(self) -> str:
        """Current SQL text; file-backed queries are re-read on every call."""
        match self.source:
            case SqlFile(path=path):
                try:
                    return path.read_text(encoding="utf-8")
                except OSError as exc:
                    raise QueryReadError(f"Could not read SQL for query {self.name} from {path}: {exc}") from exc
            case SqlString(sql=sql):
                return sql

    def path(self) -> Path | None:
        match self.source:
            case SqlFile(path=path):
                return path
            case SqlString():
                return None


class Initializer(BaseModel):
    sql: str


class RootConfig(BaseModel):
    initializers: List[Initializer] = Field(default_factory=list)
    sources: List[DataSource] = Field(default_factory=list)
    queries: List[Query] = Field(default_factory=list)
    open: bool = False

    @model_validator(mode="after")
    def _unique_names(self) -> "RootConfig":
        for kind, names in (("source", [s.name for s in self.sources]), ("query", [q.name for q in self.queries])):
            seen: set[str] = set()
            for name in names:
                if name in seen:
                    raise ConfigurationError(f"Duplicate {kind} name: {name}")
                seen.add(name)
        return self

    def get_query(self, name: str) -> Query:
        for query in self.queries:
            if query.name == name:
                return query
        raise QueryNotFound(name)

    def get_source(self, name: str) -> DataSource:
        for source in self.sources:
            if source.name == name:
                return source
        raise SourceNotFound(name)
