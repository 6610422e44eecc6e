"""Command-line entry point: build the configuration, initialize the engine, serve."""

from __future__ import annotations

import logging
import threading
import webbrowser
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

import click
import uvicorn

from .config import Settings, settings
from .engine import ServingEngine
from .errors import FrogtableError
from .main import create_app
from .models import DataSource, Initializer, JsonCmd, JsonFile, Query, RootConfig, SqlFile, SqlString

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _split_named(value: str, option: str, name_required: bool) -> Tuple[Optional[str], str]:
    """Split NAME=VALUE on the first '='.

    For path options the prefix only counts as a name when it holds no path separator,
    so `--json-file ./a=b.json` is read as a bare path.
    """
    head, sep, tail = value.partition("=")
    if sep and head and (name_required or ("/" not in head and "\\" not in head)):
        return head, tail
    if name_required:
        raise click.BadParameter(f"expected NAME=VALUE, got {value!r}", param_hint=option)
    return None, value


def _named_path(value: str, option: str) -> Tuple[str, Path]:
    name, raw = _split_named(value, option, name_required=False)
    path = Path(raw)
    name = name or path.stem
    if not name:
        raise click.BadParameter(f"cannot infer a name from {raw!r}", param_hint=option)
    return name, path


def build_root_config(
    json_files: Iterable[str] = (),
    json_cmds: Iterable[str] = (),
    sql_files: Iterable[str] = (),
    sqls: Iterable[str] = (),
    setup_sqls: Iterable[str] = (),
    open_browser: bool = False,
) -> RootConfig:
    sources: List[DataSource] = []
    queries: List[Query] = []
    for value in json_files:
        name, path = _named_path(value, "--json-file")
        sources.append(DataSource(name=name, source=JsonFile(path=path)))
    for value in json_cmds:
        name, command = _split_named(value, "--json-cmd", name_required=True)
        sources.append(DataSource(name=name, source=JsonCmd(command=command)))
    for value in sql_files:
        name, path = _named_path(value, "--sql-file")
        queries.append(Query(name=name, source=SqlFile(path=path)))
    for value in sqls:
        name, sql = _split_named(value, "--sql", name_required=True)
        queries.append(Query(name=name, source=SqlString(sql=sql)))
    initializers = [Initializer(sql=sql) for sql in setup_sqls]
    try:
        return RootConfig(initializers=initializers, sources=sources, queries=queries, open=open_browser)
    except FrogtableError as exc:
        raise click.UsageError(str(exc)) from exc


def _open_later(url: str, delay: float = 1.0) -> None:
    timer = threading.Timer(delay, webbrowser.open, args=(url,))
    timer.daemon = True
    timer.start()


@click.command(help="Serve JSON sources and SQL queries over HTTP with live updates.")
@click.option("--json-file", "json_files", multiple=True, metavar="[NAME=]PATH", help="JSON file source.")
@click.option("--json-cmd", "json_cmds", multiple=True, metavar="NAME=COMMAND", help="Shell command printing JSON.")
@click.option("--sql-file", "sql_files", multiple=True, metavar="[NAME=]PATH", help="Query read from a SQL file.")
@click.option("--sql", "sqls", multiple=True, metavar="NAME=SQL", help="Inline query.")
@click.option("--setup-sql", "setup_sqls", multiple=True, metavar="SQL", help="Statement run once at startup.")
@click.option("--open/--no-open", "open_browser", default=False, help="Open the UI in a browser.")
@click.option("--host", type=str, default=None, help="Bind address (overrides FROGTABLE_HOST).")
@click.option("--port", type=int, default=None, help="Bind port (overrides FROGTABLE_PORT).")
@click.option("--log-level", type=click.Choice(["debug", "info", "warning", "error"]), default=None)
@click.version_option(package_name="frogtable")
def main(
    json_files: Tuple[str, ...],
    json_cmds: Tuple[str, ...],
    sql_files: Tuple[str, ...],
    sqls: Tuple[str, ...],
    setup_sqls: Tuple[str, ...],
    open_browser: bool,
    host: Optional[str],
    port: Optional[int],
    log_level: Optional[str],
) -> None:
    if not (json_files or json_cmds or sql_files or sqls or setup_sqls):
        raise click.UsageError("Nothing to serve: pass at least one source, query or setup statement.")
    root = build_root_config(json_files, json_cmds, sql_files, sqls, setup_sqls, open_browser)

    overrides = {k: v for k, v in (("host", host), ("port", port), ("log_level", log_level)) if v is not None}
    cfg: Settings = settings.model_copy(update=overrides)
    logging.basicConfig(level=cfg.log_level.upper(), format=LOG_FORMAT)

    try:
        engine = ServingEngine(root, cfg)
    except FrogtableError as exc:
        raise click.ClickException(str(exc)) from exc
    try:
        engine.init()
    except FrogtableError as exc:
        engine.close()
        raise click.ClickException(str(exc)) from exc

    app = create_app(engine)
    if root.open:
        _open_later(cfg.base_url)
    logger.info(f"[Startup] Listening on {cfg.base_url}")
    uvicorn.run(app, host=cfg.host, port=cfg.port, log_level=cfg.log_level.lower())


if __name__ == "__main__":
    main()
