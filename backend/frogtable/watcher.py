from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from watchfiles import Change, awatch

from .errors import WatchError
from .events import EventBroadcaster, QueryUpdated
from .models import Query

logger = logging.getLogger(__name__)


def _canonicalize(path: Path | str) -> Path:
    try:
        return Path(path).resolve(strict=True)
    except OSError as exc:
        raise WatchError(f"Cannot canonicalize {path}: {exc}") from exc


class ChangeWatcher:
    """Publishes QueryUpdated when the SQL file behind a query is modified.

    WatchError stops here: it is logged and the loop carries on.
    """

    def __init__(
        self,
        queries: Sequence[Query],
        hub: EventBroadcaster,
        force_polling: Optional[bool] = None,
    ):
        self.hub = hub
        self.force_polling = force_polling
        self.watched: List[Tuple[str, Path]] = [(q.name, q.path()) for q in queries if q.path() is not None]
        self._stop = asyncio.Event()

    def watch_paths(self) -> List[Path]:
        out: List[Path] = []
        for name, path in self.watched:
            if not path.exists():
                logger.warning(f"[Watcher] Cannot watch {path} for query {name}: file does not exist")
                continue
            if path not in out:
                out.append(path)
        return out

    def handle_changes(self, changes: Iterable[Tuple[Change, str]]) -> List[str]:
        """Publish one QueryUpdated per (query, modified file) match; returns the query names."""
        notified: List[str] = []
        for change, raw_path in changes:
            if change != Change.modified:
                continue
            try:
                changed = _canonicalize(raw_path)
            except WatchError as exc:
                logger.warning(f"[Watcher] {exc}")
                continue
            for name, path in self.watched:
                try:
                    target = _canonicalize(path)
                except WatchError as exc:
                    logger.warning(f"[Watcher] {exc}")
                    continue
                if target == changed:
                    self.hub.publish(QueryUpdated(name=name))
                    notified.append(name)
        if notified:
            logger.info(f"[Watcher] Queries updated: {', '.join(notified)}")
        return notified

    async def run(self) -> None:
        paths = self.watch_paths()
        if not paths:
            logger.info("[Watcher] No file-backed queries to watch")
            return
        logger.info(f"[Watcher] Watching {len(paths)} file(s)")
        while not self._stop.is_set():
            try:
                async for changes in awatch(
                    *paths,
                    stop_event=self._stop,
                    recursive=False,
                    force_polling=self.force_polling,
                ):
                    self.handle_changes(changes)
            except Exception as exc:
                logger.error(f"[Watcher] Watch loop failed, restarting: {exc}")
                await asyncio.sleep(1.0)
                paths = self.watch_paths() or paths

    def stop(self) -> None:
        self._stop.set()
