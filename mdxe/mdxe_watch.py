"""
Change watcher: re-run a document when it (or a sibling of the same kind) changes.

Polls file signatures (mtime, size) on the running event loop and debounces
bursts of modifications into a single trailing-edge notification.
"""
from __future__ import annotations

import asyncio
import inspect
import os
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional, Set, Tuple

from mdxe.mdxe_config import DEFAULT_WATCH_DEBOUNCE
from mdxe.mdxe_fragments import find_documents
from mdxe.mdxe_logging import get_logger

logger = get_logger("watch")

Signature = Tuple[int, int]


class Watcher:
    def __init__(self, path: str | os.PathLike, on_change: Callable[[Path], Any], *,
                 debounce: float = DEFAULT_WATCH_DEBOUNCE,
                 poll_interval: float = 0.1,
                 ignored: Iterable[str] = ()):
        self.path = Path(path).resolve()
        self.root = self.path if self.path.is_dir() else self.path.parent
        self.on_change = on_change
        self.debounce = debounce
        self.poll_interval = poll_interval
        self.ignored = frozenset(ignored)
        self._snapshot: Dict[Path, Signature] = {}
        self._poller: Optional[asyncio.Task] = None
        self._pending: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._poller is not None

    def _candidates(self) -> Set[Path]:
        if self.path.is_dir():
            return set(find_documents(self.root, self.ignored))
        # A watched file only has siblings of its own kind, one level deep
        files = {f for f in self.root.iterdir() if f.is_file() and f.suffix == self.path.suffix}
        files.add(self.path)
        return files

    def _scan(self) -> Dict[Path, Signature]:
        files = self._candidates()
        signatures: Dict[Path, Signature] = {}
        for f in files:
            try:
                st = f.stat()
            except FileNotFoundError:
                continue
            signatures[f] = (st.st_mtime_ns, st.st_size)
        return signatures

    def start(self) -> 'Watcher':
        """Begin polling. Must be called with an event loop running."""
        if self._poller is not None:
            return self
        loop = asyncio.get_running_loop()
        self._snapshot = self._scan()
        self._poller = loop.create_task(self._poll())
        logger.info("Watching for changes in %s", self.path)
        return self

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            current = self._scan()
            for path, signature in current.items():
                previous = self._snapshot.get(path)
                if previous is not None and previous != signature:
                    self._schedule(path)
            self._snapshot = current

    def _schedule(self, path: Path) -> None:
        if self._pending is not None:
            self._pending.cancel()
        loop = asyncio.get_running_loop()
        self._pending = loop.call_later(self.debounce, self._fire, path)

    def _fire(self, path: Path) -> None:
        self._pending = None
        logger.info("File %s has been changed", path)
        try:
            outcome = self.on_change(path)
        except Exception:
            logger.exception("Change handler failed for %s", path)
            return
        if inspect.isawaitable(outcome):
            task = asyncio.ensure_future(outcome)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Change handler failed: %s", task.exception())

    def stop(self) -> None:
        """Stop polling and drop any pending notification. Safe to call twice."""
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None
        if self._poller is not None:
            self._poller.cancel()
            self._poller = None
            logger.info("Stopped watching %s", self.path)
