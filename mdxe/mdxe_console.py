"""
Diagnostic capture for a running fragment.

Each execution gets its own Console. Entries are appended in emission order
and echoed to the ``mdxe.fragment`` logger.
"""
from __future__ import annotations

import copy
import logging
import sys
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator, List

from mdxe.mdxe_logging import get_logger

logger = get_logger("fragment")

SEVERITIES = ("log", "error", "warn", "info")

_LOG_LEVELS = {
    "log": logging.INFO,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass
class DiagnosticEntry:
    severity: str
    args: List[Any] = field(default_factory=list)
    timestamp: float = field(default_factory=time.time)

    @property
    def message(self) -> str:
        return " ".join(str(a) for a in self.args)


def _snapshot(value: Any) -> Any:
    # Later mutation by the fragment must not rewrite what was printed
    try:
        return copy.deepcopy(value)
    except (TypeError, copy.Error, RecursionError):
        return value


class Console:
    """The ``console`` object of a fragment scope."""

    def __init__(self, outputs: List[DiagnosticEntry]):
        self.outputs = outputs
        self.closed = False

    def _emit(self, severity: str, args) -> None:
        if self.closed:
            logger.debug("dropped %s after fragment finished", severity)
            return
        entry = DiagnosticEntry(severity, [_snapshot(a) for a in args])
        self.outputs.append(entry)
        logger.log(_LOG_LEVELS[severity], "%s", entry.message)

    def log(self, *args) -> None:
        self._emit("log", args)

    def info(self, *args) -> None:
        self._emit("info", args)

    def warn(self, *args) -> None:
        self._emit("warn", args)

    warning = warn

    def error(self, *args) -> None:
        self._emit("error", args)

    def print(self, *args, sep: str = " ", end: str = "\n", file: Any = None, flush: bool = False) -> None:
        """Drop-in for the builtin; ``file=sys.stderr`` records an error entry."""
        self._emit("error" if file is sys.stderr else "log", args)

    def close(self) -> None:
        self.closed = True


@contextmanager
def capture_console(outputs: List[DiagnosticEntry]) -> Iterator[Console]:
    console = Console(outputs)
    try:
        yield console
    finally:
        console.close()
