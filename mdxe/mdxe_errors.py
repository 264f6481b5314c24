"""Exception hierarchy for mdxe."""
from __future__ import annotations

from typing import Any, Optional


class MdxeError(Exception):
    """Base exception for all mdxe errors."""

    pass


class UnsupportedDialect(MdxeError):
    """Raised by the dialect gate for a fragment that cannot be executed."""

    def __init__(self, dialect: str):
        self.dialect = dialect
        super().__init__(f"Unsupported dialect: {dialect or '<none>'}")


class TranspileFailure(MdxeError):
    """Raised when type stripping rejects malformed source."""

    def __init__(self, message: str, line: Optional[int] = None, col: Optional[int] = None):
        self.line = line
        self.col = col
        if line is not None:
            col_info = f", col {col}" if col is not None else ""
            message = f"{message} (line {line}{col_info})"
        super().__init__(f"Transpile error: {message}")


class FragmentRuntimeError(MdxeError):
    """An exception or failed awaitable raised while a fragment runs."""

    def __init__(self, message: str, original: Optional[BaseException] = None):
        self.original = original
        super().__init__(message)

    @classmethod
    def from_exception(cls, exc: BaseException) -> 'FragmentRuntimeError':
        detail = str(exc)
        message = f"{type(exc).__name__}: {detail}" if detail else type(exc).__name__
        return cls(message, exc)


class HandlerError(MdxeError):
    """Record of an exception thrown inside an event callback.

    Instances are collected into ``EventContext.errors`` rather than raised.
    """

    def __init__(self, event: str, handler: str, handler_index: int,
                 error: BaseException, timestamp: str, data: Any = None):
        self.event = event
        self.handler = handler
        self.handler_index = handler_index
        self.error = error
        self.timestamp = timestamp
        self.data = data
        super().__init__(f"Error in event handler {handler_index} ({handler}) for {event}: {error}")


class ConfigurationError(MdxeError):
    """Raised when configuration is invalid or missing."""

    pass


class CapabilityNotFound(MdxeError, AttributeError):
    """Raised when a capability namespace has no handler for a name."""

    def __init__(self, namespace: str, name: str):
        self.namespace = namespace
        self.name = name
        super().__init__(f"'{namespace}' has no capability named '{name}'")


class GenerationError(MdxeError):
    """Raised when the generation collaborator fails or answers malformed data."""

    pass
