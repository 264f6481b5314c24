"""
Event registry: named events, sequential dispatch, propagated context.

Handlers for one event run one at a time in registration order. A handler
that raises is recorded in ``context.errors`` and the remaining handlers
still run.
"""
from __future__ import annotations

import collections.abc
import inspect
from collections import UserDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, MutableMapping, Optional

from mdxe.mdxe_errors import HandlerError
from mdxe.mdxe_logging import get_logger

logger = get_logger("events")

HANDLER_ERROR_EVENT = "handler.error"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def deep_merge(target: MutableMapping, delta: Mapping) -> MutableMapping:
    """
    Merge delta into target in place.

    Nested mappings merge key by key; lists and scalars replace the old value.
    Merged mappings are copies, so target never aliases dicts owned by delta.
    """
    for key, value in delta.items():
        current = target.get(key)
        if isinstance(value, collections.abc.Mapping):
            base = dict(current) if isinstance(current, collections.abc.Mapping) else {}
            target[key] = deep_merge(base, value)
        else:
            target[key] = value
    return target


class EventContext(UserDict):
    """Mutable key/value bag threaded through one dispatch."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        # Always a list owned by this context
        self.data["errors"] = list(self.data.get("errors") or [])

    @classmethod
    def from_seed(cls, seed: Optional[Mapping] = None) -> 'EventContext':
        if seed is None:
            return cls()
        return cls(dict(seed.items()))

    def __getattr__(self, name: str):
        if name == "data":
            raise AttributeError(name)
        d = self.data
        if name in d:
            return d[name]
        raise AttributeError(name)

    @property
    def errors(self) -> List[HandlerError]:
        return self.data["errors"]

    def set(self, key: str, value: Any) -> 'EventContext':
        self.data[key] = value
        return self

    def has(self, key: str) -> bool:
        return key in self.data

    def merge(self, delta: Mapping) -> 'EventContext':
        deep_merge(self.data, delta)
        return self

    def __repr__(self):
        return f"EventContext({self.data!r})"


def positional_arity(callback: Callable) -> int:
    """How many of (data, context) the callback accepts positionally."""
    try:
        sig = inspect.signature(callback)
    except (TypeError, ValueError):
        return 2
    count = 0
    for param in sig.parameters.values():
        if param.kind == param.VAR_POSITIONAL:
            return 2
        if param.kind in (param.POSITIONAL_ONLY, param.POSITIONAL_OR_KEYWORD):
            count += 1
    return min(count, 2)


def _handler_name(callback: Callable) -> str:
    return getattr(callback, "__qualname__", None) or getattr(callback, "__name__", None) or repr(callback)


@dataclass
class EventHandler:
    event: str
    callback: Callable[..., Any]
    arity: int = 2

    def invoke(self, data: Any, context: EventContext) -> Any:
        return self.callback(*(data, context)[:self.arity])


@dataclass
class SendResult:
    """Outcome of one dispatch; failed handlers contribute no result."""
    results: List[Any] = field(default_factory=list)
    context: EventContext = field(default_factory=EventContext)

    @property
    def errors(self) -> List[HandlerError]:
        return self.context.errors


def _is_context_delta(value: Any) -> bool:
    return (
        isinstance(value, collections.abc.Mapping)
        and set(value.keys()) == {"result", "context"}
        and isinstance(value["context"], collections.abc.Mapping)
    )


class EventRegistry:
    """Stores event handlers and dispatches events to them."""

    def __init__(self):
        self._handlers: Dict[str, List[EventHandler]] = {}

    def on(self, event: str, callback: Callable[..., Any]) -> 'EventRegistry':
        """Register callback for event. Returns the registry for chaining."""
        if not callable(callback):
            raise TypeError(f"handler for {event!r} must be callable")
        self._handlers.setdefault(event, []).append(
            EventHandler(event, callback, positional_arity(callback))
        )
        return self

    async def send(self, event: str, data: Any = None,
                   seed: Optional[Mapping] = None) -> SendResult:
        """Dispatch event to its handlers, one at a time, in registration order."""
        context = EventContext.from_seed(seed)
        results: List[Any] = []
        # Handlers registered during this dispatch run on the next one
        handlers = list(self._handlers.get(event, ()))
        logger.debug("send %s to %d handler(s)", event, len(handlers))

        for index, handler in enumerate(handlers):
            try:
                outcome = handler.invoke(data, context)
                if inspect.isawaitable(outcome):
                    outcome = await outcome
            except Exception as exc:
                failure = HandlerError(event, _handler_name(handler.callback), index,
                                       exc, _now_iso(), data)
                context.errors.append(failure)
                logger.error("Error in event handler for %s: %s", event, exc)
                if event != HANDLER_ERROR_EVENT:
                    await self._report(failure)
                continue

            if _is_context_delta(outcome):
                context.merge(outcome["context"])
                outcome = outcome["result"]
            results.append(outcome)

        return SendResult(results, context)

    emit = send

    async def _report(self, failure: HandlerError) -> None:
        if not self._handlers.get(HANDLER_ERROR_EVENT):
            return
        report = await self.send(HANDLER_ERROR_EVENT, failure)
        for nested in report.errors:
            logger.error("Error handler failed while reporting %s: %s", failure.event, nested.error)

    def handlers(self, event: str) -> List[EventHandler]:
        return list(self._handlers.get(event, ()))

    def events(self) -> List[str]:
        return list(self._handlers)

    def clear(self) -> None:
        """Remove all handlers."""
        self._handlers.clear()

    def clear_event(self, event: str) -> None:
        """Remove the handlers of one event."""
        self._handlers.pop(event, None)

    def __contains__(self, event: object) -> bool:
        return event in self._handlers


# Process-wide default registry
event_registry = EventRegistry()

on = event_registry.on
send = event_registry.send
emit = event_registry.emit
clear_events = event_registry.clear
clear_event = event_registry.clear_event
