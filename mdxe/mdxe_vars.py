"""
Shared variable store.

A VariableStore is an arena owned by whoever runs fragments. Session ids are
handles into it: two runners with different stores never see each other's
variables even when they use the same session id.
"""
from __future__ import annotations

from typing import Any, Dict, Iterator, List


class VariableStore:
    """Session id -> ordered mapping of variable name -> value."""

    def __init__(self):
        self._buckets: Dict[str, Dict[str, Any]] = {}

    def _bucket(self, session_id: str) -> Dict[str, Any]:
        # Buckets are created lazily and only removed by discard/clear.
        return self._buckets.setdefault(session_id, {})

    def export_var(self, session_id: str, key: str, value: Any) -> Any:
        self._bucket(session_id)[key] = value
        return value

    def import_var(self, session_id: str, key: str, default: Any = None) -> Any:
        return self._bucket(session_id).get(key, default)

    def has_var(self, session_id: str, key: str) -> bool:
        return key in self._bucket(session_id)

    def session(self, session_id: str) -> 'SessionVars':
        self._bucket(session_id)
        return SessionVars(self, session_id)

    def snapshot(self, session_id: str) -> Dict[str, Any]:
        """Shallow copy of a session's variables."""
        return dict(self._buckets.get(session_id, {}))

    def sessions(self) -> List[str]:
        return list(self._buckets)

    def discard(self, session_id: str) -> None:
        self._buckets.pop(session_id, None)

    def clear(self) -> None:
        self._buckets.clear()

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._buckets

    def __len__(self) -> int:
        return len(self._buckets)

    def __repr__(self) -> str:
        return f"VariableStore(sessions={self.sessions()!r})"


class SessionVars:
    """A handle bound to one session of a VariableStore."""
    __slots__ = ("store", "session_id")

    def __init__(self, store: VariableStore, session_id: str):
        self.store = store
        self.session_id = session_id

    def export_var(self, key: str, value: Any) -> Any:
        return self.store.export_var(self.session_id, key, value)

    def import_var(self, key: str, default: Any = None) -> Any:
        return self.store.import_var(self.session_id, key, default)

    def has_var(self, key: str) -> bool:
        return self.store.has_var(self.session_id, key)

    def __iter__(self) -> Iterator[str]:
        return iter(self.store.snapshot(self.session_id))

    def __repr__(self) -> str:
        return f"SessionVars({self.session_id!r})"


# Process-wide default arena for callers that do not bring their own
variable_store = VariableStore()
