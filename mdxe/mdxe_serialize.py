from __future__ import annotations

import collections.abc
import hashlib
import json
import re
from typing import Any

import yaml


# --------------------------
# Helpers
# --------------------------

def _to_builtin(obj: Any) -> Any:
    # Mapping-likes (EventContext, OrderedDict) and tuples become plain containers
    if isinstance(obj, (list, tuple)):
        return [_to_builtin(x) for x in obj]
    if isinstance(obj, collections.abc.Mapping):
        return {str(k): _to_builtin(v) for k, v in obj.items()}
    return obj


_FENCE_RE = re.compile(r"^```[\w-]*\s*\n(.*?)\n```\s*$", re.DOTALL)


def strip_code_fence(text: str) -> str:
    """Return the body of a response wrapped in a single fenced block, else the text."""
    m = _FENCE_RE.match(text.strip())
    return m.group(1) if m else text


# --------------------------
# Public API
# --------------------------

def deserialize(text: str) -> Any:
    """
    Parse YAML (and so JSON) text into native Python structures.
    Returns the text unchanged when it cannot be parsed.
    """
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError:
        return text


def serialize(value: Any, *, fmt: str, pretty: bool = True) -> str:
    """
    Convert a native value into text.
    - fmt: 'json' | 'yaml'
    """
    f = (fmt or '').lower()
    built = _to_builtin(value)
    if f == 'json':
        return json.dumps(built, ensure_ascii=False, indent=2 if pretty else None, default=str)
    if f == 'yaml':
        return yaml.safe_dump(built, sort_keys=False, allow_unicode=True)
    raise ValueError(f"Unsupported serialization format: {fmt!r}")


def canonical_json(obj: Any) -> bytes:
    """Canonical JSON for hashing: UTF-8, sorted keys, no whitespace."""
    return json.dumps(_to_builtin(obj), sort_keys=True, separators=(",", ":"),
                      ensure_ascii=False, default=repr).encode("utf-8")


def stable_hash(obj: Any) -> str:
    """Hex sha256 of the canonical JSON form of obj."""
    return hashlib.sha256(canonical_json(obj)).hexdigest()


__all__ = [
    "deserialize",
    "serialize",
    "strip_code_fence",
    "canonical_json",
    "stable_hash",
]
