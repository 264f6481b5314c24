"""
Two-tier, content-addressed cache for generation calls.

Tier 1 is a bounded in-memory LRU; tier 2 is one time-stamped JSON file per
key under the cache directory:

    <cache_dir>/<sha256>.json   {"timestamp": <epoch seconds>, "value": {...}}
"""
from __future__ import annotations

import json
import os
import time
from collections import OrderedDict
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from mdxe.mdxe_config import DEFAULT_CACHE_ENTRIES
from mdxe.mdxe_http import GenerationResult, Generator
from mdxe.mdxe_logging import get_logger
from mdxe.mdxe_serialize import serialize, stable_hash

logger = get_logger("cache")


def _atomic_write_bytes(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".tmp-" + str(time.time_ns()))
    with open(tmp, "wb") as f:
        f.write(data)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp, path)


class GenerationCache:
    def __init__(self, cache_dir: Optional[str | os.PathLike] = None, *,
                 max_entries: int = DEFAULT_CACHE_ENTRIES,
                 max_age: Optional[float] = None):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.cache_dir = Path(cache_dir) if cache_dir else None
        self.max_entries = max_entries
        self.max_age = max_age
        self._memory: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()

    @staticmethod
    def key(params: Mapping[str, Any]) -> str:
        return stable_hash(params)

    def _path(self, key: str) -> Path:
        assert self.cache_dir is not None
        return self.cache_dir / f"{key}.json"

    def _fresh(self, timestamp: float) -> bool:
        return self.max_age is None or (time.time() - timestamp) <= self.max_age

    def _remember(self, key: str, entry: Dict[str, Any]) -> None:
        self._memory[key] = entry
        self._memory.move_to_end(key)
        while len(self._memory) > self.max_entries:
            self._memory.popitem(last=False)

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Cached value for key, memory first, then disk; None on a miss."""
        entry = self._memory.get(key)
        if entry is not None:
            if self._fresh(entry["timestamp"]):
                self._memory.move_to_end(key)
                return entry["value"]
            del self._memory[key]

        if self.cache_dir is None:
            return None
        path = self._path(key)
        try:
            entry = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable cache entry %s: %s", path, exc)
            return None
        if not isinstance(entry, dict) or "value" not in entry or not self._fresh(entry.get("timestamp", 0)):
            return None
        self._remember(key, entry)
        return entry["value"]

    def put(self, key: str, value: Dict[str, Any]) -> None:
        entry = {"timestamp": time.time(), "value": value}
        self._remember(key, entry)
        if self.cache_dir is None:
            return
        try:
            _atomic_write_bytes(self._path(key), serialize(entry, fmt="json").encode("utf-8"))
        except OSError as exc:
            logger.warning("Failed to cache result %s: %s", key, exc)

    def clear(self, *, disk: bool = False) -> None:
        self._memory.clear()
        if disk and self.cache_dir is not None and self.cache_dir.exists():
            for path in self.cache_dir.glob("*.json"):
                path.unlink()

    def __len__(self) -> int:
        return len(self._memory)


class CachedGenerator:
    """Wraps a live generator with a GenerationCache."""

    def __init__(self, generator: Generator, cache: GenerationCache):
        self.generator = generator
        self.cache = cache

    async def generate(self, prompt: str, model: Optional[str] = None) -> GenerationResult:
        key = self.cache.key({"prompt": prompt, "model": model})
        hit = self.cache.get(key)
        if hit is not None:
            logger.debug("Cache hit for key: %s", key)
            return GenerationResult.from_dict(hit, cached=True)
        logger.debug("Cache miss for key: %s", key)
        result = await self.generator.generate(prompt, model)
        self.cache.put(key, result.to_dict())
        return result
