"""Configuration: environment settings and execution profiles."""
from __future__ import annotations

import os
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, Mapping, Optional

import yaml

from mdxe.mdxe_errors import ConfigurationError
from mdxe.mdxe_logging import get_logger

logger = get_logger("config")

DEFAULT_CACHE_DIR = ".ai/cache"
"""str: Directory for time-stamped generation cache entries."""

DEFAULT_CACHE_ENTRIES = 100
"""int: Bound on in-memory generation cache entries."""

DEFAULT_WATCH_DEBOUNCE = 0.3
"""float: Seconds of quiet before a change triggers a re-run."""

DEFAULT_PROFILE = "default"

DEFAULT_PROFILES: Dict[str, Dict[str, str]] = {
    "default": {},
    "development": {"MDXE_ENV": "development", "MDXE_DEBUG": "1"},
    "test": {"MDXE_ENV": "test"},
    "production": {"MDXE_ENV": "production"},
}

PROFILE_ALIASES = {
    "dev": "development",
    "prod": "production",
}


def get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    """Get environment variable with optional default."""
    return os.environ.get(name, default)


def _env_int(name: str, default: int) -> int:
    raw = get_env(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = get_env(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from exc


@dataclass
class MdxeConfig:
    """Runtime settings, usually read from ``MDXE_*`` environment variables."""
    cache_dir: Optional[str] = DEFAULT_CACHE_DIR
    cache_entries: int = DEFAULT_CACHE_ENTRIES
    cache_max_age: Optional[float] = None
    ai_base_url: Optional[str] = None
    ai_api_key: Optional[str] = None
    ai_model: Optional[str] = None
    watch_debounce: float = DEFAULT_WATCH_DEBOUNCE
    profiles_file: Optional[str] = None

    @classmethod
    def from_env(cls) -> 'MdxeConfig':
        cache_dir = get_env("MDXE_CACHE_DIR", DEFAULT_CACHE_DIR)
        return cls(
            # An empty MDXE_CACHE_DIR keeps the cache in memory only
            cache_dir=cache_dir or None,
            cache_entries=_env_int("MDXE_CACHE_ENTRIES", DEFAULT_CACHE_ENTRIES),
            cache_max_age=_env_float("MDXE_CACHE_MAX_AGE", None),
            ai_base_url=get_env("MDXE_AI_BASE_URL"),
            ai_api_key=get_env("MDXE_AI_API_KEY"),
            ai_model=get_env("MDXE_AI_MODEL"),
            watch_debounce=_env_float("MDXE_WATCH_DEBOUNCE", DEFAULT_WATCH_DEBOUNCE),
            profiles_file=get_env("MDXE_PROFILES_FILE"),
        )


@dataclass(frozen=True)
class ExecutionProfile:
    """A named set of environment variables applied while fragments run."""
    name: str
    env: Mapping[str, str] = field(default_factory=dict)


def load_profiles(path: str | os.PathLike) -> Dict[str, Dict[str, str]]:
    """
    Load profiles from a YAML file shaped like::

        development:
          env:
            API_URL: http://localhost:8000

    Returned profiles are merged over DEFAULT_PROFILES.
    """
    p = Path(path)
    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except OSError as exc:
        raise ConfigurationError(f"Cannot read profiles file {p}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Malformed profiles file {p}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Profiles file {p} must contain a mapping")

    profiles = {name: dict(env) for name, env in DEFAULT_PROFILES.items()}
    for name, body in raw.items():
        env = (body or {}).get("env", {}) if isinstance(body, dict) else None
        if not isinstance(env, dict):
            raise ConfigurationError(f"Profile {name!r} in {p} needs an 'env' mapping")
        profiles[str(name)] = {str(k): str(v) for k, v in env.items()}
    logger.debug("Loaded %d profiles from %s", len(raw), p)
    return profiles


def resolve_profile(name: Optional[str] = None,
                    profiles: Optional[Mapping[str, Mapping[str, str]]] = None) -> ExecutionProfile:
    """Select a named profile; aliases like 'dev' and 'prod' are accepted."""
    table = DEFAULT_PROFILES if profiles is None else profiles
    key = PROFILE_ALIASES.get(name or DEFAULT_PROFILE, name or DEFAULT_PROFILE)
    if key not in table:
        raise ConfigurationError(
            f"Unknown execution profile {name!r}; expected one of {', '.join(sorted(table))}"
        )
    return ExecutionProfile(key, dict(table[key]))


@contextmanager
def applied_environment(env: Mapping[str, str]) -> Iterator[None]:
    """Apply env process-wide for the duration of the block, then restore."""
    saved = {key: os.environ.get(key) for key in env}
    os.environ.update({key: str(value) for key, value in env.items()})
    try:
        yield
    finally:
        for key, value in saved.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value
