"""
Scope factory: the capability set injected into every fragment.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional

from mdxe.mdxe_cache import CachedGenerator, GenerationCache
from mdxe.mdxe_capabilities import (
    CapabilityRegistry, CollectionStore, Database, GenerationCapabilities,
    MemoryCollectionStore,
)
from mdxe.mdxe_config import MdxeConfig, load_profiles, resolve_profile
from mdxe.mdxe_events import (
    EventContext, EventHandler, EventRegistry, SendResult, event_registry,
    positional_arity,
)
from mdxe.mdxe_http import Generator, HttpGenerator, PlaceholderGenerator
from mdxe.mdxe_logging import get_logger

logger = get_logger("scope")

CAPTURE_INPUT_EVENT = "idea.captured"
CAPTURE_INPUT_PROMPT = "Enter your startup idea:"

# Namespaces that would shadow a builtin are exposed under another name
SCOPE_ALIASES = {"list": "ai_list"}


def build_generator(config: MdxeConfig) -> Generator:
    """Live HTTP generator behind the cache, or the offline placeholder."""
    if not config.ai_base_url:
        return PlaceholderGenerator()
    live = HttpGenerator(config.ai_base_url, api_key=config.ai_api_key, model=config.ai_model)
    cache = GenerationCache(config.cache_dir, max_entries=config.cache_entries,
                            max_age=config.cache_max_age)
    return CachedGenerator(live, cache)


class ScopeFactory:
    """Builds fragment scopes over one event registry and one capability registry."""

    def __init__(self, *,
                 registry: Optional[EventRegistry] = None,
                 capabilities: Optional[CapabilityRegistry] = None,
                 generator: Optional[Generator] = None,
                 collections: Optional[CollectionStore] = None,
                 input_provider: Optional[Callable[[str], Any]] = None,
                 profiles: Optional[Mapping[str, Mapping[str, str]]] = None,
                 config: Optional[MdxeConfig] = None):
        self.config = config or MdxeConfig.from_env()
        self.registry = registry if registry is not None else event_registry
        if capabilities is None:
            capabilities = GenerationCapabilities(
                generator or build_generator(self.config), self.config.ai_model
            ).install(CapabilityRegistry())
        self.capabilities = capabilities
        self.collections = collections if collections is not None else MemoryCollectionStore()
        self.input_provider = input_provider or input
        if profiles is None and self.config.profiles_file:
            profiles = load_profiles(self.config.profiles_file)
        self.profiles = profiles

    def on(self, event: str, callback: Callable[..., Any]) -> Any:
        """
        Register callback for event.

        The capture-input event is not queued: an input value is acquired
        right away and the callback runs with it; its return value is returned.
        """
        if event == CAPTURE_INPUT_EVENT:
            value = self.input_provider(CAPTURE_INPUT_PROMPT)
            context = EventContext(
                eventType=event,
                timestamp=datetime.now(timezone.utc).isoformat(),
            )
            logger.debug("captured input for %s", event)
            handler = EventHandler(event, callback, positional_arity(callback))
            return handler.invoke(value, context)
        return self.registry.on(event, callback)

    async def send(self, event: str, data: Any = None, seed: Optional[Mapping] = None) -> SendResult:
        return await self.registry.send(event, data, seed)

    def create(self, profile: Optional[str] = None) -> Dict[str, Any]:
        """The flat capability scope for one profile."""
        selected = resolve_profile(profile, self.profiles)
        scope: Dict[str, Any] = {
            "on": self.on,
            "send": self.send,
            "emit": self.send,
            "db": Database(self.collections),
            "env": dict(selected.env),
            "profile": selected.name,
        }
        for namespace in self.capabilities.namespaces():
            scope[SCOPE_ALIASES.get(namespace, namespace)] = self.capabilities.namespace(namespace)
        return scope


_default_factory: Optional[ScopeFactory] = None


def default_scope_factory() -> ScopeFactory:
    global _default_factory
    if _default_factory is None:
        _default_factory = ScopeFactory()
    return _default_factory


def create_execution_context(profile: Optional[str] = None,
                             factory: Optional[ScopeFactory] = None) -> Dict[str, Any]:
    """Capability scope for profile, built by factory (or the process default)."""
    return (factory or default_scope_factory()).create(profile)
