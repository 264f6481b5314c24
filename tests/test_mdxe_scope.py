import pytest

from mdxe.mdxe_capabilities import CapabilityRegistry, Database, Namespace
from mdxe.mdxe_config import MdxeConfig
from mdxe.mdxe_errors import ConfigurationError
from mdxe.mdxe_events import EventContext, EventRegistry
from mdxe.mdxe_http import PlaceholderGenerator
from mdxe.mdxe_scope import (
    CAPTURE_INPUT_EVENT, CAPTURE_INPUT_PROMPT, ScopeFactory, build_generator,
    create_execution_context,
)
from mdxe.mdxe_cache import CachedGenerator


def make_factory(**kwargs):
    kwargs.setdefault("registry", EventRegistry())
    kwargs.setdefault("generator", PlaceholderGenerator())
    kwargs.setdefault("config", MdxeConfig(cache_dir=None))
    return ScopeFactory(**kwargs)


def test_scope_has_the_capability_set():
    scope = make_factory().create()
    for name in ("on", "send", "emit", "ai", "db", "ai_list", "research", "extract", "env", "profile"):
        assert name in scope, name
    assert "list" not in scope
    assert isinstance(scope["ai"], Namespace)
    assert isinstance(scope["db"], Database)
    assert scope["profile"] == "default"
    assert scope["env"] == {}


def test_profiles_resolve_with_aliases_and_custom_tables():
    factory = make_factory(profiles={"default": {}, "staging": {"API": "https://staging"}})
    assert factory.create("staging")["env"] == {"API": "https://staging"}
    with pytest.raises(ConfigurationError):
        factory.create("production")

    scope = create_execution_context("prod", make_factory())
    assert scope["profile"] == "production"


def test_unknown_profile_raises():
    with pytest.raises(ConfigurationError):
        make_factory().create("nope")


def test_capture_input_runs_callback_immediately():
    prompts = []

    def provider(prompt):
        prompts.append(prompt)
        return "a marketplace for naps"

    registry = EventRegistry()
    factory = make_factory(registry=registry, input_provider=provider)
    seen = {}

    def on_idea(idea, ctx):
        seen["idea"] = idea
        seen["ctx"] = ctx
        return "captured"

    assert factory.on(CAPTURE_INPUT_EVENT, on_idea) == "captured"
    assert prompts == [CAPTURE_INPUT_PROMPT]
    assert seen["idea"] == "a marketplace for naps"
    assert isinstance(seen["ctx"], EventContext)
    assert seen["ctx"].eventType == CAPTURE_INPUT_EVENT
    assert seen["ctx"].timestamp
    # Not queued on the registry
    assert CAPTURE_INPUT_EVENT not in registry


@pytest.mark.asyncio
async def test_on_and_send_pass_through_to_registry():
    registry = EventRegistry()
    factory = make_factory(registry=registry)
    assert factory.on("ping", lambda d: d * 2) is registry
    res = await factory.send("ping", 21)
    assert res.results == [42]


def test_custom_capability_registry_is_used_as_is():
    caps = CapabilityRegistry()
    caps.register("tools", "double", lambda x: x * 2)
    scope = make_factory(capabilities=caps).create()
    assert scope["tools"].double(4) == 8
    assert "ai" not in scope


def test_build_generator_selects_placeholder_or_cached_http(tmp_path):
    assert isinstance(build_generator(MdxeConfig(cache_dir=None)), PlaceholderGenerator)
    gen = build_generator(MdxeConfig(cache_dir=str(tmp_path), ai_base_url="http://localhost:9"))
    assert isinstance(gen, CachedGenerator)
