import pytest

from mdxe.mdxe_capabilities import (
    CapabilityRegistry, Database, GenerationCapabilities, MemoryCollectionStore,
    parse_lines, parse_object, render_prompt,
)
from mdxe.mdxe_errors import CapabilityNotFound
from mdxe.mdxe_http import GenerationResult, PlaceholderGenerator


class ScriptedGenerator:
    def __init__(self, text, obj=None):
        self.text = text
        self.obj = obj
        self.prompts = []

    async def generate(self, prompt, model=None):
        self.prompts.append(prompt)
        return GenerationResult(text=self.text, object=self.obj, model=model)


def installed(generator):
    return GenerationCapabilities(generator).install(CapabilityRegistry())


def test_render_prompt_includes_params_as_yaml():
    text = render_prompt("list", "name ideas", {"count": 3}, "One per line.")
    assert text.startswith("Task: list\n\nname ideas")
    assert "count: 3" in text
    assert text.endswith("One per line.")
    assert render_prompt(None, "plain") == "plain"


def test_parse_lines_strips_bullets_and_numbers():
    text = "- alpha\n* beta\n\n1. gamma\n2) delta\n"
    assert parse_lines(text) == ["alpha", "beta", "gamma", "delta"]


def test_parse_object_accepts_json_yaml_or_falls_back():
    assert parse_object('```json\n{"a": 1}\n```') == {"a": 1}
    assert parse_object("problem: slow\nsolution: fast\n") == {"problem": "slow", "solution": "fast"}
    assert parse_object("just words") == {"text": "just words"}


@pytest.mark.asyncio
async def test_ai_namespace_call_and_generate():
    ai = installed(PlaceholderGenerator()).namespace("ai")
    assert await ai("hello") == "Generated content for: hello"
    assert await ai.generate("raw prompt") == "Generated content for: raw prompt"


@pytest.mark.asyncio
async def test_structured_capability_parses_json():
    gen = ScriptedGenerator('{"problem": "p", "solution": "s"}')
    ai = installed(gen).namespace("ai")
    canvas = await ai.lean_canvas(idea="naps")
    assert canvas == {"problem": "p", "solution": "s"}
    assert "Task: lean_canvas" in gen.prompts[0]
    assert "idea: naps" in gen.prompts[0]


@pytest.mark.asyncio
async def test_structured_capability_prefers_result_object():
    gen = ScriptedGenerator("ignored", obj={"hero": "x"})
    story = await installed(gen).namespace("ai").story_brand()
    assert story == {"hero": "x"}


@pytest.mark.asyncio
async def test_list_research_and_extract():
    gen = ScriptedGenerator("1. one\n2. two")
    caps = installed(gen)
    assert await caps.namespace("list")("numbers") == ["one", "two"]
    assert await caps.namespace("ai").list("numbers") == ["one", "two"]
    assert await caps.namespace("research")("topic") == "1. one\n2. two"
    assert await caps.namespace("extract")("numbers", source="one two") == ["one", "two"]
    assert "source: one two" in gen.prompts[-1]


def test_unknown_capability_raises_attribute_error():
    ai = installed(PlaceholderGenerator()).namespace("ai")
    with pytest.raises(CapabilityNotFound):
        ai.teleport
    with pytest.raises(AttributeError):
        ai.teleport
    assert "lean_canvas" in dir(ai)


def test_registry_decorator_and_namespaces():
    registry = CapabilityRegistry()

    @registry.capability("math")
    def square(x):
        return x * x

    assert registry.namespace("math").square(3) == 9
    assert registry.namespaces() == ["math"]
    with pytest.raises(CapabilityNotFound):
        registry.namespace("math")(1)
    with pytest.raises(TypeError):
        registry.register("math", "bad", 42)


def test_database_collections():
    db = Database(MemoryCollectionStore())
    created = db.posts.create("Hello", "body text", tag="intro")
    assert created["frontmatter"] == {"title": "Hello", "tag": "intro"}

    doc_id = created["id"]
    assert db.posts.get(doc_id)["body"] == "body text"
    assert db.collection("posts").find(tag="intro")[0]["id"] == doc_id
    assert db.posts.find(tag="other") == []
    assert db.other.list() == []

    db.posts.set("fixed", {"title": "Fixed"}, "b")
    assert {d["id"] for d in db.posts.list()} == {doc_id, "fixed"}
    assert db.posts.delete("fixed") is True
    assert db.posts.delete("fixed") is False
    assert db.posts.get("fixed") is None
