"""
Capability namespaces exposed to fragments.

Capabilities live in an explicit registry (namespace -> name -> handler). A
Namespace object answers attribute access and calls only for registered
names, so ``ai.lean_canvas(...)`` works because ``lean_canvas`` was
registered, not because any attribute is accepted.
"""
from __future__ import annotations

import collections.abc
import re
import uuid
from typing import Any, Callable, Dict, List, Optional, Protocol

import pystache

from mdxe.mdxe_errors import CapabilityNotFound
from mdxe.mdxe_http import Generator
from mdxe.mdxe_serialize import deserialize, serialize, strip_code_fence

CALL = "__call__"

PROMPT_TEMPLATE = (
    "{{#capability}}Task: {{capability}}\n\n{{/capability}}"
    "{{prompt}}"
    "{{#params}}\n\nParameters:\n{{params}}{{/params}}"
    "{{#instructions}}\n\n{{instructions}}{{/instructions}}"
)

_renderer = pystache.Renderer(escape=lambda u: u)

_BULLET_RE = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+")


def render_prompt(capability: Optional[str], prompt: str = "",
                  params: Optional[Dict[str, Any]] = None,
                  instructions: Optional[str] = None) -> str:
    """Serialize a capability call into prompt text."""
    return _renderer.render(PROMPT_TEMPLATE, {
        "capability": capability or "",
        "prompt": prompt,
        "params": serialize(params, fmt="yaml").rstrip() if params else "",
        "instructions": instructions or "",
    })


def parse_lines(text: str) -> List[str]:
    """One item per non-empty line, with bullets and numbering removed."""
    items = []
    for line in strip_code_fence(text).splitlines():
        item = _BULLET_RE.sub("", line).strip()
        if item:
            items.append(item)
    return items


def parse_object(text: str) -> Dict[str, Any]:
    value = deserialize(strip_code_fence(text))
    if isinstance(value, collections.abc.Mapping):
        return dict(value)
    return {"text": text}


class CapabilityRegistry:
    def __init__(self):
        self._handlers: Dict[str, Dict[str, Callable[..., Any]]] = {}

    def register(self, namespace: str, name: str, handler: Callable[..., Any]) -> Callable[..., Any]:
        if not callable(handler):
            raise TypeError(f"capability {namespace}.{name} must be callable")
        self._handlers.setdefault(namespace, {})[name] = handler
        return handler

    def capability(self, namespace: str, name: Optional[str] = None):
        """Decorator form of register()."""
        def decorate(func):
            return self.register(namespace, name or func.__name__, func)
        return decorate

    def resolve(self, namespace: str, name: str) -> Callable[..., Any]:
        try:
            return self._handlers[namespace][name]
        except KeyError:
            raise CapabilityNotFound(namespace, name) from None

    def names(self, namespace: str) -> List[str]:
        return [n for n in self._handlers.get(namespace, {}) if n != CALL]

    def namespaces(self) -> List[str]:
        return list(self._handlers)

    def namespace(self, namespace: str) -> 'Namespace':
        return Namespace(self, namespace)


class Namespace:
    """A fragment-facing view of one registry namespace."""
    __slots__ = ("_registry", "_namespace")

    def __init__(self, registry: CapabilityRegistry, namespace: str):
        self._registry = registry
        self._namespace = namespace

    def __getattr__(self, name: str):
        if name.startswith("__"):
            raise AttributeError(name)
        return self._registry.resolve(self._namespace, name)

    def __call__(self, *args, **kwargs):
        return self._registry.resolve(self._namespace, CALL)(*args, **kwargs)

    def __dir__(self):
        return self._registry.names(self._namespace)

    def __repr__(self):
        return f"<capabilities {self._namespace}: {', '.join(self._registry.names(self._namespace))}>"


class GenerationCapabilities:
    """Default handlers for ai/list/research/extract, backed by a Generator."""

    STRUCTURED = ("lean_canvas", "story_brand", "landing_page")

    def __init__(self, generator: Generator, model: Optional[str] = None):
        self.generator = generator
        self.model = model

    async def _text(self, prompt: str, model: Optional[str] = None) -> str:
        result = await self.generator.generate(prompt, model or self.model)
        return result.text

    async def ai(self, prompt: str, **params) -> str:
        return await self._text(render_prompt(None, prompt, params))

    async def generate(self, prompt: str, model: Optional[str] = None) -> str:
        return await self._text(prompt, model)

    def structured(self, capability: str) -> Callable[..., Any]:
        async def call(prompt: str = "", **params) -> Dict[str, Any]:
            result = await self.generator.generate(
                render_prompt(capability, prompt, params,
                              "Respond with a single JSON object."),
                self.model,
            )
            if isinstance(result.object, collections.abc.Mapping):
                return dict(result.object)
            return parse_object(result.text)
        call.__name__ = capability
        return call

    async def list(self, prompt: str, **params) -> List[str]:
        text = await self._text(render_prompt(
            "list", prompt, params, "Respond with one item per line."))
        return parse_lines(text)

    async def research(self, prompt: str, **params) -> str:
        return await self._text(render_prompt("research", prompt, params))

    async def extract(self, prompt: str, source: Any = None, **params) -> List[str]:
        if source is not None:
            params = {"source": source, **params}
        text = await self._text(render_prompt(
            "extract", prompt, params, "Respond with one extracted item per line."))
        return parse_lines(text)

    def install(self, registry: CapabilityRegistry) -> CapabilityRegistry:
        registry.register("ai", CALL, self.ai)
        registry.register("ai", "generate", self.generate)
        for name in self.STRUCTURED:
            registry.register("ai", name, self.structured(name))
        registry.register("list", CALL, self.list)
        registry.register("research", CALL, self.research)
        registry.register("extract", CALL, self.extract)
        registry.register("ai", "list", self.list)
        registry.register("ai", "research", self.research)
        registry.register("ai", "extract", self.extract)
        return registry


# --- Storage ---

class CollectionStore(Protocol):
    def get(self, id: str, collection: str) -> Optional[Dict[str, Any]]: ...
    def list(self, collection: str) -> List[Dict[str, Any]]: ...
    def set(self, id: str, document: Dict[str, Any], collection: str) -> None: ...
    def delete(self, id: str, collection: str) -> bool: ...


class MemoryCollectionStore:
    """In-process CollectionStore; documents are {id, frontmatter, body}."""

    def __init__(self):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}

    def get(self, id: str, collection: str) -> Optional[Dict[str, Any]]:
        doc = self._collections.get(collection, {}).get(id)
        return dict(doc) if doc is not None else None

    def list(self, collection: str) -> List[Dict[str, Any]]:
        return [dict(doc) for doc in self._collections.get(collection, {}).values()]

    def set(self, id: str, document: Dict[str, Any], collection: str) -> None:
        self._collections.setdefault(collection, {})[id] = {
            "id": id,
            "frontmatter": dict(document.get("frontmatter") or {}),
            "body": document.get("body", ""),
        }

    def delete(self, id: str, collection: str) -> bool:
        return self._collections.get(collection, {}).pop(id, None) is not None


class Collection:
    def __init__(self, store: CollectionStore, name: str):
        self.store = store
        self.name = name

    def get(self, id: str) -> Optional[Dict[str, Any]]:
        return self.store.get(id, self.name)

    def list(self) -> List[Dict[str, Any]]:
        return self.store.list(self.name)

    def set(self, id: str, frontmatter: Optional[Dict[str, Any]] = None, body: str = "") -> Dict[str, Any]:
        self.store.set(id, {"frontmatter": frontmatter or {}, "body": body}, self.name)
        return {"id": id, "frontmatter": frontmatter or {}, "body": body}

    def delete(self, id: str) -> bool:
        return self.store.delete(id, self.name)

    def create(self, title: str, content: str = "", **frontmatter) -> Dict[str, Any]:
        doc_id = frontmatter.pop("id", None) or uuid.uuid4().hex
        return self.set(doc_id, {"title": title, **frontmatter}, content)

    def find(self, **query) -> List[Dict[str, Any]]:
        """Documents whose frontmatter matches every query item."""
        return [
            doc for doc in self.list()
            if all(doc["frontmatter"].get(k) == v for k, v in query.items())
        ]

    def __repr__(self):
        return f"<collection {self.name}>"


class Database:
    """``db.<collection>`` access to a CollectionStore."""

    def __init__(self, store: CollectionStore):
        self._store = store

    def collection(self, name: str) -> Collection:
        return Collection(self._store, name)

    def __getattr__(self, name: str) -> Collection:
        if name.startswith("_"):
            raise AttributeError(name)
        return self.collection(name)
