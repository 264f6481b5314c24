"""
From fragment source to a callable.

Typed fragments are type-stripped with an ``ast`` pass and checked against a
baseline grammar. The fragment body is then grafted into a function named
``__fragment__`` (``async def`` when the source suspends), compiled, and
executed against the capability namespace, so free names in the fragment
resolve by lookup in that mapping.
"""
from __future__ import annotations

import ast
import builtins
import re
import sys
import types
import uuid
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, Mapping, Optional

from mdxe.mdxe_errors import TranspileFailure

STATIC_DIALECTS = ("typed-python", "typed-py")
DYNAMIC_DIALECTS = ("python", "py")
EXECUTABLE_DIALECTS = frozenset(STATIC_DIALECTS + DYNAMIC_DIALECTS)

# Oldest grammar type-stripped output must still parse under
TRANSPILE_TARGET = (3, 9)

FRAGMENT_NAME = "__fragment__"
FRAGMENT_MODULE_PREFIX = "mdxe_fragment_"

_SUSPENSION_RE = re.compile(r"\b(?:await|async)\b")

BLOCKED_BUILTINS = frozenset({
    "open", "exec", "eval", "compile", "input", "breakpoint",
    "exit", "quit", "help", "globals", "locals", "vars",
    "__import__", "__loader__", "__spec__",
})

SAFE_MODULES = frozenset({
    "json", "math", "re", "datetime", "asyncio", "random", "itertools",
    "functools", "collections", "statistics", "string", "textwrap", "time",
    "uuid", "decimal", "fractions", "typing", "dataclasses", "enum",
})


def has_suspension(source: str) -> bool:
    """
    True when the source mentions ``await`` or ``async`` as a whole word.

    This is a keyword test over the raw text: a mention inside a string or a
    comment also counts, and such a fragment simply runs as a coroutine.
    """
    return bool(_SUSPENSION_RE.search(source))


class _TypeStripper(ast.NodeTransformer):
    """
    Removes annotations, type aliases and type parameters.

    Annotations directly in a class body are kept: they define fields at runtime.
    """

    def visit_AnnAssign(self, node: ast.AnnAssign):
        if node.value is None:
            return ast.copy_location(ast.Pass(), node)
        return ast.copy_location(ast.Assign(targets=[node.target], value=node.value), node)

    def visit_arg(self, node: ast.arg):
        node.annotation = None
        return node

    def _strip_def(self, node):
        node.returns = None
        if hasattr(node, "type_params"):
            node.type_params = []
        self.generic_visit(node)
        return node

    visit_FunctionDef = _strip_def
    visit_AsyncFunctionDef = _strip_def

    def visit_ClassDef(self, node: ast.ClassDef):
        if hasattr(node, "type_params"):
            node.type_params = []
        # Class-level annotations declare fields (dataclass, NamedTuple, TypedDict)
        node.body = [
            stmt if isinstance(stmt, ast.AnnAssign) else self.visit(stmt)
            for stmt in node.body
        ]
        return node

    def visit_TypeAlias(self, node):
        return ast.copy_location(ast.Pass(), node)


def strip_types(source: str, filename: str = "<fragment>") -> str:
    """
    Return source with its type syntax removed.

    Raises TranspileFailure when the source does not parse, or when the
    stripped output falls outside TRANSPILE_TARGET's grammar.
    """
    try:
        tree = ast.parse(source, filename=filename)
    except SyntaxError as exc:
        raise TranspileFailure(exc.msg, exc.lineno, exc.offset) from exc
    tree = ast.fix_missing_locations(_TypeStripper().visit(tree))
    output = ast.unparse(tree)
    try:
        ast.parse(output, filename=filename, feature_version=TRANSPILE_TARGET)
    except SyntaxError as exc:
        target = ".".join(str(part) for part in TRANSPILE_TARGET)
        raise TranspileFailure(f"{exc.msg} (not valid Python {target})", exc.lineno, exc.offset) from exc
    return output


def _guarded_import(name, globals=None, locals=None, fromlist=(), level=0):
    if level != 0 or name.partition(".")[0] not in SAFE_MODULES:
        raise ImportError(f"import of {name!r} is not allowed in fragments")
    return builtins.__import__(name, globals, locals, fromlist, level)


def restricted_builtins() -> Dict[str, Any]:
    """The builtins an untrusted fragment sees."""
    allowed = {k: v for k, v in vars(builtins).items() if k not in BLOCKED_BUILTINS}
    allowed["__import__"] = _guarded_import
    return allowed


def build_module(scope: Mapping[str, Any], *, trusted: bool = False) -> types.ModuleType:
    """A fresh module whose globals are the scope plus the fragment builtins."""
    module = types.ModuleType(f"{FRAGMENT_MODULE_PREFIX}{uuid.uuid4().hex}")
    module.__dict__.update(scope)
    module.__builtins__ = dict(vars(builtins)) if trusted else restricted_builtins()
    return module


@contextmanager
def fragment_module(scope: Mapping[str, Any], *, trusted: bool = False) -> Iterator[Dict[str, Any]]:
    """
    Namespace for one fragment run, registered in sys.modules while it lasts.

    Classes defined by the fragment get the module as ``__module__``, so code
    that resolves a class through sys.modules (dataclasses, typing) works.
    """
    module = build_module(scope, trusted=trusted)
    sys.modules[module.__name__] = module
    try:
        yield module.__dict__
    finally:
        sys.modules.pop(module.__name__, None)


_TEMPLATES = {
    False: "def __fragment__():\n    pass\n",
    True: "async def __fragment__():\n    pass\n",
}


def synthesize(source: str, namespace: Dict[str, Any], *, suspending: bool,
               filename: Optional[str] = None) -> Callable[[], Any]:
    """
    Compile source as the body of a zero-argument function bound to namespace.

    A ``return`` in the fragment supplies the callable's value. SyntaxError
    propagates to the caller.
    """
    filename = filename or "<fragment>"
    body = ast.parse(source, filename=filename).body
    module = ast.parse(_TEMPLATES[suspending], filename=filename)
    module.body[0].body = body or [ast.Pass()]
    code = compile(ast.fix_missing_locations(module), filename, "exec")
    exec(code, namespace)
    return namespace.pop(FRAGMENT_NAME)
