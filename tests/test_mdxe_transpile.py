import asyncio
import sys

import pytest

from mdxe.mdxe_errors import TranspileFailure
from mdxe.mdxe_transpile import (
    build_module, fragment_module, has_suspension, restricted_builtins,
    strip_types, synthesize,
)


def namespace(scope=None, trusted=False):
    return build_module(scope or {}, trusted=trusted).__dict__


@pytest.mark.parametrize(
    "src,expected",
    [
        ("x = await fetch()", True),
        ("async def f():\n    pass", True),
        ("print('await me')", True),  # keyword test, strings included
        ("awaiting = 1", False),
        ("asynchronous = True", False),
        ("x = 1", False),
    ],
)
def test_has_suspension(src, expected):
    assert has_suspension(src) is expected


def test_strip_types_removes_annotations():
    src = (
        "x: int = 1\n"
        "y: str\n"
        "def add(a: int, b: int = 2) -> int:\n"
        "    total: int = a + b\n"
        "    return total\n"
        "f = lambda v: v\n"
    )
    out = strip_types(src)
    assert ":" not in out.splitlines()[0]
    assert "int" not in out
    assert "str" not in out
    assert "def add(a, b=2):" in out
    assert "total = a + b" in out


def test_strip_types_keeps_class_level_annotations():
    out = strip_types("class P:\n    name: str\n    age: int = 0\n    def greet(self, other: str) -> str:\n        return other\n")
    assert "name: str" in out
    assert "age: int = 0" in out
    assert "def greet(self, other):" in out
    module_globals = {}
    exec(out, module_globals)
    assert module_globals["P"].age == 0


def test_strip_types_reports_location_on_malformed_source():
    with pytest.raises(TranspileFailure) as exc:
        strip_types("x: int = (1\n")
    assert exc.value.line == 1
    assert str(exc.value).startswith("Transpile error:")


def test_strip_types_rejects_output_beyond_baseline_grammar():
    src = "match value:\n    case 1:\n        pass\n"
    with pytest.raises(TranspileFailure):
        strip_types(src)


def test_synthesize_plain_function_uses_namespace_lookup():
    ns = namespace({"base": 40})
    func = synthesize("return base + 2", ns, suspending=False)
    assert func() == 42


def test_synthesize_empty_body_returns_none():
    func = synthesize("", namespace(), suspending=False)
    assert func() is None


def test_synthesize_suspending_function_is_coroutine():
    async def fetch():
        return "data"

    ns = namespace({"fetch": fetch})
    func = synthesize("value = await fetch()\nreturn value.upper()", ns, suspending=True)
    assert asyncio.run(func()) == "DATA"


def test_synthesize_propagates_syntax_errors():
    with pytest.raises(SyntaxError):
        synthesize("def broken(:\n", namespace(), suspending=False)


def test_restricted_builtins_block_host_access():
    allowed = restricted_builtins()
    assert "open" not in allowed
    assert "eval" not in allowed
    assert "len" in allowed

    func = synthesize("import os\nreturn os.getcwd()", namespace(), suspending=False)
    with pytest.raises(ImportError):
        func()


def test_safe_modules_import_and_trusted_namespace():
    func = synthesize("import json\nreturn json.dumps([1])", namespace(), suspending=False)
    assert func() == "[1]"

    trusted = synthesize("import os\nreturn os.sep", namespace(trusted=True), suspending=False)
    assert trusted() in ("/", "\\")


DATACLASS_SRC = (
    "from dataclasses import dataclass\n"
    "@dataclass\n"
    "class Point:\n"
    "    x: int\n"
    "    y: int = 0\n"
    "return Point(1, 2).y + Point(5).y\n"
)


def test_fragment_module_supports_dataclasses():
    with fragment_module({}) as ns:
        func = synthesize(DATACLASS_SRC, ns, suspending=False)
        assert func() == 2


def test_typed_dataclass_keeps_its_fields():
    with fragment_module({}) as ns:
        func = synthesize(strip_types(DATACLASS_SRC), ns, suspending=False)
        assert func() == 2


def test_fragment_module_is_registered_only_while_open():
    with fragment_module({"answer": 42}) as ns:
        name = ns["__name__"]
        assert sys.modules[name].answer == 42
    assert name not in sys.modules
