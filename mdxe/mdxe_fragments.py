"""
Fragment extraction.

A document is Markdown (or MDX) text; every fenced code block is a fragment.
The first word of the fence info string is the dialect, the remainder is meta.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from markdown_it import MarkdownIt

from mdxe.mdxe_transpile import EXECUTABLE_DIALECTS

DOCUMENT_SUFFIXES = (".md", ".mdx")

IGNORED_DIRS = frozenset({
    "node_modules", ".git", "dist", "build", "__pycache__", ".venv", "venv",
})

_TEST_RE = re.compile(r"\btest\b")
_DEV_RE = re.compile(r"\bdev(elopment)?\b")
_PROD_RE = re.compile(r"\bprod(uction)?\b")

_md = MarkdownIt("commonmark")


@dataclass(frozen=True)
class Fragment:
    """One executable source unit of a document."""
    dialect: str
    meta: Optional[str]
    source: str

    @property
    def is_test_only(self) -> bool:
        return bool(self.meta and _TEST_RE.search(self.meta))

    @property
    def is_executable(self) -> bool:
        return self.dialect in EXECUTABLE_DIALECTS

    @property
    def profile(self) -> str:
        return profile_from_meta(self.meta)


def profile_from_meta(meta: Optional[str]) -> str:
    """Execution profile named by fence meta; 'default' when none is named."""
    if not meta:
        return "default"
    if _TEST_RE.search(meta):
        return "test"
    if _DEV_RE.search(meta):
        return "development"
    if _PROD_RE.search(meta):
        return "production"
    return "default"


def extract_fragments(text: str) -> List[Fragment]:
    """Parse text and return its fenced fragments in source order."""
    fragments: List[Fragment] = []
    for token in _md.parse(text):
        if token.type != "fence":
            continue
        info = token.info.strip()
        dialect, _, meta = info.partition(" ")
        meta = meta.strip()
        fragments.append(Fragment(dialect.lower(), meta or None, token.content))
    return fragments


def split_fragments(fragments: Iterable[Fragment]) -> Tuple[List[Fragment], List[Fragment]]:
    """Split executable fragments into (code, tests)."""
    code: List[Fragment] = []
    tests: List[Fragment] = []
    for fragment in fragments:
        if not fragment.is_executable:
            continue
        (tests if fragment.is_test_only else code).append(fragment)
    return code, tests


def find_documents(directory: str | os.PathLike, ignored: Iterable[str] = ()) -> List[Path]:
    """All .md/.mdx files under directory, skipping dependency/build/VCS folders."""
    skip = IGNORED_DIRS | set(ignored)
    found: List[Path] = []
    for base, dirs, files in os.walk(directory):
        dirs[:] = [d for d in dirs if d not in skip]
        for name in files:
            if name.lower().endswith(DOCUMENT_SUFFIXES):
                found.append(Path(base) / name)
    return sorted(found)


def read_document(path: str | os.PathLike) -> Tuple[List[Fragment], List[Fragment]]:
    """Read a document and return its executable (code, tests) fragments."""
    text = Path(path).read_text(encoding="utf-8")
    return split_fragments(extract_fragments(text))
