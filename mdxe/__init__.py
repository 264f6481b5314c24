"""mdxe: run the fenced Python fragments of Markdown documents as one program."""

__version__ = "0.1.0"
