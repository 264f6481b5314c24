import argparse
import asyncio
import sys
from pathlib import Path
from pprint import pformat
from typing import Optional

from mdxe.mdxe_config import MdxeConfig
from mdxe.mdxe_engine import FragmentRunner
from mdxe.mdxe_logging import setup_logging
from mdxe.mdxe_watch import Watcher


def print_results(results) -> int:
    """Print diagnostics and values; return the number of failed fragments."""
    failures = 0
    for index, result in enumerate(results, 1):
        for entry in result.outputs:
            stream = sys.stderr if entry.severity in ("warn", "error") else sys.stdout
            print(entry.message, file=stream)
        if not result.success:
            failures += 1
            print(f"Fragment {index} failed: {result.format_error()}", file=sys.stderr)
        elif result.result is not None:
            print(pformat(result.result))
    return failures


async def run_document(file_path: str, runner: FragmentRunner, *,
                       session_id: str = "default", profile: Optional[str] = None) -> int:
    """Run every fragment of a document once."""
    p = Path(file_path)
    try:
        text = p.read_text(encoding="utf-8")
    except FileNotFoundError:
        print(f"Error: file not found: {file_path}", file=sys.stderr)
        raise SystemExit(1)
    results = await runner.execute_mdx_code_blocks(text, session_id=session_id, profile=profile)
    return print_results(results)


async def watch_document(file_path: str, runner: FragmentRunner, *,
                         session_id: str = "default", profile: Optional[str] = None,
                         debounce: Optional[float] = None) -> None:
    """Run a document, then run it again whenever it changes."""
    await run_document(file_path, runner, session_id=session_id, profile=profile)

    async def rerun(path):
        print(f"\n--- {path} changed, re-running {file_path} ---")
        await run_document(file_path, runner, session_id=session_id, profile=profile)

    config = MdxeConfig.from_env()
    watcher = Watcher(file_path, rerun,
                      debounce=config.watch_debounce if debounce is None else debounce)
    watcher.start()
    try:
        await asyncio.Event().wait()
    finally:
        watcher.stop()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mdxe", description="Run the Python fragments of a Markdown document.")
    parser.add_argument("file", help="Markdown (.md/.mdx) document to run")
    parser.add_argument("--watch", action="store_true", help="re-run the document when it changes")
    parser.add_argument("--profile", default=None, help="execution profile (default, development, test, production)")
    parser.add_argument("--session", default="default", help="session id for shared variables")
    parser.add_argument("--trusted", action="store_true", help="give fragments the full builtins")
    parser.add_argument("--log-level", default=None, help="log level for mdxe loggers")
    return parser


async def main(argv=None):
    """Run a document once, or keep re-running it with --watch."""
    args = build_parser().parse_args(argv)
    setup_logging(level=args.log_level)
    runner = FragmentRunner(trusted=args.trusted)

    if args.watch:
        await watch_document(args.file, runner, session_id=args.session, profile=args.profile)
        return

    failures = await run_document(args.file, runner, session_id=args.session, profile=args.profile)
    if failures:
        raise SystemExit(1)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nExiting.")
