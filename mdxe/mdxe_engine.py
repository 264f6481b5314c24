"""
Fragment execution engine.

Runs one fragment at a time against a freshly assembled scope and turns
every outcome into an ExecutionResult. Nothing a fragment does escapes as an
exception: unsupported dialects, transpile failures and runtime errors all
come back as failed results.
"""
from __future__ import annotations

import asyncio
import inspect
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from mdxe.mdxe_config import applied_environment
from mdxe.mdxe_console import Console, DiagnosticEntry, capture_console
from mdxe.mdxe_errors import FragmentRuntimeError, MdxeError, UnsupportedDialect
from mdxe.mdxe_fragments import Fragment, extract_fragments
from mdxe.mdxe_logging import get_logger
from mdxe.mdxe_scope import ScopeFactory, create_execution_context
from mdxe.mdxe_transpile import (
    EXECUTABLE_DIALECTS, STATIC_DIALECTS, fragment_module, has_suspension,
    strip_types, synthesize,
)
from mdxe.mdxe_vars import VariableStore, variable_store

logger = get_logger("engine")

DEFAULT_SESSION = "default"


class FragmentState(str, Enum):
    PENDING = "pending"
    TRANSPILING = "transpiling"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class ExecutionResult:
    """The structured result of running one fragment."""
    success: bool
    result: Any = None
    error: Optional[str] = None
    duration_ms: float = 0.0
    outputs: List[DiagnosticEntry] = field(default_factory=list)
    error_type: Optional[str] = None
    state: FragmentState = FragmentState.PENDING

    def format_error(self) -> str:
        if self.success:
            return ""
        return str(self.error or "Unknown error")


@dataclass
class ExecutionOptions:
    """Per-call options; without a store the process-wide variable_store is used."""
    session_id: str = DEFAULT_SESSION
    scope_overrides: Optional[Mapping[str, Any]] = None
    profile: Optional[str] = None
    store: Optional[VariableStore] = None
    scope_factory: Optional[ScopeFactory] = None
    trusted: bool = False


class FragmentRunner:
    """
    Executes fragments against one VariableStore.

    The store is the arena for ``export_var``/``import_var``: fragments run by
    the same runner with the same session id share variables, and nothing is
    shared with other runners.
    """

    def __init__(self, store: Optional[VariableStore] = None,
                 scope_factory: Optional[ScopeFactory] = None,
                 trusted: bool = False):
        self.store = store if store is not None else VariableStore()
        self.scope_factory = scope_factory
        self.trusted = trusted

    def _transition(self, current: FragmentState, new: FragmentState) -> FragmentState:
        logger.debug("fragment %s -> %s", current.value, new.value)
        return new

    def _assemble_scope(self, session_id: str, profile: str,
                        overrides: Optional[Mapping[str, Any]],
                        console: Console) -> Tuple[Dict[str, Any], Mapping[str, str]]:
        scope = create_execution_context(profile, self.scope_factory)
        env = scope["env"]
        session = self.store.session(session_id)
        scope["export_var"] = session.export_var
        scope["import_var"] = session.import_var
        scope["has_var"] = session.has_var
        if overrides:
            scope.update(overrides)
        scope["console"] = console
        scope["print"] = console.print
        return scope, env

    async def execute_code_block(self, fragment: Fragment, *,
                                 session_id: str = DEFAULT_SESSION,
                                 scope_overrides: Optional[Mapping[str, Any]] = None,
                                 profile: Optional[str] = None) -> ExecutionResult:
        """Run one fragment and report how it went."""
        started = time.perf_counter()
        outputs: List[DiagnosticEntry] = []
        state = FragmentState.PENDING

        def finish(success: bool, **kwargs) -> ExecutionResult:
            final = self._transition(state, FragmentState.SUCCEEDED if success else FragmentState.FAILED)
            duration_ms = max(0.0, (time.perf_counter() - started) * 1000.0)
            return ExecutionResult(success=success, duration_ms=duration_ms,
                                   outputs=outputs, state=final, **kwargs)

        try:
            if fragment.dialect not in EXECUTABLE_DIALECTS:
                raise UnsupportedDialect(fragment.dialect)

            with capture_console(outputs) as console:
                scope, env = self._assemble_scope(
                    session_id, profile or fragment.profile, scope_overrides, console)

                suspending = has_suspension(fragment.source)
                source = fragment.source
                if fragment.dialect in STATIC_DIALECTS and not suspending:
                    state = self._transition(state, FragmentState.TRANSPILING)
                    source = strip_types(source)

                state = self._transition(state, FragmentState.RUNNING)
                with fragment_module(scope, trusted=self.trusted) as namespace, \
                        applied_environment(env):
                    func = synthesize(source, namespace, suspending=suspending)
                    value = func()
                    if inspect.isawaitable(value):
                        value = await value

        except (KeyboardInterrupt, asyncio.CancelledError):
            raise
        except MdxeError as exc:
            logger.warning("Fragment failed: %s", exc)
            return finish(False, error=str(exc), error_type=type(exc).__name__)
        except BaseException as exc:
            # SystemExit and GeneratorExit raised by fragment code are failures too
            failure = FragmentRuntimeError.from_exception(exc)
            logger.warning("Fragment failed: %s", failure)
            return finish(False, error=str(failure), error_type=type(failure).__name__)

        return finish(True, result=value)

    async def execute_code_blocks(self, fragments: Iterable[Fragment], *,
                                  session_id: str = DEFAULT_SESSION,
                                  scope_overrides: Optional[Mapping[str, Any]] = None,
                                  profile: Optional[str] = None) -> List[ExecutionResult]:
        """Run fragments one after another; a failure never stops the batch."""
        results = []
        for fragment in fragments:
            results.append(await self.execute_code_block(
                fragment, session_id=session_id,
                scope_overrides=scope_overrides, profile=profile,
            ))
        return results

    async def execute_mdx_code_blocks(self, text: str, *,
                                      session_id: str = DEFAULT_SESSION,
                                      scope_overrides: Optional[Mapping[str, Any]] = None,
                                      profile: Optional[str] = None) -> List[ExecutionResult]:
        """
        Extract the executable fragments of a document and run them in order.

        Test-only fragments are skipped unless the run's profile is ``test``.
        """
        fragments = [
            f for f in extract_fragments(text)
            if f.is_executable and (profile == "test" or not f.is_test_only)
        ]
        logger.debug("running %d fragment(s)", len(fragments))
        return await self.execute_code_blocks(
            fragments, session_id=session_id,
            scope_overrides=scope_overrides, profile=profile,
        )


def _runner(options: Optional[ExecutionOptions]) -> Tuple[FragmentRunner, ExecutionOptions]:
    options = options or ExecutionOptions()
    store = options.store if options.store is not None else variable_store
    return FragmentRunner(store, options.scope_factory, options.trusted), options


async def execute_code_block(fragment: Fragment,
                             options: Optional[ExecutionOptions] = None) -> ExecutionResult:
    runner, options = _runner(options)
    return await runner.execute_code_block(
        fragment, session_id=options.session_id,
        scope_overrides=options.scope_overrides, profile=options.profile,
    )


async def execute_code_blocks(fragments: Iterable[Fragment],
                              options: Optional[ExecutionOptions] = None) -> List[ExecutionResult]:
    runner, options = _runner(options)
    return await runner.execute_code_blocks(
        fragments, session_id=options.session_id,
        scope_overrides=options.scope_overrides, profile=options.profile,
    )


async def execute_mdx_code_blocks(text: str,
                                  options: Optional[ExecutionOptions] = None) -> List[ExecutionResult]:
    runner, options = _runner(options)
    return await runner.execute_mdx_code_blocks(
        text, session_id=options.session_id,
        scope_overrides=options.scope_overrides, profile=options.profile,
    )
