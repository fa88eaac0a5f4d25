"""
Run/dispatch protocol.

The walker visits a book in document order and hands every node to the
executor's handler for its kind. It owns the cross-cutting rules so the
handlers do not have to:

- start_at filtering: nodes positioned before start_at are not dispatched,
  but their children are still visited (Setup blocks are never filtered)
- the dynamic/visited guard for statements synthesized at run time
- rollback: once ``context.reverse`` is set, statements are replaced by
  their ``inverse()``
- progress: after every completed static statement the position is
  recorded, in run mode only

A failing handler aborts the walk. The outcome reports the error and the
last statement position that completed.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from runbook.base.context import ExecutionContext
from runbook.base.position import compute_positions, parse_position, position_before
from runbook.errors import ErrorCode, ExecutionCancelled, RunbookError, StatementFailure, handle_error
from runbook.engine.executor import Executor

logger = logging.getLogger(__name__)

ROLLBACK_WARNING = "Rolling back: remaining statements run in reverse"

ProgressCallback = Callable[[str, ExecutionContext], None]


class Disposition(Enum):
    CONTINUE = "continue"
    SKIP = "skip"


@dataclass
class WalkOutcome:
    success: bool
    last_position: Optional[str] = None
    error: Optional[RunbookError] = None

    @property
    def failed_position(self) -> Optional[str]:
        if self.error is None:
            return None
        return self.error.details.get("position")


class Walker:
    def __init__(self, executor: Executor, on_progress: Optional[ProgressCallback] = None):
        self.executor = executor
        self.on_progress = on_progress
        self.positions: Dict[int, str] = {}
        self.last_position: Optional[str] = None
        executor.bind(self)

    async def walk(self, book, context: ExecutionContext) -> WalkOutcome:
        # Malformed start_at is a validation error, raised before anything runs
        parse_position(context.start_at or "")
        self.positions = compute_positions(book)
        self.last_position = None
        if not context.book_title:
            context.book_title = book.title or ""

        logger.info(f"[Walker] {self.executor.mode} {book.title!r} start_at={context.start_at!r}")
        try:
            await self._visit_entity(book, context, in_setup=False)
        except ExecutionCancelled as exc:
            logger.warning(f"[Walker] Cancelled after {self.last_position!r}")
            return WalkOutcome(False, self.last_position, exc)
        except RunbookError as exc:
            logger.error(f"[Walker] Aborted: {exc}")
            return WalkOutcome(False, self.last_position, exc)
        return WalkOutcome(True, self.last_position)

    def position_of(self, node) -> str:
        return self.positions.get(id(node), "")

    async def _visit_entity(self, node, context: ExecutionContext, in_setup: bool) -> None:
        in_setup = in_setup or node.kind == "setup"
        skipped = not in_setup and position_before(context.position, context.start_at)

        if not skipped:
            disposition = await self._invoke(node, context)
            if disposition is Disposition.SKIP:
                logger.info(f"[Walker] Skipping {node.kind} {context.position!r}")
                return

        for index, child in enumerate(node.items):
            child_context = context.derive(
                depth=context.depth + 1,
                index=index,
                parent=node,
                position=self.position_of(child),
            )
            if not child.is_statement:
                await self._visit_entity(child, child_context, in_setup)
            elif in_setup or not position_before(child_context.position, context.start_at):
                await self.dispatch_statement(child, child_context, record=not in_setup)

    async def dispatch_statement(self, statement, context: ExecutionContext, record: bool = True) -> None:
        """
        Run one statement through the guard, rollback and progress rules.

        Handlers call this for statements they produce at run time
        (Condition branches, Assert abort statements). Setup statements run
        with record=False: they repeat on every resume and never move the pose.
        """
        if statement.dynamic and statement.visited:
            logger.debug(f"[Walker] {statement!r} already ran, skipping")
            return
        if context.cancel.is_set():
            raise ExecutionCancelled(details={"position": context.position})

        target = statement
        if context.reverse:
            if not context.reversed:
                context.reversed.set()
                self.executor.warn(context, ROLLBACK_WARNING)
            target = statement.inverse()
            if target is None:
                self.executor.output(context, f"Nothing to undo for {statement.kind}, skipping")
            elif target is not statement:
                target.parent = statement.parent
                target.dynamic = statement.dynamic

        if target is not None:
            await self._invoke(target, context)

        statement.mark_visited()
        if record and not statement.dynamic:
            self.last_position = context.position
            if self.on_progress is not None and self.executor.persists_progress and not context.noop:
                self.on_progress(context.position, context)

    async def _invoke(self, node, context: ExecutionContext) -> Any:
        handler = self.executor.handler_for(node.kind)
        if handler is None:
            self.executor.warn(context, f"No {self.executor.mode} handler for {node.kind}, skipping")
            return None

        try:
            result = handler(node, context)
            if inspect.isawaitable(result):
                result = await result
        except RunbookError as exc:
            exc.details.setdefault("position", context.position)
            raise
        except asyncio.CancelledError:
            raise ExecutionCancelled(details={"position": context.position})
        except Exception as exc:
            error = handle_error(exc, context=f"{node.kind} at {context.position or 'book'}")
            error.details["position"] = context.position
            raise error from exc

        if result is False:
            raise StatementFailure(
                ErrorCode.STMT_FAILED,
                f"{node.kind} at {context.position} reported failure",
                details={"position": context.position},
            )
        return result
