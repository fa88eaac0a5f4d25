"""
High level entry point: one view or one execution of a book.

The runner owns the resume store lifecycle around a walk:

- a fresh run clears the stored pose and repo, then snapshots the book
- a resumed run (start_at given) restores the captured variables and warns
  when the book changed since the snapshot
- every completed statement updates the stored pose
- a successful run removes the stored pose
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from runbook.base.config import RunbookConfig, get_config
from runbook.base.context import ExecutionContext
from runbook.base.position import compute_positions, next_position
from runbook.engine.run import RunExecutor
from runbook.engine.view import ViewExecutor
from runbook.engine.walker import WalkOutcome, Walker
from runbook.layout.engine import LayoutEngine
from runbook.persistence.store import Repo, StoredPose
from runbook.remote.dispatch import RemoteDispatcher
from runbook.toolbox import ConsoleToolbox, Toolbox

logger = logging.getLogger(__name__)


class Runner:
    def __init__(
        self,
        book,
        toolbox: Optional[Toolbox] = None,
        config: Optional[RunbookConfig] = None,
        dispatcher: Optional[RemoteDispatcher] = None,
        layout_engine: Optional[LayoutEngine] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.book = book
        self.toolbox = toolbox or ConsoleToolbox()
        self.config = config or get_config()
        self.dispatcher = dispatcher
        self.layout_engine = layout_engine
        self._sleep = sleep
        storage = self.config.storage
        self.pose = StoredPose(storage.state_dir, prefix=storage.pose_prefix)
        self.repo = Repo(storage.state_dir, prefix=storage.repo_prefix)
        self.cancel = asyncio.Event()
        self._saved_vars: Dict[str, Any] = {}

    @property
    def title(self) -> str:
        return self.book.title

    def stored_position(self) -> Optional[str]:
        """Position of the last completed statement of an interrupted run."""
        return self.pose.load(self.title)

    def resume_position(self) -> Optional[str]:
        """Where a resumed run should start, or None when nothing is pending."""
        pose = self.stored_position()
        if pose is None:
            return None
        positions = compute_positions(self.book).values()
        return next_position(positions, pose)

    def _context(self, noop: bool, auto: bool, paranoid: Optional[bool],
                 start_at: Optional[str]) -> ExecutionContext:
        return ExecutionContext(
            toolbox=self.toolbox,
            noop=noop,
            auto=auto,
            paranoid=self.config.paranoid if paranoid is None else paranoid,
            start_at=start_at,
            book_title=self.title,
            cancel=self.cancel,
        )

    async def view(self) -> WalkOutcome:
        walker = Walker(ViewExecutor(self.config))
        return await walker.walk(self.book, self._context(noop=True, auto=True, paranoid=False, start_at=None))

    async def run(self, noop: bool = False, auto: bool = False, paranoid: Optional[bool] = None,
                  start_at: Optional[str] = None) -> WalkOutcome:
        context = self._context(noop, auto, paranoid, start_at)
        executor = RunExecutor(self.config, dispatcher=self.dispatcher,
                               layout_engine=self.layout_engine, sleep=self._sleep)
        walker = Walker(executor, on_progress=self._record_progress)

        if not noop:
            if start_at:
                self._restore(context)
            else:
                self._start_fresh(context)

        outcome = await walker.walk(self.book, context)

        if outcome.success:
            if not noop:
                self.pose.delete(self.title)
            self.toolbox.output(f"\n{'Run' if not noop else 'Noop run'} of {self.title} complete")
            self._offer_pane_cleanup(executor, context)
        else:
            logger.error(f"[Runner] {self.title} stopped: {outcome.error}")
        return outcome

    def _start_fresh(self, context: ExecutionContext) -> None:
        self.pose.delete(self.title)
        self.repo.delete(self.title)
        self._saved_vars = dict(context.vars)
        self.repo.save(self.title, self.book.to_dict(), self.book.digest(), context.vars)

    def _restore(self, context: ExecutionContext) -> None:
        record = self.repo.load(self.title)
        if record is None:
            self.repo.save(self.title, self.book.to_dict(), self.book.digest(), context.vars)
            return
        if record.digest != self.book.digest():
            self.toolbox.warn(f"{self.title} changed since the interrupted run; positions may have moved")
        context.vars.update(record.vars)
        self._saved_vars = dict(record.vars)
        logger.info(f"[Runner] Resuming {self.title} at {context.start_at} with {len(record.vars)} vars")

    def _record_progress(self, position: str, context: ExecutionContext) -> None:
        self.pose.save(self.title, position)
        if context.vars != self._saved_vars:
            self._saved_vars = dict(context.vars)
            self.repo.save(self.title, self.book.to_dict(), self.book.digest(), context.vars)

    def _offer_pane_cleanup(self, executor: RunExecutor, context: ExecutionContext) -> None:
        if context.noop or context.auto or not context.layout_panes:
            return
        if self.toolbox.confirm("Kill all layout panes?"):
            executor.layout_engine.kill_panes(context.layout_panes)
