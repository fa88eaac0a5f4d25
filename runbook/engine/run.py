"""
Run mode: execute statements.

In noop mode every statement only describes what it would do. Interactive
statements (Ask, Confirm, paranoid step prompts) answer themselves in auto
mode.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
from typing import Any, Awaitable, Callable, List, Optional

from runbook.base.config import RunbookConfig
from runbook.base.context import ExecutionContext
from runbook.engine.executor import Executor
from runbook.engine.retry import retry_until_success
from runbook.engine.walker import Disposition
from runbook.errors import ErrorCode, ExecutionCancelled, StatementFailure
from runbook.layout.engine import LayoutEngine
from runbook.remote.dispatch import RemoteDispatcher
from runbook.remote.ssh_config import SSHConfig, merge_ssh_configs
from runbook.remote.transport import CommandResult, SSHTransport, TransportRouter

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


class RunExecutor(Executor):
    mode = "run"
    persists_progress = True

    def __init__(self, config: Optional[RunbookConfig] = None,
                 dispatcher: Optional[RemoteDispatcher] = None,
                 layout_engine: Optional[LayoutEngine] = None,
                 sleep: Sleep = asyncio.sleep):
        super().__init__(config)
        ssh = self.config.ssh
        self._sleep = sleep
        self.dispatcher = dispatcher or RemoteDispatcher(
            TransportRouter(remote=SSHTransport(ssh.ssh_executable, ssh.scp_executable, ssh.ssh_options)),
            sleep=sleep,
        )
        self._layout_engine = layout_engine

    @property
    def layout_engine(self) -> LayoutEngine:
        # Created on first use: books without layouts never need tmux
        if self._layout_engine is None:
            from runbook.layout.tmux import TmuxHelper
            self._layout_engine = LayoutEngine(TmuxHelper(state_dir=str(self.config.storage.state_dir)))
        return self._layout_engine

    def ssh_config_for(self, statement) -> SSHConfig:
        """Global default, then book, sections and step, then the statement itself."""
        chain: List[Any] = []
        node = statement.parent
        while node is not None:
            chain.append(getattr(node, "ssh_config", None))
            node = node.parent
        fragments = [self.config.ssh.as_ssh_config(), *reversed(chain), statement.ssh_config]
        return merge_ssh_configs(fragments)

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------

    async def handle_book(self, book, context: ExecutionContext) -> None:
        self.output(context, f"Executing {book.title}...\n")

    async def handle_section(self, section, context: ExecutionContext) -> None:
        self.output(context, f"Section {context.position}: {section.title}\n")

    async def handle_setup(self, setup, context: ExecutionContext) -> None:
        self.output(context, "Setup:\n")

    async def handle_step(self, step, context: ExecutionContext) -> Optional[Disposition]:
        title = f": {step.title}" if step.title else ""
        self.output(context, f"Step {context.position}{title}\n")
        if context.noop or context.auto or not context.paranoid:
            return None
        if not context.toolbox.confirm("Continue?"):
            self.output(context, f"Skipping step {context.position}")
            return Disposition.SKIP
        return None

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    async def handle_ask(self, stmt, context: ExecutionContext) -> None:
        if context.noop:
            default = f" (default: {stmt.default})" if stmt.default is not None else ""
            self.output(context, f"[NOOP] Ask: {stmt.prompt} (store in: {stmt.into}){default}")
            return
        if context.auto:
            if stmt.default is None:
                raise StatementFailure(
                    ErrorCode.STMT_ASK_UNANSWERED,
                    f"Cannot answer {stmt.prompt!r} in auto mode: no default",
                    details={"into": stmt.into},
                )
            context.vars[stmt.into] = stmt.default
            return
        context.vars[stmt.into] = context.toolbox.ask(stmt.prompt, default=stmt.default, echo=stmt.echo)

    async def handle_assert(self, stmt, context: ExecutionContext) -> None:
        config = self.ssh_config_for(stmt)
        if context.noop:
            self.output(
                context,
                f"[NOOP] Assert: `{stmt.display_cmd()}` returns 0 on {', '.join(config.servers)}"
                f" (attempts: {stmt.attempts or 'unlimited'}, interval: {stmt.interval}s)",
            )
            if stmt.abort_statement is not None:
                self.output(context, f"[NOOP] On failure run: {stmt.abort_statement!r}")
            return

        async def attempt() -> None:
            await self.dispatcher.run_command(stmt.resolve_cmd(context), config, context.cancel, raw=stmt.raw)

        passed = await retry_until_success(
            attempt,
            attempts=stmt.attempts,
            interval=stmt.interval,
            timeout=stmt.timeout,
            sleep=self._sleep,
            label=f"assert {context.position}",
        )
        if passed:
            return

        if stmt.abort_statement is not None:
            self.warn(context, f"Assertion `{stmt.display_cmd()}` failed, running abort statement")
            abort = stmt.abort_statement.instantiate(stmt.parent)
            await self.walker.dispatch_statement(abort, context)
            return

        raise StatementFailure(
            ErrorCode.STMT_ASSERT_EXHAUSTED,
            f"Assertion failed: `{stmt.display_cmd()}` after {stmt.attempts} attempts",
            details={"attempts": stmt.attempts},
        )

    async def handle_capture(self, stmt, context: ExecutionContext) -> None:
        config = self.ssh_config_for(stmt)
        if context.noop:
            self.output(context, f"[NOOP] Capture: `{stmt.display_cmd()}` from {config.servers[0]}"
                                 f" into {stmt.into}")
            return
        results = await self.dispatcher.run_command(
            stmt.resolve_cmd(context), config, context.cancel, raw=stmt.raw, servers=config.servers[:1],
        )
        context.vars[stmt.into] = self._captured(results[0], stmt.strip)

    async def handle_capture_all(self, stmt, context: ExecutionContext) -> None:
        config = self.ssh_config_for(stmt)
        if context.noop:
            self.output(context, f"[NOOP] Capture: `{stmt.display_cmd()}` from {', '.join(config.servers)}"
                                 f" into {stmt.into}")
            return
        results = await self.dispatcher.run_command(stmt.resolve_cmd(context), config, context.cancel,
                                                    raw=stmt.raw)
        context.vars[stmt.into] = {result.host: self._captured(result, stmt.strip) for result in results}

    @staticmethod
    def _captured(result: CommandResult, strip: bool) -> str:
        return result.stdout.strip() if strip else result.stdout

    async def handle_command(self, stmt, context: ExecutionContext) -> None:
        config = self.ssh_config_for(stmt)
        if context.noop:
            self.output(context, f"[NOOP] Run: `{stmt.display_cmd()}` on {', '.join(config.servers)}")
            return
        cmd = stmt.resolve_cmd(context)

        def show(result: CommandResult) -> None:
            text = result.stdout.rstrip("\n")
            if text:
                prefix = f"[{result.host}] " if len(config.servers) > 1 else ""
                for line in text.splitlines():
                    self.output(context, f"{prefix}{line}")

        await self.dispatcher.run_command(cmd, config, context.cancel, raw=stmt.raw, on_result=show)

    async def handle_condition(self, stmt, context: ExecutionContext) -> None:
        if context.noop:
            self.output(context, f"[NOOP] Condition: {stmt.fields()['predicate']}")
            return
        try:
            chosen = bool(stmt.predicate(context))
        except Exception as exc:
            # A raising predicate selects the else branch
            logger.warning(f"[Run] Condition predicate raised {type(exc).__name__}: {exc}")
            chosen = False
        for branch_stmt in stmt.branch_statements(chosen, context):
            await self.walker.dispatch_statement(branch_stmt, context)

    async def handle_confirm(self, stmt, context: ExecutionContext) -> None:
        if context.noop:
            self.output(context, f"[NOOP] Prompt: {stmt.prompt}")
            return
        if context.auto:
            self.output(context, f"Skipping confirmation (auto): {stmt.prompt}")
            return
        if not context.toolbox.confirm(stmt.prompt):
            raise StatementFailure(
                ErrorCode.STMT_CONFIRM_DECLINED,
                f"Declined: {stmt.prompt}",
            )

    async def handle_description(self, stmt, context: ExecutionContext) -> None:
        self.output(context, f"Description:\n{stmt.msg}\n")

    async def handle_download(self, stmt, context: ExecutionContext) -> None:
        config = self.ssh_config_for(stmt)
        target = stmt.to or os.path.basename(stmt.from_.rstrip("/"))
        if context.noop:
            self.output(context, f"[NOOP] Download: {stmt.from_} to {target} from {', '.join(config.servers)}")
            return
        await self.dispatcher.download(stmt.from_, target, config, context.cancel)

    async def handle_upload(self, stmt, context: ExecutionContext) -> None:
        config = self.ssh_config_for(stmt)
        if context.noop:
            self.output(context, f"[NOOP] Upload: {stmt.from_} to {stmt.to} on {', '.join(config.servers)}")
            return
        await self.dispatcher.upload(stmt.from_, stmt.to, config, context.cancel)

    async def handle_layout(self, stmt, context: ExecutionContext) -> None:
        if context.noop:
            self.output(context, f"[NOOP] Layout: {stmt.structure!r}")
            return
        panes = await asyncio.to_thread(self.layout_engine.setup_layout, stmt.structure, context.book_title)
        context.layout_panes.update(panes)

    async def handle_note(self, stmt, context: ExecutionContext) -> None:
        self.output(context, f"Note: {stmt.msg}")

    async def handle_notice(self, stmt, context: ExecutionContext) -> None:
        self.warn(context, f"Notice: {stmt.msg}")

    async def handle_python_command(self, stmt, context: ExecutionContext) -> None:
        if context.noop:
            self.output(context, f"[NOOP] Run code: {stmt.fields()['fn']}")
            return
        result = stmt.fn(context)
        if inspect.isawaitable(result):
            await result

    async def handle_rollback(self, stmt, context: ExecutionContext) -> None:
        message = f"Rollback: {stmt.msg}" if stmt.msg else "Rollback"
        self.warn(context, message)
        context.reverse.set(True)

    async def handle_tmux_command(self, stmt, context: ExecutionContext) -> None:
        if context.noop:
            self.output(context, f"[NOOP] Run: `{stmt.cmd}` in pane {stmt.pane}")
            return
        pane_id = context.layout_panes.get(stmt.pane)
        if pane_id is None:
            raise StatementFailure(
                ErrorCode.STMT_UNKNOWN_PANE,
                f"No layout pane named {stmt.pane!r}",
                details={"pane": stmt.pane, "known": sorted(context.layout_panes)},
            )
        await asyncio.to_thread(self.layout_engine.tmux.send_keys, stmt.cmd, pane_id)

    async def handle_wait(self, stmt, context: ExecutionContext) -> None:
        if context.noop:
            self.output(context, f"[NOOP] Sleep {stmt.time} seconds")
            return
        self.output(context, f"Sleeping {stmt.time} seconds")
        pause = asyncio.ensure_future(self._sleep(stmt.time))
        stop = asyncio.ensure_future(context.cancel.wait())
        try:
            await asyncio.wait({pause, stop}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            pause.cancel()
            stop.cancel()
        if context.cancel.is_set():
            logger.warning(f"[Run] Wait at {context.position} interrupted by cancellation")
            raise ExecutionCancelled(details={"position": context.position})
