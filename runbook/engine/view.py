# runbook/engine/view.py
# View mode: render a book as markdown for review, nothing is executed

from __future__ import annotations

import logging
from typing import Any, Dict

from runbook.base.context import ExecutionContext
from runbook.engine.executor import Executor

logger = logging.getLogger(__name__)


def _ssh_summary(config) -> str:
    if config is None:
        return ""
    fragment: Dict[str, Any] = config.fragment()
    parts = []
    if "servers" in fragment:
        parts.append(f"on {', '.join(fragment['servers'])}")
    strategy = fragment.get("parallelization", {}).get("strategy")
    if strategy:
        parts.append(f"({strategy})")
    for key in ("user", "group", "path"):
        if fragment.get(key):
            parts.append(f"{key}={fragment[key]}")
    return " " + " ".join(parts) if parts else ""


class ViewExecutor(Executor):
    mode = "view"

    async def handle_book(self, book, context: ExecutionContext) -> None:
        self.output(context, f"# {book.title}\n")

    async def handle_section(self, section, context: ExecutionContext) -> None:
        heading = "#" * min(context.depth + 1, 6)
        self.output(context, f"{heading} {context.position}. {section.title}\n")

    async def handle_setup(self, setup, context: ExecutionContext) -> None:
        self.output(context, "**Setup**\n")

    async def handle_step(self, step, context: ExecutionContext) -> None:
        title = f" {step.title}" if step.title else ""
        parallel = " (parallel)" if getattr(step, "parallel", False) else ""
        self.output(context, f"{context.position}.{title}{parallel}{_ssh_summary(step.ssh_config)}\n")

    async def handle_ask(self, stmt, context: ExecutionContext) -> None:
        default = f" (default: {stmt.default})" if stmt.default is not None else ""
        self.output(context, f"   {stmt.prompt} into `{stmt.into}`{default}\n")

    async def handle_assert(self, stmt, context: ExecutionContext) -> None:
        attempts = stmt.attempts or "unlimited"
        self.output(
            context,
            f"   run: `{stmt.display_cmd()}` every {stmt.interval} seconds until it returns 0"
            f" ({attempts} attempts){_ssh_summary(stmt.ssh_config)}\n",
        )
        if stmt.timeout:
            self.output(context, f"   each attempt times out after {stmt.timeout} seconds\n")
        if stmt.abort_statement is not None:
            self.output(context, f"   if it never passes: {stmt.abort_statement!r}\n")

    async def handle_capture(self, stmt, context: ExecutionContext) -> None:
        self.output(context, f"   capture: `{stmt.display_cmd()}` into `{stmt.into}`"
                             f"{_ssh_summary(stmt.ssh_config)}\n")

    async def handle_capture_all(self, stmt, context: ExecutionContext) -> None:
        self.output(context, f"   capture_all: `{stmt.display_cmd()}` into `{stmt.into}`"
                             f"{_ssh_summary(stmt.ssh_config)}\n")

    async def handle_command(self, stmt, context: ExecutionContext) -> None:
        self.output(context, f"   run: `{stmt.display_cmd()}`{_ssh_summary(stmt.ssh_config)}\n")
        undo = stmt.fields().get("undo")
        if undo:
            self.output(context, f"   undo: `{undo}`\n")

    async def handle_condition(self, stmt, context: ExecutionContext) -> None:
        fields = stmt.fields()
        self.output(context, f"   if {fields['predicate']}: {fields['if_stmt']}\n")
        if fields["else_stmt"] is not None:
            self.output(context, f"   else: {fields['else_stmt']}\n")

    async def handle_confirm(self, stmt, context: ExecutionContext) -> None:
        self.output(context, f"   confirm: {stmt.prompt}\n")

    async def handle_description(self, stmt, context: ExecutionContext) -> None:
        self.output(context, f"{stmt.msg}\n")

    async def handle_download(self, stmt, context: ExecutionContext) -> None:
        target = f" to {stmt.to}" if stmt.to else ""
        self.output(context, f"   download: {stmt.from_}{target}{_ssh_summary(stmt.ssh_config)}\n")

    async def handle_layout(self, stmt, context: ExecutionContext) -> None:
        self.output(context, f"layout:\n{stmt.structure!r}\n")

    async def handle_note(self, stmt, context: ExecutionContext) -> None:
        self.output(context, f"   {stmt.msg}\n")

    async def handle_notice(self, stmt, context: ExecutionContext) -> None:
        self.output(context, f"   **{stmt.msg}**\n")

    async def handle_python_command(self, stmt, context: ExecutionContext) -> None:
        self.output(context, f"   python: `{stmt.fields()['fn']}`\n")

    async def handle_rollback(self, stmt, context: ExecutionContext) -> None:
        message = f": {stmt.msg}" if stmt.msg else ""
        self.output(context, f"   rollback{message} (following statements run in reverse)\n")

    async def handle_tmux_command(self, stmt, context: ExecutionContext) -> None:
        self.output(context, f"   run: `{stmt.cmd}` in pane {stmt.pane}\n")

    async def handle_upload(self, stmt, context: ExecutionContext) -> None:
        self.output(context, f"   upload: {stmt.from_} to {stmt.to}{_ssh_summary(stmt.ssh_config)}\n")

    async def handle_wait(self, stmt, context: ExecutionContext) -> None:
        self.output(context, f"   wait: {stmt.time} seconds\n")
