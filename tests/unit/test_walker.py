"""
Unit tests for the run/dispatch protocol.

Verifies:
1. The dynamic/visited guard.
2. start_at filtering, with Setup blocks always running.
3. Failure handling and the reported last position.
4. Rollback propagation through shared Glue cells.
"""

import asyncio

import pytest

from runbook.base.config import RunbookConfig
from runbook.base.context import ExecutionContext, Glue
from runbook.engine.executor import Executor
from runbook.engine.run import RunExecutor
from runbook.engine.walker import ROLLBACK_WARNING, Disposition, Walker
from runbook.entities import Book
from runbook.errors import ErrorCode, ExecutionCancelled, StatementFailure
from runbook.statements import Command, Note, Rollback, TmuxCommand, Upload


class RecordingExecutor(Executor):
    mode = "run"

    def __init__(self):
        super().__init__(RunbookConfig())
        self.seen = []

    async def handle_book(self, book, context):
        self.seen.append(("book", context.position))

    async def handle_section(self, section, context):
        self.seen.append(("section", context.position))

    async def handle_setup(self, setup, context):
        self.seen.append(("setup", context.position))

    async def handle_step(self, step, context):
        self.seen.append(("step", context.position))
        if step.title == "skip me":
            return Disposition.SKIP

    async def handle_note(self, stmt, context):
        self.seen.append(("note", context.position, stmt.msg))
        if stmt.msg == "fail":
            return False


def statements_seen(executor):
    return [entry[2] for entry in executor.seen if entry[0] == "note"]


@pytest.mark.asyncio
async def test_dynamic_visited_statement_is_not_dispatched(toolbox):
    executor = RecordingExecutor()
    walker = Walker(executor)
    note = Note("again").mark_dynamic().mark_visited()

    await walker.dispatch_statement(note, ExecutionContext(toolbox=toolbox))

    assert executor.seen == []


@pytest.mark.asyncio
async def test_statement_is_visited_after_handler(toolbox):
    executor = RecordingExecutor()
    walker = Walker(executor)
    note = Note("once").mark_dynamic()

    await walker.dispatch_statement(note, ExecutionContext(toolbox=toolbox))
    await walker.dispatch_statement(note, ExecutionContext(toolbox=toolbox))

    assert note.visited is True
    assert statements_seen(executor) == ["once"]


@pytest.mark.asyncio
async def test_start_at_skips_earlier_nodes_but_runs_setup(toolbox):
    book = Book("Resume")
    book.setup().note("setup")
    section = book.section("One")
    section.step("a").note("a0").note("a1")
    section.step("b").note("b0")
    book.step("c").note("c0")

    executor = RecordingExecutor()
    outcome = await Walker(executor).walk(book, ExecutionContext(toolbox=toolbox, start_at="1.2"))

    assert outcome.success
    assert statements_seen(executor) == ["setup", "b0", "c0"]
    # Handlers of the enclosing section do not run, its children still do
    assert ("section", "1") not in executor.seen
    assert ("step", "1.2") in executor.seen


@pytest.mark.asyncio
async def test_skip_disposition_leaves_children_alone(toolbox):
    book = Book("Skip")
    book.step("skip me").note("hidden")
    book.step("keep").note("shown")

    executor = RecordingExecutor()
    outcome = await Walker(executor).walk(book, ExecutionContext(toolbox=toolbox))

    assert outcome.success
    assert statements_seen(executor) == ["shown"]


@pytest.mark.asyncio
async def test_failure_aborts_with_last_completed_position(toolbox):
    book = Book("Abort")
    step = book.step("s")
    step.note("ok").note("fail").note("never")

    executor = RecordingExecutor()
    outcome = await Walker(executor).walk(book, ExecutionContext(toolbox=toolbox))

    assert outcome.success is False
    assert outcome.last_position == "1.0"
    assert outcome.failed_position == "1.1"
    assert isinstance(outcome.error, StatementFailure)
    assert statements_seen(executor) == ["ok", "fail"]


@pytest.mark.asyncio
async def test_missing_handler_warns_and_continues(toolbox):
    book = Book("Gaps")
    book.step("s").wait(0).note("after")

    executor = RecordingExecutor()
    outcome = await Walker(executor).walk(book, ExecutionContext(toolbox=toolbox))

    assert outcome.success
    assert statements_seen(executor) == ["after"]
    assert any("No run handler for wait" in w for w in toolbox.warnings)


@pytest.mark.asyncio
async def test_progress_callback_sees_static_statements_only(config, toolbox, dispatcher):
    book = Book("Progress")
    step = book.step("s")
    step.note("n")
    step.condition(lambda ctx: True, Note("dynamic"))

    seen = []
    walker = Walker(RunExecutor(config, dispatcher=dispatcher), on_progress=lambda pos, ctx: seen.append(pos))
    outcome = await walker.walk(book, ExecutionContext(toolbox=toolbox))

    assert outcome.success
    assert seen == ["1.0", "1.1"]
    assert "Note: dynamic" in toolbox.outputs


def test_derived_contexts_share_glue_cells():
    root = ExecutionContext()
    child = root.derive(depth=1, position="1")
    grandchild = child.derive(depth=2, position="1.1")

    grandchild.reverse.set(True)

    assert isinstance(root.reverse, Glue)
    assert root.reverse and child.reverse
    assert root.position == ""
    assert grandchild.vars is root.vars


@pytest.mark.asyncio
async def test_rollback_reverses_later_sibling_subtrees(config, toolbox, dispatcher, transport):
    book = Book("Rollback")
    first = book.section("Deploy")
    first.step("push").command("deploy v2", undo="deploy v1")
    first.step("abort").rollback("bad release")
    later = book.section("Cleanup")
    later.step("undo push").command("deploy v2", undo="deploy v1")
    later.step("panes").tmux_command("tail -f log", "logs")
    later.step("no undo").command("restart")

    context = ExecutionContext(toolbox=toolbox)
    outcome = await Walker(RunExecutor(config, dispatcher=dispatcher)).walk(book, context)

    assert outcome.success
    commands = [command for _, command in transport.calls]
    assert commands == ["sh -c 'deploy v2'", "sh -c 'deploy v1'"]
    assert context.reverse and context.reversed
    assert toolbox.warnings.count(ROLLBACK_WARNING) == 1
    assert "Nothing to undo for tmux_command, skipping" in toolbox.outputs
    assert "Nothing to undo for command, skipping" in toolbox.outputs


@pytest.mark.asyncio
async def test_upload_becomes_download_in_reverse(config, toolbox, dispatcher, transport):
    book = Book("Transfer")
    step = book.step("s")
    step.rollback()
    step.upload("build.tar", to="/srv/build.tar")

    outcome = await Walker(RunExecutor(config, dispatcher=dispatcher)).walk(book, ExecutionContext(toolbox=toolbox))

    assert outcome.success
    assert transport.uploads == []
    assert transport.downloads == [("local", "/srv/build.tar", "build.tar")]


@pytest.mark.asyncio
async def test_failure_during_rollback_propagates(config, toolbox, dispatcher, transport):
    transport.responder = lambda host, command: StatementFailure(ErrorCode.STMT_FAILED, "nope")
    book = Book("Broken rollback")
    step = book.step("s")
    step.rollback()
    step.command("start", undo="stop")

    outcome = await Walker(RunExecutor(config, dispatcher=dispatcher)).walk(book, ExecutionContext(toolbox=toolbox))

    assert outcome.success is False
    assert outcome.last_position == "1.0"
    assert transport.calls == [("local", "sh -c stop")]


def test_inverse_table():
    assert Command("a", undo="b").inverse().cmd == "b"
    assert Command("a").inverse() is None
    assert TmuxCommand("ls", "pane").inverse() is None
    assert isinstance(Rollback().inverse(), Rollback)
    download = Upload("local.txt", to="/remote.txt").inverse()
    assert (download.kind, download.from_, download.to) == ("download", "/remote.txt", "local.txt")


@pytest.mark.asyncio
async def test_condition_branch_runs_on_every_walk(config, toolbox, dispatcher):
    book = Book("Repeat")
    book.step("s").condition(lambda ctx: True, Note("branch"))

    for _ in range(2):
        outcome = await Walker(RunExecutor(config, dispatcher=dispatcher)).walk(
            book, ExecutionContext(toolbox=toolbox)
        )
        assert outcome.success

    assert toolbox.outputs.count("Note: branch") == 2


@pytest.mark.asyncio
async def test_false_predicate_runs_else_branch(config, toolbox, dispatcher):
    book = Book("Else")
    book.step("s").condition(lambda ctx: False, Note("then"), else_stmt=Note("otherwise"))

    outcome = await Walker(RunExecutor(config, dispatcher=dispatcher)).walk(book, ExecutionContext(toolbox=toolbox))

    assert outcome.success
    assert "Note: otherwise" in toolbox.outputs
    assert "Note: then" not in toolbox.outputs


@pytest.mark.asyncio
async def test_raising_predicate_selects_else_and_walk_continues(config, toolbox, dispatcher):
    def broken(ctx):
        raise KeyError("missing")

    book = Book("Broken predicate")
    step = book.step("s")
    step.condition(broken, Note("then"), else_stmt=Note("recovered"))
    step.note("after")

    outcome = await Walker(RunExecutor(config, dispatcher=dispatcher)).walk(book, ExecutionContext(toolbox=toolbox))

    assert outcome.success
    assert "Note: recovered" in toolbox.outputs
    assert "Note: then" not in toolbox.outputs
    assert "Note: after" in toolbox.outputs
    assert outcome.last_position == "1.1"


@pytest.mark.asyncio
async def test_cancel_interrupts_long_wait(config, toolbox, dispatcher):
    book = Book("Patience")
    step = book.step("s")
    step.wait(3600)
    step.note("never")

    context = ExecutionContext(toolbox=toolbox)
    walk = asyncio.ensure_future(Walker(RunExecutor(config, dispatcher=dispatcher)).walk(book, context))
    await asyncio.sleep(0.05)
    context.cancel.set()
    outcome = await asyncio.wait_for(walk, timeout=5)

    assert outcome.success is False
    assert isinstance(outcome.error, ExecutionCancelled)
    assert "Note: never" not in toolbox.outputs
