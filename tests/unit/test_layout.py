"""
Unit tests for the layout engine, driven through a mocked TmuxHelper.
"""

import itertools
import json

import pytest
from unittest.mock import MagicMock

from runbook.base.context import ExecutionContext
from runbook.engine.run import RunExecutor
from runbook.engine.walker import Walker
from runbook.entities import Book
from runbook.errors import ErrorCode, ValidationError
from runbook.layout.engine import LayoutEngine
from runbook.layout.tmux import TmuxHelper


@pytest.fixture
def tmux(tmp_path):
    helper = MagicMock(spec=TmuxHelper)
    helper.state_dir = str(tmp_path)
    counter = itertools.count(1)
    helper.runbook_pane.return_value = "%0"
    helper.split.side_effect = lambda pane, depth, size: f"%{next(counter)}"
    helper.new_window.side_effect = lambda name: f"%{next(counter)}"
    helper.server_pid.return_value = "4242"
    helper.list_panes.return_value = set()
    helper.layout_file.side_effect = lambda title: str(tmp_path / f"runbook_layout_4242_main_1_%0_{title}.json")
    return helper


def split_calls(tmux):
    return [c.args for c in tmux.split.call_args_list]


def test_two_by_two_grid(tmux):
    panes = LayoutEngine(tmux).build([["a", "b"], ["c", "d"]])

    assert panes == {"a": "%0", "b": "%2", "c": "%1", "d": "%3"}
    assert split_calls(tmux) == [("%0", 0, 50), ("%0", 1, 50), ("%1", 1, 50)]


def test_three_columns_use_decreasing_sizes(tmux):
    panes = LayoutEngine(tmux).build(["left", "middle", "right"])

    assert split_calls(tmux) == [("%0", 0, 67), ("%1", 0, 50)]
    assert panes == {"left": "%0", "middle": "%1", "right": "%2"}


def test_weighted_split(tmux):
    panes = LayoutEngine(tmux).build({"logs": 30, "shell": 70})

    assert split_calls(tmux) == [("%0", 0, 70)]
    assert panes == {"logs": "%0", "shell": "%1"}


def test_pane_definitions_are_initialized(tmux):
    LayoutEngine(tmux).build([
        {"name": "runbook", "runbook_pane": True},
        {"name": "web", "directory": "/srv/web", "command": "tail -f log/app.log"},
    ])

    tmux.swap_panes.assert_not_called()
    tmux.set_directory.assert_called_once_with("/srv/web", "%1")
    tmux.send_keys.assert_called_once_with("tail -f log/app.log", "%1")


def test_runbook_pane_is_swapped_into_place(tmux):
    panes = LayoutEngine(tmux).build(["logs", {"name": "runbook", "runbook_pane": True}])

    assert panes == {"logs": "%0", "runbook": "%1"}
    tmux.swap_panes.assert_called_once_with("%1", "%0")


def test_windows(tmux):
    panes = LayoutEngine(tmux).build({"Deploy": ["a", "b"], "Monitoring": "graphs"})

    tmux.rename_window.assert_called_once_with("Deploy")
    tmux.new_window.assert_called_once_with("Monitoring")
    assert panes == {"a": "%0", "b": "%1", "graphs": "%2"}


def test_structure_is_not_consumed(tmux):
    structure = [["a", "b"], "c"]
    LayoutEngine(tmux).build(structure)
    assert structure == [["a", "b"], "c"]


def test_unsupported_structure(tmux):
    with pytest.raises(ValidationError) as exc_info:
        LayoutEngine(tmux).build([1.5])
    assert exc_info.value.code == ErrorCode.TREE_INVALID_OPTION


def test_setup_layout_persists_and_reuses(tmux, tmp_path):
    engine = LayoutEngine(tmux)
    first = engine.setup_layout(["a", "b"], "My Book")

    stored = tmp_path / "runbook_layout_4242_main_1_%0_my-book.json"
    assert json.loads(stored.read_text()) == first

    tmux.split.reset_mock()
    tmux.list_panes.return_value = set(first.values())
    again = engine.setup_layout(["a", "b"], "My Book")

    assert again == first
    tmux.split.assert_not_called()


def test_stale_layout_files_are_removed(tmux, tmp_path):
    stale = tmp_path / "runbook_layout_1111_main_1_%0_old.json"
    current = tmp_path / "runbook_layout_4242_main_1_%0_new.json"
    stale.write_text("{}")
    current.write_text("{}")

    LayoutEngine(tmux).remove_stale_layouts()

    assert not stale.exists()
    assert current.exists()


def test_kill_panes_spares_the_runbook_pane(tmux):
    LayoutEngine(tmux).kill_panes({"runbook": "%0", "logs": "%1", "shell": "%2"})
    assert [c.args for c in tmux.kill_pane.call_args_list] == [("%1",), ("%2",)]


@pytest.mark.asyncio
async def test_layout_then_tmux_command(config, toolbox, dispatcher, tmux):
    book = Book("Panes")
    step = book.step("s")
    step.layout([["runbook", "logs"]])
    step.tmux_command("tail -f /var/log/syslog", "logs")
    step.tmux_command("ls", "missing")

    executor = RunExecutor(config, dispatcher=dispatcher, layout_engine=LayoutEngine(tmux))
    context = ExecutionContext(toolbox=toolbox, book_title="Panes")
    outcome = await Walker(executor).walk(book, context)

    assert context.layout_panes == {"runbook": "%0", "logs": "%1"}
    tmux.send_keys.assert_called_once_with("tail -f /var/log/syslog", "%1")
    assert outcome.success is False
    assert outcome.error.code == ErrorCode.STMT_UNKNOWN_PANE
    assert outcome.last_position == "1.1"
