"""
Fluent construction of books.

Entities get one method per child type they may hold. Entity methods
(``section``, ``step``, ``setup``) return the new child so it can be filled
in; statement methods return the container so calls can be chained:

    book = Book("Restart web tier", ssh_config={"servers": ["web1", "web2"]})
    with book.section("Drain") as drain:
        drain.step("Stop traffic").confirm("LB drained?").command("systemctl stop nginx")

Children are validated when they are attached, not when the book runs.
"""

from __future__ import annotations

from typing import Any, Callable, Optional, Union

from runbook import statements as st
from runbook.remote.ssh_config import SSHConfigLike


class EntityBuilderMixin:
    """Methods for containers of entities (Book, Section)."""

    def section(self, title: str, ssh_config: SSHConfigLike = None):
        from runbook.entities import Section
        return self.add(Section(title, ssh_config=ssh_config))

    def step(self, title: Optional[str] = None, parallel: bool = False,
             ssh_config: SSHConfigLike = None):
        from runbook.entities import Step
        return self.add(Step(title, parallel=parallel, ssh_config=ssh_config))

    def setup(self):
        from runbook.entities import Setup
        return self.add(Setup())


class StatementBuilderMixin:
    """Methods for containers of statements (Step, Setup)."""

    def ask(self, prompt: str, into: str, default: Optional[str] = None, echo: bool = True):
        self.add(st.Ask(prompt, into=into, default=default, echo=echo))
        return self

    def assert_(self, cmd: Union[str, Callable[..., str]], **options: Any):
        self.add(st.Assert(cmd, **options))
        return self

    def capture(self, cmd, into: str, **options: Any):
        self.add(st.Capture(cmd, into=into, **options))
        return self

    def capture_all(self, cmd, into: str, **options: Any):
        self.add(st.CaptureAll(cmd, into=into, **options))
        return self

    def command(self, cmd, ssh_config: SSHConfigLike = None, raw: bool = False, undo=None):
        self.add(st.Command(cmd, ssh_config=ssh_config, raw=raw, undo=undo))
        return self

    def condition(self, predicate, if_stmt, else_stmt=None):
        self.add(st.Condition(predicate, if_stmt, else_stmt=else_stmt))
        return self

    def confirm(self, prompt: str):
        self.add(st.Confirm(prompt))
        return self

    def description(self, msg: str):
        self.add(st.Description(msg))
        return self

    def download(self, from_: str, to: Optional[str] = None, ssh_config: SSHConfigLike = None):
        self.add(st.Download(from_, to=to, ssh_config=ssh_config))
        return self

    def layout(self, structure):
        self.add(st.Layout(structure))
        return self

    def note(self, msg: str):
        self.add(st.Note(msg))
        return self

    def notice(self, msg: str):
        self.add(st.Notice(msg))
        return self

    def python(self, fn, undo=None):
        self.add(st.PythonCommand(fn, undo=undo))
        return self

    def rollback(self, msg: Optional[str] = None):
        self.add(st.Rollback(msg))
        return self

    def tmux_command(self, cmd: str, pane: str):
        self.add(st.TmuxCommand(cmd, pane))
        return self

    def upload(self, from_: str, to: str, ssh_config: SSHConfigLike = None):
        self.add(st.Upload(from_, to=to, ssh_config=ssh_config))
        return self

    def wait(self, time: float):
        self.add(st.Wait(time))
        return self
