"""
Statement variants.

A statement is one unit of declared work inside a step. Statements carry no
behaviour of their own: the walker hands each one to the handler named by
its ``kind`` on the active executor (view or run).

Every statement has two flags:

- ``dynamic``: the instance was manufactured at run time (by a Condition)
  rather than declared in the static tree.
- ``visited``: its handler completed once. A dynamic statement that was
  already visited is never dispatched again.

``inverse()`` returns what the statement does while the walk is rolling
back, or None when it has nothing to undo.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from runbook.errors import ErrorCode, ValidationError
from runbook.remote.ssh_config import SSHConfig, SSHConfigLike, coerce_ssh_config

logger = logging.getLogger(__name__)

CommandLike = Union[str, Callable[..., str]]


def _require(condition: bool, message: str, **details: Any) -> None:
    if not condition:
        raise ValidationError(message, details=details, code=ErrorCode.TREE_INVALID_OPTION)


def _callable_name(fn: Any) -> str:
    return getattr(fn, "__qualname__", None) or getattr(fn, "__name__", None) or repr(fn)


class Statement:
    """Base class for all statements."""

    kind = "statement"
    is_statement = True

    def __init__(self):
        self.parent = None
        self.dynamic = False
        self.visited = False

    def mark_dynamic(self) -> "Statement":
        self.dynamic = True
        return self

    def mark_visited(self) -> "Statement":
        self.visited = True
        return self

    def instantiate(self, parent) -> "Statement":
        """A fresh unvisited dynamic copy, dispatched in place of this declaration."""
        instance = copy.copy(self)
        instance.parent = parent
        instance.visited = False
        instance.dynamic = True
        return instance

    def inverse(self) -> Optional["Statement"]:
        return self

    def fields(self) -> Dict[str, Any]:
        return {}

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, **self.fields()}

    def __repr__(self) -> str:
        args = ", ".join(f"{k}={v!r}" for k, v in self.fields().items())
        return f"{type(self).__name__}({args})"


class _RemoteStatement(Statement):
    """Statement that runs a shell command on the hosts of its ssh_config."""

    def __init__(self, cmd: CommandLike, ssh_config: SSHConfigLike = None, raw: bool = False):
        super().__init__()
        _require(
            callable(cmd) or (isinstance(cmd, str) and cmd.strip() != ""),
            f"{type(self).__name__} requires a non-empty command",
            cmd=cmd,
        )
        self.cmd = cmd
        self.ssh_config: Optional[SSHConfig] = coerce_ssh_config(ssh_config)
        self.raw = bool(raw)

    def resolve_cmd(self, context) -> str:
        """The command string; callables are evaluated against the context."""
        if callable(self.cmd):
            return str(self.cmd(context))
        return self.cmd

    def display_cmd(self) -> str:
        if callable(self.cmd):
            return f"<computed by {_callable_name(self.cmd)}>"
        return self.cmd

    def fields(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"cmd": self.display_cmd()}
        if self.ssh_config is not None:
            data["ssh_config"] = self.ssh_config.fragment()
        if self.raw:
            data["raw"] = True
        return data


class Command(_RemoteStatement):
    kind = "command"

    def __init__(self, cmd: CommandLike, ssh_config: SSHConfigLike = None, raw: bool = False,
                 undo: Optional[CommandLike] = None):
        super().__init__(cmd, ssh_config=ssh_config, raw=raw)
        self.undo = undo

    def inverse(self) -> Optional[Statement]:
        if self.undo is None:
            return None
        return Command(self.undo, ssh_config=self.ssh_config, raw=self.raw)

    def fields(self) -> Dict[str, Any]:
        data = super().fields()
        if self.undo is not None:
            data["undo"] = self.undo if isinstance(self.undo, str) else _callable_name(self.undo)
        return data


class Assert(_RemoteStatement):
    """
    Poll ``cmd`` until it succeeds.

    ``attempts`` bounds the number of tries (0 means keep trying),
    ``interval`` is the pause after a failed try, and ``timeout`` bounds
    each individual try (0 means unbounded). When every attempt fails the
    ``abort_statement`` runs in its place, if one was given.
    """

    kind = "assert"

    def __init__(self, cmd: CommandLike, ssh_config: SSHConfigLike = None, raw: bool = False,
                 interval: float = 1, timeout: float = 0, attempts: int = 3,
                 abort_statement: Optional[Statement] = None):
        super().__init__(cmd, ssh_config=ssh_config, raw=raw)
        _require(interval is not None and interval >= 0, "interval must be >= 0", interval=interval)
        _require(timeout is not None and timeout >= 0, "timeout must be >= 0", timeout=timeout)
        _require(isinstance(attempts, int) and attempts >= 0, "attempts must be an integer >= 0",
                 attempts=attempts)
        _require(abort_statement is None or isinstance(abort_statement, Statement),
                 "abort_statement must be a statement", abort_statement=repr(abort_statement))
        self.interval = interval
        self.timeout = timeout
        self.attempts = attempts
        self.abort_statement = abort_statement

    def fields(self) -> Dict[str, Any]:
        data = super().fields()
        data.update(interval=self.interval, timeout=self.timeout, attempts=self.attempts)
        if self.abort_statement is not None:
            data["abort_statement"] = self.abort_statement.to_dict()
        return data


class Capture(_RemoteStatement):
    """Run ``cmd`` on the first host and store its output in ``vars[into]``."""

    kind = "capture"

    def __init__(self, cmd: CommandLike, into: str, ssh_config: SSHConfigLike = None,
                 raw: bool = False, strip: bool = True):
        super().__init__(cmd, ssh_config=ssh_config, raw=raw)
        _require(isinstance(into, str) and into != "", "into must name a variable", into=into)
        self.into = into
        self.strip = strip

    def fields(self) -> Dict[str, Any]:
        data = super().fields()
        data["into"] = self.into
        return data


class CaptureAll(Capture):
    """Run ``cmd`` on every host and store ``{host: output}`` in ``vars[into]``."""

    kind = "capture_all"


class Ask(Statement):
    kind = "ask"

    def __init__(self, prompt: str, into: str, default: Optional[str] = None, echo: bool = True):
        super().__init__()
        _require(isinstance(into, str) and into != "", "into must name a variable", into=into)
        self.prompt = prompt
        self.into = into
        self.default = default
        self.echo = echo

    def fields(self) -> Dict[str, Any]:
        return {"prompt": self.prompt, "into": self.into, "default": self.default}


class Confirm(Statement):
    kind = "confirm"

    def __init__(self, prompt: str):
        super().__init__()
        self.prompt = prompt

    def fields(self) -> Dict[str, Any]:
        return {"prompt": self.prompt}


class _Message(Statement):
    def __init__(self, msg: str):
        super().__init__()
        self.msg = msg

    def fields(self) -> Dict[str, Any]:
        return {"msg": self.msg}


class Description(_Message):
    kind = "description"


class Note(_Message):
    kind = "note"


class Notice(_Message):
    kind = "notice"


BranchLike = Union[Statement, Sequence[Statement], Callable[..., Any], None]


class Condition(Statement):
    """
    Choose between two branches at run time.

    ``predicate(context)`` decides the branch. A branch is a statement, a
    list of statements, or a callable ``branch(context)`` returning either.
    Every evaluation yields fresh dynamic copies of the branch statements.
    """

    kind = "condition"

    def __init__(self, predicate: Callable[..., Any], if_stmt: BranchLike,
                 else_stmt: BranchLike = None):
        super().__init__()
        _require(callable(predicate), "predicate must be callable", predicate=repr(predicate))
        _require(if_stmt is not None, "if_stmt is required")
        self.predicate = predicate
        self.if_stmt = if_stmt
        self.else_stmt = else_stmt

    def branch_statements(self, chosen: bool, context) -> List[Statement]:
        branch = self.if_stmt if chosen else self.else_stmt
        if branch is None:
            return []
        if callable(branch) and not isinstance(branch, Statement):
            branch = branch(context)
        if branch is None:
            return []
        declared = [branch] if isinstance(branch, Statement) else list(branch)
        statements = []
        for stmt in declared:
            if not isinstance(stmt, Statement):
                raise ValidationError(
                    f"Condition branch produced a non-statement: {stmt!r}",
                    code=ErrorCode.TREE_INVALID_CHILD,
                )
            statements.append(stmt.instantiate(self.parent))
        return statements

    def fields(self) -> Dict[str, Any]:
        return {
            "predicate": _callable_name(self.predicate),
            "if_stmt": self._describe_branch(self.if_stmt),
            "else_stmt": self._describe_branch(self.else_stmt),
        }

    @staticmethod
    def _describe_branch(branch: BranchLike) -> Any:
        if branch is None:
            return None
        if isinstance(branch, Statement):
            return branch.to_dict()
        if callable(branch):
            return _callable_name(branch)
        return [stmt.to_dict() for stmt in branch]


class _Transfer(Statement):
    def __init__(self, from_: str, to: Optional[str] = None, ssh_config: SSHConfigLike = None):
        super().__init__()
        _require(isinstance(from_, str) and from_ != "", f"{type(self).__name__} requires a source path")
        self.from_ = from_
        self.to = to
        self.ssh_config: Optional[SSHConfig] = coerce_ssh_config(ssh_config)

    def fields(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"from": self.from_, "to": self.to}
        if self.ssh_config is not None:
            data["ssh_config"] = self.ssh_config.fragment()
        return data


class Upload(_Transfer):
    """Copy a local file to every host."""

    kind = "upload"

    def __init__(self, from_: str, to: str, ssh_config: SSHConfigLike = None):
        _require(isinstance(to, str) and to != "", "Upload requires a destination path")
        super().__init__(from_, to, ssh_config=ssh_config)

    def inverse(self) -> Optional[Statement]:
        return Download(self.to, to=self.from_, ssh_config=self.ssh_config)


class Download(_Transfer):
    """Copy a remote file from every host into the local working directory (or ``to``)."""

    kind = "download"

    def inverse(self) -> Optional[Statement]:
        if self.to is None:
            return None
        return Upload(self.to, to=self.from_, ssh_config=self.ssh_config)


class Layout(Statement):
    kind = "layout"

    def __init__(self, structure: Union[list, dict]):
        super().__init__()
        _require(isinstance(structure, (list, dict)), "layout structure must be a list or a dict",
                 structure=repr(structure))
        self.structure = structure

    def fields(self) -> Dict[str, Any]:
        return {"structure": self.structure}


class PythonCommand(Statement):
    """Call ``fn(context)`` in the engine's own process."""

    kind = "python_command"

    def __init__(self, fn: Callable[..., Any], undo: Optional[Callable[..., Any]] = None):
        super().__init__()
        _require(callable(fn), "PythonCommand requires a callable", fn=repr(fn))
        _require(undo is None or callable(undo), "undo must be callable", undo=repr(undo))
        self.fn = fn
        self.undo = undo

    def inverse(self) -> Optional[Statement]:
        return PythonCommand(self.undo) if self.undo is not None else None

    def fields(self) -> Dict[str, Any]:
        data = {"fn": _callable_name(self.fn)}
        if self.undo is not None:
            data["undo"] = _callable_name(self.undo)
        return data


class Rollback(Statement):
    """Marker that puts every following statement of the walk into reverse."""

    kind = "rollback"

    def __init__(self, msg: Optional[str] = None):
        super().__init__()
        self.msg = msg

    def fields(self) -> Dict[str, Any]:
        return {"msg": self.msg}


class TmuxCommand(Statement):
    """Type ``cmd`` into the layout pane registered under ``pane``."""

    kind = "tmux_command"

    def __init__(self, cmd: str, pane: str):
        super().__init__()
        _require(isinstance(cmd, str) and cmd != "", "TmuxCommand requires a command")
        _require(isinstance(pane, str) and pane != "", "TmuxCommand requires a pane name")
        self.cmd = cmd
        self.pane = pane

    def inverse(self) -> Optional[Statement]:
        return None

    def fields(self) -> Dict[str, Any]:
        return {"cmd": self.cmd, "pane": self.pane}


class Wait(Statement):
    kind = "wait"

    def __init__(self, time: float):
        super().__init__()
        _require(isinstance(time, (int, float)) and time >= 0, "wait time must be >= 0", time=time)
        self.time = time

    def fields(self) -> Dict[str, Any]:
        return {"time": self.time}


STATEMENT_TYPES = {
    klass.kind: klass
    for klass in (
        Ask, Assert, Capture, CaptureAll, Command, Condition, Confirm, Description,
        Download, Layout, Note, Notice, PythonCommand, Rollback, TmuxCommand, Upload, Wait,
    )
}
