# ============================================================================
# runbook/__init__.py
# Package Marker for the Runbook Execution Engine
# ============================================================================
#
# PURPOSE:
# Runbooks are ordered trees of steps holding statements (remote commands,
# prompts, assertions, waits, terminal layout directives). This package
# renders them for review ("view") or executes them ("run") against one or
# more hosts, and can pause, resume and reverse an execution.
#
# WHERE TO START:
# - entities.py / statements.py: the tree model
# - builder.py: building books in Python
# - engine/: the walk, the view and run handlers, the Assert retry loop
# - remote/: ssh configuration, command composition, host fan-out
# - layout/: tmux panes
# - persistence/: stored pose and repo used to resume a run
#
# ============================================================================

from runbook.entities import Book, Section, Setup, Step
from runbook.errors import (
    ExecutionCancelled,
    RunbookError,
    StatementFailure,
    ToolchainError,
    TransportFailure,
    ValidationError,
)
from runbook.statements import (
    Ask,
    Assert,
    Capture,
    CaptureAll,
    Command,
    Condition,
    Confirm,
    Description,
    Download,
    Layout,
    Note,
    Notice,
    PythonCommand,
    Rollback,
    TmuxCommand,
    Upload,
    Wait,
)

__version__ = "0.1.0"
