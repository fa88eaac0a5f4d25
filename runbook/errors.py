"""Module errors: structured error taxonomy for the runbook engine."""
#
from enum import Enum
from typing import Dict, Any, Optional
# PURPOSE:
# Provides a structured error taxonomy with error codes, typed exceptions,
# and consistent error handling across the engine.
#
# ERROR CLASSES:
# - ValidationError: malformed tree or option value, raised before any walk
# - StatementFailure: a handler failed; aborts the walk at that node
# - TransportFailure: remote host unreachable (a StatementFailure)
# - ExecutionCancelled: the operator stopped the run
# - ToolchainError: a required executable (ssh, tmux) is missing; fatal
#
# ERROR CODE FORMAT:
# - TREE_XXX: Book/entity/statement construction errors
# - STMT_XXX: Statement execution errors
# - REMOTE_XXX: Remote dispatch and transport errors
# - LAYOUT_XXX: Terminal layout errors
# - STORE_XXX: Resume store errors
# - CONFIG_XXX: Configuration errors
#
# USAGE:
#   from runbook.errors import StatementFailure, ErrorCode
#
#   raise StatementFailure(
#       ErrorCode.STMT_COMMAND_FAILED,
#       "Command exited with status 1",
#       details={"host": "web1.prod"}
#   )
#
class ErrorCode(Enum):
    # Tree Errors
    TREE_INVALID_CHILD = "TREE_001"
    TREE_INVALID_OPTION = "TREE_002"
    TREE_INVALID_POSITION = "TREE_003"
    TREE_LOAD_FAILED = "TREE_004"

    # Statement Errors
    STMT_FAILED = "STMT_001"
    STMT_COMMAND_FAILED = "STMT_002"
    STMT_ASSERT_EXHAUSTED = "STMT_003"
    STMT_CONFIRM_DECLINED = "STMT_004"
    STMT_ASK_UNANSWERED = "STMT_005"
    STMT_UNKNOWN_PANE = "STMT_006"

    # Remote Errors
    REMOTE_UNREACHABLE = "REMOTE_001"
    REMOTE_TIMEOUT = "REMOTE_002"
    REMOTE_TRANSFER_FAILED = "REMOTE_003"

    # Layout Errors
    LAYOUT_TMUX_FAILED = "LAYOUT_001"

    # Store Errors
    STORE_CORRUPT = "STORE_001"

    # Config Errors
    CONFIG_INVALID = "CONFIG_001"

    # System Errors
    SYSTEM_CANCELLED = "SYSTEM_001"
    SYSTEM_MISSING_EXECUTABLE = "SYSTEM_002"
    SYSTEM_INTERNAL_ERROR = "SYSTEM_003"


class RunbookError(Exception):
    """
    Base exception class for the engine with structured error information.

    Attributes:
        code: ErrorCode enum value (e.g., "STMT_002")
        message: Human-readable error message
        details: Optional dictionary with additional context
        exit_code: Process exit code the CLI reports for this error
    """

    exit_code = 1

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}

        # Build exception message with code for easy debugging
        super().__init__(f"[{code.value}] {message}")

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert error to dictionary for JSON serialization.

        Returns:
            Dictionary with code, message, details and error type
        """
        return {
            "type": type(self).__name__,
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
        }

    def to_json(self) -> str:
        import json
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunbookError":
        """
        Deserialize error from dictionary.

        The concrete subclass is restored from the ``type`` key when it names
        one of the classes in this module.
        """
        klass = _ERROR_TYPES.get(data.get("type", ""), cls)
        return klass(ErrorCode(data["code"]), data["message"], data.get("details", {}))


class ValidationError(RunbookError):
    """Malformed tree or invalid option value. Raised before any walk starts."""

    exit_code = 2

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None,
                 code: ErrorCode = ErrorCode.TREE_INVALID_OPTION):
        super().__init__(code, message, details)


class StatementFailure(RunbookError):
    """A statement handler reported failure. Aborts the walk at that node."""

    def __init__(self, code: ErrorCode, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(code, message, details)


class TransportFailure(StatementFailure):
    """Remote host could not be reached."""


class ExecutionCancelled(RunbookError):
    """Operator stopped the run; in-flight host tasks were interrupted."""

    exit_code = 130

    def __init__(self, message: str = "Execution cancelled", details: Optional[Dict[str, Any]] = None):
        super().__init__(ErrorCode.SYSTEM_CANCELLED, message, details)


class ToolchainError(RunbookError):
    """A required external executable is missing. Fatal, reported verbatim."""

    def __init__(self, executable: str, message: Optional[str] = None):
        super().__init__(
            ErrorCode.SYSTEM_MISSING_EXECUTABLE,
            message or f"Required executable not found in PATH: {executable}",
            {"executable": executable},
        )


_ERROR_TYPES = {
    klass.__name__: klass
    for klass in (RunbookError, StatementFailure, TransportFailure)
}


# ============================================================================
# Convenience Functions
# ============================================================================

def handle_error(error: Exception, context: Optional[str] = None) -> RunbookError:
    """
    Convert a generic exception raised inside a handler to a RunbookError.

    Args:
        error: The original exception
        context: Optional context string (e.g., "while running step 1.2")

    Returns:
        The error itself when it already is a RunbookError, otherwise a
        StatementFailure wrapping it
    """
    if isinstance(error, RunbookError):
        return error

    error_type = type(error).__name__
    message = str(error) or error_type
    if context:
        message = f"{context}: {message}"

    return StatementFailure(
        ErrorCode.STMT_FAILED,
        message,
        details={
            "original_type": error_type,
            "original_message": str(error),
        },
    )


__all__ = [
    "ErrorCode",
    "RunbookError",
    "ValidationError",
    "StatementFailure",
    "TransportFailure",
    "ExecutionCancelled",
    "ToolchainError",
    "handle_error",
]
