"""
Toolbox: where statements send output and ask the operator for input.

The engine only relies on four calls: ``output``, ``ask``, ``confirm`` and
``warn``. ConsoleToolbox implements them on a terminal; tests and embedding
applications pass their own object.
"""

import getpass
import logging
import sys
from typing import Optional, Protocol, TextIO, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class Toolbox(Protocol):
    def output(self, message: str) -> None: ...

    def ask(self, prompt: str, default: Optional[str] = None, echo: bool = True) -> str: ...

    def confirm(self, prompt: str) -> bool: ...

    def warn(self, message: str) -> None: ...


class ConsoleToolbox:
    """Toolbox on stdin/stdout, warnings on stderr."""

    def __init__(self, out: Optional[TextIO] = None, err: Optional[TextIO] = None):
        self.out = out or sys.stdout
        self.err = err or sys.stderr

    def output(self, message: str) -> None:
        print(message, file=self.out, flush=True)

    def ask(self, prompt: str, default: Optional[str] = None, echo: bool = True) -> str:
        suffix = f" [{default}]" if default is not None else ""
        question = f"{prompt}{suffix} "
        answer = input(question) if echo else getpass.getpass(question)
        if not answer and default is not None:
            return default
        return answer

    def confirm(self, prompt: str) -> bool:
        # Loop until we get a yes/no answer
        while True:
            answer = input(f"{prompt} (y/n) ").strip().lower()
            if answer in ("y", "yes"):
                return True
            if answer in ("n", "no"):
                return False
            self.warn("Please answer 'y' or 'n'.")

    def warn(self, message: str) -> None:
        logger.debug(f"[Toolbox] warn: {message}")
        print(message, file=self.err, flush=True)
