"""
runbook/layout/tmux.py
Thin wrapper around the tmux commands the layout engine and TmuxCommand use.

Every call shells out to ``tmux`` with an argv list (no shell parsing) and
returns the trimmed stdout, which for split-window/new-window/display-message
is the created or queried pane id.
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
import tempfile
from typing import List, Optional, Set

from runbook.errors import ErrorCode, StatementFailure, ToolchainError

logger = logging.getLogger(__name__)

# Leaves a pager (less, man, git log) and clears the prompt line before typing
PAGER_ESCAPE_SEQUENCE = "q C-u"

LAYOUT_FILE_PREFIX = "runbook_layout_"

_WORD_BOUNDARY = re.compile(r"([a-z])([A-Z])")
_WHITESPACE = re.compile(r"\s+")


def slug(title: str) -> str:
    """
    File-name friendly form of a title.

    "Hello World" -> "hello-world", "TestFILE" -> "test-file". Punctuation
    other than whitespace is kept as is.
    """
    text = _WORD_BOUNDARY.sub(r"\1-\2", title.strip())
    return _WHITESPACE.sub("-", text).lower()


class TmuxHelper:
    """tmux operations. One instance caches the id of the pane it runs in."""

    def __init__(self, executable: str = "tmux", state_dir: Optional[str] = None):
        self.executable = executable
        self.state_dir = state_dir or tempfile.gettempdir()
        self._runbook_pane: Optional[str] = None

    def _tmux(self, *args: str) -> str:
        argv = [self.executable, *args]
        logger.debug(f"[Tmux] {argv!r}")
        try:
            proc = subprocess.run(argv, capture_output=True, text=True, check=False)
        except FileNotFoundError as exc:
            raise ToolchainError(self.executable) from exc
        if proc.returncode != 0:
            raise StatementFailure(
                ErrorCode.LAYOUT_TMUX_FAILED,
                f"tmux {args[0]} failed: {proc.stderr.strip()}",
                details={"argv": argv, "exit_status": proc.returncode},
            )
        return (proc.stdout or "").strip()

    def runbook_pane(self) -> str:
        """Id of the pane the runbook itself runs in. Looked up once."""
        if self._runbook_pane is None:
            self._runbook_pane = self._tmux("display-message", "-p", "#D")
        return self._runbook_pane

    def rename_window(self, name: str) -> None:
        self._tmux("rename-window", name)

    def split(self, pane: str, depth: int, size: int) -> str:
        """Split pane: side by side at even depth, stacked at odd depth."""
        direction = "-h" if depth % 2 == 0 else "-v"
        return self._tmux("split-window", direction, "-t", pane, "-p", str(size), "-P", "-F", "#D", "-d")

    def swap_panes(self, source: str, target: str) -> None:
        self._tmux("swap-pane", "-d", "-t", source, "-s", target)

    def send_keys(self, command: str, target: str) -> None:
        self._tmux("send-keys", "-t", target, *PAGER_ESCAPE_SEQUENCE.split(), command, "C-m")

    def set_directory(self, directory: str, pane: str) -> None:
        self.send_keys(f"cd {directory}; clear", pane)

    def new_window(self, name: str) -> str:
        return self._tmux("new-window", "-n", name, "-P", "-F", "#D", "-d")

    def kill_pane(self, pane: str) -> None:
        self._tmux("kill-pane", "-t", pane)

    def list_panes(self) -> Set[str]:
        output = self._tmux("list-panes", "-a", "-F", "#D")
        return {line.strip() for line in output.splitlines() if line.strip()}

    def server_pid(self) -> str:
        return self._tmux("display-message", "-p", "#{pid}")

    def layout_file(self, runbook_title: str) -> str:
        """
        Path of the file that remembers this runbook's panes.

        tmux expands the format, so the name embeds the server pid, session
        name, the originating pane's pid and id, and the runbook title.
        """
        # A literal # is written ## in a tmux format
        fmt = os.path.join(
            str(self.state_dir).replace("#", "##"),
            f"{LAYOUT_FILE_PREFIX}#{{pid}}_#{{session_name}}_#{{pane_pid}}_#{{pane_id}}_"
            f"{runbook_title.replace('#', '##')}.json",
        )
        args: List[str] = ["display-message", "-p"]
        pane = os.environ.get("TMUX_PANE")
        if pane:
            args += ["-t", pane]
        return self._tmux(*args, fmt)
