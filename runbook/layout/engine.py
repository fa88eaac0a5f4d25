"""
Layout engine.

Turns a Layout statement's structure into tmux panes and returns the mapping
from pane name to pane id. Structures nest:

    ["left", ["top_right", "bottom_right"]]          two columns, right one split
    {"logs": 30, "shell": 70}                        weighted split
    {"name": "web", "directory": "/srv", "command": "tail -f log"}
    {"Deploy": [...], "Monitoring": [...]}           one window per key

Splits alternate with recursion depth: side by side at even depth, stacked
at odd depth. The result is written to the runbook's layout file so a
resumed run reuses panes that still exist.
"""

from __future__ import annotations

import copy
import glob
import json
import logging
import os
from numbers import Number
from typing import Any, Dict, List, Optional

from runbook.errors import ErrorCode, ValidationError
from runbook.layout.tmux import LAYOUT_FILE_PREFIX, TmuxHelper, slug

logger = logging.getLogger(__name__)

PANE_DEFINITION_KEYS = {"name", "directory", "command", "runbook_pane"}


class LayoutEngine:
    def __init__(self, tmux: Optional[TmuxHelper] = None):
        self.tmux = tmux or TmuxHelper()

    def setup_layout(self, structure: Any, runbook_title: str) -> Dict[str, str]:
        """Build (or reuse) the panes for structure. Returns {name: pane_id}."""
        self.remove_stale_layouts()
        layout_file = self.tmux.layout_file(slug(runbook_title))

        stored = self._load(layout_file)
        if stored and self._all_panes_exist(stored):
            logger.info(f"[Layout] Reusing stored layout {layout_file}")
            return stored

        layout_panes = self.build(structure)
        self._save(layout_file, layout_panes)
        return layout_panes

    def build(self, structure: Any) -> Dict[str, str]:
        # The recursion consumes lists and dicts; work on a copy
        structure = copy.deepcopy(structure)
        layout_panes: Dict[str, str] = {}
        panes_to_init: List[Dict[str, Any]] = []
        current_pane = self.tmux.runbook_pane()

        if isinstance(structure, dict) and not self._is_pane_definition(structure) \
                and not self._is_weighted(structure):
            first_window = True
            for window_name, window_structure in structure.items():
                if first_window:
                    self.tmux.rename_window(window_name)
                    pane = current_pane
                    first_window = False
                else:
                    pane = self.tmux.new_window(window_name)
                self._layout(pane, 0, window_structure, panes_to_init, layout_panes)
        else:
            self._layout(current_pane, 0, structure, panes_to_init, layout_panes)

        self._initialize_panes(panes_to_init)
        return layout_panes

    def _layout(self, pane: str, depth: int, structure: Any,
                panes_to_init: List[Dict[str, Any]], layout_panes: Dict[str, str]) -> None:
        if isinstance(structure, list):
            if not structure:
                return
            if len(structure) == 1:
                self._layout(pane, depth + 1, structure[0], panes_to_init, layout_panes)
                return
            size = 100 - 100 // len(structure)
            new_pane = self.tmux.split(pane, depth, size)
            first = structure.pop(0)
            self._layout(pane, depth + 1, first, panes_to_init, layout_panes)
            self._layout(new_pane, depth, structure, panes_to_init, layout_panes)

        elif isinstance(structure, dict) and self._is_weighted(structure):
            if len(structure) == 1:
                only = next(iter(structure))
                self._layout(pane, depth + 1, self._weighted_key(only), panes_to_init, layout_panes)
                return
            total = sum(structure.values())
            first = next(iter(structure))
            size = int((total - structure[first]) * 100 / total)
            new_pane = self.tmux.split(pane, depth, size)
            structure.pop(first)
            self._layout(pane, depth + 1, self._weighted_key(first), panes_to_init, layout_panes)
            self._layout(new_pane, depth, structure, panes_to_init, layout_panes)

        elif isinstance(structure, dict) and self._is_pane_definition(structure):
            layout_panes[structure["name"]] = pane
            panes_to_init.append({**structure, "pane_id": pane})

        elif isinstance(structure, str):
            layout_panes[structure] = pane

        else:
            raise ValidationError(
                f"Unsupported layout structure: {structure!r}",
                details={"structure": repr(structure)},
                code=ErrorCode.TREE_INVALID_OPTION,
            )

    def _initialize_panes(self, panes_to_init: List[Dict[str, Any]]) -> None:
        for pane in panes_to_init:
            pane_id = pane["pane_id"]
            if pane.get("runbook_pane"):
                runbook_pane = self.tmux.runbook_pane()
                if pane_id != runbook_pane:
                    self.tmux.swap_panes(pane_id, runbook_pane)
                continue
            if pane.get("directory"):
                self.tmux.set_directory(pane["directory"], pane_id)
            if pane.get("command"):
                self.tmux.send_keys(pane["command"], pane_id)

    @staticmethod
    def _is_weighted(structure: dict) -> bool:
        return bool(structure) and all(
            isinstance(v, Number) and not isinstance(v, bool) for v in structure.values()
        )

    @staticmethod
    def _is_pane_definition(structure: dict) -> bool:
        return "name" in structure and set(structure) <= PANE_DEFINITION_KEYS

    @staticmethod
    def _weighted_key(key: Any) -> Any:
        # A tuple key nests a split inside the weighted slot
        return list(key) if isinstance(key, tuple) else key

    def kill_panes(self, layout_panes: Dict[str, str]) -> None:
        runbook_pane = self.tmux.runbook_pane()
        for name, pane_id in layout_panes.items():
            if pane_id == runbook_pane:
                continue
            logger.info(f"[Layout] Killing pane {name} ({pane_id})")
            self.tmux.kill_pane(pane_id)

    def remove_stale_layouts(self) -> None:
        """Delete layout files written under a tmux server that is gone."""
        pattern = os.path.join(self.tmux.state_dir, f"{LAYOUT_FILE_PREFIX}*")
        files = glob.glob(pattern)
        if not files:
            return
        server_pid = self.tmux.server_pid()
        for path in files:
            pid = os.path.basename(path)[len(LAYOUT_FILE_PREFIX):].split("_", 1)[0]
            if pid != server_pid:
                logger.debug(f"[Layout] Removing stale layout file {path}")
                try:
                    os.remove(path)
                except FileNotFoundError:
                    pass

    def _all_panes_exist(self, layout_panes: Dict[str, str]) -> bool:
        existing = self.tmux.list_panes()
        return all(pane in existing for pane in layout_panes.values())

    @staticmethod
    def _load(path: str) -> Optional[Dict[str, str]]:
        if not os.path.exists(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            logger.warning(f"[Layout] Ignoring unreadable layout file {path}: {exc}")
            return None
        return data if isinstance(data, dict) else None

    @staticmethod
    def _save(path: str, layout_panes: Dict[str, str]) -> None:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(layout_panes, f, indent=2)
