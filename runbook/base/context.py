"""
runbook/base/context.py
Execution context threaded through a walk.
"""

import asyncio
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional


class Glue:
    """
    Shared mutable boolean cell.

    One Glue is created per walk and every derived ExecutionContext holds a
    reference to the same object, so flipping it inside one handler is seen
    by every node dispatched afterwards.
    """

    __slots__ = ("value",)

    def __init__(self, value: bool = False):
        self.value = bool(value)

    def set(self, value: bool = True) -> None:
        self.value = bool(value)

    def __bool__(self) -> bool:
        return self.value

    def __repr__(self) -> str:
        return f"Glue({self.value})"


@dataclass
class ExecutionContext:
    """
    Per-node metadata passed down the walk.

    Scalar fields (depth, index, parent, position) are replaced for every
    node. Glue cells, vars, layout_panes and the cancel event are shared by
    reference between a context and everything derived from it.
    """
    toolbox: Any = None
    noop: bool = False
    auto: bool = False
    paranoid: bool = True
    start_at: Optional[str] = None
    book_title: str = ""
    layout_panes: Dict[str, str] = field(default_factory=dict)
    vars: Dict[str, Any] = field(default_factory=dict)
    depth: int = 0
    index: int = 0
    parent: Any = None
    position: str = ""
    reverse: Glue = field(default_factory=Glue)
    reversed: Glue = field(default_factory=Glue)
    cancel: asyncio.Event = field(default_factory=asyncio.Event)

    def derive(self, **changes: Any) -> "ExecutionContext":
        # dataclasses.replace copies attribute references; cells stay shared
        return replace(self, **changes)
