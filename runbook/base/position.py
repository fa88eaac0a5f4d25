"""
Position model.

Every node of a book gets a dotted-path identifier computed from its place
among its siblings:

- Sections and steps are numbered from 1 among their entity siblings
  ("1", "1.2").
- A Setup block is always "0" within its parent and does not shift the
  numbering of its entity siblings.
- Statements are numbered from 0 among the statements of their step
  ("1.2.0").

The book itself sits at "". Positions order by integer segments, so a
position sorts before all of its descendants and "1.10" sorts after "1.9".
"""

from __future__ import annotations

import re
from typing import Dict, Iterable, Optional, Tuple

from runbook.errors import ErrorCode, ValidationError

_POSITION_RE = re.compile(r"^\d+(\.\d+)*$")


def parse_position(position: str) -> Tuple[int, ...]:
    """Turn "1.2.0" into (1, 2, 0). The empty string is the root, ()."""
    position = (position or "").strip()
    if not position:
        return ()
    if not _POSITION_RE.match(position):
        raise ValidationError(
            f"Invalid position: {position!r}",
            details={"position": position},
            code=ErrorCode.TREE_INVALID_POSITION,
        )
    return tuple(int(segment) for segment in position.split("."))


def compare_positions(a: str, b: str) -> int:
    """Return -1, 0 or 1 as position a sorts before, with, or after b."""
    pa, pb = parse_position(a), parse_position(b)
    return (pa > pb) - (pa < pb)


def position_before(position: str, start_at: Optional[str]) -> bool:
    """True when the node at position comes strictly before start_at."""
    if not start_at:
        return False
    return parse_position(position) < parse_position(start_at)


def _child_position(parent_position: str, index: int) -> str:
    return f"{parent_position}.{index}" if parent_position else str(index)


def compute_positions(root) -> Dict[int, str]:
    """
    Map every node under root (root included) to its position.

    Keys are ``id(node)`` so statements with value equality never collide.
    Deterministic and side-effect free.
    """
    positions: Dict[int, str] = {id(root): ""}
    _assign(root, "", positions)
    return positions


def _assign(node, position: str, positions: Dict[int, str]) -> None:
    entity_index = 0
    statement_index = 0
    for child in getattr(node, "items", ()):
        if getattr(child, "is_statement", False):
            child_position = _child_position(position, statement_index)
            statement_index += 1
        elif getattr(child, "kind", None) == "setup":
            child_position = _child_position(position, 0)
        else:
            entity_index += 1
            child_position = _child_position(position, entity_index)
        positions[id(child)] = child_position
        _assign(child, child_position, positions)


def next_position(positions: Iterable[str], pose: str) -> Optional[str]:
    """
    First position strictly after pose, or None when pose was the last one.

    Used to resume after the last statement that completed.
    """
    target = parse_position(pose)
    later = sorted(
        (parse_position(p), p) for p in positions if p and parse_position(p) > target
    )
    return later[0][1] if later else None
