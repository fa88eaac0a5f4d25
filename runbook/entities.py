"""
Entity nodes of a book: Book, Section, Setup and Step.

Entities own an ordered list of children (insertion order is execution
order) and hold a non-owning reference to their parent. Books and sections
hold sections, steps and setup blocks; steps and setup blocks hold
statements.
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any, Dict, Iterator, List, Optional, Tuple, Type

from runbook.builder import EntityBuilderMixin, StatementBuilderMixin
from runbook.errors import ErrorCode, ValidationError
from runbook.remote.ssh_config import SSHConfig, SSHConfigLike, coerce_ssh_config
from runbook.statements import Statement

logger = logging.getLogger(__name__)


class Node:
    """Base class for tree entities."""

    kind = "node"
    is_statement = False
    allowed_children: Tuple[Type, ...] = ()

    def __init__(self, title: Optional[str] = None, ssh_config: SSHConfigLike = None):
        self.title = title
        self.items: List[Any] = []
        self.parent: Optional["Node"] = None
        self.ssh_config: Optional[SSHConfig] = coerce_ssh_config(ssh_config)

    def add(self, child):
        if not isinstance(child, self.allowed_children):
            raise ValidationError(
                f"{type(self).__name__} cannot contain {type(child).__name__}",
                details={"parent": self.title, "child": repr(child)},
                code=ErrorCode.TREE_INVALID_CHILD,
            )
        if getattr(child, "kind", None) == "setup" and any(item.kind == "setup" for item in self.items):
            # Setup blocks all sit at position 0
            raise ValidationError(
                f"{self.title!r} already has a Setup block",
                details={"parent": self.title},
                code=ErrorCode.TREE_INVALID_CHILD,
            )
        child.parent = self
        self.items.append(child)
        return child

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        return False

    def ancestors(self) -> Iterator["Node"]:
        node = self.parent
        while node is not None:
            yield node
            node = node.parent

    def walk_nodes(self) -> Iterator[Any]:
        """Every node below this one, depth-first in document order."""
        for child in self.items:
            yield child
            if not child.is_statement:
                yield from child.walk_nodes()

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"kind": self.kind, "title": self.title}
        if self.ssh_config is not None:
            data["ssh_config"] = self.ssh_config.fragment()
        data["items"] = [child.to_dict() for child in self.items]
        return data

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.title!r})"


class Step(StatementBuilderMixin, Node):
    """Leaf container of statements."""

    kind = "step"
    allowed_children = (Statement,)

    def __init__(self, title: Optional[str] = None, parallel: bool = False,
                 ssh_config: SSHConfigLike = None):
        super().__init__(title, ssh_config=ssh_config)
        self.parallel = parallel
        if parallel:
            # Statement-level parallelization still wins when it sets a strategy
            fragment = self.ssh_config.fragment() if self.ssh_config else {}
            fragment.setdefault("parallelization", {})["strategy"] = "parallel"
            self.ssh_config = coerce_ssh_config(fragment)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.parallel:
            data["parallel"] = True
        return data


class Setup(StatementBuilderMixin, Node):
    """Statements that always run, whatever position the walk starts at."""

    kind = "setup"
    allowed_children = (Statement,)

    def __init__(self):
        super().__init__("Setup")


class Section(EntityBuilderMixin, Node):
    kind = "section"

    def __init__(self, title: str, ssh_config: SSHConfigLike = None):
        if not title:
            raise ValidationError("Section requires a title", code=ErrorCode.TREE_INVALID_OPTION)
        super().__init__(title, ssh_config=ssh_config)


class Book(EntityBuilderMixin, Node):
    kind = "book"

    def __init__(self, title: str, ssh_config: SSHConfigLike = None):
        if not title:
            raise ValidationError("Book requires a title", code=ErrorCode.TREE_INVALID_OPTION)
        super().__init__(title, ssh_config=ssh_config)

    def digest(self) -> str:
        """Stable fingerprint of the tree, used to spot edits between runs."""
        payload = json.dumps(self.to_dict(), sort_keys=True, default=str)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()


Section.allowed_children = (Section, Step, Setup)
Book.allowed_children = (Section, Step, Setup)
