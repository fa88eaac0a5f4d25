"""
Load a book from a Python file.

A book file is an ordinary Python module that builds its tree with the
builder API and binds it to a module-level name, ``book`` by convention:

    from runbook import Book

    book = Book("Restart web tier", ssh_config={"servers": ["web1", "web2"]})
    book.step("Restart").command("systemctl restart nginx")
"""

import logging
import os
import runpy
from typing import Any, Dict

from runbook.entities import Book
from runbook.errors import ErrorCode, RunbookError, ValidationError

logger = logging.getLogger(__name__)


def load_book(path: str, name: str = "book") -> Book:
    if not os.path.isfile(path):
        raise ValidationError(f"Runbook file not found: {path}", details={"path": path},
                              code=ErrorCode.TREE_LOAD_FAILED)

    try:
        namespace: Dict[str, Any] = runpy.run_path(path, run_name="__runbook__")
    except RunbookError:
        raise
    except Exception as exc:
        logger.error(f"[Loader] {path} raised {type(exc).__name__}: {exc}")
        raise ValidationError(
            f"Could not load {path}: {type(exc).__name__}: {exc}",
            details={"path": path},
            code=ErrorCode.TREE_LOAD_FAILED,
        ) from exc

    candidate = namespace.get(name)
    if not isinstance(candidate, Book):
        # Fall back to the only Book defined in the file
        books = [value for value in namespace.values() if isinstance(value, Book)]
        if len(books) != 1:
            raise ValidationError(
                f"{path} must define exactly one Book (bound to {name!r})",
                details={"path": path, "found": len(books)},
                code=ErrorCode.TREE_LOAD_FAILED,
            )
        candidate = books[0]

    logger.debug(f"[Loader] Loaded {candidate.title!r} from {path}")
    return candidate
