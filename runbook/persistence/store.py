"""
Resume store.

Two files per book title live in the state directory:

- the stored pose: position of the last statement that completed
- the repo: a snapshot of the tree (``Book.to_dict``), its digest and the
  variables captured so far

Both are removed when a fresh run starts; the pose is removed when a walk
completes successfully. Files are replaced atomically (temp file in the
same directory, fsync, ``os.replace``) so a crash never leaves a partially
written position behind.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from runbook.errors import ErrorCode, RunbookError
from runbook.layout.tmux import slug

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def atomic_write_text(path: PathLike, text: str, encoding: str = "utf-8") -> Path:
    dst = Path(path)
    dst.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{dst.name}.", suffix=".tmp", dir=str(dst.parent))
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding=encoding) as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(str(tmp), str(dst))
    finally:
        if tmp.exists():
            tmp.unlink()
    return dst


def atomic_write_json(path: PathLike, data: Any) -> Path:
    return atomic_write_text(path, json.dumps(data, indent=2, sort_keys=True, default=str))


class PoseRecord(BaseModel):
    title: str
    position: str
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RepoRecord(BaseModel):
    title: str
    digest: str
    book: Dict[str, Any] = Field(default_factory=dict)
    vars: Dict[str, Any] = Field(default_factory=dict)


class _TitledFile:
    """A JSON file in the state directory whose name derives from a book title."""

    prefix = ""
    record_type: type = BaseModel

    def __init__(self, state_dir: PathLike, prefix: Optional[str] = None):
        self.state_dir = Path(state_dir)
        if prefix is not None:
            self.prefix = prefix

    def file(self, title: str) -> Path:
        return self.state_dir / f"{self.prefix}{slug(title)}"

    def delete(self, title: str) -> None:
        path = self.file(title)
        if path.exists():
            logger.debug(f"[Store] Removing {path}")
            path.unlink()

    def _read(self, title: str):
        path = self.file(title)
        if not path.exists():
            return None
        try:
            return self.record_type.model_validate_json(path.read_text(encoding="utf-8"))
        except (PydanticValidationError, ValueError) as exc:
            raise RunbookError(
                ErrorCode.STORE_CORRUPT,
                f"Unreadable resume file {path}; delete it to start over",
                details={"path": str(path), "error": str(exc)},
            ) from exc

    def _write(self, record: BaseModel) -> Path:
        return atomic_write_text(self.file(record.title), record.model_dump_json(indent=2))


class StoredPose(_TitledFile):
    """Position of the last completed statement of a book."""

    prefix = "runbook_pose_"
    record_type = PoseRecord

    def save(self, title: str, position: str) -> Path:
        return self._write(PoseRecord(title=title, position=position))

    def load(self, title: str) -> Optional[str]:
        record = self._read(title)
        return record.position if record is not None else None


class Repo(_TitledFile):
    """Tree snapshot and captured variables of a book's current run."""

    prefix = "runbook_repo_"
    record_type = RepoRecord

    def save(self, title: str, book: Dict[str, Any], digest: str,
             vars: Optional[Dict[str, Any]] = None) -> Path:
        # Round trip through json so unserializable values become strings
        safe_vars = json.loads(json.dumps(vars or {}, default=str))
        return self._write(RepoRecord(title=title, digest=digest, book=book, vars=safe_vars))

    def load(self, title: str) -> Optional[RepoRecord]:
        return self._read(title)
