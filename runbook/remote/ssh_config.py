"""
runbook/remote/ssh_config.py
Validated remote execution settings.

An SSHConfig can be attached to a book, a section, a step or a single
statement. Only the fields that were explicitly set on a fragment take part
in merging, so a step that only sets ``user`` keeps the servers declared on
its book.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Literal, Optional, Union

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator

from runbook.errors import ErrorCode, ValidationError

logger = logging.getLogger(__name__)

Strategy = Literal["sequential", "parallel", "groups"]


class Parallelization(BaseModel):
    strategy: Strategy = "sequential"
    limit: int = Field(2, ge=1, description="Hosts per wave for the groups strategy")
    wait: float = Field(2.0, ge=0, description="Seconds to pause between waves")
    # sequential only: keep going after a failed host and report every failure at the end
    fail_fast: bool = True

    @field_validator("strategy", mode="before")
    @classmethod
    def normalize_strategy(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lstrip(":").lower()
        return v


class SSHConfig(BaseModel):
    servers: List[str] = Field(default_factory=lambda: ["local"])
    parallelization: Parallelization = Field(default_factory=Parallelization)
    path: Optional[str] = None
    user: Optional[str] = None
    group: Optional[str] = None
    env: Dict[str, str] = Field(default_factory=dict)
    umask: Optional[str] = None

    @field_validator("servers", mode="before")
    @classmethod
    def validate_servers(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = [v]
        servers = [str(s).strip() for s in v]
        if not servers or any(not s for s in servers):
            raise ValueError("servers must be a non-empty list of host names")
        return servers

    @field_validator("env", mode="before")
    @classmethod
    def stringify_env(cls, v: Any) -> Any:
        if v is None:
            return {}
        return {str(k): str(val) for k, val in dict(v).items()}

    @field_validator("umask")
    @classmethod
    def validate_umask(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = str(v).strip()
        if not v or any(c not in "01234567" for c in v):
            raise ValueError(f"umask must be an octal string, got {v!r}")
        return v

    def fragment(self) -> Dict[str, Any]:
        """Only the explicitly set fields, nested models included."""
        return self.model_dump(exclude_unset=True)


SSHConfigLike = Union[SSHConfig, Dict[str, Any], None]


def coerce_ssh_config(value: SSHConfigLike) -> Optional[SSHConfig]:
    """Validate a user supplied fragment. Raises ValidationError on bad values."""
    if value is None or isinstance(value, SSHConfig):
        return value
    try:
        return SSHConfig.model_validate(value)
    except PydanticValidationError as exc:
        logger.warning(f"[SSHConfig] Rejected configuration: {exc}")
        raise ValidationError(
            f"Invalid ssh_config: {exc.errors()[0].get('msg', exc)}",
            details={"ssh_config": value},
            code=ErrorCode.CONFIG_INVALID,
        ) from exc


def merge_ssh_configs(fragments: Iterable[SSHConfigLike]) -> SSHConfig:
    """
    Merge fragments outermost first. Later fragments win field by field;
    ``parallelization`` and ``env`` are merged key by key.
    """
    merged: Dict[str, Any] = {}
    for fragment in fragments:
        config = coerce_ssh_config(fragment)
        if config is None:
            continue
        for key, value in config.fragment().items():
            if key in ("parallelization", "env") and isinstance(merged.get(key), dict):
                merged[key] = {**merged[key], **value}
            else:
                merged[key] = value
    return SSHConfig.model_validate(merged)
