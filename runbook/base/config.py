# runbook/base/config.py
# Engine configuration with environment overrides

from __future__ import annotations

import os
import logging
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SSHDefaults:
    # Hosts used by commands that do not name any ("local" runs on this machine)
    servers: tuple = ("local",)
    strategy: str = "sequential"
    limit: int = 2
    wait: float = 2.0
    # ssh/scp executables and extra options passed before the host
    ssh_executable: str = "ssh"
    scp_executable: str = "scp"
    ssh_options: tuple = ("-o", "BatchMode=yes")

    def as_ssh_config(self) -> Dict[str, Any]:
        return {
            "servers": list(self.servers),
            "parallelization": {
                "strategy": self.strategy,
                "limit": self.limit,
                "wait": self.wait,
            },
        }


@dataclass(frozen=True)
class AssertDefaults:
    interval: float = 1.0
    timeout: float = 0.0
    attempts: int = 3


@dataclass(frozen=True)
class StorageConfig:
    # Stored poses, repos and layout files live here
    state_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()))
    pose_prefix: str = "runbook_pose_"
    repo_prefix: str = "runbook_repo_"


@dataclass(frozen=True)
class LogConfig:
    level: str = "WARNING"
    format: str = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    file_enabled: bool = False
    file_name: str = "runbook.log"
    max_file_size_mb: int = 10
    backup_count: int = 5


@dataclass
class RunbookConfig:
    ssh: SSHDefaults = field(default_factory=SSHDefaults)
    assertion: AssertDefaults = field(default_factory=AssertDefaults)
    storage: StorageConfig = field(default_factory=StorageConfig)
    log: LogConfig = field(default_factory=LogConfig)
    paranoid: bool = True

    @classmethod
    def from_env(cls) -> "RunbookConfig":
        servers_str = os.getenv("RUNBOOK_SERVERS", "")
        servers = tuple(s.strip() for s in servers_str.split(",") if s.strip()) or ("local",)

        ssh = SSHDefaults(
            servers=servers,
            strategy=os.getenv("RUNBOOK_STRATEGY", "sequential"),
            limit=int(os.getenv("RUNBOOK_GROUP_LIMIT", "2")),
            wait=float(os.getenv("RUNBOOK_GROUP_WAIT", "2")),
            ssh_executable=os.getenv("RUNBOOK_SSH", "ssh"),
            scp_executable=os.getenv("RUNBOOK_SCP", "scp"),
        )

        assertion = AssertDefaults(
            interval=float(os.getenv("RUNBOOK_ASSERT_INTERVAL", "1")),
            timeout=float(os.getenv("RUNBOOK_ASSERT_TIMEOUT", "0")),
            attempts=int(os.getenv("RUNBOOK_ASSERT_ATTEMPTS", "3")),
        )

        state_dir = Path(os.getenv("RUNBOOK_STATE_DIR", tempfile.gettempdir()))
        storage = StorageConfig(state_dir=state_dir)

        log = LogConfig(
            level=os.getenv("RUNBOOK_LOG_LEVEL", "WARNING"),
            file_enabled=os.getenv("RUNBOOK_LOG_FILE", "false").lower() == "true",
        )

        return cls(
            ssh=ssh,
            assertion=assertion,
            storage=storage,
            log=log,
            paranoid=os.getenv("RUNBOOK_PARANOID", "true").lower() == "true",
        )


_config: Optional[RunbookConfig] = None


def get_config() -> RunbookConfig:
    global _config
    if _config is None:
        _config = RunbookConfig.from_env()
    return _config


def set_config(config: RunbookConfig) -> None:
    global _config
    _config = config


def setup_logging(config: Optional[RunbookConfig] = None) -> None:
    cfg = config or get_config()

    handlers: List[logging.Handler] = [logging.StreamHandler()]

    if cfg.log.file_enabled:
        from logging.handlers import RotatingFileHandler
        cfg.storage.state_dir.mkdir(parents=True, exist_ok=True)
        log_path = cfg.storage.state_dir / cfg.log.file_name
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=cfg.log.max_file_size_mb * 1024 * 1024,
            backupCount=cfg.log.backup_count,
        )
        handlers.append(file_handler)

    logging.basicConfig(
        level=getattr(logging, cfg.log.level.upper(), logging.WARNING),
        format=cfg.log.format,
        handlers=handlers,
        force=True,
    )
