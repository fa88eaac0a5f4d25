"""
runbook/remote/transport.py
Remote command composition and the transports that execute it.

A transport turns (host, command string) into a CommandResult. Two are
shipped:

- LocalTransport: runs on this machine through ``/bin/sh -c``. Used for the
  pseudo host ``local``.
- SSHTransport: runs through the ``ssh`` binary, copies files with ``scp``.

Both spawn processes with asyncio.create_subprocess_exec and terminate them
when the awaiting task is cancelled, so host fan-out can be interrupted.
"""

from __future__ import annotations

import asyncio
import logging
import shlex
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol, Sequence, Tuple

from runbook.errors import ErrorCode, StatementFailure, ToolchainError, TransportFailure
from runbook.remote.ssh_config import SSHConfig

logger = logging.getLogger(__name__)

LOCAL_HOST = "local"
SSH_CONNECTION_ERROR = 255
TERMINATE_GRACE_SECONDS = 2.0


@dataclass
class CommandResult:
    host: str
    stdout: str
    stderr: str
    exit_status: int

    @property
    def ok(self) -> bool:
        return self.exit_status == 0


def build_remote_command(cmd: str, config: SSHConfig, raw: bool = False) -> str:
    """
    Compose the shell line sent to a host.

    Non-raw commands are always handed to ``sh -c`` as one shell-quoted
    argument, so quotes and metacharacters inside them survive untouched.
    Raw commands are inserted verbatim.
    """
    prefix = "".join(f"export {key.upper()}={shlex.quote(value)}; " for key, value in config.env.items())
    if config.umask:
        prefix += f"umask {config.umask} && "

    sudo = ""
    if config.user or config.group:
        sudo = "sudo"
        if config.user:
            sudo += f" -u {shlex.quote(config.user)}"
        if config.group:
            sudo += f" -g {shlex.quote(config.group)}"
        sudo += " -- "

    if raw:
        line = f"{prefix}{sudo}{cmd}"
    elif sudo:
        line = f"{sudo}sh -c {shlex.quote(prefix + cmd)}"
    else:
        line = f"{prefix}sh -c {shlex.quote(cmd)}"

    if config.path:
        # Nothing after a failed cd may run
        line = f"cd {shlex.quote(config.path)} && ( {line} )"
    return line


def split_host(host: str) -> Tuple[str, Optional[str]]:
    """'deploy@web1:2222' -> ('deploy@web1', '2222')."""
    target, sep, port = host.rpartition(":")
    if sep and port.isdigit() and target and not target.endswith("]"):
        return target, port
    return host, None


class Transport(Protocol):
    async def run(self, host: str, command: str) -> CommandResult: ...

    async def upload(self, host: str, local_path: str, remote_path: str) -> None: ...

    async def download(self, host: str, remote_path: str, local_path: str) -> None: ...


async def _spawn_and_collect(host: str, argv: Sequence[str]) -> CommandResult:
    logger.debug(f"[Transport] {host}: {argv!r}")
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as exc:
        raise ToolchainError(argv[0]) from exc

    try:
        stdout, stderr = await proc.communicate()
    except asyncio.CancelledError:
        # Cooperative cancellation: terminate, then kill if it lingers
        if proc.returncode is None:
            try:
                proc.terminate()
                await asyncio.wait_for(proc.wait(), timeout=TERMINATE_GRACE_SECONDS)
            except ProcessLookupError:
                pass
            except asyncio.TimeoutError:
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
        logger.info(f"[Transport] {host}: terminated after cancellation")
        raise

    return CommandResult(
        host=host,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
        exit_status=proc.returncode if proc.returncode is not None else -1,
    )


class LocalTransport:
    """Executes on this machine."""

    def __init__(self, shell: str = "/bin/sh"):
        self.shell = shell

    async def run(self, host: str, command: str) -> CommandResult:
        return await _spawn_and_collect(host, [self.shell, "-c", command])

    async def upload(self, host: str, local_path: str, remote_path: str) -> None:
        await self._copy(local_path, remote_path)

    async def download(self, host: str, remote_path: str, local_path: str) -> None:
        await self._copy(remote_path, local_path)

    @staticmethod
    async def _copy(source: str, destination: str) -> None:
        if not Path(source).exists():
            raise StatementFailure(
                ErrorCode.REMOTE_TRANSFER_FAILED,
                f"No such file: {source}",
                details={"source": source, "destination": destination},
            )
        await asyncio.to_thread(shutil.copy, source, destination)


class SSHTransport:
    """Executes through the ssh and scp binaries."""

    def __init__(self, ssh_executable: str = "ssh", scp_executable: str = "scp",
                 options: Sequence[str] = ("-o", "BatchMode=yes")):
        self.ssh_executable = ssh_executable
        self.scp_executable = scp_executable
        self.options = list(options)

    def ssh_argv(self, host: str, command: str) -> List[str]:
        target, port = split_host(host)
        argv = [self.ssh_executable, *self.options]
        if port:
            argv += ["-p", port]
        return argv + [target, command]

    def scp_argv(self, host: str, source: str, destination: str) -> List[str]:
        _, port = split_host(host)
        argv = [self.scp_executable, *self.options]
        if port:
            argv += ["-P", port]
        return argv + [source, destination]

    async def run(self, host: str, command: str) -> CommandResult:
        result = await _spawn_and_collect(host, self.ssh_argv(host, command))
        if result.exit_status == SSH_CONNECTION_ERROR:
            raise TransportFailure(
                ErrorCode.REMOTE_UNREACHABLE,
                f"Could not reach {host}: {result.stderr.strip() or 'ssh exited with 255'}",
                details={"host": host},
            )
        return result

    async def upload(self, host: str, local_path: str, remote_path: str) -> None:
        target, _ = split_host(host)
        await self._scp(host, local_path, f"{target}:{remote_path}")

    async def download(self, host: str, remote_path: str, local_path: str) -> None:
        target, _ = split_host(host)
        await self._scp(host, f"{target}:{remote_path}", local_path)

    async def _scp(self, host: str, source: str, destination: str) -> None:
        result = await _spawn_and_collect(host, self.scp_argv(host, source, destination))
        if not result.ok:
            raise StatementFailure(
                ErrorCode.REMOTE_TRANSFER_FAILED,
                f"Copy {source} -> {destination} failed on {host}: {result.stderr.strip()}",
                details={"host": host, "exit_status": result.exit_status},
            )


class TransportRouter:
    """Sends ``local`` to the local transport and every other host over ssh."""

    def __init__(self, local: Optional[Transport] = None, remote: Optional[Transport] = None):
        self.local = local or LocalTransport()
        self.remote = remote or SSHTransport()

    def for_host(self, host: str) -> Transport:
        return self.local if host == LOCAL_HOST else self.remote

    async def run(self, host: str, command: str) -> CommandResult:
        return await self.for_host(host).run(host, command)

    async def upload(self, host: str, local_path: str, remote_path: str) -> None:
        await self.for_host(host).upload(host, local_path, remote_path)

    async def download(self, host: str, remote_path: str, local_path: str) -> None:
        await self.for_host(host).download(host, remote_path, local_path)
