"""
Remote dispatch strategy.

Fans one action (a command, an upload, a download) out over the hosts of an
SSHConfig:

- sequential: one host at a time in listed order
- parallel: every host at once, joined before returning
- groups: consecutive waves of ``limit`` hosts, each wave parallel, with a
  ``wait`` pause between waves (not after the last one)

Failures are collected per wave and raised once every task of that wave has
finished, so a statement never reports partial success. Each host task
races the shared cancel event and is interrupted as soon as it is set.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from runbook.errors import (
    ErrorCode,
    ExecutionCancelled,
    RunbookError,
    StatementFailure,
    ToolchainError,
    TransportFailure,
    handle_error,
)
from runbook.remote.ssh_config import Parallelization, SSHConfig
from runbook.remote.transport import CommandResult, Transport, TransportRouter, build_remote_command

logger = logging.getLogger(__name__)

HostAction = Callable[[str], Awaitable[Any]]


def plan_waves(servers: List[str], parallelization: Parallelization) -> List[List[str]]:
    """Partition servers into the waves the strategy dispatches together."""
    if not servers:
        return []
    if parallelization.strategy == "parallel":
        return [list(servers)]
    if parallelization.strategy == "groups":
        limit = parallelization.limit
        return [list(servers[i:i + limit]) for i in range(0, len(servers), limit)]
    return [[host] for host in servers]


class RemoteDispatcher:
    """Runs host actions according to an SSHConfig's parallelization."""

    def __init__(self, transport: Optional[Transport] = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.transport = transport or TransportRouter()
        self._sleep = sleep

    async def run_command(
        self,
        cmd: str,
        config: SSHConfig,
        cancel: asyncio.Event,
        raw: bool = False,
        on_result: Optional[Callable[[CommandResult], None]] = None,
        servers: Optional[List[str]] = None,
    ) -> List[CommandResult]:
        """Run cmd on every host; a non-zero exit on any host fails the call."""
        line = build_remote_command(cmd, config, raw=raw)

        async def action(host: str) -> CommandResult:
            result = await self.transport.run(host, line)
            if on_result is not None:
                on_result(result)
            if not result.ok:
                raise StatementFailure(
                    ErrorCode.STMT_COMMAND_FAILED,
                    f"`{cmd}` exited with status {result.exit_status} on {host}",
                    details={"host": host, "exit_status": result.exit_status,
                             "stderr": result.stderr.strip()},
                )
            return result

        return await self.dispatch(servers or config.servers, config.parallelization, action, cancel)

    async def upload(self, local_path: str, remote_path: str, config: SSHConfig,
                     cancel: asyncio.Event) -> None:
        async def action(host: str) -> None:
            await self.transport.upload(host, local_path, remote_path)

        await self.dispatch(config.servers, config.parallelization, action, cancel)

    async def download(self, remote_path: str, local_path: str, config: SSHConfig,
                       cancel: asyncio.Event) -> None:
        multiple = len(config.servers) > 1

        async def action(host: str) -> None:
            # One copy per host when several hosts hold the file
            target = f"{local_path}.{host}" if multiple else local_path
            await self.transport.download(host, remote_path, target)

        await self.dispatch(config.servers, config.parallelization, action, cancel)

    async def dispatch(self, servers: List[str], parallelization: Parallelization,
                       action: HostAction, cancel: asyncio.Event) -> List[Any]:
        waves = plan_waves(list(servers), parallelization)
        results: List[Any] = []
        failures: Dict[str, RunbookError] = {}

        for number, wave in enumerate(waves, start=1):
            if cancel.is_set():
                raise ExecutionCancelled(details={"pending_hosts": wave})

            logger.info(f"[Dispatch] wave {number}/{len(waves)} "
                        f"({parallelization.strategy}): {', '.join(wave)}")
            outcomes = await asyncio.gather(
                *(self._guarded(host, action, cancel) for host in wave),
                return_exceptions=True,
            )

            for host, outcome in zip(wave, outcomes):
                if isinstance(outcome, (asyncio.CancelledError, ExecutionCancelled)):
                    raise ExecutionCancelled(details={"host": host})
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        raise outcome
                    failures[host] = handle_error(outcome, context=host)
                else:
                    results.append(outcome)

            stop_now = failures and (parallelization.strategy != "sequential" or parallelization.fail_fast)
            if stop_now:
                break

            if parallelization.strategy == "groups" and number < len(waves):
                await self._sleep(parallelization.wait)

        if failures:
            raise self._combine(failures)
        return results

    async def _guarded(self, host: str, action: HostAction, cancel: asyncio.Event) -> Any:
        if cancel.is_set():
            raise ExecutionCancelled(details={"host": host})

        work = asyncio.ensure_future(action(host))
        stop = asyncio.ensure_future(cancel.wait())
        try:
            done, _ = await asyncio.wait({work, stop}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            stop.cancel()

        if work in done:
            return work.result()

        logger.warning(f"[Dispatch] {host}: cancellation requested, interrupting")
        work.cancel()
        try:
            await work
        except asyncio.CancelledError:
            pass
        except Exception as exc:
            logger.debug(f"[Dispatch] {host}: error while cancelling: {exc}")
        raise ExecutionCancelled(details={"host": host})

    @staticmethod
    def _combine(failures: Dict[str, RunbookError]) -> RunbookError:
        fatal = [err for err in failures.values() if isinstance(err, ToolchainError)]
        if fatal:
            return fatal[0]
        if len(failures) == 1:
            return next(iter(failures.values()))
        summary = "; ".join(f"{host}: {err.message}" for host, err in failures.items())
        unreachable = all(isinstance(e, TransportFailure) for e in failures.values())
        klass = TransportFailure if unreachable else StatementFailure
        return klass(
            ErrorCode.REMOTE_UNREACHABLE if unreachable else ErrorCode.STMT_COMMAND_FAILED,
            f"Failed on {len(failures)} hosts: {summary}",
            details={"failures": {host: err.to_dict() for host, err in failures.items()}},
        )
