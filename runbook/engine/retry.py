"""Retry loop behind the Assert statement."""

import asyncio
import logging
from typing import Any, Awaitable, Callable

from runbook.errors import StatementFailure

logger = logging.getLogger(__name__)

Attempt = Callable[[], Awaitable[Any]]
Sleep = Callable[[float], Awaitable[Any]]


async def retry_until_success(attempt: Attempt, attempts: int = 3, interval: float = 1,
                              timeout: float = 0, sleep: Sleep = asyncio.sleep,
                              label: str = "assert") -> bool:
    """
    Await ``attempt()`` until it completes without a StatementFailure.

    Returns True on the first success, False once ``attempts`` tries have
    failed (``attempts=0`` never gives up). ``timeout`` bounds each try;
    ``interval`` is slept between a failed try and the next one only.
    Cancellation and toolchain errors are not retried.
    """
    number = 0
    while True:
        number += 1
        try:
            if timeout:
                await asyncio.wait_for(attempt(), timeout=timeout)
            else:
                await attempt()
            logger.info(f"[Retry] {label}: passed on attempt {number}")
            return True
        except asyncio.TimeoutError:
            logger.info(f"[Retry] {label}: attempt {number} timed out after {timeout}s")
        except StatementFailure as exc:
            logger.info(f"[Retry] {label}: attempt {number} failed: {exc.message}")

        if attempts and number >= attempts:
            logger.warning(f"[Retry] {label}: giving up after {number} attempts")
            return False
        await sleep(interval)
