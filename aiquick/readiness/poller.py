"""Bounded polling: evaluate a predicate on a fixed cadence until ready or timeout.

Every readiness wait in the workflow (instance status, SSH reachability,
HTTP health, model loaded) is a PollSpec run through poll(). Its
``fatal`` flag decides whether running out of time raises or only warns.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

import httpx

from aiquick.errors import ReadinessTimeout, RemoteCommandError

logger = logging.getLogger(__name__)

# Failures that mean "not ready yet" rather than "broken"
TRANSIENT_ERRORS = (httpx.TransportError, RemoteCommandError, OSError, TimeoutError)


class PollStatus(str, Enum):
    READY = "ready"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class PollResult:
    status: PollStatus
    elapsed: float
    attempts: int

    @property
    def ready(self) -> bool:
        return self.status == PollStatus.READY


@dataclass(frozen=True)
class PollSpec:
    """One bounded wait.

    Attributes:
        stage: name used in logs and in ReadinessTimeout.
        predicate: async callable returning True once ready.
        interval: seconds between attempts.
        timeout: wall-clock budget in seconds.
        fatal: raise ReadinessTimeout on timeout (True) or warn and continue (False).
        fatal_errors: exception types that abort the wait immediately.
    """

    stage: str
    predicate: Callable[[], Awaitable[bool]]
    interval: float
    timeout: float
    fatal: bool = True
    fatal_errors: tuple = ()


def format_elapsed(seconds) -> str:
    """Human-readable duration: ``42s`` or ``3m 5s``."""
    seconds = int(seconds)
    if seconds >= 60:
        return f"{seconds // 60}m {seconds % 60}s"
    return f"{seconds}s"


async def poll_until(predicate, interval, timeout, fatal_errors=(), clock=None, sleep=None) -> PollResult:
    """Evaluate *predicate* every *interval* seconds until it returns True.

    Exceptions listed in *fatal_errors* propagate. Transient failures
    (TRANSIENT_ERRORS) are treated exactly like a False result. The final
    attempt happens at *timeout*, and an attempt still running at
    *timeout* + *interval* is abandoned as not ready, so a predicate that
    never succeeds times out no earlier than *timeout* and no later than
    *timeout* + *interval*, however slow it is.

    Args:
        clock: monotonic time source (default time.monotonic).
        sleep: async sleep (default asyncio.sleep).
    """
    clock = clock or time.monotonic
    sleep = sleep or asyncio.sleep

    start = clock()
    attempts = 0
    while True:
        attempts += 1
        try:
            budget = timeout + interval - (clock() - start)
            if await asyncio.wait_for(predicate(), budget):
                return PollResult(PollStatus.READY, clock() - start, attempts)
        except fatal_errors:
            raise
        except TRANSIENT_ERRORS as e:
            logger.debug(f"Not ready yet (attempt {attempts}): {e}")

        elapsed = clock() - start
        if elapsed >= timeout:
            return PollResult(PollStatus.TIMED_OUT, elapsed, attempts)
        await sleep(min(interval, timeout - elapsed))


async def poll(spec: PollSpec, clock=None, sleep=None) -> PollResult:
    """Run a PollSpec and apply its timeout classification.

    Raises:
        ReadinessTimeout: timed out and ``spec.fatal`` is set.
    """
    result = await poll_until(spec.predicate, spec.interval, spec.timeout, spec.fatal_errors, clock=clock, sleep=sleep)
    if result.ready:
        logger.info(f"{spec.stage}: ready (took {format_elapsed(result.elapsed)})")
        return result
    if spec.fatal:
        logger.error(f"{spec.stage}: timed out after {format_elapsed(result.elapsed)}")
        raise ReadinessTimeout(spec.stage, spec.timeout)
    logger.warning(f"{spec.stage}: not ready after {format_elapsed(result.elapsed)}, continuing")
    return result
