"""
Polling loop with exponential backoff on read errors.
"""

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol

import structlog

from .models import ReadError

logger = structlog.get_logger()

STOPPED = "stopped"
CANCELLED = "cancelled"
TIMEOUT = "timeout"


class BackoffPolicy(Protocol):
    """Delay to apply after the n-th consecutive read error (n >= 1)."""

    def delay(self, attempt: int) -> float: ...


@dataclass(frozen=True)
class ExponentialBackoff:
    base: float
    max_delay: float
    factor: float = 2.0

    def delay(self, attempt: int) -> float:
        return min(self.base * (self.factor ** (attempt - 1)), self.max_delay)


@dataclass(frozen=True)
class Terminated:
    """Why the scheduler stopped."""

    reason: str
    polls: int
    last_outcome: Any = None


class PollingScheduler:
    """
    Calls a poll function at a fixed cadence until told to stop.

    The inter-poll sleep waits on the cancellation event, so setting it
    from a signal handler or another thread wakes the loop immediately.
    """

    def __init__(
        self,
        interval: float,
        backoff: Optional[BackoffPolicy] = None,
        cancel: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = interval
        self.backoff = backoff or ExponentialBackoff(base=interval, max_delay=interval * 8)
        self.cancel = cancel or threading.Event()
        self.timeout = timeout
        self.clock = clock

    def run(
        self,
        poll_fn: Callable[[], Any],
        stop_condition: Callable[[Any], bool],
    ) -> Terminated:
        started = self.clock()
        polls = 0
        consecutive_errors = 0
        outcome: Any = None

        while True:
            if self.cancel.is_set():
                return Terminated(CANCELLED, polls, outcome)

            outcome = poll_fn()
            polls += 1

            if stop_condition(outcome):
                return Terminated(STOPPED, polls, outcome)

            if isinstance(outcome, ReadError):
                consecutive_errors += 1
                delay = self.backoff.delay(consecutive_errors)
                logger.warning(
                    "read_error_backoff",
                    cause=outcome.cause,
                    consecutive_errors=consecutive_errors,
                    delay_seconds=delay,
                )
            else:
                consecutive_errors = 0
                delay = self.interval

            if self.timeout is not None:
                remaining = self.timeout - (self.clock() - started)
                if remaining <= 0:
                    logger.warning("polling_timed_out", polls=polls, timeout_seconds=self.timeout)
                    return Terminated(TIMEOUT, polls, outcome)
                delay = min(delay, remaining)

            if self.cancel.wait(delay):
                return Terminated(CANCELLED, polls, outcome)
