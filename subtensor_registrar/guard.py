"""
At-most-once gate for the registration extrinsic.

The guard owns the submission state and only ever moves it forward:

    NOT_ATTEMPTED -> IN_FLIGHT -> ACCEPTED | REJECTED
                         |
                         +-> RETRY_GRANTED -> IN_FLIGHT (once per run)

A lock protects every transition so that several pollers sharing one
guard still build at most one transaction per grant.
"""

import threading
from enum import Enum
from typing import Optional

import structlog

from .models import Receipt

logger = structlog.get_logger()


class SubmissionStatus(str, Enum):
    NOT_ATTEMPTED = "not_attempted"
    IN_FLIGHT = "in_flight"
    RETRY_GRANTED = "retry_granted"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class GuardStateError(RuntimeError):
    """A transition was requested from the wrong state."""


class SubmissionGuard:
    """Enforces a single in-flight or accepted registration per run."""

    def __init__(self, max_retries: int = 1):
        self._lock = threading.Lock()
        self._status = SubmissionStatus.NOT_ATTEMPTED
        self._retries_left = max_retries
        self.attempts = 0
        self.receipt: Optional[Receipt] = None
        self.reason: Optional[str] = None

    @property
    def status(self) -> SubmissionStatus:
        return self._status

    def try_begin(self) -> bool:
        """Claim the right to submit. True at most once per grant."""
        with self._lock:
            if self._status not in (
                SubmissionStatus.NOT_ATTEMPTED,
                SubmissionStatus.RETRY_GRANTED,
            ):
                logger.warning("submission_denied", status=self._status.value)
                return False
            self._status = SubmissionStatus.IN_FLIGHT
            self.attempts += 1
            return True

    def complete(self, receipt: Optional[Receipt] = None, reason: Optional[str] = None) -> None:
        """
        Record the final result of the in-flight attempt.

        Pass `receipt` for an accepted extrinsic, `reason` for a rejection.
        """
        if (receipt is None) == (reason is None):
            raise ValueError("complete() takes exactly one of receipt or reason")
        with self._lock:
            if self._status is not SubmissionStatus.IN_FLIGHT:
                raise GuardStateError(f"cannot complete from {self._status.value}")
            if receipt is not None:
                self._status = SubmissionStatus.ACCEPTED
                self.receipt = receipt
            else:
                self._status = SubmissionStatus.REJECTED
                self.reason = reason

    def grant_retry(self) -> bool:
        """Allow exactly one further try_begin() after a retryable failure."""
        with self._lock:
            if self._status is not SubmissionStatus.IN_FLIGHT:
                raise GuardStateError(f"cannot grant retry from {self._status.value}")
            if self._retries_left <= 0:
                return False
            self._retries_left -= 1
            self._status = SubmissionStatus.RETRY_GRANTED
            return True
