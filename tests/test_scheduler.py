"""
Tests for the polling loop and backoff policy.
"""

import threading
import time

import pytest

from fakes import FakeClock, RecordingEvent
from subtensor_registrar.models import AboveCeiling, BelowCeiling, ReadError
from subtensor_registrar.scheduler import (
    CANCELLED,
    STOPPED,
    TIMEOUT,
    ExponentialBackoff,
    PollingScheduler,
)


def _script(outcomes):
    """poll_fn returning the given outcomes in order."""
    it = iter(outcomes)
    return lambda: next(it)


def _stop_on_below(outcome) -> bool:
    return isinstance(outcome, BelowCeiling)


class TestExponentialBackoff:
    def test_doubles_from_base(self) -> None:
        backoff = ExponentialBackoff(base=2.0, max_delay=100.0)

        assert [backoff.delay(n) for n in range(1, 5)] == [2.0, 4.0, 8.0, 16.0]

    def test_bounded_by_max_delay(self) -> None:
        backoff = ExponentialBackoff(base=12.0, max_delay=60.0)

        assert backoff.delay(3) == 48.0
        assert backoff.delay(4) == 60.0
        assert backoff.delay(20) == 60.0

    def test_custom_factor(self) -> None:
        backoff = ExponentialBackoff(base=1.0, max_delay=100.0, factor=3.0)

        assert backoff.delay(3) == 9.0


class TestPollingScheduler:
    def test_stops_when_condition_met(self) -> None:
        cancel = RecordingEvent()
        scheduler = PollingScheduler(interval=5.0, cancel=cancel)

        result = scheduler.run(
            _script([AboveCeiling(100), AboveCeiling(80), BelowCeiling(50)]),
            _stop_on_below,
        )

        assert result.reason == STOPPED
        assert result.polls == 3
        assert result.last_outcome == BelowCeiling(50)
        assert cancel.waits == [5.0, 5.0]

    def test_backoff_grows_and_resets_after_success(self) -> None:
        cancel = RecordingEvent()
        scheduler = PollingScheduler(
            interval=3.0,
            backoff=ExponentialBackoff(base=3.0, max_delay=10.0),
            cancel=cancel,
        )

        result = scheduler.run(
            _script(
                [
                    ReadError("down"),
                    ReadError("down"),
                    ReadError("down"),
                    AboveCeiling(100),
                    ReadError("down"),
                    BelowCeiling(50),
                ]
            ),
            _stop_on_below,
        )

        assert result.reason == STOPPED
        assert cancel.waits == [3.0, 6.0, 10.0, 3.0, 3.0]

    def test_already_cancelled_does_not_poll(self) -> None:
        cancel = RecordingEvent()
        cancel.set()
        calls = []
        scheduler = PollingScheduler(interval=1.0, cancel=cancel)

        result = scheduler.run(lambda: calls.append(1), lambda _o: False)

        assert result.reason == CANCELLED
        assert result.polls == 0
        assert calls == []

    def test_cancel_during_sleep(self) -> None:
        cancel = RecordingEvent(set_after=2)
        scheduler = PollingScheduler(interval=1.0, cancel=cancel)

        result = scheduler.run(lambda: AboveCeiling(100), lambda _o: False)

        assert result.reason == CANCELLED
        assert result.polls == 2

    def test_real_event_wakes_sleep_promptly(self) -> None:
        cancel = threading.Event()
        scheduler = PollingScheduler(interval=30.0, cancel=cancel)
        threading.Timer(0.05, cancel.set).start()

        started = time.monotonic()
        result = scheduler.run(lambda: AboveCeiling(100), lambda _o: False)

        assert result.reason == CANCELLED
        assert time.monotonic() - started < 5.0

    def test_timeout(self) -> None:
        clock = FakeClock()
        cancel = RecordingEvent(clock=clock)
        scheduler = PollingScheduler(interval=4.0, cancel=cancel, timeout=10.0, clock=clock)

        result = scheduler.run(lambda: AboveCeiling(100), lambda _o: False)

        assert result.reason == TIMEOUT
        assert result.polls == 4
        # Last sleep is clipped to the remaining budget.
        assert cancel.waits == [4.0, 4.0, 2.0]

    def test_read_errors_alone_time_out(self) -> None:
        clock = FakeClock()
        cancel = RecordingEvent(clock=clock)
        scheduler = PollingScheduler(
            interval=1.0,
            backoff=ExponentialBackoff(base=1.0, max_delay=4.0),
            cancel=cancel,
            timeout=20.0,
            clock=clock,
        )

        result = scheduler.run(lambda: ReadError("down"), lambda _o: False)

        assert result.reason == TIMEOUT
        assert isinstance(result.last_outcome, ReadError)

    def test_rejects_non_positive_interval(self) -> None:
        with pytest.raises(ValueError):
            PollingScheduler(interval=0)

    def test_accepts_any_backoff_policy(self) -> None:
        class FixedBackoff:
            def delay(self, attempt: int) -> float:
                return 0.5 * attempt

        cancel = RecordingEvent()
        scheduler = PollingScheduler(interval=3.0, backoff=FixedBackoff(), cancel=cancel)

        scheduler.run(
            _script([ReadError("down"), ReadError("down"), BelowCeiling(50)]),
            _stop_on_below,
        )

        assert cancel.waits == [0.5, 1.0]
