from __future__ import annotations

import signal
import threading


def install_signal_handlers(cancel: threading.Event) -> None:
    """
    SIGINT/SIGTERM set `cancel` so the polling loop wakes and exits cleanly.

    A second SIGINT while already cancelling raises KeyboardInterrupt.
    """

    def _handler(signum, frame):  # pragma: no cover
        if cancel.is_set() and signum == signal.SIGINT:
            signal.default_int_handler(signum, frame)
        cancel.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _handler)
