"""
Background logger of the node's transaction pool size.
"""

import threading
from typing import Optional

import structlog

from .errors import NodeRpcError
from .rpc import NodeRpc

logger = structlog.get_logger()


class PendingExtrinsicsMonitor:
    """Logs the pending extrinsic count every `interval` seconds."""

    def __init__(
        self,
        rpc: NodeRpc,
        interval: float = 5.0,
    ):
        self.rpc = rpc
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def poll_once(self) -> Optional[int]:
        try:
            count = len(self.rpc.pending_extrinsics())
        except NodeRpcError as e:
            logger.error("pending_extrinsics_error", error=str(e))
            return None
        logger.info("pending_extrinsics", count=count)
        return count

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            self.poll_once()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._run,
            name="pending-extrinsics-monitor",
            daemon=True,
        )
        self._thread.start()

    def stop(self) -> None:
        """Signal the thread and wait for an in-flight poll to finish."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.interval)
