"""
Block time estimation, used to poll once per block.
"""

import threading
import time
from typing import Callable, Optional

import structlog

from .errors import BlockTimeEstimationError, NodeRpcError
from .rpc import NodeRpc

logger = structlog.get_logger()

BASE_BLOCK_TIME = 12.0
MAX_BLOCK_TIME = 60.0
SAMPLE_SIZE = 10
MAX_WAIT_TIME = 120.0
SAMPLE_POLL_SECONDS = 0.1


def estimate_block_time(
    rpc: NodeRpc,
    sample_size: int = SAMPLE_SIZE,
    max_wait: float = MAX_WAIT_TIME,
    cancel: Optional[threading.Event] = None,
    clock: Callable[[], float] = time.monotonic,
    poll_seconds: float = SAMPLE_POLL_SECONDS,
) -> float:
    """
    Estimate the average block time in seconds.

    Waits for `sample_size` new blocks and divides the elapsed time. The
    result is clamped to [BASE_BLOCK_TIME, MAX_BLOCK_TIME]; hitting a bound
    usually means unusual network conditions and is logged as a warning.

    Raises:
        BlockTimeEstimationError: node unreachable, too slow, or cancelled.
    """
    cancel = cancel or threading.Event()
    started = clock()

    try:
        start_block = rpc.get_block_number()
        target_block = start_block + sample_size

        while rpc.get_block_number() < target_block:
            if cancel.wait(poll_seconds):
                raise BlockTimeEstimationError("cancelled while sampling blocks")
            if clock() - started > max_wait:
                raise BlockTimeEstimationError(
                    f"exceeded maximum wait time of {max_wait}s for block sampling"
                )
    except NodeRpcError as e:
        raise BlockTimeEstimationError(f"block sampling failed: {e}") from e

    average = (clock() - started) / sample_size
    estimated = min(max(average, BASE_BLOCK_TIME), MAX_BLOCK_TIME)

    if estimated in (BASE_BLOCK_TIME, MAX_BLOCK_TIME):
        logger.warning(
            "block_time_at_bound",
            measured_seconds=round(average, 3),
            estimated_seconds=estimated,
        )

    logger.info(
        "block_time_estimated",
        estimated_seconds=estimated,
        sample_size=sample_size,
    )
    return estimated
