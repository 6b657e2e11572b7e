"""
Subtensor chain access via substrate-interface.

Everything that talks to the node is caught here and converted into
ChainReadError / SubmitError before it reaches the engine.
"""

from typing import Any, Callable, Optional, Protocol

import structlog
from substrateinterface import SubstrateInterface

from .errors import ChainReadError, SubmitError
from .models import Price, Receipt, RegistrationRequest, SignedTx

logger = structlog.get_logger()

SUBTENSOR_MODULE = "SubtensorModule"

# Dispatch errors worth one more attempt. Anything not listed is terminal.
RETRYABLE_DISPATCH_ERRORS = frozenset(
    {
        "TooManyRegistrationsThisBlock",
        "TooManyRegistrationsThisInterval",
        "TxRateLimitExceeded",
    }
)

# Pool rejections (JSON-RPC 1010/1014) that go away with a fresh nonce or price.
RETRYABLE_POOL_MESSAGES = (
    "priority is too low",
    "transaction is outdated",
    "stale",
    "future",
    "temporarily banned",
)

TERMINAL_REASONS = {
    "HotKeyAlreadyRegisteredInSubNet": "already registered",
    "NotEnoughBalanceToStake": "insufficient balance",
    "NotEnoughBalance": "insufficient balance",
    "BalanceWithdrawalError": "insufficient balance",
    "SubNetworkDoesNotExist": "subnet does not exist",
    "SubnetNotExists": "subnet does not exist",
    "SubNetRegistrationDisabled": "registration disabled on subnet",
    "RegistrationDisabled": "registration disabled on subnet",
    "NonAssociatedColdKey": "hotkey owned by another coldkey",
}


class ChainClient(Protocol):
    """What the engine needs from the node."""

    def read_price(self) -> Price: ...

    def submit(self, tx: SignedTx) -> Receipt: ...

    def get_nonce(self, address: str) -> int: ...

    def is_registered(self, request: RegistrationRequest) -> bool: ...


def classify_dispatch_error(error: Any) -> SubmitError:
    """Map a failed extrinsic's dispatch error onto the submit taxonomy."""
    if isinstance(error, dict):
        name = error.get("name") or error.get("type") or "UnknownError"
    else:
        name = str(error) if error else "UnknownError"

    if name in RETRYABLE_DISPATCH_ERRORS:
        return SubmitError(name, retryable=True)

    reason = TERMINAL_REASONS.get(name)
    return SubmitError(f"{reason} ({name})" if reason else name, retryable=False)


def classify_submission_exception(exc: Exception) -> SubmitError:
    """Map an exception raised while sending an extrinsic."""
    message = exc.args[0] if exc.args else exc
    if isinstance(message, dict):
        text = " ".join(str(v) for v in message.values())
    else:
        text = str(message)

    lowered = text.lower()
    if "inability to pay" in lowered:
        return SubmitError(f"insufficient balance ({text})", retryable=False)
    if any(marker in lowered for marker in RETRYABLE_POOL_MESSAGES):
        return SubmitError(text, retryable=True)
    if isinstance(exc, OSError):
        return SubmitError(f"connection lost during submission: {text}", retryable=True)
    return SubmitError(text, retryable=False)


class SubstrateConnection:
    """
    Lazily opened websocket connection shared by the client and signer.

    `reset()` drops a broken connection; the next `get()` reconnects.
    """

    def __init__(
        self,
        url: str,
        factory: Optional[Callable[[], SubstrateInterface]] = None,
    ):
        self.url = url
        self._factory = factory or (lambda: SubstrateInterface(url=url))
        self._substrate: Optional[SubstrateInterface] = None

    def get(self) -> SubstrateInterface:
        if self._substrate is None:
            self._substrate = self._factory()
            logger.info("substrate_connected", url=self.url)
        return self._substrate

    def reset(self) -> None:
        if self._substrate is None:
            return
        try:
            self._substrate.close()
        except Exception as e:
            logger.warning("substrate_close_error", error=str(e))
        self._substrate = None

    def close(self) -> None:
        self.reset()


class SubstrateChainClient:
    """ChainClient for a subtensor node."""

    def __init__(
        self,
        connection: SubstrateConnection,
        network_uid: int,
        wait_for_finalization: bool = False,
    ):
        self.connection = connection
        self.network_uid = network_uid
        self.wait_for_finalization = wait_for_finalization

    def _query(self, storage_function: str, params: list[Any]) -> Any:
        try:
            result = self.connection.get().query(SUBTENSOR_MODULE, storage_function, params)
        except Exception as e:
            self.connection.reset()
            raise ChainReadError(f"{storage_function} query failed: {e}") from e
        return result.value if result is not None else None

    def read_price(self) -> Price:
        """Current burn (registration cost) of the subnet, in rao."""
        value = self._query("Burn", [self.network_uid])
        if value is None:
            raise ChainReadError(f"Burn value not found for netuid {self.network_uid}")
        return int(value)

    def is_registered(self, request: RegistrationRequest) -> bool:
        """True if the hotkey already holds a UID on the subnet."""
        return self._query("Uids", [request.network_uid, request.hotkey]) is not None

    def get_nonce(self, address: str) -> int:
        try:
            return self.connection.get().get_account_nonce(address)
        except Exception as e:
            self.connection.reset()
            raise ChainReadError(f"nonce lookup failed: {e}") from e

    def submit(self, tx: SignedTx) -> Receipt:
        """Send the extrinsic and wait for inclusion."""
        try:
            receipt = self.connection.get().submit_extrinsic(
                tx.payload,
                wait_for_inclusion=True,
                wait_for_finalization=self.wait_for_finalization,
            )
        except Exception as e:
            error = classify_submission_exception(e)
            logger.error(
                "extrinsic_submission_error",
                error=error.reason,
                retryable=error.retryable,
                nonce=tx.nonce,
            )
            if isinstance(e, OSError):
                self.connection.reset()
            raise error from e

        try:
            success = receipt.is_success
            error_message = None if success else receipt.error_message
        except Exception as e:
            raise SubmitError(f"could not read inclusion result: {e}", retryable=False) from e

        if not success:
            error = classify_dispatch_error(error_message)
            logger.error(
                "extrinsic_failed",
                extrinsic_hash=receipt.extrinsic_hash,
                block_hash=receipt.block_hash,
                error=error.reason,
                retryable=error.retryable,
            )
            raise error

        logger.info(
            "extrinsic_included",
            extrinsic_hash=receipt.extrinsic_hash,
            block_hash=receipt.block_hash,
        )
        return Receipt(extrinsic_hash=receipt.extrinsic_hash, block_hash=receipt.block_hash)
