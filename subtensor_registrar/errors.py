"""
Error taxonomy for the registrar.

Chain-facing failures are converted into these types at the client and
signer boundaries; the engine never sees raw transport errors.
"""


class RegistrarError(Exception):
    """Base class for registrar errors."""


class ConfigError(RegistrarError):
    """Invalid or missing configuration. Fatal at startup."""


class ChainReadError(RegistrarError):
    """Transient failure while reading from the node."""


class SubmitError(RegistrarError):
    """
    Registration extrinsic was not accepted.

    `retryable` is True when the reason may no longer hold on a later
    attempt (stale nonce, low priority, rate limit).
    """

    def __init__(self, reason: str, retryable: bool = False):
        self.reason = reason
        self.retryable = retryable
        kind = "retryable" if retryable else "terminal"
        super().__init__(f"Submission failed ({kind}): {reason}")


class NodeRpcError(RegistrarError):
    """Error from a raw JSON-RPC call."""

    def __init__(self, code: int, message: str):
        self.code = code
        self.message = message
        super().__init__(f"RPC Error {code}: {message}")


class BlockTimeEstimationError(RegistrarError):
    """Not enough blocks were produced to estimate block time."""
