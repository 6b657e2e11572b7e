"""
Subtensor Registrar

Watches the burn (recycle) price of a subnet and submits a single
burned_register extrinsic for a hotkey once the price is at or below the
operator's maximum.

Usage:
    # Register when the burn drops to 1.5 TAO or less
    subtensor-registrar register --coldkey "//Alice" --hotkey 5F... \
        --netuid 1 --max-price-tao 1.5

    # Check the current burn without registering
    subtensor-registrar price 1 --chain-endpoint wss://entrypoint-finney.opentensor.ai:443

    # Show recorded attempts
    subtensor-registrar history
"""

__version__ = "0.1.0"

from .config import RegistrarConfig, Settings, load_config
from .engine import RegistrationEngine
from .errors import ChainReadError, ConfigError, SubmitError
from .evaluator import Verdict, evaluate
from .guard import SubmissionGuard, SubmissionStatus
from .models import Cancelled, GaveUp, Receipt, Registered, RegistrationRequest
from .scheduler import ExponentialBackoff, PollingScheduler

__all__ = [
    "__version__",
    "RegistrarConfig",
    "Settings",
    "load_config",
    "RegistrationEngine",
    "ChainReadError",
    "ConfigError",
    "SubmitError",
    "Verdict",
    "evaluate",
    "SubmissionGuard",
    "SubmissionStatus",
    "Cancelled",
    "GaveUp",
    "Receipt",
    "Registered",
    "RegistrationRequest",
    "ExponentialBackoff",
    "PollingScheduler",
]
