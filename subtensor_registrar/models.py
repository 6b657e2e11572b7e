"""
Value types shared by the engine, the chain adapter and the CLI.
"""

from dataclasses import dataclass
from typing import Any, Optional, Union

# Amounts are unsigned integers in rao (1 TAO = 10^9 rao).
Price = int
Ceiling = int


@dataclass(frozen=True)
class RegistrationRequest:
    """What is being registered: hotkey under coldkey on a subnet."""

    coldkey: str  # SS58 address of the paying account
    hotkey: str  # SS58 address of the hotkey to register
    network_uid: int


@dataclass(frozen=True)
class SignedTx:
    """A signed registration extrinsic, opaque to the engine."""

    request: RegistrationRequest
    nonce: int
    payload: Any = None


@dataclass(frozen=True)
class Receipt:
    """Inclusion receipt of an accepted registration."""

    extrinsic_hash: str
    block_hash: Optional[str] = None
    price: Optional[Price] = None


# Poll outcomes: one per scheduler cycle, consumed immediately.


@dataclass(frozen=True)
class BelowCeiling:
    price: Price


@dataclass(frozen=True)
class AboveCeiling:
    price: Price


@dataclass(frozen=True)
class ReadError:
    cause: str


PollOutcome = Union[BelowCeiling, AboveCeiling, ReadError]


# Terminal outcomes of a registration run.


@dataclass(frozen=True)
class Registered:
    receipt: Receipt


@dataclass(frozen=True)
class GaveUp:
    reason: str


@dataclass(frozen=True)
class Cancelled:
    pass


Outcome = Union[Registered, GaveUp, Cancelled]
