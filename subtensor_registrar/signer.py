"""
Keypair handling and extrinsic signing for burned registration.
"""

from typing import Protocol

import structlog
from substrateinterface import Keypair
from substrateinterface.utils.ss58 import is_valid_ss58_address

from .chain import SUBTENSOR_MODULE, SubstrateConnection
from .errors import ConfigError, SubmitError
from .models import RegistrationRequest, SignedTx

logger = structlog.get_logger()

REGISTER_CALL = "burned_register"


class Signer(Protocol):
    """Turns a registration request into a signed extrinsic."""

    address: str

    def sign(self, request: RegistrationRequest, nonce: int) -> SignedTx: ...


def load_keypair(secret: str, label: str = "key") -> Keypair:
    """
    Build a keypair from a secret URI, mnemonic, or 0x-prefixed seed.

    URIs may carry derivation paths (e.g. "//Alice" or "<mnemonic>//hot").
    """
    secret = secret.strip()
    if not secret:
        raise ConfigError(f"{label} is empty")
    try:
        if secret.startswith("0x"):
            return Keypair.create_from_seed(secret)
        return Keypair.create_from_uri(secret)
    except Exception as e:
        # Never echo the secret itself.
        raise ConfigError(f"invalid {label}: {type(e).__name__}") from e


def resolve_address(value: str, label: str = "key") -> str:
    """
    Accept either an SS58 address or a secret and return the SS58 address.
    """
    value = value.strip()
    if not value:
        raise ConfigError(f"{label} is empty")
    if is_valid_ss58_address(value):
        return value
    return load_keypair(value, label).ss58_address


class KeypairSigner:
    """Signs `SubtensorModule.burned_register` with the coldkey."""

    def __init__(self, connection: SubstrateConnection, coldkey: Keypair):
        self.connection = connection
        self.coldkey = coldkey
        self.address = coldkey.ss58_address

    @classmethod
    def from_secret(cls, connection: SubstrateConnection, secret: str) -> "KeypairSigner":
        return cls(connection, load_keypair(secret, "coldkey"))

    def sign(self, request: RegistrationRequest, nonce: int) -> SignedTx:
        if request.coldkey != self.address:
            raise SubmitError(
                f"request coldkey {request.coldkey} does not match signer {self.address}",
                retryable=False,
            )

        try:
            substrate = self.connection.get()
            call = substrate.compose_call(
                call_module=SUBTENSOR_MODULE,
                call_function=REGISTER_CALL,
                call_params={
                    "netuid": request.network_uid,
                    "hotkey": request.hotkey,
                },
            )
            extrinsic = substrate.create_signed_extrinsic(
                call=call,
                keypair=self.coldkey,
                nonce=nonce,
            )
        except Exception as e:
            # Nothing has been sent yet, so another attempt is safe.
            self.connection.reset()
            raise SubmitError(f"signing failed: {e}", retryable=True) from e

        logger.info(
            "registration_signed",
            coldkey=self.address,
            hotkey=request.hotkey,
            netuid=request.network_uid,
            nonce=nonce,
        )
        return SignedTx(request=request, nonce=nonce, payload=extrinsic)
