"""
Tests for the substrate chain adapter and error classification.
"""

from typing import Any

import pytest
from substrateinterface.exceptions import SubstrateRequestException

from fakes import REQUEST, FakeQueryResult
from subtensor_registrar.chain import (
    SubstrateChainClient,
    SubstrateConnection,
    classify_dispatch_error,
    classify_submission_exception,
)
from subtensor_registrar.errors import ChainReadError, SubmitError
from subtensor_registrar.models import SignedTx


class _FakeReceipt:
    def __init__(self, is_success: bool, error_message: Any = None):
        self.is_success = is_success
        self.error_message = error_message
        self.extrinsic_hash = "0x" + "ab" * 32
        self.block_hash = "0x" + "cd" * 32


class _FakeSubstrate:
    def __init__(self, storage: dict | None = None):
        self.storage = storage or {}
        self.queries: list[tuple[str, str, list]] = []
        self.submit_result: Any = _FakeReceipt(True)
        self.query_error: Exception | None = None
        self.closed = False

    def query(self, module: str, storage_function: str, params: list) -> FakeQueryResult:
        self.queries.append((module, storage_function, params))
        if self.query_error:
            raise self.query_error
        return FakeQueryResult(self.storage.get(storage_function))

    def get_account_nonce(self, address: str) -> int:
        return 3

    def submit_extrinsic(self, extrinsic, wait_for_inclusion=False, wait_for_finalization=False):
        if isinstance(self.submit_result, Exception):
            raise self.submit_result
        return self.submit_result

    def close(self) -> None:
        self.closed = True


def _client(substrate: _FakeSubstrate) -> tuple[SubstrateChainClient, list]:
    created = []

    def factory():
        created.append(substrate)
        return substrate

    connection = SubstrateConnection("ws://node:9944", factory=factory)
    return SubstrateChainClient(connection, network_uid=1), created


def _tx() -> SignedTx:
    return SignedTx(request=REQUEST, nonce=3, payload="extrinsic")


class TestReadPrice:
    def test_reads_burn_for_netuid(self) -> None:
        substrate = _FakeSubstrate({"Burn": 1_500_000_000})
        client, _ = _client(substrate)

        assert client.read_price() == 1_500_000_000
        assert substrate.queries == [("SubtensorModule", "Burn", [1])]

    def test_missing_burn_is_read_error(self) -> None:
        client, _ = _client(_FakeSubstrate())

        with pytest.raises(ChainReadError, match="netuid 1"):
            client.read_price()

    def test_transport_error_resets_connection(self) -> None:
        substrate = _FakeSubstrate({"Burn": 10})
        substrate.query_error = BrokenPipeError("socket closed")
        client, created = _client(substrate)

        with pytest.raises(ChainReadError, match="socket closed"):
            client.read_price()
        assert substrate.closed

        substrate.query_error = None
        assert client.read_price() == 10
        assert len(created) == 2

    def test_connection_is_reused(self) -> None:
        client, created = _client(_FakeSubstrate({"Burn": 10}))

        client.read_price()
        client.read_price()

        assert len(created) == 1


class TestIsRegistered:
    def test_uid_present(self) -> None:
        substrate = _FakeSubstrate({"Uids": 42})
        client, _ = _client(substrate)

        assert client.is_registered(REQUEST) is True
        assert substrate.queries[-1] == ("SubtensorModule", "Uids", [1, REQUEST.hotkey])

    def test_uid_zero_counts_as_registered(self) -> None:
        client, _ = _client(_FakeSubstrate({"Uids": 0}))

        assert client.is_registered(REQUEST) is True

    def test_uid_absent(self) -> None:
        client, _ = _client(_FakeSubstrate())

        assert client.is_registered(REQUEST) is False


class TestSubmit:
    def test_success_returns_receipt(self) -> None:
        client, _ = _client(_FakeSubstrate())

        receipt = client.submit(_tx())

        assert receipt.extrinsic_hash == "0x" + "ab" * 32
        assert receipt.block_hash == "0x" + "cd" * 32

    def test_module_error_is_terminal(self) -> None:
        substrate = _FakeSubstrate()
        substrate.submit_result = _FakeReceipt(
            False, {"type": "Module", "name": "HotKeyAlreadyRegisteredInSubNet", "docs": []}
        )
        client, _ = _client(substrate)

        with pytest.raises(SubmitError) as exc_info:
            client.submit(_tx())

        assert exc_info.value.retryable is False
        assert "already registered" in exc_info.value.reason

    def test_rate_limit_is_retryable(self) -> None:
        substrate = _FakeSubstrate()
        substrate.submit_result = _FakeReceipt(
            False, {"type": "Module", "name": "TooManyRegistrationsThisBlock"}
        )
        client, _ = _client(substrate)

        with pytest.raises(SubmitError) as exc_info:
            client.submit(_tx())

        assert exc_info.value.retryable is True

    def test_pool_rejection_is_retryable(self) -> None:
        substrate = _FakeSubstrate()
        substrate.submit_result = SubstrateRequestException(
            {"code": 1014, "message": "Priority is too low: (100 vs 100)"}
        )
        client, _ = _client(substrate)

        with pytest.raises(SubmitError) as exc_info:
            client.submit(_tx())

        assert exc_info.value.retryable is True

    def test_connection_drop_resets_and_is_retryable(self) -> None:
        substrate = _FakeSubstrate()
        substrate.submit_result = ConnectionResetError("peer reset")
        client, _ = _client(substrate)

        with pytest.raises(SubmitError) as exc_info:
            client.submit(_tx())

        assert exc_info.value.retryable is True
        assert substrate.closed


class TestClassifyDispatchError:
    @pytest.mark.parametrize(
        "name,expected",
        [
            ("NotEnoughBalanceToStake", "insufficient balance"),
            ("SubNetworkDoesNotExist", "subnet does not exist"),
            ("SubNetRegistrationDisabled", "registration disabled"),
        ],
    )
    def test_known_terminal_reasons(self, name: str, expected: str) -> None:
        error = classify_dispatch_error({"type": "Module", "name": name})

        assert error.retryable is False
        assert expected in error.reason
        assert name in error.reason

    def test_unknown_module_error_is_terminal(self) -> None:
        error = classify_dispatch_error({"type": "Module", "name": "SomethingNew"})

        assert error.retryable is False
        assert error.reason == "SomethingNew"

    def test_missing_error_message(self) -> None:
        error = classify_dispatch_error(None)

        assert error.retryable is False
        assert error.reason == "UnknownError"

    def test_interval_rate_limit_is_retryable(self) -> None:
        assert classify_dispatch_error({"name": "TooManyRegistrationsThisInterval"}).retryable


class TestClassifySubmissionException:
    def test_outdated_transaction_is_retryable(self) -> None:
        exc = SubstrateRequestException(
            {"code": 1010, "message": "Invalid Transaction", "data": "Transaction is outdated"}
        )

        assert classify_submission_exception(exc).retryable is True

    def test_inability_to_pay_is_terminal(self) -> None:
        exc = SubstrateRequestException(
            {"code": 1010, "message": "Invalid Transaction", "data": "Inability to pay some fees"}
        )

        error = classify_submission_exception(exc)

        assert error.retryable is False
        assert "insufficient balance" in error.reason

    def test_unrecognized_message_is_terminal(self) -> None:
        error = classify_submission_exception(ValueError("bad call params"))

        assert error.retryable is False
        assert error.reason == "bad call params"
