"""
Registration engine: poll the burn price and register once it is low enough.
"""

import threading
from typing import Callable, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError

from .chain import ChainClient
from .db import AttemptJournal
from .errors import ChainReadError, SubmitError
from .evaluator import Verdict, evaluate
from .guard import SubmissionGuard
from .models import (
    AboveCeiling,
    BelowCeiling,
    Cancelled,
    Ceiling,
    GaveUp,
    Outcome,
    PollOutcome,
    Price,
    ReadError,
    Receipt,
    Registered,
    RegistrationRequest,
    SignedTx,
)
from .scheduler import CANCELLED, TIMEOUT, PollingScheduler
from .signer import Signer
from .units import format_tao

logger = structlog.get_logger()


class _SubmissionCancelled(Exception):
    """Cancellation arrived while waiting for inclusion."""


class RegistrationEngine:
    """
    Composes price evaluation, the submission guard and the polling loop.

    One engine performs one registration run. Reads and the submission are
    strictly sequential; the only concurrency is the helper thread that
    waits for inclusion so the wait stays cancellable.
    """

    def __init__(
        self,
        scheduler: PollingScheduler,
        guard: Optional[SubmissionGuard] = None,
        journal: Optional[AttemptJournal] = None,
        evaluate_fn: Callable[[Price, Ceiling], Verdict] = evaluate,
        inclusion_check_seconds: float = 0.2,
    ):
        self.scheduler = scheduler
        self.guard = guard or SubmissionGuard()
        self.journal = journal
        self.evaluate = evaluate_fn
        self.inclusion_check_seconds = inclusion_check_seconds
        self._final: Optional[Outcome] = None

    @property
    def cancel(self) -> threading.Event:
        return self.scheduler.cancel

    def register(
        self,
        client: ChainClient,
        signer: Signer,
        request: RegistrationRequest,
        ceiling: Ceiling,
    ) -> Outcome:
        """Run until registered, given up, or cancelled."""
        self._final = None

        logger.info(
            "registration_starting",
            coldkey=request.coldkey,
            hotkey=request.hotkey,
            netuid=request.network_uid,
            max_price_rao=ceiling,
            max_price=format_tao(ceiling),
            poll_interval=self.scheduler.interval,
        )

        if self._already_registered(client, request):
            return self._finish(GaveUp("already registered"))

        def poll() -> PollOutcome:
            outcome = self._read(client, ceiling)
            if not isinstance(outcome, BelowCeiling):
                return outcome
            try:
                nonce = client.get_nonce(signer.address)
            except ChainReadError as e:
                logger.warning("nonce_lookup_failed", error=str(e))
                return ReadError(str(e))
            self._final = self._attempt(client, signer, request, outcome.price, nonce)
            return outcome

        terminated = self.scheduler.run(poll, lambda _outcome: self._final is not None)

        if self._final is not None:
            return self._finish(self._final)
        if terminated.reason == CANCELLED:
            return self._finish(Cancelled())
        if terminated.reason == TIMEOUT:
            return self._finish(
                GaveUp(f"timed out after {terminated.polls} polls without registering")
            )
        return self._finish(GaveUp(f"polling stopped: {terminated.reason}"))

    def _already_registered(self, client: ChainClient, request: RegistrationRequest) -> bool:
        if self.journal:
            try:
                if self.journal.has_accepted(request.hotkey, request.network_uid):
                    logger.info("journal_shows_registered", hotkey=request.hotkey)
            except SQLAlchemyError as e:
                logger.error("journal_read_failed", error=str(e))
        try:
            registered = client.is_registered(request)
        except ChainReadError as e:
            # A duplicate is rejected by the chain as terminal anyway.
            logger.warning("registration_precheck_failed", error=str(e))
            return False
        if registered:
            logger.warning(
                "hotkey_already_registered",
                hotkey=request.hotkey,
                netuid=request.network_uid,
            )
        return registered

    def _read(self, client: ChainClient, ceiling: Ceiling) -> PollOutcome:
        try:
            price = client.read_price()
        except ChainReadError as e:
            return ReadError(str(e))

        if self.evaluate(price, ceiling) is Verdict.PROCEED:
            logger.info(
                "price_below_ceiling",
                price_rao=price,
                price=format_tao(price),
                max_price_rao=ceiling,
            )
            return BelowCeiling(price)

        logger.info(
            "price_above_ceiling",
            price_rao=price,
            price=format_tao(price),
            max_price_rao=ceiling,
        )
        return AboveCeiling(price)

    def _attempt(
        self,
        client: ChainClient,
        signer: Signer,
        request: RegistrationRequest,
        price: Price,
        nonce: int,
    ) -> Optional[Outcome]:
        """
        Make one submission. Returns a terminal outcome, or None to keep
        polling after a retryable failure.
        """
        if not self.guard.try_begin():
            return GaveUp("a submission was already made in this run")

        attempt_id = self._journal_record(request, price, nonce)
        logger.info(
            "submission_attempted",
            attempt=self.guard.attempts,
            price_rao=price,
            nonce=nonce,
            hotkey=request.hotkey,
            netuid=request.network_uid,
        )

        try:
            tx = signer.sign(request, nonce)
            receipt = self._submit_cancellable(client, tx)
        except _SubmissionCancelled:
            logger.warning(
                "submission_outcome_unknown",
                message="cancelled while waiting for inclusion",
                nonce=nonce,
            )
            self._journal_update(attempt_id, "unknown", error="cancelled during inclusion wait")
            return Cancelled()
        except SubmitError as e:
            return self._on_submit_error(e, attempt_id)

        receipt = Receipt(
            extrinsic_hash=receipt.extrinsic_hash,
            block_hash=receipt.block_hash,
            price=price,
        )
        self.guard.complete(receipt=receipt)
        self._journal_update(
            attempt_id,
            "accepted",
            extrinsic_hash=receipt.extrinsic_hash,
            block_hash=receipt.block_hash,
        )
        return Registered(receipt)

    def _on_submit_error(self, error: SubmitError, attempt_id: Optional[int]) -> Optional[Outcome]:
        self._journal_update(attempt_id, "rejected", error=error.reason)

        if error.retryable and self.guard.grant_retry():
            logger.warning("submission_retry_granted", reason=error.reason)
            return None

        reason = error.reason
        if error.retryable:
            reason = f"{error.reason} (retry already used)"
        self.guard.complete(reason=reason)
        return GaveUp(reason)

    def _submit_cancellable(self, client: ChainClient, tx: SignedTx) -> Receipt:
        """Run client.submit() on a helper thread and wait on it or on cancel."""
        done = threading.Event()
        result: dict = {}

        def _run() -> None:
            try:
                result["receipt"] = client.submit(tx)
            except Exception as e:
                result["error"] = e
            finally:
                done.set()

        threading.Thread(target=_run, name="registration-submit", daemon=True).start()

        while not done.wait(self.inclusion_check_seconds):
            if self.cancel.is_set():
                raise _SubmissionCancelled()

        if "error" in result:
            error = result["error"]
            if isinstance(error, SubmitError):
                raise error
            # The client should have classified this; treat as terminal.
            raise SubmitError(f"unexpected submission error: {error}") from error
        return result["receipt"]

    def _journal_record(
        self, request: RegistrationRequest, price: Price, nonce: int
    ) -> Optional[int]:
        if self.journal is None:
            return None
        try:
            return self.journal.record_attempt(request, price, nonce)
        except SQLAlchemyError as e:
            # Journal failures never change the outcome.
            logger.error("journal_write_failed", operation="record_attempt", error=str(e))
            return None

    def _journal_update(self, attempt_id: Optional[int], status: str, **fields) -> None:
        if self.journal is None or attempt_id is None:
            return
        try:
            self.journal.update_status(attempt_id, status, **fields)
        except SQLAlchemyError as e:
            logger.error(
                "journal_write_failed",
                operation="update_status",
                attempt_id=attempt_id,
                status=status,
                error=str(e),
            )

    def _finish(self, outcome: Outcome) -> Outcome:
        if isinstance(outcome, Registered):
            logger.info(
                "registration_succeeded",
                extrinsic_hash=outcome.receipt.extrinsic_hash,
                block_hash=outcome.receipt.block_hash,
                price_rao=outcome.receipt.price,
            )
        elif isinstance(outcome, GaveUp):
            logger.error("registration_gave_up", reason=outcome.reason)
        else:
            logger.warning("registration_cancelled")
        return outcome
