# app/x402/facilitator.py
"""
Facilitator state machine: verify, settle and status.

Settle flow for one request:

    Received -> Validated -> Known   -> Confirmed | Pending
                          -> Unknown -> Submitted (Pending) | SubmitFailed

A newly submitted transaction is always reported as pending (HTTP 202);
callers then poll ``status`` with the returned hash. Re-settling the same
transaction bytes never submits twice: the raw-bytes fingerprint is looked
up in the settlement store first, under a per-fingerprint lock.

All errors are converted to protocol responses here. Nothing raised inside
a facilitator call reaches the HTTP layer.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from app.core.config import settings
from app.services.blockfrost import LedgerGateway
from app.x402 import audit
from app.x402.envelope import decode_transaction, fingerprint, parse_envelope
from app.x402.errors import (
    INVALID_TRANSACTION_STATE,
    EnvelopeError,
    InvalidEnvelope,
    InvalidPaymentRequirements,
    SubmissionFailed,
    UnexpectedFault,
)
from app.x402.settlement_store import SettlementStore
from app.x402.types import EXACT_SCHEME, X402_VERSION, ConfirmationQuery, PaymentRequirements

logger = logging.getLogger(__name__)

HTTP_OK = 200
HTTP_ACCEPTED = 202


@dataclass
class FacilitatorResult:
    """A protocol response: HTTP status plus JSON body."""
    status_code: int
    body: Dict[str, Any] = field(default_factory=dict)

    @property
    def pending(self) -> bool:
        return bool(self.body.get("pending"))


def extract_requirements(payment_requirements: Optional[Dict[str, Any]]) -> PaymentRequirements:
    """
    Pull the accepted terms out of a ``{"accepts": [...]}`` document.

    Only ``accepts[0]`` is considered.

    Raises:
        InvalidPaymentRequirements: accepts is missing, empty or malformed
    """
    if not isinstance(payment_requirements, dict):
        raise InvalidPaymentRequirements("payment_requirements must be an object")

    accepts = payment_requirements.get("accepts")
    if not isinstance(accepts, list) or not accepts or not isinstance(accepts[0], dict):
        raise InvalidPaymentRequirements("payment_requirements.accepts[0] is missing")

    try:
        return PaymentRequirements.model_validate(accepts[0])
    except ValidationError as e:
        raise InvalidPaymentRequirements(f"Malformed payment requirements: {e.error_count()} error(s)") from e


class Facilitator:
    """
    Orchestrates envelope parsing, ledger submission and confirmation.

    The gateway and store are injected; the API layer wires the Blockfrost
    gateway and the process-wide settlement store.
    """

    def __init__(
        self,
        gateway: LedgerGateway,
        store: SettlementStore,
        network: Optional[str] = None,
        accepted_networks: Optional[Iterable[str]] = None,
        confirm_budget_seconds: Optional[float] = None,
    ):
        self.gateway = gateway
        self.store = store
        self.network = network or settings.NETWORK
        self.accepted_networks: List[str] = list(
            accepted_networks if accepted_networks is not None else settings.ACCEPTED_NETWORKS
        )
        self.confirm_budget_seconds = (
            confirm_budget_seconds if confirm_budget_seconds is not None else settings.SETTLE_CHECK_SECONDS
        )

    # --- Response builders ---

    def _confirmed(self, tx_hash: str) -> FacilitatorResult:
        return FacilitatorResult(HTTP_OK, {"success": True, "transaction": tx_hash, "network": self.network})

    @staticmethod
    def _pending(tx_hash: str) -> FacilitatorResult:
        return FacilitatorResult(HTTP_ACCEPTED, {
            "success": False,
            "errorReason": INVALID_TRANSACTION_STATE,
            "transaction": tx_hash,
            "pending": True,
        })

    @staticmethod
    def _failed(reason: str, tx_hash: str = "") -> FacilitatorResult:
        return FacilitatorResult(HTTP_OK, {"success": False, "errorReason": reason, "transaction": tx_hash})

    # --- Operations ---

    def verify(self, x_payment_b64: Optional[str]) -> FacilitatorResult:
        """
        Structural check of a payment envelope. Never touches the network.

        Returns:
            ``{"isValid": True}`` or ``{"isValid": False, "invalidReason": ...}``
        """
        try:
            envelope = parse_envelope(x_payment_b64, self.accepted_networks)
            decode_transaction(envelope)
        except EnvelopeError as e:
            logger.info(f"Verify rejected envelope: {e.reason} ({e})")
            audit.log_payment_verified(is_valid=False, invalid_reason=e.reason)
            return FacilitatorResult(HTTP_OK, {"isValid": False, "invalidReason": e.reason})

        audit.log_payment_verified(is_valid=True, network=envelope.network)
        return FacilitatorResult(HTTP_OK, {"isValid": True})

    def settle(
        self,
        x_payment_b64: Optional[str],
        payment_requirements: Optional[Dict[str, Any]]
    ) -> FacilitatorResult:
        """
        Submit the envelope's transaction once and report its settlement state.

        Returns:
            200 success when a previously submitted transaction is confirmed,
            202 pending after a first submission or while unconfirmed,
            200 failure for invalid input or a rejected submission
        """
        try:
            requirements = extract_requirements(payment_requirements)
        except InvalidPaymentRequirements as e:
            logger.info(f"Settle rejected: {e}")
            return self._failed(e.reason)

        try:
            envelope = parse_envelope(x_payment_b64, self.accepted_networks)
            raw_transaction = decode_transaction(envelope)
            return self._settle_transaction(raw_transaction, requirements)
        except EnvelopeError as e:
            logger.info(f"Settle rejected envelope: {e.reason} ({e})")
            return self._failed(e.reason)
        except SubmissionFailed as e:
            return self._failed(e.reason)
        except Exception as e:
            logger.error(f"Unexpected error during settle: {e}", exc_info=True)
            audit.log_error("settle", str(e))
            return self._failed(InvalidEnvelope.reason)

    def _settle_transaction(self, raw_transaction: bytes, requirements: PaymentRequirements) -> FacilitatorResult:
        key = fingerprint(raw_transaction)

        # Lookup, submit and record form one critical section per fingerprint
        with self.store.lock(key):
            known_hash = self.store.get(key)
            if known_hash is None:
                result = self.gateway.submit_transaction(raw_transaction)
                if not result.ok or not result.tx_hash:
                    reason = result.error or INVALID_TRANSACTION_STATE
                    audit.log_submission_failed(key, reason)
                    raise SubmissionFailed(f"Ledger rejected transaction {key[:16]}...", reason=reason)
                tx_hash = self.store.insert_if_absent(key, result.tx_hash)

        if known_hash is not None:
            logger.info(f"Transaction {key[:16]}... already submitted as {known_hash}")
            return self._confirm(known_hash, requirements)

        audit.log_transaction_submitted(key, tx_hash)
        audit.log_settlement_pending(tx_hash, requirements.pay_to, requirements.unit, requirements.min_amount)
        return self._pending(tx_hash)

    def status(
        self,
        transaction: Optional[str],
        payment_requirements: Optional[Dict[str, Any]]
    ) -> FacilitatorResult:
        """
        Single-pass confirmation check for a known transaction hash.

        Returns:
            200 success if confirmed, 202 pending otherwise, and a
            ``unexpected_settle_error`` failure if the check itself blew up
        """
        try:
            requirements = extract_requirements(payment_requirements)
            if not transaction or not isinstance(transaction, str):
                raise InvalidPaymentRequirements("transaction hash is missing")
        except InvalidPaymentRequirements as e:
            logger.info(f"Status rejected: {e}")
            return self._failed(e.reason)

        try:
            return self._confirm(transaction, requirements)
        except Exception as e:
            logger.error(f"Unexpected error checking status of {transaction}: {e}", exc_info=True)
            audit.log_error("status", str(e), context={"transaction_hash": transaction})
            return self._failed(UnexpectedFault.reason, transaction)

    def _confirm(self, tx_hash: str, requirements: PaymentRequirements) -> FacilitatorResult:
        query = ConfirmationQuery.for_requirements(tx_hash, requirements)
        if self.gateway.fetch_confirmed_output(query, self.confirm_budget_seconds):
            audit.log_settlement_confirmed(
                tx_hash, self.network, query.address, query.unit, query.min_quantity
            )
            return self._confirmed(tx_hash)

        audit.log_settlement_pending(tx_hash, query.address, query.unit, query.min_quantity)
        return self._pending(tx_hash)

    def supported(self) -> Dict[str, Any]:
        """Static capability advertisement."""
        return {
            "kinds": [
                {"x402Version": X402_VERSION, "scheme": EXACT_SCHEME, "network": self.network}
            ]
        }
