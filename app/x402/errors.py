# app/x402/errors.py
"""
Error taxonomy for the facilitator.

Every error carries the protocol ``reason`` string that ends up in the
``invalidReason`` / ``errorReason`` field of a response. The facilitator
catches all of these at its boundary; none of them reach the HTTP layer.
"""
from typing import Optional

# Reason strings exposed in responses
INVALID_PAYLOAD = "invalid_payload"
INVALID_PROTOCOL_PARAMETERS = "invalid_x402_version/scheme/network"
INVALID_PAYMENT_REQUIREMENTS = "invalid_payment_requirements"
INVALID_TRANSACTION_STATE = "invalid_transaction_state"
UNEXPECTED_SETTLE_ERROR = "unexpected_settle_error"


class FacilitatorError(Exception):
    """Base class for errors that map onto a protocol reason string."""

    reason: str = UNEXPECTED_SETTLE_ERROR

    def __init__(self, message: Optional[str] = None, reason: Optional[str] = None):
        if reason is not None:
            self.reason = reason
        super().__init__(message or self.reason)


class EnvelopeError(FacilitatorError):
    """The client-submitted payment envelope was rejected."""


class InvalidEnvelope(EnvelopeError):
    """Malformed or undecodable envelope or transaction."""

    reason = INVALID_PAYLOAD


class InvalidProtocolParameters(EnvelopeError):
    """x402 version, scheme or network does not match this deployment."""

    reason = INVALID_PROTOCOL_PARAMETERS


class InvalidPaymentRequirements(FacilitatorError):
    """Server-side payment terms are missing or malformed."""

    reason = INVALID_PAYMENT_REQUIREMENTS


class SubmissionFailed(FacilitatorError):
    """The ledger backend rejected the transaction."""

    reason = INVALID_TRANSACTION_STATE


class UnexpectedFault(FacilitatorError):
    """Any other internal failure during settle or status."""

    reason = UNEXPECTED_SETTLE_ERROR
