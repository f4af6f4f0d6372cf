# app/x402/envelope.py
"""
Decoding and validation of client payment envelopes.

An envelope arrives as base64-encoded JSON (the X-PAYMENT header format).
Its ``payload.transaction`` field is itself base64 over the signed CBOR
transaction. Everything here is pure: no I/O, no shared state.
"""
import base64
import binascii
import hashlib
import json
import logging
from typing import Iterable, Optional

from pydantic import ValidationError
from x402.encoding import safe_base64_decode

from app.core.config import settings
from app.x402.errors import InvalidEnvelope, InvalidProtocolParameters
from app.x402.types import EXACT_SCHEME, X402_VERSION, PaymentEnvelope

logger = logging.getLogger(__name__)


def parse_envelope(
    encoded: Optional[str],
    accepted_networks: Optional[Iterable[str]] = None
) -> PaymentEnvelope:
    """
    Decode and validate an X-PAYMENT envelope.

    Args:
        encoded: Base64-encoded JSON envelope
        accepted_networks: Networks this deployment accepts (defaults to settings)

    Returns:
        The validated PaymentEnvelope

    Raises:
        InvalidEnvelope: The envelope is not base64 JSON or lacks a transaction
        InvalidProtocolParameters: Version, scheme or network mismatch
    """
    if not encoded or not isinstance(encoded, str):
        raise InvalidEnvelope("Missing payment envelope")

    try:
        decoded_str = safe_base64_decode(encoded)
        data = json.loads(decoded_str)
    except (binascii.Error, UnicodeDecodeError, ValueError, TypeError) as e:
        logger.warning(f"Failed to decode payment envelope: {e}")
        raise InvalidEnvelope(f"Undecodable payment envelope: {e}") from e

    if not isinstance(data, dict):
        raise InvalidEnvelope("Payment envelope is not a JSON object")

    if accepted_networks is None:
        accepted_networks = settings.ACCEPTED_NETWORKS

    # Checked before the payload so that a wrong version is never reported
    # as a generic payload failure
    version = data.get("x402Version")
    network = data.get("network")
    if (
        isinstance(version, bool)
        or version != X402_VERSION
        or data.get("scheme") != EXACT_SCHEME
        or not isinstance(network, str)
        or network not in set(accepted_networks)
    ):
        logger.info(
            f"Rejected envelope: version={version!r} scheme={data.get('scheme')!r} "
            f"network={network!r}"
        )
        raise InvalidProtocolParameters()

    try:
        return PaymentEnvelope.model_validate(data)
    except ValidationError as e:
        raise InvalidEnvelope(f"Invalid envelope payload: {e.error_count()} error(s)") from e


def decode_transaction(envelope: PaymentEnvelope) -> bytes:
    """
    Return the raw signed transaction bytes carried by an envelope.

    Whitespace is ignored and missing ``=`` padding is restored, so
    transport variants of the same bytes decode identically.

    Raises:
        InvalidEnvelope: The transaction is not valid base64 or is empty
    """
    tx_b64 = "".join(envelope.payload.transaction.split())
    tx_b64 += "=" * (-len(tx_b64) % 4)
    try:
        raw = base64.b64decode(tx_b64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidEnvelope(f"Transaction is not valid base64: {e}") from e

    if not raw:
        raise InvalidEnvelope("Transaction is empty")
    return raw


def fingerprint(raw_transaction: bytes) -> str:
    """SHA-256 hex digest of the raw transaction bytes, used as the dedup key."""
    return hashlib.sha256(raw_transaction).hexdigest()
