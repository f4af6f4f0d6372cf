# tests/helpers.py
"""Builders shared by the facilitator tests."""
import base64
import json
from typing import Any, Dict, Optional

from x402.encoding import safe_base64_encode

PAY_TO = "addr1qxpayee0000000000000000000000000000000000000000000000"
POLICY_ID = "f0ff48bbb7bbe9d59a40f1ce90e9e9d0ff5002ec48f232b49ca0fb9a"
ASSET_NAME_HEX = "5553444d"
UNIT = POLICY_ID + ASSET_NAME_HEX

SAMPLE_TX = bytes.fromhex("84a300818258200000000000000000000000000000000000000000000000000000000000000000")


def encode_envelope(
    transaction: Optional[bytes] = SAMPLE_TX,
    x402_version: Any = 1,
    scheme: str = "exact",
    network: Any = "cardano",
    payload: Optional[Dict[str, Any]] = None,
) -> str:
    """Base64 X-PAYMENT envelope carrying a base64 transaction."""
    if payload is None:
        payload = {}
        if transaction is not None:
            payload["transaction"] = base64.b64encode(transaction).decode("ascii")
    envelope = {
        "x402Version": x402_version,
        "scheme": scheme,
        "network": network,
        "payload": payload,
    }
    return safe_base64_encode(json.dumps(envelope).encode("utf-8"))


def make_requirements(
    pay_to: str = PAY_TO,
    amount: Any = "10000",
    asset: str = POLICY_ID,
    asset_name_hex: Optional[str] = ASSET_NAME_HEX,
) -> Dict[str, Any]:
    """A ``payment_requirements`` document with a single accepted entry."""
    accepted = {
        "x402Version": 1,
        "scheme": "exact",
        "network": "cardano-mainnet",
        "maxAmountRequired": amount,
        "asset": asset,
        "payTo": pay_to,
        "resource": "/secret",
        "description": "Access to premium resource",
        "mimeType": "application/json",
        "maxTimeoutSeconds": 600,
        "extra": {"assetNameHex": asset_name_hex} if asset_name_hex is not None else {},
    }
    return {"x402Version": 1, "accepts": [accepted]}
