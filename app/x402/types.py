# app/x402/types.py
"""
Protocol data types for the Cardano x402 facilitator.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

X402_VERSION = 1
EXACT_SCHEME = "exact"


class PaymentRequirements(BaseModel):
    """
    Server-declared payment terms (one entry of ``accepts``).

    The asset is identified by its policy id (``asset``) plus an optional
    hex-encoded asset name carried in ``extra.assetNameHex``. Ada payments
    use ``asset="lovelace"`` with no asset name, matching Blockfrost units.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="allow")

    x402_version: int = Field(default=X402_VERSION, alias="x402Version")
    scheme: str = EXACT_SCHEME
    network: Optional[str] = None
    max_amount_required: Union[str, int, None] = Field(default="0", alias="maxAmountRequired")
    asset: Optional[str] = ""
    pay_to: str = Field(..., alias="payTo")
    resource: Optional[str] = None
    description: Optional[str] = None
    mime_type: Optional[str] = Field(default=None, alias="mimeType")
    output_schema: Optional[Any] = Field(default=None, alias="outputSchema")
    max_timeout_seconds: Optional[int] = Field(default=None, alias="maxTimeoutSeconds")
    extra: Optional[Dict[str, Any]] = None

    @property
    def unit(self) -> str:
        """Policy id concatenated with the hex asset name, if any."""
        asset_name = (self.extra or {}).get("assetNameHex") or ""
        return (self.asset or "") + str(asset_name)

    @property
    def min_amount(self) -> int:
        """Required quantity as an integer; non-numeric values count as 0."""
        try:
            return int(str(self.max_amount_required or "0").strip())
        except ValueError:
            return 0


class EnvelopePayload(BaseModel):
    """Scheme payload: a base64 signed transaction plus optional extras."""
    model_config = ConfigDict(extra="allow")

    transaction: str = Field(..., min_length=1)


class PaymentEnvelope(BaseModel):
    """Decoded X-PAYMENT envelope as submitted by a client."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    x402_version: int = Field(..., alias="x402Version")
    scheme: str
    network: str
    payload: EnvelopePayload


@dataclass(frozen=True)
class ConfirmationQuery:
    """What a confirmed output must look like for a given transaction."""
    tx_hash: str
    address: str
    unit: str
    min_quantity: int

    @classmethod
    def for_requirements(cls, tx_hash: str, requirements: PaymentRequirements) -> "ConfirmationQuery":
        return cls(
            tx_hash=tx_hash,
            address=requirements.pay_to,
            unit=requirements.unit,
            min_quantity=requirements.min_amount,
        )
