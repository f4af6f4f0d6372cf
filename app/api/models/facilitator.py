# app/api/models/facilitator.py
from pydantic import BaseModel, Field
from typing import Optional, Any, List


class VerifyRequest(BaseModel):
    """
    Request body for /verify and /settle.

    Fields accept any JSON value so that incomplete or wrong-typed bodies
    reach the facilitator and get a protocol error instead of a framework
    validation error.
    """
    x_payment_b64: Any = Field(
        default=None,
        description="Base64-encoded X-PAYMENT envelope",
        examples=["eyJ4NDAyVmVyc2lvbiI6MSwic2NoZW1lIjoiZXhhY3QiLCJuZXR3b3JrIjoiY2FyZGFubyJ9"]
    )
    payment_requirements: Any = Field(
        default=None,
        description="Payment requirements document with an 'accepts' list"
    )


class SettleRequest(VerifyRequest):
    """Request body for /settle."""


class StatusRequest(BaseModel):
    """Request body for /status."""
    transaction: Any = Field(default=None, description="Transaction hash returned by /settle")
    payment_requirements: Any = Field(
        default=None,
        description="Payment requirements document with an 'accepts' list"
    )


class VerifyResponse(BaseModel):
    """Response model for /verify."""
    isValid: bool
    invalidReason: Optional[str] = None


class SettleResponse(BaseModel):
    """Response model for /settle and /status (all outcomes)."""
    success: bool
    transaction: str = ""
    network: Optional[str] = None
    errorReason: Optional[str] = None
    pending: Optional[bool] = None


class SupportedKind(BaseModel):
    x402Version: int
    scheme: str
    network: str


class SupportedResponse(BaseModel):
    """Response model for /supported."""
    kinds: List[SupportedKind]


class HealthResponse(BaseModel):
    ok: bool = True
