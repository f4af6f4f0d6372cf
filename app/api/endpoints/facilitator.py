# app/api/endpoints/facilitator.py
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from functools import lru_cache
import logging

from app.core.config import settings
from app.services.blockfrost import BlockfrostGateway
from app.x402.facilitator import Facilitator
from app.x402.settlement_store import get_settlement_store
from app.api.models.facilitator import (
    VerifyRequest,
    VerifyResponse,
    SettleRequest,
    SettleResponse,
    StatusRequest,
    SupportedResponse,
    HealthResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()

PENDING_RESPONSE = {202: {"model": SettleResponse, "description": "Submitted, awaiting confirmation"}}


@lru_cache()
def get_facilitator() -> Facilitator:
    """Process-wide facilitator wired to Blockfrost and the default settlement store."""
    logger.info(f"Facilitator starting for network {settings.NETWORK} ({settings.blockfrost_base_url})")
    return Facilitator(
        gateway=BlockfrostGateway(),
        store=get_settlement_store(),
        network=settings.NETWORK,
        accepted_networks=settings.ACCEPTED_NETWORKS,
        confirm_budget_seconds=settings.SETTLE_CHECK_SECONDS,
    )


# Handlers are plain `def`: they block on Blockfrost and poll sleeps, so
# FastAPI runs them in its worker thread pool.

@router.post("/verify", response_model=VerifyResponse, response_model_exclude_none=True)
def verify(
    request: VerifyRequest,
    facilitator: Facilitator = Depends(get_facilitator)
) -> JSONResponse:
    """
    Check that an X-PAYMENT envelope is well formed for this deployment.

    No network calls are made; the transaction is only decoded.
    """
    result = facilitator.verify(request.x_payment_b64)
    return JSONResponse(status_code=result.status_code, content=result.body)


@router.post("/settle", response_model=SettleResponse, responses=PENDING_RESPONSE)
def settle(
    request: SettleRequest,
    facilitator: Facilitator = Depends(get_facilitator)
) -> JSONResponse:
    """
    Submit the envelope's transaction (once per unique transaction) and
    report its settlement state.

    Returns 202 with ``pending: true`` until the payment output is confirmed;
    poll /status with the returned transaction hash.
    """
    result = facilitator.settle(request.x_payment_b64, request.payment_requirements)
    logger.info(f"Settle -> {result.status_code} {result.body.get('errorReason') or 'confirmed'}")
    return JSONResponse(status_code=result.status_code, content=result.body)


@router.post("/status", response_model=SettleResponse, responses=PENDING_RESPONSE)
def status(
    request: StatusRequest,
    facilitator: Facilitator = Depends(get_facilitator)
) -> JSONResponse:
    """Check whether a submitted transaction has a matching confirmed output."""
    result = facilitator.status(request.transaction, request.payment_requirements)
    return JSONResponse(status_code=result.status_code, content=result.body)


@router.get("/supported", response_model=SupportedResponse)
def supported(facilitator: Facilitator = Depends(get_facilitator)):
    """Advertise the (version, scheme, network) combinations this facilitator settles."""
    return facilitator.supported()


@router.get("/health", response_model=HealthResponse)
def health():
    return {"ok": True}
