# app/x402/middleware.py
"""
FastAPI middleware guarding paid resources.

A request to a protected path without an X-PAYMENT header is answered with
HTTP 402 and the payment requirements. A request carrying the header is
passed through unchanged: checking the payment is left to the facilitator
endpoints (/verify, /settle, /status).
"""
import logging
from typing import Callable, Iterable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from app.core.config import settings
from app.x402.audit import log_payment_required_sent
from app.x402.types import EXACT_SCHEME, X402_VERSION, PaymentRequirements

logger = logging.getLogger(__name__)

X_PAYMENT_HEADER = "X-PAYMENT"

# Path prefixes that require payment (any method)
PROTECTED_PATHS = ["/secret"]


def is_protected_path(path: str, protected_paths: Iterable[str] = PROTECTED_PATHS) -> bool:
    """Check if the request path falls under a protected prefix."""
    normalized = path.rstrip("/") or "/"
    for protected in protected_paths:
        prefix = protected.rstrip("/")
        if normalized == prefix or normalized.startswith(prefix + "/"):
            return True
    return False


def get_client_ip(request: Request) -> str:
    """Extract client IP from request, handling proxies."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP in the chain
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    if request.client:
        return request.client.host

    return "unknown"


def create_payment_requirements(
    resource: str = "/secret",
    description: str = "Access to premium resource"
) -> PaymentRequirements:
    """
    Build the payment requirements advertised for a protected resource.

    Terms come from settings: PAY_TO, ASSET_POLICY, ASSET_NAME_HEX,
    MAX_AMOUNT and NETWORK.
    """
    if not settings.PAY_TO:
        logger.warning("PAY_TO not configured")

    return PaymentRequirements(
        x402_version=X402_VERSION,
        scheme=EXACT_SCHEME,
        network=settings.NETWORK,
        max_amount_required=settings.MAX_AMOUNT,
        asset=settings.ASSET_POLICY,
        pay_to=settings.PAY_TO,
        resource=resource,
        description=description,
        mime_type="application/json",
        max_timeout_seconds=600,
        extra={"assetNameHex": settings.ASSET_NAME_HEX},
    )


def create_402_response(
    payment_requirements: PaymentRequirements,
    error_message: str = "Payment required"
) -> JSONResponse:
    """
    Create an HTTP 402 Payment Required response.

    Args:
        payment_requirements: The payment requirements to include
        error_message: Error message for the response

    Returns:
        JSONResponse with 402 status and payment details
    """
    response_body = {
        "x402Version": X402_VERSION,
        "error": error_message,
        "accepts": [payment_requirements.model_dump(by_alias=True, exclude_none=True)]
    }
    return JSONResponse(status_code=402, content=response_body)


class PaymentRequiredMiddleware(BaseHTTPMiddleware):
    """
    Returns 402 for protected paths until an X-PAYMENT header is supplied.

    The requirements attached to the request are exposed downstream as
    ``request.state.payment_requirements``.
    """

    def __init__(self, app, protected_paths: Optional[Iterable[str]] = None):
        super().__init__(app)
        self.protected_paths = list(protected_paths) if protected_paths is not None else list(PROTECTED_PATHS)

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Response]
    ) -> Response:
        if not is_protected_path(request.url.path, self.protected_paths):
            return await call_next(request)

        requirements = create_payment_requirements(resource=request.url.path)

        if not request.headers.get(X_PAYMENT_HEADER):
            client_ip = get_client_ip(request)
            logger.info(f"x402: No X-PAYMENT header from {client_ip}, returning 402 for {request.url.path}")
            log_payment_required_sent(
                client_ip=client_ip,
                resource=request.url.path,
                pay_to=requirements.pay_to,
                amount=str(requirements.max_amount_required),
            )
            return create_402_response(requirements)

        request.state.payment_requirements = requirements
        return await call_next(request)
