# app/main.py
from fastapi import FastAPI
from app.core.config import settings
from app.api.endpoints import facilitator
from app.x402.middleware import PaymentRequiredMiddleware
import logging

# Configure basic logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.PROJECT_NAME)

app.add_middleware(PaymentRequiredMiddleware)

# Facilitator endpoints live at the root: /verify, /settle, /status, /supported, /health
app.include_router(facilitator.router, tags=["facilitator"])


@app.get("/secret", summary="Protected Resource", tags=["demo"])
def read_secret():
    """ Paid resource; the middleware answers 402 until an X-PAYMENT header is sent. """
    logger.info("Protected resource '/secret' accessed.")
    return {"message": "You've unlocked the protected resource via x402."}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=settings.PORT)
