# app/core/config.py
from typing import List, Optional
from pydantic_settings import BaseSettings
from functools import lru_cache
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()

BLOCKFROST_MAINNET_URL = "https://cardano-mainnet.blockfrost.io/api/v0"
BLOCKFROST_PREPROD_URL = "https://cardano-preprod.blockfrost.io/api/v0"


class Settings(BaseSettings):
    PROJECT_NAME: str = "x402 Cardano Facilitator"
    PORT: int = 5051

    # Network advertised by /supported and reported on successful settlement
    NETWORK: str = "cardano-mainnet"
    # Networks accepted in client payment envelopes
    ACCEPTED_NETWORKS: List[str] = ["cardano", "cardano-mainnet"]

    # Blockfrost indexer / submission backend
    BLOCKFROST_PROJECT_ID: str = ""
    BLOCKFROST_API_URL: Optional[str] = None  # derived from NETWORK when unset
    BLOCKFROST_SUBMIT_TIMEOUT: float = 30.0
    BLOCKFROST_FETCH_TIMEOUT: float = 15.0

    # Confirmation polling
    CONFIRM_POLL_INTERVAL_SECONDS: float = 1.0
    CONFIRM_WAIT_SECONDS: float = 20.0
    SETTLE_CHECK_SECONDS: float = 1.0

    # Settlement records; in-memory when unset
    SETTLEMENT_STORE_PATH: Optional[str] = None

    # Terms for the demo protected resource
    PAY_TO: str = ""
    ASSET_POLICY: str = ""
    ASSET_NAME_HEX: str = ""
    MAX_AMOUNT: str = "10000"

    # Audit trail
    X402_AUDIT_ENABLED: bool = True
    X402_AUDIT_LOG_PATH: str = "logs/x402_audit.jsonl"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env

    @property
    def blockfrost_base_url(self) -> str:
        """Blockfrost API root for the configured network."""
        if self.BLOCKFROST_API_URL:
            return self.BLOCKFROST_API_URL.rstrip("/")
        if self.NETWORK == "cardano-mainnet":
            return BLOCKFROST_MAINNET_URL
        return BLOCKFROST_PREPROD_URL


@lru_cache() # Cache the settings object for performance
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
