# tests/conftest.py
import pytest

from app.core.config import settings
from app.api.endpoints.facilitator import get_facilitator
from app.x402.settlement_store import reset_settlement_store


@pytest.fixture(autouse=True)
def isolated_state(tmp_path, monkeypatch):
    """Keep audit output and process-wide singletons out of other tests' way."""
    monkeypatch.setattr(settings, "X402_AUDIT_LOG_PATH", str(tmp_path / "audit" / "x402_audit.jsonl"))
    monkeypatch.setattr(settings, "SETTLEMENT_STORE_PATH", None)
    reset_settlement_store()
    get_facilitator.cache_clear()
    yield
    reset_settlement_store()
    get_facilitator.cache_clear()
