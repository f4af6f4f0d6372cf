# app/services/blockfrost.py
"""
Ledger gateway backed by the Blockfrost Cardano API.

Two capabilities are exposed: submitting a signed CBOR transaction and
checking whether a transaction has produced a confirmed output paying a
given address at least a given quantity of a unit.
"""
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol
from urllib.parse import quote

import requests
from requests.exceptions import RequestException

from app.core.config import settings
from app.x402.errors import INVALID_TRANSACTION_STATE
from app.x402.types import ConfirmationQuery

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubmitResult:
    """Outcome of a single submission attempt."""
    ok: bool
    tx_hash: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class PollPolicy:
    """Fixed-interval polling bounded by a deadline."""
    interval_seconds: float = 1.0
    default_budget_seconds: float = 20.0


class LedgerGateway(Protocol):
    """What the facilitator needs from a ledger backend."""

    def submit_transaction(self, raw_transaction: bytes) -> SubmitResult:
        ...

    def fetch_confirmed_output(self, query: ConfirmationQuery, budget_seconds: Optional[float] = None) -> bool:
        ...


def output_matches(output: Dict[str, Any], query: ConfirmationQuery) -> bool:
    """
    Check a single Blockfrost UTXO output against a confirmation query.

    Args:
        output: One entry of the ``outputs`` list from ``/txs/{hash}/utxos``
        query: Expected address, unit and minimum quantity

    Returns:
        True if the output pays the address at least min_quantity of the unit
    """
    if output.get("address") != query.address:
        return False

    amounts = output.get("amount")
    if not isinstance(amounts, list):
        return False

    for amount in amounts:
        if not isinstance(amount, dict) or amount.get("unit") != query.unit:
            continue
        try:
            if int(amount.get("quantity", 0)) >= query.min_quantity:
                return True
        except (TypeError, ValueError):
            logger.warning(f"Ignoring non-numeric quantity in output of {query.tx_hash}: {amount.get('quantity')!r}")
    return False


class BlockfrostGateway:
    """
    Blockfrost implementation of the ledger gateway.

    Submissions are never retried here. Confirmation checks poll at
    ``poll_policy.interval_seconds`` until a matching output is found or the
    budget runs out. ``sleep`` and ``clock`` are injectable for tests.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        project_id: Optional[str] = None,
        poll_policy: Optional[PollPolicy] = None,
        session: Optional[requests.Session] = None,
        submit_timeout: Optional[float] = None,
        fetch_timeout: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.base_url = (base_url or settings.blockfrost_base_url).rstrip("/")
        self.project_id = project_id if project_id is not None else settings.BLOCKFROST_PROJECT_ID
        self.poll_policy = poll_policy or PollPolicy(
            interval_seconds=settings.CONFIRM_POLL_INTERVAL_SECONDS,
            default_budget_seconds=settings.CONFIRM_WAIT_SECONDS,
        )
        self.session = session or requests.Session()
        self.submit_timeout = submit_timeout or settings.BLOCKFROST_SUBMIT_TIMEOUT
        self.fetch_timeout = fetch_timeout or settings.BLOCKFROST_FETCH_TIMEOUT
        self._sleep = sleep
        self._clock = clock

    def submit_transaction(self, raw_transaction: bytes) -> SubmitResult:
        """
        Submit a signed CBOR transaction.

        Args:
            raw_transaction: Raw transaction bytes (not base64)

        Returns:
            SubmitResult with the transaction hash on success, or the backend's
            error message (falling back to ``invalid_transaction_state``)
        """
        api_url = f"{self.base_url}/tx/submit"
        headers = {
            "project_id": self.project_id,
            "Content-Type": "application/cbor",
        }

        try:
            response = self.session.post(
                api_url,
                data=raw_transaction,
                headers=headers,
                timeout=self.submit_timeout
            )
        except RequestException as e:
            logger.error(f"Error submitting transaction to Blockfrost ({api_url}): {e}")
            return SubmitResult(ok=False, error=INVALID_TRANSACTION_STATE)

        if not response.ok:
            error = self._error_message(response) or INVALID_TRANSACTION_STATE
            logger.warning(f"Blockfrost rejected transaction (HTTP {response.status_code}): {error}")
            return SubmitResult(ok=False, error=error)

        try:
            tx_hash = response.json()
        except ValueError:
            tx_hash = response.text.strip().strip('"')

        if not isinstance(tx_hash, str) or not tx_hash:
            logger.error(f"Blockfrost submit response missing transaction hash: {response.text[:200]}")
            return SubmitResult(ok=False, error=INVALID_TRANSACTION_STATE)

        logger.info(f"Submitted transaction {tx_hash}")
        return SubmitResult(ok=True, tx_hash=tx_hash)

    def fetch_confirmed_output(self, query: ConfirmationQuery, budget_seconds: Optional[float] = None) -> bool:
        """
        Poll until the transaction shows a matching confirmed output.

        A 404 from Blockfrost means the transaction is not indexed yet and is
        treated like any other miss; other errors are logged and the loop
        continues. At least one check is always made, even with a zero budget.

        Args:
            query: Transaction hash plus the expected address, unit and quantity
            budget_seconds: How long to keep polling (defaults to the policy's)

        Returns:
            True as soon as a matching output is seen, False once the budget is spent
        """
        if budget_seconds is None:
            budget_seconds = self.poll_policy.default_budget_seconds
        deadline = self._clock() + budget_seconds

        while True:
            if self._check_outputs(query):
                return True
            if self._clock() + self.poll_policy.interval_seconds >= deadline:
                return False
            self._sleep(self.poll_policy.interval_seconds)

    def _check_outputs(self, query: ConfirmationQuery) -> bool:
        """Single lookup of ``/txs/{hash}/utxos``."""
        api_url = f"{self.base_url}/txs/{quote(query.tx_hash, safe='')}/utxos"
        try:
            response = self.session.get(
                api_url,
                headers={"project_id": self.project_id},
                timeout=self.fetch_timeout
            )
            if response.status_code == 404:
                logger.debug(f"Transaction {query.tx_hash} not indexed yet")
                return False
            response.raise_for_status()
            outputs = response.json().get("outputs") or []
            matched = any(
                isinstance(output, dict) and output_matches(output, query)
                for output in outputs
            )
        except RequestException as e:
            logger.warning(f"Error fetching outputs for {query.tx_hash} from Blockfrost: {e}")
            return False
        except (ValueError, AttributeError, TypeError) as e:
            logger.warning(f"Unexpected Blockfrost utxos response for {query.tx_hash}: {e}")
            return False

        if matched:
            logger.info(f"Transaction {query.tx_hash} confirmed to {query.address}")
        return matched

    @staticmethod
    def _error_message(response: requests.Response) -> Optional[str]:
        """Extract the ``message`` field of a Blockfrost error payload, if any."""
        try:
            body = response.json()
        except ValueError:
            return None
        if isinstance(body, dict) and body.get("message"):
            return str(body["message"])
        return None
