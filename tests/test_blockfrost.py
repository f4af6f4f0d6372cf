# tests/test_blockfrost.py
"""
Unit tests for the Blockfrost ledger gateway.

HTTP is mocked through an injected requests session, and polling runs on a
virtual clock so no test actually sleeps.
"""
import pytest
from unittest.mock import MagicMock, patch

import requests
from requests.exceptions import ConnectionError, Timeout

from app.core.config import BLOCKFROST_MAINNET_URL, BLOCKFROST_PREPROD_URL, Settings
from app.services.blockfrost import BlockfrostGateway, PollPolicy, SubmitResult, output_matches
from app.x402.types import ConfirmationQuery

from helpers import PAY_TO, SAMPLE_TX, UNIT

BASE_URL = "https://blockfrost.test/api/v0"
TX_HASH = "H123"


class FakeClock:
    """Virtual time: sleep() advances now()."""

    def __init__(self):
        self.now = 1000.0
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def make_response(status_code=200, json_data=None, text=""):
    response = MagicMock(spec=requests.Response)
    response.status_code = status_code
    response.ok = status_code < 400
    response.text = text
    if isinstance(json_data, Exception):
        response.json.side_effect = json_data
    else:
        response.json.return_value = json_data
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status_code} error")
    return response


def utxos(*outputs):
    return {"hash": TX_HASH, "inputs": [], "outputs": list(outputs)}


def output(address=PAY_TO, unit=UNIT, quantity="10000"):
    return {
        "address": address,
        "amount": [
            {"unit": "lovelace", "quantity": "1500000"},
            {"unit": unit, "quantity": quantity},
        ],
    }


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def gateway(session, clock):
    return BlockfrostGateway(
        base_url=BASE_URL,
        project_id="mainnetTESTKEY",
        poll_policy=PollPolicy(interval_seconds=1.0, default_budget_seconds=20.0),
        session=session,
        sleep=clock.sleep,
        clock=clock,
    )


QUERY = ConfirmationQuery(tx_hash=TX_HASH, address=PAY_TO, unit=UNIT, min_quantity=10000)


class TestSubmitTransaction:
    """Test transaction submission."""

    def test_submit_success(self, gateway, session):
        """A 200 response with a JSON string returns the hash."""
        session.post.return_value = make_response(200, TX_HASH)

        result = gateway.submit_transaction(SAMPLE_TX)

        assert result == SubmitResult(ok=True, tx_hash=TX_HASH)
        args, kwargs = session.post.call_args
        assert args[0] == f"{BASE_URL}/tx/submit"
        assert kwargs["data"] == SAMPLE_TX
        assert kwargs["headers"]["project_id"] == "mainnetTESTKEY"
        assert kwargs["headers"]["Content-Type"] == "application/cbor"
        assert kwargs["timeout"] > 0

    def test_submit_plain_text_hash(self, gateway, session):
        """A non-JSON body is used as the hash text."""
        session.post.return_value = make_response(200, ValueError("not json"), text=f'"{TX_HASH}"\n')

        result = gateway.submit_transaction(SAMPLE_TX)

        assert result.ok is True
        assert result.tx_hash == TX_HASH

    def test_submit_backend_error_message(self, gateway, session):
        """The backend's message field becomes the error reason."""
        session.post.return_value = make_response(400, {
            "status_code": 400,
            "error": "Bad Request",
            "message": "transaction submit error ShelleyTxValidationError",
        })

        result = gateway.submit_transaction(SAMPLE_TX)

        assert result.ok is False
        assert result.tx_hash is None
        assert result.error == "transaction submit error ShelleyTxValidationError"

    def test_submit_error_without_message(self, gateway, session):
        """Without a message the generic reason is used."""
        session.post.return_value = make_response(500, ValueError("no body"))

        result = gateway.submit_transaction(SAMPLE_TX)

        assert result.ok is False
        assert result.error == "invalid_transaction_state"

    def test_submit_network_error(self, gateway, session):
        """Connection failures are reported, not raised."""
        session.post.side_effect = ConnectionError("refused")

        result = gateway.submit_transaction(SAMPLE_TX)

        assert result == SubmitResult(ok=False, error="invalid_transaction_state")

    def test_submit_never_retried(self, gateway, session):
        """A failed submission makes exactly one call."""
        session.post.side_effect = Timeout("slow")

        gateway.submit_transaction(SAMPLE_TX)

        assert session.post.call_count == 1

    def test_submit_empty_hash(self, gateway, session):
        """A success response without a hash is treated as failure."""
        session.post.return_value = make_response(200, "")

        result = gateway.submit_transaction(SAMPLE_TX)

        assert result.ok is False


class TestOutputMatches:
    """Test matching of a single UTXO output."""

    def test_exact_match(self):
        assert output_matches(output(), QUERY) is True

    def test_quantity_above_minimum(self):
        assert output_matches(output(quantity="20000"), QUERY) is True

    def test_quantity_below_minimum(self):
        assert output_matches(output(quantity="9999"), QUERY) is False

    def test_wrong_address(self):
        assert output_matches(output(address="addr1other"), QUERY) is False

    def test_wrong_unit(self):
        assert output_matches(output(unit="deadbeef"), QUERY) is False

    def test_lovelace_unit(self):
        """Ada payments match on the lovelace unit."""
        query = ConfirmationQuery(tx_hash=TX_HASH, address=PAY_TO, unit="lovelace", min_quantity=1000000)
        assert output_matches(output(), query) is True

    def test_non_dict_amount_entries_skipped(self):
        out = {"address": PAY_TO, "amount": ["junk", None, {"unit": UNIT, "quantity": "10000"}]}
        assert output_matches(out, QUERY) is True

    def test_non_list_amount(self):
        assert output_matches({"address": PAY_TO, "amount": "junk"}, QUERY) is False

    def test_non_numeric_quantity_ignored(self):
        assert output_matches(output(quantity="lots"), QUERY) is False


class TestFetchConfirmedOutput:
    """Test confirmation polling."""

    def test_confirmed_first_poll(self, gateway, session, clock):
        """Returns True immediately when the output is present."""
        session.get.return_value = make_response(200, utxos(output()))

        assert gateway.fetch_confirmed_output(QUERY, budget_seconds=20) is True
        assert session.get.call_count == 1
        assert clock.sleeps == []
        args, kwargs = session.get.call_args
        assert args[0] == f"{BASE_URL}/txs/{TX_HASH}/utxos"
        assert kwargs["headers"] == {"project_id": "mainnetTESTKEY"}

    def test_not_found_then_confirmed(self, gateway, session, clock):
        """404 means not indexed yet; polling continues until found."""
        session.get.side_effect = [
            make_response(404, {"status_code": 404, "message": "The requested component has not been found."}),
            make_response(404, {"status_code": 404}),
            make_response(200, utxos(output())),
        ]

        assert gateway.fetch_confirmed_output(QUERY, budget_seconds=20) is True
        assert session.get.call_count == 3
        assert clock.sleeps == [1.0, 1.0]

    def test_other_errors_fall_through(self, gateway, session):
        """Server errors and network failures do not stop the loop."""
        session.get.side_effect = [
            make_response(500, {"message": "oops"}),
            ConnectionError("reset"),
            make_response(200, ValueError("bad json")),
            make_response(200, utxos(output())),
        ]

        assert gateway.fetch_confirmed_output(QUERY, budget_seconds=20) is True
        assert session.get.call_count == 4

    def test_deadline_elapses(self, gateway, session, clock):
        """Returns False once the budget is spent without a match."""
        session.get.return_value = make_response(200, utxos(output(address="addr1other")))

        assert gateway.fetch_confirmed_output(QUERY, budget_seconds=5) is False
        assert session.get.call_count == 5
        assert clock.now < 1000.0 + 5

    def test_short_budget_single_pass(self, gateway, session, clock):
        """A budget no longer than the interval checks exactly once."""
        session.get.return_value = make_response(404, {})

        assert gateway.fetch_confirmed_output(QUERY, budget_seconds=1) is False
        assert session.get.call_count == 1
        assert clock.sleeps == []

    def test_zero_budget_single_pass(self, gateway, session):
        """A zero budget still performs one check."""
        session.get.return_value = make_response(200, utxos(output()))

        assert gateway.fetch_confirmed_output(QUERY, budget_seconds=0) is True
        assert session.get.call_count == 1

    def test_default_budget_from_policy(self, gateway, session):
        """Without a budget the policy default applies."""
        session.get.return_value = make_response(404, {})

        assert gateway.fetch_confirmed_output(QUERY) is False
        assert session.get.call_count == 20

    def test_repeated_checks_stay_confirmed(self, gateway, session):
        """An unchanged ledger gives the same answer every time."""
        session.get.return_value = make_response(200, utxos(output()))

        assert gateway.fetch_confirmed_output(QUERY, budget_seconds=0) is True
        assert gateway.fetch_confirmed_output(QUERY, budget_seconds=0) is True

    def test_malformed_amount_entries_keep_polling(self, gateway, session, clock):
        """Unexpected output shapes are misses, not faults."""
        session.get.return_value = make_response(200, utxos({"address": PAY_TO, "amount": ["junk"]}))

        assert gateway.fetch_confirmed_output(QUERY, budget_seconds=5) is False
        assert session.get.call_count == 5

    def test_malformed_outputs_then_confirmed(self, gateway, session):
        session.get.side_effect = [
            make_response(200, utxos({"address": PAY_TO, "amount": 5})),
            make_response(200, {"outputs": 7}),
            make_response(200, utxos(output())),
        ]

        assert gateway.fetch_confirmed_output(QUERY, budget_seconds=20) is True
        assert session.get.call_count == 3

    def test_hash_escaped_in_path(self, gateway, session):
        """A caller-supplied hash cannot change the request path."""
        session.get.return_value = make_response(404, {})
        query = ConfirmationQuery(tx_hash="../../accounts/x?y=1", address=PAY_TO, unit=UNIT, min_quantity=1)

        gateway.fetch_confirmed_output(query, budget_seconds=0)

        args, _ = session.get.call_args
        assert args[0] == f"{BASE_URL}/txs/..%2F..%2Faccounts%2Fx%3Fy%3D1/utxos"

    def test_empty_outputs(self, gateway, session):
        session.get.return_value = make_response(200, {"outputs": None})

        assert gateway.fetch_confirmed_output(QUERY, budget_seconds=0) is False


class TestGatewayConfiguration:
    """Test defaults taken from settings."""

    def test_base_url_for_mainnet(self):
        settings = Settings(NETWORK="cardano-mainnet")
        assert settings.blockfrost_base_url == BLOCKFROST_MAINNET_URL

    def test_base_url_for_other_networks(self):
        settings = Settings(NETWORK="cardano-preprod")
        assert settings.blockfrost_base_url == BLOCKFROST_PREPROD_URL

    def test_base_url_override(self):
        settings = Settings(BLOCKFROST_API_URL="http://localhost:3000/api/v0/")
        assert settings.blockfrost_base_url == "http://localhost:3000/api/v0"

    @patch("app.services.blockfrost.settings")
    def test_defaults_from_settings(self, mock_settings):
        mock_settings.blockfrost_base_url = BLOCKFROST_PREPROD_URL
        mock_settings.BLOCKFROST_PROJECT_ID = "preprodKEY"
        mock_settings.CONFIRM_POLL_INTERVAL_SECONDS = 2.0
        mock_settings.CONFIRM_WAIT_SECONDS = 30.0
        mock_settings.BLOCKFROST_SUBMIT_TIMEOUT = 30.0
        mock_settings.BLOCKFROST_FETCH_TIMEOUT = 15.0

        gateway = BlockfrostGateway(session=MagicMock())

        assert gateway.base_url == BLOCKFROST_PREPROD_URL
        assert gateway.project_id == "preprodKEY"
        assert gateway.poll_policy == PollPolicy(interval_seconds=2.0, default_budget_seconds=30.0)
