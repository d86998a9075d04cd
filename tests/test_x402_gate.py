# tests/test_x402_gate.py
"""
Unit tests for the access gate.
"""
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from fastapi import Request

from app.core.config import settings
from app.x402.gate import (
    AccessGate,
    Allow,
    Deny,
    MODE_DEV_BYPASS,
    MODE_ONCHAIN,
    PAYMENT_HEADER,
    extract_proof,
    get_client_ip,
    to_json_value,
)
from app.x402.verifier import Accepted, PaymentVerifier
from tests.conftest import (
    DECIMALS,
    DEVNET_USDC,
    make_record,
    new_address,
    transfer_checked,
)


def make_request(headers=None, query=None, client_host="127.0.0.1") -> MagicMock:
    request = MagicMock(spec=Request)
    request.headers = headers or {}
    request.query_params = query or {}
    request.client = MagicMock()
    request.client.host = client_host
    return request


class TestExtractProof:
    """Test proof extraction from the transport."""

    def test_payment_header(self):
        assert extract_proof(make_request(headers={PAYMENT_HEADER: "sig1"})) == "sig1"

    def test_authorization_header(self):
        assert extract_proof(make_request(headers={"Authorization": "sig2"})) == "sig2"

    def test_bearer_prefix_stripped(self):
        assert extract_proof(make_request(headers={"Authorization": "Bearer sig3"})) == "sig3"

    def test_query_parameter(self):
        assert extract_proof(make_request(query={"proof": "sig4"})) == "sig4"

    def test_header_takes_precedence(self):
        request = make_request(
            headers={PAYMENT_HEADER: "from-header", "Authorization": "from-auth"},
            query={"proof": "from-query"},
        )
        assert extract_proof(request) == "from-header"

    def test_absent(self):
        assert extract_proof(make_request()) is None

    def test_blank_values_ignored(self):
        request = make_request(headers={PAYMENT_HEADER: "  ", "Authorization": "Bearer  "}, query={"proof": ""})
        assert extract_proof(request) is None

    @pytest.mark.parametrize("authorization", ["Bearer", "bearer", "Bearer  ", "  BEARER\t"])
    def test_bare_bearer_scheme_is_no_proof(self, authorization):
        assert extract_proof(make_request(headers={"Authorization": authorization})) is None

    def test_bare_bearer_falls_through_to_query(self):
        request = make_request(headers={"Authorization": "Bearer "}, query={"proof": "sig5"})
        assert extract_proof(request) == "sig5"

    @pytest.mark.parametrize("authorization", ["bearer sig6", "BEARER   sig6  ", "Bearer\tsig6"])
    def test_bearer_scheme_case_and_spacing(self, authorization):
        assert extract_proof(make_request(headers={"Authorization": authorization})) == "sig6"


class TestGetClientIP:
    """Test client IP extraction."""

    def test_forwarded_for(self):
        request = make_request(headers={"X-Forwarded-For": "203.0.113.50, 70.41.3.18"})
        assert get_client_ip(request) == "203.0.113.50"

    def test_direct_connection(self):
        assert get_client_ip(make_request(client_host="192.168.1.100")) == "192.168.1.100"

    def test_no_client_info(self):
        request = make_request()
        request.client = None
        assert get_client_ip(request) == "unknown"


class TestToJsonValue:

    def test_decimals_become_floats(self):
        assert to_json_value({"a": Decimal("0.0011"), "b": [Decimal("1")], "c": "x"}) == {
            "a": 0.0011, "b": [1.0], "c": "x"
        }


class TestUnknownItem:
    """Unknown items are 404 whatever the proof."""

    @pytest.mark.parametrize("proof", [None, "", "good-tx", "valid_proof"])
    def test_not_found_regardless_of_proof(self, gate, ledger, proof):
        decision = gate.handle("missing", proof)

        assert isinstance(decision, Deny)
        assert decision.status_code == 404
        assert sorted(decision.body["available_items"]) == ["big", "x"]
        ledger.fetch_transaction.assert_not_called()


class TestChallenge:
    """402 challenge when no proof is supplied."""

    @pytest.mark.parametrize("item_id", ["x", "big"])
    def test_amount_equals_catalog_price(self, gate, catalog, item_id):
        decision = gate.handle(item_id, None)

        assert isinstance(decision, Deny)
        assert decision.status_code == 402
        assert Decimal(str(decision.body["pricing"]["amount"])) == catalog.lookup(item_id).price

    def test_challenge_body_is_complete(self, gate, wallet_address, receiving_account):
        body = gate.handle("x", "").body

        assert body["x402Version"] == 1
        assert body["pricing"] == {
            "item": "x",
            "amount": 0.001,
            "currency": "USDC",
            "network": settings.X402_NETWORK,
        }
        details = body["payment_details"]
        assert details["wallet_address"] == wallet_address
        assert details["receiving_account"] == receiving_account
        assert details["asset_identifier"] == DEVNET_USDC
        assert details["amount_base_units"] == 1000
        assert details["status"] == "available"
        assert body["payment_header"] == PAYMENT_HEADER

    def test_missing_wallet_reported_not_omitted(self, catalog, ledger, proof_store, monkeypatch):
        monkeypatch.setattr(settings, "X402_WALLET_ADDRESS", None)
        verifier = PaymentVerifier(ledger=ledger, proof_store=proof_store, mint=DEVNET_USDC, decimals=DECIMALS)
        gate = AccessGate(catalog=catalog, verifier=verifier, production=True)

        details = gate.handle("x", None).body["payment_details"]

        assert "receiving_account" in details
        assert details["receiving_account"] is None
        assert details["wallet_address"] is None
        assert details["status"] == "unavailable"
        assert "unavailable" in details["message"]

    def test_invalid_wallet_reported(self, catalog, verifier):
        gate = AccessGate(catalog=catalog, verifier=verifier, wallet_address="not-a-wallet", production=True)

        details = gate.payment_details(catalog.lookup("x"))

        assert details["status"] == "unavailable"
        assert details["receiving_account"] is None


class TestDevelopmentBypass:
    """The sentinel proof only works outside production."""

    def test_bypass_allowed_in_development(self, catalog, verifier, ledger):
        gate = AccessGate(catalog=catalog, verifier=verifier, production=False, bypass_proof="valid_proof")

        decision = gate.handle("x", "valid_proof")

        assert isinstance(decision, Allow)
        assert decision.verification["mode"] == MODE_DEV_BYPASS
        ledger.fetch_transaction.assert_not_called()

    def test_bypass_unreachable_in_production(self, catalog, verifier, ledger):
        gate = AccessGate(catalog=catalog, verifier=verifier, production=True, bypass_proof="valid_proof")

        decision = gate.handle("x", "valid_proof")

        assert gate.bypass_proof is None
        assert isinstance(decision, Deny)
        assert decision.body["code"] == "NOT_FOUND"
        ledger.fetch_transaction.assert_called_once_with("valid_proof")

    def test_production_from_settings(self, catalog, verifier, monkeypatch):
        monkeypatch.setattr(settings, "ENVIRONMENT", "production")
        gate = AccessGate(catalog=catalog, verifier=verifier)

        assert gate.production is True
        assert gate.bypass_proof is None

    def test_development_from_settings(self, catalog, verifier, monkeypatch):
        monkeypatch.setattr(settings, "ENVIRONMENT", "development")
        monkeypatch.setattr(settings, "X402_DEV_BYPASS_PROOF", "let-me-in")
        gate = AccessGate(catalog=catalog, verifier=verifier)

        assert gate.bypass_proof == "let-me-in"


class TestVerification:
    """Proofs are delegated to the verifier and verdicts mapped to decisions."""

    def test_accepted_allows(self, gate, ledger, receiving_account):
        ledger.fetch_transaction.return_value = make_record("good-tx", transfer_checked(receiving_account, 1100))

        decision = gate.handle("x", "good-tx")

        assert isinstance(decision, Allow)
        assert decision.item.item_id == "x"
        assert decision.verification["mode"] == MODE_ONCHAIN
        assert decision.verification["proof_id"] == "good-tx"
        assert decision.verification["amount_received"] == 0.0011
        assert decision.verification["amount_received_base_units"] == 1100

    def test_rejection_body(self, gate, ledger, receiving_account):
        ledger.fetch_transaction.return_value = make_record("short-tx", transfer_checked(receiving_account, 10))

        decision = gate.handle("x", "short-tx")

        assert isinstance(decision, Deny)
        assert decision.status_code == 402
        body = decision.body
        assert body["code"] == "INSUFFICIENT_AMOUNT"
        assert body["reason"]
        assert body["details"]
        assert body["action_required"]
        assert body["shortfall"] == 0.00099
        assert body["payment_details"]["receiving_account"] == receiving_account
        assert body["payment_header"] == PAYMENT_HEADER

    def test_wrong_recipient_body_has_correct_address(self, gate, ledger, receiving_account):
        ledger.fetch_transaction.return_value = make_record("tx", transfer_checked(new_address(), 5000))

        body = gate.handle("x", "tx").body

        assert body["code"] == "WRONG_RECIPIENT"
        assert body["correct_address"] == receiving_account

    def test_not_found_body_has_explorer_link(self, gate):
        body = gate.handle("x", "unconfirmed-tx").body

        assert body["code"] == "NOT_FOUND"
        assert "unconfirmed-tx" in body["explorer_url"]
        assert body["retryable"] is True

    def test_proof_whitespace_trimmed(self, gate, ledger):
        gate.handle("x", "  padded-tx  ")
        ledger.fetch_transaction.assert_called_once_with("padded-tx")

    def test_gate_passes_item_price(self, catalog):
        verifier = MagicMock(spec=PaymentVerifier)
        verifier.mint = DEVNET_USDC
        verifier.decimals = DECIMALS
        verifier.verify.return_value = Accepted(
            proof_id="tx", amount_received=Decimal("1"), amount_received_base_units=1_000_000
        )
        gate = AccessGate(catalog=catalog, verifier=verifier, wallet_address=new_address(), production=True)

        decision = gate.handle("big", "tx")

        assert isinstance(decision, Allow)
        verifier.verify.assert_called_once_with("tx", Decimal("1"))
