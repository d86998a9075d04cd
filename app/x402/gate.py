# app/x402/gate.py
"""
Request-level payment policy for pay-per-item content.

For every GET /buy/{item} the gate decides, without holding any state of its
own, between:
- 404 for unknown items (with the list of known items)
- 402 challenge when no proof is attached
- Allow for the development bypass proof (never in production)
- delegating to the PaymentVerifier, mapping Rejected -> 402 with remediation
  and Accepted -> Allow

Each request is classified independently; a retry is a new request.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional, Union

from fastapi import Request

from app.core.config import settings
from app.services.catalog import Catalog, Item, get_catalog
from app.x402 import audit
from app.x402.ledger import (
    ReceivingAccountError,
    explorer_url,
    get_asset_mint,
    resolve_receiving_account,
)
from app.x402.verifier import Accepted, PaymentVerifier, Rejected, to_base_units

logger = logging.getLogger(__name__)

# x402 protocol constants
X402_VERSION = 1
PAYMENT_HEADER = "X-PAYMENT"
PAYMENT_VERIFIED_HEADER = "X-Payment-Verified"
PROOF_QUERY_PARAM = "proof"
BEARER_SCHEME = "bearer"

MODE_ONCHAIN = "onchain"
MODE_DEV_BYPASS = "dev_bypass"


@dataclass(frozen=True)
class Allow:
    """Release the item. `verification` describes how payment was established."""
    item: Item
    verification: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Deny:
    status_code: int
    body: Dict[str, Any]


GateDecision = Union[Allow, Deny]


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


def extract_proof(request: Request) -> Optional[str]:
    """
    Pull the payment proof from the request.

    Sources, first non-empty wins:
    1. X-PAYMENT header
    2. Authorization header (optional "Bearer " prefix)
    3. ?proof= query parameter
    """
    proof = (request.headers.get(PAYMENT_HEADER) or "").strip()
    if proof:
        return proof

    parts = (request.headers.get("Authorization") or "").split(None, 1)
    if parts and parts[0].lower() == BEARER_SCHEME:
        parts = parts[1:]
    authorization = parts[0].strip() if parts else ""
    if authorization:
        return authorization

    proof = (request.query_params.get(PROOF_QUERY_PARAM) or "").strip()
    return proof or None


def to_json_value(value: Any) -> Any:
    """Make verdict context JSON-friendly (Decimal -> float, recursively)."""
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, dict):
        return {key: to_json_value(v) for key, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json_value(v) for v in value]
    return value


class AccessGate:
    """
    Decides what a /buy request gets.

    Collaborators default to the process-wide catalog and a PaymentVerifier
    built from settings.
    """

    def __init__(
        self,
        catalog: Optional[Catalog] = None,
        verifier: Optional[PaymentVerifier] = None,
        wallet_address: Optional[str] = None,
        production: Optional[bool] = None,
        bypass_proof: Optional[str] = None
    ):
        self._catalog = catalog
        self._verifier = verifier
        self._wallet_address = wallet_address
        self._production = production
        self._bypass_proof = bypass_proof

    @property
    def catalog(self) -> Catalog:
        if self._catalog is None:
            self._catalog = get_catalog()
        return self._catalog

    @property
    def verifier(self) -> PaymentVerifier:
        if self._verifier is None:
            self._verifier = PaymentVerifier(wallet_address=self._wallet_address)
        return self._verifier

    @property
    def wallet_address(self) -> Optional[str]:
        return self._wallet_address or settings.X402_WALLET_ADDRESS

    @property
    def production(self) -> bool:
        if self._production is not None:
            return self._production
        return settings.is_production

    @property
    def bypass_proof(self) -> Optional[str]:
        # The sentinel does not exist at all in production mode
        if self.production:
            return None
        return self._bypass_proof or settings.X402_DEV_BYPASS_PROOF

    def payment_details(self, item: Item) -> Dict[str, Any]:
        """
        Where and how much to pay for an item.

        Always returns every field; when the wallet is missing or invalid the
        address fields are None and status says why.
        """
        mint = self.verifier.mint
        decimals = self.verifier.decimals
        details: Dict[str, Any] = {
            "wallet_address": self.wallet_address,
            "receiving_account": None,
            "asset_identifier": mint,
            "asset_symbol": item.currency,
            "amount_base_units": to_base_units(item.price, decimals),
            "decimals": decimals,
            "network": settings.X402_NETWORK,
            "status": "available",
        }
        try:
            details["receiving_account"] = resolve_receiving_account(self.wallet_address, mint)
        except ReceivingAccountError as e:
            logger.warning(f"Payment details unavailable: {e}")
            details["wallet_address"] = None
            details["status"] = "unavailable"
            details["message"] = f"Payment details unavailable: {e}"
        return details

    def not_found(self, item_id: str) -> Deny:
        return Deny(
            status_code=404,
            body={
                "error": "Not Found",
                "message": f"Item '{item_id}' not found in inventory",
                "available_items": self.catalog.item_ids(),
            },
        )

    def challenge(self, item: Item) -> Deny:
        """402 Payment Required with a complete, self-sufficient payment instruction set."""
        details = self.payment_details(item)
        return Deny(
            status_code=402,
            body={
                "error": "Payment Required",
                "message": "This content requires micropayment to access",
                "x402Version": X402_VERSION,
                "pricing": {
                    "item": item.item_id,
                    "amount": float(item.price),
                    "currency": item.currency,
                    "network": settings.X402_NETWORK,
                },
                "payment_details": details,
                "payment_header": PAYMENT_HEADER,
                "instructions": (
                    f"Transfer {item.price} {item.currency} on {settings.X402_NETWORK} to "
                    f"payment_details.receiving_account, then repeat this request with the "
                    f"transaction signature in the {PAYMENT_HEADER} header."
                ),
            },
        )

    def verification_failed(self, item: Item, verdict: Rejected) -> Deny:
        body = {
            "error": "Payment Verification Failed",
            "code": verdict.code.value,
            "reason": verdict.reason,
            "details": verdict.details,
            "action_required": verdict.action_required,
            "retryable": verdict.retryable,
        }
        for key, value in to_json_value(verdict.context).items():
            body.setdefault(key, value)
        body["payment_details"] = self.payment_details(item)
        body["payment_header"] = PAYMENT_HEADER
        return Deny(status_code=402, body=body)

    def handle(
        self,
        item_id: str,
        proof: Optional[str],
        client_ip: Optional[str] = None
    ) -> GateDecision:
        """
        Classify one purchase request.

        Args:
            item_id: Requested catalog item
            proof: Payment proof extracted from the request, if any
            client_ip: For the audit trail only

        Returns:
            Allow or Deny
        """
        item = self.catalog.lookup(item_id)
        if item is None:
            logger.info(f"Unknown item requested: {item_id}")
            audit.log_item_not_found(item_id, client_ip=client_ip)
            return self.not_found(item_id)

        proof = (proof or "").strip()
        if not proof:
            logger.info(f"No payment proof for '{item_id}', returning 402 for {item.price} {item.currency}")
            decision = self.challenge(item)
            audit.log_challenge_sent(
                item_id,
                item.price,
                item.currency,
                decision.body["payment_details"]["receiving_account"],
                client_ip=client_ip
            )
            return decision

        bypass_proof = self.bypass_proof
        if bypass_proof and proof == bypass_proof:
            logger.warning(f"Development bypass proof used for '{item_id}' (ENVIRONMENT={settings.ENVIRONMENT})")
            audit.log_dev_bypass(item_id, client_ip=client_ip)
            return Allow(
                item=item,
                verification={
                    "mode": MODE_DEV_BYPASS,
                    "proof_id": proof,
                    "amount_received": float(item.price),
                },
            )

        verdict = self.verifier.verify(proof, item.price)
        if isinstance(verdict, Accepted):
            audit.log_payment_verified(
                item_id, proof, item.price, verdict.amount_received, client_ip=client_ip
            )
            return Allow(
                item=item,
                verification={
                    "mode": MODE_ONCHAIN,
                    "proof_id": verdict.proof_id,
                    "amount_received": float(verdict.amount_received),
                    "amount_received_base_units": verdict.amount_received_base_units,
                    "explorer_url": explorer_url(verdict.proof_id),
                },
            )

        logger.info(f"Payment rejected for '{item_id}': {verdict.code.value} ({verdict.reason})")
        audit.log_payment_rejected(
            item_id, proof, verdict.code.value, verdict.reason, client_ip=client_ip
        )
        return self.verification_failed(item, verdict)


_access_gate: Optional[AccessGate] = None


def get_access_gate() -> AccessGate:
    """FastAPI dependency returning the process-wide gate."""
    global _access_gate
    if _access_gate is None:
        _access_gate = AccessGate()
    return _access_gate


def reset_access_gate() -> None:
    """Drop the process-wide gate so the next request rebuilds it (useful for testing)."""
    global _access_gate
    _access_gate = None
