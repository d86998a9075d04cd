# app/x402/verifier.py
"""
On-chain payment verification.

Given a transaction signature claimed as payment and the expected price, the
verifier checks the transaction against the ledger and returns a verdict:

1. Reject proofs that already unlocked content (REPLAY, no ledger call)
2. Fetch the transaction (NOT_FOUND / FAILED_OR_UNCONFIRMED)
3. Find the first transfer into the receiving token account (WRONG_RECIPIENT)
4. Compare the received amount against the price minus the tolerance band
   (INSUFFICIENT_AMOUNT)
5. Consume the proof and accept

Steps 1-5 run while holding the proof's lock from the proof store, so the same
signature can never be accepted twice. Ledger faults and any other unexpected
error become a retryable VERIFICATION_ERROR; they never accept and never
consume the proof.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_CEILING, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, Optional, Union

from app.core.config import settings
from app.x402.ledger import (
    LedgerTimeoutError,
    SolanaLedgerClient,
    TransactionRecord,
    TransferInstruction,
    explorer_url,
    get_asset_mint,
    resolve_receiving_account,
)
from app.x402.proofs import ProofStore, get_proof_store

logger = logging.getLogger(__name__)

# Seconds a caller should wait before resubmitting a proof the ledger has not seen yet
FINALITY_RETRY_SECONDS = 30


class VerdictCode(Enum):
    """Client-facing rejection codes."""
    REPLAY = "REPLAY"
    NOT_FOUND = "NOT_FOUND"
    FAILED_OR_UNCONFIRMED = "FAILED_OR_UNCONFIRMED"
    WRONG_RECIPIENT = "WRONG_RECIPIENT"
    INSUFFICIENT_AMOUNT = "INSUFFICIENT_AMOUNT"
    VERIFICATION_ERROR = "VERIFICATION_ERROR"


@dataclass(frozen=True)
class Accepted:
    """The proof paid for the item and has now been consumed."""
    proof_id: str
    amount_received: Decimal
    amount_received_base_units: int
    accepted: bool = field(default=True, init=False)


@dataclass(frozen=True)
class Rejected:
    """The proof did not pay for the item. `context` holds reason-specific fields."""
    code: VerdictCode
    reason: str
    details: str
    action_required: str
    context: Dict[str, Any] = field(default_factory=dict)
    accepted: bool = field(default=False, init=False)

    @property
    def retryable(self) -> bool:
        return self.code in (VerdictCode.NOT_FOUND, VerdictCode.VERIFICATION_ERROR)


VerificationVerdict = Union[Accepted, Rejected]


def to_base_units(amount: Decimal, decimals: int) -> int:
    """Convert a human-unit amount to integer base units (half-up rounding)."""
    scaled = Decimal(amount).scaleb(decimals)
    return int(scaled.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def from_base_units(base_units: int, decimals: int) -> Decimal:
    """Convert integer base units to a human-unit amount."""
    return Decimal(base_units).scaleb(-decimals)


def minimum_accepted_base_units(expected_base_units: int, tolerance_percent: Decimal) -> int:
    """
    Smallest amount accepted for a price, in base units.

    received is accepted iff received * 100 >= expected * (100 - tolerance),
    i.e. received >= ceil(expected * (100 - tolerance) / 100).
    Example: expected 1,000,000 with 1% tolerance -> 990,000.
    """
    numerator = Decimal(expected_base_units) * (Decimal(100) - Decimal(tolerance_percent))
    return int((numerator / Decimal(100)).to_integral_value(rounding=ROUND_CEILING))


def find_payment_transfer(
    record: TransactionRecord,
    receiving_account: str,
    mint: str
) -> Optional[TransferInstruction]:
    """
    First transfer into receiving_account for the expected asset.

    Typed transfers (transferChecked) must also match the mint; untyped
    transfers qualify on destination alone. Later transfers to the same
    account are ignored.
    """
    for transfer in record.transfers:
        if transfer.destination != receiving_account:
            continue
        if transfer.is_typed and transfer.mint != mint:
            continue
        return transfer
    return None


class PaymentVerifier:
    """
    Verifies transaction signatures against the ledger.

    Collaborators and payment parameters fall back to settings and the global
    proof store when not given.
    """

    def __init__(
        self,
        ledger: Optional[SolanaLedgerClient] = None,
        proof_store: Optional[ProofStore] = None,
        wallet_address: Optional[str] = None,
        mint: Optional[str] = None,
        decimals: Optional[int] = None,
        tolerance_percent: Optional[Decimal] = None
    ):
        self._ledger = ledger
        self._proof_store = proof_store
        self._wallet_address = wallet_address
        self._mint = mint
        self._decimals = decimals
        self._tolerance_percent = tolerance_percent

    @property
    def ledger(self) -> SolanaLedgerClient:
        """Lazy initialization of the ledger client."""
        if self._ledger is None:
            self._ledger = SolanaLedgerClient()
        return self._ledger

    @property
    def proof_store(self) -> ProofStore:
        if self._proof_store is None:
            self._proof_store = get_proof_store()
        return self._proof_store

    @property
    def wallet_address(self) -> Optional[str]:
        return self._wallet_address or settings.X402_WALLET_ADDRESS

    @property
    def mint(self) -> str:
        return self._mint or get_asset_mint()

    @property
    def decimals(self) -> int:
        return self._decimals if self._decimals is not None else settings.X402_ASSET_DECIMALS

    @property
    def tolerance_percent(self) -> Decimal:
        if self._tolerance_percent is not None:
            return Decimal(self._tolerance_percent)
        return settings.tolerance_percent

    def verify(self, proof_id: str, expected_amount: Decimal) -> VerificationVerdict:
        """
        Verify that proof_id pays at least expected_amount (minus tolerance).

        Args:
            proof_id: Transaction signature supplied by the caller
            expected_amount: Item price in human units

        Returns:
            Accepted or Rejected. Never raises for ledger or configuration faults.

        Raises:
            ValueError: If proof_id is empty or expected_amount is not at least one
                base unit
        """
        if not proof_id or not proof_id.strip():
            raise ValueError("proof_id must be non-empty")
        expected_amount = Decimal(expected_amount)
        if expected_amount <= 0:
            raise ValueError(f"expected_amount must be positive, got {expected_amount}")
        if to_base_units(expected_amount, self.decimals) < 1:
            raise ValueError(
                f"expected_amount {expected_amount} is below one base unit at {self.decimals} decimals"
            )

        with self.proof_store.lock(proof_id):
            try:
                return self._verify_locked(proof_id, expected_amount)
            except Exception as e:
                logger.error(f"Payment verification error for {proof_id}: {e}")
                return self._verification_error(proof_id, e)

    def _verify_locked(self, proof_id: str, expected_amount: Decimal) -> VerificationVerdict:
        if self.proof_store.is_consumed(proof_id):
            logger.warning(f"Replay attempt with consumed proof {proof_id}")
            return self._replay(proof_id)

        record = self.ledger.fetch_transaction(proof_id)
        if record is None:
            return Rejected(
                code=VerdictCode.NOT_FOUND,
                reason="Transaction not found",
                details=(
                    "The ledger has no record of this transaction yet. It may be unknown "
                    "or still propagating to the required confirmation level."
                ),
                action_required=(
                    f"Wait about {FINALITY_RETRY_SECONDS} seconds for confirmation, then resend "
                    "the same proof. If it keeps failing, check the signature."
                ),
                context={
                    "proof_id": proof_id,
                    "explorer_url": explorer_url(proof_id),
                    "retry_after_seconds": FINALITY_RETRY_SECONDS,
                },
            )

        if not record.succeeded:
            return Rejected(
                code=VerdictCode.FAILED_OR_UNCONFIRMED,
                reason="Transaction failed or is unconfirmed",
                details=(
                    "The transaction exists but did not execute successfully"
                    if record.has_meta else
                    "The transaction exists but has no execution status yet"
                ),
                action_required="Send a new payment transaction and submit its signature.",
                context={
                    "proof_id": proof_id,
                    "ledger_error": record.error,
                    "explorer_url": explorer_url(proof_id),
                },
            )

        receiving_account = resolve_receiving_account(self.wallet_address, self.mint)
        transfer = find_payment_transfer(record, receiving_account, self.mint)
        if transfer is None:
            destinations = sorted({t.destination for t in record.transfers})
            return Rejected(
                code=VerdictCode.WRONG_RECIPIENT,
                reason="No payment to the receiving account",
                details=(
                    f"The transaction contains no transfer of the expected asset to "
                    f"{receiving_account}."
                ),
                action_required="Send the payment to correct_address and submit the new signature.",
                context={
                    "proof_id": proof_id,
                    "correct_address": receiving_account,
                    "wallet_address": self.wallet_address,
                    "asset_identifier": self.mint,
                    "found_destinations": destinations,
                },
            )

        expected_base = to_base_units(expected_amount, self.decimals)
        minimum_base = minimum_accepted_base_units(expected_base, self.tolerance_percent)
        received = from_base_units(transfer.amount, self.decimals)
        if transfer.amount < minimum_base:
            shortfall_base = expected_base - transfer.amount
            logger.info(
                f"Insufficient payment for {proof_id}: received {transfer.amount} "
                f"< minimum {minimum_base} base units"
            )
            return Rejected(
                code=VerdictCode.INSUFFICIENT_AMOUNT,
                reason="Payment amount too low",
                details=(
                    f"Received {received} but {expected_amount} is required "
                    f"(minimum accepted {from_base_units(minimum_base, self.decimals)})."
                ),
                action_required=(
                    "Top up your wallet and send a new payment for the full amount. "
                    "Partial payments are not combined."
                ),
                context={
                    "proof_id": proof_id,
                    "expected": expected_amount,
                    "received": received,
                    "minimum_accepted": from_base_units(minimum_base, self.decimals),
                    "shortfall": from_base_units(shortfall_base, self.decimals),
                    "expected_base_units": expected_base,
                    "received_base_units": transfer.amount,
                    "minimum_accepted_base_units": minimum_base,
                    "shortfall_base_units": shortfall_base,
                },
            )

        if not self.proof_store.try_consume(proof_id):
            return self._replay(proof_id)

        logger.info(f"Payment accepted: {proof_id} received {received} (expected {expected_amount})")
        return Accepted(
            proof_id=proof_id,
            amount_received=received,
            amount_received_base_units=transfer.amount,
        )

    @staticmethod
    def _replay(proof_id: str) -> Rejected:
        return Rejected(
            code=VerdictCode.REPLAY,
            reason="Payment proof already used",
            details="This transaction has already been redeemed for content.",
            action_required="Send a new payment transaction for this purchase.",
            context={"proof_id": proof_id},
        )

    @staticmethod
    def _verification_error(proof_id: str, error: Exception) -> Rejected:
        if isinstance(error, LedgerTimeoutError):
            details = "The ledger did not respond in time."
        else:
            details = f"Payment could not be verified: {error}"
        return Rejected(
            code=VerdictCode.VERIFICATION_ERROR,
            reason="Verification temporarily unavailable",
            details=details,
            action_required="Retry the same proof shortly. Your payment has not been consumed.",
            context={
                "proof_id": proof_id,
                "explorer_url": explorer_url(proof_id),
            },
        )
