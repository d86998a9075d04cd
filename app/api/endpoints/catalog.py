# app/api/endpoints/catalog.py
from fastapi import APIRouter, Depends
import logging

from app.api.models.catalog import (
    AssetInfo,
    CatalogItem,
    CatalogPaymentInfo,
    CatalogResponse,
    PaymentInfoResponse,
    TolerancePolicy,
)
from app.core.config import settings
from app.x402.gate import (
    AccessGate,
    PAYMENT_HEADER,
    PROOF_QUERY_PARAM,
    X402_VERSION,
    get_access_gate,
)
from app.x402.verifier import VerdictCode

logger = logging.getLogger(__name__)

router = APIRouter()

ERROR_CODE_DESCRIPTIONS = {
    VerdictCode.REPLAY.value: "Proof already redeemed; send a new payment",
    VerdictCode.NOT_FOUND.value: "Transaction not visible on the ledger yet; retry shortly",
    VerdictCode.FAILED_OR_UNCONFIRMED.value: "Transaction failed or has no execution status; send a new payment",
    VerdictCode.WRONG_RECIPIENT.value: "No transfer to the receiving account; pay correct_address",
    VerdictCode.INSUFFICIENT_AMOUNT.value: "Amount below price minus tolerance; pay the full amount",
    VerdictCode.VERIFICATION_ERROR.value: "Ledger temporarily unreachable; retry the same proof",
}


@router.get("/catalog", response_model=CatalogResponse)
async def get_catalog_listing(gate: AccessGate = Depends(get_access_gate)) -> CatalogResponse:
    """
    List purchasable items with prices and a short preview.
    """
    items = [
        CatalogItem(
            id=item.item_id,
            title=item.title,
            price=float(item.price),
            currency=item.currency,
            preview=item.preview(),
        )
        for item in gate.catalog.items()
    ]
    logger.info(f"Catalog endpoint accessed, returning {len(items)} items")
    return CatalogResponse(
        available_items=items,
        payment_info=CatalogPaymentInfo(
            network=settings.X402_NETWORK,
            asset=settings.X402_ASSET_SYMBOL,
            asset_identifier=gate.verifier.mint,
            wallet_address=gate.wallet_address,
            payment_header=PAYMENT_HEADER,
        ),
    )


@router.get("/payment-info", response_model=PaymentInfoResponse)
async def get_payment_info(gate: AccessGate = Depends(get_access_gate)) -> PaymentInfoResponse:
    """
    Describe how to pay: network, asset, tolerance and replay policy.

    Pure documentation; nothing here depends on request state.
    """
    tolerance = settings.tolerance_percent
    return PaymentInfoResponse(
        x402Version=X402_VERSION,
        network=settings.X402_NETWORK,
        asset=AssetInfo(
            symbol=settings.X402_ASSET_SYMBOL,
            identifier=gate.verifier.mint,
            decimals=gate.verifier.decimals,
        ),
        wallet_address=gate.wallet_address,
        payment_header=PAYMENT_HEADER,
        proof_sources=[
            f"{PAYMENT_HEADER} header",
            "Authorization header (optionally 'Bearer <signature>')",
            f"?{PROOF_QUERY_PARAM}= query parameter",
        ],
        proof_format="Solana transaction signature (base58)",
        commitment=settings.SOLANA_COMMITMENT,
        tolerance=TolerancePolicy(
            underpayment_percent=float(tolerance),
            description=(
                f"Payments of at least {100 - tolerance}% of the price are accepted; "
                "overpayments are accepted and not refunded."
            ),
        ),
        replay_policy=(
            "Each transaction signature unlocks content exactly once. "
            "Resubmitting a redeemed signature returns REPLAY."
        ),
        error_codes=ERROR_CODE_DESCRIPTIONS,
        dev_bypass_enabled=gate.bypass_proof is not None,
    )
