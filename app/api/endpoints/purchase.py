# app/api/endpoints/purchase.py
from datetime import datetime, timezone
import logging

from fastapi import APIRouter, Depends, Path, Request
from fastapi.responses import JSONResponse

from app.api.models.purchase import PurchaseResponse, VerificationInfo
from app.x402.gate import (
    AccessGate,
    Deny,
    PAYMENT_VERIFIED_HEADER,
    extract_proof,
    get_access_gate,
    get_client_ip,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "/buy/{item}",
    response_model=PurchaseResponse,
    responses={
        402: {"description": "Payment required, or the supplied proof was rejected"},
        404: {"description": "Unknown item"},
    },
)
def buy_item(
    request: Request,
    item: str = Path(..., description="Catalog item identifier"),
    gate: AccessGate = Depends(get_access_gate),
):
    """
    Purchase and download a catalog item.

    Without a proof this returns 402 with payment instructions. Resubmit with
    the transaction signature in the X-PAYMENT header (or Authorization, or
    ?proof=) to receive the content. Each transaction unlocks content once.

    Declared sync so FastAPI runs it in the threadpool; the ledger call blocks.
    """
    decision = gate.handle(item, extract_proof(request), client_ip=get_client_ip(request))

    if isinstance(decision, Deny):
        return JSONResponse(status_code=decision.status_code, content=decision.body)

    purchased = decision.item
    response = PurchaseResponse(
        item=purchased.item_id,
        charged=float(purchased.price),
        currency=purchased.currency,
        content=purchased.content,
        timestamp=datetime.now(timezone.utc).isoformat(),
        verification=VerificationInfo(**decision.verification),
    )
    logger.info(f"Released '{purchased.item_id}' ({decision.verification['mode']})")
    return JSONResponse(
        content=response.model_dump(),
        headers={PAYMENT_VERIFIED_HEADER: decision.verification["proof_id"]},
    )
