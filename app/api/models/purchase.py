# app/api/models/purchase.py
from pydantic import BaseModel, Field
from typing import Optional


class VerificationInfo(BaseModel):
    """How the payment for a released item was established."""
    mode: str = Field(..., description="'onchain' for verified payments, 'dev_bypass' outside production")
    proof_id: str = Field(..., description="Transaction signature that paid for the item")
    amount_received: float = Field(..., description="Amount actually received, in human units")
    amount_received_base_units: Optional[int] = Field(default=None, description="Amount received in base units")
    explorer_url: Optional[str] = Field(default=None, description="Ledger explorer link for the transaction")


class PurchaseResponse(BaseModel):
    """Response model for a successful purchase."""
    success: bool = True
    item: str = Field(..., description="Purchased item identifier", example="stripe-2026")
    charged: float = Field(..., description="Catalog price of the item", example=0.001)
    currency: str = Field(..., description="Settlement currency", example="USDC")
    content: str = Field(..., description="The purchased content")
    timestamp: str = Field(..., description="ISO 8601 time of release (UTC)")
    verification: VerificationInfo
