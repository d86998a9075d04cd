# app/api/models/catalog.py
from pydantic import BaseModel, Field
from typing import Dict, List, Optional


class CatalogItem(BaseModel):
    id: str = Field(..., description="Item identifier used in /buy/{item}")
    title: str
    price: float = Field(..., description="Price in human units of the currency")
    currency: str
    preview: str = Field(..., description="First characters of the content")


class CatalogPaymentInfo(BaseModel):
    network: str
    asset: str
    asset_identifier: str
    wallet_address: Optional[str] = Field(default=None, description="None when payments are not configured")
    payment_header: str


class CatalogResponse(BaseModel):
    """Response model for the catalog listing."""
    available_items: List[CatalogItem]
    payment_info: CatalogPaymentInfo


class AssetInfo(BaseModel):
    symbol: str
    identifier: str = Field(..., description="Token mint address")
    decimals: int


class TolerancePolicy(BaseModel):
    underpayment_percent: float
    description: str


class PaymentInfoResponse(BaseModel):
    """Static description of how to pay; holds no per-request state."""
    protocol: str = "x402"
    x402Version: int
    network: str
    asset: AssetInfo
    wallet_address: Optional[str] = None
    payment_header: str
    proof_sources: List[str]
    proof_format: str
    commitment: str
    tolerance: TolerancePolicy
    replay_policy: str
    error_codes: Dict[str, str]
    dev_bypass_enabled: bool
