"""Request and response models for the mirror and platform control APIs."""

from typing import Optional

from pydantic import BaseModel, Field

from .mirror import RequestState
from .transaction import PurchaseOutcome, Transaction


class PurchaseRequest(BaseModel):
    """Request to buy a product through the mirror."""

    product_id: str = Field(..., description="Product ID to purchase")

    class Config:
        json_schema_extra = {"example": {"product_id": "pro.monthly"}}


class PurchaseResponse(BaseModel):
    """Response for a mirror purchase."""

    product_id: str
    transaction: Optional[Transaction] = Field(
        None, description="Finished transaction, absent when cancelled or pending"
    )
    message: str


class ReconcileRequest(BaseModel):
    """Request to rebuild purchased products from current entitlements."""

    force_sync: bool = Field(default=False, description="Sync with the store backend first")


class ReconcileResponse(BaseModel):
    """Response for reconciliation."""

    purchased_ids: list[str]
    purchases_request_state: RequestState


class IsPurchasedResponse(BaseModel):
    """Response for a live ownership check against the store."""

    product_id: str
    purchased: bool


class ResetResponse(BaseModel):
    """Response for request state reset."""

    catalog_request_state: RequestState
    purchases_request_state: RequestState
    message: str


class GrantRequest(BaseModel):
    """Record a purchase made outside the app (another device, family sharing)."""

    product_id: str = Field(..., description="Product ID to grant")
    verified: bool = Field(default=True, description="Whether the store verdict is verified")
    deliver: bool = Field(default=True, description="Push the transaction onto the update feed")
    wait: bool = Field(default=True, description="Respond after the mirror handled the update")

    class Config:
        json_schema_extra = {
            "example": {"product_id": "pro.monthly", "verified": True, "deliver": True, "wait": True}
        }


class RevokeRequest(BaseModel):
    """Revoke the latest transaction of a product (refund)."""

    product_id: str = Field(..., description="Product ID to revoke")
    deliver: bool = Field(default=True, description="Push the revocation onto the update feed")
    wait: bool = Field(default=True, description="Respond after the mirror handled the update")


class TransactionResponse(BaseModel):
    """Response carrying a platform-side transaction."""

    transaction: Transaction
    verified: bool
    delivered: bool


class PurchaseOutcomeRequest(BaseModel):
    """Script the outcome of the next purchase flows."""

    outcome: PurchaseOutcome = Field(default=PurchaseOutcome.SUCCESS)
    verified: bool = Field(default=True, description="Verdict attached to successful purchases")


class FailuresRequest(BaseModel):
    """Toggle simulated platform failures."""

    fetch_products: bool = False
    sync: bool = False
    current_entitlements: bool = False


class StatusResponse(BaseModel):
    """Platform status summary."""

    product_count: int
    transaction_count: int
    finished_count: int
    pending_updates: int


class ErrorDetail(BaseModel):
    """Error type and message; the body of unhandled 500 responses."""

    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Human-readable error message")


class ErrorResponse(BaseModel):
    """Body of 4xx responses raised through HTTPException."""

    detail: ErrorDetail
