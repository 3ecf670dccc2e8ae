"""Transaction models - store transactions and the platform's verdict on them.

A transaction is only trusted when it arrives wrapped in a VerificationResult
that the store platform marked as verified.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from .product import ProductType


class Transaction(BaseModel):
    """A purchase record issued by the store platform."""

    id: str = Field(..., description="Unique transaction ID")
    original_id: str = Field(..., description="ID of the first transaction in a renewal chain")
    product_id: str = Field(..., description="Purchased product ID")
    product_type: ProductType = Field(default=ProductType.NON_CONSUMABLE, description="Product type")

    # Timestamps
    purchase_date: datetime = Field(..., description="When the purchase was made")
    expiration_date: Optional[datetime] = Field(None, description="Subscription expiry")
    revocation_date: Optional[datetime] = Field(None, description="Set when the store revoked it")

    is_upgraded: bool = Field(default=False, description="Superseded by a higher service tier")

    @property
    def is_revoked(self) -> bool:
        return self.revocation_date is not None

    class Config:
        json_schema_extra = {
            "example": {
                "id": "storekit_txn_a1b2c3d4e5f6a7b8_1700000000000",
                "original_id": "storekit_txn_a1b2c3d4e5f6a7b8_1700000000000",
                "product_id": "pro.monthly",
                "product_type": "auto_renewable",
                "purchase_date": "2026-01-01T00:00:00Z",
                "expiration_date": "2026-01-31T00:00:00Z",
                "revocation_date": None,
                "is_upgraded": False,
            }
        }


class VerificationResult(BaseModel):
    """Transaction wrapped with the platform's verification verdict."""

    transaction: Transaction
    verified: bool = Field(..., description="True when the platform validated the signature")
    error: Optional[str] = Field(None, description="Why verification failed")

    @classmethod
    def verified_result(cls, transaction: Transaction) -> "VerificationResult":
        return cls(transaction=transaction, verified=True)

    @classmethod
    def unverified_result(
        cls, transaction: Transaction, error: str = "invalid signature"
    ) -> "VerificationResult":
        return cls(transaction=transaction, verified=False, error=error)


class PurchaseOutcome(str, Enum):
    """Result of a platform purchase flow."""

    SUCCESS = "success"
    USER_CANCELLED = "user_cancelled"
    PENDING = "pending"
    UNKNOWN = "unknown"


class PurchaseResult(BaseModel):
    """What the platform purchase flow returned."""

    outcome: PurchaseOutcome
    verification: Optional[VerificationResult] = Field(
        None, description="Present only for successful purchases"
    )

    @model_validator(mode="after")
    def _success_carries_verification(self) -> "PurchaseResult":
        if self.outcome == PurchaseOutcome.SUCCESS and self.verification is None:
            raise ValueError("Successful purchase must carry a verification result")
        return self
