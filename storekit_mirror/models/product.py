"""Product catalog and store configuration models.

Models for catalog entries returned by the store platform and for the
store.yaml configuration file.
"""

from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from storekit_mirror.utils.billing_period import validate_billing_period


class ProductType(str, Enum):
    """Kind of in-app product."""

    CONSUMABLE = "consumable"
    NON_CONSUMABLE = "non_consumable"
    AUTO_RENEWABLE = "auto_renewable"
    NON_RENEWING = "non_renewing"


class Product(BaseModel):
    """Catalog entry for a purchasable product."""

    id: str = Field(..., description="Product identifier")
    type: ProductType = Field(default=ProductType.NON_CONSUMABLE, description="Product type")
    display_name: str = Field(..., description="Human-readable name")
    description: str = Field(default="", description="Product description")
    price: Decimal = Field(..., ge=0, description="Price in the store currency")
    currency: str = Field(default="USD", description="ISO 4217 currency code")

    # Subscription-specific fields
    subscription_period: Optional[str] = Field(
        None, description="ISO 8601 duration of one billing period (e.g., P1M, P1Y)"
    )

    @field_validator("subscription_period")
    @classmethod
    def _check_period(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not validate_billing_period(value):
            raise ValueError(f"Invalid subscription period: {value}")
        return value

    @property
    def is_subscription(self) -> bool:
        """True for auto-renewable and non-renewing subscriptions."""
        return self.type in (ProductType.AUTO_RENEWABLE, ProductType.NON_RENEWING)

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "id": "pro.monthly",
                "type": "auto_renewable",
                "display_name": "Pro Monthly",
                "description": "All pro features, billed monthly",
                "price": "4.99",
                "currency": "USD",
                "subscription_period": "P1M",
            }
        }


class MirrorSettings(BaseModel):
    """Entitlement mirror behavior settings."""

    force_sync_on_start: bool = Field(
        default=False, description="Ask the store to sync entitlements during bootstrap"
    )
    retain_on_revocation: list[str] = Field(
        default_factory=list,
        description="Product IDs that stay purchased when the store revokes them",
    )


class StoreConfig(BaseModel):
    """Complete store.yaml configuration."""

    products: list[Product] = Field(default_factory=list, description="Purchasable products")
    subscription_ids: list[str] = Field(
        default_factory=list, description="Product IDs tracked for subscription expiry"
    )
    seed_purchased_ids: list[str] = Field(
        default_factory=list, description="Previously persisted purchased product IDs"
    )
    mirror: MirrorSettings = Field(default_factory=MirrorSettings)

    @model_validator(mode="after")
    def _subscriptions_are_products(self) -> "StoreConfig":
        product_ids = {product.id for product in self.products}
        unknown = [sub_id for sub_id in self.subscription_ids if sub_id not in product_ids]
        if unknown:
            raise ValueError(f"Subscription IDs not listed under products: {unknown}")
        return self

    @property
    def product_ids(self) -> list[str]:
        return [product.id for product in self.products]
