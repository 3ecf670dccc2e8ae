"""Mirror state models - request guards and read-only snapshots."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from .product import Product


class RequestState(str, Enum):
    """Guard against duplicate concurrent requests of one class."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    DONE = "done"


class MirrorSnapshot(BaseModel):
    """Point-in-time copy of everything the mirror exposes to observers."""

    catalog: list[Product] = Field(default_factory=list, description="Fetched catalog, by price")
    purchased_ids: list[str] = Field(default_factory=list, description="Entitled product IDs")
    subscription_expirations: dict[str, datetime] = Field(
        default_factory=dict, description="Subscription ID to expiry timestamp"
    )
    catalog_request_state: RequestState = RequestState.NOT_STARTED
    purchases_request_state: RequestState = RequestState.NOT_STARTED
