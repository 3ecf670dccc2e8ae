"""Pydantic models for catalog entries, transactions, mirror state and API payloads."""

# Catalog and configuration models
from .product import (
    ProductType,
    Product,
    MirrorSettings,
    StoreConfig,
)

# Transaction models
from .transaction import (
    Transaction,
    VerificationResult,
    PurchaseOutcome,
    PurchaseResult,
)

# Mirror state models
from .mirror import (
    RequestState,
    MirrorSnapshot,
)

# API models (mirror and platform control)
from .api_request import (
    PurchaseRequest,
    PurchaseResponse,
    ReconcileRequest,
    ReconcileResponse,
    IsPurchasedResponse,
    ResetResponse,
    GrantRequest,
    RevokeRequest,
    TransactionResponse,
    PurchaseOutcomeRequest,
    FailuresRequest,
    StatusResponse,
    ErrorDetail,
    ErrorResponse,
)

__all__ = [
    # Catalog and configuration
    "ProductType",
    "Product",
    "MirrorSettings",
    "StoreConfig",
    # Transactions
    "Transaction",
    "VerificationResult",
    "PurchaseOutcome",
    "PurchaseResult",
    # Mirror state
    "RequestState",
    "MirrorSnapshot",
    # API
    "PurchaseRequest",
    "PurchaseResponse",
    "ReconcileRequest",
    "ReconcileResponse",
    "IsPurchasedResponse",
    "ResetResponse",
    "GrantRequest",
    "RevokeRequest",
    "TransactionResponse",
    "PurchaseOutcomeRequest",
    "FailuresRequest",
    "StatusResponse",
    "ErrorDetail",
    "ErrorResponse",
]
