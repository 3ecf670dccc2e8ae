"""Mirror API - read the mirrored entitlement state and run consumer operations.

Implements:
- GET /mirror/state - Snapshot of catalog, purchases, expirations and request states
- GET /mirror/products - Fetched catalog
- GET /mirror/products/{product_id}/purchased - Live ownership check against the store
- POST /mirror/purchases - Buy a product
- POST /mirror/reconcile - Rebuild purchased products from current entitlements
- POST /mirror/subscriptions/refresh - Refresh subscription expiry dates
- POST /mirror/catalog/fetch - Fetch the catalog (no-op unless request state was reset)
- POST /mirror/reset - Reset request states
"""

from fastapi import APIRouter, HTTPException

from storekit_mirror.logging_config import get_logger
from storekit_mirror.models import (
    ErrorResponse,
    IsPurchasedResponse,
    MirrorSnapshot,
    Product,
    PurchaseRequest,
    PurchaseResponse,
    ReconcileRequest,
    ReconcileResponse,
    ResetResponse,
)
from storekit_mirror.services.entitlement_mirror import (
    DuplicatePurchase,
    FailedVerification,
    UnknownProduct,
    get_entitlement_mirror,
)

logger = get_logger(__name__)
router = APIRouter(tags=["Mirror API"], prefix="/mirror")


@router.get("/state", response_model=MirrorSnapshot, summary="Get mirrored entitlement state")
async def get_state() -> MirrorSnapshot:
    return get_entitlement_mirror().snapshot()


@router.get("/products", response_model=list[Product], summary="List fetched catalog")
async def list_products() -> list[Product]:
    """List fetched products, cheapest first. Empty until the catalog is fetched."""
    return list(get_entitlement_mirror().catalog)


@router.get(
    "/products/{product_id}/purchased",
    response_model=IsPurchasedResponse,
    responses={422: {"model": ErrorResponse}},
    summary="Check ownership against the store",
)
async def is_purchased(product_id: str) -> IsPurchasedResponse:
    try:
        purchased = await get_entitlement_mirror().is_purchased(product_id)
    except FailedVerification as e:
        raise HTTPException(
            status_code=422,
            detail={"error": "Failed verification", "message": str(e)},
        )
    return IsPurchasedResponse(product_id=product_id, purchased=purchased)


@router.post(
    "/purchases",
    response_model=PurchaseResponse,
    responses={code: {"model": ErrorResponse} for code in (404, 409, 422)},
    summary="Purchase a product",
)
async def purchase(request: PurchaseRequest) -> PurchaseResponse:
    """Buy a product through the store.

    Raises:
        404: Product not in the fetched catalog
        409: Product already purchased
        422: Store could not verify the transaction
    """
    logger.info("purchase_request", product_id=request.product_id)
    mirror = get_entitlement_mirror()

    try:
        transaction = await mirror.purchase(request.product_id)
    except UnknownProduct as e:
        raise HTTPException(
            status_code=404,
            detail={"error": "Unknown product", "message": str(e)},
        )
    except DuplicatePurchase as e:
        raise HTTPException(
            status_code=409,
            detail={"error": "Duplicate purchase", "message": str(e)},
        )
    except FailedVerification as e:
        raise HTTPException(
            status_code=422,
            detail={"error": "Failed verification", "message": str(e)},
        )

    if transaction is None:
        return PurchaseResponse(
            product_id=request.product_id,
            transaction=None,
            message="Purchase was cancelled or is pending",
        )
    return PurchaseResponse(
        product_id=request.product_id,
        transaction=transaction,
        message="Purchase completed",
    )


@router.post("/reconcile", response_model=ReconcileResponse, summary="Reconcile purchases")
async def reconcile(request: ReconcileRequest) -> ReconcileResponse:
    mirror = get_entitlement_mirror()
    await mirror.reconcile_purchases(force_sync=request.force_sync)
    return ReconcileResponse(
        purchased_ids=sorted(mirror.purchased_identifiers),
        purchases_request_state=mirror.purchases_request_state,
    )


@router.post(
    "/subscriptions/refresh",
    response_model=MirrorSnapshot,
    summary="Refresh subscription expiry dates",
)
async def refresh_subscriptions() -> MirrorSnapshot:
    mirror = get_entitlement_mirror()
    await mirror.update_subscription_info()
    return mirror.snapshot()


@router.post("/catalog/fetch", response_model=MirrorSnapshot, summary="Fetch catalog")
async def fetch_catalog() -> MirrorSnapshot:
    mirror = get_entitlement_mirror()
    await mirror.fetch_catalog()
    return mirror.snapshot()


@router.post("/reset", response_model=ResetResponse, summary="Reset request states")
async def reset_request_state() -> ResetResponse:
    """Make catalog fetch and reconciliation runnable again, e.g. after a failure."""
    mirror = get_entitlement_mirror()
    await mirror.reset_request_state()
    logger.info("request_state_reset")
    return ResetResponse(
        catalog_request_state=mirror.catalog_request_state,
        purchases_request_state=mirror.purchases_request_state,
        message="Request states reset",
    )
