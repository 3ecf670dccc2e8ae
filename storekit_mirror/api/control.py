"""Control API for driving the in-memory store platform.

Implements:
- POST /platform/grant - Record an external purchase and push it to the feed
- POST /platform/revoke - Refund the latest transaction of a product
- POST /platform/renew/{product_id} - Renew a subscription
- POST /platform/purchase-outcome - Script the next purchase flows
- POST /platform/failures - Toggle simulated store failures
- GET /platform/status - Ledger summary
- POST /platform/reset - Forget all platform state
"""

import asyncio

from fastapi import APIRouter, HTTPException

from storekit_mirror.logging_config import get_logger
from storekit_mirror.models import (
    ErrorResponse,
    FailuresRequest,
    GrantRequest,
    PurchaseOutcomeRequest,
    RevokeRequest,
    StatusResponse,
    TransactionResponse,
)
from storekit_mirror.platforms.base import StorePlatformError
from storekit_mirror.platforms.memory import get_store_platform

logger = get_logger(__name__)
router = APIRouter(tags=["Control API"], prefix="/platform")

FEED_ERROR_RESPONSES = {504: {"model": ErrorResponse}}
DELIVERY_TIMEOUT_SECONDS = 5.0


async def _wait_for_delivery() -> None:
    """Wait until the mirror has handled every queued feed update."""
    try:
        await asyncio.wait_for(get_store_platform().drain_updates(), timeout=DELIVERY_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        logger.error("feed_delivery_timeout", timeout_seconds=DELIVERY_TIMEOUT_SECONDS)
        raise HTTPException(
            status_code=504,
            detail={
                "error": "Delivery timeout",
                "message": "The mirror did not handle the update in time",
            },
        )


@router.post(
    "/grant",
    response_model=TransactionResponse,
    status_code=201,
    responses={404: {"model": ErrorResponse}, **FEED_ERROR_RESPONSES},
    summary="Grant product",
)
async def grant(request: GrantRequest) -> TransactionResponse:
    """Simulate a purchase made outside the app (another device, family sharing).

    Raises:
        404: Product not in the store catalog
        504: Mirror did not handle the delivered update in time
    """
    platform = get_store_platform()
    try:
        result = platform.grant(request.product_id, verified=request.verified, deliver=request.deliver)
    except StorePlatformError as e:
        logger.warning("grant_failed", product_id=request.product_id, error=str(e))
        raise HTTPException(status_code=404, detail={"error": "Product not found", "message": str(e)})

    if request.deliver and request.wait:
        await _wait_for_delivery()

    return TransactionResponse(
        transaction=result.transaction,
        verified=result.verified,
        delivered=request.deliver,
    )


@router.post(
    "/revoke",
    response_model=TransactionResponse,
    responses={404: {"model": ErrorResponse}, **FEED_ERROR_RESPONSES},
    summary="Revoke product",
)
async def revoke(request: RevokeRequest) -> TransactionResponse:
    """Revoke the latest transaction of a product.

    Raises:
        404: Product was never purchased
        504: Mirror did not handle the delivered update in time
    """
    platform = get_store_platform()
    try:
        result = platform.revoke(request.product_id, deliver=request.deliver)
    except StorePlatformError as e:
        raise HTTPException(status_code=404, detail={"error": "Transaction not found", "message": str(e)})

    if request.deliver and request.wait:
        await _wait_for_delivery()

    return TransactionResponse(
        transaction=result.transaction,
        verified=result.verified,
        delivered=request.deliver,
    )


@router.post(
    "/renew/{product_id}",
    response_model=TransactionResponse,
    responses={400: {"model": ErrorResponse}, **FEED_ERROR_RESPONSES},
    summary="Renew subscription",
)
async def renew(product_id: str) -> TransactionResponse:
    platform = get_store_platform()
    try:
        result = platform.renew(product_id)
    except StorePlatformError as e:
        raise HTTPException(status_code=400, detail={"error": "Cannot renew", "message": str(e)})

    await _wait_for_delivery()
    return TransactionResponse(transaction=result.transaction, verified=result.verified, delivered=True)


@router.post("/purchase-outcome", summary="Script purchase outcome")
async def set_purchase_outcome(request: PurchaseOutcomeRequest) -> PurchaseOutcomeRequest:
    get_store_platform().set_purchase_outcome(request.outcome, verified=request.verified)
    logger.info("purchase_outcome_set", outcome=request.outcome.value, verified=request.verified)
    return request


@router.post("/failures", summary="Toggle simulated failures")
async def set_failures(request: FailuresRequest) -> FailuresRequest:
    get_store_platform().set_failures(
        fetch_products=request.fetch_products,
        sync=request.sync,
        current_entitlements=request.current_entitlements,
    )
    logger.info("platform_failures_set", **request.model_dump())
    return request


@router.get("/status", response_model=StatusResponse, summary="Platform status")
async def get_status() -> StatusResponse:
    return StatusResponse(**get_store_platform().status())


@router.post("/reset", summary="Reset platform")
async def reset_platform() -> dict[str, str]:
    get_store_platform().reset()
    return {"status": "reset", "message": "Platform ledger and scripted behavior cleared"}
