"""State change logging for the entitlement mirror.

Tracks entitlement and request state transitions with before/after values
for debugging and auditing.
"""

from datetime import datetime
from typing import Any, Optional

from storekit_mirror.logging_config import get_logger

logger = get_logger(__name__)


def _short(transaction_id: Optional[str]) -> Optional[str]:
    if transaction_id is None:
        return None
    return transaction_id[:20] + "..." if len(transaction_id) > 20 else transaction_id


def log_entitlement_granted(
    product_id: str,
    transaction_id: Optional[str] = None,
    source: Optional[str] = None,
    **extra_context: Any,
) -> None:
    """Log a product becoming purchased.

    Args:
        product_id: Product ID added to the purchased set
        transaction_id: Transaction that granted it, if any
        source: Where the change came from (feed, purchase, seed, manual)
        **extra_context: Additional context
    """
    logger.info(
        "entitlement_granted",
        product_id=product_id,
        transaction_id=_short(transaction_id),
        source=source,
        **extra_context,
    )


def log_entitlement_revoked(
    product_id: str,
    transaction_id: Optional[str] = None,
    revocation_date: Optional[datetime] = None,
    retained: bool = False,
    **extra_context: Any,
) -> None:
    """Log a revocation applied to the purchased set.

    Args:
        product_id: Revoked product ID
        transaction_id: Revoked transaction
        revocation_date: When the store revoked it
        retained: True when policy kept the product purchased anyway
        **extra_context: Additional context
    """
    logger.info(
        "entitlement_revoked",
        product_id=product_id,
        transaction_id=_short(transaction_id),
        revocation_date=revocation_date.isoformat() if revocation_date else None,
        retained=retained,
        **extra_context,
    )


def log_purchased_set_replaced(
    old_ids: set[str],
    new_ids: set[str],
    **extra_context: Any,
) -> None:
    """Log a full replacement of the purchased set by reconciliation."""
    logger.info(
        "purchased_set_replaced",
        added=sorted(new_ids - old_ids),
        removed=sorted(old_ids - new_ids),
        purchased_count=len(new_ids),
        **extra_context,
    )


def log_expiry_change(
    subscription_id: str,
    old_expiry: Optional[datetime],
    new_expiry: datetime,
    **extra_context: Any,
) -> None:
    """Log subscription expiry change.

    Args:
        subscription_id: Subscription product ID
        old_expiry: Previously known expiry, None if unknown
        new_expiry: Newly reported expiry
        **extra_context: Additional context
    """
    logger.info(
        "expiry_changed",
        subscription_id=subscription_id,
        old_expiry=old_expiry.isoformat() if old_expiry else None,
        new_expiry=new_expiry.isoformat(),
        **extra_context,
    )


def log_request_state_change(
    request: str,
    old_state: Any,
    new_state: Any,
    reason: Optional[str] = None,
    **extra_context: Any,
) -> None:
    """Log request state change.

    Args:
        request: Request class ("catalog" or "purchases")
        old_state: Previous state value
        new_state: New state value
        reason: Reason for state change
        **extra_context: Additional context
    """
    logger.info(
        "request_state_changed",
        request=request,
        old_state=str(old_state),
        new_state=str(new_state),
        reason=reason,
        **extra_context,
    )
