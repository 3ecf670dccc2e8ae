"""Utility functions and helpers for the store mirror."""

from storekit_mirror.utils.billing_period import (
    billing_period_to_timedelta,
    expiry_after,
    parse_billing_period,
    validate_billing_period,
)
from storekit_mirror.utils.token_generator import (
    extract_transaction_timestamp,
    generate_transaction_id,
    validate_transaction_id,
)

__all__ = [
    # Transaction IDs
    "generate_transaction_id",
    "validate_transaction_id",
    "extract_transaction_timestamp",
    # Billing period parsing
    "parse_billing_period",
    "billing_period_to_timedelta",
    "expiry_after",
    "validate_billing_period",
]
