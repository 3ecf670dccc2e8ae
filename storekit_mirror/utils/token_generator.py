"""Transaction ID generation utilities.

Generates unique transaction identifiers for the in-memory store platform.
"""

import re
import time
import uuid
from typing import Optional

DEFAULT_PREFIX = "storekit"

_TRANSACTION_ID_PATTERN = re.compile(r"^[a-zA-Z0-9-]+_txn_[a-f0-9]{16}_\d{13}$")


def generate_transaction_id(prefix: str = DEFAULT_PREFIX) -> str:
    """Generate a unique transaction ID.

    Format: {prefix}_txn_{uuid}_{timestamp}
    Example: storekit_txn_a1b2c3d4e5f6a7b8_1700000000000

    Args:
        prefix: ID prefix

    Returns:
        Unique transaction ID string
    """
    token_id = uuid.uuid4().hex[:16]
    timestamp = int(time.time() * 1000)

    return f"{prefix}_txn_{token_id}_{timestamp}"


def validate_transaction_id(transaction_id: str) -> bool:
    """Validate transaction ID format."""
    if not transaction_id or not isinstance(transaction_id, str):
        return False
    return bool(_TRANSACTION_ID_PATTERN.match(transaction_id))


def extract_transaction_timestamp(transaction_id: str) -> Optional[int]:
    """Extract the creation timestamp (Unix millis) from a transaction ID.

    Returns:
        Timestamp in milliseconds, or None if the ID is malformed
    """
    if not validate_transaction_id(transaction_id):
        return None
    return int(transaction_id.rsplit("_", 1)[-1])
