"""Store platform port - the in-app-purchase API the mirror delegates to.

Signature verification, the transaction ledger and store synchronization
live behind this interface. The mirror only calls it and reshapes the output.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Iterable
from typing import Optional

from storekit_mirror.models import Product, PurchaseResult, Transaction, VerificationResult


class StorePlatformError(Exception):
    """Raised when the store platform fails (network, store backend, user account)."""

    pass


class StorePlatform(ABC):
    """Asynchronous in-app-purchase platform API."""

    @abstractmethod
    def updates(self) -> AsyncIterator[VerificationResult]:
        """Feed of transactions not initiated by a direct purchase call.

        Covers purchases on other devices, renewals and refunds. The
        iterator only ends when the consuming task is cancelled.
        """

    @abstractmethod
    async def fetch_products(self, product_ids: Iterable[str]) -> list[Product]:
        """Fetch catalog entries for the given identifiers.

        Unknown identifiers are left out of the result.

        Raises:
            StorePlatformError: If the store cannot be reached
        """

    @abstractmethod
    async def purchase(self, product: Product) -> PurchaseResult:
        """Run the purchase flow for a product.

        Raises:
            StorePlatformError: If the purchase flow itself fails
        """

    @abstractmethod
    async def latest_transaction(self, product_id: str) -> Optional[VerificationResult]:
        """Get the most recent transaction for a product, None if never purchased."""

    @abstractmethod
    def current_entitlements(self) -> AsyncIterator[VerificationResult]:
        """Snapshot of the transactions that currently entitle the user."""

    @abstractmethod
    async def sync(self) -> None:
        """Ask the store backend to sync entitlements to this device.

        Raises:
            StorePlatformError: If syncing fails
        """

    @abstractmethod
    async def finish(self, transaction: Transaction) -> None:
        """Tell the store the transaction was delivered so it is not redelivered."""
