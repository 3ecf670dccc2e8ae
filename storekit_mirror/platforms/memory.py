"""In-memory store platform - a local stand-in for the in-app-purchase API.

Responsibilities:
- Serve the configured catalog
- Keep a per-product transaction ledger
- Compute subscription expiry from the product's billing period
- Push renewals, refunds and external purchases onto the update feed
- Let tests and the control API script outcomes and failures
"""

import asyncio
from collections.abc import AsyncIterator, Callable, Iterable
from datetime import datetime, timezone
from typing import Optional

from storekit_mirror.logging_config import get_logger
from storekit_mirror.models import (
    Product,
    ProductType,
    PurchaseOutcome,
    PurchaseResult,
    Transaction,
    VerificationResult,
)
from storekit_mirror.platforms.base import StorePlatform, StorePlatformError
from storekit_mirror.utils.billing_period import expiry_after
from storekit_mirror.utils.token_generator import DEFAULT_PREFIX, generate_transaction_id

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryStorePlatform(StorePlatform):
    """Store platform backed by in-process dictionaries.

    Verification verdicts are assigned when a transaction is recorded, so a
    test can make any transaction arrive unverified.

    Args:
        products: Catalog served by fetch_products
        clock: Optional callable returning the current time (timezone-aware)
        id_prefix: Prefix for generated transaction IDs
    """

    def __init__(
        self,
        products: Iterable[Product],
        clock: Optional[Callable[[], datetime]] = None,
        id_prefix: str = DEFAULT_PREFIX,
    ) -> None:
        self._products: dict[str, Product] = {product.id: product for product in products}
        self._clock = clock or _utcnow
        self._id_prefix = id_prefix

        # product_id -> transactions, oldest first
        self._ledger: dict[str, list[Transaction]] = {}
        self._unverified: set[str] = set()
        self._finished: set[str] = set()
        self._updates: asyncio.Queue[VerificationResult] = asyncio.Queue()

        self._purchase_outcome = PurchaseOutcome.SUCCESS
        self._purchase_verified = True
        self._fail_fetch_products = False
        self._fail_sync = False
        self._fail_current_entitlements = False

        self.fetch_count = 0
        self.sync_count = 0

        logger.info("memory_platform_initialized", product_count=len(self._products))

    # ------------------------------------------------------------------
    # StorePlatform
    # ------------------------------------------------------------------

    async def updates(self) -> AsyncIterator[VerificationResult]:
        while True:
            result = await self._updates.get()
            try:
                yield result
            finally:
                # Runs once the consumer asks for the next item, i.e. after
                # it finished handling this one.
                self._updates.task_done()

    async def fetch_products(self, product_ids: Iterable[str]) -> list[Product]:
        self.fetch_count += 1
        if self._fail_fetch_products:
            raise StorePlatformError("Failed to fetch products: store unavailable")
        return [self._products[pid] for pid in product_ids if pid in self._products]

    async def purchase(self, product: Product) -> PurchaseResult:
        if product.id not in self._products:
            raise StorePlatformError(f"Product not sold by this store: {product.id}")

        outcome = self._purchase_outcome
        if outcome != PurchaseOutcome.SUCCESS:
            logger.info("memory_platform_purchase_not_completed", product_id=product.id, outcome=outcome.value)
            return PurchaseResult(outcome=outcome)

        transaction = self._record(product.id, verified=self._purchase_verified)
        return PurchaseResult(outcome=outcome, verification=self._wrap(transaction))

    async def latest_transaction(self, product_id: str) -> Optional[VerificationResult]:
        history = self._ledger.get(product_id)
        if not history:
            return None
        return self._wrap(history[-1])

    async def current_entitlements(self) -> AsyncIterator[VerificationResult]:
        if self._fail_current_entitlements:
            raise StorePlatformError("Failed to read current entitlements")

        now = self._clock()
        for product_id in list(self._ledger):
            latest = self._ledger[product_id][-1]
            if latest.product_type == ProductType.CONSUMABLE or latest.is_upgraded:
                continue
            if latest.expiration_date is not None and latest.expiration_date <= now:
                continue
            yield self._wrap(latest)

    async def sync(self) -> None:
        self.sync_count += 1
        if self._fail_sync:
            raise StorePlatformError("Failed to sync with the store backend")

    async def finish(self, transaction: Transaction) -> None:
        self._finished.add(transaction.id)
        logger.debug("memory_platform_transaction_finished", transaction_id=transaction.id)

    # ------------------------------------------------------------------
    # Control operations
    # ------------------------------------------------------------------

    def grant(self, product_id: str, verified: bool = True, deliver: bool = True) -> VerificationResult:
        """Record a purchase made outside the app and optionally push it to the feed.

        Raises:
            StorePlatformError: If the product is not in the catalog
        """
        if product_id not in self._products:
            raise StorePlatformError(f"Product not sold by this store: {product_id}")

        result = self._wrap(self._record(product_id, verified=verified))
        if deliver:
            self.deliver(result)
        return result

    def renew(self, product_id: str, deliver: bool = True) -> VerificationResult:
        """Append the next billing period to a subscription chain.

        Raises:
            StorePlatformError: If the product has no subscription period or no prior transaction
        """
        product = self._products.get(product_id)
        history = self._ledger.get(product_id)
        if product is None or product.subscription_period is None or not history:
            raise StorePlatformError(f"Nothing to renew for product: {product_id}")

        previous = history[-1]
        start = max(previous.expiration_date or self._clock(), self._clock())
        transaction = Transaction(
            id=generate_transaction_id(self._id_prefix),
            original_id=previous.original_id,
            product_id=product_id,
            product_type=product.type,
            purchase_date=start,
            expiration_date=expiry_after(start, product.subscription_period),
        )
        history.append(transaction)

        result = self._wrap(transaction)
        if deliver:
            self.deliver(result)
        return result

    def revoke(self, product_id: str, deliver: bool = True) -> VerificationResult:
        """Revoke the latest transaction of a product, as a refund would.

        Raises:
            StorePlatformError: If the product was never purchased
        """
        history = self._ledger.get(product_id)
        if not history:
            raise StorePlatformError(f"No transaction to revoke for product: {product_id}")

        revoked = history[-1].model_copy(update={"revocation_date": self._clock()})
        history[-1] = revoked
        logger.info("memory_platform_transaction_revoked", product_id=product_id, transaction_id=revoked.id)

        result = self._wrap(revoked)
        if deliver:
            self.deliver(result)
        return result

    def deliver(self, result: VerificationResult) -> None:
        """Push a raw verification result onto the update feed."""
        self._updates.put_nowait(result)
        logger.debug(
            "memory_platform_update_queued",
            product_id=result.transaction.product_id,
            verified=result.verified,
        )

    async def drain_updates(self) -> None:
        """Wait until every queued update has been handled by the feed consumer."""
        await self._updates.join()

    def set_purchase_outcome(self, outcome: PurchaseOutcome, verified: bool = True) -> None:
        """Script the result of subsequent purchase flows."""
        self._purchase_outcome = outcome
        self._purchase_verified = verified

    def set_failures(
        self,
        fetch_products: bool = False,
        sync: bool = False,
        current_entitlements: bool = False,
    ) -> None:
        """Toggle simulated platform failures."""
        self._fail_fetch_products = fetch_products
        self._fail_sync = sync
        self._fail_current_entitlements = current_entitlements

    def is_finished(self, transaction_id: str) -> bool:
        return transaction_id in self._finished

    def transactions(self, product_id: Optional[str] = None) -> list[Transaction]:
        """Get ledger contents, for one product or all of them."""
        if product_id is not None:
            return list(self._ledger.get(product_id, []))
        return [txn for history in self._ledger.values() for txn in history]

    def status(self) -> dict[str, int]:
        return {
            "product_count": len(self._products),
            "transaction_count": sum(len(history) for history in self._ledger.values()),
            "finished_count": len(self._finished),
            "pending_updates": self._updates.qsize(),
        }

    def reset(self) -> None:
        """Forget all transactions and scripted behavior."""
        self._ledger.clear()
        self._unverified.clear()
        self._finished.clear()
        while not self._updates.empty():
            self._updates.get_nowait()
            self._updates.task_done()
        self.set_purchase_outcome(PurchaseOutcome.SUCCESS)
        self.set_failures()
        self.fetch_count = 0
        self.sync_count = 0
        logger.info("memory_platform_reset")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _record(self, product_id: str, verified: bool = True) -> Transaction:
        product = self._products[product_id]
        now = self._clock()
        transaction_id = generate_transaction_id(self._id_prefix)

        expiration = None
        if product.subscription_period is not None:
            expiration = expiry_after(now, product.subscription_period)

        transaction = Transaction(
            id=transaction_id,
            original_id=transaction_id,
            product_id=product_id,
            product_type=product.type,
            purchase_date=now,
            expiration_date=expiration,
        )
        self._ledger.setdefault(product_id, []).append(transaction)
        if not verified:
            self._unverified.add(transaction_id)

        logger.info(
            "memory_platform_transaction_recorded",
            product_id=product_id,
            transaction_id=transaction_id,
            verified=verified,
        )
        return transaction

    def _wrap(self, transaction: Transaction) -> VerificationResult:
        if transaction.id in self._unverified:
            return VerificationResult.unverified_result(transaction)
        return VerificationResult.verified_result(transaction)


# Global platform instance
_platform_instance: Optional[InMemoryStorePlatform] = None


def get_store_platform() -> InMemoryStorePlatform:
    """Get global in-memory platform instance built from configuration (singleton)."""
    from storekit_mirror.config import get_config

    global _platform_instance
    if _platform_instance is None:
        _platform_instance = InMemoryStorePlatform(get_config().products)
    return _platform_instance


def reset_store_platform() -> None:
    """Reset global platform instance (useful for testing)."""
    global _platform_instance
    _platform_instance = None
