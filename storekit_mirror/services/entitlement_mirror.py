"""Entitlement Mirror - observable local copy of what the user owns.

Responsibilities:
- Fetch the product catalog once per request-state cycle
- Listen to the platform's transaction feed for the mirror's whole lifetime
- Run purchases and branch on the platform's verification verdict
- Rebuild purchased products from the platform's current entitlements
- Track subscription expiry dates

All state changes are submitted to one writer task and applied there in
order. Readers get copies.
"""

import asyncio
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any, Optional, TypeVar

from storekit_mirror.logging_config import get_logger
from storekit_mirror.models import (
    MirrorSnapshot,
    Product,
    PurchaseOutcome,
    RequestState,
    Transaction,
    VerificationResult,
)
from storekit_mirror.platforms.base import StorePlatform
from storekit_mirror.state_logger import (
    log_entitlement_granted,
    log_entitlement_revoked,
    log_expiry_change,
    log_purchased_set_replaced,
    log_request_state_change,
)

logger = get_logger(__name__)

T = TypeVar("T")

CATALOG_REQUEST = "catalog"
PURCHASES_REQUEST = "purchases"

FEED_RETRY_DELAY_SECONDS = 1.0


class StoreError(Exception):
    """Base exception for entitlement mirror errors."""

    pass


class FailedVerification(StoreError):
    """Raised when the platform could not verify a transaction."""

    def __init__(self, transaction: Transaction, reason: Optional[str] = None):
        self.transaction = transaction
        self.reason = reason
        super().__init__(
            f"Transaction {transaction.id} for {transaction.product_id} failed verification"
            + (f": {reason}" if reason else "")
        )


class UnknownProduct(StoreError):
    """Raised when a purchase is requested for a product outside the fetched catalog."""

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not in catalog: {product_id}")


class DuplicatePurchase(StoreError):
    """Raised when a purchase is requested for a product that is already owned."""

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product already purchased: {product_id}")


class EntitlementMirror:
    """Mirrors purchases and subscription expiry from a store platform.

    Create it, then ``await start()`` (or use ``async with``) as early as
    possible so no feed events are missed. ``close()`` stops the feed
    listener.

    Args:
        platform: Store platform the mirror delegates to
        product_ids: Every purchasable product ID
        subscription_ids: Product IDs tracked for expiry (subset of product_ids)
        seed_purchased_ids: Previously persisted purchased IDs
        retain_on_revocation: Product IDs that stay purchased when revoked
        force_sync_on_start: Ask the store to sync during bootstrap reconciliation
        feed_retry_delay: Seconds to wait before resubscribing to a failed feed

    Raises:
        ValueError: If a subscription ID is not a product ID
    """

    def __init__(
        self,
        platform: StorePlatform,
        product_ids: Iterable[str],
        subscription_ids: Iterable[str] = (),
        seed_purchased_ids: Iterable[str] = (),
        retain_on_revocation: Iterable[str] = (),
        force_sync_on_start: bool = False,
        feed_retry_delay: float = FEED_RETRY_DELAY_SECONDS,
    ) -> None:
        self._platform = platform
        self._feed_retry_delay = feed_retry_delay
        self._product_ids = frozenset(product_ids)
        self._subscription_ids = frozenset(subscription_ids)
        self._retain_on_revocation = frozenset(retain_on_revocation)
        self._force_sync_on_start = force_sync_on_start

        unknown = self._subscription_ids - self._product_ids
        if unknown:
            raise ValueError(f"Subscription IDs must be product IDs: {sorted(unknown)}")

        self._catalog: tuple[Product, ...] = ()
        self._purchased: set[str] = set()
        # Products with a purchase flow awaiting the platform
        self._purchasing: set[str] = set()
        self._expirations: dict[str, datetime] = {}
        self._request_states: dict[str, RequestState] = {
            CATALOG_REQUEST: RequestState.NOT_STARTED,
            PURCHASES_REQUEST: RequestState.NOT_STARTED,
        }

        for product_id in seed_purchased_ids:
            if product_id in self._product_ids:
                self._purchased.add(product_id)
            else:
                logger.warning("seed_product_not_configured", product_id=product_id)

        self._mutations: Optional[asyncio.Queue] = None
        self._writer_task: Optional[asyncio.Task] = None
        self._listener_task: Optional[asyncio.Task] = None
        self._bootstrap_task: Optional[asyncio.Task] = None

        logger.info(
            "entitlement_mirror_created",
            product_count=len(self._product_ids),
            subscription_count=len(self._subscription_ids),
            seeded=sorted(self._purchased),
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, bootstrap: bool = True) -> None:
        """Start the writer and the feed listener, then bootstrap.

        Bootstrap runs in the background: catalog fetch, reconciliation,
        then subscription refresh. Use ``wait_until_ready()`` to await it.

        Raises:
            RuntimeError: If the mirror is already started
        """
        if self._writer_task is not None:
            raise RuntimeError("EntitlementMirror is already started")

        self._mutations = asyncio.Queue()
        self._writer_task = asyncio.create_task(self._run_writer(), name="entitlement-mirror-writer")
        # Listen before bootstrapping so nothing delivered meanwhile is missed
        self._listener_task = asyncio.create_task(
            self._listen_for_transactions(), name="entitlement-mirror-listener"
        )
        if bootstrap:
            self._bootstrap_task = asyncio.create_task(
                self._bootstrap(), name="entitlement-mirror-bootstrap"
            )

        logger.info("entitlement_mirror_started", bootstrap=bootstrap)

    async def wait_until_ready(self) -> None:
        """Wait for the bootstrap sequence started by ``start()`` to finish."""
        if self._bootstrap_task is not None:
            await self._bootstrap_task

    async def close(self) -> None:
        """Cancel the feed listener, bootstrap and writer tasks.

        State changes submitted while closing fail with RuntimeError.
        """
        mutations, self._mutations = self._mutations, None
        tasks = [
            task
            for task in (self._bootstrap_task, self._listener_task, self._writer_task)
            if task is not None
        ]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        abandoned = 0
        while mutations is not None and not mutations.empty():
            _, future = mutations.get_nowait()
            if not future.done():
                future.set_exception(RuntimeError("EntitlementMirror is closed"))
                abandoned += 1

        self._bootstrap_task = None
        self._listener_task = None
        self._writer_task = None
        logger.info("entitlement_mirror_closed", abandoned_mutations=abandoned)

    async def __aenter__(self) -> "EntitlementMirror":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def is_running(self) -> bool:
        """True while both the writer and the feed listener are alive."""
        return all(
            task is not None and not task.done()
            for task in (self._writer_task, self._listener_task)
        )

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def product_ids(self) -> frozenset[str]:
        return self._product_ids

    @property
    def subscription_ids(self) -> frozenset[str]:
        return self._subscription_ids

    @property
    def catalog(self) -> tuple[Product, ...]:
        """Fetched products, cheapest first."""
        return self._catalog

    @property
    def purchased_identifiers(self) -> frozenset[str]:
        return frozenset(self._purchased)

    @property
    def subscription_expirations(self) -> dict[str, datetime]:
        """Known expiry per subscription ID. Missing means unknown, not unowned."""
        return dict(self._expirations)

    @property
    def catalog_request_state(self) -> RequestState:
        return self._request_states[CATALOG_REQUEST]

    @property
    def purchases_request_state(self) -> RequestState:
        return self._request_states[PURCHASES_REQUEST]

    def find_product(self, product_id: str) -> Optional[Product]:
        """Find a fetched catalog entry by ID."""
        for product in self._catalog:
            if product.id == product_id:
                return product
        return None

    def snapshot(self) -> MirrorSnapshot:
        return MirrorSnapshot(
            catalog=list(self._catalog),
            purchased_ids=sorted(self._purchased),
            subscription_expirations=dict(self._expirations),
            catalog_request_state=self.catalog_request_state,
            purchases_request_state=self.purchases_request_state,
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def fetch_catalog(self) -> None:
        """Fetch catalog entries for the configured product IDs.

        Does nothing unless the catalog request state is not-started. On
        failure the error is logged and the state stays in-progress until
        ``reset_request_state()`` is called.
        """
        if not await self._submit(lambda: self._begin_request(CATALOG_REQUEST)):
            logger.debug("catalog_fetch_skipped", request_state=self.catalog_request_state.value)
            return

        try:
            products = await self._platform.fetch_products(sorted(self._product_ids))
        except Exception as e:
            logger.error(
                "catalog_fetch_failed",
                error=str(e),
                error_type=type(e).__name__,
                request_state=RequestState.IN_PROGRESS.value,
                exc_info=True,
            )
            return

        catalog = tuple(
            sorted((p for p in products if p.id in self._product_ids), key=lambda p: p.price)
        )
        await self._submit(lambda: self._store_catalog(catalog))

    async def purchase(self, product_id: str) -> Optional[Transaction]:
        """Buy a product through the platform purchase flow.

        Args:
            product_id: ID of a fetched catalog product

        Returns:
            The finished transaction, or None when the user cancelled, the
            purchase is pending or the outcome is unknown

        Raises:
            UnknownProduct: If the product is not in the fetched catalog
            DuplicatePurchase: If the product is already purchased or being purchased
            FailedVerification: If the platform could not verify the transaction
        """
        product = self.find_product(product_id)
        if product is None:
            logger.warning("purchase_unknown_product", product_id=product_id)
            raise UnknownProduct(product_id)
        if product_id in self._purchased or product_id in self._purchasing:
            logger.error(
                "purchase_already_owned",
                product_id=product_id,
                in_flight=product_id in self._purchasing,
            )
            raise DuplicatePurchase(product_id)

        logger.info("purchase_started", product_id=product_id)
        self._purchasing.add(product_id)
        try:
            result = await self._platform.purchase(product)
            if result.outcome == PurchaseOutcome.SUCCESS:
                transaction = self.verify_transaction(result.verification)
                await self.apply_transaction_update(transaction, source="purchase")
                await self._platform.finish(transaction)
        finally:
            self._purchasing.discard(product_id)

        if result.outcome == PurchaseOutcome.SUCCESS:
            logger.info(
                "purchase_completed",
                product_id=product_id,
                transaction_id=transaction.id,
            )
            if transaction.product_id in self._subscription_ids:
                try:
                    await self.update_subscription_info()
                except Exception as e:
                    logger.warning(
                        "subscription_refresh_failed",
                        product_id=product_id,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
            return transaction

        if result.outcome in (PurchaseOutcome.USER_CANCELLED, PurchaseOutcome.PENDING):
            logger.info("purchase_not_completed", product_id=product_id, outcome=result.outcome.value)
        else:
            logger.warning("purchase_unknown_outcome", product_id=product_id, outcome=result.outcome.value)
        return None

    async def reconcile_purchases(self, force_sync: bool = False) -> None:
        """Rebuild purchased products from the platform's current entitlements.

        The purchased set is replaced, not merged: anything missing from the
        snapshot is dropped. Only verified, unrevoked transactions for
        configured products count.

        Args:
            force_sync: Ask the store backend to sync first. Sync errors are logged.
        """
        if not await self._submit(lambda: self._begin_request(PURCHASES_REQUEST)):
            logger.debug("reconcile_skipped", request_state=self.purchases_request_state.value)
            return

        if force_sync:
            try:
                await self._platform.sync()
                logger.info("entitlement_sync_completed")
            except Exception as e:
                logger.warning(
                    "entitlement_sync_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )

        purchased: set[str] = set()
        try:
            async for result in self._platform.current_entitlements():
                if not result.verified:
                    logger.warning(
                        "entitlement_failed_verification",
                        product_id=result.transaction.product_id,
                        transaction_id=result.transaction.id,
                    )
                    continue
                transaction = result.transaction
                if transaction.product_id in self._product_ids and not transaction.is_revoked:
                    purchased.add(transaction.product_id)
        except Exception as e:
            logger.error(
                "entitlements_read_failed",
                error=str(e),
                error_type=type(e).__name__,
                request_state=RequestState.IN_PROGRESS.value,
                exc_info=True,
            )
            return

        await self._submit(lambda: self._replace_purchased(purchased))

    async def update_subscription_info(self) -> None:
        """Refresh expiry dates for configured subscriptions present in the catalog.

        Subscriptions with no transaction, an unverified transaction or no
        expiry are skipped and keep whatever was known before.
        """
        catalog_ids = {product.id for product in self._catalog}
        for subscription_id in sorted(self._subscription_ids & catalog_ids):
            result = await self._platform.latest_transaction(subscription_id)
            if result is None:
                continue
            if not result.verified:
                logger.debug("subscription_transaction_unverified", subscription_id=subscription_id)
                continue

            expiry = result.transaction.expiration_date
            if expiry is None:
                continue
            await self._submit(lambda sid=subscription_id, exp=expiry: self._set_expiry(sid, exp))

    def verify_transaction(self, result: VerificationResult) -> Transaction:
        """Unwrap a transaction the platform verified.

        Raises:
            FailedVerification: If the platform marked it unverified
        """
        if not result.verified:
            logger.warning(
                "transaction_failed_verification",
                product_id=result.transaction.product_id,
                transaction_id=result.transaction.id,
                reason=result.error,
            )
            raise FailedVerification(result.transaction, result.error)
        return result.transaction

    async def apply_transaction_update(self, transaction: Transaction, source: str = "feed") -> None:
        """Add or remove the transaction's product based on its revocation date."""
        await self._submit(lambda: self._apply_transaction(transaction, source))

    async def reset_request_state(self) -> None:
        """Set both request states back to not-started so requests can run again."""
        await self._submit(self._reset_request_states)

    async def is_purchased(self, product_id: str) -> bool:
        """Ask the platform whether the product's latest transaction still entitles the user.

        Upgraded subscription tiers and revoked transactions do not count.

        Raises:
            FailedVerification: If the latest transaction is unverified
        """
        result = await self._platform.latest_transaction(product_id)
        if result is None:
            return False

        transaction = self.verify_transaction(result)
        return not transaction.is_revoked and not transaction.is_upgraded

    async def add_purchased_product(self, product_id: str) -> None:
        """Mark a product purchased without a transaction, e.g. restored from storage."""
        await self._submit(lambda: self._add_manual(product_id))

    # ------------------------------------------------------------------
    # Background tasks
    # ------------------------------------------------------------------

    async def _bootstrap(self) -> None:
        try:
            await self.fetch_catalog()
            await self.reconcile_purchases(force_sync=self._force_sync_on_start)
            await self.update_subscription_info()
            logger.info(
                "entitlement_mirror_ready",
                catalog_size=len(self._catalog),
                purchased=sorted(self._purchased),
            )
        except Exception as e:
            logger.error(
                "entitlement_mirror_bootstrap_failed",
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )

    async def _listen_for_transactions(self) -> None:
        """Consume the feed until cancelled, resubscribing whenever it fails or ends."""
        while True:
            try:
                async for result in self._platform.updates():
                    await self._handle_feed_result(result)
            except Exception as e:
                logger.error(
                    "transaction_feed_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                    retry_in_seconds=self._feed_retry_delay,
                    exc_info=True,
                )
            else:
                logger.warning("transaction_feed_ended", retry_in_seconds=self._feed_retry_delay)
            await asyncio.sleep(self._feed_retry_delay)

    async def _handle_feed_result(self, result: VerificationResult) -> None:
        try:
            transaction = self.verify_transaction(result)
        except FailedVerification:
            # Never deliver content for it
            return

        try:
            await self.apply_transaction_update(transaction, source="feed")
            await self._platform.finish(transaction)
        except Exception as e:
            logger.error(
                "transaction_update_failed",
                product_id=transaction.product_id,
                transaction_id=transaction.id,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )

    async def _run_writer(self) -> None:
        while True:
            mutation, future = await self._mutations.get()
            try:
                result = mutation()
            except Exception as e:
                if not future.done():
                    future.set_exception(e)
            else:
                if not future.done():
                    future.set_result(result)
            finally:
                self._mutations.task_done()

    async def _submit(self, mutation: Callable[[], T]) -> T:
        if self._mutations is None:
            raise RuntimeError("EntitlementMirror is not started")
        future = asyncio.get_running_loop().create_future()
        await self._mutations.put((mutation, future))
        return await future

    # ------------------------------------------------------------------
    # Mutations - only ever called on the writer task
    # ------------------------------------------------------------------

    def _set_request_state(self, request: str, new_state: RequestState, reason: str) -> None:
        old_state = self._request_states[request]
        if old_state != new_state:
            self._request_states[request] = new_state
            log_request_state_change(request, old_state.value, new_state.value, reason=reason)

    def _begin_request(self, request: str) -> bool:
        if self._request_states[request] != RequestState.NOT_STARTED:
            return False
        self._set_request_state(request, RequestState.IN_PROGRESS, reason="request_started")
        return True

    def _store_catalog(self, catalog: tuple[Product, ...]) -> None:
        self._catalog = catalog
        self._set_request_state(CATALOG_REQUEST, RequestState.DONE, reason="catalog_fetched")

    def _replace_purchased(self, purchased: set[str]) -> None:
        old = set(self._purchased)
        self._purchased = purchased
        log_purchased_set_replaced(old, purchased)
        self._set_request_state(PURCHASES_REQUEST, RequestState.DONE, reason="entitlements_reconciled")

    def _set_expiry(self, subscription_id: str, expiry: datetime) -> None:
        old_expiry = self._expirations.get(subscription_id)
        if old_expiry != expiry:
            self._expirations[subscription_id] = expiry
            log_expiry_change(subscription_id, old_expiry, expiry)

    def _apply_transaction(self, transaction: Transaction, source: str) -> None:
        product_id = transaction.product_id
        if product_id not in self._product_ids:
            logger.warning(
                "transaction_for_unconfigured_product",
                product_id=product_id,
                transaction_id=transaction.id,
            )
            return

        if not transaction.is_revoked:
            if product_id not in self._purchased:
                self._purchased.add(product_id)
                log_entitlement_granted(product_id, transaction.id, source=source)
            return

        retained = product_id in self._retain_on_revocation
        if not retained:
            self._purchased.discard(product_id)
        log_entitlement_revoked(
            product_id,
            transaction.id,
            revocation_date=transaction.revocation_date,
            retained=retained,
            source=source,
        )

    def _add_manual(self, product_id: str) -> None:
        if product_id not in self._product_ids:
            logger.error("add_unconfigured_product", product_id=product_id)
            return
        if product_id in self._purchased:
            logger.error("add_already_purchased_product", product_id=product_id)
            return
        self._purchased.add(product_id)
        log_entitlement_granted(product_id, source="manual")

    def _reset_request_states(self) -> None:
        for request in (CATALOG_REQUEST, PURCHASES_REQUEST):
            self._set_request_state(request, RequestState.NOT_STARTED, reason="reset_requested")


# Global mirror instance
_mirror_instance: Optional[EntitlementMirror] = None


def get_entitlement_mirror() -> EntitlementMirror:
    """Get global entitlement mirror built from configuration (singleton).

    The instance is not started; the application lifespan starts it.
    """
    from storekit_mirror.config import get_config
    from storekit_mirror.platforms.memory import get_store_platform

    global _mirror_instance
    if _mirror_instance is None:
        config = get_config()
        _mirror_instance = EntitlementMirror(
            platform=get_store_platform(),
            product_ids=config.product_ids,
            subscription_ids=config.subscription_ids,
            seed_purchased_ids=config.seed_purchased_ids,
            retain_on_revocation=config.mirror_settings.retain_on_revocation,
            force_sync_on_start=config.mirror_settings.force_sync_on_start,
        )
    return _mirror_instance


def reset_entitlement_mirror() -> None:
    """Reset global entitlement mirror instance (useful for testing)."""
    global _mirror_instance
    _mirror_instance = None
