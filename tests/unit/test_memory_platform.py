"""Tests for the in-memory store platform."""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from storekit_mirror.models import Product, ProductType, PurchaseOutcome
from storekit_mirror.platforms.base import StorePlatformError
from storekit_mirror.platforms.memory import InMemoryStorePlatform
from storekit_mirror.utils.token_generator import validate_transaction_id

NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


@pytest.fixture
def products():
    """Test catalog with one of each interesting product type."""
    return [
        Product(id="coins", type=ProductType.CONSUMABLE, display_name="Coins", price=Decimal("0.99")),
        Product(id="unlock", display_name="Unlock", price=Decimal("2.99")),
        Product(
            id="pro.yearly",
            type=ProductType.AUTO_RENEWABLE,
            display_name="Pro Yearly",
            price=Decimal("29.99"),
            subscription_period="P1Y",
        ),
    ]


@pytest.fixture
def platform(products):
    """Create platform with a fixed clock."""
    return InMemoryStorePlatform(products, clock=lambda: NOW)


async def collect(iterator):
    return [item async for item in iterator]


class TestCatalog:
    """Test product fetching."""

    @pytest.mark.asyncio
    async def test_fetch_known_products(self, platform):
        """Test unknown IDs are left out."""
        products = await platform.fetch_products(["unlock", "missing"])

        assert [p.id for p in products] == ["unlock"]
        assert platform.fetch_count == 1

    @pytest.mark.asyncio
    async def test_fetch_failure(self, platform):
        """Test simulated fetch failure."""
        platform.set_failures(fetch_products=True)

        with pytest.raises(StorePlatformError):
            await platform.fetch_products(["unlock"])


class TestPurchaseFlow:
    """Test purchase flow results."""

    @pytest.mark.asyncio
    async def test_purchase_records_transaction(self, platform, products):
        """Test a successful purchase records a verified transaction."""
        result = await platform.purchase(products[1])

        assert result.outcome == PurchaseOutcome.SUCCESS
        assert result.verification.verified
        transaction = result.verification.transaction
        assert validate_transaction_id(transaction.id)
        assert transaction.original_id == transaction.id
        assert transaction.purchase_date == NOW
        assert transaction.expiration_date is None
        assert platform.transactions("unlock") == [transaction]

    @pytest.mark.asyncio
    async def test_subscription_expiry(self, platform, products):
        """Test subscriptions expire one billing period after purchase."""
        result = await platform.purchase(products[2])

        assert result.verification.transaction.expiration_date == NOW + timedelta(days=365)

    @pytest.mark.asyncio
    async def test_scripted_outcome(self, platform, products):
        """Test non-success outcomes record nothing."""
        platform.set_purchase_outcome(PurchaseOutcome.PENDING)

        result = await platform.purchase(products[1])

        assert result.outcome == PurchaseOutcome.PENDING
        assert result.verification is None
        assert platform.transactions() == []

    @pytest.mark.asyncio
    async def test_unsold_product(self, platform):
        """Test buying a product the store does not sell."""
        stray = Product(id="stray", display_name="Stray", price=Decimal("1.00"))

        with pytest.raises(StorePlatformError):
            await platform.purchase(stray)


class TestLedger:
    """Test ledger queries."""

    @pytest.mark.asyncio
    async def test_latest_transaction(self, platform):
        """Test latest transaction follows the ledger."""
        assert await platform.latest_transaction("unlock") is None

        platform.grant("unlock", deliver=False)
        revoked = platform.revoke("unlock", deliver=False)

        latest = await platform.latest_transaction("unlock")
        assert latest.transaction == revoked.transaction
        assert latest.transaction.revocation_date == NOW

    @pytest.mark.asyncio
    async def test_current_entitlements_skip_consumables_and_expired(self, products):
        """Test the snapshot excludes consumables and lapsed subscriptions."""
        now = NOW
        platform = InMemoryStorePlatform(products, clock=lambda: now)
        platform.grant("coins", deliver=False)
        platform.grant("unlock", deliver=False)
        platform.grant("pro.yearly", deliver=False)

        entitled = await collect(platform.current_entitlements())
        assert sorted(r.transaction.product_id for r in entitled) == ["pro.yearly", "unlock"]

        now = NOW + timedelta(days=400)
        entitled = await collect(platform.current_entitlements())
        assert [r.transaction.product_id for r in entitled] == ["unlock"]

    @pytest.mark.asyncio
    async def test_renew_extends_chain(self, platform):
        """Test renewals share the original transaction ID."""
        first = platform.grant("pro.yearly", deliver=False).transaction
        second = platform.renew("pro.yearly", deliver=False).transaction

        assert second.original_id == first.id
        assert second.purchase_date == first.expiration_date
        assert second.expiration_date == NOW + timedelta(days=730)

    def test_renew_requires_subscription(self, platform):
        """Test renewing a non-subscription fails."""
        platform.grant("unlock", deliver=False)

        with pytest.raises(StorePlatformError):
            platform.renew("unlock")

    def test_revoke_requires_transaction(self, platform):
        """Test revoking a product that was never bought fails."""
        with pytest.raises(StorePlatformError):
            platform.revoke("unlock")

    def test_grant_unknown_product(self, platform):
        """Test granting a product the store does not sell."""
        with pytest.raises(StorePlatformError):
            platform.grant("missing")

    @pytest.mark.asyncio
    async def test_sync_and_failure(self, platform):
        """Test sync counting and simulated failure."""
        await platform.sync()
        platform.set_failures(sync=True)

        with pytest.raises(StorePlatformError):
            await platform.sync()
        assert platform.sync_count == 2


class TestUpdateFeed:
    """Test the update feed."""

    @pytest.mark.asyncio
    async def test_feed_delivers_in_order(self, platform):
        """Test delivered results arrive in order and drain after handling."""
        first = platform.grant("unlock")
        second = platform.revoke("unlock")
        received = []

        async def consume():
            async for result in platform.updates():
                received.append(result)

        task = asyncio.create_task(consume())
        await asyncio.wait_for(platform.drain_updates(), timeout=1)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

        assert received == [first, second]

    @pytest.mark.asyncio
    async def test_finish_and_status(self, platform):
        """Test finished transactions are tracked in the status."""
        result = platform.grant("unlock")
        await platform.finish(result.transaction)

        assert platform.is_finished(result.transaction.id)
        assert platform.status() == {
            "product_count": 3,
            "transaction_count": 1,
            "finished_count": 1,
            "pending_updates": 1,
        }

    def test_reset(self, platform):
        """Test reset clears ledger, queue and scripting."""
        platform.grant("unlock")
        platform.set_purchase_outcome(PurchaseOutcome.USER_CANCELLED)
        platform.set_failures(sync=True)

        platform.reset()

        assert platform.transactions() == []
        assert platform.status()["pending_updates"] == 0
        assert platform.fetch_count == 0
