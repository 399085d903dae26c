from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from cryptoflash.services.account import (
    NOT_ENTITLED,
    EntitlementFact,
    EntitlementResolver,
    OrdersState,
    ProfileState,
    remaining_days,
    resolve_entitlement,
)
from cryptoflash.services.store import DocumentStoreError
from cryptoflash.utils.timeutil import parse_timestamp
from tests.conftest import T0


class FirestoreTimestamp:
    def __init__(self, value: datetime) -> None:
        self._value = value

    def to_datetime(self) -> datetime:
        return self._value


class TestParseTimestamp:
    def test_supported_formats(self):
        expected = datetime(2026, 3, 1, tzinfo=timezone.utc)
        assert parse_timestamp(expected) == expected
        assert parse_timestamp("2026-03-01T00:00:00Z") == expected
        assert parse_timestamp(int(expected.timestamp() * 1000)) == expected
        assert parse_timestamp(FirestoreTimestamp(expected)) == expected

    def test_naive_values_are_utc(self):
        assert parse_timestamp("2026-03-01T00:00:00").tzinfo is not None

    def test_garbage(self):
        assert parse_timestamp(None) is None
        assert parse_timestamp("") is None
        assert parse_timestamp("tomorrow") is None
        assert parse_timestamp(True) is None
        assert parse_timestamp(object()) is None


class TestResolveEntitlement:
    def test_profile_has_priority(self):
        profile = ProfileState(delivered=True, is_pro_flag=True, expires_at=T0 + timedelta(days=3))
        orders = OrdersState(delivered=True, max_expires_at=T0 + timedelta(days=30))

        fact = resolve_entitlement(profile, orders, T0)

        assert fact == EntitlementFact(True, T0 + timedelta(days=3))

    def test_orders_used_when_profile_not_pro(self):
        profile = ProfileState(delivered=True, is_pro_flag=False, expires_at=T0 + timedelta(days=3))
        orders = OrdersState(delivered=True, max_expires_at=T0 + timedelta(days=30))

        assert resolve_entitlement(profile, orders, T0) == EntitlementFact(True, T0 + timedelta(days=30))

    def test_expired_sources_are_not_entitled(self):
        profile = ProfileState(delivered=True, is_pro_flag=True, expires_at=T0 - timedelta(seconds=1))
        orders = OrdersState(delivered=True, max_expires_at=T0)

        assert resolve_entitlement(profile, orders, T0) == NOT_ENTITLED

    def test_pro_flag_without_expiry_is_not_entitled(self):
        profile = ProfileState(delivered=True, is_pro_flag=True, expires_at=None)

        assert resolve_entitlement(profile, OrdersState(), T0) == NOT_ENTITLED

    def test_undelivered_sources_fail_closed(self):
        assert resolve_entitlement(ProfileState(), OrdersState(), T0) == NOT_ENTITLED


class TestRemainingDays:
    def test_rounds_up(self):
        assert remaining_days(T0 + timedelta(days=2, hours=1), T0) == 3

    def test_clamped_at_zero(self):
        assert remaining_days(T0 - timedelta(days=2), T0) == 0

    def test_none_without_expiry(self):
        assert remaining_days(None, T0) is None


@pytest_asyncio.fixture
async def resolver(account, store, settings, date_clock):
    resolver = EntitlementResolver(account, store, plans=settings.plans, clock=date_clock)
    yield resolver
    await resolver.close()


class TestEntitlementResolver:
    @pytest.mark.asyncio
    async def test_initial_state_is_loading_and_not_pro(self, resolver):
        assert resolver.loading
        assert resolver.fact == NOT_ENTITLED
        assert resolver.remaining_days is None

    @pytest.mark.asyncio
    async def test_profile_subscription(self, resolver, store):
        await store.set(
            "users",
            "alice@example.com",
            {"isPro": True, "proExpiresAt": (T0 + timedelta(days=10)).isoformat()},
        )
        await resolver.start()
        await store.wait_idle()

        assert resolver.fact == EntitlementFact(True, T0 + timedelta(days=10))
        assert resolver.remaining_days == 10
        assert not resolver.loading

    @pytest.mark.asyncio
    async def test_string_flag_is_not_pro(self, resolver, store):
        await store.set(
            "users",
            "alice@example.com",
            {"isPro": "true", "proExpiresAt": (T0 + timedelta(days=10)).isoformat()},
        )
        await resolver.start()
        await store.wait_idle()

        assert not resolver.is_pro

    @pytest.mark.asyncio
    async def test_approved_orders_grant_pro(self, resolver, store):
        await store.add(
            "orders",
            {"email": "alice@example.com", "status": "approved", "expiresAt": (T0 + timedelta(days=5)).isoformat()},
        )
        await store.add(
            "orders",
            {"email": "alice@example.com", "status": "approved", "expiresAt": (T0 + timedelta(days=40)).isoformat()},
        )
        await store.add(
            "orders",
            {"email": "alice@example.com", "status": "pending", "expiresAt": (T0 + timedelta(days=400)).isoformat()},
        )
        await store.add(
            "orders",
            {"email": "bob@example.com", "status": "approved", "expiresAt": (T0 + timedelta(days=400)).isoformat()},
        )
        await resolver.start()
        await store.wait_idle()

        assert resolver.fact == EntitlementFact(True, T0 + timedelta(days=40))
        assert resolver.remaining_days == 40

    @pytest.mark.asyncio
    async def test_fact_republished_on_each_snapshot(self, resolver, store):
        facts = []

        async def listener(fact):
            facts.append(fact)

        resolver.subscribe(listener)
        await resolver.start()
        await store.wait_idle()
        await store.add(
            "orders",
            {"email": "alice@example.com", "status": "approved", "expiresAt": int((T0 + timedelta(days=1)).timestamp() * 1000)},
        )
        await store.wait_idle()

        assert facts[-1] == EntitlementFact(True, T0 + timedelta(days=1))
        assert all(not f.is_pro for f in facts[:-1])

    @pytest.mark.asyncio
    async def test_expiry_collapses_without_new_snapshot(self, resolver, store, date_clock):
        await store.set("users", "alice@example.com", {"isPro": True, "proExpiresAt": T0 + timedelta(hours=1)})
        await resolver.start()
        await store.wait_idle()
        assert resolver.is_pro

        date_clock.advance(hours=2)

        assert resolver.fact == NOT_ENTITLED
        assert resolver.remaining_days is None

    @pytest.mark.asyncio
    async def test_close_cancels_both_subscriptions(self, resolver, store):
        await resolver.start()
        await store.wait_idle()
        assert store.watched_collections() == {"users", "orders"}

        await resolver.close()

        assert store.watched_collections() == set()
        await store.set("users", "alice@example.com", {"isPro": True, "proExpiresAt": T0 + timedelta(days=1)})
        assert not resolver.is_pro

    @pytest.mark.asyncio
    async def test_subscription_error_keeps_last_fact(self, resolver, store):
        await store.set("users", "alice@example.com", {"isPro": True, "proExpiresAt": T0 + timedelta(days=2)})
        await resolver.start()
        await store.wait_idle()

        store._broadcast_error("users", DocumentStoreError("permission denied"))
        await store.wait_idle()

        assert resolver.is_pro
        assert not resolver.loading


class TestPlanGating:
    @pytest.mark.asyncio
    async def test_free_limits(self, resolver, store):
        await resolver.start()
        await store.wait_idle()

        assert resolver.can_add_holding(4)
        assert not resolver.can_add_holding(5)
        assert resolver.can_add_alert(1)
        assert not resolver.can_add_alert(2)
        assert resolver.max_holdings == 5

    @pytest.mark.asyncio
    async def test_pro_is_unlimited(self, resolver, store):
        await store.set("users", "alice@example.com", {"isPro": True, "proExpiresAt": T0 + timedelta(days=2)})
        await resolver.start()
        await store.wait_idle()

        assert resolver.can_add_holding(500)
        assert resolver.can_add_alert(500)
        assert resolver.max_active_alerts is None

    @pytest.mark.asyncio
    async def test_feature_usage_limit(self, resolver, store):
        await store.set("users", "alice@example.com", {"planLimit": 3, "usageCount": 3})
        await resolver.start()
        await store.wait_idle()
        assert not resolver.can_use_feature()

        await store.set("users", "alice@example.com", {"planLimit": 3, "usageCount": 2})
        await store.wait_idle()
        assert resolver.can_use_feature()
