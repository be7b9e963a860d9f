"""
Tests for the in-memory identity store.
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from service_entitlements.app.models import (
    AuthProvider,
    EntitlementsUpdate,
    Subscription,
    SubscriptionType,
)
from service_entitlements.app.persistence import InMemoryIdentityStore, build_identity_store
from service_entitlements.app.rules import EntitlementPolicy
from shared.config import get_config
from shared.errors import DailyLimitReachedError, UserNotFoundError
from shared.metrics import MetricsCollector


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemoryIdentityStore(EntitlementPolicy(), clock)


class TestGetOrCreate:
    """Test user lookup and creation."""

    @pytest.mark.asyncio
    async def test_creates_user_with_free_defaults(self, store, clock):
        user = await store.get_or_create(AuthProvider.GUEST, "device-1", "")

        assert user.username == "device-1"
        assert user.auth_provider == AuthProvider.GUEST
        assert user.created_at == clock.now
        assert user.entitlements.daily_message_limit == 5
        assert user.entitlements.messages_used == 0
        assert user.entitlements.subscription.type == SubscriptionType.FREE

    @pytest.mark.asyncio
    async def test_second_call_returns_same_user(self, store):
        first = await store.get_or_create(AuthProvider.APPLE, "apple-user", "a@example.com")
        second = await store.get_or_create(AuthProvider.APPLE, "apple-user", "changed@example.com")

        assert second.id == first.id
        assert second.email == "a@example.com"

    @pytest.mark.asyncio
    async def test_concurrent_creation_yields_one_record(self, store):
        users = await asyncio.gather(*[
            store.get_or_create(AuthProvider.GUEST, "shared-device", "") for _ in range(20)
        ])

        assert len({user.id for user in users}) == 1

    @pytest.mark.asyncio
    async def test_returned_users_are_copies(self, store):
        user = await store.get_or_create(AuthProvider.GUEST, "device-1", "")
        user.entitlements.messages_used = 99

        stored = await store.get_user(user.id)

        assert stored.entitlements.messages_used == 0

    @pytest.mark.asyncio
    async def test_lookup_of_unknown_user_raises(self, store):
        with pytest.raises(UserNotFoundError):
            await store.get_user("missing")
        with pytest.raises(UserNotFoundError):
            await store.get_user_by_username("missing")


class TestCheckAndIncrement:
    """Test atomic quota consumption."""

    @pytest.mark.asyncio
    async def test_five_messages_then_limit(self, store):
        user = await store.get_or_create(AuthProvider.GUEST, "device-1", "")

        for expected in range(1, 6):
            updated = await store.check_and_increment(user.id)
            assert updated.entitlements.messages_used == expected

        with pytest.raises(DailyLimitReachedError) as exc_info:
            await store.check_and_increment(user.id)

        assert exc_info.value.http_status == 403
        assert (await store.get_user(user.id)).entitlements.messages_used == 5

    @pytest.mark.asyncio
    async def test_increment_updates_last_active(self, store, clock):
        user = await store.get_or_create(AuthProvider.GUEST, "device-1", "")
        clock.advance(seconds=10)

        updated = await store.check_and_increment(user.id)

        assert updated.last_active == clock.now

    @pytest.mark.asyncio
    async def test_window_reset_allows_more_messages(self, store, clock):
        user = await store.get_or_create(AuthProvider.GUEST, "device-1", "")
        for _ in range(5):
            await store.check_and_increment(user.id)

        clock.advance(seconds=61)
        updated = await store.check_and_increment(user.id)

        assert updated.entitlements.messages_used == 1
        assert updated.entitlements.last_reset == clock.now

    @pytest.mark.asyncio
    async def test_reset_persists_even_when_limit_fails(self, store, clock):
        user = await store.get_or_create(AuthProvider.GUEST, "device-1", "")
        await store.set_entitlements("device-1", EntitlementsUpdate(daily_message_limit=0))

        clock.advance(seconds=120)
        with pytest.raises(DailyLimitReachedError):
            await store.check_and_increment(user.id)

        stored = await store.get_user(user.id)
        assert stored.entitlements.last_reset == clock.now
        assert stored.entitlements.messages_used == 0

    @pytest.mark.asyncio
    async def test_unknown_user_raises(self, store):
        with pytest.raises(UserNotFoundError):
            await store.check_and_increment("missing")

    @pytest.mark.asyncio
    async def test_concurrent_tasks_never_exceed_limit(self, store):
        user = await store.get_or_create(AuthProvider.GUEST, "device-1", "")

        results = await asyncio.gather(
            *[store.check_and_increment(user.id) for _ in range(12)],
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, DailyLimitReachedError)]
        assert len(successes) == 5
        assert len(failures) == 7
        assert (await store.get_user(user.id)).entitlements.messages_used == 5

    @pytest.mark.asyncio
    async def test_concurrent_threads_never_exceed_limit(self, store):
        user = await store.get_or_create(AuthProvider.GUEST, "device-1", "")
        await store.set_entitlements("device-1", EntitlementsUpdate(daily_message_limit=25))

        def consume():
            try:
                asyncio.run(store.check_and_increment(user.id))
                return True
            except DailyLimitReachedError:
                return False

        with ThreadPoolExecutor(max_workers=8) as pool:
            outcomes = list(pool.map(lambda _: consume(), range(40)))

        assert outcomes.count(True) == 25
        assert (await store.get_user(user.id)).entitlements.messages_used == 25

    @pytest.mark.asyncio
    async def test_quota_decisions_are_counted(self, clock):
        metrics = MetricsCollector("entitlements-memory-test")
        store = InMemoryIdentityStore(EntitlementPolicy(free_daily_message_limit=1), clock, metrics)
        user = await store.get_or_create(AuthProvider.GUEST, "device-1", "")

        await store.check_and_increment(user.id)
        with pytest.raises(DailyLimitReachedError):
            await store.check_and_increment(user.id)

        assert metrics.registry.get_sample_value("quota_checks_total", {"decision": "allowed"}) == 1.0
        assert metrics.registry.get_sample_value("quota_checks_total", {"decision": "denied"}) == 1.0


class TestLookupsAndUpdates:
    """Test lazy reset on lookup and administrative updates."""

    @pytest.mark.asyncio
    async def test_lookup_applies_and_persists_reset(self, store, clock):
        user = await store.get_or_create(AuthProvider.GUEST, "device-1", "")
        await store.check_and_increment(user.id)

        clock.advance(minutes=5)
        by_name = await store.get_user_by_username("device-1")

        assert by_name.entitlements.messages_used == 0
        assert by_name.entitlements.last_reset == clock.now

        clock.advance(seconds=1)
        by_id = await store.get_user(user.id)
        assert by_id.entitlements.last_reset == by_name.entitlements.last_reset

    @pytest.mark.asyncio
    async def test_set_entitlements_is_partial(self, store):
        user = await store.get_or_create(AuthProvider.GUEST, "device-1", "")
        await store.check_and_increment(user.id)

        updated = await store.set_entitlements(
            "device-1",
            EntitlementsUpdate(subscription=Subscription(type=SubscriptionType.PREMIUM)),
        )

        assert updated.entitlements.subscription.type == SubscriptionType.PREMIUM
        assert updated.entitlements.messages_used == 1
        assert updated.entitlements.daily_message_limit == 5

    @pytest.mark.asyncio
    async def test_premium_transition_lifts_limit(self, store):
        user = await store.get_or_create(AuthProvider.GUEST, "device-1", "")
        for _ in range(5):
            await store.check_and_increment(user.id)

        update = store.policy.apply_subscription(Subscription(type=SubscriptionType.PREMIUM))
        await store.set_entitlements("device-1", update)

        updated = await store.check_and_increment(user.id)
        assert updated.entitlements.daily_message_limit == 10000
        assert updated.entitlements.messages_used == 1

    @pytest.mark.asyncio
    async def test_set_entitlements_for_unknown_user_raises(self, store):
        with pytest.raises(UserNotFoundError):
            await store.set_entitlements("missing", EntitlementsUpdate(messages_used=0))

    @pytest.mark.asyncio
    async def test_health_check(self, store):
        await store.get_or_create(AuthProvider.GUEST, "device-1", "")
        health = await store.health_check()
        assert health == {"status": "healthy", "backend": "memory", "users": "1"}


def test_build_identity_store_selects_backend():
    memory = build_identity_store(get_config("gateway", 5565, store_backend="memory"))
    postgres = build_identity_store(get_config("gateway", 5565, store_backend="postgres"))

    assert isinstance(memory, InMemoryIdentityStore)
    assert type(postgres).__name__ == "PostgresIdentityStore"

    with pytest.raises(ValueError):
        build_identity_store(get_config("gateway", 5565, store_backend="redis"))
