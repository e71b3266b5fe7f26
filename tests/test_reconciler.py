"""
Tests for the subscription reconciler.

The clock and sleep are fakes, so no test waits in real time.
"""

import asyncio
from uuid import uuid4

import pytest

from vittas.config import ReconcilerSettings
from vittas.models.audit import AuditEventType
from vittas.models.subscription import SubscriptionInfo, SubscriptionRecord, SubscriptionTier
from vittas.subscriptions import ReconcilerPhase, SubscriptionReconciler


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleep:
    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class ScriptedStorage:
    """
    get_subscriber returns (or raises) the scripted items in order.

    The last item repeats once the script runs out.
    """

    def __init__(self, *script):
        self.script = list(script)
        self.calls = 0
        self.gate: asyncio.Event | None = None

    async def get_subscriber(self, user_id):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        item = self.script[min(self.calls, len(self.script)) - 1]
        if isinstance(item, Exception):
            raise item
        return item


class StubStatusService:
    def __init__(self, result):
        self.result = result
        self.calls = 0

    async def get_status(self, user_id):
        self.calls += 1
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


def premium_record(user_id) -> SubscriptionRecord:
    return SubscriptionRecord(
        email="dev@example.com",
        user_id=user_id,
        subscribed=True,
        subscription_tier=SubscriptionTier.PREMIUM,
    )


@pytest.fixture
def settings() -> ReconcilerSettings:
    return ReconcilerSettings(
        min_refresh_interval_seconds=10,
        forced_refresh_delay_seconds=3,
        max_retries=3,
        retry_backoff_seconds=0,
        tier_poll_interval_seconds=2.5,
        tier_poll_attempts=4,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def user_id():
    return uuid4()


@pytest.fixture
def make_reconciler(settings, clock, sleep, audit_logger, user_id):
    def make(storage, status_service=None):
        return SubscriptionReconciler(
            user_id,
            storage,
            status_service or StubStatusService(RuntimeError("fallback down")),
            settings=settings,
            audit_logger=audit_logger,
            clock=clock,
            sleep=sleep,
        )
    return make


class TestRefresh:
    """Tests for the refresh cycle and its limiter."""

    async def test_settles_from_primary(self, make_reconciler, audit_storage, user_id):
        reconciler = make_reconciler(ScriptedStorage(premium_record(user_id)))

        info = await reconciler.refresh()

        assert info.tier == SubscriptionTier.PREMIUM
        assert reconciler.state.phase == ReconcilerPhase.SETTLED
        assert reconciler.state.degraded is False
        [event] = await audit_storage.get_recent_events()
        assert event.event_type == AuditEventType.SUBSCRIPTION_REFRESHED
        assert event.details["source"] == "primary"

    async def test_no_subscriber_row_is_individual(self, make_reconciler):
        reconciler = make_reconciler(ScriptedStorage(None))
        info = await reconciler.refresh()
        assert info == SubscriptionInfo.default()
        assert reconciler.state.degraded is False

    async def test_refreshes_inside_interval_are_dropped(self, make_reconciler, clock, user_id):
        """Focus, visibility and interval triggers together cause one fetch."""
        storage = ScriptedStorage(premium_record(user_id))
        reconciler = make_reconciler(storage)

        results = [await reconciler.refresh() for _ in range(3)]
        clock.advance(9.9)
        results.append(await reconciler.refresh())

        assert storage.calls == 1
        assert results[0] is not None
        assert results[1:] == [None, None, None]

    async def test_refresh_allowed_after_interval(self, make_reconciler, clock, user_id):
        storage = ScriptedStorage(premium_record(user_id))
        reconciler = make_reconciler(storage)

        await reconciler.refresh()
        clock.advance(10)
        assert await reconciler.refresh() is not None
        assert storage.calls == 2

    async def test_refresh_during_fetch_is_dropped(self, make_reconciler, user_id):
        storage = ScriptedStorage(premium_record(user_id))
        storage.gate = asyncio.Event()
        reconciler = make_reconciler(storage)

        first = asyncio.create_task(reconciler.refresh())
        await asyncio.sleep(0)
        assert reconciler.state.in_flight is True

        assert await reconciler.refresh(force=True) is None

        storage.gate.set()
        info = await first
        assert info.tier == SubscriptionTier.PREMIUM
        assert storage.calls == 1
        assert reconciler.state.in_flight is False

    async def test_forced_refresh_waits_and_skips_limiter(self, make_reconciler, sleep, user_id):
        storage = ScriptedStorage(None, premium_record(user_id))
        reconciler = make_reconciler(storage)

        await reconciler.refresh()
        info = await reconciler.refresh(force=True)

        assert info.tier == SubscriptionTier.PREMIUM
        assert sleep.calls == [3]
        assert storage.calls == 2


class TestFailureHandling:
    """Tests for retries, fallback and degraded mode."""

    async def test_fallback_used_after_primary_failure(self, make_reconciler, audit_storage):
        storage = ScriptedStorage(RuntimeError("primary down"))
        fallback = StubStatusService(SubscriptionInfo(tier=SubscriptionTier.ORGANIZATION, subscribed=True))
        reconciler = make_reconciler(storage, fallback)

        info = await reconciler.refresh()

        assert info.tier == SubscriptionTier.ORGANIZATION
        assert storage.calls == 1
        assert fallback.calls == 1
        assert reconciler.state.retry_count == 1
        [event] = await audit_storage.get_recent_events()
        assert event.details["source"] == "fallback"

    async def test_exhausted_retries_settle_degraded(self, make_reconciler, audit_storage):
        storage = ScriptedStorage(RuntimeError("primary down"))
        fallback = StubStatusService(RuntimeError("fallback down"))
        reconciler = make_reconciler(storage, fallback)

        info = await reconciler.refresh()

        assert info == SubscriptionInfo.default()
        assert storage.calls == 3
        assert fallback.calls == 2
        assert reconciler.state.degraded is True
        assert reconciler.state.phase == ReconcilerPhase.SETTLED
        assert reconciler.state.in_flight is False
        assert reconciler.can_access("analytics") is False

        [event] = await audit_storage.get_recent_events()
        assert event.event_type == AuditEventType.SUBSCRIPTION_DEGRADED

    async def test_recovers_after_transient_failure(self, make_reconciler, user_id):
        storage = ScriptedStorage(RuntimeError("blip"), premium_record(user_id))
        fallback = StubStatusService(RuntimeError("fallback down"))
        reconciler = make_reconciler(storage, fallback)

        info = await reconciler.refresh()

        assert info.tier == SubscriptionTier.PREMIUM
        assert storage.calls == 2

    async def test_retry_count_resets_each_cycle(self, make_reconciler, clock, user_id):
        storage = ScriptedStorage(
            RuntimeError("down"), RuntimeError("down"), RuntimeError("down"),
            premium_record(user_id),
        )
        reconciler = make_reconciler(storage, StubStatusService(RuntimeError("down")))

        assert (await reconciler.refresh()).tier == SubscriptionTier.INDIVIDUAL
        clock.advance(10)
        info = await reconciler.refresh()

        assert info.tier == SubscriptionTier.PREMIUM
        assert reconciler.state.retry_count == 0
        assert reconciler.state.degraded is False

    async def test_reconcilers_do_not_share_state(self, make_reconciler, user_id):
        one = make_reconciler(ScriptedStorage(premium_record(user_id)))
        two = make_reconciler(ScriptedStorage(premium_record(user_id)))

        await one.refresh()

        assert two.state.last_fetch_started is None
        assert await two.refresh() is not None


class TestWaitForTier:
    """Tests for polling after a purchase."""

    async def test_tier_already_there(self, make_reconciler, sleep, user_id):
        reconciler = make_reconciler(ScriptedStorage(premium_record(user_id)))

        assert await reconciler.wait_for_tier(SubscriptionTier.PREMIUM) is True
        assert sleep.calls == [3]

    async def test_tier_arrives_while_polling(self, make_reconciler, sleep, user_id):
        storage = ScriptedStorage(None, None, premium_record(user_id))
        reconciler = make_reconciler(storage)

        assert await reconciler.wait_for_tier(SubscriptionTier.PREMIUM) is True
        assert storage.calls == 3
        assert sleep.calls == [3, 2.5]
        assert reconciler.can_access("expense-sharing") is True

    async def test_gives_up(self, make_reconciler, user_id):
        storage = ScriptedStorage(None)
        reconciler = make_reconciler(storage)

        assert await reconciler.wait_for_tier(SubscriptionTier.ORGANIZATION) is False
        assert storage.calls == 1 + 4
        assert reconciler.subscription.tier == SubscriptionTier.INDIVIDUAL
