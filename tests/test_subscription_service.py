"""
Tests for the subscription service and the payment webhook.
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from vittas.models.audit import AuditEventType
from vittas.models.ledger import Profile
from vittas.models.subscription import (
    PaymentCapturedEvent,
    SubscriptionInfo,
    SubscriptionRecord,
    SubscriptionTier,
    utc_now,
)
from vittas.services.storage import DuplicateError, NotFoundError
from vittas.subscriptions import SubscriptionError, SubscriptionService, plan_price


def captured_payload(user_id, plan_type="Premium", trial_days=None, **extra_notes):
    notes = {"user_id": str(user_id), "email": "dev@example.com", "plan_type": plan_type}
    if trial_days is not None:
        notes["trial_days"] = str(trial_days)
    notes.update(extra_notes)
    return {
        "event": "payment.captured",
        "payload": {
            "payment": {"entity": {"id": "pay_123", "order_id": "order_456"}},
            "order": {"entity": {"id": "order_456", "notes": notes}},
        },
    }


@pytest.fixture
def service(storage, audit_logger) -> SubscriptionService:
    return SubscriptionService(storage, audit_logger)


class TestPlanPrice:
    """Tests for checkout prices."""

    def test_known_plans(self):
        assert plan_price("Premium") == 74900
        assert plan_price(SubscriptionTier.ORGANIZATION) == 224900

    @pytest.mark.parametrize("tier", ["Individual", "Gold"])
    def test_not_purchasable(self, tier):
        with pytest.raises(SubscriptionError):
            plan_price(tier)


class TestActivate:
    """Tests for activating a paid tier."""

    async def test_writes_subscriber_and_profile(self, service, storage, alice):
        record = await service.activate(alice, "alice@example.com", "Premium")

        assert record.subscribed is True
        assert record.subscription_tier == SubscriptionTier.PREMIUM
        stored = await storage.get_subscriber(alice)
        assert stored.subscription_end == record.subscription_end
        profile = await storage.get_profile(alice)
        assert profile.subscription_tier == SubscriptionTier.PREMIUM

    async def test_period_starts_after_trial(self, service, alice):
        before = utc_now()
        record = await service.activate(alice, "alice@example.com", "Organization", trial_days=7)

        expected = before + timedelta(days=37)
        assert abs(record.subscription_end - expected) < timedelta(minutes=1)

    async def test_keeps_existing_profile_fields(self, service, storage, alice):
        await storage.upsert_profile(Profile(id=alice, full_name="Alice"))
        await service.activate(alice, "alice@example.com", "Premium")

        profile = await storage.get_profile(alice)
        assert profile.full_name == "Alice"

    @pytest.mark.parametrize("tier", ["Individual", "Platinum"])
    async def test_rejects_unpurchasable_tier(self, service, storage, alice, tier):
        with pytest.raises(SubscriptionError):
            await service.activate(alice, "alice@example.com", tier)
        assert await storage.get_subscriber(alice) is None

    async def test_rejects_negative_trial(self, service, alice):
        with pytest.raises(SubscriptionError):
            await service.activate(alice, "alice@example.com", "Premium", trial_days=-1)

    async def test_email_belongs_to_one_user(self, service, alice):
        await service.activate(alice, "alice@example.com", "Premium")
        with pytest.raises(DuplicateError):
            await service.activate(alice, "alice@work.example.com", "Premium")

    async def test_activation_is_audited(self, service, audit_storage, alice):
        await service.activate(alice, "alice@example.com", "Premium", payment_id="pay_1")

        [event] = await audit_storage.get_recent_events()
        assert event.event_type == AuditEventType.SUBSCRIPTION_ACTIVATED
        assert event.details["payment_id"] == "pay_1"


class TestWebhook:
    """Tests for payment webhook handling."""

    async def test_payment_captured_activates(self, service, storage, alice):
        record = await service.handle_webhook_event(captured_payload(alice, trial_days=3))

        assert record.subscription_tier == SubscriptionTier.PREMIUM
        assert (await storage.get_subscriber(alice)).email == "dev@example.com"

    @pytest.mark.parametrize("name", ["payment.failed", "order.paid", None])
    async def test_other_events_ignored(self, service, storage, audit_storage, alice, name):
        result = await service.handle_webhook_event({"event": name, "payload": {}})

        assert result is None
        assert await storage.get_subscriber(alice) is None
        assert await audit_storage.get_recent_events() == []

    async def test_missing_notes(self, service):
        payload = {"event": "payment.captured", "payload": {"payment": {"entity": {"id": "p"}}}}
        with pytest.raises(SubscriptionError):
            await service.handle_webhook_event(payload)

    async def test_malformed_payload_is_audited(self, service, audit_storage):
        payload = {"event": "payment.captured", "payload": {}}
        with pytest.raises(SubscriptionError):
            await service.handle_webhook_event(payload)

        [event] = await audit_storage.get_recent_events()
        assert event.event_type == AuditEventType.SYSTEM_ERROR
        assert event.details["webhook_event"] == "payment.captured"

    async def test_unknown_plan(self, service, alice):
        with pytest.raises(SubscriptionError):
            await service.handle_webhook_event(captured_payload(alice, plan_type="Gold"))

    def test_payment_notes_used_without_order(self, alice):
        payload = {
            "event": "payment.captured",
            "payload": {"payment": {"entity": {
                "id": "pay_9",
                "order_id": "order_9",
                "notes": {"user_id": str(alice), "email": "a@example.com", "plan_type": "Premium"},
            }}},
        }
        event = PaymentCapturedEvent.from_webhook(payload)

        assert event.user_id == alice
        assert event.order_id == "order_9"
        assert event.trial_days == 0


class TestCancel:
    """Tests for cancelling a subscription."""

    async def test_cancel_clears_tier(self, service, storage, alice):
        await service.activate(alice, "alice@example.com", "Premium")

        cancelled = await service.cancel(alice)

        assert cancelled.subscribed is False
        assert cancelled.subscription_tier is None
        assert cancelled.subscription_end is None
        profile = await storage.get_profile(alice)
        assert profile.subscription_tier == SubscriptionTier.INDIVIDUAL

    async def test_never_subscribed(self, service):
        with pytest.raises(NotFoundError):
            await service.cancel(uuid4())


class TestGetStatus:
    """Tests for the combined status read."""

    async def test_unknown_user_gets_default(self, service):
        assert await service.get_status(uuid4()) == SubscriptionInfo.default()

    async def test_profile_tier_with_subscriber_dates(self, service, storage, alice):
        end = utc_now() + timedelta(days=30)
        await storage.upsert_profile(Profile(id=alice, subscription_tier=SubscriptionTier.ORGANIZATION))
        await storage.upsert_subscriber(SubscriptionRecord(
            email="alice@example.com",
            user_id=alice,
            subscribed=True,
            subscription_tier=SubscriptionTier.ORGANIZATION,
            subscription_end=end,
        ))

        info = await service.get_status(alice)

        assert info.tier == SubscriptionTier.ORGANIZATION
        assert info.subscribed is True
        assert info.subscription_end == end
        assert info.can_access("api-access") is True


class TestSubscriptionInfo:
    """Tests for feature gating."""

    def test_individual_is_locked_out(self):
        info = SubscriptionInfo.default()
        assert info.can_access("analytics") is False

    def test_premium_features(self):
        info = SubscriptionInfo(tier=SubscriptionTier.PREMIUM, subscribed=True)
        assert info.can_access("expense-sharing") is True
        assert info.can_access("multi-user") is False

    def test_unknown_feature_locked(self):
        info = SubscriptionInfo(tier=SubscriptionTier.ORGANIZATION)
        assert info.can_access("time-travel") is False

    def test_from_record_without_tier(self):
        record = SubscriptionRecord(email="a@example.com", user_id=uuid4(), subscribed=False)
        assert SubscriptionInfo.from_record(record).tier == SubscriptionTier.INDIVIDUAL
        assert SubscriptionInfo.from_record(None) == SubscriptionInfo.default()
