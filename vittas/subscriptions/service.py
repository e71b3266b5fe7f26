"""
Subscription Service

The server-side half of subscriptions: the payment webhook's effect on the
subscribers row, manual activation after a verified payment, cancellation,
and the status read the reconciler falls back to.

The profile's tier and the subscriber row are written together; the
profile is what feature gating reads, the subscriber row is what billing
reads.
"""

from datetime import timedelta
from typing import Any, Optional, Union
from uuid import UUID

import structlog

from vittas.audit import AuditLogger
from vittas.models.audit import AuditEventBuilder
from vittas.models.ledger import Profile
from vittas.models.subscription import (
    PLAN_PRICES,
    PURCHASABLE_TIERS,
    SUBSCRIPTION_PERIOD_DAYS,
    PaymentCapturedEvent,
    SubscriptionInfo,
    SubscriptionRecord,
    SubscriptionTier,
    utc_now,
)
from vittas.services.storage import NotFoundError, SubscriptionStorageInterface


logger = structlog.get_logger(__name__)


class SubscriptionError(Exception):
    """Invalid tier, plan or webhook payload."""
    pass


def plan_price(tier: Union[SubscriptionTier, str]) -> int:
    """Checkout amount for a tier in the smallest currency unit."""
    try:
        return PLAN_PRICES[SubscriptionTier(tier)]
    except (KeyError, ValueError):
        raise SubscriptionError(f"Invalid plan type: {tier}")


class SubscriptionService:
    """Reads and writes the subscribers and profiles tables."""

    def __init__(
        self,
        storage: SubscriptionStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._audit_logger = audit_logger or AuditLogger()

    async def get_status(self, user_id: UUID) -> SubscriptionInfo:
        """
        Tier from the profile, subscribed and end date from the subscriber row.

        Raises:
            StorageError: If either read fails
        """
        profile = await self._storage.get_profile(user_id)
        subscriber = await self._storage.get_subscriber(user_id)

        return SubscriptionInfo(
            tier=profile.subscription_tier if profile else SubscriptionTier.INDIVIDUAL,
            subscribed=subscriber.subscribed if subscriber else False,
            subscription_end=subscriber.subscription_end if subscriber else None,
        )

    async def activate(
        self,
        user_id: UUID,
        email: str,
        tier: Union[SubscriptionTier, str],
        trial_days: int = 0,
        payment_id: Optional[str] = None,
    ) -> SubscriptionRecord:
        """
        Mark a user subscribed for one period.

        The period starts after any trial days and runs for 30 days.

        Raises:
            SubscriptionError: If the tier can't be bought or trial_days < 0
        """
        try:
            tier = SubscriptionTier(tier)
        except ValueError:
            raise SubscriptionError(f"Invalid plan type: {tier}")
        if tier not in PURCHASABLE_TIERS:
            raise SubscriptionError(f"Invalid plan type: {tier.value}")
        if trial_days < 0:
            raise SubscriptionError("trial_days cannot be negative")

        now = utc_now()
        start = now + timedelta(days=trial_days)
        record = SubscriptionRecord(
            email=email,
            user_id=user_id,
            subscribed=True,
            subscription_tier=tier,
            subscription_end=start + timedelta(days=SUBSCRIPTION_PERIOD_DAYS),
            updated_at=now,
        )
        await self._storage.upsert_subscriber(record)
        await self._set_profile_tier(user_id, tier, email=email)

        await self._audit_logger.log(AuditEventBuilder.subscription_activated(
            user_id=user_id,
            tier=tier.value,
            subscription_end=record.subscription_end,
            payment_id=payment_id,
        ))
        return record

    async def handle_webhook_event(
        self,
        payload: dict[str, Any],
    ) -> Optional[SubscriptionRecord]:
        """
        Apply a payment webhook body.

        Returns the activated record, or None for events we ignore.
        """
        try:
            event = PaymentCapturedEvent.from_webhook(payload)
        except ValueError as e:
            await self._audit_logger.log_error(
                error_type="webhook_payload",
                error_message=str(e),
                details={"webhook_event": payload.get("event")},
            )
            raise SubscriptionError(str(e)) from e

        if event is None:
            logger.info("webhook_event_ignored", webhook_event=payload.get("event"))
            return None

        return await self.activate(
            user_id=event.user_id,
            email=event.email,
            tier=event.plan_type,
            trial_days=event.trial_days,
            payment_id=event.payment_id,
        )

    async def cancel(self, user_id: UUID) -> SubscriptionRecord:
        """
        Unsubscribe a user and drop them back to Individual.

        Raises:
            NotFoundError: If the user never subscribed
        """
        subscriber = await self._storage.get_subscriber(user_id)
        if subscriber is None:
            raise NotFoundError(f"No subscription for user {user_id}")

        cancelled = subscriber.model_copy(update={
            "subscribed": False,
            "subscription_tier": None,
            "subscription_end": None,
            "updated_at": utc_now(),
        })
        await self._storage.upsert_subscriber(cancelled)
        await self._set_profile_tier(user_id, SubscriptionTier.INDIVIDUAL)

        await self._audit_logger.log(AuditEventBuilder.subscription_cancelled(user_id=user_id))
        return cancelled

    async def _set_profile_tier(
        self,
        user_id: UUID,
        tier: SubscriptionTier,
        email: Optional[str] = None,
    ) -> None:
        profile = await self._storage.get_profile(user_id)
        if profile is None:
            profile = Profile(id=user_id, email=email)
        await self._storage.upsert_profile(
            profile.model_copy(update={"subscription_tier": tier})
        )
