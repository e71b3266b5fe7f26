"""
Subscription Models

The subscribers row is written by the payment webhook (or a manual
reconciliation call) and only read by the application, apart from the
cancel transition.

DESIGN DECISION: When the tier cannot be determined we fall back to the
least-privileged tier. Feature gating only affects what is displayed,
never data integrity, so failing towards INDIVIDUAL is safe.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, ValidationError


def utc_now() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class SubscriptionTier(str, Enum):
    """Subscription tiers, stored by display name."""
    INDIVIDUAL = "Individual"
    PREMIUM = "Premium"
    ORGANIZATION = "Organization"


# Only paid tiers can be bought; INDIVIDUAL is what everybody starts on
PURCHASABLE_TIERS = frozenset({SubscriptionTier.PREMIUM, SubscriptionTier.ORGANIZATION})

# Checkout amounts in paise
PLAN_PRICES = {
    SubscriptionTier.PREMIUM: 74900,
    SubscriptionTier.ORGANIZATION: 224900,
}

SUBSCRIPTION_PERIOD_DAYS = 30

FEATURE_TIERS: dict[str, frozenset[SubscriptionTier]] = {
    "expense-sharing": PURCHASABLE_TIERS,
    "analytics": PURCHASABLE_TIERS,
    "export": PURCHASABLE_TIERS,
    "unlimited-storage": PURCHASABLE_TIERS,
    "multi-user": frozenset({SubscriptionTier.ORGANIZATION}),
    "api-access": frozenset({SubscriptionTier.ORGANIZATION}),
}


class SubscriptionRecord(BaseModel):
    """A row of the subscribers table."""

    email: str = Field(
        ...,
        min_length=3,
        max_length=320,
        description="Subscriber email (unique)"
    )
    user_id: UUID = Field(
        ...,
        description="Owning user"
    )
    subscribed: bool = False
    subscription_tier: Optional[SubscriptionTier] = None
    subscription_end: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=utc_now)


class SubscriptionInfo(BaseModel):
    """
    The authoritative subscription view handed to the rest of the app.

    Immutable so a settled value can be shared without copying.
    """
    model_config = ConfigDict(frozen=True)

    tier: SubscriptionTier = SubscriptionTier.INDIVIDUAL
    subscribed: bool = False
    subscription_end: Optional[datetime] = None

    @classmethod
    def default(cls) -> "SubscriptionInfo":
        """Least-privileged value used when nothing better is known."""
        return cls()

    @classmethod
    def from_record(cls, record: Optional[SubscriptionRecord]) -> "SubscriptionInfo":
        if record is None:
            return cls.default()
        return cls(
            tier=record.subscription_tier or SubscriptionTier.INDIVIDUAL,
            subscribed=record.subscribed,
            subscription_end=record.subscription_end,
        )

    def can_access(self, feature: str) -> bool:
        """Check whether the tier unlocks a feature. Unknown features are locked."""
        allowed = FEATURE_TIERS.get(feature)
        if allowed is None:
            return False
        return self.tier in allowed


class PaymentCapturedEvent(BaseModel):
    """
    The parts of a `payment.captured` webhook we act on.

    The order notes carry who paid and for which plan.
    """

    payment_id: str
    order_id: str
    user_id: UUID
    email: str
    plan_type: SubscriptionTier
    trial_days: int = Field(default=0, ge=0)

    @classmethod
    def from_webhook(cls, payload: dict[str, Any]) -> Optional["PaymentCapturedEvent"]:
        """
        Parse a webhook body.

        Returns None for events other than payment.captured.

        Raises:
            ValueError: If a payment.captured body is missing required notes
        """
        if payload.get("event") != "payment.captured":
            return None

        body = payload.get("payload") or {}
        payment = (body.get("payment") or {}).get("entity") or {}
        order = (body.get("order") or {}).get("entity") or {}
        # Order notes win; payment notes are a copy on most integrations
        notes = order.get("notes") or payment.get("notes") or {}

        try:
            return cls(
                payment_id=payment.get("id", ""),
                order_id=payment.get("order_id") or order.get("id", ""),
                user_id=notes.get("user_id"),
                email=notes.get("email"),
                plan_type=notes.get("plan_type"),
                trial_days=int(notes.get("trial_days") or 0),
            )
        except ValidationError as e:
            raise ValueError(f"Malformed payment.captured event: {e}") from e
