"""Subscriptions package."""

from vittas.subscriptions.service import (
    SubscriptionError,
    SubscriptionService,
    plan_price,
)
from vittas.subscriptions.reconciler import (
    ReconcilerPhase,
    ReconcilerState,
    SubscriptionReconciler,
)

__all__ = [
    "ReconcilerPhase",
    "ReconcilerState",
    "SubscriptionError",
    "SubscriptionReconciler",
    "SubscriptionService",
    "plan_price",
]
