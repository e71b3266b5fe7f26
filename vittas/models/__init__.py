"""
Data Models Package

This package contains all Pydantic models used by Vittas.
All rows flowing between the services and the store must conform to these schemas.
"""

from vittas.models.ledger import (
    CustomSplit,
    EqualSplit,
    ExpenseWithParticipants,
    Group,
    GroupInvitation,
    GroupMember,
    InvitationStatus,
    MemberBalance,
    MemberRole,
    ParticipantView,
    PercentageSplit,
    Profile,
    SharedExpense,
    SharedExpenseParticipant,
    SplitRequest,
    SplitStrategy,
    SplitType,
    ValidationIssue,
    ValidationResult,
)
from vittas.models.subscription import (
    FEATURE_TIERS,
    PLAN_PRICES,
    PaymentCapturedEvent,
    SubscriptionInfo,
    SubscriptionRecord,
    SubscriptionTier,
    utc_now,
)
from vittas.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "CustomSplit",
    "EqualSplit",
    "ExpenseWithParticipants",
    "Group",
    "GroupInvitation",
    "GroupMember",
    "InvitationStatus",
    "MemberBalance",
    "MemberRole",
    "ParticipantView",
    "PercentageSplit",
    "Profile",
    "SharedExpense",
    "SharedExpenseParticipant",
    "SplitRequest",
    "SplitStrategy",
    "SplitType",
    "ValidationIssue",
    "ValidationResult",
    # Subscription models
    "FEATURE_TIERS",
    "PLAN_PRICES",
    "PaymentCapturedEvent",
    "SubscriptionInfo",
    "SubscriptionRecord",
    "SubscriptionTier",
    "utc_now",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
