"""
Audit Models for Vittas

Every change to shared money or to a subscription is logged for audit purposes.
This provides:
1. Complete traceability of who split, paid, deleted or joined what
2. Debugging information when the webhook and the client disagree
3. Ability to reconstruct history

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from vittas.models.subscription import utc_now


class AuditEventType(str, Enum):
    """
    Types of events we audit.
    """
    # Shared expenses
    EXPENSE_CREATED = "expense_created"
    EXPENSE_DELETED = "expense_deleted"
    EXPENSE_SAVE_FAILED = "expense_save_failed"
    PARTICIPANT_PAID = "participant_paid"
    PARTICIPANT_UNPAID = "participant_unpaid"
    SPLIT_VALIDATION_FAILED = "split_validation_failed"

    # Groups
    GROUP_CREATED = "group_created"
    GROUP_DELETED = "group_deleted"
    MEMBER_REMOVED = "member_removed"
    INVITATION_CREATED = "invitation_created"
    INVITATION_ACCEPTED = "invitation_accepted"
    INVITATION_DECLINED = "invitation_declined"
    INVITATION_REJECTED = "invitation_rejected"

    # Subscriptions
    SUBSCRIPTION_REFRESHED = "subscription_refreshed"
    SUBSCRIPTION_DEGRADED = "subscription_degraded"
    SUBSCRIPTION_ACTIVATED = "subscription_activated"
    SUBSCRIPTION_CANCELLED = "subscription_cancelled"

    # System events
    SYSTEM_ERROR = "system_error"
    STORAGE_ERROR = "storage_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'expense', 'group', 'subscription')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Who did it
    actor_id: Optional[UUID] = Field(
        default=None,
        description="User who triggered the event, if any"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one checkout flow)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "actor_id": str(self.actor_id) if self.actor_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         actor_id, correlation_id, description, details_json, error_message]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            str(self.actor_id) if self.actor_id else "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
        ]


def _money(amount: Decimal) -> str:
    return f"{amount:.2f}"


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.expense_created(expense_id, payer_id, ...)
        event = AuditEventBuilder.invitation_accepted(invitation_id, ...)
    """

    @staticmethod
    def expense_created(
        expense_id: UUID,
        group_id: UUID,
        payer_id: UUID,
        title: str,
        total_amount: Decimal,
        splits: dict[UUID, Decimal],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_CREATED,
            entity_type="expense",
            entity_id=expense_id,
            actor_id=payer_id,
            correlation_id=correlation_id,
            description=f"Shared expense created: {title} - {_money(total_amount)}",
            details={
                "group_id": str(group_id),
                "total_amount": _money(total_amount),
                "splits": {str(k): _money(v) for k, v in splits.items()},
            },
        )

    @staticmethod
    def expense_save_failed(
        group_id: UUID,
        payer_id: UUID,
        title: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_SAVE_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="group",
            entity_id=group_id,
            actor_id=payer_id,
            correlation_id=correlation_id,
            description=f"Failed to save shared expense: {title}",
            error_message=error_message,
        )

    @staticmethod
    def expense_deleted(
        expense_id: UUID,
        deleted_by: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_DELETED,
            entity_type="expense",
            entity_id=expense_id,
            actor_id=deleted_by,
            correlation_id=correlation_id,
            description="Shared expense deleted with its participants",
        )

    @staticmethod
    def participant_paid(
        expense_id: UUID,
        user_id: UUID,
        marked_by: UUID,
        paid: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.PARTICIPANT_PAID
                if paid
                else AuditEventType.PARTICIPANT_UNPAID
            ),
            entity_type="expense",
            entity_id=expense_id,
            actor_id=marked_by,
            correlation_id=correlation_id,
            description=(
                f"Participant marked as {'paid' if paid else 'unpaid'}"
            ),
            details={"user_id": str(user_id)},
        )

    @staticmethod
    def split_validation_failed(
        split_type: str,
        issues: list[dict],
        payer_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SPLIT_VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="split",
            actor_id=payer_id,
            correlation_id=correlation_id,
            description=f"{split_type.capitalize()} split rejected with {len(issues)} issues",
            details={
                "split_type": split_type,
                "issues": issues,
            },
        )

    @staticmethod
    def group_created(
        group_id: UUID,
        name: str,
        created_by: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GROUP_CREATED,
            entity_type="group",
            entity_id=group_id,
            actor_id=created_by,
            correlation_id=correlation_id,
            description=f"Group created: {name}",
        )

    @staticmethod
    def group_deleted(
        group_id: UUID,
        deleted_by: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GROUP_DELETED,
            entity_type="group",
            entity_id=group_id,
            actor_id=deleted_by,
            correlation_id=correlation_id,
            description="Group deleted with its members, invitations and expenses",
        )

    @staticmethod
    def member_removed(
        group_id: UUID,
        user_id: UUID,
        removed_by: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MEMBER_REMOVED,
            entity_type="group",
            entity_id=group_id,
            actor_id=removed_by,
            correlation_id=correlation_id,
            description="Member removed from group",
            details={"user_id": str(user_id)},
        )

    @staticmethod
    def invitation_created(
        invitation_id: UUID,
        group_id: UUID,
        invited_by: UUID,
        invited_email: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVITATION_CREATED,
            entity_type="invitation",
            entity_id=invitation_id,
            actor_id=invited_by,
            correlation_id=correlation_id,
            description="Group invitation created",
            details={
                "group_id": str(group_id),
                "invited_email": invited_email,
            },
        )

    @staticmethod
    def invitation_answered(
        invitation_id: UUID,
        user_id: UUID,
        accepted: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.INVITATION_ACCEPTED
                if accepted
                else AuditEventType.INVITATION_DECLINED
            ),
            entity_type="invitation",
            entity_id=invitation_id,
            actor_id=user_id,
            correlation_id=correlation_id,
            description=f"Invitation {'accepted' if accepted else 'declined'}",
        )

    @staticmethod
    def invitation_rejected(
        invitation_id: UUID,
        user_id: UUID,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVITATION_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="invitation",
            entity_id=invitation_id,
            actor_id=user_id,
            correlation_id=correlation_id,
            description=f"Invitation could not be used: {reason}",
            details={"reason": reason},
        )

    @staticmethod
    def subscription_refreshed(
        user_id: UUID,
        tier: str,
        subscribed: bool,
        source: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SUBSCRIPTION_REFRESHED,
            severity=AuditSeverity.DEBUG,
            entity_type="subscription",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Subscription settled on {tier} via {source}",
            details={
                "tier": tier,
                "subscribed": subscribed,
                "source": source,
            },
        )

    @staticmethod
    def subscription_degraded(
        user_id: UUID,
        attempts: int,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SUBSCRIPTION_DEGRADED,
            severity=AuditSeverity.WARNING,
            entity_type="subscription",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Subscription status unavailable after {attempts} attempts",
            error_message=error_message,
            details={"attempts": attempts},
        )

    @staticmethod
    def subscription_activated(
        user_id: UUID,
        tier: str,
        subscription_end: datetime,
        payment_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SUBSCRIPTION_ACTIVATED,
            entity_type="subscription",
            entity_id=user_id,
            actor_id=user_id,
            correlation_id=correlation_id,
            description=f"Subscription activated: {tier}",
            details={
                "tier": tier,
                "subscription_end": subscription_end.isoformat(),
                "payment_id": payment_id,
            },
        )

    @staticmethod
    def subscription_cancelled(
        user_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SUBSCRIPTION_CANCELLED,
            entity_type="subscription",
            entity_id=user_id,
            actor_id=user_id,
            correlation_id=correlation_id,
            description="Subscription cancelled",
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def storage_error(
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORAGE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"Storage error during {operation}",
            error_message=error_message,
            details={
                "operation": operation,
            },
            correlation_id=correlation_id,
        )
