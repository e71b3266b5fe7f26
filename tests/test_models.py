"""
Tests for Vittas models

Test strategy:
1. Unit tests for individual components (models, validators)
2. Integration tests for flows (against in-memory storage)
3. No real API calls in tests (use fakes and mocks)
"""

import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from pydantic import TypeAdapter

from vittas.models.ledger import (
    CustomSplit,
    EqualSplit,
    Group,
    GroupInvitation,
    InvitationStatus,
    MemberBalance,
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
from vittas.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)


class TestLedgerModels:
    """Tests for group and expense Pydantic models."""

    def test_group_strips_whitespace(self):
        """Test that whitespace is stripped from the group name."""
        group = Group(name="  Goa trip  ", created_by=uuid4())
        assert group.name == "Goa trip"

    def test_group_rejects_empty_name(self):
        """Test that a group needs a name."""
        with pytest.raises(ValueError):
            Group(name="", created_by=uuid4())

    def test_shared_expense_creation(self):
        """Test SharedExpense model creation."""
        expense = SharedExpense(
            title="Dinner",
            total_amount=Decimal("1250.50"),
            created_by=uuid4(),
            group_id=uuid4(),
        )
        assert expense.total_amount == Decimal("1250.50")
        assert expense.description is None

    def test_shared_expense_rejects_non_positive_total(self):
        """Test that the total must be greater than zero."""
        with pytest.raises(ValueError):
            SharedExpense(
                title="Nothing",
                total_amount=Decimal("0"),
                created_by=uuid4(),
                group_id=uuid4(),
            )

    def test_shared_expense_rejects_sub_cent_total(self):
        """Test that totals carry at most two decimal places."""
        with pytest.raises(ValueError):
            SharedExpense(
                title="Dinner",
                total_amount=Decimal("10.005"),
                created_by=uuid4(),
                group_id=uuid4(),
            )

    def test_participant_paid_at_requires_paid(self):
        """Test that paid_at is only allowed on a paid participant."""
        with pytest.raises(ValueError, match="paid_at can only be set"):
            SharedExpenseParticipant(
                shared_expense_id=uuid4(),
                user_id=uuid4(),
                amount_owed=Decimal("10.00"),
                paid=False,
                paid_at=datetime.now(timezone.utc),
            )

    def test_profile_display_name(self):
        """Test display name falls back from full name to email to id."""
        user_id = uuid4()
        assert Profile(id=user_id, full_name="Dev", email="d@example.com").display_name == "Dev"
        assert Profile(id=user_id, email="d@example.com").display_name == "d@example.com"
        assert Profile(id=user_id).display_name == str(user_id)

    def test_member_balance_net(self):
        """Test net is what the member is owed minus what they owe."""
        balance = MemberBalance(
            user_id=uuid4(),
            display_name="Dev",
            owes=Decimal("12.50"),
            owed=Decimal("40.00"),
        )
        assert balance.net == Decimal("27.50")


class TestGroupInvitation:
    """Tests for invitation expiry and status."""

    def _invitation(self, **kwargs) -> GroupInvitation:
        created = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
        fields = {
            "group_id": uuid4(),
            "invited_by": uuid4(),
            "created_at": created,
            "expires_at": created + timedelta(days=7),
        }
        fields.update(kwargs)
        return GroupInvitation(**fields)

    def test_open_before_expiry(self):
        """Test a pending invitation is open until it expires."""
        invitation = self._invitation()
        assert invitation.is_open(datetime(2024, 6, 8, 11, 59, tzinfo=timezone.utc))
        assert not invitation.is_open(datetime(2024, 6, 8, 12, 1, tzinfo=timezone.utc))

    def test_expiry_wins_over_pending_status(self):
        """Test a pending invitation past expires_at is expired."""
        invitation = self._invitation()
        later = datetime(2024, 7, 1, tzinfo=timezone.utc)
        assert invitation.status == InvitationStatus.PENDING
        assert invitation.is_expired(later)
        assert not invitation.is_open(later)

    def test_answered_invitation_is_closed(self):
        """Test that accepted invitations are no longer open."""
        invitation = self._invitation(status=InvitationStatus.ACCEPTED)
        assert not invitation.is_open(datetime(2024, 6, 2, tzinfo=timezone.utc))

    def test_naive_timestamps_are_utc(self):
        """Test naive timestamps read from storage are treated as UTC."""
        invitation = self._invitation(
            created_at=datetime(2024, 6, 1),
            expires_at=datetime(2024, 6, 8),
        )
        assert invitation.expires_at.tzinfo == timezone.utc

    def test_cannot_expire_before_creation(self):
        """Test expires_at must not precede created_at."""
        with pytest.raises(ValueError, match="cannot expire before"):
            self._invitation(expires_at=datetime(2024, 5, 1, tzinfo=timezone.utc))


class TestSplitStrategies:
    """Tests for the tagged split strategy union."""

    def test_discriminated_by_kind(self):
        """Test strategies parse from their `kind` tag."""
        adapter = TypeAdapter(SplitStrategy)
        member = uuid4()

        assert isinstance(adapter.validate_python({"kind": "equal"}), EqualSplit)
        pct = adapter.validate_python({"kind": "percentage", "percentages": {str(member): "25"}})
        assert isinstance(pct, PercentageSplit)
        assert pct.percentages[member] == Decimal("25")

    def test_unknown_kind_rejected(self):
        """Test an unknown tag is a validation error."""
        with pytest.raises(ValueError):
            TypeAdapter(SplitStrategy).validate_python({"kind": "shares"})

    def test_split_types(self):
        """Test each strategy reports its split type."""
        assert EqualSplit().split_type == SplitType.EQUAL
        assert PercentageSplit().split_type == SplitType.PERCENTAGE
        assert CustomSplit().split_type == SplitType.CUSTOM

    def test_split_request_defaults_to_equal(self):
        """Test the default strategy is an equal split."""
        request = SplitRequest(total_amount=Decimal("10"), payer_id=uuid4())
        assert isinstance(request.strategy, EqualSplit)
        assert request.members == []


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.GROUP_CREATED,
            description="Test group created",
        )
        assert event.event_type == AuditEventType.GROUP_CREATED
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEvent(
            event_type=AuditEventType.EXPENSE_CREATED,
            description="Expense saved successfully",
            details={"title": "Dinner", "amount": "1000.00"},
        )
        log_dict = event.to_log_dict()
        assert "event_id" in log_dict
        assert log_dict["event_type"] == "expense_created"
        assert log_dict["details"]["title"] == "Dinner"

    def test_audit_event_to_sheets_row(self):
        """Test conversion to sheets row."""
        actor = uuid4()
        event = AuditEvent(
            event_type=AuditEventType.PARTICIPANT_PAID,
            description="Participant marked as paid",
            actor_id=actor,
            details={"user_id": "x"},
        )
        row = event.to_sheets_row()
        assert len(row) == 11  # Expected number of columns
        assert row[2] == "participant_paid"  # event_type
        assert row[6] == str(actor)  # actor_id
        assert json.loads(row[9]) == {"user_id": "x"}
        assert row[10] == ""  # no error

    def test_audit_event_builder_expense_created(self):
        """Test AuditEventBuilder.expense_created."""
        correlation_id = uuid4()
        expense_id = uuid4()
        payer = uuid4()

        event = AuditEventBuilder.expense_created(
            expense_id=expense_id,
            group_id=uuid4(),
            payer_id=payer,
            title="Dinner",
            total_amount=Decimal("100.00"),
            splits={payer: Decimal("100.00")},
            correlation_id=correlation_id,
        )

        assert event.event_type == AuditEventType.EXPENSE_CREATED
        assert event.entity_id == expense_id
        assert event.actor_id == payer
        assert event.correlation_id == correlation_id
        assert event.details["splits"] == {str(payer): "100.00"}

    def test_audit_event_builder_invitation_answered(self):
        """Test AuditEventBuilder.invitation_answered."""
        invitation_id = uuid4()

        accepted = AuditEventBuilder.invitation_answered(
            invitation_id=invitation_id, user_id=uuid4(), accepted=True,
        )
        declined = AuditEventBuilder.invitation_answered(
            invitation_id=invitation_id, user_id=uuid4(), accepted=False,
        )

        assert accepted.event_type == AuditEventType.INVITATION_ACCEPTED
        assert declined.event_type == AuditEventType.INVITATION_DECLINED
        assert accepted.entity_id == invitation_id

    def test_audit_event_builder_subscription_degraded(self):
        """Test degraded reads are logged as warnings or worse."""
        event = AuditEventBuilder.subscription_degraded(
            user_id=uuid4(), attempts=3, error_message="timeout",
        )
        assert event.severity != AuditSeverity.INFO
        assert event.error_message == "timeout"


class TestValidationResult:
    """Tests for ValidationResult model."""

    def test_validation_result_has_errors(self):
        """Test has_errors property."""
        result = ValidationResult(
            split_type=SplitType.CUSTOM,
            shape_valid=True,
            bounds_valid=False,
            is_valid=False,
            issues=[
                ValidationIssue(
                    field="amounts",
                    issue_type="exceeds_total",
                    message="Amounts exceed the total",
                    severity="error",
                ),
            ],
        )
        assert result.has_errors is True
        assert result.error_count == 1

    def test_validation_result_warnings_only(self):
        """Test that warnings don't count as errors."""
        result = ValidationResult(
            split_type=SplitType.EQUAL,
            shape_valid=True,
            bounds_valid=True,
            is_valid=True,
            issues=[
                ValidationIssue(
                    field="members",
                    issue_type="empty",
                    message="No members selected",
                    severity="warning",
                ),
            ],
        )
        assert result.has_errors is False
        assert result.error_count == 0

    def test_validation_issue_severity_pattern(self):
        """Test unknown severities are rejected."""
        with pytest.raises(ValueError):
            ValidationIssue(field="x", issue_type="y", message="z", severity="fatal")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
