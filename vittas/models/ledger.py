"""
Core Data Models for the Shared Expense Ledger

These models define the strict schemas for every row we read or write.
They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage and logging
4. Replace loosely typed rows with one tagged record per entity

DESIGN DECISION: Money is always Decimal with two decimal places.
Binary floating point never carries an amount, so splits cannot drift
by a cent between calculation and storage.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from vittas.models.subscription import SubscriptionTier, utc_now


CENT = Decimal("0.01")
HUNDRED = Decimal("100")
# Largest amount a single expense may carry
MAX_AMOUNT = Decimal("999999999999.99")


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class MemberRole(str, Enum):
    """Role of a user inside a group."""
    ADMIN = "admin"
    MEMBER = "member"


class InvitationStatus(str, Enum):
    """
    Invitation lifecycle.

    CRITICAL: PENDING is the only non-terminal status.
    """
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class SplitType(str, Enum):
    """How a shared expense is divided."""
    EQUAL = "equal"
    PERCENTAGE = "percentage"
    CUSTOM = "custom"


# =============================================================================
# PEOPLE AND GROUPS
# =============================================================================

class Profile(BaseModel):
    """Public profile of a user, used for display names and tier lookup."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID
    full_name: Optional[str] = Field(default=None, max_length=200)
    email: Optional[str] = Field(default=None, max_length=320)
    subscription_tier: SubscriptionTier = SubscriptionTier.INDIVIDUAL

    @property
    def display_name(self) -> str:
        return self.full_name or self.email or str(self.id)


class Group(BaseModel):
    """A named collection of users who share expenses."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Group name"
    )
    description: Optional[str] = Field(default=None, max_length=500)
    created_by: UUID = Field(
        ...,
        description="Owning user"
    )
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class GroupMember(BaseModel):
    """Membership of a user in a group. At most one per (group, user)."""

    id: UUID = Field(default_factory=uuid4)
    group_id: UUID
    user_id: UUID
    role: MemberRole = MemberRole.MEMBER
    joined_at: datetime = Field(default_factory=utc_now)


class GroupInvitation(BaseModel):
    """
    A pending offer to join a group.

    An invitation is usable only while PENDING and not expired.
    Expiry wins over status: a PENDING invitation past expires_at is dead.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    group_id: UUID
    invited_by: UUID
    invited_email: Optional[str] = Field(default=None, max_length=320)
    invited_user_id: Optional[UUID] = None
    status: InvitationStatus = InvitationStatus.PENDING
    created_at: datetime = Field(default_factory=utc_now)
    expires_at: datetime

    @field_validator('created_at', 'expires_at')
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        """Naive timestamps from the store are UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @model_validator(mode='after')
    def validate_dates(self) -> 'GroupInvitation':
        if self.expires_at < self.created_at:
            raise ValueError("Invitation cannot expire before it is created")
        return self

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utc_now()) > self.expires_at

    def is_open(self, now: Optional[datetime] = None) -> bool:
        """Can this invitation still be accepted or declined?"""
        return self.status == InvitationStatus.PENDING and not self.is_expired(now)


# =============================================================================
# SHARED EXPENSES
# =============================================================================

class SharedExpense(BaseModel):
    """
    A single shared cost event, paid by its creator.

    INVARIANT: total_amount equals the sum of its participants' amount_owed.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    title: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="What the money was spent on"
    )
    description: Optional[str] = Field(default=None, max_length=1000)
    total_amount: Annotated[
        Decimal,
        Field(gt=0, le=MAX_AMOUNT, decimal_places=2, description="Total amount paid")
    ]
    created_by: UUID = Field(
        ...,
        description="The payer"
    )
    group_id: UUID
    created_at: datetime = Field(default_factory=utc_now)


class SharedExpenseParticipant(BaseModel):
    """
    One member's share of a SharedExpense.

    Only the paid flag and paid_at ever change after creation.
    """

    id: UUID = Field(default_factory=uuid4)
    shared_expense_id: UUID
    user_id: UUID
    amount_owed: Annotated[
        Decimal,
        Field(decimal_places=2, description="Share of the total")
    ]
    paid: bool = False
    paid_at: Optional[datetime] = None

    @model_validator(mode='after')
    def validate_paid_at(self) -> 'SharedExpenseParticipant':
        if self.paid_at is not None and not self.paid:
            raise ValueError("paid_at can only be set on a paid participant")
        return self


# =============================================================================
# SPLIT STRATEGIES - tagged union, discriminated by `kind`
# =============================================================================

class EqualSplit(BaseModel):
    """Everyone, payer included, owes the same share."""
    kind: Literal["equal"] = "equal"

    @property
    def split_type(self) -> SplitType:
        return SplitType.EQUAL


class PercentageSplit(BaseModel):
    """Each member owes an explicit percent; the payer owes the rest."""
    kind: Literal["percentage"] = "percentage"
    percentages: dict[UUID, Decimal] = Field(default_factory=dict)

    @property
    def split_type(self) -> SplitType:
        return SplitType.PERCENTAGE


class CustomSplit(BaseModel):
    """Each member owes an explicit amount; the payer owes the rest."""
    kind: Literal["custom"] = "custom"
    amounts: dict[UUID, Decimal] = Field(default_factory=dict)

    @property
    def split_type(self) -> SplitType:
        return SplitType.CUSTOM


SplitStrategy = Annotated[
    Union[EqualSplit, PercentageSplit, CustomSplit],
    Field(discriminator="kind"),
]


class SplitRequest(BaseModel):
    """
    Everything the split calculator needs.

    members excludes the payer and keeps the order the user picked them in.
    """

    total_amount: Decimal
    payer_id: UUID
    members: list[UUID] = Field(default_factory=list)
    strategy: SplitStrategy = Field(default_factory=EqualSplit)


# =============================================================================
# READ MODELS
# =============================================================================

class ParticipantView(BaseModel):
    """A participant row joined with the participant's display name."""

    participant: SharedExpenseParticipant
    display_name: str

    @property
    def status(self) -> str:
        return "paid" if self.participant.paid else "owes"


class ExpenseWithParticipants(BaseModel):
    """A shared expense as shown in a group's expense list."""

    expense: SharedExpense
    created_by_name: str
    participants: list[ParticipantView] = Field(default_factory=list)

    @property
    def participants_total(self) -> Decimal:
        return sum(
            (view.participant.amount_owed for view in self.participants),
            Decimal("0"),
        )

    @property
    def outstanding_amount(self) -> Decimal:
        """What others still owe the payer on this expense."""
        return sum(
            (
                view.participant.amount_owed
                for view in self.participants
                if not view.participant.paid
                and view.participant.user_id != self.expense.created_by
            ),
            Decimal("0"),
        )


class MemberBalance(BaseModel):
    """
    Per-member position inside a group.

    owes: unpaid shares on expenses somebody else paid for
    owed: unpaid shares others have on expenses this member paid for
    """

    user_id: UUID
    display_name: str
    owes: Decimal = Decimal("0.00")
    owed: Decimal = Decimal("0.00")

    @property
    def net(self) -> Decimal:
        """Positive when the group owes this member money."""
        return self.owed - self.owes


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'exceeds_total')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested fix if available"
    )


class ValidationResult(BaseModel):
    """
    Result of the two-stage split validation.

    Stage 1: Shape validation (amount format, member list, map keys)
    Stage 2: Bound validation (percent and amount sums)
    """

    split_type: SplitType
    validated_at: datetime = Field(default_factory=utc_now)

    shape_valid: bool = Field(
        ...,
        description="Did shape validation pass?"
    )
    bounds_valid: bool = Field(
        ...,
        description="Did bound validation pass?"
    )
    is_valid: bool = Field(
        ...,
        description="Overall validation result"
    )

    issues: list[ValidationIssue] = Field(
        default_factory=list,
        description="All validation issues found"
    )

    # Warnings don't block but should be shown
    warnings: list[str] = Field(
        default_factory=list,
        description="Non-blocking warnings"
    )

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")
