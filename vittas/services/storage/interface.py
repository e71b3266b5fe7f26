"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep business logic decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
Every multi-row write the ledger needs is ONE method here, so a backend
can make it all-or-nothing. Services never compose atomic writes out of
several calls.
"""

from abc import ABC, abstractmethod
from typing import Iterable, Optional
from uuid import UUID

from vittas.models.audit import AuditEvent
from vittas.models.ledger import (
    Group,
    GroupInvitation,
    GroupMember,
    Profile,
    SharedExpense,
    SharedExpenseParticipant,
)
from vittas.models.subscription import SubscriptionRecord


class LedgerStorageInterface(ABC):
    """
    Abstract interface for groups, invitations and shared expenses.

    Any storage implementation (Google Sheets, PostgreSQL, etc.)
    must implement these methods and honour:
    - one membership per (group, user)
    - participants only for members of the expense's group
    - atomicity of every method that writes more than one row
    """

    # -- groups --------------------------------------------------------------

    @abstractmethod
    async def create_group_with_admin(
        self,
        group: Group,
        admin: GroupMember,
    ) -> None:
        """
        Insert a group and its first (admin) membership atomically.

        Raises:
            DuplicateError: If the group id already exists
        """
        pass

    @abstractmethod
    async def get_group(self, group_id: UUID) -> Optional[Group]:
        """Retrieve a group by its ID, None if missing."""
        pass

    @abstractmethod
    async def list_groups_for_user(self, user_id: UUID) -> list[Group]:
        """Groups the user is a member of, newest first."""
        pass

    @abstractmethod
    async def delete_group_cascade(self, group_id: UUID) -> None:
        """
        Delete a group with its members, invitations, expenses and
        participants atomically.

        Raises:
            NotFoundError: If the group doesn't exist
        """
        pass

    # -- members -------------------------------------------------------------

    @abstractmethod
    async def list_members(self, group_id: UUID) -> list[GroupMember]:
        """Memberships of a group in join order."""
        pass

    @abstractmethod
    async def get_member(
        self,
        group_id: UUID,
        user_id: UUID,
    ) -> Optional[GroupMember]:
        """A user's membership in a group, None if not a member."""
        pass

    @abstractmethod
    async def remove_member(self, group_id: UUID, user_id: UUID) -> None:
        """
        Delete a membership.

        Raises:
            NotFoundError: If the user is not a member
        """
        pass

    # -- invitations ---------------------------------------------------------

    @abstractmethod
    async def create_invitation(self, invitation: GroupInvitation) -> None:
        """
        Insert an invitation.

        Raises:
            ReferentialIntegrityError: If the group doesn't exist
        """
        pass

    @abstractmethod
    async def get_invitation(
        self,
        invitation_id: UUID,
    ) -> Optional[GroupInvitation]:
        pass

    @abstractmethod
    async def list_invitations_for_invitee(
        self,
        user_id: Optional[UUID],
        email: Optional[str],
    ) -> list[GroupInvitation]:
        """
        Invitations addressed to a user id or an email, any status.

        Email matching is case-insensitive.
        """
        pass

    @abstractmethod
    async def update_invitation(self, invitation: GroupInvitation) -> None:
        """
        Replace an invitation row.

        Raises:
            NotFoundError: If the invitation doesn't exist
        """
        pass

    @abstractmethod
    async def accept_invitation_atomic(
        self,
        invitation: GroupInvitation,
        member: GroupMember,
    ) -> None:
        """
        Mark an invitation accepted and insert the new membership in one write.

        Raises:
            NotFoundError: If the invitation doesn't exist
            ConflictError: If the invitation is no longer pending
            DuplicateError: If the user is already a member
        """
        pass

    # -- shared expenses -----------------------------------------------------

    @abstractmethod
    async def create_expense_with_participants(
        self,
        expense: SharedExpense,
        participants: list[SharedExpenseParticipant],
    ) -> None:
        """
        Insert an expense and all of its participants atomically.

        A failure leaves neither the expense nor any participant visible.

        Raises:
            ReferentialIntegrityError: If the group doesn't exist or a
                participant is not a member of it
            DuplicateError: If the expense id already exists
        """
        pass

    @abstractmethod
    async def get_expense(self, expense_id: UUID) -> Optional[SharedExpense]:
        pass

    @abstractmethod
    async def list_expenses_for_group(
        self,
        group_id: UUID,
    ) -> list[SharedExpense]:
        """Expenses of a group, newest first."""
        pass

    @abstractmethod
    async def list_participants(
        self,
        expense_id: UUID,
    ) -> list[SharedExpenseParticipant]:
        """Participants of an expense in insertion order."""
        pass

    @abstractmethod
    async def update_participant(
        self,
        participant: SharedExpenseParticipant,
    ) -> None:
        """
        Replace a participant row (used only to flip paid / paid_at).

        Raises:
            NotFoundError: If the participant doesn't exist
        """
        pass

    @abstractmethod
    async def delete_expense_cascade(self, expense_id: UUID) -> None:
        """
        Delete an expense and its participants atomically.

        Raises:
            NotFoundError: If the expense doesn't exist
        """
        pass

    # -- profiles ------------------------------------------------------------

    @abstractmethod
    async def get_profiles(
        self,
        user_ids: Iterable[UUID],
    ) -> dict[UUID, Profile]:
        """Profiles by id. Unknown ids are simply absent from the result."""
        pass


class SubscriptionStorageInterface(ABC):
    """
    Abstract interface for the subscribers and profiles tables.
    """

    @abstractmethod
    async def get_subscriber(
        self,
        user_id: UUID,
    ) -> Optional[SubscriptionRecord]:
        """
        The subscriber row for a user, None when they never subscribed.

        Raises:
            StorageError: If the read fails
        """
        pass

    @abstractmethod
    async def upsert_subscriber(self, record: SubscriptionRecord) -> None:
        """Insert or replace the subscriber row, keyed by email."""
        pass

    @abstractmethod
    async def get_profile(self, user_id: UUID) -> Optional[Profile]:
        pass

    @abstractmethod
    async def upsert_profile(self, profile: Profile) -> None:
        """Insert or replace a profile, keyed by id."""
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Args:
            event: The audit event to log

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one checkout flow).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity.

        Args:
            entity_type: Type of entity (e.g., 'expense', 'group')
            entity_id: The entity's ID

        Returns:
            List of events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class ReferentialIntegrityError(StorageError):
    """A row points at a group or member that doesn't exist."""
    pass


class ConflictError(StorageError):
    """The row changed since it was read."""
    pass
