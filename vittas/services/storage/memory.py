"""
In-Memory Storage Implementation

Used by the test suite and for local demos without Google credentials.

Every public method takes the same lock, and multi-row writes check all of
their preconditions before touching any table, so a failed write changes
nothing. Rows are copied on the way in and out; callers never hold a
reference into the store.
"""

import asyncio
from typing import Iterable, Optional
from uuid import UUID

from vittas.models.audit import AuditEvent
from vittas.models.ledger import (
    Group,
    GroupInvitation,
    GroupMember,
    InvitationStatus,
    Profile,
    SharedExpense,
    SharedExpenseParticipant,
)
from vittas.models.subscription import SubscriptionRecord
from vittas.services.storage.interface import (
    AuditStorageInterface,
    ConflictError,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
    ReferentialIntegrityError,
    SubscriptionStorageInterface,
)


class InMemoryStorage(LedgerStorageInterface, SubscriptionStorageInterface):
    """
    Dict-backed implementation of the ledger and subscription tables.

    Simulates the relational store's constraints: unique (group, user)
    memberships, participants only for group members, unique subscriber
    emails.
    """

    def __init__(self):
        self._lock = asyncio.Lock()
        self._groups: dict[UUID, Group] = {}
        self._members: dict[UUID, GroupMember] = {}
        self._invitations: dict[UUID, GroupInvitation] = {}
        self._expenses: dict[UUID, SharedExpense] = {}
        self._participants: dict[UUID, SharedExpenseParticipant] = {}
        self._subscribers: dict[str, SubscriptionRecord] = {}
        self._profiles: dict[UUID, Profile] = {}

    # -- helpers (call with the lock held) -----------------------------------

    def _find_member(self, group_id: UUID, user_id: UUID) -> Optional[GroupMember]:
        for member in self._members.values():
            if member.group_id == group_id and member.user_id == user_id:
                return member
        return None

    def _check_pending(self, invitation_id: UUID) -> None:
        stored = self._invitations.get(invitation_id)
        if stored is None:
            raise NotFoundError(f"Invitation not found: {invitation_id}")
        if stored.status != InvitationStatus.PENDING:
            raise ConflictError(
                f"Invitation {invitation_id} is already {stored.status.value}"
            )

    def _participants_of(self, expense_id: UUID) -> list[SharedExpenseParticipant]:
        return [
            p for p in self._participants.values()
            if p.shared_expense_id == expense_id
        ]

    # -- groups --------------------------------------------------------------

    async def create_group_with_admin(self, group: Group, admin: GroupMember) -> None:
        async with self._lock:
            if group.id in self._groups:
                raise DuplicateError(f"Group already exists: {group.id}")
            if admin.group_id != group.id:
                raise ReferentialIntegrityError("Admin membership points at another group")
            self._groups[group.id] = group.model_copy()
            self._members[admin.id] = admin.model_copy()

    async def get_group(self, group_id: UUID) -> Optional[Group]:
        async with self._lock:
            group = self._groups.get(group_id)
            return group.model_copy() if group else None

    async def list_groups_for_user(self, user_id: UUID) -> list[Group]:
        async with self._lock:
            group_ids = {m.group_id for m in self._members.values() if m.user_id == user_id}
            groups = [self._groups[gid].model_copy() for gid in group_ids if gid in self._groups]
        groups.sort(key=lambda g: g.created_at, reverse=True)
        return groups

    async def delete_group_cascade(self, group_id: UUID) -> None:
        async with self._lock:
            if group_id not in self._groups:
                raise NotFoundError(f"Group not found: {group_id}")

            expense_ids = {
                e.id for e in self._expenses.values() if e.group_id == group_id
            }
            self._participants = {
                pid: p for pid, p in self._participants.items()
                if p.shared_expense_id not in expense_ids
            }
            self._expenses = {
                eid: e for eid, e in self._expenses.items() if eid not in expense_ids
            }
            self._invitations = {
                iid: i for iid, i in self._invitations.items() if i.group_id != group_id
            }
            self._members = {
                mid: m for mid, m in self._members.items() if m.group_id != group_id
            }
            del self._groups[group_id]

    # -- members -------------------------------------------------------------

    async def list_members(self, group_id: UUID) -> list[GroupMember]:
        async with self._lock:
            members = [
                m.model_copy() for m in self._members.values() if m.group_id == group_id
            ]
        members.sort(key=lambda m: m.joined_at)
        return members

    async def get_member(self, group_id: UUID, user_id: UUID) -> Optional[GroupMember]:
        async with self._lock:
            member = self._find_member(group_id, user_id)
            return member.model_copy() if member else None

    async def remove_member(self, group_id: UUID, user_id: UUID) -> None:
        async with self._lock:
            member = self._find_member(group_id, user_id)
            if member is None:
                raise NotFoundError(f"User {user_id} is not a member of group {group_id}")
            del self._members[member.id]

    # -- invitations ---------------------------------------------------------

    async def create_invitation(self, invitation: GroupInvitation) -> None:
        async with self._lock:
            if invitation.group_id not in self._groups:
                raise ReferentialIntegrityError(f"Group not found: {invitation.group_id}")
            if invitation.id in self._invitations:
                raise DuplicateError(f"Invitation already exists: {invitation.id}")
            self._invitations[invitation.id] = invitation.model_copy()

    async def get_invitation(self, invitation_id: UUID) -> Optional[GroupInvitation]:
        async with self._lock:
            invitation = self._invitations.get(invitation_id)
            return invitation.model_copy() if invitation else None

    async def list_invitations_for_invitee(
        self,
        user_id: Optional[UUID],
        email: Optional[str],
    ) -> list[GroupInvitation]:
        email = email.lower() if email else None
        async with self._lock:
            invitations = [
                i.model_copy() for i in self._invitations.values()
                if (user_id is not None and i.invited_user_id == user_id)
                or (email and i.invited_email and i.invited_email.lower() == email)
            ]
        invitations.sort(key=lambda i: i.created_at, reverse=True)
        return invitations

    async def update_invitation(self, invitation: GroupInvitation) -> None:
        async with self._lock:
            self._check_pending(invitation.id)
            self._invitations[invitation.id] = invitation.model_copy()

    async def accept_invitation_atomic(
        self,
        invitation: GroupInvitation,
        member: GroupMember,
    ) -> None:
        async with self._lock:
            self._check_pending(invitation.id)
            if member.group_id not in self._groups:
                raise ReferentialIntegrityError(f"Group not found: {member.group_id}")
            if self._find_member(member.group_id, member.user_id) is not None:
                raise DuplicateError(
                    f"User {member.user_id} is already a member of group {member.group_id}"
                )
            self._invitations[invitation.id] = invitation.model_copy()
            self._members[member.id] = member.model_copy()

    # -- shared expenses -----------------------------------------------------

    async def create_expense_with_participants(
        self,
        expense: SharedExpense,
        participants: list[SharedExpenseParticipant],
    ) -> None:
        async with self._lock:
            if expense.id in self._expenses:
                raise DuplicateError(f"Expense already exists: {expense.id}")
            if expense.group_id not in self._groups:
                raise ReferentialIntegrityError(f"Group not found: {expense.group_id}")
            for participant in participants:
                if participant.shared_expense_id != expense.id:
                    raise ReferentialIntegrityError(
                        "Participant points at another expense"
                    )
                if self._find_member(expense.group_id, participant.user_id) is None:
                    raise ReferentialIntegrityError(
                        f"User {participant.user_id} is not a member of group {expense.group_id}"
                    )

            self._expenses[expense.id] = expense.model_copy()
            for participant in participants:
                self._participants[participant.id] = participant.model_copy()

    async def get_expense(self, expense_id: UUID) -> Optional[SharedExpense]:
        async with self._lock:
            expense = self._expenses.get(expense_id)
            return expense.model_copy() if expense else None

    async def list_expenses_for_group(self, group_id: UUID) -> list[SharedExpense]:
        async with self._lock:
            expenses = [
                e.model_copy() for e in self._expenses.values() if e.group_id == group_id
            ]
        expenses.sort(key=lambda e: e.created_at, reverse=True)
        return expenses

    async def list_participants(self, expense_id: UUID) -> list[SharedExpenseParticipant]:
        async with self._lock:
            return [p.model_copy() for p in self._participants_of(expense_id)]

    async def update_participant(self, participant: SharedExpenseParticipant) -> None:
        async with self._lock:
            if participant.id not in self._participants:
                raise NotFoundError(f"Participant not found: {participant.id}")
            self._participants[participant.id] = participant.model_copy()

    async def delete_expense_cascade(self, expense_id: UUID) -> None:
        async with self._lock:
            if expense_id not in self._expenses:
                raise NotFoundError(f"Expense not found: {expense_id}")
            for participant in self._participants_of(expense_id):
                del self._participants[participant.id]
            del self._expenses[expense_id]

    # -- profiles and subscribers --------------------------------------------

    async def get_profiles(self, user_ids: Iterable[UUID]) -> dict[UUID, Profile]:
        async with self._lock:
            return {
                uid: self._profiles[uid].model_copy()
                for uid in set(user_ids)
                if uid in self._profiles
            }

    async def get_profile(self, user_id: UUID) -> Optional[Profile]:
        async with self._lock:
            profile = self._profiles.get(user_id)
            return profile.model_copy() if profile else None

    async def upsert_profile(self, profile: Profile) -> None:
        async with self._lock:
            self._profiles[profile.id] = profile.model_copy()

    async def get_subscriber(self, user_id: UUID) -> Optional[SubscriptionRecord]:
        async with self._lock:
            for record in self._subscribers.values():
                if record.user_id == user_id:
                    return record.model_copy()
            return None

    async def upsert_subscriber(self, record: SubscriptionRecord) -> None:
        key = record.email.lower()
        async with self._lock:
            for email, existing in self._subscribers.items():
                if existing.user_id == record.user_id and email != key:
                    raise DuplicateError(
                        f"User {record.user_id} is subscribed under another email"
                    )
            self._subscribers[key] = record.model_copy()


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_events_by_entity(self, entity_type: str, entity_id: UUID) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return sorted(self._events, key=lambda e: e.timestamp, reverse=True)[:limit]
