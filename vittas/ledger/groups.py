"""
Groups and Invitations

A group is created with its creator as admin. Others join through an
invitation, either addressed to an email / user or shared as a link
(no addressee).

INVITATION RULES:
- Usable only while pending and not past expires_at
- Leaves pending exactly once (accepted or declined)
- Accepting adds the membership and marks the invitation in one write
"""

from datetime import timedelta
from typing import Optional
from uuid import UUID

from vittas.audit import AuditLogger
from vittas.config import get_settings
from vittas.models.audit import AuditEventBuilder
from vittas.models.ledger import (
    Group,
    GroupInvitation,
    GroupMember,
    InvitationStatus,
    MemberRole,
)
from vittas.models.subscription import utc_now
from vittas.ledger.expenses import PermissionDeniedError
from vittas.services.storage import (
    ConflictError,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
)


class InvitationError(Exception):
    """Base exception for invitation handling."""
    pass


class InvitationExpiredError(InvitationError):
    """The invitation is past its expiry time."""
    pass


class InvitationAlreadyUsedError(InvitationError):
    """The invitation was already accepted or declined."""
    pass


class AlreadyMemberError(InvitationError):
    """The user already belongs to the group."""
    pass


class GroupService:
    """Group lifecycle, membership and invitations."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        invitation_expiry_days: Optional[int] = None,
    ):
        self._storage = storage
        self._audit_logger = audit_logger or AuditLogger()
        if invitation_expiry_days is None:
            invitation_expiry_days = get_settings().ledger.invitation_expiry_days
        self._invitation_ttl = timedelta(days=invitation_expiry_days)

    async def _require_group(self, group_id: UUID) -> Group:
        group = await self._storage.get_group(group_id)
        if group is None:
            raise NotFoundError(f"Group not found: {group_id}")
        return group

    # -- groups --------------------------------------------------------------

    async def create_group(
        self,
        name: str,
        description: Optional[str],
        created_by: UUID,
    ) -> Group:
        """Create a group; the creator becomes its admin in the same write."""
        group = Group(name=name, description=description or None, created_by=created_by)
        admin = GroupMember(group_id=group.id, user_id=created_by, role=MemberRole.ADMIN)

        await self._storage.create_group_with_admin(group, admin)

        await self._audit_logger.log(AuditEventBuilder.group_created(
            group_id=group.id,
            name=group.name,
            created_by=created_by,
        ))
        return group

    async def list_groups(self, user_id: UUID) -> list[Group]:
        return await self._storage.list_groups_for_user(user_id)

    async def list_members(self, group_id: UUID) -> list[GroupMember]:
        return await self._storage.list_members(group_id)

    async def delete_group(self, group_id: UUID, requesting_user_id: UUID) -> None:
        """
        Delete a group with everything in it.

        Raises:
            NotFoundError: If the group doesn't exist
            PermissionDeniedError: If the requester didn't create the group
        """
        group = await self._require_group(group_id)
        if group.created_by != requesting_user_id:
            raise PermissionDeniedError("Only the group creator can delete the group")

        try:
            await self._storage.delete_group_cascade(group_id)
        except StorageError as e:
            await self._audit_logger.log_storage_error(
                operation="delete_group",
                error_message=str(e),
            )
            raise

        await self._audit_logger.log(AuditEventBuilder.group_deleted(
            group_id=group_id,
            deleted_by=requesting_user_id,
        ))

    async def remove_member(
        self,
        group_id: UUID,
        user_id: UUID,
        requesting_user_id: UUID,
    ) -> None:
        """
        Remove a member.

        Admins may remove anyone, members may remove themselves.
        The creator can never be removed; they delete the group instead.
        """
        group = await self._require_group(group_id)
        if user_id == group.created_by:
            raise PermissionDeniedError("The group creator cannot be removed")

        if requesting_user_id != user_id:
            requester = await self._storage.get_member(group_id, requesting_user_id)
            if requester is None or requester.role != MemberRole.ADMIN:
                raise PermissionDeniedError("Only admins can remove other members")

        await self._storage.remove_member(group_id, user_id)

        await self._audit_logger.log(AuditEventBuilder.member_removed(
            group_id=group_id,
            user_id=user_id,
            removed_by=requesting_user_id,
        ))

    # -- invitations ---------------------------------------------------------

    async def create_invitation(
        self,
        group_id: UUID,
        invited_by: UUID,
        invited_email: Optional[str] = None,
        invited_user_id: Optional[UUID] = None,
    ) -> GroupInvitation:
        """
        Invite someone to a group.

        Without an email or user id the invitation works as a shareable link.

        Raises:
            PermissionDeniedError: If the inviter is not a member
        """
        await self._require_group(group_id)
        if await self._storage.get_member(group_id, invited_by) is None:
            raise PermissionDeniedError("Only group members can invite others")

        now = utc_now()
        invitation = GroupInvitation(
            group_id=group_id,
            invited_by=invited_by,
            invited_email=invited_email.strip().lower() if invited_email else None,
            invited_user_id=invited_user_id,
            created_at=now,
            expires_at=now + self._invitation_ttl,
        )
        await self._storage.create_invitation(invitation)

        await self._audit_logger.log(AuditEventBuilder.invitation_created(
            invitation_id=invitation.id,
            group_id=group_id,
            invited_by=invited_by,
            invited_email=invitation.invited_email,
        ))
        return invitation

    async def list_pending_invitations(
        self,
        user_id: Optional[UUID],
        email: Optional[str] = None,
    ) -> list[GroupInvitation]:
        """Open invitations addressed to this user id or email."""
        now = utc_now()
        invitations = await self._storage.list_invitations_for_invitee(user_id, email)
        return [i for i in invitations if i.is_open(now)]

    async def _open_invitation(self, invitation_id: UUID, user_id: UUID) -> GroupInvitation:
        invitation = await self._storage.get_invitation(invitation_id)
        if invitation is None:
            raise NotFoundError(f"Invitation not found: {invitation_id}")

        reason = None
        error: Optional[InvitationError] = None
        if invitation.status != InvitationStatus.PENDING:
            reason = f"already {invitation.status.value}"
            error = InvitationAlreadyUsedError(f"This invitation was {reason}")
        elif invitation.is_expired():
            reason = "expired"
            error = InvitationExpiredError("This invitation has expired")
        elif invitation.invited_user_id is not None and invitation.invited_user_id != user_id:
            reason = "addressed to another user"
            error = InvitationError("This invitation is for someone else")

        if error is not None:
            await self._audit_logger.log(AuditEventBuilder.invitation_rejected(
                invitation_id=invitation_id,
                user_id=user_id,
                reason=reason,
            ))
            raise error
        return invitation

    async def accept_invitation(self, invitation_id: UUID, user_id: UUID) -> GroupMember:
        """
        Join the invitation's group.

        Raises:
            NotFoundError: If the invitation doesn't exist
            InvitationExpiredError: If it is past expires_at
            InvitationAlreadyUsedError: If it is no longer pending
            AlreadyMemberError: If the user is already in the group
        """
        invitation = await self._open_invitation(invitation_id, user_id)

        if await self._storage.get_member(invitation.group_id, user_id) is not None:
            raise AlreadyMemberError("You are already a member of this group")

        accepted = invitation.model_copy(update={
            "status": InvitationStatus.ACCEPTED,
            "invited_user_id": user_id,
        })
        member = GroupMember(group_id=invitation.group_id, user_id=user_id)

        try:
            await self._storage.accept_invitation_atomic(accepted, member)
        except ConflictError as e:
            raise InvitationAlreadyUsedError("This invitation has already been used") from e
        except DuplicateError as e:
            raise AlreadyMemberError(str(e)) from e

        await self._audit_logger.log(AuditEventBuilder.invitation_answered(
            invitation_id=invitation_id,
            user_id=user_id,
            accepted=True,
        ))
        return member

    async def decline_invitation(self, invitation_id: UUID, user_id: UUID) -> GroupInvitation:
        invitation = await self._open_invitation(invitation_id, user_id)

        declined = invitation.model_copy(update={"status": InvitationStatus.DECLINED})
        try:
            await self._storage.update_invitation(declined)
        except ConflictError as e:
            raise InvitationAlreadyUsedError("This invitation has already been used") from e

        await self._audit_logger.log(AuditEventBuilder.invitation_answered(
            invitation_id=invitation_id,
            user_id=user_id,
            accepted=False,
        ))
        return declined
