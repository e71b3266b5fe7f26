"""
Expense Ledger

Persists shared expenses and answers "who owes what" inside a group.

DESIGN DECISION: The ledger enforces the boundaries:
- An expense and its participant rows are written in ONE store call,
  so a failure never leaves an expense without participants
- The shares must sum exactly to the total before anything is written
- Only the creator can delete an expense
- Every write is audited

The ledger does not retry. A failed write is reported to the caller, who
still holds the form and can resubmit.
"""

from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

from vittas.audit import AuditLogger, create_correlation_id
from vittas.models.audit import AuditEventBuilder
from vittas.models.ledger import (
    ExpenseWithParticipants,
    MemberBalance,
    ParticipantView,
    Profile,
    SharedExpense,
    SharedExpenseParticipant,
    SplitStrategy,
)
from vittas.models.subscription import utc_now
from vittas.services.storage import (
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
)
from vittas.splitting import SplitValidationError, calculate_splits


UNKNOWN_USER = "Unknown user"


class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class PermissionDeniedError(LedgerError):
    """The requesting user may not perform this action."""
    pass


class LedgerConsistencyError(LedgerError):
    """The shares handed to the ledger don't add up to the expense."""
    pass


def display_name(profiles: dict[UUID, Profile], user_id: UUID) -> str:
    """Full name, falling back to email, falling back to a placeholder."""
    profile = profiles.get(user_id)
    if profile is None:
        return UNKNOWN_USER
    return profile.full_name or profile.email or UNKNOWN_USER


class ExpenseLedger:
    """
    Shared expense operations for one store.

    Flow for a new expense:
    1. Split → calculate_splits (validated, payer first)
    2. Check → shares sum to the total, payer included
    3. Save → expense + participants in one atomic store call
    4. Audit
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._audit_logger = audit_logger or AuditLogger()

    async def create_shared_expense(
        self,
        title: str,
        description: Optional[str],
        total_amount: Decimal,
        payer_id: UUID,
        group_id: UUID,
        splits: dict[UUID, Decimal],
        correlation_id: Optional[UUID] = None,
    ) -> UUID:
        """
        Persist an expense with one participant row per entry in `splits`.

        Args:
            splits: {user_id: amount_owed}, payer included

        Returns:
            The new expense id

        Raises:
            LedgerConsistencyError: If the payer is missing from splits or
                the shares don't sum to the total
            PermissionDeniedError: If the payer is not a group member
            StorageError: If the atomic write fails (nothing was written)
        """
        correlation_id = correlation_id or create_correlation_id()
        total_amount = Decimal(str(total_amount))

        if payer_id not in splits:
            raise LedgerConsistencyError("Splits must include the payer")

        shares_total = sum(splits.values(), Decimal("0"))
        if shares_total != total_amount:
            raise LedgerConsistencyError(
                f"Shares add up to {shares_total}, expected {total_amount}"
            )

        if await self._storage.get_member(group_id, payer_id) is None:
            raise PermissionDeniedError("Only group members can add expenses")

        expense = SharedExpense(
            title=title,
            description=description or None,
            total_amount=total_amount,
            created_by=payer_id,
            group_id=group_id,
        )
        # Payer first, then members in the order they were split
        ordered = [payer_id] + [uid for uid in splits if uid != payer_id]
        participants = [
            SharedExpenseParticipant(
                shared_expense_id=expense.id,
                user_id=user_id,
                amount_owed=splits[user_id],
            )
            for user_id in ordered
        ]

        try:
            await self._storage.create_expense_with_participants(expense, participants)
        except StorageError as e:
            await self._audit_logger.log(AuditEventBuilder.expense_save_failed(
                group_id=group_id,
                payer_id=payer_id,
                title=expense.title,
                error_message=str(e),
                correlation_id=correlation_id,
            ))
            raise

        await self._audit_logger.log(AuditEventBuilder.expense_created(
            expense_id=expense.id,
            group_id=group_id,
            payer_id=payer_id,
            title=expense.title,
            total_amount=expense.total_amount,
            splits=splits,
            correlation_id=correlation_id,
        ))

        return expense.id

    async def add_expense(
        self,
        title: str,
        description: Optional[str],
        total_amount: Decimal,
        payer_id: UUID,
        group_id: UUID,
        members: Iterable[UUID] = (),
        strategy: Optional[SplitStrategy] = None,
        correlation_id: Optional[UUID] = None,
    ) -> UUID:
        """
        Split and persist an expense in one call.

        Raises:
            SplitValidationError: If the split request is invalid
        """
        correlation_id = correlation_id or create_correlation_id()

        try:
            splits = calculate_splits(total_amount, payer_id, members, strategy)
        except SplitValidationError as e:
            issues = [
                {"field": i.field, "type": i.issue_type, "message": i.message}
                for i in e.result.issues
                if i.severity == "error"
            ]
            await self._audit_logger.log(AuditEventBuilder.split_validation_failed(
                split_type=e.result.split_type.value,
                issues=issues,
                payer_id=payer_id,
                correlation_id=correlation_id,
            ))
            raise

        return await self.create_shared_expense(
            title=title,
            description=description,
            total_amount=sum(splits.values(), Decimal("0")),
            payer_id=payer_id,
            group_id=group_id,
            splits=splits,
            correlation_id=correlation_id,
        )

    async def delete_shared_expense(
        self,
        expense_id: UUID,
        requesting_user_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """
        Delete an expense and its participants.

        Raises:
            NotFoundError: If the expense doesn't exist
            PermissionDeniedError: If the requester didn't create it
        """
        expense = await self._storage.get_expense(expense_id)
        if expense is None:
            raise NotFoundError(f"Expense not found: {expense_id}")
        if expense.created_by != requesting_user_id:
            raise PermissionDeniedError("Only the creator can delete this expense")

        try:
            await self._storage.delete_expense_cascade(expense_id)
        except StorageError as e:
            await self._audit_logger.log_storage_error(
                operation="delete_expense",
                error_message=str(e),
                correlation_id=correlation_id,
            )
            raise

        await self._audit_logger.log(AuditEventBuilder.expense_deleted(
            expense_id=expense_id,
            deleted_by=requesting_user_id,
            correlation_id=correlation_id,
        ))

    async def get_group_expenses(self, group_id: UUID) -> list[ExpenseWithParticipants]:
        """Expenses of a group, newest first, with names and paid status."""
        expenses = await self._storage.list_expenses_for_group(group_id)

        participants_by_expense = {
            expense.id: await self._storage.list_participants(expense.id)
            for expense in expenses
        }
        user_ids = {e.created_by for e in expenses}
        for participants in participants_by_expense.values():
            user_ids.update(p.user_id for p in participants)
        profiles = await self._storage.get_profiles(user_ids)

        return [
            ExpenseWithParticipants(
                expense=expense,
                created_by_name=display_name(profiles, expense.created_by),
                participants=[
                    ParticipantView(
                        participant=p,
                        display_name=display_name(profiles, p.user_id),
                    )
                    for p in participants_by_expense[expense.id]
                ],
            )
            for expense in expenses
        ]

    async def mark_participant_paid(
        self,
        expense_id: UUID,
        user_id: UUID,
        requesting_user_id: UUID,
        paid: bool = True,
        correlation_id: Optional[UUID] = None,
    ) -> SharedExpenseParticipant:
        """
        Flip a participant's paid flag.

        The participant themselves or the expense creator may do this.
        """
        expense = await self._storage.get_expense(expense_id)
        if expense is None:
            raise NotFoundError(f"Expense not found: {expense_id}")
        if requesting_user_id not in (user_id, expense.created_by):
            raise PermissionDeniedError(
                "Only the participant or the expense creator can change payment status"
            )

        participants = await self._storage.list_participants(expense_id)
        participant = next((p for p in participants if p.user_id == user_id), None)
        if participant is None:
            raise NotFoundError(f"User {user_id} is not part of expense {expense_id}")

        updated = participant.model_copy(update={
            "paid": paid,
            "paid_at": utc_now() if paid else None,
        })
        try:
            await self._storage.update_participant(updated)
        except StorageError as e:
            await self._audit_logger.log_storage_error(
                operation="update_participant",
                error_message=str(e),
                correlation_id=correlation_id,
            )
            raise

        await self._audit_logger.log(AuditEventBuilder.participant_paid(
            expense_id=expense_id,
            user_id=user_id,
            marked_by=requesting_user_id,
            paid=paid,
            correlation_id=correlation_id,
        ))

        return updated

    async def get_member_balances(self, group_id: UUID) -> list[MemberBalance]:
        """
        Outstanding amounts per member.

        A payer's own share is never counted; they can't owe themselves.
        Former members with open shares are included.
        """
        members = await self._storage.list_members(group_id)
        owes: dict[UUID, Decimal] = {m.user_id: Decimal("0.00") for m in members}
        owed: dict[UUID, Decimal] = {m.user_id: Decimal("0.00") for m in members}

        for expense in await self._storage.list_expenses_for_group(group_id):
            payer = expense.created_by
            for p in await self._storage.list_participants(expense.id):
                if p.paid or p.user_id == payer:
                    continue
                owes[p.user_id] = owes.get(p.user_id, Decimal("0.00")) + p.amount_owed
                owed[payer] = owed.get(payer, Decimal("0.00")) + p.amount_owed

        user_ids = list(dict.fromkeys([*owes, *owed]))
        profiles = await self._storage.get_profiles(user_ids)

        return [
            MemberBalance(
                user_id=user_id,
                display_name=display_name(profiles, user_id),
                owes=owes.get(user_id, Decimal("0.00")),
                owed=owed.get(user_id, Decimal("0.00")),
            )
            for user_id in user_ids
        ]
