"""Shared expense ledger and groups package."""

from vittas.ledger.expenses import (
    ExpenseLedger,
    LedgerConsistencyError,
    LedgerError,
    PermissionDeniedError,
)
from vittas.ledger.groups import (
    AlreadyMemberError,
    GroupService,
    InvitationAlreadyUsedError,
    InvitationError,
    InvitationExpiredError,
)

__all__ = [
    "ExpenseLedger",
    "GroupService",
    # Exceptions
    "AlreadyMemberError",
    "InvitationAlreadyUsedError",
    "InvitationError",
    "InvitationExpiredError",
    "LedgerConsistencyError",
    "LedgerError",
    "PermissionDeniedError",
]
