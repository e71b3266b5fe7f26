"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the initial storage backend because:
1. Non-technical users can view their data directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

Each table lives in its own worksheet named after the table, with a header
row holding the model's field names.

TRANSACTIONS: Sheets has none, but one `spreadsheets.batchUpdate` call is
applied all-or-nothing by the API. Every multi-row write (expense plus
participants, cascading deletes, accepting an invitation) is therefore
collected into a single batch and sent in one request.

TRADEOFFS:
- Constraint checks read the sheet before the batch is sent, so two
  concurrent writers can still race. Fine for a household-sized group.
- Limited query capabilities (we filter in Python)
"""

import json
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Optional, TypeVar
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from pydantic import BaseModel
from tenacity import retry, stop_after_attempt, wait_exponential

from vittas.config import get_settings
from vittas.models.audit import AuditEvent, AuditEventType, AuditSeverity
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
    ConnectionError,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
    ReferentialIntegrityError,
    StorageError,
    SubscriptionStorageInterface,
)


logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

# Worksheet name per table
GROUPS = "groups"
GROUP_MEMBERS = "group_members"
GROUP_INVITATIONS = "group_invitations"
SHARED_EXPENSES = "shared_expenses"
SHARED_EXPENSE_PARTICIPANTS = "shared_expense_participants"
SUBSCRIBERS = "subscribers"
PROFILES = "profiles"

TABLE_MODELS: dict[str, type[BaseModel]] = {
    GROUPS: Group,
    GROUP_MEMBERS: GroupMember,
    GROUP_INVITATIONS: GroupInvitation,
    SHARED_EXPENSES: SharedExpense,
    SHARED_EXPENSE_PARTICIPANTS: SharedExpenseParticipant,
    SUBSCRIBERS: SubscriptionRecord,
    PROFILES: Profile,
}

# Column mappings for Audit sheet, matches AuditEvent.to_sheets_row
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "actor_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
]


@contextmanager
def _storage_errors(operation: str):
    """Re-raise anything but a StorageError as one."""
    try:
        yield
    except StorageError:
        raise
    except Exception as e:
        raise StorageError(f"Failed to {operation}: {e}") from e


def columns_for(model: type[BaseModel]) -> list[str]:
    return list(model.model_fields)


def _to_cell(value: Any) -> str:
    """Serialize one field value to the string stored in a cell."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    return str(value)


def _model_to_row(model: BaseModel) -> list[str]:
    return [_to_cell(getattr(model, column)) for column in type(model).model_fields]


def _row_to_model(model: type[ModelT], header: list[str], row: list[str]) -> ModelT:
    """
    Parse a sheet row back into a model.

    Empty cells are left out so field defaults apply; pydantic does the
    string to UUID / Decimal / datetime / enum conversion.
    """
    data = {
        column: value
        for column, value in zip(header, row)
        if column in model.model_fields and value != ""
    }
    return model.model_validate(data)


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._sheets: dict[str, gspread.Worksheet] = {}
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_sheet(self, name: str, columns: list[str], rows: int = 1000) -> gspread.Worksheet:
        """Get or create a worksheet with the given header row."""
        if name in self._sheets:
            return self._sheets[name]

        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(name)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=name,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns, value_input_option="RAW")
        self._sheets[name] = sheet
        return sheet

    def get_table_sheet(self, table: str) -> gspread.Worksheet:
        return self.get_sheet(table, columns_for(TABLE_MODELS[table]))

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self.get_sheet(
            self._settings.audit_sheet_name,
            AUDIT_COLUMNS,
            rows=5000,  # More rows for audit log
        )


def _cells(row: list[str]) -> dict:
    return {"values": [{"userEnteredValue": {"stringValue": value}} for value in row]}


class SheetsBatch:
    """
    Collects row writes across worksheets into one batchUpdate request.

    Row indexes are 0-based grid indexes, i.e. the position of the row in
    `get_all_values()` (header at 0). Updates run first, then deletes from
    the bottom of each sheet up so earlier indexes stay valid, then appends.
    """

    def __init__(self, spreadsheet: gspread.Spreadsheet):
        self._spreadsheet = spreadsheet
        self._updates: list[dict] = []
        self._deletes: list[tuple[int, int]] = []
        self._appends: list[dict] = []

    def append(self, sheet: gspread.Worksheet, rows: list[list[str]]) -> None:
        if not rows:
            return
        self._appends.append({
            "appendCells": {
                "sheetId": sheet.id,
                "rows": [_cells(row) for row in rows],
                "fields": "userEnteredValue",
            }
        })

    def update(self, sheet: gspread.Worksheet, index: int, row: list[str]) -> None:
        self._updates.append({
            "updateCells": {
                "range": {
                    "sheetId": sheet.id,
                    "startRowIndex": index,
                    "endRowIndex": index + 1,
                    "startColumnIndex": 0,
                    "endColumnIndex": len(row),
                },
                "rows": [_cells(row)],
                "fields": "userEnteredValue",
            }
        })

    def delete(self, sheet: gspread.Worksheet, index: int) -> None:
        self._deletes.append((sheet.id, index))

    @property
    def requests(self) -> list[dict]:
        deletes = [
            {
                "deleteDimension": {
                    "range": {
                        "sheetId": sheet_id,
                        "dimension": "ROWS",
                        "startIndex": index,
                        "endIndex": index + 1,
                    }
                }
            }
            for sheet_id, index in sorted(set(self._deletes), reverse=True)
        ]
        return self._updates + deletes + self._appends

    def commit(self) -> None:
        requests = self.requests
        if requests:
            self._spreadsheet.batch_update({"requests": requests})


class _Table:
    """A snapshot of one worksheet: header plus (grid index, row) pairs."""

    def __init__(self, name: str, sheet: gspread.Worksheet):
        self.name = name
        self.sheet = sheet
        self.model = TABLE_MODELS[name]
        values = sheet.get_all_values()
        self.header = values[0] if values else columns_for(self.model)
        self.rows = [
            (index, row)
            for index, row in enumerate(values[1:], start=1)
            if row and row[0]
        ]

    def column(self, name: str) -> int:
        return self.header.index(name)

    def where(self, **filters: str) -> list[tuple[int, list[str]]]:
        """Rows whose named columns equal the given cell strings."""
        positions = {self.column(k): v for k, v in filters.items()}
        return [
            (index, row) for index, row in self.rows
            if all(len(row) > pos and row[pos] == value for pos, value in positions.items())
        ]

    def first(self, **filters: str) -> Optional[tuple[int, list[str]]]:
        matches = self.where(**filters)
        return matches[0] if matches else None

    def parse(self, row: list[str]):
        return _row_to_model(self.model, self.header, row)

    def models(self, **filters: str) -> list:
        return [self.parse(row) for _, row in self.where(**filters)]


def _pending_row(invitations: _Table, invitation_id: UUID) -> int:
    """Grid index of a still-pending invitation."""
    match = invitations.first(id=str(invitation_id))
    if match is None:
        raise NotFoundError(f"Invitation not found: {invitation_id}")
    stored = invitations.parse(match[1])
    if stored.status != InvitationStatus.PENDING:
        raise ConflictError(f"Invitation {invitation_id} is already {stored.status.value}")
    return match[0]


class _SheetsStorageBase:
    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _table(self, name: str) -> _Table:
        return _Table(name, self._client.get_table_sheet(name))

    def _batch(self) -> SheetsBatch:
        return SheetsBatch(self._client.get_spreadsheet())


class GoogleSheetsLedgerStorage(_SheetsStorageBase, LedgerStorageInterface):
    """
    Google Sheets implementation of the group and shared expense tables.
    """

    async def create_group_with_admin(self, group: Group, admin: GroupMember) -> None:
        with _storage_errors("create group"):
            groups = self._table(GROUPS)
            if groups.first(id=str(group.id)):
                raise DuplicateError(f"Group already exists: {group.id}")
            members = self._table(GROUP_MEMBERS)

            batch = self._batch()
            batch.append(groups.sheet, [_model_to_row(group)])
            batch.append(members.sheet, [_model_to_row(admin)])
            batch.commit()

    async def get_group(self, group_id: UUID) -> Optional[Group]:
        with _storage_errors("get group"):
            matches = self._table(GROUPS).models(id=str(group_id))
            return matches[0] if matches else None

    async def list_groups_for_user(self, user_id: UUID) -> list[Group]:
        with _storage_errors("list groups"):
            memberships = self._table(GROUP_MEMBERS).models(user_id=str(user_id))
            group_ids = {m.group_id for m in memberships}
            groups = [g for g in self._table(GROUPS).models() if g.id in group_ids]
            groups.sort(key=lambda g: g.created_at, reverse=True)
            return groups

    async def delete_group_cascade(self, group_id: UUID) -> None:
        with _storage_errors("delete group"):
            groups = self._table(GROUPS)
            group_row = groups.first(id=str(group_id))
            if group_row is None:
                raise NotFoundError(f"Group not found: {group_id}")

            key = str(group_id)
            expenses = self._table(SHARED_EXPENSES)
            expense_rows = expenses.where(group_id=key)
            expense_ids = {row[expenses.column("id")] for _, row in expense_rows}

            participants = self._table(SHARED_EXPENSE_PARTICIPANTS)
            pos = participants.column("shared_expense_id")
            participant_rows = [
                (index, row) for index, row in participants.rows
                if len(row) > pos and row[pos] in expense_ids
            ]
            invitations = self._table(GROUP_INVITATIONS)
            members = self._table(GROUP_MEMBERS)

            batch = self._batch()
            for index, _ in participant_rows:
                batch.delete(participants.sheet, index)
            for index, _ in expense_rows:
                batch.delete(expenses.sheet, index)
            for index, _ in invitations.where(group_id=key):
                batch.delete(invitations.sheet, index)
            for index, _ in members.where(group_id=key):
                batch.delete(members.sheet, index)
            batch.delete(groups.sheet, group_row[0])
            batch.commit()

    async def list_members(self, group_id: UUID) -> list[GroupMember]:
        with _storage_errors("list members"):
            members = self._table(GROUP_MEMBERS).models(group_id=str(group_id))
            members.sort(key=lambda m: m.joined_at)
            return members

    async def get_member(self, group_id: UUID, user_id: UUID) -> Optional[GroupMember]:
        with _storage_errors("get member"):
            matches = self._table(GROUP_MEMBERS).models(
                group_id=str(group_id), user_id=str(user_id)
            )
            return matches[0] if matches else None

    async def remove_member(self, group_id: UUID, user_id: UUID) -> None:
        with _storage_errors("remove member"):
            members = self._table(GROUP_MEMBERS)
            match = members.first(group_id=str(group_id), user_id=str(user_id))
            if match is None:
                raise NotFoundError(f"User {user_id} is not a member of group {group_id}")
            batch = self._batch()
            batch.delete(members.sheet, match[0])
            batch.commit()

    async def create_invitation(self, invitation: GroupInvitation) -> None:
        with _storage_errors("create invitation"):
            if self._table(GROUPS).first(id=str(invitation.group_id)) is None:
                raise ReferentialIntegrityError(f"Group not found: {invitation.group_id}")
            invitations = self._table(GROUP_INVITATIONS)
            if invitations.first(id=str(invitation.id)):
                raise DuplicateError(f"Invitation already exists: {invitation.id}")
            batch = self._batch()
            batch.append(invitations.sheet, [_model_to_row(invitation)])
            batch.commit()

    async def get_invitation(self, invitation_id: UUID) -> Optional[GroupInvitation]:
        with _storage_errors("get invitation"):
            matches = self._table(GROUP_INVITATIONS).models(id=str(invitation_id))
            return matches[0] if matches else None

    async def list_invitations_for_invitee(
        self,
        user_id: Optional[UUID],
        email: Optional[str],
    ) -> list[GroupInvitation]:
        email = email.lower() if email else None
        with _storage_errors("list invitations"):
            invitations = [
                i for i in self._table(GROUP_INVITATIONS).models()
                if (user_id is not None and i.invited_user_id == user_id)
                or (email and i.invited_email and i.invited_email.lower() == email)
            ]
            invitations.sort(key=lambda i: i.created_at, reverse=True)
            return invitations

    async def update_invitation(self, invitation: GroupInvitation) -> None:
        with _storage_errors("update invitation"):
            invitations = self._table(GROUP_INVITATIONS)
            index = _pending_row(invitations, invitation.id)
            batch = self._batch()
            batch.update(invitations.sheet, index, _model_to_row(invitation))
            batch.commit()

    async def accept_invitation_atomic(
        self,
        invitation: GroupInvitation,
        member: GroupMember,
    ) -> None:
        with _storage_errors("accept invitation"):
            invitations = self._table(GROUP_INVITATIONS)
            index = _pending_row(invitations, invitation.id)
            members = self._table(GROUP_MEMBERS)
            if members.first(group_id=str(member.group_id), user_id=str(member.user_id)):
                raise DuplicateError(
                    f"User {member.user_id} is already a member of group {member.group_id}"
                )

            batch = self._batch()
            batch.update(invitations.sheet, index, _model_to_row(invitation))
            batch.append(members.sheet, [_model_to_row(member)])
            batch.commit()

    async def create_expense_with_participants(
        self,
        expense: SharedExpense,
        participants: list[SharedExpenseParticipant],
    ) -> None:
        with _storage_errors("create expense"):
            if self._table(GROUPS).first(id=str(expense.group_id)) is None:
                raise ReferentialIntegrityError(f"Group not found: {expense.group_id}")
            member_ids = {
                m.user_id for m in self._table(GROUP_MEMBERS).models(group_id=str(expense.group_id))
            }
            for participant in participants:
                if participant.user_id not in member_ids:
                    raise ReferentialIntegrityError(
                        f"User {participant.user_id} is not a member of group {expense.group_id}"
                    )

            expenses = self._table(SHARED_EXPENSES)
            if expenses.first(id=str(expense.id)):
                raise DuplicateError(f"Expense already exists: {expense.id}")
            participant_sheet = self._client.get_table_sheet(SHARED_EXPENSE_PARTICIPANTS)

            batch = self._batch()
            batch.append(expenses.sheet, [_model_to_row(expense)])
            batch.append(participant_sheet, [_model_to_row(p) for p in participants])
            batch.commit()

    async def get_expense(self, expense_id: UUID) -> Optional[SharedExpense]:
        with _storage_errors("get expense"):
            matches = self._table(SHARED_EXPENSES).models(id=str(expense_id))
            return matches[0] if matches else None

    async def list_expenses_for_group(self, group_id: UUID) -> list[SharedExpense]:
        with _storage_errors("list expenses"):
            expenses = self._table(SHARED_EXPENSES).models(group_id=str(group_id))
            expenses.sort(key=lambda e: e.created_at, reverse=True)
            return expenses

    async def list_participants(self, expense_id: UUID) -> list[SharedExpenseParticipant]:
        with _storage_errors("list participants"):
            return self._table(SHARED_EXPENSE_PARTICIPANTS).models(
                shared_expense_id=str(expense_id)
            )

    async def update_participant(self, participant: SharedExpenseParticipant) -> None:
        with _storage_errors("update participant"):
            participants = self._table(SHARED_EXPENSE_PARTICIPANTS)
            match = participants.first(id=str(participant.id))
            if match is None:
                raise NotFoundError(f"Participant not found: {participant.id}")
            batch = self._batch()
            batch.update(participants.sheet, match[0], _model_to_row(participant))
            batch.commit()

    async def delete_expense_cascade(self, expense_id: UUID) -> None:
        with _storage_errors("delete expense"):
            expenses = self._table(SHARED_EXPENSES)
            match = expenses.first(id=str(expense_id))
            if match is None:
                raise NotFoundError(f"Expense not found: {expense_id}")
            participants = self._table(SHARED_EXPENSE_PARTICIPANTS)

            batch = self._batch()
            for index, _ in participants.where(shared_expense_id=str(expense_id)):
                batch.delete(participants.sheet, index)
            batch.delete(expenses.sheet, match[0])
            batch.commit()

    async def get_profiles(self, user_ids: Iterable[UUID]) -> dict[UUID, Profile]:
        wanted = set(user_ids)
        with _storage_errors("get profiles"):
            return {
                p.id: p for p in self._table(PROFILES).models() if p.id in wanted
            }


class GoogleSheetsSubscriptionStorage(_SheetsStorageBase, SubscriptionStorageInterface):
    """
    Google Sheets implementation of the subscribers and profiles tables.
    """

    async def get_subscriber(self, user_id: UUID) -> Optional[SubscriptionRecord]:
        with _storage_errors("get subscriber"):
            matches = self._table(SUBSCRIBERS).models(user_id=str(user_id))
            return matches[0] if matches else None

    async def upsert_subscriber(self, record: SubscriptionRecord) -> None:
        with _storage_errors("upsert subscriber"):
            subscribers = self._table(SUBSCRIBERS)
            pos = subscribers.column("email")
            email = record.email.lower()
            match = next(
                (
                    (index, row) for index, row in subscribers.rows
                    if len(row) > pos and row[pos].lower() == email
                ),
                None,
            )
            batch = self._batch()
            if match is None:
                batch.append(subscribers.sheet, [_model_to_row(record)])
            else:
                batch.update(subscribers.sheet, match[0], _model_to_row(record))
            batch.commit()

    async def get_profile(self, user_id: UUID) -> Optional[Profile]:
        with _storage_errors("get profile"):
            matches = self._table(PROFILES).models(id=str(user_id))
            return matches[0] if matches else None

    async def upsert_profile(self, profile: Profile) -> None:
        with _storage_errors("upsert profile"):
            profiles = self._table(PROFILES)
            match = profiles.first(id=str(profile.id))
            batch = self._batch()
            if match is None:
                batch.append(profiles.sheet, [_model_to_row(profile)])
            else:
                batch.update(profiles.sheet, match[0], _model_to_row(profile))
            batch.commit()


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=UUID(safe_get(5)) if safe_get(5) else None,
            actor_id=UUID(safe_get(6)) if safe_get(6) else None,
            correlation_id=UUID(safe_get(7)) if safe_get(7) else None,
            description=safe_get(8),
            details=json.loads(safe_get(9)) if safe_get(9) else {},
            error_message=safe_get(10) or None,
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _append_row(self, row: list) -> None:
        sheet = self._client.get_audit_sheet()
        sheet.append_row(row, value_input_option="RAW")

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            self._append_row(event.to_sheets_row())
            return True
        except Exception as e:
            # Don't raise - audit logging should not break the main flow
            logger.warning(
                "audit_append_failed",
                error=str(e),
                event_id=str(event.event_id),
            )
            return False

    def _all_events(self) -> list[AuditEvent]:
        sheet = self._client.get_audit_sheet()
        events = []
        for row in sheet.get_all_values()[1:]:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except (ValueError, KeyError) as e:
                logger.warning("audit_row_skipped", error=str(e), event_id=row[0])
        return events

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID."""
        try:
            events = [e for e in self._all_events() if e.correlation_id == correlation_id]
            # Sort chronologically
            events.sort(key=lambda e: e.timestamp)
            return events
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}") from e

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by entity."""
        try:
            events = [
                e for e in self._all_events()
                if e.entity_type == entity_type and e.entity_id == entity_id
            ]
            events.sort(key=lambda e: e.timestamp)
            return events
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}") from e

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        try:
            events = self._all_events()
            # Sort newest first
            events.sort(key=lambda e: e.timestamp, reverse=True)
            return events[:limit]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}") from e
