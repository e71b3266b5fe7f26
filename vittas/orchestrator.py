"""
Main Orchestrator for Vittas

This module ties together all the components:
1. Groups and invitations
2. Shared expenses (split → validate → atomic save)
3. Subscriptions (webhook effect, status reads, per-session reconciler)

DESIGN DECISION: The orchestrator picks the storage backend once and hands
the same instances to every service, so groups, expenses and subscriptions
always see the same store. Without Google Sheets configured, everything
runs against in-memory storage with local-only audit logging.
"""

from typing import NamedTuple, Optional
from uuid import UUID

import structlog

from vittas.audit import AuditLogger
from vittas.config import validate_all_settings
from vittas.ledger import ExpenseLedger, GroupService
from vittas.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
    GoogleSheetsSubscriptionStorage,
    InMemoryStorage,
    LedgerStorageInterface,
    SubscriptionStorageInterface,
)
from vittas.subscriptions import SubscriptionReconciler, SubscriptionService


logger = structlog.get_logger(__name__)


class AppComponents(NamedTuple):
    groups: GroupService
    ledger: ExpenseLedger
    subscriptions: SubscriptionService
    subscription_storage: SubscriptionStorageInterface
    audit_logger: AuditLogger
    sheets_client: Optional[GoogleSheetsClient]


def create_app_components(
    use_storage: bool = True,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to initialize Google Sheets storage.
                    Set to False for testing without storage.

    Returns:
        AppComponents with the services wired to one backend
    """
    sheets_client = None
    ledger_storage: LedgerStorageInterface
    subscription_storage: SubscriptionStorageInterface

    if use_storage:
        checks = validate_all_settings()
        if not checks["google_sheets"]:
            logger.warning(
                "storage_not_configured",
                error=checks.get("google_sheets_error"),
            )
            use_storage = False

    if use_storage:
        try:
            sheets_client = GoogleSheetsClient()
            ledger_storage = GoogleSheetsLedgerStorage(sheets_client)
            subscription_storage = GoogleSheetsSubscriptionStorage(sheets_client)
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
        except Exception as e:
            # Configured but unreachable - continue without it
            logger.warning("storage_unavailable", error=str(e))
            use_storage = False

    if not use_storage:
        sheets_client = None
        memory = InMemoryStorage()
        ledger_storage = memory
        subscription_storage = memory
        audit_logger = AuditLogger()  # Local-only logging

    return AppComponents(
        groups=GroupService(ledger_storage, audit_logger),
        ledger=ExpenseLedger(ledger_storage, audit_logger),
        subscriptions=SubscriptionService(subscription_storage, audit_logger),
        subscription_storage=subscription_storage,
        audit_logger=audit_logger,
        sheets_client=sheets_client,
    )


def create_reconciler(
    components: AppComponents,
    user_id: UUID,
) -> SubscriptionReconciler:
    """A fresh reconciler for one user session."""
    return SubscriptionReconciler(
        user_id=user_id,
        storage=components.subscription_storage,
        status_service=components.subscriptions,
        audit_logger=components.audit_logger,
    )
