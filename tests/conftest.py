"""
Shared fixtures.

Everything runs against in-memory storage; no test talks to Google.
"""

from uuid import UUID, uuid4

import pytest

from vittas.audit import AuditLogger
from vittas.ledger import ExpenseLedger, GroupService
from vittas.models.ledger import Group, Profile
from vittas.services.storage import InMemoryAuditStorage, InMemoryStorage


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage) -> AuditLogger:
    return AuditLogger(audit_storage)


@pytest.fixture
def ledger(storage, audit_logger) -> ExpenseLedger:
    return ExpenseLedger(storage, audit_logger)


@pytest.fixture
def groups(storage, audit_logger) -> GroupService:
    return GroupService(storage, audit_logger, invitation_expiry_days=7)


@pytest.fixture
def alice() -> UUID:
    return uuid4()


@pytest.fixture
def bob() -> UUID:
    return uuid4()


@pytest.fixture
def carol() -> UUID:
    return uuid4()


@pytest.fixture
async def trip(storage, groups, alice, bob, carol) -> Group:
    """A group created by alice with bob and carol as members, profiles included."""
    group = await groups.create_group("Goa trip", None, alice)
    for user_id in (bob, carol):
        invitation = await groups.create_invitation(group.id, alice)
        await groups.accept_invitation(invitation.id, user_id)

    await storage.upsert_profile(Profile(id=alice, full_name="Alice", email="alice@example.com"))
    await storage.upsert_profile(Profile(id=bob, email="bob@example.com"))
    await storage.upsert_profile(Profile(id=carol, full_name="Carol"))
    return group
