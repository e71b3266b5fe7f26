"""
Tests for wiring the services together.
"""

from decimal import Decimal
from uuid import uuid4

from vittas.config import get_settings
from vittas.models.subscription import SubscriptionTier
from vittas.orchestrator import create_app_components, create_reconciler
from vittas.services.storage import InMemoryStorage


class TestCreateAppComponents:
    """Tests for the component factory."""

    def test_without_storage_uses_memory(self):
        components = create_app_components(use_storage=False)

        assert isinstance(components.subscription_storage, InMemoryStorage)
        assert components.sheets_client is None

    async def test_services_share_one_store(self):
        """A group made by one service is visible to the ledger."""
        components = create_app_components(use_storage=False)
        payer, friend = uuid4(), uuid4()

        group = await components.groups.create_group("Flat", None, payer)
        invitation = await components.groups.create_invitation(group.id, payer)
        await components.groups.accept_invitation(invitation.id, friend)
        await components.ledger.add_expense(
            "Internet", None, Decimal("60.00"), payer, group.id, members=[friend],
        )

        [balance_payer, balance_friend] = await components.ledger.get_member_balances(group.id)
        assert balance_payer.owed == Decimal("30.00")
        assert balance_friend.owes == Decimal("30.00")

    async def test_reconciler_sees_activation(self):
        components = create_app_components(use_storage=False)
        user_id = uuid4()
        await components.subscriptions.activate(user_id, "dev@example.com", "Premium")

        reconciler = create_reconciler(components, user_id)
        info = await reconciler.refresh()

        assert info.tier == SubscriptionTier.PREMIUM
        assert reconciler.can_access("analytics") is True

    def test_falls_back_without_sheets_config(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("GOOGLE_SHEETS_CREDENTIALS_PATH", raising=False)
        monkeypatch.delenv("GOOGLE_SHEETS_SPREADSHEET_ID", raising=False)
        get_settings.cache_clear()
        try:
            components = create_app_components()
        finally:
            get_settings.cache_clear()

        assert isinstance(components.subscription_storage, InMemoryStorage)
        assert components.sheets_client is None
