"""
Tests for the payment repositories.

Statements are captured from a mocked AsyncSession and compiled against the
PostgreSQL dialect, so these tests check the SQL each operation issues
without a database.
"""

import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql

from storefront.modules.payment_gateway.models import OrderPaymentStatus, PaymentSettings
from storefront.modules.payment_gateway.repository import (
    ManualPaymentMethodRepository,
    OrderRepository,
    PaymentGatewayRepository,
    PaymentSettingsRepository,
)
from storefront.modules.payment_gateway.status import can_transition

from helpers import make_gateway_config, make_order

PENDING_VALUES = ["PENDING", "PENDING_MANUAL"]


def mock_session(scalar=None, rowcount=1):
    result = MagicMock()
    result.scalar_one_or_none.return_value = scalar
    result.rowcount = rowcount
    session = MagicMock()
    session.execute = AsyncMock(return_value=result)
    session.flush = AsyncMock()
    session.get = AsyncMock(return_value=None)
    session.add = MagicMock()
    return session


def compile_pg(statement):
    return statement.compile(dialect=postgresql.dialect())


def executed(session, index=-1):
    return session.execute.await_args_list[index].args[0]


def list_params(compiled):
    return [sorted(v) for v in compiled.params.values() if isinstance(v, (list, tuple))]


class TestSetActiveGateway:

    @pytest.mark.asyncio
    async def test_single_update_without_where(self):
        """Activation flips every row in one statement."""
        config = make_gateway_config("duitku", is_active=False)
        session = mock_session(scalar=config)
        repo = PaymentGatewayRepository(session)

        assert await repo.set_active_gateway(config.id) is True

        updates = [
            call.args[0] for call in session.execute.await_args_list
            if getattr(call.args[0], "is_dml", False)
        ]
        assert len(updates) == 1
        sql = str(compile_pg(updates[0]))
        assert sql.startswith("UPDATE payment_gateway_configs SET is_active=")
        assert "payment_gateway_configs.id = " in sql
        assert "WHERE" not in sql
        assert config.id in compile_pg(updates[0]).params.values()
        session.flush.assert_awaited()

    @pytest.mark.asyncio
    async def test_unknown_id_changes_nothing(self):
        session = mock_session(scalar=None)
        repo = PaymentGatewayRepository(session)

        assert await repo.set_active_gateway(uuid.uuid4()) is False
        assert session.execute.await_count == 1
        assert not executed(session).is_dml


class TestGatewayConfigs:

    @pytest.mark.asyncio
    async def test_create_config_starts_inactive(self):
        session = mock_session()
        repo = PaymentGatewayRepository(session)

        config = await repo.create_config("midtrans", api_key_encrypted="a", secret_key_encrypted="b")

        assert config.is_active is False
        assert config.display_name == "Midtrans"
        session.add.assert_called_once_with(config)

    @pytest.mark.asyncio
    async def test_update_config_keeps_values_passed_as_none(self):
        config = make_gateway_config("midtrans")
        stored_secret = config.secret_key_encrypted
        session = mock_session(scalar=config)
        repo = PaymentGatewayRepository(session)

        updated = await repo.update_config(config.id, environment="production", secret_key_encrypted=None)

        assert updated.environment == "production"
        assert updated.secret_key_encrypted == stored_secret

    @pytest.mark.asyncio
    async def test_active_config_query(self):
        session = mock_session()
        repo = PaymentGatewayRepository(session)

        await repo.get_active_config()

        sql = str(compile_pg(executed(session)))
        assert "payment_gateway_configs.is_active = true" in sql
        assert "LIMIT" in sql


class TestPaymentSettings:

    @pytest.mark.asyncio
    async def test_missing_row_reads_as_gateway_mode(self):
        repo = PaymentSettingsRepository(mock_session(scalar=None))

        assert await repo.get_payment_mode() == "gateway"

    @pytest.mark.asyncio
    async def test_stored_mode_returned(self):
        repo = PaymentSettingsRepository(mock_session(scalar="manual"))

        assert await repo.get_payment_mode() == "manual"

    @pytest.mark.asyncio
    async def test_set_mode_creates_singleton_row(self):
        session = mock_session()
        repo = PaymentSettingsRepository(session)

        row = await repo.set_payment_mode("manual")

        assert row.id == PaymentSettings.SINGLETON_ID
        assert row.payment_mode == "manual"
        session.add.assert_called_once_with(row)

    @pytest.mark.asyncio
    async def test_set_mode_updates_existing_row(self):
        existing = PaymentSettings(id=1, payment_mode="gateway")
        session = mock_session()
        session.get = AsyncMock(return_value=existing)
        repo = PaymentSettingsRepository(session)

        row = await repo.set_payment_mode("manual")

        assert row is existing
        assert existing.payment_mode == "manual"
        session.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_mode_rejected(self):
        repo = PaymentSettingsRepository(mock_session())

        with pytest.raises(ValueError):
            await repo.set_payment_mode("crypto")


class TestManualMethods:

    @pytest.mark.asyncio
    async def test_new_methods_start_active(self):
        repo = ManualPaymentMethodRepository(mock_session())

        method = await repo.create_method(
            type="bank_transfer",
            provider_name="BCA",
            account_name="PT Toko",
            account_number="123",
            sort_order=0,
        )

        assert method.is_active is True

    @pytest.mark.asyncio
    async def test_delete_reports_missing_row(self):
        repo = ManualPaymentMethodRepository(mock_session(rowcount=0))

        assert await repo.delete_method(uuid.uuid4()) is False


class TestOrderStatusUpdates:

    @pytest.mark.asyncio
    async def test_apply_status_only_matches_pending_rows(self):
        session = mock_session(rowcount=1)
        repo = OrderRepository(session)

        assert await repo.apply_status("CGS-1-abcde", OrderPaymentStatus.FAILED) is True

        compiled = compile_pg(executed(session))
        sql = str(compiled)
        assert sql.startswith("UPDATE orders SET payment_status=")
        assert "orders.payment_status IN" in sql
        assert PENDING_VALUES in list_params(compiled)
        assert "payment_confirmed_at" not in sql

    @pytest.mark.asyncio
    async def test_apply_paid_stamps_confirmation(self):
        session = mock_session(rowcount=1)
        repo = OrderRepository(session)
        confirmed = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

        await repo.apply_status("CGS-1-abcde", OrderPaymentStatus.PAID, transaction_id="tx-9", confirmed_at=confirmed)

        params = compile_pg(executed(session)).params
        assert "PAID" in params.values()
        assert "tx-9" in params.values()
        assert confirmed in params.values()

    @pytest.mark.asyncio
    async def test_apply_status_on_terminal_order_reports_no_update(self):
        repo = OrderRepository(mock_session(rowcount=0))

        assert await repo.apply_status("CGS-1-abcde", OrderPaymentStatus.PAID) is False

    @pytest.mark.asyncio
    async def test_expire_overdue(self):
        session = mock_session(rowcount=3)
        repo = OrderRepository(session)
        now = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

        assert await repo.expire_overdue(now) == 3

        compiled = compile_pg(executed(session))
        sql = str(compiled)
        assert "orders.payment_deadline IS NOT NULL" in sql
        assert "orders.payment_deadline <=" in sql
        assert PENDING_VALUES in list_params(compiled)
        assert "EXPIRED" in compiled.params.values()
        assert now in compiled.params.values()

    @pytest.mark.asyncio
    async def test_pending_guard_follows_transition_rule(self):
        session = mock_session(rowcount=0)

        await OrderRepository(session).apply_status("CGS-1-abcde", OrderPaymentStatus.EXPIRED)

        movable = [s.value for s in OrderPaymentStatus if can_transition(s, OrderPaymentStatus.PAID)]
        assert movable == PENDING_VALUES
        assert movable in list_params(compile_pg(executed(session)))

    @pytest.mark.asyncio
    async def test_admin_override_sets_any_status(self):
        order = make_order(payment_status="EXPIRED")
        repo = OrderRepository(mock_session(scalar=order))

        updated = await repo.set_status(order.id, OrderPaymentStatus.PAID)

        assert updated.payment_status == "PAID"
        assert updated.payment_confirmed_at is not None
