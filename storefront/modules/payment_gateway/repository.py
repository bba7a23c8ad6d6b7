"""Repositories for payment configuration, manual methods and orders."""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import and_, delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.modules.payment_gateway.models import (
    GATEWAY_DEFAULTS,
    ManualPaymentMethod,
    Order,
    OrderPaymentStatus,
    PaymentGatewayConfig,
    PaymentMode,
    PaymentSettings,
)
from storefront.modules.payment_gateway.status import can_transition

# Stored statuses a notification or the expiry job may still move; used as
# the WHERE guard so a terminal status is never overwritten.
_PENDING_VALUES = [
    s.value for s in OrderPaymentStatus if can_transition(s, OrderPaymentStatus.EXPIRED)
]


class PaymentGatewayRepository:
    """Repository for payment gateway configuration operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_all_configs(self) -> list[PaymentGatewayConfig]:
        """Get all gateway configurations."""
        result = await self.session.execute(
            select(PaymentGatewayConfig).order_by(PaymentGatewayConfig.gateway_name)
        )
        return list(result.scalars().all())

    async def get_active_config(self) -> Optional[PaymentGatewayConfig]:
        """Get the single active gateway configuration."""
        result = await self.session.execute(
            select(PaymentGatewayConfig)
            .where(PaymentGatewayConfig.is_active == True)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_config_by_name(self, gateway_name: str) -> Optional[PaymentGatewayConfig]:
        result = await self.session.execute(
            select(PaymentGatewayConfig)
            .where(PaymentGatewayConfig.gateway_name == gateway_name)
        )
        return result.scalar_one_or_none()

    async def get_config_by_id(self, config_id: uuid.UUID) -> Optional[PaymentGatewayConfig]:
        result = await self.session.execute(
            select(PaymentGatewayConfig)
            .where(PaymentGatewayConfig.id == config_id)
        )
        return result.scalar_one_or_none()

    async def create_config(
        self,
        gateway_name: str,
        display_name: Optional[str] = None,
        api_key_encrypted: Optional[str] = None,
        secret_key_encrypted: Optional[str] = None,
        merchant_id: Optional[str] = None,
        environment: str = "sandbox",
    ) -> PaymentGatewayConfig:
        """Create a new, inactive gateway configuration."""
        defaults = GATEWAY_DEFAULTS.get(gateway_name, {})

        config = PaymentGatewayConfig(
            gateway_name=gateway_name,
            display_name=display_name or defaults.get("display_name", gateway_name),
            api_key_encrypted=api_key_encrypted,
            secret_key_encrypted=secret_key_encrypted,
            merchant_id=merchant_id,
            environment=environment,
            is_active=False,
        )

        self.session.add(config)
        await self.session.flush()
        return config

    async def update_config(
        self,
        config_id: uuid.UUID,
        **kwargs
    ) -> Optional[PaymentGatewayConfig]:
        """Update gateway configuration. None values are left untouched."""
        config = await self.get_config_by_id(config_id)
        if not config:
            return None

        for key, value in kwargs.items():
            if value is not None and hasattr(config, key):
                setattr(config, key, value)

        await self.session.flush()
        return config

    async def set_active_gateway(self, config_id: uuid.UUID) -> bool:
        """Make one gateway the active one.

        A single UPDATE flips every row at once, so readers never observe
        zero or two active gateways.

        Returns:
            False if no row has the given id (nothing is changed then)
        """
        if await self.get_config_by_id(config_id) is None:
            return False

        await self.session.execute(
            update(PaymentGatewayConfig)
            .values(is_active=(PaymentGatewayConfig.id == config_id))
            .execution_options(synchronize_session="fetch")
        )
        await self.session.flush()
        return True

    async def initialize_default_configs(self) -> list[PaymentGatewayConfig]:
        """Create placeholder rows (no credentials) for known gateways."""
        configs = []
        for gateway_name, defaults in GATEWAY_DEFAULTS.items():
            existing = await self.get_config_by_name(gateway_name)
            if not existing:
                config = PaymentGatewayConfig(
                    gateway_name=gateway_name,
                    display_name=defaults["display_name"],
                    environment="sandbox",
                    is_active=False,
                )
                self.session.add(config)
                configs.append(config)

        await self.session.flush()
        return configs


class PaymentSettingsRepository:
    """Repository for the global payment settings row."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_settings(self) -> Optional[PaymentSettings]:
        return await self.session.get(PaymentSettings, PaymentSettings.SINGLETON_ID)

    async def get_payment_mode(self) -> str:
        """Get the global payment mode. A missing row reads as gateway mode."""
        result = await self.session.execute(
            select(PaymentSettings.payment_mode)
            .where(PaymentSettings.id == PaymentSettings.SINGLETON_ID)
        )
        mode = result.scalar_one_or_none()
        return mode or PaymentMode.GATEWAY.value

    async def set_payment_mode(self, mode: str) -> PaymentSettings:
        """Set the global payment mode, creating the settings row if needed."""
        mode = PaymentMode(mode).value

        settings_row = await self.get_settings()
        if settings_row is None:
            settings_row = PaymentSettings(id=PaymentSettings.SINGLETON_ID, payment_mode=mode)
            self.session.add(settings_row)
        else:
            settings_row.payment_mode = mode

        await self.session.flush()
        return settings_row


class ManualPaymentMethodRepository:
    """Repository for manual payment method operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_all_methods(self) -> list[ManualPaymentMethod]:
        result = await self.session.execute(
            select(ManualPaymentMethod).order_by(ManualPaymentMethod.sort_order)
        )
        return list(result.scalars().all())

    async def get_method(self, method_id: uuid.UUID) -> Optional[ManualPaymentMethod]:
        result = await self.session.execute(
            select(ManualPaymentMethod).where(ManualPaymentMethod.id == method_id)
        )
        return result.scalar_one_or_none()

    async def create_method(self, **fields) -> ManualPaymentMethod:
        """Create a manual payment method. New methods start active."""
        method = ManualPaymentMethod(is_active=True, **fields)
        self.session.add(method)
        await self.session.flush()
        return method

    async def update_method(
        self,
        method_id: uuid.UUID,
        **kwargs
    ) -> Optional[ManualPaymentMethod]:
        method = await self.get_method(method_id)
        if not method:
            return None

        for key, value in kwargs.items():
            if hasattr(method, key):
                setattr(method, key, value)

        await self.session.flush()
        return method

    async def set_active(self, method_id: uuid.UUID, is_active: bool) -> Optional[ManualPaymentMethod]:
        return await self.update_method(method_id, is_active=is_active)

    async def delete_method(self, method_id: uuid.UUID) -> bool:
        result = await self.session.execute(
            delete(ManualPaymentMethod).where(ManualPaymentMethod.id == method_id)
        )
        return result.rowcount > 0


class OrderRepository:
    """Repository for the order fields the payment core owns."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_code(self, order_code: str) -> Optional[Order]:
        result = await self.session.execute(
            select(Order).where(Order.order_code == order_code)
        )
        return result.scalar_one_or_none()

    async def get_by_id(self, order_id: uuid.UUID) -> Optional[Order]:
        result = await self.session.execute(
            select(Order).where(Order.id == order_id)
        )
        return result.scalar_one_or_none()

    async def create_order(self, **fields) -> Order:
        order = Order(**fields)
        self.session.add(order)
        await self.session.flush()
        return order

    async def apply_status(
        self,
        order_code: str,
        status: OrderPaymentStatus,
        transaction_id: Optional[str] = None,
        confirmed_at: Optional[datetime] = None,
    ) -> bool:
        """Move a pending order to a new status.

        The WHERE clause only matches pending rows, so a terminal status is
        never overwritten even when two notifications race.

        Returns:
            True if a row was updated
        """
        values: dict = {"payment_status": OrderPaymentStatus(status).value}
        if status == OrderPaymentStatus.PAID:
            values["payment_confirmed_at"] = confirmed_at or datetime.now(timezone.utc)
            if transaction_id:
                values["transaction_id"] = transaction_id

        result = await self.session.execute(
            update(Order)
            .where(
                and_(
                    Order.order_code == order_code,
                    Order.payment_status.in_(_PENDING_VALUES),
                )
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def set_status(self, order_id: uuid.UUID, status: OrderPaymentStatus) -> Optional[Order]:
        """Set an order's status unconditionally (admin reconciliation)."""
        order = await self.get_by_id(order_id)
        if not order:
            return None

        order.payment_status = OrderPaymentStatus(status).value
        if status == OrderPaymentStatus.PAID and order.payment_confirmed_at is None:
            order.payment_confirmed_at = datetime.now(timezone.utc)

        await self.session.flush()
        return order

    async def expire_overdue(self, now: Optional[datetime] = None) -> int:
        """Flip pending orders whose deadline has passed to EXPIRED.

        Returns:
            Number of orders expired
        """
        now = now or datetime.now(timezone.utc)
        result = await self.session.execute(
            update(Order)
            .where(
                and_(
                    Order.payment_status.in_(_PENDING_VALUES),
                    Order.payment_deadline.is_not(None),
                    Order.payment_deadline <= now,
                )
            )
            .values(payment_status=OrderPaymentStatus.EXPIRED.value)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
