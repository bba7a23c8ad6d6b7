"""Payment models: gateway configuration, global payment settings, manual
payment methods and the order record the checkout flow persists.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import UUID, ExcludeConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from storefront.core.database import Base
from storefront.core.encryption import decrypt_credential


class GatewayName(str, Enum):
    """Payment gateways with a registered handler."""
    MIDTRANS = "midtrans"
    DUITKU = "duitku"


class PaymentMode(str, Enum):
    """Global payment mode."""
    GATEWAY = "gateway"
    MANUAL = "manual"


class GatewayEnvironment(str, Enum):
    SANDBOX = "sandbox"
    PRODUCTION = "production"


class ManualMethodType(str, Enum):
    BANK_TRANSFER = "bank_transfer"
    EWALLET = "ewallet"


class OrderPaymentStatus(str, Enum):
    """Order payment status values.

    PENDING_MANUAL is displayed like PENDING but marks orders an admin has to
    reconcile by hand. PAID, FAILED and EXPIRED are terminal.
    """
    PENDING = "PENDING"
    PENDING_MANUAL = "PENDING_MANUAL"
    PAID = "PAID"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_pending(self) -> bool:
        return self in PENDING_STATUSES


TERMINAL_STATUSES = frozenset({
    OrderPaymentStatus.PAID,
    OrderPaymentStatus.FAILED,
    OrderPaymentStatus.EXPIRED,
})

PENDING_STATUSES = frozenset({
    OrderPaymentStatus.PENDING,
    OrderPaymentStatus.PENDING_MANUAL,
})


# Selectable methods offered at checkout, per gateway. The code is what the
# checkout page sends back as the gateway method code.
GATEWAY_DEFAULTS = {
    GatewayName.MIDTRANS.value: {
        "display_name": "Midtrans",
        "payment_methods": [
            {"code": "bca_va", "label": "BCA Virtual Account", "description": "Transfer via BCA VA"},
            {"code": "bni_va", "label": "BNI Virtual Account", "description": "Transfer via BNI VA"},
            {"code": "bri_va", "label": "BRI Virtual Account", "description": "Transfer via BRI VA"},
            {"code": "echannel", "label": "Mandiri Virtual Account", "description": "Transfer via Mandiri Bill Payment"},
            {"code": "qris", "label": "QRIS", "description": "Scan the QR code to pay"},
            {"code": "gopay", "label": "GoPay", "description": "Pay with GoPay"},
            {"code": "shopeepay", "label": "ShopeePay", "description": "Pay with ShopeePay"},
        ],
    },
    GatewayName.DUITKU.value: {
        "display_name": "Duitku",
        "payment_methods": [
            {"code": "BC", "label": "BCA Virtual Account", "description": "Transfer via BCA VA"},
            {"code": "M2", "label": "Mandiri Virtual Account", "description": "Transfer via Mandiri VA"},
            {"code": "I1", "label": "BNI Virtual Account", "description": "Transfer via BNI VA"},
            {"code": "BR", "label": "BRI Virtual Account", "description": "Transfer via BRI VA"},
            {"code": "SP", "label": "QRIS", "description": "Scan the QR code to pay"},
            {"code": "OV", "label": "OVO", "description": "Pay with OVO"},
            {"code": "DA", "label": "DANA", "description": "Pay with DANA"},
            {"code": "SA", "label": "ShopeePay", "description": "Pay with ShopeePay"},
        ],
    },
}


class PaymentGatewayConfig(Base):
    """Gateway credentials and environment, one row per known gateway.

    At most one row is active at a time; activation goes through
    PaymentGatewayRepository.set_active_gateway and is backed by a deferred
    exclusion constraint over the active rows.
    """

    __tablename__ = "payment_gateway_configs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    gateway_name: Mapped[str] = mapped_column(
        String(50), nullable=False, unique=True, index=True
    )
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Encrypted credentials
    api_key_encrypted: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    secret_key_encrypted: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    merchant_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    environment: Mapped[str] = mapped_column(
        String(20), nullable=False, default=GatewayEnvironment.SANDBOX.value
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    webhook_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Deferred so the single-statement activation UPDATE is checked once at
    # commit instead of row by row
    __table_args__ = (
        ExcludeConstraint(
            ("is_active", "="),
            name="ex_payment_gateway_configs_single_active",
            using="btree",
            where=text("is_active"),
            deferrable=True,
            initially="DEFERRED",
        ),
    )

    def __repr__(self) -> str:
        return f"<PaymentGatewayConfig(gateway={self.gateway_name}, active={self.is_active})>"

    @property
    def api_key(self) -> Optional[str]:
        return decrypt_credential(self.api_key_encrypted)

    @property
    def secret_key(self) -> Optional[str]:
        return decrypt_credential(self.secret_key_encrypted)

    @property
    def is_production(self) -> bool:
        return self.environment == GatewayEnvironment.PRODUCTION.value

    def has_credentials(self) -> bool:
        """Check if both credentials are configured."""
        return bool(self.api_key_encrypted and self.secret_key_encrypted)


class PaymentSettings(Base):
    """Singleton row holding the global payment mode."""

    __tablename__ = "payment_settings"

    SINGLETON_ID = 1

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=SINGLETON_ID)
    payment_mode: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentMode.GATEWAY.value
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<PaymentSettings(mode={self.payment_mode})>"


class ManualPaymentMethod(Base):
    """Bank account or e-wallet shown to customers in manual mode."""

    __tablename__ = "manual_payment_methods"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    provider_name: Mapped[str] = mapped_column(String(100), nullable=False)
    account_name: Mapped[str] = mapped_column(String(150), nullable=False)
    account_number: Mapped[str] = mapped_column(String(100), nullable=False)
    logo_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<ManualPaymentMethod(provider={self.provider_name}, active={self.is_active})>"


class Order(Base):
    """Order record written by checkout once the processor has returned."""

    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    # Public order id sent to gateways as their order reference
    order_code: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True, index=True
    )
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), nullable=True, index=True
    )

    customer_email: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    items: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    # Amounts in integer currency units
    total_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    original_total: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    discount_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    promo_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=OrderPaymentStatus.PENDING.value, index=True
    )
    payment_deadline: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    payment_gateway: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    payment_method: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    payment_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    payment_code: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    transaction_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    manual_payment_method_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("manual_payment_methods.id", ondelete="SET NULL"),
        nullable=True,
    )
    payment_confirmed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    download_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_orders_status_deadline", "payment_status", "payment_deadline"),
    )

    def __repr__(self) -> str:
        return f"<Order(code={self.order_code}, status={self.payment_status})>"

    @property
    def status(self) -> OrderPaymentStatus:
        return OrderPaymentStatus(self.payment_status)
