"""Pydantic schemas for the payment API."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field
from pydantic.alias_generators import to_camel

from storefront.core.encryption import mask_credential


# ==================== Checkout Schemas ====================

class CheckoutItem(BaseModel):
    """Priced line item. Prices are integer rupiah."""
    id: str
    name: str = Field(..., min_length=1)
    price: int = Field(..., ge=0)
    quantity: int = Field(default=1, ge=1)


class CheckoutRequest(BaseModel):
    """Checkout request from the storefront."""
    items: list[CheckoutItem] = Field(..., min_length=1)
    customer_email: EmailStr
    customer_name: str = Field(default="Customer", min_length=1)
    customer_phone: Optional[str] = None
    payment_method: Optional[str] = Field(None, description="Gateway method code, e.g. bca_va or BC")
    manual_method_id: Optional[uuid.UUID] = None
    discount_amount: int = Field(default=0, ge=0)
    promo_code: Optional[str] = Field(None, max_length=50)
    user_id: Optional[uuid.UUID] = None


class ManualMethodResponse(BaseModel):
    """Manual payment method as shown to customers."""
    id: str
    type: str
    provider_name: str
    account_name: str
    account_number: str
    logo_url: Optional[str] = None
    sort_order: int = 0


class CheckoutResponse(BaseModel):
    """Response for a created order."""
    mode: str
    order_id: uuid.UUID
    order_code: str
    payment_status: str
    gateway_name: Optional[str] = None
    payment_type: Optional[str] = None
    payment_code: Optional[str] = None
    qr_url: Optional[str] = None
    redirect_url: Optional[str] = None
    token: Optional[str] = None
    expiry_time: Optional[str] = None
    manual_methods: Optional[list[ManualMethodResponse]] = None


# ==================== Public Config Schemas ====================

class ActiveGateway(BaseModel):
    name: str
    display_name: str


class GatewayMethod(BaseModel):
    code: str
    label: str
    description: str


class PaymentConfigResponse(BaseModel):
    """Active payment mode and what checkout should offer."""
    mode: str
    active_gateway: Optional[ActiveGateway] = None
    gateway_methods: list[GatewayMethod] = []
    manual_methods: list[ManualMethodResponse] = []


# ==================== Payment Instruction Schemas ====================

class InstructionManualMethod(BaseModel):
    id: str
    type: str
    provider_name: str
    account_name: str
    account_number: str
    logo_url: Optional[str] = None


class PaymentInstructionResponse(BaseModel):
    """Order status view polled by the payment instruction page.

    Serialized with camelCase keys.
    """
    order_id: str
    total_amount: int
    original_total: int
    discount_amount: int
    promo_code: Optional[str] = None
    payment_status: str
    payment_deadline: Optional[str] = None
    payment_gateway: Optional[str] = None
    payment_method: Optional[str] = None
    payment_type: Optional[str] = None
    payment_code: Optional[str] = None
    transaction_id: Optional[str] = None
    manual_method: Optional[InstructionManualMethod] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True


# ==================== Webhook Schemas ====================

class WebhookAck(BaseModel):
    status: str = "ok"


# ==================== Admin Schemas ====================

class GatewayConfigSave(BaseModel):
    """Create or update a gateway config. Blank keys keep the stored ones."""
    gateway_name: str
    display_name: str
    environment: str = "sandbox"
    api_key: Optional[str] = Field(None, description="Client/API key (will be encrypted)")
    secret_key: Optional[str] = Field(None, description="Server/secret key (will be encrypted)")
    merchant_id: Optional[str] = None


class GatewayConfigResponse(BaseModel):
    """Gateway config as shown to admins, credentials masked."""
    id: uuid.UUID
    gateway_name: str
    display_name: str
    environment: str
    is_active: bool
    merchant_id: Optional[str] = None
    has_credentials: bool
    api_key_masked: str
    secret_key_masked: str

    @classmethod
    def from_config(cls, config) -> "GatewayConfigResponse":
        return cls(
            id=config.id,
            gateway_name=config.gateway_name,
            display_name=config.display_name,
            environment=config.environment,
            is_active=config.is_active,
            merchant_id=config.merchant_id,
            has_credentials=config.has_credentials(),
            api_key_masked=mask_credential(config.api_key),
            secret_key_masked=mask_credential(config.secret_key),
        )


class ActivateGatewayResponse(BaseModel):
    id: uuid.UUID
    is_active: bool
    message: str


class PaymentModeUpdate(BaseModel):
    mode: str = Field(..., description="gateway or manual")


class PaymentModeResponse(BaseModel):
    mode: str


class ManualMethodSave(BaseModel):
    type: str = Field(..., description="bank_transfer or ewallet")
    provider_name: str
    account_name: str
    account_number: str
    logo_url: Optional[str] = None
    sort_order: int = 0


class ManualMethodToggle(BaseModel):
    is_active: bool


class ManualMethodAdminResponse(BaseModel):
    id: uuid.UUID
    type: str
    provider_name: str
    account_name: str
    account_number: str
    logo_url: Optional[str] = None
    is_active: bool
    sort_order: int

    class Config:
        from_attributes = True


class OrderStatusUpdate(BaseModel):
    status: str = Field(..., description="PENDING, PENDING_MANUAL, PAID, FAILED or EXPIRED")


class OrderStatusResponse(BaseModel):
    id: uuid.UUID
    order_code: str
    payment_status: str
    payment_confirmed_at: Optional[datetime] = None

    class Config:
        from_attributes = True
