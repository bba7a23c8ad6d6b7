"""Factories and transport stubs shared by the payment tests."""

import json
import uuid
from typing import Callable, Optional

import httpx

from storefront.core.encryption import encrypt_credential
from storefront.modules.payment_gateway.interface import (
    CustomerDetails,
    PaymentItem,
    PaymentRequest,
)
from storefront.modules.payment_gateway.models import ManualPaymentMethod, Order, PaymentGatewayConfig


class RecordingTransport:
    """httpx transport stub that records every request it receives."""

    def __init__(self, status_code: int = 200, body: Optional[dict] = None, text: Optional[str] = None):
        self.status_code = status_code
        self.body = body if body is not None else {}
        self.text = text
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.text is not None:
            return httpx.Response(self.status_code, text=self.text)
        return httpx.Response(self.status_code, json=self.body)

    def client_factory(self) -> Callable[[], httpx.AsyncClient]:
        return lambda: httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    @property
    def call_count(self) -> int:
        return len(self.requests)

    def last_json(self) -> dict:
        return json.loads(self.requests[-1].content)


def make_gateway_config(
    gateway_name: str = "midtrans",
    display_name: Optional[str] = None,
    api_key: Optional[str] = "client-key",
    secret_key: Optional[str] = "server-key",
    merchant_id: Optional[str] = None,
    environment: str = "sandbox",
    is_active: bool = True,
) -> PaymentGatewayConfig:
    return PaymentGatewayConfig(
        id=uuid.uuid4(),
        gateway_name=gateway_name,
        display_name=display_name or gateway_name.title(),
        api_key_encrypted=encrypt_credential(api_key) if api_key else None,
        secret_key_encrypted=encrypt_credential(secret_key) if secret_key else None,
        merchant_id=merchant_id,
        environment=environment,
        is_active=is_active,
    )


def make_manual_method(
    provider_name: str = "BCA",
    sort_order: int = 0,
    is_active: bool = True,
) -> ManualPaymentMethod:
    return ManualPaymentMethod(
        id=uuid.uuid4(),
        type="bank_transfer",
        provider_name=provider_name,
        account_name="PT Toko Digital",
        account_number="1234567890",
        logo_url=None,
        is_active=is_active,
        sort_order=sort_order,
    )


def make_payment_request(
    order_id: str = "CGS-1718000000000-abcde",
    gross_amount: int = 150000,
    payment_method: Optional[str] = None,
    phone: Optional[str] = None,
    item_names: Optional[list[str]] = None,
) -> PaymentRequest:
    names = item_names or ["Notion Template Bundle"]
    return PaymentRequest(
        order_id=order_id,
        gross_amount=gross_amount,
        items=[
            PaymentItem(id=f"prod-{i}", price=gross_amount // len(names), quantity=1, name=name)
            for i, name in enumerate(names)
        ],
        customer=CustomerDetails(email="buyer@example.com", first_name="Budi", phone=phone),
        payment_method=payment_method,
    )


def make_order(**overrides) -> Order:
    fields = dict(
        id=uuid.uuid4(),
        order_code="CGS-1718000000000-abcde",
        customer_email="buyer@example.com",
        customer_name="Budi",
        items=[{"id": "prod-0", "name": "Notion Template Bundle", "price": 150000, "quantity": 1}],
        total_amount=150000,
        original_total=150000,
        discount_amount=0,
        payment_status="PENDING",
        payment_gateway="midtrans",
        payment_method="bca_va",
        payment_type="bank_transfer",
        payment_code="12345",
        transaction_id="tx-1",
        download_count=0,
    )
    fields.update(overrides)
    return Order(**fields)
