"""Shared fixtures for payment core tests."""

import pytest

from storefront.modules.payment_gateway.interface import PaymentRequest
from storefront.modules.payment_gateway.models import PaymentGatewayConfig

from helpers import make_gateway_config, make_payment_request


@pytest.fixture
def payment_request() -> PaymentRequest:
    return make_payment_request()


@pytest.fixture
def midtrans_config() -> PaymentGatewayConfig:
    return make_gateway_config("midtrans", display_name="Midtrans")


@pytest.fixture
def duitku_config() -> PaymentGatewayConfig:
    return make_gateway_config(
        "duitku",
        display_name="Duitku",
        api_key="duitku-api-key",
        secret_key="duitku-api-key",
        merchant_id="D1234",
    )
