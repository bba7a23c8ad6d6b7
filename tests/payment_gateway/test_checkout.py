"""
Tests for checkout: order code minting, order persistence after the
processor returns, and the status view served to polling clients.
"""

import re
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from hypothesis import given, settings, strategies as st

from storefront.modules.payment_gateway.interface import (
    CustomerDetails,
    GatewayRejectedError,
    GatewayTransactionResult,
    ManualMethodSnapshot,
    PaymentConfigurationError,
    PaymentItem,
    PaymentResult,
)
from storefront.modules.payment_gateway.models import Order
from storefront.modules.payment_gateway.service import (
    CheckoutService,
    PaymentInstructionService,
    generate_order_code,
    parse_gateway_expiry,
)

from helpers import make_manual_method, make_order

ORDER_CODE_RE = re.compile(r"^CGS-\d+-[a-z0-9]{5}$")

ITEMS = [
    PaymentItem(id="prod-1", price=100000, quantity=1, name="Notion Template Bundle"),
    PaymentItem(id="prod-2", price=25000, quantity=2, name="Icon Pack"),
]
CUSTOMER = CustomerDetails(email="buyer@example.com", first_name="Budi", phone="0812")


def make_checkout(payment=None, error=None):
    processor = MagicMock()
    processor.process_payment = AsyncMock(return_value=payment, side_effect=error)
    service = CheckoutService(MagicMock(), processor=processor)
    service.order_repo.create_order = AsyncMock(side_effect=lambda **fields: Order(**fields))
    return service


def gateway_payment(order_id="CGS-1-abcde", expiry_time="2026-10-20 10:00:00"):
    return PaymentResult.for_gateway(order_id, "midtrans", GatewayTransactionResult(
        transaction_id="tx-1",
        payment_type="bank_transfer",
        payment_code="12345",
        expiry_time=expiry_time,
    ))


class TestOrderCode:

    @given(now_ms=st.integers(min_value=0, max_value=10**13))
    @settings(max_examples=100)
    def test_format(self, now_ms: int):
        code = generate_order_code(now_ms)

        assert ORDER_CODE_RE.match(code)
        assert code.startswith(f"CGS-{now_ms}-")

    def test_codes_are_distinct(self):
        codes = {generate_order_code(1718000000000) for _ in range(200)}

        assert len(codes) > 190


class TestGatewayExpiry:

    def test_midtrans_naive_time_is_jakarta(self):
        deadline = parse_gateway_expiry("midtrans", "2026-10-20 10:00:00")

        assert deadline == datetime(2026, 10, 20, 3, 0, tzinfo=timezone.utc)

    def test_duitku_iso_time(self):
        deadline = parse_gateway_expiry("duitku", "2026-10-20T03:00:00+00:00")

        assert deadline == datetime(2026, 10, 20, 3, 0, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", [None, "", "tomorrow"])
    def test_missing_or_garbled(self, value):
        assert parse_gateway_expiry("midtrans", value) is None


class TestCheckout:

    @pytest.mark.asyncio
    async def test_gateway_checkout_creates_pending_order(self):
        service = make_checkout(payment=gateway_payment())

        result = await service.checkout(ITEMS, CUSTOMER, method_code="bca_va")

        order = result.order
        assert order.payment_status == "PENDING"
        assert order.payment_gateway == "midtrans"
        assert order.payment_code == "12345"
        assert order.transaction_id == "tx-1"
        assert order.payment_method == "bca_va"
        assert order.payment_deadline == datetime(2026, 10, 20, 3, 0, tzinfo=timezone.utc)
        assert order.total_amount == 150000
        assert ORDER_CODE_RE.match(order.order_code)

        request = service.processor.process_payment.await_args.args[0]
        assert request.order_id == order.order_code
        assert request.gross_amount == 150000

    @pytest.mark.asyncio
    async def test_records_method_the_gateway_charged(self):
        payment = PaymentResult.for_gateway("CGS-1-abcde", "midtrans", GatewayTransactionResult(
            transaction_id="tx-2",
            payment_type="qris",
            payment_code="00020101021226",
            method_code="qris",
        ))
        service = make_checkout(payment=payment)

        result = await service.checkout(ITEMS, CUSTOMER)

        assert result.order.payment_method == "qris"
        assert result.order.payment_type == "qris"

    @pytest.mark.asyncio
    async def test_discount_reduces_charged_amount_only(self):
        service = make_checkout(payment=gateway_payment())

        result = await service.checkout(ITEMS, CUSTOMER, discount_amount=20000, promo_code="HEMAT20")

        request = service.processor.process_payment.await_args.args[0]
        assert request.gross_amount == 130000
        assert result.order.total_amount == 150000
        assert result.order.original_total == 150000
        assert result.order.discount_amount == 20000
        assert result.order.promo_code == "HEMAT20"

    @pytest.mark.asyncio
    async def test_manual_checkout_creates_pending_manual_order(self):
        method = ManualMethodSnapshot.from_model(make_manual_method("BCA"))
        service = make_checkout(payment=PaymentResult.for_manual("CGS-1-abcde", [method]))
        before = datetime.now(timezone.utc)

        result = await service.checkout(ITEMS, CUSTOMER, manual_method_id=uuid.UUID(method.id))

        order = result.order
        assert order.payment_status == "PENDING_MANUAL"
        assert order.payment_gateway == "manual"
        assert order.manual_payment_method_id == uuid.UUID(method.id)
        assert order.transaction_id is None
        window = order.payment_deadline - before
        assert timedelta(hours=24) <= window < timedelta(hours=24, seconds=30)

    @pytest.mark.asyncio
    async def test_manual_checkout_rejects_unoffered_method(self):
        method = ManualMethodSnapshot.from_model(make_manual_method("BCA"))
        service = make_checkout(payment=PaymentResult.for_manual("CGS-1-abcde", [method]))

        with pytest.raises(ValueError, match="not available"):
            await service.checkout(ITEMS, CUSTOMER, manual_method_id=uuid.uuid4())

        service.order_repo.create_order.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        PaymentConfigurationError("Payment configuration not set. Contact admin."),
        GatewayRejectedError("Duplicate order ID", gateway="midtrans"),
    ])
    async def test_no_order_when_processor_fails(self, error):
        service = make_checkout(error=error)

        with pytest.raises(type(error)):
            await service.checkout(ITEMS, CUSTOMER)

        service.order_repo.create_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_cart_rejected(self):
        service = make_checkout(payment=gateway_payment())

        with pytest.raises(ValueError):
            await service.checkout([], CUSTOMER)

        service.processor.process_payment.assert_not_awaited()


class TestPaymentInstruction:

    def make_service(self, order, method=None):
        service = PaymentInstructionService(MagicMock())
        service.order_repo.get_by_code = AsyncMock(return_value=order)
        service.manual_repo.get_method = AsyncMock(return_value=method)
        return service

    @pytest.mark.asyncio
    async def test_unknown_order(self):
        service = self.make_service(None)

        assert await service.get_instruction("CGS-0-zzzzz") is None

    @pytest.mark.asyncio
    async def test_gateway_order_view(self):
        service = self.make_service(make_order())

        result = await service.get_instruction("CGS-1718000000000-abcde")

        assert result["orderId"] == "CGS-1718000000000-abcde"
        assert result["paymentCode"] == "12345"
        assert result["manualMethod"] is None
        service.manual_repo.get_method.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_manual_order_view_includes_method(self):
        method = make_manual_method("BCA")
        order = make_order(
            payment_status="PENDING_MANUAL",
            payment_gateway="manual",
            manual_payment_method_id=method.id,
        )
        service = self.make_service(order, method)

        result = await service.get_instruction(order.order_code)

        assert result["paymentStatus"] == "PENDING_MANUAL"
        assert result["manualMethod"]["provider_name"] == "BCA"
        assert result["manualMethod"]["account_number"] == "1234567890"
