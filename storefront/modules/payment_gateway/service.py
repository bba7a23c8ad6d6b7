"""Payment services.

- GatewayRegistry: gateway name to handler, built once per process
- PaymentProcessor: opens a payment for one checkout in the active mode
- CheckoutService: mints the order code and persists the order afterwards
- PaymentInstructionService: status view polled by the storefront
- WebhookService: verifies gateway notifications and moves order status
- PaymentConfigService / GatewayAdminService: public config and back office
"""

import hashlib
import hmac
import logging
import secrets
import string
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import settings
from storefront.core.encryption import encrypt_credential
from storefront.core.logging import log_error, log_info, log_warning
from storefront.core.metrics import PAYMENTS_PROCESSED_TOTAL, WEBHOOK_NOTIFICATIONS_TOTAL
from storefront.modules.payment_gateway.gateways import DuitkuGateway, MidtransGateway
from storefront.modules.payment_gateway.interface import (
    CustomerDetails,
    InvalidSignatureError,
    PaymentConfigurationError,
    PaymentGatewayInterface,
    PaymentItem,
    PaymentRequest,
    PaymentResult,
    UnsupportedGatewayError,
)
from storefront.modules.payment_gateway.manual import get_manual_payment_methods
from storefront.modules.payment_gateway.models import (
    GATEWAY_DEFAULTS,
    GatewayEnvironment,
    GatewayName,
    ManualMethodType,
    ManualPaymentMethod,
    Order,
    OrderPaymentStatus,
    PaymentGatewayConfig,
    PaymentMode,
    PaymentSettings,
)
from storefront.modules.payment_gateway.repository import (
    ManualPaymentMethodRepository,
    OrderRepository,
    PaymentGatewayRepository,
    PaymentSettingsRepository,
)
from storefront.modules.payment_gateway.status import build_instruction

logger = logging.getLogger(__name__)

ORDER_CODE_PREFIX = "CGS"
ORDER_CODE_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits
ORDER_CODE_SUFFIX_LENGTH = 5

# Midtrans reports expiry_time as a naive Jakarta (UTC+7) timestamp
MIDTRANS_TIMEZONE = timezone(timedelta(hours=7))


class GatewayRegistry:
    """Mapping from gateway name to its handler instance."""

    def __init__(self, handlers: Optional[dict[str, PaymentGatewayInterface]] = None):
        self._handlers: dict[str, PaymentGatewayInterface] = dict(handlers or {})

    def register(self, name: str, handler: PaymentGatewayInterface) -> None:
        self._handlers[name] = handler

    def get(self, name: str) -> Optional[PaymentGatewayInterface]:
        return self._handlers.get(name)

    def names(self) -> list[str]:
        return list(self._handlers.keys())

    def __contains__(self, name: str) -> bool:
        return name in self._handlers


@lru_cache
def default_registry() -> GatewayRegistry:
    """Registry with every built-in handler."""
    return GatewayRegistry({
        GatewayName.MIDTRANS.value: MidtransGateway(),
        GatewayName.DUITKU.value: DuitkuGateway(),
    })


class PaymentProcessor:
    """Opens a payment for one checkout.

    Reads the active gateway config and the global payment mode, then either
    lists manual methods or makes exactly one charge call through the active
    gateway's handler. Errors propagate to the caller untouched.
    """

    def __init__(self, session: AsyncSession, registry: Optional[GatewayRegistry] = None):
        self.session = session
        self.registry = registry or default_registry()
        self.gateway_repo = PaymentGatewayRepository(session)
        self.settings_repo = PaymentSettingsRepository(session)

    async def get_active_payment_config(self) -> Optional[PaymentGatewayConfig]:
        """Get the active gateway config, or None if unset or unreadable."""
        try:
            return await self.gateway_repo.get_active_config()
        except SQLAlchemyError as e:
            log_error(logger, "Failed to load active payment config", exception=e)
            return None

    async def get_payment_mode(self) -> str:
        return await self.settings_repo.get_payment_mode()

    async def process_payment(
        self,
        request: PaymentRequest,
        method_code: Optional[str] = None,
    ) -> PaymentResult:
        """Open a payment in the active mode.

        Args:
            request: Charge request for one order
            method_code: Gateway method code picked at checkout

        Returns:
            PaymentResult tagged with the mode used

        Raises:
            PaymentConfigurationError: No active config, or missing credentials
            UnsupportedGatewayError: Active gateway has no handler
            GatewayRejectedError: Provider refused the charge
        """
        config = await self.get_active_payment_config()
        if config is None:
            log_error(logger, "Payment attempted without an active gateway config",
                      order_id=request.order_id)
            raise PaymentConfigurationError("Payment configuration not set. Contact admin.")

        mode = await self.get_payment_mode()

        if mode == PaymentMode.MANUAL.value:
            methods = await get_manual_payment_methods(self.session)
            PAYMENTS_PROCESSED_TOTAL.labels(mode=mode).inc()
            log_info(logger, "Manual payment prepared",
                     order_id=request.order_id, method_count=len(methods))
            return PaymentResult.for_manual(request.order_id, methods)

        gateway_name = config.gateway_name
        handler = self.registry.get(gateway_name)
        if handler is None:
            log_error(logger, "Active gateway is not supported",
                      gateway=gateway_name, order_id=request.order_id)
            raise UnsupportedGatewayError(
                f'Gateway "{gateway_name}" is not supported. Contact admin.',
                gateway=gateway_name,
            )

        if not config.api_key or not config.secret_key:
            log_error(logger, "Active gateway has no credentials",
                      gateway=gateway_name, order_id=request.order_id)
            raise PaymentConfigurationError(
                f'Gateway credentials for "{config.display_name}" are not configured. Contact admin.',
                gateway=gateway_name,
            )

        result = await handler.create_transaction(config, request, method_code)
        PAYMENTS_PROCESSED_TOTAL.labels(mode=PaymentMode.GATEWAY.value).inc()
        return PaymentResult.for_gateway(request.order_id, gateway_name, result)


def generate_order_code(now_ms: Optional[int] = None) -> str:
    """Mint a public order id such as CGS-1718000000000-k3x9a."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = "".join(
        secrets.choice(ORDER_CODE_SUFFIX_ALPHABET) for _ in range(ORDER_CODE_SUFFIX_LENGTH)
    )
    return f"{ORDER_CODE_PREFIX}-{now_ms}-{suffix}"


def parse_gateway_expiry(gateway_name: Optional[str], expiry_time: Optional[str]) -> Optional[datetime]:
    """Turn a gateway's expiry timestamp into an aware datetime."""
    if not expiry_time:
        return None
    try:
        deadline = datetime.fromisoformat(expiry_time.replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Unparseable expiry_time from {gateway_name}: {expiry_time}")
        return None
    if deadline.tzinfo is None:
        tz = MIDTRANS_TIMEZONE if gateway_name == GatewayName.MIDTRANS.value else timezone.utc
        deadline = deadline.replace(tzinfo=tz)
    return deadline


@dataclass
class CheckoutResult:
    order: Order
    payment: PaymentResult


class CheckoutService:
    """Creates orders for priced items.

    Product lookup and promo validation happen before this service: callers
    pass priced items and the discount already computed.
    """

    def __init__(self, session: AsyncSession, processor: Optional[PaymentProcessor] = None):
        self.session = session
        self.processor = processor or PaymentProcessor(session)
        self.order_repo = OrderRepository(session)

    async def checkout(
        self,
        items: list[PaymentItem],
        customer: CustomerDetails,
        method_code: Optional[str] = None,
        discount_amount: int = 0,
        promo_code: Optional[str] = None,
        user_id: Optional[uuid.UUID] = None,
        manual_method_id: Optional[uuid.UUID] = None,
    ) -> CheckoutResult:
        """Open the payment, then persist the order.

        Nothing is written if the processor raises, so a failed charge never
        leaves a half-created order behind.
        """
        if not items:
            raise ValueError("Checkout requires at least one item")

        order_code = generate_order_code()
        total = sum(item.price * item.quantity for item in items)
        discount = max(0, discount_amount)

        request = PaymentRequest(
            order_id=order_code,
            gross_amount=max(0, total - discount),
            items=items,
            customer=customer,
            payment_method=method_code,
        )
        payment = await self.processor.process_payment(request, method_code)

        now = datetime.now(timezone.utc)
        fields = dict(
            order_code=order_code,
            user_id=user_id,
            customer_email=customer.email,
            customer_name=customer.first_name,
            customer_phone=customer.phone,
            items=[
                {"id": i.id, "name": i.name, "price": i.price, "quantity": i.quantity}
                for i in items
            ],
            total_amount=total,
            original_total=total,
            discount_amount=discount,
            promo_code=promo_code,
            payment_method=method_code,
            download_count=0,
        )

        if payment.is_manual:
            selected = None
            if manual_method_id is not None:
                offered = {m.id for m in payment.manual_methods}
                if str(manual_method_id) not in offered:
                    raise ValueError("Selected manual payment method is not available")
                selected = manual_method_id
            fields.update(
                payment_status=OrderPaymentStatus.PENDING_MANUAL.value,
                payment_gateway=PaymentMode.MANUAL.value,
                manual_payment_method_id=selected,
                payment_deadline=now + timedelta(hours=settings.MANUAL_PAYMENT_WINDOW_HOURS),
            )
        else:
            fields.update(
                payment_status=OrderPaymentStatus.PENDING.value,
                payment_gateway=payment.gateway_name,
                payment_method=payment.method_code or method_code,
                payment_type=payment.payment_type,
                payment_code=payment.payment_code or None,
                transaction_id=payment.transaction_id,
                payment_deadline=parse_gateway_expiry(payment.gateway_name, payment.expiry_time),
            )

        order = await self.order_repo.create_order(**fields)
        log_info(logger, "Order created", order_id=order_code,
                 mode=payment.mode, payment_status=order.payment_status)
        return CheckoutResult(order=order, payment=payment)


class PaymentInstructionService:
    """Builds the status view clients poll for one order."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.order_repo = OrderRepository(session)
        self.manual_repo = ManualPaymentMethodRepository(session)

    async def get_instruction(self, order_code: str) -> Optional[dict]:
        """Get the status view, or None if the order does not exist."""
        order = await self.order_repo.get_by_code(order_code)
        if order is None:
            return None

        manual_method = None
        if order.manual_payment_method_id:
            method = await self.manual_repo.get_method(order.manual_payment_method_id)
            if method is not None:
                manual_method = {
                    "id": str(method.id),
                    "type": method.type,
                    "provider_name": method.provider_name,
                    "account_name": method.account_name,
                    "account_number": method.account_number,
                    "logo_url": method.logo_url,
                }

        return build_instruction(order, manual_method)


class PaymentConfigService:
    """Public view of the payment setup for the checkout page."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.processor = PaymentProcessor(session)

    async def get_public_config(self) -> dict:
        config = await self.processor.get_active_payment_config()
        if config is None:
            return {
                "mode": PaymentMode.GATEWAY.value,
                "active_gateway": None,
                "gateway_methods": [],
                "manual_methods": [],
            }

        mode = await self.processor.get_payment_mode()
        if mode == PaymentMode.MANUAL.value:
            methods = await get_manual_payment_methods(self.session)
            return {
                "mode": mode,
                "active_gateway": None,
                "gateway_methods": [],
                "manual_methods": [m.to_dict() for m in methods],
            }

        defaults = GATEWAY_DEFAULTS.get(config.gateway_name, {})
        return {
            "mode": mode,
            "active_gateway": {
                "name": config.gateway_name,
                "display_name": config.display_name,
            },
            "gateway_methods": list(defaults.get("payment_methods", [])),
            "manual_methods": [],
        }


# ==================== Webhooks ====================

def midtrans_notification_signature(
    order_id: str, status_code: str, gross_amount: str, server_key: str
) -> str:
    raw = f"{order_id}{status_code}{gross_amount}{server_key}"
    return hashlib.sha512(raw.encode("utf-8")).hexdigest()


def duitku_callback_signature(
    merchant_code: str, amount: str, merchant_order_id: str, api_key: str
) -> str:
    raw = f"{merchant_code}{amount}{merchant_order_id}{api_key}"
    return hashlib.md5(raw.encode("utf-8")).hexdigest()


def map_midtrans_status(
    transaction_status: Optional[str], fraud_status: Optional[str] = None
) -> OrderPaymentStatus:
    if transaction_status == "capture":
        return OrderPaymentStatus.PAID if fraud_status == "accept" else OrderPaymentStatus.FAILED
    if transaction_status == "settlement":
        return OrderPaymentStatus.PAID
    if transaction_status in ("deny", "cancel"):
        return OrderPaymentStatus.FAILED
    if transaction_status == "expire":
        return OrderPaymentStatus.EXPIRED
    return OrderPaymentStatus.PENDING


def map_duitku_result(result_code: Optional[str]) -> OrderPaymentStatus:
    if result_code == "00":
        return OrderPaymentStatus.PAID
    if result_code == "02":
        return OrderPaymentStatus.FAILED
    return OrderPaymentStatus.PENDING


@dataclass
class WebhookOutcome:
    order_id: str
    status: OrderPaymentStatus
    updated: bool


class WebhookService:
    """Applies gateway payment notifications to orders.

    The signing key is read from the named gateway's config, not from the
    active one, so notifications for orders opened before a gateway switch
    still verify.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.gateway_repo = PaymentGatewayRepository(session)
        self.order_repo = OrderRepository(session)

    async def _signing_key(self, gateway: GatewayName) -> str:
        config = await self.gateway_repo.get_config_by_name(gateway.value)
        key = config.secret_key if config else None
        if not key:
            log_error(logger, "Webhook received for unconfigured gateway", gateway=gateway.value)
            raise PaymentConfigurationError(
                f'Gateway credentials for "{gateway.value}" are not configured.',
                gateway=gateway.value,
            )
        return key

    async def _apply(
        self,
        gateway: GatewayName,
        order_id: str,
        status: OrderPaymentStatus,
        transaction_id: Optional[str] = None,
    ) -> WebhookOutcome:
        updated = False
        if status != OrderPaymentStatus.PENDING:
            updated = await self.order_repo.apply_status(
                order_id, status, transaction_id=transaction_id
            )
            if not updated:
                log_warning(logger, "Notification ignored: order missing or already final",
                            gateway=gateway.value, order_id=order_id, status=status.value)

        WEBHOOK_NOTIFICATIONS_TOTAL.labels(
            gateway=gateway.value, result="applied" if updated else "ignored"
        ).inc()
        log_info(logger, f"{gateway.value} notification: {order_id} -> {status.value}",
                 gateway=gateway.value, order_id=order_id, updated=updated)
        return WebhookOutcome(order_id=order_id, status=status, updated=updated)

    async def handle_midtrans(self, payload: dict) -> WebhookOutcome:
        """Verify and apply a Midtrans HTTP notification.

        Raises:
            InvalidSignatureError: signature_key does not match
        """
        order_id = str(payload.get("order_id", ""))
        server_key = await self._signing_key(GatewayName.MIDTRANS)
        expected = midtrans_notification_signature(
            order_id,
            str(payload.get("status_code", "")),
            str(payload.get("gross_amount", "")),
            server_key,
        )
        if not hmac.compare_digest(expected, str(payload.get("signature_key", ""))):
            WEBHOOK_NOTIFICATIONS_TOTAL.labels(gateway="midtrans", result="invalid_signature").inc()
            log_warning(logger, "Midtrans notification with invalid signature", order_id=order_id)
            raise InvalidSignatureError(GatewayName.MIDTRANS.value)

        status = map_midtrans_status(
            payload.get("transaction_status"), payload.get("fraud_status")
        )
        return await self._apply(
            GatewayName.MIDTRANS, order_id, status, transaction_id=payload.get("transaction_id")
        )

    async def handle_duitku(self, payload: dict) -> WebhookOutcome:
        """Verify and apply a Duitku callback.

        Raises:
            InvalidSignatureError: signature does not match
        """
        order_id = str(payload.get("merchantOrderId", ""))
        api_key = await self._signing_key(GatewayName.DUITKU)
        expected = duitku_callback_signature(
            str(payload.get("merchantCode", "")),
            str(payload.get("amount", "")),
            order_id,
            api_key,
        )
        if not hmac.compare_digest(expected, str(payload.get("signature", ""))):
            WEBHOOK_NOTIFICATIONS_TOTAL.labels(gateway="duitku", result="invalid_signature").inc()
            log_warning(logger, "Duitku callback with invalid signature", order_id=order_id)
            raise InvalidSignatureError(GatewayName.DUITKU.value)

        status = map_duitku_result(payload.get("resultCode"))
        return await self._apply(
            GatewayName.DUITKU, order_id, status, transaction_id=payload.get("reference")
        )


# ==================== Back office ====================

class GatewayAdminService:
    """Back-office operations on the payment setup.

    Invalid input raises ValueError; missing rows return None or False.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.gateway_repo = PaymentGatewayRepository(session)
        self.settings_repo = PaymentSettingsRepository(session)
        self.manual_repo = ManualPaymentMethodRepository(session)
        self.order_repo = OrderRepository(session)

    async def get_all_gateways(self) -> list[PaymentGatewayConfig]:
        return await self.gateway_repo.get_all_configs()

    async def get_payment_mode(self) -> str:
        return await self.settings_repo.get_payment_mode()

    async def save_gateway_config(
        self,
        gateway_name: str,
        display_name: str,
        environment: str,
        api_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        merchant_id: Optional[str] = None,
        config_id: Optional[uuid.UUID] = None,
    ) -> Optional[PaymentGatewayConfig]:
        """Create or update a gateway config.

        Blank credentials on update keep the stored ones, so an admin can
        change the environment without re-entering keys.

        Returns:
            The saved config, or None if config_id matches no row
        """
        if not gateway_name or not display_name:
            raise ValueError("Gateway name and display name are required")
        if environment not in {e.value for e in GatewayEnvironment}:
            raise ValueError("Environment must be sandbox or production")

        api_key_encrypted = encrypt_credential(api_key) if api_key else None
        secret_key_encrypted = encrypt_credential(secret_key) if secret_key else None

        if config_id is None:
            if await self.gateway_repo.get_config_by_name(gateway_name):
                raise ValueError(f"Gateway {gateway_name} is already configured")
            config = await self.gateway_repo.create_config(
                gateway_name=gateway_name,
                display_name=display_name,
                api_key_encrypted=api_key_encrypted,
                secret_key_encrypted=secret_key_encrypted,
                merchant_id=merchant_id,
                environment=environment,
            )
        else:
            config = await self.gateway_repo.update_config(
                config_id,
                gateway_name=gateway_name,
                display_name=display_name,
                api_key_encrypted=api_key_encrypted,
                secret_key_encrypted=secret_key_encrypted,
                merchant_id=merchant_id,
                environment=environment,
            )
            if config is None:
                return None

        logger.info(f"Saved gateway config {gateway_name} ({environment})")
        return config

    async def activate_gateway(self, config_id: uuid.UUID) -> bool:
        activated = await self.gateway_repo.set_active_gateway(config_id)
        if activated:
            logger.info(f"Activated gateway config {config_id}")
        return activated

    async def set_payment_mode(self, mode: str) -> PaymentSettings:
        if mode not in {m.value for m in PaymentMode}:
            raise ValueError("Payment mode must be gateway or manual")
        settings_row = await self.settings_repo.set_payment_mode(mode)
        logger.info(f"Payment mode set to {mode}")
        return settings_row

    async def get_manual_methods(self) -> list[ManualPaymentMethod]:
        return await self.manual_repo.get_all_methods()

    async def save_manual_method(
        self,
        type: str,
        provider_name: str,
        account_name: str,
        account_number: str,
        logo_url: Optional[str] = None,
        sort_order: int = 0,
        method_id: Optional[uuid.UUID] = None,
    ) -> Optional[ManualPaymentMethod]:
        if not all([type, provider_name, account_name, account_number]):
            raise ValueError("All manual payment method fields are required")
        if type not in {t.value for t in ManualMethodType}:
            raise ValueError("Type must be bank_transfer or ewallet")

        fields = dict(
            type=type,
            provider_name=provider_name,
            account_name=account_name,
            account_number=account_number,
            logo_url=logo_url or None,
            sort_order=sort_order,
        )
        if method_id is None:
            return await self.manual_repo.create_method(**fields)
        return await self.manual_repo.update_method(method_id, **fields)

    async def delete_manual_method(self, method_id: uuid.UUID) -> bool:
        return await self.manual_repo.delete_method(method_id)

    async def toggle_manual_method(
        self, method_id: uuid.UUID, is_active: bool
    ) -> Optional[ManualPaymentMethod]:
        return await self.manual_repo.set_active(method_id, is_active)

    async def update_order_status(
        self, order_id: uuid.UUID, status: str
    ) -> Optional[Order]:
        """Set an order's status by hand, e.g. after checking a transfer."""
        try:
            new_status = OrderPaymentStatus(status)
        except ValueError:
            raise ValueError(f"Invalid order status: {status}")

        order = await self.order_repo.set_status(order_id, new_status)
        if order is not None:
            logger.info(f"Order {order.order_code} status set to {new_status.value} by admin")
        return order
