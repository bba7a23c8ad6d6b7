"""Duitku payment gateway handler.

Duitku's v2 inquiry API returns a hosted payment page rather than a payable
code, so results carry a redirect URL and the Duitku reference.
"""

import hashlib
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from storefront.core.config import settings
from storefront.modules.payment_gateway.interface import (
    GatewayRejectedError,
    GatewayTransactionResult,
    PaymentGatewayInterface,
    PaymentRequest,
)
from storefront.modules.payment_gateway.models import GatewayName

logger = logging.getLogger(__name__)

SANDBOX_URL = "https://sandbox.duitku.com/webapi/api/merchant/v2/inquiry"
PRODUCTION_URL = "https://passport.duitku.com/webapi/api/merchant/v2/inquiry"

PRODUCT_DETAILS_MAX_LENGTH = 255
EXPIRY_PERIOD_MINUTES = 1440
SUCCESS_STATUS_CODE = "00"


def build_signature(merchant_code: str, order_id: str, amount: int, api_key: str) -> str:
    """Inquiry signature: md5(merchantCode + merchantOrderId + paymentAmount + apiKey)."""
    raw = f"{merchant_code}{order_id}{amount}{api_key}"
    return hashlib.md5(raw.encode("utf-8")).hexdigest()


def build_payload(
    config: Any,
    request: PaymentRequest,
    method_code: Optional[str] = None,
    timestamp_ms: Optional[int] = None,
    app_url: Optional[str] = None,
) -> dict:
    """Build the inquiry request body.

    Args:
        config: Active gateway config; merchant_id is the Duitku merchant code
            and secret_key the API key
        request: Normalized charge request
        method_code: Duitku payment method code (e.g. "BC"), sent as
            paymentMethod when given
        timestamp_ms: Override for the request timestamp
        app_url: Public base URL for callback/return URLs

    Returns:
        Payload dict ready to be sent as JSON
    """
    merchant_code = config.merchant_id or ""
    app_url = (app_url or settings.APP_URL).rstrip("/")
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)

    product_details = ", ".join(item.name for item in request.items)

    payload = {
        "merchantCode": merchant_code,
        "paymentAmount": request.gross_amount,
        "merchantOrderId": request.order_id,
        "productDetails": product_details[:PRODUCT_DETAILS_MAX_LENGTH],
        "email": request.customer.email,
        "customerVaName": request.customer.first_name,
        "phoneNumber": request.customer.phone or "",
        "callbackUrl": f"{app_url}/api/webhook/duitku",
        "returnUrl": f"{app_url}/dashboard",
        "signature": build_signature(
            merchant_code, request.order_id, request.gross_amount, config.secret_key or ""
        ),
        "timestamp": str(timestamp_ms),
        "expiryPeriod": EXPIRY_PERIOD_MINUTES,
    }
    if method_code:
        payload["paymentMethod"] = method_code
    return payload


class DuitkuGateway(PaymentGatewayInterface):
    """Duitku handler (hosted payment page)."""

    name = GatewayName.DUITKU.value

    @staticmethod
    def inquiry_url(config: Any) -> str:
        return PRODUCTION_URL if config.environment == "production" else SANDBOX_URL

    async def create_transaction(
        self,
        config: Any,
        request: PaymentRequest,
        method_code: Optional[str] = None,
    ) -> GatewayTransactionResult:
        method_code = method_code or request.payment_method
        payload = build_payload(config, request, method_code)

        with self._observe_charge(request.order_id):
            response = await self._post_json(self.inquiry_url(config), payload)

            if response.is_error:
                logger.error(
                    f"Duitku inquiry failed for {request.order_id}: HTTP {response.status_code}"
                )
                raise GatewayRejectedError(
                    f"Duitku API error: {response.status_code} - {response.text}",
                    gateway=self.name,
                    status_code=response.status_code,
                )

            data = self._parse_json(response)
            if data.get("statusCode") != SUCCESS_STATUS_CODE:
                message = data.get("statusMessage") or "Unknown error"
                logger.error(f"Duitku rejected {request.order_id}: {message}")
                raise GatewayRejectedError(
                    f"Duitku error: {message}",
                    gateway=self.name,
                    status_code=response.status_code,
                    response=data,
                )

        reference = data.get("reference")
        expires_at = datetime.now(timezone.utc) + timedelta(minutes=EXPIRY_PERIOD_MINUTES)
        logger.info(f"Duitku transaction opened for {request.order_id}: reference={reference}")

        return GatewayTransactionResult(
            transaction_id=reference,
            payment_type=method_code,
            redirect_url=data.get("paymentUrl"),
            token=reference,
            expiry_time=expires_at.isoformat(),
            method_code=method_code,
        )
