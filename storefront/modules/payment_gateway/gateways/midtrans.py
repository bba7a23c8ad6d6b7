"""Midtrans payment gateway handler (Core API).

Opens transactions with POST /v2/charge and recovers the payable artifact
directly from the charge response:
- Bank transfer VA (BCA, BNI, BRI), Permata VA
- Mandiri bill payment (echannel)
- QRIS, GoPay and ShopeePay
"""

import base64
import logging
from dataclasses import dataclass
from typing import Any, Optional

from storefront.modules.payment_gateway.interface import (
    GatewayRejectedError,
    GatewayTransactionResult,
    PaymentGatewayInterface,
    PaymentRequest,
)
from storefront.modules.payment_gateway.models import GatewayName

logger = logging.getLogger(__name__)

SANDBOX_URL = "https://api.sandbox.midtrans.com"
PRODUCTION_URL = "https://api.midtrans.com"

DEFAULT_METHOD = "qris"

# Midtrans rejects item names longer than this
ITEM_NAME_MAX_LENGTH = 50

SUCCESS_STATUS_CODES = {"200", "201"}

VA_BANKS = {
    "bca_va": "bca",
    "bni_va": "bni",
    "bri_va": "bri",
}

ECHANNEL_BILL_INFO = {
    "bill_info1": "Payment:",
    "bill_info2": "Online Purchase",
}

ACTION_GENERATE_QR = "generate-qr-code"
ACTION_DEEPLINK = "deeplink-redirect"


@dataclass
class PaymentCode:
    """Payable artifact extracted from a charge response."""
    code: str
    qr_url: Optional[str] = None


def resolve_charge_params(method_code: str) -> tuple[str, dict]:
    """Map a checkout method code to a Midtrans payment_type and its extra
    charge parameters.

    Unknown codes are passed through as the payment_type unchanged so new
    Midtrans methods can be enabled without a code change.
    """
    if method_code in VA_BANKS:
        return "bank_transfer", {"bank_transfer": {"bank": VA_BANKS[method_code]}}
    if method_code == "echannel":
        return "echannel", {"echannel": dict(ECHANNEL_BILL_INFO)}
    return method_code, {}


def build_charge_payload(request: PaymentRequest, method_code: str) -> dict:
    """Build the /v2/charge request body."""
    payment_type, additional = resolve_charge_params(method_code)

    customer_details: dict[str, Any] = {
        "email": request.customer.email,
        "first_name": request.customer.first_name,
    }
    if request.customer.phone:
        customer_details["phone"] = request.customer.phone

    payload = {
        "payment_type": payment_type,
        "transaction_details": {
            "order_id": request.order_id,
            "gross_amount": request.gross_amount,
        },
        "item_details": [
            {
                "id": item.id,
                "price": item.price,
                "quantity": item.quantity,
                "name": item.name[:ITEM_NAME_MAX_LENGTH],
            }
            for item in request.items
        ],
        "customer_details": customer_details,
    }
    payload.update(additional)
    return payload


def build_auth_header(secret_key: str) -> str:
    """HTTP Basic auth with the server key as username and an empty password."""
    token = base64.b64encode(f"{secret_key}:".encode()).decode()
    return f"Basic {token}"


def _find_action_url(response: dict, action_name: str) -> Optional[str]:
    for action in response.get("actions") or []:
        if action.get("name") == action_name:
            return action.get("url") or None
    return None


def extract_payment_code(response: dict, payment_type: str) -> PaymentCode:
    """Extract the payment code from a Midtrans charge response.

    Bank-transfer shapes are recognized structurally; wallet and QR shapes are
    decoded by payment_type. An unrecognized shape yields an empty code,
    which callers render as "instruction pending".
    """
    va_numbers = response.get("va_numbers") or []
    if va_numbers:
        return PaymentCode(code=va_numbers[0].get("va_number", ""))

    if response.get("bill_key"):
        return PaymentCode(code=f"{response.get('biller_code', '')} {response['bill_key']}")

    if response.get("permata_va_number"):
        return PaymentCode(code=response["permata_va_number"])

    if not response.get("actions"):
        return PaymentCode(code="")

    if payment_type == "qris":
        return PaymentCode(
            code=response.get("qr_string") or "",
            qr_url=_find_action_url(response, ACTION_GENERATE_QR),
        )
    if payment_type == "gopay":
        return PaymentCode(
            code=_find_action_url(response, ACTION_DEEPLINK) or "",
            qr_url=_find_action_url(response, ACTION_GENERATE_QR),
        )
    if payment_type == "shopeepay":
        return PaymentCode(code=_find_action_url(response, ACTION_DEEPLINK) or "")

    return PaymentCode(code="")


class MidtransGateway(PaymentGatewayInterface):
    """Midtrans Core API handler for Indonesia."""

    name = GatewayName.MIDTRANS.value

    @staticmethod
    def base_url(config: Any) -> str:
        return PRODUCTION_URL if config.environment == "production" else SANDBOX_URL

    async def create_transaction(
        self,
        config: Any,
        request: PaymentRequest,
        method_code: Optional[str] = None,
    ) -> GatewayTransactionResult:
        """Open a Core API charge.

        Raises:
            GatewayRejectedError: On a non-2xx response, a body that is not a
                JSON object, or a status_code outside 200/201
        """
        method_code = method_code or request.payment_method or DEFAULT_METHOD
        payload = build_charge_payload(request, method_code)
        payment_type = payload["payment_type"]

        with self._observe_charge(request.order_id):
            response = await self._post_json(
                f"{self.base_url(config)}/v2/charge",
                payload,
                headers={"Authorization": build_auth_header(config.secret_key)},
            )
            data = self._parse_json(response)

            status_code = data.get("status_code")
            # An unparseable 2xx body carries no transaction to record
            if response.is_error or not data or (
                status_code and str(status_code) not in SUCCESS_STATUS_CODES
            ):
                logger.error(
                    "Midtrans charge rejected",
                    extra={
                        "order_id": request.order_id,
                        "http_status": response.status_code,
                        "status_code": status_code,
                        "status_message": data.get("status_message"),
                    },
                )
                raise GatewayRejectedError(
                    data.get("status_message") or "Midtrans charge failed",
                    gateway=self.name,
                    status_code=response.status_code,
                    response=data,
                )

        payment_code = extract_payment_code(data, payment_type)

        logger.info(
            "Midtrans transaction opened",
            extra={
                "order_id": request.order_id,
                "payment_type": data.get("payment_type"),
                "transaction_id": data.get("transaction_id"),
            },
        )

        return GatewayTransactionResult(
            transaction_id=data.get("transaction_id"),
            payment_type=data.get("payment_type"),
            payment_code=payment_code.code,
            expiry_time=data.get("expiry_time"),
            qr_url=payment_code.qr_url,
            method_code=method_code,
        )
