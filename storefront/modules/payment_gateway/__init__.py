"""Payment Gateway Module.

Opens storefront payments through Midtrans or Duitku, or lists manual bank
and e-wallet accounts when the store runs in manual mode.
"""

from storefront.modules.payment_gateway.models import (
    GatewayName,
    ManualPaymentMethod,
    Order,
    OrderPaymentStatus,
    PaymentGatewayConfig,
    PaymentMode,
    PaymentSettings,
)
from storefront.modules.payment_gateway.interface import (
    CustomerDetails,
    GatewayRejectedError,
    GatewayTransactionResult,
    InvalidSignatureError,
    ManualMethodSnapshot,
    PaymentConfigurationError,
    PaymentError,
    PaymentGatewayInterface,
    PaymentItem,
    PaymentRequest,
    PaymentResult,
    UnsupportedGatewayError,
)
from storefront.modules.payment_gateway.manual import get_manual_payment_methods
from storefront.modules.payment_gateway.service import (
    CheckoutService,
    GatewayAdminService,
    GatewayRegistry,
    PaymentConfigService,
    PaymentInstructionService,
    PaymentProcessor,
    WebhookService,
)
from storefront.modules.payment_gateway.status import (
    PaymentCountdown,
    PaymentStatusPoller,
    build_instruction,
    can_transition,
)

__all__ = [
    # Models
    "GatewayName",
    "ManualPaymentMethod",
    "Order",
    "OrderPaymentStatus",
    "PaymentGatewayConfig",
    "PaymentMode",
    "PaymentSettings",
    # Interface
    "CustomerDetails",
    "GatewayRejectedError",
    "GatewayTransactionResult",
    "InvalidSignatureError",
    "ManualMethodSnapshot",
    "PaymentConfigurationError",
    "PaymentError",
    "PaymentGatewayInterface",
    "PaymentItem",
    "PaymentRequest",
    "PaymentResult",
    "UnsupportedGatewayError",
    # Providers and services
    "get_manual_payment_methods",
    "CheckoutService",
    "GatewayAdminService",
    "GatewayRegistry",
    "PaymentConfigService",
    "PaymentInstructionService",
    "PaymentProcessor",
    "WebhookService",
    # Status lifecycle
    "PaymentCountdown",
    "PaymentStatusPoller",
    "build_instruction",
    "can_transition",
]
