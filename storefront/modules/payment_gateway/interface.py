"""Payment Gateway Interface - shared types and the abstract handler contract.

Every gateway handler turns a normalized PaymentRequest into one outbound
charge call and returns a GatewayTransactionResult. The processor wraps that
into a PaymentResult, the only type checkout and the order record depend on.
"""

import logging
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Optional

import httpx
from storefront.core.metrics import record_gateway_charge
from storefront.core.tracing import gateway_charge_span
from storefront.modules.payment_gateway.models import PaymentMode

logger = logging.getLogger(__name__)


# ==================== Errors ====================

class PaymentError(Exception):
    """Base class for payment core errors."""


class PaymentConfigurationError(PaymentError, ValueError):
    """Payment setup is incomplete or invalid. Actionable by an admin only."""

    def __init__(self, message: str, gateway: Optional[str] = None):
        super().__init__(message)
        self.gateway = gateway


class UnsupportedGatewayError(PaymentConfigurationError):
    """The active gateway has no registered handler."""


class GatewayRejectedError(PaymentError):
    """The provider refused to open the transaction."""

    def __init__(
        self,
        message: str,
        gateway: str,
        status_code: Optional[int] = None,
        response: Optional[dict] = None,
    ):
        super().__init__(message)
        self.gateway = gateway
        self.status_code = status_code
        self.response = response


class InvalidSignatureError(PaymentError):
    """A gateway notification failed signature verification."""

    def __init__(self, gateway: str):
        super().__init__(f"Invalid {gateway} notification signature")
        self.gateway = gateway


# ==================== Request / result types ====================

@dataclass
class PaymentItem:
    """One purchased line item, price in integer currency units."""
    id: str
    price: int
    quantity: int
    name: str


@dataclass
class CustomerDetails:
    email: str
    first_name: str
    phone: Optional[str] = None


@dataclass
class PaymentRequest:
    """Charge request built by checkout for a single order."""
    order_id: str
    gross_amount: int
    items: list[PaymentItem]
    customer: CustomerDetails
    payment_method: Optional[str] = None


@dataclass
class GatewayTransactionResult:
    """Result returned by a gateway handler's create_transaction."""
    transaction_id: Optional[str] = None
    payment_type: Optional[str] = None
    payment_code: Optional[str] = None  # VA number, QR string or deeplink
    expiry_time: Optional[str] = None
    redirect_url: Optional[str] = None  # Hosted payment page (Duitku)
    qr_url: Optional[str] = None
    token: Optional[str] = None
    method_code: Optional[str] = None  # Method actually charged, after defaults


@dataclass(frozen=True)
class ManualMethodSnapshot:
    """Copy of a manual payment method taken at checkout time."""
    id: str
    type: str
    provider_name: str
    account_name: str
    account_number: str
    logo_url: Optional[str] = None
    is_active: bool = True
    sort_order: int = 0

    @classmethod
    def from_model(cls, method: Any) -> "ManualMethodSnapshot":
        return cls(
            id=str(method.id),
            type=method.type,
            provider_name=method.provider_name,
            account_name=method.account_name,
            account_number=method.account_number,
            logo_url=method.logo_url,
            is_active=method.is_active,
            sort_order=method.sort_order,
        )

    def to_dict(self) -> dict:
        return asdict(self)


_GATEWAY_FIELDS = (
    "gateway_name",
    "transaction_id",
    "payment_type",
    "payment_code",
    "expiry_time",
    "redirect_url",
    "qr_url",
    "token",
    "method_code",
)


@dataclass
class PaymentResult:
    """Unified processor output, tagged by mode.

    Gateway results carry the gateway fields and no manual methods; manual
    results carry the (possibly empty) method list and no gateway fields.
    Use for_gateway / for_manual rather than the raw constructor.
    """
    mode: str
    order_id: str
    gateway_name: Optional[str] = None
    transaction_id: Optional[str] = None
    payment_type: Optional[str] = None
    payment_code: Optional[str] = None
    expiry_time: Optional[str] = None
    redirect_url: Optional[str] = None
    qr_url: Optional[str] = None
    token: Optional[str] = None
    method_code: Optional[str] = None
    manual_methods: Optional[list[ManualMethodSnapshot]] = None

    def __post_init__(self) -> None:
        if self.mode == PaymentMode.MANUAL.value:
            if self.manual_methods is None:
                raise ValueError("Manual payment result requires manual_methods")
            populated = [f for f in _GATEWAY_FIELDS if getattr(self, f) is not None]
            if populated:
                raise ValueError(
                    f"Manual payment result cannot carry gateway fields: {', '.join(populated)}"
                )
        elif self.mode == PaymentMode.GATEWAY.value:
            if not self.gateway_name:
                raise ValueError("Gateway payment result requires gateway_name")
            if self.manual_methods is not None:
                raise ValueError("Gateway payment result cannot carry manual_methods")
        else:
            raise ValueError(f"Unknown payment mode: {self.mode}")

    @classmethod
    def for_gateway(
        cls,
        order_id: str,
        gateway_name: str,
        result: GatewayTransactionResult,
    ) -> "PaymentResult":
        return cls(
            mode=PaymentMode.GATEWAY.value,
            order_id=order_id,
            gateway_name=gateway_name,
            transaction_id=result.transaction_id,
            payment_type=result.payment_type,
            payment_code=result.payment_code,
            expiry_time=result.expiry_time,
            redirect_url=result.redirect_url,
            qr_url=result.qr_url,
            token=result.token,
            method_code=result.method_code,
        )

    @classmethod
    def for_manual(
        cls,
        order_id: str,
        methods: list[ManualMethodSnapshot],
    ) -> "PaymentResult":
        return cls(
            mode=PaymentMode.MANUAL.value,
            order_id=order_id,
            manual_methods=list(methods),
        )

    @property
    def is_manual(self) -> bool:
        return self.mode == PaymentMode.MANUAL.value


# ==================== Handler contract ====================

ClientFactory = Callable[[], httpx.AsyncClient]


class PaymentGatewayInterface(ABC):
    """Abstract interface for all gateway handlers.

    Handlers are stateless: credentials arrive with every call through the
    config argument, so one instance serves every checkout. The client
    factory is injectable so tests can substitute an httpx.MockTransport.
    """

    name: str = ""

    def __init__(self, client_factory: Optional[ClientFactory] = None):
        self._client_factory: ClientFactory = client_factory or httpx.AsyncClient

    @abstractmethod
    async def create_transaction(
        self,
        config: Any,
        request: PaymentRequest,
        method_code: Optional[str] = None,
    ) -> GatewayTransactionResult:
        """Open a transaction with the provider.

        Args:
            config: Active PaymentGatewayConfig (decrypted credentials exposed
                as api_key / secret_key)
            request: Normalized charge request
            method_code: Gateway-specific method code, e.g. "bca_va"

        Returns:
            GatewayTransactionResult with the payable artifact

        Raises:
            GatewayRejectedError: If the provider rejects the charge
        """

    async def _post_json(
        self,
        url: str,
        payload: dict,
        headers: Optional[dict] = None,
    ) -> httpx.Response:
        """Send a single JSON POST. No retries: a repeated charge can open a
        second payable transaction at the provider."""
        async with self._client_factory() as client:
            return await client.post(
                url,
                json=payload,
                headers={
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                    **(headers or {}),
                },
            )

    @staticmethod
    def _parse_json(response: httpx.Response) -> dict:
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    @contextmanager
    def _observe_charge(self, order_id: str):
        """Wrap one charge call in a client span and record its outcome."""
        started = time.perf_counter()
        success = False
        with gateway_charge_span(self.name, order_id):
            try:
                yield
                success = True
            finally:
                record_gateway_charge(self.name, success, time.perf_counter() - started)
