"""Transaction status lifecycle.

Orders start PENDING (or PENDING_MANUAL) and end in exactly one of PAID,
FAILED or EXPIRED. can_transition defines which stored statuses may still
change; OrderRepository turns that set into the WHERE clause of the webhook
and expiry UPDATEs, so a terminal status is never overwritten. Admin
reconciliation bypasses it on purpose.

The status view returned by build_instruction is what storefront clients
poll; PaymentCountdown and PaymentStatusPoller implement the client side of
that contract for Python consumers (and for tests of it).
"""

import asyncio
import inspect
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional, Union

from storefront.core.config import settings
from storefront.modules.payment_gateway.models import (
    OrderPaymentStatus,
    PENDING_STATUSES,
    TERMINAL_STATUSES,
)

logger = logging.getLogger(__name__)

StatusLike = Union[OrderPaymentStatus, str]


def _coerce_status(status: StatusLike) -> OrderPaymentStatus:
    return status if isinstance(status, OrderPaymentStatus) else OrderPaymentStatus(status)


def can_transition(current: StatusLike, target: StatusLike) -> bool:
    """Check whether an order may move from current to target.

    Terminal statuses never change. Pending statuses may move anywhere.

    Raises:
        ValueError: If either status is not an OrderPaymentStatus value
    """
    current = _coerce_status(current)
    _coerce_status(target)  # unknown target names are rejected, not ignored
    return current not in TERMINAL_STATUSES


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_deadline(value: Union[datetime, str, None]) -> Optional[datetime]:
    """Parse a stored or serialized deadline. Naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


class PaymentCountdown:
    """Countdown to a payment deadline.

    The deadline is authoritative for display: once it passes, a pending
    order is shown as expired even if the stored status still lags behind.
    """

    def __init__(self, deadline: Union[datetime, str, None]):
        self.deadline = parse_deadline(deadline)

    def remaining(self, now: Optional[datetime] = None) -> Optional[timedelta]:
        """Time left until the deadline, clamped to zero. None without a deadline."""
        if self.deadline is None:
            return None
        now = now or _utcnow()
        return max(timedelta(0), self.deadline - now)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.deadline is None:
            return False
        return (now or _utcnow()) >= self.deadline

    def effective_status(
        self,
        stored: StatusLike,
        now: Optional[datetime] = None,
    ) -> OrderPaymentStatus:
        stored = _coerce_status(stored)
        if stored in PENDING_STATUSES and self.is_expired(now):
            return OrderPaymentStatus.EXPIRED
        return stored


def build_instruction(order: Any, manual_method: Optional[dict] = None) -> dict:
    """Build the status view for one order.

    Args:
        order: Order row
        manual_method: Snapshot dict of the order's manual payment method

    Returns:
        Dict keyed by the camelCase names clients read
    """
    total = int(order.total_amount or 0)
    discount = int(order.discount_amount or 0)
    original_total = int(order.original_total or 0)
    deadline = parse_deadline(order.payment_deadline)

    return {
        "orderId": order.order_code,
        "totalAmount": max(0, total - discount),
        "originalTotal": original_total if original_total > 0 else total,
        "discountAmount": discount,
        "promoCode": order.promo_code or None,
        "paymentStatus": order.payment_status,
        "paymentDeadline": deadline.isoformat() if deadline else None,
        "paymentGateway": order.payment_gateway,
        "paymentMethod": order.payment_method,
        "paymentType": order.payment_type,
        "paymentCode": order.payment_code,
        "transactionId": order.transaction_id,
        "manualMethod": manual_method,
    }


FetchStatus = Callable[[], Awaitable[dict]]
OnUpdate = Callable[[dict, OrderPaymentStatus], Any]


class PaymentStatusPoller:
    """Poll an order's status view until it reaches a terminal status.

    fetch returns the same dict build_instruction produces. Each tick derives
    the effective status (stored status, or EXPIRED once the deadline has
    passed) and stops the loop as soon as it is terminal. Fetch errors and
    malformed views are logged and retried on the next tick; while they
    persist, the last known deadline still ends polling with EXPIRED.

    Example:
        poller = PaymentStatusPoller(fetch_view, on_update=render)
        poller.start()
        final_status = await poller.wait()
    """

    def __init__(
        self,
        fetch: FetchStatus,
        interval: Optional[float] = None,
        on_update: Optional[OnUpdate] = None,
    ):
        self._fetch = fetch
        self.interval = settings.PAYMENT_POLL_INTERVAL_SECONDS if interval is None else interval
        self._on_update = on_update
        self._task: Optional[asyncio.Task] = None
        self.poll_count = 0
        self.last_status: Optional[OrderPaymentStatus] = None
        self._countdown = PaymentCountdown(None)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        if self.running:
            raise RuntimeError("Poller is already running")
        self._task = asyncio.create_task(self._run())
        return self._task

    async def stop(self) -> None:
        """Cancel polling, e.g. when the order view goes away."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    async def wait(self) -> Optional[OrderPaymentStatus]:
        """Wait for polling to finish and return the final status."""
        if self._task is None:
            raise RuntimeError("Poller was not started")
        return await self._task

    async def _run(self) -> OrderPaymentStatus:
        while True:
            status = await self._tick()
            if status is not None and status.is_terminal:
                logger.info(f"Stopped polling after {self.poll_count} polls: {status.value}")
                return status
            await asyncio.sleep(self.interval)

    async def _tick(self) -> Optional[OrderPaymentStatus]:
        try:
            view = await self._fetch()
            stored = _coerce_status(view["paymentStatus"])
            countdown = PaymentCountdown(view.get("paymentDeadline"))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Payment status poll failed, retrying: {e}")
            return self._status_without_view()

        self.poll_count += 1
        self._countdown = countdown
        status = countdown.effective_status(stored)
        self.last_status = status

        if self._on_update is not None:
            outcome = self._on_update(view, status)
            if inspect.isawaitable(outcome):
                await outcome
        return status

    def _status_without_view(self) -> Optional[OrderPaymentStatus]:
        """Status implied by the last good view once its deadline has passed."""
        if self.last_status is None:
            return None
        status = self._countdown.effective_status(self.last_status)
        if status is not self.last_status:
            logger.info("Payment deadline passed while status polls were failing")
            self.last_status = status
        return status
