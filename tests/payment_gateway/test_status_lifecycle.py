"""
Tests for the transaction status lifecycle: transition rules, deadline
countdown, the polled status view and the client-side poller.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from hypothesis import given, settings, strategies as st

from storefront.modules.payment_gateway.models import OrderPaymentStatus
from storefront.modules.payment_gateway.status import (
    PaymentCountdown,
    PaymentStatusPoller,
    build_instruction,
    can_transition,
    parse_deadline,
)

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

statuses = st.sampled_from(list(OrderPaymentStatus))
terminal_statuses = st.sampled_from([
    OrderPaymentStatus.PAID, OrderPaymentStatus.FAILED, OrderPaymentStatus.EXPIRED,
])
pending_statuses = st.sampled_from([OrderPaymentStatus.PENDING, OrderPaymentStatus.PENDING_MANUAL])


def make_order(**overrides):
    fields = dict(
        order_code="CGS-1718000000000-abcde",
        total_amount=150000,
        original_total=150000,
        discount_amount=0,
        promo_code=None,
        payment_status="PENDING",
        payment_deadline=NOW + timedelta(hours=24),
        payment_gateway="midtrans",
        payment_method="bca_va",
        payment_type="bank_transfer",
        payment_code="12345",
        transaction_id="tx-1",
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


def view(status="PENDING", deadline=None):
    return {"paymentStatus": status, "paymentDeadline": deadline}


class TestTransitions:

    @given(current=terminal_statuses, target=statuses)
    @settings(max_examples=50)
    def test_terminal_status_never_changes(self, current, target):
        assert can_transition(current, target) is False

    @given(current=pending_statuses, target=statuses)
    @settings(max_examples=50)
    def test_pending_status_may_move(self, current, target):
        assert can_transition(current, target) is True

    def test_accepts_plain_strings(self):
        assert can_transition("PENDING", "PAID") is True
        assert can_transition("PAID", "FAILED") is False

    def test_unknown_status_rejected(self):
        with pytest.raises(ValueError):
            can_transition("PENDING", "REFUNDED")


class TestCountdown:

    @given(
        deadline_offset=st.integers(min_value=1, max_value=48 * 3600),
        ticks=st.lists(st.integers(min_value=1, max_value=600), min_size=1, max_size=10),
    )
    @settings(max_examples=100)
    def test_remaining_strictly_decreases_until_zero(self, deadline_offset, ticks):
        countdown = PaymentCountdown(NOW + timedelta(seconds=deadline_offset))

        previous = countdown.remaining(NOW)
        elapsed = 0
        for tick in ticks:
            elapsed += tick
            current = countdown.remaining(NOW + timedelta(seconds=elapsed))
            if previous > timedelta(0):
                assert current < previous
            else:
                assert current == timedelta(0)
            assert current >= timedelta(0)
            previous = current

    def test_expired_at_exact_deadline(self):
        countdown = PaymentCountdown(NOW)

        assert countdown.remaining(NOW) == timedelta(0)
        assert countdown.is_expired(NOW)
        assert not countdown.is_expired(NOW - timedelta(seconds=1))

    def test_no_deadline(self):
        countdown = PaymentCountdown(None)

        assert countdown.remaining(NOW) is None
        assert not countdown.is_expired(NOW)
        assert countdown.effective_status("PENDING", NOW) == OrderPaymentStatus.PENDING

    @given(stored=pending_statuses)
    @settings(max_examples=10)
    def test_pending_past_deadline_shows_expired(self, stored):
        countdown = PaymentCountdown(NOW - timedelta(minutes=1))

        assert countdown.effective_status(stored, NOW) == OrderPaymentStatus.EXPIRED

    @given(stored=terminal_statuses)
    @settings(max_examples=10)
    def test_terminal_status_kept_past_deadline(self, stored):
        countdown = PaymentCountdown(NOW - timedelta(minutes=1))

        assert countdown.effective_status(stored, NOW) == stored

    def test_parse_deadline_variants(self):
        assert parse_deadline("2026-10-19T12:00:00Z") == NOW
        assert parse_deadline("2026-10-19T12:00:00") == NOW
        assert parse_deadline(datetime(2026, 10, 19, 12, 0)) == NOW
        assert parse_deadline("") is None
        assert parse_deadline(None) is None


class TestBuildInstruction:

    def test_camel_case_view(self):
        result = build_instruction(make_order())

        assert result["orderId"] == "CGS-1718000000000-abcde"
        assert result["totalAmount"] == 150000
        assert result["paymentStatus"] == "PENDING"
        assert result["paymentCode"] == "12345"
        assert result["paymentDeadline"] == (NOW + timedelta(hours=24)).isoformat()
        assert result["manualMethod"] is None

    def test_discount_applied_to_total(self):
        result = build_instruction(make_order(
            total_amount=150000, original_total=150000, discount_amount=20000, promo_code="HEMAT20",
        ))

        assert result["totalAmount"] == 130000
        assert result["originalTotal"] == 150000
        assert result["discountAmount"] == 20000
        assert result["promoCode"] == "HEMAT20"

    @given(total=st.integers(min_value=0, max_value=10_000_000), discount=st.integers(min_value=0, max_value=20_000_000))
    @settings(max_examples=100)
    def test_total_never_negative(self, total, discount):
        result = build_instruction(make_order(total_amount=total, discount_amount=discount))

        assert result["totalAmount"] == max(0, total - discount)

    def test_original_total_falls_back_to_total(self):
        result = build_instruction(make_order(original_total=0))

        assert result["originalTotal"] == 150000

    def test_manual_method_attached(self):
        method = {"id": "m-1", "type": "bank_transfer", "provider_name": "BCA"}

        result = build_instruction(make_order(payment_status="PENDING_MANUAL"), method)

        assert result["manualMethod"] == method


class TestPoller:

    @pytest.mark.asyncio
    async def test_stops_on_terminal_status(self):
        fetch = AsyncMock(side_effect=[view("PENDING"), view("PENDING"), view("PAID")])
        poller = PaymentStatusPoller(fetch, interval=0)

        poller.start()
        final = await poller.wait()

        assert final == OrderPaymentStatus.PAID
        assert poller.poll_count == 3
        assert fetch.await_count == 3
        assert not poller.running

    @pytest.mark.asyncio
    async def test_stops_when_deadline_passes(self):
        past = (datetime.now(timezone.utc) - timedelta(seconds=1)).isoformat()
        fetch = AsyncMock(return_value=view("PENDING_MANUAL", past))
        poller = PaymentStatusPoller(fetch, interval=0)

        poller.start()
        final = await poller.wait()

        assert final == OrderPaymentStatus.EXPIRED
        assert poller.poll_count == 1

    @pytest.mark.asyncio
    async def test_fetch_errors_are_retried(self):
        fetch = AsyncMock(side_effect=[RuntimeError("network down"), view("PENDING"), view("FAILED")])
        poller = PaymentStatusPoller(fetch, interval=0)

        poller.start()
        final = await poller.wait()

        assert final == OrderPaymentStatus.FAILED
        assert fetch.await_count == 3
        assert poller.poll_count == 2

    @pytest.mark.asyncio
    async def test_deadline_ends_polling_while_fetches_fail(self):
        deadline = (datetime.now(timezone.utc) + timedelta(milliseconds=50)).isoformat()
        views = iter([view("PENDING", deadline)])

        async def fetch():
            try:
                return next(views)
            except StopIteration:
                raise RuntimeError("network down")

        poller = PaymentStatusPoller(fetch, interval=0.01)

        poller.start()
        final = await asyncio.wait_for(poller.wait(), timeout=2)

        assert final == OrderPaymentStatus.EXPIRED
        assert poller.last_status == OrderPaymentStatus.EXPIRED
        assert poller.poll_count == 1

    @pytest.mark.asyncio
    async def test_failures_before_first_view_keep_polling(self):
        fetch = AsyncMock(side_effect=[RuntimeError("down"), RuntimeError("down"), view("PAID")])
        poller = PaymentStatusPoller(fetch, interval=0)

        poller.start()

        assert await poller.wait() == OrderPaymentStatus.PAID
        assert fetch.await_count == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_view", [
        {"error": "Server error"},
        view("REFUNDED"),
        None,
    ])
    async def test_malformed_view_is_retried(self, bad_view):
        updates = []
        fetch = AsyncMock(side_effect=[bad_view, view("PAID")])
        poller = PaymentStatusPoller(fetch, interval=0, on_update=lambda v, s: updates.append(s))

        poller.start()
        final = await poller.wait()

        assert final == OrderPaymentStatus.PAID
        assert fetch.await_count == 2
        assert poller.poll_count == 1
        assert updates == [OrderPaymentStatus.PAID]

    @pytest.mark.asyncio
    async def test_on_update_receives_each_view(self):
        updates = []

        async def on_update(current_view, status):
            updates.append(status)

        fetch = AsyncMock(side_effect=[view("PENDING"), view("PAID")])
        poller = PaymentStatusPoller(fetch, interval=0, on_update=on_update)

        poller.start()
        await poller.wait()

        assert updates == [OrderPaymentStatus.PENDING, OrderPaymentStatus.PAID]

    @pytest.mark.asyncio
    async def test_sync_on_update(self):
        on_update = MagicMock(return_value=None)
        poller = PaymentStatusPoller(AsyncMock(return_value=view("EXPIRED")), interval=0, on_update=on_update)

        poller.start()
        await poller.wait()

        on_update.assert_called_once_with(view("EXPIRED"), OrderPaymentStatus.EXPIRED)

    @pytest.mark.asyncio
    async def test_stop_cancels_polling(self):
        fetch = AsyncMock(return_value=view("PENDING"))
        poller = PaymentStatusPoller(fetch, interval=0.01)

        poller.start()
        await asyncio.sleep(0.05)
        await poller.stop()
        polls_at_stop = poller.poll_count
        await asyncio.sleep(0.05)

        assert not poller.running
        assert polls_at_stop >= 1
        assert poller.poll_count == polls_at_stop
        assert poller.last_status == OrderPaymentStatus.PENDING

    @pytest.mark.asyncio
    async def test_start_twice_rejected(self):
        poller = PaymentStatusPoller(AsyncMock(return_value=view("PENDING")), interval=0.01)

        poller.start()
        try:
            with pytest.raises(RuntimeError):
                poller.start()
        finally:
            await poller.stop()

    @pytest.mark.asyncio
    async def test_wait_before_start_rejected(self):
        poller = PaymentStatusPoller(AsyncMock())

        with pytest.raises(RuntimeError):
            await poller.wait()

    def test_default_interval_from_settings(self):
        poller = PaymentStatusPoller(AsyncMock())

        assert poller.interval == 4.0
