"""Auto-cancellation of unpaid online orders."""
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from app.db.models import Order, OrderStatus, PaymentStatus
from app.services import status as order_status
from app.services import sweep as sweep_module
from app.services.orders import create_order
from app.services.sweep import AUTO_CANCEL_NOTE, AutoCancelSweep, MemorySweepGate, RedisSweepGate

from conftest import COD, RecordingNotifier, checkout_request, stock_of

NOW = datetime(2026, 3, 1, 12, 0, 0)


class FakeClock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def place(db, make_product):
    """Place an order of one unit at ``age`` before NOW; returns (order, inventory row)."""
    def _place(age, payment_method_id=2, user_email="buyer@example.com", stock=3):
        product, _, invs = make_product(name=f"Shirt {age}", sizes={"M": stock})
        order = create_order(
            db,
            checkout_request([(product.id, "Black", "M", 1)], payment_method_id=payment_method_id),
            user_email=user_email,
            now=NOW - age,
        )
        return order, invs["M"]
    return _place


def _reload(session_factory, order_id):
    with session_factory() as fresh:
        return fresh.get(Order, order_id)


def test_only_expired_online_orders_are_cancelled(session_factory, place, clock):
    stale, stale_inv = place(timedelta(hours=25))
    recent, recent_inv = place(timedelta(hours=1))
    cod, _ = place(timedelta(hours=30), payment_method_id=COD)
    notifier = RecordingNotifier()

    report = AutoCancelSweep(session_factory, clock=clock, notifier=notifier).run()

    assert report.cancelled_ids == [stale.id]
    assert report.failed_ids == []

    swept = _reload(session_factory, stale.id)
    assert swept.status == OrderStatus.CANCELLED
    assert swept.payment_status == PaymentStatus.CANCELLED
    assert swept.cancel_note == AUTO_CANCEL_NOTE
    assert stock_of(session_factory, stale_inv.id) == 3

    assert _reload(session_factory, recent.id).status == OrderStatus.PENDING
    assert stock_of(session_factory, recent_inv.id) == 2
    assert _reload(session_factory, cod.id).status == OrderStatus.PENDING
    assert notifier.status_changes == [(stale.id, "cancelled")]


def test_paid_orders_are_left_alone(db, session_factory, place, clock):
    order, _ = place(timedelta(hours=48))
    order_status.update_order_status(db, order.id, payment_status=PaymentStatus.PAID)

    report = AutoCancelSweep(session_factory, clock=clock).run()

    assert report.cancelled_ids == []
    assert _reload(session_factory, order.id).status == OrderStatus.PROCESSING


def test_guest_orders_are_swept_without_notification(session_factory, place, clock):
    order, _ = place(timedelta(hours=26), user_email=None)
    notifier = RecordingNotifier()

    report = AutoCancelSweep(session_factory, clock=clock, notifier=notifier).run()

    assert report.cancelled_ids == [order.id]
    assert notifier.status_changes == []


def test_one_failing_order_does_not_block_the_rest(session_factory, place, clock, monkeypatch):
    bad, bad_inv = place(timedelta(hours=40))
    good, good_inv = place(timedelta(hours=30))
    real_cancel = sweep_module.apply_cancellation

    def flaky(db, order, **kwargs):
        if order.id == bad.id:
            raise RuntimeError("corrupt order")
        return real_cancel(db, order, **kwargs)

    monkeypatch.setattr(sweep_module, "apply_cancellation", flaky)

    report = AutoCancelSweep(session_factory, clock=clock).run()

    assert report.cancelled_ids == [good.id]
    assert report.failed_ids == [bad.id]
    assert _reload(session_factory, bad.id).status == OrderStatus.PENDING
    assert stock_of(session_factory, bad_inv.id) == 2
    assert stock_of(session_factory, good_inv.id) == 3


def test_failing_notifier_does_not_undo_cancellation(session_factory, place, clock):
    order, _ = place(timedelta(hours=25))
    notifier = MagicMock()
    notifier.status_changed.side_effect = RuntimeError("broker down")

    report = AutoCancelSweep(session_factory, clock=clock, notifier=notifier).run()

    assert report.cancelled_ids == [order.id]
    assert _reload(session_factory, order.id).status == OrderStatus.CANCELLED


class TestGate:
    def test_repeat_calls_within_interval_are_no_ops(self, session_factory, place, clock):
        sweep = AutoCancelSweep(session_factory, gate=MemorySweepGate(), clock=clock,
                                min_interval=timedelta(minutes=15))
        assert sweep.run_if_due() is not None

        order, _ = place(timedelta(hours=30))
        clock.now = NOW + timedelta(minutes=5)
        assert sweep.run_if_due() is None
        assert _reload(session_factory, order.id).status == OrderStatus.PENDING

        clock.now = NOW + timedelta(minutes=16)
        report = sweep.run_if_due()
        assert report.cancelled_ids == [order.id]

    def test_memory_gate(self):
        gate = MemorySweepGate()
        interval = timedelta(minutes=15)
        assert gate.try_acquire(NOW, interval)
        assert not gate.try_acquire(NOW + timedelta(minutes=14), interval)
        assert gate.try_acquire(NOW + interval, interval)
        assert gate.last_run == NOW + interval

    def test_redis_gate_uses_expiring_key(self):
        client = MagicMock()
        client.set.return_value = True
        gate = RedisSweepGate(client, key="sweep-test")

        assert gate.try_acquire(NOW, timedelta(minutes=15))
        client.set.assert_called_once_with("sweep-test", NOW.isoformat(), nx=True, px=900000)

        client.set.return_value = None
        assert not gate.try_acquire(NOW, timedelta(minutes=15))
