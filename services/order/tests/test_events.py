"""Payment events in, order notifications out."""
from unittest.mock import MagicMock

import pytest

from app.db.models import OrderStatus, PaymentStatus
from app.kafka import consumer
from app.services import notifier as notifier_module
from app.services.notifier import KafkaNotificationSender, NullNotificationSender, default_sender, dispatch_safely
from app.services.orders import create_order
from app.services.status import cancel_order

from conftest import RecordingNotifier, checkout_request


@pytest.fixture
def order(db, make_product):
    product, _, _ = make_product()
    return create_order(db, checkout_request([(product.id, "Black", "M", 1)]), user_email="buyer@example.com")


class TestPaymentEvents:
    def test_success_marks_paid_and_notifies(self, db, order):
        notifier = RecordingNotifier()
        change = consumer.process_event({"type": "payment.succeeded", "order_id": order.id}, db, notifier)

        assert change.order.payment_status == PaymentStatus.PAID
        assert change.order.status == OrderStatus.PROCESSING
        assert notifier.status_changes == [(order.id, "processing")]

    def test_failure_marks_failed_without_status_notification(self, db, order):
        notifier = RecordingNotifier()
        change = consumer.process_event({"type": "payment.failed", "order_id": order.id}, db, notifier)

        assert change.order.payment_status == PaymentStatus.FAILED
        assert notifier.status_changes == []

    def test_late_payment_on_cancelled_order_is_refunded(self, db, order):
        cancel_order(db, order.id)
        notifier = RecordingNotifier()

        change = consumer.process_event({"type": "payment.succeeded", "order_id": order.id}, db, notifier)

        assert change.order.status == OrderStatus.CANCELLED
        assert change.order.payment_status == PaymentStatus.REFUNDED
        assert change.order.refund_amount == change.order.total
        assert notifier.status_changes == []

    def test_unrelated_events_are_ignored(self, db, order):
        assert consumer.process_event({"type": "payment.initiated", "order_id": order.id}, db) is None
        assert consumer.process_event({"type": "payment.succeeded"}, db) is None

    def test_unknown_order_is_logged_not_raised(self, db):
        assert consumer.process_event({"type": "payment.succeeded", "order_id": 999}, db) is None

    def test_handle_message_applies_result(self, session_factory, order):
        change = consumer.handle_message({"type": "payment.succeeded", "order_id": order.id}, None, session_factory)
        assert change.order.payment_status == PaymentStatus.PAID

    def test_bad_message_does_not_escape(self, session_factory):
        assert consumer.handle_message({"type": "payment.succeeded", "order_id": "not-a-number"}, None, session_factory) is None
        assert consumer.handle_message({"type": "payment.succeeded", "order_id": 999}, None, session_factory) is None


class TestNotificationSender:
    def test_kafka_sender_publishes_order_events(self, monkeypatch):
        send = MagicMock()
        monkeypatch.setattr(notifier_module.producer, "send", send)
        sender = KafkaNotificationSender(topic="order.events")

        sender.order_confirmed(7)
        sender.status_changed(7, "shipping")

        send.assert_any_call("order.events", key="7", value={"type": "order.confirmed", "order_id": 7})
        send.assert_any_call(
            "order.events", key="7", value={"type": "order.status_changed", "order_id": 7, "status": "shipping"},
        )

    def test_default_sender_without_kafka(self):
        # KAFKA_ENABLED is off for the test run
        assert isinstance(default_sender(), NullNotificationSender)

    def test_dispatch_swallows_failures(self):
        failing = MagicMock(side_effect=ConnectionError("broker unreachable"))
        dispatch_safely(failing, 1, "cancelled")
        failing.assert_called_once_with(1, "cancelled")
