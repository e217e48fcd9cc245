"""Outbound order notifications.

Delivery (emails) belongs to the notifications service, which consumes
``order.events``. Here we only publish, after the owning transaction has
committed, and never let a publishing failure reach the caller.
"""
from typing import Protocol

import structlog

from app.core.config import settings
from app.kafka import producer

logger = structlog.get_logger(__name__)


class NotificationSender(Protocol):
    def order_confirmed(self, order_id: int) -> None: ...

    def status_changed(self, order_id: int, status: str) -> None: ...


class KafkaNotificationSender:
    def __init__(self, topic: str | None = None):
        self.topic = topic or settings.TOPIC_ORDER_EVENTS

    def order_confirmed(self, order_id: int) -> None:
        producer.send(self.topic, key=str(order_id), value={"type": "order.confirmed", "order_id": order_id})

    def status_changed(self, order_id: int, status: str) -> None:
        producer.send(
            self.topic,
            key=str(order_id),
            value={"type": "order.status_changed", "order_id": order_id, "status": status},
        )


class NullNotificationSender:
    """Used when Kafka is disabled."""

    def order_confirmed(self, order_id: int) -> None:
        logger.debug("Notification skipped", kind="order.confirmed", order_id=order_id)

    def status_changed(self, order_id: int, status: str) -> None:
        logger.debug("Notification skipped", kind="order.status_changed", order_id=order_id, status=status)


def default_sender() -> NotificationSender:
    return KafkaNotificationSender() if settings.KAFKA_ENABLED else NullNotificationSender()


def dispatch_safely(fn, *args) -> None:
    """Run a notification call; failures are logged, never raised."""
    try:
        fn(*args)
    except Exception:
        logger.exception("Notification dispatch failed", notification=getattr(fn, "__name__", str(fn)), args=args)
