"""Auto-cancellation of unpaid online-payment orders.

Orders paid online (anything but cash on delivery) that are still pending
with no payment after ``expiry`` are cancelled and their stock returned.
Each order is cancelled in its own transaction so one bad order cannot
hold up the rest of the batch.

Periodic runs go through a ``SweepGate`` that remembers the last run, so
calls closer together than ``min_interval`` do nothing.
"""
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Protocol

import structlog
from redis import Redis
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import settings
from app.db.models import Order, OrderStatus, PaymentMethod, PaymentStatus, utcnow
from app.services.notifier import NotificationSender, dispatch_safely
from app.services.status import lock_order, apply_cancellation

logger = structlog.get_logger(__name__)

AUTO_CANCEL_NOTE = "Automatically cancelled: payment not received within 24 hours"


class SweepGate(Protocol):
    def try_acquire(self, now: datetime, interval: timedelta) -> bool:
        """Claim the next run if ``interval`` has passed since the last one."""
        ...


class MemorySweepGate:
    def __init__(self):
        self._lock = threading.Lock()
        self.last_run: datetime | None = None

    def try_acquire(self, now: datetime, interval: timedelta) -> bool:
        with self._lock:
            if self.last_run is not None and now - self.last_run < interval:
                return False
            self.last_run = now
            return True


class RedisSweepGate:
    """Gate shared by every worker: the key lives for exactly one interval."""

    def __init__(self, client: Redis, key: str = "order:auto-cancel:last-run"):
        self.client = client
        self.key = key

    def try_acquire(self, now: datetime, interval: timedelta) -> bool:
        ms = max(1, int(interval.total_seconds() * 1000))
        return bool(self.client.set(self.key, now.isoformat(), nx=True, px=ms))


def make_gate() -> SweepGate:
    if settings.SWEEP_GATE == "redis":
        return RedisSweepGate(Redis.from_url(settings.REDIS_URL, decode_responses=True))
    return MemorySweepGate()


@dataclass
class SweepReport:
    cancelled_ids: list[int] = field(default_factory=list)
    failed_ids: list[int] = field(default_factory=list)


def _is_expired_unpaid(order: Order, cutoff: datetime) -> bool:
    return (
        order.status == OrderStatus.PENDING
        and order.payment_status_id == PaymentStatus.PENDING
        and not order.payment_method.is_cash_on_delivery
        and order.created_at < cutoff
    )


class AutoCancelSweep:
    def __init__(
        self,
        session_factory: sessionmaker,
        gate: SweepGate | None = None,
        clock: Callable[[], datetime] = utcnow,
        notifier: NotificationSender | None = None,
        min_interval: timedelta = timedelta(seconds=settings.SWEEP_INTERVAL_SECONDS),
        expiry: timedelta = timedelta(hours=settings.PAYMENT_EXPIRY_HOURS),
    ):
        self.session_factory = session_factory
        self.gate = gate or MemorySweepGate()
        self.clock = clock
        self.notifier = notifier
        self.min_interval = min_interval
        self.expiry = expiry

    def run_if_due(self) -> SweepReport | None:
        if not self.gate.try_acquire(self.clock(), self.min_interval):
            return None
        return self.run()

    def candidate_ids(self, db: Session, cutoff: datetime) -> list[int]:
        return list(db.execute(
            select(Order.id)
            .join(PaymentMethod, PaymentMethod.id == Order.payment_method_id)
            .where(
                PaymentMethod.is_cash_on_delivery.is_(False),
                Order.status == OrderStatus.PENDING,
                Order.payment_status_id == PaymentStatus.PENDING.value,
                Order.created_at < cutoff,
            )
            .order_by(Order.id)
        ).scalars())

    def run(self) -> SweepReport:
        cutoff = self.clock() - self.expiry
        report = SweepReport()
        with self.session_factory() as db:
            ids = self.candidate_ids(db, cutoff)
        if not ids:
            logger.debug("No expired unpaid orders", cutoff=cutoff.isoformat())
            return report

        for order_id in ids:
            try:
                cancelled, owner = self._cancel_one(order_id, cutoff)
            except Exception:
                logger.exception("Auto-cancel failed, order skipped", order_id=order_id)
                report.failed_ids.append(order_id)
                continue
            if cancelled:
                report.cancelled_ids.append(order_id)
                if owner and self.notifier is not None:
                    dispatch_safely(self.notifier.status_changed, order_id, OrderStatus.CANCELLED.value)

        logger.info(
            "Auto-cancel sweep complete",
            cutoff=cutoff.isoformat(),
            cancelled=len(report.cancelled_ids),
            failed=len(report.failed_ids),
        )
        return report

    def _cancel_one(self, order_id: int, cutoff: datetime) -> tuple[bool, str | None]:
        with self.session_factory() as db:
            try:
                order = lock_order(db, order_id)
                # paid or edited since the candidate query
                if not _is_expired_unpaid(order, cutoff):
                    db.commit()
                    return False, None
                apply_cancellation(db, order, note=AUTO_CANCEL_NOTE, payment_status=PaymentStatus.CANCELLED)
                db.commit()
            except Exception:
                db.rollback()
                raise
            logger.info("Order auto-cancelled", order_id=order_id, created_at=order.created_at.isoformat())
            return True, order.user_email
