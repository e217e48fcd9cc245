
import threading, json
import structlog
from kafka import KafkaConsumer
from sqlalchemy.orm import Session
from app.core.config import settings
from app.core.errors import OrderServiceError
from app.db.session import SessionLocal
from app.services import status as order_status
from app.services.notifier import NotificationSender, default_sender, dispatch_safely

logger = structlog.get_logger(__name__)

_stop_event = threading.Event()
_thread = None

PAYMENT_RESULTS = {"payment.succeeded": True, "payment.failed": False}

def process_event(ev: dict, db: Session, notifier: NotificationSender | None = None):
    succeeded = PAYMENT_RESULTS.get(ev.get("type"))
    order_id = ev.get("order_id")
    if succeeded is None or not order_id:
        return None
    try:
        change = order_status.record_payment_result(db, int(order_id), succeeded)
    except OrderServiceError as exc:
        logger.warning("Payment event rejected", event_type=ev.get("type"), order_id=order_id, code=exc.code)
        return None
    if change.status_changed and change.order.user_email and notifier is not None:
        dispatch_safely(notifier.status_changed, change.order.id, change.order.status.value)
    return change

def handle_message(value: dict, notifier: NotificationSender | None, session_factory=SessionLocal):
    # one bad message must not stop the loop
    try:
        with session_factory() as db:
            return process_event(value, db, notifier)
    except Exception:
        logger.exception("Payment event handling failed", payload=value)
        return None

def run_loop():
    consumer = KafkaConsumer(
        settings.TOPIC_PAYMENT_EVENTS,
        bootstrap_servers=[settings.KAFKA_BOOTSTRAP],
        group_id="order-service",
        value_deserializer=lambda v: json.loads(v.decode("utf-8")),
        enable_auto_commit=True,
        auto_offset_reset="earliest",
    )
    notifier = default_sender()
    try:
        for msg in consumer:
            if _stop_event.is_set(): break
            handle_message(msg.value, notifier)
    finally:
        consumer.close()

def start():
    global _thread
    if _thread and _thread.is_alive(): return
    _stop_event.clear()
    _thread = threading.Thread(target=run_loop, daemon=True)
    _thread.start()

def stop():
    _stop_event.set()
