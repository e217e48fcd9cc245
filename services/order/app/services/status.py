"""Order status state machine.

    pending -> processing -> shipping -> delivered
        \__________\____________\______-> cancelled

``delivered`` and ``cancelled`` are terminal. Payment status is a separate
axis; confirming payment on a pending order moves it to processing.
Cancellation is the compensating action of checkout: it gives the stock
back and, for paid orders, marks the refund.
"""
from dataclasses import dataclass
from decimal import Decimal

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.db.models import Order, OrderDetail, OrderStatus, PaymentStatus, ProductDetail
from app.schemas import ShippingAddressUpdate
from app.services import inventory
from app.services.orders import validate_phone

logger = structlog.get_logger(__name__)

ADMIN_CANCEL_NOTE = "Cancelled by admin"
CANCEL_REFUND_REASON = "Refund for cancelled order"
DEFAULT_REFUND_REASON = "Refund"

_RANK = {
    OrderStatus.PENDING: 0,
    OrderStatus.PROCESSING: 1,
    OrderStatus.SHIPPING: 2,
    OrderStatus.DELIVERED: 3,
}


@dataclass
class StatusChange:
    order: Order
    previous_status: OrderStatus
    changed: bool

    @property
    def status_changed(self) -> bool:
        return self.order.status != self.previous_status


def lock_order(db: Session, order_id: int) -> Order:
    order = db.execute(select(Order).where(Order.id == order_id).with_for_update()).scalar_one_or_none()
    if order is None:
        raise NotFoundError("OrderNotFound", f"Order {order_id} does not exist", order_id=order_id)
    return order


def check_transition(current: OrderStatus, target: OrderStatus) -> None:
    """Raise unless moving from ``current`` to ``target`` is allowed.

    Same-status moves are allowed (no-ops). Cancellation targets are
    handled by ``cancel_order``.
    """
    if current == target:
        return
    if current == OrderStatus.CANCELLED:
        raise ConflictError("IllegalTransition", "Cannot change the status of a cancelled order",
                            current=current.value, target=target.value)
    if target == OrderStatus.CANCELLED:
        if current == OrderStatus.DELIVERED:
            raise ConflictError("CannotCancelDelivered", "Cannot cancel a delivered order")
        return
    if _RANK[target] < _RANK[current]:
        raise ConflictError("IllegalTransition", f"Cannot move an order from {current.value} to {target.value}",
                            current=current.value, target=target.value)


def _variant_for(db: Session, detail: OrderDetail) -> ProductDetail | None:
    if detail.product_detail_id:
        return db.get(ProductDetail, detail.product_detail_id)
    # legacy lines predate the variant reference
    return inventory.find_variant(db, detail.product_id, detail.color)


def _mark_refunded(order: Order, amount: Decimal, reason: str) -> None:
    order.payment_status_id = PaymentStatus.REFUNDED.value
    order.refund_amount = amount
    order.refund_reason = reason


def _apply_payment(order: Order, payment_status: PaymentStatus, refund_reason: str | None = None) -> bool:
    """Record a payment status; returns whether anything changed.

    Money taken for a cancelled order is owed back, so ``paid`` on a
    cancelled order is stored as a full refund.
    """
    if order.status == OrderStatus.CANCELLED and payment_status == PaymentStatus.PAID:
        if order.payment_status_id == PaymentStatus.REFUNDED:
            return False
        _mark_refunded(order, order.total, refund_reason or CANCEL_REFUND_REASON)
        return True
    if payment_status.value == order.payment_status_id:
        return False
    order.payment_status_id = payment_status.value
    return True


def apply_cancellation(
    db: Session,
    order: Order,
    *,
    note: str,
    refund_reason: str | None = None,
    payment_status: PaymentStatus | None = None,
) -> None:
    """Cancel ``order`` inside the caller's transaction.

    Paid orders are marked refunded for their full total; otherwise
    ``payment_status`` (if given) is recorded, a late ``paid`` becoming
    a full refund. Every line's quantity goes back to its inventory row.
    """
    order.status = OrderStatus.CANCELLED
    order.cancel_note = note
    if order.payment_status_id == PaymentStatus.PAID:
        _mark_refunded(order, order.total, refund_reason or CANCEL_REFUND_REASON)
    elif payment_status is not None:
        _apply_payment(order, payment_status, refund_reason)

    touched = set()
    details = db.execute(select(OrderDetail).where(OrderDetail.order_id == order.id)).scalars().all()
    for detail in details:
        touched.add(detail.product_id)
        variant = _variant_for(db, detail)
        if variant is None:
            logger.warning(
                "Variant missing, stock not restored",
                order_id=order.id, product_id=detail.product_id, color=detail.color, size=detail.size,
            )
            continue
        inventory.restore_stock(db, variant.id, detail.size, detail.quantity)
    db.flush()
    inventory.recompute_products(db, touched)


def cancel_order(
    db: Session,
    order_id: int,
    note: str | None = None,
    refund_reason: str | None = None,
    payment_status: PaymentStatus | None = None,
) -> StatusChange:
    try:
        order = lock_order(db, order_id)
        previous = order.status
        if previous == OrderStatus.CANCELLED:
            # re-cancel only records a late payment result
            changed = payment_status is not None and _apply_payment(order, payment_status, refund_reason)
            db.commit()
            return StatusChange(order=order, previous_status=previous, changed=changed)
        check_transition(previous, OrderStatus.CANCELLED)
        apply_cancellation(
            db, order,
            note=note or ADMIN_CANCEL_NOTE,
            refund_reason=refund_reason,
            payment_status=payment_status,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Order cancelled", order_id=order_id, previous_status=previous.value,
                payment_status=order.payment_status.name)
    return StatusChange(order=order, previous_status=previous, changed=True)


def update_order_status(
    db: Session,
    order_id: int,
    status: OrderStatus | None = None,
    payment_status: PaymentStatus | None = None,
) -> StatusChange:
    if payment_status == PaymentStatus.REFUNDED:
        # a refund needs an amount and a paid order
        raise ValidationError("RefundRequiresAmount", "Use the refund operation to refund an order")
    if status == OrderStatus.CANCELLED:
        return cancel_order(db, order_id, payment_status=payment_status)

    try:
        order = lock_order(db, order_id)
        previous = order.status
        target = status or previous
        check_transition(previous, target)

        changed = False
        if target != previous:
            order.status = target
            changed = True
        if payment_status is not None and _apply_payment(order, payment_status):
            changed = True
        if order.payment_status_id == PaymentStatus.PAID and order.status == OrderStatus.PENDING:
            order.status = OrderStatus.PROCESSING
            changed = True

        db.commit()
    except Exception:
        db.rollback()
        raise

    if changed:
        logger.info("Order status updated", order_id=order_id, previous_status=previous.value,
                    status=order.status.value, payment_status=order.payment_status.name)
    return StatusChange(order=order, previous_status=previous, changed=changed)


def record_payment_result(db: Session, order_id: int, succeeded: bool) -> StatusChange:
    """Entry point for the payment gateway: mark the order paid or failed."""
    return update_order_status(
        db, order_id, payment_status=PaymentStatus.PAID if succeeded else PaymentStatus.FAILED
    )


def process_refund(db: Session, order_id: int, amount: Decimal, reason: str | None = None) -> Order:
    if amount is None or Decimal(amount) <= 0:
        raise ValidationError("InvalidRefundAmount", "Refund amount must be positive")
    amount = Decimal(amount)

    try:
        order = lock_order(db, order_id)
        if order.payment_status_id != PaymentStatus.PAID:
            raise ConflictError("OrderNotPaid", "Only paid orders can be refunded",
                                payment_status=order.payment_status.name)
        if amount > order.total:
            raise ConflictError("RefundExceedsTotal", f"Refund exceeds order total {order.total}",
                                total=float(order.total))
        _mark_refunded(order, amount, reason or DEFAULT_REFUND_REASON)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Order refunded", order_id=order_id, amount=str(amount))
    return order


_ADDRESS_FIELDS = {
    "full_name": "shipping_full_name",
    "phone_number": "shipping_phone_number",
    "street_address": "shipping_street_address",
    "ward": "shipping_ward",
    "district": "shipping_district",
    "city": "shipping_city",
}


def update_shipping_address(db: Session, order_id: int, changes: ShippingAddressUpdate) -> Order:
    """Edit the shipping snapshot of an open order. Never re-prices it."""
    values = changes.model_dump(exclude_none=True)
    if not values:
        raise ValidationError("NothingToUpdate", "No shipping details to update")
    if "phone_number" in values:
        validate_phone(values["phone_number"])

    try:
        order = lock_order(db, order_id)
        if order.status in (OrderStatus.DELIVERED, OrderStatus.CANCELLED):
            raise ConflictError("OrderLocked", f"Cannot edit a {order.status.value} order", status=order.status.value)
        for field, value in values.items():
            setattr(order, _ADDRESS_FIELDS[field], value)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return order
