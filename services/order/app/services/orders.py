"""Checkout: turn requested items into a persisted order in one transaction.

Flow:
 1. validate the request (no DB access)
 2. resolve variant + size for every line and check availability
 3. price the lines, apply the voucher, compute shipping
 4. write the order and its lines, take the stock
 5. recompute the derived status of every product touched
 6. commit, or roll everything back on the first failure

The confirmation notification is the caller's job, after this returns.
"""
import re
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

import structlog
from sqlalchemy.orm import Session

from app.core.errors import NotFoundError, ValidationError
from app.db.models import Order, OrderDetail, OrderStatus, PaymentMethod, PaymentStatus, ProductDetail, ProductInventory
from app.schemas import CheckoutItem, CheckoutRequest
from app.services import inventory, pricing
from app.services.shipping import calculate_shipping_fee

logger = structlog.get_logger(__name__)

PHONE_RE = re.compile(r"^(0[35789]|[1-9][0-9])[0-9]{8,14}$")


@dataclass
class _Line:
    item: CheckoutItem
    variant: ProductDetail
    inventory: ProductInventory
    price: pricing.LinePrice


def validate_phone(phone: str | None) -> None:
    if not phone or not PHONE_RE.match(phone):
        raise ValidationError("InvalidPhoneNumber", "Invalid shipping phone number")


def validate_checkout(request: CheckoutRequest) -> list[CheckoutItem]:
    """Reject malformed requests and merge repeated (product, color, size) lines."""
    if not request.items:
        raise ValidationError("EmptyCart", "Cart is empty")
    validate_phone(request.shipping.phone_number)

    merged: dict[tuple, CheckoutItem] = {}
    for it in request.items:
        if it.quantity <= 0:
            raise ValidationError("InvalidQuantity", f"Quantity must be positive for product {it.product_id}")
        key = (it.product_id, it.color, it.size)
        if key in merged:
            merged[key] = merged[key].model_copy(update={"quantity": merged[key].quantity + it.quantity})
        else:
            merged[key] = it
    return list(merged.values())


def _resolve_lines(db: Session, items: list[CheckoutItem]) -> list[_Line]:
    lines = []
    for it in items:
        variant = inventory.resolve_variant(db, it.product_id, it.color)
        inv = inventory.resolve_inventory(db, variant, it.size)
        inventory.ensure_available(inv, it.quantity)
        lines.append(_Line(item=it, variant=variant, inventory=inv, price=pricing.price_line(variant, it.quantity)))
    return lines


def create_order(
    db: Session,
    request: CheckoutRequest,
    *,
    user_email: str | None = None,
    now: datetime | None = None,
) -> Order:
    items = validate_checkout(request)

    try:
        if db.get(PaymentMethod, request.payment_method_id) is None:
            raise NotFoundError(
                "PaymentMethodNotFound",
                f"Payment method {request.payment_method_id} does not exist",
                payment_method_id=request.payment_method_id,
            )

        lines = _resolve_lines(db, items)
        subtotal = sum((ln.price.line_total for ln in lines), Decimal(0))

        voucher, discount = None, Decimal(0)
        if request.voucher_code:
            voucher, discount = pricing.apply_voucher(db, request.voucher_code, subtotal, now)

        shipping = calculate_shipping_fee(subtotal, request.shipping.city)
        addr = request.shipping
        order = Order(
            user_email=user_email,
            subtotal=subtotal,
            voucher_discount=discount,
            shipping_fee=shipping.final_fee,
            shipping_base_price=shipping.base_fee,
            shipping_discount=shipping.discount,
            total=subtotal - discount + shipping.final_fee,
            status=OrderStatus.PENDING,
            payment_method_id=request.payment_method_id,
            payment_status_id=PaymentStatus.PENDING.value,
            shipping_full_name=addr.full_name,
            shipping_phone_number=addr.phone_number,
            shipping_street_address=addr.street_address,
            shipping_ward=addr.ward,
            shipping_district=addr.district,
            shipping_city=addr.city,
        )
        if now is not None:
            order.created_at = now
            order.updated_at = now
        db.add(order)
        db.flush()

        for ln in lines:
            db.add(OrderDetail(
                order_id=order.id,
                product_id=ln.item.product_id,
                product_detail_id=ln.variant.id,
                quantity=ln.item.quantity,
                color=ln.item.color,
                size=ln.item.size,
                original_price=ln.price.original_price,
                discount_price=ln.price.discount_price,
                discount_percent=ln.price.discount_percent,
                voucher_id=voucher.id if voucher else None,
                image_url=ln.variant.image_url,
            ))
            inventory.decrement_stock(db, ln.inventory.id, ln.item.quantity)
        db.flush()

        inventory.recompute_products(db, [ln.item.product_id for ln in lines])
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(order)
    logger.info(
        "Order created",
        order_id=order.id,
        user_email=user_email,
        items=len(lines),
        subtotal=str(order.subtotal),
        voucher=request.voucher_code,
        total=str(order.total),
    )
    return order
