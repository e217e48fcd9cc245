"""Line pricing and voucher application."""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

import structlog
from sqlalchemy import select, update, or_
from sqlalchemy.orm import Session

from app.core.errors import ConflictError, NotFoundError
from app.db.models import ProductDetail, Voucher, VoucherStatus, VoucherType, utcnow

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")


@dataclass(frozen=True)
class LinePrice:
    original_price: Decimal
    discount_price: Decimal
    discount_percent: int
    line_total: Decimal


@dataclass(frozen=True)
class VoucherPreview:
    voucher_id: int
    code: str
    type: VoucherType
    value: Decimal
    min_order_value: Decimal
    discount_amount: Decimal


def discount_percent(price: Decimal, original_price: Decimal) -> int:
    if original_price <= 0:
        return 0
    ratio = (Decimal(1) - Decimal(price) / Decimal(original_price)) * 100
    return int(ratio.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def price_line(variant: ProductDetail, quantity: int) -> LinePrice:
    price = Decimal(variant.price)
    original = Decimal(variant.original_price) if variant.original_price else price
    return LinePrice(
        original_price=original,
        discount_price=price,
        discount_percent=discount_percent(price, original),
        line_total=price * quantity,
    )


def voucher_discount(voucher: Voucher, subtotal: Decimal) -> Decimal:
    """Discount a voucher gives on ``subtotal``, never more than the subtotal."""
    if voucher.type == VoucherType.PERCENTAGE:
        amount = (subtotal * Decimal(voucher.value) / 100).quantize(CENT, rounding=ROUND_HALF_UP)
    else:
        amount = Decimal(voucher.value)
    return min(amount, subtotal)


def find_applicable_voucher(db: Session, code: str, subtotal: Decimal, now: datetime | None = None) -> Voucher:
    # Expiry is enforced by this filter alone
    now = now or utcnow()
    voucher = db.execute(
        select(Voucher)
        .where(
            Voucher.code == code,
            Voucher.status == VoucherStatus.ACTIVE,
            Voucher.min_order_value <= subtotal,
            Voucher.expiration_date >= now,
        )
        .with_for_update()
    ).scalar_one_or_none()
    if voucher is None:
        raise NotFoundError("VoucherInvalid", f"Voucher {code} is not valid for this order", voucher_code=code)
    return voucher


def consume_voucher(db: Session, voucher: Voucher) -> None:
    """Count one use; deactivate the voucher when it reaches its limit."""
    result = db.execute(
        update(Voucher)
        .where(
            Voucher.id == voucher.id,
            or_(Voucher.usage_limit <= 0, Voucher.usage_count < Voucher.usage_limit),
        )
        .values(usage_count=Voucher.usage_count + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictError("VoucherExhausted", f"Voucher {voucher.code} has no uses left", voucher_code=voucher.code)

    db.refresh(voucher)
    if voucher.usage_limit > 0 and voucher.usage_count >= voucher.usage_limit:
        voucher.status = VoucherStatus.INACTIVE
        db.flush()
        logger.info("Voucher reached its usage limit", code=voucher.code, usage_limit=voucher.usage_limit)


def apply_voucher(db: Session, code: str, subtotal: Decimal, now: datetime | None = None) -> tuple[Voucher, Decimal]:
    voucher = find_applicable_voucher(db, code, subtotal, now)
    discount = voucher_discount(voucher, subtotal)
    consume_voucher(db, voucher)
    return voucher, discount


def preview_voucher(db: Session, code: str, order_total: Decimal, now: datetime | None = None) -> VoucherPreview:
    """Read-only check of what a voucher would give; never counts a use."""
    now = now or utcnow()
    voucher = db.execute(select(Voucher).where(Voucher.code == code)).scalar_one_or_none()
    if voucher is None or voucher.status != VoucherStatus.ACTIVE:
        raise NotFoundError("VoucherInvalid", f"Voucher {code} is not available", voucher_code=code)
    if voucher.expiration_date < now:
        raise ConflictError("VoucherExpired", f"Voucher {code} has expired", voucher_code=code)
    if voucher.usage_limit > 0 and voucher.usage_count >= voucher.usage_limit:
        raise ConflictError("VoucherExhausted", f"Voucher {code} has no uses left", voucher_code=code)
    if order_total < voucher.min_order_value:
        raise ConflictError(
            "VoucherMinOrderNotMet",
            f"Orders must reach {voucher.min_order_value} to use voucher {code}",
            voucher_code=code, min_order_value=float(voucher.min_order_value),
        )
    return VoucherPreview(
        voucher_id=voucher.id,
        code=voucher.code,
        type=voucher.type,
        value=Decimal(voucher.value),
        min_order_value=Decimal(voucher.min_order_value),
        discount_amount=voucher_discount(voucher, Decimal(order_total)),
    )
