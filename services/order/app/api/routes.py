from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload
from app.api.deps import get_auto_cancel_sweep, get_db, get_notifier
from app.core.auth import admin_or_internal, get_optional_identity
from app.core.errors import NotFoundError
from app.db import models
from app.schemas import (
    CancelRequest, CheckoutRequest, CheckoutResponse, OrderRead, RefundRequest,
    ShippingAddressUpdate, ShippingQuoteRead, ShippingQuoteRequest, StatusUpdate,
    SweepReportRead, VoucherPreviewRead, VoucherValidateRequest,
)
from app.services import orders, pricing, status as order_status
from app.services.notifier import NotificationSender, dispatch_safely
from app.services.shipping import calculate_shipping_fee
from app.services.sweep import AutoCancelSweep

router = APIRouter()

def _order_read(db: Session, order_id: int) -> OrderRead:
    obj = db.execute(
        select(models.Order).options(selectinload(models.Order.details)).where(models.Order.id == order_id)
    ).scalar_one_or_none()
    if not obj:
        raise NotFoundError("OrderNotFound", f"Order {order_id} does not exist", order_id=order_id)
    return OrderRead.model_validate(obj)

def _notify_status(background: BackgroundTasks, notifier: NotificationSender, change: order_status.StatusChange):
    # scheduled only once the transaction has committed
    if change.status_changed and change.order.user_email:
        background.add_task(dispatch_safely, notifier.status_changed, change.order.id, change.order.status.value)

@router.post("/v1/orders/checkout", response_model=CheckoutResponse, status_code=201)
def checkout(
    payload: CheckoutRequest,
    background: BackgroundTasks,
    identity: dict | None = Depends(get_optional_identity),
    db: Session = Depends(get_db),
    notifier: NotificationSender = Depends(get_notifier),
):
    email = identity.get("sub") if identity else None
    order = orders.create_order(db, payload, user_email=email)
    if order.user_email:
        background.add_task(dispatch_safely, notifier.order_confirmed, order.id)
    return CheckoutResponse(order_id=order.id, status=order.status, total=order.total)

@router.post("/v1/orders/auto-cancel", response_model=SweepReportRead)
def run_auto_cancel(
    sweep: AutoCancelSweep = Depends(get_auto_cancel_sweep),
    _=Depends(admin_or_internal),
):
    report = sweep.run()
    return SweepReportRead(
        cancelled_count=len(report.cancelled_ids),
        cancelled_ids=report.cancelled_ids,
        failed_ids=report.failed_ids,
    )

@router.get("/v1/orders/{order_id}", response_model=OrderRead)
def get_order(order_id: int, db: Session = Depends(get_db)):
    return _order_read(db, order_id)

@router.patch("/v1/orders/{order_id}/status", response_model=OrderRead)
def update_status(
    order_id: int,
    payload: StatusUpdate,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    notifier: NotificationSender = Depends(get_notifier),
    _=Depends(admin_or_internal),
):
    change = order_status.update_order_status(db, order_id, payload.status, payload.payment_status_id)
    _notify_status(background, notifier, change)
    return _order_read(db, order_id)

@router.post("/v1/orders/{order_id}/cancel", response_model=OrderRead)
def cancel(
    order_id: int,
    background: BackgroundTasks,
    payload: CancelRequest | None = None,
    db: Session = Depends(get_db),
    notifier: NotificationSender = Depends(get_notifier),
    _=Depends(admin_or_internal),
):
    payload = payload or CancelRequest()
    change = order_status.cancel_order(db, order_id, note=payload.note, refund_reason=payload.refund_reason)
    _notify_status(background, notifier, change)
    return _order_read(db, order_id)

@router.post("/v1/orders/{order_id}/refund", response_model=OrderRead)
def refund(order_id: int, payload: RefundRequest, db: Session = Depends(get_db), _=Depends(admin_or_internal)):
    order_status.process_refund(db, order_id, payload.amount, payload.reason)
    return _order_read(db, order_id)

@router.patch("/v1/orders/{order_id}/shipping", response_model=OrderRead)
def update_shipping(
    order_id: int,
    payload: ShippingAddressUpdate,
    db: Session = Depends(get_db),
    _=Depends(admin_or_internal),
):
    order_status.update_shipping_address(db, order_id, payload)
    return _order_read(db, order_id)

@router.post("/v1/shipping/quote", response_model=ShippingQuoteRead)
def shipping_quote(payload: ShippingQuoteRequest):
    quote = calculate_shipping_fee(payload.subtotal, payload.city)
    return ShippingQuoteRead(base_fee=quote.base_fee, discount=quote.discount, final_fee=quote.final_fee)

@router.post("/v1/vouchers/validate", response_model=VoucherPreviewRead)
def validate_voucher(payload: VoucherValidateRequest, db: Session = Depends(get_db)):
    preview = pricing.preview_voucher(db, payload.code, payload.order_total)
    return VoucherPreviewRead(
        voucher_id=preview.voucher_id,
        code=preview.code,
        type=preview.type,
        value=preview.value,
        min_order_value=preview.min_order_value,
        discount_amount=preview.discount_amount,
    )
