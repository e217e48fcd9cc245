from pydantic import BaseModel, ConfigDict
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
from app.db.models import OrderStatus, PaymentStatus, VoucherType

# --- checkout ---
class CheckoutItem(BaseModel):
    product_id: int
    color: str
    size: str
    quantity: int

class ShippingAddress(BaseModel):
    full_name: str
    phone_number: str
    street_address: str
    ward: Optional[str] = None
    district: str
    city: str

class CheckoutRequest(BaseModel):
    items: List[CheckoutItem] = []
    payment_method_id: int
    voucher_code: Optional[str] = None
    shipping: ShippingAddress

class CheckoutResponse(BaseModel):
    order_id: int
    status: OrderStatus
    total: float

# --- order views ---
class OrderDetailRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    product_id: int
    product_detail_id: Optional[int] = None
    quantity: int
    color: str
    size: str
    original_price: float
    discount_price: float
    discount_percent: int
    voucher_id: Optional[int] = None
    image_url: Optional[str] = None

class OrderRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    user_email: Optional[str] = None
    subtotal: float
    voucher_discount: float
    shipping_fee: float
    shipping_base_price: float
    shipping_discount: float
    total: float
    status: OrderStatus
    payment_method_id: int
    payment_status_id: int
    shipping_full_name: str
    shipping_phone_number: str
    shipping_street_address: str
    shipping_ward: Optional[str] = None
    shipping_district: str
    shipping_city: str
    cancel_note: Optional[str] = None
    refund_amount: Optional[float] = None
    refund_reason: Optional[str] = None
    created_at: datetime
    details: List[OrderDetailRead] = []

# --- admin actions ---
class StatusUpdate(BaseModel):
    status: Optional[OrderStatus] = None
    payment_status_id: Optional[PaymentStatus] = None

class CancelRequest(BaseModel):
    note: Optional[str] = None
    refund_reason: Optional[str] = None

class RefundRequest(BaseModel):
    amount: Decimal
    reason: Optional[str] = None

class ShippingAddressUpdate(BaseModel):
    full_name: Optional[str] = None
    phone_number: Optional[str] = None
    street_address: Optional[str] = None
    ward: Optional[str] = None
    district: Optional[str] = None
    city: Optional[str] = None

class SweepReportRead(BaseModel):
    cancelled_count: int
    cancelled_ids: List[int]
    failed_ids: List[int]

# --- quotes ---
class ShippingQuoteRequest(BaseModel):
    subtotal: Decimal
    city: str

class ShippingQuoteRead(BaseModel):
    base_fee: float
    discount: float
    final_fee: float

class VoucherValidateRequest(BaseModel):
    code: str
    order_total: Decimal

class VoucherPreviewRead(BaseModel):
    voucher_id: int
    code: str
    type: VoucherType
    value: float
    min_order_value: float
    discount_amount: float
