from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import (
    Integer, String, Text, DateTime, ForeignKey, Numeric, Boolean,
    Enum as SAEnum, CheckConstraint, UniqueConstraint,
)
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum, IntEnum
from app.db.session import Base

MONEY = Numeric(14, 2)

def utcnow() -> datetime:
    # naive UTC, matching the DateTime() columns
    return datetime.now(timezone.utc).replace(tzinfo=None)

class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPING = "shipping"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

class PaymentStatus(IntEnum):
    PENDING = 1
    PAID = 2
    FAILED = 3
    REFUNDED = 4
    CANCELLED = 5

class ProductStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    OUT_OF_STOCK = "outofstock"

class VoucherType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"

class VoucherStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"

def _enum(cls):
    return SAEnum(cls, values_callable=lambda e: [m.value for m in e], native_enum=False, length=32)

class Product(Base):
    __tablename__ = "products"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(240), nullable=False)
    status: Mapped[ProductStatus] = mapped_column(_enum(ProductStatus), default=ProductStatus.DRAFT)

    variants = relationship("ProductDetail", back_populates="product", cascade="all, delete-orphan")

class ProductDetail(Base):
    """A colour variant of a product."""
    __tablename__ = "product_details"
    __table_args__ = (UniqueConstraint("product_id", "color", name="uq_product_details_product_color"),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), index=True)
    color: Mapped[str] = mapped_column(String(64), nullable=False)
    price: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    original_price: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    product = relationship("Product", back_populates="variants")
    inventories = relationship("ProductInventory", back_populates="variant", cascade="all, delete-orphan")

class ProductInventory(Base):
    __tablename__ = "product_inventories"
    __table_args__ = (
        UniqueConstraint("product_detail_id", "size", name="uq_product_inventories_detail_size"),
        CheckConstraint("stock >= 0", name="ck_product_inventories_stock_non_negative"),
    )
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_detail_id: Mapped[int] = mapped_column(ForeignKey("product_details.id", ondelete="CASCADE"), index=True)
    size: Mapped[str] = mapped_column(String(16), nullable=False)
    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    variant = relationship("ProductDetail", back_populates="inventories")

class Voucher(Base):
    __tablename__ = "vouchers"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    type: Mapped[VoucherType] = mapped_column(_enum(VoucherType), nullable=False)
    value: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    min_order_value: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    expiration_date: Mapped[datetime] = mapped_column(DateTime(), nullable=False)
    status: Mapped[VoucherStatus] = mapped_column(_enum(VoucherStatus), default=VoucherStatus.ACTIVE)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    usage_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # 0 = unlimited

class PaymentMethod(Base):
    __tablename__ = "payment_methods"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    is_cash_on_delivery: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

class Order(Base):
    __tablename__ = "orders"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_email: Mapped[str | None] = mapped_column(String(255), index=True, nullable=True)

    subtotal: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    voucher_discount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    shipping_fee: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    shipping_base_price: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    shipping_discount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    total: Mapped[Decimal] = mapped_column(MONEY, nullable=False)

    status: Mapped[OrderStatus] = mapped_column(_enum(OrderStatus), default=OrderStatus.PENDING, index=True)
    payment_method_id: Mapped[int] = mapped_column(ForeignKey("payment_methods.id"), nullable=False)
    payment_status_id: Mapped[int] = mapped_column(Integer, nullable=False, default=PaymentStatus.PENDING.value)

    # shipping address snapshot, captured at order time
    shipping_full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    shipping_phone_number: Mapped[str] = mapped_column(String(32), nullable=False)
    shipping_street_address: Mapped[str] = mapped_column(String(255), nullable=False)
    shipping_ward: Mapped[str | None] = mapped_column(String(120), nullable=True)
    shipping_district: Mapped[str] = mapped_column(String(120), nullable=False)
    shipping_city: Mapped[str] = mapped_column(String(120), nullable=False)

    cancel_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    refund_amount: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    refund_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow, onupdate=utcnow)

    payment_method = relationship("PaymentMethod")
    details = relationship("OrderDetail", back_populates="order", cascade="all, delete-orphan")

    @property
    def payment_status(self) -> PaymentStatus:
        return PaymentStatus(self.payment_status_id)

class OrderDetail(Base):
    """An order line; never edited after creation."""
    __tablename__ = "order_details"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), index=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id"), nullable=False)
    product_detail_id: Mapped[int | None] = mapped_column(ForeignKey("product_details.id", ondelete="SET NULL"), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    color: Mapped[str] = mapped_column(String(64), nullable=False)
    size: Mapped[str] = mapped_column(String(16), nullable=False)
    original_price: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    discount_price: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    discount_percent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    voucher_id: Mapped[int | None] = mapped_column(ForeignKey("vouchers.id", ondelete="SET NULL"), nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    order = relationship("Order", back_populates="details")
