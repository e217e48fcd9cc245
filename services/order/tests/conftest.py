import os

# Settings are read at import time
os.environ["POSTGRES_DSN"] = "sqlite://"
os.environ["KAFKA_ENABLED"] = "false"
os.environ["SWEEP_ENABLED"] = "false"
os.environ["SVC_INTERNAL_KEY"] = "test-internal-key"
os.environ["JWT_SECRET"] = "test-secret"

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import jwt
import pytest
from fastapi.testclient import TestClient

from app.api.deps import get_auto_cancel_sweep, get_db, get_notifier
from app.core.config import settings
from app.db.models import (
    PaymentMethod, Product, ProductDetail, ProductInventory, ProductStatus,
    Voucher, VoucherStatus, VoucherType, utcnow,
)
from app.db.session import Base, make_engine, make_session_factory
from app.schemas import CheckoutItem, CheckoutRequest, ShippingAddress
from app.services.sweep import AutoCancelSweep

COD = 1
ONLINE = 2


class RecordingNotifier:
    def __init__(self):
        self.confirmed = []
        self.status_changes = []

    def order_confirmed(self, order_id):
        self.confirmed.append(order_id)

    def status_changed(self, order_id, status):
        self.status_changes.append((order_id, status))


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'orders.db'}")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    factory = make_session_factory(engine)
    with factory() as db:
        db.add_all([
            PaymentMethod(id=COD, name="Cash on delivery", is_cash_on_delivery=True),
            PaymentMethod(id=ONLINE, name="VNPay", is_cash_on_delivery=False),
        ])
        db.commit()
    return factory


@pytest.fixture
def db(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture
def make_product(db):
    """Seed a product with one colour variant; returns (product, variant, {size: inventory})."""
    def _make(
        name="Linen shirt",
        color="Black",
        price="250000",
        original_price=None,
        sizes=None,
        status=ProductStatus.ACTIVE,
        image_url="https://cdn.example.com/linen-black.jpg",
    ):
        product = Product(name=name, status=status)
        db.add(product)
        db.flush()
        variant = ProductDetail(
            product_id=product.id,
            color=color,
            price=Decimal(price),
            original_price=Decimal(original_price) if original_price else None,
            image_url=image_url,
        )
        db.add(variant)
        db.flush()
        inventories = {}
        for size, stock in (sizes if sizes is not None else {"M": 5}).items():
            inv = ProductInventory(product_detail_id=variant.id, size=size, stock=stock)
            db.add(inv)
            inventories[size] = inv
        db.commit()
        return product, variant, inventories
    return _make


@pytest.fixture
def make_voucher(db):
    def _make(
        code="SAVE10",
        type=VoucherType.PERCENTAGE,
        value="10",
        min_order_value="0",
        usage_limit=0,
        usage_count=0,
        expires_in=timedelta(days=30),
        status=VoucherStatus.ACTIVE,
    ):
        voucher = Voucher(
            code=code,
            type=type,
            value=Decimal(value),
            min_order_value=Decimal(min_order_value),
            expiration_date=utcnow() + expires_in,
            status=status,
            usage_count=usage_count,
            usage_limit=usage_limit,
        )
        db.add(voucher)
        db.commit()
        return voucher
    return _make


def checkout_request(items, payment_method_id=ONLINE, voucher_code=None, city="Hồ Chí Minh", phone="0901234567"):
    """Build a CheckoutRequest from (product_id, color, size, quantity) tuples."""
    return CheckoutRequest(
        items=[CheckoutItem(product_id=p, color=c, size=s, quantity=q) for p, c, s, q in items],
        payment_method_id=payment_method_id,
        voucher_code=voucher_code,
        shipping=ShippingAddress(
            full_name="Nguyen Van A",
            phone_number=phone,
            street_address="12 Le Loi",
            ward="Ben Nghe",
            district="District 1",
            city=city,
        ),
    )


def stock_of(session_factory, inventory_id):
    with session_factory() as fresh:
        return fresh.get(ProductInventory, inventory_id).stock


def product_status(session_factory, product_id):
    with session_factory() as fresh:
        return fresh.get(Product, product_id).status


def make_token(sub="customer@example.com", role="customer", token_type="access"):
    payload = {
        "sub": sub,
        "role": role,
        "type": token_type,
        "exp": datetime.now(timezone.utc) + timedelta(minutes=15),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def client(session_factory, notifier):
    from app.main import app

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    sweep = AutoCancelSweep(session_factory, notifier=notifier)
    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_auto_cancel_sweep] = lambda: sweep
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def internal_headers():
    return {"X-Internal-Key": settings.SVC_INTERNAL_KEY}


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {make_token(sub='admin@example.com', role='admin')}"}
