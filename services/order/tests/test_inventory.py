import pytest

from app.core.errors import ConflictError
from app.db.models import ProductInventory, ProductStatus
from app.services import inventory

from conftest import product_status, stock_of


def test_decrement_takes_stock(db, session_factory, make_product):
    _, _, invs = make_product(sizes={"M": 3})
    inventory.decrement_stock(db, invs["M"].id, 2)
    db.commit()
    assert stock_of(session_factory, invs["M"].id) == 1


def test_decrement_refuses_to_go_negative(db, session_factory, make_product):
    _, _, invs = make_product(sizes={"M": 1})
    with pytest.raises(ConflictError) as exc:
        inventory.decrement_stock(db, invs["M"].id, 2)
    db.rollback()
    assert exc.value.code == "InsufficientStock"
    assert exc.value.details["available"] == 1
    assert stock_of(session_factory, invs["M"].id) == 1


def test_restore_adds_back(db, session_factory, make_product):
    _, variant, invs = make_product(sizes={"L": 0})
    inventory.restore_stock(db, variant.id, "L", 4)
    db.commit()
    assert stock_of(session_factory, invs["L"].id) == 4


def test_restore_recreates_removed_size(db, make_product):
    _, variant, invs = make_product(sizes={"S": 1})
    db.delete(invs["S"])
    db.commit()

    inventory.restore_stock(db, variant.id, "S", 2)
    db.commit()
    row = inventory.find_inventory(db, variant.id, "S")
    assert row is not None
    assert row.stock == 2


class TestRecomputeProductStatus:
    def test_zero_stock_marks_out_of_stock(self, db, session_factory, make_product):
        product, _, _ = make_product(sizes={"M": 0, "L": 0})
        assert inventory.recompute_product_status(db, product.id) == ProductStatus.OUT_OF_STOCK
        db.commit()
        assert product_status(session_factory, product.id) == ProductStatus.OUT_OF_STOCK

    def test_stock_returns_product_to_active(self, db, make_product):
        product, _, _ = make_product(sizes={"M": 2}, status=ProductStatus.OUT_OF_STOCK)
        assert inventory.recompute_product_status(db, product.id) == ProductStatus.ACTIVE

    def test_draft_is_left_alone(self, db, make_product):
        product, _, _ = make_product(sizes={"M": 0}, status=ProductStatus.DRAFT)
        assert inventory.recompute_product_status(db, product.id) == ProductStatus.DRAFT

    def test_product_without_inventory_is_left_alone(self, db, make_product):
        product, _, _ = make_product(sizes={})
        assert inventory.total_stock(db, product.id) is None
        assert inventory.recompute_product_status(db, product.id) == ProductStatus.ACTIVE

    def test_any_variant_with_stock_keeps_it_active(self, db, make_product):
        product, variant, _ = make_product(sizes={"M": 0})
        db.add(ProductInventory(product_detail_id=variant.id, size="XL", stock=1))
        db.commit()
        assert inventory.total_stock(db, product.id) == 1
        assert inventory.recompute_product_status(db, product.id) == ProductStatus.ACTIVE

    def test_unknown_product(self, db):
        assert inventory.recompute_product_status(db, 999) is None
