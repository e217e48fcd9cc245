"""Per-variant, per-size stock counters and the derived product status.

Stock is only ever changed here: ``decrement_stock`` on order creation and
``restore_stock`` on cancellation. Both run inside the caller's transaction.
"""
import structlog
from sqlalchemy import select, update, func
from sqlalchemy.orm import Session

from app.core.errors import ConflictError, NotFoundError
from app.db.models import Product, ProductDetail, ProductInventory, ProductStatus

logger = structlog.get_logger(__name__)


def find_variant(db: Session, product_id: int, color: str) -> ProductDetail | None:
    return db.execute(
        select(ProductDetail).where(ProductDetail.product_id == product_id, ProductDetail.color == color)
    ).scalar_one_or_none()


def find_inventory(db: Session, variant_id: int, size: str) -> ProductInventory | None:
    return db.execute(
        select(ProductInventory).where(
            ProductInventory.product_detail_id == variant_id, ProductInventory.size == size
        )
    ).scalar_one_or_none()


def resolve_variant(db: Session, product_id: int, color: str) -> ProductDetail:
    variant = find_variant(db, product_id, color)
    if variant is None:
        raise NotFoundError(
            "VariantNotFound",
            f"Product {product_id} with color {color} does not exist",
            product_id=product_id, color=color,
        )
    return variant


def resolve_inventory(db: Session, variant: ProductDetail, size: str) -> ProductInventory:
    inventory = find_inventory(db, variant.id, size)
    if inventory is None:
        raise NotFoundError(
            "SizeNotFound",
            f"Size {size} for product {variant.product_id} with color {variant.color} does not exist",
            product_id=variant.product_id, color=variant.color, size=size,
        )
    return inventory


def ensure_available(inventory: ProductInventory, quantity: int) -> None:
    if inventory.stock < quantity:
        raise ConflictError(
            "InsufficientStock",
            f"Only {inventory.stock} left in stock",
            inventory_id=inventory.id, requested=quantity, available=inventory.stock,
        )


def decrement_stock(db: Session, inventory_id: int, quantity: int) -> None:
    """Take ``quantity`` units, or fail if the row no longer holds that many.

    The guard lives in the UPDATE itself, so a stale earlier read can never
    drive the counter negative.
    """
    result = db.execute(
        update(ProductInventory)
        .where(ProductInventory.id == inventory_id, ProductInventory.stock >= quantity)
        .values(stock=ProductInventory.stock - quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        available = db.execute(
            select(ProductInventory.stock).where(ProductInventory.id == inventory_id)
        ).scalar_one_or_none()
        raise ConflictError(
            "InsufficientStock",
            f"Only {available or 0} left in stock",
            inventory_id=inventory_id, requested=quantity, available=available or 0,
        )


def restore_stock(db: Session, variant_id: int, size: str, quantity: int) -> None:
    """Give ``quantity`` units back, recreating the size row if it was removed."""
    result = db.execute(
        update(ProductInventory)
        .where(ProductInventory.product_detail_id == variant_id, ProductInventory.size == size)
        .values(stock=ProductInventory.stock + quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.add(ProductInventory(product_detail_id=variant_id, size=size, stock=quantity))
        db.flush()
        logger.info("Recreated inventory row", variant_id=variant_id, size=size, stock=quantity)


def total_stock(db: Session, product_id: int) -> int | None:
    """Sum of stock over every size of every variant; None when the product has no rows."""
    row = db.execute(
        select(func.count(ProductInventory.id), func.coalesce(func.sum(ProductInventory.stock), 0))
        .join(ProductDetail, ProductDetail.id == ProductInventory.product_detail_id)
        .where(ProductDetail.product_id == product_id)
    ).one()
    count, stock = row
    return int(stock) if count else None


def recompute_product_status(db: Session, product_id: int) -> ProductStatus | None:
    """Bring the product's derived stock status in line with its inventory.

    Zero stock everywhere means ``outofstock``; any stock on an
    ``outofstock`` product puts it back to ``active``. Drafts are never
    touched. Must be called after every inventory mutation.
    """
    product = db.get(Product, product_id)
    if product is None:
        return None
    stock = total_stock(db, product_id)
    if stock is None or product.status == ProductStatus.DRAFT:
        return product.status

    if stock == 0 and product.status != ProductStatus.OUT_OF_STOCK:
        product.status = ProductStatus.OUT_OF_STOCK
        logger.info("Product out of stock", product_id=product_id)
    elif stock > 0 and product.status == ProductStatus.OUT_OF_STOCK:
        product.status = ProductStatus.ACTIVE
        logger.info("Product back in stock", product_id=product_id, stock=stock)
    db.flush()
    return product.status


def recompute_products(db: Session, product_ids) -> dict:
    return {pid: recompute_product_status(db, pid) for pid in sorted(set(product_ids))}
