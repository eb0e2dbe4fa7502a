# Overview: Service-layer operations for inventory; encapsulates business logic and database work.

"""
Inventory Ledger: stock reservation and release

Stock invariants (authoritative):
- Product.stock >= 0 after every statement, enforced in three places: the
  guarded UPDATE below, validation on product writes, and a CHECK constraint.
- reserve() never reads then writes. It issues one conditional UPDATE
  (stock = stock - q WHERE stock >= q); zero rows updated means the
  reservation failed and nothing changed.
- Every stock change appends a StockMovement in the same DB transaction.

Nothing here commits; the caller owns the transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import update

from ..errors import InsufficientStock, ProductInactive, ProductNotFound, ValidationError
from ..extensions import db
from ..models import Product, StockMovement
from shoppos.time_utils import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Reservation:
    """Snapshot returned by reserve() for receipts and compensation."""
    product_id: int
    name: str
    sku: str
    price_cents: int
    quantity: int
    movement: StockMovement | None = field(default=None, compare=False, repr=False)


def record_movement(
    tenant_id: int,
    product_id: int,
    movement_type: str,
    quantity_delta: int,
    sale_id: int | None = None,
    user_id: int | None = None,
    note: str | None = None,
) -> StockMovement:
    movement = StockMovement(
        tenant_id=tenant_id,
        product_id=product_id,
        type=movement_type,
        quantity_delta=quantity_delta,
        sale_id=sale_id,
        user_id=user_id,
        note=note,
        occurred_at=utcnow(),
    )
    db.session.add(movement)
    return movement


def _refresh_cached(product_id: int) -> None:
    """Reload an already loaded Product so it sees a bulk UPDATE."""
    product = db.session.identity_map.get(db.session.identity_key(Product, product_id))
    if product is not None:
        db.session.refresh(product)


def _explain_failed_reservation(tenant_id: int, product_id: int, quantity: int):
    """Build the error for a reservation that updated zero rows."""
    product = (
        db.session.query(Product)
        .filter(Product.id == product_id, Product.tenant_id == tenant_id)
        .populate_existing()
        .first()
    )
    if product is None:
        return ProductNotFound(f"Product not found: {product_id}", details={"product_id": product_id})
    if not product.is_active:
        return ProductInactive(f"Product is not active: {product.name}", details={"product_id": product_id})
    return InsufficientStock(
        f"Insufficient stock for {product.name}. Available: {product.stock}",
        details={"product_id": product_id, "available": product.stock, "requested": quantity},
    )


def reserve(
    tenant_id: int,
    product_id: int,
    quantity: int,
    sale_id: int | None = None,
    user_id: int | None = None,
) -> Reservation:
    """
    Atomically take quantity units of a tenant's product.

    Raises ProductNotFound, ProductInactive or InsufficientStock; on any of
    them stock is unchanged.
    """
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1")

    result = db.session.execute(
        update(Product)
        .where(
            Product.id == product_id,
            Product.tenant_id == tenant_id,
            Product.is_active.is_(True),
            Product.stock >= quantity,
        )
        .values(stock=Product.stock - quantity, version_id=Product.version_id + 1),
        execution_options={"synchronize_session": False},
    )
    if result.rowcount != 1:
        raise _explain_failed_reservation(tenant_id, product_id, quantity)
    _refresh_cached(product_id)

    name, sku, price_cents = (
        db.session.query(Product.name, Product.sku, Product.price_cents)
        .filter(Product.id == product_id)
        .one()
    )
    movement = record_movement(tenant_id, product_id, "SALE", -quantity, sale_id=sale_id, user_id=user_id)
    logger.debug("Reserved %s x product_id=%s tenant_id=%s", quantity, product_id, tenant_id)
    return Reservation(
        product_id=product_id,
        name=name,
        sku=sku,
        price_cents=price_cents,
        quantity=quantity,
        movement=movement,
    )


def release(
    tenant_id: int,
    product_id: int,
    quantity: int,
    sale_id: int | None = None,
    user_id: int | None = None,
    movement_type: str = "SALE_VOID",
) -> bool:
    """
    Atomically return quantity units to stock.

    A product deleted since the sale is logged and skipped; returns False in
    that case.
    """
    result = db.session.execute(
        update(Product)
        .where(Product.id == product_id, Product.tenant_id == tenant_id)
        .values(stock=Product.stock + quantity, version_id=Product.version_id + 1),
        execution_options={"synchronize_session": False},
    )
    if result.rowcount != 1:
        logger.warning(
            "Release skipped: product_id=%s no longer exists in tenant_id=%s (quantity=%s sale_id=%s)",
            product_id, tenant_id, quantity, sale_id,
        )
        return False

    _refresh_cached(product_id)
    record_movement(tenant_id, product_id, movement_type, quantity, sale_id=sale_id, user_id=user_id)
    return True


def set_stock(product: Product, new_stock: int, user_id: int | None = None, note: str | None = None) -> None:
    """Manual stock correction through the ORM, recorded as ADJUST."""
    if new_stock < 0:
        raise ValidationError("Stock cannot be negative")
    delta = new_stock - product.stock
    if delta == 0:
        return
    product.stock = new_stock
    record_movement(product.tenant_id, product.id, "ADJUST", delta, user_id=user_id, note=note)
