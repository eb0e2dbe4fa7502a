# backend/shoppos/services/products_service.py
"""
Products Service with Multi-Tenant Support

MULTI-TENANT: All product operations take the resolved tenant_id and filter
on it. A product id from another tenant behaves exactly like a missing one.

STOCK: creation records an INITIAL movement, later stock edits an ADJUST
movement (inventory_service.set_stock). Sales never come through here.
"""
from __future__ import annotations

import logging

from sqlalchemy import or_

from ..errors import ConflictError, NotFound
from ..extensions import db
from ..models import Product
from . import inventory_service, usage_service

logger = logging.getLogger(__name__)

PRODUCT_MUTABLE_FIELDS = {
    "sku", "name", "description", "barcode", "price_cents", "cost_price_cents",
    "min_stock", "unit", "is_active",
}


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def get_product(tenant_id: int, product_id: int) -> Product:
    p = (
        db.session.query(Product)
        .filter(Product.id == product_id, Product.tenant_id == tenant_id)
        .first()
    )
    if p is None:
        raise NotFound("Product not found")
    return p


def list_products(
    tenant_id: int,
    search: str | None = None,
    low_stock: bool = False,
    active_only: bool = False,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Tenant-scoped product listing with optional pagination.

    search matches name, sku or description (case-insensitive).
    low_stock keeps products with stock <= min_stock.
    """
    base_query = db.session.query(Product).filter(Product.tenant_id == tenant_id)
    if search:
        pattern = f"%{search.strip()}%"
        base_query = base_query.filter(or_(
            Product.name.ilike(pattern),
            Product.sku.ilike(pattern),
            Product.description.ilike(pattern),
        ))
    if low_stock:
        base_query = base_query.filter(Product.stock <= Product.min_stock)
    if active_only:
        base_query = base_query.filter(Product.is_active.is_(True))
    base_query = base_query.order_by(Product.name.asc(), Product.id.asc())

    # If no pagination requested, return all items
    if page is None:
        products = base_query.all()
        return {
            "items": [p.to_dict() for p in products],
            "count": len(products),
        }

    per_page = min(per_page or 20, 100)  # Default 20, max 100
    page = max(page, 1)

    total = base_query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    products = base_query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [p.to_dict() for p in products],
        "count": len(products),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def _ensure_sku_free(tenant_id: int, sku: str, exclude_id: int | None = None) -> None:
    query = db.session.query(Product.id).filter(Product.tenant_id == tenant_id, Product.sku == sku)
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    if query.first():
        raise ConflictError("SKU already exists for this tenant.")


def create_product(*, tenant_id: int, patch: dict, user_id: int | None = None) -> Product:
    """
    Create product using a validated patch dict.

    Raises ConflictError if the SKU already exists in the tenant.
    """
    _ensure_sku_free(tenant_id, patch["sku"])

    p = Product(tenant_id=tenant_id, stock=0)
    apply_product_patch(p, patch)
    db.session.add(p)
    db.session.flush()

    initial_stock = patch.get("stock") or 0
    if initial_stock:
        p.stock = initial_stock
        inventory_service.record_movement(tenant_id, p.id, "INITIAL", initial_stock, user_id=user_id)

    usage_service.record_created(tenant_id, "products")
    db.session.commit()
    logger.info("Created product id=%s sku=%s tenant_id=%s", p.id, p.sku, tenant_id)
    return p


def update_product(*, tenant_id: int, product_id: int, patch: dict, user_id: int | None = None) -> Product:
    """Partial update; a stock value is applied as an ADJUST movement."""
    p = get_product(tenant_id, product_id)

    if "sku" in patch and patch["sku"] != p.sku:
        _ensure_sku_free(tenant_id, patch["sku"], exclude_id=p.id)

    apply_product_patch(p, patch)
    if "stock" in patch:
        inventory_service.set_stock(p, patch["stock"], user_id=user_id, note="Manual stock update")

    db.session.commit()
    return p


def delete_product(*, tenant_id: int, product_id: int) -> None:
    """
    Delete a product and give back its usage slot.

    Sale items keep their name/sku snapshot; voiding an old sale later skips
    the restock for this product.
    """
    p = get_product(tenant_id, product_id)
    db.session.delete(p)
    usage_service.record_removed(tenant_id, "products")
    db.session.commit()
    logger.info("Deleted product id=%s tenant_id=%s", product_id, tenant_id)
