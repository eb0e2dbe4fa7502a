# Overview: Flask API routes for products operations; parses input and returns JSON responses.

# backend/shoppos/routes/products.py
"""
Product management routes with multi-tenant support.

MULTI-TENANT: All product operations are scoped to the resolved tenant
(g.tenant_id, set by @require_tenant).

SECURITY: All routes require authentication and tenant membership.
- Read operations: any tenant role
- Write operations: owner, admin, manager
- Creation also requires the "inventory" plan feature and a free product slot
"""
from flask import Blueprint, request, g

from ..decorators import (
    require_auth,
    require_tenant,
    require_tenant_role,
    require_subscription,
    check_usage_limits,
)
from ..models import Product
from ..services import products_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    parse_money_cents,
)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku", "name", "description", "barcode", "price_cents", "cost_price_cents",
        "stock", "min_stock", "unit", "is_active",
    },
    required_on_create={"sku", "name", "price_cents"},
)

# Currency-amount aliases accepted alongside the cents fields
MONEY_ALIASES = {"price": "price_cents", "cost_price": "cost_price_cents"}

WRITE_ROLES = ("owner", "admin", "manager")

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _normalize_payload(payload: dict) -> dict:
    payload = dict(payload)
    for alias, field in MONEY_ALIASES.items():
        if alias in payload and field not in payload:
            raw = payload.pop(alias)
            payload[field] = None if raw is None else parse_money_cents(raw, alias)
    return payload


@products_bp.get("")
@require_auth
@require_tenant
def list_products():
    """
    List the tenant's products.

    Query params:
    - search: str (optional) - matches name, sku or description
    - lowStock: "true" (optional) - only products at or below min_stock
    - page: int (optional) - page number (1-indexed). If omitted, returns all items.
    - per_page: int (optional) - items per page (default 20, max 100)
    """
    return products_service.list_products(
        tenant_id=g.tenant_id,
        search=request.args.get("search"),
        low_stock=request.args.get("lowStock", "").lower() == "true",
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )


@products_bp.get("/low-stock")
@require_auth
@require_tenant
def low_stock_products():
    return products_service.list_products(tenant_id=g.tenant_id, low_stock=True, active_only=True)


@products_bp.get("/<int:product_id>")
@require_auth
@require_tenant
def get_product_route(product_id: int):
    return products_service.get_product(g.tenant_id, product_id).to_dict()


@products_bp.post("")
@require_auth
@require_tenant
@require_tenant_role(*WRITE_ROLES)
@require_subscription("inventory")
@check_usage_limits("products")
def create_product_route():
    """
    Create a new product in the current tenant.

    An initial stock value is recorded as an INITIAL stock movement.
    """
    payload = _normalize_payload(request.get_json(silent=True) or {})
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(patch)

    created = products_service.create_product(tenant_id=g.tenant_id, patch=patch, user_id=g.current_user.id)
    return created.to_dict(), 201


@products_bp.put("/<int:product_id>")
@require_auth
@require_tenant
@require_tenant_role(*WRITE_ROLES)
def update_product_route(product_id: int):
    """Partial update. A changed stock value is recorded as an ADJUST movement."""
    payload = _normalize_payload(request.get_json(silent=True) or {})
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
    enforce_rules_product(patch)

    updated = products_service.update_product(
        tenant_id=g.tenant_id,
        product_id=product_id,
        patch=patch,
        user_id=g.current_user.id,
    )
    return updated.to_dict(), 200


@products_bp.delete("/<int:product_id>")
@require_auth
@require_tenant
@require_tenant_role(*WRITE_ROLES)
def delete_product_route(product_id: int):
    products_service.delete_product(tenant_id=g.tenant_id, product_id=product_id)
    return {"ok": True}, 200
