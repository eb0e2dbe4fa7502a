# Overview: Flask API routes for customer operations; parses input and returns JSON responses.

# backend/shoppos/routes/customers.py
"""
Customer routes.

MULTI-TENANT: customers are scoped to g.tenant_id. Loyalty balances are
read-only here; they change only as a side effect of sales and voids.
"""
from flask import Blueprint, request, g

from ..decorators import require_auth, require_tenant, require_subscription, check_usage_limits
from ..models import Customer
from ..services import customers_service
from ..validation import ModelValidationPolicy, validate_payload

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "email", "phone", "notes", "is_active"},
    required_on_create={"name"},
)

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
@require_auth
@require_tenant
def list_customers_route():
    customers = customers_service.list_customers(g.tenant_id, search=request.args.get("search"))
    return {"items": [c.to_dict() for c in customers], "count": len(customers)}


@customers_bp.post("")
@require_auth
@require_tenant
@require_subscription("customers")
@check_usage_limits("customers")
def create_customer_route():
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=False)
    customer = customers_service.create_customer(tenant_id=g.tenant_id, patch=patch)
    return customer.to_dict(), 201


@customers_bp.get("/<int:customer_id>")
@require_auth
@require_tenant
def get_customer_route(customer_id: int):
    customer = customers_service.get_customer(g.tenant_id, customer_id)
    return {**customer.to_dict(), "loyalty_history": customers_service.loyalty_history(customer)}
