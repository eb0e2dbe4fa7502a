# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/shoppos/routes/sales.py
"""
Sales API routes

MULTI-TENANT: every sale is read and written inside g.tenant_id.

SECURITY:
- Create / read: any tenant role (owner, admin, manager, cashier)
- Void: owner, admin, manager
- Create also passes the subscription gate and the monthly transaction limit
"""

from flask import Blueprint, request, jsonify, g

from ..decorators import (
    authorize,
    require_auth,
    require_tenant,
    require_tenant_role,
    require_subscription,
    check_usage_limits,
)
from ..errors import ValidationError
from ..services import sales_service
from ..validation import parse_sale_payload
from shoppos.time_utils import parse_iso_datetime


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _date_arg(name: str):
    try:
        return parse_iso_datetime(request.args.get(name))
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 date")


@sales_bp.post("")
@require_auth
@require_tenant
@require_tenant_role("owner", "admin", "manager", "cashier")
@require_subscription()
@check_usage_limits("transactions")
def create_sale_route():
    """
    Record a completed sale.

    Stock, loyalty and the tenant's transaction counters change together or
    not at all.
    """
    data = parse_sale_payload(request.get_json(silent=True))
    sale = sales_service.create_sale(g.tenant_id, data, cashier_user_id=g.current_user.id)
    return jsonify({"sale": sale.to_dict()}), 201


@sales_bp.get("")
@require_auth
@require_tenant
def list_sales_route():
    """
    Non-void sales of the tenant, newest first.

    Query params: search, start, end, paymentMethod, cashier, page, per_page
    """
    page = max(request.args.get("page", default=1, type=int), 1)
    per_page = min(max(request.args.get("per_page", default=20, type=int), 1), 100)
    result = sales_service.list_sales(
        g.tenant_id,
        search=request.args.get("search"),
        start=_date_arg("start"),
        end=_date_arg("end"),
        payment_method=request.args.get("paymentMethod"),
        cashier_id=request.args.get("cashier", type=int),
        page=page,
        per_page=per_page,
    )
    return jsonify(result), 200


@sales_bp.get("/<int:sale_id>")
@require_auth
@require_tenant
def get_sale_route(sale_id: int):
    sale = sales_service.get_sale(g.tenant_id, sale_id)
    return jsonify({"sale": sale.to_dict()}), 200


@sales_bp.get("/<int:sale_id>/receipt")
@require_auth
@require_tenant
def receipt_route(sale_id: int):
    sale = sales_service.get_sale(g.tenant_id, sale_id)
    return jsonify({"receipt": sales_service.build_receipt(sale)}), 200


@sales_bp.put("/<int:sale_id>/void")
@require_auth
@require_tenant
@authorize("owner", "admin", "manager")
def void_sale_route(sale_id: int):
    """
    Void a completed sale: restock items and reverse loyalty.

    A sale can be voided once; a second attempt fails with AlreadyVoided.
    """
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    sale = sales_service.void_sale(g.tenant_id, sale_id, data.get("reason"), actor_user_id=g.current_user.id)
    return jsonify({"sale": sale.to_dict(), "message": "Sale voided"}), 200
