# Overview: Flask API routes for tenant operations; parses input and returns JSON responses.

# backend/shoppos/routes/tenants.py
"""
Tenant lifecycle, switching and membership routes.

MULTI-TENANT: /api/tenants and /api/tenants/mine work without a resolved
tenant (a new user has none yet). Everything else resolves the tenant
through the usual chain and runs the access guard first.

SECURITY:
- Member listing: owner, admin, manager
- Adding/removing members: owner, admin (adding also consumes a user slot)
- Changing roles: owner only
"""
from flask import Blueprint, request, jsonify, g

from ..decorators import (
    require_auth,
    require_tenant,
    require_tenant_role,
    require_subscription,
    check_usage_limits,
)
from ..services import subscription_service, tenant_service, usage_service


tenants_bp = Blueprint("tenants", __name__, url_prefix="/api/tenants")


@tenants_bp.post("")
@require_auth
def create_tenant_route():
    """
    Create a tenant owned by the caller.

    The tenant starts in trial on the requested plan (cheapest active plan if
    none is given) and becomes the caller's current tenant.
    """
    data = request.get_json(silent=True) or {}
    tenant = tenant_service.create_tenant(
        name=data.get("name"),
        owner=g.current_user,
        plan_slug=data.get("planSlug"),
    )
    return jsonify({
        "tenant": tenant.to_dict(),
        "subscription": tenant.subscription.to_dict() if tenant.subscription else None,
        "role": "owner",
    }), 201


@tenants_bp.get("/mine")
@require_auth
def my_tenants_route():
    return jsonify({"items": tenant_service.list_memberships(g.current_user)}), 200


@tenants_bp.post("/switch")
@require_auth
def switch_tenant_route():
    """Make tenantId the caller's current tenant (membership required)."""
    data = request.get_json(silent=True) or {}
    tenant = tenant_service.switch_tenant(g.current_user, data.get("tenantId"))
    membership = g.current_user.membership_for(tenant.id)
    return jsonify({
        "tenant": tenant.to_dict(),
        "role": membership.role if membership else None,
    }), 200


@tenants_bp.get("/current")
@require_auth
@require_tenant
def current_tenant_route():
    subscription = subscription_service.get_subscription(g.tenant_id)
    return jsonify({
        "tenant": g.tenant.to_dict(),
        "role": g.tenant_role,
        "bypass": g.access.bypass,
        "subscription": subscription.to_dict() if subscription else None,
        "plan": subscription.plan.to_dict() if subscription and subscription.plan else None,
    }), 200


@tenants_bp.get("/usage")
@require_auth
@require_tenant
@require_tenant_role("owner", "admin", "manager")
def usage_route():
    """Per-resource used/limit/percentage for the current tenant."""
    subscription = subscription_service.get_subscription(g.tenant_id)
    plan = subscription.plan if subscription else None
    return jsonify(usage_service.usage_report(g.tenant, plan=plan)), 200


@tenants_bp.get("/members")
@require_auth
@require_tenant
@require_tenant_role("owner", "admin", "manager")
def list_members_route():
    return jsonify({"items": tenant_service.list_members(g.tenant)}), 200


@tenants_bp.post("/members")
@require_auth
@require_tenant
@require_tenant_role("owner", "admin")
@require_subscription()
@check_usage_limits("users")
def add_member_route():
    """
    Add a member by email.

    A new account gets a temporary password, returned once in the response.
    """
    data = request.get_json(silent=True) or {}
    user, temporary_password = tenant_service.add_member(
        g.tenant,
        email=data.get("email"),
        role=data.get("role") or "cashier",
        name=data.get("name"),
    )
    body = {"user": user.to_dict(), "role": user.membership_for(g.tenant_id).role}
    if temporary_password:
        body["temporary_password"] = temporary_password
    return jsonify(body), 201


@tenants_bp.delete("/members/<int:user_id>")
@require_auth
@require_tenant
@require_tenant_role("owner", "admin")
def remove_member_route(user_id: int):
    tenant_service.remove_member(g.tenant, user_id)
    return jsonify({"ok": True}), 200


@tenants_bp.put("/members/<int:user_id>/role")
@require_auth
@require_tenant
@require_tenant_role("owner")
def change_member_role_route(user_id: int):
    data = request.get_json(silent=True) or {}
    membership = tenant_service.change_member_role(g.tenant, user_id, data.get("role"))
    return jsonify({"user_id": membership.user_id, "role": membership.role}), 200
