"""
Multi-Tenant Service: Tenant Resolution and Membership Management

WHY: Every tenant-scoped request must name exactly one tenant, and the name
must be checked before anything else runs.

RESOLUTION ORDER (first non-empty source wins):
1. X-Tenant-ID header (TENANT_HEADER)
2. ?tenantId= query parameter
3. "tenantId" in the JSON body
4. user.current_tenant_id (last switched-to tenant)
5. user.tenant_id (legacy single-tenant field)

FAILURES (distinct on the wire):
- nothing supplied        -> MissingTenantContext (400)
- not a positive integer  -> InvalidTenantFormat (400)
- no such tenant          -> TenantNotFound (404)
- suspended / cancelled   -> TenantInactive (403)

USAGE:
    from shoppos.services.tenant_service import resolve_tenant

    tenant = resolve_tenant(request, g.current_user)
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable

from flask import current_app

from ..errors import (
    ConflictError,
    InvalidTenantFormat,
    MissingTenantContext,
    NotFound,
    TenantAccessDenied,
    TenantInactive,
    TenantNotFound,
    ValidationError,
)
from ..extensions import db
from ..models import Tenant, TenantMembership, User
from ..models.auth import TENANT_ROLES
from ..models.tenancy import TENANT_STATUSES
from . import access_service, auth_service, subscription_service, usage_service
from shoppos.time_utils import utcnow

logger = logging.getLogger(__name__)

_TENANT_ID_RE = re.compile(r"[1-9][0-9]*")


# --- Resolution strategies: (request, user) -> raw tenant id or None ---

def tenant_id_from_header(req, user) -> Any:
    return req.headers.get(current_app.config.get("TENANT_HEADER", "X-Tenant-ID"))


def tenant_id_from_query(req, user) -> Any:
    return req.args.get("tenantId")


def tenant_id_from_body(req, user) -> Any:
    body = req.get_json(silent=True) if req.is_json else None
    if isinstance(body, dict):
        return body.get("tenantId")
    return None


def tenant_id_from_current_tenant(req, user) -> Any:
    return user.current_tenant_id if user is not None else None


def tenant_id_from_legacy_field(req, user) -> Any:
    return user.tenant_id if user is not None else None


TENANT_ID_SOURCES: tuple[Callable[[Any, User | None], Any], ...] = (
    tenant_id_from_header,
    tenant_id_from_query,
    tenant_id_from_body,
    tenant_id_from_current_tenant,
    tenant_id_from_legacy_field,
)


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def extract_tenant_id(req, user: User | None) -> Any:
    """Raw value from the first source that yields one, or None."""
    for source in TENANT_ID_SOURCES:
        value = source(req, user)
        if not _is_empty(value):
            return value
    return None


def parse_tenant_id(value: Any) -> int:
    """
    Validate a raw tenant id.

    Accepts positive ints and strings of decimal digits without a leading
    zero. Booleans, floats, and anything else are malformed.
    """
    if isinstance(value, bool):
        raise InvalidTenantFormat()
    if isinstance(value, int):
        if value > 0:
            return value
        raise InvalidTenantFormat()
    if isinstance(value, str) and _TENANT_ID_RE.fullmatch(value.strip()):
        return int(value.strip())
    raise InvalidTenantFormat()


def resolve_tenant(req, user: User | None, bypass: bool = False) -> Tenant:
    """
    Resolve and validate the tenant for this request.

    With bypass the tenant must still exist, but its status is not checked.
    """
    raw = extract_tenant_id(req, user)
    if raw is None:
        access_service.record_denial(
            "TENANT_CONTEXT_MISSING",
            "No tenant id in header, query, body or user record",
            user=user,
        )
        raise MissingTenantContext()

    tenant_id = parse_tenant_id(raw)

    tenant = db.session.get(Tenant, tenant_id)
    if tenant is None:
        logger.warning("Tenant not found tenant_id=%s user_id=%s", tenant_id, user.id if user else None)
        raise TenantNotFound()

    if not bypass and not tenant.is_usable:
        logger.warning("Tenant %s is %s; access refused", tenant.id, tenant.status)
        raise TenantInactive(details={"status": tenant.status})

    return tenant


# --- Tenant lifecycle and memberships ---

def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", (name or "").lower()).strip("-")
    return slug or "shop"


def generate_unique_slug(name: str) -> str:
    """Slug from the name, suffixed -2, -3, ... on collision."""
    base = slugify(name)
    slug = base
    suffix = 1
    while db.session.query(Tenant.id).filter_by(slug=slug).first():
        suffix += 1
        slug = f"{base}-{suffix}"
    return slug


def create_tenant(name: str, owner: User, plan_slug: str | None = None) -> Tenant:
    """
    Create a tenant in trial with the owner's membership and a trialing
    subscription, then make it the owner's current tenant. Commits.
    """
    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required")

    plan = subscription_service.get_plan(plan_slug)

    tenant = Tenant(
        name=name,
        slug=generate_unique_slug(name),
        owner_user_id=owner.id,
        status="trial",
        total_users=0,
    )
    db.session.add(tenant)
    db.session.flush()

    subscription_service.start_trial(tenant, plan)
    db.session.add(TenantMembership(user_id=owner.id, tenant_id=tenant.id, role="owner", joined_at=utcnow()))
    usage_service.record_created(tenant.id, "users")

    owner.current_tenant_id = tenant.id
    if owner.tenant_id is None:
        owner.tenant_id = tenant.id

    db.session.commit()
    logger.info("Created tenant id=%s slug=%s owner_id=%s plan=%s", tenant.id, tenant.slug, owner.id, plan.slug)
    return tenant


def set_status(tenant: Tenant, status: str, reason: str | None = None) -> Tenant:
    if status not in TENANT_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(TENANT_STATUSES)}")
    tenant.status = status
    if status == "suspended":
        tenant.suspended_at = utcnow()
        tenant.suspend_reason = reason
    else:
        tenant.suspended_at = None
        tenant.suspend_reason = None
    db.session.commit()
    logger.info("Tenant id=%s status -> %s", tenant.id, status)
    return tenant


def list_memberships(user: User) -> list[dict]:
    return [
        {
            "tenant": membership.tenant.to_dict(),
            "role": membership.role,
            "joined_at": membership.to_dict()["joined_at"],
            "is_current": membership.tenant_id == user.current_tenant_id,
        }
        for membership in user.memberships
    ]


def switch_tenant(user: User, raw_tenant_id: Any) -> Tenant:
    """Store tenant as the user's current tenant. Membership required."""
    if _is_empty(raw_tenant_id):
        raise ValidationError("tenantId is required")
    tenant_id = parse_tenant_id(raw_tenant_id)

    tenant = db.session.get(Tenant, tenant_id)
    if tenant is None:
        raise TenantNotFound()

    if not access_service.has_bypass(user) and user.membership_for(tenant.id) is None:
        access_service.record_denial(
            "TENANT_ACCESS_DENIED",
            f"Switch to tenant {tenant.id} without membership",
            user=user,
            tenant_id=tenant.id,
        )
        raise TenantAccessDenied()

    user.current_tenant_id = tenant.id
    db.session.commit()
    return tenant


def list_members(tenant: Tenant) -> list[dict]:
    memberships = (
        db.session.query(TenantMembership)
        .filter_by(tenant_id=tenant.id)
        .order_by(TenantMembership.joined_at, TenantMembership.id)
        .all()
    )
    return [
        {**membership.user.to_dict(), "tenant_role": membership.role, "joined_at": membership.to_dict()["joined_at"]}
        for membership in memberships
    ]


def _require_tenant_role(role: str) -> None:
    if role not in TENANT_ROLES:
        raise ValidationError(f"role must be one of: {', '.join(TENANT_ROLES)}")


def add_member(tenant: Tenant, email: str, role: str = "cashier", name: str | None = None) -> tuple[User, str | None]:
    """
    Add a user to the tenant, creating the account when the email is new.

    Returns (user, temporary_password); the password is None for existing
    accounts. Commits.
    """
    _require_tenant_role(role)
    email = auth_service.normalize_email(email)
    if not email:
        raise ValidationError("email is required")

    temporary_password = None
    user = db.session.query(User).filter_by(email=email).first()
    if user is None:
        temporary_password = auth_service.generate_temporary_password()
        user = auth_service.create_user(
            name=name or email.split("@")[0],
            email=email,
            password=temporary_password,
            role=role,
            tenant_id=tenant.id,
            commit=False,
        )
    elif user.membership_for(tenant.id) is not None:
        raise ConflictError("User is already a member of this tenant")

    db.session.add(TenantMembership(user_id=user.id, tenant_id=tenant.id, role=role, joined_at=utcnow()))
    usage_service.record_created(tenant.id, "users")
    db.session.commit()
    db.session.refresh(user)

    logger.info("Added user_id=%s to tenant_id=%s as %s", user.id, tenant.id, role)
    return user, temporary_password


def _get_membership(tenant: Tenant, user_id: int) -> TenantMembership:
    membership = (
        db.session.query(TenantMembership)
        .filter_by(tenant_id=tenant.id, user_id=user_id)
        .first()
    )
    if membership is None:
        raise NotFound("User is not a member of this tenant")
    return membership


def remove_member(tenant: Tenant, user_id: int) -> None:
    """Remove a membership. The owner cannot be removed. Commits."""
    if tenant.owner_user_id == user_id:
        raise ValidationError("The tenant owner cannot be removed")

    membership = _get_membership(tenant, user_id)
    user = membership.user
    db.session.delete(membership)

    if user.current_tenant_id == tenant.id:
        user.current_tenant_id = None
    if user.tenant_id == tenant.id:
        user.tenant_id = None

    usage_service.record_removed(tenant.id, "users")
    db.session.commit()
    logger.info("Removed user_id=%s from tenant_id=%s", user_id, tenant.id)


def change_member_role(tenant: Tenant, user_id: int, role: str) -> TenantMembership:
    _require_tenant_role(role)
    if tenant.owner_user_id == user_id and role != "owner":
        raise ValidationError("The tenant owner's role cannot be changed")

    membership = _get_membership(tenant, user_id)
    membership.role = role
    db.session.commit()
    return membership
