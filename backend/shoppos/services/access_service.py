# Overview: Service-layer operations for tenant access checks and security event logging.

"""
Access Guard and Security Event Logging

WHY: Every tenant-scoped request must prove the principal belongs to the
resolved tenant before any data is read or written, and every denial must
be attributable afterwards.

BYPASS: The global "superadmin" role is the only way around membership and
role checks. It is evaluated exactly once, in check_tenant_access(), and the
result travels on the AccessDecision. Downstream checks consult
decision.bypass; nothing else inspects user.role.

DESIGN PRINCIPLES:
- Fail closed: no membership means no access
- Log denials only: successful checks are not persisted
- Effective role comes from TenantMembership, never from the global role
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from flask import has_request_context, request

from ..errors import InsufficientRole, TenantAccessDenied
from ..extensions import db
from ..models import SecurityEvent, Tenant, User
from ..models.auth import BYPASS_ROLE
from shoppos.time_utils import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessDecision:
    """Outcome of the guard for one request."""
    tenant_id: int | None
    role: str | None
    bypass: bool = False


def log_security_event(
    user_id: int | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    tenant_id: int | None = None,
) -> SecurityEvent:
    """
    Log security event to audit trail with tenant context.

    event_type examples:
    - TENANT_CONTEXT_MISSING
    - TENANT_ACCESS_DENIED
    - ROLE_DENIED
    - LOGIN_FAILED

    Commits immediately: denials end the request, so nothing else is pending.
    """
    event = SecurityEvent(
        user_id=user_id,
        tenant_id=tenant_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow()
    )

    db.session.add(event)
    db.session.commit()

    return event


def record_denial(
    event_type: str,
    reason: str,
    user: User | None = None,
    tenant_id: int | None = None,
) -> None:
    """Persist a denial, filling request details when inside a request."""
    resource = action = ip_address = user_agent = None
    if has_request_context():
        resource = request.path
        action = request.method
        ip_address = request.remote_addr
        user_agent = request.headers.get("User-Agent")

    logger.warning(
        "%s: %s (user_id=%s tenant_id=%s path=%s)",
        event_type, reason, user.id if user else None, tenant_id, resource,
    )
    log_security_event(
        user_id=user.id if user else None,
        event_type=event_type,
        success=False,
        resource=resource,
        action=action,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        tenant_id=tenant_id,
    )


def has_bypass(user: User | None) -> bool:
    return user is not None and user.role == BYPASS_ROLE


def get_tenant_role(user: User, tenant_id: int) -> str | None:
    """Effective role of user inside tenant_id, or None when not a member."""
    membership = user.membership_for(tenant_id)
    return membership.role if membership else None


def check_tenant_access(user: User | None, tenant: Tenant) -> AccessDecision:
    """
    Verify the principal may act inside tenant and compute its effective role.

    Raises TenantAccessDenied when there is no membership and no bypass.
    """
    if has_bypass(user):
        logger.debug("Tenant access bypassed for user_id=%s tenant_id=%s", user.id, tenant.id)
        role = get_tenant_role(user, tenant.id) or BYPASS_ROLE
        return AccessDecision(tenant_id=tenant.id, role=role, bypass=True)

    if user is None:
        raise TenantAccessDenied()

    role = get_tenant_role(user, tenant.id)
    if role is None:
        record_denial(
            "TENANT_ACCESS_DENIED",
            f"User {user.id} has no membership in tenant {tenant.id}",
            user=user,
            tenant_id=tenant.id,
        )
        raise TenantAccessDenied()

    return AccessDecision(tenant_id=tenant.id, role=role)


def require_role(decision: AccessDecision, allowed_roles, user: User | None = None) -> None:
    """
    Route-level role check against the effective tenant role.

    The bypass always satisfies the check.
    """
    if decision.bypass:
        return
    allowed = tuple(allowed_roles)
    if decision.role in allowed:
        return

    record_denial(
        "ROLE_DENIED",
        f"Role {decision.role!r} not in {', '.join(allowed)}",
        user=user,
        tenant_id=decision.tenant_id,
    )
    raise InsufficientRole(details={"required_roles": list(allowed), "user_role": decision.role})


def require_global_role(user: User, allowed_roles) -> None:
    """Coarse check on the global role, used where no tenant is resolved."""
    if has_bypass(user):
        return
    allowed = tuple(allowed_roles)
    if user.role in allowed:
        return

    record_denial("ROLE_DENIED", f"Global role {user.role!r} not in {', '.join(allowed)}", user=user)
    raise InsufficientRole(details={"required_roles": list(allowed), "user_role": user.role})
