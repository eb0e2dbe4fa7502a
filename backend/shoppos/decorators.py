# Overview: Request decorators for API routes: authentication, tenant context, roles, plan gates.

"""
Decorator stack for protected routes, outermost first:

    @require_auth                      -> g.current_user, g.session_context
    @require_tenant                    -> g.tenant, g.tenant_id, g.tenant_role, g.access
    @require_tenant_role(...)          -> effective-role check
    @require_subscription(*features)   -> g.subscription, g.plan
    @check_usage_limits(resource)      -> pre-check only

Failures raise PosError subclasses; the app-level error handlers turn them
into JSON responses. The superadmin bypass is decided once, in
access_service.check_tenant_access(), and read back from g.access.
"""

from functools import wraps
import logging

from flask import request, g

from .errors import AuthenticationRequired, MissingTenantContext
from .services import access_service, session_service, subscription_service, tenant_service, usage_service

logger = logging.getLogger(__name__)


def reset_request_context() -> None:
    """Clear per-request attributes (registered as a before_request hook)."""
    g.current_user = None
    g.session_context = None
    g.tenant = None
    g.tenant_id = None
    g.tenant_role = None
    g.access = None
    g.subscription = None
    g.plan = None


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    token = auth_header.split(" ", 1)[1].strip()
    return token or None


def require_auth(f):
    """
    Require a valid bearer session.

    SECURITY: Raises AuthenticationRequired (401) if:
    - No Authorization header
    - Invalid, expired, idle or revoked token
    - User account deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if token is None:
            raise AuthenticationRequired()

        context = session_service.validate_session(token)
        if context is None:
            raise AuthenticationRequired("Invalid or expired token")

        g.current_user = context.user
        g.session_context = context
        return f(*args, **kwargs)

    return decorated_function


def require_tenant(f):
    """
    Resolve the tenant for this request and run the access guard.

    MULTI-TENANT: Sets g.tenant, g.tenant_id, g.tenant_role and g.access.
    Must be applied inside @require_auth.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = getattr(g, "current_user", None)
        if user is None:
            raise AuthenticationRequired()

        bypass = access_service.has_bypass(user)
        tenant = tenant_service.resolve_tenant(request, user, bypass=bypass)
        decision = access_service.check_tenant_access(user, tenant)

        g.tenant = tenant
        g.tenant_id = tenant.id
        g.tenant_role = decision.role
        g.access = decision

        logger.debug(
            "Tenant context established tenant_id=%s user_id=%s role=%s bypass=%s",
            tenant.id, user.id, decision.role, decision.bypass,
        )
        return f(*args, **kwargs)

    return decorated_function


def require_tenant_role(*allowed_roles):
    """Require one of allowed_roles as the effective role in g.tenant."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            decision = getattr(g, "access", None)
            if decision is None:
                raise MissingTenantContext()
            access_service.require_role(decision, allowed_roles, user=g.current_user)
            return f(*args, **kwargs)

        return decorated_function
    return decorator


def authorize(*allowed_roles):
    """
    Coarse role check.

    Uses the effective tenant role when a tenant is resolved, the global role
    otherwise.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = getattr(g, "current_user", None)
            if user is None:
                raise AuthenticationRequired()
            decision = getattr(g, "access", None)
            if decision is not None:
                access_service.require_role(decision, allowed_roles, user=user)
            else:
                access_service.require_global_role(user, allowed_roles)
            return f(*args, **kwargs)

        return decorated_function
    return decorator


def require_subscription(*features):
    """
    Gate on the tenant's subscription and optional plan features.

    Bypass principals skip the gate; g.plan stays None for them.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            tenant = getattr(g, "tenant", None)
            if tenant is None:
                raise MissingTenantContext()
            if not g.access.bypass:
                g.subscription, g.plan = subscription_service.check_subscription(tenant, features)
            return f(*args, **kwargs)

        return decorated_function
    return decorator


def check_usage_limits(resource: str):
    """Refuse the request when the tenant is at its limit for resource."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            tenant = getattr(g, "tenant", None)
            if tenant is None:
                raise MissingTenantContext()
            if not g.access.bypass:
                usage_service.check_usage(tenant, resource, plan=getattr(g, "plan", None))
            return f(*args, **kwargs)

        return decorated_function
    return decorator
