# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/shoppos/routes/auth.py
"""
Authentication API routes

Accounts are created by tenant owners (POST /api/tenants/members) or the
operator CLI (flask users create); there is no self-registration.
"""

from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth
from ..errors import AuthenticationRequired, ValidationError
from ..services import access_service, auth_service, session_service, tenant_service


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Token must be included in the Authorization header for protected routes.
    Failed attempts are recorded as LOGIN_FAILED security events.
    """
    data = request.get_json(silent=True) or {}
    email = data.get("email")
    password = data.get("password")

    if not email or not password:
        raise ValidationError("email and password required")

    user = auth_service.authenticate(email, password)
    if not user:
        access_service.log_security_event(
            user_id=None,
            event_type="LOGIN_FAILED",
            success=False,
            resource=request.path,
            action=request.method,
            reason=f"Invalid credentials for {auth_service.normalize_email(email)}",
            ip_address=request.remote_addr,
            user_agent=request.headers.get("User-Agent"),
        )
        raise AuthenticationRequired("Invalid credentials")

    session, token = session_service.create_session(
        user_id=user.id,
        user_agent=request.headers.get("User-Agent"),
        ip_address=request.remote_addr,
    )

    return jsonify({
        "user": user.to_dict(),
        "memberships": tenant_service.list_memberships(user),
        "token": token,
        "session": session.to_dict(),
        "message": "Login successful",
    }), 200


@auth_bp.post("/logout")
@require_auth
def logout_route():
    """Revoke the presented bearer token."""
    token = request.headers.get("Authorization", "").split(" ", 1)[1]
    session_service.revoke_session(token)
    return jsonify({"message": "Logged out"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    user = g.current_user
    return jsonify({
        "user": user.to_dict(),
        "memberships": tenant_service.list_memberships(user),
        "current_tenant_id": user.current_tenant_id,
    }), 200
