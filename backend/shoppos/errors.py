"""
Error taxonomy for the POS core.

Every business-rule failure is a PosError subclass carrying the HTTP status
it surfaces as. Routes let these propagate; the handlers registered by
register_error_handlers() render them as:

    {"error": "<Kind>", "message": "<human readable>", ...details}

Unexpected exceptions become 500s. Outside production the 500 body also
carries the exception text under "detail".
"""

from __future__ import annotations

from flask import current_app, jsonify
from werkzeug.exceptions import HTTPException

from .extensions import db


class PosError(Exception):
    """Base class for errors that map to a client-visible response."""
    status_code = 500
    default_message = "Request failed"

    def __init__(self, message: str | None = None, details: dict | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details = details or {}

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        body = {"error": self.kind, "message": self.message}
        body.update(self.details)
        return body


# --- 400: request or business-rule violations ---

class ValidationError(PosError):
    status_code = 400
    default_message = "Validation failed"


class MissingTenantContext(PosError):
    status_code = 400
    default_message = "Tenant context is required"


class InvalidTenantFormat(PosError):
    status_code = 400
    default_message = "Invalid tenant id"


class ProductNotFound(PosError):
    status_code = 400
    default_message = "Product not found"


class ProductInactive(PosError):
    status_code = 400
    default_message = "Product is not active"


class InsufficientStock(PosError):
    status_code = 400
    default_message = "Insufficient stock"


class InvalidPaymentMethod(PosError):
    status_code = 400
    default_message = "Invalid payment method"


class InvalidAmount(PosError):
    status_code = 400
    default_message = "Invalid amount"


class CustomerNotFound(PosError):
    status_code = 400
    default_message = "Customer not found"


class AlreadyVoided(PosError):
    status_code = 400
    default_message = "Sale is already voided"


# --- 401 ---

class AuthenticationRequired(PosError):
    status_code = 401
    default_message = "Authentication required"


# --- 403: authorization, subscription and limit denials ---

class TenantInactive(PosError):
    status_code = 403
    default_message = "Tenant is not active"


class TenantAccessDenied(PosError):
    status_code = 403
    default_message = "Access denied to this tenant"


class InsufficientRole(PosError):
    status_code = 403
    default_message = "Insufficient permissions"


class NoSubscription(PosError):
    status_code = 403
    default_message = "No active subscription found"


class SubscriptionInactive(PosError):
    status_code = 403
    default_message = "Subscription is not active"


class TrialExpired(PosError):
    status_code = 403
    default_message = "Trial period has expired"


class FeatureNotInPlan(PosError):
    status_code = 403
    default_message = "Your plan does not include required features"


class UsageLimitReached(PosError):
    status_code = 403
    default_message = "Usage limit reached"


# --- 404 / 409 ---

class TenantNotFound(PosError):
    status_code = 404
    default_message = "Tenant not found"


class SaleNotFound(PosError):
    status_code = 404
    default_message = "Sale not found"


class NotFound(PosError):
    status_code = 404
    default_message = "Not found"


class ConflictError(PosError):
    status_code = 409
    default_message = "Conflict"


def handle_pos_error(error: PosError):
    db.session.rollback()
    return jsonify(error.to_dict()), error.status_code


def handle_http_exception(error: HTTPException):
    return jsonify({"error": error.name.replace(" ", ""), "message": error.description}), error.code


def handle_unexpected_error(error: Exception):
    db.session.rollback()
    current_app.logger.exception("Unhandled error")
    body = {"error": "InternalServerError", "message": "Internal server error"}
    if current_app.config.get("APP_ENV") != "production":
        body["detail"] = str(error)
    return jsonify(body), 500


def register_error_handlers(app) -> None:
    app.errorhandler(PosError)(handle_pos_error)
    app.errorhandler(HTTPException)(handle_http_exception)
    app.errorhandler(Exception)(handle_unexpected_error)
