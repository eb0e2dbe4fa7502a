from __future__ import annotations
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from shoppos.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .errors import InvalidAmount, InvalidPaymentMethod, ValidationError
from .models.sales import PAYMENT_METHODS


# Maximum price: $9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

# Largest value a client may send for an integer field (32-bit signed)
MAX_INT_VALUE = 2**31 - 1


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _in_range(value: int, name: str) -> int:
    if abs(value) > MAX_INT_VALUE:
        raise ValidationError(f"{name} is out of range")
    return value


def parse_int(value: Any, name: str) -> int:
    """
    Strict integer parsing: ints and digit strings only.

    Floats, booleans and scientific notation are rejected, as are values
    outside +/- MAX_INT_VALUE.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    if isinstance(value, int):
        return _in_range(value, name)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{name} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{name} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{name} must be an integer (no decimals)")
        try:
            parsed = int(stripped)
        except ValueError:
            raise ValidationError(f"{name} must be an integer")
        return _in_range(parsed, name)
    if isinstance(value, float):
        raise ValidationError(f"{name} must be an integer, not a decimal")
    raise ValidationError(f"{name} must be an integer")


def parse_money_cents(value: Any, name: str, error_cls=ValidationError) -> int:
    """
    Currency amount (JSON number or numeric string, e.g. 20 / "20.00") to
    integer cents, rounded half-up.
    """
    if value is None or isinstance(value, bool):
        raise error_cls(f"{name} must be a number")
    try:
        # str() keeps floats like 19.99 from picking up binary noise
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise error_cls(f"{name} must be a number")
    if not amount.is_finite():
        raise error_cls(f"{name} must be a number")
    cents = int((amount * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP))
    if abs(cents) > MAX_PRICE_CENTS * 100:
        raise error_cls(f"{name} is out of range")
    return cents


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return parse_int(value, col.key)

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be true or false")

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    # Default: leave as-is
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)

    "tenantId" is tolerated and dropped: it is a resolution hint, not data.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    payload = {k: v for k, v in payload.items() if k != "tenantId"}

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    if "price_cents" in patch:
        price = patch["price_cents"]
        if price <= 0:
            raise ValidationError("price_cents must be > 0")
        if price > MAX_PRICE_CENTS:
            raise ValidationError(f"price_cents cannot exceed {MAX_PRICE_CENTS} (${MAX_PRICE_CENTS / 100:,.2f})")

    if "cost_price_cents" in patch and patch["cost_price_cents"] < 0:
        raise ValidationError("cost_price_cents must be >= 0")

    if "stock" in patch and patch["stock"] < 0:
        raise ValidationError("stock must be >= 0")

    if "min_stock" in patch and patch["min_stock"] < 0:
        raise ValidationError("min_stock must be >= 0")


# --- Sale payloads ---

@dataclass(frozen=True)
class SaleLineInput:
    product_id: int
    quantity: int
    unit_price_cents: int | None
    discount_cents: int = 0
    position: int = 0


@dataclass(frozen=True)
class SaleInput:
    """Validated POST /api/sales body, amounts in cents."""
    items: list[SaleLineInput]
    payment_method: str
    amount_paid_cents: int
    customer_id: int | None = None
    tax_cents: int = 0
    discount_cents: int = 0
    loyalty_points_used: int = 0
    notes: str | None = None


def _optional_money(body: dict, key: str, error_cls=InvalidAmount) -> int:
    value = body.get(key)
    if value is None or value == "":
        return 0
    cents = parse_money_cents(value, key, error_cls)
    if cents < 0:
        raise error_cls(f"{key} must be >= 0")
    return cents


def _parse_id(value: Any, name: str) -> int:
    parsed = parse_int(value, name)
    if parsed < 1:
        raise ValidationError(f"{name} must be a positive id")
    return parsed


def parse_sale_payload(body: Any) -> SaleInput:
    """
    Validate the sale request body:

        {items: [{product, quantity, unitPrice?, discount?}], customer?,
         tax?, discount?, paymentMethod, amountPaid, loyaltyPointsUsed?, notes?}

    unitPrice defaults to the product's current price when omitted.
    """
    if not isinstance(body, dict):
        raise ValidationError("Invalid JSON payload")

    raw_items = body.get("items")
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("At least one item is required")

    items = []
    for position, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{position}] must be an object")
        if raw.get("product") in (None, ""):
            raise ValidationError(f"items[{position}].product: Product ID is required")
        product_id = _parse_id(raw["product"], f"items[{position}].product")

        try:
            quantity = parse_int(raw.get("quantity"), "quantity")
        except ValidationError as exc:
            raise ValidationError(f"items[{position}].{exc.message}")
        if quantity < 1:
            raise ValidationError(f"items[{position}].quantity: Quantity must be at least 1")

        unit_price_cents = None
        if raw.get("unitPrice") is not None:
            unit_price_cents = parse_money_cents(raw["unitPrice"], f"items[{position}].unitPrice", InvalidAmount)
            if unit_price_cents < 0:
                raise InvalidAmount(f"items[{position}].unitPrice: Unit price must be a positive number")

        discount_cents = _optional_money(raw, "discount")
        items.append(SaleLineInput(
            product_id=product_id,
            quantity=quantity,
            unit_price_cents=unit_price_cents,
            discount_cents=discount_cents,
            position=position,
        ))

    payment_method = body.get("paymentMethod")
    if payment_method not in PAYMENT_METHODS:
        raise InvalidPaymentMethod(
            f"Invalid payment method: {payment_method!r}",
            details={"allowed": list(PAYMENT_METHODS)},
        )

    if body.get("amountPaid") is None:
        raise InvalidAmount("amountPaid is required")
    amount_paid_cents = parse_money_cents(body["amountPaid"], "amountPaid", InvalidAmount)
    if amount_paid_cents < 0:
        raise InvalidAmount("Amount paid must be a positive number")

    points_used = body.get("loyaltyPointsUsed") or 0
    try:
        points_used = parse_int(points_used, "loyaltyPointsUsed")
    except ValidationError as exc:
        raise InvalidAmount(exc.message)
    if points_used < 0:
        raise InvalidAmount("loyaltyPointsUsed must be >= 0")

    customer_id = None
    if body.get("customer") not in (None, ""):
        customer_id = _parse_id(body["customer"], "customer")

    notes = body.get("notes")
    if notes is not None:
        notes = str(notes).strip() or None

    return SaleInput(
        items=items,
        payment_method=payment_method,
        amount_paid_cents=amount_paid_cents,
        customer_id=customer_id,
        tax_cents=_optional_money(body, "tax"),
        discount_cents=_optional_money(body, "discount"),
        loyalty_points_used=points_used,
        notes=notes,
    )
