"""
Sale Ledger: create and void sales

WHY: A sale touches several records (each product's stock, the customer's
loyalty balances, the tenant's counters and the sale itself). They must move
together: either every change commits or none does.

LIFECYCLE:
    Draft (in memory) -> Completed (persisted, is_void=False) -> Voided (terminal)

CREATE (create_sale):
1. Validate the payload (validation.parse_sale_payload) and the customer
2. Reserve stock in ascending product-id order inside a Saga; any failure
   releases what was reserved and rolls back
3. Price: subtotal = sum(qty * unit - line discount), each line >= 0
          total    = subtotal + tax - discount - points_used * 100
          change   = max(0, paid - total)
4. Accrue loyalty for the customer, if any
5. Assign the receipt number (explicit step, unique per tenant)
6. Count the transaction against the tenant and commit once

VOID (void_sale):
Row-locked load scoped to the tenant; a voided sale fails AlreadyVoided.
Releases stock, reverses loyalty, writes void metadata, commits once.
Usage counters are not decremented.

No step is retried; errors propagate to the caller after rollback.
"""

from __future__ import annotations

import logging
import random
import string
import time
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func

from ..errors import (
    AlreadyVoided,
    CustomerNotFound,
    InvalidAmount,
    PosError,
    SaleNotFound,
    ValidationError,
)
from ..extensions import db
from ..models import Customer, Sale, SaleItem
from ..validation import SaleInput
from . import inventory_service, loyalty_service, usage_service
from .concurrency import lock_for_update
from .inventory_service import Reservation
from .saga import Saga
from shoppos.time_utils import utcnow

logger = logging.getLogger(__name__)


RECEIPT_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits
RECEIPT_ATTEMPTS = 5

# Money columns are 64-bit; amounts stay well inside that
MAX_AMOUNT_CENTS = 2**53 - 1


@dataclass(frozen=True)
class PricedLine:
    product_id: int
    product_name: str
    sku: str
    quantity: int
    unit_price_cents: int
    discount_cents: int
    total_price_cents: int
    position: int


def generate_receipt_number(now_ms: int | None = None) -> str:
    """RCP-<epoch ms>-<5 random base36 chars>."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = "".join(random.choices(RECEIPT_SUFFIX_ALPHABET, k=5))
    return f"RCP-{now_ms}-{suffix}"


def assign_receipt_number(tenant_id: int) -> str:
    """Receipt number not yet used inside the tenant."""
    for _ in range(RECEIPT_ATTEMPTS):
        candidate = generate_receipt_number()
        taken = (
            db.session.query(Sale.id)
            .filter(Sale.tenant_id == tenant_id, Sale.receipt_number == candidate)
            .first()
        )
        if not taken:
            return candidate
    raise RuntimeError("Could not allocate a unique receipt number")


def _require_customer(tenant_id: int, customer_id: int) -> Customer:
    customer = (
        db.session.query(Customer)
        .filter(Customer.id == customer_id, Customer.tenant_id == tenant_id)
        .first()
    )
    if customer is None:
        raise CustomerNotFound(f"Customer not found: {customer_id}", details={"customer_id": customer_id})
    return customer


def _reserve_all(saga: Saga, tenant_id: int, data: SaleInput, user_id: int | None) -> dict[int, Reservation]:
    """
    Reserve every product once for its summed quantity, in ascending id order.

    The fixed order keeps two concurrent sales from locking rows in opposite
    orders.
    """
    wanted: dict[int, int] = {}
    for line in data.items:
        wanted[line.product_id] = wanted.get(line.product_id, 0) + line.quantity

    reservations = {}
    for product_id in sorted(wanted):
        quantity = wanted[product_id]
        reservations[product_id] = saga.step(
            lambda product_id=product_id, quantity=quantity: inventory_service.reserve(
                tenant_id, product_id, quantity, user_id=user_id
            ),
            compensate=lambda reservation: inventory_service.release(
                tenant_id,
                reservation.product_id,
                reservation.quantity,
                user_id=user_id,
                movement_type="SALE_CANCEL",
            ),
            label=f"reserve product {product_id} x{quantity}",
        )
    return reservations


def price_lines(data: SaleInput, reservations: dict[int, Reservation]) -> list[PricedLine]:
    """
    Lines in request order; a missing unitPrice uses the product's price.

    Raises InvalidAmount when a line discount exceeds the line amount.
    """
    lines = []
    for line in data.items:
        reservation = reservations[line.product_id]
        unit = line.unit_price_cents if line.unit_price_cents is not None else reservation.price_cents
        gross = line.quantity * unit
        if gross > MAX_AMOUNT_CENTS:
            raise InvalidAmount(
                f"items[{line.position}]: line amount is out of range",
                details={"product_id": line.product_id},
            )
        if line.discount_cents > gross:
            raise InvalidAmount(
                f"items[{line.position}].discount: Discount cannot exceed the line amount",
                details={"product_id": line.product_id, "line_amount_cents": gross},
            )
        lines.append(PricedLine(
            product_id=line.product_id,
            product_name=reservation.name,
            sku=reservation.sku,
            quantity=line.quantity,
            unit_price_cents=unit,
            discount_cents=line.discount_cents,
            total_price_cents=gross - line.discount_cents,
            position=line.position,
        ))
    return lines


def compute_totals(
    lines: list[PricedLine],
    tax_cents: int,
    discount_cents: int,
    points_used: int,
    amount_paid_cents: int,
) -> dict:
    subtotal = sum(line.total_price_cents for line in lines)
    total = subtotal + tax_cents - discount_cents - points_used * loyalty_service.POINT_VALUE_CENTS
    return {
        "subtotal_cents": subtotal,
        "total_cents": total,
        "change_cents": max(0, amount_paid_cents - total),
    }


def create_sale(
    tenant_id: int,
    data: SaleInput,
    cashier_user_id: int | None = None,
    now: datetime | None = None,
) -> Sale:
    """
    Persist a completed sale, all-or-nothing.

    Raises ProductNotFound, ProductInactive, InsufficientStock,
    CustomerNotFound or InvalidAmount; stock, loyalty and counters are
    unchanged when any of them is raised.
    """
    now = now or utcnow()

    try:
        if data.loyalty_points_used and data.customer_id is None:
            raise InvalidAmount("loyaltyPointsUsed requires a customer")
        if data.customer_id is not None:
            _require_customer(tenant_id, data.customer_id)

        with Saga("sale.create") as saga:
            reservations = _reserve_all(saga, tenant_id, data, cashier_user_id)

            lines = price_lines(data, reservations)
            totals = compute_totals(
                lines,
                data.tax_cents,
                data.discount_cents,
                data.loyalty_points_used,
                data.amount_paid_cents,
            )
            if totals["subtotal_cents"] > MAX_AMOUNT_CENTS:
                raise InvalidAmount("Sale subtotal is out of range")
            if totals["total_cents"] < 0:
                raise InvalidAmount(
                    "Sale total cannot be negative",
                    details={"total_cents": totals["total_cents"]},
                )

            sale = Sale(
                tenant_id=tenant_id,
                receipt_number=assign_receipt_number(tenant_id),
                customer_id=data.customer_id,
                cashier_user_id=cashier_user_id,
                tax_cents=data.tax_cents,
                discount_cents=data.discount_cents,
                payment_method=data.payment_method,
                payment_status="paid",
                amount_paid_cents=data.amount_paid_cents,
                loyalty_points_used=data.loyalty_points_used,
                notes=data.notes,
                is_void=False,
                completed_at=now,
                created_at=now,
                **totals,
            )
            sale.items = [
                SaleItem(
                    product_id=line.product_id,
                    product_name=line.product_name,
                    sku=line.sku,
                    quantity=line.quantity,
                    unit_price_cents=line.unit_price_cents,
                    discount_cents=line.discount_cents,
                    total_price_cents=line.total_price_cents,
                    position=line.position,
                )
                for line in lines
            ]
            db.session.add(sale)
            db.session.flush()

            sale.loyalty_points_earned = saga.step(
                lambda: loyalty_service.accrue(
                    tenant_id,
                    data.customer_id,
                    sale.total_cents,
                    data.loyalty_points_used,
                    sale_id=sale.id,
                    now=now,
                ),
                compensate=lambda earned: loyalty_service.reverse(
                    tenant_id,
                    data.customer_id,
                    sale.total_cents,
                    earned,
                    data.loyalty_points_used,
                    sale_id=sale.id,
                ),
                label="accrue loyalty",
            )

            for reservation in reservations.values():
                reservation.movement.sale_id = sale.id
            usage_service.record_transaction(tenant_id, now)

        db.session.commit()
    except PosError:
        db.session.rollback()
        raise
    except Exception:
        db.session.rollback()
        logger.exception("Sale create failed for tenant_id=%s", tenant_id)
        raise

    logger.info(
        "Sale %s completed tenant_id=%s total_cents=%s items=%s",
        sale.receipt_number, tenant_id, sale.total_cents, len(sale.items),
    )
    return sale


def get_sale(tenant_id: int, sale_id: int) -> Sale:
    """Sale inside the tenant; other tenants' sales are indistinguishable from missing."""
    sale = db.session.query(Sale).filter(Sale.id == sale_id, Sale.tenant_id == tenant_id).first()
    if sale is None:
        raise SaleNotFound()
    return sale


def void_sale(
    tenant_id: int,
    sale_id: int,
    reason: str,
    actor_user_id: int | None,
    now: datetime | None = None,
) -> Sale:
    """
    Void a completed sale exactly once.

    Raises SaleNotFound, AlreadyVoided, ValidationError (blank or non-text
    reason).
    """
    if reason is not None and not isinstance(reason, str):
        raise ValidationError("Void reason must be text")
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Void reason is required")
    now = now or utcnow()

    try:
        sale = lock_for_update(
            db.session.query(Sale).filter(Sale.id == sale_id, Sale.tenant_id == tenant_id)
        ).populate_existing().first()
        if sale is None:
            raise SaleNotFound()
        if sale.is_void:
            raise AlreadyVoided()

        for item in sale.items:
            inventory_service.release(tenant_id, item.product_id, item.quantity, sale_id=sale.id, user_id=actor_user_id)

        loyalty_service.reverse(
            tenant_id,
            sale.customer_id,
            sale.total_cents,
            sale.loyalty_points_earned,
            sale.loyalty_points_used,
            sale_id=sale.id,
        )

        sale.is_void = True
        sale.void_reason = reason[:255]
        sale.voided_by_user_id = actor_user_id
        sale.voided_at = now
        db.session.commit()
    except PosError:
        db.session.rollback()
        raise
    except Exception:
        db.session.rollback()
        logger.exception("Sale void failed for tenant_id=%s sale_id=%s", tenant_id, sale_id)
        raise

    logger.info("Sale %s voided tenant_id=%s by user_id=%s", sale.receipt_number, tenant_id, actor_user_id)
    return sale


def list_sales(
    tenant_id: int,
    search: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    payment_method: str | None = None,
    cashier_id: int | None = None,
    page: int = 1,
    per_page: int = 20,
) -> dict:
    """Newest-first page of the tenant's non-void sales plus the filtered total."""
    query = db.session.query(Sale).filter(Sale.tenant_id == tenant_id, Sale.is_void.is_(False))
    if search:
        query = query.filter(Sale.receipt_number.ilike(f"%{search}%"))
    if start is not None:
        query = query.filter(Sale.completed_at >= start)
    if end is not None:
        query = query.filter(Sale.completed_at <= end)
    if payment_method:
        query = query.filter(Sale.payment_method == payment_method)
    if cashier_id is not None:
        query = query.filter(Sale.cashier_user_id == cashier_id)

    total = query.count()
    total_amount = query.with_entities(func.coalesce(func.sum(Sale.total_cents), 0)).scalar()
    sales = (
        query.order_by(Sale.completed_at.desc(), Sale.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return {
        "items": [sale.to_dict(include_items=False) for sale in sales],
        "page": page,
        "per_page": per_page,
        "total": total,
        "total_amount_cents": int(total_amount or 0),
    }


def build_receipt(sale: Sale) -> dict:
    """Printable receipt view of a sale."""
    return {
        "receipt_number": sale.receipt_number,
        "date": sale.to_dict(include_items=False)["completed_at"],
        "status": sale.status,
        "cashier": sale.cashier.name if sale.cashier else None,
        "customer": (
            {"name": sale.customer.name, "phone": sale.customer.phone, "email": sale.customer.email}
            if sale.customer else None
        ),
        "items": [
            {
                "name": item.product_name,
                "sku": item.sku,
                "quantity": item.quantity,
                "unit_price_cents": item.unit_price_cents,
                "discount_cents": item.discount_cents,
                "total_cents": item.total_price_cents,
            }
            for item in sale.items
        ],
        "subtotal_cents": sale.subtotal_cents,
        "tax_cents": sale.tax_cents,
        "discount_cents": sale.discount_cents,
        "total_cents": sale.total_cents,
        "payment_method": sale.payment_method,
        "amount_paid_cents": sale.amount_paid_cents,
        "change_cents": sale.change_cents,
        "loyalty_points_earned": sale.loyalty_points_earned,
        "loyalty_points_used": sale.loyalty_points_used,
    }
