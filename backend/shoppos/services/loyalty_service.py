# Overview: Service-layer operations for loyalty; encapsulates business logic and database work.

"""
Loyalty Accrual

One loyalty point per 10.00 of sale total (1000 cents), rounded down.
Redeeming a point takes 1.00 (100 cents) off a sale total.

Balances are changed by a single UPDATE per customer, clamped at zero in SQL,
so concurrent sales for one customer cannot lose an increment. Each change
appends LoyaltyTransaction rows in the same DB transaction. Nothing here
commits.

Walk-in sales carry no customer; accrue() and reverse() are no-ops for them.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import case, update

from ..errors import InvalidAmount
from ..extensions import db
from ..models import Customer, LoyaltyTransaction
from shoppos.time_utils import utcnow

logger = logging.getLogger(__name__)


CENTS_PER_EARNED_POINT = 1000
POINT_VALUE_CENTS = 100


def points_for_total(total_cents: int) -> int:
    if total_cents <= 0:
        return 0
    return total_cents // CENTS_PER_EARNED_POINT


def _clamped(expr):
    return case((expr >= 0, expr), else_=0)


def _refresh_cached(customer_id: int) -> None:
    customer = db.session.identity_map.get(db.session.identity_key(Customer, customer_id))
    if customer is not None:
        db.session.refresh(customer)


def _log_transaction(tenant_id, customer_id, sale_id, tx_type, points_delta, spend_delta_cents=0):
    db.session.add(LoyaltyTransaction(
        tenant_id=tenant_id,
        customer_id=customer_id,
        sale_id=sale_id,
        type=tx_type,
        points_delta=points_delta,
        spend_delta_cents=spend_delta_cents,
        occurred_at=utcnow(),
    ))


def accrue(
    tenant_id: int,
    customer_id: int | None,
    total_cents: int,
    points_used: int = 0,
    sale_id: int | None = None,
    now: datetime | None = None,
) -> int:
    """
    Credit a completed sale to the customer.

    loyalty_points += earned - used, total_spent += total,
    total_visits += 1, last_visit_at = now. Returns points earned (0 when
    there is no customer).

    Raises InvalidAmount when points_used exceeds the customer's balance,
    checked inside the same UPDATE.
    """
    if customer_id is None:
        return 0

    earned = points_for_total(total_cents)
    result = db.session.execute(
        update(Customer)
        .where(
            Customer.id == customer_id,
            Customer.tenant_id == tenant_id,
            Customer.loyalty_points >= points_used,
        )
        .values(
            loyalty_points=_clamped(Customer.loyalty_points + earned - points_used),
            total_spent_cents=Customer.total_spent_cents + total_cents,
            total_visits=Customer.total_visits + 1,
            last_visit_at=now or utcnow(),
        ),
        execution_options={"synchronize_session": False},
    )
    if result.rowcount != 1 and points_used:
        raise InvalidAmount(
            "loyaltyPointsUsed exceeds the customer's balance",
            details={"customer_id": customer_id, "loyalty_points_used": points_used},
        )
    if result.rowcount != 1:
        logger.warning("Loyalty accrual skipped: customer_id=%s not in tenant_id=%s", customer_id, tenant_id)
        return 0
    _refresh_cached(customer_id)

    _log_transaction(tenant_id, customer_id, sale_id, "EARN", earned, total_cents)
    if points_used:
        _log_transaction(tenant_id, customer_id, sale_id, "REDEEM", -points_used)
    return earned


def reverse(
    tenant_id: int,
    customer_id: int | None,
    total_cents: int,
    points_earned: int,
    points_used: int,
    sale_id: int | None = None,
) -> bool:
    """
    Exact inverse of accrue() for a voided sale.

    loyalty_points += used - earned (clamped at 0),
    total_spent = max(0, total_spent - total). Visits are not decremented.
    """
    if customer_id is None:
        return False

    result = db.session.execute(
        update(Customer)
        .where(Customer.id == customer_id, Customer.tenant_id == tenant_id)
        .values(
            loyalty_points=_clamped(Customer.loyalty_points + points_used - points_earned),
            total_spent_cents=_clamped(Customer.total_spent_cents - total_cents),
        ),
        execution_options={"synchronize_session": False},
    )
    if result.rowcount != 1:
        logger.warning("Loyalty reversal skipped: customer_id=%s not in tenant_id=%s", customer_id, tenant_id)
        return False
    _refresh_cached(customer_id)

    _log_transaction(tenant_id, customer_id, sale_id, "REVERSAL", points_used - points_earned, -total_cents)
    return True
