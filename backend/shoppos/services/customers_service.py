# Overview: Service-layer operations for customers; encapsulates business logic and database work.

"""
Customers Service

MULTI-TENANT: customers belong to one tenant; lookups filter on tenant_id.
Loyalty balances are read-only here; only loyalty_service changes them.
"""

from __future__ import annotations

import logging

from sqlalchemy import or_

from ..errors import NotFound
from ..extensions import db
from ..models import Customer, LoyaltyTransaction
from . import usage_service

logger = logging.getLogger(__name__)

CUSTOMER_MUTABLE_FIELDS = {"name", "email", "phone", "notes", "is_active"}


def create_customer(*, tenant_id: int, patch: dict) -> Customer:
    customer = Customer(tenant_id=tenant_id, loyalty_points=0, total_spent_cents=0, total_visits=0)
    for k, v in patch.items():
        if k in CUSTOMER_MUTABLE_FIELDS:
            setattr(customer, k, v)
    db.session.add(customer)
    db.session.flush()

    usage_service.record_created(tenant_id, "customers")
    db.session.commit()
    logger.info("Created customer id=%s tenant_id=%s", customer.id, tenant_id)
    return customer


def get_customer(tenant_id: int, customer_id: int) -> Customer:
    customer = (
        db.session.query(Customer)
        .filter(Customer.id == customer_id, Customer.tenant_id == tenant_id)
        .first()
    )
    if customer is None:
        raise NotFound("Customer not found")
    return customer


def loyalty_history(customer: Customer, limit: int = 50) -> list[dict]:
    rows = (
        db.session.query(LoyaltyTransaction)
        .filter(LoyaltyTransaction.customer_id == customer.id)
        .order_by(LoyaltyTransaction.occurred_at.desc(), LoyaltyTransaction.id.desc())
        .limit(limit)
        .all()
    )
    return [row.to_dict() for row in rows]


def list_customers(tenant_id: int, search: str | None = None) -> list[Customer]:
    query = db.session.query(Customer).filter(Customer.tenant_id == tenant_id)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(
            Customer.name.ilike(pattern),
            Customer.email.ilike(pattern),
            Customer.phone.ilike(pattern),
        ))
    return query.order_by(Customer.name.asc(), Customer.id.asc()).all()
