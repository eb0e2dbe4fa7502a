# Overview: Service-layer operations for usage limits; encapsulates business logic and database work.

"""
Usage Limiter and Tenant Usage Counters

WHY: Plans cap how many users, products, customers and monthly sales a
tenant may have. The limiter is a pre-check; it never mutates counters.

COUNTER OWNERSHIP:
Tenant.total_* and Tenant.monthly_transactions are authoritative and change
only through record_created(), record_removed() and record_transaction().
Each is a single UPDATE executed inside the caller's transaction, so a
rolled-back create never leaves a counter behind. recount_usage() rebuilds
them from actual rows for periodic reconciliation.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import case, func, update

from ..errors import UsageLimitReached, ValidationError
from ..extensions import db
from ..models import Customer, Plan, Product, Sale, Tenant, TenantMembership
from shoppos.time_utils import utcnow, usage_period

logger = logging.getLogger(__name__)


RESOURCES = ("users", "products", "customers", "transactions")

LIMIT_MESSAGES = {
    "users": "User limit reached",
    "products": "Product limit reached",
    "customers": "Customer limit reached",
    "transactions": "Monthly transaction limit reached",
}

_COUNTER_COLUMNS = {
    "users": Tenant.total_users,
    "products": Tenant.total_products,
    "customers": Tenant.total_customers,
}


def _require_resource(resource: str) -> None:
    if resource not in RESOURCES:
        raise ValidationError(f"Unknown resource {resource!r}")


def get_limit(tenant: Tenant, resource: str, plan: Plan | None = None) -> int | None:
    """Plan limit when a plan is attached, the tenant's own limit otherwise."""
    _require_resource(resource)
    source = plan if plan is not None else tenant
    return source.limit_for(resource)


def check_usage(
    tenant: Tenant,
    resource: str,
    plan: Plan | None = None,
    now: datetime | None = None,
) -> None:
    """Raise UsageLimitReached when current >= limit."""
    limit = get_limit(tenant, resource, plan)
    if limit is None:
        return
    current = tenant.usage_for(resource, now)
    if current >= limit:
        logger.info(
            "Usage limit reached tenant_id=%s resource=%s current=%s limit=%s",
            tenant.id, resource, current, limit,
        )
        raise UsageLimitReached(
            LIMIT_MESSAGES[resource],
            details={"resource": resource, "limit": limit, "current": current},
        )


def usage_report(tenant: Tenant, plan: Plan | None = None, now: datetime | None = None) -> dict:
    """{resource: {used, limit, percentage}} for every resource class."""
    report = {}
    for resource in RESOURCES:
        used = tenant.usage_for(resource, now)
        limit = get_limit(tenant, resource, plan)
        percentage = round(used * 100 / limit) if limit else 0
        report[resource] = {"used": used, "limit": limit, "percentage": percentage}
    return report


def record_created(tenant_id: int, resource: str, count: int = 1) -> None:
    """Increment the counter for a newly created users/products/customers row."""
    column = _COUNTER_COLUMNS.get(resource)
    if column is None:
        raise ValidationError(f"Resource {resource!r} has no creation counter")
    db.session.execute(
        update(Tenant)
        .where(Tenant.id == tenant_id)
        .values({column.key: column + count})
    )


def record_removed(tenant_id: int, resource: str, count: int = 1) -> None:
    """Decrement a resource counter, never below zero."""
    column = _COUNTER_COLUMNS.get(resource)
    if column is None:
        raise ValidationError(f"Resource {resource!r} has no creation counter")
    db.session.execute(
        update(Tenant)
        .where(Tenant.id == tenant_id)
        .values({column.key: case((column >= count, column - count), else_=0)}),
        execution_options={"synchronize_session": "fetch"},
    )


def record_transaction(tenant_id: int, now: datetime | None = None) -> None:
    """
    Count one completed sale.

    monthly_transactions restarts at 1 when the stored period is not the
    current month. Both sides of the CASE read pre-update values.
    """
    period = usage_period(now or utcnow())
    db.session.execute(
        update(Tenant)
        .where(Tenant.id == tenant_id)
        .values(
            monthly_transactions=case(
                (Tenant.usage_period == period, Tenant.monthly_transactions + 1),
                else_=1,
            ),
            usage_period=period,
            total_sales=Tenant.total_sales + 1,
        ),
        execution_options={"synchronize_session": "fetch"},
    )


def _month_bounds(now: datetime) -> tuple[datetime, datetime]:
    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


def recount_usage(tenant_id: int | None = None, now: datetime | None = None) -> list[dict]:
    """
    Rebuild usage counters from actual rows.

    Returns one {tenant_id, before, after} entry per tenant whose counters
    changed. Commits.
    """
    now = now or utcnow()
    month_start, month_end = _month_bounds(now)

    query = db.session.query(Tenant)
    if tenant_id is not None:
        query = query.filter(Tenant.id == tenant_id)

    changes = []
    for tenant in query.order_by(Tenant.id).all():
        actual = {
            "total_users": db.session.query(func.count(TenantMembership.id))
            .filter(TenantMembership.tenant_id == tenant.id).scalar(),
            "total_products": db.session.query(func.count(Product.id))
            .filter(Product.tenant_id == tenant.id).scalar(),
            "total_customers": db.session.query(func.count(Customer.id))
            .filter(Customer.tenant_id == tenant.id).scalar(),
            "total_sales": db.session.query(func.count(Sale.id))
            .filter(Sale.tenant_id == tenant.id).scalar(),
            "monthly_transactions": db.session.query(func.count(Sale.id))
            .filter(
                Sale.tenant_id == tenant.id,
                Sale.completed_at >= month_start,
                Sale.completed_at < month_end,
            ).scalar(),
        }
        before = {key: getattr(tenant, key) for key in actual}
        if tenant.usage_period != usage_period(now):
            before["monthly_transactions"] = 0

        if before != actual or tenant.usage_period != usage_period(now):
            for key, value in actual.items():
                setattr(tenant, key, value)
            tenant.usage_period = usage_period(now)
            if before != actual:
                logger.warning("Usage counters drifted for tenant_id=%s: %s -> %s", tenant.id, before, actual)
                changes.append({"tenant_id": tenant.id, "before": before, "after": actual})

    db.session.commit()
    return changes
