# Overview: Service-layer operations for plans and subscriptions; encapsulates business logic and database work.

"""
Subscription Gate and Plan Catalogue

WHY: Tenants only operate while their subscription is live. Billing with the
payment processor happens elsewhere; this module owns the records needed to
gate requests and the default plan catalogue.

GATE ORDER (check_subscription):
1. No subscription row          -> NoSubscription
2. Not active (status/period)   -> SubscriptionInactive
3. Trialing but trial ended     -> TrialExpired
4. Missing required features    -> FeatureNotInPlan
"""

from __future__ import annotations

import calendar
import logging
from datetime import datetime, timedelta

from flask import current_app

from ..errors import (
    FeatureNotInPlan,
    NoSubscription,
    NotFound,
    SubscriptionInactive,
    TrialExpired,
    ValidationError,
)
from ..extensions import db
from ..models import Plan, Subscription, Tenant
from ..models.tenancy import BILLING_CYCLES, PLAN_FEATURES
from shoppos.time_utils import to_utc_z, utcnow

logger = logging.getLogger(__name__)


DEFAULT_PLANS = [
    {
        "name": "Starter",
        "slug": "starter",
        "description": "Perfect for small shops and new businesses",
        "monthly_price_cents": 2900,
        "yearly_price_cents": 29000,
        "features": {
            "inventory": True,
            "customers": True,
            "loyalty": False,
            "analytics": False,
            "multiLocation": False,
            "advancedReporting": False,
            "apiAccess": False,
            "customBranding": False,
            "prioritySupport": False,
        },
        "max_users": 3,
        "max_products": 500,
        "max_customers": 250,
        "max_transactions_per_month": 1000,
        "trial_days": 14,
        "sort_order": 1,
    },
    {
        "name": "Professional",
        "slug": "professional",
        "description": "For growing businesses with advanced needs",
        "monthly_price_cents": 7900,
        "yearly_price_cents": 79000,
        "features": {
            "inventory": True,
            "customers": True,
            "loyalty": True,
            "analytics": True,
            "multiLocation": False,
            "advancedReporting": True,
            "apiAccess": False,
            "customBranding": True,
            "prioritySupport": False,
        },
        "max_users": 10,
        "max_products": 2000,
        "max_customers": 1000,
        "max_transactions_per_month": 5000,
        "trial_days": 14,
        "sort_order": 2,
    },
    {
        "name": "Enterprise",
        "slug": "enterprise",
        "description": "Complete solution for large businesses",
        "monthly_price_cents": 19900,
        "yearly_price_cents": 199000,
        "features": {feature: True for feature in PLAN_FEATURES},
        "max_users": 50,
        "max_products": 10000,
        "max_customers": 5000,
        "max_transactions_per_month": 50000,
        "trial_days": 30,
        "sort_order": 3,
    },
]


def seed_default_plans() -> list[Plan]:
    """
    Insert the default plans that are missing (matched by slug).

    Existing plans are left untouched so operator edits survive a re-seed.
    """
    created = []
    for data in DEFAULT_PLANS:
        if db.session.query(Plan.id).filter_by(slug=data["slug"]).first():
            continue
        plan = Plan(**data)
        db.session.add(plan)
        created.append(plan)
    db.session.commit()
    if created:
        logger.info("Seeded plans: %s", ", ".join(p.slug for p in created))
    return created


def list_plans(active_only: bool = True) -> list[Plan]:
    query = db.session.query(Plan)
    if active_only:
        query = query.filter(Plan.is_active.is_(True))
    return query.order_by(Plan.sort_order, Plan.id).all()


def get_plan(slug: str | None = None) -> Plan:
    """
    Plan by slug, or the cheapest active plan when slug is None.

    Raises NotFound when no such active plan exists.
    """
    query = db.session.query(Plan).filter(Plan.is_active.is_(True))
    if slug:
        plan = query.filter(Plan.slug == slug).first()
    else:
        plan = query.order_by(Plan.monthly_price_cents, Plan.sort_order, Plan.id).first()
    if not plan:
        raise NotFound(f"Plan {slug!r} not found" if slug else "No active plans configured")
    return plan


def add_months(dt: datetime, months: int) -> datetime:
    """Calendar month arithmetic, clamping the day (Jan 31 + 1 -> Feb 28/29)."""
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def compute_period_end(start: datetime, billing_cycle: str) -> datetime:
    if billing_cycle not in BILLING_CYCLES:
        raise ValidationError(f"billing_cycle must be one of: {', '.join(BILLING_CYCLES)}")
    return add_months(start, 12 if billing_cycle == "yearly" else 1)


def start_trial(
    tenant: Tenant,
    plan: Plan,
    billing_cycle: str = "monthly",
    now: datetime | None = None,
) -> Subscription:
    """
    Attach a trialing subscription to a new tenant. Does not commit.

    The billing period always covers the whole trial.
    """
    now = now or utcnow()
    trial_days = plan.trial_days or current_app.config.get("DEFAULT_TRIAL_DAYS", 14)
    trial_end = now + timedelta(days=trial_days)
    period_end = max(compute_period_end(now, billing_cycle), trial_end)

    subscription = Subscription(
        tenant_id=tenant.id,
        plan_id=plan.id,
        status="trialing",
        billing_cycle=billing_cycle,
        current_period_start=now,
        current_period_end=period_end,
        trial_end=trial_end,
    )
    db.session.add(subscription)

    tenant.trial_ends_at = trial_end
    # Tenant keeps plan limits as its fallback limits
    tenant.max_users = plan.max_users
    tenant.max_products = plan.max_products
    tenant.max_customers = plan.max_customers
    tenant.max_transactions_per_month = plan.max_transactions_per_month
    return subscription


def get_subscription(tenant_id: int) -> Subscription | None:
    return db.session.query(Subscription).filter_by(tenant_id=tenant_id).first()


def check_subscription(
    tenant: Tenant,
    required_features=(),
    now: datetime | None = None,
) -> tuple[Subscription, Plan]:
    """
    Gate a request on the tenant's subscription.

    Returns (subscription, plan) for the usage limiter.
    """
    now = now or utcnow()
    subscription = get_subscription(tenant.id)
    if subscription is None:
        raise NoSubscription()

    if not subscription.is_active(now):
        raise SubscriptionInactive(details={"status": subscription.status})

    if subscription.status == "trialing" and not subscription.is_in_trial(now):
        raise TrialExpired(details={"trial_end": to_utc_z(subscription.trial_end)})

    plan = subscription.plan
    missing = [feature for feature in required_features if not plan.has_feature(feature)]
    if missing:
        raise FeatureNotInPlan(details={"missing_features": missing, "current_plan": plan.name})

    return subscription, plan
