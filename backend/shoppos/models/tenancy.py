from __future__ import annotations

from datetime import datetime

from ..extensions import db
from shoppos.time_utils import to_utc_z, utcnow, usage_period


TENANT_STATUSES = ("active", "trial", "suspended", "cancelled")
USABLE_TENANT_STATUSES = ("active", "trial")

SUBSCRIPTION_STATUSES = ("trialing", "active", "past_due", "cancelled", "expired", "paused")
BILLING_CYCLES = ("monthly", "yearly")

PLAN_FEATURES = (
    "inventory",
    "customers",
    "loyalty",
    "analytics",
    "multiLocation",
    "advancedReporting",
    "apiAccess",
    "customBranding",
    "prioritySupport",
)


class Plan(db.Model):
    """
    Subscription plan: feature switches and resource limits.

    Limits are consulted by the usage limiter; features by the subscription
    gate. Plans are global (not tenant-owned).
    """
    __tablename__ = "plans"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    slug = db.Column(db.String(120), nullable=False, unique=True, index=True)
    description = db.Column(db.Text, nullable=True)

    monthly_price_cents = db.Column(db.Integer, nullable=False, default=0)
    yearly_price_cents = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(8), nullable=False, default="USD")

    # {"inventory": true, "loyalty": false, ...}
    features = db.Column(db.JSON, nullable=False, default=dict)

    max_users = db.Column(db.Integer, nullable=False)
    max_products = db.Column(db.Integer, nullable=False)
    max_customers = db.Column(db.Integer, nullable=False)
    max_transactions_per_month = db.Column(db.Integer, nullable=False)

    trial_days = db.Column(db.Integer, nullable=False, default=14)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def has_feature(self, feature: str) -> bool:
        return bool((self.features or {}).get(feature))

    def limit_for(self, resource: str) -> int | None:
        return {
            "users": self.max_users,
            "products": self.max_products,
            "customers": self.max_customers,
            "transactions": self.max_transactions_per_month,
        }.get(resource)

    def __repr__(self) -> str:
        return f"<Plan id={self.id} slug={self.slug!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "monthly_price_cents": self.monthly_price_cents,
            "yearly_price_cents": self.yearly_price_cents,
            "currency": self.currency,
            "features": dict(self.features or {}),
            "limits": {
                "max_users": self.max_users,
                "max_products": self.max_products,
                "max_customers": self.max_customers,
                "max_transactions_per_month": self.max_transactions_per_month,
            },
            "trial_days": self.trial_days,
            "is_active": self.is_active,
        }


class Tenant(db.Model):
    """
    Multi-tenant root: every shop is a Tenant.

    MULTI-TENANT: products, customers and sales carry tenant_id and every
    query touching them is filtered by the tenant resolved for the request.

    USAGE COUNTERS: total_* and monthly_transactions are authoritative
    counters maintained only through usage_service. monthly_transactions
    belongs to the month named by usage_period and restarts on a new month.
    """
    __tablename__ = "tenants"
    __table_args__ = (
        db.CheckConstraint(
            "status IN ('active', 'trial', 'suspended', 'cancelled')",
            name="ck_tenants_status",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(255), nullable=False, unique=True, index=True)
    # Plain integer: users.tenant_id already points the other way
    owner_user_id = db.Column(db.Integer, nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default="trial", index=True)
    trial_ends_at = db.Column(db.DateTime(timezone=True), nullable=True)
    suspended_at = db.Column(db.DateTime(timezone=True), nullable=True)
    suspend_reason = db.Column(db.String(255), nullable=True)

    currency = db.Column(db.String(8), nullable=False, default="USD")
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)  # Basis points (825 = 8.25%)

    # Fallback limits used when no plan is attached to the request
    max_users = db.Column(db.Integer, nullable=False, default=3)
    max_products = db.Column(db.Integer, nullable=False, default=1000)
    max_customers = db.Column(db.Integer, nullable=False, default=500)
    max_transactions_per_month = db.Column(db.Integer, nullable=False, default=1000)

    total_users = db.Column(db.Integer, nullable=False, default=0)
    total_products = db.Column(db.Integer, nullable=False, default=0)
    total_customers = db.Column(db.Integer, nullable=False, default=0)
    total_sales = db.Column(db.Integer, nullable=False, default=0)
    monthly_transactions = db.Column(db.Integer, nullable=False, default=0)
    usage_period = db.Column(db.String(7), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    @property
    def is_usable(self) -> bool:
        return self.status in USABLE_TENANT_STATUSES

    def limit_for(self, resource: str) -> int | None:
        return {
            "users": self.max_users,
            "products": self.max_products,
            "customers": self.max_customers,
            "transactions": self.max_transactions_per_month,
        }.get(resource)

    def usage_for(self, resource: str, now: datetime | None = None) -> int:
        if resource == "transactions":
            # A counter left over from an earlier month counts as zero
            if self.usage_period != usage_period(now or utcnow()):
                return 0
            return self.monthly_transactions
        return {
            "users": self.total_users,
            "products": self.total_products,
            "customers": self.total_customers,
        }.get(resource, 0)

    def __repr__(self) -> str:
        return f"<Tenant id={self.id} slug={self.slug!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "owner_user_id": self.owner_user_id,
            "status": self.status,
            "trial_ends_at": to_utc_z(self.trial_ends_at),
            "currency": self.currency,
            "tax_rate_bps": self.tax_rate_bps,
            "stats": {
                "total_users": self.total_users,
                "total_products": self.total_products,
                "total_customers": self.total_customers,
                "total_sales": self.total_sales,
                "monthly_transactions": self.usage_for("transactions"),
            },
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Subscription(db.Model):
    """
    A tenant's plan subscription (one per tenant).

    Billing with the payment processor lives outside this service; only the
    state needed to gate requests is kept here.
    """
    __tablename__ = "subscriptions"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", name="uq_subscriptions_tenant"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    plan_id = db.Column(db.Integer, db.ForeignKey("plans.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="trialing", index=True)
    billing_cycle = db.Column(db.String(16), nullable=False, default="monthly")

    current_period_start = db.Column(db.DateTime(timezone=True), nullable=False)
    current_period_end = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    trial_end = db.Column(db.DateTime(timezone=True), nullable=True)

    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    tenant = db.relationship("Tenant", backref=db.backref("subscription", uselist=False, lazy=True))
    plan = db.relationship("Plan")

    def is_active(self, now: datetime | None = None) -> bool:
        now = now or utcnow()
        if self.status not in ("active", "trialing"):
            return False
        return self.current_period_end is None or self.current_period_end > now

    def is_in_trial(self, now: datetime | None = None) -> bool:
        now = now or utcnow()
        return self.status == "trialing" and self.trial_end is not None and self.trial_end > now

    def trial_days_remaining(self, now: datetime | None = None) -> int:
        now = now or utcnow()
        if not self.is_in_trial(now):
            return 0
        remaining = self.trial_end - now
        return max(0, remaining.days + (1 if remaining.seconds else 0))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "plan": self.plan.to_dict() if self.plan else None,
            "status": self.status,
            "billing_cycle": self.billing_cycle,
            "current_period_start": to_utc_z(self.current_period_start),
            "current_period_end": to_utc_z(self.current_period_end),
            "trial_end": to_utc_z(self.trial_end),
            "trial_days_remaining": self.trial_days_remaining(),
            "cancelled_at": to_utc_z(self.cancelled_at),
        }
