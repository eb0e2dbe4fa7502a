from __future__ import annotations

from ..extensions import db
from shoppos.time_utils import to_utc_z


LOYALTY_TRANSACTION_TYPES = ("EARN", "REDEEM", "REVERSAL")


class Customer(db.Model):
    """
    Tenant-owned customer with loyalty balances.

    loyalty_points and total_spent_cents never go below zero. They are only
    changed through loyalty_service, as single UPDATE statements.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_tenant_name", "tenant_id", "name"),
        db.CheckConstraint("loyalty_points >= 0", name="ck_customers_points_nonnegative"),
        db.CheckConstraint("total_spent_cents >= 0", name="ck_customers_spent_nonnegative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    loyalty_points = db.Column(db.Integer, nullable=False, default=0)
    total_spent_cents = db.Column(db.Integer, nullable=False, default=0)
    total_visits = db.Column(db.Integer, nullable=False, default=0)
    last_visit_at = db.Column(db.DateTime(timezone=True), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Customer id={self.id} name={self.name!r} tenant_id={self.tenant_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "notes": self.notes,
            "loyalty_points": self.loyalty_points,
            "total_spent_cents": self.total_spent_cents,
            "total_visits": self.total_visits,
            "last_visit_at": to_utc_z(self.last_visit_at),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class LoyaltyTransaction(db.Model):
    """Append-only loyalty ledger: one row per point movement."""
    __tablename__ = "loyalty_transactions"
    __table_args__ = (
        db.Index("ix_loyalty_tx_tenant_customer", "tenant_id", "customer_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, nullable=True, index=True)

    type = db.Column(db.String(16), nullable=False)
    points_delta = db.Column(db.Integer, nullable=False)
    spend_delta_cents = db.Column(db.Integer, nullable=False, default=0)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "sale_id": self.sale_id,
            "type": self.type,
            "points_delta": self.points_delta,
            "spend_delta_cents": self.spend_delta_cents,
            "occurred_at": to_utc_z(self.occurred_at),
        }
