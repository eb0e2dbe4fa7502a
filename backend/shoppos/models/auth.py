from __future__ import annotations

from ..extensions import db
from shoppos.time_utils import to_utc_z


GLOBAL_ROLES = ("superadmin", "owner", "admin", "manager", "cashier")
TENANT_ROLES = ("owner", "admin", "manager", "cashier")

# Global role that bypasses every tenant check
BYPASS_ROLE = "superadmin"


class User(db.Model):
    """
    Principal accounts.

    MULTI-TENANT: a user may belong to several tenants with a different role
    in each (TenantMembership). The effective role for a tenant comes only
    from that membership; the global `role` matters only for the superadmin
    bypass.

    tenant_id is the legacy single-tenant field kept for accounts created
    before memberships existed; current_tenant_id is the tenant the user last
    switched to.
    """
    __tablename__ = "users"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)

    # Bcrypt hashed password
    password_hash = db.Column(db.String(255), nullable=False)

    role = db.Column(db.String(16), nullable=False, default="cashier")

    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=True, index=True)
    current_tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    memberships = db.relationship(
        "TenantMembership",
        back_populates="user",
        order_by="(TenantMembership.joined_at, TenantMembership.id)",
        cascade="all, delete-orphan",
        lazy=True,
    )

    @property
    def is_superadmin(self) -> bool:
        return self.role == BYPASS_ROLE

    def membership_for(self, tenant_id: int) -> "TenantMembership | None":
        for membership in self.memberships:
            if membership.tenant_id == tenant_id:
                return membership
        return None

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} role={self.role}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "tenant_id": self.tenant_id,
            "current_tenant_id": self.current_tenant_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "last_login_at": to_utc_z(self.last_login_at),
        }


class TenantMembership(db.Model):
    """A user's role inside one tenant."""
    __tablename__ = "tenant_memberships"
    __table_args__ = (
        db.UniqueConstraint("user_id", "tenant_id", name="uq_tenant_memberships_user_tenant"),
        db.Index("ix_tenant_memberships_tenant", "tenant_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False)
    role = db.Column(db.String(16), nullable=False, default="cashier")
    joined_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User", back_populates="memberships")
    tenant = db.relationship("Tenant", backref=db.backref("memberships", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "tenant_id": self.tenant_id,
            "role": self.role,
            "joined_at": to_utc_z(self.joined_at),
        }


class SessionToken(db.Model):
    """
    Opaque bearer sessions.

    Only the SHA-256 of the token is stored. Sessions carry no tenant: the
    tenant is resolved per request.
    """
    __tablename__ = "session_tokens"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False, index=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_reason = db.Column(db.String(255), nullable=True)

    user_agent = db.Column(db.String(512), nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)

    user = db.relationship("User", backref=db.backref("sessions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
            "last_used_at": to_utc_z(self.last_used_at),
            "expires_at": to_utc_z(self.expires_at),
            "is_revoked": self.is_revoked,
        }
