# Overview: Pytest coverage for tenant access checks and role enforcement.

"""
Access Guard Tests

SECURITY TESTS: Prove that membership is required for every tenant-scoped
request, that the effective role comes from the membership, and that only
the superadmin role bypasses both.
"""

import pytest

from shoppos.errors import InsufficientRole, TenantAccessDenied
from shoppos.models import SecurityEvent
from shoppos.services import access_service, tenant_service
from shoppos.services.access_service import AccessDecision, check_tenant_access, require_role


class TestCheckTenantAccess:

    def test_member_gets_membership_role(self, db_session, tenant_a, owner_a, cashier_a):
        assert check_tenant_access(owner_a, tenant_a) == AccessDecision(tenant_id=tenant_a.id, role="owner")
        assert check_tenant_access(cashier_a, tenant_a).role == "cashier"

    def test_effective_role_ignores_global_role(self, db_session, tenant_a, tenant_b, owner_b, new_user):
        # Global role "owner", but only a cashier inside Shop A
        user = new_user("moonlighter@shop-b.test", role="owner")
        tenant_service.add_member(tenant_a, user.email, role="cashier")

        decision = check_tenant_access(user, tenant_a)
        assert decision.role == "cashier"
        assert decision.bypass is False

    def test_non_member_denied_and_logged(self, app, db_session, tenant_a, owner_b):
        with app.test_request_context("/api/products"):
            with pytest.raises(TenantAccessDenied):
                check_tenant_access(owner_b, tenant_a)

        event = db_session.query(SecurityEvent).filter_by(event_type="TENANT_ACCESS_DENIED").one()
        assert event.user_id == owner_b.id
        assert event.tenant_id == tenant_a.id
        assert event.resource == "/api/products"

    def test_anonymous_denied(self, db_session, tenant_a):
        with pytest.raises(TenantAccessDenied):
            check_tenant_access(None, tenant_a)

    def test_superadmin_bypasses_membership(self, db_session, tenant_a, superadmin):
        decision = check_tenant_access(superadmin, tenant_a)
        assert decision.bypass is True
        assert decision.role == "superadmin"

    def test_superadmin_membership_role_is_kept(self, db_session, tenant_a, superadmin):
        tenant_service.add_member(tenant_a, superadmin.email, role="manager")
        decision = check_tenant_access(superadmin, tenant_a)
        assert decision.bypass is True
        assert decision.role == "manager"


class TestRequireRole:

    def test_allowed_role_passes(self, db_session):
        require_role(AccessDecision(tenant_id=1, role="manager"), ("owner", "admin", "manager"))

    def test_disallowed_role_raises_with_details(self, db_session, tenant_a, cashier_a):
        decision = AccessDecision(tenant_id=tenant_a.id, role="cashier")
        with pytest.raises(InsufficientRole) as exc:
            require_role(decision, ("owner", "admin"), user=cashier_a)

        assert exc.value.details == {"required_roles": ["owner", "admin"], "user_role": "cashier"}
        assert db_session.query(SecurityEvent).filter_by(event_type="ROLE_DENIED").count() == 1

    def test_bypass_satisfies_any_role(self, db_session):
        require_role(AccessDecision(tenant_id=1, role="superadmin", bypass=True), ("owner",))

    def test_global_role_check(self, db_session, owner_a, cashier_a):
        access_service.require_global_role(owner_a, ("owner", "admin"))
        with pytest.raises(InsufficientRole):
            access_service.require_global_role(cashier_a, ("owner", "admin"))


class TestGuardOverHttp:

    def test_cross_tenant_request_is_403(self, client, db_session, tenant_a, tenant_b, owner_b, headers_for):
        resp = client.get("/api/products", headers=headers_for(owner_b, tenant_a.id))
        assert resp.status_code == 403
        assert resp.json["error"] == "TenantAccessDenied"

    def test_cross_tenant_product_lookup_is_404(
        self, client, db_session, tenant_a, tenant_b, owner_a, product_b, headers_for
    ):
        resp = client.get(f"/api/products/{product_b.id}", headers=headers_for(owner_a, tenant_a.id))
        assert resp.status_code == 404

    def test_cashier_cannot_create_products(self, client, db_session, tenant_a, cashier_a, headers_for):
        resp = client.post(
            "/api/products",
            json={"sku": "X-1", "name": "Nope", "price_cents": 100},
            headers=headers_for(cashier_a, tenant_a.id),
        )
        assert resp.status_code == 403
        assert resp.json["error"] == "InsufficientRole"
        assert resp.json["user_role"] == "cashier"

    def test_cashier_cannot_list_members(self, client, db_session, tenant_a, cashier_a, headers_for):
        resp = client.get("/api/tenants/members", headers=headers_for(cashier_a, tenant_a.id))
        assert resp.status_code == 403

    def test_manager_can_list_members(self, client, db_session, tenant_a, manager_a, headers_for):
        resp = client.get("/api/tenants/members", headers=headers_for(manager_a, tenant_a.id))
        assert resp.status_code == 200
        roles = {m["email"]: m["tenant_role"] for m in resp.json["items"]}
        assert roles == {"owner@shop-a.test": "owner", "manager@shop-a.test": "manager"}

    def test_superadmin_reads_any_tenant(self, client, db_session, tenant_a, product_a, superadmin, headers_for):
        resp = client.get("/api/products", headers=headers_for(superadmin, tenant_a.id))
        assert resp.status_code == 200
        assert resp.json["count"] == 1

    def test_superadmin_reaches_suspended_tenant(self, client, db_session, tenant_a, superadmin, headers_for):
        tenant_service.set_status(tenant_a, "suspended")
        resp = client.get("/api/tenants/current", headers=headers_for(superadmin, tenant_a.id))
        assert resp.status_code == 200
        assert resp.json["bypass"] is True
        assert resp.json["role"] == "superadmin"

    def test_missing_token_is_401(self, client, db_session, tenant_a):
        resp = client.get("/api/products", headers={"X-Tenant-ID": str(tenant_a.id)})
        assert resp.status_code == 401
        assert resp.json["error"] == "AuthenticationRequired"
