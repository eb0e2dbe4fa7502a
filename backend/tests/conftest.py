"""
Pytest fixtures for ShopPOS backend tests.

Provides test database setup, two isolated tenants with members, stock and
customers, and test client helpers.
"""

import pytest

from shoppos import create_app
from shoppos.config import TestingConfig
from shoppos.extensions import db
from shoppos.services import (
    auth_service,
    customers_service,
    products_service,
    session_service,
    subscription_service,
    tenant_service,
)

PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestingConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def plans(db_session):
    """Default plan catalogue (starter, professional, enterprise)."""
    subscription_service.seed_default_plans()
    return {plan.slug: plan for plan in subscription_service.list_plans()}


def make_user(email: str, role: str = "owner", name: str | None = None):
    return auth_service.create_user(name=name or email.split("@")[0], email=email, password=PASSWORD, role=role)


@pytest.fixture(scope='function')
def owner_a(db_session):
    return make_user("owner@shop-a.test")


@pytest.fixture(scope='function')
def tenant_a(db_session, plans, owner_a):
    """Shop A on the professional plan (trialing)."""
    return tenant_service.create_tenant("Shop A", owner_a, plan_slug="professional")


@pytest.fixture(scope='function')
def manager_a(db_session, tenant_a):
    user = make_user("manager@shop-a.test", role="manager")
    tenant_service.add_member(tenant_a, user.email, role="manager")
    return user


@pytest.fixture(scope='function')
def cashier_a(db_session, tenant_a):
    user = make_user("cashier@shop-a.test", role="cashier")
    tenant_service.add_member(tenant_a, user.email, role="cashier")
    return user


@pytest.fixture(scope='function')
def owner_b(db_session):
    return make_user("owner@shop-b.test")


@pytest.fixture(scope='function')
def tenant_b(db_session, plans, owner_b):
    """Shop B on the starter plan (trialing)."""
    return tenant_service.create_tenant("Shop B", owner_b, plan_slug="starter")


@pytest.fixture(scope='function')
def superadmin(db_session):
    return make_user("ops@shoppos.test", role="superadmin")


@pytest.fixture(scope='function')
def product_a(db_session, tenant_a, owner_a):
    """Widget in Shop A: price 20.00, stock 10."""
    return products_service.create_product(
        tenant_id=tenant_a.id,
        patch={"sku": "WID-001", "name": "Widget", "price_cents": 2000, "stock": 10},
        user_id=owner_a.id,
    )


@pytest.fixture(scope='function')
def product_a2(db_session, tenant_a, owner_a):
    """Gadget in Shop A: price 5.00, stock 3."""
    return products_service.create_product(
        tenant_id=tenant_a.id,
        patch={"sku": "GAD-001", "name": "Gadget", "price_cents": 500, "stock": 3},
        user_id=owner_a.id,
    )


@pytest.fixture(scope='function')
def product_b(db_session, tenant_b, owner_b):
    return products_service.create_product(
        tenant_id=tenant_b.id,
        patch={"sku": "WID-001", "name": "Widget B", "price_cents": 1500, "stock": 5},
        user_id=owner_b.id,
    )


@pytest.fixture(scope='function')
def customer_a(db_session, tenant_a):
    return customers_service.create_customer(tenant_id=tenant_a.id, patch={"name": "Carla", "email": "carla@example.com"})


@pytest.fixture(scope='function')
def headers_for(db_session):
    """
    Helper to create Authorization (and tenant) headers.

    headers_for(user) opens a fresh session; pass tenant_id to send X-Tenant-ID.
    """
    def _headers(user, tenant_id=None) -> dict:
        _, token = session_service.create_session(user_id=user.id)
        headers = {'Authorization': f'Bearer {token}'}
        if tenant_id is not None:
            headers['X-Tenant-ID'] = str(tenant_id)
        return headers
    return _headers


@pytest.fixture(scope='function')
def reload(db_session):
    """Re-read a row from the database, bypassing cached attributes."""
    def _reload(model, row_id):
        return db_session.query(model).filter_by(id=row_id).populate_existing().one_or_none()
    return _reload


@pytest.fixture(scope='function')
def new_user(db_session):
    """Factory for users with the shared test password and no tenant."""
    return make_user
