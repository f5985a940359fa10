"""
Pytest fixtures for the POS engine tests.

Provides an in-memory database, a tenant with one store and one cashier,
catalog helpers and a test client.
"""

from decimal import Decimal

import pytest
from pos_engine import create_app
from pos_engine.extensions import db
from pos_engine.models import Tenant, Store, User, Category, Product, Tax, Customer, Till
from pos_engine.services.inventory_service import adjust_stock
from pos_engine.services.sales_service import SalesService, SalePolicy
from pos_engine.services.till_service import TillService


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

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
def tenant(db_session):
    tenant = Tenant(
        name="Acme Retail",
        code="ACME",
        loyalty_earn_rate=Decimal("1"),
        loyalty_redeem_rate=Decimal("0.10"),
    )
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def other_tenant(db_session):
    tenant = Tenant(name="Beta Goods", code="BETA")
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def store(db_session, tenant):
    store = Store(tenant_id=tenant.id, name="Main Street", code="MAIN")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def second_store(db_session, tenant):
    store = Store(tenant_id=tenant.id, name="Harbour Mall", code="HARB")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def cashier(db_session, tenant):
    user = User(tenant_id=tenant.id, username="cashier", name="Casey Cashier")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def second_cashier(db_session, tenant):
    user = User(tenant_id=tenant.id, username="cashier2", name="Robin Register")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def category(db_session, tenant):
    category = Category(tenant_id=tenant.id, name="Grocery")
    db_session.add(category)
    db_session.commit()
    return category


@pytest.fixture(scope='function')
def make_product(db_session, tenant, store, category):
    """Factory: product priced in cents, optionally stocked in the main store."""
    counter = {"n": 0}

    def _make(price_cents=1000, stock=None, cost_cents=400, name=None, category_id=None, store_id=None):
        counter["n"] += 1
        product = Product(
            tenant_id=tenant.id,
            category_id=category_id if category_id is not None else category.id,
            sku=f"SKU-{counter['n']:03d}",
            name=name or f"Product {counter['n']}",
            price_cents=price_cents,
            cost_cents=cost_cents,
        )
        db_session.add(product)
        db_session.commit()
        if stock:
            adjust_stock(
                db_session,
                store_id=store_id or store.id,
                product_id=product.id,
                quantity_delta=stock,
                reason="Test stock",
            )
        return product

    return _make


@pytest.fixture(scope='function')
def make_tax(db_session, tenant):
    def _make(rate_bps, is_active=True, name="Sales Tax"):
        tax = Tax(tenant_id=tenant.id, name=name, rate_bps=rate_bps, is_active=is_active)
        db_session.add(tax)
        db_session.commit()
        return tax

    return _make


@pytest.fixture(scope='function')
def make_customer(db_session, tenant):
    def _make(points=0, member=True, code=None, name="Pat Customer"):
        customer = Customer(
            tenant_id=tenant.id,
            name=name,
            code=code,
            loyalty_points=points,
            is_loyalty_member=member,
        )
        db_session.add(customer)
        db_session.commit()
        return customer

    return _make


@pytest.fixture(scope='function')
def till(db_session, tenant, store):
    till = Till(tenant_id=tenant.id, store_id=store.id, name="Till 1")
    db_session.add(till)
    db_session.commit()
    return till


@pytest.fixture(scope='function')
def sales_service(db_session):
    return SalesService(db_session, SalePolicy())


@pytest.fixture(scope='function')
def till_service(db_session):
    return TillService(db_session)

