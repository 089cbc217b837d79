"""
Shared pytest fixtures.

The app fixture pushes one application context for the whole test, backed
by an in-memory SQLite database. Test client requests reuse that context,
so objects created in a test are visible to the routes it calls.
"""
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from loyalty_engine import create_app
from loyalty_engine.extensions import db as _db


@pytest.fixture
def app():
    """Application on TestingConfig with a fresh schema."""
    app = create_app('testing')

    ctx = app.app_context()
    ctx.push()
    _db.create_all()

    yield app

    _db.session.remove()
    _db.drop_all()
    ctx.pop()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db(app):
    return _db


@pytest.fixture
def sample_organization(app):
    from loyalty_engine.models import Organization

    organization = Organization(name='Test Shop', slug='test-shop', is_active=True)
    _db.session.add(organization)
    _db.session.commit()
    return organization


@pytest.fixture
def sample_customer(app, sample_organization):
    """Loyalty member at BRONZE with no points."""
    from loyalty_engine.models import Customer

    customer = Customer(
        organization_id=sample_organization.id,
        first_name='Jane',
        last_name='Doe',
        email='jane@example.com',
        phone='+15550001111',
        loyalty_member=True,
        loyalty_points=0,
        loyalty_tier='BRONZE',
        created_at=datetime.utcnow() - timedelta(days=365)
    )
    _db.session.add(customer)
    _db.session.commit()
    return customer


@pytest.fixture
def make_customer(app, sample_organization):
    """Factory for additional customers."""
    from loyalty_engine.models import Customer

    def _make(**fields):
        fields.setdefault('organization_id', sample_organization.id)
        fields.setdefault('loyalty_member', True)
        fields.setdefault('loyalty_points', 0)
        fields.setdefault('loyalty_tier', 'BRONZE')
        fields.setdefault('created_at', datetime.utcnow() - timedelta(days=365))
        customer = Customer(**fields)
        _db.session.add(customer)
        _db.session.commit()
        return customer

    return _make


@pytest.fixture
def make_order(app):
    """Factory for orders: make_order(customer, amount, financial_status='paid', ...)."""
    from loyalty_engine.models import Order

    def _make(customer, amount, financial_status='paid', status='fulfilled', days_ago=10):
        order = Order(
            organization_id=customer.organization_id,
            customer_id=customer.id,
            total_amount=Decimal(str(amount)),
            financial_status=financial_status,
            status=status,
            created_at=datetime.utcnow() - timedelta(days=days_ago)
        )
        _db.session.add(order)
        _db.session.commit()
        _db.session.expire(customer, ['orders'])
        return order

    return _make


@pytest.fixture
def org_headers(sample_organization):
    return {'X-Organization-ID': str(sample_organization.id)}


@pytest.fixture
def admin_headers(org_headers):
    return {**org_headers, 'X-Admin-Key': 'test-admin-key'}
