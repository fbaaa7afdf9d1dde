"""
Pytest fixtures for StockSage backend tests.

Provides the application on in-memory SQLite, a per-test table wipe, owner
and record factories, and helpers for authenticating the test client.
"""

from contextlib import contextmanager
from decimal import Decimal

import pytest

from stocksage import create_app
from stocksage.extensions import db
from stocksage.models import Invoice, InvoiceItem, Product, User
from stocksage.services import session_service
from stocksage.services.auth_service import hash_password


TEST_PASSWORD = "Password123"

TEST_CONFIG = {
    'TESTING': True,
    'APP_ENV': 'testing',
    'SECRET_KEY': 'test-secret-key-0123456789',
    'JWT_SECRET': 'test-jwt-secret-0123456789',
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'IDENTITY_PROVIDER_URL': None,
}

_password_hash = None


def _test_password_hash() -> str:
    # bcrypt at cost 12 is slow; hash once per run
    global _password_hash
    if _password_hash is None:
        _password_hash = hash_password(TEST_PASSWORD)
    return _password_hash


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
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
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def request_ctx(app):
    """
    Request context on a fresh app context (own flask.g and db session).

    Usage: with request_ctx("/api/x", headers={...}): ...
    """
    @contextmanager
    def _ctx(path="/", **kwargs):
        with app.app_context(), app.test_request_context(path, **kwargs):
            yield

    return _ctx


@pytest.fixture(scope='function')
def make_user(db_session):
    counter = {"n": 0}

    def _make(role="user", email=None, is_active=True, with_password=True):
        counter["n"] += 1
        user = User(
            name=f"Owner {counter['n']}",
            email=email or f"owner{counter['n']}@example.com",
            business_name=f"Shop {counter['n']}",
            password_hash=_test_password_hash() if with_password else None,
            role=role,
            is_active=is_active,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture(scope='function')
def user(make_user):
    """Regular account (owner A)."""
    return make_user()


@pytest.fixture(scope='function')
def other_user(make_user):
    """Second regular account (owner B)."""
    return make_user()


@pytest.fixture(scope='function')
def make_product(db_session):
    counter = {"n": 0}

    def _make(owner, barcode=None, current_stock=10, sku=None, name=None):
        counter["n"] += 1
        product = Product(
            owner_user_id=owner.id,
            sku=sku or f"SKU-{counter['n']:03d}",
            name=name or f"Product {counter['n']}",
            barcode=barcode,
            current_stock=current_stock,
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def make_invoice(db_session):
    counter = {"n": 0}

    def _make(owner, status="draft", item_count=2):
        counter["n"] += 1
        invoice = Invoice(
            owner_user_id=owner.id,
            invoice_number=f"INV-{counter['n']:05d}",
            status=status,
            customer_name="Acme Corp",
            customer_email="billing@acme.test",
            total_amount=Decimal("0"),
        )
        db_session.add(invoice)
        db_session.flush()

        total = Decimal("0")
        for i in range(item_count):
            unit_price = Decimal("12.50")
            quantity = i + 1
            db_session.add(InvoiceItem(
                invoice_id=invoice.id,
                description=f"Line {i + 1}",
                quantity=quantity,
                unit_price=unit_price,
                total_price=unit_price * quantity,
            ))
            total += unit_price * quantity
        invoice.total_amount = total
        db_session.commit()
        return invoice

    return _make


@pytest.fixture(scope='function')
def auth_headers_for(db_session):
    """Open a primary session for a user and return Authorization headers."""
    def _headers(user: User) -> dict:
        _, token = session_service.create_session(user.id)
        return {'Authorization': f'Bearer {token}'}

    return _headers


@pytest.fixture(scope='function')
def headers(auth_headers_for, user):
    return auth_headers_for(user)


@pytest.fixture(scope='function')
def other_headers(auth_headers_for, other_user):
    return auth_headers_for(other_user)


@pytest.fixture(scope='function')
def get_auth_token(client):
    """Log in through the API and return the primary session token (or None)."""
    def _login(email: str, password: str = TEST_PASSWORD):
        response = client.post('/api/auth/login', json={
            'email': email,
            'password': password,
        })
        if response.status_code == 200:
            return response.json.get('token')
        return None

    return _login
