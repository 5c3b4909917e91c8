"""
Pytest fixtures for VendQR tests.

Provides the application on in-memory SQLite, per-test table clearing and
vendor / machine / customer-session helpers.
"""
import os

import pytest

# rate limits stay in process memory under test
os.environ['USE_REDIS'] = '0'

from vendqr import create_app
from vendqr.models import db, User, VendingMachine, ROLE_CUSTOMER, ROLE_VENDOR
from vendqr.services import qr, rate_limit, sessions
from vendqr.services.passwords import hash_password
from vendqr.services.tokens import sign_vendor_jwt

QR_KEY = 'test-qr-key-0123456789abcdefghij'
PASSWORD = 'Password123!'


def app_config(base, uri='sqlite:///:memory:'):
    return {
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': uri,
        'SQLALCHEMY_ENGINE_OPTIONS': {},
        'SECRET_KEY': 'test-secret',
        'JWT_SECRET': 'test-jwt-secret-0123456789abcdefghij',
        'JWT_ALG': 'HS256',
        'QR_ENCRYPTION_KEY': QR_KEY,
        'QR_KEY_DERIVATION': 'truncate',
        'QR_CIPHER_MODE': 'cbc',
        'BCRYPT_ROUNDS': 4,
        'QR_LOGIN_RATE_LIMIT': 1000,
        'UPLOAD_DIR': str(base / 'uploads'),
        'QR_IMAGE_DIR': str(base / 'qr_codes'),
        'ADMIN_API_KEY': 'admin-key',
    }


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    app = create_app(app_config(tmp_path_factory.mktemp('vendqr')))

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function', autouse=True)
def db_session(app):
    """Fresh tables, identity map and rate-limit counters for each test."""
    rate_limit.reset()
    # the app context spans the session; drop objects left by the previous test
    db.session.remove()
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    db.session.rollback()
    db.session.remove()


def make_user(email, role, full_name=None):
    user = User(email=email, password_hash=hash_password(PASSWORD), full_name=full_name, role=role)
    db.session.add(user)
    db.session.commit()
    return user


def make_machine(vendor, name='Lobby Snacks', location='Building A', is_active=True):
    machine = VendingMachine(vendor_id=vendor.id, machine_name=name, location=location, is_active=is_active)
    db.session.add(machine)
    db.session.flush()
    machine.qr_code_data = qr.generate(machine.id)['token']
    db.session.commit()
    return machine


def bearer(token):
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def vendor(db_session):
    return make_user('vendor@example.com', ROLE_VENDOR, 'Vera Vendor')


@pytest.fixture
def other_vendor(db_session):
    return make_user('other@example.com', ROLE_VENDOR, 'Otto Other')


@pytest.fixture
def vendor_headers(vendor):
    return bearer(sign_vendor_jwt(vendor.id, vendor.email, vendor.role))


@pytest.fixture
def machine(vendor):
    return make_machine(vendor)


@pytest.fixture
def customer(db_session):
    return make_user('customer@example.com', ROLE_CUSTOMER, 'Cora Customer')


@pytest.fixture
def anon_session(machine):
    """Anonymous session opened by scanning the machine QR."""
    return sessions.create(machine.id, machine.qr_code_data)


@pytest.fixture
def customer_session(machine, customer):
    session = sessions.create(machine.id, machine.qr_code_data)
    return sessions.link_to_customer(session.session_token, customer.id)


@pytest.fixture
def customer_headers(customer_session):
    return bearer(customer_session.session_token)


@pytest.fixture
def anon_headers(anon_session):
    return bearer(anon_session.session_token)
