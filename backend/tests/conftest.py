"""
Pytest fixtures for StellarPoints backend tests.

Provides the application with an in-memory database, a fresh table set per
test, account factories and bearer-token helpers.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from stellarpoints import create_app
from stellarpoints.extensions import db
from stellarpoints.models import Account
from stellarpoints.permissions import Role
from stellarpoints.services import auth_service, ledger_service, session_service
from stellarpoints.time_utils import utcnow


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
        'LEDGER_RETRY_BACKOFF': 0,
        'POINTS_BASE_RATE': 1,
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


def make_account(
    utorid: str,
    role: Role = Role.REGULAR,
    *,
    verified: bool = True,
    suspicious: bool = False,
    password: str | None = PASSWORD,
) -> Account:
    """Insert an account directly (no gate) with a zero balance."""
    account = Account(
        utorid=utorid,
        name=utorid.title(),
        email=f"{utorid}@mail.utoronto.ca",
        role=role.label,
        points=0,
        verified=verified,
        suspicious=suspicious,
        password_hash=auth_service.hash_password(password) if password else "",
    )
    db.session.add(account)
    db.session.commit()
    return account


@pytest.fixture(scope='function')
def superuser(db_session):
    return make_account("super001", Role.SUPERUSER)


@pytest.fixture(scope='function')
def manager(db_session):
    return make_account("manage01", Role.MANAGER)


@pytest.fixture(scope='function')
def cashier(db_session):
    return make_account("cashie01", Role.CASHIER)


@pytest.fixture(scope='function')
def alice(db_session):
    return make_account("alice001")


@pytest.fixture(scope='function')
def bob(db_session):
    return make_account("bob00001")


@pytest.fixture(scope='function')
def carol(db_session):
    return make_account("carol001")


def credit(cashier: Account, account: Account, points: int):
    """Give an account `points` through a plain purchase (base rate 1)."""
    return ledger_service.create_purchase(cashier, account.utorid, Decimal(points))


def iso(dt) -> str:
    return dt.replace(microsecond=0).isoformat()


def window(start_offset: timedelta, end_offset: timedelta) -> tuple[str, str]:
    """ISO (start, end) relative to now."""
    now = utcnow()
    return iso(now + start_offset), iso(now + end_offset)


def get_auth_token(client, utorid: str, password: str = PASSWORD) -> str | None:
    """Helper to get auth token for an account."""
    response = client.post('/api/auth/tokens', json={
        'utorid': utorid,
        'password': password,
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


def headers_for(account: Account) -> dict:
    """Open a session directly and return its bearer header."""
    _, token = session_service.create_session(account.id)
    return auth_headers(token)
