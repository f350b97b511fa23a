"""
Pytest fixtures for stockroom backend tests.

Provides an in-memory database, a frozen clock, one user per role, seeded
items and auth header helpers.
"""

from datetime import datetime, timedelta

import pytest
from stockroom import create_app
from stockroom.extensions import db
from stockroom.models import UserRole
from stockroom.services import item_service, user_service


PASSWORD = "Password123!"


class FrozenClock:
    """Callable clock for app.config['CLOCK']."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
        'DB_RETRY_BACKOFF': 0,
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
        app.config['CLOCK'] = None
        app.config['REFRESH_REUSE_REVOKES_FAMILY'] = False


@pytest.fixture(scope='function')
def clock(app):
    """Freeze server time at 2026-03-02 08:00 UTC; tests move it with clock.advance()."""
    frozen = FrozenClock(datetime(2026, 3, 2, 8, 0, 0))
    app.config['CLOCK'] = frozen
    yield frozen
    app.config['CLOCK'] = None


def _make_user(full_name, email, role, **kwargs):
    return user_service.register_user(
        full_name=full_name,
        email=email,
        password=PASSWORD,
        role=role,
        **kwargs,
    )


@pytest.fixture(scope='function')
def manager(db_session):
    """Warehouse manager: registers movements."""
    return _make_user("Marta Manager", "manager@stockroom.test", UserRole.WAREHOUSE_MANAGER)


@pytest.fixture(scope='function')
def hr_user(db_session):
    return _make_user("Henri Resources", "hr@stockroom.test", UserRole.HR)


@pytest.fixture(scope='function')
def employee(db_session):
    """Employee: receives protective equipment."""
    return _make_user("Eli Employee", "employee@stockroom.test", UserRole.EMPLOYEE, cost_center="CC-100")


@pytest.fixture(scope='function')
def admin(db_session):
    return _make_user("Ada Admin", "admin@stockroom.test", UserRole.ADMIN)


@pytest.fixture(scope='function')
def item(db_session, manager):
    """Ordinary item with 10 units booked as the opening balance."""
    return item_service.create_item(
        patch={"sku": "GLV-001", "name": "Nitrile gloves", "min_stock": 5, "max_stock": 12},
        initial_quantity=10,
        operator_id=manager.id,
    )


@pytest.fixture(scope='function')
def ppe_item(db_session, manager):
    """Protective equipment: checkout needs recipient + signature."""
    return item_service.create_item(
        patch={"sku": "HLM-001", "name": "Safety helmet", "is_protective_equipment": True},
        initial_quantity=20,
        operator_id=manager.id,
    )


def get_auth_token(client, email: str, password: str = PASSWORD) -> str:
    """Helper to get an access token for a user."""
    response = client.post('/api/auth/login', json={
        'email': email,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('access_token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def manager_headers(client, manager):
    return auth_headers(get_auth_token(client, manager.email))


@pytest.fixture(scope='function')
def hr_headers(client, hr_user):
    return auth_headers(get_auth_token(client, hr_user.email))


@pytest.fixture(scope='function')
def employee_headers(client, employee):
    return auth_headers(get_auth_token(client, employee.email))


@pytest.fixture(scope='function')
def admin_headers(client, admin):
    return auth_headers(get_auth_token(client, admin.email))
