"""
Pytest fixtures for delivery hub backend tests.

Provides test database setup, branch/user fixtures, caller contexts and an
authenticated test client.
"""

import pytest

from delivery_hub import create_app
from delivery_hub.extensions import db
from delivery_hub.models import Branch, User
from delivery_hub.services import request_service
from delivery_hub.services.access_policy import CallerContext
from delivery_hub.services.auth_service import hash_password


PASSWORD = "Password123!"


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
    """Fresh data for each test, same schema."""
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    # Cleanup after test
    db.session.rollback()
    db.session.expunge_all()


def _make_branch(name):
    branch = Branch(name=name, address=f"{name} Street 1", contact_person="Manager")
    db.session.add(branch)
    db.session.commit()
    return branch


def _make_user(username, role, branch=None, full_name=None):
    user = User(
        username=username,
        full_name=full_name or username.replace("_", " ").title(),
        email=f"{username}@example.com",
        password_hash=hash_password(PASSWORD),
        role=role,
        branch_id=branch.id if branch else None,
    )
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture(scope='function')
def branch_a(db_session):
    return _make_branch("Branch A")


@pytest.fixture(scope='function')
def branch_b(db_session):
    return _make_branch("Branch B")


@pytest.fixture(scope='function')
def admin_user(db_session):
    return _make_user("admin_user", "admin")


@pytest.fixture(scope='function')
def warehouse_user(db_session):
    return _make_user("warehouse_one", "warehouse")


@pytest.fixture(scope='function')
def warehouse_user_2(db_session):
    return _make_user("warehouse_two", "warehouse")


@pytest.fixture(scope='function')
def branch_user(db_session, branch_a):
    return _make_user("branch_a_clerk", "branch", branch=branch_a)


@pytest.fixture(scope='function')
def other_branch_user(db_session, branch_b):
    return _make_user("branch_b_clerk", "branch", branch=branch_b)


@pytest.fixture(scope='function')
def admin(admin_user):
    return CallerContext.from_user(admin_user)


@pytest.fixture(scope='function')
def warehouse(warehouse_user):
    return CallerContext.from_user(warehouse_user)


@pytest.fixture(scope='function')
def warehouse_2(warehouse_user_2):
    return CallerContext.from_user(warehouse_user_2)


@pytest.fixture(scope='function')
def branch_caller(branch_user):
    return CallerContext.from_user(branch_user)


@pytest.fixture(scope='function')
def other_branch_caller(other_branch_user):
    return CallerContext.from_user(other_branch_user)


DEFAULT_ITEMS = [
    {"description": "Printer paper", "unit": "box", "quantity": 3, "unit_price": 10},
    {"description": "Toner", "unit": "pc", "quantity": 1, "unit_price": 5},
]


@pytest.fixture(scope='function')
def make_request(branch_caller):
    """Create a pending request as the branch user (or another caller)."""
    def _make(caller=None, items=None, **kwargs):
        return request_service.create_request(
            caller or branch_caller,
            items if items is not None else [dict(item) for item in DEFAULT_ITEMS],
            **kwargs,
        )
    return _make


@pytest.fixture(scope='function')
def approved_request(make_request, warehouse):
    created = make_request()
    return request_service.update_request_status(created["id"], "approved", warehouse)


def get_auth_token(client, username: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def headers_for(client):
    """Log a user in through the API and return its Authorization headers."""
    def _headers(user):
        token = get_auth_token(client, user.username)
        assert token, f"login failed for {user.username}"
        return auth_headers(token)
    return _headers
