"""
Pytest fixtures for warehouse backend tests.

Provides test database setup, an in-memory identity provider, catalog data,
and bearer token helpers.
"""

import itertools
from decimal import Decimal

import pytest
from jose import jwt

from warehouse import create_app
from warehouse.errors import IdpError, UsernameConflictError
from warehouse.extensions import db
from warehouse.models import Category, Product, Role, User, Warehouse
from warehouse.services.idp_client import IdpUser


class FakeIdpClient:
    """
    In-memory stand-in for IdpClient with the same public surface.

    Failure injection: fail_on["create_user"] = IdpError(...) makes the next
    call to that operation raise (and is then cleared). Set sticky=True on
    fail() to keep failing.
    """

    def __init__(self):
        self.accounts: dict[str, dict] = {}
        self.calls: list[tuple] = []
        self.is_available = True
        self.roles_present = True
        self._failures: dict[str, tuple[Exception, bool]] = {}
        self._ids = itertools.count(1)

    # test helpers

    def fail(self, operation: str, exc: Exception | None = None, *, sticky: bool = False):
        self._failures[operation] = (exc or IdpError(operation, "injected failure"), sticky)

    def _maybe_fail(self, operation: str):
        if operation in self._failures:
            exc, sticky = self._failures[operation]
            if not sticky:
                del self._failures[operation]
            raise exc

    def add_account(self, username, role=Role.EMPLOYEE, first_name=None, last_name=None, roles=None) -> str:
        external_id = f"kc-{next(self._ids)}"
        self.accounts[external_id] = {
            "username": username,
            "first_name": first_name,
            "last_name": last_name,
            "password": None,
            "roles": set(roles) if roles is not None else {Role(role).value},
        }
        return external_id

    def by_username(self, username):
        for external_id, account in self.accounts.items():
            if account["username"] == username:
                return external_id, account
        return None, None

    # IdpClient surface

    def create_user(self, username, password, role, first_name=None, last_name=None):
        self.calls.append(("create_user", username))
        self._maybe_fail("create_user")
        if self.by_username(username)[0]:
            raise UsernameConflictError(username)
        external_id = self.add_account(username, Role.parse(role), first_name, last_name)
        self.accounts[external_id]["password"] = password
        return external_id

    def update_user(self, external_id, username=None, password=None, first_name=None, last_name=None):
        self.calls.append(("update_user", external_id, username, first_name, last_name))
        self._maybe_fail("update_user")
        account = self.accounts[external_id]
        if username:
            other, _ = self.by_username(username)
            if other and other != external_id:
                raise UsernameConflictError(username)
            account["username"] = username
        if first_name:
            account["first_name"] = first_name
        if last_name:
            account["last_name"] = last_name
        if password:
            account["password"] = password

    def set_role(self, external_id, role):
        self.calls.append(("set_role", external_id, Role.parse(role).value))
        self._maybe_fail("set_role")
        self.accounts[external_id]["roles"] = {Role.parse(role).value}

    def delete_user(self, external_id):
        self.calls.append(("delete_user", external_id))
        self._maybe_fail("delete_user")
        if external_id not in self.accounts:
            raise IdpError("user deletion", "HTTP Status: 404")
        del self.accounts[external_id]

    def exists_by_username(self, username):
        return self.by_username(username)[0] is not None

    def find_id_by_username(self, username):
        return self.by_username(username)[0]

    def has_role(self, external_id, role):
        return Role.parse(role).value in self.accounts[external_id]["roles"]

    def primary_role(self, external_id):
        roles = self.accounts[external_id]["roles"]
        if Role.MANAGER.value in roles:
            return Role.MANAGER
        if Role.EMPLOYEE.value in roles:
            return Role.EMPLOYEE
        return None

    def list_all(self):
        self._maybe_fail("list_all")
        return [
            IdpUser(
                id=external_id,
                username=account["username"],
                first_name=account["first_name"],
                last_name=account["last_name"],
            )
            for external_id, account in self.accounts.items()
        ]

    def available(self):
        return self.is_available

    def required_roles_exist(self):
        return self.roles_present


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'STARTUP_TASKS_ENABLED': False,
        'APP_ADMIN_USERNAME': 'admin',
        'APP_ADMIN_PASSWORD': 'AdminPass123',
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
def fake_idp(app):
    """Swap the identity provider client for an in-memory fake."""
    original = app.extensions['idp']
    fake = FakeIdpClient()
    app.extensions['idp'] = fake
    yield fake
    app.extensions['idp'] = original


def make_user(db_session, fake_idp, username, role=Role.EMPLOYEE, *, active=True, linked=True) -> User:
    """Create a local user, with a matching identity provider account when linked."""
    external_id = fake_idp.add_account(username, role) if linked else None
    user = User(
        external_id=external_id,
        username=username,
        role=Role(role).value,
        active=active,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def manager(db_session, fake_idp):
    return make_user(db_session, fake_idp, "manager_a", Role.MANAGER)


@pytest.fixture(scope='function')
def employee(db_session, fake_idp):
    return make_user(db_session, fake_idp, "employee_a", Role.EMPLOYEE)


@pytest.fixture(scope='function')
def catalog(db_session):
    """Category C, product P, warehouses W1 and W2."""
    category = Category(name="Tools")
    db_session.add(category)
    db_session.flush()
    product = Product(name="Hammer", price=Decimal("12.50"), category_id=category.id)
    w1 = Warehouse(name="W1", location="Zurich")
    w2 = Warehouse(name="W2", location="Bern")
    db_session.add_all([product, w1, w2])
    db_session.commit()
    return {"category": category, "product": product, "w1": w1, "w2": w2}


def make_token(username: str, roles=(), client_roles=(), client_id: str = "warehouse-app") -> str:
    """Unsigned-for-our-purposes token; the API only reads claims."""
    claims = {
        "preferred_username": username,
        "realm_access": {"roles": list(roles)},
    }
    if client_roles:
        claims["resource_access"] = {client_id: {"roles": list(client_roles)}}
    return jwt.encode(claims, "test-secret", algorithm="HS256")


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def manager_headers(manager):
    return auth_headers(make_token(manager.username, roles=["MANAGER"]))


@pytest.fixture(scope='function')
def employee_headers(employee):
    return auth_headers(make_token(employee.username, roles=["EMPLOYEE"]))
