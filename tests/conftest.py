import os

# Point the app at a throwaway in-memory database before it is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["BCRYPT_ROUNDS"] = "4"

import pytest

from librarian.app import app as flask_app
from librarian.accounts import assign_role, hash_password
from librarian.models import db, UserAccount
from librarian import catalog, members

PASSWORD = "secret123"


@pytest.fixture
def app():
    flask_app.config.update(TESTING=True, WTF_CSRF_ENABLED=False, ENFORCE_MEMBER_STATUS=False)
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_book(app):
    def _make(title="Dune", author="Frank Herbert", copies=1, **fields):
        return catalog.add_book(title, author, total_copies=copies, **fields)
    return _make


@pytest.fixture
def make_member(app):
    counter = {"n": 0}

    def _make(full_name="Alice Reader", email=None, status="active"):
        counter["n"] += 1
        email = email or f"reader{counter['n']}@example.com"
        return members.create_member(full_name, email, status=status)
    return _make


def _account(email, role, full_name="Test User"):
    account = UserAccount(email=email, password_hash=hash_password(PASSWORD), full_name=full_name)
    db.session.add(account)
    assign_role(account, role)
    db.session.commit()
    return account


@pytest.fixture
def make_account(app):
    return _account


def _logged_in(app, email):
    c = app.test_client()
    resp = c.post("/auth/login", json={"email": email, "password": PASSWORD})
    assert resp.status_code == 200, resp.get_json()
    return c


@pytest.fixture
def admin_client(app):
    _account("admin@example.com", "admin", "Ava Admin")
    return _logged_in(app, "admin@example.com")


@pytest.fixture
def staff_client(app):
    _account("desk@example.com", "staff", "Bob Librarian")
    return _logged_in(app, "desk@example.com")


@pytest.fixture
def member_client(app):
    resp = app.test_client().post("/auth/signup", json={
        "email": "carol@example.com",
        "password": PASSWORD,
        "full_name": "Carol Member",
    })
    assert resp.status_code == 201, resp.get_json()
    return _logged_in(app, "carol@example.com")
