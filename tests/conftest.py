"""Pytest fixtures for the shop API tests."""

import uuid

import mongomock
import pytest
from fastapi.testclient import TestClient

import accounts
import catalog
from database import ensure_indexes, get_db
from schemas import Role
from security import PasswordHasher, TokenSigner, get_password_hasher, get_token_signer


@pytest.fixture
def db():
    """An in-memory database with the production indexes."""
    database = mongomock.MongoClient()["shop_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def hasher():
    # Lowest bcrypt cost keeps the suite fast.
    return PasswordHasher(rounds=4)


@pytest.fixture
def signer():
    return TokenSigner(secret="test-secret")


@pytest.fixture
def client(db, hasher, signer):
    from main import app

    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_password_hasher] = lambda: hasher
    app.dependency_overrides[get_token_signer] = lambda: signer
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_account(db, hasher, signer):
    """Create an account directly in storage and return it with auth headers."""

    def make(role="user", email=None, password="secret123", name="Test Person"):
        email = email or f"{role}-{uuid.uuid4().hex[:8]}@example.com"
        account = accounts.register(db, hasher, name, email, password, Role(role))
        token = signer.issue(account["id"], account["role"])
        return account, {"Authorization": f"Bearer {token}"}

    return make


@pytest.fixture
def make_product(db):
    def make(name="Widget", price=20.0, quantity=5, color="red", description=None):
        return catalog.create_product(
            db,
            {"name": name, "price": price, "quantity": quantity, "color": color, "description": description},
        )

    return make
