import os

# Read by ecofinds.shared.utils.Settings at import time
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from ecofinds.cart import CartManager
from ecofinds.dependencies import get_store
from ecofinds.main import app
from ecofinds.orders import OrderAssembler
from ecofinds.shared.security_config import limiter
from ecofinds.store import MarketplaceStore

PASSWORD = "Password123"


@pytest.fixture
def store():
    return MarketplaceStore()


@pytest.fixture
def cart(store):
    return CartManager(store)


@pytest.fixture
def orders(store, cart):
    return OrderAssembler(store, cart)


@pytest.fixture
def make_user(store):
    """Insert a user straight into the store (no password hashing)."""
    def _make(username, email=None):
        return store.create_user({
            "username": username,
            "email": email or f"{username.lower()}@example.com",
            "password": "not-a-real-hash",
        })
    return _make


@pytest.fixture
def make_product(store):
    def _make(seller_id, title="Bamboo toothbrush", price="10", category_id=1, description=""):
        return store.create_product({
            "title": title,
            "description": description,
            "price": Decimal(price),
            "category_id": category_id,
            "seller_id": seller_id,
        })
    return _make


@pytest.fixture
def client(store):
    app.dependency_overrides[get_store] = lambda: store
    limiter.reset()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def signup(client):
    """Register through the API and log in; returns (user, auth headers)."""
    def _signup(username, email=None, password=PASSWORD):
        resp = client.post("/api/register", json={
            "username": username,
            "email": email or f"{username.lower()}@example.com",
            "password": password,
        })
        assert resp.status_code == 201, resp.text
        user = resp.json()["data"]

        resp = client.post("/api/login", json={"username": username, "password": password})
        assert resp.status_code == 200, resp.text
        token = resp.json()["data"]["access_token"]
        return user, {"Authorization": f"Bearer {token}"}
    return _signup


@pytest.fixture
def list_product(client):
    def _list(headers, title="Reusable bottle", price=10, category_id=1, description="Steel"):
        resp = client.post("/api/products", headers=headers, json={
            "title": title,
            "description": description,
            "price": price,
            "category_id": category_id,
        })
        assert resp.status_code == 201, resp.text
        return resp.json()["data"]
    return _list
