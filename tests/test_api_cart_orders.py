from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from ecofinds.dependencies import get_cart_manager
from ecofinds.main import app


@pytest.fixture
def shop(signup, list_product):
    """A seller with two listings and a logged-in buyer."""
    _, seller = signup("seller")
    buyer_user, buyer = signup("buyer")
    product_a = list_product(seller, title="Product A", price=10)
    product_b = list_product(seller, title="Product B", price=5)
    return {
        "seller": seller, "buyer": buyer, "buyer_id": buyer_user["id"],
        "a": product_a, "b": product_b,
    }


def test_cart_requires_login(client):
    assert client.get("/api/cart").status_code == 401
    assert client.post("/api/cart", json={"product_id": 1}).status_code == 401
    assert client.delete("/api/cart").status_code == 401
    assert client.post("/api/orders").status_code == 401


def test_add_to_cart_merges_lines(client, shop):
    buyer, product = shop["buyer"], shop["a"]
    first = client.post("/api/cart", headers=buyer, json={"product_id": product["id"], "quantity": 2})
    second = client.post("/api/cart", headers=buyer, json={"product_id": product["id"], "quantity": 3})
    assert first.status_code == second.status_code == 201
    assert second.json()["data"]["id"] == first.json()["data"]["id"]
    assert second.json()["data"]["quantity"] == 5

    lines = client.get("/api/cart", headers=buyer).json()["data"]
    assert len(lines) == 1
    assert lines[0]["quantity"] == 5
    assert lines[0]["product"]["title"] == "Product A"


def test_add_to_cart_defaults_to_one(client, shop):
    resp = client.post("/api/cart", headers=shop["buyer"], json={"product_id": shop["a"]["id"]})
    assert resp.status_code == 201
    assert resp.json()["data"]["quantity"] == 1


def test_add_missing_product(client, shop):
    resp = client.post("/api/cart", headers=shop["buyer"], json={"product_id": 999, "quantity": 1})
    assert resp.status_code == 404


@pytest.mark.parametrize("quantity", [0, -2, 1.5, "3"])
def test_add_rejects_bad_quantity(client, shop, quantity):
    resp = client.post("/api/cart", headers=shop["buyer"], json={"product_id": shop["a"]["id"], "quantity": quantity})
    assert resp.status_code == 400


def test_update_cart_quantity(client, shop):
    buyer = shop["buyer"]
    line = client.post("/api/cart", headers=buyer, json={"product_id": shop["a"]["id"], "quantity": 2}).json()["data"]

    resp = client.put(f"/api/cart/{line['id']}", headers=buyer, json={"quantity": 7})
    assert resp.status_code == 200
    assert resp.json()["data"]["quantity"] == 7


@pytest.mark.parametrize("quantity", [0, -1, 2.5, "4", None])
def test_update_cart_rejects_bad_quantity(client, shop, quantity):
    buyer = shop["buyer"]
    line = client.post("/api/cart", headers=buyer, json={"product_id": shop["a"]["id"]}).json()["data"]
    resp = client.put(f"/api/cart/{line['id']}", headers=buyer, json={"quantity": quantity})
    assert resp.status_code == 400


def test_update_missing_cart_item(client, shop):
    resp = client.put("/api/cart/123", headers=shop["buyer"], json={"quantity": 1})
    assert resp.status_code == 404


def test_other_users_cart_items_are_invisible(client, shop, store):
    line = client.post("/api/cart", headers=shop["buyer"], json={"product_id": shop["a"]["id"]}).json()["data"]

    resp = client.put(f"/api/cart/{line['id']}", headers=shop["seller"], json={"quantity": 9})
    assert resp.status_code == 404
    resp = client.delete(f"/api/cart/{line['id']}", headers=shop["seller"])
    assert resp.status_code == 204
    assert store.cart_items.get(line["id"]).quantity == 1


def test_remove_cart_item(client, shop):
    buyer = shop["buyer"]
    line = client.post("/api/cart", headers=buyer, json={"product_id": shop["a"]["id"]}).json()["data"]

    assert client.delete(f"/api/cart/{line['id']}", headers=buyer).status_code == 204
    assert client.delete(f"/api/cart/{line['id']}", headers=buyer).status_code == 204
    assert client.get("/api/cart", headers=buyer).json()["data"] == []


def test_clear_cart(client, shop):
    buyer = shop["buyer"]
    client.post("/api/cart", headers=buyer, json={"product_id": shop["a"]["id"]})
    client.post("/api/cart", headers=buyer, json={"product_id": shop["b"]["id"]})

    assert client.delete("/api/cart", headers=buyer).status_code == 204
    assert client.get("/api/cart", headers=buyer).json()["data"] == []
    assert client.delete("/api/cart", headers=buyer).status_code == 204


def test_cart_shows_deleted_product_as_null(client, shop):
    buyer, seller, product = shop["buyer"], shop["seller"], shop["a"]
    client.post("/api/cart", headers=buyer, json={"product_id": product["id"]})
    client.delete(f"/api/products/{product['id']}", headers=seller)

    (line,) = client.get("/api/cart", headers=buyer).json()["data"]
    assert line["product_id"] == product["id"]
    assert line["product"] is None


def test_checkout(client, shop):
    buyer = shop["buyer"]
    client.post("/api/cart", headers=buyer, json={"product_id": shop["a"]["id"], "quantity": 2})
    client.post("/api/cart", headers=buyer, json={"product_id": shop["b"]["id"], "quantity": 1})

    resp = client.post("/api/orders", headers=buyer)
    assert resp.status_code == 201
    order = resp.json()["data"]
    assert Decimal(order["total_amount"]) == Decimal("25")
    assert order["status"] == "completed"
    assert order["user_id"] == shop["buyer_id"]
    assert "items" not in order

    assert client.get("/api/cart", headers=buyer).json()["data"] == []

    (listed,) = client.get("/api/orders", headers=buyer).json()["data"]
    assert listed["id"] == order["id"]
    prices = sorted(Decimal(item["price"]) for item in listed["items"])
    assert prices == [Decimal("5"), Decimal("10")]
    assert {item["product"]["title"] for item in listed["items"]} == {"Product A", "Product B"}


def test_checkout_empty_cart(client, shop, store):
    resp = client.post("/api/orders", headers=shop["buyer"])
    assert resp.status_code == 400
    assert resp.json()["error"] == "Cart is empty"
    assert store.orders.all() == []


def test_order_history_keeps_price_and_dangling_products(client, shop):
    buyer, seller, product = shop["buyer"], shop["seller"], shop["a"]
    client.post("/api/cart", headers=buyer, json={"product_id": product["id"], "quantity": 1})
    client.post("/api/orders", headers=buyer)

    client.put(f"/api/products/{product['id']}", headers=seller, json={"price": 99})
    (order,) = client.get("/api/orders", headers=buyer).json()["data"]
    assert Decimal(order["items"][0]["price"]) == Decimal("10")
    assert Decimal(order["items"][0]["product"]["price"]) == Decimal("99")

    client.delete(f"/api/products/{product['id']}", headers=seller)
    (order,) = client.get("/api/orders", headers=buyer).json()["data"]
    assert order["items"][0]["product"] is None
    assert order["items"][0]["product_id"] == product["id"]


def test_orders_are_private(client, shop):
    client.post("/api/cart", headers=shop["buyer"], json={"product_id": shop["a"]["id"]})
    client.post("/api/orders", headers=shop["buyer"])
    assert client.get("/api/orders", headers=shop["seller"]).json()["data"] == []


def test_unexpected_errors_are_generic(client, shop, store):
    class ExplodingCart:
        def list_with_products(self, user_id):
            raise RuntimeError("secret internals")

    app.dependency_overrides[get_cart_manager] = lambda: ExplodingCart()
    try:
        with TestClient(app, raise_server_exceptions=False) as quiet_client:
            resp = quiet_client.get("/api/cart", headers=shop["buyer"])
    finally:
        del app.dependency_overrides[get_cart_manager]

    assert resp.status_code == 500
    assert resp.json() == {"success": False, "error": "Internal server error", "details": None}
    assert "secret" not in resp.text
