"""Whole-flow scenarios through the HTTP API."""

from decimal import Decimal

from pymongo.errors import ServerSelectionTimeoutError

from bookstore.main import app


def test_browse_fill_cart_and_check_out(client, user, shipping, make_category, make_book):
    scifi = make_category("Science Fiction")
    dune = make_book(title="Dune", price=450, stock=5, category=scifi["id"])

    line = {
        "title": dune["title"],
        "author": dune["author"],
        "price": 450,
        "book_id": dune["id"],
    }
    client.post("/users/cart/add", json=line, headers=user["headers"])
    cart = client.post("/users/cart/add", json=line, headers=user["headers"]).json()["data"]
    assert cart[0]["quantity"] == 2

    response = client.post("/orders/from-cart", json=shipping, headers=user["headers"])
    assert response.status_code == 201, response.text
    order = response.json()["data"]
    assert Decimal(order["total_amount"]) == Decimal("900")
    assert order["items"][0]["quantity"] == 2

    assert client.get(f"/books/{dune['id']}").json()["data"]["stock"] == 3
    assert client.get("/users/cart", headers=user["headers"]).json()["data"] == []

    mine = client.get("/orders", headers=user["headers"]).json()["data"]
    assert [o["order_number"] for o in mine] == [order["order_number"]]

    cancelled = client.put(f"/orders/{order['id']}/status", json={"status": "cancelled"}, headers=user["headers"])
    assert cancelled.json()["data"]["status"] == "cancelled"


def test_admin_stocks_catalog_and_customers_find_it(client, admin, make_category, make_book):
    fantasy = make_category("Fantasy")
    dune = make_book(title="Dune", author="Frank Herbert", price=450, stock=15, category=fantasy["id"])

    by_category = client.get(f"/books?category={fantasy['id']}").json()["data"]
    assert [b["id"] for b in by_category] == [dune["id"]]

    searched = client.get("/books/search?q=dune").json()["data"]
    assert [b["id"] for b in searched] == [dune["id"]]

    category = client.get(f"/categories/{fantasy['id']}").json()["data"]
    assert category["book_count"] == 1


class PingClient:
    """Stands in for the Mongo client on the health check's ping."""

    def __init__(self, error=None):
        self.error = error
        self.admin = self

    async def command(self, name):
        assert name == "ping"
        if self.error:
            raise self.error
        return {"ok": 1.0}


def test_health_when_database_unreachable(client, monkeypatch):
    monkeypatch.setattr(app, "mongodb_client", PingClient(ServerSelectionTimeoutError("no servers")), raising=False)
    response = client.get("/health")
    assert response.status_code == 503
    assert response.json() == {"success": False, "error": "Service Unhealthy", "details": None}


def test_health_when_database_reachable(client, monkeypatch):
    monkeypatch.setattr(app, "mongodb_client", PingClient(), raising=False)
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["database"] == "connected"
    assert body["service"] == "bookstore-service"
