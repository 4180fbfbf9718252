"""Tests for the embedded shopping cart."""

import asyncio
from decimal import Decimal

import pytest

from shared.utils import NotFoundException
from bookstore import cart


def add(client, user, **item):
    payload = {"title": "Dune", "author": "Frank Herbert", "price": 450, "description": "Spice"}
    payload.update(item)
    return client.post("/users/cart/add", json=payload, headers=user["headers"])


class TestAddItem:
    def test_first_add_creates_line_with_quantity_one(self, client, user):
        response = add(client, user)
        assert response.status_code == 200
        cart = response.json()["data"]
        assert len(cart) == 1
        assert cart[0]["title"] == "Dune"
        assert cart[0]["quantity"] == 1
        assert cart[0]["added_at"]

    def test_same_title_twice_increments_quantity(self, client, user):
        add(client, user)
        cart = add(client, user).json()["data"]
        assert len(cart) == 1
        assert cart[0]["quantity"] == 2

    def test_repeat_add_keeps_original_price(self, client, user):
        add(client, user, price=450)
        cart = add(client, user, price=999).json()["data"]
        assert Decimal(str(cart[0]["price"])) == Decimal("450")

    def test_different_titles_make_separate_lines(self, client, user):
        add(client, user)
        cart = add(client, user, title="Foundation", author="Isaac Asimov").json()["data"]
        assert [line["title"] for line in cart] == ["Dune", "Foundation"]

    def test_same_title_different_book_collides(self, client, user):
        add(client, user, book_id="64b000000000000000000001")
        cart = add(client, user, book_id="64b000000000000000000002", author="Someone Else").json()["data"]
        assert len(cart) == 1
        assert cart[0]["book_id"] == "64b000000000000000000001"
        assert cart[0]["quantity"] == 2

    def test_missing_price_is_rejected(self, client, user):
        response = client.post("/users/cart/add", json={"title": "Dune", "author": "Frank Herbert"}, headers=user["headers"])
        assert response.status_code == 400

    def test_cart_requires_authentication(self, client):
        assert client.get("/users/cart").status_code == 401


class TestUpdateItem:
    def test_quantity_zero_removes_line(self, client, user):
        add(client, user)
        response = client.put("/users/cart/update", json={"title": "Dune", "quantity": 0}, headers=user["headers"])
        assert response.status_code == 200
        assert response.json()["data"] == []

    def test_positive_quantity_replaces_only_quantity(self, client, user):
        add(client, user)
        before = client.get("/users/cart", headers=user["headers"]).json()["data"][0]
        response = client.put("/users/cart/update", json={"title": "Dune", "quantity": 5}, headers=user["headers"])
        after = response.json()["data"][0]
        assert after["quantity"] == 5
        for field in ("title", "author", "price", "description", "added_at"):
            assert after[field] == before[field]

    def test_unknown_title_is_not_found(self, client, user):
        add(client, user)
        response = client.put("/users/cart/update", json={"title": "Emma", "quantity": 2}, headers=user["headers"])
        assert response.status_code == 404
        assert response.json()["error"] == "Item not found in cart"

    def test_negative_quantity_is_rejected(self, client, user):
        add(client, user)
        response = client.put("/users/cart/update", json={"title": "Dune", "quantity": -1}, headers=user["headers"])
        assert response.status_code == 400


class TestRemoveAndClear:
    def test_remove_filters_out_title(self, client, user):
        add(client, user)
        add(client, user, title="Foundation")
        response = client.request("DELETE", "/users/cart/remove", json={"title": "Dune"}, headers=user["headers"])
        assert response.status_code == 200
        assert [line["title"] for line in response.json()["data"]] == ["Foundation"]

    def test_remove_absent_title_is_idempotent(self, client, user):
        add(client, user)
        response = client.request("DELETE", "/users/cart/remove", json={"title": "Emma"}, headers=user["headers"])
        assert response.status_code == 200
        assert len(response.json()["data"]) == 1

    def test_clear_empties_cart(self, client, user):
        add(client, user)
        add(client, user, title="Foundation")
        response = client.post("/users/cart/clear", headers=user["headers"])
        assert response.status_code == 200
        assert response.json()["data"] == []
        assert client.get("/users/cart", headers=user["headers"]).json()["data"] == []

    def test_carts_are_per_user(self, client, user, other_user):
        add(client, user)
        assert client.get("/users/cart", headers=other_user["headers"]).json()["data"] == []


class TestCartStore:
    async def test_concurrent_adds_all_count(self, db):
        result = await db.users.insert_one({"name": "Alice", "email": "alice@example.com", "role": "user", "cart": []})
        user_id = str(result.inserted_id)
        line = {"title": "Dune", "author": "Frank Herbert", "price": 450}

        await asyncio.gather(*[cart.add_item(db, user_id, dict(line)) for _ in range(5)])

        items = await cart.get_cart(db, user_id)
        assert len(items) == 1
        assert items[0]["quantity"] == 5

    async def test_add_keeps_other_lines_written_in_between(self, db):
        result = await db.users.insert_one({"name": "Alice", "email": "alice@example.com", "role": "user", "cart": []})
        user_id = str(result.inserted_id)

        await cart.add_item(db, user_id, {"title": "Dune", "author": "Frank Herbert", "price": 450})
        await db.users.update_one(
            {"_id": result.inserted_id},
            {"$push": {"cart": {"title": "Emma", "author": "Jane Austen", "price": 120.0, "quantity": 1}}}
        )
        items = await cart.add_item(db, user_id, {"title": "Dune", "author": "Frank Herbert", "price": 450})

        assert [(i["title"], i["quantity"]) for i in items] == [("Dune", 2), ("Emma", 1)]

    async def test_missing_user_is_not_found(self, db):
        with pytest.raises(NotFoundException):
            await cart.add_item(db, "64b000000000000000000001", {"title": "Dune", "author": "X", "price": 1})
        with pytest.raises(NotFoundException):
            await cart.update_item(db, "64b000000000000000000001", "Dune", 2)
        with pytest.raises(NotFoundException):
            await cart.clear(db, "64b000000000000000000001")
