"""Direct tests of the order engine against the in-memory database."""

import re
from datetime import datetime

import pytest
from bson import ObjectId
from pymongo.errors import PyMongoError

from shared.utils import InvalidArgumentException, InternalException, ForbiddenException
from bookstore import order_engine
from bookstore.dependencies import Identity

ADDRESS = {"address": "221B Baker Street", "city": "London"}


async def add_user(db, name="Alice", role="user", cart=None):
    result = await db.users.insert_one({
        "name": name,
        "email": f"{name.lower()}@example.com",
        "role": role,
        "cart": cart or [],
    })
    return Identity(user_id=str(result.inserted_id), email=f"{name.lower()}@example.com")


async def add_book(db, title="Dune", price=450.0, stock=15):
    result = await db.books.insert_one({
        "title": title,
        "author": "Frank Herbert",
        "description": "",
        "price": price,
        "stock": stock,
        "created_at": datetime.utcnow(),
    })
    return str(result.inserted_id)


async def stock(db, book_id):
    book = await db.books.find_one({"_id": ObjectId(book_id)})
    return book["stock"]


class TestOrderNumber:
    async def test_sequence_is_shared_and_zero_padded(self, db):
        now = datetime(2024, 3, 9)
        first = await order_engine.generate_order_number(db, now)
        second = await order_engine.generate_order_number(db, now)
        assert first == "ORD-20240309-0001"
        assert second == "ORD-20240309-0002"

    async def test_defaults_to_today(self, db):
        number = await order_engine.generate_order_number(db)
        assert re.fullmatch(r"ORD-\d{8}-\d{4}", number)
        assert number[4:12] == datetime.utcnow().strftime("%Y%m%d")


class TestReservation:
    async def test_same_book_twice_beyond_stock_restores_first_line(self, db):
        identity = await add_user(db)
        book_id = await add_book(db, stock=3)

        with pytest.raises(InvalidArgumentException) as exc:
            await order_engine.create_order(
                db, identity,
                [{"book_id": book_id, "quantity": 2}, {"book_id": book_id, "quantity": 2}],
                ADDRESS, "card",
            )
        assert "Available: 1, Requested: 2" in exc.value.detail
        assert await stock(db, book_id) == 3
        assert await db.orders.count_documents({}) == 0

    async def test_failed_insert_hands_stock_back(self, db, monkeypatch):
        cart_line = {"title": "Dune", "author": "Frank Herbert", "price": 450.0, "quantity": 1}
        identity = await add_user(db, cart=[cart_line])
        book_id = await add_book(db, stock=5)

        async def broken_counter(db, now=None):
            raise PyMongoError("counter unavailable")

        monkeypatch.setattr(order_engine, "generate_order_number", broken_counter)

        with pytest.raises(InternalException):
            await order_engine.create_order(db, identity, [{"book_id": book_id, "quantity": 4}], ADDRESS, "card")

        assert await stock(db, book_id) == 5
        user = await db.users.find_one({"_id": ObjectId(identity.user_id)})
        assert user["cart"] == [cart_line]

    async def test_exact_stock_can_be_ordered(self, db):
        identity = await add_user(db)
        book_id = await add_book(db, stock=2)
        order = await order_engine.create_order(db, identity, [{"book_id": book_id, "quantity": 2}], ADDRESS, "card")
        assert order["status"] == "pending"
        assert await stock(db, book_id) == 0

    async def test_boolean_quantity_is_rejected(self, db):
        identity = await add_user(db)
        book_id = await add_book(db)
        with pytest.raises(InvalidArgumentException):
            await order_engine.create_order(db, identity, [{"book_id": book_id, "quantity": True}], ADDRESS, "card")


class TestFromCart:
    async def test_lines_with_book_ids_become_order_items(self, db):
        book_id = await add_book(db, stock=5)
        identity = await add_user(db, cart=[
            {"title": "Dune", "author": "Frank Herbert", "price": 1.0, "quantity": 2, "book_id": book_id},
        ])
        order = await order_engine.create_order_from_cart(db, identity, ADDRESS, "card")

        # Catalog price wins over the cart snapshot
        assert order["total_amount"] == 900.0
        assert await stock(db, book_id) == 3
        user = await db.users.find_one({"_id": ObjectId(identity.user_id)})
        assert user["cart"] == []

    async def test_line_without_book_id_is_rejected(self, db):
        identity = await add_user(db, cart=[{"title": "Dune", "author": "Frank Herbert", "price": 1.0, "quantity": 1}])
        with pytest.raises(InvalidArgumentException):
            await order_engine.create_order_from_cart(db, identity, ADDRESS, "card")


class TestStatusAndStats:
    async def test_admin_and_owner_permissions(self, db):
        owner = await add_user(db, "Alice")
        stranger = await add_user(db, "Bob")
        admin = await add_user(db, "Root", role="admin")
        book_id = await add_book(db)
        order = await order_engine.create_order(db, owner, [{"book_id": book_id, "quantity": 1}], ADDRESS, "card")

        with pytest.raises(ForbiddenException):
            await order_engine.update_status(db, stranger, order["id"], "cancelled")
        with pytest.raises(ForbiddenException):
            await order_engine.get_order(db, stranger, order["id"])

        shipped = await order_engine.update_status(db, admin, order["id"], "shipped", "via courier")
        assert shipped["status_history"][-1]["notes"] == "via courier"

        with pytest.raises(ForbiddenException):
            await order_engine.update_status(db, owner, order["id"], "cancelled")

    async def test_stats_count_delivered_as_completed(self, db):
        owner = await add_user(db, "Alice")
        admin = await add_user(db, "Root", role="admin")
        book_id = await add_book(db, price=10.0, stock=10)
        placed = [
            await order_engine.create_order(db, owner, [{"book_id": book_id, "quantity": 1}], ADDRESS, "card")
            for _ in range(3)
        ]
        await order_engine.update_status(db, admin, placed[0]["id"], "delivered")
        await order_engine.update_status(db, admin, placed[1]["id"], "shipped")

        stats = await order_engine.get_order_stats(db, owner)
        assert stats["total_orders"] == 3
        assert stats["completed_orders"] == 1
        assert stats["pending_orders"] == 1
        assert stats["cancelled_orders"] == 0
        assert str(stats["total_revenue"]) == "30.0"

    async def test_list_orders_paginates(self, db):
        owner = await add_user(db)
        book_id = await add_book(db, stock=10)
        for _ in range(3):
            await order_engine.create_order(db, owner, [{"book_id": book_id, "quantity": 1}], ADDRESS, "card")

        orders, pagination = await order_engine.list_orders(db, owner, page=2, limit=2)
        assert len(orders) == 1
        assert pagination.total == 3
        assert pagination.pages == 2
        assert orders[0]["order_number"].endswith("-0001")
