"""Pytest fixtures for bookstore tests."""

import asyncio
import uuid

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from shared.security_config import limiter
from bookstore.dependencies import Identity, get_database
from bookstore.main import app


def run(coro):
    """Run a coroutine from a synchronous test without touching the global loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def db():
    """An isolated in-memory database."""
    return AsyncMongoMockClient()[f"bookstore_test_{uuid.uuid4().hex}"]


@pytest.fixture
def client(db):
    """Test client wired to the in-memory database, rate limits off."""
    limiter.enabled = False
    app.dependency_overrides[get_database] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def register(client):
    """Register an account through the API and return its id and auth headers."""
    def _register(name="Alice", email="alice@example.com", password="secret123"):
        response = client.post("/users/register", json={
            "name": name,
            "email": email,
            "password": password,
        })
        assert response.status_code == 201, response.text
        data = response.json()["data"]
        return {
            "id": data["user"]["id"],
            "email": data["user"]["email"],
            "token": data["access_token"],
            "headers": auth_headers(data["access_token"]),
            "identity": Identity(user_id=data["user"]["id"], email=data["user"]["email"]),
        }
    return _register


@pytest.fixture
def user(register):
    return register("Alice", "alice@example.com")


@pytest.fixture
def other_user(register):
    return register("Bob", "bob@example.com")


@pytest.fixture
def admin(register, db):
    account = register("Admin", "admin@example.com")
    run(db.users.update_one({"_id": ObjectId(account["id"])}, {"$set": {"role": "admin"}}))
    return account


@pytest.fixture
def make_category(client, admin):
    def _make_category(name="Fantasy", description="Magical worlds"):
        response = client.post(
            "/categories",
            json={"name": name, "description": description},
            headers=admin["headers"],
        )
        assert response.status_code == 201, response.text
        return response.json()["data"]
    return _make_category


@pytest.fixture
def make_book(client, admin):
    def _make_book(**overrides):
        payload = {
            "title": "Dune",
            "author": "Frank Herbert",
            "description": "A desert planet and a precious spice",
            "price": 450,
            "stock": 15,
        }
        payload.update(overrides)
        response = client.post("/books", json=payload, headers=admin["headers"])
        assert response.status_code == 201, response.text
        return response.json()["data"]
    return _make_book


@pytest.fixture
def shipping():
    return {
        "shipping_address": {"address": "221B Baker Street", "city": "London"},
        "payment_method": "cash_on_delivery",
    }
