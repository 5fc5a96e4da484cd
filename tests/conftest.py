import mongomock
import pytest
from fastapi.testclient import TestClient

import accounts
import catalog
import database
from auth import ADMIN_COOKIE, TOKEN_COOKIE, issue_token, session_claims
from main import app

ADMIN_EMAIL = "admin@threadline.shop"
ADMIN_PASSWORD = "s3cret-admin"


@pytest.fixture(autouse=True)
def env(monkeypatch):
    monkeypatch.setenv("JWT_SECRET", "test-secret")
    monkeypatch.setenv("ADMIN_EMAIL", ADMIN_EMAIL)
    monkeypatch.setenv("ADMIN_PASSWORD", ADMIN_PASSWORD)
    monkeypatch.delenv("ORDER_STOCK_DECREMENT", raising=False)


@pytest.fixture
def db():
    mdb = mongomock.MongoClient()["threadline_test"]
    database.ensure_indexes(mdb)
    return mdb


@pytest.fixture
def client(db):
    app.dependency_overrides[database.get_db] = lambda: db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def admin_client(client):
    client.cookies.set(ADMIN_COOKIE, issue_token({"email": ADMIN_EMAIL, "role": "admin"}))
    return client


@pytest.fixture
def shopper(client, db):
    user = accounts.register_user(db, "Asha Rao", "asha@example.com", "hunter22")
    client.cookies.set(TOKEN_COOKIE, issue_token(session_claims(user)))
    return user


@pytest.fixture
def product_payload():
    def make(**overrides):
        payload = {
            "name": "Classic Crew Tee",
            "sku": "TEE-001",
            "images": [
                {"url": "https://cdn.threadline.shop/tee-front.jpg", "alt": "front", "isMain": True},
                {"url": "https://cdn.threadline.shop/tee-back.jpg", "alt": "back", "isMain": False},
            ],
            "realPrice": 1000,
            "discountedPrice": 750,
            "description": "Heavyweight cotton crew neck tee.",
            "shortDescription": "Heavyweight tee",
            "sizes": [{"name": "S", "stock": 4}, {"name": "M", "stock": 6}, {"name": "L", "stock": 0}],
            "category": "tees",
            "tags": [{"value": "cotton"}, {"value": "basics"}],
            "isAvailable": True,
        }
        payload.update(overrides)
        return payload

    return make


@pytest.fixture
def create_product(db, product_payload):
    """Insert a product straight through the catalog service."""
    def make(**overrides):
        return catalog.create_product(db, product_payload(**overrides))

    return make
