import threading
from datetime import datetime, timezone

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from pymongo.errors import ServerSelectionTimeoutError

import database
from database import MongoConnector, oid, serialize
from errors import ConfigurationError, DatabaseConnectionError, ValidationError
from main import app


class FakeClient:
    def __init__(self, url, **options):
        self.url = url
        self.options = options
        self._mongo = mongomock.MongoClient()
        self.admin = self
        self.closed = False

    def command(self, name):
        return {"ok": 1.0}

    def close(self):
        self.closed = True

    def __getitem__(self, name):
        return self._mongo[name]


def failing_factory(calls):
    def factory(url, **options):
        calls.append(url)
        raise ServerSelectionTimeoutError("no servers available")
    return factory


def test_missing_url_is_configuration_error(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(ConfigurationError):
        MongoConnector(client_factory=FakeClient).connect()


def test_connect_is_idempotent():
    created = []

    def factory(url, **options):
        client = FakeClient(url, **options)
        created.append(client)
        return client

    connector = MongoConnector(url="mongodb://db.internal:27017", name="shop", client_factory=factory)
    first = connector.connect()
    second = connector.connect()
    assert first is second
    assert len(created) == 1
    assert created[0].options["maxPoolSize"] == 10
    assert connector.connected
    assert "slug_1" in first["product"].index_information()


def test_failure_is_wrapped_and_retried_on_next_call():
    calls = []
    connector = MongoConnector(url="mongodb://down:27017", client_factory=failing_factory(calls))
    with pytest.raises(DatabaseConnectionError) as info:
        connector.connect()
    assert isinstance(info.value.cause, ServerSelectionTimeoutError)
    assert isinstance(info.value, ConnectionError)
    with pytest.raises(DatabaseConnectionError):
        connector.connect()
    assert len(calls) == 2
    assert not connector.connected


def test_concurrent_callers_share_one_attempt():
    started = threading.Event()
    release = threading.Event()
    calls = []

    def slow_factory(url, **options):
        calls.append(url)
        started.set()
        release.wait(5)
        return FakeClient(url, **options)

    connector = MongoConnector(url="mongodb://db.internal:27017", client_factory=slow_factory)
    results = []
    threads = [threading.Thread(target=lambda: results.append(connector.connect())) for _ in range(5)]
    threads[0].start()
    assert started.wait(5)
    for t in threads[1:]:
        t.start()
    release.set()
    for t in threads:
        t.join(5)

    assert len(calls) == 1
    assert len(results) == 5
    assert all(db is results[0] for db in results)


def test_get_db_retries_three_times(monkeypatch):
    calls = []
    monkeypatch.setattr(database, "CONNECT_RETRY_DELAY", 0)
    monkeypatch.setattr(database, "connector", MongoConnector(url="mongodb://down", client_factory=failing_factory(calls)))
    with pytest.raises(DatabaseConnectionError):
        database.get_db()
    assert len(calls) == 3


class UnreachableClient(FakeClient):
    def command(self, name):
        raise ServerSelectionTimeoutError("no servers available")


def test_failed_attempts_close_their_clients(monkeypatch):
    opened = []

    def factory(url, **options):
        client = UnreachableClient(url, **options)
        opened.append(client)
        return client

    monkeypatch.setattr(database, "CONNECT_RETRY_DELAY", 0)
    monkeypatch.setattr(database, "connector", MongoConnector(url="mongodb://down", client_factory=factory))
    with pytest.raises(DatabaseConnectionError):
        database.get_db()
    assert len(opened) == 3
    assert all(client.closed for client in opened)


def test_reset_closes_client_and_reconnects():
    created = []

    def factory(url, **options):
        client = FakeClient(url, **options)
        created.append(client)
        return client

    connector = MongoConnector(url="mongodb://db.internal:27017", client_factory=factory)
    connector.connect()
    connector.reset()
    assert created[0].closed
    assert not connector.connected

    connector.connect()
    assert len(created) == 2
    assert connector.client is created[1]
    assert not created[1].closed


def test_unreachable_database_is_503(monkeypatch):
    monkeypatch.setattr(database, "CONNECT_RETRY_DELAY", 0)
    monkeypatch.setattr(database, "connector", MongoConnector(url="mongodb://down", client_factory=failing_factory([])))
    with TestClient(app) as client:
        resp = client.get("/api/products")
    assert resp.status_code == 503


def test_health_reports_missing_configuration(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setattr(database, "connector", MongoConnector())
    with TestClient(app) as client:
        body = client.get("/test").json()
    assert body["backend"] == "✅ Running"
    assert body["connection_status"] == "Not Connected"
    assert "DATABASE_URL is not set" in body["database"]


def test_oid():
    value = ObjectId()
    assert oid(str(value)) == value
    assert oid(value) is value
    with pytest.raises(ValidationError):
        oid("123")
    with pytest.raises(ValidationError):
        oid(None)


def test_serialize_nested_values():
    pid = ObjectId()
    stamp = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    doc = {"_id": pid, "cart": [{"productId": pid, "quantity": 2}], "createdAt": stamp}
    assert serialize(doc) == {
        "id": str(pid),
        "cart": [{"productId": str(pid), "quantity": 2}],
        "createdAt": "2026-01-02T03:04:05+00:00",
    }


def test_create_document_stamps_timestamps():
    db = mongomock.MongoClient()["t"]
    inserted = database.create_document(db, "order", {"status": "Processing"})
    doc = db["order"].find_one({"_id": ObjectId(inserted)})
    assert doc["createdAt"] == doc["updatedAt"]
