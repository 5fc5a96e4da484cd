"""
MongoDB access for the store.

One process-wide connector owns the client. Collections are named after the
lowercased schema class: product, user, order.
"""

import logging
import os
import threading
import time
from concurrent.futures import Future
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

from errors import ConfigurationError, DatabaseConnectionError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_NAME = "threadline"
CONNECT_ATTEMPTS = 3
CONNECT_RETRY_DELAY = 0.5


class MongoConnector:
    """Lazily opens a single shared database handle.

    The first caller of connect() owns the connection attempt; anyone who
    arrives while it is in flight waits on the same future and gets the same
    database or the same error. A failed attempt is forgotten so the next
    call tries again.
    """

    def __init__(self, url: Optional[str] = None, name: Optional[str] = None, client_factory=MongoClient):
        self._url = url
        self._name = name
        self._client_factory = client_factory
        self._lock = threading.Lock()
        self._future: Optional[Future] = None
        self.client = None

    @property
    def url(self) -> Optional[str]:
        return self._url if self._url is not None else os.getenv("DATABASE_URL")

    @property
    def name(self) -> str:
        return self._name or os.getenv("DATABASE_NAME") or DEFAULT_DATABASE_NAME

    @property
    def connected(self) -> bool:
        future = self._future
        return future is not None and future.done() and future.exception() is None

    def connect(self) -> Database:
        with self._lock:
            future = self._future
            owner = future is None
            if owner:
                future = Future()
                self._future = future

        if not owner:
            return future.result()

        try:
            db = self._open()
        except Exception as exc:
            with self._lock:
                self._future = None
            future.set_exception(exc)
            raise
        future.set_result(db)
        return db

    def _open(self) -> Database:
        url = self.url
        if not url:
            raise ConfigurationError("DATABASE_URL is not set")
        client = None
        try:
            client = self._client_factory(
                url,
                maxPoolSize=10,
                serverSelectionTimeoutMS=5000,
                socketTimeoutMS=45000,
            )
            client.admin.command("ping")
            db = client[self.name]
            ensure_indexes(db)
        except PyMongoError as exc:
            logger.error("Error connecting to MongoDB: %s", exc)
            if client is not None:
                client.close()
            raise DatabaseConnectionError(f"Could not connect to database: {exc}", cause=exc) from exc
        self.client = client
        logger.info("Connected to MongoDB database %s", self.name)
        return db

    def reset(self) -> None:
        """Forget the current connection so the next connect() opens a new one."""
        with self._lock:
            client, self.client = self.client, None
            self._future = None
        if client is not None:
            client.close()


connector = MongoConnector()


def ensure_indexes(db: Database) -> None:
    db["product"].create_index([("slug", ASCENDING)], unique=True)
    db["product"].create_index([("sku", ASCENDING)], unique=True)
    db["product"].create_index([("category", ASCENDING)])
    db["user"].create_index([("email", ASCENDING)], unique=True)
    db["order"].create_index([("user", ASCENDING), ("createdAt", DESCENDING)])


def get_db() -> Database:
    """FastAPI dependency yielding the shared database.

    Retries the connection a few times before giving up with a 503.
    """
    last_error = None
    for attempt in range(1, CONNECT_ATTEMPTS + 1):
        try:
            return connector.connect()
        except DatabaseConnectionError as exc:
            last_error = exc
            logger.warning("Database connection attempt %d/%d failed", attempt, CONNECT_ATTEMPTS)
            if attempt < CONNECT_ATTEMPTS:
                time.sleep(CONNECT_RETRY_DELAY)
    raise DatabaseConnectionError("Database unavailable, please try again later", cause=last_error.cause)


# Utilities

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def oid(value: Union[str, ObjectId, None]) -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except Exception:
        raise ValidationError("Invalid ID format")


def serialize(doc: Any) -> Any:
    """Make a Mongo document JSON friendly: _id -> id, ObjectId -> str, datetime -> ISO."""
    if isinstance(doc, dict):
        out = {}
        for k, v in doc.items():
            if k == "_id":
                out["id"] = str(v) if v is not None else None
            else:
                out[k] = serialize(v)
        return out
    if isinstance(doc, list):
        return [serialize(v) for v in doc]
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, datetime):
        return doc.isoformat()
    return doc


def create_document(db: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    if isinstance(data, BaseModel):
        data_dict = data.model_dump(by_alias=True)
    else:
        data_dict = dict(data)
    now = utcnow()
    data_dict["createdAt"] = now
    data_dict["updatedAt"] = now
    result = db[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(
    db: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def connection_status(db: Optional[Database] = None) -> Dict[str, Any]:
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": connector.name,
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        if db is None:
            db = connector.connect()
        response["database"] = "✅ Available"
        response["connection_status"] = "Connected"
        response["collections"] = db.list_collection_names()[:10]
        response["database"] = "✅ Connected & Working"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response
