"""MongoDB access: connection, indexes and storage error translation."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import ConnectionFailure, ExecutionTimeout, PyMongoError, WTimeoutError

from eventx import config
from eventx.errors import ApiError, StorageUnavailable

logger = logging.getLogger(__name__)

USERS = "users"
EVENTS = "events"
TICKETS = "tickets"
SEAT_CLAIMS = "seat_claims"

TRANSIENT_ERRORS = (ConnectionFailure, ExecutionTimeout, WTimeoutError)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def iso_now() -> str:
    return now_utc().isoformat()


def to_oid(value: Any, field: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise ApiError(f"Invalid {field}.", 400, "validation_error", {"field": field})


def connect(uri: str = config.MONGO_URI, db_name: str = config.DB_NAME) -> Database:
    try:
        client = MongoClient(
            uri,
            serverSelectionTimeoutMS=config.MONGO_TIMEOUT_MS,
            connectTimeoutMS=config.MONGO_TIMEOUT_MS,
            socketTimeoutMS=config.MONGO_SOCKET_TIMEOUT_MS,
            retryWrites=True,
        )
        # Verify connectivity early (will raise if unreachable)
        client.admin.command("ping")
    except PyMongoError as e:
        logger.exception("MongoDB connection failed")
        raise RuntimeError(f"MongoDB connection failed: {e}") from e
    return client[db_name]


def ensure_indexes(db: Database) -> None:
    db[USERS].create_index([("email", ASCENDING)], unique=True)
    db[EVENTS].create_index([("organizer_id", ASCENDING), ("dt", ASCENDING)])
    db[EVENTS].create_index([("status", ASCENDING), ("dt", ASCENDING)])
    db[TICKETS].create_index([("ticket_number", ASCENDING)], unique=True)
    db[TICKETS].create_index([("event_id", ASCENDING), ("status", ASCENDING)])
    db[TICKETS].create_index([("user_id", ASCENDING), ("booked_at", DESCENDING)])
    db[SEAT_CLAIMS].create_index([("event_id", ASCENDING)])


@contextmanager
def storage_errors() -> Iterator[None]:
    """Translate driver exceptions into typed API errors.

    Timeouts and lost connections become ``StorageUnavailable`` (safe to
    retry); anything else from the driver is a non-retryable ``db_error``.
    Usable as a decorator.
    """
    try:
        yield
    except TRANSIENT_ERRORS as e:
        logger.warning("Transient storage error: %s", e)
        raise StorageUnavailable(str(e)) from e
    except PyMongoError as e:
        logger.exception("Storage error")
        raise ApiError("Database error.", 500, "db_error", {"detail": str(e)}) from e
