"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import uuid
from typing import Any, Callable, Dict, Optional

import mongomock
import pytest
from bson import ObjectId

from eventx.app import create_app
from eventx.booking import BookingCoordinator
from eventx.db import EVENTS, ensure_indexes, iso_now
from eventx.events import EventService
from eventx.gate import ValidationGate
from eventx.ledger import CapacityLedger
from tests.helpers import ADMIN_EMAIL, ADMIN_PASSWORD, seating_plan

DEFAULT_PLAN = seating_plan()


@pytest.fixture
def db():
    database = mongomock.MongoClient()[f"eventx_{uuid.uuid4().hex}"]
    ensure_indexes(database)
    return database


@pytest.fixture
def ledger(db) -> CapacityLedger:
    return CapacityLedger(db)


@pytest.fixture
def booking(db, ledger) -> BookingCoordinator:
    return BookingCoordinator(db, ledger)


@pytest.fixture
def gate(db) -> ValidationGate:
    return ValidationGate(db)


@pytest.fixture
def event_service(db, ledger) -> EventService:
    return EventService(db, ledger)


@pytest.fixture
def make_event(db) -> Callable[..., ObjectId]:
    def _make(
        capacity: int = 10,
        price: float = 25.0,
        status: str = "active",
        booked_seats: int = 0,
        plan: Optional[Dict[str, Any]] = DEFAULT_PLAN,
        database=None,
    ) -> ObjectId:
        target = database if database is not None else db
        doc = {
            "organizer_id": ObjectId(),
            "title": "Launch Night",
            "description": "",
            "category": "concert",
            "dt": "2099-03-01T19:00:00+00:00",
            "venue": "Hall A",
            "price": price,
            "capacity": capacity,
            "booked_seats": booked_seats,
            "holders": [ObjectId() for _ in range(booked_seats)],
            "seating_plan": plan,
            "status": status,
            "created_at": iso_now(),
            "updated_at": iso_now(),
        }
        return target[EVENTS].insert_one(doc).inserted_id

    return _make


@pytest.fixture
def user_id() -> ObjectId:
    return ObjectId()


# -------------------------
# HTTP
# -------------------------
@pytest.fixture
def app(db):
    return create_app(
        db=db,
        settings={
            "TESTING": True,
            "SECRET_KEY": "test-secret",
            "DEFAULT_ADMIN_EMAIL": ADMIN_EMAIL,
            "DEFAULT_ADMIN_PASSWORD": ADMIN_PASSWORD,
        },
    )


@pytest.fixture
def new_client(app):
    def _client(email: str = "", password: str = "secret1", role: str = "attendee"):
        client = app.test_client()
        if email == ADMIN_EMAIL:
            resp = client.post("/api/login", json={"email": email, "password": ADMIN_PASSWORD})
            assert resp.status_code == 200, resp.get_json()
        elif email:
            resp = client.post("/api/register", json={"email": email, "password": password, "role": role})
            assert resp.status_code == 201, resp.get_json()
        return client

    return _client
