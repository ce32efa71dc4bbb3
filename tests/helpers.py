"""Test helpers: collection wrappers that force interleavings and faults,
invariant checks and a thread runner."""
from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional

from bson import ObjectId

from eventx.db import EVENTS, SEAT_CLAIMS, TICKETS
from eventx.errors import ApiError
from eventx.lifecycle import SEAT_HOLDING_STATUSES, status_values

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "Admin123!"


class AtomicCollection:
    """Serialises each call on a shared lock.

    mongomock is not thread-safe across a match-and-modify; MongoDB applies a
    single-document update atomically. One lock per call gives the same
    guarantee: every operation is atomic, sequences of operations are not.
    """

    def __init__(self, collection, lock: threading.RLock) -> None:
        self._collection = collection
        self._lock = lock

    def __getattr__(self, name: str) -> Any:
        attr = getattr(self._collection, name)
        if not callable(attr):
            return attr

        def call(*args, **kwargs):
            with self._lock:
                return attr(*args, **kwargs)

        return call


class AtomicDatabase:
    def __init__(self, db) -> None:
        self._db = db
        self._lock = threading.RLock()

    def __getitem__(self, name: str) -> AtomicCollection:
        return AtomicCollection(self._db[name], self._lock)


class HookedCollection:
    """Runs ``after_find_one(doc)`` after every ``find_one``."""

    def __init__(self, collection, after_find_one: Callable[[Optional[Dict[str, Any]]], None]) -> None:
        self._collection = collection
        self._after_find_one = after_find_one

    def find_one(self, *args, **kwargs):
        doc = self._collection.find_one(*args, **kwargs)
        self._after_find_one(doc)
        return doc

    def __getattr__(self, name: str) -> Any:
        return getattr(self._collection, name)


class BeforeInsert:
    """Runs ``hook()`` just before every ``insert_one``."""

    def __init__(self, collection, hook: Callable[[], None]) -> None:
        self._collection = collection
        self._hook = hook

    def insert_one(self, *args, **kwargs):
        self._hook()
        return self._collection.insert_one(*args, **kwargs)

    def __getattr__(self, name: str) -> Any:
        return getattr(self._collection, name)


class FailingInserts:
    """Raises ``exc`` from ``insert_one``; everything else passes through."""

    def __init__(self, collection, exc: BaseException) -> None:
        self._collection = collection
        self._exc = exc
        self.attempts = 0

    def insert_one(self, *args, **kwargs):
        self.attempts += 1
        raise self._exc

    def __getattr__(self, name: str) -> Any:
        return getattr(self._collection, name)


def assert_ledger_consistent(db, event_id: ObjectId) -> None:
    event = db[EVENTS].find_one({"_id": event_id})
    holding = {"event_id": event_id, "status": {"$in": status_values(SEAT_HOLDING_STATUSES)}}
    assert 0 <= event["booked_seats"] <= event["capacity"]
    assert event["booked_seats"] == db[TICKETS].count_documents(holding)
    holders = event.get("holders", [])
    assert len(holders) == event["booked_seats"]
    assert set(holders) == {t["_id"] for t in db[TICKETS].find(holding, {"_id": 1})}
    seated = dict(holding, seat_number={"$ne": None})
    assert db[SEAT_CLAIMS].count_documents({"event_id": event_id}) == db[TICKETS].count_documents(seated)


def run_concurrently(n: int, fn: Callable[[int], Any]) -> List[str]:
    """Run ``fn(i)`` on ``n`` threads released together; return outcome codes."""
    barrier = threading.Barrier(n)

    def task(i: int) -> str:
        barrier.wait()
        try:
            fn(i)
        except ApiError as e:
            return e.code
        return "ok"

    with ThreadPoolExecutor(max_workers=n) as pool:
        return list(pool.map(task, range(n)))


def seating_plan(rows: str = "ABCDES", per_row: int = 20, general_admission: bool = True) -> Dict[str, Any]:
    """One section; rows named by letter with seats ``A0`` .. ``A<per_row>``."""
    return {
        "general_admission": general_admission,
        "sections": [
            {
                "name": "Floor",
                "rows": [{"name": r, "seats": [f"{r}{n}" for n in range(per_row + 1)]} for r in rows],
            }
        ],
    }


def event_payload(**overrides) -> Dict[str, Any]:
    payload = {
        "title": "Launch Night",
        "description": "Opening show",
        "category": "concert",
        "dt": "2099-03-01T19:00:00+00:00",
        "venue": "Hall A",
        "price": 40,
        "capacity": 3,
        "status": "upcoming",
        "seating_plan": seating_plan(),
    }
    payload.update(overrides)
    return payload
