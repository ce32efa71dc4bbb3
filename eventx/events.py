"""Event management: the collaborator that owns event documents.

Capacity changes go through the ledger and status changes through the event
state machine; this module never touches ``booked_seats`` directly.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database

from eventx import config
from eventx.db import EVENTS, iso_now, now_utc, storage_errors
from eventx.errors import ApiError, HasActiveTickets, InvalidState, NotFound
from eventx.ledger import WITHOUT_HOLDERS, CapacityLedger
from eventx.lifecycle import EventStatus, next_event_status
from eventx.seating import parse_seating_plan
from eventx.validators import is_iso_datetime, parse_iso_datetime, safe_float, safe_int

logger = logging.getLogger(__name__)

TEXT_FIELDS = ("title", "description", "category", "venue")


def _text(data: Dict[str, Any], key: str) -> str:
    return str(data.get(key) or "").strip()


def _check_future(dt: str) -> str:
    when = parse_iso_datetime(dt)
    if when is None:
        raise ApiError("Date/time must be ISO format (e.g., 2026-01-01T10:00:00+00:00).", 400, "validation_error", {"field": "dt"})
    if when <= now_utc():
        raise ApiError("Event date must be in the future.", 400, "validation_error", {"field": "dt"})
    return dt


class EventService:
    def __init__(self, db: Database, ledger: CapacityLedger) -> None:
        self.events = db[EVENTS]
        self.ledger = ledger

    @storage_errors()
    def get_event(self, event_id: Any) -> Dict[str, Any]:
        event = self.events.find_one({"_id": event_id}, WITHOUT_HOLDERS)
        if event is None:
            raise NotFound("Event", event_id)
        return event

    @storage_errors()
    def list_events(
        self, filters: Dict[str, str], page: int = 1, limit: int = config.EVENTS_PAGE_SIZE
    ) -> Tuple[List[Dict[str, Any]], int]:
        """Return one page of matching events (by date) and the total match count."""
        q = filters.get("q", "")
        ands: List[Dict[str, Any]] = []
        if q:
            ands.append(
                {
                    "$or": [
                        {"title": {"$regex": re.escape(q), "$options": "i"}},
                        {"description": {"$regex": re.escape(q), "$options": "i"}},
                        {"venue": {"$regex": re.escape(q), "$options": "i"}},
                    ]
                }
            )
        if filters.get("category"):
            ands.append({"category": {"$regex": f"^{re.escape(filters['category'])}$", "$options": "i"}})
        if filters.get("venue"):
            ands.append({"venue": {"$regex": re.escape(filters["venue"]), "$options": "i"}})
        if filters.get("status"):
            ands.append({"status": filters["status"]})
        for key, op in (("date_from", "$gte"), ("date_to", "$lte")):
            value = filters.get(key)
            if not value:
                continue
            if not is_iso_datetime(value):
                raise ApiError(f"{key} must be ISO format (e.g., 2026-01-01).", 400, "validation_error", {"field": key})
            ands.append({"dt": {op: value}})

        query: Dict[str, Any] = {"$and": ands} if ands else {}
        page, limit = max(1, page), max(1, limit)
        cursor = self.events.find(query, WITHOUT_HOLDERS).sort("dt", ASCENDING).skip((page - 1) * limit).limit(limit)
        return list(cursor), self.events.count_documents(query)

    @storage_errors()
    def events_for_organizer(self, organizer_id: Any = None, limit: int = 200) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {} if organizer_id is None else {"organizer_id": organizer_id}
        return list(self.events.find(query, WITHOUT_HOLDERS).sort("created_at", DESCENDING).limit(limit))

    @storage_errors()
    def create_event(self, organizer_id: Any, data: Dict[str, Any]) -> Dict[str, Any]:
        title = _text(data, "title")
        dt = _text(data, "dt")
        status = _text(data, "status") or EventStatus.DRAFT.value
        if status not in (EventStatus.DRAFT.value, EventStatus.UPCOMING.value):
            raise ApiError("New events start as draft or upcoming.", 400, "validation_error", {"field": "status"})
        if not title:
            raise ApiError("Title is required.", 400, "validation_error", {"field": "title"})
        _check_future(dt)

        doc = {
            "organizer_id": organizer_id,
            "title": title,
            "description": _text(data, "description"),
            "category": _text(data, "category"),
            "dt": dt,
            "venue": _text(data, "venue"),
            "price": safe_float(data.get("price", 0), "price", min_value=0.0),
            "capacity": safe_int(data.get("capacity"), "capacity", min_value=1),
            "booked_seats": 0,
            "holders": [],
            "seating_plan": parse_seating_plan(data.get("seating_plan")),
            "status": status,
            "created_at": iso_now(),
            "updated_at": iso_now(),
        }
        res = self.events.insert_one(doc)
        doc["_id"] = res.inserted_id
        logger.info("Created event %s (%s)", res.inserted_id, title)
        return doc

    @storage_errors()
    def update_event(self, event_id: Any, data: Dict[str, Any]) -> Dict[str, Any]:
        """Update plain fields; capacity is delegated to the ledger.

        ``price`` changes apply to future bookings only, tickets keep the price
        they were booked at.
        """
        self.get_event(event_id)
        updates: Dict[str, Any] = {}
        for k in TEXT_FIELDS:
            if k in data:
                updates[k] = _text(data, k)
        if "title" in updates and not updates["title"]:
            raise ApiError("Title cannot be empty.", 400, "validation_error", {"field": "title"})
        if "dt" in data:
            updates["dt"] = _check_future(_text(data, "dt"))
        if "price" in data:
            updates["price"] = safe_float(data.get("price"), "price", min_value=0.0)
        for blocked in ("status", "booked_seats", "holders"):
            if blocked in data:
                raise ApiError(f"{blocked} cannot be set here.", 400, "validation_error", {"field": blocked})
        plan = parse_seating_plan(data.get("seating_plan")) if "seating_plan" in data else None

        capacity = safe_int(data.get("capacity"), "capacity", min_value=1) if "capacity" in data else None

        if "seating_plan" in data:
            self._replace_seating_plan(event_id, plan)
        if capacity is not None:
            self.ledger.resize(event_id, capacity)

        if updates:
            updates["updated_at"] = iso_now()
            self.events.update_one({"_id": event_id}, {"$set": updates})
        return self.get_event(event_id)

    def _replace_seating_plan(self, event_id: Any, plan: Optional[Dict[str, Any]]) -> None:
        # Claimed seats must stay valid, so the plan is frozen once anything is booked.
        res = self.events.update_one(
            {"_id": event_id, "booked_seats": 0},
            {"$set": {"seating_plan": plan, "updated_at": iso_now()}},
        )
        if not res.matched_count:
            booked = int(self.get_event(event_id).get("booked_seats", 0))
            raise ApiError(
                "Seating plan cannot change once seats are booked.",
                409,
                "seats_booked",
                {"field": "seating_plan", "booked_seats": booked},
            )
        logger.info("Event %s seating plan replaced", event_id)

    @storage_errors()
    def transition_status(self, event_id: Any, target: str) -> Dict[str, Any]:
        event = self.get_event(event_id)
        current = event.get("status", EventStatus.DRAFT.value)
        new_status = next_event_status(current, target)
        updated = self.events.find_one_and_update(
            {"_id": event_id, "status": current},
            {"$set": {"status": new_status.value, "updated_at": iso_now()}},
            projection=WITHOUT_HOLDERS,
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            latest = self.get_event(event_id)
            raise InvalidState(latest.get("status", ""), new_status.value)
        logger.info("Event %s status %s -> %s", event_id, current, new_status.value)
        return updated

    @storage_errors()
    def delete_event(self, event_id: Any) -> None:
        res = self.events.delete_one({"_id": event_id, "booked_seats": 0})
        if res.deleted_count:
            logger.info("Deleted event %s", event_id)
            return
        event = self.get_event(event_id)
        raise HasActiveTickets(event_id, int(event.get("booked_seats", 0)))
