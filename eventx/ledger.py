"""Event capacity ledger.

The only code path that mutates ``events.booked_seats``. Every mutation is a
single conditional update on the event document, so the bound
``0 <= booked_seats <= capacity`` is checked and applied by the database in
one step rather than read-then-written.

Each reserved seat is recorded in the event's ``holders`` array (the ticket id
that holds it) by the same update that moves the counter, so
``booked_seats == len(holders)`` always holds and releasing a hold twice is a
no-op.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, Iterable, Optional

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.database import Database

from eventx import config
from eventx.db import EVENTS, SEAT_CLAIMS, TICKETS, iso_now, now_utc, storage_errors
from eventx.errors import ApiError, BelowSoldCount, EventFull, EventNotBookable, NotFound, WriteContention
from eventx.lifecycle import SEAT_HOLDING_STATUSES, status_values

logger = logging.getLogger(__name__)

WITHOUT_HOLDERS = {"holders": 0}


class CapacityLedger:
    def __init__(
        self,
        db: Database,
        max_attempts: int = config.RESERVE_MAX_ATTEMPTS,
        grace_seconds: int = config.HOLD_GRACE_SECONDS,
    ) -> None:
        self._events = db[EVENTS]
        self._tickets = db[TICKETS]
        self._claims = db[SEAT_CLAIMS]
        self.max_attempts = max(1, max_attempts)
        self.grace = timedelta(seconds=max(0, grace_seconds))

    def _load(self, event_id: Any) -> Dict[str, Any]:
        event = self._events.find_one({"_id": event_id}, {"capacity": 1, "booked_seats": 1, "status": 1})
        if event is None:
            raise NotFound("Event", event_id)
        return event

    @storage_errors()
    def reserve(self, event_id: Any, holder: Optional[ObjectId] = None, statuses: Optional[Iterable[Any]] = None) -> Dict[str, Any]:
        """Take one seat for ``holder``. Returns the event document as of the increment.

        The filter pins the capacity that was read, so a concurrent resize
        makes the update miss and the loop re-reads instead of applying a
        stale bound. Reserving for a holder that already has a seat returns
        the event unchanged.
        """
        holder = holder if holder is not None else ObjectId()
        allowed = [getattr(s, "value", s) for s in statuses] if statuses is not None else None
        for _ in range(self.max_attempts):
            event = self._load(event_id)
            if allowed is not None and event.get("status") not in allowed:
                raise EventNotBookable(event_id, event.get("status", ""))
            capacity = int(event.get("capacity", 0))
            if int(event.get("booked_seats", 0)) >= capacity:
                raise EventFull(event_id)

            query: Dict[str, Any] = {
                "_id": event_id,
                "capacity": capacity,
                "booked_seats": {"$lt": capacity},
                "holders": {"$ne": holder},
            }
            if allowed is not None:
                query["status"] = {"$in": allowed}
            updated = self._events.find_one_and_update(
                query,
                {"$inc": {"booked_seats": 1}, "$push": {"holders": holder}, "$set": {"updated_at": iso_now()}},
                projection=WITHOUT_HOLDERS,
                return_document=ReturnDocument.AFTER,
            )
            if updated is not None:
                return updated
            held = self._events.find_one({"_id": event_id, "holders": holder}, WITHOUT_HOLDERS)
            if held is not None:
                return held
        logger.warning("Gave up reserving a seat on event %s after %d attempts", event_id, self.max_attempts)
        raise WriteContention(event_id)

    @storage_errors()
    def release(self, event_id: Any, holder: ObjectId) -> bool:
        """Give back the seat held by ``holder``. Returns False if it held none."""
        res = self._events.update_one(
            {"_id": event_id, "holders": holder, "booked_seats": {"$gt": 0}},
            {"$inc": {"booked_seats": -1}, "$pull": {"holders": holder}, "$set": {"updated_at": iso_now()}},
        )
        if res.matched_count:
            return True
        self._load(event_id)
        logger.warning("Release on event %s for %s, which holds no seat; counter unchanged", event_id, holder)
        return False

    @storage_errors()
    def resize(self, event_id: Any, new_capacity: int) -> Dict[str, Any]:
        if isinstance(new_capacity, bool) or not isinstance(new_capacity, int) or new_capacity < 0:
            raise ApiError("capacity must be a non-negative integer.", 400, "validation_error", {"field": "capacity"})
        updated = self._events.find_one_and_update(
            {"_id": event_id, "booked_seats": {"$lte": new_capacity}},
            {"$set": {"capacity": new_capacity, "updated_at": iso_now()}},
            projection=WITHOUT_HOLDERS,
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            event = self._load(event_id)
            raise BelowSoldCount(new_capacity, int(event.get("booked_seats", 0)))
        logger.info("Event %s resized to capacity %d", event_id, new_capacity)
        return updated

    @storage_errors()
    def booked_seats(self, event_id: Any) -> int:
        return int(self._load(event_id).get("booked_seats", 0))

    def _settled(self, ticket_id: Any) -> bool:
        """True once a hold or claim with no ticket can no longer be an in-flight booking."""
        if not isinstance(ticket_id, ObjectId):
            return True
        return ticket_id.generation_time <= now_utc() - self.grace

    @storage_errors()
    def reconcile(self, event_id: Any) -> int:
        """Repair holds and seat claims that no longer match a ticket.

        Released: holds whose ticket is cancelled or refunded, and holds whose
        ticket was never written once the grace period has passed. Restored:
        seat-holding tickets that lost their hold. Dropped: seat claims of
        tickets that no longer hold a seat. Holds of bookings still in flight
        are left alone, so the counter never drops below what is committed.
        Returns ``booked_seats`` after the repair.
        """
        event = self._events.find_one({"_id": event_id}, {"holders": 1})
        if event is None:
            raise NotFound("Event", event_id)
        holding = status_values(SEAT_HOLDING_STATUSES)
        holders = list(event.get("holders") or [])
        statuses = {t["_id"]: t.get("status") for t in self._tickets.find({"_id": {"$in": holders}}, {"status": 1})}

        released = 0
        for holder in holders:
            status = statuses.get(holder)
            if status in holding:
                continue
            if status is None and not self._settled(holder):
                continue
            if self.release(event_id, holder):
                released += 1

        restored = 0
        held = set(holders)
        for ticket in self._tickets.find({"event_id": event_id, "status": {"$in": holding}}, {"_id": 1}):
            if ticket["_id"] in held:
                continue
            res = self._events.update_one(
                {"_id": event_id, "holders": {"$ne": ticket["_id"]}},
                {"$inc": {"booked_seats": 1}, "$push": {"holders": ticket["_id"]}, "$set": {"updated_at": iso_now()}},
            )
            restored += res.modified_count

        claims = list(self._claims.find({"event_id": event_id}, {"ticket_id": 1}))
        claim_tickets = {
            t["_id"]: t.get("status")
            for t in self._tickets.find({"_id": {"$in": [c.get("ticket_id") for c in claims]}}, {"status": 1})
        }
        dropped = 0
        for claim in claims:
            ticket_id = claim.get("ticket_id")
            status = claim_tickets.get(ticket_id)
            if status in holding:
                continue
            if status is None and not self._settled(ticket_id):
                continue
            dropped += self._claims.delete_one({"_id": claim["_id"], "ticket_id": ticket_id}).deleted_count

        if released or restored or dropped:
            logger.warning(
                "Ledger drift on event %s: released=%d restored=%d claims_dropped=%d",
                event_id,
                released,
                restored,
                dropped,
            )
        return self.booked_seats(event_id)
