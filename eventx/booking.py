"""Booking coordinator: the only place tickets are created.

A booking is three side effects: a seat claim (when a seat is requested), a
capacity reservation on the ledger, and the ticket document. Each step is
atomic on its own; if a later step fails, the earlier ones are undone before
the error propagates, so ``booked_seats`` always matches the number of
seat-holding tickets.
"""
from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from eventx.db import EVENTS, SEAT_CLAIMS, TICKETS, iso_now, now_utc, storage_errors
from eventx.errors import ApiError, EventNotBookable, InvalidState, NotFound, SeatTaken
from eventx.ledger import CapacityLedger
from eventx.lifecycle import BOOKABLE_EVENT_STATUSES, TicketStatus, is_bookable, transition_ticket
from eventx.seating import check_seat

logger = logging.getLogger(__name__)


def seat_key(event_id: Any, seat_number: str) -> str:
    return f"{event_id}:{seat_number}"


def normalize_seat(seat_number: Any) -> Optional[str]:
    if seat_number is None:
        return None
    seat = str(seat_number).strip()
    return seat or None


def new_ticket_number() -> str:
    return f"EVT-{now_utc():%Y%m%d}-{uuid.uuid4().hex[:8].upper()}"


class BookingCoordinator:
    def __init__(self, db: Database, ledger: CapacityLedger) -> None:
        self.ledger = ledger
        self.events = db[EVENTS]
        self.tickets = db[TICKETS]
        self.claims = db[SEAT_CLAIMS]

    # -------------------------
    # Seat claims
    # -------------------------
    def _claim_seat(self, event_id: ObjectId, seat_number: str, ticket_id: ObjectId) -> str:
        key = seat_key(event_id, seat_number)
        # Fast path only; the primary key on seat_claims is what enforces it.
        if self.claims.find_one({"_id": key}, {"_id": 1}) is not None:
            raise SeatTaken(event_id, seat_number)
        try:
            self.claims.insert_one(
                {
                    "_id": key,
                    "event_id": event_id,
                    "seat_number": seat_number,
                    "ticket_id": ticket_id,
                    "claimed_at": iso_now(),
                }
            )
        except DuplicateKeyError:
            raise SeatTaken(event_id, seat_number)
        return key

    def _drop_claim(self, key: str, ticket_id: ObjectId) -> None:
        self.claims.delete_one({"_id": key, "ticket_id": ticket_id})

    def _compensate(self, event_id: ObjectId, ticket_id: ObjectId, claim: Optional[str], reserved: bool) -> None:
        if reserved:
            try:
                self.ledger.release(event_id, ticket_id)
            except Exception:
                logger.exception("Compensating release failed for event %s; run reconcile", event_id)
        if claim is not None:
            try:
                self._drop_claim(claim, ticket_id)
            except Exception:
                logger.exception("Failed to drop seat claim %s", claim)

    # -------------------------
    # Commands
    # -------------------------
    @storage_errors()
    def book(self, event_id: ObjectId, user_id: ObjectId, seat_number: Any = None) -> Dict[str, Any]:
        event = self.events.find_one({"_id": event_id}, {"status": 1, "seating_plan": 1})
        if event is None:
            raise NotFound("Event", event_id)
        if not is_bookable(event.get("status")):
            raise EventNotBookable(event_id, event.get("status", ""))

        seat = normalize_seat(seat_number)
        check_seat(event.get("seating_plan"), seat)
        ticket_id = ObjectId()
        claim = self._claim_seat(event_id, seat, ticket_id) if seat else None
        reserved = False
        try:
            reserved_event = self.ledger.reserve(event_id, ticket_id, statuses=BOOKABLE_EVENT_STATUSES)
            reserved = True
            doc = {
                "_id": ticket_id,
                "ticket_number": new_ticket_number(),
                "event_id": event_id,
                "user_id": user_id,
                "seat_number": seat,
                "price": float(reserved_event.get("price", 0.0)),
                "status": TicketStatus.ACTIVE.value,
                "booked_at": iso_now(),
                "used_at": None,
                "updated_at": iso_now(),
            }
            self.tickets.insert_one(doc)
        except BaseException:
            # Runs for cancellations and interrupts too; the error is re-raised.
            if reserved:
                logger.exception("Ticket creation failed on event %s; rolling back reservation", event_id)
            self._compensate(event_id, ticket_id, claim, reserved)
            raise

        logger.info("Booked ticket %s on event %s seat=%s user=%s", ticket_id, event_id, seat, user_id)
        return doc

    @storage_errors()
    def cancel(self, ticket_id: ObjectId, user_id: ObjectId, is_admin: bool = False) -> Dict[str, Any]:
        ticket = self.tickets.find_one({"_id": ticket_id})
        if ticket is None:
            raise NotFound("Ticket", ticket_id)
        if not is_admin and ticket.get("user_id") != user_id:
            raise ApiError("Not authorized to cancel this ticket.", 403, "forbidden")

        updated = transition_ticket(
            self.tickets,
            ticket_id,
            TicketStatus.CANCELLED,
            extra_set={"cancelled_by": user_id},
        )
        if updated is None:
            current = self.tickets.find_one({"_id": ticket_id}, {"status": 1})
            if current is None:
                raise NotFound("Ticket", ticket_id)
            raise InvalidState(current.get("status", ""), TicketStatus.CANCELLED.value)

        # The ticket is already cancelled; a failed release is repaired by reconcile.
        try:
            self.ledger.release(updated["event_id"], ticket_id)
        finally:
            if updated.get("seat_number"):
                self._drop_claim(seat_key(updated["event_id"], updated["seat_number"]), ticket_id)
        logger.info("Cancelled ticket %s on event %s", ticket_id, updated["event_id"])
        return updated

    @storage_errors()
    def refund(self, ticket_id: ObjectId, admin_id: ObjectId) -> Dict[str, Any]:
        updated = transition_ticket(
            self.tickets,
            ticket_id,
            TicketStatus.REFUNDED,
            extra_set={"refunded_by": admin_id},
        )
        if updated is None:
            current = self.tickets.find_one({"_id": ticket_id}, {"status": 1})
            if current is None:
                raise NotFound("Ticket", ticket_id)
            raise InvalidState(current.get("status", ""), TicketStatus.REFUNDED.value)
        logger.info("Refunded ticket %s", ticket_id)
        return updated

    # -------------------------
    # Queries
    # -------------------------
    @storage_errors()
    def get_ticket(self, ticket_id: ObjectId) -> Dict[str, Any]:
        ticket = self.tickets.find_one({"_id": ticket_id})
        if ticket is None:
            raise NotFound("Ticket", ticket_id)
        return ticket

    @storage_errors()
    def tickets_for_user(self, user_id: ObjectId, limit: int = 200) -> List[Dict[str, Any]]:
        return list(self.tickets.find({"user_id": user_id}).sort("booked_at", DESCENDING).limit(limit))

    @storage_errors()
    def tickets_for_event(self, event_id: ObjectId, status: Optional[str] = None) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {"event_id": event_id}
        if status:
            query["status"] = status
        return list(self.tickets.find(query).sort("booked_at", DESCENDING))

    @storage_errors()
    def taken_seats(self, event_id: ObjectId) -> List[str]:
        return [c["seat_number"] for c in self.claims.find({"event_id": event_id}).sort("seat_number", ASCENDING)]
