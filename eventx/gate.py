"""Validation gate: consumes a ticket's right of entry exactly once."""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from bson import ObjectId
from pymongo.database import Database

from eventx.db import EVENTS, TICKETS, USERS, storage_errors
from eventx.errors import AlreadyUsed, NotFound, TicketCancelled
from eventx.lifecycle import TicketStatus, transition_ticket

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidationReceipt:
    ticket_id: str
    ticket_number: str
    seat_number: Optional[str]
    holder: Dict[str, Any]
    event: Dict[str, Any]
    used_at: str

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ValidationGate:
    def __init__(self, db: Database) -> None:
        self.tickets = db[TICKETS]
        self.events = db[EVENTS]
        self.users = db[USERS]

    def _reject(self, ticket_id: ObjectId) -> None:
        ticket = self.tickets.find_one({"_id": ticket_id}, {"status": 1, "used_at": 1})
        if ticket is None:
            raise NotFound("Ticket", ticket_id)
        status = ticket.get("status")
        if status == TicketStatus.USED.value:
            raise AlreadyUsed(ticket_id, ticket.get("used_at"))
        raise TicketCancelled(ticket_id, status or "")

    @storage_errors()
    def validate(self, ticket_id: ObjectId, staff_id: Optional[ObjectId] = None) -> ValidationReceipt:
        """Mark an active ticket used and return what the gate displays.

        A second scan of the same ticket is rejected with ``AlreadyUsed``.
        The event's booked seat count is untouched.
        """
        ticket = transition_ticket(
            self.tickets,
            ticket_id,
            TicketStatus.USED,
            extra_set={"used_by": staff_id},
        )
        if ticket is None:
            self._reject(ticket_id)

        event = self.events.find_one({"_id": ticket["event_id"]}, {"title": 1, "venue": 1, "dt": 1}) or {}
        holder = self.users.find_one({"_id": ticket["user_id"]}, {"email": 1}) or {}
        logger.info("Validated ticket %s for event %s", ticket_id, ticket["event_id"])
        return ValidationReceipt(
            ticket_id=str(ticket["_id"]),
            ticket_number=ticket.get("ticket_number", ""),
            seat_number=ticket.get("seat_number"),
            holder={"id": str(ticket["user_id"]), "email": holder.get("email", "")},
            event={
                "id": str(ticket["event_id"]),
                "title": event.get("title", ""),
                "venue": event.get("venue", ""),
                "dt": event.get("dt", ""),
            },
            used_at=ticket["used_at"],
        )
