"""Ticket and event state machines.

Both machines are explicit transition tables. ``next_*_status`` is total over
(state, target) pairs: it returns the target or raises ``InvalidState``.
Persisted transitions go through a single conditional update filtered on the
allowed source states, so concurrent callers cannot both move the same
document out of the same state.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional

from pymongo import ReturnDocument
from pymongo.collection import Collection

from eventx.db import iso_now
from eventx.errors import InvalidState


class TicketStatus(str, Enum):
    ACTIVE = "active"
    USED = "used"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class EventStatus(str, Enum):
    DRAFT = "draft"
    UPCOMING = "upcoming"
    ACTIVE = "active"
    CLOSED = "closed"
    CANCELLED = "cancelled"


TICKET_TRANSITIONS: Mapping[TicketStatus, FrozenSet[TicketStatus]] = {
    TicketStatus.ACTIVE: frozenset({TicketStatus.USED, TicketStatus.CANCELLED}),
    TicketStatus.USED: frozenset(),
    # refunds are issued by an external flow, only after cancellation
    TicketStatus.CANCELLED: frozenset({TicketStatus.REFUNDED}),
    TicketStatus.REFUNDED: frozenset(),
}

EVENT_TRANSITIONS: Mapping[EventStatus, FrozenSet[EventStatus]] = {
    EventStatus.DRAFT: frozenset({EventStatus.UPCOMING, EventStatus.CANCELLED}),
    EventStatus.UPCOMING: frozenset({EventStatus.ACTIVE, EventStatus.CANCELLED}),
    EventStatus.ACTIVE: frozenset({EventStatus.CLOSED, EventStatus.CANCELLED}),
    EventStatus.CLOSED: frozenset({EventStatus.CANCELLED}),
    EventStatus.CANCELLED: frozenset(),
}

BOOKABLE_EVENT_STATUSES: FrozenSet[EventStatus] = frozenset({EventStatus.UPCOMING, EventStatus.ACTIVE})

# Tickets in these states occupy a seat and are counted by the ledger.
SEAT_HOLDING_STATUSES: FrozenSet[TicketStatus] = frozenset({TicketStatus.ACTIVE, TicketStatus.USED})

TIMESTAMP_FIELDS: Dict[TicketStatus, str] = {
    TicketStatus.USED: "used_at",
    TicketStatus.CANCELLED: "cancelled_at",
    TicketStatus.REFUNDED: "refunded_at",
}


def _label(value: Any) -> str:
    return str(getattr(value, "value", value))


def _step(enum_cls, table, current: Any, target: Any):
    try:
        cur, tgt = enum_cls(current), enum_cls(target)
    except ValueError:
        raise InvalidState(_label(current), _label(target))
    if tgt not in table[cur]:
        raise InvalidState(cur.value, tgt.value)
    return tgt


def next_ticket_status(current: Any, target: Any) -> TicketStatus:
    return _step(TicketStatus, TICKET_TRANSITIONS, current, target)


def next_event_status(current: Any, target: Any) -> EventStatus:
    return _step(EventStatus, EVENT_TRANSITIONS, current, target)


def ticket_sources(target: TicketStatus) -> FrozenSet[TicketStatus]:
    """States from which ``target`` is reachable in one step."""
    return frozenset(s for s, allowed in TICKET_TRANSITIONS.items() if target in allowed)


def is_bookable(status: Any) -> bool:
    return status in {s.value for s in BOOKABLE_EVENT_STATUSES}


def status_values(statuses) -> list:
    return sorted(s.value for s in statuses)


def transition_ticket(
    tickets: Collection,
    ticket_id: Any,
    target: TicketStatus,
    extra_filter: Optional[Dict[str, Any]] = None,
    extra_set: Optional[Dict[str, Any]] = None,
) -> Optional[Dict[str, Any]]:
    """Atomically move a ticket into ``target``.

    Returns the updated document, or None when the ticket does not exist or is
    not in a state ``target`` can be reached from. Callers classify the miss.
    """
    query: Dict[str, Any] = {"_id": ticket_id, "status": {"$in": status_values(ticket_sources(target))}}
    if extra_filter:
        query.update(extra_filter)
    stamp = iso_now()
    updates: Dict[str, Any] = {"status": target.value, "updated_at": stamp}
    field = TIMESTAMP_FIELDS.get(target)
    if field:
        updates[field] = stamp
    if extra_set:
        updates.update(extra_set)
    return tickets.find_one_and_update(query, {"$set": updates}, return_document=ReturnDocument.AFTER)
