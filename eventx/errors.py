"""Typed errors raised by the booking engine and the API layer.

Every error carries an HTTP status, a stable machine-readable ``code`` and a
``retryable`` flag. Only transient storage errors are retryable; business-rule
rejections are not.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class ApiError(Exception):
    message: str
    status: int = 400
    code: str = "bad_request"
    details: Optional[Dict[str, Any]] = None

    retryable = False

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class NotFound(ApiError):
    def __init__(self, kind: str, ident: Any) -> None:
        super().__init__(f"{kind} not found.", 404, "not_found", {kind.lower(): str(ident)})
        self.kind = kind


# Capacity errors


class CapacityError(ApiError):
    pass


class EventFull(CapacityError):
    def __init__(self, event_id: Any) -> None:
        super().__init__("Event is full.", 409, "event_full", {"event_id": str(event_id)})


class BelowSoldCount(CapacityError):
    def __init__(self, new_capacity: int, booked_seats: int) -> None:
        super().__init__(
            f"Cannot reduce capacity below {booked_seats} (tickets already sold).",
            409,
            "below_sold_count",
            {"capacity": new_capacity, "booked_seats": booked_seats},
        )


# State errors


class StateError(ApiError):
    pass


class InvalidState(StateError):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(
            f"Cannot transition from {current} to {target}.",
            409,
            "invalid_state",
            {"from": current, "to": target},
        )


class AlreadyUsed(StateError):
    def __init__(self, ticket_id: Any, used_at: Optional[str]) -> None:
        super().__init__(
            "Ticket already used.",
            409,
            "already_used",
            {"ticket_id": str(ticket_id), "used_at": used_at},
        )


class TicketCancelled(StateError):
    def __init__(self, ticket_id: Any, status: str) -> None:
        super().__init__(
            "Ticket is cancelled.",
            409,
            "ticket_cancelled",
            {"ticket_id": str(ticket_id), "status": status},
        )


# Conflicts and event guards


class SeatTaken(ApiError):
    def __init__(self, event_id: Any, seat_number: str) -> None:
        super().__init__(
            "Seat already booked.",
            409,
            "seat_taken",
            {"event_id": str(event_id), "seat_number": seat_number},
        )


class InvalidSeat(ApiError):
    def __init__(self, seat_number: Optional[str], reason: str) -> None:
        super().__init__(reason, 400, "invalid_seat", {"seat_number": seat_number})


class EventNotBookable(ApiError):
    def __init__(self, event_id: Any, status: str) -> None:
        super().__init__(
            f"Event is not open for booking (status: {status}).",
            409,
            "event_not_bookable",
            {"event_id": str(event_id), "status": status},
        )


class HasActiveTickets(ApiError):
    def __init__(self, event_id: Any, booked_seats: int) -> None:
        super().__init__(
            f"Cannot delete event with {booked_seats} active tickets. Please cancel tickets first.",
            409,
            "has_active_tickets",
            {"event_id": str(event_id), "booked_seats": booked_seats},
        )


# Transient errors


class TransientError(ApiError):
    retryable = True


class StorageUnavailable(TransientError):
    def __init__(self, detail: str) -> None:
        super().__init__("Storage temporarily unavailable.", 503, "storage_unavailable", {"detail": detail})


class WriteContention(TransientError):
    def __init__(self, event_id: Any) -> None:
        super().__init__(
            "Event was modified concurrently, please retry.",
            503,
            "write_contention",
            {"event_id": str(event_id)},
        )
