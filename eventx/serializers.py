"""Public JSON shapes for API responses."""
from __future__ import annotations

from typing import Any, Dict, Optional


def _sid(value: Any) -> Optional[str]:
    return str(value) if value else None


def public_user(u: Dict[str, Any]) -> Dict[str, Any]:
    return {"id": str(u["_id"]), "email": u.get("email", ""), "role": u.get("role", "attendee")}


def public_event(e: Dict[str, Any]) -> Dict[str, Any]:
    capacity = int(e.get("capacity", 0))
    booked = int(e.get("booked_seats", 0))
    return {
        "id": str(e["_id"]),
        "organizer_id": _sid(e.get("organizer_id")),
        "title": e.get("title", ""),
        "description": e.get("description", ""),
        "category": e.get("category", ""),
        "dt": e.get("dt", ""),
        "venue": e.get("venue", ""),
        "price": float(e.get("price", 0.0)),
        "capacity": capacity,
        "booked_seats": booked,
        "available": max(0, capacity - booked),
        "sold_out": booked >= capacity,
        "status": e.get("status", "draft"),
        "has_seating_plan": bool(e.get("seating_plan")),
        "created_at": e.get("created_at", ""),
        "updated_at": e.get("updated_at", ""),
    }


def public_ticket(t: Dict[str, Any], event_doc: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Public-facing ticket record, optionally with denormalized event details."""
    out = {
        "id": str(t["_id"]),
        "ticket_number": t.get("ticket_number", ""),
        "event_id": _sid(t.get("event_id")),
        "user_id": _sid(t.get("user_id")),
        "seat_number": t.get("seat_number"),
        "price": float(t.get("price", 0.0)),
        "status": t.get("status", ""),
        "booked_at": t.get("booked_at", ""),
        "used_at": t.get("used_at"),
        "cancelled_at": t.get("cancelled_at"),
        "refunded_at": t.get("refunded_at"),
    }
    if event_doc:
        out["event"] = {
            "id": str(event_doc["_id"]),
            "title": event_doc.get("title", ""),
            "dt": event_doc.get("dt", ""),
            "venue": event_doc.get("venue", ""),
        }
    return out
