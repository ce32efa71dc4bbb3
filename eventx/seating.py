"""Seating plans.

A plan is stored on the event as::

    {"general_admission": bool,
     "sections": [{"name": "Floor", "rows": [{"name": "A", "seats": ["A1", "A2"]}]}]}

Events without a plan are general admission only and take no seat numbers.
A plan with ``general_admission`` set also sells unassigned tickets.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Set

from eventx.errors import ApiError, InvalidSeat

MAX_SEATS = 20000


def _invalid(message: str) -> ApiError:
    return ApiError(message, 400, "validation_error", {"field": "seating_plan"})


def _name(value: Any, what: str) -> str:
    name = str(value or "").strip() if not isinstance(value, (dict, list)) else ""
    if not name:
        raise _invalid(f"Every {what} needs a name.")
    return name


def parse_seating_plan(raw: Any) -> Optional[Dict[str, Any]]:
    """Validate a client-supplied plan and return its stored form, or None."""
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise _invalid("seating_plan must be an object.")
    sections = raw.get("sections") or []
    if not isinstance(sections, list) or not sections:
        raise _invalid("seating_plan needs at least one section.")

    seen: Set[str] = set()
    out_sections: List[Dict[str, Any]] = []
    for section in sections:
        if not isinstance(section, dict):
            raise _invalid("Sections must be objects.")
        rows = section.get("rows") or []
        if not isinstance(rows, list):
            raise _invalid("rows must be a list.")
        out_rows = []
        for row in rows:
            if not isinstance(row, dict) or not isinstance(row.get("seats"), list):
                raise _invalid("Each row needs a seats list.")
            seats = []
            for seat in row["seats"]:
                number = _name(seat, "seat")
                if number in seen:
                    raise _invalid(f"Seat {number} appears twice.")
                seen.add(number)
                seats.append(number)
            out_rows.append({"name": _name(row.get("name"), "row"), "seats": seats})
        out_sections.append({"name": _name(section.get("name"), "section"), "rows": out_rows})

    if not seen:
        raise _invalid("seating_plan has no seats.")
    if len(seen) > MAX_SEATS:
        raise _invalid(f"seating_plan is limited to {MAX_SEATS} seats.")
    return {"general_admission": bool(raw.get("general_admission", False)), "sections": out_sections}


def plan_seats(plan: Optional[Dict[str, Any]]) -> List[str]:
    if not plan:
        return []
    return [seat for section in plan.get("sections", []) for row in section.get("rows", []) for seat in row.get("seats", [])]


def check_seat(plan: Optional[Dict[str, Any]], seat_number: Optional[str]) -> None:
    """Raise InvalidSeat unless ``seat_number`` is acceptable for ``plan``."""
    if not plan:
        if seat_number is not None:
            raise InvalidSeat(seat_number, "This event is general admission; seats are not assigned.")
        return
    if seat_number is None:
        if not plan.get("general_admission"):
            raise InvalidSeat(None, "A seat number is required for this event.")
        return
    if seat_number not in set(plan_seats(plan)):
        raise InvalidSeat(seat_number, f"Seat {seat_number} is not in the seating plan.")
