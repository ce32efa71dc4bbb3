"""
EventX booking API
- Flask app factory, JSON-only endpoints under /api
- Flask-Login authentication (session-based)
- MongoDB via PyMongo; booking invariants live in ledger/booking/gate
"""
from __future__ import annotations

import logging
import os
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from flask import Blueprint, Flask, Response, current_app, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError
from werkzeug.exceptions import HTTPException
from werkzeug.security import check_password_hash, generate_password_hash

from eventx import config
from eventx.auth import ROLES, User, can_edit_event, ensure_default_admin, login_manager, require_roles
from eventx.booking import BookingCoordinator
from eventx.db import EVENTS, USERS, connect, ensure_indexes, iso_now, storage_errors, to_oid
from eventx.errors import ApiError
from eventx.events import EventService
from eventx.gate import ValidationGate
from eventx.ledger import CapacityLedger
from eventx.seating import plan_seats
from eventx.serializers import public_event, public_ticket, public_user
from eventx.validators import safe_int, validate_email, validate_password

logger = logging.getLogger("eventx")


@dataclass
class Services:
    db: Database
    ledger: CapacityLedger
    booking: BookingCoordinator
    gate: ValidationGate
    events: EventService


def services() -> Services:
    return current_app.extensions["eventx"]


# -------------------------
# Response helpers
# -------------------------
def ok(payload: Dict[str, Any] | None = None, status: int = 200) -> Tuple[Response, int]:
    data = {"ok": True}
    if payload:
        data.update(payload)
    return jsonify(data), status


def fail(err: ApiError) -> Tuple[Response, int]:
    data = {"ok": False, "error": err.message, "code": err.code, "retryable": err.retryable}
    if err.details:
        data["details"] = err.details
    resp = jsonify(data)
    if err.retryable:
        resp.headers["Retry-After"] = "1"
    return resp, err.status


def require_json() -> Dict[str, Any]:
    if not request.is_json:
        raise ApiError("Request must be JSON.", 415, "unsupported_media_type")
    data = request.get_json(silent=True)
    if data is None:
        raise ApiError("Invalid JSON payload.", 400, "invalid_json")
    if not isinstance(data, dict):
        raise ApiError("JSON body must be an object.", 400, "invalid_json")
    return data


def owned_event(event_id: str) -> Dict[str, Any]:
    e = services().events.get_event(to_oid(event_id, "event_id"))
    if not can_edit_event(e):
        raise ApiError("Forbidden.", 403, "forbidden")
    return e


api = Blueprint("api", __name__, url_prefix="/api")


@api.get("/health")
def health():
    return ok({"status": "up"})


@api.get("/me")
def me():
    if not current_user.is_authenticated:
        return ok({"user": None})
    # Load from db to avoid stale role/email in session
    u = services().db[USERS].find_one({"_id": current_user.oid})
    return ok({"user": public_user(u) if u else None})


# -------------------------
# Auth APIs
# -------------------------
@api.post("/register")
def register():
    data = require_json()
    email = validate_email(data.get("email", ""))
    password = validate_password(data.get("password", ""))
    role = str(data.get("role") or "attendee").strip().lower()
    if role not in ("attendee", "organizer"):
        role = "attendee"

    users = services().db[USERS]
    doc = {
        "email": email,
        "password_hash": generate_password_hash(password),
        "role": role,
        "created_at": iso_now(),
    }
    with storage_errors():
        try:
            res = users.insert_one(doc)
        except DuplicateKeyError:
            raise ApiError("Email already registered.", 409, "conflict", {"field": "email"})
        u = users.find_one({"_id": res.inserted_id})
    login_user(User(u))
    return ok({"user": public_user(u)}, 201)


@api.post("/login")
def login():
    data = require_json()
    email = validate_email(data.get("email", ""))
    password = data.get("password") or ""

    with storage_errors():
        u = services().db[USERS].find_one({"email": email})
    if not u or not check_password_hash(u.get("password_hash", ""), password):
        raise ApiError("Invalid credentials.", 401, "unauthorized")

    login_user(User(u))
    return ok({"user": public_user(u)})


@api.post("/logout")
@login_required
def logout():
    logout_user()
    return ok({})


# -------------------------
# Event APIs
# -------------------------
@api.get("/events")
def list_events():
    filters = {k: (request.args.get(k) or "").strip() for k in ("q", "category", "venue", "status", "date_from", "date_to")}
    page = safe_int(request.args.get("page", 1), "page", min_value=1)
    limit = safe_int(
        request.args.get("limit", config.EVENTS_PAGE_SIZE), "limit", min_value=1, max_value=config.EVENTS_MAX_PAGE_SIZE
    )
    events, total = services().events.list_events(filters, page=page, limit=limit)
    pages = (total + limit - 1) // limit
    return ok(
        {
            "events": [public_event(e) for e in events],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": pages,
                "has_next": page < pages,
                "has_prev": page > 1,
            },
        }
    )


@api.get("/events/<event_id>")
def get_event(event_id: str):
    e = services().events.get_event(to_oid(event_id, "event_id"))
    return ok({"event": public_event(e)})


@api.post("/events")
@require_roles("admin", "organizer")
def create_event():
    data = require_json()
    created = services().events.create_event(current_user.oid, data)
    return ok({"event": public_event(created)}, 201)


@api.put("/events/<event_id>")
@require_roles("admin", "organizer")
def update_event(event_id: str):
    data = require_json()
    e = owned_event(event_id)
    updated = services().events.update_event(e["_id"], data)
    return ok({"event": public_event(updated)})


@api.put("/events/<event_id>/capacity")
@require_roles("admin", "organizer")
def resize_event(event_id: str):
    data = require_json()
    e = owned_event(event_id)
    updated = services().events.update_event(e["_id"], {"capacity": data.get("capacity")})
    return ok({"event": public_event(updated)})


@api.patch("/events/<event_id>/status")
@require_roles("admin", "organizer")
def update_event_status(event_id: str):
    data = require_json()
    e = owned_event(event_id)
    updated = services().events.transition_status(e["_id"], str(data.get("status") or "").strip())
    return ok({"event": public_event(updated)})


@api.delete("/events/<event_id>")
@require_roles("admin", "organizer")
def delete_event(event_id: str):
    e = owned_event(event_id)
    services().events.delete_event(e["_id"])
    return ok({})


@api.get("/events/<event_id>/seats")
def event_seats(event_id: str):
    e = services().events.get_event(to_oid(event_id, "event_id"))
    plan = e.get("seating_plan")
    taken = services().booking.taken_seats(e["_id"])
    taken_set = set(taken)
    return ok(
        {
            "event_id": str(e["_id"]),
            "general_admission": not plan or bool(plan.get("general_admission")),
            "seating_plan": plan,
            "taken": taken,
            "available": [s for s in plan_seats(plan) if s not in taken_set],
        }
    )


@api.get("/events/<event_id>/tickets")
@require_roles("admin", "organizer")
def event_tickets(event_id: str):
    e = owned_event(event_id)
    status = (request.args.get("status") or "").strip() or None
    tickets = services().booking.tickets_for_event(e["_id"], status)
    return ok({"tickets": [public_ticket(t) for t in tickets]})


@api.post("/events/<event_id>/reconcile")
@require_roles("admin")
def reconcile_event(event_id: str):
    booked = services().ledger.reconcile(to_oid(event_id, "event_id"))
    return ok({"event_id": event_id, "booked_seats": booked})


@api.get("/my/events")
@require_roles("admin", "organizer")
def my_events():
    organizer = None if current_user.is_admin else current_user.oid
    events = services().events.events_for_organizer(organizer)
    return ok({"events": [public_event(e) for e in events]})


# -------------------------
# Ticket APIs
# -------------------------
@api.post("/tickets/book")
@require_roles(*ROLES)
def book_ticket():
    data = require_json()
    event_id = str(data.get("event_id") or "").strip()
    if not event_id:
        raise ApiError("event_id is required.", 400, "validation_error", {"field": "event_id"})
    ticket = services().booking.book(to_oid(event_id, "event_id"), current_user.oid, data.get("seat_number"))
    return ok({"message": "Ticket booked successfully.", "ticket": public_ticket(ticket)}, 201)


@api.get("/my/tickets")
@require_roles(*ROLES)
def my_tickets():
    """Return tickets for the currently signed-in user (for 'My Tickets' UI)."""
    svc = services()
    docs = svc.booking.tickets_for_user(current_user.oid)
    event_ids = list({d["event_id"] for d in docs})
    events_map = {e["_id"]: e for e in svc.db[EVENTS].find({"_id": {"$in": event_ids}})} if event_ids else {}
    return ok({"tickets": [public_ticket(d, events_map.get(d["event_id"])) for d in docs]})


@api.delete("/tickets/<ticket_id>")
@require_roles(*ROLES)
def cancel_ticket(ticket_id: str):
    ticket = services().booking.cancel(to_oid(ticket_id, "ticket_id"), current_user.oid, is_admin=current_user.is_admin)
    return ok({"message": "Ticket cancelled successfully.", "ticket": public_ticket(ticket)})


@api.post("/tickets/<ticket_id>/refund")
@require_roles("admin")
def refund_ticket(ticket_id: str):
    ticket = services().booking.refund(to_oid(ticket_id, "ticket_id"), current_user.oid)
    return ok({"ticket": public_ticket(ticket)})


@api.put("/tickets/<ticket_id>/validate")
@require_roles("admin", "organizer")
def validate_ticket(ticket_id: str):
    svc = services()
    ticket = svc.booking.get_ticket(to_oid(ticket_id, "ticket_id"))
    event = svc.db[EVENTS].find_one({"_id": ticket["event_id"]}, {"organizer_id": 1}) or {}
    if not can_edit_event(event):
        raise ApiError("Forbidden.", 403, "forbidden")
    receipt = svc.gate.validate(ticket["_id"], staff_id=current_user.oid)
    return ok({"message": "Ticket validated successfully.", "receipt": receipt.as_dict()})


# -------------------------
# App Init
# -------------------------
def create_app(db: Optional[Database] = None, settings: Optional[Dict[str, Any]] = None) -> Flask:
    config.configure_logging()
    app = Flask(__name__)
    app.config.update(config.flask_settings())
    if settings:
        app.config.update(settings)

    if db is None:
        db = connect(app.config["MONGO_URI"], app.config["MONGO_DB"])
    ensure_indexes(db)
    ensure_default_admin(db, app.config["DEFAULT_ADMIN_EMAIL"], app.config["DEFAULT_ADMIN_PASSWORD"])

    ledger = CapacityLedger(
        db,
        max_attempts=app.config["RESERVE_MAX_ATTEMPTS"],
        grace_seconds=app.config["HOLD_GRACE_SECONDS"],
    )
    app.extensions["eventx"] = Services(
        db=db,
        ledger=ledger,
        booking=BookingCoordinator(db, ledger),
        gate=ValidationGate(db),
        events=EventService(db, ledger),
    )
    login_manager.init_app(app)
    app.register_blueprint(api)

    # Attach a request id for debugging/traceability.
    @app.before_request
    def attach_request_id():
        rid = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        request.environ["request_id"] = rid

    @app.after_request
    def add_security_headers(resp: Response):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Cache-Control"] = "no-store"
        resp.headers["X-Request-Id"] = request.environ.get("request_id", "")
        return resp

    @app.errorhandler(ApiError)
    def handle_api_error(err: ApiError):
        return fail(err)

    @app.errorhandler(404)
    def handle_404(_):
        return jsonify({"ok": False, "error": "Not found.", "code": "not_found", "retryable": False}), 404

    @app.errorhandler(405)
    def handle_405(_):
        return jsonify({"ok": False, "error": "Method not allowed.", "code": "method_not_allowed", "retryable": False}), 405

    @app.errorhandler(Exception)
    def handle_exception(e: Exception):
        if isinstance(e, HTTPException):
            return jsonify({"ok": False, "error": e.description, "code": e.name.lower().replace(" ", "_"), "retryable": False}), e.code
        rid = request.environ.get("request_id", "")
        logger.exception("Unhandled error (request_id=%s): %s", rid, e)
        return (
            jsonify(
                {
                    "ok": False,
                    "error": "Internal server error.",
                    "code": "internal_error",
                    "retryable": False,
                    "request_id": rid,
                }
            ),
            500,
        )

    return app


def main() -> None:
    # Production: run behind a WSGI server (gunicorn/uwsgi) and set SECRET_KEY + SESSION_COOKIE_SECURE
    app = create_app()
    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "5000"))
    debug = os.environ.get("FLASK_DEBUG", "0") == "1"
    app.run(host=host, port=port, debug=debug)


if __name__ == "__main__":
    main()
