"""Session authentication (Flask-Login) and role checks."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from flask import current_app, jsonify
from flask_login import LoginManager, UserMixin, current_user
from pymongo.database import Database
from pymongo.errors import PyMongoError
from werkzeug.security import generate_password_hash

from eventx.db import USERS, iso_now, to_oid
from eventx.errors import ApiError

logger = logging.getLogger(__name__)

ROLES = ("attendee", "organizer", "admin")

login_manager = LoginManager()
login_manager.session_protection = "strong"


class User(UserMixin):
    def __init__(self, doc: Dict[str, Any]):
        self.doc = doc
        self.oid = doc["_id"]
        self.id = str(doc["_id"])
        self.email = doc.get("email", "")
        self.role = doc.get("role", "attendee")

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_organizer(self) -> bool:
        return self.role == "organizer"


@login_manager.user_loader
def load_user(user_id: str) -> Optional[User]:
    try:
        doc = current_app.extensions["eventx"].db[USERS].find_one({"_id": to_oid(user_id)})
    except (ApiError, PyMongoError):
        return None
    return User(doc) if doc else None


@login_manager.unauthorized_handler
def unauthorized():
    # JSON only
    return jsonify({"ok": False, "error": "Authentication required.", "code": "unauthorized", "retryable": False}), 401


def require_roles(*roles: str):
    def decorator(fn):
        def wrapped(*args, **kwargs):
            if not current_user.is_authenticated:
                return unauthorized()
            if current_user.role not in roles:
                return jsonify({"ok": False, "error": "Forbidden.", "code": "forbidden", "retryable": False}), 403
            return fn(*args, **kwargs)

        # keep function identity (Flask uses __name__)
        wrapped.__name__ = fn.__name__
        wrapped.__doc__ = fn.__doc__
        return wrapped

    return decorator


def can_edit_event(event_doc: Dict[str, Any]) -> bool:
    if not current_user.is_authenticated:
        return False
    if current_user.is_admin:
        return True
    return str(event_doc.get("organizer_id")) == current_user.id


def ensure_default_admin(db: Database, email: str, password: str) -> None:
    users = db[USERS]
    try:
        if users.find_one({"email": email}):
            return
        users.insert_one(
            {
                "email": email,
                "password_hash": generate_password_hash(password),
                "role": "admin",
                "created_at": iso_now(),
            }
        )
        logger.info("Default admin created: %s", email)
    except PyMongoError:
        logger.exception("Failed to ensure default admin user")
