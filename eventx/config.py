"""Configuration & logging, read from the environment."""
from __future__ import annotations

import logging
import os
from typing import Any, Dict

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

MONGO_URI = os.environ.get("MONGO_URI", "mongodb://localhost:27017")
DB_NAME = os.environ.get("MONGO_DB", "eventx")
MONGO_TIMEOUT_MS = int(os.environ.get("MONGO_TIMEOUT_MS", "3000"))
MONGO_SOCKET_TIMEOUT_MS = int(os.environ.get("MONGO_SOCKET_TIMEOUT_MS", "5000"))

SECRET_KEY = os.environ.get("SECRET_KEY", "CHANGE_ME_IN_PRODUCTION")
SESSION_COOKIE_SECURE = os.environ.get("SESSION_COOKIE_SECURE", "0") == "1"  # set to 1 behind HTTPS
SESSION_COOKIE_SAMESITE = os.environ.get("SESSION_COOKIE_SAMESITE", "Lax")
SESSION_COOKIE_HTTPONLY = True

DEFAULT_ADMIN_EMAIL = os.environ.get("DEFAULT_ADMIN_EMAIL", "admin@example.com")
DEFAULT_ADMIN_PASSWORD = os.environ.get("DEFAULT_ADMIN_PASSWORD", "Admin123!")

# Compare-and-increment retries when an event's capacity changes mid-reservation.
RESERVE_MAX_ATTEMPTS = int(os.environ.get("RESERVE_MAX_ATTEMPTS", "5"))
# A seat hold with no ticket is treated as an in-flight booking until it is this old.
HOLD_GRACE_SECONDS = int(os.environ.get("HOLD_GRACE_SECONDS", "900"))

EVENTS_PAGE_SIZE = int(os.environ.get("EVENTS_PAGE_SIZE", "20"))
EVENTS_MAX_PAGE_SIZE = 100

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format=LOG_FORMAT,
    )


def flask_settings() -> Dict[str, Any]:
    return {
        "SECRET_KEY": SECRET_KEY,
        "SESSION_COOKIE_SECURE": SESSION_COOKIE_SECURE,
        "SESSION_COOKIE_SAMESITE": SESSION_COOKIE_SAMESITE,
        "SESSION_COOKIE_HTTPONLY": SESSION_COOKIE_HTTPONLY,
        "MONGO_URI": MONGO_URI,
        "MONGO_DB": DB_NAME,
        "RESERVE_MAX_ATTEMPTS": RESERVE_MAX_ATTEMPTS,
        "HOLD_GRACE_SECONDS": HOLD_GRACE_SECONDS,
        "DEFAULT_ADMIN_EMAIL": DEFAULT_ADMIN_EMAIL,
        "DEFAULT_ADMIN_PASSWORD": DEFAULT_ADMIN_PASSWORD,
    }
