from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from typing import Any, Optional

from eventx.errors import ApiError

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def parse_iso_datetime(s: Any) -> Optional[datetime]:
    """Parse an ISO 8601 date or datetime; naive values are taken as UTC."""
    if not isinstance(s, str) or not s.strip():
        return None
    try:
        parsed = datetime.fromisoformat(s.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_iso_datetime(s: str) -> bool:
    """Accept ISO 8601 date or datetime strings.
    Mongo stores dt as ISO string so lexical comparisons work.
    """
    return parse_iso_datetime(s) is not None


def safe_int(value: Any, field: str, min_value: Optional[int] = None, max_value: Optional[int] = None) -> int:
    if isinstance(value, bool):
        raise ApiError(f"{field} must be an integer.", 400, "validation_error", {"field": field})
    try:
        n = int(value)
    except (TypeError, ValueError, OverflowError):
        # OverflowError: JSON Infinity
        raise ApiError(f"{field} must be an integer.", 400, "validation_error", {"field": field})
    if min_value is not None and n < min_value:
        raise ApiError(f"{field} must be >= {min_value}.", 400, "validation_error", {"field": field})
    if max_value is not None and n > max_value:
        raise ApiError(f"{field} must be <= {max_value}.", 400, "validation_error", {"field": field})
    return n


def safe_float(value: Any, field: str, min_value: Optional[float] = None) -> float:
    if isinstance(value, bool):
        raise ApiError(f"{field} must be a number.", 400, "validation_error", {"field": field})
    try:
        n = float(value)
    except (TypeError, ValueError):
        raise ApiError(f"{field} must be a number.", 400, "validation_error", {"field": field})
    if not math.isfinite(n):
        raise ApiError(f"{field} must be a finite number.", 400, "validation_error", {"field": field})
    if min_value is not None and n < min_value:
        raise ApiError(f"{field} must be >= {min_value}.", 400, "validation_error", {"field": field})
    return n


def validate_email(email: str) -> str:
    email = (email or "").strip().lower()
    if not EMAIL_RE.match(email):
        raise ApiError("A valid email is required.", 400, "validation_error", {"field": "email"})
    return email


def validate_password(pw: str) -> str:
    pw = pw or ""
    if len(pw) < 6:
        raise ApiError("Password must be at least 6 characters.", 400, "validation_error", {"field": "password"})
    return pw
