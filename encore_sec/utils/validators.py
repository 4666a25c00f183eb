"""
Request validators for the Encore Security Core

Validation for user ids, audit query pagination, date ranges and
day-count windows. Every failure raises ValidationError before the
audit store is touched.
"""

import re
import logging
from datetime import datetime, UTC
from typing import Any, Optional, Tuple

from ..exceptions import ValidationError

logger = logging.getLogger(__name__)

# =============================================================================
# REGEX PATTERNS
# =============================================================================

USER_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_.:@-]{1,128}$")

MAX_WINDOW_DAYS = 36500

# =============================================================================
# VALIDATION FUNCTIONS
# =============================================================================

def validate_user_id(
    user_id: Any,
    field_name: str = "user_id",
    required: bool = True
) -> Optional[str]:
    """
    Validate user ID format.

    Args:
        user_id: User ID to validate
        field_name: Field name for error messages
        required: Whether the field is required

    Returns:
        Validated user ID string or None

    Raises:
        ValidationError: If validation fails
    """
    if user_id is None or (isinstance(user_id, str) and not user_id.strip()):
        if required:
            raise ValidationError(f"{field_name} is required", field=field_name)
        return None

    if not isinstance(user_id, str):
        raise ValidationError(f"{field_name} must be a string", field=field_name)

    user_id = user_id.strip()

    if not USER_ID_PATTERN.match(user_id):
        raise ValidationError(
            f"{field_name} contains invalid characters",
            field=field_name
        )

    return user_id


def validate_positive_days(
    days: Any,
    field_name: str = "days",
    max_days: int = MAX_WINDOW_DAYS
) -> int:
    """
    Validate a day count such as a retention period or stats window.

    Zero and negative values are rejected outright; they are never
    coerced to a default.

    Raises:
        ValidationError: If the value is missing, not an integer or out of range
    """
    if days is None:
        raise ValidationError(f"{field_name} is required", field=field_name)

    if isinstance(days, bool):
        raise ValidationError(f"{field_name} must be an integer", field=field_name)

    if isinstance(days, float) and not days.is_integer():
        raise ValidationError(f"{field_name} must be a whole number of days", field=field_name)

    try:
        days_int = int(days)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be an integer", field=field_name)

    if days_int <= 0:
        logger.warning("Rejected non-positive day count: %s=%s", field_name, days_int)
        raise ValidationError(
            f"{field_name} must be a positive number of days",
            field=field_name,
            details={"value": days_int}
        )

    if days_int > max_days:
        raise ValidationError(
            f"{field_name} cannot exceed {max_days}",
            field=field_name
        )

    return days_int


def validate_pagination(
    limit: Any,
    offset: Any,
    default_limit: int,
    max_limit: int
) -> Tuple[int, int]:
    """
    Normalise limit/offset.

    A missing limit takes the default; a limit above the cap is clamped
    to it. Negative values are rejected.

    Returns:
        (limit, offset)
    """
    if limit is None:
        limit = default_limit
    if offset is None:
        offset = 0

    try:
        limit = int(limit)
        offset = int(offset)
    except (TypeError, ValueError):
        raise ValidationError("limit and offset must be integers", field="limit")

    if limit < 0:
        raise ValidationError("limit cannot be negative", field="limit")
    if offset < 0:
        raise ValidationError("offset cannot be negative", field="offset")

    return min(limit, max_limit), offset


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC and convert aware ones to UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def validate_date_range(
    start_date: Optional[datetime],
    end_date: Optional[datetime]
) -> Tuple[Optional[datetime], Optional[datetime]]:
    """
    Validate an inclusive date range.

    Raises:
        ValidationError: If start_date is after end_date
    """
    start_date = ensure_utc(start_date)
    end_date = ensure_utc(end_date)

    if start_date and end_date and start_date > end_date:
        raise ValidationError(
            "startDate must not be after endDate",
            field="startDate",
            details={"startDate": start_date.isoformat(), "endDate": end_date.isoformat()}
        )

    return start_date, end_date


def sanitize_audit_message(message: str, max_length: int = 1000) -> str:
    """
    Sanitize a reason string for an audit record.

    Args:
        message: Message to sanitize
        max_length: Maximum allowed length

    Returns:
        Single-line printable message
    """
    if not message:
        return ""

    if len(message) > max_length:
        message = message[:max_length] + "...[truncated]"

    # Log injection
    message = message.replace("\n", " ").replace("\r", " ")

    return ''.join(c for c in message if c.isprintable() or c == ' ')


def parse_optional_int(value: Any, field_name: str) -> Optional[int]:
    """Parse an optional integer query parameter"""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be an integer", field=field_name)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be an integer", field=field_name)
