"""
Utility functions for the Encore security core
ID generation and request validation
"""

from .ids import generate_audit_id
from .validators import (
    validate_user_id,
    validate_positive_days,
    validate_pagination,
    validate_date_range,
    ensure_utc,
    sanitize_audit_message,
    parse_optional_int,
)

__all__ = [
    # ID generation
    "generate_audit_id",
    # Validators
    "validate_user_id",
    "validate_positive_days",
    "validate_pagination",
    "validate_date_range",
    "ensure_utc",
    "sanitize_audit_message",
    "parse_optional_int",
]
