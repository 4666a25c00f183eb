"""
ID generation utilities for Encore
"""

import uuid


def generate_audit_id() -> str:
    """Generate audit record ID"""
    return f"audit_{uuid.uuid4()}"
