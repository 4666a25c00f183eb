"""
Token utilities for Encore
Bearer JWT issuing and verification
"""

from .jwt import (
    create_jwt, verify_jwt, create_access_token, verify_access_token,
    extract_bearer_token, JWTError, JWTExpiredError, JWTInvalidError,
)

__all__ = [
    "create_jwt",
    "verify_jwt",
    "create_access_token",
    "verify_access_token",
    "extract_bearer_token",
    "JWTError",
    "JWTExpiredError",
    "JWTInvalidError",
]
