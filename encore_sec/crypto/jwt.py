"""
JWT utilities for Encore
Access token issuing and verification for caller identities
"""

import jwt
from datetime import datetime, timedelta, UTC
from typing import Dict, Any, Optional, Sequence
import structlog

from ..config import get_security_config
from ..constants import TOKEN_ISSUER

logger = structlog.get_logger(__name__)


class JWTError(Exception):
    """Base exception for JWT-related errors"""
    pass


class JWTExpiredError(JWTError):
    """Raised when JWT token has expired"""
    pass


class JWTInvalidError(JWTError):
    """Raised when JWT token is invalid"""
    pass


def create_jwt(payload: Dict[str, Any], secret_key: str,
               algorithm: Optional[str] = None,
               expires_in_minutes: Optional[int] = None) -> str:
    """
    Create a JWT token

    Args:
        payload: Token payload data
        secret_key: Secret key for signing
        algorithm: JWT algorithm (default from config)
        expires_in_minutes: Token expiry (default from config)

    Returns:
        Encoded JWT token string
    """
    config = get_security_config()
    algorithm = algorithm or config.jwt_algorithm
    if expires_in_minutes is None:
        expires_in_minutes = config.jwt_expiry_minutes

    now = datetime.now(UTC)
    token_payload = {
        **payload,
        'iat': now,
        'exp': now + timedelta(minutes=expires_in_minutes),
        'iss': TOKEN_ISSUER,
    }

    try:
        token = jwt.encode(token_payload, secret_key, algorithm=algorithm)
    except (jwt.PyJWTError, TypeError, ValueError) as e:
        logger.error("JWT creation failed", error=str(e))
        raise JWTError(f"Failed to create JWT: {str(e)}") from e

    logger.debug("Created JWT token",
                 subject=payload.get('sub'),
                 expires_in=expires_in_minutes)
    return token


def verify_jwt(token: str, secret_key: str,
               algorithm: Optional[str] = None) -> Dict[str, Any]:
    """
    Verify and decode a JWT token

    Args:
        token: JWT token string
        secret_key: Secret key for verification
        algorithm: JWT algorithm (default from config)

    Returns:
        Decoded token payload

    Raises:
        JWTExpiredError: If token has expired
        JWTInvalidError: If token is invalid
    """
    config = get_security_config()
    algorithm = algorithm or config.jwt_algorithm

    try:
        payload = jwt.decode(
            token,
            secret_key,
            algorithms=[algorithm],
            issuer=TOKEN_ISSUER,
            options={
                'verify_signature': True,
                'verify_exp': True,
                'verify_iat': True,
                'require': ['exp', 'iat', 'sub'],
            }
        )
    except jwt.ExpiredSignatureError as e:
        logger.warning("JWT token expired")
        raise JWTExpiredError("Token has expired") from e
    except jwt.InvalidTokenError as e:
        logger.warning("JWT token invalid", error=str(e))
        raise JWTInvalidError(f"Invalid token: {str(e)}") from e

    logger.debug("JWT token verified", subject=payload.get('sub'))
    return payload


def create_access_token(user_id: str, roles: Sequence[str], secret_key: str,
                        attributes: Optional[Dict[str, Any]] = None,
                        expires_in_minutes: Optional[int] = None) -> str:
    """Create an access token carrying the caller's assigned roles"""
    payload = {
        'sub': str(user_id),
        'roles': list(roles),
        'type': 'access',
    }
    if attributes:
        payload['attrs'] = dict(attributes)
    return create_jwt(payload, secret_key, expires_in_minutes=expires_in_minutes)


def verify_access_token(token: str, secret_key: str) -> Dict[str, Any]:
    """Verify an access token and return the identity claims"""
    payload = verify_jwt(token, secret_key)

    if payload.get('type') != 'access':
        raise JWTInvalidError("Not an access token")

    roles = payload.get('roles', [])
    if not isinstance(roles, list):
        raise JWTInvalidError("Malformed roles claim")

    attributes = payload.get('attrs') or {}
    if not isinstance(attributes, dict):
        raise JWTInvalidError("Malformed attrs claim")

    return {
        'user_id': payload.get('sub'),
        'roles': [str(r) for r in roles],
        'attributes': attributes,
        'expires_at': payload.get('exp'),
    }


def extract_bearer_token(authorization_header: Optional[str]) -> str:
    """Extract JWT token from Authorization header"""
    if not authorization_header:
        raise JWTInvalidError("No authorization header")

    scheme, _, token = authorization_header.partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        raise JWTInvalidError("Invalid authorization header format")

    return token.strip()
