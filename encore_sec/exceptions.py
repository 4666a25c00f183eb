"""
Custom Exceptions for the Encore Security Core

Provides a unified exception hierarchy for authentication, policy
enforcement, request validation, and audit storage.
"""

from typing import Optional, Dict, Any

from .constants import ErrorCodes


class SecurityError(Exception):
    """
    Base exception for all security core errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        error_code: str = ErrorCodes.UNKNOWN_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses"""
        result: Dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# AUTHENTICATION ERRORS
# =============================================================================

class AuthenticationRequired(SecurityError):
    """Raised when the caller identity is missing or cannot be verified"""

    def __init__(
        self,
        message: str = "Authentication required",
        reason: Optional[str] = None
    ):
        details: Dict[str, Any] = {}
        if reason:
            details["reason"] = reason
        super().__init__(message, ErrorCodes.AUTHENTICATION_REQUIRED, details)


# =============================================================================
# POLICY ERRORS
# =============================================================================

class PermissionDenied(SecurityError):
    """
    Raised when a resolved identity lacks the required permission.

    The message names the missing capability only; role names and
    catalog contents are never included.
    """

    def __init__(
        self,
        reason: str,
        entity: Optional[str] = None,
        action: Optional[str] = None
    ):
        details: Dict[str, Any] = {}
        if entity and action:
            details["required"] = f"{entity}:{action}"
        super().__init__(reason, ErrorCodes.PERMISSION_DENIED, details)


class CatalogLoadError(SecurityError):
    """Raised when the policy catalog cannot be built at startup"""

    def __init__(
        self,
        message: str,
        role_name: Optional[str] = None
    ):
        details: Dict[str, Any] = {}
        if role_name:
            details["role"] = role_name
        super().__init__(message, ErrorCodes.CATALOG_LOAD_ERROR, details)


class OperationNotFound(SecurityError):
    """Raised when an unregistered operation is invoked"""

    def __init__(self, operation: str):
        super().__init__(
            message=f"Unknown operation: {operation}",
            error_code=ErrorCodes.OPERATION_NOT_FOUND,
            details={"operation": operation}
        )


# =============================================================================
# VALIDATION ERRORS
# =============================================================================

class ValidationError(SecurityError):
    """Raised when input validation fails"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, ErrorCodes.VALIDATION_ERROR, details)


# =============================================================================
# AUDIT STORE ERRORS
# =============================================================================

class StoreUnavailable(SecurityError):
    """Raised when the audit store backend fails. Always retryable."""

    def __init__(
        self,
        message: str = "Audit store unavailable",
        operation: Optional[str] = None,
        error_code: str = ErrorCodes.STORE_UNAVAILABLE
    ):
        details: Dict[str, Any] = {"retryable": True}
        if operation:
            details["operation"] = operation
        super().__init__(message, error_code, details)


class StoreTimeout(StoreUnavailable):
    """Raised when a store read or export exceeds its deadline"""

    def __init__(
        self,
        operation: str,
        timeout_seconds: float
    ):
        super().__init__(
            message=f"Audit store {operation} timed out after {timeout_seconds:g}s",
            operation=operation,
            error_code=ErrorCodes.STORE_TIMEOUT
        )
        self.details["timeout_seconds"] = timeout_seconds
