"""
Constants for the Encore Security Core

Centralized identifiers for roles, audit actions, query limits,
export formats, and error codes.
"""

from typing import Final, Tuple

# =============================================================================
# SERVICE IDENTIFICATION
# =============================================================================

SERVICE_NAME: Final[str] = "encore-security-core"
SERVICE_VERSION: Final[str] = "0.1.0"
TOKEN_ISSUER: Final[str] = "encore-security"

# =============================================================================
# ROLES
# =============================================================================

class Roles:
    """Built-in role names"""
    SUPER_ADMIN: Final[str] = "SUPER_ADMIN"
    HOST_ADMIN: Final[str] = "HOST_ADMIN"
    SINGER: Final[str] = "SINGER"
    PLAYER: Final[str] = "PLAYER"
    GUEST: Final[str] = "GUEST"

    ALL: Final[Tuple[str, ...]] = (SUPER_ADMIN, HOST_ADMIN, SINGER, PLAYER, GUEST)


# =============================================================================
# AUDIT ACTIONS
# =============================================================================

class AuditActions:
    """Audit action identifiers"""
    # User events
    USER_LOGIN: Final[str] = "USER_LOGIN"
    USER_LOGOUT: Final[str] = "USER_LOGOUT"
    USER_REGISTER: Final[str] = "USER_REGISTER"
    USER_UPDATE_PROFILE: Final[str] = "USER_UPDATE_PROFILE"
    USER_UPDATE_ROLE: Final[str] = "USER_UPDATE_ROLE"
    USER_PROXY_LOGIN: Final[str] = "USER_PROXY_LOGIN"

    # Event lifecycle
    EVENT_CREATE: Final[str] = "EVENT_CREATE"
    EVENT_UPDATE: Final[str] = "EVENT_UPDATE"
    EVENT_DELETE: Final[str] = "EVENT_DELETE"
    EVENT_ASSIGN_SINGER: Final[str] = "EVENT_ASSIGN_SINGER"

    # Song requests
    REQUEST_CREATE: Final[str] = "REQUEST_CREATE"
    REQUEST_ASSIGN: Final[str] = "REQUEST_ASSIGN"
    REQUEST_UPDATE_STATUS: Final[str] = "REQUEST_UPDATE_STATUS"
    REQUEST_REORDER: Final[str] = "REQUEST_REORDER"
    REQUEST_CANCEL: Final[str] = "REQUEST_CANCEL"

    # Wish songs
    WISH_SONG_CREATE: Final[str] = "WISH_SONG_CREATE"
    WISH_SONG_APPROVE: Final[str] = "WISH_SONG_APPROVE"
    WISH_SONG_DELETE: Final[str] = "WISH_SONG_DELETE"

    # Catalog
    SONG_CREATE: Final[str] = "SONG_CREATE"
    SONG_UPDATE: Final[str] = "SONG_UPDATE"
    SONG_DELETE: Final[str] = "SONG_DELETE"
    SINGER_CREATE: Final[str] = "SINGER_CREATE"
    SINGER_UPDATE: Final[str] = "SINGER_UPDATE"

    # Audit log administration
    AUDIT_LOG_VIEW: Final[str] = "AUDIT_LOG_VIEW"
    AUDIT_LOG_EXPORT: Final[str] = "AUDIT_LOG_EXPORT"
    AUDIT_LOG_CLEANUP: Final[str] = "AUDIT_LOG_CLEANUP"
    ANALYTICS_VIEW: Final[str] = "ANALYTICS_VIEW"

    # Data movement
    DATA_EXPORT: Final[str] = "DATA_EXPORT"
    DATA_IMPORT: Final[str] = "DATA_IMPORT"

    # Permissions and security
    PERMISSION_DENIED: Final[str] = "PERMISSION_DENIED"
    ROLE_ASSIGNMENT: Final[str] = "ROLE_ASSIGNMENT"
    SECURITY_LOGIN_FAILED: Final[str] = "SECURITY_LOGIN_FAILED"


class AuditOutcomes:
    """Audit record outcome values"""
    SUCCESS: Final[str] = "success"
    FAILURE: Final[str] = "failure"
    DENIED: Final[str] = "denied"


# =============================================================================
# RELAY EVENT KINDS
# =============================================================================

class RelayEvents:
    """Event kinds published to the notification relay"""
    AUDIT_PREFIX: Final[str] = "audit."
    PERMISSION_DENIED: Final[str] = "security.permission_denied"


# =============================================================================
# QUERY & EXPORT DEFAULTS
# =============================================================================

class AuditDefaults:
    """Default audit query and export parameters"""
    QUERY_LIMIT: Final[int] = 50
    QUERY_LIMIT_MAX: Final[int] = 100
    EXPORT_PAGE_SIZE: Final[int] = 100
    STATS_WINDOW_DAYS: Final[int] = 30
    HISTORY_LIMIT: Final[int] = 50
    DEFAULT_REASON: Final[str] = "System action"
    REDACTED: Final[str] = "[REDACTED]"


class ExportFormats:
    """Export serialization formats"""
    JSON: Final[str] = "JSON"
    CSV: Final[str] = "CSV"

    ALL: Final[Tuple[str, ...]] = (JSON, CSV)


CSV_COLUMNS: Final[Tuple[str, ...]] = (
    "timestamp", "actor", "action", "entityType", "entityId", "details", "reason"
)
CSV_FILENAME: Final[str] = "audit_logs.csv"
CSV_MEDIA_TYPE: Final[str] = "text/csv"
JSON_MEDIA_TYPE: Final[str] = "application/json"


# =============================================================================
# ERROR CODES
# =============================================================================

class ErrorCodes:
    """Standardized error codes for the security core"""
    UNKNOWN_ERROR: Final[str] = "UNKNOWN_ERROR"
    VALIDATION_ERROR: Final[str] = "VALIDATION_ERROR"

    # Authentication / policy
    AUTHENTICATION_REQUIRED: Final[str] = "AUTHENTICATION_REQUIRED"
    PERMISSION_DENIED: Final[str] = "PERMISSION_DENIED"
    CATALOG_LOAD_ERROR: Final[str] = "CATALOG_LOAD_ERROR"
    OPERATION_NOT_FOUND: Final[str] = "OPERATION_NOT_FOUND"

    # Audit store
    STORE_UNAVAILABLE: Final[str] = "STORE_UNAVAILABLE"
    STORE_TIMEOUT: Final[str] = "STORE_TIMEOUT"
