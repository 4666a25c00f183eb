"""
Encore Security Core
Role-based access control, ownership checks and audit logging for the Encore request service
"""

__version__ = "0.1.0"

# Core exports
from .config import SecuritySettings, get_security_config

# Errors
from .exceptions import (
    SecurityError, AuthenticationRequired, PermissionDenied, ValidationError,
    StoreUnavailable, StoreTimeout, CatalogLoadError, OperationNotFound,
)

# Policy enforcement
from .policy import (
    Entity, Action, Permission, Role, PolicyCatalog, load_catalog,
    Identity, AuthContext, CallContext, AuthContextResolver,
    PermissionGuard, PermissionRequirement, Decision,
)

# Audit
from .audit import (
    AuditRecord, AuditOutcome, AuditConfig, AuditFilters, ExportFormat,
    AuditStore, SqlAuditStore, InMemoryAuditStore, AuditInterceptor, AuditService,
)

# Pipeline
from .pipeline import OperationRegistry, AuthorizationStage, AuditStage, Pipeline
from .notifications import NotificationRelay, NullRelay, LoggingRelay, RecordingRelay
from .core import SecurityCore, build_security_core

__all__ = [
    # Config
    "SecuritySettings",
    "get_security_config",

    # Errors
    "SecurityError",
    "AuthenticationRequired",
    "PermissionDenied",
    "ValidationError",
    "StoreUnavailable",
    "StoreTimeout",
    "CatalogLoadError",
    "OperationNotFound",

    # Policy
    "Entity",
    "Action",
    "Permission",
    "Role",
    "PolicyCatalog",
    "load_catalog",
    "Identity",
    "AuthContext",
    "CallContext",
    "AuthContextResolver",
    "PermissionGuard",
    "PermissionRequirement",
    "Decision",

    # Audit
    "AuditRecord",
    "AuditOutcome",
    "AuditConfig",
    "AuditFilters",
    "ExportFormat",
    "AuditStore",
    "SqlAuditStore",
    "InMemoryAuditStore",
    "AuditInterceptor",
    "AuditService",

    # Pipeline
    "OperationRegistry",
    "AuthorizationStage",
    "AuditStage",
    "Pipeline",
    "NotificationRelay",
    "NullRelay",
    "LoggingRelay",
    "RecordingRelay",
    "SecurityCore",
    "build_security_core",
]
