"""
Audit module for Encore
Immutable audit records, the interceptor that writes them and the stores that keep them
"""

from .models import (
    AuditRecord, AuditOutcome, AuditConfig, AuditFilters, AuditPage,
    ActivityStats, ExportFormat,
)
from .redaction import SecretRedactor, redact_secrets
from .store import AuditStore, SqlAuditStore, InMemoryAuditStore
from .interceptor import AuditInterceptor
from .service import AuditService

__all__ = [
    "AuditRecord",
    "AuditOutcome",
    "AuditConfig",
    "AuditFilters",
    "AuditPage",
    "ActivityStats",
    "ExportFormat",
    "SecretRedactor",
    "redact_secrets",
    "AuditStore",
    "SqlAuditStore",
    "InMemoryAuditStore",
    "AuditInterceptor",
    "AuditService",
]
