"""
Security configuration management for Encore
Toggles for token verification, policy loading and audit behaviour
"""

from typing import Optional
from pydantic_settings import BaseSettings
from pydantic import Field

from .constants import AuditDefaults, Roles


class SecuritySettings(BaseSettings):
    """Security and audit configuration settings"""

    # Storage
    database_url: str = Field(default="sqlite:///audit.db", description="SQLAlchemy URL for the audit store")

    # Token settings
    jwt_secret_key: str = Field(default="change-me-in-production")
    jwt_algorithm: str = Field(default="HS256")
    jwt_expiry_minutes: int = Field(default=60)

    # Policy settings
    super_admin_role: str = Field(default=Roles.SUPER_ADMIN, description="Role that bypasses the catalog")
    default_role: str = Field(default=Roles.GUEST, description="Role assumed when an identity carries none")
    policy_catalog_path: Optional[str] = Field(default=None, description="JSON role catalog; built-in catalog if unset")

    # Audit settings
    audit_enabled: bool = Field(default=True)
    audit_denials: bool = Field(default=True, description="Write a record for every permission denial")
    audit_retention_days: int = Field(default=365)
    audit_query_default_limit: int = Field(default=AuditDefaults.QUERY_LIMIT)
    audit_query_max_limit: int = Field(default=AuditDefaults.QUERY_LIMIT_MAX)
    audit_export_page_size: int = Field(default=AuditDefaults.EXPORT_PAGE_SIZE)
    audit_query_timeout_seconds: float = Field(default=30.0)
    audit_export_timeout_seconds: float = Field(default=120.0)
    audit_stats_default_days: int = Field(default=AuditDefaults.STATS_WINDOW_DAYS)

    # Realtime relay
    notifications_enabled: bool = Field(default=True)

    # Environment-specific overrides
    debug_mode: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    model_config = {"env_prefix": "ENCORE_SEC_", "case_sensitive": False}


# Global configuration instance
security_config = SecuritySettings()


def get_security_config() -> SecuritySettings:
    """Get the global security configuration instance"""
    return security_config


def update_security_config(**kwargs) -> SecuritySettings:
    """Update security configuration with new values"""
    global security_config
    for key, value in kwargs.items():
        if hasattr(security_config, key):
            setattr(security_config, key, value)
    return security_config
