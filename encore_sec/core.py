"""
Service wiring for the Encore security core
Builds the catalog, resolver, guard, audit stack and operation registry from settings
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from .audit.interceptor import AuditInterceptor
from .audit.operations import register_audit_operations
from .audit.service import AuditService
from .audit.store import AuditStore, SqlAuditStore
from .config import SecuritySettings, get_security_config
from .constants import Roles
from .notifications import LoggingRelay, NotificationRelay, NullRelay
from .pipeline import OperationRegistry
from .policy.catalog import PolicyCatalog, load_catalog
from .policy.context import AuthContextResolver, RoleDirectory
from .policy.guard import PermissionGuard

logger = structlog.get_logger(__name__)


@dataclass
class SecurityCore:
    """Every long-lived collaborator a request needs"""
    settings: SecuritySettings
    catalog: PolicyCatalog
    resolver: AuthContextResolver
    guard: PermissionGuard
    store: AuditStore
    relay: NotificationRelay
    interceptor: AuditInterceptor
    service: AuditService
    registry: OperationRegistry


def build_security_core(settings: Optional[SecuritySettings] = None,
                        store: Optional[AuditStore] = None,
                        relay: Optional[NotificationRelay] = None,
                        catalog: Optional[PolicyCatalog] = None,
                        role_directory: Optional[RoleDirectory] = None) -> SecurityCore:
    """Assemble the core; catalog problems raise CatalogLoadError and stop startup"""
    settings = settings or get_security_config()

    if catalog is None:
        catalog = load_catalog(
            settings.policy_catalog_path,
            super_admin_role=settings.super_admin_role,
            required_roles=(settings.default_role,) if settings.default_role else (Roles.GUEST,),
        )

    if store is None:
        store = SqlAuditStore(
            settings.database_url,
            default_limit=settings.audit_query_default_limit,
            max_limit=settings.audit_query_max_limit,
            export_page_size=settings.audit_export_page_size,
        )

    if relay is None:
        relay = LoggingRelay() if settings.notifications_enabled else NullRelay()

    resolver = AuthContextResolver(
        catalog,
        default_role=settings.default_role,
        role_directory=role_directory,
        secret_key=settings.jwt_secret_key,
    )
    guard = PermissionGuard(catalog)
    interceptor = AuditInterceptor(store, relay=relay, enabled=settings.audit_enabled)
    service = AuditService(store, settings)
    registry = OperationRegistry(guard, interceptor, audit_denials=settings.audit_denials)
    register_audit_operations(registry, service, settings)

    logger.info("Security core initialised", roles=sorted(catalog.role_names),
                operations=len(registry.names), store=type(store).__name__)

    return SecurityCore(
        settings=settings,
        catalog=catalog,
        resolver=resolver,
        guard=guard,
        store=store,
        relay=relay,
        interceptor=interceptor,
        service=service,
        registry=registry,
    )
