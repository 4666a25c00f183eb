"""
Audit log operations for Encore
Query, statistics, retention cleanup and export, registered as guarded operations
"""

from typing import Any, Dict, Optional

import structlog

from ..config import SecuritySettings, get_security_config
from ..constants import AuditActions, CSV_FILENAME, CSV_MEDIA_TYPE, JSON_MEDIA_TYPE
from ..extractors import compose, constant, from_body, from_params, from_query, pick_body, query_params
from ..pipeline import OperationRegistry
from ..policy.context import CallContext
from ..policy.guard import PermissionRequirement
from ..policy.models import Action, Entity
from ..utils.validators import parse_optional_int, validate_user_id
from .models import AuditConfig, AuditFilters, ExportFormat
from .service import AuditService

logger = structlog.get_logger(__name__)


class AuditOperations:
    """Operation names exposed by the audit module"""
    LOGS = "audit.logs"
    ENTITY_HISTORY = "audit.entity_history"
    USER_STATS = "audit.user_stats"
    SYSTEM_STATS = "audit.system_stats"
    CLEANUP = "audit.cleanup"
    EXPORT = "audit.export"
    EXPORT_CSV = "audit.export_csv"
    MY_ACTIVITY = "audit.my_activity"
    MY_STATS = "audit.my_stats"


def export_payload(content: bytes, export_format: ExportFormat) -> Dict[str, Any]:
    if export_format == ExportFormat.CSV:
        return {"format": export_format.value, "media_type": CSV_MEDIA_TYPE,
                "filename": CSV_FILENAME, "content": content}
    return {"format": export_format.value, "media_type": JSON_MEDIA_TYPE,
            "filename": "audit_logs.json", "content": content}


def register_audit_operations(registry: OperationRegistry, service: AuditService,
                              settings: Optional[SecuritySettings] = None) -> OperationRegistry:
    """Attach the audit log operations to a registry"""
    settings = settings or get_security_config()

    view_logs = PermissionRequirement(Entity.AUDIT_LOG, Action.VIEW)
    view_analytics = PermissionRequirement(Entity.ANALYTICS, Action.VIEW)

    @registry.operation(
        AuditOperations.LOGS,
        requires=view_logs,
        audit=AuditConfig(
            action=AuditActions.AUDIT_LOG_VIEW,
            entity_type=Entity.AUDIT_LOG.value,
            get_details=compose(filters=query_params()),
        ),
    )
    async def audit_logs(call: CallContext) -> Dict[str, Any]:
        page = await service.query(AuditFilters.from_mapping(call.query))
        return page.to_dict()

    @registry.operation(
        AuditOperations.ENTITY_HISTORY,
        requires=view_logs,
        audit=AuditConfig(
            action=AuditActions.AUDIT_LOG_VIEW,
            entity_type=Entity.AUDIT_LOG.value,
            get_entity_id=from_params("entityId"),
            get_details=compose(entityType=from_params("entityType"),
                                entityId=from_params("entityId")),
        ),
    )
    async def entity_history(call: CallContext) -> Dict[str, Any]:
        entity_type = call.params.get("entityType")
        entity_id = call.params.get("entityId")
        limit = parse_optional_int(call.query.get("limit"), "limit")
        records = await service.entity_history(entity_type, entity_id, limit)
        return {
            "entityType": entity_type,
            "entityId": entity_id,
            "history": [record.to_dict() for record in records],
        }

    @registry.operation(
        AuditOperations.USER_STATS,
        requires=view_analytics,
        audit=AuditConfig(
            action=AuditActions.ANALYTICS_VIEW,
            entity_type=Entity.USER.value,
            get_entity_id=from_params("userId"),
            get_details=compose(targetUserId=from_params("userId"), days=from_query("days")),
        ),
    )
    async def user_stats(call: CallContext) -> Dict[str, Any]:
        days = parse_optional_int(call.query.get("days"), "days")
        user_id = validate_user_id(call.params.get("userId"), "userId")
        stats = await service.activity_stats(user_id, days)
        return stats.to_dict()

    @registry.operation(
        AuditOperations.SYSTEM_STATS,
        requires=view_analytics,
        audit=AuditConfig(
            action=AuditActions.ANALYTICS_VIEW,
            entity_type=Entity.SYSTEM.value,
            get_details=compose(days=from_query("days")),
        ),
    )
    async def system_stats(call: CallContext) -> Dict[str, Any]:
        days = parse_optional_int(call.query.get("days"), "days")
        stats = await service.activity_stats(None, days)
        return stats.to_dict()

    @registry.operation(
        AuditOperations.CLEANUP,
        requires=PermissionRequirement(Entity.AUDIT_LOG, Action.DELETE),
        audit=AuditConfig(
            action=AuditActions.AUDIT_LOG_CLEANUP,
            entity_type=Entity.AUDIT_LOG.value,
            get_details=pick_body("retentionDays"),
            sensitive=True,
            notify=True,
        ),
    )
    async def cleanup(call: CallContext) -> Dict[str, Any]:
        # retentionDays is required; there is no configured fallback.
        retention_days = call.body.get("retentionDays")
        deleted = await service.cleanup(retention_days)
        return {"deletedCount": deleted, "retentionDays": int(retention_days)}

    @registry.operation(
        AuditOperations.EXPORT,
        requires=PermissionRequirement(Entity.AUDIT_LOG, Action.EXPORT),
        audit=AuditConfig(
            action=AuditActions.DATA_EXPORT,
            entity_type=Entity.AUDIT_LOG.value,
            get_details=compose(filters=from_body("filters"),
                                format=from_body("format", "JSON")),
            sensitive=True,
        ),
    )
    async def export(call: CallContext) -> Dict[str, Any]:
        export_format = ExportFormat.parse(call.body.get("format") or ExportFormat.JSON)
        filters = AuditFilters.from_mapping(call.body.get("filters"))
        content = await service.export(filters, export_format)
        return export_payload(content, export_format)

    @registry.operation(
        AuditOperations.EXPORT_CSV,
        requires=PermissionRequirement(Entity.AUDIT_LOG, Action.EXPORT),
        audit=AuditConfig(
            action=AuditActions.DATA_EXPORT,
            entity_type=Entity.AUDIT_LOG.value,
            get_details=compose(filters=from_body("filters"), format=constant("CSV")),
            sensitive=True,
        ),
    )
    async def export_csv(call: CallContext) -> Dict[str, Any]:
        filters = AuditFilters.from_mapping(call.body.get("filters"))
        content = await service.export(filters, ExportFormat.CSV)
        return export_payload(content, ExportFormat.CSV)

    # Self-scoped views: the user filter is always the caller's own id.

    @registry.operation(AuditOperations.MY_ACTIVITY)
    async def my_activity(call: CallContext) -> Dict[str, Any]:
        filters = AuditFilters.from_mapping(call.query).scoped_to(call.actor_id)
        page = await service.query(filters)
        return page.to_dict()

    @registry.operation(AuditOperations.MY_STATS)
    async def my_stats(call: CallContext) -> Dict[str, Any]:
        days = parse_optional_int(call.query.get("days"), "days")
        stats = await service.activity_stats(call.actor_id, days)
        return stats.to_dict()

    logger.info("Audit operations registered", count=len(registry.names),
                audit_enabled=settings.audit_enabled)
    return registry
