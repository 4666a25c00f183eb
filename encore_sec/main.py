"""
Encore Security Core - FastAPI Application
Bearer-authenticated audit log access, guarded by the role catalog
"""

from fastapi import FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from contextlib import asynccontextmanager
from json import JSONDecodeError
from typing import Any, Dict, Optional
import logging
import structlog

from pydantic import BaseModel

from .audit.operations import AuditOperations
from .audit.store import SqlAuditStore
from .config import get_security_config
from .constants import SERVICE_NAME, SERVICE_VERSION
from .core import SecurityCore, build_security_core
from .exceptions import (
    SecurityError,
    AuthenticationRequired,
    PermissionDenied,
    ValidationError,
    StoreUnavailable,
    OperationNotFound,
)
from .policy.context import CallContext

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()

# Global settings
settings = get_security_config()
logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

# Initialized lazily, or replaced through dependency overrides in tests
security_core: Optional[SecurityCore] = None

RETRY_AFTER_SECONDS = "5"


def get_core() -> SecurityCore:
    """FastAPI dependency returning the process-wide security core"""
    global security_core
    if security_core is None:
        security_core = build_security_core(settings)
    return security_core


class SecurityConfigOut(BaseModel):
    """Subset of security configuration exposed via API for admin/ops UI."""

    jwt_algorithm: str
    jwt_expiry_minutes: int
    super_admin_role: str
    default_role: str
    custom_catalog: bool
    audit_enabled: bool
    audit_denials: bool
    audit_retention_days: int
    audit_query_default_limit: int
    audit_query_max_limit: int
    audit_stats_default_days: int
    notifications_enabled: bool
    debug_mode: bool
    log_level: str


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    logger.info("Starting Encore Security Core", version=SERVICE_VERSION)

    core = app.dependency_overrides.get(get_core, get_core)()
    logger.info("Security services initialized", operations=len(core.registry.names))

    yield

    if isinstance(core.store, SqlAuditStore):
        core.store.dispose()
    logger.info("Shutting down Encore Security Core")

# Create FastAPI app
app = FastAPI(
    title="Encore Security Core",
    description="Role-based access control and audit logging for the Encore request service",
    version=SERVICE_VERSION,
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# =============================================================================
# ERROR MAPPING
# =============================================================================

def status_for(exc: SecurityError) -> int:
    if isinstance(exc, AuthenticationRequired):
        return 401
    if isinstance(exc, PermissionDenied):
        return 403
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, OperationNotFound):
        return 404
    if isinstance(exc, StoreUnavailable):
        return 503
    return 500


@app.exception_handler(SecurityError)
async def security_error_handler(request: Request, exc: SecurityError):
    status_code = status_for(exc)
    headers: Dict[str, str] = {}
    if isinstance(exc, AuthenticationRequired):
        headers["WWW-Authenticate"] = "Bearer"
    if isinstance(exc, StoreUnavailable):
        headers["Retry-After"] = RETRY_AFTER_SECONDS
    if status_code >= 500:
        logger.error("Request failed", path=request.url.path, error=exc.message)
    return JSONResponse(status_code=status_code, content={"detail": exc.to_dict()}, headers=headers)

# =============================================================================
# REQUEST CONTEXT
# =============================================================================

async def read_body(request: Request) -> Dict[str, Any]:
    raw = await request.body()
    if not raw:
        return {}
    try:
        body = await request.json()
    except (JSONDecodeError, UnicodeDecodeError):
        raise ValidationError("Request body must be valid JSON", field="body")
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object", field="body")
    return body


async def build_call(request: Request, core: SecurityCore) -> CallContext:
    """Authenticate the caller and capture the request inputs"""
    actor = core.resolver.resolve_bearer(request.headers.get("Authorization"))
    body = await read_body(request) if request.method in ("POST", "PUT", "PATCH") else {}
    return CallContext(
        actor=actor,
        body=body,
        params=dict(request.path_params),
        query=dict(request.query_params),
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("User-Agent"),
    )


def download(result: Dict[str, Any]) -> Response:
    headers = {"Content-Disposition": f'attachment; filename="{result["filename"]}"'}
    return Response(content=result["content"], media_type=result["media_type"], headers=headers)

# =============================================================================
# SERVICE ENDPOINTS
# =============================================================================

@app.get("/health")
async def health_check(core: SecurityCore = Depends(get_core)):
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "components": {
            "policy_catalog": len(core.catalog.role_names),
            "audit_store": type(core.store).__name__,
            "audit_enabled": core.interceptor.enabled,
            "operations": len(core.registry.names),
        },
    }


@app.get("/security/config", response_model=SecurityConfigOut)
async def get_security_config_view(core: SecurityCore = Depends(get_core)):
    """Return a sanitized view of security configuration for admin/ops tools.

    Secrets and connection strings are never included.
    """
    current = core.settings
    return SecurityConfigOut(
        jwt_algorithm=current.jwt_algorithm,
        jwt_expiry_minutes=current.jwt_expiry_minutes,
        super_admin_role=current.super_admin_role,
        default_role=current.default_role,
        custom_catalog=current.policy_catalog_path is not None,
        audit_enabled=current.audit_enabled,
        audit_denials=current.audit_denials,
        audit_retention_days=current.audit_retention_days,
        audit_query_default_limit=current.audit_query_default_limit,
        audit_query_max_limit=current.audit_query_max_limit,
        audit_stats_default_days=current.audit_stats_default_days,
        notifications_enabled=current.notifications_enabled,
        debug_mode=current.debug_mode,
        log_level=current.log_level,
    )


@app.get("/auth/me")
async def whoami(request: Request, core: SecurityCore = Depends(get_core)):
    """Caller's roles and resolved permissions"""
    context = core.resolver.resolve_bearer(request.headers.get("Authorization"))
    return context.to_dict()

# =============================================================================
# AUDIT ENDPOINTS
# =============================================================================

@app.get("/audit/logs")
async def get_audit_logs(request: Request, core: SecurityCore = Depends(get_core)):
    """Filtered, paginated audit log"""
    call = await build_call(request, core)
    return await core.registry.invoke(AuditOperations.LOGS, call)


@app.get("/audit/entity/{entityType}/{entityId}")
async def get_entity_history(entityType: str, entityId: str, request: Request,
                             core: SecurityCore = Depends(get_core)):
    """Audit history of one entity"""
    call = await build_call(request, core)
    return await core.registry.invoke(AuditOperations.ENTITY_HISTORY, call)


@app.get("/audit/stats/user/{userId}")
async def get_user_stats(userId: str, request: Request, core: SecurityCore = Depends(get_core)):
    call = await build_call(request, core)
    return await core.registry.invoke(AuditOperations.USER_STATS, call)


@app.get("/audit/stats/system")
async def get_system_stats(request: Request, core: SecurityCore = Depends(get_core)):
    call = await build_call(request, core)
    return await core.registry.invoke(AuditOperations.SYSTEM_STATS, call)


@app.post("/audit/cleanup")
async def cleanup_audit_logs(request: Request, core: SecurityCore = Depends(get_core)):
    """Delete records older than the requested retention window"""
    call = await build_call(request, core)
    return await core.registry.invoke(AuditOperations.CLEANUP, call)


@app.post("/audit/export")
async def export_audit_logs(request: Request, core: SecurityCore = Depends(get_core)):
    """Export as a JSON document, or CSV when format is CSV"""
    call = await build_call(request, core)
    result = await core.registry.invoke(AuditOperations.EXPORT, call)
    return download(result)


@app.post("/audit/export/csv")
async def export_audit_logs_csv(request: Request, core: SecurityCore = Depends(get_core)):
    """CSV export served for direct download"""
    call = await build_call(request, core)
    result = await core.registry.invoke(AuditOperations.EXPORT_CSV, call)
    return download(result)


@app.get("/audit/my-activity")
async def get_my_activity(request: Request, core: SecurityCore = Depends(get_core)):
    """Caller's own records; any userId filter is ignored"""
    call = await build_call(request, core)
    return await core.registry.invoke(AuditOperations.MY_ACTIVITY, call)


@app.get("/audit/my-stats")
async def get_my_stats(request: Request, core: SecurityCore = Depends(get_core)):
    call = await build_call(request, core)
    return await core.registry.invoke(AuditOperations.MY_STATS, call)

# =============================================================================
# ROOT ENDPOINT
# =============================================================================

@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Encore Security Core",
        "version": SERVICE_VERSION,
        "status": "operational",
        "features": {
            "rbac": True,
            "ownership_checks": True,
            "audit_log": True,
            "audit_export": True,
        }
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
