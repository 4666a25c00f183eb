"""
Async audit service for Encore
Deadline-bounded access to the audit store for request handlers
"""

import asyncio
from datetime import datetime
from typing import Any, Callable, List, Optional, TypeVar

import structlog

from ..config import SecuritySettings, get_security_config
from ..exceptions import StoreTimeout
from .export import render_export
from .models import ActivityStats, AuditFilters, AuditPage, AuditRecord, ExportFormat
from .store import AuditStore

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class AuditService:
    """
    Runs blocking store calls in worker threads under a timeout.

    Reads and admin actions surface StoreUnavailable to the caller, and
    a missed deadline becomes StoreTimeout. Exports page through the
    store one awaited query at a time, so cancelling the awaiting task
    stops the export at the next page boundary.
    """

    def __init__(self, store: AuditStore, settings: Optional[SecuritySettings] = None):
        self.store = store
        self.settings = settings or get_security_config()

    @property
    def query_timeout(self) -> float:
        return self.settings.audit_query_timeout_seconds

    @property
    def export_timeout(self) -> float:
        return self.settings.audit_export_timeout_seconds

    async def _call(self, operation: str, func: Callable[..., T], *args: Any,
                    timeout: Optional[float] = None) -> T:
        timeout = self.query_timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout)
        except asyncio.TimeoutError:
            logger.error("Audit store call timed out", operation=operation, timeout=timeout)
            raise StoreTimeout(operation, timeout)

    async def append(self, record: AuditRecord) -> AuditRecord:
        return await self._call("append", self.store.append, record)

    async def query(self, filters: Optional[AuditFilters] = None,
                    timeout: Optional[float] = None) -> AuditPage:
        return await self._call("query", self.store.query, filters, timeout=timeout)

    async def entity_history(self, entity_type: str, entity_id: str,
                             limit: Optional[int] = None) -> List[AuditRecord]:
        return await self._call("entity_history", self.store.entity_history,
                                entity_type, entity_id, limit)

    async def activity_stats(self, user_id: Optional[str] = None,
                             window_days: Optional[int] = None) -> ActivityStats:
        if window_days is None:
            window_days = self.settings.audit_stats_default_days
        return await self._call("stats", self.store.activity_stats, user_id, window_days)

    async def cleanup(self, retention_days: int) -> int:
        deleted = await self._call("cleanup", self.store.cleanup, retention_days,
                                   timeout=self.export_timeout)
        logger.info("Audit cleanup completed", retention_days=retention_days, deleted=deleted)
        return deleted

    async def collect(self, filters: Optional[AuditFilters] = None,
                      as_of: Optional[datetime] = None) -> List[AuditRecord]:
        """Every record matching the filters as of now, fetched page by page"""
        snapshot = self.store.export_filters(filters, as_of or self.store.clock())

        records: List[AuditRecord] = []
        more = True
        while more:
            batch, more = await asyncio.to_thread(self.store.export_page, snapshot, len(records))
            records.extend(batch)
        return records

    async def export(self, filters: Optional[AuditFilters] = None,
                     export_format: Any = ExportFormat.JSON,
                     timeout: Optional[float] = None) -> bytes:
        export_format = ExportFormat.parse(export_format)
        filters = filters or AuditFilters()
        timeout = self.export_timeout if timeout is None else timeout
        exported_at = self.store.clock()

        try:
            records = await asyncio.wait_for(self.collect(filters, exported_at), timeout)
        except asyncio.TimeoutError:
            logger.error("Audit export timed out", format=export_format.value, timeout=timeout)
            raise StoreTimeout("export", timeout)

        logger.info("Exported audit records", format=export_format.value, count=len(records))
        return render_export(records, export_format, filters, exported_at)
