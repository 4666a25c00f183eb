"""
Audit storage adapters for Encore
Append-only persistence with filtered query, retention cleanup and export
"""

import json
import threading
from abc import ABC, abstractmethod
from collections import Counter
from datetime import datetime, timedelta, UTC
from typing import Callable, Dict, List, Optional, Tuple

import structlog
from sqlalchemy import create_engine, func, Column, String, DateTime, Text, Boolean
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ..constants import AuditDefaults
from ..exceptions import StoreUnavailable, ValidationError
from ..utils.validators import validate_date_range, validate_pagination, validate_positive_days
from .models import ActivityStats, AuditFilters, AuditOutcome, AuditPage, AuditRecord

logger = structlog.get_logger(__name__)

Base = declarative_base()

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


class AuditRecordDB(Base):
    """SQLAlchemy model for audit records"""
    __tablename__ = "audit_logs"

    id = Column(String, primary_key=True)
    timestamp = Column(DateTime, nullable=False, index=True)  # naive UTC

    actor_user_id = Column(String, index=True)
    action = Column(String, nullable=False, index=True)
    entity_type = Column(String, nullable=False, index=True)
    entity_id = Column(String, index=True)

    details = Column(Text)  # JSON string
    reason = Column(Text, nullable=False)
    sensitive = Column(Boolean, nullable=False, default=False)
    outcome = Column(String, nullable=False)

    ip_address = Column(String)
    user_agent = Column(Text)
    digest = Column(String(64), nullable=False)


class AuditStore(ABC):
    """
    Base class for audit persistence.

    Subclasses supply insert, filtered selection, aggregation and
    delete-before-cutoff. Validation, paging, retention windows and
    export snapshots are shared here so every backend behaves identically.
    """

    def __init__(self, clock: Optional[Clock] = None,
                 default_limit: int = AuditDefaults.QUERY_LIMIT,
                 max_limit: int = AuditDefaults.QUERY_LIMIT_MAX,
                 export_page_size: int = AuditDefaults.EXPORT_PAGE_SIZE):
        self.clock = clock or utc_now
        self.default_limit = default_limit
        self.max_limit = max_limit
        self.export_page_size = export_page_size

    # -- backend hooks ------------------------------------------------------

    @abstractmethod
    def append(self, record: AuditRecord) -> AuditRecord:
        """Insert a record; raises StoreUnavailable on backend failure"""

    @abstractmethod
    def _select(self, filters: AuditFilters, limit: int, offset: int) -> Tuple[List[AuditRecord], int]:
        """Return (page newest-first, total matching)"""

    @abstractmethod
    def _aggregate(self, user_id: Optional[str], since: datetime) -> Tuple[int, Dict[str, Counter]]:
        """Return (total, {"action": ..., "entity_type": ..., "outcome": ...} counters)"""

    @abstractmethod
    def _delete_before(self, cutoff: datetime) -> int:
        """Delete records with timestamp strictly before cutoff"""

    # -- shared operations --------------------------------------------------

    def normalise(self, filters: Optional[AuditFilters]) -> Tuple[AuditFilters, int, int]:
        """Validate filters and resolve the effective limit/offset"""
        filters = filters or AuditFilters()
        validate_date_range(filters.start_date, filters.end_date)
        limit, offset = validate_pagination(filters.limit, filters.offset,
                                            self.default_limit, self.max_limit)
        return filters, limit, offset

    def query(self, filters: Optional[AuditFilters] = None) -> AuditPage:
        filters, limit, offset = self.normalise(filters)
        records, total = self._select(filters, limit, offset)
        return AuditPage(records=records, total=total, limit=limit, offset=offset)

    def count(self, filters: Optional[AuditFilters] = None) -> int:
        filters, _, _ = self.normalise(filters)
        _, total = self._select(filters, 0, 0)
        return total

    def entity_history(self, entity_type: str, entity_id: str,
                       limit: Optional[int] = None) -> List[AuditRecord]:
        """Records for one entity, newest first"""
        if not entity_type or entity_id is None or str(entity_id) == "":
            raise ValidationError("entityType and entityId are required", field="entityId")
        filters = AuditFilters(
            entity_type=entity_type,
            entity_id=str(entity_id),
            limit=AuditDefaults.HISTORY_LIMIT if limit is None else limit,
        )
        return self.query(filters).records

    def activity_stats(self, user_id: Optional[str] = None,
                       window_days: int = AuditDefaults.STATS_WINDOW_DAYS) -> ActivityStats:
        """Counts by action, entity type and outcome over the trailing window"""
        window_days = validate_positive_days(window_days, field_name="days")
        since = self.clock() - timedelta(days=window_days)
        total, counters = self._aggregate(user_id, since)
        return ActivityStats(
            user_id=user_id,
            window_days=window_days,
            since=since,
            total=total,
            by_action=dict(counters["action"]),
            by_entity_type=dict(counters["entity_type"]),
            by_outcome=dict(counters["outcome"]),
        )

    def cleanup(self, retention_days: int) -> int:
        """Delete records older than now - retention_days; the boundary is kept"""
        retention_days = validate_positive_days(retention_days, field_name="retentionDays")
        # Cutoff is fixed once so concurrent appends are never swept up.
        cutoff = self.clock() - timedelta(days=retention_days)
        deleted = self._delete_before(cutoff)
        logger.info("Cleaned up audit records", retention_days=retention_days,
                    cutoff=cutoff.isoformat(), deleted=deleted)
        return deleted

    def export_filters(self, filters: Optional[AuditFilters], as_of: datetime) -> AuditFilters:
        """Filters for an export snapshot: end date clamped to the export start"""
        filters = filters or AuditFilters()
        validate_date_range(filters.start_date, filters.end_date)
        end_date = filters.end_date
        if end_date is None or end_date > as_of:
            end_date = as_of
        return filters.model_copy(update={"end_date": end_date, "limit": None, "offset": 0})

    def export_page(self, snapshot: AuditFilters, offset: int) -> Tuple[List[AuditRecord], bool]:
        """One page of an export snapshot and whether more pages follow"""
        page_size = max(1, min(self.export_page_size, self.max_limit))
        page = self.query(snapshot.page(page_size, offset))
        more = len(page.records) == page_size and offset + len(page.records) < page.total
        return page.records, more


def _to_naive_utc(value: datetime) -> datetime:
    return value.astimezone(UTC).replace(tzinfo=None)


class SqlAuditStore(AuditStore):
    """Storage adapter for audit records on any SQLAlchemy database"""

    def __init__(self, database_url: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        # Default to SQLite for development
        self.database_url = database_url or "sqlite:///audit.db"

        engine_kwargs = {}
        if self.database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if self.database_url in ("sqlite://", "sqlite:///:memory:"):
                # One shared connection, or each thread would see its own empty database
                engine_kwargs["poolclass"] = StaticPool

        try:
            self.engine = create_engine(self.database_url, **engine_kwargs)
            self.SessionLocal = sessionmaker(bind=self.engine)

            # Create tables
            Base.metadata.create_all(bind=self.engine)
        except SQLAlchemyError as e:
            logger.error("Failed to initialise audit store", error=str(e))
            raise StoreUnavailable(operation="initialise") from e

    def dispose(self) -> None:
        self.engine.dispose()

    def _to_db_model(self, record: AuditRecord) -> AuditRecordDB:
        """Convert AuditRecord to database model"""
        return AuditRecordDB(
            id=record.id,
            timestamp=_to_naive_utc(record.timestamp),
            actor_user_id=record.actor_user_id,
            action=record.action,
            entity_type=record.entity_type,
            entity_id=record.entity_id,
            details=json.dumps(record.details) if record.details is not None else None,
            reason=record.reason,
            sensitive=record.sensitive,
            outcome=record.outcome.value,
            ip_address=record.ip_address,
            user_agent=record.user_agent,
            digest=record.digest,
        )

    def _from_db_model(self, row: AuditRecordDB) -> AuditRecord:
        """Convert database model to AuditRecord"""
        details = None
        if row.details is not None:
            try:
                details = json.loads(row.details)
            except json.JSONDecodeError:
                logger.warning("Invalid details JSON", record_id=row.id)

        return AuditRecord(
            id=row.id,
            timestamp=row.timestamp.replace(tzinfo=UTC),
            actor_user_id=row.actor_user_id,
            action=row.action,
            entity_type=row.entity_type,
            entity_id=row.entity_id,
            details=details,
            reason=row.reason,
            sensitive=bool(row.sensitive),
            outcome=AuditOutcome(row.outcome),
            ip_address=row.ip_address,
            user_agent=row.user_agent,
            digest=row.digest,
        )

    def _filtered(self, session, filters: AuditFilters):
        q = session.query(AuditRecordDB)
        if filters.user_id is not None:
            q = q.filter(AuditRecordDB.actor_user_id == filters.user_id)
        if filters.entity_type is not None:
            q = q.filter(AuditRecordDB.entity_type == filters.entity_type)
        if filters.entity_id is not None:
            q = q.filter(AuditRecordDB.entity_id == filters.entity_id)
        if filters.action is not None:
            q = q.filter(AuditRecordDB.action == filters.action)
        if filters.outcome is not None:
            q = q.filter(AuditRecordDB.outcome == filters.outcome.value)
        if filters.start_date is not None:
            q = q.filter(AuditRecordDB.timestamp >= _to_naive_utc(filters.start_date))
        if filters.end_date is not None:
            q = q.filter(AuditRecordDB.timestamp <= _to_naive_utc(filters.end_date))
        return q

    def append(self, record: AuditRecord) -> AuditRecord:
        """Store a new audit record"""
        try:
            with self.SessionLocal() as session:
                session.add(self._to_db_model(record))
                session.commit()
        except IntegrityError as e:
            raise ValidationError(f"Audit record already exists: {record.id}", field="id") from e
        except SQLAlchemyError as e:
            logger.error("Failed to store audit record", record_id=record.id, error=str(e))
            raise StoreUnavailable(operation="append") from e

        logger.debug("Stored audit record", record_id=record.id, action=record.action)
        return record

    def _select(self, filters: AuditFilters, limit: int, offset: int) -> Tuple[List[AuditRecord], int]:
        try:
            with self.SessionLocal() as session:
                q = self._filtered(session, filters)
                total = q.count()
                if limit == 0:
                    return [], total
                rows = (
                    q.order_by(AuditRecordDB.timestamp.desc(), AuditRecordDB.id.desc())
                    .offset(offset)
                    .limit(limit)
                    .all()
                )
                return [self._from_db_model(row) for row in rows], total
        except SQLAlchemyError as e:
            logger.error("Failed to query audit records", error=str(e))
            raise StoreUnavailable(operation="query") from e

    def _aggregate(self, user_id: Optional[str], since: datetime) -> Tuple[int, Dict[str, Counter]]:
        columns = {
            "action": AuditRecordDB.action,
            "entity_type": AuditRecordDB.entity_type,
            "outcome": AuditRecordDB.outcome,
        }
        try:
            with self.SessionLocal() as session:
                base = self._filtered(session, AuditFilters(user_id=user_id, start_date=since))
                total = base.count()
                counters: Dict[str, Counter] = {}
                for name, column in columns.items():
                    rows = (
                        base.with_entities(column, func.count(AuditRecordDB.id))
                        .group_by(column)
                        .all()
                    )
                    counters[name] = Counter({key: count for key, count in rows})
                return total, counters
        except SQLAlchemyError as e:
            logger.error("Failed to aggregate audit records", user_id=user_id, error=str(e))
            raise StoreUnavailable(operation="stats") from e

    def _delete_before(self, cutoff: datetime) -> int:
        try:
            with self.SessionLocal() as session:
                deleted = (
                    session.query(AuditRecordDB)
                    .filter(AuditRecordDB.timestamp < _to_naive_utc(cutoff))
                    .delete(synchronize_session=False)
                )
                session.commit()
                return deleted
        except SQLAlchemyError as e:
            logger.error("Failed to clean up audit records", error=str(e))
            raise StoreUnavailable(operation="cleanup") from e


class InMemoryAuditStore(AuditStore):
    """In-memory storage for testing and embedded use"""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._records: Dict[str, AuditRecord] = {}
        self._lock = threading.Lock()

    def append(self, record: AuditRecord) -> AuditRecord:
        """Store record in memory"""
        with self._lock:
            if record.id in self._records:
                raise ValidationError(f"Audit record already exists: {record.id}", field="id")
            self._records[record.id] = record.model_copy(deep=True)
        return record

    def all_records(self) -> List[AuditRecord]:
        with self._lock:
            return [r.model_copy(deep=True) for r in self._records.values()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    @staticmethod
    def _matches(record: AuditRecord, filters: AuditFilters) -> bool:
        if filters.user_id is not None and record.actor_user_id != filters.user_id:
            return False
        if filters.entity_type is not None and record.entity_type != filters.entity_type:
            return False
        if filters.entity_id is not None and record.entity_id != filters.entity_id:
            return False
        if filters.action is not None and record.action != filters.action:
            return False
        if filters.outcome is not None and record.outcome != filters.outcome:
            return False
        if filters.start_date is not None and record.timestamp < filters.start_date:
            return False
        if filters.end_date is not None and record.timestamp > filters.end_date:
            return False
        return True

    def _select(self, filters: AuditFilters, limit: int, offset: int) -> Tuple[List[AuditRecord], int]:
        with self._lock:
            matched = [r for r in self._records.values() if self._matches(r, filters)]
        matched.sort(key=lambda r: (r.timestamp, r.id), reverse=True)
        page = matched[offset:offset + limit] if limit else []
        return [r.model_copy(deep=True) for r in page], len(matched)

    def _aggregate(self, user_id: Optional[str], since: datetime) -> Tuple[int, Dict[str, Counter]]:
        filters = AuditFilters(user_id=user_id, start_date=since)
        with self._lock:
            matched = [r for r in self._records.values() if self._matches(r, filters)]
        return len(matched), {
            "action": Counter(r.action for r in matched),
            "entity_type": Counter(r.entity_type for r in matched),
            "outcome": Counter(r.outcome.value for r in matched),
        }

    def _delete_before(self, cutoff: datetime) -> int:
        with self._lock:
            expired = [rid for rid, r in self._records.items() if r.timestamp < cutoff]
            for rid in expired:
                del self._records[rid]
        return len(expired)
