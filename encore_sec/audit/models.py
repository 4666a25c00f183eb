"""
Audit data models for Encore
Immutable records, per-operation audit configuration, query filters and aggregates
"""

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, UTC
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from ..constants import AuditDefaults, AuditOutcomes, ExportFormats
from ..exceptions import ValidationError
from ..extractors import Extractor
from ..utils.ids import generate_audit_id
from ..utils.validators import ensure_utc


class AuditOutcome(str, Enum):
    """Result of the audited invocation"""
    SUCCESS = AuditOutcomes.SUCCESS
    FAILURE = AuditOutcomes.FAILURE
    DENIED = AuditOutcomes.DENIED


class ExportFormat(str, Enum):
    """Serialization formats for audit export"""
    JSON = ExportFormats.JSON
    CSV = ExportFormats.CSV

    @classmethod
    def parse(cls, value: Any) -> "ExportFormat":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValidationError(
                f"Unsupported export format: {value}",
                field="format",
                details={"valid_formats": list(ExportFormats.ALL)}
            )


def freeze_details(details: Any) -> Any:
    """Deep copy a payload into plain JSON types; non-JSON values are stringified"""
    if details is None:
        return None
    return json.loads(json.dumps(details, default=str))


class AuditRecord(BaseModel):
    """
    Immutable audit log entry.

    Records are only ever inserted and deleted by retention; there is no
    update path. ``digest`` is a SHA-256 over the canonical content and is
    checked with ``verify_digest``.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    timestamp: datetime
    actor_user_id: Optional[str] = Field(default=None, alias="actorUserId")
    action: str
    entity_type: str = Field(alias="entityType")
    entity_id: Optional[str] = Field(default=None, alias="entityId")
    details: Optional[Any] = None
    reason: str = AuditDefaults.DEFAULT_REASON
    sensitive: bool = False
    outcome: AuditOutcome = AuditOutcome.SUCCESS
    ip_address: Optional[str] = Field(default=None, alias="ipAddress")
    user_agent: Optional[str] = Field(default=None, alias="userAgent")
    digest: str = ""

    @field_validator("timestamp")
    @classmethod
    def _utc_timestamp(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @classmethod
    def create(cls, action: str, entity_type: str,
               actor_user_id: Optional[str] = None,
               entity_id: Optional[Any] = None,
               details: Optional[Any] = None,
               reason: Optional[str] = None,
               sensitive: bool = False,
               outcome: AuditOutcome = AuditOutcome.SUCCESS,
               ip_address: Optional[str] = None,
               user_agent: Optional[str] = None,
               timestamp: Optional[datetime] = None,
               record_id: Optional[str] = None) -> "AuditRecord":
        """Build a record with a fresh id, frozen details and its digest"""
        draft = cls(
            id=record_id or generate_audit_id(),
            timestamp=timestamp or datetime.now(UTC),
            actor_user_id=actor_user_id,
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            details=freeze_details(details),
            reason=reason or AuditDefaults.DEFAULT_REASON,
            sensitive=sensitive,
            outcome=outcome,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return draft.model_copy(update={"digest": draft.compute_digest()})

    def canonical_content(self) -> str:
        """Canonical JSON of every field except the digest"""
        content = self.model_dump(mode="json", exclude={"digest"})
        return json.dumps(content, sort_keys=True, separators=(',', ':'))

    def compute_digest(self) -> str:
        return hashlib.sha256(self.canonical_content().encode('utf-8')).hexdigest()

    def verify_digest(self) -> bool:
        return bool(self.digest) and self.digest == self.compute_digest()

    def to_dict(self) -> Dict[str, Any]:
        """API representation (camelCase keys)"""
        return self.model_dump(mode="json", by_alias=True)


@dataclass(frozen=True)
class AuditConfig:
    """
    Declarative audit settings attached to one operation.

    Extractors are named-field accessors called as ``extractor(call, result)``.
    """
    action: str
    entity_type: str
    get_entity_id: Optional[Extractor] = None
    get_details: Optional[Extractor] = None
    skip_on_error: bool = False
    sensitive: bool = False
    notify: bool = False
    reason: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.action or not self.entity_type:
            raise ValidationError("Audit configuration needs an action and an entity type",
                                  field="action")


class AuditFilters(BaseModel):
    """Query filters. Accepts both the HTTP parameter names and field names."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    user_id: Optional[str] = Field(default=None, alias="userId")
    entity_type: Optional[str] = Field(default=None, alias="entityType")
    entity_id: Optional[str] = Field(default=None, alias="entityId")
    action: Optional[str] = None
    outcome: Optional[AuditOutcome] = None
    start_date: Optional[datetime] = Field(default=None, alias="startDate")
    end_date: Optional[datetime] = Field(default=None, alias="endDate")
    limit: Optional[int] = None
    offset: int = 0

    @field_validator("start_date", "end_date")
    @classmethod
    def _utc_dates(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "AuditFilters":
        """Parse untrusted input, reporting problems as ValidationError"""
        if data is not None and not isinstance(data, Mapping):
            raise ValidationError("filters must be an object", field="filters")
        cleaned = {k: v for k, v in (data or {}).items() if v is not None and v != ""}
        try:
            return cls.model_validate(cleaned)
        except PydanticValidationError as exc:
            first = exc.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ())) or None
            raise ValidationError(
                f"Invalid filter: {first.get('msg', 'malformed value')}",
                field=field,
                details={"errors": exc.error_count()}
            ) from exc

    def scoped_to(self, user_id: str) -> "AuditFilters":
        """Copy with the user filter forced to the given id"""
        return self.model_copy(update={"user_id": user_id})

    def page(self, limit: int, offset: int) -> "AuditFilters":
        return self.model_copy(update={"limit": limit, "offset": offset})

    def to_public_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True,
                               exclude={"limit", "offset"})


class AuditPage(BaseModel):
    """One page of query results, newest first"""
    records: List[AuditRecord]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.records) < self.total

    def to_dict(self) -> Dict[str, Any]:
        return {
            "logs": [record.to_dict() for record in self.records],
            "pagination": {
                "total": self.total,
                "limit": self.limit,
                "offset": self.offset,
                "hasMore": self.has_more,
            },
        }


class ActivityStats(BaseModel):
    """Aggregate counts over a trailing window"""
    user_id: Optional[str] = None
    window_days: int
    since: datetime
    total: int = 0
    by_action: Dict[str, int] = Field(default_factory=dict)
    by_entity_type: Dict[str, int] = Field(default_factory=dict)
    by_outcome: Dict[str, int] = Field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "windowDays": self.window_days,
            "since": self.since.isoformat(),
            "total": self.total,
            "byAction": dict(self.by_action),
            "byEntityType": dict(self.by_entity_type),
            "byOutcome": dict(self.by_outcome),
        }
