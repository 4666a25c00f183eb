"""
Audit export rendering
JSON documents and flat CSV files built from a sequence of records
"""

import csv
import io
import json
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from ..constants import CSV_COLUMNS
from .models import AuditFilters, AuditRecord, ExportFormat


def csv_row(record: AuditRecord) -> List[str]:
    """Flatten a record into the fixed CSV column order"""
    details = ""
    if record.details is not None:
        details = json.dumps(record.details, sort_keys=True, separators=(',', ':'))
    return [
        record.timestamp.isoformat(),
        record.actor_user_id or "",
        record.action,
        record.entity_type,
        record.entity_id or "",
        details,
        record.reason,
    ]


def render_csv(records: Iterable[AuditRecord]) -> bytes:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for record in records:
        writer.writerow(csv_row(record))
    return buffer.getvalue().encode("utf-8")


def render_json(records: Iterable[AuditRecord], filters: Optional[AuditFilters],
                exported_at: datetime) -> bytes:
    rows = [record.to_dict() for record in records]
    document: Dict[str, Any] = {
        "exported_at": exported_at.isoformat(),
        "filters": filters.to_public_dict() if filters else {},
        "records": rows,
        "record_count": len(rows),
    }
    return json.dumps(document, indent=2).encode("utf-8")


def render_export(records: Iterable[AuditRecord], export_format: ExportFormat,
                  filters: Optional[AuditFilters], exported_at: datetime) -> bytes:
    """Serialise records in the requested format"""
    if export_format == ExportFormat.CSV:
        return render_csv(records)
    return render_json(records, filters, exported_at)
