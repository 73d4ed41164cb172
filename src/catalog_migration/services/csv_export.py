"""CSV export of the results ledger and the audit trail.

Every field is quoted and rows end with CRLF so spreadsheets open the files
the same way on every platform.
"""
import csv
import io
from datetime import datetime, timezone
from typing import Iterable, Optional

from catalog_migration.models.records import AuditLogEntry, ResultRecord

RESULT_COLUMNS = ("id", "name", "status", "error", "retry_count", "duration_ms", "timestamp")
AUDIT_COLUMNS = ("timestamp", "action", "details", "session_id")


def _write(columns: tuple[str, ...], rows: Iterable[dict]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\r\n")
    writer.writerow(columns)
    for row in rows:
        writer.writerow(["" if row.get(col) is None else row[col] for col in columns])
    return buffer.getvalue()


def results_to_csv(records: Iterable[ResultRecord]) -> str:
    return _write(RESULT_COLUMNS, (record.model_dump(mode="json") for record in records))


def audit_to_csv(entries: Iterable[AuditLogEntry]) -> str:
    return _write(AUDIT_COLUMNS, (entry.model_dump(mode="json") for entry in entries))


def results_from_csv(text: str) -> list[ResultRecord]:
    """Parse a results export back into records."""
    reader = csv.DictReader(io.StringIO(text, newline=""))
    return [ResultRecord.model_validate(row) for row in reader]


def export_filename(kind: str, now: Optional[datetime] = None) -> str:
    """e.g. `migration-results-20260101-030000.csv`"""
    now = now or datetime.now(timezone.utc)
    return f"migration-{kind}-{now:%Y%m%d-%H%M%S}.csv"
