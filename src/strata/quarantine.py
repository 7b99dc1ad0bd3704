"""
Quarantine / dead-letter routing.

Every stage sends rejected records here. Each stage owns one append-only
quarantine table (quarantine.bronze, quarantine.silver); nothing is merged or
deduplicated, so repeated rejections are all kept for audit. Rows are only
ever removed by an explicit administrative purge.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional
import json
import logging

from strata.config import StrataConfig
from strata.core.schema import ENVELOPE_COLUMNS
from strata.engine.commit import commit_with_retry
from strata.engine.store import TableStore

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    """Pipeline stage that produced a quarantine row."""
    BRONZE = "bronze"
    SILVER = "silver"


class QuarantineReason(str, Enum):
    """Enumerated reasons a record is quarantined."""
    SANITIZATION_FAILED = "sanitization_failed"
    SCHEMA_DRIFT = "schema_drift"
    RANGE_CHECK_FAILED = "range_check_failed"
    PATTERN_CHECK_FAILED = "pattern_check_failed"
    REFERENCE_CHECK_FAILED = "reference_check_failed"
    REQUIRED_FIELD_MISSING = "required_field_missing"
    QUALITY_RULE_ERROR = "quality_rule_error"


QUARANTINE_SCHEMA: Dict[str, str] = {
    "payload": "string",
    "attempted": "string",
    "error_reason": "string",
    "error_detail": "string",
    "stage": "string",
    **ENVELOPE_COLUMNS,
    "quarantined_at": "timestamp",
}


def _to_json(value: Optional[Mapping[str, Any]]) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, default=str, sort_keys=True)


@dataclass(frozen=True)
class QuarantineRecord:
    """A rejected record on its way to a quarantine table."""

    stage: Stage
    reason: str
    payload: Dict[str, Any]
    detail: Optional[str] = None
    attempted: Optional[Dict[str, Any]] = None
    envelope: Dict[str, Any] = field(default_factory=dict)

    def to_row(self, quarantined_at: datetime) -> Dict[str, Any]:
        row = {
            "payload": _to_json(self.payload),
            "attempted": _to_json(self.attempted),
            "error_reason": str(getattr(self.reason, "value", self.reason)),
            "error_detail": self.detail,
            "stage": self.stage.value,
            "quarantined_at": quarantined_at,
        }
        for column in ENVELOPE_COLUMNS:
            row[column] = self.envelope.get(column)
        return row


def quarantine_table(stage: Stage) -> str:
    return f"quarantine.{stage.value}"


class QuarantineRouter:
    """Append-only sink for rejected records, one table per stage."""

    def __init__(
        self,
        store: TableStore,
        config: StrataConfig,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.config = config
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def route(self, records: Iterable[QuarantineRecord]) -> int:
        """
        Append records to their stage's quarantine table.

        Each stage's records are committed in one atomic append.

        Returns:
            int: Number of rows written
        """
        by_stage: Dict[Stage, List[QuarantineRecord]] = {}
        for record in records:
            by_stage.setdefault(record.stage, []).append(record)

        written = 0
        quarantined_at = self.clock()
        for stage, stage_records in by_stage.items():
            table = quarantine_table(stage)
            rows = [record.to_row(quarantined_at) for record in stage_records]

            def attempt(number: int, rows=rows, table=table, stage=stage) -> int:
                snapshot = self.store.read_snapshot(table)
                return self.store.append(
                    table,
                    rows,
                    {"stage": stage.value},
                    expected_version=snapshot.version,
                    schema=QUARANTINE_SCHEMA,
                )

            version = commit_with_retry(attempt, table=table, config=self.config)
            written += len(rows)

            reasons = sorted({row["error_reason"] for row in rows})
            logger.warning(
                f"Quarantined {len(rows)} record(s) in '{table}' (version {version}): {reasons}"
            )

        return written

    def read(self, stage: Stage) -> List[Dict[str, Any]]:
        """Quarantine rows for a stage with payload/attempted decoded."""
        snapshot = self.store.read_snapshot(quarantine_table(stage))
        rows = []
        for row in snapshot.rows:
            decoded = dict(row)
            for column in ("payload", "attempted"):
                if decoded.get(column) is not None:
                    decoded[column] = json.loads(decoded[column])
            rows.append(decoded)
        return rows

    def purge(self, stage: Stage, matcher: Callable[[Dict[str, Any]], bool], *, requested_by: str) -> int:
        """
        Administrative purge of quarantine rows (e.g. a deletion request).

        Purging is always explicit; quarantine rows never expire on their own.

        Args:
            stage: Which quarantine table to purge
            matcher: Called with the decoded payload; True removes the row
            requested_by: Who asked for the purge, recorded in the log

        Returns:
            int: Number of rows removed
        """
        table = quarantine_table(stage)

        def attempt(number: int) -> int:
            snapshot = self.store.read_snapshot(table)
            if not snapshot.exists:
                return 0
            kept = [row for row in snapshot.rows if not matcher(json.loads(row["payload"]))]
            removed = len(snapshot.rows) - len(kept)
            if removed:
                self.store.overwrite(
                    table, kept, None,
                    expected_version=snapshot.version,
                    schema=snapshot.schema or QUARANTINE_SCHEMA,
                )
            return removed

        removed = commit_with_retry(attempt, table=table, config=self.config)
        logger.warning(f"Purged {removed} row(s) from '{table}' at the request of {requested_by}")
        return removed


__all__ = [
    "Stage",
    "QuarantineReason",
    "QuarantineRecord",
    "QuarantineRouter",
    "QUARANTINE_SCHEMA",
    "quarantine_table",
]
