"""
Bronze metadata envelope.

Stamps provenance columns onto a batch. The clock is read once per call so
every row of a batch shares one ingest_timestamp and one batch_id.
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional
import uuid


@dataclass(frozen=True)
class Envelope:
    ingest_timestamp: datetime
    batch_id: str
    source_system: str
    ingest_date: date

    def as_columns(self) -> Dict[str, Any]:
        return {
            "ingest_timestamp": self.ingest_timestamp,
            "source_system": self.source_system,
            "batch_id": self.batch_id,
            "ingest_date": self.ingest_date,
        }


def new_batch_id() -> str:
    return uuid.uuid4().hex


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def make_envelope(
    source_system: str,
    batch_id: str,
    clock: Optional[Callable[[], datetime]] = None,
    ingest_date: Optional[date] = None,
) -> Envelope:
    """Read the clock once and build the envelope for one batch."""
    if not source_system:
        raise ValueError("source_system is required")
    if not batch_id:
        raise ValueError("batch_id is required")

    timestamp = (clock or utc_now)()
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    else:
        timestamp = timestamp.astimezone(timezone.utc)

    return Envelope(
        ingest_timestamp=timestamp,
        batch_id=batch_id,
        source_system=source_system,
        ingest_date=ingest_date or timestamp.date(),
    )


def stamp_envelope(
    records: Iterable[Mapping[str, Any]],
    source_system: str,
    batch_id: str,
    clock: Optional[Callable[[], datetime]] = None,
    ingest_date: Optional[date] = None,
) -> List[Dict[str, Any]]:
    """
    Add the envelope columns to every record of a batch.

    Args:
        records: Sanitized records
        source_system: Identifier of the source connector
        batch_id: Correlation id of this invocation
        clock: Returns the current time; read exactly once
        ingest_date: Partition key; defaults to the UTC date of the timestamp

    Returns:
        New record dicts; envelope columns replace same-named payload fields
    """
    envelope = make_envelope(source_system, batch_id, clock=clock, ingest_date=ingest_date)
    columns = envelope.as_columns()
    return [{**record, **columns} for record in records]


__all__ = [
    "Envelope",
    "make_envelope",
    "stamp_envelope",
    "new_batch_id",
    "utc_now",
]
