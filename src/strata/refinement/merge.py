"""
Silver merge engine: key-based upsert with freshness-based conflict resolution.

For every incoming key:
- no live row with that key  -> insert
- live row, incoming strictly newer ingest_timestamp -> update
- live row, incoming older or equal -> leave the live row unchanged

Equal timestamps are a no-op, which is what makes replaying a batch
idempotent. Each attempt plans against a freshly read snapshot and commits
against that snapshot's version; a losing attempt re-reads and re-plans only
the keys that still need writing.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Type
import logging

from strata.config import StrataConfig
from strata.core.contracts import SilverTable
from strata.core.schema import SchemaContract
from strata.engine.commit import commit_with_retry
from strata.engine.store import Row, Snapshot, TableStore, key_of
from strata.errors import ContractError, SchemaDriftViolation

logger = logging.getLogger(__name__)

FRESHNESS_COLUMN = "ingest_timestamp"

Key = Tuple[Any, ...]


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class MergePlan:
    inserts: Tuple[Row, ...] = ()
    updates: Tuple[Row, ...] = ()
    unchanged: int = 0

    @property
    def pending(self) -> Tuple[Row, ...]:
        return self.inserts + self.updates


@dataclass(frozen=True)
class MergeResult:
    table: str
    version: Optional[int]
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    attempts: int = 1


class MergeEngine:
    """Upserts clean rows into one Silver table."""

    def __init__(self, store: TableStore, contract: Type[SilverTable], config: StrataConfig):
        if not (isinstance(contract, type) and issubclass(contract, SilverTable)):
            raise TypeError(f"{contract!r} is not a SilverTable contract")
        if not contract.get_primary_key():
            raise ContractError(f"{contract.__name__} must declare Meta.primary_key")

        self.store = store
        self.contract = contract
        self.config = config
        self.table = contract.get_qualified_name()
        self.key_columns = list(contract.get_primary_key())
        self.schema: SchemaContract = contract.get_contract()

    def latest_by_key(self, rows: Iterable[Mapping[str, Any]]) -> Dict[Key, Row]:
        """
        Reduce incoming rows to one per key: the newest ingest_timestamp
        wins and ties keep the first row seen.
        """
        latest: Dict[Key, Row] = {}
        for row in rows:
            key = key_of(row, self.key_columns)
            if any(part is None for part in key):
                raise ValueError(f"Row with null primary key reached the merge: {key}")
            if row.get(FRESHNESS_COLUMN) is None:
                raise ValueError(f"Row {key} has no {FRESHNESS_COLUMN}")

            shaped = self._shape(row)
            current = latest.get(key)
            if current is None or shaped[FRESHNESS_COLUMN] > current[FRESHNESS_COLUMN]:
                latest[key] = shaped
        return latest

    def plan(self, snapshot: Snapshot, incoming: Mapping[Key, Row]) -> MergePlan:
        """Decide insert / update / no-op for every incoming key."""
        live = {key_of(row, self.key_columns): row for row in snapshot.rows}
        inserts = []
        updates = []
        unchanged = 0

        for key, row in incoming.items():
            existing = live.get(key)
            if existing is None:
                inserts.append(row)
            elif row[FRESHNESS_COLUMN] > _as_utc(existing[FRESHNESS_COLUMN]):
                updates.append(row)
            else:
                unchanged += 1

        return MergePlan(tuple(inserts), tuple(updates), unchanged)

    def check_schema(self, snapshot: Snapshot) -> None:
        """
        The Silver contract is locked: the stored schema must match it exactly.

        Raises:
            SchemaDriftViolation: If the table and the contract disagree
        """
        if not snapshot.exists or not snapshot.schema:
            return
        drifted = self.schema.drift_against(snapshot.schema)
        for column in set(snapshot.schema) ^ set(self.schema.columns):
            drifted[column] = (
                self.schema.columns.get(column, "<absent>"),
                snapshot.schema.get(column, "<absent>"),
            )
        if drifted:
            raise SchemaDriftViolation(
                self.table, drifted,
                message=f"Stored schema of '{self.table}' does not match contract "
                        f"version {self.schema.version}: {sorted(drifted)}",
            )

    def merge(self, rows: Iterable[Mapping[str, Any]]) -> MergeResult:
        """
        Merge clean rows into the Silver table atomically.

        Returns:
            MergeResult: counts and the committed version (the version read
            if nothing needed writing)

        Raises:
            SchemaDriftViolation: If the stored schema differs from the contract
            WriteConflict: If optimistic retries are exhausted
        """
        incoming = self.latest_by_key(rows)

        def attempt(number: int) -> MergeResult:
            snapshot = self.store.read_snapshot(self.table)
            self.check_schema(snapshot)
            plan = self.plan(snapshot, incoming)

            if not plan.pending:
                return MergeResult(
                    self.table, snapshot.version if snapshot.exists else None,
                    unchanged=plan.unchanged, attempts=number,
                )

            outcome = self.store.merge(
                self.table,
                plan.pending,
                self.key_columns,
                freshness_column=FRESHNESS_COLUMN,
                expected_version=snapshot.version,
                schema=self.schema.columns,
            )
            return MergeResult(
                self.table,
                outcome.version,
                inserted=outcome.inserted,
                updated=outcome.updated,
                unchanged=plan.unchanged + outcome.unchanged,
                attempts=number,
            )

        result = commit_with_retry(attempt, table=self.table, config=self.config)
        logger.info(
            f"Merged {len(incoming)} key(s) into '{self.table}': {result.inserted} inserted, "
            f"{result.updated} updated, {result.unchanged} unchanged (version {result.version})"
        )
        return result

    def _shape(self, row: Mapping[str, Any]) -> Row:
        extra = set(row) - set(self.schema.columns)
        if extra:
            raise SchemaDriftViolation(
                self.table,
                {column: ("<absent>", "<incoming>") for column in extra},
                message=f"Columns {sorted(extra)} are not in the locked contract for '{self.table}'",
            )
        shaped = {column: row.get(column) for column in self.schema.columns}
        shaped[FRESHNESS_COLUMN] = _as_utc(shaped[FRESHNESS_COLUMN])
        return shaped


__all__ = ["MergeEngine", "MergePlan", "MergeResult", "FRESHNESS_COLUMN"]
