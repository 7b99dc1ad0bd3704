"""
Table store collaborators.

The core never holds table state in process memory between calls: it reads a
versioned snapshot, plans a write, and commits it against the version it read.
A store that finds a newer version at commit time raises CommitConflict and
the caller retries against a fresh snapshot.
"""

from abc import ABC, abstractmethod
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
import logging
import threading

from strata.errors import CommitConflict

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


@dataclass(frozen=True)
class Snapshot:
    """A committed, immutable view of one table at one version."""

    table: str
    version: int
    rows: Tuple[Row, ...] = ()
    schema: Dict[str, str] = field(default_factory=dict)

    @property
    def exists(self) -> bool:
        return self.version >= 0

    def rows_matching(self, predicate: Optional[Mapping[str, Any]]) -> List[Row]:
        """Rows whose columns equal every value in `predicate` (all rows if None)."""
        if not predicate:
            return list(self.rows)
        return [row for row in self.rows if _matches(row, predicate)]


@dataclass(frozen=True)
class MergeOutcome:
    version: int
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0


def _matches(row: Mapping[str, Any], predicate: Mapping[str, Any]) -> bool:
    return all(row.get(column) == value for column, value in predicate.items())


def key_of(row: Mapping[str, Any], key_columns: Sequence[str]) -> Tuple[Any, ...]:
    return tuple(row.get(column) for column in key_columns)


class TableStore(ABC):
    """Abstract ACID table store addressed by qualified table name."""

    @abstractmethod
    def read_snapshot(self, table: str, version: Optional[int] = None) -> Snapshot:
        """
        Read a table snapshot.

        Args:
            table: Qualified table name (e.g. 'bronze.orders')
            version: Historical version to read; latest if None

        Returns:
            Snapshot: version -1 with no rows if the table does not exist
        """
        pass

    @abstractmethod
    def append(
        self,
        table: str,
        rows: Sequence[Row],
        partition_spec: Mapping[str, Any],
        *,
        expected_version: int,
        schema: Optional[Mapping[str, str]] = None,
    ) -> int:
        """
        Atomically append rows into one partition.

        Returns:
            int: The newly committed version

        Raises:
            CommitConflict: If the table is no longer at expected_version
        """
        pass

    @abstractmethod
    def overwrite(
        self,
        table: str,
        rows: Sequence[Row],
        partition_predicate: Optional[Mapping[str, Any]],
        *,
        expected_version: int,
        schema: Optional[Mapping[str, str]] = None,
        partition_columns: Optional[Sequence[str]] = None,
    ) -> int:
        """
        Atomically replace the rows matching partition_predicate (the whole
        table if None) with `rows`.

        The predicate may be narrower than a physical partition.
        partition_columns names the physical layout if this write creates
        the table; it defaults to the predicate's columns.

        Raises:
            CommitConflict: If the table is no longer at expected_version
        """
        pass

    @abstractmethod
    def merge(
        self,
        table: str,
        rows: Sequence[Row],
        key_columns: Sequence[str],
        *,
        freshness_column: str,
        expected_version: int,
        schema: Optional[Mapping[str, str]] = None,
        insert_on_no_match: bool = True,
    ) -> MergeOutcome:
        """
        Atomically upsert rows: insert when no row matches the key, update a
        match only when the incoming freshness column is strictly greater.

        Raises:
            CommitConflict: If the table is no longer at expected_version
        """
        pass


class LocalTableStore(TableStore):
    """
    In-process versioned store.

    Every commit produces a new immutable version and all prior versions are
    retained, so any snapshot can be re-read for recovery. The internal lock
    only guards the version check and swap; readers never block writers.
    """

    def __init__(self):
        self._tables: Dict[str, List[Snapshot]] = {}
        self._lock = threading.Lock()

    def read_snapshot(self, table: str, version: Optional[int] = None) -> Snapshot:
        history = self._tables.get(table)
        if not history:
            if version is not None:
                raise KeyError(f"Table '{table}' has no version {version}")
            return Snapshot(table=table, version=-1)
        if version is None:
            snapshot = history[-1]
        elif 0 <= version < len(history):
            snapshot = history[version]
        else:
            raise KeyError(f"Table '{table}' has no version {version}")
        return Snapshot(
            table=table,
            version=snapshot.version,
            rows=tuple(deepcopy(row) for row in snapshot.rows),
            schema=dict(snapshot.schema),
        )

    def history(self, table: str) -> List[int]:
        """Committed versions of a table, oldest first."""
        return [snapshot.version for snapshot in self._tables.get(table, [])]

    def append(self, table, rows, partition_spec, *, expected_version, schema=None):
        for row in rows:
            if not _matches(row, partition_spec):
                raise ValueError(
                    f"Row does not belong to partition {dict(partition_spec)} of '{table}'"
                )

        def build(current: Snapshot) -> Tuple[Tuple[Row, ...], None]:
            return current.rows + tuple(deepcopy(dict(row)) for row in rows), None

        version, _ = self._commit(table, expected_version, schema, build)
        return version

    def overwrite(self, table, rows, partition_predicate, *, expected_version, schema=None,
                  partition_columns=None):
        if partition_predicate:
            for row in rows:
                if not _matches(row, partition_predicate):
                    raise ValueError(
                        f"Row does not belong to partition {dict(partition_predicate)} of '{table}'"
                    )

        def build(current: Snapshot) -> Tuple[Tuple[Row, ...], None]:
            if partition_predicate:
                kept = tuple(r for r in current.rows if not _matches(r, partition_predicate))
            else:
                kept = ()
            return kept + tuple(deepcopy(dict(row)) for row in rows), None

        version, _ = self._commit(table, expected_version, schema, build)
        return version

    def merge(self, table, rows, key_columns, *, freshness_column, expected_version,
              schema=None, insert_on_no_match=True):

        def build(current: Snapshot) -> Tuple[Tuple[Row, ...], MergeOutcome]:
            merged = [dict(row) for row in current.rows]
            index = {key_of(row, key_columns): i for i, row in enumerate(merged)}
            inserted = updated = unchanged = 0

            for row in rows:
                key = key_of(row, key_columns)
                position = index.get(key)
                if position is None:
                    if insert_on_no_match:
                        index[key] = len(merged)
                        merged.append(deepcopy(dict(row)))
                        inserted += 1
                    else:
                        unchanged += 1
                elif row[freshness_column] > merged[position][freshness_column]:
                    merged[position] = deepcopy(dict(row))
                    updated += 1
                else:
                    unchanged += 1

            return tuple(merged), MergeOutcome(-1, inserted, updated, unchanged)

        version, outcome = self._commit(table, expected_version, schema, build)
        return MergeOutcome(version, outcome.inserted, outcome.updated, outcome.unchanged)

    def _commit(self, table, expected_version, schema, build):
        with self._lock:
            history = self._tables.setdefault(table, [])
            current = history[-1] if history else Snapshot(table=table, version=-1)
            if current.version != expected_version:
                raise CommitConflict(table, expected_version, current.version)

            rows, extra = build(current)
            snapshot = Snapshot(
                table=table,
                version=current.version + 1,
                rows=rows,
                schema=dict(schema) if schema is not None else dict(current.schema),
            )
            history.append(snapshot)

        logger.debug(f"Committed '{table}' version {snapshot.version} ({len(rows)} rows)")
        return snapshot.version, extra


__all__ = [
    "Row",
    "Snapshot",
    "MergeOutcome",
    "TableStore",
    "LocalTableStore",
    "key_of",
]
