"""
Append-only Bronze ledger.

Bronze rows are never updated in place. A normal commit appends the batch to
one partition; a forced replay overwrites the rows the replayed batch wrote
before (the partition narrowed by a replace scope such as its batch_id), so
running the same batch again converges on the same state instead of
duplicating it or touching sibling batches.
The Bronze contract may gain columns between batches, but an existing
column's type never changes.
"""

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence, Type
import logging

from strata.config import StrataConfig
from strata.core.contracts import BronzeTable
from strata.core.schema import SchemaContract, infer_batch_types
from strata.engine.commit import commit_with_retry
from strata.engine.store import Snapshot, TableStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerCommit:
    table: str
    version: int
    rows_written: int
    mode: str
    contract: SchemaContract


class AppendOnlyLedger:
    """Idempotent, schema-drift-aware writer for one Bronze table."""

    def __init__(self, store: TableStore, contract: Type[BronzeTable], config: StrataConfig):
        """
        Args:
            store: Table store holding the Bronze table
            contract: BronzeTable subclass describing the table
            config: Supplies the commit retry bounds
        """
        if not (isinstance(contract, type) and issubclass(contract, BronzeTable)):
            raise TypeError(f"{contract!r} is not a BronzeTable contract")
        self.store = store
        self.contract = contract
        self.config = config
        self.table = contract.get_qualified_name()

    def plan_schema(self, snapshot: Snapshot, rows: Sequence[Mapping[str, Any]]) -> SchemaContract:
        """
        Work out the contract the batch will be committed under.

        Raises:
            SchemaDriftViolation: If the batch (or the declared contract)
                would change the type of a column the table already has
        """
        declared = self.contract.get_contract()
        if snapshot.exists and snapshot.schema:
            current = SchemaContract(
                table=self.table,
                columns=dict(snapshot.schema),
                version=declared.version,
                evolvable=True,
            )
        else:
            current = SchemaContract(table=self.table, columns={}, version=declared.version, evolvable=True)

        incoming = infer_batch_types(rows, declared=declared.columns, table=self.table)
        for column, type_name in incoming.items():
            # Whole numbers may land in an existing double column
            if type_name == "bigint" and current.columns.get(column) == "double":
                incoming[column] = "double"

        return current.evolve({**declared.columns, **incoming})

    def commit(
        self,
        rows: Sequence[Mapping[str, Any]],
        partition_key: Mapping[str, Any],
        *,
        force_replay: bool = False,
        replace_scope: Optional[Mapping[str, Any]] = None,
    ) -> LedgerCommit:
        """
        Commit a batch to the Bronze table, all or nothing.

        Args:
            rows: Sanitized, envelope-stamped rows of a single partition
            partition_key: Partition the rows belong to, e.g.
                {"ingest_date": date(2024, 1, 1), "source_system": "pos"}
            force_replay: Overwrite instead of appending
            replace_scope: Extra column values narrowing what a forced
                overwrite replaces, e.g. {"batch_id": "..."}; the whole
                partition if not given

        Returns:
            LedgerCommit: committed version and the contract used

        Raises:
            SchemaDriftViolation: On a column type change
            WriteConflict: If optimistic retries are exhausted
        """
        if not partition_key:
            raise ValueError("partition_key must name at least one partition column")
        rows = [dict(row) for row in rows]
        mode = "overwrite" if force_replay else "append"
        replaced = {**partition_key, **(replace_scope or {})}

        def attempt(number: int) -> LedgerCommit:
            snapshot = self.store.read_snapshot(self.table)
            contract = self.plan_schema(snapshot, rows)

            added = sorted(set(contract.columns) - set(snapshot.schema))
            if snapshot.exists and added:
                logger.info(f"Schema evolution on '{self.table}': adding columns {added}")

            if not rows and not force_replay:
                return LedgerCommit(self.table, snapshot.version, 0, mode, contract)

            if force_replay:
                version = self.store.overwrite(
                    self.table, rows, replaced,
                    expected_version=snapshot.version,
                    schema=contract.columns,
                    partition_columns=list(partition_key),
                )
            else:
                version = self.store.append(
                    self.table, rows, partition_key,
                    expected_version=snapshot.version,
                    schema=contract.columns,
                )
            return LedgerCommit(self.table, version, len(rows), mode, contract)

        result = commit_with_retry(attempt, table=self.table, config=self.config)
        logger.info(
            f"Bronze {mode} of {result.rows_written} rows to '{self.table}' "
            f"partition {dict(partition_key)} committed at version {result.version}"
        )
        return result


__all__ = ["AppendOnlyLedger", "LedgerCommit"]
