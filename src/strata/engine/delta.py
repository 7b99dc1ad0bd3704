"""
Delta Lake table store.

Tables live under {base_path}/{layer}/{table_name} as Delta tables. Delta
provides the atomic commit and the retained history; concurrent-modification
errors raised by Delta are translated into CommitConflict so the core's retry
loop handles them like any other conflict.
"""

from datetime import date, datetime, timezone
from typing import Any, Dict, Mapping, Optional, Sequence
import logging

from delta.exceptions import DeltaConcurrentModificationException
from delta.tables import DeltaTable
from pyspark.sql import DataFrame, SparkSession

from strata.config import StrataConfig
from strata.errors import CommitConflict
from .spark import get_spark_session
from .store import MergeOutcome, Snapshot, TableStore

logger = logging.getLogger(__name__)


def _quote(column: str) -> str:
    return f"`{column.replace('`', '``')}`"


def _literal(value: Any) -> str:
    """Render a partition value as a Spark SQL literal."""
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, datetime):
        return f"TIMESTAMP'{value.isoformat()}'"
    if isinstance(value, date):
        return f"DATE'{value.isoformat()}'"
    escaped = str(value).replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def _utc_value(value: Any) -> Any:
    # pyspark hands TimestampType back as naive local wall-clock time
    if isinstance(value, datetime):
        return value.astimezone(timezone.utc)
    return value


def partition_condition(predicate: Mapping[str, Any]) -> str:
    """Build a replaceWhere / filter condition from an equality mapping."""
    parts = []
    for column, value in predicate.items():
        if value is None:
            parts.append(f"{_quote(column)} IS NULL")
        else:
            parts.append(f"{_quote(column)} = {_literal(value)}")
    return " AND ".join(parts)


def merge_condition(key_columns: Sequence[str]) -> str:
    return " AND ".join(
        f"target.{_quote(column)} = source.{_quote(column)}" for column in key_columns
    )


def freshness_condition(freshness_column: str) -> str:
    column = _quote(freshness_column)
    return f"source.{column} > target.{column}"


class DeltaTableStore(TableStore):
    """TableStore backed by Delta Lake tables on a filesystem or S3."""

    def __init__(self, spark: SparkSession, base_path: str = "/tmp/strata"):
        """
        Initialize DeltaTableStore.

        Args:
            spark: Active SparkSession configured with the Delta extensions
            base_path: Root directory (or s3:// prefix) for all tables
        """
        self.spark = spark
        self.base_path = base_path.rstrip("/")

    @classmethod
    def from_config(
        cls, config: StrataConfig, spark: Optional[SparkSession] = None, local: bool = False
    ) -> "DeltaTableStore":
        """Store rooted at config.base_path, on the shared session unless one is given."""
        if spark is None:
            spark = get_spark_session(local=local, settings=config)
        return cls(spark, config.base_path)

    def table_path(self, table: str) -> str:
        return f"{self.base_path}/{table.replace('.', '/')}"

    def _current_version(self, path: str) -> int:
        if not DeltaTable.isDeltaTable(self.spark, path):
            return -1
        latest = DeltaTable.forPath(self.spark, path).history(1).collect()
        return int(latest[0]["version"]) if latest else -1

    def _check_version(self, table: str, path: str, expected_version: int) -> None:
        actual = self._current_version(path)
        if actual != expected_version:
            raise CommitConflict(table, expected_version, actual)

    def _frame(self, rows: Sequence[Mapping[str, Any]], schema: Mapping[str, str]) -> DataFrame:
        columns = list(schema)
        ddl = ", ".join(f"{_quote(c)} {schema[c]}" for c in columns)
        data = [tuple(row.get(c) for c in columns) for row in rows]
        return self.spark.createDataFrame(data, schema=ddl)

    @staticmethod
    def _schema_for(rows: Sequence[Mapping[str, Any]], schema: Optional[Mapping[str, str]]) -> Dict[str, str]:
        if schema:
            return dict(schema)
        columns: Dict[str, str] = {}
        for row in rows:
            for column in row:
                columns.setdefault(column, "string")
        return columns

    def read_snapshot(self, table: str, version: Optional[int] = None) -> Snapshot:
        path = self.table_path(table)
        current = self._current_version(path)
        if current < 0:
            if version is not None:
                raise KeyError(f"Table '{table}' has no version {version}")
            return Snapshot(table=table, version=-1)

        reader = self.spark.read.format("delta")
        if version is not None:
            reader = reader.option("versionAsOf", version)
        df = reader.load(path)

        return Snapshot(
            table=table,
            version=current if version is None else version,
            rows=tuple(
                {k: _utc_value(v) for k, v in row.asDict(recursive=True).items()}
                for row in df.collect()
            ),
            schema={f.name: f.dataType.simpleString() for f in df.schema.fields},
        )

    def append(self, table, rows, partition_spec, *, expected_version, schema=None):
        path = self.table_path(table)
        # Delta never rejects a blind append; the version must be checked here
        self._check_version(table, path, expected_version)

        df = self._frame(rows, self._schema_for(rows, schema))
        writer = df.write.format("delta").mode("append").option("mergeSchema", "true")
        if partition_spec and expected_version < 0:
            writer = writer.partitionBy(*partition_spec.keys())

        try:
            writer.save(path)
        except DeltaConcurrentModificationException as e:
            raise CommitConflict(table, expected_version, self._current_version(path)) from e

        version = self._current_version(path)
        logger.info(f"Appended {len(rows)} rows to {path} (version {version})")
        return version

    def overwrite(self, table, rows, partition_predicate, *, expected_version, schema=None,
                  partition_columns=None):
        path = self.table_path(table)
        self._check_version(table, path, expected_version)

        df = self._frame(rows, self._schema_for(rows, schema))
        writer = df.write.format("delta").mode("overwrite")
        if partition_predicate:
            writer = writer.option("replaceWhere", partition_condition(partition_predicate))
            if expected_version < 0:
                writer = writer.partitionBy(*(partition_columns or partition_predicate.keys()))
        else:
            writer = writer.option("overwriteSchema", "true")

        try:
            writer.save(path)
        except DeltaConcurrentModificationException as e:
            raise CommitConflict(table, expected_version, self._current_version(path)) from e

        version = self._current_version(path)
        logger.info(f"Overwrote {path} where {partition_predicate or 'ALL'} with {len(rows)} rows (version {version})")
        return version

    def merge(self, table, rows, key_columns, *, freshness_column, expected_version,
              schema=None, insert_on_no_match=True):
        path = self.table_path(table)
        self._check_version(table, path, expected_version)
        source = self._frame(rows, self._schema_for(rows, schema))

        if expected_version < 0:
            # First write creates the table; everything is an insert
            if not insert_on_no_match:
                return MergeOutcome(version=-1, unchanged=len(rows))
            try:
                source.write.format("delta").mode("errorifexists").save(path)
            except DeltaConcurrentModificationException as e:
                raise CommitConflict(table, expected_version, self._current_version(path)) from e
            return MergeOutcome(version=self._current_version(path), inserted=len(rows))

        builder = (
            DeltaTable.forPath(self.spark, path).alias("target")
            .merge(source.alias("source"), merge_condition(key_columns))
            .whenMatchedUpdateAll(condition=freshness_condition(freshness_column))
        )
        if insert_on_no_match:
            builder = builder.whenNotMatchedInsertAll()

        try:
            builder.execute()
        except DeltaConcurrentModificationException as e:
            raise CommitConflict(table, expected_version, self._current_version(path)) from e

        latest = DeltaTable.forPath(self.spark, path).history(1).collect()[0]
        metrics: Dict[str, str] = latest["operationMetrics"] or {}
        inserted = int(metrics.get("numTargetRowsInserted", 0))
        updated = int(metrics.get("numTargetRowsUpdated", 0))
        outcome = MergeOutcome(
            version=int(latest["version"]),
            inserted=inserted,
            updated=updated,
            unchanged=max(len(rows) - inserted - updated, 0),
        )
        logger.info(f"Merged {len(rows)} rows into {path}: {outcome}")
        return outcome


__all__ = [
    "DeltaTableStore",
    "partition_condition",
    "merge_condition",
    "freshness_condition",
]
