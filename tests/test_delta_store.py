"""DeltaTableStore against mocked Spark and Delta objects (no JVM needed)."""

from datetime import date, datetime, timedelta, timezone
from unittest import mock
import unittest

from strata.config import StrataConfig
from strata.engine import delta as delta_store
from strata.engine import spark as spark_module
from strata.engine.delta import (
    DeltaTableStore,
    freshness_condition,
    merge_condition,
    partition_condition,
)
from strata.errors import CommitConflict


class FakeConcurrentModification(Exception):
    pass


class TestConditions(unittest.TestCase):
    def test_partition_condition(self):
        self.assertEqual(
            partition_condition({"ingest_date": date(2024, 1, 1), "source_system": "pos"}),
            "`ingest_date` = DATE'2024-01-01' AND `source_system` = 'pos'",
        )

    def test_partition_condition_escapes_and_handles_nulls(self):
        self.assertEqual(
            partition_condition({"source_system": "o'brien", "region": None}),
            "`source_system` = 'o\\'brien' AND `region` IS NULL",
        )

    def test_merge_and_freshness_conditions(self):
        self.assertEqual(
            merge_condition(["order_id", "line"]),
            "target.`order_id` = source.`order_id` AND target.`line` = source.`line`",
        )
        self.assertEqual(
            freshness_condition("ingest_timestamp"),
            "source.`ingest_timestamp` > target.`ingest_timestamp`",
        )


class TestDeltaTableStore(unittest.TestCase):
    def setUp(self):
        self.spark = mock.MagicMock()
        self.store = DeltaTableStore(self.spark, base_path="s3://lake/")
        patcher = mock.patch.object(delta_store, "DeltaTable")
        self.delta_table = patcher.start()
        self.addCleanup(patcher.stop)

    def _at_version(self, version):
        self.delta_table.isDeltaTable.return_value = True
        self.delta_table.forPath.return_value.history.return_value.collect.return_value = [
            {"version": version, "operationMetrics": {"numTargetRowsInserted": "1", "numTargetRowsUpdated": "2"}}
        ]

    def test_table_path(self):
        self.assertEqual(self.store.table_path("bronze.orders"), "s3://lake/bronze/orders")

    def test_missing_table_reads_as_empty_snapshot(self):
        self.delta_table.isDeltaTable.return_value = False
        snapshot = self.store.read_snapshot("silver.orders")
        self.assertEqual(snapshot.version, -1)
        self.assertFalse(snapshot.exists)
        self.spark.read.format.assert_not_called()

    def test_snapshot_timestamps_come_back_in_utc(self):
        self._at_version(0)
        stored = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)
        # What pyspark's collect() hands back: naive wall-clock time of this host
        local_wall_clock = stored.astimezone().replace(tzinfo=None)
        row = mock.Mock()
        row.asDict.return_value = {"order_id": "A", "ingest_timestamp": local_wall_clock}
        self.spark.read.format.return_value.load.return_value.collect.return_value = [row]

        snapshot = self.store.read_snapshot("silver.orders")

        self.assertEqual(snapshot.rows[0]["ingest_timestamp"], stored)
        self.assertEqual(snapshot.rows[0]["ingest_timestamp"].utcoffset(), timedelta(0))
        self.assertEqual(snapshot.rows[0]["order_id"], "A")

    def test_first_scoped_overwrite_partitions_by_physical_columns(self):
        self.delta_table.isDeltaTable.return_value = False
        predicate = {"ingest_date": date(2024, 1, 1), "source_system": "pos", "batch_id": "b1"}
        self.store.overwrite(
            "bronze.orders", [{"order_id": "A", **predicate}], predicate,
            expected_version=-1, schema={"order_id": "string", "batch_id": "string"},
            partition_columns=["ingest_date", "source_system"],
        )
        writer = self.spark.createDataFrame.return_value.write.format.return_value.mode.return_value
        writer.option.assert_called_once_with("replaceWhere", partition_condition(predicate))
        writer.option.return_value.partitionBy.assert_called_once_with("ingest_date", "source_system")

    def test_from_config_uses_base_path(self):
        store = DeltaTableStore.from_config(StrataConfig(base_path="s3://lake/"), spark=self.spark)
        self.assertIs(store.spark, self.spark)
        self.assertEqual(store.table_path("silver.orders"), "s3://lake/silver/orders")

    def test_stale_append_is_a_commit_conflict(self):
        self._at_version(3)
        with self.assertRaises(CommitConflict) as ctx:
            self.store.append(
                "bronze.orders", [{"order_id": "A"}], {"source_system": "pos"},
                expected_version=2, schema={"order_id": "string", "source_system": "string"},
            )
        self.assertEqual(ctx.exception.actual_version, 3)
        self.spark.createDataFrame.assert_not_called()

    def test_append_writes_with_merge_schema(self):
        self._at_version(3)
        version = self.store.append(
            "bronze.orders", [{"order_id": "A", "source_system": "pos"}], {"source_system": "pos"},
            expected_version=3, schema={"order_id": "string", "source_system": "string"},
        )

        self.assertEqual(version, 3)
        self.spark.createDataFrame.assert_called_once_with(
            [("A", "pos")], schema="`order_id` string, `source_system` string"
        )
        df = self.spark.createDataFrame.return_value
        df.write.format.assert_called_once_with("delta")
        writer = df.write.format.return_value.mode.return_value
        writer.option.assert_called_once_with("mergeSchema", "true")
        writer.option.return_value.save.assert_called_once_with("s3://lake/bronze/orders")

    def test_partition_overwrite_uses_replace_where(self):
        self._at_version(1)
        self.store.overwrite(
            "bronze.orders", [{"order_id": "A", "source_system": "pos"}], {"source_system": "pos"},
            expected_version=1, schema={"order_id": "string", "source_system": "string"},
        )
        writer = self.spark.createDataFrame.return_value.write.format.return_value
        writer.mode.assert_called_once_with("overwrite")
        writer.mode.return_value.option.assert_called_once_with("replaceWhere", "`source_system` = 'pos'")

    def test_merge_uses_freshness_condition(self):
        self._at_version(4)
        outcome = self.store.merge(
            "silver.orders", [{"order_id": "A"}, {"order_id": "B"}, {"order_id": "C"}, {"order_id": "D"}],
            ["order_id"],
            freshness_column="ingest_timestamp", expected_version=4, schema={"order_id": "string"},
        )

        target = self.delta_table.forPath.return_value.alias.return_value
        source = self.spark.createDataFrame.return_value.alias.return_value
        target.merge.assert_called_once_with(source, "target.`order_id` = source.`order_id`")
        builder = target.merge.return_value
        builder.whenMatchedUpdateAll.assert_called_once_with(
            condition="source.`ingest_timestamp` > target.`ingest_timestamp`"
        )
        builder.whenMatchedUpdateAll.return_value.whenNotMatchedInsertAll.return_value.execute.assert_called_once()
        self.assertEqual((outcome.version, outcome.inserted, outcome.updated, outcome.unchanged), (4, 1, 2, 1))

    def test_delta_concurrency_errors_become_commit_conflicts(self):
        self._at_version(4)
        target = self.delta_table.forPath.return_value.alias.return_value
        execute = target.merge.return_value.whenMatchedUpdateAll.return_value.whenNotMatchedInsertAll.return_value.execute
        execute.side_effect = FakeConcurrentModification("concurrent append")

        with mock.patch.object(delta_store, "DeltaConcurrentModificationException", FakeConcurrentModification):
            with self.assertRaises(CommitConflict):
                self.store.merge(
                    "silver.orders", [{"order_id": "A"}], ["order_id"],
                    freshness_column="ingest_timestamp", expected_version=4,
                    schema={"order_id": "string"},
                )


class TestSparkSession(unittest.TestCase):
    def setUp(self):
        self.builder = mock.MagicMock()
        for method in ("appName", "master", "config"):
            getattr(self.builder, method).return_value = self.builder
        patcher = mock.patch.object(spark_module, "SparkSession")
        self.session_cls = patcher.start()
        self.session_cls.builder = self.builder
        self.addCleanup(patcher.stop)
        self.addCleanup(spark_module.stop_spark_session)

    def test_cluster_session_has_delta_extensions_and_utc(self):
        session = spark_module.get_spark_session(local=False, config={"spark.executor.cores": "2"})

        self.builder.config.assert_any_call("spark.sql.session.timeZone", "UTC")
        for key, value in spark_module.DELTA_EXTENSIONS.items():
            self.builder.config.assert_any_call(key, value)
        self.builder.config.assert_any_call("spark.executor.cores", "2")
        self.builder.master.assert_not_called()
        self.assertIs(session, self.builder.getOrCreate.return_value)

    def test_project_settings_feed_the_session(self):
        settings = StrataConfig(base_path="/data/lake/", spark_config={"spark.executor.cores": "2", "a": "1"})
        with mock.patch("delta.configure_spark_with_delta_pip", side_effect=lambda b: b):
            spark_module.get_spark_session(local=True, config={"a": "2"}, settings=settings)

        self.builder.config.assert_any_call("spark.sql.warehouse.dir", "/data/lake/spark-warehouse")
        self.builder.config.assert_any_call("spark.executor.cores", "2")
        self.builder.config.assert_any_call("a", "2")
        self.assertNotIn(mock.call("a", "1"), self.builder.config.call_args_list)

    def test_session_is_reused_until_stopped(self):
        first = spark_module.get_spark_session(local=False)
        self.assertIs(spark_module.get_spark_session(local=False), first)
        self.assertEqual(self.builder.getOrCreate.call_count, 1)

        spark_module.stop_spark_session()
        first.stop.assert_called_once()


if __name__ == "__main__":
    unittest.main()
