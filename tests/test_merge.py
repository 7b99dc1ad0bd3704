from itertools import permutations
import threading

import pytest

from conftest import T0, T1, T2, T3
from strata.core import IntegerField, SilverTable, StringField
from strata.engine.store import LocalTableStore
from strata.errors import CommitConflict, SchemaDriftViolation, WriteConflict
from strata.refinement import MergeEngine


class OrdersSilver(SilverTable):
    order_id = StringField(nullable=False)
    quantity = IntegerField()

    class Meta:
        primary_key = ["order_id"]


TABLE = "silver.orders"


def row(order_id, ts, quantity=None, batch_id="b1"):
    return {
        "order_id": order_id,
        "quantity": quantity,
        "ingest_timestamp": ts,
        "source_system": "pos",
        "batch_id": batch_id,
        "ingest_date": ts.date(),
    }


def live(store):
    return {r["order_id"]: r for r in store.read_snapshot(TABLE).rows}


class RacingStore(LocalTableStore):
    """Commits a competing merge between the engine's snapshot read and its commit."""

    def __init__(self, competing_rows):
        super().__init__()
        self.competing_rows = competing_rows

    def merge(self, table, rows, key_columns, **kwargs):
        if self.competing_rows:
            competing, self.competing_rows = self.competing_rows, None
            current = self.read_snapshot(table)
            super().merge(
                table, competing, key_columns,
                freshness_column=kwargs["freshness_column"],
                expected_version=current.version,
                schema=kwargs.get("schema"),
            )
        return super().merge(table, rows, key_columns, **kwargs)


class AlwaysConflictingStore(LocalTableStore):
    def merge(self, table, rows, key_columns, *, expected_version, **kwargs):
        raise CommitConflict(table, expected_version, expected_version + 1)


def test_freshness_upsert(store, config):
    engine = MergeEngine(store, OrdersSilver, config)

    first = engine.merge([row("A", T1, quantity=1)])
    assert (first.inserted, first.updated, first.version) == (1, 0, 0)

    newer = engine.merge([row("A", T2, quantity=2)])
    assert (newer.inserted, newer.updated, newer.version) == (0, 1, 1)
    assert live(store)["A"]["quantity"] == 2

    older = engine.merge([row("A", T0, quantity=0)])
    assert (older.updated, older.unchanged) == (0, 1)
    assert live(store)["A"]["quantity"] == 2
    assert store.history(TABLE) == [0, 1]


def test_equal_timestamp_is_a_no_op(store, config):
    engine = MergeEngine(store, OrdersSilver, config)
    engine.merge([row("A", T1, quantity=1)])
    again = engine.merge([row("A", T1, quantity=99)])

    assert again.unchanged == 1
    assert live(store)["A"]["quantity"] == 1
    assert store.history(TABLE) == [0]


def test_newest_row_per_key_wins_within_a_batch(store, config):
    engine = MergeEngine(store, OrdersSilver, config)
    result = engine.merge([
        row("A", T1, quantity=1),
        row("A", T3, quantity=3),
        row("A", T2, quantity=2),
        row("B", T1, quantity=10),
        row("B", T1, quantity=11),
    ])

    assert result.inserted == 2
    assert live(store)["A"]["quantity"] == 3
    assert live(store)["B"]["quantity"] == 10


def test_live_row_is_always_the_freshest_ever_merged(config):
    inputs = [(T1, 1), (T2, 2), (T3, 3), (T0, 0)]
    for order in permutations(inputs):
        store = LocalTableStore()
        engine = MergeEngine(store, OrdersSilver, config)
        for ts, quantity in order:
            engine.merge([row("A", ts, quantity=quantity)])

        rows = store.read_snapshot(TABLE).rows
        assert len(rows) == 1
        assert rows[0]["quantity"] == 3
        assert rows[0]["ingest_timestamp"] == T3


def test_concurrent_disjoint_merges_both_land(config):
    store = RacingStore(competing_rows=[row("B", T1, quantity=20, batch_id="rival")])
    engine = MergeEngine(store, OrdersSilver, config)

    result = engine.merge([row("A", T1, quantity=10)])

    assert result.attempts == 2
    assert result.inserted == 1
    assert {k: v["quantity"] for k, v in live(store).items()} == {"A": 10, "B": 20}


def test_losing_writer_replans_keys_the_winner_already_wrote(config):
    store = RacingStore(competing_rows=[row("A", T2, quantity=2, batch_id="rival")])
    engine = MergeEngine(store, OrdersSilver, config)

    result = engine.merge([row("A", T1, quantity=1), row("B", T1, quantity=5)])

    assert result.attempts == 2
    assert (result.inserted, result.unchanged) == (1, 1)
    assert live(store)["A"]["quantity"] == 2


def test_threaded_writers_do_not_lose_rows(config):
    store = LocalTableStore()
    errors = []

    def writer(prefix):
        engine = MergeEngine(store, OrdersSilver, config)
        try:
            engine.merge([row(f"{prefix}-{i}", T1, quantity=i) for i in range(20)])
        except Exception as e:  # noqa: BLE001
            errors.append(e)

    threads = [threading.Thread(target=writer, args=(p,)) for p in ("X", "Y")]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(store.read_snapshot(TABLE).rows) == 40


def test_exhausted_retries_raise_write_conflict(config):
    engine = MergeEngine(AlwaysConflictingStore(), OrdersSilver, config)
    with pytest.raises(WriteConflict) as excinfo:
        engine.merge([row("A", T1)])
    assert excinfo.value.attempts == config.max_commit_retries + 1
    assert excinfo.value.reason == "write_conflict"


def test_stored_schema_must_match_locked_contract(store, config):
    store.append(
        TABLE, [], {},
        expected_version=-1,
        schema={"order_id": "string", "quantity": "bigint"},
    )
    engine = MergeEngine(store, OrdersSilver, config)

    with pytest.raises(SchemaDriftViolation) as excinfo:
        engine.merge([row("A", T1)])
    assert excinfo.value.drifted["quantity"] == ("int", "bigint")


def test_undeclared_columns_are_drift(store, config):
    engine = MergeEngine(store, OrdersSilver, config)
    extra = dict(row("A", T1), discount=5)
    with pytest.raises(SchemaDriftViolation):
        engine.merge([extra])
    assert store.history(TABLE) == []


def test_rows_without_key_or_timestamp_are_refused(store, config):
    engine = MergeEngine(store, OrdersSilver, config)
    with pytest.raises(ValueError):
        engine.merge([row(None, T1)])
    with pytest.raises(ValueError):
        engine.merge([dict(row("A", T1), ingest_timestamp=None)])
