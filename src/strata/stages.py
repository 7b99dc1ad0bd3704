"""
Stage entry points.

An orchestrator runs BronzeStage.run for a raw batch and then SilverStage.run
for the same partition. Each call either returns a CommitSummary or raises a
StrataError; it never reports a partial result.
"""

from dataclasses import replace
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Type
import logging

from strata.config import StrataConfig
from strata.core.contracts import BronzeTable, SilverTable
from strata.core.results import CommitSummary
from strata.core.schema import ENVELOPE_COLUMNS
from strata.engine.store import TableStore
from strata.errors import SchemaDriftViolation
from strata.idempotency import ReplayAction, ReplayIdempotencyController
from strata.ingestion.envelope import make_envelope, new_batch_id
from strata.ingestion.ledger import AppendOnlyLedger
from strata.quality import QualityRule
from strata.quarantine import QuarantineReason, QuarantineRecord, QuarantineRouter, Stage
from strata.refinement.cast_gate import TypeCastGate
from strata.refinement.merge import MergeEngine
from strata.sanitization.barrier import SanitizationBarrier
from strata.sanitization.detectors import DetectorRegistry

logger = logging.getLogger(__name__)


def bronze_partition(ingest_date: date, source_system: str) -> Dict[str, Any]:
    """The Bronze partition a batch lands in."""
    return {"ingest_date": ingest_date, "source_system": source_system}


def bronze_batches(rows: Iterable[Mapping[str, Any]]) -> str:
    """The distinct Bronze batch ids in rows, as a stable replay window."""
    return ",".join(sorted({str(row.get("batch_id")) for row in rows}))


class BronzeStage:
    """Raw batch -> sanitization -> envelope -> append-only Bronze table."""

    def __init__(
        self,
        store: TableStore,
        contract: Type[BronzeTable],
        config: StrataConfig,
        replay: ReplayIdempotencyController,
        registry: Optional[DetectorRegistry] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.contract = contract
        self.config = config
        self.replay = replay
        self.clock = clock
        self.table = contract.get_qualified_name()
        self.barrier = SanitizationBarrier(config, registry)
        self.ledger = AppendOnlyLedger(store, contract, config)
        self.quarantine = QuarantineRouter(store, config, clock=clock)

    def run(
        self,
        records: Iterable[Mapping[str, Any]],
        source_system: str,
        batch_window: Any,
        partition_key: Optional[date] = None,
        force_replay: bool = False,
        batch_id: Optional[str] = None,
    ) -> CommitSummary:
        """
        Ingest one raw batch into Bronze.

        Args:
            records: Raw field maps from the source connector
            source_system: Identifier of the source
            batch_window: Identifies the slice of source data (e.g. "2024-01-01T00/01")
            partition_key: ingest_date partition; defaults to today's UTC date
            force_replay: Rewrite this batch's rows even if it was committed
            batch_id: Correlation id; generated if not given. A forced replay
                keeps the batch_id of the run it replaces

        Returns:
            CommitSummary: the new commit, or the prior one if skipped

        Raises:
            SchemaDriftViolation: If the batch changes an existing column type
            WriteConflict: If optimistic retries are exhausted
        """
        envelope = make_envelope(
            source_system, batch_id or new_batch_id(), clock=self.clock, ingest_date=partition_key
        )
        signature = self.replay.compute_signature(
            Stage.BRONZE, self.table, source_system, batch_window, envelope.ingest_date
        )
        decision = self.replay.check(signature, force_replay)
        if not decision.should_write:
            return decision.prior.as_skipped()

        forced = decision.action == ReplayAction.FORCE
        if forced and decision.prior is not None and decision.prior.batch_id:
            # The replay takes over the replayed batch's rows, and only those
            envelope = replace(envelope, batch_id=decision.prior.batch_id)

        columns = envelope.as_columns()
        sanitized = self.barrier.sanitize(records)
        rows = [{**record, **columns} for record in sanitized.records]
        rejected = [replace(record, envelope=columns) for record in sanitized.quarantined]

        logger.info(
            f"Bronze batch {envelope.batch_id} for '{self.table}' from {source_system}: "
            f"{len(rows)} row(s) accepted, {len(rejected)} rejected by sanitization"
        )

        try:
            commit = self.ledger.commit(
                rows,
                bronze_partition(envelope.ingest_date, source_system),
                force_replay=forced,
                replace_scope={"batch_id": envelope.batch_id},
            )
        except SchemaDriftViolation as e:
            logger.error(f"Schema drift on '{self.table}', quarantining batch {envelope.batch_id}: {e}")
            self.quarantine.route(rejected + [
                QuarantineRecord(
                    stage=Stage.BRONZE,
                    reason=QuarantineReason.SCHEMA_DRIFT.value,
                    payload=_payload(row),
                    detail=str(e),
                    envelope=columns,
                )
                for row in rows
            ])
            raise

        summary = CommitSummary(
            stage=Stage.BRONZE.value,
            table=self.table,
            signature=signature,
            batch_id=envelope.batch_id,
            accepted=commit.rows_written,
            quarantined=len(rejected),
            version=commit.version,
            replayed=forced,
            complete=not rejected,
        )
        # Recorded incomplete until the rejected rows are routed
        self.replay.record(signature, summary, force=forced)
        if rejected:
            self.quarantine.route(rejected)
            summary = replace(summary, complete=True)
            self.replay.record(signature, summary, force=True)
        return summary


class SilverStage:
    """Bronze partition -> type-cast gate -> merge into the Silver table."""

    def __init__(
        self,
        store: TableStore,
        bronze_contract: Type[BronzeTable],
        silver_contract: Type[SilverTable],
        config: StrataConfig,
        replay: ReplayIdempotencyController,
        rules: Optional[Sequence[QualityRule]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.bronze_table = bronze_contract.get_qualified_name()
        self.table = silver_contract.get_qualified_name()
        self.config = config
        self.replay = replay
        self.gate = TypeCastGate(silver_contract, rules)
        self.engine = MergeEngine(store, silver_contract, config)
        self.quarantine = QuarantineRouter(store, config, clock=clock)

    def read_partition(self, partition_key: date, source_system: str) -> List[Dict[str, Any]]:
        snapshot = self.store.read_snapshot(self.bronze_table)
        return snapshot.rows_matching(bronze_partition(partition_key, source_system))

    def run(
        self,
        partition_key: date,
        source_system: str,
        batch_window: Any = None,
        rows: Optional[Iterable[Mapping[str, Any]]] = None,
        force_replay: bool = False,
    ) -> CommitSummary:
        """
        Refine one Bronze partition into Silver.

        Args:
            partition_key: ingest_date of the Bronze partition
            source_system: Source of the Bronze partition
            batch_window: Replay window; defaults to the Bronze batch ids read
            rows: Bronze rows to refine; read from the Bronze table if not given
            force_replay: Re-merge even if these batches were committed

        Raises:
            SchemaDriftViolation: If the Silver table no longer matches its contract
            WriteConflict: If optimistic retries are exhausted
        """
        if rows is None:
            rows = self.read_partition(partition_key, source_system)
        rows = list(rows)

        window = batch_window if batch_window is not None else bronze_batches(rows)
        signature = self.replay.compute_signature(
            Stage.SILVER, self.table, source_system, window, partition_key
        )
        decision = self.replay.check(signature, force_replay)
        if not decision.should_write:
            return decision.prior.as_skipped()

        gated = self.gate.process(rows)
        result = self.engine.merge(gated.clean)
        if gated.quarantined:
            self.quarantine.route(gated.quarantined)

        summary = CommitSummary(
            stage=Stage.SILVER.value,
            table=self.table,
            signature=signature,
            accepted=len(gated.clean),
            quarantined=len(gated.quarantined),
            dropped=gated.dropped,
            flagged=gated.flagged,
            inserted=result.inserted,
            updated=result.updated,
            unchanged=result.unchanged,
            version=result.version,
            replayed=decision.action == ReplayAction.FORCE,
        )
        logger.info(
            f"Silver refinement of {len(rows)} row(s) into '{self.table}': "
            f"{summary.accepted} clean, {summary.quarantined} quarantined, {summary.dropped} dropped"
        )
        self.replay.record(signature, summary, force=summary.replayed)
        return summary


def _payload(row: Mapping[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in row.items() if k not in ENVELOPE_COLUMNS}


__all__ = ["BronzeStage", "SilverStage", "bronze_batches", "bronze_partition"]
