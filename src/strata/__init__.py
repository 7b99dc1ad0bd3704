"""
Strata - ingestion and merge core for a Bronze/Silver data lake.

Strata takes raw batches from source systems and turns them into clean,
deduplicated tables:
- Toxic fields (card numbers, secrets, personal identifiers) are masked before
  anything is persisted
- Bronze tables are append-only, evolvable and replay-safe
- Silver tables are typed, validated and upserted by primary key, with the
  freshest ingest_timestamp winning
- Every rejected record lands in a quarantine table with an enumerated reason
- Concurrent writers coordinate through optimistic commits with bounded retry

Tables are stored through a TableStore: an in-process versioned store for
local runs and tests, or Delta Lake on Spark (strata.engine.delta).
"""

from .config import StrataConfig

from .core import (
    BaseTable,
    BronzeTable,
    SilverTable,
    GoldTable,
    StringField,
    IntegerField,
    LongField,
    DoubleField,
    BooleanField,
    TimestampField,
    DateField,
    DecimalField,
    ArrayField,
    StructField,
    CommitSummary,
    SchemaContract,
)

from .errors import (
    StrataError,
    ContractError,
    SanitizationFailure,
    SchemaDriftViolation,
    CastFailure,
    QualityRuleViolation,
    NullPrimaryKey,
    CommitConflict,
    WriteConflict,
)

from .engine import LocalTableStore, TableStore, get_spark_session

from .quality import (
    expect,
    QualityRegistry,
    Severity,
    column_values_in_range,
    column_matches_pattern,
    column_values_in_set,
    no_nulls_in_column,
)

from .idempotency import (
    ReplayIdempotencyController,
    LocalReplayLedger,
    DynamoDBReplayLedger,
)

from .quarantine import QuarantineRouter, QuarantineReason, Stage

from .stages import BronzeStage, SilverStage

__version__ = "0.1.0"

__all__ = [
    # Configuration
    "StrataConfig",
    # Table classes
    "BaseTable",
    "BronzeTable",
    "SilverTable",
    "GoldTable",
    "SchemaContract",
    "CommitSummary",
    # Field types
    "StringField",
    "IntegerField",
    "LongField",
    "DoubleField",
    "BooleanField",
    "TimestampField",
    "DateField",
    "DecimalField",
    "ArrayField",
    "StructField",
    # Errors
    "StrataError",
    "ContractError",
    "SanitizationFailure",
    "SchemaDriftViolation",
    "CastFailure",
    "QualityRuleViolation",
    "NullPrimaryKey",
    "CommitConflict",
    "WriteConflict",
    # Quality
    "expect",
    "QualityRegistry",
    "Severity",
    "column_values_in_range",
    "column_matches_pattern",
    "column_values_in_set",
    "no_nulls_in_column",
    # Replay
    "ReplayIdempotencyController",
    "LocalReplayLedger",
    "DynamoDBReplayLedger",
    # Quarantine
    "QuarantineRouter",
    "QuarantineReason",
    "Stage",
    # Stages
    "BronzeStage",
    "SilverStage",
    # Engine
    "TableStore",
    "LocalTableStore",
    "get_spark_session",
]
