"""Engine module for Strata: table stores, commit discipline and Spark sessions."""

from .commit import commit_with_retry
from .spark import get_spark_session, stop_spark_session
from .store import LocalTableStore, MergeOutcome, Snapshot, TableStore, key_of

__all__ = [
    "TableStore",
    "LocalTableStore",
    "Snapshot",
    "MergeOutcome",
    "key_of",
    "commit_with_retry",
    "get_spark_session",
    "stop_spark_session",
]
