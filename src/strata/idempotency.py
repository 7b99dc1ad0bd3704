"""
Replay idempotency for stage calls.

Every stage call is identified by a replay signature: SHA-256 over
(stage, table, source_system, batch_window, partition_key). Once a commit
with a signature has been recorded, running the same call again without
force_replay is a no-op that reports the prior CommitSummary.

Two ledgers keep the recorded signatures:
- LocalReplayLedger: SQLite state database, for local runs
- DynamoDBReplayLedger: DynamoDB table, for AWS runs
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional
import hashlib
import json
import logging
import os
import sqlite3

import boto3
from botocore.exceptions import ClientError

from strata.config import StrataConfig
from strata.core.results import CommitSummary

logger = logging.getLogger(__name__)


class ReplayAction(str, Enum):
    PROCEED = "proceed"  # first run for this signature
    SKIP = "skip"        # already committed; report the prior summary
    FORCE = "force"      # forced, or resuming an incomplete run; overwrite the batch


@dataclass(frozen=True)
class ReplayDecision:
    signature: str
    action: ReplayAction
    prior: Optional[CommitSummary] = None

    @property
    def should_write(self) -> bool:
        return self.action != ReplayAction.SKIP


class ReplayLedger(ABC):
    """Durable record of committed replay signatures."""

    @abstractmethod
    def get(self, signature: str) -> Optional[CommitSummary]:
        """Return the summary recorded for a signature, if any."""
        pass

    @abstractmethod
    def put(self, signature: str, summary: CommitSummary, overwrite: bool = False) -> bool:
        """
        Record a signature.

        Returns:
            False if the signature was already recorded and overwrite is False
        """
        pass


class LocalReplayLedger(ReplayLedger):
    """Replay ledger kept in a local SQLite database."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        directory = os.path.dirname(db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self._init_db()

    @classmethod
    def from_config(cls, config: StrataConfig) -> "LocalReplayLedger":
        return cls(config.state_db_path or os.path.join(config.base_path, "state.db"))

    def _init_db(self) -> None:
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS replay_ledger (
                signature TEXT PRIMARY KEY,
                summary TEXT NOT NULL,
                recorded_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        conn.commit()
        conn.close()

    def get(self, signature: str) -> Optional[CommitSummary]:
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()
        cursor.execute("SELECT summary FROM replay_ledger WHERE signature = ?", (signature,))
        row = cursor.fetchone()
        conn.close()

        if row:
            return CommitSummary.from_dict(json.loads(row[0]))
        return None

    def put(self, signature: str, summary: CommitSummary, overwrite: bool = False) -> bool:
        statement = (
            "INSERT OR REPLACE INTO replay_ledger (signature, summary) VALUES (?, ?)"
            if overwrite else
            "INSERT OR IGNORE INTO replay_ledger (signature, summary) VALUES (?, ?)"
        )
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()
        cursor.execute(statement, (signature, json.dumps(summary.to_dict())))
        written = cursor.rowcount == 1
        conn.commit()
        conn.close()
        return written


class DynamoDBReplayLedger(ReplayLedger):
    """
    Replay ledger kept in a DynamoDB table.

    Table layout: partition key 'signature' (S); attributes 'summary' (S, JSON)
    and 'recorded_at' (S, ISO-8601 UTC).
    """

    def __init__(self, table_name: str = "strata-replay-state", client=None, region: str = "us-east-1"):
        self.table_name = table_name
        self.client = client or boto3.client("dynamodb", region_name=region)

    @classmethod
    def from_config(cls, config: StrataConfig, client=None) -> "DynamoDBReplayLedger":
        return cls(config.state_table, client=client, region=config.region)

    def get(self, signature: str) -> Optional[CommitSummary]:
        response = self.client.get_item(
            TableName=self.table_name,
            Key={"signature": {"S": signature}},
            ConsistentRead=True,
        )
        item = response.get("Item")
        if not item:
            return None
        return CommitSummary.from_dict(json.loads(item["summary"]["S"]))

    def put(self, signature: str, summary: CommitSummary, overwrite: bool = False) -> bool:
        params = {
            "TableName": self.table_name,
            "Item": {
                "signature": {"S": signature},
                "summary": {"S": json.dumps(summary.to_dict())},
                "recorded_at": {"S": datetime.now(timezone.utc).isoformat()},
            },
        }
        if not overwrite:
            params["ConditionExpression"] = "attribute_not_exists(signature)"

        try:
            self.client.put_item(**params)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                return False
            logger.error(f"Failed to record replay signature {signature[:12]} in {self.table_name}: {e}")
            raise
        return True


def _signature_part(value: Any) -> str:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


class ReplayIdempotencyController:
    """Decides whether a stage call runs, short-circuits, or force-replays."""

    def __init__(self, ledger: ReplayLedger):
        self.ledger = ledger

    @staticmethod
    def compute_signature(stage: str, table: str, source_system: str,
                          batch_window: Any, partition_key: Any) -> str:
        """
        SHA-256 over the identifying inputs of a stage call.

        Dates and datetimes are rendered as ISO-8601 so the same window always
        yields the same signature.
        """
        stage = getattr(stage, "value", stage)
        parts = [stage, table, source_system, batch_window, partition_key]
        payload = json.dumps([_signature_part(p) for p in parts], separators=(",", ":"))
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def check(self, signature: str, force_replay: bool = False) -> ReplayDecision:
        prior = self.ledger.get(signature)
        if force_replay:
            return ReplayDecision(signature, ReplayAction.FORCE, prior)
        if prior is not None and not prior.complete:
            logger.warning(
                f"Replay signature {signature[:12]} was committed but never completed; "
                f"resuming as a forced replay"
            )
            return ReplayDecision(signature, ReplayAction.FORCE, prior)
        if prior is not None:
            logger.info(f"Replay signature {signature[:12]} already committed; skipping")
            return ReplayDecision(signature, ReplayAction.SKIP, prior)
        return ReplayDecision(signature, ReplayAction.PROCEED)

    def record(self, signature: str, summary: CommitSummary, force: bool = False) -> None:
        """Record a committed stage call. A forced replay replaces the prior entry."""
        if not self.ledger.put(signature, summary, overwrite=force):
            logger.warning(
                f"Replay signature {signature[:12]} was recorded by a concurrent run; "
                f"keeping the existing entry"
            )


__all__ = [
    "ReplayAction",
    "ReplayDecision",
    "ReplayLedger",
    "LocalReplayLedger",
    "DynamoDBReplayLedger",
    "ReplayIdempotencyController",
]
