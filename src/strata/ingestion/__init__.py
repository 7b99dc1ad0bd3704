"""
Bronze layer ingestion for Strata.

Bronze philosophy: sanitized raw data as-is + envelope metadata. No casting,
no filtering; rows are appended and never updated in place.
"""

from .envelope import Envelope, make_envelope, new_batch_id, stamp_envelope
from .ledger import AppendOnlyLedger, LedgerCommit

__all__ = [
    "Envelope",
    "make_envelope",
    "new_batch_id",
    "stamp_envelope",
    "AppendOnlyLedger",
    "LedgerCommit",
]
