"""Commit summaries returned by every stage call."""

from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class CommitSummary:
    stage: str
    table: str
    signature: str
    batch_id: Optional[str] = None
    accepted: int = 0
    quarantined: int = 0
    dropped: int = 0
    flagged: int = 0
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    version: Optional[int] = None
    replayed: bool = False
    skipped: bool = False
    # False while a committed batch still has quarantine rows to route
    complete: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CommitSummary":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def as_skipped(self) -> "CommitSummary":
        """The prior result, reported again for a short-circuited replay."""
        return replace(self, skipped=True)


__all__ = ["CommitSummary"]
