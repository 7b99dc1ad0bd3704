"""Silver layer refinement: type-cast gate and merge engine."""

from .cast_gate import GateResult, TypeCastGate
from .merge import FRESHNESS_COLUMN, MergeEngine, MergePlan, MergeResult

__all__ = [
    "TypeCastGate",
    "GateResult",
    "MergeEngine",
    "MergePlan",
    "MergeResult",
    "FRESHNESS_COLUMN",
]
