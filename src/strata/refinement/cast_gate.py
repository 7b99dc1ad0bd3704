"""
Silver ingress: cast Bronze rows to the Silver contract and split them into a
clean set and quarantine records.

Policy per row:
- a non-key field that fails its cast becomes null and the row is flagged,
  but kept;
- a row whose primary key is null after casting is dropped and counted; it
  cannot be identified, so it is not quarantined either;
- a row failing an ERROR quality rule is quarantined with both its original
  and its cast values.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Type
import logging

from strata.core.contracts import SilverTable
from strata.core.fields import DateField, TimestampField
from strata.core.schema import ENVELOPE_COLUMNS
from strata.errors import CastFailure, ContractError, NullPrimaryKey, QualityRuleViolation
from strata.quality import QualityRegistry, QualityRule, Severity, evaluate_rules
from strata.quarantine import QuarantineReason, QuarantineRecord, Stage

logger = logging.getLogger(__name__)

_ENVELOPE_CASTS = {
    "ingest_timestamp": TimestampField(nullable=False),
    "ingest_date": DateField(nullable=False),
}


@dataclass(frozen=True)
class GateResult:
    clean: Tuple[Dict[str, Any], ...]
    quarantined: Tuple[QuarantineRecord, ...]
    dropped: int = 0
    flagged: int = 0
    cast_failures: Tuple[CastFailure, ...] = ()
    null_keys: Tuple[NullPrimaryKey, ...] = ()
    violations: Tuple[QualityRuleViolation, ...] = ()


class TypeCastGate:
    """Casts and validates rows against a Silver contract."""

    def __init__(self, contract: Type[SilverTable], rules: Optional[Sequence[QualityRule]] = None):
        """
        Args:
            contract: SilverTable subclass with a primary key
            rules: Quality rules to apply; defaults to the rules registered
                for the contract with @expect
        """
        if not (isinstance(contract, type) and issubclass(contract, SilverTable)):
            raise TypeError(f"{contract!r} is not a SilverTable contract")
        if not contract.get_primary_key():
            raise ContractError(f"{contract.__name__} must declare Meta.primary_key")

        self.contract = contract
        self.fields = contract.get_fields()
        self.primary_key = contract.get_primary_key()
        self.rules = list(rules) if rules is not None else QualityRegistry.get_rules(
            contract.get_qualified_name()
        )

    def cast_row(self, row: Mapping[str, Any]) -> Tuple[Dict[str, Any], List[CastFailure]]:
        """
        Cast every declared column; failures become nulls.

        Returns:
            (cast row including envelope columns, cast failures)
        """
        typed: Dict[str, Any] = {}
        failures: List[CastFailure] = []

        for name, field in self.fields.items():
            raw = row.get(name)
            try:
                typed[name] = field.cast(raw)
            except (ValueError, TypeError, ArithmeticError) as e:
                failures.append(CastFailure(name, raw, field.type_name, str(e)))
                typed[name] = None

        for column in ENVELOPE_COLUMNS:
            value = row.get(column)
            caster = _ENVELOPE_CASTS.get(column)
            if caster is not None:
                try:
                    value = caster.cast(value)
                except (ValueError, TypeError) as e:
                    failures.append(CastFailure(column, value, caster.type_name, str(e)))
                    value = None
            typed.setdefault(column, value)

        return typed, failures

    def process(self, rows: Iterable[Mapping[str, Any]]) -> GateResult:
        """Cast and validate a batch of Bronze rows."""
        clean = []
        quarantined = []
        all_failures: List[CastFailure] = []
        null_keys: List[NullPrimaryKey] = []
        violations: List[QualityRuleViolation] = []
        flagged = 0

        for row in rows:
            typed, failures = self.cast_row(row)

            if any(typed.get(column) is None for column in self.primary_key):
                null_keys.append(NullPrimaryKey(
                    f"Primary key {self.primary_key} is null in batch {row.get('batch_id')}"
                ))
                continue

            if failures:
                flagged += 1
                all_failures.extend(failures)

            envelope = {column: typed.get(column) for column in ENVELOPE_COLUMNS}
            original = {k: v for k, v in row.items() if k not in ENVELOPE_COLUMNS}
            attempted = {k: v for k, v in typed.items() if k not in ENVELOPE_COLUMNS}

            if typed.get("ingest_timestamp") is None:
                quarantined.append(QuarantineRecord(
                    stage=Stage.SILVER,
                    reason=QuarantineReason.REQUIRED_FIELD_MISSING.value,
                    payload=original,
                    attempted=attempted,
                    detail="Row has no ingest_timestamp and cannot be merged",
                    envelope=envelope,
                ))
                continue

            results = evaluate_rules(self.rules, typed)
            errors = [r for r in results if not r.passed and r.severity == Severity.ERROR]
            for warning in (r for r in results if not r.passed and r.severity == Severity.WARN):
                logger.warning(f"Quality warning on {self._key_repr(typed)}: {warning.message}")

            if errors:
                violations.extend(
                    QualityRuleViolation(r.rule_name, r.reason, r.message) for r in errors
                )
                quarantined.append(QuarantineRecord(
                    stage=Stage.SILVER,
                    reason=errors[0].reason,
                    payload=original,
                    attempted=attempted,
                    detail="; ".join(r.message for r in errors),
                    envelope=envelope,
                ))
                continue

            clean.append(typed)

        if null_keys:
            logger.warning(
                f"Dropped {len(null_keys)} row(s) with a null primary key {self.primary_key} "
                f"for '{self.contract.get_qualified_name()}'"
            )
        if flagged:
            logger.warning(f"{flagged} row(s) had fields nulled by failed casts")

        return GateResult(
            clean=tuple(clean),
            quarantined=tuple(quarantined),
            dropped=len(null_keys),
            flagged=flagged,
            cast_failures=tuple(all_failures),
            null_keys=tuple(null_keys),
            violations=tuple(violations),
        )

    def _key_repr(self, row: Mapping[str, Any]) -> str:
        return ", ".join(f"{c}={row.get(c)!r}" for c in self.primary_key)


__all__ = ["TypeCastGate", "GateResult"]
