"""
Row-level data quality rules for Strata.
Rules run on every cast row at Silver ingress; a row failing an ERROR rule
is quarantined with the rule's enumerated reason.
"""

from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple
from dataclasses import dataclass, field
from enum import Enum
import re

from strata.quarantine import QuarantineReason

CheckFn = Callable[[Mapping[str, Any]], Tuple[bool, str]]


class Severity(Enum):
    """Severity level for quality rule failures."""
    WARN = "warn"      # Log warning, keep the row
    ERROR = "error"    # Quarantine the row


@dataclass
class QualityRule:
    """Represents a single row-level quality rule."""

    name: str
    check_fn: CheckFn
    reason: str
    description: Optional[str] = None
    severity: Severity = Severity.ERROR
    enabled: bool = True
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class QualityResult:
    """Result of evaluating one rule against one row."""

    rule_name: str
    passed: bool
    reason: str
    message: str
    severity: Severity


class QualityRegistry:
    """Global registry of quality rules, keyed by qualified table name."""

    _rules: Dict[str, List[QualityRule]] = {}

    @classmethod
    def register(cls, table_name: str, rule: QualityRule) -> None:
        """Register a rule for a table."""
        if table_name not in cls._rules:
            cls._rules[table_name] = []

        if any(existing.name == rule.name for existing in cls._rules[table_name]):
            raise ValueError(f"Rule '{rule.name}' is already registered for '{table_name}'")

        cls._rules[table_name].append(rule)

    @classmethod
    def get_rules(cls, table_name: str) -> List[QualityRule]:
        """Get all rules for a table."""
        return list(cls._rules.get(table_name, []))

    @classmethod
    def get_all(cls) -> Dict[str, List[QualityRule]]:
        """Get all registered rules."""
        return cls._rules.copy()

    @classmethod
    def clear(cls) -> None:
        """Clear all rules (useful for testing)."""
        cls._rules.clear()


def expect(
    name: str,
    check_fn: CheckFn,
    reason: Optional[str] = None,
    description: Optional[str] = None,
    severity: Severity = Severity.ERROR,
    enabled: bool = True,
    **metadata
):
    """
    Class decorator adding a row-level quality rule to a table contract.

    Args:
        name: Name of the rule
        check_fn: Function that takes a cast row and returns (bool, message)
        reason: Quarantine reason; defaults to the built-in check's reason
        description: Human-readable description
        severity: WARN or ERROR (ERROR quarantines the row)
        enabled: Whether this rule is active
        **metadata: Additional metadata for reporting

    Example:
        @expect("price_not_negative", column_values_in_range("price", min_val=0))
        @expect("currency_known", column_values_in_set("currency", {"EUR", "USD"}))
        class OrdersSilver(SilverTable):
            ...
    """

    def decorator(cls):
        rule = QualityRule(
            name=name,
            check_fn=check_fn,
            reason=reason or getattr(check_fn, "reason", "quality_check_failed"),
            description=description or name,
            severity=severity,
            enabled=enabled,
            metadata=metadata,
        )

        QualityRegistry.register(cls.get_qualified_name(), rule)
        return cls

    return decorator


def evaluate_rules(rules: Iterable[QualityRule], row: Mapping[str, Any]) -> List[QualityResult]:
    """
    Run every enabled rule against a row.

    A rule that raises counts as failed with reason 'quality_rule_error'.
    """
    results = []
    for rule in rules:
        if not rule.enabled:
            continue
        try:
            passed, message = rule.check_fn(row)
            reason = rule.reason
        except Exception as e:  # noqa: BLE001
            passed = False
            message = f"Rule '{rule.name}' raised exception: {e}"
            reason = QuarantineReason.QUALITY_RULE_ERROR.value

        results.append(QualityResult(
            rule_name=rule.name,
            passed=bool(passed),
            reason=reason,
            message=message,
            severity=rule.severity,
        ))
    return results


# Built-in rule functions. Null values pass every check except no_nulls_in_column.

def column_values_in_range(column_name: str, min_val: Optional[float] = None,
                           max_val: Optional[float] = None) -> CheckFn:
    """Check that a column's value lies within [min_val, max_val]."""
    def check(row) -> Tuple[bool, str]:
        value = row.get(column_name)
        if value is None:
            return (True, f"Column '{column_name}' is null")
        passed = (min_val is None or value >= min_val) and (max_val is None or value <= max_val)
        msg = (f"Column '{column_name}' value {value} "
               f"{'within' if passed else 'outside'} expected [{min_val}, {max_val}]")
        return (passed, msg)
    check.reason = QuarantineReason.RANGE_CHECK_FAILED.value
    return check


def column_matches_pattern(column_name: str, pattern: str) -> CheckFn:
    """Check that a column's value fully matches a regex pattern."""
    compiled = re.compile(pattern)

    def check(row) -> Tuple[bool, str]:
        value = row.get(column_name)
        if value is None:
            return (True, f"Column '{column_name}' is null")
        passed = compiled.fullmatch(str(value)) is not None
        msg = (f"Column '{column_name}' value {value!r} "
               f"{'matches' if passed else 'does not match'} pattern '{pattern}'")
        return (passed, msg)
    check.reason = QuarantineReason.PATTERN_CHECK_FAILED.value
    return check


def column_values_in_set(column_name: str, allowed: Iterable[Any]) -> CheckFn:
    """Check that a column's value belongs to a reference set."""
    allowed = frozenset(allowed)

    def check(row) -> Tuple[bool, str]:
        value = row.get(column_name)
        if value is None:
            return (True, f"Column '{column_name}' is null")
        passed = value in allowed
        msg = (f"Column '{column_name}' value {value!r} "
               f"{'is' if passed else 'is not'} a known reference value")
        return (passed, msg)
    check.reason = QuarantineReason.REFERENCE_CHECK_FAILED.value
    return check


def no_nulls_in_column(column_name: str) -> CheckFn:
    """Check that a column is not null."""
    def check(row) -> Tuple[bool, str]:
        passed = row.get(column_name) is not None
        msg = f"Column '{column_name}' {'has a value' if passed else 'is null'}"
        return (passed, msg)
    check.reason = QuarantineReason.REQUIRED_FIELD_MISSING.value
    return check


__all__ = [
    # Core classes
    "QualityRule",
    "QualityResult",
    "QualityRegistry",
    "Severity",
    # Decorator and evaluation
    "expect",
    "evaluate_rules",
    # Built-in checks
    "column_values_in_range",
    "column_matches_pattern",
    "column_values_in_set",
    "no_nulls_in_column",
]
