"""
Schema contracts: the declared column set and types of a table.

Type names are Spark SQL simple type strings ('string', 'int', 'bigint',
'decimal(10,2)', ...), so a contract can be compared directly against the
schema of a Delta table or of the local store.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from strata.errors import ContractError, SchemaDriftViolation

ENVELOPE_COLUMNS: Dict[str, str] = {
    "ingest_timestamp": "timestamp",
    "source_system": "string",
    "batch_id": "string",
    "ingest_date": "date",
}

_WIDENING = {frozenset({"bigint", "double"}): "double"}


def infer_type_name(value: Any) -> Optional[str]:
    """
    Infer a Spark SQL type name from a Python value.

    Returns:
        The type name, or None for a null value
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "bigint"
    if isinstance(value, float):
        return "double"
    if isinstance(value, Decimal):
        exponent = value.as_tuple().exponent
        scale = -exponent if isinstance(exponent, int) and exponent < 0 else 0
        return f"decimal(38,{min(scale, 18)})"
    if isinstance(value, datetime):
        return "timestamp"
    if isinstance(value, date):
        return "date"
    return "string"


def infer_batch_types(
    rows: Iterable[Mapping[str, Any]],
    declared: Optional[Mapping[str, str]] = None,
    table: str = "<batch>",
) -> Dict[str, str]:
    """
    Work out one type per column for a batch of rows.

    Declared columns keep their declared type. Undeclared columns are typed
    from their non-null values; a bigint/double mix widens to double and any
    other disagreement raises SchemaDriftViolation. Columns that are null in
    every row default to 'string'.
    """
    declared = dict(declared or {})
    seen: Dict[str, Optional[str]] = {}
    conflicts: Dict[str, Tuple[str, str]] = {}

    for row in rows:
        for column, value in row.items():
            if column in declared:
                seen.setdefault(column, declared[column])
                continue
            inferred = infer_type_name(value)
            current = seen.get(column)
            if current is None:
                seen[column] = inferred
            elif inferred is not None and inferred != current:
                widened = _WIDENING.get(frozenset({current, inferred}))
                if widened:
                    seen[column] = widened
                else:
                    conflicts[column] = (current, inferred)

    if conflicts:
        raise SchemaDriftViolation(
            table, conflicts,
            message=f"Conflicting value types within batch for '{table}': "
                    + ", ".join(f"{c} ({a} vs {b})" for c, (a, b) in sorted(conflicts.items())),
        )

    return {column: type_name or "string" for column, type_name in seen.items()}


@dataclass(frozen=True)
class SchemaContract:
    """
    Declared column set of a table.

    Evolvable contracts (Bronze) accept new columns but never a type change.
    Locked contracts (Silver, Gold) only change through migrate().
    """

    table: str
    columns: Dict[str, str] = field(default_factory=dict)
    version: int = 1
    evolvable: bool = False

    def drift_against(self, incoming: Mapping[str, str]) -> Dict[str, Tuple[str, str]]:
        """Columns whose type differs between this contract and `incoming`."""
        return {
            column: (self.columns[column], type_name)
            for column, type_name in incoming.items()
            if column in self.columns and self.columns[column] != type_name
        }

    def evolve(self, incoming: Mapping[str, str]) -> "SchemaContract":
        """
        Merge incoming columns into the contract.

        Raises:
            SchemaDriftViolation: If an existing column would change type, or
                if the contract is locked and incoming adds columns
        """
        drifted = self.drift_against(incoming)
        if drifted:
            raise SchemaDriftViolation(self.table, drifted)

        added = {c: t for c, t in incoming.items() if c not in self.columns}
        if not added:
            return self
        if not self.evolvable:
            raise SchemaDriftViolation(
                self.table,
                {c: ("<absent>", t) for c, t in added.items()},
                message=f"Contract for '{self.table}' is locked; new columns "
                        f"{sorted(added)} require a versioned migration",
            )
        return SchemaContract(
            table=self.table,
            columns={**self.columns, **added},
            version=self.version,
            evolvable=self.evolvable,
        )

    def migrate(self, columns: Mapping[str, str], version: int) -> "SchemaContract":
        """
        Explicit versioned migration of a contract.

        Args:
            columns: Complete column set of the new version
            version: Must be exactly one greater than the current version

        Returns:
            SchemaContract: The migrated contract
        """
        if version != self.version + 1:
            raise ContractError(
                f"Migration of '{self.table}' must target version {self.version + 1}, got {version}"
            )
        if not columns:
            raise ContractError(f"Migration of '{self.table}' must declare at least one column")
        return SchemaContract(
            table=self.table,
            columns=dict(columns),
            version=version,
            evolvable=self.evolvable,
        )


__all__ = [
    "ENVELOPE_COLUMNS",
    "SchemaContract",
    "infer_type_name",
    "infer_batch_types",
]
