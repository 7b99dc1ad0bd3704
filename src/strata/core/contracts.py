"""
Table contract definitions using metaclass pattern.
Defines BaseTable and the BronzeTable, SilverTable and GoldTable layers.
"""

from typing import Dict, List, Optional

from strata.errors import ContractError
from .fields import Field
from .schema import ENVELOPE_COLUMNS, SchemaContract


class TableMeta:
    """Metadata container for table configuration."""

    def __init__(self):
        self.primary_key: Optional[List[str]] = None
        self.description: Optional[str] = None
        self.schema_version: int = 1


class BaseTableMeta(type):
    """Metaclass for BaseTable that processes field definitions."""

    _abstract_names = {"BaseTable", "BronzeTable", "SilverTable", "GoldTable"}

    @staticmethod
    def _derive_clean_table_name(class_name: str) -> str:
        """
        Derive clean table name from class name.

        Examples:
            OrdersBronze -> orders
            OrdersSilver -> orders
            Orders -> orders
        """
        for suffix in ["Bronze", "Silver", "Gold", "Table"]:
            if class_name.endswith(suffix) and class_name != suffix:
                class_name = class_name[:-len(suffix)]
                break

        return class_name.lower()

    def __new__(mcs, name, bases, namespace, **kwargs):
        if name in mcs._abstract_names:
            return super().__new__(mcs, name, bases, namespace)

        # Inherit fields from parent contracts, then add our own
        fields: Dict[str, Field] = {}
        for base in reversed(bases):
            fields.update(getattr(base, "_fields", {}))
        for attr_name, attr_value in list(namespace.items()):
            if isinstance(attr_value, Field):
                attr_value.name = attr_name
                fields[attr_name] = attr_value

        namespace["_fields"] = fields

        meta = namespace.get("Meta", None)
        table_meta = TableMeta()

        if meta:
            primary_key = getattr(meta, "primary_key", None)
            if isinstance(primary_key, str):
                primary_key = [primary_key]
            table_meta.primary_key = list(primary_key) if primary_key else None
            table_meta.description = getattr(meta, "description", None)
            table_meta.schema_version = getattr(meta, "schema_version", 1)

        for column in table_meta.primary_key or []:
            if column not in fields:
                raise ContractError(
                    f"{name}: primary key column '{column}' is not a declared field"
                )

        namespace["_meta"] = table_meta
        namespace["_table_name"] = namespace.get("table_name") or mcs._derive_clean_table_name(name)

        return super().__new__(mcs, name, bases, namespace)


class BaseTable(metaclass=BaseTableMeta):
    """Base class for all table definitions."""

    _fields: Dict[str, Field] = {}
    _meta: TableMeta = TableMeta()
    _table_name: str = ""
    _layer: str = "unknown"
    _evolvable: bool = False

    class Meta:
        """Override this in subclasses to provide table metadata."""
        primary_key: Optional[List[str]] = None
        description: Optional[str] = None
        schema_version: int = 1

    @classmethod
    def get_table_name(cls) -> str:
        """Get the clean table name (e.g., 'orders', not 'orderssilver')."""
        return cls._table_name

    @classmethod
    def get_layer(cls) -> str:
        """Get the data lake layer for this table ('bronze', 'silver', 'gold')."""
        return cls._layer

    @classmethod
    def get_qualified_name(cls) -> str:
        """Layer-qualified name used to address the table in a store, e.g. 'silver.orders'."""
        return f"{cls.get_layer()}.{cls.get_table_name()}"

    @classmethod
    def get_fields(cls) -> Dict[str, Field]:
        """Get all fields defined for this table."""
        return cls._fields

    @classmethod
    def get_primary_key(cls) -> Optional[List[str]]:
        """Get the primary key columns for this table."""
        return cls._meta.primary_key

    @classmethod
    def get_contract(cls) -> SchemaContract:
        """
        Build the SchemaContract for this table.

        Bronze and Silver contracts include the envelope columns.
        """
        columns = {name: field.type_name for name, field in cls._fields.items()}
        if cls._layer in ("bronze", "silver"):
            for column, type_name in ENVELOPE_COLUMNS.items():
                columns.setdefault(column, type_name)
        return SchemaContract(
            table=cls.get_qualified_name(),
            columns=columns,
            version=cls._meta.schema_version,
            evolvable=cls._evolvable,
        )


class BronzeTable(BaseTable):
    """
    Bronze layer table (sanitized raw data, append-only).
    - Schema: evolvable (new columns accepted, types never change)
    - Write mode: Append, or partition overwrite on forced replay
    """

    _layer = "bronze"
    _evolvable = True


class SilverTable(BaseTable):
    """
    Silver layer table (typed, validated, deduplicated).
    - Schema: locked, changes require a versioned migration
    - Write mode: Merge on primary key with freshness resolution
    """

    _layer = "silver"


class GoldTable(BaseTable):
    """
    Gold layer table (aggregates built outside the core).
    - Schema: locked
    """

    _layer = "gold"


__all__ = [
    "BaseTable",
    "BronzeTable",
    "SilverTable",
    "GoldTable",
    "TableMeta",
]
