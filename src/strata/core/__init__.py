"""Core module for Strata: fields, table contracts and schema contracts."""

from .contracts import BaseTable, BronzeTable, SilverTable, GoldTable, TableMeta
from .fields import (
    Field,
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
)
from .results import CommitSummary
from .schema import ENVELOPE_COLUMNS, SchemaContract, infer_batch_types, infer_type_name

__all__ = [
    "BaseTable",
    "BronzeTable",
    "SilverTable",
    "GoldTable",
    "TableMeta",
    "Field",
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
    "CommitSummary",
    "ENVELOPE_COLUMNS",
    "SchemaContract",
    "infer_batch_types",
    "infer_type_name",
]
