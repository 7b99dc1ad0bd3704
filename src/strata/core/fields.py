"""
Field definitions for Strata table contracts.
Each field maps to a Spark SQL data type and knows how to cast a raw value
into its Python representation.
"""

from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional
import math
from pyspark.sql.types import (
    StringType,
    IntegerType,
    LongType,
    DoubleType,
    BooleanType,
    TimestampType,
    DateType,
    DecimalType,
    ArrayType,
    StructType,
    StructField as SparkStructField,
)

_INT32_MIN = -(2 ** 31)
_INT32_MAX = 2 ** 31 - 1
_INT64_MIN = -(2 ** 63)
_INT64_MAX = 2 ** 63 - 1

_TRUE_VALUES = {"true", "t", "1", "yes", "y"}
_FALSE_VALUES = {"false", "f", "0", "no", "n"}


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def parse_bool(value: str) -> bool:
    v = value.strip().lower()
    if v in _TRUE_VALUES:
        return True
    if v in _FALSE_VALUES:
        return False
    raise ValueError(f"Invalid boolean: {value!r}")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    v = value.strip()
    if v.endswith("Z"):
        v = v[:-1] + "+00:00"
    parsed = datetime.fromisoformat(v)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Field:
    """Base field class for all data types."""

    def __init__(self, nullable: bool = True, description: Optional[str] = None):
        self.nullable = nullable
        self.description = description
        self.name: Optional[str] = None  # Set by the metaclass

    def to_spark_type(self):
        """Convert this field to a Spark DataType."""
        raise NotImplementedError("Subclasses must implement to_spark_type()")

    def to_spark_field(self) -> SparkStructField:
        """Convert this field to a Spark StructField."""
        if self.name is None:
            raise ValueError("Field name has not been set")
        return SparkStructField(
            name=self.name,
            dataType=self.to_spark_type(),
            nullable=self.nullable,
            metadata={"description": self.description} if self.description else {}
        )

    @property
    def type_name(self) -> str:
        """Spark SQL simple type string, e.g. 'int' or 'decimal(10,2)'."""
        return self.to_spark_type().simpleString()

    def cast(self, value: Any) -> Any:
        """
        Cast a raw value to this field's Python type.

        Blank values (None or whitespace-only strings) cast to None.

        Raises:
            ValueError: If the value cannot be represented in this type
        """
        if _is_blank(value):
            return None
        return self._cast(value)

    def _cast(self, value: Any) -> Any:
        raise NotImplementedError("Subclasses must implement _cast()")

    def __repr__(self):
        return f"{type(self).__name__}(name={self.name!r}, nullable={self.nullable})"


class StringField(Field):
    """String/Text field."""

    def to_spark_type(self):
        return StringType()

    def _cast(self, value):
        if isinstance(value, (bytes, bytearray)):
            return value.decode("utf-8")
        if isinstance(value, datetime):
            return value.isoformat()
        return str(value)


class IntegerField(Field):
    """32-bit integer field."""

    _min = _INT32_MIN
    _max = _INT32_MAX

    def to_spark_type(self):
        return IntegerType()

    def _cast(self, value):
        if isinstance(value, bool):
            raise ValueError("booleans are not integers")
        if isinstance(value, int):
            result = value
        elif isinstance(value, (float, Decimal)):
            if value != value or not float(value).is_integer():
                raise ValueError(f"{value!r} is not integral")
            result = int(value)
        elif isinstance(value, str):
            result = int(value.strip())
        else:
            raise ValueError(f"unsupported value type {type(value).__name__}")

        if not self._min <= result <= self._max:
            raise ValueError(f"{result} out of range for {self.type_name}")
        return result


class LongField(IntegerField):
    """64-bit long integer field."""

    _min = _INT64_MIN
    _max = _INT64_MAX

    def to_spark_type(self):
        return LongType()


class DoubleField(Field):
    """Double precision float field."""

    def to_spark_type(self):
        return DoubleType()

    def _cast(self, value):
        if isinstance(value, bool):
            raise ValueError("booleans are not numbers")
        if isinstance(value, str):
            result = float(value.strip())
        elif isinstance(value, (int, float, Decimal)):
            result = float(value)
        else:
            raise ValueError(f"unsupported value type {type(value).__name__}")
        if not math.isfinite(result):
            raise ValueError(f"Invalid double: {value!r}")
        return result


class BooleanField(Field):
    """Boolean field."""

    def to_spark_type(self):
        return BooleanType()

    def _cast(self, value):
        if isinstance(value, bool):
            return value
        if isinstance(value, int) and value in (0, 1):
            return bool(value)
        if isinstance(value, str):
            return parse_bool(value)
        raise ValueError(f"Invalid boolean: {value!r}")


class TimestampField(Field):
    """Timestamp field with timezone."""

    def to_spark_type(self):
        return TimestampType()

    def _cast(self, value):
        if isinstance(value, datetime):
            return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        if isinstance(value, str):
            return parse_timestamp(value)
        raise ValueError(f"Invalid timestamp: {value!r}")


class DateField(Field):
    """Date field (without time)."""

    def to_spark_type(self):
        return DateType()

    def _cast(self, value):
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        if isinstance(value, str):
            return date.fromisoformat(value.strip())
        raise ValueError(f"Invalid date: {value!r}")


class DecimalField(Field):
    """Decimal field with precision and scale."""

    def __init__(self, precision: int = 10, scale: int = 0, nullable: bool = True,
                 description: Optional[str] = None):
        super().__init__(nullable=nullable, description=description)
        self.precision = precision
        self.scale = scale

    def to_spark_type(self):
        return DecimalType(precision=self.precision, scale=self.scale)

    def _cast(self, value):
        if isinstance(value, bool):
            raise ValueError("booleans are not numbers")
        try:
            result = Decimal(value.strip() if isinstance(value, str) else str(value))
        except InvalidOperation:
            raise ValueError(f"Invalid decimal: {value!r}")
        if not result.is_finite():
            raise ValueError(f"Invalid decimal: {value!r}")

        result = result.quantize(Decimal(1).scaleb(-self.scale))
        integer_digits = len(result.as_tuple().digits) - self.scale
        if integer_digits > self.precision - self.scale:
            raise ValueError(f"{result} exceeds {self.type_name}")
        return result


class ArrayField(Field):
    """Array field containing elements of a specific type."""

    def __init__(self, element_field: Field, nullable: bool = True,
                 description: Optional[str] = None):
        super().__init__(nullable=nullable, description=description)
        self.element_field = element_field

    def to_spark_type(self):
        return ArrayType(
            elementType=self.element_field.to_spark_type(),
            containsNull=self.element_field.nullable
        )

    def _cast(self, value):
        if not isinstance(value, (list, tuple)):
            raise ValueError(f"Expected a list, got {type(value).__name__}")
        return [self.element_field.cast(item) for item in value]


class StructField(Field):
    """Nested struct field."""

    def __init__(self, fields: dict[str, Field], nullable: bool = True,
                 description: Optional[str] = None):
        super().__init__(nullable=nullable, description=description)
        self.fields = fields
        # Set the name for nested fields
        for name, field in self.fields.items():
            field.name = name

    def to_spark_type(self):
        spark_fields = [field.to_spark_field() for field in self.fields.values()]
        return StructType(spark_fields)

    def _cast(self, value):
        if not isinstance(value, dict):
            raise ValueError(f"Expected a mapping, got {type(value).__name__}")
        return {name: field.cast(value.get(name)) for name, field in self.fields.items()}


__all__ = [
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
    "parse_bool",
    "parse_timestamp",
]
