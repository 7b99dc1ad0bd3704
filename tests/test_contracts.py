from datetime import date, datetime, timezone
from decimal import Decimal
import unittest

from strata.core import (
    BronzeTable,
    DecimalField,
    DoubleField,
    IntegerField,
    LongField,
    SchemaContract,
    SilverTable,
    StringField,
    TimestampField,
    BooleanField,
    DateField,
    ArrayField,
    StructField,
    infer_batch_types,
)
from strata.errors import ContractError, SchemaDriftViolation


class OrdersBronze(BronzeTable):
    order_id = StringField(nullable=False)


class OrdersSilver(SilverTable):
    order_id = StringField(nullable=False)
    quantity = IntegerField()
    price = DecimalField(precision=10, scale=2)
    created_at = TimestampField()

    class Meta:
        primary_key = "order_id"
        schema_version = 2


class TestFieldCasting(unittest.TestCase):
    def test_integer_field_parses_strings_and_rejects_garbage(self):
        field = IntegerField()
        self.assertEqual(field.cast(" 42 "), 42)
        self.assertEqual(field.cast(7.0), 7)
        self.assertIsNone(field.cast("   "))
        with self.assertRaises(ValueError):
            field.cast("abc")
        with self.assertRaises(ValueError):
            field.cast(1.5)
        with self.assertRaises(ValueError):
            field.cast(True)

    def test_integer_range_depends_on_width(self):
        with self.assertRaises(ValueError):
            IntegerField().cast(2 ** 31)
        self.assertEqual(LongField().cast(2 ** 31), 2 ** 31)

    def test_decimal_field_quantizes_and_checks_precision(self):
        field = DecimalField(precision=5, scale=2)
        self.assertEqual(field.cast("1.5"), Decimal("1.50"))
        self.assertEqual(field.cast(-5), Decimal("-5.00"))
        with self.assertRaises(ValueError):
            field.cast("1234.5")
        with self.assertRaises(ValueError):
            field.cast("NaN")

    def test_double_field_rejects_non_finite_values(self):
        field = DoubleField()
        self.assertEqual(field.cast(" 2.5 "), 2.5)
        self.assertEqual(field.cast(3), 3.0)
        for value in ("nan", "inf", "-Infinity", float("inf"), Decimal("NaN")):
            with self.subTest(value=value):
                with self.assertRaises(ValueError):
                    field.cast(value)

    def test_timestamp_field_assumes_utc_for_naive_values(self):
        field = TimestampField()
        self.assertEqual(
            field.cast("2024-01-01T10:00:00"),
            datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc),
        )
        self.assertEqual(
            field.cast("2024-01-01T10:00:00Z"),
            datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc),
        )

    def test_other_scalar_fields(self):
        self.assertTrue(BooleanField().cast("yes"))
        self.assertFalse(BooleanField().cast(0))
        self.assertEqual(DateField().cast("2024-02-29"), date(2024, 2, 29))
        self.assertEqual(StringField().cast(12), "12")

    def test_nested_fields_cast_recursively(self):
        tags = ArrayField(IntegerField())
        self.assertEqual(tags.cast(["1", 2]), [1, 2])
        address = StructField({"zip": StringField(), "floor": IntegerField()})
        self.assertEqual(address.cast({"zip": 1010, "floor": "3"}), {"zip": "1010", "floor": 3})

    def test_type_names_are_spark_simple_strings(self):
        self.assertEqual(IntegerField().type_name, "int")
        self.assertEqual(LongField().type_name, "bigint")
        self.assertEqual(DecimalField(10, 2).type_name, "decimal(10,2)")
        self.assertEqual(ArrayField(StringField()).type_name, "array<string>")


class TestTableContracts(unittest.TestCase):
    def test_table_names_and_layers(self):
        self.assertEqual(OrdersBronze.get_qualified_name(), "bronze.orders")
        self.assertEqual(OrdersSilver.get_qualified_name(), "silver.orders")
        self.assertEqual(OrdersSilver.get_primary_key(), ["order_id"])

    def test_contract_includes_envelope_columns(self):
        contract = OrdersSilver.get_contract()
        self.assertEqual(contract.version, 2)
        self.assertFalse(contract.evolvable)
        self.assertEqual(contract.columns["price"], "decimal(10,2)")
        self.assertEqual(contract.columns["ingest_timestamp"], "timestamp")
        self.assertEqual(contract.columns["ingest_date"], "date")
        self.assertTrue(OrdersBronze.get_contract().evolvable)

    def test_primary_key_must_be_declared(self):
        with self.assertRaises(ContractError):
            class BrokenSilver(SilverTable):
                name = StringField()

                class Meta:
                    primary_key = ["id"]

    def test_explicit_table_name(self):
        class Legacy(BronzeTable):
            table_name = "legacy_orders"
            id = StringField()

        self.assertEqual(Legacy.get_qualified_name(), "bronze.legacy_orders")


class TestSchemaContract(unittest.TestCase):
    def test_evolvable_contract_accepts_new_columns(self):
        contract = SchemaContract("bronze.orders", {"order_id": "string"}, evolvable=True)
        evolved = contract.evolve({"order_id": "string", "channel": "string"})
        self.assertEqual(evolved.columns, {"order_id": "string", "channel": "string"})

    def test_type_change_is_drift(self):
        contract = SchemaContract("bronze.orders", {"amount": "bigint"}, evolvable=True)
        with self.assertRaises(SchemaDriftViolation) as ctx:
            contract.evolve({"amount": "string"})
        self.assertEqual(ctx.exception.drifted, {"amount": ("bigint", "string")})
        self.assertEqual(ctx.exception.reason, "schema_drift")

    def test_locked_contract_rejects_new_columns(self):
        contract = SchemaContract("silver.orders", {"order_id": "string"})
        with self.assertRaises(SchemaDriftViolation):
            contract.evolve({"order_id": "string", "extra": "string"})

    def test_migration_must_bump_version_by_one(self):
        contract = SchemaContract("silver.orders", {"order_id": "string"}, version=1)
        migrated = contract.migrate({"order_id": "string", "channel": "string"}, version=2)
        self.assertEqual(migrated.version, 2)
        self.assertIn("channel", migrated.columns)
        with self.assertRaises(ContractError):
            contract.migrate({"order_id": "string"}, version=3)

    def test_batch_types_widen_numbers_and_flag_conflicts(self):
        types = infer_batch_types([{"amount": 1}, {"amount": 2.5}, {"note": None}])
        self.assertEqual(types, {"amount": "double", "note": "string"})

        with self.assertRaises(SchemaDriftViolation):
            infer_batch_types([{"amount": 1}, {"amount": "one"}])

    def test_declared_columns_keep_their_type(self):
        types = infer_batch_types([{"order_id": 1}], declared={"order_id": "string"})
        self.assertEqual(types, {"order_id": "string"})


if __name__ == "__main__":
    unittest.main()
