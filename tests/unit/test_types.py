"""
Unit tests for entity descriptor types.

Tests cover:
- Field value coercion per kind
- Storage and JSON encoding
- FieldDef and EntityDescriptor validation
- Serialization to and from dicts
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from dbaas.acme_server.errors import ValidationError
from dbaas.acme_server.schema.types import (
    EntityDescriptor,
    FieldKind,
    Record,
    canonical_decimal,
    field,
    quote_identifier,
)


class TestFieldCoercion:
    """Tests for FieldDef.coerce."""

    def test_integer_accepts_int_and_digit_string(self):
        f = field("n", "integer")
        assert f.coerce(5) == 5
        assert f.coerce(" -12 ") == -12
        assert f.coerce(3.0) == 3

    def test_integer_rejects_bool_fraction_and_text(self):
        f = field("n", "integer")
        for bad in (True, 1.5, "1.5", "abc", float("inf")):
            with pytest.raises(ValidationError):
                f.coerce(bad)

    def test_text_requires_string(self):
        f = field("name", "text")
        assert f.coerce("Room A") == "Room A"
        with pytest.raises(ValidationError, match="expects text"):
            f.coerce(12)

    def test_boolean_accepts_common_spellings(self):
        f = field("flag", "boolean")
        assert f.coerce(True) is True
        assert f.coerce("yes") is True
        assert f.coerce("FALSE") is False
        assert f.coerce(0) is False
        with pytest.raises(ValidationError):
            f.coerce("maybe")
        with pytest.raises(ValidationError):
            f.coerce(2)

    def test_decimal_keeps_exact_value(self):
        f = field("price", "decimal")
        assert f.coerce("100.10") == Decimal("100.10")
        assert f.coerce(7) == Decimal(7)
        with pytest.raises(ValidationError):
            f.coerce("NaN")
        with pytest.raises(ValidationError):
            f.coerce("ten")

    def test_timestamp_accepts_iso_datetime_and_millis(self):
        f = field("at", "timestamp")
        assert f.coerce("2024-05-01T00:00:00Z") == 1714521600000
        assert f.coerce(datetime(2024, 5, 1, tzinfo=timezone.utc)) == 1714521600000
        assert f.coerce(1714521600000) == 1714521600000
        with pytest.raises(ValidationError):
            f.coerce("not a date")
        with pytest.raises(ValidationError):
            f.coerce(1.5)

    def test_timestamp_before_epoch_is_negative_in_every_form(self):
        f = field("at", "timestamp")
        day_before = -86_400_000
        assert f.coerce(datetime(1969, 12, 31, tzinfo=timezone.utc)) == day_before
        assert f.coerce("1969-12-31T00:00:00Z") == day_before
        assert f.coerce(day_before) == day_before
        assert f.coerce(str(day_before)) == day_before

    def test_null_only_for_nullable_fields(self):
        assert field("notes", "text", nullable=True).coerce(None) is None
        with pytest.raises(ValidationError, match="cannot be null") as exc_info:
            field("name", "text").coerce(None)
        assert exc_info.value.field_name == "name"


class TestFieldEncoding:
    """Tests for storage and JSON representations."""

    def test_canonical_decimal(self):
        assert canonical_decimal(Decimal("100")) == "100"
        assert canonical_decimal(Decimal("100.500")) == "100.5"
        assert canonical_decimal(Decimal("1E+2")) == "100"
        assert canonical_decimal(Decimal("-0.00")) == "0"

    def test_canonical_decimal_keeps_every_digit(self):
        long_value = "12345678901234567890.123456789012"
        assert canonical_decimal(Decimal(long_value)) == long_value
        assert canonical_decimal(Decimal(long_value + "000")) == long_value
        assert canonical_decimal(Decimal("1" * 40 + "00")) == "1" * 40 + "00"

    def test_boolean_stored_as_integer(self):
        f = field("flag", "boolean")
        assert f.to_storage(True) == 1
        assert f.from_storage(0) is False

    def test_decimal_stored_as_text(self):
        f = field("price", "decimal")
        assert f.to_storage(Decimal("120.00")) == "120"
        assert f.from_storage("120") == Decimal("120")
        assert f.to_json(Decimal("99.90")) == "99.9"

    def test_none_passes_through(self):
        f = field("price", "decimal", nullable=True)
        assert f.to_storage(None) is None
        assert f.from_storage(None) is None
        assert f.to_json(None) is None


class TestFieldDefValidation:
    """Tests for FieldDef invariants."""

    def test_invalid_name_raises(self):
        with pytest.raises(ValueError, match="not a valid identifier"):
            field("drop table", "text")

    def test_nullable_primary_key_raises(self):
        with pytest.raises(ValueError, match="cannot be nullable"):
            field("id", "integer", primary_key=True, nullable=True)

    def test_auto_requires_integer_primary_key(self):
        with pytest.raises(ValueError, match="only allowed on the primary key"):
            field("n", "integer", auto=True)
        with pytest.raises(ValueError, match="must be an integer"):
            field("code", "text", primary_key=True, auto=True)

    def test_default_is_coerced(self):
        assert field("cost", "decimal", default="10.50").default == Decimal("10.50")
        with pytest.raises(ValueError, match="Invalid default"):
            field("count", "integer", default="many")

    def test_unknown_kind_raises(self):
        with pytest.raises(ValueError, match="Invalid field kind"):
            field("x", "blob")

    def test_sql_types(self):
        assert FieldKind.DECIMAL.sql_type == "TEXT"
        assert FieldKind.TIMESTAMP.sql_type == "INTEGER"
        assert FieldKind.BOOLEAN.sql_type == "INTEGER"


class TestEntityDescriptor:
    """Tests for EntityDescriptor."""

    def _booking(self, **kwargs):
        return EntityDescriptor(
            name="Booking",
            fields=(
                field("id", "integer", primary_key=True, auto=True),
                field("name", "text"),
                field("price", "decimal"),
                field("notes", "text", nullable=True),
                field("version", "integer"),
            ),
            **kwargs,
        )

    def test_primary_key_and_table(self):
        booking = self._booking(table="bookings")
        assert booking.primary_key.name == "id"
        assert booking.table_name == "bookings"
        assert self._booking().table_name == "Booking"

    def test_requires_exactly_one_primary_key(self):
        with pytest.raises(ValueError, match="exactly one primary key, found 0"):
            EntityDescriptor(name="Thing", fields=(field("name", "text"),))
        with pytest.raises(ValueError, match="found 2"):
            EntityDescriptor(
                name="Thing",
                fields=(
                    field("a", "integer", primary_key=True),
                    field("b", "integer", primary_key=True),
                ),
            )

    def test_duplicate_field_raises(self):
        with pytest.raises(ValueError, match="Duplicate field"):
            EntityDescriptor(
                name="Thing",
                fields=(field("id", "integer", primary_key=True), field("id", "text")),
            )

    def test_default_order_must_reference_fields(self):
        assert self._booking(default_order=("-price",)).default_order == ("-price",)
        with pytest.raises(ValueError, match="unknown field"):
            self._booking(default_order=("-rating",))

    def test_version_field_must_be_integer(self):
        assert self._booking(version_field="version").version_field == "version"
        with pytest.raises(ValueError, match="non-key integer"):
            self._booking(version_field="price")
        with pytest.raises(ValueError, match="is not a field"):
            self._booking(version_field="rev")

    def test_required_fields(self):
        booking = self._booking(version_field="version")
        assert [f.name for f in booking.get_required_fields()] == ["name", "price"]

    def test_coerce_key(self):
        booking = self._booking()
        assert booking.coerce_key("7") == 7
        with pytest.raises(ValidationError):
            booking.coerce_key(None)
        with pytest.raises(ValidationError):
            booking.coerce_key("seven")

    def test_key_text_is_canonical(self):
        booking = self._booking()
        assert booking.key_text("7") == "7"
        rate = EntityDescriptor(
            name="Rate",
            fields=(field("code", "decimal", primary_key=True),),
        )
        assert rate.key_text("1.50") == rate.key_text(Decimal("1.5")) == "1.5"
        with pytest.raises(ValidationError):
            rate.key_text("abc")

    def test_dict_roundtrip_preserves_descriptor(self):
        booking = self._booking(
            table="bookings", default_order=("-price",), version_field="version"
        )
        assert EntityDescriptor.from_dict(booking.to_dict()) == booking

    def test_record_snapshot_is_json_safe(self):
        booking = self._booking()
        record = Record(
            entity="Booking",
            key=1,
            values={"id": 1, "name": "Room A", "price": Decimal("100.0"), "notes": None, "version": 1},
        )
        assert record["name"] == "Room A"
        assert record.to_dict(booking) == {
            "id": 1,
            "name": "Room A",
            "price": "100",
            "notes": None,
            "version": 1,
        }


def test_quote_identifier_rejects_injection():
    assert quote_identifier("Booking") == '"Booking"'
    with pytest.raises(ValueError):
        quote_identifier('Booking"; DROP TABLE x; --')
