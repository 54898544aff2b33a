"""
Core type definitions for Acme entity descriptors.

This module defines the metadata that drives storage and CRUD:
- FieldKind: Semantic type of a field and its SQLite representation
- FieldDef: One field of a persisted record type
- EntityDescriptor: The full shape of a persisted record type
- Record: One row decoded through its descriptor

Invariants:
    - Entity, table and field names are plain SQL identifiers
    - Every descriptor has exactly one primary-key field
    - Only integer primary keys may be auto-generated
    - Descriptors are immutable once constructed

Storage representation:
    integer   -> INTEGER
    text      -> TEXT
    timestamp -> INTEGER (Unix milliseconds, UTC)
    boolean   -> INTEGER (0/1)
    decimal   -> TEXT (canonical decimal string)

Example:
    >>> from dbaas.acme_server.schema.types import EntityDescriptor, field
    >>> Booking = EntityDescriptor(
    ...     name="Booking",
    ...     fields=(
    ...         field("id", "integer", primary_key=True, auto=True),
    ...         field("name", "text"),
    ...         field("price", "decimal"),
    ...     ),
    ... )
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from dataclasses import field as dataclass_field
from datetime import datetime, timezone
from decimal import Context, Decimal, InvalidOperation
from enum import Enum
from typing import Any

from ..errors import ValidationError

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_TRUE_STRINGS = {"true", "1", "yes", "on"}
_FALSE_STRINGS = {"false", "0", "no", "off"}


def is_identifier(name: str) -> bool:
    """Whether name can be used unquoted-safe as a table or column name."""
    return bool(_IDENTIFIER.match(name))


def quote_identifier(name: str) -> str:
    """Quote a validated identifier for use in SQL text."""
    if not is_identifier(name):
        raise ValueError(f"Invalid SQL identifier '{name}'")
    return f'"{name}"'


def canonical_decimal(value: Decimal) -> str:
    """Canonical text form of a decimal, so equal values store equal text.

    Trailing zeros are stripped under a context wide enough for every digit
    of the value, so no significant digit is ever rounded away.
    """
    digits = len(value.as_tuple().digits)
    text = format(value.normalize(Context(prec=max(digits, 1))), "f")
    return "0" if text in ("-0", "0") else text


class FieldKind(Enum):
    """Supported semantic field types."""

    INTEGER = "integer"
    TEXT = "text"
    TIMESTAMP = "timestamp"
    BOOLEAN = "boolean"
    DECIMAL = "decimal"

    @classmethod
    def from_str(cls, value: str) -> FieldKind:
        """Convert string representation to FieldKind.

        Raises:
            ValueError: If value is not a valid field kind
        """
        for kind in cls:
            if kind.value == value:
                return kind
        valid = [k.value for k in cls]
        raise ValueError(f"Invalid field kind '{value}'. Valid kinds: {valid}")

    @property
    def sql_type(self) -> str:
        """Declared SQLite column type."""
        if self in (FieldKind.TEXT, FieldKind.DECIMAL):
            return "TEXT"
        return "INTEGER"


@dataclass(frozen=True)
class FieldDef:
    """Definition of a single field of an entity.

    Attributes:
        name: Column name
        kind: Semantic type of the field
        nullable: Whether NULL is an acceptable value
        primary_key: Whether this field is the entity's primary key
        auto: Whether the store assigns the key (integer primary keys only)
        default: Value applied on create when the payload omits the field
        indexed: Whether to create an index on this field
        description: Human-readable description

    Invariants:
        - A primary key is never nullable
        - auto implies primary_key and kind INTEGER
        - default, if set, is a valid value for kind
    """

    name: str
    kind: FieldKind
    nullable: bool = False
    primary_key: bool = False
    auto: bool = False
    default: Any = None
    indexed: bool = False
    description: str = ""

    def __post_init__(self) -> None:
        """Validate field definition."""
        if not self.name:
            raise ValueError("Field name cannot be empty")
        if not is_identifier(self.name):
            raise ValueError(f"Field name '{self.name}' is not a valid identifier")
        if self.primary_key and self.nullable:
            raise ValueError(f"Primary key field '{self.name}' cannot be nullable")
        if self.auto and not self.primary_key:
            raise ValueError(f"auto is only allowed on the primary key, not '{self.name}'")
        if self.auto and self.kind != FieldKind.INTEGER:
            raise ValueError(f"Auto-generated key '{self.name}' must be an integer")
        if self.default is not None:
            try:
                object.__setattr__(self, "default", self.coerce(self.default))
            except ValidationError as e:
                raise ValueError(f"Invalid default for field '{self.name}': {e.message}") from e

    def coerce(self, value: Any) -> Any:
        """Convert an untyped input value to this field's Python type.

        Strings are accepted for every kind so query-string input can be
        used directly.

        Args:
            value: Raw value

        Returns:
            Typed value (int, str, bool, Decimal) or None

        Raises:
            ValidationError: If the value cannot represent this field
        """
        if value is None:
            if not self.nullable:
                raise ValidationError(f"Field '{self.name}' cannot be null", field_name=self.name)
            return None

        kind = self.kind
        if kind == FieldKind.TEXT:
            if isinstance(value, str):
                return value
        elif kind == FieldKind.INTEGER:
            result = _to_int(value)
            if result is not None:
                return result
        elif kind == FieldKind.BOOLEAN:
            if isinstance(value, bool):
                return value
            if isinstance(value, int) and value in (0, 1):
                return bool(value)
            if isinstance(value, str):
                lowered = value.strip().lower()
                if lowered in _TRUE_STRINGS:
                    return True
                if lowered in _FALSE_STRINGS:
                    return False
        elif kind == FieldKind.DECIMAL:
            result = _to_decimal(value)
            if result is not None:
                return result
        elif kind == FieldKind.TIMESTAMP:
            result = _to_timestamp_ms(value)
            if result is not None:
                return result

        raise ValidationError(
            f"Field '{self.name}' expects {kind.value}, got {value!r}",
            field_name=self.name,
        )

    def to_storage(self, value: Any) -> Any:
        """Encode a typed value as the bound SQLite parameter."""
        if value is None:
            return None
        if self.kind == FieldKind.BOOLEAN:
            return 1 if value else 0
        if self.kind == FieldKind.DECIMAL:
            return canonical_decimal(value)
        return value

    def from_storage(self, raw: Any) -> Any:
        """Decode a SQLite column value into this field's Python type."""
        if raw is None:
            return None
        if self.kind == FieldKind.BOOLEAN:
            return bool(raw)
        if self.kind == FieldKind.DECIMAL:
            return Decimal(str(raw))
        if self.kind in (FieldKind.INTEGER, FieldKind.TIMESTAMP):
            return int(raw)
        return raw

    def to_json(self, value: Any) -> Any:
        """JSON-safe representation of a typed value (decimals as text)."""
        if value is None:
            return None
        if self.kind == FieldKind.DECIMAL:
            return canonical_decimal(value)
        return value

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for serialization."""
        result: dict[str, Any] = {
            "name": self.name,
            "kind": self.kind.value,
        }
        if self.nullable:
            result["nullable"] = True
        if self.primary_key:
            result["primary_key"] = True
        if self.auto:
            result["auto"] = True
        if self.default is not None:
            result["default"] = self.to_json(self.default)
        if self.indexed:
            result["indexed"] = True
        if self.description:
            result["description"] = self.description
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FieldDef:
        """Create from dictionary representation."""
        return cls(
            name=data["name"],
            kind=FieldKind.from_str(data["kind"]),
            nullable=data.get("nullable", False),
            primary_key=data.get("primary_key", False),
            auto=data.get("auto", False),
            default=data.get("default"),
            indexed=data.get("indexed", False),
            description=data.get("description", ""),
        )


def _to_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return int(value)
        return None
    if isinstance(value, Decimal):
        if value.is_finite() and value == value.to_integral_value():
            return int(value)
        return None
    if isinstance(value, str):
        text = value.strip()
        if re.fullmatch(r"[+-]?\d+", text):
            return int(text)
    return None


def _to_decimal(value: Any) -> Decimal | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, (float, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            return None
    else:
        return None
    if not result.is_finite():
        return None
    return result


def _to_timestamp_ms(value: Any) -> int | None:
    # Signed milliseconds: instants before 1970 are negative in every input form.
    if isinstance(value, datetime):
        moment = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return int(moment.timestamp() * 1000)
    if isinstance(value, str):
        text = value.strip()
        if re.fullmatch(r"[+-]?\d+", text):
            return int(text)
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
        return _to_timestamp_ms(parsed)
    return _to_int(value)


def field(
    name: str,
    kind: str | FieldKind,
    *,
    nullable: bool = False,
    primary_key: bool = False,
    auto: bool = False,
    default: Any = None,
    indexed: bool = False,
    description: str = "",
) -> FieldDef:
    """Convenience function to create a FieldDef.

    Example:
        >>> id_field = field("id", "integer", primary_key=True, auto=True)
        >>> notes = field("notes", "text", nullable=True)
    """
    if isinstance(kind, str):
        kind = FieldKind.from_str(kind)
    return FieldDef(
        name=name,
        kind=kind,
        nullable=nullable,
        primary_key=primary_key,
        auto=auto,
        default=default,
        indexed=indexed,
        description=description,
    )


@dataclass(frozen=True)
class EntityDescriptor:
    """Definition of a persisted record type.

    Attributes:
        name: Entity name used by callers and in the event log
        fields: Ordered field definitions (column order)
        table: Table name (defaults to name)
        default_order: Default ordering, "-field" for descending
        version_field: Integer field used for optimistic concurrency
        read_only: Whether the CRUD engine rejects writes
        description: Human-readable description

    Invariants:
        - Exactly one field is the primary key
        - Field names are unique
        - default_order and version_field reference declared fields
    """

    name: str
    fields: tuple[FieldDef, ...] = dataclass_field(default_factory=tuple)
    table: str | None = None
    default_order: tuple[str, ...] = dataclass_field(default_factory=tuple)
    version_field: str | None = None
    read_only: bool = False
    description: str = ""

    def __post_init__(self) -> None:
        """Validate entity descriptor."""
        if not self.name:
            raise ValueError("Entity name cannot be empty")
        if not is_identifier(self.name):
            raise ValueError(f"Entity name '{self.name}' is not a valid identifier")
        if self.table is not None and not is_identifier(self.table):
            raise ValueError(f"Table name '{self.table}' is not a valid identifier")

        names = [f.name for f in self.fields]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate field name in entity '{self.name}'")

        keys = [f for f in self.fields if f.primary_key]
        if len(keys) != 1:
            raise ValueError(
                f"Entity '{self.name}' must declare exactly one primary key, found {len(keys)}"
            )

        for item in self.default_order:
            if item.lstrip("-") not in names:
                raise ValueError(
                    f"default_order of '{self.name}' references unknown field '{item}'"
                )

        if self.version_field is not None:
            version = self.get_field(self.version_field)
            if version is None:
                raise ValueError(
                    f"version_field '{self.version_field}' is not a field of '{self.name}'"
                )
            if version.kind != FieldKind.INTEGER or version.primary_key:
                raise ValueError(
                    f"version_field '{self.version_field}' must be a non-key integer field"
                )

    @property
    def table_name(self) -> str:
        """Name of the backing table."""
        return self.table or self.name

    @property
    def primary_key(self) -> FieldDef:
        """The primary-key field."""
        return next(f for f in self.fields if f.primary_key)

    def get_field(self, name: str) -> FieldDef | None:
        """Get a field by name, or None if not declared."""
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def get_field_names(self) -> list[str]:
        """Get list of all field names in column order."""
        return [f.name for f in self.fields]

    def get_required_fields(self) -> list[FieldDef]:
        """Fields a create payload must supply."""
        return [
            f for f in self.fields
            if not f.nullable and not f.auto and f.default is None and f.name != self.version_field
        ]

    def coerce_key(self, key: Any) -> Any:
        """Convert an untyped primary-key value to its typed form."""
        if key is None:
            raise ValidationError("Primary key value is required", field_name=self.primary_key.name)
        return self.primary_key.coerce(key)

    def key_text(self, key: Any) -> str:
        """Canonical text of a primary-key value, as stored in the event log.

        Equal keys always yield equal text, so "1.50" and Decimal("1.5")
        address the same history.
        """
        pk = self.primary_key
        return str(pk.to_storage(self.coerce_key(key)))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        result: dict[str, Any] = {
            "name": self.name,
            "fields": [f.to_dict() for f in self.fields],
        }
        if self.table:
            result["table"] = self.table
        if self.default_order:
            result["default_order"] = list(self.default_order)
        if self.version_field:
            result["version_field"] = self.version_field
        if self.read_only:
            result["read_only"] = True
        if self.description:
            result["description"] = self.description
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EntityDescriptor:
        """Create from dictionary representation."""
        fields = tuple(FieldDef.from_dict(f) for f in data.get("fields", []))
        return cls(
            name=data["name"],
            fields=fields,
            table=data.get("table"),
            default_order=tuple(data.get("default_order", ())),
            version_field=data.get("version_field"),
            read_only=data.get("read_only", False),
            description=data.get("description", ""),
        )


@dataclass
class Record:
    """One persisted row decoded through its descriptor.

    Attributes:
        entity: Entity name
        key: Primary-key value
        values: Typed field values in column order
    """

    entity: str
    key: Any
    values: dict[str, Any]

    def __getitem__(self, name: str) -> Any:
        return self.values[name]

    def to_dict(self, descriptor: EntityDescriptor) -> dict[str, Any]:
        """JSON-safe snapshot of the record's values."""
        return {
            name: descriptor.get_field(name).to_json(value)  # type: ignore[union-attr]
            for name, value in self.values.items()
        }
