# src/dump2parquet/pipeline/model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple, Union

from .errors import ValueShapeError

INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1


# ==============================================================================
# Schema
# ==============================================================================


class ColumnType(str, Enum):
    STRING = "string"        # VARCHAR, TEXT, LONGTEXT, MEDIUMTEXT, CHAR, ENUM
    INTEGER = "integer"      # all integer widths, NUMERIC/DECIMAL (precision dropped)
    FLOAT = "float"
    TIMESTAMP = "timestamp"  # DATE, TIME, DATETIME, TIMESTAMP
    BOOLEAN = "boolean"


# Canonical MySQL spelling used by Schema.to_sql(); each maps back to its own family.
_CANONICAL_SQL_TYPE = {
    ColumnType.STRING: "VARCHAR(255)",
    ColumnType.INTEGER: "BIGINT",
    ColumnType.FLOAT: "DOUBLE",
    ColumnType.TIMESTAMP: "DATETIME",
    ColumnType.BOOLEAN: "BOOLEAN",
}


@dataclass(frozen=True)
class ColumnDef:
    name: str
    nullable: bool = True
    column_type: ColumnType = ColumnType.STRING

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("column name must be non-empty")


@dataclass(frozen=True)
class Schema:
    """Ordered column definitions for one table. Row tuples are positional."""
    columns: Tuple[ColumnDef, ...] = ()

    def __post_init__(self) -> None:
        # accept any iterable but store an immutable tuple
        object.__setattr__(self, "columns", tuple(self.columns))

    def __len__(self) -> int:
        return len(self.columns)

    def __iter__(self):
        return iter(self.columns)

    def __getitem__(self, index: int) -> ColumnDef:
        return self.columns[index]

    def names(self) -> List[str]:
        return [c.name for c in self.columns]

    def to_sql(self, table: str) -> str:
        """Canonical CREATE TABLE text; parsing it back yields an equal Schema."""
        parts = []
        for c in self.columns:
            null_sql = "NULL" if c.nullable else "NOT NULL"
            parts.append(f"{_quote_ident(c.name)} {_CANONICAL_SQL_TYPE[c.column_type]} {null_sql}")
        return f"CREATE TABLE {_quote_ident(table)} ({', '.join(parts)});"


def _quote_ident(name: str) -> str:
    return "`" + name.replace("`", "``") + "`"


# ==============================================================================
# Values
# ==============================================================================


class ValueKind(str, Enum):
    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    NULL = "null"


@dataclass(frozen=True)
class ColumnValue:
    """
    Tagged value. Dialect literal forms are collapsed into these five tags;
    consumers dispatch on `kind`, never on the Python type of `value`.
    """
    kind: ValueKind
    value: Union[str, int, float, bool, None] = None

    @classmethod
    def string(cls, text: str) -> "ColumnValue":
        return cls(ValueKind.STRING, text)

    @classmethod
    def integer(cls, number: int) -> "ColumnValue":
        if not INT64_MIN <= number <= INT64_MAX:
            raise ValueShapeError(f"integer {number} does not fit in 64 bits")
        return cls(ValueKind.INTEGER, number)

    @classmethod
    def float_(cls, number: float) -> "ColumnValue":
        return cls(ValueKind.FLOAT, float(number))

    @classmethod
    def boolean(cls, flag: bool) -> "ColumnValue":
        return cls(ValueKind.BOOLEAN, bool(flag))

    def __repr__(self) -> str:
        if self.kind is ValueKind.NULL:
            return "NULL"
        return f"{self.kind.name}({self.value!r})"


ColumnValue.NULL = ColumnValue(ValueKind.NULL)  # type: ignore[attr-defined]

Row = Tuple[ColumnValue, ...]


# ==============================================================================
# Events (parser → writer)
# ==============================================================================


class StatementKind(str, Enum):
    CREATE_TABLE = "create_table"
    INSERT_ROWS = "insert_rows"
    NO_OP = "no_op"


@dataclass(frozen=True)
class CreateTable:
    name: str
    schema: Schema
    kind: StatementKind = field(default=StatementKind.CREATE_TABLE, init=False)


@dataclass(frozen=True)
class InsertRows:
    """Rows from one INSERT statement; they form one record batch."""
    name: str
    rows: Tuple[Row, ...]
    kind: StatementKind = field(default=StatementKind.INSERT_ROWS, init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "rows", tuple(tuple(r) for r in self.rows))

    def __len__(self) -> int:
        return len(self.rows)


@dataclass(frozen=True)
class NoOp:
    kind: StatementKind = field(default=StatementKind.NO_OP, init=False)


Event = Union[CreateTable, InsertRows, NoOp]


def values_of(row: Row) -> List[Optional[Union[str, int, float, bool]]]:
    """Plain Python payloads of a row, NULL → None (handy in tests and debugging)."""
    return [v.value for v in row]
