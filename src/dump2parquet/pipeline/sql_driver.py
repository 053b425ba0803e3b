# src/dump2parquet/pipeline/sql_driver.py
from __future__ import annotations

import logging
from typing import List

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError

from .errors import StatementParseError, UnsupportedTypeError, ValueShapeError
from .model import (
    ColumnDef,
    ColumnType,
    ColumnValue,
    CreateTable,
    Event,
    InsertRows,
    NoOp,
    Row,
    Schema,
)

logger = logging.getLogger(__name__)


# ==============================================================================
# Declared type families → logical column types
# ==============================================================================
# Keys are sqlglot DataType.Type member values; release-specific names are listed too.

_STRING_TYPES = frozenset(
    {
        "VARCHAR", "NVARCHAR", "CHAR", "NCHAR", "TEXT", "TINYTEXT", "MEDIUMTEXT",
        "LONGTEXT", "ENUM", "ENUM8", "ENUM16",
    }
)
_INTEGER_TYPES = frozenset(
    {
        "TINYINT", "UTINYINT", "SMALLINT", "USMALLINT", "MEDIUMINT", "UMEDIUMINT",
        "INT", "UINT", "BIGINT", "UBIGINT",
        # NUMERIC / DECIMAL families lose their fractional digits
        "DECIMAL", "UDECIMAL", "BIGDECIMAL", "DECIMAL32", "DECIMAL64", "DECIMAL128",
        "DECIMAL256", "SMALLMONEY", "MONEY",
    }
)
_FLOAT_TYPES = frozenset({"FLOAT", "DOUBLE", "UFLOAT", "UDOUBLE"})
_TIMESTAMP_TYPES = frozenset(
    {
        "DATE", "DATE32", "TIME", "TIMETZ", "DATETIME", "DATETIME2", "DATETIME64",
        "SMALLDATETIME", "TIMESTAMP", "TIMESTAMPTZ", "TIMESTAMPLTZ", "TIMESTAMPNTZ",
        "TIMESTAMP_S", "TIMESTAMP_MS", "TIMESTAMP_NS",
    }
)
_BOOLEAN_TYPES = frozenset({"BOOLEAN"})

# Names the grammar does not know and reports as user-defined types.
_CUSTOM_STRING_TYPES = frozenset({"longtext", "mediumtext"})

TYPE_FAMILIES = {
    ColumnType.STRING: _STRING_TYPES,
    ColumnType.INTEGER: _INTEGER_TYPES,
    ColumnType.FLOAT: _FLOAT_TYPES,
    ColumnType.TIMESTAMP: _TIMESTAMP_TYPES,
    ColumnType.BOOLEAN: _BOOLEAN_TYPES,
}


def logical_type(data_type: exp.DataType, column: str = "") -> ColumnType:
    """Map a declared data type onto the closed set of logical column types."""
    type_name = data_type.this.value if isinstance(data_type.this, exp.DataType.Type) else str(data_type.this)
    for column_type, names in TYPE_FAMILIES.items():
        if type_name in names:
            return column_type
    if type_name == "USERDEFINED":
        custom = str(data_type.args.get("kind") or "").lower()
        if custom in _CUSTOM_STRING_TYPES:
            return ColumnType.STRING
    where = f" for column `{column}`" if column else ""
    raise UnsupportedTypeError(f"Unsupported data type {data_type.sql(dialect='mysql')}{where}")


def column_nullable(column: exp.ColumnDef) -> bool:
    """
    The first NULL / NOT NULL / PRIMARY KEY option decides; nullable otherwise.
    """
    for constraint in column.args.get("constraints") or []:
        kind = constraint.args.get("kind") if isinstance(constraint, exp.ColumnConstraint) else constraint
        if isinstance(kind, exp.NotNullColumnConstraint):
            return bool(kind.args.get("allow_null"))
        if isinstance(kind, exp.PrimaryKeyColumnConstraint):
            return False
    return True


# ==============================================================================
# Parser
# ==============================================================================

# Session statements mysqldump wraps around data; the mysql grammar does not
# cover all of them (LOCK TABLES ... WRITE) and none of them carry data.
SESSION_COMMANDS = frozenset({"LOCK", "UNLOCK", "SET"})


class StatementParser:
    """
    One complete statement in, exactly one event out.

    Only CREATE TABLE and INSERT ... VALUES carry meaning; every other statement
    the grammar fully parses becomes a NoOp. Statements it can only keep as an
    opaque command are rejected, since they may carry rows. Column counts and value tags are not
    checked here: the parser never sees the current schema.
    """

    def __init__(self, dialect: str = "mysql") -> None:
        self.dialect = dialect

    @property
    def version(self) -> str:
        return getattr(sqlglot, "__version__", "unknown")

    def parse(self, statement: str) -> Event:
        words = statement.split(None, 1)
        if words and words[0].rstrip(";").upper() in SESSION_COMMANDS:
            return NoOp()
        try:
            expressions = [e for e in sqlglot.parse(statement, read=self.dialect) if e is not None]
        except SqlglotError as e:
            raise StatementParseError(f"Unable to parse statement: {_first_line(e)}", statement=statement) from e

        if not expressions:
            return NoOp()
        if len(expressions) > 1:
            raise StatementParseError(
                f"Expected one statement, found {len(expressions)}", statement=statement, code="MULTIPLE_STATEMENTS"
            )

        stmt = expressions[0]
        if isinstance(stmt, exp.Create) and str(stmt.args.get("kind") or "").upper() == "TABLE":
            return self._create_table(stmt, statement)
        if isinstance(stmt, exp.Insert):
            return self._insert_rows(stmt, statement)
        if isinstance(stmt, exp.Command):
            # opaque fallback of the grammar: REPLACE INTO, LOAD DATA, ...
            raise StatementParseError(
                f"Unsupported statement {str(stmt.this).upper()}", statement=statement, code="UNSUPPORTED_STATEMENT"
            )
        return NoOp()

    # ---- CREATE TABLE ---------------------------------------------------------

    def _create_table(self, stmt: exp.Create, statement: str) -> CreateTable:
        target = stmt.this
        if not isinstance(target, exp.Schema):
            raise StatementParseError("CREATE TABLE without column definitions", statement=statement)
        table = target.this
        name = table.name if isinstance(table, exp.Table) else ""
        if not name:
            raise StatementParseError("Unable to get table name from CREATE TABLE statement", statement=statement)

        columns: List[ColumnDef] = []
        for column in target.expressions:
            if not isinstance(column, exp.ColumnDef):
                # PRIMARY KEY (...), KEY ..., CONSTRAINT ... FOREIGN KEY ...
                continue
            data_type = column.args.get("kind")
            if not isinstance(data_type, exp.DataType):
                raise UnsupportedTypeError(f"Column `{column.name}` of `{name}` has no data type")
            columns.append(
                ColumnDef(
                    name=column.name,
                    nullable=column_nullable(column),
                    column_type=logical_type(data_type, column.name),
                )
            )
        schema = Schema(columns)
        logger.debug("CREATE TABLE `%s`: %s", name, ", ".join(f"{c.name}:{c.column_type.value}" for c in schema))
        return CreateTable(name, schema)

    # ---- INSERT INTO ----------------------------------------------------------

    def _insert_rows(self, stmt: exp.Insert, statement: str) -> InsertRows:
        target = stmt.this
        if isinstance(target, exp.Schema):  # INSERT INTO t (a, b) VALUES ...
            target = target.this
        name = target.name if isinstance(target, exp.Table) else ""
        if not name:
            raise StatementParseError("Unable to get table name from INSERT INTO statement", statement=statement)

        source = stmt.expression
        if not isinstance(source, exp.Values):
            raise StatementParseError(
                "We are expecting a INSERT INTO ... VALUES (...) kind of statement", statement=statement, code="NO_VALUES"
            )

        rows: List[Row] = []
        for tuple_expr in source.expressions:
            items = tuple_expr.expressions if isinstance(tuple_expr, exp.Tuple) else [tuple_expr]
            rows.append(tuple(self._value(item, statement) for item in items))
        return InsertRows(name, tuple(rows))

    def _value(self, node: exp.Expression, statement: str) -> ColumnValue:
        if isinstance(node, exp.Neg):
            inner = node.this
            if isinstance(inner, exp.Literal) and not inner.is_string:
                return _number("-" + inner.this, statement)
            raise StatementParseError(f"Unknown expr with a minus operator {node.sql(dialect=self.dialect)}", statement=statement)
        if isinstance(node, exp.Introducer):  # _binary '...', _utf8mb4 '...'
            return self._value(node.expression, statement)
        if isinstance(node, exp.Null):
            return ColumnValue.NULL
        if isinstance(node, exp.Boolean):
            return ColumnValue.boolean(bool(node.this))
        if isinstance(node, exp.Literal):
            if node.is_string:
                return ColumnValue.string(node.this)
            return _number(node.this, statement)
        raise StatementParseError(f"Unsupported value {node.sql(dialect=self.dialect)}", statement=statement)


def _number(text: str, statement: str) -> ColumnValue:
    """Decimal point or exponent → FLOAT, otherwise INTEGER (64-bit)."""
    try:
        if any(ch in text for ch in ".eE"):
            return ColumnValue.float_(float(text))
        return ColumnValue.integer(int(text))
    except ValueError as e:
        raise StatementParseError(f"Invalid numeric literal {text!r}: {e}", statement=statement) from e
    except ValueShapeError as e:
        raise StatementParseError(f"Numeric literal {text!r} out of range", statement=statement) from e


def _first_line(error: Exception) -> str:
    text = str(error).strip()
    return text.splitlines()[0] if text else type(error).__name__
