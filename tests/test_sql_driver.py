import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from dump2parquet.pipeline.errors import StatementParseError, UnsupportedTypeError
from dump2parquet.pipeline.model import (
    ColumnDef,
    ColumnType,
    ColumnValue,
    CreateTable,
    InsertRows,
    Schema,
    StatementKind,
    ValueKind,
    values_of,
)
from dump2parquet.pipeline.reassembler import iter_statements
from dump2parquet.pipeline.sql_driver import StatementParser


USER_DDL = """CREATE TABLE `user` (
  `id` bigint NOT NULL,
  `shortName` varchar(255) CHARACTER SET utf8mb3 COLLATE utf8mb3_bin NOT NULL,
  `avatarUuid` varchar(36) CHARACTER SET utf8mb3 COLLATE utf8mb3_bin DEFAULT NULL,
  `registrationDate` timestamp NOT NULL DEFAULT CURRENT_TIMESTAMP,
  `premiumExpirationDate` timestamp NULL DEFAULT NULL,
  `excluded` tinyint(1) NOT NULL DEFAULT '0',
  `company_lid` bigint DEFAULT NULL,
  PRIMARY KEY (`lid`),
  UNIQUE KEY `email_index` (`email`),
  UNIQUE KEY `tel_key` (`tel`),
  KEY `authKey_index` (`authKey`),
  KEY `name_index` (`shortName`),
  KEY `registrationDate_index` (`registrationDate`),
  KEY `country_index` (`country`),
  KEY `company_lid` (`company_lid`),
  KEY `premiumExpirationDate` (`premiumExpirationDate`),
  CONSTRAINT `user_ibfk_1` FOREIGN KEY (`company_lid`) REFERENCES `company` (`lid`)
) ENGINE=InnoDB DEFAULT CHARSET=utf8mb3 COLLATE=utf8mb3_bin;"""


@pytest.fixture()
def parser():
    return StatementParser()


def test_create_table_schema(parser):
    event = parser.parse(USER_DDL)
    assert isinstance(event, CreateTable)
    assert event.kind is StatementKind.CREATE_TABLE
    assert event.name == "user"
    assert list(event.schema) == [
        ColumnDef("id", False, ColumnType.INTEGER),
        ColumnDef("shortName", False, ColumnType.STRING),
        ColumnDef("avatarUuid", True, ColumnType.STRING),
        ColumnDef("registrationDate", False, ColumnType.TIMESTAMP),
        ColumnDef("premiumExpirationDate", True, ColumnType.TIMESTAMP),
        ColumnDef("excluded", False, ColumnType.INTEGER),
        ColumnDef("company_lid", True, ColumnType.INTEGER),
    ]


def test_type_families(parser):
    event = parser.parse(
        "CREATE TABLE `t` (`a` text, `b` longtext, `c` mediumtext, `d` char(3), "
        "`e` enum('x','y'), `f` decimal(10,2), `g` int unsigned, `h` double, "
        "`i` float, `j` date, `k` datetime, `l` time, `m` boolean, `n` smallint);"
    )
    types = {c.name: c.column_type for c in event.schema}
    assert types == {
        "a": ColumnType.STRING,
        "b": ColumnType.STRING,
        "c": ColumnType.STRING,
        "d": ColumnType.STRING,
        "e": ColumnType.STRING,
        "f": ColumnType.INTEGER,
        "g": ColumnType.INTEGER,
        "h": ColumnType.FLOAT,
        "i": ColumnType.FLOAT,
        "j": ColumnType.TIMESTAMP,
        "k": ColumnType.TIMESTAMP,
        "l": ColumnType.TIMESTAMP,
        "m": ColumnType.BOOLEAN,
        "n": ColumnType.INTEGER,
    }


def test_primary_key_column_option_is_not_null(parser):
    event = parser.parse("CREATE TABLE `t` (`id` int PRIMARY KEY, `v` int);")
    assert [c.nullable for c in event.schema] == [False, True]


def test_unsupported_type_is_fatal(parser):
    with pytest.raises(UnsupportedTypeError):
        parser.parse("CREATE TABLE `t` (`doc` json);")


def test_insert_with_negative_integer(parser):
    event = parser.parse("INSERT INTO `t` VALUES (1,'foo',NULL,'2012-01-02 12:55:22',-123);")
    assert isinstance(event, InsertRows)
    assert event.kind is StatementKind.INSERT_ROWS
    assert event.name == "t"
    assert len(event) == 1
    assert event.rows[0] == (
        ColumnValue.integer(1),
        ColumnValue.string("foo"),
        ColumnValue.NULL,
        ColumnValue.string("2012-01-02 12:55:22"),
        ColumnValue.integer(-123),
    )


def test_insert_multiple_tuples_and_literal_kinds(parser):
    event = parser.parse(
        "INSERT INTO `t` (`a`, `b`, `c`) VALUES (1.5,-2.25,TRUE),(7,'x',FALSE),(1e3,'',NULL);"
    )
    assert event.name == "t"
    assert [values_of(r) for r in event.rows] == [
        [1.5, -2.25, True],
        [7, "x", False],
        [1000.0, "", None],
    ]
    assert [v.kind for v in event.rows[0]] == [ValueKind.FLOAT, ValueKind.FLOAT, ValueKind.BOOLEAN]


def test_insert_without_values_is_rejected(parser):
    with pytest.raises(StatementParseError) as ei:
        parser.parse("INSERT INTO `t` SELECT * FROM `u`;")
    assert ei.value.code == "NO_VALUES"


def test_unsupported_value_expression(parser):
    with pytest.raises(StatementParseError):
        parser.parse("INSERT INTO `t` VALUES (NOW());")


def test_integer_out_of_range(parser):
    with pytest.raises(StatementParseError):
        parser.parse("INSERT INTO `t` VALUES (99999999999999999999);")


def test_garbage_is_a_parse_error_with_excerpt(parser):
    with pytest.raises(StatementParseError) as ei:
        parser.parse("INSERT INTO `t` VALUES ((;")
    assert "statement: INSERT INTO" in str(ei.value)


@pytest.mark.parametrize(
    "statement",
    [
        "DROP TABLE IF EXISTS `user`;",
        "SET NAMES utf8mb4;",
        "USE `db`;",
        "LOCK TABLES `user` WRITE;",
        "UNLOCK TABLES;",
        ";",
    ],
)
def test_other_statements_are_noops(parser, statement):
    assert parser.parse(statement).kind is StatementKind.NO_OP


def test_canonical_sql_round_trip(parser):
    schema = Schema(
        [
            ColumnDef("id", False, ColumnType.INTEGER),
            ColumnDef("Name", True, ColumnType.STRING),
            ColumnDef("score", True, ColumnType.FLOAT),
            ColumnDef("seen_at", False, ColumnType.TIMESTAMP),
            ColumnDef("flag", True, ColumnType.BOOLEAN),
        ]
    )
    event = parser.parse(schema.to_sql("scores"))
    assert event.name == "scores"
    assert event.schema == schema


def test_reassembled_definition_gives_the_same_schema(parser):
    statement = next(iter_statements(USER_DDL.splitlines()))
    assert parser.parse(statement).schema == parser.parse(USER_DDL).schema


def test_statement_kept_as_opaque_command_is_rejected(parser):
    with pytest.raises(StatementParseError) as ei:
        parser.parse("REPLACE INTO `t` VALUES (1),(2),(3);")
    assert ei.value.code == "UNSUPPORTED_STATEMENT"
    assert "REPLACE INTO `t`" in str(ei.value)
