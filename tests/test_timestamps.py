import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from dump2parquet.pipeline.errors import TimestampParseError
from dump2parquet.pipeline.timestamps import UTC, parse_timestamp, resolve_timezone, split_fields


def test_parse_utc():
    assert parse_timestamp("2012-01-02 12:55:22") == 1325508922
    assert parse_timestamp("1970-01-01 00:00:00") == 0
    assert parse_timestamp("1969-12-31 23:59:59") == -1


def test_trailing_fraction_is_ignored():
    assert parse_timestamp("2012-01-02 12:55:22.123456") == 1325508922


def test_split_fields():
    assert split_fields("2020-02-29 23:59:58") == (2020, 2, 29, 23, 59, 58)


@pytest.mark.parametrize(
    "text",
    [
        "0000-00-00 00:00:00",
        "2021-02-29 00:00:00",
        "2012-13-01 00:00:00",
        "2012-01-02",
        "2012-01-02 12:5a:22",
        "",
    ],
)
def test_invalid_inputs_raise(text):
    with pytest.raises(TimestampParseError):
        parse_timestamp(text)


def test_resolve_timezone():
    assert resolve_timezone("UTC") is UTC
    assert resolve_timezone("utc") is UTC
    assert resolve_timezone("") is UTC
    with pytest.raises(ValueError):
        resolve_timezone("Not/AZone")


def test_named_zone_offsets():
    paris = resolve_timezone("Europe/Paris")
    # winter, UTC+1
    assert parse_timestamp("2012-01-02 13:55:22", paris) == 1325508922


def test_dst_gap_is_rejected():
    paris = resolve_timezone("Europe/Paris")
    with pytest.raises(TimestampParseError):
        parse_timestamp("2021-03-28 02:30:00", paris)


def test_dst_overlap_takes_earlier_instant():
    paris = resolve_timezone("Europe/Paris")
    # 02:30 happens twice on 2021-10-31; first occurrence is still UTC+2
    assert parse_timestamp("2021-10-31 02:30:00", paris) == parse_timestamp("2021-10-31 00:30:00")
