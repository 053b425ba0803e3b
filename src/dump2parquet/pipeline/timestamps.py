# src/dump2parquet/pipeline/timestamps.py
"""
Fixed-width parsing of dump timestamps (`YYYY-MM-DD HH:MM:SS`).

Fields are sliced at fixed offsets instead of going through strptime: it is
faster on large inserts and rejects anything that does not line up exactly.
Separators are not inspected, only the digit fields.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone, tzinfo
from typing import Tuple

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import TimestampParseError

UTC = timezone.utc
_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

#                 YYYY    MM      DD       hh        mm        ss
_FIELD_SLICES = ((0, 4), (5, 7), (8, 10), (11, 13), (14, 16), (17, 19))
_MIN_LENGTH = 19


def resolve_timezone(name: str) -> tzinfo:
    """'UTC' (any case) or an IANA zone name."""
    if not name or name.upper() == "UTC":
        return UTC
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"unknown time zone {name!r}") from e


def split_fields(text: str) -> Tuple[int, int, int, int, int, int]:
    if len(text) < _MIN_LENGTH:
        raise TimestampParseError(f"timestamp {text!r} is shorter than YYYY-MM-DD HH:MM:SS")
    fields = []
    for start, end in _FIELD_SLICES:
        chunk = text[start:end]
        if not chunk.isdigit() or not chunk.isascii():
            raise TimestampParseError(f"timestamp {text!r} has a non-numeric field {chunk!r} at [{start}:{end}]")
        fields.append(int(chunk))
    return tuple(fields)  # type: ignore[return-value]


def parse_timestamp(text: str, tz: tzinfo = UTC) -> int:
    """
    Seconds since the Unix epoch for a `YYYY-MM-DD HH:MM:SS` wall-clock time in `tz`.

    Ambiguous wall times (DST fall-back) resolve to the earlier instant.
    Wall times that do not exist in `tz` (DST spring-forward gap) and invalid
    civil dates such as '0000-00-00 00:00:00' raise TimestampParseError.
    """
    year, month, day, hour, minute, second = split_fields(text)
    try:
        naive = datetime(year, month, day, hour, minute, second)
    except ValueError as e:
        raise TimestampParseError(f"timestamp {text!r} is not a valid civil date-time: {e}") from e

    if tz is UTC:
        local = naive.replace(tzinfo=UTC)
    else:
        local = naive.replace(tzinfo=tz, fold=0)
        # A wall time inside a DST gap does not survive the UTC round trip.
        round_trip = local.astimezone(UTC).astimezone(tz).replace(tzinfo=None)
        if round_trip != naive:
            raise TimestampParseError(f"timestamp {text!r} does not exist in time zone {tz}")

    return (local - _EPOCH) // timedelta(seconds=1)
