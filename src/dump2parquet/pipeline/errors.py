# src/dump2parquet/pipeline/errors.py
from __future__ import annotations

from typing import Optional


_EXCERPT_CHARS = 160


def excerpt(text: str, limit: int = _EXCERPT_CHARS) -> str:
    """Single-line, bounded view of a statement for diagnostics."""
    flat = " ".join(text.split())
    if len(flat) <= limit:
        return flat
    return flat[: limit - 3] + "..."


class DumpError(Exception):
    """
    Fatal pipeline error. `code` is a stable machine-readable tag, `detail`
    carries context such as the offending statement or column.
    """

    code = "DUMP_ERROR"

    def __init__(self, message: str, *, code: Optional[str] = None, detail: Optional[str] = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code
        self.message = message
        self.detail = detail or ""

    def __str__(self) -> str:
        if self.detail:
            return f"{self.message} | {self.detail}"
        return self.message


class InputError(DumpError):
    code = "INPUT_ERROR"


class StatementParseError(DumpError):
    """Statement the parser cannot understand or whose shape is outside the accepted subset."""

    code = "PARSE_FAILED"

    def __init__(self, message: str, *, statement: str = "", code: Optional[str] = None) -> None:
        super().__init__(message, code=code, detail=f"statement: {excerpt(statement)}" if statement else None)
        self.statement = statement


class UnsupportedTypeError(DumpError):
    """Declared column type outside the recognized families."""

    code = "UNSUPPORTED_TYPE"


class ValueShapeError(DumpError):
    code = "VALUE_SHAPE"


class TimestampParseError(DumpError):
    code = "TIMESTAMP_PARSE"


class OutputError(DumpError):
    code = "OUTPUT_ERROR"
