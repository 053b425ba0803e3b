# src/dump2parquet/pipeline/sources.py
from __future__ import annotations

import gzip
from pathlib import Path
from typing import TextIO, Union

from .errors import InputError

READ_BUFFER_BYTES = 8 * 1024 * 1024
ENCODING = "utf-8"


def open_dump(path: Union[str, Path]) -> TextIO:
    """
    Open a dump file for line iteration. A `.gz` suffix selects streaming
    gunzip; anything else is read as plain UTF-8 text. Decoding is strict so a
    non-UTF-8 byte surfaces as a read error instead of silently mangled rows.
    """
    path = Path(path)
    try:
        if path.name.endswith(".gz"):
            return gzip.open(path, "rt", encoding=ENCODING, errors="strict")
        return open(path, "r", encoding=ENCODING, errors="strict", buffering=READ_BUFFER_BYTES)
    except OSError as e:
        raise InputError(f"Cannot open {path}: {e}") from e
