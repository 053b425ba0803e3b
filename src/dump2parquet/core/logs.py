"""Logging setup shared by the command line and embedding callers."""

from __future__ import annotations

import logging
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


def configure_logging(verbosity: int = 0, *, stream: Optional[object] = None) -> None:
    """
    0 → INFO, 1 → DEBUG for our loggers, 2+ → DEBUG for sqlglot as well.

    sqlglot warns once per statement it falls back to a generic command
    (LOCK TABLES, SET ...), which floods real dumps, so it stays at ERROR
    unless explicitly asked for.
    """
    level = logging.DEBUG if verbosity >= 1 else logging.INFO
    kwargs = {"level": level, "format": LOG_FORMAT, "force": True}
    if stream is not None:
        kwargs["stream"] = stream
    logging.basicConfig(**kwargs)
    logging.getLogger("sqlglot").setLevel(logging.DEBUG if verbosity >= 2 else logging.ERROR)
