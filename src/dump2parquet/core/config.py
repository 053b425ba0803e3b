"""Configuration helpers and feature flag evaluation."""

from __future__ import annotations

import os
from functools import lru_cache


_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@lru_cache(maxsize=None)
def feature_enabled(name: str, default: bool = False) -> bool:
    """Return True when the named feature flag is enabled via environment variable.

    Feature names map to environment variables using the pattern:
        feature.parser.skip_unparseable → DUMP2PARQUET_FEATURE_PARSER_SKIP_UNPARSEABLE
    Values are interpreted case-insensitively; "1", "true", "yes", "on" enable the flag
    and "0", "false", "no", "off" disable it. Anything else falls back to the default.
    """

    raw = os.getenv(env_key(name))
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    return default


def env_key(name: str) -> str:
    return "DUMP2PARQUET_" + name.upper().replace(".", "_")
