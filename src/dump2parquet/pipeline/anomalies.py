# src/dump2parquet/pipeline/anomalies.py
from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class Severity(str, enum.Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


class AnomalyKind(str, enum.Enum):
    # Reassembly
    PARTIAL_STATEMENT = "PARTIAL_STATEMENT"    # end of stream inside a statement
    # Parsing
    PARSE_SKIPPED = "PARSE_SKIPPED"            # unparseable statement dropped (skip mode)
    # Writing
    UNKNOWN_TABLE = "UNKNOWN_TABLE"            # insert for a table that is not the open one


_LOG_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.WARN: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}


@dataclass(frozen=True)
class Anomaly:
    """
    Immutable record of a non-fatal condition. `statement` is an excerpt,
    never the full text of a multi-megabyte insert.
    """
    kind: AnomalyKind
    severity: Severity
    detail: str = ""
    table: Optional[str] = None
    statement: str = ""
    ts_ms: int = field(default_factory=lambda: int(time.time() * 1000))

    def to_dict(self) -> Dict:
        return {
            "kind": self.kind.value,
            "severity": self.severity.value,
            "detail": self.detail,
            "table": self.table or "",
            "statement": self.statement,
            "ts_ms": int(self.ts_ms),
        }


class AnomalySink:
    """
    Thread-safe anomaly collector + lightweight observability.

    - emit(): log an anomaly, buffer it, update counters
    - drain(): atomically return & clear buffered anomalies
    - counters(): snapshot of counters (for summaries)
    - observe_duration(): record timing histograms (statement parse times, etc.)
    """

    __slots__ = ("_lock", "_buffer", "_counts", "_timers")

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._buffer: List[Anomaly] = []
        self._counts: Dict[str, int] = {
            "total": 0,
        }
        # Timers: name -> bucket -> count
        self._timers: Dict[str, Dict[str, int]] = {}

    # ----------------------------- public API ---------------------------------

    def emit(self, anomaly: Anomaly) -> None:
        where = f" [{anomaly.table}]" if anomaly.table else ""
        logger.log(_LOG_LEVELS[anomaly.severity], "%s%s: %s", anomaly.kind.value, where, anomaly.detail)
        with self._lock:
            self._buffer.append(anomaly)
            self._counts["total"] = self._counts.get("total", 0) + 1
            self._counts[f"kind:{anomaly.kind.value}"] = self._counts.get(f"kind:{anomaly.kind.value}", 0) + 1
            self._counts[f"sev:{anomaly.severity.value}"] = self._counts.get(f"sev:{anomaly.severity.value}", 0) + 1

    def drain(self) -> List[Anomaly]:
        with self._lock:
            out = self._buffer
            self._buffer = []
            return out

    def items(self) -> List[Anomaly]:
        with self._lock:
            return list(self._buffer)

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)

    def counters(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def observe_duration(self, name: str, seconds: float) -> None:
        """
        Record a single observation into log-scale buckets.
        Example: observe_duration("parse_seconds", dt)
        """
        bucket = _duration_bucket(seconds)
        with self._lock:
            buckets = self._timers.setdefault(name, {})
            buckets[bucket] = buckets.get(bucket, 0) + 1
            total_key = f"{name}::count"
            buckets[total_key] = buckets.get(total_key, 0) + 1

    def timer_histograms(self) -> Dict[str, Dict[str, int]]:
        with self._lock:
            return {k: dict(v) for k, v in self._timers.items()}


# ----------------------------- helpers ----------------------------------------

def _duration_bucket(seconds: float) -> str:
    """
    Log-ish buckets from microseconds to minutes.
    """
    s = max(0.0, float(seconds))
    if s < 1e-6:
        return "<1us"
    if s < 1e-3:
        return "<1ms"
    if s < 1e-2:
        return "<10ms"
    if s < 1e-1:
        return "<100ms"
    if s < 1.0:
        return "<1s"
    if s < 10.0:
        return "<10s"
    if s < 60.0:
        return "<60s"
    return ">=60s"
