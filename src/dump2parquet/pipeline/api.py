# src/dump2parquet/pipeline/api.py
from __future__ import annotations

import concurrent.futures as futures
import logging
import queue
import threading
import time
import zlib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple, Union

from ..core.config import feature_enabled
from .anomalies import Anomaly, AnomalyKind, AnomalySink, Severity
from .errors import DumpError, InputError, OutputError, StatementParseError, excerpt
from .model import Event
from .parquet_store import DEFAULT_MAX_BUFFER_MEMORY_MB, DEFAULT_ROW_GROUP_ROWS, ColumnarWriter
from .progress import NullProgress
from .reassembler import Reassembler
from .sources import open_dump
from .sql_driver import StatementParser
from .timestamps import resolve_timezone

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConvertConfig:
    """Execution knobs for one dump → parquet run."""
    output_dir: Path = Path(".")
    statement_queue_size: int = 1000
    event_queue_size: int = 100
    compression: str = "snappy"
    row_group_rows: int = DEFAULT_ROW_GROUP_ROWS
    max_buffer_memory_mb: int = DEFAULT_MAX_BUFFER_MEMORY_MB
    lowercase_field_names: bool = True
    timezone: str = "UTC"
    dialect: str = "mysql"
    skip_unparseable: bool = field(default_factory=lambda: feature_enabled("feature.parser.skip_unparseable"))
    verify_on_close: bool = True
    poll_interval_sec: float = 0.05


@dataclass(frozen=True)
class ConvertSummary:
    lines_read: int
    statements: int
    tables: Tuple[str, ...]
    rows_written: int
    batches_discarded: int
    anomalies: int
    wall_ms: int


def summary_to_dict(s: ConvertSummary) -> Dict[str, Any]:
    return {
        "lines_read": s.lines_read,
        "statements": s.statements,
        "tables": list(s.tables),
        "rows_written": s.rows_written,
        "batches_discarded": s.batches_discarded,
        "anomalies": s.anomalies,
        "wall_ms": s.wall_ms,
    }


# ==============================================================================
# Pipeline
# ==============================================================================

_END = object()


class _Aborted(Exception):
    """Raised inside a stage when another stage has already failed."""


class DumpPipeline:
    """
    reader (calling thread) → [statements] → parser → [events] → writer

    Both queues are bounded FIFOs, so a slow parquet encoder blocks the parser,
    which blocks the reader. There is exactly one parser and one writer, so the
    writer sees events in reassembly order and a CREATE TABLE can never overtake
    pending inserts of the previous table.

    End of input is a sentinel pushed after the last statement. A stage that
    fails sets the shared abort flag; the others stop at their next queue
    operation, and run() re-raises the failing stage's exception.
    """

    def __init__(
        self,
        cfg: Optional[ConvertConfig] = None,
        *,
        sink: Optional[AnomalySink] = None,
        progress: Optional[NullProgress] = None,
        parser: Optional[StatementParser] = None,
    ) -> None:
        self.cfg = cfg or ConvertConfig()
        self.sink = sink or AnomalySink()
        self.progress = progress or NullProgress()
        self.parser = parser or StatementParser(dialect=self.cfg.dialect)
        self._abort = threading.Event()

    # ---- public API -----------------------------------------------------------

    def run(self, lines: Iterable[str]) -> ConvertSummary:
        cfg = self.cfg
        start = time.time()
        try:
            tz = resolve_timezone(cfg.timezone)
        except ValueError as e:
            raise DumpError(str(e), code="CONFIG_ERROR") from e

        out_dir = Path(cfg.output_dir)
        try:
            out_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise OutputError(f"Cannot create output directory {out_dir}: {e}") from e

        self._abort.clear()
        statements: "queue.Queue[object]" = queue.Queue(maxsize=max(1, cfg.statement_queue_size))
        events: "queue.Queue[object]" = queue.Queue(maxsize=max(1, cfg.event_queue_size))
        reassembler = Reassembler(sink=self.sink)
        writer = ColumnarWriter(
            out_dir,
            compression=cfg.compression,
            row_group_rows=cfg.row_group_rows,
            max_buffer_memory_mb=cfg.max_buffer_memory_mb,
            lowercase_field_names=cfg.lowercase_field_names,
            tz=tz,
            verify_on_close=cfg.verify_on_close,
            sink=self.sink,
            progress=self.progress,
        )
        logger.debug("Parsing with sqlglot %s (%s dialect)", self.parser.version, cfg.dialect)

        failure: Optional[BaseException] = None
        with futures.ThreadPoolExecutor(max_workers=2, thread_name_prefix="dump2parquet") as pool:
            parse_fut = pool.submit(self._stage, self._parse_loop, statements, events)
            write_fut = pool.submit(self._stage, self._write_loop, events, writer)
            try:
                self._read(lines, reassembler, statements)
                self._put(statements, _END)
            except _Aborted:
                # a worker failed first; its exception is collected below
                pass
            except BaseException as e:
                self._abort.set()
                failure = e

        # parser first, then writer: report the most upstream root cause
        for fut in (parse_fut, write_fut):
            exc = fut.exception()
            if failure is None and exc is not None and not isinstance(exc, _Aborted):
                failure = exc
        if failure is not None:
            raise failure

        logger.info("%d lines read.", reassembler.lines_read)
        summary = ConvertSummary(
            lines_read=reassembler.lines_read,
            statements=reassembler.statements_emitted,
            tables=tuple(str(p) for p in writer.tables_written),
            rows_written=writer.rows_written,
            batches_discarded=writer.batches_discarded,
            anomalies=self.sink.counters().get("total", 0),
            wall_ms=int((time.time() - start) * 1000),
        )
        return summary

    # ---- stages ---------------------------------------------------------------

    def _stage(self, loop, *args) -> None:
        try:
            loop(*args)
        except _Aborted:
            raise
        except BaseException:
            self._abort.set()
            raise

    def _read(self, lines: Iterable[str], reassembler: Reassembler, statements: "queue.Queue[object]") -> None:
        it = iter(lines)
        while True:
            try:
                line = next(it)
            except StopIteration:
                break
            except (OSError, EOFError, UnicodeDecodeError, zlib.error) as e:
                raise InputError(f"Unable to read input after line {reassembler.lines_read}: {e}") from e
            statement = reassembler.feed(line)
            if statement is not None:
                self._put(statements, statement)
        reassembler.finish()

    def _parse_loop(self, statements: "queue.Queue[object]", events: "queue.Queue[object]") -> None:
        while True:
            item = self._get(statements)
            if item is _END:
                break
            event = self._parse_one(item)  # type: ignore[arg-type]
            if event is not None:
                self._put(events, event)
        self._put(events, _END)

    def _write_loop(self, events: "queue.Queue[object]", writer: ColumnarWriter) -> None:
        with writer:
            while True:
                item = self._get(events)
                if item is _END:
                    return
                writer.handle(item)  # type: ignore[arg-type]

    def _parse_one(self, statement: str) -> Optional[Event]:
        started = time.perf_counter()
        try:
            event = self.parser.parse(statement)
        except StatementParseError as e:
            if not self.cfg.skip_unparseable:
                raise
            self.sink.emit(
                Anomaly(
                    kind=AnomalyKind.PARSE_SKIPPED,
                    severity=Severity.ERROR,
                    detail=e.message,
                    statement=excerpt(statement),
                )
            )
            return None
        finally:
            self.sink.observe_duration("parse_seconds", time.perf_counter() - started)
        return event

    # ---- bounded queue helpers ------------------------------------------------

    def _put(self, q: "queue.Queue[object]", item: object) -> None:
        while True:
            if self._abort.is_set():
                raise _Aborted()
            try:
                q.put(item, timeout=self.cfg.poll_interval_sec)
                return
            except queue.Full:
                continue

    def _get(self, q: "queue.Queue[object]") -> object:
        while True:
            if self._abort.is_set():
                raise _Aborted()
            try:
                return q.get(timeout=self.cfg.poll_interval_sec)
            except queue.Empty:
                continue


# ==============================================================================
# Entry points
# ==============================================================================


def convert_dump(
    lines: Iterable[str],
    output_dir: Union[str, Path],
    *,
    cfg: Optional[ConvertConfig] = None,
    sink: Optional[AnomalySink] = None,
    progress: Optional[NullProgress] = None,
) -> ConvertSummary:
    """Convert an iterable of dump lines into `<output_dir>/<table>.parquet` files."""
    cfg = replace(cfg or ConvertConfig(), output_dir=Path(output_dir))
    return DumpPipeline(cfg, sink=sink, progress=progress).run(lines)


def convert_file(
    path: Union[str, Path],
    output_dir: Union[str, Path],
    *,
    cfg: Optional[ConvertConfig] = None,
    sink: Optional[AnomalySink] = None,
    progress: Optional[NullProgress] = None,
) -> ConvertSummary:
    """Same as convert_dump() for a `.sql` or `.sql.gz` file on disk."""
    with open_dump(path) as stream:
        return convert_dump(stream, output_dir, cfg=cfg, sink=sink, progress=progress)
