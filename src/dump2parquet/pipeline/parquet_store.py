# src/dump2parquet/pipeline/parquet_store.py
from __future__ import annotations

import logging
import os
import time
from datetime import tzinfo
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

import pyarrow as pa
import pyarrow.parquet as pq

from .anomalies import Anomaly, AnomalyKind, AnomalySink, Severity
from .errors import DumpError, OutputError, TimestampParseError, UnsupportedTypeError, ValueShapeError
from .model import ColumnDef, ColumnType, ColumnValue, CreateTable, Event, InsertRows, Row, Schema, StatementKind, ValueKind
from .progress import NullProgress
from .timestamps import UTC, parse_timestamp

logger = logging.getLogger(__name__)

FILE_SUFFIX = ".parquet"
DEFAULT_ROW_GROUP_ROWS = 1024 * 1024
DEFAULT_MAX_BUFFER_MEMORY_MB = 128


# ============================== schemas & mapping ==============================

def arrow_type(column_type: ColumnType) -> pa.DataType:
    if column_type is ColumnType.STRING:
        return pa.string()
    if column_type is ColumnType.INTEGER:
        return pa.int64()
    if column_type is ColumnType.FLOAT:
        return pa.float64()
    if column_type is ColumnType.TIMESTAMP:
        return pa.timestamp("s")
    # BOOLEAN has no columnar mapping yet
    raise UnsupportedTypeError(f"Column type {column_type.name} cannot be written to parquet")


def to_arrow_schema(schema: Schema, *, lowercase: bool = True) -> pa.Schema:
    fields = []
    for c in schema:
        try:
            dtype = arrow_type(c.column_type)
        except UnsupportedTypeError as e:
            raise UnsupportedTypeError(e.message, detail=f"column `{c.name}`") from e
        fields.append(pa.field(c.name.lower() if lowercase else c.name, dtype, nullable=c.nullable))
    return pa.schema(fields)


# ============================== column builders ================================

def _mismatch(column: ColumnDef, expected: str, value: ColumnValue) -> ValueShapeError:
    return ValueShapeError(f"Value for column {column.name} should be {expected} but is {value!r}")


def _coerce_string(column: ColumnDef, value: ColumnValue, tz: tzinfo):
    if value.kind is ValueKind.STRING:
        return value.value
    if value.kind is ValueKind.NULL:
        return None
    raise _mismatch(column, "a string", value)


def _coerce_integer(column: ColumnDef, value: ColumnValue, tz: tzinfo):
    if value.kind is ValueKind.INTEGER:
        return value.value
    if value.kind is ValueKind.NULL:
        return None
    raise _mismatch(column, "an integer", value)


def _coerce_float(column: ColumnDef, value: ColumnValue, tz: tzinfo):
    if value.kind is ValueKind.FLOAT:
        return value.value
    if value.kind is ValueKind.INTEGER:
        return float(value.value)
    if value.kind is ValueKind.NULL:
        return None
    raise _mismatch(column, "a float", value)


def _coerce_boolean(column: ColumnDef, value: ColumnValue, tz: tzinfo):
    if value.kind is ValueKind.BOOLEAN:
        return value.value
    if value.kind is ValueKind.NULL:
        return None
    raise _mismatch(column, "a boolean", value)


def _coerce_timestamp(column: ColumnDef, value: ColumnValue, tz: tzinfo):
    if value.kind is ValueKind.STRING:
        try:
            return parse_timestamp(value.value, tz)
        except TimestampParseError as e:
            raise TimestampParseError(e.message, detail=f"column `{column.name}`") from e
    if value.kind is ValueKind.NULL:
        return None
    raise _mismatch(column, "a timestamp string", value)


_COERCERS: Dict[ColumnType, Callable[[ColumnDef, ColumnValue, tzinfo], object]] = {
    ColumnType.STRING: _coerce_string,
    ColumnType.INTEGER: _coerce_integer,
    ColumnType.FLOAT: _coerce_float,
    ColumnType.BOOLEAN: _coerce_boolean,
    ColumnType.TIMESTAMP: _coerce_timestamp,
}


class _ColumnBuilder:
    """
    Typed, append-only accumulator for one column of one batch. Values are
    validated against the declared logical type on append; finish() produces
    the immutable Arrow array.
    """

    __slots__ = ("column", "_values", "_size", "_coerce", "_tz")

    def __init__(self, column: ColumnDef, capacity: int, tz: tzinfo) -> None:
        self.column = column
        self._values: List[object] = [None] * capacity
        self._size = 0
        self._coerce = _COERCERS[column.column_type]
        self._tz = tz

    def append(self, value: ColumnValue) -> None:
        coerced = self._coerce(self.column, value, self._tz)
        if coerced is None and not self.column.nullable:
            raise ValueShapeError(f"Column {self.column.name} is declared NOT NULL but received NULL")
        self._values[self._size] = coerced
        self._size += 1

    def finish(self, dtype: pa.DataType) -> pa.Array:
        values = self._values if self._size == len(self._values) else self._values[: self._size]
        array = pa.array(values, type=dtype)
        self._values = []
        self._size = 0
        return array


def build_record_batch(
    schema: Schema,
    arrow_schema: pa.Schema,
    rows: Sequence[Row],
    *,
    tz: tzinfo = UTC,
) -> pa.RecordBatch:
    """One record batch of width |schema| from positional row tuples."""
    width = len(schema)
    builders = [_ColumnBuilder(column, len(rows), tz) for column in schema]
    for row_index, row in enumerate(rows):
        if len(row) != width:
            raise ValueShapeError(
                f"Row {row_index} has {len(row)} values but the table has {width} columns",
                detail=f"columns: {', '.join(schema.names())}",
            )
        for builder, value in zip(builders, row):
            builder.append(value)
    arrays = [b.finish(f.type) for b, f in zip(builders, arrow_schema)]
    return pa.RecordBatch.from_arrays(arrays, schema=arrow_schema)


# ============================== buffers =======================================

class _AdaptiveBatchBuffer:
    """
    Record batches → Arrow Table with adaptive rollover based on row count or
    buffered bytes (string-heavy tables can balloon). One rollover becomes one
    parquet row group.
    """

    __slots__ = ("_schema", "_roll_rows", "_batches", "_count", "_bytes", "_max_bytes")

    def __init__(self, schema: pa.Schema, roll_rows: int, max_memory_mb: int) -> None:
        self._schema = schema
        self._roll_rows = int(max(1, roll_rows))
        self._batches: List[pa.RecordBatch] = []
        self._count = 0
        self._bytes = 0
        self._max_bytes = int(max_memory_mb) * 1024 * 1024

    def __bool__(self) -> bool:
        return self._count > 0

    def __len__(self) -> int:
        return self._count

    def add(self, batch: pa.RecordBatch) -> None:
        self._batches.append(batch)
        self._count += batch.num_rows
        self._bytes += batch.nbytes

    def should_roll(self) -> bool:
        return self._count >= self._roll_rows or self._bytes >= self._max_bytes

    def to_table(self) -> pa.Table:
        return pa.Table.from_batches(self._batches, schema=self._schema)

    def clear(self) -> None:
        self._batches = []
        self._count = 0
        self._bytes = 0


# ============================== per-table encoder ==============================

class ParquetTableWriter:
    """
    Owns one output file: the Arrow schema, the parquet encoder and the rows
    appended so far. Created on CREATE TABLE, closed on the next one or at
    shutdown.
    """

    def __init__(
        self,
        table_name: str,
        schema: Schema,
        path: Path,
        *,
        compression: str = "snappy",
        row_group_rows: int = DEFAULT_ROW_GROUP_ROWS,
        max_buffer_memory_mb: int = DEFAULT_MAX_BUFFER_MEMORY_MB,
        lowercase_field_names: bool = True,
        tz: tzinfo = UTC,
    ) -> None:
        self.table_name = table_name
        self.schema = schema
        self.path = Path(path)
        self.row_count = 0
        self.row_group_rows = int(row_group_rows)
        self.arrow_schema = to_arrow_schema(schema, lowercase=lowercase_field_names)
        self._tz = tz
        self._buf = _AdaptiveBatchBuffer(self.arrow_schema, row_group_rows, max_buffer_memory_mb)
        self._pq_write_kwargs = dict(
            compression=compression,
            use_dictionary=True,
            write_statistics=True,
        )
        try:
            self._writer: Optional[pq.ParquetWriter] = pq.ParquetWriter(
                str(self.path), self.arrow_schema, **self._pq_write_kwargs
            )
        except (OSError, pa.ArrowException) as e:
            raise OutputError(f"Cannot create {self.path}: {e}") from e
        self._started = time.perf_counter()

    @property
    def closed(self) -> bool:
        return self._writer is None

    def write_rows(self, rows: Sequence[Row]) -> int:
        """Validate and append one batch; returns the number of rows appended."""
        if self._writer is None:
            raise OutputError(f"Parquet writer for `{self.table_name}` is already closed")
        if not rows:
            return 0
        batch = build_record_batch(self.schema, self.arrow_schema, rows, tz=self._tz)
        self._buf.add(batch)
        self.row_count += batch.num_rows
        if self._buf.should_roll():
            self._flush()
        return batch.num_rows

    def close(self, *, verify: bool = True) -> Path:
        if self._writer is None:
            return self.path
        writer = self._writer
        try:
            self._flush()
        finally:
            self._writer = None
            try:
                writer.close()
            except (OSError, pa.ArrowException) as e:
                raise OutputError(f"Failed to close {self.path}: {e}") from e
        if verify:
            self._verify()
        logger.info(
            "Wrote %d rows to %s (%.2fs)", self.row_count, self.path, time.perf_counter() - self._started
        )
        return self.path

    # ----------------------------- internals ----------------------------------

    def _flush(self) -> None:
        if not self._buf or self._writer is None:
            return
        try:
            self._writer.write_table(self._buf.to_table(), row_group_size=self.row_group_rows)
        except (OSError, pa.ArrowException) as e:
            raise OutputError(f"Failed to append to {self.path}: {e}") from e
        finally:
            self._buf.clear()

    def _verify(self) -> None:
        """Read the footer back and check the row count."""
        try:
            written = pq.read_metadata(str(self.path)).num_rows
        except (OSError, pa.ArrowException) as e:
            raise OutputError(f"Parquet write verification failed for {self.path}: {e}") from e
        if written != self.row_count:
            raise OutputError(
                f"Row count mismatch in {self.path}: expected {self.row_count}, got {written}"
            )


# ============================== writer state machine ===========================

class ColumnarWriter:
    """
    Consumes parser events in order and keeps at most one table open.

    Idle   --CreateTable-->            Open(T)
    Open(T) --CreateTable(T')-->        close T, Open(T')
    Open(T) --InsertRows(T)-->          append batch
    Open(T) --InsertRows(other)-->      anomaly, discard
    Idle   --InsertRows-->              anomaly, discard
    *      --NoOp-->                    unchanged

    Use as a context manager: the open table is closed on exit, including
    when the consuming loop raises.
    """

    def __init__(
        self,
        output_dir: Path,
        *,
        compression: str = "snappy",
        row_group_rows: int = DEFAULT_ROW_GROUP_ROWS,
        max_buffer_memory_mb: int = DEFAULT_MAX_BUFFER_MEMORY_MB,
        lowercase_field_names: bool = True,
        tz: tzinfo = UTC,
        verify_on_close: bool = True,
        sink: Optional[AnomalySink] = None,
        progress: Optional[NullProgress] = None,
    ) -> None:
        self.output_dir = Path(output_dir)
        self.compression = compression
        self.row_group_rows = row_group_rows
        self.max_buffer_memory_mb = max_buffer_memory_mb
        self.lowercase_field_names = lowercase_field_names
        self.tz = tz
        self.verify_on_close = verify_on_close
        self._sink = sink or AnomalySink()
        self._progress = progress or NullProgress()
        self._current: Optional[ParquetTableWriter] = None
        self.tables_written: List[Path] = []
        self.rows_written = 0
        self.batches_discarded = 0

    # ----------------------------- public API ---------------------------------

    @property
    def current_table(self) -> Optional[str]:
        return self._current.table_name if self._current is not None else None

    def handle(self, event: Event) -> None:
        if event.kind is StatementKind.CREATE_TABLE:
            self._open(event)
        elif event.kind is StatementKind.INSERT_ROWS:
            self._insert(event)
        elif event.kind is StatementKind.NO_OP:
            return
        else:
            raise ValueError(f"unknown event kind: {event.kind!r}")

    def close(self) -> None:
        self._close_current()
        self._progress.finish("Done writing parquet file(s).")

    def abort(self) -> None:
        """Teardown on an error path: release the open file without masking the original error."""
        table = self.current_table
        try:
            self._close_current(verify=False)
        except DumpError:
            logger.exception("Failed to close `%s` while aborting", table)
        finally:
            self._current = None
            self._progress.finish()

    def __enter__(self) -> "ColumnarWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()
        else:
            self.abort()

    # ----------------------------- internals ----------------------------------

    def _open(self, event: CreateTable) -> None:
        self._close_current()
        path = self._table_path(event.name)
        if path in self.tables_written:
            logger.warning("Table `%s` defined again; %s will be overwritten", event.name, path)
        self._progress.set_message(f"`{event.name}`")
        self._current = ParquetTableWriter(
            event.name,
            event.schema,
            path,
            compression=self.compression,
            row_group_rows=self.row_group_rows,
            max_buffer_memory_mb=self.max_buffer_memory_mb,
            lowercase_field_names=self.lowercase_field_names,
            tz=self.tz,
        )
        logger.debug("Opened %s with %d columns", path, len(event.schema))

    def _insert(self, event: InsertRows) -> None:
        current = self._current
        if current is None or current.table_name != event.name:
            self.batches_discarded += 1
            open_table = f"`{current.table_name}` is open" if current is not None else "no table is open"
            self._sink.emit(
                Anomaly(
                    kind=AnomalyKind.UNKNOWN_TABLE,
                    severity=Severity.WARN,
                    detail=(
                        f"Discarded {len(event.rows)} row(s): {open_table}; "
                        "CREATE TABLE statement must precede any INSERT INTO"
                    ),
                    table=event.name,
                )
            )
            return
        written = current.write_rows(event.rows)
        self.rows_written += written
        self._progress.inc(written)

    def _close_current(self, *, verify: Optional[bool] = None) -> None:
        current = self._current
        if current is None:
            return
        self._current = None
        path = current.close(verify=self.verify_on_close if verify is None else verify)
        if path not in self.tables_written:
            self.tables_written.append(path)

    def _table_path(self, table_name: str) -> Path:
        if not table_name or os.sep in table_name or (os.altsep and os.altsep in table_name) or table_name in (".", ".."):
            raise OutputError(f"Table name {table_name!r} cannot be used as a file name")
        return self.output_dir / f"{table_name}{FILE_SUFFIX}"
