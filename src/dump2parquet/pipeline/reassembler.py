# src/dump2parquet/pipeline/reassembler.py
from __future__ import annotations

from typing import Iterable, Iterator, List, Optional

from .anomalies import Anomaly, AnomalyKind, AnomalySink, Severity
from .errors import excerpt

CREATE_TABLE_PREFIX = "CREATE TABLE"
LINE_COMMENT = "--"
STATEMENT_TERMINATOR = ";"


def cleanup_key(line: str) -> str:
    """
    Drop index prefix lengths from a key clause:
        KEY `idx` (`a`(144),`b`(12))  →  KEY `idx` (`a`,`b`)

    Characters nested two or more parentheses deep are skipped, as is the
    closing parenthesis that brings the depth back from 2 to 1.
    """
    if "KEY " not in line:
        return line
    out: List[str] = []
    depth = 0
    for ch in line:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 1:
                continue
        if depth >= 2:
            continue
        out.append(ch)
    return "".join(out)


def is_comment(line: str) -> bool:
    """`line` must already be stripped."""
    return line.startswith(LINE_COMMENT) or (line.startswith("/*") and line.endswith("*/;"))


class Reassembler:
    """
    Turns physical dump lines into complete statements.

    Comments and blank lines are dropped, continuation lines are appended as-is
    (trimmed, no separator) until the accumulated text ends with ';'.
    Lines that belong to a CREATE TABLE go through cleanup_key() first.
    """

    __slots__ = ("_parts", "_in_create", "_sink", "lines_read", "statements_emitted")

    def __init__(self, sink: Optional[AnomalySink] = None) -> None:
        self._parts: List[str] = []
        self._in_create = False
        self._sink = sink
        self.lines_read = 0
        self.statements_emitted = 0

    @property
    def pending(self) -> bool:
        return bool(self._parts)

    def feed(self, line: str) -> Optional[str]:
        """Consume one physical line; return a statement when one completes."""
        self.lines_read += 1
        line = line.strip()
        if not line or is_comment(line):
            return None

        if self._in_create:
            line = cleanup_key(line)
        elif not self._parts and line.startswith(CREATE_TABLE_PREFIX):
            self._in_create = True
        self._parts.append(line)

        if not line.endswith(STATEMENT_TERMINATOR):
            return None
        statement = "".join(self._parts).strip()
        self._parts = []
        self._in_create = False
        self.statements_emitted += 1
        return statement

    def finish(self) -> None:
        """End of stream: a dangling partial statement is reported and dropped."""
        if not self._parts:
            return
        partial = "".join(self._parts)
        self._parts = []
        self._in_create = False
        if self._sink is not None:
            self._sink.emit(
                Anomaly(
                    kind=AnomalyKind.PARTIAL_STATEMENT,
                    severity=Severity.WARN,
                    detail="end of input inside an unterminated statement; discarded",
                    statement=excerpt(partial),
                )
            )


def iter_statements(lines: Iterable[str], sink: Optional[AnomalySink] = None) -> Iterator[str]:
    reassembler = Reassembler(sink=sink)
    for line in lines:
        statement = reassembler.feed(line)
        if statement is not None:
            yield statement
    reassembler.finish()
