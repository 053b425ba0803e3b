# src/dump2parquet/pipeline/progress.py
from __future__ import annotations

import threading
from typing import Optional

from tqdm import tqdm


class NullProgress:
    """Counts rows without drawing anything (tests, --no-progress, non-tty)."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.rows = 0
        self.message = ""

    def set_message(self, message: str) -> None:
        with self._lock:
            self.message = message

    def inc(self, rows: int) -> None:
        with self._lock:
            self.rows += int(rows)

    def finish(self, message: Optional[str] = None) -> None:
        if message is not None:
            self.set_message(message)


class TqdmProgress(NullProgress):
    """Row counter drawn with tqdm on stderr; the open table is the description."""

    def __init__(self, *, disable: Optional[bool] = None) -> None:
        super().__init__()
        # disable=None lets tqdm turn itself off when stderr is not a tty
        self._bar = tqdm(unit=" rows", unit_scale=True, dynamic_ncols=True, disable=disable)

    def set_message(self, message: str) -> None:
        super().set_message(message)
        with self._lock:
            self._bar.set_description_str(message, refresh=True)

    def inc(self, rows: int) -> None:
        super().inc(rows)
        with self._lock:
            self._bar.update(int(rows))

    def finish(self, message: Optional[str] = None) -> None:
        super().finish(message)
        with self._lock:
            self._bar.close()
