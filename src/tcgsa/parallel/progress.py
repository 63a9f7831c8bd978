"""
Progress monitoring for batch gene set analyses.

Each completed gene set appends one human-readable line to a sink:

    3/120 gene sets analyzed (geneset 57)

The counter is held in memory and incremented under a lock, so concurrent
completions never read a stale count. The sink is informational only:
nothing in the analysis reads it back.
"""

from __future__ import annotations

import os
import threading
from pathlib import Path
from typing import TextIO, Union

__all__ = ['ProgressMonitor', 'format_progress']

Sink = Union[str, os.PathLike, TextIO, None]


def format_progress(completed: int, total: int, geneset: int) -> str:
    return f"{completed}/{total} gene sets analyzed (geneset {geneset})"


class ProgressMonitor:
    """
    Thread-safe, append-only progress sink.

    Args:
        sink: File path (lines are appended, the file is created if needed),
            an open text stream, or None to disable monitoring.
        total: Number of gene sets in the batch.

    Example:
        >>> monitor = ProgressMonitor("progress.txt", total=2)
        >>> monitor.task_done(1)
        1
    """

    def __init__(self, sink: Sink, total: int):
        if isinstance(sink, str) and sink == "":
            sink = None
        self._sink = sink
        self.total = total
        self._completed = 0
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self._sink is not None

    @property
    def completed(self) -> int:
        with self._lock:
            return self._completed

    def task_done(self, geneset: int) -> int:
        """
        Record one finished gene set.

        Args:
            geneset: 1-based position of the gene set in the batch.

        Returns:
            Number of gene sets completed so far, this one included.
        """
        with self._lock:
            self._completed += 1
            if self._sink is not None:
                self._write(format_progress(self._completed, self.total, geneset) + "\n")
            return self._completed

    def _write(self, line: str) -> None:
        if isinstance(self._sink, (str, os.PathLike)):
            with open(Path(self._sink), "a") as f:
                f.write(line)
        else:
            self._sink.write(line)
            self._sink.flush()

    def __repr__(self) -> str:
        return f"ProgressMonitor(completed={self._completed}, total={self.total}, sink={self._sink!r})"
