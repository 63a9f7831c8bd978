"""
Atomic file-write utilities.

Result files are written to a temporary file in the destination directory
and moved into place with ``os.replace()``, so an interrupted batch never
leaves a truncated fit table behind.
"""

from __future__ import annotations

import json
import os
import tempfile
from contextlib import contextmanager
from typing import Any, Iterator

import numpy as np
import pandas as pd

__all__ = [
    'atomic_path',
    'atomic_write_json',
    'atomic_write_csv',
    'atomic_save_npz',
]


@contextmanager
def atomic_path(path: str | os.PathLike, suffix: str = ".tmp") -> Iterator[str]:
    """Yield a temporary path that replaces *path* when the block succeeds."""
    path = str(path)
    dir_path = os.path.dirname(path) or "."
    fd, tmp_path = tempfile.mkstemp(dir=dir_path, suffix=suffix)
    os.close(fd)
    try:
        yield tmp_path
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def atomic_write_json(path: str | os.PathLike, data: Any, *, indent: int = 2) -> None:
    """Write *data* as JSON atomically."""
    with atomic_path(path) as tmp_path:
        with open(tmp_path, "w") as f:
            json.dump(data, f, indent=indent)


def atomic_write_csv(path: str | os.PathLike, frame: pd.DataFrame) -> None:
    """Write a DataFrame (index included) as CSV atomically."""
    with atomic_path(path) as tmp_path:
        frame.to_csv(tmp_path)


def atomic_save_npz(path: str | os.PathLike, **arrays: np.ndarray) -> None:
    """Save named arrays to a compressed ``.npz`` archive atomically."""
    # np.savez appends .npz to names lacking it
    with atomic_path(path, suffix=".tmp.npz") as tmp_path:
        np.savez_compressed(tmp_path, **arrays)
