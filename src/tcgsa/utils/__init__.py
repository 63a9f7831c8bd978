"""Utility modules for TcGSA result handling."""

from tcgsa.utils.fileio import (
    atomic_path,
    atomic_write_json,
    atomic_write_csv,
    atomic_save_npz,
)

__all__ = [
    # Atomic file-write utilities
    'atomic_path',
    'atomic_write_json',
    'atomic_write_csv',
    'atomic_save_npz',
]
