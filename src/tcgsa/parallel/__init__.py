"""Parallel dispatch of gene set tasks and progress monitoring."""

from tcgsa.parallel.progress import ProgressMonitor
from tcgsa.parallel.scheduler import run_tasks

__all__ = ['ProgressMonitor', 'run_tasks']
