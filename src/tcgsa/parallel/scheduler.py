"""
Fan-out / fan-in execution of independent tasks.

``run_tasks`` applies one function to every task of a batch on a bounded
worker pool and returns the results in task order, whatever order they
complete in. Tasks share nothing but read-only inputs; each one is passed
everything it needs explicitly.

Backends:
    - "sequential": plain loop in the calling thread
    - "threads": ThreadPoolExecutor. NumPy and the optimizer release the GIL
      for much of their work, and no data is copied
    - "processes": ProcessPoolExecutor with the 'spawn' start method. True
      multi-core execution; task and function must be picklable
    - "joblib": joblib.Parallel (loky processes), results consumed as they
      complete

The call blocks until every task has returned. A task raising an exception
does not stop the batch: ``on_error`` turns it into a placeholder result.
"""

from __future__ import annotations

import logging
import multiprocessing as mp
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from typing import Any, Callable, List, Optional, Sequence, Tuple, TypeVar

from tcgsa.config import ParallelBackend
from tcgsa.parallel.progress import ProgressMonitor

logger = logging.getLogger(__name__)

__all__ = ['run_tasks']

T = TypeVar("T")
R = TypeVar("R")


def _guarded_call(func: Callable[[T], R], position: int, task: T) -> Tuple[int, Optional[R], Optional[BaseException]]:
    """Run one task, returning its exception instead of raising it."""
    try:
        return position, func(task), None
    except Exception as e:
        return position, None, e


def _make_executor(backend: ParallelBackend, n_workers: int) -> Executor:
    if backend is ParallelBackend.PROCESSES:
        # 'spawn' avoids fork issues with BLAS thread pools
        return ProcessPoolExecutor(max_workers=n_workers, mp_context=mp.get_context('spawn'))
    return ThreadPoolExecutor(max_workers=n_workers)


def run_tasks(
    func: Callable[[T], R],
    tasks: Sequence[T],
    n_workers: int = 1,
    backend: ParallelBackend | str = ParallelBackend.THREADS,
    monitor: Optional[ProgressMonitor] = None,
    on_error: Optional[Callable[[T, BaseException], R]] = None,
) -> List[R]:
    """
    Apply ``func`` to every task and return results in task order.

    Args:
        func: Function of one task. Must be picklable for the process-based
            backends (module-level function or functools.partial of one).
        tasks: Tasks to run.
        n_workers: Worker pool size. 1 runs sequentially.
        backend: Parallel backend.
        monitor: Progress sink notified once per completed task with the
            task's 1-based position.
        on_error: Builds the result of a task that raised. If None, the
            first task error is re-raised after the pool has shut down.

    Returns:
        List with ``result[i] == func(tasks[i])``.
    """
    backend = ParallelBackend.parse(backend)
    total = len(tasks)
    results: List[Any] = [None] * total
    errors: List[Tuple[int, BaseException]] = []

    def _collect(position: int, result: Optional[R], error: Optional[BaseException]) -> None:
        if error is not None:
            logger.error(f"Task {position + 1}/{total} failed: {type(error).__name__}: {error}")
            errors.append((position, error))
            if on_error is not None:
                result = on_error(tasks[position], error)
        results[position] = result
        if monitor is not None:
            monitor.task_done(position + 1)

    if total == 0:
        return []

    if n_workers == 1 or backend is ParallelBackend.SEQUENTIAL:
        for position, task in enumerate(tasks):
            _collect(*_guarded_call(func, position, task))

    elif backend is ParallelBackend.JOBLIB:
        from joblib import Parallel, delayed

        outputs = Parallel(n_jobs=n_workers, return_as="generator_unordered")(
            delayed(_guarded_call)(func, position, task)
            for position, task in enumerate(tasks)
        )
        for position, result, error in outputs:
            _collect(position, result, error)

    else:
        with _make_executor(backend, n_workers) as executor:
            futures = {
                executor.submit(func, task): position
                for position, task in enumerate(tasks)
            }
            for future in as_completed(futures):
                position = futures[future]
                try:
                    result = future.result()
                except Exception as e:
                    _collect(position, None, e)
                else:
                    _collect(position, result, None)

    if errors and on_error is None:
        raise errors[0][1]

    return results
