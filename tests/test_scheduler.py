"""
Tests for the task scheduler and progress monitor.

Result order must not depend on completion order or on the backend.
"""

import io
import threading
import time

import pytest

from tcgsa.config import ConfigurationError, ParallelBackend
from tcgsa.parallel.progress import ProgressMonitor, format_progress
from tcgsa.parallel.scheduler import run_tasks


def _slow_square(x):
    """Earlier tasks sleep longer, so they complete last."""
    time.sleep(0.01 * max(0, 10 - x))
    return x * x


def _square_or_fail(x):
    if x == 3:
        raise ValueError("task 3 failed")
    return x * x


class TestRunTasks:

    @pytest.mark.parametrize("backend", ["sequential", "threads"])
    def test_results_in_task_order(self, backend):
        results = run_tasks(_slow_square, list(range(10)), n_workers=4, backend=backend)
        assert results == [x * x for x in range(10)]

    def test_completion_order_differs_from_task_order(self):
        """With threads the first task finishes last; results stay ordered."""
        finished = []
        lock = threading.Lock()

        def record(x):
            _slow_square(x)
            with lock:
                finished.append(x)
            return x

        results = run_tasks(record, list(range(10)), n_workers=10, backend="threads")
        assert results == list(range(10))
        assert finished != list(range(10))

    def test_worker_count_invariance(self):
        tasks = list(range(20))
        expected = run_tasks(_slow_square, tasks, n_workers=1)
        assert expected == [x * x for x in tasks]
        assert run_tasks(_slow_square, tasks, n_workers=4, backend="threads") == expected

    def test_processes_backend(self):
        results = run_tasks(abs, [-3, 1, -2, 5], n_workers=2, backend=ParallelBackend.PROCESSES)
        assert results == [3, 1, 2, 5]

    def test_joblib_backend(self):
        results = run_tasks(abs, [-3, 1, -2, 5], n_workers=2, backend="joblib")
        assert results == [3, 1, 2, 5]

    def test_empty(self):
        assert run_tasks(abs, [], n_workers=4) == []

    @pytest.mark.parametrize("backend", ["sequential", "threads"])
    def test_on_error_placeholder(self, backend):
        results = run_tasks(
            _square_or_fail, list(range(5)), n_workers=2, backend=backend,
            on_error=lambda task, error: f"failed {task}",
        )
        assert results == [0, 1, 4, "failed 3", 16]

    @pytest.mark.parametrize("backend", ["sequential", "threads"])
    def test_error_reraised_after_batch(self, backend):
        monitor = ProgressMonitor(None, total=5)
        with pytest.raises(ValueError, match="task 3"):
            run_tasks(_square_or_fail, list(range(5)), n_workers=2, backend=backend, monitor=monitor)
        # every task ran before the error surfaced
        assert monitor.completed == 5

    def test_unknown_backend(self):
        with pytest.raises(ConfigurationError):
            run_tasks(abs, [1], backend="cluster")


class TestProgressMonitor:

    def test_format(self):
        assert format_progress(3, 120, 57) == "3/120 gene sets analyzed (geneset 57)"

    def test_one_line_per_task(self):
        sink = io.StringIO()
        monitor = ProgressMonitor(sink, total=8)
        run_tasks(_slow_square, list(range(8)), n_workers=4, backend="threads", monitor=monitor)

        lines = sink.getvalue().splitlines()
        assert len(lines) == 8
        assert [line.split(" ")[0] for line in lines] == [f"{i}/8" for i in range(1, 9)]
        genesets = sorted(int(line.rsplit(" ", 1)[1].rstrip(")")) for line in lines)
        assert genesets == list(range(1, 9))

    def test_appends_to_file(self, tmp_path):
        path = tmp_path / "progress.txt"
        path.write_text("previous run\n")
        monitor = ProgressMonitor(path, total=2)
        assert monitor.task_done(2) == 1
        assert monitor.task_done(1) == 2

        assert path.read_text().splitlines() == [
            "previous run",
            "1/2 gene sets analyzed (geneset 2)",
            "2/2 gene sets analyzed (geneset 1)",
        ]

    def test_disabled(self):
        monitor = ProgressMonitor("", total=3)
        assert not monitor.enabled
        assert monitor.task_done(1) == 1
        assert monitor.completed == 1

    def test_concurrent_updates_counted_exactly(self):
        sink = io.StringIO()
        monitor = ProgressMonitor(sink, total=400)
        threads = [
            threading.Thread(target=lambda: [monitor.task_done(1) for _ in range(50)])
            for _ in range(8)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert monitor.completed == 400
        counts = [int(line.split("/")[0]) for line in sink.getvalue().splitlines()]
        assert counts == list(range(1, 401))
