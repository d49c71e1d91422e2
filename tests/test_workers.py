"""Tests for processing configuration and the worker pool."""

import threading

import numpy as np
import pytest

from sonar_module.core import ConfigValidationError, ProcessingConfig, WorkerPool


class TestProcessingConfig:
    """Test ProcessingConfig dataclass."""

    def test_defaults(self):
        """Test default worker count follows CPU count."""
        config = ProcessingConfig()
        assert config.max_workers is None
        assert config.worker_count >= 1
        assert config.min_parallel_items == 4

    def test_explicit_workers(self):
        """Test explicit worker count is used."""
        assert ProcessingConfig(max_workers=3).worker_count == 3

    def test_invalid_workers(self):
        """Test non-positive worker counts raise."""
        with pytest.raises(ConfigValidationError):
            ProcessingConfig(max_workers=0)

    def test_invalid_threshold(self):
        """Test non-positive inline threshold raises."""
        with pytest.raises(ConfigValidationError):
            ProcessingConfig(min_parallel_items=0)

    def test_dict_round_trip(self):
        """Test to_dict/from_dict."""
        config = ProcessingConfig(max_workers=2, min_parallel_items=8)
        data = config.to_dict()
        assert data == {"max_workers": 2, "min_parallel_items": 8}
        assert ProcessingConfig.from_dict(data) == config

    def test_config_error_is_value_error(self):
        """Test configuration errors are ValueErrors."""
        assert issubclass(ConfigValidationError, ValueError)


class TestWorkerPool:
    """Test range splitting and parallel execution."""

    def test_split_covers_items(self):
        """Test ranges are contiguous, disjoint and complete."""
        pool = WorkerPool(ProcessingConfig(max_workers=4, min_parallel_items=1))
        ranges = pool.split(10)

        assert len(ranges) == 4
        assert ranges[0][0] == 0
        assert ranges[-1][1] == 10
        for (_, stop), (start, _) in zip(ranges, ranges[1:]):
            assert stop == start
        sizes = [stop - start for start, stop in ranges]
        assert max(sizes) - min(sizes) <= 1

    def test_split_small_job(self):
        """Test small jobs stay in one range."""
        pool = WorkerPool(ProcessingConfig(max_workers=8, min_parallel_items=4))
        assert pool.split(3) == [(0, 3)]
        assert pool.split(0) == []

    def test_split_fewer_items_than_workers(self):
        """Test no empty ranges are produced."""
        pool = WorkerPool(ProcessingConfig(max_workers=8, min_parallel_items=1))
        assert pool.split(3) == [(0, 1), (1, 2), (2, 3)]

    def test_run_fills_output(self):
        """Test every item is processed exactly once."""
        out = np.zeros(100)

        def task(start, stop):
            out[start:stop] += np.arange(start, stop)

        with WorkerPool(ProcessingConfig(max_workers=4, min_parallel_items=1)) as pool:
            pool.run(task, 100)

        np.testing.assert_array_equal(out, np.arange(100))

    def test_run_uses_threads(self):
        """Test ranges run on worker threads."""
        names = set()
        lock = threading.Lock()

        def task(start, stop):
            with lock:
                names.add(threading.current_thread().name)

        with WorkerPool(ProcessingConfig(max_workers=2, min_parallel_items=1)) as pool:
            pool.run(task, 8)

        assert all(name.startswith("sonar-worker") for name in names)

    def test_run_inline(self):
        """Test single-range jobs run on the calling thread."""
        names = []

        def task(start, stop):
            names.append(threading.current_thread().name)

        pool = WorkerPool(ProcessingConfig(max_workers=1))
        pool.run(task, 50)
        assert names == [threading.current_thread().name]

    def test_run_propagates_errors(self):
        """Test task exceptions reach the caller."""

        def task(start, stop):
            if start == 0:
                raise KeyError("boom")

        with WorkerPool(ProcessingConfig(max_workers=2, min_parallel_items=1)) as pool:
            with pytest.raises(KeyError):
                pool.run(task, 4)

    def test_close_is_repeatable(self):
        """Test pools can be closed more than once and reused."""
        pool = WorkerPool(ProcessingConfig(max_workers=2, min_parallel_items=1))
        pool.run(lambda start, stop: None, 4)
        pool.close()
        pool.close()
        pool.run(lambda start, stop: None, 4)
        pool.close()
