"""
Unit tests for coordinator components.

Tests:
- Run configuration
- Spawning, collection and aggregation across worker processes
- Worker failure propagation
"""

import sys
import time

import pytest

from coordinator.config import ClassifierConfig
from coordinator.coordinator import ShardCoordinator, WorkerState
from core.classifier import distance_euclidean, resolve_metric
from core.dataset import create_synthetic_dataset
from core.errors import ConfigError, WorkerFailure
from core.partitioner import ShardDescriptor
from worker.task import ShardWorker, serve_shard


# Worker targets for failure injection. They must live at module level so
# that every multiprocessing start method can locate them.

def exit_nonzero_after_result(rank, training, testing, k, metric, inbound, outbound, log_level):
    """Deliver a correct result, then exit with a failure status on rank 1."""
    exitcode = serve_shard(rank, training, testing, k, metric, inbound, outbound)
    sys.exit(7 if rank == 1 else exitcode)


def exit_before_result(rank, training, testing, k, metric, inbound, outbound, log_level):
    """Rank 0 dies without ever sending its result."""
    if rank == 0:
        inbound.close()
        outbound.close()
        sys.exit(5)
    sys.exit(serve_shard(rank, training, testing, k, metric, inbound, outbound))


def close_without_result(rank, training, testing, k, metric, inbound, outbound, log_level):
    """Every worker exits cleanly but never sends a result."""
    inbound.close()
    outbound.close()


def hang(rank, training, testing, k, metric, inbound, outbound, log_level):
    """Never produce a result."""
    time.sleep(60)


def make_config(num_workers=1, **kwargs):
    return ClassifierConfig(
        training_path="training.bin",
        testing_path="testing.bin",
        num_workers=num_workers,
        **kwargs
    )


class TestClassifierConfig:
    """Test run configuration."""

    def test_default_config(self):
        """Test default configuration values."""
        config = make_config()

        assert config.k == 1
        assert config.metric == "euclidean"
        assert config.num_workers == 1
        assert config.verbose is False
        assert config.log_level == "WARNING"
        assert config.worker_timeout is None

    def test_verbose_log_level(self):
        assert make_config(verbose=True).log_level == "DEBUG"

    def test_metric_prefix(self):
        config = make_config(metric="eucl")

        assert config.resolved_metric() is distance_euclidean
        assert config.to_dict()['metric'] == "euclidean"

    @pytest.mark.parametrize("kwargs", [
        {'num_workers': 0},
        {'num_workers': -3},
        {'k': 0},
        {'metric': 'manhattan'},
        {'image_dim': 0},
        {'worker_timeout': 0},
        {'start_method': 'teleport'},
    ])
    def test_invalid_values(self, kwargs):
        """Test that invalid values raise ConfigError."""
        with pytest.raises(ConfigError):
            make_config(**kwargs)

    def test_from_dict(self):
        """Test creating config from dictionary."""
        config = ClassifierConfig.from_dict({
            'training_path': 'a.bin',
            'testing_path': 'b.bin',
            'k': 3,
            'metric': 'cos',
            'num_workers': 4
        })

        assert config.k == 3
        assert config.num_workers == 4
        assert config.to_dict()['metric'] == 'cosine'


class TestShardCoordinator:
    """Test the spawn / collect / wait protocol."""

    def test_scenario(self, scenario_training, scenario_testing):
        """Test 4 training and 5 testing images over two workers."""
        coordinator = ShardCoordinator(make_config(num_workers=2), scenario_training, scenario_testing)

        total = coordinator.run()

        assert total == 4
        assert [w.shard for w in coordinator.workers] == [
            ShardDescriptor(start_index=0, count=3),
            ShardDescriptor(start_index=3, count=2),
        ]
        assert [w.result.correct_count for w in coordinator.workers] == [3, 1]
        assert all(w.state == WorkerState.TERMINATED_SUCCESS for w in coordinator.workers)
        assert all(w.process.exitcode == 0 for w in coordinator.workers)

    def test_more_workers_than_items(self, scenario_training, scenario_testing):
        """Test that empty shards are spawned and report zero."""
        coordinator = ShardCoordinator(make_config(num_workers=7), scenario_training, scenario_testing)

        assert coordinator.run() == 4
        assert len(coordinator.workers) == 7
        assert [w.result.correct_count for w in coordinator.workers[5:]] == [0, 0]

    def test_empty_testing_set(self, scenario_training):
        """Test that an empty testing set gives zero."""
        empty = create_synthetic_dataset(num_items=0)
        coordinator = ShardCoordinator(make_config(num_workers=3), scenario_training, empty)

        assert coordinator.run() == 0

    @pytest.mark.parametrize("metric", ["euclidean", "cosine"])
    def test_partition_invariance(self, metric):
        """Test that the total does not depend on the number of workers."""
        training = create_synthetic_dataset(num_items=60, num_classes=3, image_dim=16, seed=1, noise=90.0)
        testing = create_synthetic_dataset(num_items=23, num_classes=3, image_dim=16, seed=2, noise=90.0)

        sequential = ShardWorker(0, training, testing, k=3, metric=resolve_metric(metric))
        expected = sequential.classify_shard(ShardDescriptor(start_index=0, count=testing.size)).correct_count

        totals = []
        for num_workers in [1, 2, 4, 5]:
            config = make_config(num_workers=num_workers, k=3, metric=metric, image_dim=16)
            totals.append(ShardCoordinator(config, training, testing).run())

        assert totals == [expected] * 4

    def test_nonzero_exit_after_result(self, scenario_training, scenario_testing):
        """Test that a failing exit status fails the run even with all results in."""
        coordinator = ShardCoordinator(
            make_config(num_workers=3),
            scenario_training,
            scenario_testing,
            worker_target=exit_nonzero_after_result
        )

        with pytest.raises(WorkerFailure) as exc_info:
            coordinator.run()

        assert exc_info.value.rank == 1
        assert exc_info.value.exitcode == 7
        assert coordinator.workers[1].state == WorkerState.TERMINATED_FAILED
        assert all(w.result is not None for w in coordinator.workers)

    def test_exit_before_result_does_not_hang(self, scenario_training, scenario_testing):
        """Test that a worker dying before its result is reported, not waited on."""
        coordinator = ShardCoordinator(
            make_config(num_workers=2),
            scenario_training,
            scenario_testing,
            worker_target=exit_before_result
        )

        with pytest.raises(WorkerFailure) as exc_info:
            coordinator.run()

        assert exc_info.value.rank == 0
        assert exc_info.value.exitcode == 5
        assert not any(w.process.is_alive() for w in coordinator.workers)

    def test_clean_exit_without_result(self, scenario_training, scenario_testing):
        """Test that a worker closing its channel without a result fails the run."""
        coordinator = ShardCoordinator(
            make_config(num_workers=2),
            scenario_training,
            scenario_testing,
            worker_target=close_without_result
        )

        with pytest.raises(WorkerFailure, match="worker 0"):
            coordinator.run()

    def test_timeout(self, scenario_training, scenario_testing):
        """Test that a hung worker is reported after the timeout and stopped."""
        coordinator = ShardCoordinator(
            make_config(num_workers=2, worker_timeout=1.0),
            scenario_training,
            scenario_testing,
            worker_target=hang
        )

        with pytest.raises(WorkerFailure, match="no result within"):
            coordinator.run()

        assert not any(w.process.is_alive() for w in coordinator.workers)
