"""
Worker task for sharded kNN classification.

Each worker process receives exactly one shard descriptor on its inbound
channel, classifies every test item in the shard against the full training
set, sends exactly one result on its outbound channel and exits.
"""

import sys
import time
import logging
from dataclasses import dataclass
from multiprocessing.connection import Connection
from typing import Dict

import torch

from communication.channel import (
    DESCRIPTOR_SIZE,
    decode_descriptor,
    encode_result,
    recv_exact,
    send_message,
)
from core.classifier import DistanceFn, knn_predict
from core.dataset import Dataset
from core.errors import ChannelIOError
from core.logging_setup import setup_logging
from core.partitioner import ShardDescriptor


logger = logging.getLogger(__name__)

WORKER_EXIT_OK = 0
WORKER_EXIT_CHANNEL_ERROR = 3
WORKER_EXIT_TASK_ERROR = 4


@dataclass(frozen=True)
class WorkerResult:
    """Number of correct predictions in one worker's shard."""
    rank: int
    correct_count: int


class ShardWorker:
    """
    Classifies one shard of the testing set.

    The training and testing datasets are shared read-only; the worker
    never modifies them.
    """

    def __init__(
        self,
        rank: int,
        training: Dataset,
        testing: Dataset,
        k: int,
        metric: DistanceFn
    ):
        """
        Args:
            rank: Worker rank (0 to world_size-1)
            training: Full training dataset
            testing: Full testing dataset
            k: Number of neighbors
            metric: Distance function
        """
        self.rank = rank
        self.training = training
        self.testing = testing
        self.k = k
        self.metric = metric

        self.stats: Dict[str, float] = {
            'classify_time': 0.0,
            'items': 0,
        }

    def classify_shard(self, shard: ShardDescriptor) -> WorkerResult:
        """
        Classify every item in the shard and count correct predictions.

        Raises:
            ValueError: If the shard lies outside the testing set
        """
        if shard.end_index > self.testing.size:
            raise ValueError(
                f"shard [{shard.start_index}, {shard.end_index}) exceeds "
                f"testing set of {self.testing.size} items"
            )

        start_time = time.time()
        correct = 0
        for index in shard.indices():
            image = self.testing[index]
            predicted = knn_predict(self.training, image.features, self.k, self.metric)
            if predicted == image.label:
                correct += 1

        self.stats['classify_time'] += time.time() - start_time
        self.stats['items'] += shard.count

        logger.debug(
            f"Worker {self.rank}: {correct}/{shard.count} correct in "
            f"[{shard.start_index}, {shard.end_index}) "
            f"({self.stats['classify_time']:.3f}s)"
        )
        return WorkerResult(rank=self.rank, correct_count=correct)


def serve_shard(
    rank: int,
    training: Dataset,
    testing: Dataset,
    k: int,
    metric: DistanceFn,
    inbound: Connection,
    outbound: Connection
) -> int:
    """
    Run one descriptor-in, result-out exchange.

    Closes both channel ends before returning.

    Returns:
        Worker exit code
    """
    try:
        try:
            shard = decode_descriptor(recv_exact(inbound, DESCRIPTOR_SIZE))
        except ChannelIOError as e:
            logger.error(f"Worker {rank}: reading descriptor: {e}")
            return WORKER_EXIT_CHANNEL_ERROR
        finally:
            inbound.close()

        worker = ShardWorker(rank, training, testing, k, metric)
        try:
            result = worker.classify_shard(shard)
        except (ValueError, RuntimeError) as e:
            logger.error(f"Worker {rank}: classifying shard: {e}")
            return WORKER_EXIT_TASK_ERROR

        try:
            send_message(outbound, encode_result(result.correct_count))
        except ChannelIOError as e:
            logger.error(f"Worker {rank}: writing result: {e}")
            return WORKER_EXIT_CHANNEL_ERROR

        return WORKER_EXIT_OK
    finally:
        outbound.close()


def run_worker(
    rank: int,
    training: Dataset,
    testing: Dataset,
    k: int,
    metric: DistanceFn,
    inbound: Connection,
    outbound: Connection,
    log_level: str = "WARNING"
):
    """Process entry point: serve one shard and exit with its status code."""
    setup_logging(log_level)
    # Avoid thread over-subscription across P worker processes
    torch.set_num_threads(1)

    sys.exit(serve_shard(rank, training, testing, k, metric, inbound, outbound))
