"""
Coordinator for sharded kNN classification.

Spawns one worker process per planned shard, hands each its descriptor over
a dedicated one-way pipe, collects one result per worker over a second
dedicated pipe, waits for every worker to exit and sums the results.

Collection never blocks forever on a dead worker: each wait covers both the
worker's result pipe and its process sentinel, so a worker that exits
without a result is reported instead of hanging the run.
"""

import enum
import logging
import time
from dataclasses import dataclass
from multiprocessing.connection import Connection, wait
from typing import Callable, List, Optional

import torch.multiprocessing as mp

from communication.channel import (
    RESULT_SIZE,
    decode_result,
    encode_descriptor,
    recv_exact,
    send_message,
)
from coordinator.config import ClassifierConfig
from core.dataset import Dataset
from core.errors import ChannelIOError, ResourceError, WorkerFailure
from core.partitioner import ShardDescriptor, TestSetPartitioner
from worker.task import WorkerResult, run_worker


logger = logging.getLogger(__name__)


class WorkerState(enum.Enum):
    """Lifecycle of a worker as seen by the coordinator."""
    SPAWNED = "spawned"
    DESCRIPTOR_SENT = "descriptor_sent"
    RESULT_RECEIVED = "result_received"
    TERMINATED_SUCCESS = "terminated_success"
    TERMINATED_FAILED = "terminated_failed"


@dataclass
class WorkerHandle:
    """A spawned worker and the coordinator's ends of its channels."""
    rank: int
    shard: ShardDescriptor
    process: mp.Process
    descriptor_conn: Optional[Connection]
    result_conn: Optional[Connection]
    state: WorkerState = WorkerState.SPAWNED
    result: Optional[WorkerResult] = None

    def close_channels(self):
        for conn in (self.descriptor_conn, self.result_conn):
            if conn is not None:
                conn.close()
        self.descriptor_conn = None
        self.result_conn = None


class ShardCoordinator:
    """
    Distributes a testing set across worker processes and aggregates
    their correct-prediction counts.

    The datasets are moved into shared memory once and handed to every
    worker by reference. The total is computed by this coordinator alone,
    as a fold over the received results.
    """

    def __init__(
        self,
        config: ClassifierConfig,
        training: Dataset,
        testing: Dataset,
        worker_target: Callable = run_worker
    ):
        """
        Args:
            config: Validated run configuration
            training: Training dataset
            testing: Testing dataset
            worker_target: Process entry point with run_worker's signature
        """
        self.config = config
        self.training = training.share_memory()
        self.testing = testing.share_memory()
        self.worker_target = worker_target
        self.metric = config.resolved_metric()

        self.context = mp.get_context(config.start_method)
        self.partitioner: Optional[TestSetPartitioner] = None
        self.workers: List[WorkerHandle] = []

    def plan(self) -> List[ShardDescriptor]:
        """Partition the testing set, one shard per worker."""
        self.partitioner = TestSetPartitioner(self.testing.size, self.config.num_workers)
        self.partitioner.log_partition_info()
        return self.partitioner.partitions

    def spawn_workers(self, shards: List[ShardDescriptor]):
        """
        Start one worker per shard, in shard order, and send its descriptor.

        Raises:
            ResourceError: If a pipe or process cannot be created
            ChannelIOError: If a descriptor cannot be written
        """
        logger.debug("Creating workers...")

        for rank, shard in enumerate(shards):
            try:
                descriptor_recv, descriptor_send = self.context.Pipe(duplex=False)
            except OSError as e:
                raise ResourceError(f"creating descriptor pipe for worker {rank}: {e}") from e
            try:
                result_recv, result_send = self.context.Pipe(duplex=False)
            except OSError as e:
                descriptor_recv.close()
                descriptor_send.close()
                raise ResourceError(f"creating result pipe for worker {rank}: {e}") from e

            process = self.context.Process(
                target=self.worker_target,
                args=(
                    rank,
                    self.training,
                    self.testing,
                    self.config.k,
                    self.metric,
                    descriptor_recv,
                    result_send,
                    self.config.log_level,
                ),
                name=f"knn-worker-{rank}",
                daemon=True,
            )
            handle = WorkerHandle(
                rank=rank,
                shard=shard,
                process=process,
                descriptor_conn=descriptor_send,
                result_conn=result_recv,
            )

            try:
                process.start()
            except OSError as e:
                for conn in (descriptor_recv, descriptor_send, result_recv, result_send):
                    conn.close()
                raise ResourceError(f"starting worker {rank}: {e}") from e

            # The worker owns these ends now; closing ours lets a dead
            # worker's result channel read as EOF.
            descriptor_recv.close()
            result_send.close()
            self.workers.append(handle)

            try:
                send_message(handle.descriptor_conn, encode_descriptor(shard))
            except ChannelIOError as e:
                raise ChannelIOError(f"sending descriptor to worker {rank}: {e}") from e
            finally:
                handle.descriptor_conn.close()
                handle.descriptor_conn = None
            handle.state = WorkerState.DESCRIPTOR_SENT

            logger.debug(
                f"Worker {rank} (pid {process.pid}) assigned "
                f"[{shard.start_index}, {shard.end_index})"
            )

    def _receive_result(self, handle: WorkerHandle) -> WorkerResult:
        """
        Wait for one worker's result, or for evidence that it will never come.

        Raises:
            WorkerFailure: If the worker exits or closes its channel without
                a result, or the configured timeout expires
            ChannelIOError: If the result cannot be decoded
        """
        timeout = self.config.worker_timeout
        ready = wait([handle.result_conn, handle.process.sentinel], timeout)
        if not ready:
            raise WorkerFailure(handle.rank, f"no result within {timeout}s")

        # A worker may write its result and exit between two checks, so the
        # channel is polled even when only the sentinel fired.
        if handle.result_conn not in ready and not handle.result_conn.poll():
            handle.process.join()
            raise WorkerFailure(
                handle.rank,
                f"exited with status {handle.process.exitcode} before sending a result",
                exitcode=handle.process.exitcode,
            )

        try:
            payload = recv_exact(handle.result_conn, RESULT_SIZE)
        except ChannelIOError as e:
            # Closed without a full record: the worker is gone or going
            handle.process.join(timeout)
            raise WorkerFailure(
                handle.rank,
                f"no result received ({e})",
                exitcode=handle.process.exitcode,
            ) from e

        correct_count = decode_result(payload)
        if correct_count > handle.shard.count:
            raise ChannelIOError(
                f"worker {handle.rank} reported {correct_count} correct "
                f"for a shard of {handle.shard.count}"
            )
        return WorkerResult(rank=handle.rank, correct_count=correct_count)

    def collect_results(self) -> int:
        """
        Collect exactly one result per worker and fold them into the total.

        Returns:
            Sum of correct predictions over all shards
        """
        for handle in self.workers:
            handle.result = self._receive_result(handle)
            handle.state = WorkerState.RESULT_RECEIVED
            handle.result_conn.close()
            handle.result_conn = None

        return sum(handle.result.correct_count for handle in self.workers)

    def join_workers(self):
        """
        Wait for every worker to exit and check its status.

        Raises:
            WorkerFailure: For the first worker with a non-zero exit code
        """
        logger.debug("Waiting for workers...")

        failures = []
        for handle in self.workers:
            handle.process.join(self.config.worker_timeout)
            exitcode = handle.process.exitcode
            if exitcode == 0:
                handle.state = WorkerState.TERMINATED_SUCCESS
            else:
                handle.state = WorkerState.TERMINATED_FAILED
                failures.append(handle)

        if failures:
            handle = failures[0]
            status = "did not exit" if handle.process.exitcode is None \
                else f"exited with status {handle.process.exitcode}"
            raise WorkerFailure(handle.rank, status, exitcode=handle.process.exitcode)

    def shutdown(self):
        """Best-effort cleanup: stop live workers and close every channel."""
        for handle in self.workers:
            handle.close_channels()
            if handle.process.is_alive():
                logger.debug(f"Terminating worker {handle.rank}")
                handle.process.terminate()
            handle.process.join()

    def run(self) -> int:
        """
        Classify the whole testing set.

        Returns:
            Total number of correct predictions, only after every worker
            delivered its result and exited successfully

        Raises:
            ResourceError, ChannelIOError, WorkerFailure
        """
        start_time = time.time()
        try:
            shards = self.plan()
            self.spawn_workers(shards)
            total_correct = self.collect_results()
            self.join_workers()
        except BaseException:
            self.shutdown()
            raise

        logger.debug(
            f"Number of correct predictions: {total_correct}/{self.testing.size} "
            f"({time.time() - start_time:.2f}s, {len(self.workers)} workers)"
        )
        return total_correct
