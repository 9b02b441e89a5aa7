"""
Test-set partitioner for sharded classification.

Splits the index range [0, N) of the testing dataset into one contiguous
shard per worker. Shard sizes differ by at most one: the first N % P shards
hold one extra item.
"""

from dataclasses import dataclass
from typing import List
import logging


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ShardDescriptor:
    """Half-open range [start_index, start_index + count) of the testing set."""
    start_index: int
    count: int

    def __post_init__(self):
        if self.start_index < 0 or self.count < 0:
            raise ValueError(
                f"shard fields must be non-negative, got "
                f"start_index={self.start_index}, count={self.count}"
            )

    @property
    def end_index(self) -> int:
        return self.start_index + self.count

    def indices(self) -> range:
        return range(self.start_index, self.end_index)


def plan_shards(num_items: int, world_size: int) -> List[ShardDescriptor]:
    """
    Plan one shard per worker.

    Args:
        num_items: Size of the testing set (N >= 0)
        world_size: Number of workers (P >= 1)

    Returns:
        P shards ordered by start_index, disjoint, covering [0, N).
        When P > N the trailing shards are empty.
    """
    if num_items < 0:
        raise ValueError(f"num_items must be >= 0, got {num_items}")
    if world_size < 1:
        raise ValueError(f"world_size must be >= 1, got {world_size}")

    base, remainder = divmod(num_items, world_size)

    shards = []
    start_index = 0
    for rank in range(world_size):
        count = base + 1 if rank < remainder else base
        shards.append(ShardDescriptor(start_index=start_index, count=count))
        start_index += count

    return shards


class TestSetPartitioner:
    """
    Partitions a testing set across workers.

    Each worker "owns" one contiguous shard and classifies only those items.
    """

    __test__ = False  # not a pytest test class

    def __init__(self, num_items: int, world_size: int):
        """
        Args:
            num_items: Number of items in the testing set
            world_size: Number of workers to partition across
        """
        self.num_items = num_items
        self.world_size = world_size
        self.partitions = plan_shards(num_items, world_size)

    def get_partition(self, rank: int) -> ShardDescriptor:
        """Get the shard for a specific worker rank"""
        if rank < 0 or rank >= len(self.partitions):
            raise ValueError(f"Rank {rank} out of range (max: {len(self.partitions)-1})")
        return self.partitions[rank]

    def log_partition_info(self):
        """Log a summary of the partitioning"""
        logger.info(
            f"Partitioned {self.num_items} test items across {self.world_size} workers"
        )
        for rank, shard in enumerate(self.partitions):
            share = shard.count / self.num_items * 100 if self.num_items else 0.0
            logger.info(
                f"  Rank {rank}: [{shard.start_index}, {shard.end_index}) "
                f"{shard.count} items ({share:.1f}%)"
            )

    def __repr__(self):
        return (f"TestSetPartitioner(num_items={self.num_items}, "
                f"world_size={self.world_size})")
