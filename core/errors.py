"""
Error types for sharded kNN classification.

Every failure is fatal for the whole run. The CLI maps any
KnnShardError to a one-line message on stderr and exit status 1.
"""

from typing import Optional


class KnnShardError(Exception):
    """Base class for all run-aborting errors."""


class ConfigError(KnnShardError):
    """Bad option value or unrecognized distance metric."""


class LoadError(KnnShardError):
    """Dataset file missing, unreadable or malformed."""


class ResourceError(KnnShardError):
    """Pipe or process creation failed."""


class ChannelIOError(KnnShardError):
    """Descriptor write or result read failed on a worker channel."""


class WorkerFailure(KnnShardError):
    """A worker terminated abnormally or never delivered its result."""

    def __init__(self, rank: int, message: str, exitcode: Optional[int] = None):
        self.rank = rank
        self.exitcode = exitcode
        super().__init__(f"worker {rank}: {message}")
