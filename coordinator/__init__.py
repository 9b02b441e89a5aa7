"""
Coordinator module for sharded kNN classification.

The coordinator is responsible for:
- Run configuration and command-line decoding
- Partitioning the testing set into shards
- Spawning workers and delivering their descriptors
- Collecting results and checking worker exit status
"""

__version__ = "0.1.0"
