"""
Worker module for sharded kNN classification.

Workers are the compute processes that:
- Receive one shard descriptor from the coordinator
- Classify every test item in that shard against the training set
- Report a single correct-prediction count back
"""

__version__ = "0.1.0"
