"""
Run configuration for sharded kNN classification.

Validation happens at construction, before any dataset is loaded.
"""

from dataclasses import dataclass, asdict
from typing import Optional, Dict, Any

import torch.multiprocessing as mp

from core.classifier import DistanceFn, metric_name, resolve_metric
from core.dataset import DEFAULT_IMAGE_DIM
from core.errors import ConfigError


@dataclass
class ClassifierConfig:
    """
    Configuration for one classification run.

    Holds the dataset paths, kNN parameters, parallelism and
    operational settings.
    """

    # Datasets
    training_path: str
    testing_path: str
    image_dim: int = DEFAULT_IMAGE_DIM

    # kNN parameters
    k: int = 1
    metric: str = "euclidean"  # any prefix of "euclidean" or "cosine"

    # Parallelism
    num_workers: int = 1
    start_method: Optional[str] = None  # "fork", "spawn", "forkserver" or platform default
    worker_timeout: Optional[float] = None  # seconds per result wait, None waits for exit

    # Logging
    verbose: bool = False

    def __post_init__(self):
        """Validate every field."""
        if self.k < 1:
            raise ConfigError(f"K must be a positive integer, got {self.k}")
        if self.num_workers < 1:
            raise ConfigError(f"number of workers must be at least 1, got {self.num_workers}")
        if self.image_dim < 1:
            raise ConfigError(f"image dimension must be at least 1, got {self.image_dim}")
        if self.worker_timeout is not None and self.worker_timeout <= 0:
            raise ConfigError(f"worker timeout must be positive, got {self.worker_timeout}")
        if self.start_method is not None and self.start_method not in mp.get_all_start_methods():
            raise ConfigError(
                f"start method '{self.start_method}' not available; "
                f"choose from {mp.get_all_start_methods()}"
            )
        # Raises ConfigError for unknown prefixes
        resolve_metric(self.metric)

    @property
    def log_level(self) -> str:
        return "DEBUG" if self.verbose else "WARNING"

    def resolved_metric(self) -> DistanceFn:
        """Distance function selected by the metric prefix."""
        return resolve_metric(self.metric)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert config to dictionary.

        The metric is reported by its canonical name.
        """
        config_dict = asdict(self)
        config_dict['metric'] = metric_name(self.resolved_metric())
        return config_dict

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> 'ClassifierConfig':
        """Create config from dictionary."""
        return cls(**config_dict)

    def __repr__(self) -> str:
        return (
            f"ClassifierConfig(training='{self.training_path}', "
            f"testing='{self.testing_path}', k={self.k}, "
            f"metric='{self.metric}', workers={self.num_workers})"
        )
