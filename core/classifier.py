"""
k-nearest-neighbor classification engine.

Distances are computed from one query against every training item at once.
Squared differences and dot products of whole-number pixels are exact in
float32; accumulation happens in float64 so that ties are not broken by
rounding.
"""

import math
from typing import Callable, Dict

import torch
import torch.nn.functional as F

from core.dataset import Dataset
from core.errors import ConfigError


DistanceFn = Callable[[torch.Tensor, torch.Tensor], torch.Tensor]


def distance_euclidean(training_features: torch.Tensor, query: torch.Tensor) -> torch.Tensor:
    """
    Euclidean distance between a query and every training row.

    Args:
        training_features: Tensor of shape (n, dim)
        query: Tensor of shape (dim,)

    Returns:
        Float64 tensor of shape (n,)
    """
    diff = training_features - query
    return (diff * diff).sum(dim=1, dtype=torch.float64).sqrt()


def distance_cosine(training_features: torch.Tensor, query: torch.Tensor) -> torch.Tensor:
    """
    Angular distance 2 * acos(cos_sim) / pi, in [0, 2].

    Zero vectors have similarity 0 with everything (distance 1).
    """
    training_features = training_features.double()
    query = query.double()
    similarity = F.cosine_similarity(training_features, query.unsqueeze(0), dim=1, eps=1e-12)
    similarity = similarity.clamp(-1.0, 1.0)
    return 2.0 * torch.acos(similarity) / math.pi


# Prefix matching walks this in order, so "" resolves to euclidean.
METRICS: Dict[str, DistanceFn] = {
    'euclidean': distance_euclidean,
    'cosine': distance_cosine,
}


def resolve_metric(name: str) -> DistanceFn:
    """
    Resolve a metric from a case-sensitive prefix of its canonical name.

    Raises:
        ConfigError: If no canonical name starts with `name`
    """
    for canonical, fn in METRICS.items():
        if canonical.startswith(name):
            return fn
    raise ConfigError(
        f"unknown distance metric '{name}': expected an initial substring "
        f"of {' or '.join(repr(m) for m in METRICS)}"
    )


def metric_name(metric: DistanceFn) -> str:
    """Canonical name of a metric function."""
    for canonical, fn in METRICS.items():
        if fn is metric:
            return canonical
    return getattr(metric, '__name__', repr(metric))


def knn_predict(
    training: Dataset,
    query: torch.Tensor,
    k: int,
    metric: DistanceFn = distance_euclidean
) -> int:
    """
    Predict the label of `query` by majority vote of its k nearest neighbors.

    Equal distances keep training order, and a tied vote goes to the
    smallest label. If k exceeds the training size every item votes.

    Args:
        training: Training dataset
        query: Feature vector of shape (dim,)
        k: Number of neighbors (>= 1)
        metric: Distance function

    Returns:
        Predicted label
    """
    if k < 1:
        raise ValueError(f"k must be >= 1, got {k}")
    if training.size == 0:
        raise ValueError("cannot classify against an empty training set")
    if query.shape != (training.dim,):
        raise ValueError(
            f"query has shape {tuple(query.shape)}, expected ({training.dim},)"
        )

    distances = metric(training.features, query)
    nearest = torch.argsort(distances, stable=True)[:k]

    votes = torch.bincount(training.labels[nearest])
    # argmax returns the first maximum, i.e. the smallest tied label
    return int(torch.argmax(votes))
