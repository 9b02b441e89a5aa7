"""
Dataset loading for kNN classification.

Binary layout (little-endian):
    int32           number of items
    then per item:
        uint8       label
        uint8[dim]  pixel values (dim = 784 for 28x28 images)

Datasets are immutable once loaded. Both tensors can be moved into shared
memory so that worker processes receive references instead of copies.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Union
import logging

import numpy as np
import torch

from core.errors import LoadError


logger = logging.getLogger(__name__)

DEFAULT_IMAGE_DIM = 28 * 28
HEADER_DTYPE = np.dtype('<i4')


@dataclass(frozen=True)
class Image:
    """A single feature vector and its ground-truth label."""
    features: torch.Tensor
    label: int


@dataclass(frozen=True)
class Dataset:
    """
    Ordered, immutable collection of labeled feature vectors.

    Attributes:
        features: Tensor of shape (size, dim), float32
        labels: Tensor of shape (size,), int64
    """
    features: torch.Tensor
    labels: torch.Tensor

    def __post_init__(self):
        if self.features.dim() != 2:
            raise ValueError(f"features must be 2-D, got shape {tuple(self.features.shape)}")
        if self.labels.shape != (self.features.shape[0],):
            raise ValueError(
                f"labels shape {tuple(self.labels.shape)} does not match "
                f"{self.features.shape[0]} items"
            )

    @property
    def size(self) -> int:
        return self.features.shape[0]

    @property
    def dim(self) -> int:
        return self.features.shape[1]

    def __len__(self) -> int:
        return self.size

    def __getitem__(self, index: int) -> Image:
        return Image(features=self.features[index], label=int(self.labels[index]))

    def __iter__(self) -> Iterator[Image]:
        for i in range(self.size):
            yield self[i]

    def share_memory(self) -> 'Dataset':
        """Move both tensors to shared memory (in place) and return self."""
        # Zero-byte storages cannot be mapped
        for tensor in (self.features, self.labels):
            if tensor.numel() > 0:
                tensor.share_memory_()
        return self


def load_dataset(path: Union[str, Path], image_dim: int = DEFAULT_IMAGE_DIM) -> Dataset:
    """
    Load a dataset from its binary file.

    Args:
        path: Path to the dataset file
        image_dim: Number of pixel values per record

    Returns:
        Dataset with float32 features and int64 labels

    Raises:
        LoadError: If the file is missing, unreadable or malformed
    """
    path = Path(path)
    try:
        raw = path.read_bytes()
    except OSError as e:
        raise LoadError(f"the data set in {path} could not be loaded: {e.strerror or e}") from e

    if len(raw) < HEADER_DTYPE.itemsize:
        raise LoadError(f"the data set in {path} could not be loaded: truncated header")

    num_items = int(np.frombuffer(raw, dtype=HEADER_DTYPE, count=1)[0])
    if num_items < 0:
        raise LoadError(f"the data set in {path} could not be loaded: negative item count {num_items}")

    record_size = 1 + image_dim
    body = raw[HEADER_DTYPE.itemsize:]
    expected = num_items * record_size
    if len(body) != expected:
        raise LoadError(
            f"the data set in {path} could not be loaded: expected {expected} bytes "
            f"for {num_items} items, found {len(body)}"
        )

    records = np.frombuffer(body, dtype=np.uint8).reshape(num_items, record_size)
    # torch.tensor copies, so the dataset owns storage that can be shared
    labels = torch.tensor(records[:, 0], dtype=torch.int64)
    features = torch.tensor(records[:, 1:], dtype=torch.float32)

    logger.debug(f"Loaded {num_items} items (dim={image_dim}) from {path}")
    return Dataset(features=features, labels=labels)


def save_dataset(dataset: Dataset, path: Union[str, Path]):
    """
    Write a dataset in the binary layout read by load_dataset.

    Labels and pixel values must be integers in [0, 255].
    """
    features = dataset.features.numpy()
    labels = dataset.labels.numpy()

    if features.size and (features.min() < 0 or features.max() > 255):
        raise ValueError("pixel values must fit in uint8")
    if labels.size and (labels.min() < 0 or labels.max() > 255):
        raise ValueError("labels must fit in uint8")

    records = np.empty((dataset.size, 1 + dataset.dim), dtype=np.uint8)
    records[:, 0] = labels
    records[:, 1:] = features

    with open(path, 'wb') as f:
        f.write(np.array([dataset.size], dtype=HEADER_DTYPE).tobytes())
        f.write(records.tobytes())


def create_synthetic_dataset(
    num_items: int,
    num_classes: int = 10,
    image_dim: int = DEFAULT_IMAGE_DIM,
    seed: int = 42,
    noise: float = 40.0
) -> Dataset:
    """
    Create a deterministic clustered dataset for testing.

    Each class has a random prototype image; items are noisy copies of the
    prototype of their class, clipped to the uint8 pixel range.

    Args:
        num_items: Number of items
        num_classes: Number of distinct labels
        image_dim: Pixels per item
        seed: Random seed
        noise: Standard deviation of the per-pixel noise

    Returns:
        Dataset whose features are whole numbers in [0, 255]
    """
    generator = torch.Generator().manual_seed(seed)

    prototypes = torch.randint(0, 256, (num_classes, image_dim), generator=generator).float()
    labels = torch.randint(0, num_classes, (num_items,), generator=generator)
    jitter = torch.randn((num_items, image_dim), generator=generator) * noise

    features = (prototypes[labels] + jitter).round().clamp(0, 255)
    return Dataset(features=features, labels=labels.long())
