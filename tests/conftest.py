"""
Shared fixtures: small datasets written to temporary files.
"""

import pytest
import torch

from core.dataset import DEFAULT_IMAGE_DIM, Dataset, save_dataset


def uniform_dataset(values, labels, dim=DEFAULT_IMAGE_DIM) -> Dataset:
    """Dataset whose i-th image has every pixel equal to values[i]."""
    features = torch.tensor(values, dtype=torch.float32).unsqueeze(1).repeat(1, dim)
    return Dataset(features=features, labels=torch.tensor(labels, dtype=torch.int64))


@pytest.fixture
def scenario_training():
    """Four training images, one per label, far apart in pixel space."""
    return uniform_dataset([0, 80, 160, 240], [0, 1, 2, 3])


@pytest.fixture
def scenario_testing():
    """Five testing images; the last is labeled 3 but sits next to label 0."""
    return uniform_dataset([5, 85, 150, 235, 10], [0, 1, 2, 3, 3])


@pytest.fixture
def scenario_files(tmp_path, scenario_training, scenario_testing):
    """Paths of the scenario datasets on disk."""
    training_path = tmp_path / "training.bin"
    testing_path = tmp_path / "testing.bin"
    save_dataset(scenario_training, training_path)
    save_dataset(scenario_testing, testing_path)
    return str(training_path), str(testing_path)
