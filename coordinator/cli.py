"""
Command-line entry point for sharded kNN classification.

Usage:
    knn-classify [-v] [-K num] [-d metric] [-p num_procs] training_file testing_file

Prints only the number of correctly classified test images on stdout.
Any failure prints one line to stderr and exits with status 1.
"""

import argparse
import logging
import sys
from typing import List, Optional

from coordinator.config import ClassifierConfig
from coordinator.coordinator import ShardCoordinator
from core.dataset import load_dataset
from core.errors import ConfigError, KnnShardError
from core.logging_setup import setup_logging


logger = logging.getLogger(__name__)


class _ArgumentParser(argparse.ArgumentParser):
    """Reports malformed options as ConfigError instead of exiting with 2."""

    def error(self, message):
        self.print_usage(sys.stderr)
        raise ConfigError(message)


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog='knn-classify',
        description='Classify a testing set against a training set with kNN, '
                    'split across worker processes'
    )
    parser.add_argument(
        '-K',
        dest='k',
        type=int,
        default=1,
        help='Number of neighbors (default: 1)'
    )
    parser.add_argument(
        '-d',
        dest='metric',
        type=str,
        default='euclidean',
        help='Distance metric, "euclidean" or "cosine" or an initial substring'
    )
    parser.add_argument(
        '-p',
        dest='num_workers',
        type=int,
        default=1,
        help='Number of worker processes (default: 1)'
    )
    parser.add_argument(
        '-v',
        dest='verbose',
        action='store_true',
        help='Print debugging information on stderr'
    )
    parser.add_argument('training_file', help='Binary training image/label data')
    parser.add_argument('testing_file', help='Binary testing image/label data')
    return parser


def parse_config(argv: Optional[List[str]] = None) -> ClassifierConfig:
    """Decode options into a validated config."""
    args = build_parser().parse_args(argv)
    return ClassifierConfig(
        training_path=args.training_file,
        testing_path=args.testing_file,
        k=args.k,
        metric=args.metric,
        num_workers=args.num_workers,
        verbose=args.verbose,
    )


def classify(config: ClassifierConfig) -> int:
    """Load both datasets and run the coordinator."""
    logger.debug("Loading datasets...")
    training = load_dataset(config.training_path, image_dim=config.image_dim)
    testing = load_dataset(config.testing_path, image_dim=config.image_dim)
    logger.debug(f"Training items: {training.size}, testing items: {testing.size}")

    coordinator = ShardCoordinator(config, training, testing)
    return coordinator.run()


def main(argv: Optional[List[str]] = None) -> int:
    """
    Run one classification.

    Returns:
        Process exit status: 0 on success, 1 on any error
    """
    try:
        config = parse_config(argv)
        setup_logging(config.log_level)
        logger.debug(f"Configuration: {config.to_dict()}")

        total_correct = classify(config)
    except KnnShardError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    print(total_correct)
    return 0


if __name__ == "__main__":
    sys.exit(main())
