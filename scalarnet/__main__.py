#!/usr/bin/env python3
"""
Train a network on XOR and print its predictions.

Usage:
    python -m scalarnet [--epochs N] [--hidden-layers N]
                        [--learning-rate R] [--seed S]
"""

import argparse
import logging
import sys

from scalarnet.datasets import XOR_DATASET
from scalarnet.network import Network

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog='scalarnet',
        description='Train a scalar neural network on the XOR truth table.'
    )
    parser.add_argument('--epochs', type=int, default=100000,
                        help='passes over the dataset (default: 100000)')
    parser.add_argument('--hidden-layers', type=int, default=1,
                        help='number of hidden layers (default: 1)')
    parser.add_argument('--learning-rate', type=float, default=0.5,
                        help='weight update step size (default: 0.5)')
    parser.add_argument('--seed', type=int, default=None,
                        help='seed for the initial weights')
    parser.add_argument('--verbose', action='store_true',
                        help='log training progress')
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Main driver function."""
    args = parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        net = Network(
            2, 1,
            hidden_layers_count=args.hidden_layers,
            learning_rate=args.learning_rate,
            rng=args.seed
        )
        net.train(XOR_DATASET, epochs=args.epochs)
    except ValueError as e:
        logger.error(f"Invalid arguments: {e}")
        return 2

    for inputs, _ in XOR_DATASET:
        prediction = net.predict(inputs)
        print(f"{inputs[0]} XOR {inputs[1]} = {prediction[0]:.6f}")

    return 0


if __name__ == '__main__':
    sys.exit(main())
