#!/usr/bin/env python3
"""
Train a single binary-step neuron on the AND truth table.

Usage:
    python scripts/and_network.py
    python scripts/and_network.py --epochs 20 --seed 3

Nothing is saved; the script prints the weights the perceptron rule
settles on and the classification of every row.
"""

import os
import sys
import argparse

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from neuralnet.datasets import AND_DATA, AND_NETWORK_CONFIG, AND_TRAINING
from neuralnet.network import Network


def main() -> int:
    parser = argparse.ArgumentParser(description="Train the AND perceptron")
    parser.add_argument("--epochs", type=int, default=AND_NETWORK_CONFIG['epochs'])
    parser.add_argument("--seed", type=int, default=None)
    args = parser.parse_args()

    config = {**AND_NETWORK_CONFIG, 'epochs': args.epochs}
    network = Network(
        training_name=AND_TRAINING,
        seed=args.seed,
        **config
    )
    errors = network.train(AND_DATA)

    neuron = network.layers[0].neurons[0]
    print(f"🧮 Trained {network.epochs} epochs, final mean error {errors[-1]:.2f}")
    print(f"   weights={neuron.weights.tolist()} bias={neuron.bias:.4f}")

    correct = 0
    for example in AND_DATA:
        output = network.predict(example['inputs'])[0]
        ok = output == example['targets'][0]
        correct += ok
        print(f"   {example['inputs']} -> {output:.0f} {'✅' if ok else '❌'}")

    print(f"   {correct}/{len(AND_DATA)} rows correct")
    return 0 if correct == len(AND_DATA) else 1


if __name__ == '__main__':
    sys.exit(main())
