#!/usr/bin/env python3
"""
Train an XOR network and save it, or load the saved one and predict.

Usage:
    python scripts/xor_network.py train
    python scripts/xor_network.py predict
    python scripts/xor_network.py train --model-dir /tmp/models --seed 7

Training stores the parameters under the name ``XOR_TRAINING`` in
``<model-dir>/networks.db``; ``predict`` rebuilds the same 2-3-1 network
and loads them back.
"""

import os
import sys
import argparse
import logging
from datetime import datetime

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from neuralnet.datasets import XOR_DATA, XOR_NETWORK_CONFIG, XOR_TRAINING
from neuralnet.model_persistence import get_store
from neuralnet.network import Network


def build_network(model_dir: str, seed=None) -> Network:
    """Create the XOR network bound to the store in ``model_dir``."""
    return Network(
        training_name=XOR_TRAINING,
        seed=seed,
        show_logs=True,
        store=get_store(model_dir),
        **XOR_NETWORK_CONFIG
    )


def show_predictions(network: Network) -> None:
    """Print the prediction for every XOR row."""
    for example in XOR_DATA:
        output = network.predict(example['inputs'])[0]
        print(
            f"   {example['inputs']} -> {output:.4f} "
            f"(target {example['targets'][0]})"
        )


def train(model_dir: str, seed=None) -> int:
    network = build_network(model_dir, seed)
    start_time = datetime.now()
    print(f"🏋️  Training started at: {start_time:%Y-%m-%d %H:%M:%S}")

    network.train(XOR_DATA)

    elapsed = (datetime.now() - start_time).total_seconds()
    print(f"✅ Trained {network.epochs} epochs in {elapsed:.2f} seconds")
    print(f"   Mean absolute error: {network.evaluate(XOR_DATA):.4f}")
    show_predictions(network)

    network.save_training()
    print(f"💾 Saved as '{network.training_name}' in {model_dir}")
    return 0


def predict(model_dir: str) -> int:
    network = build_network(model_dir)
    if not network.load_training():
        print(f"❌ No saved training '{XOR_TRAINING}' in {model_dir}")
        print("   Run: python scripts/xor_network.py train")
        return 1

    print(f"📂 Loaded '{network.training_name}'")
    show_predictions(network)
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Train or query the XOR demo network",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("command", choices=["train", "predict"])
    parser.add_argument(
        "--model-dir",
        default=os.getenv('MODEL_DIR', 'models'),
        help="Directory holding networks.db",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Seed for the initial weights",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format='%(levelname)s - %(message)s')

    if args.command == "train":
        return train(args.model_dir, args.seed)
    return predict(args.model_dir)


if __name__ == '__main__':
    sys.exit(main())
