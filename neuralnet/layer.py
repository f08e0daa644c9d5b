"""
layer.py
~~~~~~~~

An ordered group of neurons reading the same input vector.
"""

from typing import List, Optional, Sequence

import numpy as np

from .activations import Activation
from .exceptions import ShapeMismatchError
from .neuron import Neuron


class Layer:
    """Fully connected layer; owns its neurons and their shared activation."""

    def __init__(
        self,
        num_neurons: int,
        input_size: int,
        activation: Activation,
        identifier: int,
        rng: Optional[np.random.Generator] = None
    ):
        self.identifier = identifier
        self.input_size = input_size
        self.activation = activation
        self.neurons: List[Neuron] = [
            Neuron(input_size, activation, (identifier, i), rng)
            for i in range(num_neurons)
        ]

    def __len__(self) -> int:
        return len(self.neurons)

    def forward(self, inputs: Sequence[float]) -> List[float]:
        """Return every neuron's output for ``inputs``, in neuron order."""
        if len(inputs) != self.input_size:
            raise ShapeMismatchError(
                f"Layer {self.identifier} input width",
                self.input_size, len(inputs)
            )
        return [neuron.activate(inputs) for neuron in self.neurons]

    def __repr__(self) -> str:
        return (
            f"Layer(identifier={self.identifier}, neurons={len(self.neurons)}, "
            f"inputs={self.input_size}, activation={self.activation.name})"
        )
