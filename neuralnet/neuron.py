"""
neuron.py
~~~~~~~~~

A single dense neuron: weight vector, bias and a shared activation.
"""

from typing import Optional, Sequence, Tuple

import numpy as np

from .activations import Activation
from .exceptions import ShapeMismatchError


class Neuron:
    """
    Weighted sum of its inputs plus a bias, passed through an activation.

    The weight vector length is fixed at construction. Parameters change
    only through ``adjust`` and ``set_parameters``.
    """

    def __init__(
        self,
        input_size: int,
        activation: Activation,
        identifier: Tuple[int, int],
        rng: Optional[np.random.Generator] = None
    ):
        """
        Initialize weights and bias uniformly in [-0.5, 0.5).

        Args:
            input_size: Width of the vector this neuron reads
            activation: Activation shared with the rest of the layer
            identifier: (layer index, position in layer)
            rng: Random generator; a fresh unseeded one if omitted
        """
        rng = rng if rng is not None else np.random.default_rng()
        self.identifier = tuple(identifier)
        self.activation = activation
        self._weights = rng.random(input_size) - 0.5
        self._bias = float(rng.random() - 0.5)

    @property
    def input_size(self) -> int:
        return len(self._weights)

    @property
    def weights(self) -> np.ndarray:
        """Read-only view of the weight vector."""
        view = self._weights.view()
        view.flags.writeable = False
        return view

    @property
    def bias(self) -> float:
        return self._bias

    def activate(self, inputs: Sequence[float]) -> float:
        """
        Compute the neuron's output for one input vector.

        Args:
            inputs: Vector of length ``input_size``

        Returns:
            float: activation(bias + inputs . weights)

        Raises:
            ShapeMismatchError: If the input width is wrong
        """
        if len(inputs) != len(self._weights):
            raise ShapeMismatchError(
                f"Neuron {self.identifier} input width",
                len(self._weights), len(inputs)
            )
        weighted_sum = self._bias + float(np.dot(inputs, self._weights))
        return self.activation.apply(weighted_sum)

    def adjust(self, inputs: Sequence[float], gradient: float) -> None:
        """Shift the bias by ``gradient`` and each weight by input * gradient."""
        self._bias += gradient
        self._weights = self._weights + np.asarray(inputs, dtype=float) * gradient

    def set_parameters(self, weights: Sequence[float], bias: float) -> None:
        """
        Overwrite weights and bias.

        Raises:
            ShapeMismatchError: If ``weights`` has a different length
        """
        if len(weights) != len(self._weights):
            raise ShapeMismatchError(
                f"Neuron {self.identifier} weight count",
                len(self._weights), len(weights)
            )
        self._weights = np.array(weights, dtype=float)
        self._bias = float(bias)

    def __repr__(self) -> str:
        return (
            f"Neuron(identifier={self.identifier}, "
            f"inputs={self.input_size}, activation={self.activation.name})"
        )
