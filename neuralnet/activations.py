"""
activations.py
~~~~~~~~~~~~~~

Activation functions paired with their derivatives.

Every derivative is expressed in terms of the activation's *output*, not the
weighted sum that produced it, so callers pass the post-activation value.
A single instance is shared by every neuron in a layer.
"""

import math
from abc import ABC, abstractmethod
from typing import Callable, Dict, Union

from .exceptions import ConfigurationError


class Activation(ABC):
    """Scalar activation with a derivative computed from its output."""

    name: str = "activation"

    @abstractmethod
    def apply(self, x: float) -> float:
        """Map a weighted sum to the neuron's output."""
        pass

    @abstractmethod
    def derivative_from_output(self, y: float) -> float:
        """Slope of the activation, given the value ``apply`` returned."""
        pass

    def __call__(self, x: float) -> float:
        return self.apply(x)

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class Sigmoid(Activation):
    """Logistic sigmoid: 1 / (1 + e^-x)."""

    name = "sigmoid"

    def apply(self, x: float) -> float:
        # Split on sign so math.exp never overflows
        if x >= 0:
            return 1.0 / (1.0 + math.exp(-x))
        z = math.exp(x)
        return z / (1.0 + z)

    def derivative_from_output(self, y: float) -> float:
        return y * (1.0 - y)


class BinaryStep(Activation):
    """
    Heaviside step: 1 for x >= 0, otherwise 0.

    The derivative is reported as 1 so the update reduces to the
    perceptron learning rule.
    """

    name = "binary_step"

    def apply(self, x: float) -> float:
        return 1.0 if x >= 0 else 0.0

    def derivative_from_output(self, y: float) -> float:
        return 1.0


class Tanh(Activation):
    """Hyperbolic tangent."""

    name = "tanh"

    def apply(self, x: float) -> float:
        return math.tanh(x)

    def derivative_from_output(self, y: float) -> float:
        return 1.0 - y * y


class ReLU(Activation):
    """Rectified linear unit."""

    name = "relu"

    def apply(self, x: float) -> float:
        return x if x > 0 else 0.0

    def derivative_from_output(self, y: float) -> float:
        return 1.0 if y > 0 else 0.0


class FunctionActivation(Activation):
    """
    Wraps a plain ``(function, derivative)`` pair.

    Args:
        function: Maps the weighted sum to an output.
        derivative: Maps that output to the activation's slope.
        name: Label recorded in saved metadata.
    """

    def __init__(
        self,
        function: Callable[[float], float],
        derivative: Callable[[float], float],
        name: str = "custom"
    ):
        self.function = function
        self.derivative = derivative
        self.name = name

    def apply(self, x: float) -> float:
        return self.function(x)

    def derivative_from_output(self, y: float) -> float:
        return self.derivative(y)

    def __repr__(self) -> str:
        return f"FunctionActivation(name={self.name!r})"


ACTIVATIONS: Dict[str, Activation] = {
    activation.name: activation
    for activation in (Sigmoid(), BinaryStep(), Tanh(), ReLU())
}

DEFAULT_ACTIVATION = "sigmoid"


def get_activation(
    activation: Union[str, Activation, None] = None
) -> Activation:
    """
    Resolve an activation by name, or pass an instance through.

    Args:
        activation: Registry name, ``Activation`` instance, or None for
            the default (sigmoid)

    Returns:
        Activation: The shared activation object

    Raises:
        ConfigurationError: If the name is not registered
    """
    if activation is None:
        activation = DEFAULT_ACTIVATION
    if isinstance(activation, Activation):
        return activation
    if isinstance(activation, str) and activation.lower() in ACTIVATIONS:
        return ACTIVATIONS[activation.lower()]
    raise ConfigurationError(
        'activation',
        f"must be one of {sorted(ACTIVATIONS)} or an Activation instance",
        activation
    )
