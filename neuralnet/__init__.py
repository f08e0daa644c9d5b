"""
neuralnet package
~~~~~~~~~~~~~~~~~

Feed-forward neural network trained by thresholded online gradient
descent. Contains the network engine, activation functions, parameter
persistence, and an API server.
"""

__version__ = "1.0.0"

from .activations import (
    Activation,
    Sigmoid,
    BinaryStep,
    Tanh,
    ReLU,
    FunctionActivation,
    get_activation,
)
from .config import NetworkConfig, load_config, save_config
from .exceptions import ConfigurationError, ShapeMismatchError
from .layer import Layer
from .model_persistence import (
    ParameterStore,
    InMemoryParameterStore,
    ModelDatabase,
)
from .network import Network, TrainingExample, TrainingHistory
from .neuron import Neuron

__all__ = [
    "Activation",
    "Sigmoid",
    "BinaryStep",
    "Tanh",
    "ReLU",
    "FunctionActivation",
    "get_activation",
    "NetworkConfig",
    "load_config",
    "save_config",
    "ConfigurationError",
    "ShapeMismatchError",
    "Layer",
    "ParameterStore",
    "InMemoryParameterStore",
    "ModelDatabase",
    "Network",
    "TrainingExample",
    "TrainingHistory",
    "Neuron",
]
