"""
config.py
~~~~~~~~~

Network configuration with validation and JSON round trip.
"""

import json
import numbers
import os
import time
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import List, Optional, Union

from .activations import Activation, get_activation, DEFAULT_ACTIVATION
from .exceptions import ConfigurationError

DEFAULT_ERROR_THRESHOLD = 0.01


def default_training_name() -> str:
    """Timestamped name used when a training is not given one."""
    return f"NeuralNetworkTraining_{int(time.time() * 1000)}"


@dataclass
class NetworkConfig:
    """
    Everything needed to build and train a network.

    Attributes:
        sizes: Layer widths, input first and output last (at least two).
        learning_rate: Gradient step size, must be positive.
        epochs: Passes over the training examples, must be positive.
        activation: Registry name of the activation shared by all layers,
            or an ``Activation`` instance.
        error_threshold: Per-neuron error below which no update is made.
        training_name: Key the trained parameters are stored under.
        show_logs: Promote the network's log messages from DEBUG to INFO.
        save_history: Record per-neuron diagnostics during training.
        seed: Seed for the initial weights.
    """
    sizes: List[int] = field(default_factory=list)
    learning_rate: Optional[float] = None
    epochs: Optional[int] = None
    activation: Union[str, Activation] = DEFAULT_ACTIVATION
    error_threshold: float = DEFAULT_ERROR_THRESHOLD
    training_name: str = field(default_factory=default_training_name)
    show_logs: bool = False
    save_history: bool = False
    seed: Optional[int] = None

    def validate(self) -> "NetworkConfig":
        """
        Check every field, raising on the first invalid one.

        Returns:
            NetworkConfig: self, to allow chaining

        Raises:
            ConfigurationError: Naming the offending field
        """
        sizes = self.sizes
        if not isinstance(sizes, (list, tuple)) or len(sizes) < 2:
            raise ConfigurationError(
                'sizes', "must list at least an input and an output width", sizes
            )
        for size in sizes:
            if isinstance(size, bool) or not isinstance(size, numbers.Integral) or size < 1:
                raise ConfigurationError(
                    'sizes', "every width must be a positive integer", sizes
                )

        if (self.learning_rate is None
                or isinstance(self.learning_rate, bool)
                or not isinstance(self.learning_rate, numbers.Real)
                or self.learning_rate <= 0):
            raise ConfigurationError(
                'learning_rate', "must be a positive number", self.learning_rate
            )

        if (self.epochs is None
                or isinstance(self.epochs, bool)
                or not isinstance(self.epochs, numbers.Integral)
                or self.epochs < 1):
            raise ConfigurationError(
                'epochs', "must be a positive integer", self.epochs
            )

        if (isinstance(self.error_threshold, bool)
                or not isinstance(self.error_threshold, numbers.Real)
                or self.error_threshold < 0):
            raise ConfigurationError(
                'error_threshold', "must be a non-negative number",
                self.error_threshold
            )

        if not self.training_name or not isinstance(self.training_name, str):
            raise ConfigurationError(
                'training_name', "must be a non-empty string", self.training_name
            )

        if self.seed is not None and (
                isinstance(self.seed, bool)
                or not isinstance(self.seed, numbers.Integral)
                or self.seed < 0):
            raise ConfigurationError(
                'seed', "must be a non-negative integer or null", self.seed
            )

        get_activation(self.activation)
        return self

    def to_dict(self) -> dict:
        """Convert config to dictionary."""
        return asdict(self)

    def to_json(self) -> str:
        """Convert config to JSON string."""
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_dict(cls, data: dict) -> "NetworkConfig":
        """Create config from a dictionary, ignoring unknown keys."""
        known = {name: data[name] for name in cls.__dataclass_fields__ if name in data}
        return cls(**known)

    @classmethod
    def from_json(cls, json_str: str) -> "NetworkConfig":
        """Create config from JSON string."""
        return cls.from_dict(json.loads(json_str))


def save_config(config: NetworkConfig, path: Union[str, Path]) -> None:
    """Write ``config`` as JSON, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        f.write(config.to_json())


def load_config(path: Union[str, Path]) -> NetworkConfig:
    """Read a JSON config file; the result is validated."""
    with open(path, "r") as f:
        return NetworkConfig.from_json(f.read()).validate()


def model_dir_from_env() -> str:
    """Directory holding ``networks.db``, from ``MODEL_DIR`` (default ``models``)."""
    return os.getenv('MODEL_DIR', 'models')
