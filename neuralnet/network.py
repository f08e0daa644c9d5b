"""
network.py
~~~~~~~~~~

A feed-forward network trained one example at a time.

Each training step runs the forward pass, takes the signed output residual
``target - output``, sends it back through the transposed weights of every
layer, and nudges each neuron whose error exceeds the error threshold.

The error handed to a hidden layer is the plain weighted sum of the errors
downstream of it. The activation slope is applied only once, in the
neuron's own update, using that neuron's output. Saved trainings depend on
this order of operations, so it is kept as is.
"""

import time
import logging
from dataclasses import dataclass
from typing import (
    Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union
)

import numpy as np

from .activations import Activation, get_activation
from .config import NetworkConfig, DEFAULT_ERROR_THRESHOLD
from .exceptions import ShapeMismatchError
from .layer import Layer
from .model_persistence import ParameterStore, get_store

logger = logging.getLogger(__name__)

HistorySink = Callable[[Dict[str, Any]], None]
EpochCallback = Callable[[Dict[str, Any]], None]


@dataclass
class TrainingExample:
    """One input vector and the output the network should produce for it."""
    inputs: List[float]
    targets: List[float]

    @classmethod
    def coerce(
        cls,
        example: Union["TrainingExample", Mapping[str, Sequence[float]], Sequence]
    ) -> "TrainingExample":
        """Accept an instance, an ``{inputs, targets}`` mapping or a pair."""
        if isinstance(example, cls):
            return example
        if isinstance(example, Mapping):
            return cls(list(example['inputs']), list(example['targets']))
        inputs, targets = example
        return cls(list(inputs), list(targets))


class TrainingHistory:
    """Collects diagnostic records in memory."""

    def __init__(self):
        self.records: List[Dict[str, Any]] = []

    def __call__(self, record: Dict[str, Any]) -> None:
        self.records.append(record)

    def __len__(self) -> int:
        return len(self.records)

    def clear(self) -> None:
        self.records = []


class Network:
    """
    Stack of dense layers with thresholded online gradient descent.

    Example:
        >>> net = Network([2, 3, 1], learning_rate=0.15, epochs=10000)
        >>> net.train(XOR_DATA)
        >>> net.predict([1, 0])
    """

    def __init__(
        self,
        sizes: Sequence[int],
        learning_rate: Optional[float] = None,
        epochs: Optional[int] = None,
        activation: Union[str, Activation, None] = None,
        error_threshold: float = DEFAULT_ERROR_THRESHOLD,
        training_name: Optional[str] = None,
        show_logs: bool = False,
        save_history: bool = False,
        seed: Optional[int] = None,
        store: Optional[ParameterStore] = None,
        history_sink: Optional[HistorySink] = None
    ):
        """
        Build and randomly initialize the layers.

        Args:
            sizes: Layer widths, input first and output last
            learning_rate: Gradient step size
            epochs: Passes over the examples in ``train``
            activation: Registry name or ``Activation``; sigmoid if None
            error_threshold: Errors at or below this leave a neuron untouched
            training_name: Persistence key; timestamped if None
            show_logs: Log progress at INFO instead of DEBUG
            save_history: Record per-neuron diagnostics during training
            seed: Seed for the initial weights and biases
            store: Where ``save_training``/``load_training`` go; the
                default SQLite database if None
            history_sink: Receives history records; enables recording

        Raises:
            ConfigurationError: If any setting is invalid
        """
        self.activation = get_activation(activation)
        config = NetworkConfig(
            sizes=list(sizes) if isinstance(sizes, (list, tuple, np.ndarray)) else sizes,
            learning_rate=learning_rate,
            epochs=epochs,
            activation=self.activation,
            error_threshold=error_threshold,
            show_logs=show_logs,
            save_history=save_history,
            seed=seed
        )
        if training_name is not None:
            config.training_name = training_name
        config.validate()

        self.sizes: List[int] = [int(size) for size in config.sizes]
        self.learning_rate = float(config.learning_rate)
        self.epochs = int(config.epochs)
        self.error_threshold = float(config.error_threshold)
        self.training_name = config.training_name
        self.show_logs = show_logs
        self.seed = seed
        self._store = store
        self._history_sink = history_sink
        self.history = TrainingHistory()
        self.save_history = save_history or history_sink is not None
        self.epoch_errors: List[float] = []

        rng = np.random.default_rng(seed)
        self.layers: List[Layer] = [
            Layer(self.sizes[i], self.sizes[i - 1], self.activation, i, rng)
            for i in range(1, len(self.sizes))
        ]

        self._log(f"Network created: {self.meta_data}")

    @classmethod
    def from_config(
        cls,
        config: NetworkConfig,
        store: Optional[ParameterStore] = None,
        history_sink: Optional[HistorySink] = None
    ) -> "Network":
        """Build a network from a ``NetworkConfig``."""
        return cls(
            config.sizes,
            learning_rate=config.learning_rate,
            epochs=config.epochs,
            activation=config.activation,
            error_threshold=config.error_threshold,
            training_name=config.training_name,
            show_logs=config.show_logs,
            save_history=config.save_history,
            seed=config.seed,
            store=store,
            history_sink=history_sink
        )

    @property
    def show_logs(self) -> bool:
        return self._log_level == logging.INFO

    @show_logs.setter
    def show_logs(self, value: bool) -> None:
        self._log_level = logging.INFO if value else logging.DEBUG

    @property
    def store(self) -> ParameterStore:
        if self._store is None:
            self._store = get_store()
        return self._store

    @store.setter
    def store(self, value: ParameterStore) -> None:
        self._store = value

    @property
    def input_size(self) -> int:
        return self.sizes[0]

    @property
    def output_size(self) -> int:
        return self.sizes[-1]

    @property
    def meta_data(self) -> Dict[str, Any]:
        """Settings saved alongside the parameters."""
        return {
            'sizes': list(self.sizes),
            'learning_rate': self.learning_rate,
            'epochs': self.epochs,
            'activation': self.activation.name,
            'training_name': self.training_name,
            'error_threshold': self.error_threshold
        }

    def _log(self, message: str) -> None:
        logger.log(self._log_level, message)

    def _check_inputs(self, inputs: Sequence[float]) -> None:
        if len(inputs) != self.input_size:
            raise ShapeMismatchError(
                "Input vector width", self.input_size, len(inputs)
            )

    def check_examples(self, examples: Iterable[Any]) -> List[TrainingExample]:
        """
        Coerce and width-check a batch of examples.

        Raises:
            ShapeMismatchError: On the first example with a wrong width
        """
        examples = [TrainingExample.coerce(e) for e in examples]
        for example in examples:
            self._check_example(example)
        return examples

    def _check_example(self, example: TrainingExample) -> None:
        self._check_inputs(example.inputs)
        if len(example.targets) != self.output_size:
            raise ShapeMismatchError(
                "Target vector width", self.output_size, len(example.targets)
            )

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    def forward(self, inputs: Sequence[float]) -> List[List[float]]:
        """
        Run the input through every layer.

        Returns:
            The activation trace: the input followed by each layer's
            output, in layer order

        Raises:
            ShapeMismatchError: If the input width is wrong
        """
        self._check_inputs(inputs)
        outputs = [list(inputs)]
        for layer in self.layers:
            outputs.append(layer.forward(outputs[-1]))
        return outputs

    def predict(self, inputs: Sequence[float]) -> List[float]:
        """Return the output layer's activations for ``inputs``."""
        return self.forward(inputs)[-1]

    def evaluate(self, examples: Iterable[Any]) -> float:
        """Mean absolute error over every output of every example."""
        examples = self.check_examples(examples)
        if not examples:
            return 0.0
        total = 0.0
        for example in examples:
            outputs = self.predict(example.inputs)
            total += sum(abs(t - o) for t, o in zip(example.targets, outputs))
        return total / (len(examples) * self.output_size)

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def calculate_errors(self, output_errors: Sequence[float]) -> List[List[float]]:
        """
        Propagate the output residual back through the layers.

        The error of neuron ``j`` in layer ``i - 1`` is
        ``sum_k errors_i[k] * layers[i].neurons[k].weights[j]``, with no
        activation slope folded in.

        Returns:
            One error vector per layer, first layer to last
        """
        errors = [list(output_errors)]
        for i in range(len(self.layers) - 1, 0, -1):
            layer = self.layers[i]
            downstream = errors[0]
            weights = [neuron.weights for neuron in layer.neurons]
            hidden_errors = [
                float(sum(error * w[j] for error, w in zip(downstream, weights)))
                for j in range(layer.input_size)
            ]
            errors.insert(0, hidden_errors)
        return errors

    def adjust_weights(
        self,
        epoch: int,
        layer: Layer,
        inputs: Sequence[float],
        outputs: Sequence[float],
        errors: Sequence[float]
    ) -> None:
        """
        Update every neuron of ``layer`` whose error exceeds the threshold.

        Args:
            epoch: Current epoch, for history records
            layer: Layer being updated
            inputs: Vector the layer read in the forward pass
            outputs: Vector the layer produced in the forward pass
            errors: This layer's error vector
        """
        for i, neuron in enumerate(layer.neurons):
            if abs(errors[i]) > self.error_threshold:
                gradient = (
                    errors[i]
                    * neuron.activation.derivative_from_output(outputs[i])
                    * self.learning_rate
                )
                neuron.adjust(inputs, gradient)

    def _adjust_weights_recorded(
        self,
        epoch: int,
        layer: Layer,
        inputs: Sequence[float],
        outputs: Sequence[float],
        errors: Sequence[float]
    ) -> None:
        """Same update as ``adjust_weights``, emitting one record per neuron."""
        sink = self._history_sink or self.history
        for i, neuron in enumerate(layer.neurons):
            error = errors[i]
            derivative = neuron.activation.derivative_from_output(outputs[i])
            gradient = error * derivative * self.learning_rate
            adjusted = abs(error) > self.error_threshold
            if adjusted:
                neuron.adjust(inputs, gradient)
            sink({
                'epoch': epoch,
                'identifier': list(neuron.identifier),
                'adjust_weights': {
                    'error': abs(error),
                    'epsilon': self.error_threshold,
                    'value': adjusted
                },
                'gradient': {
                    'error': error,
                    'activation_derivative': derivative,
                    'learning_rate': self.learning_rate,
                    'value': gradient
                },
                'weights': neuron.weights.tolist(),
                'bias': neuron.bias,
                'inputs': list(inputs),
                'outputs': list(outputs)
            })

    def backward(
        self,
        epoch: int,
        example: TrainingExample,
        adjust: Optional[Callable[..., None]] = None
    ) -> List[float]:
        """
        Run one training step on ``example``.

        Returns:
            The output residual ``target - output`` before the update
        """
        adjust = adjust or self.adjust_weights
        outputs = self.forward(example.inputs)
        output_errors = [t - o for t, o in zip(example.targets, outputs[-1])]
        errors = self.calculate_errors(output_errors)

        for i in range(len(self.layers) - 1, -1, -1):
            adjust(epoch, self.layers[i], outputs[i], outputs[i + 1], errors[i])
        return output_errors

    def train(
        self,
        examples: Iterable[Any],
        callback: Optional[EpochCallback] = None,
        yield_func: Optional[Callable[[], None]] = None
    ) -> List[float]:
        """
        Train for ``self.epochs`` passes over ``examples``, in order.

        Every example is checked before any weight changes.

        Args:
            examples: ``TrainingExample`` objects, ``{inputs, targets}``
                mappings or ``(inputs, targets)`` pairs
            callback: Called after each epoch with a progress dict
            yield_func: Called between epochs, e.g. to let other greenlets run

        Returns:
            Mean absolute output error of each epoch

        Raises:
            ShapeMismatchError: If any example has the wrong width
        """
        examples = self.check_examples(examples)

        recording = self.save_history
        if recording and self._history_sink is None:
            self.history.clear()
        adjust = self._adjust_weights_recorded if recording else self.adjust_weights

        self.epoch_errors = []
        start_time = time.time()
        denominator = max(len(examples) * self.output_size, 1)

        for epoch in range(self.epochs):
            total_error = 0.0
            for example in examples:
                output_errors = self.backward(epoch, example, adjust)
                total_error += sum(abs(e) for e in output_errors)
            mean_error = total_error / denominator
            self.epoch_errors.append(mean_error)

            if callback is not None:
                callback({
                    'epoch': epoch + 1,
                    'total_epochs': self.epochs,
                    'mean_error': mean_error,
                    'elapsed_time': time.time() - start_time
                })
            if yield_func is not None:
                yield_func()

        self._log(
            f"Training '{self.training_name}' completed after {self.epochs} "
            f"epochs in {time.time() - start_time:.2f}s"
        )

        if recording and self._history_sink is None:
            self.store.save(f"{self.training_name}_history", self.history.records)
            self._log(f"Saved {len(self.history)} history records")

        return self.epoch_errors

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        """Copy of every neuron's weights and bias, plus the metadata."""
        return {
            'meta_data': self.meta_data,
            'weights': [
                [neuron.weights.tolist() for neuron in layer.neurons]
                for layer in self.layers
            ],
            'biases': [
                [neuron.bias for neuron in layer.neurons]
                for layer in self.layers
            ]
        }

    def _check_snapshot(
        self, snapshot: Mapping[str, Any]
    ) -> List[List[Tuple[np.ndarray, float]]]:
        """
        Validate ``snapshot`` against the live topology and convert it.

        Returns:
            Per layer, per neuron ``(weights, bias)`` ready to assign

        Raises:
            ShapeMismatchError: On any missing, misshapen or non-numeric entry
        """
        weights = snapshot.get('weights')
        biases = snapshot.get('biases')
        if not isinstance(weights, list) or not isinstance(biases, list):
            raise ShapeMismatchError(
                f"Snapshot '{self.training_name}' is missing weights or biases"
            )
        if len(weights) != len(self.layers) or len(biases) != len(self.layers):
            raise ShapeMismatchError(
                "Snapshot layer count", len(self.layers),
                len(weights) if len(weights) != len(self.layers) else len(biases)
            )

        parameters = []
        for layer, layer_weights, layer_biases in zip(self.layers, weights, biases):
            if not isinstance(layer_weights, list) or not isinstance(layer_biases, list):
                raise ShapeMismatchError(
                    f"Snapshot layer {layer.identifier} is not a list of neurons"
                )
            if len(layer_weights) != len(layer) or len(layer_biases) != len(layer):
                raise ShapeMismatchError(
                    f"Snapshot neuron count for layer {layer.identifier}",
                    len(layer),
                    len(layer_weights) if len(layer_weights) != len(layer) else len(layer_biases)
                )
            layer_parameters = []
            for neuron, neuron_weights, bias in zip(layer.neurons, layer_weights, layer_biases):
                if not isinstance(neuron_weights, list):
                    raise ShapeMismatchError(
                        f"Snapshot weights for neuron {neuron.identifier} are not a list"
                    )
                if len(neuron_weights) != neuron.input_size:
                    raise ShapeMismatchError(
                        f"Snapshot weight count for neuron {neuron.identifier}",
                        neuron.input_size, len(neuron_weights)
                    )
                try:
                    converted = np.asarray(neuron_weights, dtype=float)
                    converted_bias = float(bias)
                except (TypeError, ValueError) as e:
                    raise ShapeMismatchError(
                        f"Snapshot parameters for neuron {neuron.identifier} "
                        f"are not numeric ({e})"
                    ) from e
                if converted.ndim != 1:
                    raise ShapeMismatchError(
                        f"Snapshot weights for neuron {neuron.identifier} are nested"
                    )
                layer_parameters.append((converted, converted_bias))
            parameters.append(layer_parameters)
        return parameters

    def restore(self, snapshot: Mapping[str, Any]) -> None:
        """
        Overwrite every neuron's parameters from ``snapshot``.

        The whole snapshot is checked and converted first, so a bad one
        changes nothing.

        Raises:
            ShapeMismatchError: If the snapshot's shape or values do not fit
        """
        parameters = self._check_snapshot(snapshot)
        for layer, layer_parameters in zip(self.layers, parameters):
            for neuron, (weights, bias) in zip(layer.neurons, layer_parameters):
                neuron.set_parameters(weights, bias)

    def save_training(self) -> bool:
        """Store the current parameters under ``training_name``."""
        saved = self.store.save(self.training_name, self.snapshot())
        self._log(f"Training '{self.training_name}' saved")
        return saved

    def load_training(self) -> bool:
        """
        Replace the parameters with those stored under ``training_name``.

        Returns:
            bool: False, with parameters untouched, if nothing is stored

        Raises:
            ShapeMismatchError: If the stored topology differs from ours
        """
        snapshot = self.store.load(self.training_name)
        if snapshot is None:
            self._log(f"Training '{self.training_name}' was not loaded")
            return False

        self.restore(snapshot)
        self._log(f"Training '{self.training_name}' loaded")
        return True

    def __repr__(self) -> str:
        return (
            f"Network(sizes={self.sizes}, learning_rate={self.learning_rate}, "
            f"epochs={self.epochs}, activation={self.activation.name})"
        )
