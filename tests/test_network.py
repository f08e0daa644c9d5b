"""
test_network.py
~~~~~~~~~~~~~~~

Unit tests for neurons, layers and the network's forward pass,
error backpropagation, thresholded updates and training loop.
"""

import math

import numpy as np
import pytest

from neuralnet.activations import BinaryStep, FunctionActivation, Sigmoid
from neuralnet.datasets import AND_DATA, AND_NETWORK_CONFIG, XOR_DATA, XOR_NETWORK_CONFIG
from neuralnet.exceptions import ConfigurationError, ShapeMismatchError
from neuralnet.layer import Layer
from neuralnet.network import Network, TrainingExample
from neuralnet.neuron import Neuron


def sigmoid(x):
    return 1 / (1 + math.exp(-x))


def parameters_of(network):
    return [
        (neuron.weights.tolist(), neuron.bias)
        for layer in network.layers
        for neuron in layer.neurons
    ]


@pytest.mark.unit
class TestNeuron:

    def test_initial_parameters_in_range(self):
        rng = np.random.default_rng(0)
        for _ in range(20):
            neuron = Neuron(5, Sigmoid(), (1, 0), rng)
            assert len(neuron.weights) == 5
            assert np.all(neuron.weights >= -0.5) and np.all(neuron.weights < 0.5)
            assert -0.5 <= neuron.bias < 0.5

    def test_activate_is_weighted_sum_plus_bias(self):
        neuron = Neuron(2, Sigmoid(), (1, 0))
        neuron.set_parameters([0.5, -1.0], 0.25)
        assert neuron.activate([2.0, 1.0]) == pytest.approx(sigmoid(0.25 + 1.0 - 1.0))

    def test_activate_rejects_wrong_width(self):
        neuron = Neuron(3, Sigmoid(), (1, 0))
        with pytest.raises(ShapeMismatchError):
            neuron.activate([1.0, 2.0])

    def test_adjust(self):
        neuron = Neuron(2, Sigmoid(), (1, 0))
        neuron.set_parameters([0.1, 0.2], 0.0)
        neuron.adjust([1.0, 2.0], 0.5)
        assert neuron.bias == 0.5
        assert neuron.weights.tolist() == pytest.approx([0.6, 1.2])

    def test_set_parameters_keeps_width(self):
        neuron = Neuron(2, Sigmoid(), (1, 0))
        with pytest.raises(ShapeMismatchError):
            neuron.set_parameters([0.1, 0.2, 0.3], 0.0)
        assert len(neuron.weights) == 2

    def test_weights_are_read_only(self):
        neuron = Neuron(2, Sigmoid(), (1, 0))
        with pytest.raises(ValueError):
            neuron.weights[0] = 1.0


@pytest.mark.unit
class TestLayer:

    def test_neurons_share_width_and_activation(self):
        activation = Sigmoid()
        layer = Layer(4, 3, activation, identifier=2)
        assert len(layer) == 4
        assert all(n.input_size == 3 for n in layer.neurons)
        assert all(n.activation is activation for n in layer.neurons)
        assert [n.identifier for n in layer.neurons] == [(2, i) for i in range(4)]

    def test_forward_preserves_order(self):
        layer = Layer(2, 1, BinaryStep(), identifier=1)
        layer.neurons[0].set_parameters([1.0], -5.0)
        layer.neurons[1].set_parameters([1.0], 5.0)
        assert layer.forward([1.0]) == [0.0, 1.0]

    def test_forward_rejects_wrong_width(self):
        layer = Layer(2, 3, Sigmoid(), identifier=1)
        with pytest.raises(ShapeMismatchError):
            layer.forward([1.0])


@pytest.mark.unit
class TestConstruction:

    @pytest.mark.parametrize('sizes', [[2, 1], [2, 3, 1], [4, 5, 3, 2], [1, 1, 1, 1, 1]])
    def test_topology(self, sizes):
        net = Network(sizes, learning_rate=0.1, epochs=1)
        assert len(net.layers) == len(sizes) - 1
        for i, layer in enumerate(net.layers):
            assert layer.identifier == i + 1
            assert len(layer.neurons) == sizes[i + 1]
            assert all(len(n.weights) == sizes[i] for n in layer.neurons)

    def test_same_seed_same_parameters(self):
        a = Network([2, 3, 1], learning_rate=0.1, epochs=1, seed=42)
        b = Network([2, 3, 1], learning_rate=0.1, epochs=1, seed=42)
        c = Network([2, 3, 1], learning_rate=0.1, epochs=1, seed=43)
        assert parameters_of(a) == parameters_of(b)
        assert parameters_of(a) != parameters_of(c)

    @pytest.mark.parametrize('kwargs,field', [
        ({'sizes': [2], 'learning_rate': 0.1, 'epochs': 1}, 'sizes'),
        ({'sizes': [], 'learning_rate': 0.1, 'epochs': 1}, 'sizes'),
        ({'sizes': [2, 1], 'epochs': 1}, 'learning_rate'),
        ({'sizes': [2, 1], 'learning_rate': -1, 'epochs': 1}, 'learning_rate'),
        ({'sizes': [2, 1], 'learning_rate': 0.1}, 'epochs'),
        ({'sizes': [2, 1], 'learning_rate': 0.1, 'epochs': 0}, 'epochs'),
        ({'sizes': [2, 1], 'learning_rate': 0.1, 'epochs': 1, 'error_threshold': -1}, 'error_threshold'),
        ({'sizes': [2, 1], 'learning_rate': 0.1, 'epochs': 1, 'activation': 'nope'}, 'activation'),
    ])
    def test_invalid_configuration_raises(self, kwargs, field):
        with pytest.raises(ConfigurationError) as exc_info:
            Network(**kwargs)
        assert exc_info.value.field == field

    def test_custom_activation(self):
        linear = FunctionActivation(lambda x: x, lambda y: 1.0, name="identity")
        net = Network([2, 1], learning_rate=0.1, epochs=1, activation=linear, seed=0)
        neuron = net.layers[0].neurons[0]

        assert net.activation is linear
        assert net.meta_data['activation'] == 'identity'
        expected = neuron.bias + 0.5 * neuron.weights[0] - neuron.weights[1]
        assert net.predict([0.5, -1.0])[0] == pytest.approx(expected)

    def test_defaults(self):
        net = Network([2, 1], learning_rate=0.1, epochs=1)
        assert isinstance(net.activation, Sigmoid)
        assert net.error_threshold == 0.01
        assert net.training_name.startswith('NeuralNetworkTraining_')
        assert net.show_logs is False

    def test_show_logs_raises_log_level(self, caplog):
        net = Network([2, 1], learning_rate=0.1, epochs=1, training_name='loud')
        net.show_logs = True
        with caplog.at_level('INFO', logger='neuralnet.network'):
            net.train([([0, 1], [1])])
        assert "Training 'loud' completed after 1 epochs" in caplog.text


@pytest.mark.unit
class TestForward:

    def test_trace_starts_with_input(self):
        net = Network([3, 4, 2], learning_rate=0.1, epochs=1, seed=0)
        trace = net.forward([0.1, 0.2, 0.3])
        assert [len(v) for v in trace] == [3, 4, 2]
        assert trace[0] == [0.1, 0.2, 0.3]
        assert trace[2] == net.layers[1].forward(trace[1])

    def test_predict_is_deterministic(self):
        net = Network([3, 4, 2], learning_rate=0.1, epochs=1, seed=0)
        x = [0.3, -1.2, 0.7]
        first = net.predict(x)
        assert all(net.predict(x) == first for _ in range(5))
        assert first == net.forward(x)[-1]

    @pytest.mark.parametrize('inputs', [[], [1.0], [1.0, 2.0, 3.0]])
    def test_predict_rejects_wrong_width(self, inputs):
        net = Network([2, 3, 1], learning_rate=0.1, epochs=1)
        with pytest.raises(ShapeMismatchError):
            net.predict(inputs)


@pytest.mark.unit
class TestBackpropagation:

    def test_output_layer_error_is_passed_through(self):
        net = Network([2, 1], learning_rate=0.1, epochs=1)
        assert net.calculate_errors([0.3]) == [[0.3]]

    def test_hidden_errors_are_transposed_weights(self):
        net = Network([3, 2, 2], learning_rate=0.1, epochs=1)
        net.layers[1].neurons[0].set_parameters([0.5, -0.25], 0.0)
        net.layers[1].neurons[1].set_parameters([1.0, 2.0], 0.0)

        errors = net.calculate_errors([0.4, -0.1])

        assert len(errors) == 2
        assert errors[1] == [0.4, -0.1]
        assert errors[0] == pytest.approx([0.4 * 0.5 - 0.1 * 1.0, 0.4 * -0.25 - 0.1 * 2.0])

    def test_adjust_weights_applies_gradient(self):
        net = Network([2, 1], learning_rate=0.5, epochs=1)
        layer = net.layers[0]
        layer.neurons[0].set_parameters([0.1, 0.2], 0.0)

        net.adjust_weights(0, layer, inputs=[1.0, 2.0], outputs=[0.5], errors=[0.2])

        # gradient = 0.2 * (0.5 * 0.5) * 0.5
        assert layer.neurons[0].bias == pytest.approx(0.025)
        assert layer.neurons[0].weights.tolist() == pytest.approx([0.125, 0.25])

    def test_adjust_weights_skips_errors_within_threshold(self):
        net = Network([2, 1], learning_rate=0.5, epochs=1, error_threshold=0.01)
        layer = net.layers[0]
        layer.neurons[0].set_parameters([0.1, 0.2], 0.0)

        net.adjust_weights(0, layer, inputs=[1.0, 2.0], outputs=[0.5], errors=[-0.01])

        assert layer.neurons[0].bias == 0.0
        assert layer.neurons[0].weights.tolist() == [0.1, 0.2]

    def test_hidden_error_has_no_downstream_derivative(self):
        """
        Documented deviation from textbook backpropagation.

        The hidden neuron's error is output_error * w, without the output
        neuron's sigmoid slope; only the hidden neuron's own slope enters
        its gradient. Saved trainings rely on this exact update.
        """
        lr = 0.5
        net = Network([1, 1, 1], learning_rate=lr, epochs=1, error_threshold=0.0)
        hidden = net.layers[0].neurons[0]
        output = net.layers[1].neurons[0]
        hidden.set_parameters([0.4], 0.1)
        output.set_parameters([0.8], -0.2)

        h = sigmoid(0.4 * 1.0 + 0.1)
        o = sigmoid(0.8 * h - 0.2)
        output_error = 1.0 - o
        hidden_error = output_error * 0.8
        hidden_gradient = hidden_error * h * (1 - h) * lr

        net.backward(0, TrainingExample([1.0], [1.0]))

        assert hidden.bias == pytest.approx(0.1 + hidden_gradient)
        assert hidden.weights[0] == pytest.approx(0.4 + hidden_gradient)

        textbook_gradient = output_error * o * (1 - o) * 0.8 * h * (1 - h) * lr
        assert hidden.bias != pytest.approx(0.1 + textbook_gradient)

    def test_output_layer_updated_with_its_own_output(self):
        lr = 0.5
        net = Network([1, 1, 1], learning_rate=lr, epochs=1, error_threshold=0.0)
        net.layers[0].neurons[0].set_parameters([0.4], 0.1)
        net.layers[1].neurons[0].set_parameters([0.8], -0.2)

        h = sigmoid(0.5)
        o = sigmoid(0.8 * h - 0.2)
        gradient = (1.0 - o) * o * (1 - o) * lr

        net.backward(0, TrainingExample([1.0], [1.0]))

        output = net.layers[1].neurons[0]
        assert output.bias == pytest.approx(-0.2 + gradient)
        assert output.weights[0] == pytest.approx(0.8 + h * gradient)


@pytest.mark.unit
class TestTraining:

    def test_infinite_threshold_freezes_parameters(self):
        net = Network([2, 3, 1], learning_rate=0.5, epochs=50,
                      error_threshold=float('inf'), seed=5)
        before = parameters_of(net)
        net.train(XOR_DATA)
        assert parameters_of(net) == before

    def test_training_changes_parameters(self):
        net = Network([2, 3, 1], learning_rate=0.5, epochs=5, seed=5)
        before = parameters_of(net)
        net.train(XOR_DATA)
        assert parameters_of(net) != before

    def test_training_is_reproducible(self):
        a = Network([2, 3, 1], learning_rate=0.5, epochs=20, seed=9)
        b = Network([2, 3, 1], learning_rate=0.5, epochs=20, seed=9)
        assert a.train(XOR_DATA) == b.train(XOR_DATA)
        assert parameters_of(a) == parameters_of(b)

    def test_accepts_examples_in_any_form(self):
        net = Network([2, 1], learning_rate=0.5, epochs=1, seed=0)
        errors = net.train([
            TrainingExample([0, 0], [0]),
            {'inputs': [0, 1], 'targets': [1]},
            ([1, 1], [1]),
        ])
        assert len(errors) == 1

    def test_returns_mean_error_per_epoch(self):
        net = Network([2, 3, 1], learning_rate=0.5, epochs=7, seed=0)
        errors = net.train(XOR_DATA)
        assert len(errors) == 7
        assert net.epoch_errors == errors
        assert all(0 <= e <= 1 for e in errors)

    @pytest.mark.parametrize('example', [
        {'inputs': [0, 1, 1], 'targets': [1]},
        {'inputs': [0], 'targets': [1]},
        {'inputs': [0, 1], 'targets': [1, 0]},
        {'inputs': [0, 1], 'targets': []},
    ])
    def test_bad_example_rejected_before_any_update(self, example):
        net = Network([2, 3, 1], learning_rate=0.5, epochs=3, seed=0)
        before = parameters_of(net)
        with pytest.raises(ShapeMismatchError):
            net.train(XOR_DATA + [example])
        assert parameters_of(net) == before

    def test_callback_and_yield_between_epochs(self):
        net = Network([2, 3, 1], learning_rate=0.5, epochs=4, seed=0)
        progress = []
        yields = []

        net.train(XOR_DATA, callback=progress.append, yield_func=lambda: yields.append(1))

        assert [p['epoch'] for p in progress] == [1, 2, 3, 4]
        assert all(p['total_epochs'] == 4 for p in progress)
        assert [p['mean_error'] for p in progress] == net.epoch_errors
        assert len(yields) == 4

    def test_evaluate(self):
        net = Network([2, 1], learning_rate=0.5, epochs=1, activation='binary_step')
        net.layers[0].neurons[0].set_parameters([1.0, 1.0], -1.5)
        assert net.evaluate(AND_DATA) == 0.0
        net.layers[0].neurons[0].set_parameters([0.0, 0.0], 1.0)
        assert net.evaluate(AND_DATA) == 0.75


@pytest.mark.unit
class TestHistory:

    def test_sink_receives_one_record_per_neuron_per_example(self):
        records = []
        net = Network([2, 3, 1], learning_rate=0.5, epochs=2, seed=0,
                      history_sink=records.append)
        net.train(XOR_DATA)

        assert len(records) == 2 * len(XOR_DATA) * 4
        first = records[0]
        assert first['epoch'] == 0
        assert first['identifier'] == [2, 0]
        assert set(first) == {
            'epoch', 'identifier', 'adjust_weights', 'gradient',
            'weights', 'bias', 'inputs', 'outputs'
        }
        assert first['adjust_weights']['epsilon'] == net.error_threshold
        assert first['gradient']['learning_rate'] == 0.5
        assert records[-1]['epoch'] == 1

    def test_recording_does_not_change_training(self):
        plain = Network([2, 3, 1], learning_rate=0.5, epochs=10, seed=3)
        recorded = Network([2, 3, 1], learning_rate=0.5, epochs=10, seed=3,
                           history_sink=lambda record: None)
        plain.train(XOR_DATA)
        recorded.train(XOR_DATA)
        assert parameters_of(plain) == parameters_of(recorded)

    def test_record_reports_skipped_update(self):
        records = []
        net = Network([2, 1], learning_rate=0.5, epochs=1,
                      error_threshold=float('inf'), history_sink=records.append)
        net.train(XOR_DATA)
        assert all(r['adjust_weights']['value'] is False for r in records)

    def test_save_history_writes_to_store(self, memory_store):
        net = Network([2, 1], learning_rate=0.5, epochs=3, training_name='hist',
                      save_history=True, store=memory_store)
        net.train(AND_DATA)

        assert len(net.history) == 3 * len(AND_DATA)
        saved = memory_store.load('hist_history')
        assert len(saved) == len(net.history)
        assert memory_store.load('hist') is None


@pytest.mark.slow
class TestConvergence:

    def test_xor(self):
        # A 2-3-1 sigmoid net can stall in a local minimum on XOR for an
        # unlucky initialization, so a few fixed seeds are tried.
        results = []
        for seed in (0, 1, 2):
            net = Network(seed=seed, **XOR_NETWORK_CONFIG)
            net.train(XOR_DATA)
            errors = [
                abs(row['targets'][0] - net.predict(row['inputs'])[0])
                for row in XOR_DATA
            ]
            results.append(sum(errors) / len(errors))
            if results[-1] < 0.05:
                break
        assert results[-1] < 0.05, results

    @pytest.mark.parametrize('seed', range(5))
    def test_and_with_binary_step(self, seed):
        net = Network(seed=seed, **AND_NETWORK_CONFIG)
        net.train(AND_DATA)
        for row in AND_DATA:
            assert net.predict(row['inputs']) == row['targets']
