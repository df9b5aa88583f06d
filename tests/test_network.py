"""Tests for network, example and gradient structures"""

import numpy as np
import pytest

from gradengine.errors import InvalidInputError
from gradengine.network import (
    Layer,
    Network,
    NeuronGradient,
    TrainingExample,
    add_gradients,
    create_gradient_vector,
    flatten_gradient,
    gradient_from_flat,
    validate_minibatch,
)


def test_layer_converts_to_float32():
    layer = Layer(weights=[[1, 2, 3], [4, 5, 6]], bias=[0, 1])
    assert layer.weights.dtype == np.float32
    assert layer.bias.dtype == np.float32
    assert layer.neuron_count == 2
    assert layer.weights_per_neuron == 3
    assert layer.parameter_count == 8


def test_layer_rejects_bad_rank():
    with pytest.raises(InvalidInputError):
        Layer(weights=np.zeros(3), bias=np.zeros(3))
    with pytest.raises(InvalidInputError):
        Layer(weights=np.zeros((2, 2)), bias=np.zeros((2, 1)))


def test_empty_network_rejected():
    with pytest.raises(InvalidInputError):
        Network([])


def test_create_random_shapes():
    network = Network.create_random(3, [5, 4, 2], seed=1)
    assert [layer.weights.shape for layer in network.layers] == [(5, 3), (4, 5), (2, 4)]
    assert network.input_width == 3
    assert network.output_width == 2
    assert network.parameter_count == 5 * 4 + 4 * 6 + 2 * 5
    assert repr(network) == "Network(3-5-4-2)"
    network.validate()


def test_create_random_is_seeded():
    a = Network.create_random(3, [4, 2], seed=7)
    b = Network.create_random(3, [4, 2], seed=7)
    for la, lb in zip(a.layers, b.layers):
        assert np.array_equal(la.weights, lb.weights)
        assert np.array_equal(la.bias, lb.bias)


def test_create_random_rejects_bad_shape():
    with pytest.raises(InvalidInputError):
        Network.create_random(0, [3])
    with pytest.raises(InvalidInputError):
        Network.create_random(2, [3, 0])


def test_validate_detects_column_mismatch():
    network = Network(
        [
            Layer(weights=np.zeros((3, 2)), bias=np.zeros(3)),
            Layer(weights=np.zeros((1, 4)), bias=np.zeros(1)),
        ]
    )
    with pytest.raises(InvalidInputError, match="Layer 1"):
        network.validate()


def test_validate_detects_bias_mismatch():
    network = Network([Layer(weights=np.zeros((3, 2)), bias=np.zeros(2))])
    with pytest.raises(InvalidInputError, match="bias"):
        network.validate()


def test_training_example_is_immutable():
    example = TrainingExample(input=[1, 2], desired_output=[3])
    assert example.input.dtype == np.float32
    with pytest.raises(ValueError):
        example.input[0] = 5.0
    with pytest.raises(AttributeError):
        example.input = np.zeros(2)


def test_training_examples_compare_by_identity():
    example = TrainingExample(input=[1, 2], desired_output=[3])
    twin = TrainingExample(input=[1, 2], desired_output=[3])
    assert example == example
    assert example != twin
    assert len({example, twin}) == 2


def test_validate_rejects_zero_input_width():
    network = Network([Layer(weights=np.zeros((2, 0)), bias=np.zeros(2))])
    with pytest.raises(InvalidInputError, match="input width"):
        network.validate()


def test_validate_minibatch():
    network = Network.create_random(2, [3, 1], seed=0)
    good = TrainingExample(input=[0, 1], desired_output=[1])
    validate_minibatch(network, [good, good], 0, 2)
    validate_minibatch(network, [good], 1, 1)

    with pytest.raises(InvalidInputError):
        validate_minibatch(network, [good], 0, 2)
    with pytest.raises(InvalidInputError):
        validate_minibatch(network, [good], -1, 1)
    with pytest.raises(InvalidInputError):
        validate_minibatch(network, [good, good], 2, 1)
    with pytest.raises(InvalidInputError, match="input width"):
        validate_minibatch(network, [TrainingExample([0, 1, 2], [1])], 0, 1)
    with pytest.raises(InvalidInputError, match="desired output width"):
        validate_minibatch(network, [TrainingExample([0, 1], [1, 0])], 0, 1)


def test_create_gradient_vector_mirrors_network():
    network = Network.create_random(3, [4, 2], seed=0)
    gradient = create_gradient_vector(network)
    assert [len(layer) for layer in gradient] == [4, 2]
    assert all(n.weights.shape == (3,) for n in gradient[0])
    assert all(n.weights.shape == (4,) for n in gradient[1])
    assert all(n.bias == 0.0 and not n.weights.any() for layer in gradient for n in layer)


def test_flatten_order_matches_parameter_layout():
    network = Network.create_random(2, [2, 1], seed=0)
    gradient = [
        [
            NeuronGradient(weights=np.array([1.0, 2.0]), bias=5.0),
            NeuronGradient(weights=np.array([3.0, 4.0]), bias=6.0),
        ],
        [NeuronGradient(weights=np.array([7.0, 8.0]), bias=9.0)],
    ]
    flat = flatten_gradient(gradient)
    assert flat.tolist() == [1, 2, 3, 4, 5, 6, 7, 8, 9]

    restored = gradient_from_flat(network, flat)
    assert flatten_gradient(restored).tolist() == flat.tolist()


def test_gradient_from_flat_rejects_wrong_size():
    network = Network.create_random(2, [2, 1], seed=0)
    with pytest.raises(InvalidInputError):
        gradient_from_flat(network, np.zeros(network.parameter_count + 1))


def test_add_gradients():
    network = Network.create_random(2, [2, 1], seed=0)
    a = gradient_from_flat(network, np.arange(9.0))
    b = gradient_from_flat(network, np.ones(9))
    total = add_gradients(a, b)
    assert flatten_gradient(total).tolist() == (np.arange(9.0) + 1).tolist()
    # Inputs untouched
    assert flatten_gradient(a).tolist() == np.arange(9.0).tolist()

    other = create_gradient_vector(Network.create_random(2, [3, 1], seed=0))
    with pytest.raises(InvalidInputError):
        add_gradients(a, other)
