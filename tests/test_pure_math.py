"""Tests for the scalar reference gradient engine"""

import math

import numpy as np
import pytest
from conftest import make_examples

from gradengine.activations import (
    ActivationFunction,
    ReLUActivation,
    SigmoidActivation,
    TanhActivation,
)
from gradengine.costs import CrossEntropy, MeanSquaredError
from gradengine.errors import InvalidInputError
from gradengine.network import (
    Layer,
    Network,
    TrainingExample,
    add_gradients,
    flatten_gradient,
)
from gradengine.pure_math import calculate_layer, compute_gradient


def _sigmoid(x):
    return 1.0 / (1.0 + math.exp(-x))


def test_worked_example(worked_network, worked_example):
    x = [0.05, 0.10]
    y = 0.01
    ah = [
        _sigmoid(0.15 * x[0] + 0.20 * x[1] + 0.35),
        _sigmoid(0.25 * x[0] + 0.30 * x[1] + 0.35),
    ]
    ao = _sigmoid(0.40 * ah[0] + 0.45 * ah[1] + 0.60)
    assert ao == pytest.approx(0.75136507, abs=1e-7)

    delta_o = (ao - y) * ao * (1.0 - ao)
    delta_h = [
        delta_o * 0.40 * ah[0] * (1.0 - ah[0]),
        delta_o * 0.45 * ah[1] * (1.0 - ah[1]),
    ]

    gradient = compute_gradient(
        worked_network, [worked_example], SigmoidActivation(), MeanSquaredError()
    )

    out = gradient[1][0]
    assert out.weights == pytest.approx([delta_o * ah[0], delta_o * ah[1]], rel=1e-5)
    assert out.bias == pytest.approx(delta_o, rel=1e-5)
    for i in range(2):
        hidden = gradient[0][i]
        assert hidden.weights == pytest.approx(
            [delta_h[i] * x[0], delta_h[i] * x[1]], rel=1e-5
        )
        assert hidden.bias == pytest.approx(delta_h[i], rel=1e-5)


def test_single_layer_network_runs_output_step_only():
    network = Network([Layer(weights=[[0.5, -0.25]], bias=[0.1])])
    example = TrainingExample(input=[1.0, 2.0], desired_output=[1.0])

    gradient = compute_gradient(network, [example], SigmoidActivation(), MeanSquaredError())

    z = 0.5 * 1.0 - 0.25 * 2.0 + 0.1
    a = _sigmoid(z)
    delta = (a - 1.0) * a * (1.0 - a)
    assert gradient[0][0].weights == pytest.approx([delta * 1.0, delta * 2.0], rel=1e-5)
    assert gradient[0][0].bias == pytest.approx(delta, rel=1e-5)


def test_batch_gradient_is_sum_of_single_gradients():
    rng = np.random.default_rng(3)
    network = Network.create_random(4, [5, 3, 2], seed=3)
    examples = make_examples(rng, 4, 2, 6)
    activation = TanhActivation()
    cost = MeanSquaredError()

    batch = compute_gradient(network, examples, activation, cost)

    total = compute_gradient(network, examples, activation, cost, 0, 1)
    for i in range(1, len(examples)):
        total = add_gradients(total, compute_gradient(network, examples, activation, cost, i, i + 1))

    assert np.allclose(flatten_gradient(batch), flatten_gradient(total), rtol=1e-10, atol=1e-12)


def test_range_selects_examples():
    rng = np.random.default_rng(4)
    network = Network.create_random(3, [4, 2], seed=4)
    examples = make_examples(rng, 3, 2, 8)
    activation = SigmoidActivation()
    cost = CrossEntropy()

    middle = compute_gradient(network, examples, activation, cost, 2, 5)
    sliced = compute_gradient(network, examples[2:5], activation, cost)
    assert np.allclose(flatten_gradient(middle), flatten_gradient(sliced))


def test_relu_dead_layer_has_exactly_zero_gradient():
    # Positive inputs into all-negative weights: every z in layer 0 is negative
    network = Network(
        [
            Layer(weights=-np.ones((3, 2)), bias=-np.ones(3)),
            Layer(weights=np.ones((1, 3)), bias=[0.5]),
        ]
    )
    examples = [
        TrainingExample(input=[0.2, 0.7], desired_output=[1.0]),
        TrainingExample(input=[1.0, 0.1], desired_output=[0.0]),
    ]

    gradient = compute_gradient(network, examples, ReLUActivation(), MeanSquaredError())

    for neuron in gradient[0]:
        assert not neuron.weights.any()
        assert neuron.bias == 0.0


def test_empty_range_gives_zero_gradient():
    network = Network.create_random(2, [3, 1], seed=0)
    examples = [TrainingExample([0.0, 1.0], [1.0])]
    gradient = compute_gradient(network, examples, SigmoidActivation(), MeanSquaredError(), 1, 1)
    assert not flatten_gradient(gradient).any()


def _total_cost(weights, biases, examples, activation, cost):
    total = 0.0
    for example in examples:
        a = example.input.astype(np.float64)
        for w, b in zip(weights, biases):
            a = activation.value(w @ a + b)
        total += cost.cost(a, example.desired_output)
    return total


@pytest.mark.parametrize(
    "activation, cost",
    [
        (SigmoidActivation(), MeanSquaredError()),
        (TanhActivation(), MeanSquaredError()),
        (SigmoidActivation(), CrossEntropy()),
    ],
)
def test_gradient_matches_finite_differences(activation, cost):
    rng = np.random.default_rng(11)
    network = Network.create_random(3, [4, 2], seed=11)
    examples = make_examples(rng, 3, 2, 3)

    analytic = flatten_gradient(compute_gradient(network, examples, activation, cost))

    weights = [layer.weights.astype(np.float64) for layer in network.layers]
    biases = [layer.bias.astype(np.float64) for layer in network.layers]
    params = [p for pair in zip(weights, biases) for p in pair]
    eps = 1e-6
    numeric = []
    for p in params:
        flat = p.reshape(-1)
        for k in range(flat.size):
            saved = flat[k]
            flat[k] = saved + eps
            plus = _total_cost(weights, biases, examples, activation, cost)
            flat[k] = saved - eps
            minus = _total_cost(weights, biases, examples, activation, cost)
            flat[k] = saved
            numeric.append((plus - minus) / (2 * eps))

    assert np.allclose(analytic, numeric, rtol=1e-4, atol=1e-7)


def test_calculate_layer():
    weights = np.array([[1.0, -1.0], [0.5, 0.5]], dtype=np.float32)
    bias = np.array([0.0, -0.5], dtype=np.float32)
    out = calculate_layer(weights, bias, np.array([2.0, 1.0]), TanhActivation())
    assert out.dtype == np.float32
    assert out == pytest.approx([math.tanh(1.0), math.tanh(1.0)], rel=1e-6)


def test_dimension_mismatch_raises_before_computing():
    network = Network(
        [
            Layer(weights=np.zeros((3, 2)), bias=np.zeros(3)),
            Layer(weights=np.zeros((1, 2)), bias=np.zeros(1)),
        ]
    )
    examples = [TrainingExample([0.0, 1.0], [1.0])]
    with pytest.raises(InvalidInputError):
        compute_gradient(network, examples, SigmoidActivation(), MeanSquaredError())


def test_strategy_without_device_id_works_on_scalar_path():
    class Softplus(ActivationFunction):
        device_id = 99

        def value(self, x):
            return np.log1p(np.exp(x))

        def derivative(self, x):
            return 1.0 / (1.0 + np.exp(-x))

    network = Network.create_random(2, [2, 1], seed=0)
    examples = [TrainingExample([0.3, -0.2], [1.0])]
    gradient = compute_gradient(network, examples, Softplus(), MeanSquaredError())
    assert np.isfinite(flatten_gradient(gradient)).all()
