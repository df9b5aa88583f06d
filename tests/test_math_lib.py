"""Tests for the backend-selecting MathLib facade"""

import numpy as np
import pytest
from conftest import ATOL, RTOL, make_examples

from gradengine.activations import activation_create
from gradengine.costs import MeanSquaredError
from gradengine.errors import InvalidInputError
from gradengine.math_lib import MathLib
from gradengine.network import Layer, Network, TrainingExample, flatten_gradient


def test_backend_selection(host_device):
    assert not MathLib().has_device
    assert MathLib(host_device).has_device
    assert repr(MathLib()) == "MathLib(cpu)"
    assert repr(MathLib(host_device)) == "MathLib(host)"


def test_clone_shares_device(host_device):
    lib = MathLib(host_device)
    clone = lib.clone()
    assert clone is not lib
    assert clone.device is host_device


def test_minibatch_gradient_same_on_both_paths(host_device):
    rng = np.random.default_rng(8)
    network = Network.create_random(5, [7, 3], seed=8)
    examples = make_examples(rng, 5, 3, 12)
    activation = activation_create("sigmoid")

    cpu = MathLib().compute_minibatch_gradient(
        network, examples, 2, 10, activation, MeanSquaredError()
    )
    device = MathLib(host_device).compute_minibatch_gradient(
        network, examples, 2, 10, activation, MeanSquaredError()
    )
    assert np.allclose(flatten_gradient(device), flatten_gradient(cpu), rtol=RTOL, atol=ATOL)


@pytest.mark.parametrize("activation", ["sigmoid", "tanh", "relu"])
def test_calculate_layer_same_on_both_paths(host_device, activation):
    rng = np.random.default_rng(1)
    weights = rng.normal(size=(40, 9))
    bias = rng.normal(size=40)
    prev = rng.normal(size=9)
    act = activation_create(activation)

    cpu = MathLib().calculate_layer(weights, bias, prev, act)
    device = MathLib(host_device).calculate_layer(weights, bias, prev, act)

    assert cpu.shape == device.shape == (40,)
    assert np.allclose(device, cpu, rtol=RTOL, atol=ATOL)
    assert host_device.live_allocations == 0


@pytest.mark.parametrize("with_device", [False, True])
def test_calculate_layer_shape_errors(host_device, with_device):
    lib = MathLib(host_device if with_device else None)
    act = activation_create("sigmoid")
    with pytest.raises(InvalidInputError):
        lib.calculate_layer(np.zeros((3, 2)), np.zeros(3), np.zeros(4), act)
    with pytest.raises(InvalidInputError):
        lib.calculate_layer(np.zeros((3, 2)), np.zeros(2), np.zeros(2), act)
    with pytest.raises(InvalidInputError):
        lib.calculate_layer(np.zeros(3), np.zeros(3), np.zeros(3), act)
    assert host_device.total_allocations == 0


def test_network_compute(host_device, worked_network):
    act = activation_create("sigmoid")
    cpu = worked_network.compute(MathLib(), [0.05, 0.10], act)
    device = worked_network.compute(MathLib(host_device), [0.05, 0.10], act)
    assert cpu[0] == pytest.approx(0.75136507, rel=1e-5)
    assert device[0] == pytest.approx(0.75136507, rel=1e-5)


def test_network_compute_matches_intermediates():
    network = Network.create_random(3, [4, 2], seed=6)
    act = activation_create("tanh")
    x = np.array([0.1, -0.4, 0.8])
    activations, z_values = network.compute_with_intermediates(x, act)
    assert len(activations) == len(z_values) == 2
    assert np.allclose(network.compute(MathLib(), x, act), activations[-1], rtol=1e-5)


def test_network_compute_rejects_bad_network(host_device):
    network = Network.create_random(3, [4, 2], seed=6)
    network.layers[1].weights = np.zeros((2, 5), dtype=np.float32)
    with pytest.raises(InvalidInputError):
        network.compute(MathLib(host_device), [0.0, 0.0, 0.0], activation_create("sigmoid"))


def test_zero_input_width_rejected_on_both_paths(host_device):
    network = Network(
        [
            Layer(weights=np.zeros((2, 0)), bias=np.zeros(2)),
            Layer(weights=np.ones((1, 2)), bias=[0.0]),
        ]
    )
    examples = [TrainingExample(input=np.zeros(0), desired_output=[1.0])]
    activation = activation_create("sigmoid")

    with pytest.raises(InvalidInputError):
        MathLib().compute_minibatch_gradient(
            network, examples, 0, 1, activation, MeanSquaredError()
        )
    with pytest.raises(InvalidInputError):
        MathLib(host_device).compute_minibatch_gradient(
            network, examples, 0, 1, activation, MeanSquaredError()
        )
    assert host_device.total_allocations == 0
