"""Scalar reference gradient engine

Backpropagation one training example at a time on the host, accumulating
into a GradientVector. This is the path every device result is checked
against, so it favours clarity (and float64 accumulation) over speed.
"""

import logging
from typing import List, Optional, Sequence

import numpy as np

from .activations import ActivationFunction
from .costs import CostFunction
from .network import (
    GradientVector,
    Network,
    TrainingExample,
    create_gradient_vector,
    validate_minibatch,
)

logger = logging.getLogger(__name__)

# ============================================================================
# LAYER MATH
# ============================================================================


def calculate_layer(
    weights: np.ndarray,
    bias: np.ndarray,
    prev_activations: np.ndarray,
    activation: ActivationFunction,
) -> np.ndarray:
    """activation(W @ prev + b) for a single layer, float32 result."""
    z = weights.astype(np.float64) @ np.asarray(prev_activations, dtype=np.float64)
    return np.asarray(activation.value(z + bias), dtype=np.float32)


def _accumulate(
    gradient_layer, deltas: np.ndarray, prev_activations: np.ndarray
) -> None:
    for i, neuron in enumerate(gradient_layer):
        neuron.weights += deltas[i] * prev_activations
        neuron.bias += float(deltas[i])


def _output_layer_gradient(
    cost: CostFunction,
    activation: ActivationFunction,
    gradient_layer,
    activations: List[np.ndarray],
    z_values: List[np.ndarray],
    example_input: np.ndarray,
    desired_output: np.ndarray,
) -> np.ndarray:
    prev_activations = example_input if len(activations) == 1 else activations[-2]
    deltas = np.asarray(
        cost.delta(z_values[-1], activations[-1], desired_output, activation),
        dtype=np.float64,
    )
    _accumulate(gradient_layer, deltas, prev_activations)
    return deltas


def _hidden_layer_gradient(
    network: Network,
    L: int,
    activation: ActivationFunction,
    gradient_layer,
    delta_k: np.ndarray,
    prev_activations: np.ndarray,
    z_values: List[np.ndarray],
) -> np.ndarray:
    # delta[L][i] = sum_k delta_k[k] * W[L+1][k][i] * f'(z[L][i])
    next_weights = network.layers[L + 1].weights.astype(np.float64)
    deltas = (delta_k @ next_weights) * activation.derivative(z_values[L])
    _accumulate(gradient_layer, deltas, prev_activations)
    return deltas


def gradient_for_single_example(
    network: Network,
    activation: ActivationFunction,
    cost: CostFunction,
    gradient: GradientVector,
    example: TrainingExample,
) -> None:
    """Add one example's gradient into gradient (mutation)."""
    example_input = example.input.astype(np.float64)
    activations, z_values = network.compute_with_intermediates(example_input, activation)

    delta_k = _output_layer_gradient(
        cost,
        activation,
        gradient[-1],
        activations,
        z_values,
        example_input,
        example.desired_output.astype(np.float64),
    )

    # Empty for single-layer networks: only the output step runs there
    for L in range(len(network.layers) - 2, -1, -1):
        delta_k = _hidden_layer_gradient(
            network,
            L,
            activation,
            gradient[L],
            delta_k,
            example_input if L == 0 else activations[L - 1],
            z_values,
        )


# ============================================================================
# MINIBATCH
# ============================================================================


def compute_gradient(
    network: Network,
    examples: Sequence[TrainingExample],
    activation: ActivationFunction,
    cost: CostFunction,
    begin: int = 0,
    end: Optional[int] = None,
) -> GradientVector:
    """Accumulated gradient over examples[begin:end].

    Gradients are summed, not averaged; normalizing by the batch size is the
    caller's job.

    Args:
        network: Network to differentiate (read-only)
        examples: Training examples
        activation: Activation strategy used by every layer
        cost: Cost strategy for the output delta
        begin: First example index (inclusive)
        end: Last example index (exclusive), defaults to len(examples)

    Returns:
        Freshly allocated gradient mirroring the network's shape

    Raises:
        InvalidInputError: If any dimension or the range is invalid
    """
    if end is None:
        end = len(examples)
    validate_minibatch(network, examples, begin, end)

    gradient = create_gradient_vector(network)
    for i in range(begin, end):
        gradient_for_single_example(network, activation, cost, gradient, examples[i])

    logger.debug("Scalar gradient over %d examples for %r", end - begin, network)
    return gradient
