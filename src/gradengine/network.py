"""Network, example and gradient data structures

MUTATION SEMANTICS:
- Layers are only mutated by the training loop between gradient computations
  (see training.apply_gradient); the engines treat them as read-only
- A GradientVector is created fresh for every minibatch and handed to the
  caller, who owns it from then on
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .errors import InvalidInputError

# ============================================================================
# NETWORK
# ============================================================================


@dataclass
class Layer:
    """One fully connected layer.

    weights has shape (neurons, inputs); bias has shape (neurons,).
    """

    weights: np.ndarray
    bias: np.ndarray

    def __post_init__(self):
        self.weights = np.ascontiguousarray(self.weights, dtype=np.float32)
        self.bias = np.ascontiguousarray(self.bias, dtype=np.float32)
        if self.weights.ndim != 2:
            raise InvalidInputError(
                f"Weight matrix must be 2D, got shape {self.weights.shape}"
            )
        if self.bias.ndim != 1:
            raise InvalidInputError(f"Bias must be 1D, got shape {self.bias.shape}")

    @property
    def neuron_count(self) -> int:
        return self.weights.shape[0]

    @property
    def weights_per_neuron(self) -> int:
        return self.weights.shape[1]

    @property
    def parameter_count(self) -> int:
        return self.weights.size + self.bias.size


class Network:
    """Ordered layers; index 0 is the first hidden layer."""

    def __init__(self, layers: Sequence[Layer]):
        if not layers:
            raise InvalidInputError("Network needs at least one layer")
        self.layers: List[Layer] = list(layers)

    @classmethod
    def create_random(
        cls,
        input_width: int,
        layer_sizes: Sequence[int],
        seed: Optional[int] = None,
        scale: float = 1.0,
    ) -> "Network":
        """Create a network with N(0, scale / sqrt(fan_in)) weights and zero-mean biases."""
        if input_width <= 0 or not layer_sizes or min(layer_sizes) <= 0:
            raise InvalidInputError(
                f"Invalid shape: input_width={input_width}, layer_sizes={list(layer_sizes)}"
            )
        rng = np.random.default_rng(seed)
        layers = []
        fan_in = input_width
        for size in layer_sizes:
            std = scale / np.sqrt(fan_in)
            layers.append(
                Layer(
                    weights=rng.normal(0.0, std, (size, fan_in)),
                    bias=rng.normal(0.0, std, size),
                )
            )
            fan_in = size
        return cls(layers)

    @property
    def input_width(self) -> int:
        return self.layers[0].weights_per_neuron

    @property
    def output_width(self) -> int:
        return self.layers[-1].neuron_count

    @property
    def parameter_count(self) -> int:
        return sum(layer.parameter_count for layer in self.layers)

    def validate(self) -> None:
        """Check that every layer's inputs match the previous layer's neurons.

        Raises:
            InvalidInputError: On the first inconsistent layer
        """
        if self.input_width <= 0:
            raise InvalidInputError(
                f"Network input width must be positive, got {self.input_width}"
            )
        expected_inputs = self.input_width
        for index, layer in enumerate(self.layers):
            if layer.weights_per_neuron != expected_inputs:
                raise InvalidInputError(
                    f"Layer {index}: weight matrix has {layer.weights_per_neuron} "
                    f"columns, expected {expected_inputs}"
                )
            if layer.bias.shape != (layer.neuron_count,):
                raise InvalidInputError(
                    f"Layer {index}: bias shape {layer.bias.shape} doesn't match "
                    f"{layer.neuron_count} neurons"
                )
            if layer.neuron_count <= 0:
                raise InvalidInputError(f"Layer {index} has no neurons")
            expected_inputs = layer.neuron_count

    def compute(self, math_lib, inputs, activation) -> np.ndarray:
        """Run inference through every layer with math_lib.calculate_layer."""
        self.validate()
        current = np.asarray(inputs, dtype=np.float32)
        for layer in self.layers:
            current = math_lib.calculate_layer(
                layer.weights, layer.bias, current, activation
            )
        return current

    def compute_with_intermediates(
        self, inputs: np.ndarray, activation
    ) -> Tuple[List[np.ndarray], List[np.ndarray]]:
        """Host forward pass that keeps each layer's activation and z vector."""
        activations = []
        z_values = []
        current = np.asarray(inputs, dtype=np.float64)
        for layer in self.layers:
            z = layer.weights.astype(np.float64) @ current + layer.bias
            current = activation.value(z)
            z_values.append(z)
            activations.append(current)
        return activations, z_values

    def __repr__(self) -> str:
        shape = [self.input_width] + [layer.neuron_count for layer in self.layers]
        return f"Network({'-'.join(str(s) for s in shape)})"


# ============================================================================
# TRAINING EXAMPLES
# ============================================================================


@dataclass(frozen=True, eq=False)
class TrainingExample:
    """Immutable (input, desired output) pair, compared by identity."""

    input: np.ndarray
    desired_output: np.ndarray

    def __post_init__(self):
        for name in ("input", "desired_output"):
            arr = np.array(getattr(self, name), dtype=np.float32).reshape(-1)
            arr.setflags(write=False)
            object.__setattr__(self, name, arr)


def validate_minibatch(
    network: Network, examples: Sequence[TrainingExample], begin: int, end: int
) -> None:
    """Check network shape, range bounds and example widths.

    Raises:
        InvalidInputError: If anything doesn't line up
    """
    network.validate()

    if begin < 0 or end > len(examples) or begin > end:
        raise InvalidInputError(
            f"Invalid minibatch range [{begin}, {end}) for {len(examples)} examples"
        )

    input_width = network.input_width
    output_width = network.output_width
    for i in range(begin, end):
        example = examples[i]
        if example.input.shape != (input_width,):
            raise InvalidInputError(
                f"Example {i}: input width {example.input.shape[0]}, "
                f"network expects {input_width}"
            )
        if example.desired_output.shape != (output_width,):
            raise InvalidInputError(
                f"Example {i}: desired output width {example.desired_output.shape[0]}, "
                f"network produces {output_width}"
            )


# ============================================================================
# GRADIENTS
# ============================================================================


@dataclass
class NeuronGradient:
    weights: np.ndarray
    bias: float = 0.0


GradientVector = List[List[NeuronGradient]]


def create_gradient_vector(network: Network) -> GradientVector:
    """Zeroed gradient accumulators mirroring the network's shape."""
    return [
        [
            NeuronGradient(weights=np.zeros(layer.weights_per_neuron, dtype=np.float64))
            for _ in range(layer.neuron_count)
        ]
        for layer in network.layers
    ]


def flatten_gradient(gradient: GradientVector) -> np.ndarray:
    """Flatten in weights+biases buffer order: per layer all weight rows, then biases."""
    parts = []
    for layer in gradient:
        parts.extend(neuron.weights for neuron in layer)
        parts.append(np.array([neuron.bias for neuron in layer], dtype=np.float64))
    return np.concatenate(parts) if parts else np.zeros(0)


def gradient_from_flat(network: Network, flat: np.ndarray) -> GradientVector:
    """Inverse of flatten_gradient for the given network shape.

    Raises:
        InvalidInputError: If flat doesn't hold exactly one value per parameter
    """
    flat = np.asarray(flat, dtype=np.float64).reshape(-1)
    if flat.size != network.parameter_count:
        raise InvalidInputError(
            f"Flat gradient has {flat.size} values, network has "
            f"{network.parameter_count} parameters"
        )

    gradient = []
    offset = 0
    for layer in network.layers:
        rows, cols = layer.weights.shape
        weights = flat[offset : offset + rows * cols].reshape(rows, cols)
        offset += rows * cols
        biases = flat[offset : offset + rows]
        offset += rows
        gradient.append(
            [
                NeuronGradient(weights=weights[i].copy(), bias=float(biases[i]))
                for i in range(rows)
            ]
        )
    return gradient


def add_gradients(a: GradientVector, b: GradientVector) -> GradientVector:
    """Element-wise sum of two gradients of the same shape (new object)."""
    if [len(layer) for layer in a] != [len(layer) for layer in b]:
        raise InvalidInputError("Gradient shapes differ")
    return [
        [
            NeuronGradient(weights=na.weights + nb.weights, bias=na.bias + nb.bias)
            for na, nb in zip(layer_a, layer_b)
        ]
        for layer_a, layer_b in zip(a, b)
    ]
