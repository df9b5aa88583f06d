"""Flattened device buffer layout

Every offset the kernels compute from the network-config record is mirrored
here, so the host can pack inputs and unpack per-sample gradients with the
same arithmetic.

BUFFERS (float32 unless noted):
- config:             uint32 network-config record (see gpu_types CFG_*)
- inputs:             samples * input_width, sample-major
- activations_and_z:  total_activations * samples * 2; layer-major activation
                      blocks followed by the matching z blocks
- weights_and_biases: per layer, row-major weight matrix then bias vector
- delta_k:            samples * 2 * widest (two halves per sample)
- gradient:           samples * total_weights_and_biases
- desired_outputs:    samples * output_width
"""

from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np

from ..errors import InvalidInputError
from ..network import (
    GradientVector,
    Network,
    TrainingExample,
    gradient_from_flat,
)
from .gpu_types import (
    CFG_ACTIVATION_ID,
    CFG_COST_ID,
    CFG_INITIAL_LAYER,
    CFG_INPUT_COUNT,
    CFG_LAYER_COUNT,
    CFG_NEURON_COUNTS,
    CFG_SAMPLE_COUNT,
    CFG_TOTAL_ACTIVATIONS,
    CFG_TOTAL_WEIGHTS_AND_BIASES,
    CFG_WIDEST_LAYER,
)

FLOAT_SIZE = 4

# ============================================================================
# LAYOUT
# ============================================================================


@dataclass(frozen=True)
class NetworkLayout:
    """Shape of one minibatch on the device."""

    neuron_counts: Tuple[int, ...]
    input_width: int
    sample_count: int

    @property
    def layer_count(self) -> int:
        return len(self.neuron_counts)

    @property
    def output_width(self) -> int:
        return self.neuron_counts[-1]

    @property
    def total_activations(self) -> int:
        return sum(self.neuron_counts)

    @property
    def widest(self) -> int:
        return max(self.neuron_counts)

    @property
    def total_weights_and_biases(self) -> int:
        return self.param_offset(self.layer_count)

    def layer_inputs(self, layer: int) -> int:
        return self.input_width if layer == 0 else self.neuron_counts[layer - 1]

    def activation_offset(self, layer: int) -> int:
        """First float of a layer's activation block; its z block is z_region() later."""
        return sum(self.neuron_counts[:layer]) * self.sample_count

    def z_region(self) -> int:
        return self.total_activations * self.sample_count

    def param_offset(self, layer: int) -> int:
        """First float of a layer's weight matrix; the biases follow the matrix."""
        return sum(
            self.neuron_counts[l] * (self.layer_inputs(l) + 1) for l in range(layer)
        )

    # Buffer sizes, in floats

    @property
    def activations_and_z_size(self) -> int:
        return self.z_region() * 2

    @property
    def delta_k_size(self) -> int:
        return self.sample_count * 2 * self.widest

    @property
    def gradient_size(self) -> int:
        return self.sample_count * self.total_weights_and_biases

    @property
    def inputs_size(self) -> int:
        return self.sample_count * self.input_width

    @property
    def desired_outputs_size(self) -> int:
        return self.sample_count * self.output_width

    def to_config_record(self, activation_id: int, cost_id: int) -> np.ndarray:
        """Pack into the uint32 network-config record the kernels decode."""
        record = np.zeros(CFG_NEURON_COUNTS + self.layer_count, dtype=np.uint32)
        record[CFG_INITIAL_LAYER] = 0
        record[CFG_LAYER_COUNT] = self.layer_count
        record[CFG_SAMPLE_COUNT] = self.sample_count
        record[CFG_ACTIVATION_ID] = activation_id
        record[CFG_COST_ID] = cost_id
        record[CFG_TOTAL_ACTIVATIONS] = self.total_activations
        record[CFG_TOTAL_WEIGHTS_AND_BIASES] = self.total_weights_and_biases
        record[CFG_WIDEST_LAYER] = self.widest
        record[CFG_INPUT_COUNT] = self.input_width
        record[CFG_NEURON_COUNTS:] = self.neuron_counts
        return record

    @classmethod
    def from_config_record(cls, record: np.ndarray) -> Tuple["NetworkLayout", int, int]:
        """Decode a config record.

        Returns:
            (layout, activation_id, cost_id)
        """
        layer_count = int(record[CFG_LAYER_COUNT])
        neuron_counts = tuple(
            int(n) for n in record[CFG_NEURON_COUNTS : CFG_NEURON_COUNTS + layer_count]
        )
        layout = cls(
            neuron_counts=neuron_counts,
            input_width=int(record[CFG_INPUT_COUNT]),
            sample_count=int(record[CFG_SAMPLE_COUNT]),
        )
        return layout, int(record[CFG_ACTIVATION_ID]), int(record[CFG_COST_ID])


def network_layout_create(network: Network, sample_count: int) -> NetworkLayout:
    if sample_count <= 0:
        raise InvalidInputError(f"sample_count must be positive, got {sample_count}")
    return NetworkLayout(
        neuron_counts=tuple(layer.neuron_count for layer in network.layers),
        input_width=network.input_width,
        sample_count=sample_count,
    )


# ============================================================================
# PACKING
# ============================================================================


def flatten_parameters(network: Network) -> np.ndarray:
    """Weights+biases buffer contents for the network."""
    parts: List[np.ndarray] = []
    for layer in network.layers:
        parts.append(layer.weights.reshape(-1))
        parts.append(layer.bias)
    return np.ascontiguousarray(np.concatenate(parts), dtype=np.float32)


def pack_inputs(
    examples: Sequence[TrainingExample], begin: int, end: int
) -> np.ndarray:
    return np.ascontiguousarray(
        np.stack([examples[i].input for i in range(begin, end)]), dtype=np.float32
    ).reshape(-1)


def pack_desired_outputs(
    examples: Sequence[TrainingExample], begin: int, end: int
) -> np.ndarray:
    return np.ascontiguousarray(
        np.stack([examples[i].desired_output for i in range(begin, end)]),
        dtype=np.float32,
    ).reshape(-1)


# ============================================================================
# GRADIENT REDUCTION
# ============================================================================


def reduce_gradient(
    per_sample: np.ndarray, layout: NetworkLayout, network: Network
) -> GradientVector:
    """Sum the per-sample gradient blocks and unflatten.

    Every sample contributes to every weight and every bias.

    Args:
        per_sample: Raw gradient buffer, samples * total_weights_and_biases floats
        layout: Layout the buffer was produced with
        network: Network whose shape the result mirrors

    Returns:
        Summed gradient

    Raises:
        InvalidInputError: If the buffer size doesn't match the layout
    """
    per_sample = np.asarray(per_sample, dtype=np.float32).reshape(-1)
    if per_sample.size != layout.gradient_size:
        raise InvalidInputError(
            f"Gradient buffer has {per_sample.size} values, layout expects "
            f"{layout.gradient_size}"
        )
    blocks = per_sample.reshape(layout.sample_count, layout.total_weights_and_biases)
    return gradient_from_flat(network, blocks.astype(np.float64).sum(axis=0))
