"""Forward pass operations - individual kernel dispatches

MUTATION SEMANTICS:
- calculate_layer allocates its own transient buffers and releases every
  transient allocation on the device before returning
- forward_pass_run only dispatches; the buffers must already be bound by the
  caller (see gpu_batch.batch_arguments_bind)
"""

import logging

import numpy as np

from ..activations import ActivationFunction, is_device_activation
from ..errors import DeviceExecutionError, InvalidInputError
from ..util import round_up
from .gpu_device import ComputeDevice
from .gpu_layout import FLOAT_SIZE, NetworkLayout
from .gpu_types import KERNEL_ARGUMENTS, BufferAccess, KernelId

logger = logging.getLogger(__name__)

# ============================================================================
# FORWARD PASS OPERATIONS
# ============================================================================


def validate_device_activation(activation: ActivationFunction) -> int:
    """Device function id of activation.

    Raises:
        InvalidInputError: If the kernels have no implementation for it
    """
    function_id = activation.device_function_id()
    if not is_device_activation(function_id):
        raise InvalidInputError(
            f"{activation!r} has no device implementation (function id {function_id})"
        )
    return function_id


def calculate_layer(
    device: ComputeDevice,
    weights: np.ndarray,
    bias: np.ndarray,
    prev_activations: np.ndarray,
    activation: ActivationFunction,
) -> np.ndarray:
    """Single layer on the device: activation(W @ prev + b).

    Args:
        device: Compute device
        weights: (rows, cols) weight matrix
        bias: (rows,) bias vector
        prev_activations: (cols,) input vector
        activation: Activation strategy

    Returns:
        (rows,) float32 output activations

    Raises:
        InvalidInputError: If shapes don't line up or the activation has no kernel
        DeviceExecutionError: If the device fails
    """
    weights = np.ascontiguousarray(weights, dtype=np.float32)
    bias = np.ascontiguousarray(bias, dtype=np.float32).reshape(-1)
    prev = np.ascontiguousarray(prev_activations, dtype=np.float32).reshape(-1)

    if weights.ndim != 2:
        raise InvalidInputError(f"Weight matrix must be 2D, got shape {weights.shape}")
    rows, cols = weights.shape
    if rows == 0 or cols == 0:
        raise InvalidInputError(f"Empty weight matrix {weights.shape}")
    if bias.shape != (rows,):
        raise InvalidInputError(f"Bias shape {bias.shape} doesn't match {rows} rows")
    if prev.shape != (cols,):
        raise InvalidInputError(
            f"Input length {prev.shape[0]} doesn't match {cols} weight columns"
        )
    function_id = validate_device_activation(activation)

    group = device.config.neuron_group_size
    kernel = KernelId.CALC_SINGLE_LAYER
    try:
        buffers = {
            "weights": device.allocate_buffer(weights.nbytes, BufferAccess.READ, weights),
            "bias": device.allocate_buffer(bias.nbytes, BufferAccess.READ, bias),
            "prev_activations": device.allocate_buffer(prev.nbytes, BufferAccess.READ, prev),
            "layer_output": device.allocate_buffer(rows * FLOAT_SIZE, BufferAccess.READ_WRITE),
        }
        for index, name in enumerate(KERNEL_ARGUMENTS[kernel]):
            device.set_argument(kernel, index, buffers[name])

        device.dispatch(kernel, (round_up(rows, group),), (group,), (rows, cols, function_id))
        raw = device.read_buffer(buffers["layer_output"], 0, rows * FLOAT_SIZE)
    except DeviceExecutionError:
        raise
    except Exception as e:
        raise DeviceExecutionError(f"Single-layer calculation failed: {e}") from e
    finally:
        device.release_all_transient_allocations()

    return np.frombuffer(raw, dtype=np.float32).copy()


def forward_pass_run(device: ComputeDevice, layout: NetworkLayout) -> None:
    """Dispatch the training forward kernel for layer 0 up to the last layer.

    Each dispatch covers round_up(neurons[L], tile) x round_up(samples, tile)
    lanes; layer L reads what layer L-1 wrote.
    """
    tile = device.config.tile_size
    samples = round_up(layout.sample_count, tile)
    for layer, neurons in enumerate(layout.neuron_counts):
        device.dispatch(
            KernelId.FORWARD_PASS,
            (round_up(neurons, tile), samples),
            (tile, tile),
            (layer,),
        )
    logger.debug("Forward pass: %d layers, %d samples", layout.layer_count, layout.sample_count)
