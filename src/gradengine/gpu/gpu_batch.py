"""Minibatch gradient on a compute device

Flow of one call:
1. validate network, range, examples and strategy ids (nothing allocated yet)
2. allocate and fill the config, inputs, weights+biases buffers
3. forward pass, layer 0 up
4. upload desired outputs
5. backward pass, last layer down
6. read back the per-sample gradient blocks and reduce them on the host
7. release every transient allocation, also on failure
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from ..activations import ActivationFunction
from ..costs import CostFunction
from ..errors import DeviceExecutionError
from ..network import (
    GradientVector,
    Network,
    TrainingExample,
    create_gradient_vector,
    validate_minibatch,
)
from .gpu_device import ComputeDevice
from .gpu_layout import (
    FLOAT_SIZE,
    NetworkLayout,
    flatten_parameters,
    network_layout_create,
    pack_desired_outputs,
    pack_inputs,
    reduce_gradient,
)
from .gpu_pass_backward import backward_pass_run, validate_device_cost
from .gpu_pass_forward import forward_pass_run, validate_device_activation
from .gpu_types import KERNEL_ARGUMENTS, BufferAccess, DeviceBuffer, KernelId

logger = logging.getLogger(__name__)

# ============================================================================
# BATCH BUFFERS
# ============================================================================


@dataclass
class BatchBuffers:
    """Transient device buffers of one minibatch, named as the kernel arguments."""

    network_config: DeviceBuffer
    inputs: DeviceBuffer
    weights_and_biases: DeviceBuffer
    activations_and_z: DeviceBuffer
    delta_k: DeviceBuffer
    gradient: DeviceBuffer
    desired_outputs: DeviceBuffer


def batch_buffers_create(
    device: ComputeDevice,
    layout: NetworkLayout,
    config_record: np.ndarray,
    inputs: np.ndarray,
    parameters: np.ndarray,
) -> BatchBuffers:
    """Allocate every buffer of the minibatch; outputs start zeroed."""
    return BatchBuffers(
        network_config=device.allocate_buffer(
            config_record.nbytes, BufferAccess.READ, config_record
        ),
        inputs=device.allocate_buffer(inputs.nbytes, BufferAccess.READ, inputs),
        weights_and_biases=device.allocate_buffer(
            parameters.nbytes, BufferAccess.READ, parameters
        ),
        activations_and_z=device.allocate_buffer(
            layout.activations_and_z_size * FLOAT_SIZE, BufferAccess.READ_WRITE
        ),
        delta_k=device.allocate_buffer(
            layout.delta_k_size * FLOAT_SIZE, BufferAccess.READ_WRITE
        ),
        gradient=device.allocate_buffer(
            layout.gradient_size * FLOAT_SIZE, BufferAccess.READ_WRITE
        ),
        desired_outputs=device.allocate_buffer(
            layout.desired_outputs_size * FLOAT_SIZE, BufferAccess.READ
        ),
    )


def batch_arguments_bind(device: ComputeDevice, buffers: BatchBuffers) -> None:
    """Bind the buffers to the forward and backward kernels by argument name."""
    for kernel in (KernelId.FORWARD_PASS, KernelId.BACKWARD_PASS):
        for index, name in enumerate(KERNEL_ARGUMENTS[kernel]):
            device.set_argument(kernel, index, getattr(buffers, name))


# ============================================================================
# MINIBATCH GRADIENT
# ============================================================================


def compute_gradient(
    device: ComputeDevice,
    network: Network,
    examples: Sequence[TrainingExample],
    activation: ActivationFunction,
    cost: CostFunction,
    begin: int = 0,
    end: Optional[int] = None,
) -> GradientVector:
    """Accumulated gradient over examples[begin:end], computed on device.

    Numerically equivalent to pure_math.compute_gradient within float32
    tolerance.

    Args:
        device: Compute device (used by one caller at a time)
        network: Network to differentiate (read-only)
        examples: Training examples
        activation: Activation strategy, must have a device function id
        cost: Cost strategy, must have a device function id
        begin: First example index (inclusive)
        end: Last example index (exclusive), defaults to len(examples)

    Returns:
        Summed gradient, freshly allocated

    Raises:
        InvalidInputError: Bad dimensions, range or strategy (before any allocation)
        DeviceExecutionError: Any device failure; no partial gradient is returned
    """
    if end is None:
        end = len(examples)
    validate_minibatch(network, examples, begin, end)
    activation_id = validate_device_activation(activation)
    cost_id = validate_device_cost(cost)

    if begin == end:
        return create_gradient_vector(network)

    layout = network_layout_create(network, end - begin)
    config_record = layout.to_config_record(activation_id, cost_id)
    inputs = pack_inputs(examples, begin, end)
    desired = pack_desired_outputs(examples, begin, end)
    parameters = flatten_parameters(network)

    try:
        buffers = batch_buffers_create(device, layout, config_record, inputs, parameters)
        batch_arguments_bind(device, buffers)

        forward_pass_run(device, layout)
        device.upload_partial(buffers.desired_outputs, 0, desired)
        backward_pass_run(device, layout)

        raw = device.read_buffer(buffers.gradient, 0, layout.gradient_size * FLOAT_SIZE)
    except DeviceExecutionError:
        raise
    except Exception as e:
        raise DeviceExecutionError(f"Minibatch gradient failed: {e}") from e
    finally:
        device.release_all_transient_allocations()

    logger.debug(
        "Device gradient over %d examples for %r on %s",
        layout.sample_count,
        network,
        device.name,
    )
    return reduce_gradient(np.frombuffer(raw, dtype=np.float32), layout, network)
