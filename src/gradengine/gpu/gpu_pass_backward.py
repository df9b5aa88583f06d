"""Backward pass operations - individual kernel dispatches

MUTATION SEMANTICS:
- Every dispatch MUTATES the delta_k and gradient buffers bound by the caller
- Each (sample, parameter) gradient slot is written exactly once per call, so
  the gradient buffer needs no zeroing between minibatches
"""

import logging

from ..costs import CostFunction, is_device_cost
from ..errors import InvalidInputError
from ..util import round_up
from .gpu_device import ComputeDevice
from .gpu_layout import NetworkLayout
from .gpu_types import KernelId

logger = logging.getLogger(__name__)

# ============================================================================
# BACKWARD PASS OPERATIONS
# ============================================================================


def validate_device_cost(cost: CostFunction) -> int:
    """Device function id of cost.

    Raises:
        InvalidInputError: If the kernels have no implementation for it
    """
    function_id = cost.device_function_id()
    if not is_device_cost(function_id):
        raise InvalidInputError(
            f"{cost!r} has no device implementation (function id {function_id})"
        )
    return function_id


def backward_pass_run(device: ComputeDevice, layout: NetworkLayout) -> None:
    """Dispatch the training backward kernel from the last layer down to layer 0.

    The desired outputs must be uploaded before the first dispatch; layer L
    consumes the deltas layer L+1 left in the other half of delta_k.
    """
    tile = device.config.tile_size
    samples = round_up(layout.sample_count, tile)
    for layer in range(layout.layer_count - 1, -1, -1):
        device.dispatch(
            KernelId.BACKWARD_PASS,
            (round_up(layout.neuron_counts[layer], tile), samples),
            (tile, tile),
            (layer,),
        )
    logger.debug("Backward pass: %d layers, %d samples", layout.layer_count, layout.sample_count)
