"""Core data types - plain dataclasses only"""

from dataclasses import dataclass
from enum import Enum, IntFlag
from typing import Any

# ============================================================================
# DEVICE TYPES
# ============================================================================


@dataclass
class GPUConfig:
    """
    Centralized GPU configuration for dispatch sizing and device limits.

    This dataclass is immutable - do not modify fields after creation.
    """

    neuron_group_size: int = 32
    """
    Workgroup size for 1D dispatches along the neuron axis
    (single-layer inference).

    Constraints:
    - Must be power of 2
    - Must not exceed 256 (WebGPU default invocation limit)
    """

    tile_size: int = 8
    """
    Edge of the 2D (neuron x sample) workgroup used by the training
    forward and backward passes. 8 gives 8x8 = 64 invocations per group.
    """

    max_workgroups_per_dim: int = 65535
    """
    Maximum workgroups per dimension (WebGPU limit).

    This is a WebGPU limit and should not be changed.
    """

    power_preference: str = "high-performance"
    """Adapter preference passed to wgpu when creating a device"""


class KernelId(Enum):
    """The three kernels every compute device must provide."""

    CALC_SINGLE_LAYER = "calc_single_layer"
    FORWARD_PASS = "training_forward_pass"
    BACKWARD_PASS = "training_backward_pass"


class BufferAccess(IntFlag):
    """How kernels may touch a buffer."""

    READ = 1
    WRITE = 2
    READ_WRITE = READ | WRITE


@dataclass
class DeviceBuffer:
    """
    Owned handle to one device allocation.

    Created by ComputeDevice.allocate_buffer, released by
    ComputeDevice.release_all_transient_allocations. The backend object is
    never exposed outside the device that created it.
    """

    handle: Any
    size_bytes: int
    access: BufferAccess
    released: bool = False


# ============================================================================
# NETWORK CONFIG RECORD
# ============================================================================

# Field indices of the flattened uint32 network-config record
CFG_INITIAL_LAYER = 0
CFG_LAYER_COUNT = 1
CFG_SAMPLE_COUNT = 2
CFG_ACTIVATION_ID = 3
CFG_COST_ID = 4
CFG_TOTAL_ACTIVATIONS = 5
CFG_TOTAL_WEIGHTS_AND_BIASES = 6
CFG_WIDEST_LAYER = 7
CFG_INPUT_COUNT = 8
CFG_NEURON_COUNTS = 9

# Buffer arguments of each kernel, named as in the WGSL source. Argument i is
# bound at binding i + 1; binding 0 is the per-dispatch uniform.
KERNEL_ARGUMENTS = {
    KernelId.CALC_SINGLE_LAYER: (
        "weights",
        "bias",
        "prev_activations",
        "layer_output",
    ),
    KernelId.FORWARD_PASS: (
        "network_config",
        "activations_and_z",
        "inputs",
        "weights_and_biases",
    ),
    KernelId.BACKWARD_PASS: (
        "network_config",
        "activations_and_z",
        "delta_k",
        "gradient",
        "desired_outputs",
        "inputs",
        "weights_and_biases",
    ),
}

KERNEL_ARGUMENT_COUNTS = {kernel: len(args) for kernel, args in KERNEL_ARGUMENTS.items()}

# Length of the per-dispatch uniform, in uint32
DISPATCH_PARAM_COUNT = 4
