"""
Data-parallel (device) backend for minibatch gradients
"""

from .gpu_batch import (
    BatchBuffers,
    batch_arguments_bind,
    batch_buffers_create,
    compute_gradient,
)
from .gpu_device import (
    ComputeDevice,
    WgpuComputeDevice,
    device_config_create,
    device_config_validate,
    device_create,
    pipeline_get_or_create,
)
from .gpu_host import HostComputeDevice
from .gpu_layout import (
    NetworkLayout,
    flatten_parameters,
    network_layout_create,
    pack_desired_outputs,
    pack_inputs,
    reduce_gradient,
)
from .gpu_pass_backward import backward_pass_run, validate_device_cost
from .gpu_pass_forward import (
    calculate_layer,
    forward_pass_run,
    validate_device_activation,
)
from .gpu_types import (
    KERNEL_ARGUMENTS,
    BufferAccess,
    DeviceBuffer,
    GPUConfig,
    KernelId,
)
