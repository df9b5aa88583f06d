"""Device management and the compute-device contract"""

import hashlib
import logging
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np
import wgpu

from ..errors import DeviceExecutionError, GradEngineError, InvalidInputError
from .gpu_kernels import KERNEL_FACTORIES
from .gpu_types import (
    DISPATCH_PARAM_COUNT,
    KERNEL_ARGUMENT_COUNTS,
    BufferAccess,
    DeviceBuffer,
    GPUConfig,
    KernelId,
)

logger = logging.getLogger(__name__)

# ============================================================================
# CONFIGURATION
# ============================================================================


def device_config_validate(config: GPUConfig) -> None:
    """
    Validate GPU configuration for correctness.

    Args:
        config: Configuration to validate

    Raises:
        ValueError: If any parameter is invalid
    """
    if (
        config.neuron_group_size <= 0
        or (config.neuron_group_size & (config.neuron_group_size - 1)) != 0
    ):
        raise ValueError(
            f"neuron_group_size must be power of 2, got {config.neuron_group_size}"
        )

    if config.neuron_group_size > 256:
        raise ValueError(
            f"neuron_group_size too large: {config.neuron_group_size}. "
            "WebGPU default invocation limit is 256."
        )

    if config.tile_size <= 0 or (config.tile_size & (config.tile_size - 1)) != 0:
        raise ValueError(f"tile_size must be power of 2, got {config.tile_size}")

    if config.tile_size * config.tile_size > 256:
        raise ValueError(
            f"tile_size too large: {config.tile_size}. "
            "tile_size^2 must not exceed 256 invocations."
        )

    if config.max_workgroups_per_dim <= 0:
        raise ValueError(
            f"max_workgroups_per_dim must be positive, got {config.max_workgroups_per_dim}"
        )

    if config.power_preference not in ("high-performance", "low-power"):
        raise ValueError(
            f"power_preference must be 'high-performance' or 'low-power', "
            f"got {config.power_preference!r}"
        )


def device_config_create(device: wgpu.GPUDevice) -> GPUConfig:
    """
    Create GPU configuration for a specific device.

    The neuron group stays at 32 lanes and the training tile at 8x8; only
    the workgroup-count limit follows what the device reports.

    Args:
        device: WGPU device

    Returns:
        GPUConfig for the device
    """
    default_config = GPUConfig()

    try:
        limits = device.limits
    except AttributeError:
        return default_config

    max_workgroups = limits.get(
        "max-compute-workgroups-per-dimension", default_config.max_workgroups_per_dim
    )
    return GPUConfig(
        max_workgroups_per_dim=min(max_workgroups, default_config.max_workgroups_per_dim)
    )


# ============================================================================
# DEVICE MANAGEMENT
# ============================================================================


def device_create(power_preference: str = "high-performance") -> wgpu.GPUDevice:
    """
    Create a new WGPU device

    Returns:
        WGPU device

    Raises:
        DeviceExecutionError: If no adapter is available or initialization fails
    """
    try:
        adapter = wgpu.gpu.request_adapter_sync(power_preference=power_preference)
        if adapter is None:
            raise RuntimeError("no compatible adapter")
        wgpu_device = adapter.request_device_sync()
    except Exception as e:
        raise DeviceExecutionError(f"WGPU initialization failed: {e}") from e

    logger.info("WGPU device initialized")
    return wgpu_device


def pipeline_get_or_create(
    device: wgpu.GPUDevice,
    pipeline_cache: Dict[str, wgpu.GPUComputePipeline],
    shader_code: str,
) -> wgpu.GPUComputePipeline:
    """Cache compute pipelines to avoid recompilation.

    Args:
        device: WGPU device
        pipeline_cache: sha256(shader) -> pipeline
        shader_code: WGSL shader source code

    Returns:
        Cached or newly compiled compute pipeline
    """
    shader_hash = hashlib.sha256(shader_code.encode("utf-8")).hexdigest()

    if shader_hash not in pipeline_cache:
        shader_module = device.create_shader_module(code=shader_code)
        pipeline_cache[shader_hash] = device.create_compute_pipeline(
            layout="auto",
            compute={
                "module": shader_module,
                "entry_point": "main",
            },
        )

    return pipeline_cache[shader_hash]


@contextmanager
def _device_errors(action: str) -> Iterator[None]:
    try:
        yield
    except GradEngineError:
        raise
    except Exception as e:
        raise DeviceExecutionError(f"{action} failed: {e}") from e


# ============================================================================
# COMPUTE DEVICE CONTRACT
# ============================================================================


class ComputeDevice:
    """
    Buffer allocation, argument binding, ordered dispatch and transfers.

    Subclasses implement the underscore hooks; the public methods validate,
    keep the allocation ledger and turn backend failures into
    DeviceExecutionError. Not thread-safe: one caller at a time.
    """

    name = "device"

    def __init__(self, config: Optional[GPUConfig] = None):
        self.config = config if config is not None else GPUConfig()
        device_config_validate(self.config)
        self._transient: List[DeviceBuffer] = []
        self._arguments: Dict[KernelId, Dict[int, DeviceBuffer]] = {
            kernel: {} for kernel in KernelId
        }
        self.total_allocations = 0

    @property
    def live_allocations(self) -> int:
        return len(self._transient)

    # Backend hooks

    def _create(self, size_bytes: int, access: BufferAccess, data: Optional[bytes]):
        raise NotImplementedError

    def _write(self, handle, offset: int, data: bytes) -> None:
        raise NotImplementedError

    def _read(self, handle, offset: int, length: int) -> bytes:
        raise NotImplementedError

    def _dispatch(
        self,
        kernel: KernelId,
        arguments: List[DeviceBuffer],
        global_size: Tuple[int, ...],
        workgroups: Tuple[int, int, int],
        params: np.ndarray,
    ) -> None:
        raise NotImplementedError

    def _destroy(self, handle) -> None:
        raise NotImplementedError

    # Contract

    def allocate_buffer(
        self,
        size_bytes: int,
        access: BufferAccess,
        initial_data: Optional[np.ndarray] = None,
    ) -> DeviceBuffer:
        """Allocate a transient buffer, optionally initialized (zero-filled otherwise).

        Raises:
            InvalidInputError: If the size is not a positive multiple of 4 or
                initial_data doesn't fit
            DeviceExecutionError: If the backend allocation fails
        """
        if size_bytes <= 0 or size_bytes % 4 != 0:
            raise InvalidInputError(
                f"Buffer size must be a positive multiple of 4, got {size_bytes}"
            )

        data = None
        if initial_data is not None:
            data = np.ascontiguousarray(initial_data).tobytes()
            if len(data) > size_bytes:
                raise InvalidInputError(
                    f"Initial data ({len(data)} bytes) exceeds buffer size ({size_bytes})"
                )

        with _device_errors(f"Allocating {size_bytes} bytes"):
            handle = self._create(size_bytes, access, data)

        buffer = DeviceBuffer(handle=handle, size_bytes=size_bytes, access=access)
        self._transient.append(buffer)
        self.total_allocations += 1
        return buffer

    def set_argument(self, kernel: KernelId, index: int, buffer: DeviceBuffer) -> None:
        """Bind buffer as argument index of kernel until the next release."""
        if not 0 <= index < KERNEL_ARGUMENT_COUNTS[kernel]:
            raise InvalidInputError(
                f"{kernel.value} takes {KERNEL_ARGUMENT_COUNTS[kernel]} arguments, "
                f"got index {index}"
            )
        if buffer.released:
            raise DeviceExecutionError("Cannot bind a released buffer")
        self._arguments[kernel][index] = buffer

    def dispatch(
        self,
        kernel: KernelId,
        global_size: Sequence[int],
        local_size: Sequence[int],
        params: Sequence[int],
    ) -> None:
        """Queue one kernel execution.

        Args:
            kernel: Kernel to run
            global_size: Lanes per dimension, each a multiple of local_size
            local_size: Workgroup shape, must match the compiled kernel
            params: Per-dispatch uniform, up to 4 uint32

        Raises:
            DeviceExecutionError: If arguments are missing or the dispatch fails
        """
        global_size = tuple(int(g) for g in global_size)
        local_size = tuple(int(l) for l in local_size)
        if len(global_size) != len(local_size) or not 1 <= len(global_size) <= 3:
            raise DeviceExecutionError(
                f"Mismatched dispatch dimensions {global_size} / {local_size}"
            )
        if any(l <= 0 or g % l != 0 for g, l in zip(global_size, local_size)):
            raise DeviceExecutionError(
                f"Global size {global_size} is not a multiple of local size {local_size}"
            )

        workgroups = [g // l for g, l in zip(global_size, local_size)]
        workgroups += [1] * (3 - len(workgroups))
        if max(workgroups) > self.config.max_workgroups_per_dim:
            raise DeviceExecutionError(
                f"Workgroup counts {tuple(workgroups)} exceed maximum "
                f"({self.config.max_workgroups_per_dim})"
            )

        bound = self._arguments[kernel]
        count = KERNEL_ARGUMENT_COUNTS[kernel]
        missing = [i for i in range(count) if i not in bound]
        if missing:
            raise DeviceExecutionError(f"{kernel.value}: arguments {missing} not set")

        uniform = np.zeros(DISPATCH_PARAM_COUNT, dtype=np.uint32)
        uniform[: len(params)] = params

        logger.debug(
            "dispatch %s global=%s local=%s params=%s",
            kernel.value,
            global_size,
            local_size,
            list(params),
        )
        with _device_errors(f"Dispatching {kernel.value}"):
            self._dispatch(
                kernel,
                [bound[i] for i in range(count)],
                global_size,
                (workgroups[0], workgroups[1], workgroups[2]),
                uniform,
            )

    def upload_partial(
        self,
        buffer: DeviceBuffer,
        offset: int,
        data: np.ndarray,
        blocking: bool = True,
    ) -> None:
        """Write data at byte offset, ordered before any later dispatch.

        The data is copied before returning, so the caller may reuse it
        whether or not blocking is set.
        """
        payload = np.ascontiguousarray(data).tobytes()
        self._check_range(buffer, offset, len(payload))
        with _device_errors("Upload"):
            self._write(buffer.handle, offset, payload)

    def read_buffer(self, buffer: DeviceBuffer, offset: int, length: int) -> bytes:
        """Blocking read of length bytes at offset, after all queued work."""
        self._check_range(buffer, offset, length)
        with _device_errors("Read-back"):
            return self._read(buffer.handle, offset, length)

    def release_all_transient_allocations(self) -> None:
        """Release every buffer allocated since the last release, unbinding them."""
        failures = []
        for buffer in self._transient:
            try:
                self._destroy(buffer.handle)
            except Exception as e:
                failures.append(e)
            buffer.released = True
        self._transient.clear()
        for bound in self._arguments.values():
            bound.clear()
        if failures:
            raise DeviceExecutionError(
                f"Releasing {len(failures)} buffer(s) failed: {failures[0]}"
            ) from failures[0]

    def _check_range(self, buffer: DeviceBuffer, offset: int, length: int) -> None:
        if buffer.released:
            raise DeviceExecutionError("Buffer already released")
        if offset < 0 or length < 0 or offset + length > buffer.size_bytes:
            raise DeviceExecutionError(
                f"Range [{offset}, {offset + length}) outside buffer of "
                f"{buffer.size_bytes} bytes"
            )
        if offset % 4 != 0 or length % 4 != 0:
            raise DeviceExecutionError(
                f"Offset {offset} and length {length} must be multiples of 4"
            )


# ============================================================================
# WGPU DEVICE
# ============================================================================


class WgpuComputeDevice(ComputeDevice):
    """ComputeDevice backed by wgpu-py and the generated WGSL kernels."""

    name = "wgpu"

    def __init__(
        self,
        config: Optional[GPUConfig] = None,
        wgpu_device: Optional[wgpu.GPUDevice] = None,
    ):
        if wgpu_device is None:
            wgpu_device = device_create(
                config.power_preference if config is not None else "high-performance"
            )
        if config is None:
            config = device_config_create(wgpu_device)
        super().__init__(config)

        self.device = wgpu_device
        self.pipeline_cache: Dict[str, wgpu.GPUComputePipeline] = {}
        self._uniforms: List[wgpu.GPUBuffer] = []

        with _device_errors("Compiling kernels"):
            self.pipelines = {
                kernel: pipeline_get_or_create(
                    self.device, self.pipeline_cache, factory(self.config)
                )
                for kernel, factory in KERNEL_FACTORIES.items()
            }

    def _create(self, size_bytes, access, data):
        buffer = self.device.create_buffer(
            size=size_bytes,
            usage=wgpu.BufferUsage.STORAGE
            | wgpu.BufferUsage.COPY_SRC
            | wgpu.BufferUsage.COPY_DST,
        )
        if data:
            self.device.queue.write_buffer(buffer, 0, data)
        return buffer

    def _write(self, handle, offset, data):
        self.device.queue.write_buffer(handle, offset, data)

    def _read(self, handle, offset, length):
        staging = self.device.create_buffer(
            size=length, usage=wgpu.BufferUsage.COPY_DST | wgpu.BufferUsage.MAP_READ
        )
        encoder = self.device.create_command_encoder()
        encoder.copy_buffer_to_buffer(handle, offset, staging, 0, length)
        self.device.queue.submit([encoder.finish()])

        staging.map_sync(wgpu.MapMode.READ)
        data = bytes(staging.read_mapped())
        staging.unmap()
        staging.destroy()
        return data

    def _dispatch(self, kernel, arguments, global_size, workgroups, params):
        pipeline = self.pipelines[kernel]

        params_buffer = self.device.create_buffer_with_data(
            data=params, usage=wgpu.BufferUsage.UNIFORM
        )
        self._uniforms.append(params_buffer)

        entries = [
            {
                "binding": 0,
                "resource": {"buffer": params_buffer, "offset": 0, "size": params.nbytes},
            }
        ]
        for i, buf in enumerate(arguments):
            entries.append(
                {
                    "binding": i + 1,
                    "resource": {"buffer": buf.handle, "offset": 0, "size": buf.size_bytes},
                }
            )
        bind_group = self.device.create_bind_group(
            layout=pipeline.get_bind_group_layout(0), entries=entries
        )

        encoder = self.device.create_command_encoder()
        compute_pass = encoder.begin_compute_pass()
        compute_pass.set_pipeline(pipeline)
        compute_pass.set_bind_group(0, bind_group)
        compute_pass.dispatch_workgroups(*workgroups)
        compute_pass.end()
        self.device.queue.submit([encoder.finish()])

    def _destroy(self, handle):
        handle.destroy()

    def release_all_transient_allocations(self) -> None:
        for uniform in self._uniforms:
            uniform.destroy()
        self._uniforms.clear()
        super().release_all_transient_allocations()
