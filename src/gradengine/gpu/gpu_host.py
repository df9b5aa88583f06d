"""Host (numpy) execution of the device kernels

HostComputeDevice mimics the wgpu device API over plain bytearrays: the same
three kernels, the same flat buffer layout, float32 arithmetic and lane
masking. Buffers allocated as READ are handed to the kernels as read-only
views, so a kernel writing to one fails the same way a misbound storage
buffer would on the GPU.
"""

from typing import Dict, Optional, Tuple

import numpy as np

from ..activations import activation_from_device_id
from ..costs import cost_from_device_id
from ..errors import DeviceExecutionError
from .gpu_device import ComputeDevice
from .gpu_layout import NetworkLayout
from .gpu_types import KERNEL_ARGUMENTS, BufferAccess, DeviceBuffer, GPUConfig, KernelId


def _view(buffer: DeviceBuffer, dtype=np.float32) -> np.ndarray:
    arr = np.frombuffer(buffer.handle, dtype=dtype)
    if not buffer.access & BufferAccess.WRITE:
        arr.setflags(write=False)
    return arr


class HostComputeDevice(ComputeDevice):
    """ComputeDevice that runs the kernels with numpy on the host."""

    name = "host"

    def __init__(self, config: Optional[GPUConfig] = None):
        super().__init__(config)
        self._kernels = {
            KernelId.CALC_SINGLE_LAYER: self._calc_single_layer,
            KernelId.FORWARD_PASS: self._training_forward_pass,
            KernelId.BACKWARD_PASS: self._training_backward_pass,
        }

    def _create(self, size_bytes, access, data):
        handle = bytearray(size_bytes)
        if data:
            handle[: len(data)] = data
        return handle

    def _write(self, handle, offset, data):
        handle[offset : offset + len(data)] = data

    def _read(self, handle, offset, length):
        return bytes(handle[offset : offset + length])

    def _destroy(self, handle):
        pass

    def _dispatch(self, kernel, arguments, global_size, workgroups, params):
        named = dict(zip(KERNEL_ARGUMENTS[kernel], arguments))
        with np.errstate(over="ignore"):
            self._kernels[kernel](named, global_size, params)

    # ========================================================================
    # KERNELS
    # ========================================================================

    def _calc_single_layer(
        self, args: Dict[str, DeviceBuffer], global_size, params: np.ndarray
    ) -> None:
        rows, cols, activation_id = (int(p) for p in params[:3])
        activation = self._activation(activation_id)
        active = min(rows, global_size[0])

        weights = _view(args["weights"])[: rows * cols].reshape(rows, cols)
        bias = _view(args["bias"])[:rows]
        prev = _view(args["prev_activations"])[:cols]
        out = _view(args["layer_output"])

        z = weights[:active] @ prev + bias[:active]
        out[:active] = activation.value(z)

    def _training_forward_pass(
        self, args: Dict[str, DeviceBuffer], global_size, params: np.ndarray
    ) -> None:
        layout, activation_id, _ = NetworkLayout.from_config_record(
            _view(args["network_config"], np.uint32)
        )
        activation = self._activation(activation_id)
        layer = int(params[0])
        neurons, inputs_per_neuron, samples = self._layer_shape(layout, layer)
        n_active = min(neurons, global_size[0])
        s_active = min(samples, global_size[1])

        act = _view(args["activations_and_z"])
        prev = self._previous_activations(layout, layer, act, args)
        weights, bias = self._layer_parameters(layout, layer, args)

        z = prev[:s_active] @ weights[:n_active].T + bias[:n_active]

        start = layout.activation_offset(layer)
        block = act[start : start + samples * neurons].reshape(samples, neurons)
        z_block = act[
            layout.z_region() + start : layout.z_region() + start + samples * neurons
        ].reshape(samples, neurons)
        block[:s_active, :n_active] = activation.value(z)
        z_block[:s_active, :n_active] = z

    def _training_backward_pass(
        self, args: Dict[str, DeviceBuffer], global_size, params: np.ndarray
    ) -> None:
        layout, activation_id, cost_id = NetworkLayout.from_config_record(
            _view(args["network_config"], np.uint32)
        )
        activation = self._activation(activation_id)
        layer = int(params[0])
        neurons, inputs_per_neuron, samples = self._layer_shape(layout, layer)
        n_active = min(neurons, global_size[0])
        s_active = min(samples, global_size[1])

        act = _view(args["activations_and_z"])
        start = layout.activation_offset(layer)
        a = act[start : start + samples * neurons].reshape(samples, neurons)
        z = act[
            layout.z_region() + start : layout.z_region() + start + samples * neurons
        ].reshape(samples, neurons)
        a = a[:s_active, :n_active]
        z = z[:s_active, :n_active]

        delta_k = _view(args["delta_k"])[: layout.delta_k_size].reshape(
            samples, 2, layout.widest
        )
        if layer == layout.layer_count - 1:
            desired = _view(args["desired_outputs"])[: samples * neurons].reshape(
                samples, neurons
            )
            cost = self._cost(cost_id)
            delta = cost.delta(z, a, desired[:s_active, :n_active], activation)
        else:
            next_neurons = layout.neuron_counts[layer + 1]
            next_weights, _ = self._layer_parameters(layout, layer + 1, args)
            next_delta = delta_k[:s_active, (layer + 1) % 2, :next_neurons]
            delta = (next_delta @ next_weights)[:, :n_active] * activation.derivative(z)
        delta = np.asarray(delta, dtype=np.float32)
        delta_k[:s_active, layer % 2, :n_active] = delta

        prev = self._previous_activations(layout, layer, act, args)[:s_active]
        gradient = _view(args["gradient"])[: layout.gradient_size].reshape(
            samples, layout.total_weights_and_biases
        )
        offset = layout.param_offset(layer)
        rows = delta[:, :, None] * prev[:, None, :]
        gradient[:s_active, offset : offset + n_active * inputs_per_neuron] = rows.reshape(
            s_active, n_active * inputs_per_neuron
        )
        bias_offset = offset + neurons * inputs_per_neuron
        gradient[:s_active, bias_offset : bias_offset + n_active] = delta

    # ========================================================================
    # HELPERS
    # ========================================================================

    @staticmethod
    def _layer_shape(layout: NetworkLayout, layer: int):
        if not 0 <= layer < layout.layer_count:
            raise DeviceExecutionError(
                f"Layer cursor {layer} outside network of {layout.layer_count} layers"
            )
        return layout.neuron_counts[layer], layout.layer_inputs(layer), layout.sample_count

    @staticmethod
    def _previous_activations(
        layout: NetworkLayout, layer: int, act: np.ndarray, args: Dict[str, DeviceBuffer]
    ) -> np.ndarray:
        width = layout.layer_inputs(layer)
        samples = layout.sample_count
        if layer == 0:
            return _view(args["inputs"])[: samples * width].reshape(samples, width)
        start = layout.activation_offset(layer - 1)
        return act[start : start + samples * width].reshape(samples, width)

    @staticmethod
    def _layer_parameters(
        layout: NetworkLayout, layer: int, args: Dict[str, DeviceBuffer]
    ) -> Tuple[np.ndarray, np.ndarray]:
        neurons = layout.neuron_counts[layer]
        width = layout.layer_inputs(layer)
        offset = layout.param_offset(layer)
        params = _view(args["weights_and_biases"])
        weights = params[offset : offset + neurons * width].reshape(neurons, width)
        bias = params[offset + neurons * width : offset + neurons * (width + 1)]
        return weights, bias

    @staticmethod
    def _activation(function_id: int):
        try:
            return activation_from_device_id(function_id)
        except KeyError:
            raise DeviceExecutionError(
                f"No activation kernel for function id {function_id}"
            ) from None

    @staticmethod
    def _cost(function_id: int):
        try:
            return cost_from_device_id(function_id)
        except KeyError:
            raise DeviceExecutionError(
                f"No cost kernel for function id {function_id}"
            ) from None
