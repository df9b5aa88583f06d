"""Backend-selecting math facade

MathLib is what the network and the training loop talk to. Without a device
every call runs the scalar reference path; with one, single-layer inference
and minibatch gradients run as device kernels. Both give the same results
within float32 tolerance.
"""

from typing import Optional, Sequence

import numpy as np

from . import pure_math
from .activations import ActivationFunction
from .costs import CostFunction
from .errors import InvalidInputError
from .gpu import gpu_batch, gpu_pass_forward
from .gpu.gpu_device import ComputeDevice
from .network import GradientVector, Network, TrainingExample


class MathLib:
    def __init__(self, device: Optional[ComputeDevice] = None):
        self.device = device

    @property
    def has_device(self) -> bool:
        return self.device is not None

    def clone(self) -> "MathLib":
        """Engine bound to the same device, for a worker that serializes its calls."""
        return MathLib(self.device)

    def calculate_layer(
        self,
        weights: np.ndarray,
        bias: np.ndarray,
        prev_activations: np.ndarray,
        activation: ActivationFunction,
    ) -> np.ndarray:
        """activation(W @ prev + b) for one layer.

        Raises:
            InvalidInputError: If the shapes don't line up
            DeviceExecutionError: If the device fails
        """
        if self.device is not None:
            return gpu_pass_forward.calculate_layer(
                self.device, weights, bias, prev_activations, activation
            )

        weights = np.asarray(weights, dtype=np.float32)
        bias = np.asarray(bias, dtype=np.float32).reshape(-1)
        prev = np.asarray(prev_activations, dtype=np.float32).reshape(-1)
        if weights.ndim != 2 or bias.shape != (weights.shape[0],) or prev.shape != (
            weights.shape[1],
        ):
            raise InvalidInputError(
                f"Layer shapes don't line up: weights {weights.shape}, "
                f"bias {bias.shape}, input {prev.shape}"
            )
        return pure_math.calculate_layer(weights, bias, prev, activation)

    def compute_minibatch_gradient(
        self,
        network: Network,
        examples: Sequence[TrainingExample],
        begin: int,
        end: int,
        activation: ActivationFunction,
        cost: CostFunction,
    ) -> GradientVector:
        """Summed gradient over examples[begin:end].

        Raises:
            InvalidInputError: Bad dimensions, range or (device path) strategy
            DeviceExecutionError: Device failure, no partial result
        """
        if self.device is not None:
            return gpu_batch.compute_gradient(
                self.device, network, examples, activation, cost, begin, end
            )
        return pure_math.compute_gradient(network, examples, activation, cost, begin, end)

    def __repr__(self) -> str:
        backend = self.device.name if self.device is not None else "cpu"
        return f"MathLib({backend})"
