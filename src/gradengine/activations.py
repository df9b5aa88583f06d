"""Activation strategies

Every strategy works element-wise on Python floats and numpy arrays alike and
carries a stable id that the device kernels switch on. The ids are baked into
the generated WGSL, so they must never be renumbered.
"""

from enum import IntEnum
from typing import Dict, Type

import numpy as np


class ActivationId(IntEnum):
    SIGMOID = 0
    FAST_SIGMOID = 1
    TANH = 2
    RELU = 3
    IDENTITY = 4


# ============================================================================
# STRATEGIES
# ============================================================================


class ActivationFunction:
    """Interface for activation strategies."""

    device_id: ActivationId

    def value(self, x):
        raise NotImplementedError

    def derivative(self, x):
        """Derivative with respect to the pre-activation value x."""
        raise NotImplementedError

    def device_function_id(self) -> int:
        return int(self.device_id)

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class SigmoidActivation(ActivationFunction):
    """Logistic sigmoid 1 / (1 + e^-x)."""

    device_id = ActivationId.SIGMOID

    def value(self, x):
        with np.errstate(over="ignore"):
            return 1.0 / (1.0 + np.exp(-x))

    def derivative(self, x):
        s = self.value(x)
        return s * (1.0 - s)


class FastSigmoidActivation(ActivationFunction):
    """Rational sigmoid x / (1 + |x|), no exponentials."""

    device_id = ActivationId.FAST_SIGMOID

    def value(self, x):
        return x / (1.0 + np.abs(x))

    def derivative(self, x):
        div = 1.0 + np.abs(x)
        return 1.0 / (div * div)


class TanhActivation(ActivationFunction):
    device_id = ActivationId.TANH

    def value(self, x):
        return np.tanh(x)

    def derivative(self, x):
        t = np.tanh(x)
        return 1.0 - t * t


class ReLUActivation(ActivationFunction):
    """max(x, 0); the derivative at 0 is taken as 0."""

    device_id = ActivationId.RELU

    def value(self, x):
        return np.maximum(x, 0.0)

    def derivative(self, x):
        return np.where(np.asarray(x) > 0.0, 1.0, 0.0)


class IdentityActivation(ActivationFunction):
    device_id = ActivationId.IDENTITY

    def value(self, x):
        return x

    def derivative(self, x):
        return np.ones_like(x)


# ============================================================================
# REGISTRY
# ============================================================================

ACTIVATIONS: Dict[str, Type[ActivationFunction]] = {
    "sigmoid": SigmoidActivation,
    "fast_sigmoid": FastSigmoidActivation,
    "tanh": TanhActivation,
    "relu": ReLUActivation,
    "identity": IdentityActivation,
}

_BY_DEVICE_ID: Dict[int, Type[ActivationFunction]] = {
    int(cls.device_id): cls for cls in ACTIVATIONS.values()
}


def activation_create(name: str) -> ActivationFunction:
    """Create an activation strategy by name.

    Raises:
        ValueError: If the name is unknown
    """
    try:
        return ACTIVATIONS[name]()
    except KeyError:
        raise ValueError(
            f"Unknown activation {name!r}, expected one of {sorted(ACTIVATIONS)}"
        ) from None


def activation_from_device_id(function_id: int) -> ActivationFunction:
    """Resolve a device function id back to its strategy.

    Raises:
        KeyError: If no strategy carries this id
    """
    return _BY_DEVICE_ID[int(function_id)]()


def is_device_activation(function_id: int) -> bool:
    return int(function_id) in _BY_DEVICE_ID
