"""Error / cost strategies

A cost strategy turns the output layer's actual vs. desired values into the
output delta that seeds backpropagation.
"""

from enum import IntEnum
from typing import Dict, Type

import numpy as np

from .activations import ActivationFunction


class CostId(IntEnum):
    MEAN_SQUARED = 0
    CROSS_ENTROPY = 1


class CostFunction:
    """Interface for cost strategies."""

    device_id: CostId

    def delta(self, z, actual, desired, activation: ActivationFunction):
        raise NotImplementedError

    def cost(self, actual, desired) -> float:
        """Total cost of one example, used for progress reporting."""
        raise NotImplementedError

    def device_function_id(self) -> int:
        return int(self.device_id)

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class MeanSquaredError(CostFunction):
    """C = 1/2 * sum((a - y)^2), delta = (a - y) * f'(z)."""

    device_id = CostId.MEAN_SQUARED

    def delta(self, z, actual, desired, activation: ActivationFunction):
        return (actual - desired) * activation.derivative(z)

    def cost(self, actual, desired) -> float:
        diff = np.asarray(actual, dtype=np.float64) - np.asarray(desired, dtype=np.float64)
        return float(0.5 * np.sum(diff * diff))


class CrossEntropy(CostFunction):
    """Binary cross-entropy; with a sigmoid output the delta is a - y.

    The f'(z) factor cancels against the cost derivative, so the delta does
    not depend on the activation.
    """

    device_id = CostId.CROSS_ENTROPY

    def delta(self, z, actual, desired, activation: ActivationFunction):
        return actual - desired

    def cost(self, actual, desired) -> float:
        a = np.clip(np.asarray(actual, dtype=np.float64), 1e-12, 1.0 - 1e-12)
        y = np.asarray(desired, dtype=np.float64)
        return float(-np.sum(y * np.log(a) + (1.0 - y) * np.log(1.0 - a)))


COSTS: Dict[str, Type[CostFunction]] = {
    "mse": MeanSquaredError,
    "cross_entropy": CrossEntropy,
}

_BY_DEVICE_ID: Dict[int, Type[CostFunction]] = {
    int(cls.device_id): cls for cls in COSTS.values()
}


def cost_create(name: str) -> CostFunction:
    """Create a cost strategy by name.

    Raises:
        ValueError: If the name is unknown
    """
    try:
        return COSTS[name]()
    except KeyError:
        raise ValueError(
            f"Unknown cost function {name!r}, expected one of {sorted(COSTS)}"
        ) from None


def cost_from_device_id(function_id: int) -> CostFunction:
    return _BY_DEVICE_ID[int(function_id)]()


def is_device_cost(function_id: int) -> bool:
    return int(function_id) in _BY_DEVICE_ID
