"""Exception types raised by the gradient engine"""


class GradEngineError(Exception):
    """Base class for every error raised by gradengine."""


class InvalidInputError(GradEngineError, ValueError):
    """Network, layer or example dimensions do not line up.

    Raised before any buffer is allocated or any value is computed.
    """


class DeviceExecutionError(GradEngineError, RuntimeError):
    """Allocation, dispatch or transfer failed on the compute device.

    The current minibatch is aborted and its transient device allocations
    are released before this propagates.
    """
