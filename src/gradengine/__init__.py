"""
Minibatch backpropagation gradient engine with a scalar reference path and a
data-parallel device path
"""

from .activations import (
    ActivationFunction,
    FastSigmoidActivation,
    IdentityActivation,
    ReLUActivation,
    SigmoidActivation,
    TanhActivation,
    activation_create,
)
from .costs import CostFunction, CrossEntropy, MeanSquaredError, cost_create
from .errors import DeviceExecutionError, GradEngineError, InvalidInputError
from .math_lib import MathLib
from .network import (
    GradientVector,
    Layer,
    Network,
    NeuronGradient,
    TrainingExample,
    add_gradients,
    create_gradient_vector,
    flatten_gradient,
    gradient_from_flat,
)
from .training import (
    TrainingConfig,
    TrainingPromise,
    TrainingSuite,
    apply_gradient,
    train,
    train_in_background,
)
from .util import round_up

__version__ = "0.1.0"
