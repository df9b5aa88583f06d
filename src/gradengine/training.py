"""Minibatch SGD training loop

MUTATION SEMANTICS:
- train() and apply_gradient() MUTATE the network's layers in place, and only
  between gradient computations
- train_in_background() hands the network to a worker thread; don't touch it
  until the promise is finished
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np

from .activations import ActivationFunction
from .costs import CostFunction, MeanSquaredError
from .errors import InvalidInputError
from .math_lib import MathLib
from .network import GradientVector, Network, TrainingExample

logger = logging.getLogger(__name__)

# ============================================================================
# CONFIGURATION
# ============================================================================


@dataclass
class TrainingConfig:
    """Hyperparameters of one training run."""

    epochs: int = 100
    minibatch_size: int = 16
    learning_rate: float = 0.5
    cost_function: CostFunction = field(default_factory=MeanSquaredError)
    shuffle: bool = True
    """Reorder the examples at the start of every epoch"""
    seed: Optional[int] = None


def training_config_validate(config: TrainingConfig) -> None:
    """
    Raises:
        ValueError: If any parameter is invalid
    """
    if config.epochs < 0:
        raise ValueError(f"epochs must be non-negative, got {config.epochs}")
    if config.minibatch_size <= 0:
        raise ValueError(f"minibatch_size must be positive, got {config.minibatch_size}")
    if config.learning_rate <= 0:
        raise ValueError(f"learning_rate must be positive, got {config.learning_rate}")


class TrainingSuite:
    def __init__(self, examples: Sequence[TrainingExample], config: TrainingConfig):
        training_config_validate(config)
        self.examples = list(examples)
        self.config = config


# ============================================================================
# PROMISE
# ============================================================================


class TrainingPromise:
    """Progress and cancellation handle of a training run.

    Cancellation is cooperative: stop_at_next_epoch() is checked between
    epochs, never inside a minibatch.
    """

    def __init__(self, epochs: int = 0):
        self.epochs = epochs
        self.epochs_done = 0
        self.epoch_losses: List[float] = []
        self.error: Optional[BaseException] = None
        self._stop = threading.Event()
        self._finished = threading.Event()

    @property
    def progress(self) -> float:
        if self.epochs == 0:
            return 1.0 if self.is_finished() else 0.0
        return self.epochs_done / self.epochs

    def stop_at_next_epoch(self) -> None:
        self._stop.set()

    def stop_requested(self) -> bool:
        return self._stop.is_set()

    def is_finished(self) -> bool:
        return self._finished.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until training ends.

        Returns:
            False on timeout, True otherwise

        Raises:
            The exception that ended the worker, if any
        """
        if not self._finished.wait(timeout):
            return False
        if self.error is not None:
            raise self.error
        return True

    def _finish(self, error: Optional[BaseException] = None) -> None:
        self.error = error
        self._finished.set()


# ============================================================================
# TRAINING
# ============================================================================


def apply_gradient(network: Network, gradient: GradientVector, scale: float) -> None:
    """network += scale * gradient, weights and biases alike.

    Raises:
        InvalidInputError: If the gradient's shape doesn't mirror the network
    """
    if len(gradient) != len(network.layers):
        raise InvalidInputError(
            f"Gradient has {len(gradient)} layers, network has {len(network.layers)}"
        )
    for index, (layer, grad_layer) in enumerate(zip(network.layers, gradient)):
        if len(grad_layer) != layer.neuron_count:
            raise InvalidInputError(
                f"Layer {index}: gradient has {len(grad_layer)} neurons, "
                f"layer has {layer.neuron_count}"
            )
        weights = np.stack([neuron.weights for neuron in grad_layer])
        bias = np.array([neuron.bias for neuron in grad_layer])
        if weights.shape != layer.weights.shape:
            raise InvalidInputError(
                f"Layer {index}: gradient weights {weights.shape}, "
                f"layer weights {layer.weights.shape}"
            )
        layer.weights += (scale * weights).astype(np.float32)
        layer.bias += (scale * bias).astype(np.float32)


def mean_cost(
    network: Network,
    examples: Sequence[TrainingExample],
    activation: ActivationFunction,
    cost: CostFunction,
) -> float:
    """Average cost of the network over examples, host forward pass."""
    if not examples:
        return 0.0
    total = 0.0
    for example in examples:
        activations, _ = network.compute_with_intermediates(example.input, activation)
        total += cost.cost(activations[-1], example.desired_output)
    return total / len(examples)


def train(
    network: Network,
    suite: TrainingSuite,
    math_lib: MathLib,
    activation: ActivationFunction,
    promise: Optional[TrainingPromise] = None,
) -> TrainingPromise:
    """Plain SGD over the suite: weights -= learning_rate / batch_size * gradient.

    Args:
        network: Network to train (mutated)
        suite: Examples and hyperparameters
        math_lib: Gradient backend
        activation: Activation strategy of every layer
        promise: Progress handle to report into, created if None

    Returns:
        The promise, finished
    """
    config = suite.config
    if promise is None:
        promise = TrainingPromise(config.epochs)
    promise.epochs = config.epochs

    rng = np.random.default_rng(config.seed)
    examples = suite.examples
    cost = config.cost_function

    try:
        for epoch in range(config.epochs):
            if promise.stop_requested():
                logger.info("Training stopped before epoch %d", epoch + 1)
                break

            if config.shuffle:
                examples = [suite.examples[i] for i in rng.permutation(len(suite.examples))]

            for begin in range(0, len(examples), config.minibatch_size):
                end = min(begin + config.minibatch_size, len(examples))
                gradient = math_lib.compute_minibatch_gradient(
                    network, examples, begin, end, activation, cost
                )
                apply_gradient(network, gradient, -config.learning_rate / (end - begin))

            loss = mean_cost(network, suite.examples, activation, cost)
            promise.epoch_losses.append(loss)
            promise.epochs_done = epoch + 1
            logger.info("Epoch %d/%d: cost %.6f", epoch + 1, config.epochs, loss)
    except Exception as e:
        promise._finish(e)
        raise

    promise._finish()
    return promise


def train_in_background(
    network: Network,
    suite: TrainingSuite,
    math_lib: MathLib,
    activation: ActivationFunction,
) -> TrainingPromise:
    """Run train() on a worker thread; wait() on the promise re-raises its failure."""
    promise = TrainingPromise(suite.config.epochs)
    worker_lib = math_lib.clone()

    def _run() -> None:
        try:
            train(network, suite, worker_lib, activation, promise)
        except Exception:
            logger.exception("Background training failed")

    threading.Thread(target=_run, name="gradengine-train", daemon=True).start()
    return promise
