#!/usr/bin/env python3
"""gradengine command line

    gradengine check [--backend host|wgpu|cpu] ...   device vs scalar parity
    gradengine train [--backend ...] ...             XOR with minibatch SGD
"""

import argparse
import logging
import sys
from typing import List, Optional

import numpy as np

from .activations import ACTIVATIONS, activation_create
from .costs import COSTS, cost_create
from .errors import GradEngineError
from .gpu.gpu_device import WgpuComputeDevice
from .gpu.gpu_host import HostComputeDevice
from .gpu.gpu_types import GPUConfig
from .math_lib import MathLib
from .network import Network, TrainingExample, flatten_gradient
from .pure_math import compute_gradient
from .training import TrainingConfig, TrainingSuite, train

logger = logging.getLogger(__name__)

XOR_EXAMPLES = [
    ([0.0, 0.0], [0.0]),
    ([0.0, 1.0], [1.0]),
    ([1.0, 0.0], [1.0]),
    ([1.0, 1.0], [0.0]),
]


def math_lib_create(backend: str, config: Optional[GPUConfig] = None) -> MathLib:
    logger.info("Using %s backend", backend)
    if backend == "cpu":
        return MathLib()
    if backend == "host":
        return MathLib(HostComputeDevice(config))
    if backend == "wgpu":
        return MathLib(WgpuComputeDevice(config))
    raise ValueError(f"Unknown backend {backend!r}")


def gpu_config_create(args) -> Optional[GPUConfig]:
    """GPUConfig from the command line, None to let the device pick."""
    if args.tile_size is None and args.power_preference is None:
        return None
    overrides = {}
    if args.tile_size is not None:
        overrides["tile_size"] = args.tile_size
    if args.power_preference is not None:
        overrides["power_preference"] = args.power_preference
    return GPUConfig(**overrides)


def parse_layer_sizes(text: str) -> List[int]:
    try:
        sizes = [int(part) for part in text.split(",") if part.strip()]
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected comma-separated integers, got {text!r}")
    if not sizes or min(sizes) <= 0:
        raise argparse.ArgumentTypeError(f"Layer sizes must be positive, got {text!r}")
    return sizes


def check_command(args) -> int:
    """Compare the selected backend's minibatch gradient with the scalar path"""
    rng = np.random.default_rng(args.seed)
    network = Network.create_random(args.input_width, args.layers, seed=args.seed)
    examples = [
        TrainingExample(
            input=rng.uniform(-1.0, 1.0, args.input_width),
            desired_output=rng.uniform(0.0, 1.0, args.layers[-1]),
        )
        for _ in range(args.samples)
    ]
    activation = activation_create(args.activation)
    cost = cost_create(args.cost)

    math_lib = math_lib_create(args.backend, gpu_config_create(args))
    print(f"Checking {network} on {math_lib} with {args.samples} samples")

    reference = flatten_gradient(compute_gradient(network, examples, activation, cost))
    result = flatten_gradient(
        math_lib.compute_minibatch_gradient(
            network, examples, 0, len(examples), activation, cost
        )
    )

    abs_diff = np.abs(result - reference)
    rel_diff = abs_diff / np.maximum(np.abs(reference), 1e-12)
    print(f"  Parameters: {reference.size}")
    print(f"  Max abs diff: {abs_diff.max():.3e}")
    print(f"  Max rel diff: {rel_diff.max():.3e}")

    if not np.allclose(result, reference, rtol=args.rtol, atol=args.atol):
        print("FAILED: gradients differ beyond tolerance")
        return 1
    print("OK")
    return 0


def train_command(args) -> int:
    """Train a network on XOR and print the cost after every epoch"""
    examples = [TrainingExample(input=x, desired_output=y) for x, y in XOR_EXAMPLES]
    network = Network.create_random(2, [args.hidden, 1], seed=args.seed)
    activation = activation_create(args.activation)
    config = TrainingConfig(
        epochs=args.epochs,
        minibatch_size=args.batch_size,
        learning_rate=args.learning_rate,
        cost_function=cost_create(args.cost),
        seed=args.seed,
    )
    math_lib = math_lib_create(args.backend, gpu_config_create(args))

    print(f"Training {network} on XOR with {math_lib}")
    print(f"  Epochs: {config.epochs}")
    print(f"  Batch size: {config.minibatch_size}")
    print(f"  Learning rate: {config.learning_rate}")

    promise = train(network, TrainingSuite(examples, config), math_lib, activation)
    for epoch, loss in enumerate(promise.epoch_losses, start=1):
        print(f"Epoch {epoch}: mse {loss:.6f}")

    for x, y in XOR_EXAMPLES:
        output = network.compute(math_lib, x, activation)
        print(f"  {x} -> {output[0]:.4f} (want {y[0]})")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gradengine", description="Minibatch backprop gradient engine"
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_common(sub):
        sub.add_argument(
            "--backend",
            default="host",
            choices=["cpu", "host", "wgpu"],
            help="Gradient backend",
        )
        sub.add_argument("--activation", default="sigmoid", choices=sorted(ACTIVATIONS))
        sub.add_argument("--cost", default="mse", choices=sorted(COSTS))
        sub.add_argument("--seed", type=int, default=0, help="Random seed")
        sub.add_argument("--tile-size", type=int, help="Training kernel tile size")
        sub.add_argument(
            "--power-preference",
            choices=["high-performance", "low-power"],
            help="WGPU adapter preference",
        )

    check = subparsers.add_parser("check", help="Compare device and scalar gradients")
    add_common(check)
    check.add_argument("--input-width", type=int, default=8, help="Network input width")
    check.add_argument(
        "--layers",
        type=parse_layer_sizes,
        default=[16, 12, 4],
        help="Comma-separated neuron count of each layer",
    )
    check.add_argument("--samples", type=int, default=37, help="Minibatch size")
    check.add_argument("--rtol", type=float, default=1e-4)
    check.add_argument("--atol", type=float, default=1e-5)
    check.set_defaults(func=check_command)

    train_parser = subparsers.add_parser("train", help="Train XOR")
    add_common(train_parser)
    train_parser.add_argument("--epochs", type=int, default=1000, help="Number of epochs")
    train_parser.add_argument("--batch-size", type=int, default=4, help="Minibatch size")
    train_parser.add_argument("--learning-rate", type=float, default=2.0)
    train_parser.add_argument("--hidden", type=int, default=4, help="Hidden layer size")
    train_parser.set_defaults(func=train_command)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return args.func(args)
    except (GradEngineError, ValueError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
