"""
Pytest configuration and fixtures for gradengine tests
"""

import numpy as np
import pytest

from gradengine.errors import DeviceExecutionError
from gradengine.gpu.gpu_device import WgpuComputeDevice, device_create
from gradengine.gpu.gpu_host import HostComputeDevice
from gradengine.network import Layer, Network, TrainingExample

RTOL = 1e-4
ATOL = 1e-5


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "gpu: marks tests that require a WGPU adapter (deselect with '-m \"not gpu\"')"
    )


@pytest.fixture
def host_device():
    device = HostComputeDevice()
    yield device
    device.release_all_transient_allocations()


@pytest.fixture(scope="session")
def wgpu_device():
    """Fixture for the WGPU device (skips if no adapter is available)"""
    try:
        raw_device = device_create()
    except DeviceExecutionError as e:
        pytest.skip(f"WGPU not available: {e}")
    return WgpuComputeDevice(wgpu_device=raw_device)


def make_examples(rng, input_width, output_width, count):
    return [
        TrainingExample(
            input=rng.uniform(-1.0, 1.0, input_width),
            desired_output=rng.uniform(0.0, 1.0, output_width),
        )
        for _ in range(count)
    ]


@pytest.fixture
def worked_network():
    """2-2-1 network with hand-computable values"""
    return Network(
        [
            Layer(
                weights=np.array([[0.15, 0.20], [0.25, 0.30]]),
                bias=np.array([0.35, 0.35]),
            ),
            Layer(weights=np.array([[0.40, 0.45]]), bias=np.array([0.60])),
        ]
    )


@pytest.fixture
def worked_example():
    return TrainingExample(input=[0.05, 0.10], desired_output=[0.01])
