"""Tests for WGSL kernel generation"""

import re

import pytest

from gradengine.activations import ActivationId
from gradengine.costs import CostId
from gradengine.gpu.gpu_kernels import (
    KERNEL_FACTORIES,
    create_calc_single_layer_kernel,
    create_training_backward_pass_kernel,
    create_training_forward_pass_kernel,
)
from gradengine.gpu.gpu_types import KERNEL_ARGUMENTS, GPUConfig, KernelId


def _bindings(source):
    return dict(
        (int(index), name)
        for index, name in re.findall(r"@binding\((\d+)\) var<[^>]+> (\w+)", source)
    )


@pytest.mark.parametrize("kernel", list(KernelId))
def test_bindings_follow_argument_order(kernel):
    source = KERNEL_FACTORIES[kernel](GPUConfig())
    bindings = _bindings(source)

    assert bindings[0] == "params"
    names = KERNEL_ARGUMENTS[kernel]
    assert [bindings[i + 1] for i in range(len(names))] == list(names)
    assert len(bindings) == len(names) + 1


@pytest.mark.parametrize("kernel", list(KernelId))
def test_every_binding_is_used(kernel):
    # Auto layouts drop unused bindings, which would break the bind group
    source = KERNEL_FACTORIES[kernel](GPUConfig())
    body = source.split("fn main", 1)[1]
    for name in _bindings(source).values():
        assert re.search(rf"\b{name}\b", body) or source.count(name) > 1, name


def test_storage_buffer_limit():
    source = create_training_backward_pass_kernel(8)
    assert source.count("var<storage") <= 8


def test_workgroup_sizes():
    assert "@workgroup_size(32, 1, 1)" in create_calc_single_layer_kernel(32)
    assert "@workgroup_size(8, 8, 1)" in create_training_forward_pass_kernel(8)
    assert "@workgroup_size(8, 8, 1)" in create_training_backward_pass_kernel(8)
    assert "@workgroup_size(64, 1, 1)" in KERNEL_FACTORIES[KernelId.CALC_SINGLE_LAYER](
        GPUConfig(neuron_group_size=64)
    )


@pytest.mark.parametrize(
    "factory, size",
    [
        (create_calc_single_layer_kernel, 0),
        (create_calc_single_layer_kernel, 48),
        (create_calc_single_layer_kernel, 512),
        (create_training_forward_pass_kernel, 6),
        (create_training_backward_pass_kernel, 32),
    ],
)
def test_invalid_workgroup_size(factory, size):
    with pytest.raises(ValueError):
        factory(size)


def test_function_ids_come_from_enums():
    source = create_training_backward_pass_kernel(8)
    assert f"const ACT_TANH: u32 = {int(ActivationId.TANH)}u;" in source
    assert f"const ACT_RELU: u32 = {int(ActivationId.RELU)}u;" in source
    assert f"const COST_MEAN_SQUARED: u32 = {int(CostId.MEAN_SQUARED)}u;" in source


def test_braces_balanced():
    for kernel in KernelId:
        source = KERNEL_FACTORIES[kernel](GPUConfig())
        assert source.count("{") == source.count("}")
        assert "{{" not in source
