"""WGSL kernels

The activation and cost ids are generated from the Python enums so that the
host strategies and the device switch statements can never drift apart.
"""

from typing import Callable, Dict

from ..activations import ActivationId
from ..costs import CostId
from .gpu_types import (
    CFG_ACTIVATION_ID,
    CFG_COST_ID,
    CFG_INPUT_COUNT,
    CFG_LAYER_COUNT,
    CFG_NEURON_COUNTS,
    CFG_SAMPLE_COUNT,
    CFG_TOTAL_ACTIVATIONS,
    CFG_TOTAL_WEIGHTS_AND_BIASES,
    CFG_WIDEST_LAYER,
    GPUConfig,
    KernelId,
)

# ============================================================================
# SHARED SNIPPETS
# ============================================================================


def _activation_functions() -> str:
    return f"""
const ACT_SIGMOID: u32 = {int(ActivationId.SIGMOID)}u;
const ACT_FAST_SIGMOID: u32 = {int(ActivationId.FAST_SIGMOID)}u;
const ACT_TANH: u32 = {int(ActivationId.TANH)}u;
const ACT_RELU: u32 = {int(ActivationId.RELU)}u;

// tanh() of large arguments is NaN on some drivers
const TANH_CLAMP: f32 = 15.0;

fn activate(x: f32, function_id: u32) -> f32 {{
    var result = x;
    if (function_id == ACT_SIGMOID) {{
        result = 1.0 / (1.0 + exp(-x));
    }} else if (function_id == ACT_FAST_SIGMOID) {{
        result = x / (1.0 + abs(x));
    }} else if (function_id == ACT_TANH) {{
        result = tanh(clamp(x, -TANH_CLAMP, TANH_CLAMP));
    }} else if (function_id == ACT_RELU) {{
        result = max(x, 0.0);
    }}
    return result;
}}

fn activate_prime(x: f32, function_id: u32) -> f32 {{
    var result = 1.0;
    if (function_id == ACT_SIGMOID) {{
        let s = 1.0 / (1.0 + exp(-x));
        result = s * (1.0 - s);
    }} else if (function_id == ACT_FAST_SIGMOID) {{
        let d = 1.0 + abs(x);
        result = 1.0 / (d * d);
    }} else if (function_id == ACT_TANH) {{
        let t = tanh(clamp(x, -TANH_CLAMP, TANH_CLAMP));
        result = 1.0 - t * t;
    }} else if (function_id == ACT_RELU) {{
        result = select(0.0, 1.0, x > 0.0);
    }}
    return result;
}}
"""


def _cost_functions() -> str:
    return f"""
const COST_MEAN_SQUARED: u32 = {int(CostId.MEAN_SQUARED)}u;
const COST_CROSS_ENTROPY: u32 = {int(CostId.CROSS_ENTROPY)}u;

fn cost_delta(z: f32, actual: f32, desired: f32, cost_id: u32, activation_id: u32) -> f32 {{
    var result = actual - desired;
    if (cost_id == COST_MEAN_SQUARED) {{
        result = result * activate_prime(z, activation_id);
    }}
    return result;
}}
"""


def _network_layout_functions() -> str:
    """Offset helpers that decode the network-config record."""
    return f"""
const CFG_LAYER_COUNT: u32 = {CFG_LAYER_COUNT}u;
const CFG_SAMPLE_COUNT: u32 = {CFG_SAMPLE_COUNT}u;
const CFG_ACTIVATION_ID: u32 = {CFG_ACTIVATION_ID}u;
const CFG_COST_ID: u32 = {CFG_COST_ID}u;
const CFG_TOTAL_ACTIVATIONS: u32 = {CFG_TOTAL_ACTIVATIONS}u;
const CFG_TOTAL_WEIGHTS_AND_BIASES: u32 = {CFG_TOTAL_WEIGHTS_AND_BIASES}u;
const CFG_WIDEST_LAYER: u32 = {CFG_WIDEST_LAYER}u;
const CFG_INPUT_COUNT: u32 = {CFG_INPUT_COUNT}u;
const CFG_NEURON_COUNTS: u32 = {CFG_NEURON_COUNTS}u;

fn layer_neurons(layer: u32) -> u32 {{
    return network_config[CFG_NEURON_COUNTS + layer];
}}

fn layer_inputs(layer: u32) -> u32 {{
    if (layer == 0u) {{
        return network_config[CFG_INPUT_COUNT];
    }}
    return network_config[CFG_NEURON_COUNTS + layer - 1u];
}}

// Start of a layer's activation block; z values sit z_region() further on
fn activation_offset(layer: u32) -> u32 {{
    var acc = 0u;
    for (var l = 0u; l < layer; l++) {{
        acc += layer_neurons(l);
    }}
    return acc * network_config[CFG_SAMPLE_COUNT];
}}

fn z_region() -> u32 {{
    return network_config[CFG_TOTAL_ACTIVATIONS] * network_config[CFG_SAMPLE_COUNT];
}}

// Start of a layer's weight matrix; its bias vector follows the matrix
fn param_offset(layer: u32) -> u32 {{
    var acc = 0u;
    for (var l = 0u; l < layer; l++) {{
        acc += layer_neurons(l) * (layer_inputs(l) + 1u);
    }}
    return acc;
}}
"""


def _validate_workgroup_size(name: str, size: int, limit: int) -> None:
    if size <= 0 or (size & (size - 1)) != 0:
        raise ValueError(f"{name} must be power of 2, got {size}")
    if size > limit:
        raise ValueError(f"{name} too large: {size}. Maximum is {limit}.")


# ============================================================================
# INFERENCE KERNEL
# ============================================================================


def create_calc_single_layer_kernel(workgroup_size: int) -> str:
    """
    Generate single-layer inference kernel: out = f(W @ prev + b)

    Args:
        workgroup_size: Threads per workgroup along the neuron axis

    Returns:
        WGSL kernel source code as string

    Raises:
        ValueError: If workgroup_size is invalid
    """
    _validate_workgroup_size("workgroup_size", workgroup_size, 256)

    return f"""
// One invocation per output neuron; lanes past params.rows do nothing

struct LayerParams {{
    rows: u32,
    cols: u32,
    activation_id: u32,
    pad0: u32,
}}

@group(0) @binding(0) var<uniform> params: LayerParams;
@group(0) @binding(1) var<storage, read> weights: array<f32>;
@group(0) @binding(2) var<storage, read> bias: array<f32>;
@group(0) @binding(3) var<storage, read> prev_activations: array<f32>;
@group(0) @binding(4) var<storage, read_write> layer_output: array<f32>;

{_activation_functions()}

@compute @workgroup_size({workgroup_size}, 1, 1)
fn main(@builtin(global_invocation_id) global_id: vec3<u32>) {{
    let row = global_id.x;
    if (row >= params.rows) {{
        return;
    }}

    let row_start = row * params.cols;
    var acc: f32 = 0.0;
    for (var k = 0u; k < params.cols; k++) {{
        acc += weights[row_start + k] * prev_activations[k];
    }}
    layer_output[row] = activate(acc + bias[row], params.activation_id);
}}
"""


# ============================================================================
# TRAINING KERNELS
# ============================================================================


def create_training_forward_pass_kernel(tile_size: int) -> str:
    """
    Generate the per-layer training forward kernel.

    global_id.x = neuron, global_id.y = sample. Reads the previous layer's
    activations (or the input buffer for layer 0) and writes this layer's
    activation and z value for every sample.

    Args:
        tile_size: Workgroup edge, the workgroup is tile_size x tile_size

    Returns:
        WGSL kernel source code as string

    Raises:
        ValueError: If tile_size is invalid
    """
    _validate_workgroup_size("tile_size", tile_size, 16)

    return f"""
struct DispatchParams {{
    layer: u32,
    pad0: u32,
    pad1: u32,
    pad2: u32,
}}

@group(0) @binding(0) var<uniform> params: DispatchParams;
@group(0) @binding(1) var<storage, read> network_config: array<u32>;
@group(0) @binding(2) var<storage, read_write> activations_and_z: array<f32>;
@group(0) @binding(3) var<storage, read> inputs: array<f32>;
@group(0) @binding(4) var<storage, read> weights_and_biases: array<f32>;

{_activation_functions()}
{_network_layout_functions()}

@compute @workgroup_size({tile_size}, {tile_size}, 1)
fn main(@builtin(global_invocation_id) global_id: vec3<u32>) {{
    let layer = params.layer;
    let neuron = global_id.x;
    let sample_index = global_id.y;

    let neuron_count = layer_neurons(layer);
    if (neuron >= neuron_count || sample_index >= network_config[CFG_SAMPLE_COUNT]) {{
        return;
    }}

    let input_count = layer_inputs(layer);
    let weight_start = param_offset(layer);
    let row_start = weight_start + neuron * input_count;

    var acc: f32 = 0.0;
    if (layer == 0u) {{
        let prev_start = sample_index * input_count;
        for (var k = 0u; k < input_count; k++) {{
            acc += weights_and_biases[row_start + k] * inputs[prev_start + k];
        }}
    }} else {{
        let prev_start = activation_offset(layer - 1u) + sample_index * input_count;
        for (var k = 0u; k < input_count; k++) {{
            acc += weights_and_biases[row_start + k] * activations_and_z[prev_start + k];
        }}
    }}
    acc += weights_and_biases[weight_start + neuron_count * input_count + neuron];

    let out_index = activation_offset(layer) + sample_index * neuron_count + neuron;
    activations_and_z[out_index] = activate(acc, network_config[CFG_ACTIVATION_ID]);
    activations_and_z[z_region() + out_index] = acc;
}}
"""


def create_training_backward_pass_kernel(tile_size: int) -> str:
    """
    Generate the per-layer training backward kernel.

    global_id.x = neuron, global_id.y = sample. Layer L writes its deltas to
    half (L % 2) of the sample's delta_k slot and reads layer L+1's deltas
    from the other half, so no invocation reads what another one writes in
    the same dispatch. Each invocation writes one weight row and one bias of
    the sample's gradient block.

    Args:
        tile_size: Workgroup edge, the workgroup is tile_size x tile_size

    Returns:
        WGSL kernel source code as string

    Raises:
        ValueError: If tile_size is invalid
    """
    _validate_workgroup_size("tile_size", tile_size, 16)

    return f"""
struct DispatchParams {{
    layer: u32,
    pad0: u32,
    pad1: u32,
    pad2: u32,
}}

@group(0) @binding(0) var<uniform> params: DispatchParams;
@group(0) @binding(1) var<storage, read> network_config: array<u32>;
@group(0) @binding(2) var<storage, read> activations_and_z: array<f32>;
@group(0) @binding(3) var<storage, read_write> delta_k: array<f32>;
@group(0) @binding(4) var<storage, read_write> gradient: array<f32>;
@group(0) @binding(5) var<storage, read> desired_outputs: array<f32>;
@group(0) @binding(6) var<storage, read> inputs: array<f32>;
@group(0) @binding(7) var<storage, read> weights_and_biases: array<f32>;

{_activation_functions()}
{_cost_functions()}
{_network_layout_functions()}

@compute @workgroup_size({tile_size}, {tile_size}, 1)
fn main(@builtin(global_invocation_id) global_id: vec3<u32>) {{
    let layer = params.layer;
    let neuron = global_id.x;
    let sample_index = global_id.y;

    let neuron_count = layer_neurons(layer);
    if (neuron >= neuron_count || sample_index >= network_config[CFG_SAMPLE_COUNT]) {{
        return;
    }}

    let activation_id = network_config[CFG_ACTIVATION_ID];
    let out_index = activation_offset(layer) + sample_index * neuron_count + neuron;
    let z = activations_and_z[z_region() + out_index];

    let widest = network_config[CFG_WIDEST_LAYER];
    let delta_start = sample_index * widest * 2u;
    let write_half = delta_start + (layer % 2u) * widest;
    let read_half = delta_start + ((layer + 1u) % 2u) * widest;

    var delta: f32 = 0.0;
    if (layer == network_config[CFG_LAYER_COUNT] - 1u) {{
        let actual = activations_and_z[out_index];
        let desired = desired_outputs[sample_index * neuron_count + neuron];
        delta = cost_delta(z, actual, desired, network_config[CFG_COST_ID], activation_id);
    }} else {{
        let next_layer = layer + 1u;
        let next_count = layer_neurons(next_layer);
        let next_weights = param_offset(next_layer);
        var acc: f32 = 0.0;
        for (var k = 0u; k < next_count; k++) {{
            acc += delta_k[read_half + k] * weights_and_biases[next_weights + k * neuron_count + neuron];
        }}
        delta = acc * activate_prime(z, activation_id);
    }}
    delta_k[write_half + neuron] = delta;

    let input_count = layer_inputs(layer);
    let grad_start = sample_index * network_config[CFG_TOTAL_WEIGHTS_AND_BIASES] + param_offset(layer);
    let row_start = grad_start + neuron * input_count;
    if (layer == 0u) {{
        let prev_start = sample_index * input_count;
        for (var j = 0u; j < input_count; j++) {{
            gradient[row_start + j] = delta * inputs[prev_start + j];
        }}
    }} else {{
        let prev_start = activation_offset(layer - 1u) + sample_index * input_count;
        for (var j = 0u; j < input_count; j++) {{
            gradient[row_start + j] = delta * activations_and_z[prev_start + j];
        }}
    }}
    gradient[grad_start + neuron_count * input_count + neuron] = delta;
}}
"""


# ============================================================================
# FACTORIES
# ============================================================================


def get_calc_single_layer_kernel(config: GPUConfig) -> str:
    return create_calc_single_layer_kernel(config.neuron_group_size)


def get_training_forward_pass_kernel(config: GPUConfig) -> str:
    return create_training_forward_pass_kernel(config.tile_size)


def get_training_backward_pass_kernel(config: GPUConfig) -> str:
    return create_training_backward_pass_kernel(config.tile_size)


KERNEL_FACTORIES: Dict[KernelId, Callable[[GPUConfig], str]] = {
    KernelId.CALC_SINGLE_LAYER: get_calc_single_layer_kernel,
    KernelId.FORWARD_PASS: get_training_forward_pass_kernel,
    KernelId.BACKWARD_PASS: get_training_backward_pass_kernel,
}
