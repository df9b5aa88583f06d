"""Tests for the command line"""

import pytest

from gradengine.main import build_parser, gpu_config_create, main, parse_layer_sizes


def test_check_host_backend(capsys):
    assert main(["check", "--backend", "host", "--samples", "9"]) == 0
    out = capsys.readouterr().out
    assert "Network(8-16-12-4)" in out
    assert "OK" in out


def test_check_cpu_backend_custom_shape(capsys):
    code = main(
        ["check", "--backend", "cpu", "--layers", "3,2", "--input-width", "4", "--cost", "cross_entropy"]
    )
    assert code == 0
    assert "Network(4-3-2)" in capsys.readouterr().out


def test_check_reports_failure_with_impossible_tolerance(capsys):
    code = main(
        ["check", "--backend", "host", "--samples", "5", "--rtol", "0", "--atol", "0", "--activation", "tanh"]
    )
    # Float32 device sums never match the float64 reference bit for bit
    assert code == 1
    assert "FAILED" in capsys.readouterr().out


def test_train_prints_each_epoch(capsys):
    assert main(["train", "--backend", "cpu", "--epochs", "3"]) == 0
    out = capsys.readouterr().out
    assert "Epoch 1: mse" in out
    assert "Epoch 3: mse" in out
    assert "Epoch 4" not in out


def test_parse_layer_sizes():
    assert parse_layer_sizes("4, 3,2") == [4, 3, 2]
    with pytest.raises(Exception):
        parse_layer_sizes("4,x")
    with pytest.raises(Exception):
        parse_layer_sizes("4,0")


def test_unknown_backend_rejected():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["check", "--backend", "cuda"])


def test_gpu_config_flags():
    args = build_parser().parse_args(["check"])
    assert gpu_config_create(args) is None

    args = build_parser().parse_args(["check", "--tile-size", "4", "--power-preference", "low-power"])
    config = gpu_config_create(args)
    assert config.tile_size == 4
    assert config.power_preference == "low-power"
    assert config.neuron_group_size == 32


def test_check_host_backend_with_tile_size(capsys):
    assert main(["check", "--backend", "host", "--samples", "9", "--tile-size", "4"]) == 0
    assert "OK" in capsys.readouterr().out


def test_invalid_tile_size_reported(capsys):
    assert main(["check", "--backend", "host", "--tile-size", "3"]) == 2
    assert "tile_size" in capsys.readouterr().err
