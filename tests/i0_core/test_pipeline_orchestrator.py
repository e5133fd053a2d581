# Path: tests/i0_core/test_pipeline_orchestrator.py
# Purpose: Batch orchestration over .npy image/mask arrays.

import argparse
import logging
import math
import os

import numpy as np
import pytest
import yaml
from logging.handlers import QueueHandler

from robusteq.i0_core.pipeline_orchestrator import (
    apply_overrides,
    collect_inputs,
    load_config,
    natural_key,
    process_single_image,
    resolve_num_processes,
    run_pipeline,
    setup_logging,
    shutdown_logging,
)


@pytest.fixture
def workspace(tmp_path):
    input_dir = tmp_path / "input"
    input_dir.mkdir()
    np.save(str(input_dir / "1.npy"), np.full((4, 4), 4.0, dtype=np.float32))
    np.save(str(input_dir / "2.npy"), np.linspace(1, 50, 16, dtype=np.float32).reshape(4, 4))
    mask = np.zeros((4, 4), dtype=np.uint8)
    mask[1:3, 1:3] = 1
    np.save(str(input_dir / "2_mask.npy"), mask)
    return tmp_path


def write_config(tmp_path, **overrides):
    cfg = {
        "log_level": "INFO",
        "log_file": str(tmp_path / "logs" / "run.log"),
        "input_dir": str(tmp_path / "input"),
        "output_dir": str(tmp_path / "output"),
        "mask_suffix": "_mask",
        "parallel": {"enabled": False, "num_processes": 1},
        "preprocess": {"grayscale": True, "masked_equalization": True},
        "equalization": {"alpha": 0.1, "tau": 10.0},
    }
    cfg.update(overrides)
    path = tmp_path / "config.yaml"
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(cfg, f)
    return str(path)


def make_args(config_path, **kwargs):
    values = {"config": config_path, "input_dir": None, "output_dir": None,
              "alpha": None, "tau": None, "log_level": None}
    values.update(kwargs)
    return argparse.Namespace(**values)


def test_natural_key_sorting():
    files = ["/x/10.npy", "/x/2.npy", "/x/b.npy", "/x/1.npy", "/x/a.npy"]
    assert sorted(files, key=natural_key) == ["/x/1.npy", "/x/2.npy", "/x/10.npy", "/x/a.npy", "/x/b.npy"]


def test_load_config_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "nope.yaml"))


def test_apply_overrides_does_not_mutate():
    cfg = {"input_dir": "in", "equalization": {"alpha": 0.1, "tau": 10.0}}
    args = argparse.Namespace(input_dir="other", output_dir=None, log_level=None, alpha=None, tau=3.0)
    out = apply_overrides(cfg, args)
    assert out["input_dir"] == "other"
    assert out["equalization"] == {"alpha": 0.1, "tau": 3.0}
    assert cfg["input_dir"] == "in"
    assert cfg["equalization"]["tau"] == 10.0


def test_resolve_num_processes():
    assert resolve_num_processes({"num_processes": 3}) == 3
    assert resolve_num_processes({"num_processes": 0}) == 1
    assert resolve_num_processes({"num_processes": "auto"}) >= 1
    assert resolve_num_processes({}) == 1


def test_collect_inputs_skips_masks(workspace):
    files = collect_inputs(str(workspace / "input"))
    assert [os.path.basename(f) for f in files] == ["1.npy", "2.npy"]


def test_process_single_image_with_mask(workspace):
    cfg = {"preprocess": {}, "equalization": {}}
    out_dir = str(workspace / "output")
    out = process_single_image((str(workspace / "input" / "2.npy"), cfg, out_dir))

    assert out == os.path.join(out_dir, "2.npy")
    result = np.load(out)
    assert result.shape == (4, 4)
    assert np.all(result[0, :] == 0)
    assert np.all(result[1:3, 1:3] != 0)
    assert np.all(np.abs(result) < 10.0)


def test_run_pipeline_serial(workspace):
    outputs = run_pipeline(make_args(write_config(workspace)))

    assert [os.path.basename(p) for p in outputs] == ["1.npy", "2.npy"]
    first = np.load(outputs[0])
    assert first == pytest.approx(np.full((4, 4), 10 * math.tanh(0.1)), rel=1e-5)
    assert os.path.isfile(workspace / "logs" / "run.log")


def test_run_pipeline_parallel_matches_serial(workspace):
    serial = [np.load(p) for p in run_pipeline(make_args(write_config(workspace)))]

    cfg_path = write_config(
        workspace,
        output_dir=str(workspace / "output_parallel"),
        parallel={"enabled": True, "num_processes": 2},
    )
    parallel = [np.load(p) for p in run_pipeline(make_args(cfg_path))]

    for a, b in zip(serial, parallel):
        assert np.array_equal(a, b)


def test_run_pipeline_cli_overrides(workspace):
    args = make_args(write_config(workspace), tau=2.0, output_dir=str(workspace / "out2"))
    outputs = run_pipeline(args)
    assert outputs[0].startswith(str(workspace / "out2"))
    assert np.load(outputs[0]) == pytest.approx(np.full((4, 4), 2 * math.tanh(0.5)), rel=1e-5)


def test_run_pipeline_missing_input_dir(workspace):
    cfg_path = write_config(workspace, input_dir=str(workspace / "missing"))
    with pytest.raises(FileNotFoundError):
        run_pipeline(make_args(cfg_path))


def test_run_pipeline_no_inputs(tmp_path):
    (tmp_path / "input").mkdir()
    with pytest.raises(FileNotFoundError, match="No input arrays"):
        run_pipeline(make_args(write_config(tmp_path)))


def test_run_pipeline_missing_log_file(workspace):
    cfg_path = write_config(workspace, log_file=None)
    with pytest.raises(ValueError, match="log_file"):
        run_pipeline(make_args(cfg_path))


def test_run_pipeline_invalid_alpha(workspace):
    with pytest.raises(ValueError):
        run_pipeline(make_args(write_config(workspace), alpha=-1.0))


def test_shutdown_logging_closes_queue(tmp_path):
    listener = setup_logging(logging.INFO, str(tmp_path / "logs" / "q.log"))
    logging.info("queued message")
    shutdown_logging(listener)

    assert not any(isinstance(h, QueueHandler) for h in logging.getLogger().handlers)
    with pytest.raises(ValueError):
        listener.queue.put("late message")
    with open(tmp_path / "logs" / "q.log", "r", encoding="utf-8") as f:
        assert "queued message" in f.read()


def test_run_pipeline_detaches_queue_handler(workspace):
    run_pipeline(make_args(write_config(workspace)))
    assert not any(isinstance(h, QueueHandler) for h in logging.getLogger().handlers)
