"""
Tests for config: defaults, JSON loading and validation.
"""

import json

import pytest

from config import SimulationConfig, config_from_dict, load_config, save_config
from fn_grid import BoundaryMode


def valid(**sections):
    data = {"init": {"option": "function"}}
    data.update(sections)
    return config_from_dict(data)


def test_defaults():
    cfg = SimulationConfig()
    assert cfg.reaction.epsilon == 0.3
    assert cfg.reaction.beta == 0.7
    assert cfg.reaction.gamma == 0.5
    assert cfg.reaction.wavelength == 21.3
    assert cfg.solver.scheme == "rk4"
    assert cfg.solver.backend == "numpy"
    assert cfg.solver.block_size == 8
    assert cfg.solver.placement == "half_step"
    assert cfg.init.box_fraction == 0.8


def test_function_init_validates():
    cfg = valid(grid={"nx": 16, "ny": 16, "nz": 16, "boundary": "periodic-z"})
    assert cfg.validate() is cfg
    grid = cfg.make_grid()
    assert grid.shape == (16, 16, 16)
    assert grid.boundary[2] is BoundaryMode.PERIODIC


def test_json_round_trip(tmp_path):
    cfg = valid(time={"dtime": 0.01, "total_time": 5.0},
                init={"option": "surface", "surface_file": "knot.stl",
                      "displacement": [1.0, 0.0, -1.0]})
    path = tmp_path / "run.json"
    save_config(cfg, str(path))
    back = load_config(str(path))
    assert back == cfg
    assert back.init.displacement == (1.0, 0.0, -1.0)


def test_missing_config_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "none.json"))


def test_invalid_json(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text("{ grid: ")
    with pytest.raises(ValueError):
        load_config(str(path))


@pytest.mark.parametrize("data", [
    {"mesh": {}},
    {"grid": {"nx": 16, "depth": 3}},
])
def test_unknown_keys(data):
    with pytest.raises(ValueError, match="Unknown"):
        config_from_dict(data)


@pytest.mark.parametrize("sections", [
    {"grid": {"boundary": "open"}},
    {"grid": {"nx": 1}},
    {"grid": {"h": -1.0}},
    {"time": {"dtime": 0.0}},
    {"time": {"knot_print_time": 0.0}},
    {"reaction": {"epsilon": 0.0}},
    {"solver": {"scheme": "rk2"}},
    {"solver": {"backend": "opencl"}},
    {"solver": {"backend": "cupy", "block_size": 7}},
    {"solver": {"optimizer": "newton"}},
    {"solver": {"placement": "midpoint"}},
    {"init": {"option": "surface"}},
    {"init": {"option": "uv_file"}},
    {"init": {"option": "function", "function": "helix"}},
    {"init": {"option": "function", "box_fraction": 1.5}},
    {"init": {"option": "function", "workers": 0}},
    {"init": {"option": "spline"}},
])
def test_validation_errors(sections):
    with pytest.raises(ValueError):
        valid(**sections).validate()


def test_validation_touches_no_files(tmp_path):
    cfg = valid(init={"option": "surface", "surface_file": str(tmp_path / "missing.stl")},
                paths={"out_dir": str(tmp_path / "out")})
    cfg.validate()
    assert not (tmp_path / "out").exists()


def test_json_sections_are_independent(tmp_path):
    path = tmp_path / "partial.json"
    path.write_text(json.dumps({"grid": {"nx": 24}}))
    cfg = load_config(str(path))
    assert cfg.grid.nx == 24
    assert cfg.grid.ny == SimulationConfig().grid.ny
