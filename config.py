#!/usr/bin/env python3
"""
config.py

Central configuration for the FitzHugh-Nagumo knot simulator.

This file is meant to be the **single place** you tweak:
- Grid size, spacing and boundary conditions
- Timestep, run length and output cadence
- FN reaction constants
- How the fields are initialised (surface, phase file, uv file, function)
- Integration scheme / backend and curve-tracer options
- Output directory

A run can also be described by a JSON file with the same sections:

    {
      "grid":     {"nx": 96, "ny": 96, "nz": 96, "h": 0.5, "boundary": "reflecting"},
      "time":     {"dtime": 0.02, "total_time": 400},
      "reaction": {"epsilon": 0.3},
      "init":     {"option": "surface", "surface_file": "trefoil.stl"},
      "solver":   {"scheme": "rk4", "backend": "numpy"},
      "paths":    {"out_dir": "output_knot"}
    }

Missing keys keep their defaults; unknown keys are an error.
"""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from fn_grid import Grid, boundary_modes, check_block_divisibility


# =============================================================================
# Sections
# =============================================================================

@dataclass
class GridConfig:
    nx: int = 96
    ny: int = 96
    nz: int = 96
    h: float = 0.5
    # "reflecting", "periodic" or "periodic-x|y|z"
    boundary: str = "reflecting"


@dataclass
class TimeConfig:
    dtime: float = 0.02
    total_time: float = 400.0
    # non-zero when continuing from a uv file
    start_time: float = 0.0
    uv_print_time: float = 50.0
    knot_print_time: float = 1.0
    # no curve tracing before this (simulation) time
    initial_skip_time: float = 10.0


@dataclass
class ReactionConfig:
    epsilon: float = 0.3
    beta: float = 0.7
    gamma: float = 0.5
    # approximate scroll-wave wavelength, sets the tracer step sizes
    wavelength: float = 21.3


@dataclass
class InitConfig:
    """
    option:
        "surface"     initialise from an ASCII STL surface (surface_file)
        "phase_file"  read a phase field from restart_file
        "uv_file"     read u and v from restart_file, skip initialisation
        "function"    analytic phase, see surface_phase.PHASE_FUNCTIONS
    """
    option: str = "surface"
    surface_file: Optional[str] = None
    restart_file: Optional[str] = None
    function: str = "pole"
    box_fraction: float = 0.8
    preserve_ratios: bool = False
    displacement: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    workers: int = 1


@dataclass
class SolverConfig:
    scheme: str = "rk4"            # "rk4" | "euler"
    backend: str = "numpy"         # "numpy" | "cupy"
    block_size: int = 8            # cupy backend: dims must be multiples
    optimizer: str = "cg"          # see vector_optimizer.OPTIMIZERS
    placement: str = "half_step"   # "half_step" | "optimizer"
    max_curve_steps: int = 50000


@dataclass
class PathsConfig:
    out_dir: str = "output_knot"

    def ensure_dirs(self) -> "PathsConfig":
        Path(self.out_dir).mkdir(parents=True, exist_ok=True)
        return self


@dataclass
class SimulationConfig:
    grid: GridConfig = field(default_factory=GridConfig)
    time: TimeConfig = field(default_factory=TimeConfig)
    reaction: ReactionConfig = field(default_factory=ReactionConfig)
    init: InitConfig = field(default_factory=InitConfig)
    solver: SolverConfig = field(default_factory=SolverConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)

    def make_grid(self) -> Grid:
        g = self.grid
        return Grid.from_boundary(g.nx, g.ny, g.nz, g.h, g.boundary)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def validate(self) -> "SimulationConfig":
        """Raise ValueError on any inconsistent setting. Touches no files."""
        from fn_integrator import BACKENDS, SCHEMES
        from surface_phase import PHASE_FUNCTIONS
        from vector_optimizer import OPTIMIZERS

        grid = self.make_grid()
        boundary_modes(self.grid.boundary)

        t = self.time
        if not t.dtime > 0:
            raise ValueError(f"dtime must be positive, got {t.dtime}")
        if t.total_time < 0:
            raise ValueError(f"total_time must be >= 0, got {t.total_time}")
        for name in ("uv_print_time", "knot_print_time"):
            if not getattr(t, name) > 0:
                raise ValueError(f"{name} must be positive, got {getattr(t, name)}")

        r = self.reaction
        if not r.epsilon > 0:
            raise ValueError(f"epsilon must be positive, got {r.epsilon}")
        if not r.wavelength > 0:
            raise ValueError(f"wavelength must be positive, got {r.wavelength}")

        s = self.solver
        if s.scheme not in SCHEMES:
            raise ValueError(f"Unknown scheme '{s.scheme}'. Expected one of {SCHEMES}")
        if s.backend not in BACKENDS:
            raise ValueError(f"Unknown backend '{s.backend}'. Expected one of {BACKENDS}")
        if s.backend == "cupy":
            check_block_divisibility(grid, s.block_size)
        if s.optimizer not in OPTIMIZERS:
            raise ValueError(f"Unknown optimizer '{s.optimizer}'")
        if s.placement not in ("half_step", "optimizer"):
            raise ValueError(f"Unknown placement '{s.placement}'")
        if s.max_curve_steps < 1:
            raise ValueError("max_curve_steps must be >= 1")

        i = self.init
        if i.option not in INIT_OPTIONS:
            raise ValueError(f"Unknown init option '{i.option}'. Expected one of {tuple(INIT_OPTIONS)}")
        if i.option == "surface" and not i.surface_file:
            raise ValueError("init.option 'surface' needs init.surface_file")
        if i.option in ("phase_file", "uv_file") and not i.restart_file:
            raise ValueError(f"init.option '{i.option}' needs init.restart_file")
        if i.option == "function" and i.function not in PHASE_FUNCTIONS:
            raise ValueError(f"Unknown phase function '{i.function}'. Expected one of {sorted(PHASE_FUNCTIONS)}")
        if not 0 < i.box_fraction <= 1:
            raise ValueError(f"box_fraction must be in (0, 1], got {i.box_fraction}")
        if len(i.displacement) != 3:
            raise ValueError("displacement needs 3 components")
        if i.workers < 1:
            raise ValueError("workers must be >= 1")
        return self


# Numeric codes kept for info.txt compatibility with older runs
INIT_OPTIONS = {
    "phase_file": 0,
    "surface": 1,
    "uv_file": 2,
    "function": 3,
}


# =============================================================================
# Loading
# =============================================================================

_SECTIONS = {
    "grid": GridConfig,
    "time": TimeConfig,
    "reaction": ReactionConfig,
    "init": InitConfig,
    "solver": SolverConfig,
    "paths": PathsConfig,
}


def _build_section(cls, values: Dict[str, Any], section: str):
    known = {f.name for f in fields(cls)}
    unknown = set(values) - known
    if unknown:
        raise ValueError(f"Unknown key(s) in section '{section}': {sorted(unknown)}")
    values = dict(values)
    if "displacement" in values:
        values["displacement"] = tuple(values["displacement"])
    return cls(**values)


def config_from_dict(data: Dict[str, Any]) -> SimulationConfig:
    unknown = set(data) - set(_SECTIONS)
    if unknown:
        raise ValueError(f"Unknown config section(s): {sorted(unknown)}")
    kwargs = {
        name: _build_section(cls, data.get(name, {}), name)
        for name, cls in _SECTIONS.items()
    }
    return SimulationConfig(**kwargs)


def load_config(path: str) -> SimulationConfig:
    """Read a JSON parameter file into a SimulationConfig (not yet validated)."""
    if not os.path.isfile(path):
        raise FileNotFoundError(f"Config file not found: {path}")
    with open(path) as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as exc:
            raise ValueError(f"{path}: invalid JSON ({exc})") from exc
    return config_from_dict(data)


def save_config(cfg: SimulationConfig, path: str) -> None:
    with open(path, "w") as f:
        json.dump(cfg.to_dict(), f, indent=2)
