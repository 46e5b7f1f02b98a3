#!/usr/bin/env python
"""
fn_knot_sim.py

FitzHugh-Nagumo scroll-wave knot simulator.

- Builds the initial phase from a surface, a restart file or an analytic
  function, seeds (u, v), then integrates the FN equations.
- Every knot_print_time it locates the filament, traces it as a closed
  curve and appends writhe / twist / length to writhe.txt
  (plus knotplot<T>.vtk).
- Every uv_print_time it writes a uv_plot<T>.vtk field snapshot, which can
  be used to restart a run.

Usage:

    python fn_knot_sim.py --config trefoil.json
    python fn_knot_sim.py --option function --nx 48 --ny 48 --nz 48 --total_time 20

Command-line values override the JSON file.
"""

import argparse
import os
import sys
from typing import List, Optional

import numpy as np

from config import INIT_OPTIONS, SimulationConfig, config_from_dict, load_config
from curve_tracer import CurveTracer, TraceResult
from fn_fields import KNOT_THRESHOLD, FieldState
from fn_grid import Grid
from fn_integrator import FieldUpdater, ReactionParams, make_updater
from fn_io import (
    InvariantSeriesWriter,
    read_phase_file,
    read_uv_file,
    write_knot_vtk,
    write_phase_vtk,
    write_run_info,
    write_uv_vtk,
)
from knot_invariants import InvariantSample, measure_knot
from surface_phase import PHASE_FUNCTIONS, compute_phase_field, load_surface, phase_from_function
from vector_optimizer import make_optimizer


class KnotSimulation:
    """
    One run: initial condition, integration loop and sampling.

    All inputs are validated and read in initialise(), before anything is
    written to the output directory.
    """

    def __init__(self, cfg: SimulationConfig):
        self.cfg = cfg.validate()
        self.grid: Grid = cfg.make_grid()
        self.state: Optional[FieldState] = None
        self.updater: Optional[FieldUpdater] = None
        self.phase: Optional[np.ndarray] = None
        self.samples: List[InvariantSample] = []
        self.traces: List[TraceResult] = []
        self.tracer = CurveTracer(
            self.grid,
            wavelength=cfg.reaction.wavelength,
            optimizer=make_optimizer(cfg.solver.optimizer),
            placement=cfg.solver.placement,
            max_steps=cfg.solver.max_curve_steps,
        )

    # ------------------------------------------------------------------
    # Initial condition
    # ------------------------------------------------------------------

    def _initial_phase(self) -> np.ndarray:
        init = self.cfg.init
        if init.option == "surface":
            print(f"[SETUP] Reading surface {init.surface_file}")
            facets = load_surface(init.surface_file, self.grid,
                                  box_fraction=init.box_fraction,
                                  preserve_ratios=init.preserve_ratios,
                                  displacement=init.displacement)
            print(f"[SETUP] {len(facets)} facets, computing phase field (workers={init.workers})")
            return compute_phase_field(self.grid, facets, workers=init.workers)
        if init.option == "phase_file":
            print(f"[SETUP] Reading phase field from {init.restart_file}")
            return read_phase_file(init.restart_file, self.grid)
        print(f"[SETUP] Analytic phase '{init.function}'")
        return phase_from_function(self.grid, PHASE_FUNCTIONS[init.function]())

    def initialise(self) -> FieldState:
        cfg = self.cfg
        if cfg.init.option == "uv_file":
            print(f"[SETUP] Reading u and v from {cfg.init.restart_file}")
            u, v = read_uv_file(cfg.init.restart_file, self.grid)
            self.state = FieldState(self.grid, u, v)
        else:
            self.phase = self._initial_phase()
            self.state = FieldState.from_phase(self.grid, self.phase)

        r = cfg.reaction
        self.updater = make_updater(
            self.grid,
            cfg.time.dtime,
            scheme=cfg.solver.scheme,
            backend=cfg.solver.backend,
            params=ReactionParams(epsilon=r.epsilon, beta=r.beta, gamma=r.gamma),
            block_size=cfg.solver.block_size,
        )
        self.updater.attach(self.state)
        return self.state

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def run_info(self):
        cfg = self.cfg
        g = self.grid
        init = cfg.init
        items = [
            ("Nx", g.nx), ("Ny", g.ny), ("Nz", g.nz),
            ("grid spacing", g.h),
            ("timestep", cfg.time.dtime),
            ("total time", cfg.time.total_time),
            ("start time", cfg.time.start_time),
            ("boundary", g.describe_boundary()),
            ("initoptions", f"{init.option} ({INIT_OPTIONS[init.option]})"),
            ("scheme", cfg.solver.scheme),
            ("backend", cfg.solver.backend),
            ("epsilon", cfg.reaction.epsilon),
            ("beta", cfg.reaction.beta),
            ("gamma", cfg.reaction.gamma),
        ]
        if init.option == "surface":
            items += [
                ("surface filename", init.surface_file),
                ("box fraction", init.box_fraction),
                ("preserve ratios", int(init.preserve_ratios)),
                ("displacement", init.displacement),
            ]
        elif init.option in ("phase_file", "uv_file"):
            items.append(("restart filename", init.restart_file))
        else:
            items.append(("phase function", init.function))
        return items

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------

    def sample_knot(self, t: float, series: InvariantSeriesWriter) -> Optional[InvariantSample]:
        """Locate, trace and measure the filament at time t."""
        seed = self.state.find_seed(KNOT_THRESHOLD)
        if t < self.cfg.time.initial_skip_time or not seed.knot_exists:
            return None

        trace = self.tracer.trace(self.state.ucv, seed.position)
        sample = measure_knot(self.grid, self.state.u, trace, t)
        series.append(sample)
        write_knot_vtk(self.cfg.paths.out_dir, trace.curve, t)
        self.samples.append(sample)
        self.traces.append(trace)

        if not sample.complete:
            print(f"[WARN] T={t:g}: curve not closed ({sample.status.value} after "
                  f"{trace.steps} steps, gap {trace.closure_distance:.3f})")
        return sample

    def run(self) -> List[InvariantSample]:
        cfg = self.cfg
        if self.state is None:
            self.initialise()

        out_dir = cfg.paths.ensure_dirs().out_dir
        write_run_info(out_dir, self.run_info())
        if self.phase is not None:
            write_phase_vtk(out_dir, self.grid, self.phase)
            self.phase = None
        series = InvariantSeriesWriter(os.path.join(out_dir, "writhe.txt"))

        dt = cfg.time.dtime
        n = p = q = 0
        print(f"[SETUP] Updating u and v ({cfg.solver.scheme}, {cfg.solver.backend})")
        while n * dt <= cfg.time.total_time:
            t = n * dt + cfg.time.start_time

            sampled = False
            if n * dt >= q * cfg.time.knot_print_time:
                self.updater.sync(self.state)
                sample = self.sample_knot(t, series)
                sampled = True
                if sample is None:
                    print(f"[T={t:g}] max|ucv|={float(self.state.ucv.magnitude.max()):.4f}")
                else:
                    print(f"[T={t:g}] writhe={sample.writhe:.4f} twist={sample.twist:.4f} "
                          f"length={sample.length:.3f}")
                q += 1

            if n * dt >= p * cfg.time.uv_print_time:
                self.updater.sync(self.state)
                if not sampled:
                    self.state.update_cross_gradient()
                write_uv_vtk(out_dir, self.grid, self.state.u, self.state.v,
                             self.state.ucv.magnitude, t)
                p += 1

            n += 1
            self.updater.step()

        self.updater.sync(self.state)
        print(f"\nSimulation complete. Output in: {out_dir}/")
        return self.samples


# =============================================================================
# CLI
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="FitzHugh-Nagumo scroll-wave knot simulator")
    parser.add_argument("--config", type=str, default=None, help="JSON parameter file")
    parser.add_argument("--nx", type=int, default=None)
    parser.add_argument("--ny", type=int, default=None)
    parser.add_argument("--nz", type=int, default=None)
    parser.add_argument("--h", type=float, default=None, help="Grid spacing")
    parser.add_argument("--boundary", type=str, default=None,
                        help="reflecting | periodic | periodic-x | periodic-y | periodic-z")
    parser.add_argument("--dt", type=float, default=None)
    parser.add_argument("--total_time", type=float, default=None)
    parser.add_argument("--start_time", type=float, default=None)
    parser.add_argument("--option", type=str, default=None, choices=sorted(INIT_OPTIONS))
    parser.add_argument("--surface", type=str, default=None, help="ASCII STL surface file")
    parser.add_argument("--restart", type=str, default=None, help="Phase or uv restart file")
    parser.add_argument("--scheme", type=str, default=None, choices=("rk4", "euler"))
    parser.add_argument("--backend", type=str, default=None, choices=("numpy", "cupy"))
    parser.add_argument("--workers", type=int, default=None)
    parser.add_argument("--out", type=str, default=None)
    return parser


def apply_overrides(cfg: SimulationConfig, args: argparse.Namespace) -> SimulationConfig:
    overrides = [
        (cfg.grid, "nx", args.nx), (cfg.grid, "ny", args.ny), (cfg.grid, "nz", args.nz),
        (cfg.grid, "h", args.h), (cfg.grid, "boundary", args.boundary),
        (cfg.time, "dtime", args.dt), (cfg.time, "total_time", args.total_time),
        (cfg.time, "start_time", args.start_time),
        (cfg.init, "option", args.option), (cfg.init, "surface_file", args.surface),
        (cfg.init, "restart_file", args.restart), (cfg.init, "workers", args.workers),
        (cfg.solver, "scheme", args.scheme), (cfg.solver, "backend", args.backend),
        (cfg.paths, "out_dir", args.out),
    ]
    for section, name, value in overrides:
        if value is not None:
            setattr(section, name, value)
    return cfg


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        cfg = load_config(args.config) if args.config else config_from_dict({})
        cfg = apply_overrides(cfg, args)

        print("--- FitzHugh-Nagumo knot simulator ---")
        g = cfg.grid
        print(f"Grid: {g.nx} x {g.ny} x {g.nz}, h={g.h}, dt={cfg.time.dtime}, boundary={g.boundary}")

        sim = KnotSimulation(cfg)
        sim.initialise()
    except (ValueError, FileNotFoundError, RuntimeError) as exc:
        print(f"[ERROR] {exc}")
        return 1

    sim.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
