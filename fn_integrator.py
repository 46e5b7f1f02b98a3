"""
fn_integrator.py

Time integration of the FitzHugh-Nagumo equations

    du/dt = (u - u^3/3 - v) / epsilon + lap(u)
    dv/dt = epsilon * (u + beta - gamma * v)

on a structured grid with a 7-point Laplacian.

Two update rules share one interface (FieldUpdater):

    EulerUpdater : forward Euler, first order
    RK4Updater   : classical Runge-Kutta, stage fractions 0, 1/2, 1/2, 1,
                   weights (1, 2, 2, 1) / 6

The array module is a parameter (NumPy on the CPU, CuPy on the GPU), so the
stencil and arithmetic are the same code on both backends. The scheme and
backend are picked once, with make_updater().

There is no divergence check: overflow and NaN propagate silently.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import numpy as np

from fn_grid import Grid, check_block_divisibility

try:
    import cupy as cp  # type: ignore
    _HAS_CUPY = True
except ImportError:
    cp = None
    _HAS_CUPY = False


SCHEMES = ("rk4", "euler")
BACKENDS = ("numpy", "cupy")


# ============================================================
# Backend selection (NumPy / CuPy)
# ============================================================

def get_backend(name: str):
    """Return the array module for a backend name."""
    if name == "numpy":
        return np
    if name == "cupy":
        if not _HAS_CUPY:
            raise RuntimeError("Backend 'cupy' requested but CuPy is not installed")
        return cp
    raise ValueError(f"Unknown backend '{name}'. Expected one of {BACKENDS}")


def to_cpu(arr):
    """Convert an xp array (numpy or cupy) to numpy on the CPU."""
    if _HAS_CUPY and isinstance(arr, cp.ndarray):
        return cp.asnumpy(arr)
    return np.asarray(arr)


# ============================================================
# Right-hand side
# ============================================================

@dataclass(frozen=True)
class ReactionParams:
    epsilon: float = 0.3
    beta: float = 0.7
    gamma: float = 0.5


class FitzHughNagumo:
    """
    FN right-hand side with a boundary-aware 7-point Laplacian.

    Neighbour gathers are precomputed per axis from the grid's wrap rule.
    """

    def __init__(self, grid: Grid, params: ReactionParams = ReactionParams(), xp=np):
        self.grid = grid
        self.params = params
        self.xp = xp
        self.inv_h2 = 1.0 / (grid.h * grid.h)
        self.inv_eps = 1.0 / params.epsilon
        self._neighbours = [
            (xp.asarray(grid.neighbour_indices(axis, +1)),
             xp.asarray(grid.neighbour_indices(axis, -1)))
            for axis in range(3)
        ]

    def laplacian(self, u):
        xp = self.xp
        (xu, xd), (yu, yd), (zu, zd) = self._neighbours
        total = (xp.take(u, xu, axis=0) + xp.take(u, xd, axis=0)
                 + xp.take(u, yu, axis=1) + xp.take(u, yd, axis=1)
                 + xp.take(u, zu, axis=2) + xp.take(u, zd, axis=2)
                 - 6.0 * u)
        return self.inv_h2 * total

    def __call__(self, u, v):
        p = self.params
        du = self.inv_eps * (u - u * u * u / 3.0 - v) + self.laplacian(u)
        dv = p.epsilon * (u + p.beta - p.gamma * v)
        return du, dv


RHS = Callable[[np.ndarray, np.ndarray], Tuple[np.ndarray, np.ndarray]]


# ============================================================
# Updaters
# ============================================================

class FieldUpdater(ABC):
    """
    Advance (u, v) by one timestep.

    Usage:
        updater.attach(state)   # once
        updater.step()          # many times
        updater.sync(state)     # before reading state.u / state.v

    With NumPy the attached buffers are the state's own arrays, so step()
    mutates them in place and sync() is a no-op. With CuPy the buffers are
    device mirrors and sync() copies them back to the host.
    """

    name = "base"

    def __init__(self, rhs: RHS, dt: float, xp=np):
        if not dt > 0:
            raise ValueError(f"timestep must be positive, got {dt}")
        self.rhs = rhs
        self.dt = float(dt)
        self.xp = xp
        self.u = None
        self.v = None
        self.n_steps = 0

    def attach(self, state) -> None:
        self.u = self.xp.asarray(state.u)
        self.v = self.xp.asarray(state.v)
        self._allocate()
        self.n_steps = 0

    def _allocate(self) -> None:
        pass

    def step(self) -> None:
        if self.u is None:
            raise RuntimeError("attach() a FieldState before calling step()")
        self._advance()
        self.n_steps += 1

    def advance(self, n: int) -> None:
        for _ in range(n):
            self.step()

    def sync(self, state) -> None:
        if self.u is not state.u:
            state.u[...] = to_cpu(self.u)
        if self.v is not state.v:
            state.v[...] = to_cpu(self.v)

    @abstractmethod
    def _advance(self) -> None:
        ...


class EulerUpdater(FieldUpdater):
    """u <- u + dt * du(u, v), then v <- v + dt * dv(u_new, v)."""

    name = "euler"

    def _advance(self) -> None:
        du, _ = self.rhs(self.u, self.v)
        self.u += self.dt * du
        # v is advanced with the updated u
        _, dv = self.rhs(self.u, self.v)
        self.v += self.dt * dv


class RK4Updater(FieldUpdater):
    """
    Classical 4th-order Runge-Kutta.

    u_old/v_old hold the state at the start of the step, k holds the current
    stage derivative and k_tot the weighted sum of the earlier stages. Every
    stage reads (u, v) before they are overwritten.
    """

    name = "rk4"

    # (fraction of dt for the next stage point, weight of this stage)
    STAGES = ((0.5, 1.0), (0.5, 2.0), (1.0, 2.0))

    def _allocate(self) -> None:
        xp = self.xp
        self.u_old = xp.empty_like(self.u)
        self.v_old = xp.empty_like(self.v)
        self.ku = xp.empty_like(self.u)
        self.kv = xp.empty_like(self.v)
        self.ku_tot = xp.zeros_like(self.u)
        self.kv_tot = xp.zeros_like(self.v)

    def _advance(self) -> None:
        dt = self.dt
        self.u_old[...] = self.u
        self.v_old[...] = self.v
        self.ku_tot[...] = 0.0
        self.kv_tot[...] = 0.0

        for inc, weight in self.STAGES:
            self._stage_derivative()
            self.u[...] = self.u_old + dt * inc * self.ku
            self.v[...] = self.v_old + dt * inc * self.kv
            self.ku_tot += weight * self.ku
            self.kv_tot += weight * self.kv

        self._stage_derivative()
        self.u[...] = self.u_old + dt * (self.ku_tot + self.ku) / 6.0
        self.v[...] = self.v_old + dt * (self.kv_tot + self.kv) / 6.0

    def _stage_derivative(self) -> None:
        du, dv = self.rhs(self.u, self.v)
        self.ku[...] = du
        self.kv[...] = dv


UPDATERS = {
    "rk4": RK4Updater,
    "euler": EulerUpdater,
}


def make_updater(grid: Grid, dt: float, scheme: str = "rk4", backend: str = "numpy",
                 params: ReactionParams = ReactionParams(), block_size: int = 8,
                 rhs: Optional[RHS] = None) -> FieldUpdater:
    """
    Build the updater for a run.

    The cupy backend needs every grid dimension to be a multiple of
    block_size; this is checked before CuPy is touched.
    """
    if scheme not in UPDATERS:
        raise ValueError(f"Unknown scheme '{scheme}'. Expected one of {SCHEMES}")
    if backend not in BACKENDS:
        raise ValueError(f"Unknown backend '{backend}'. Expected one of {BACKENDS}")
    if backend == "cupy":
        check_block_divisibility(grid, block_size)

    xp = get_backend(backend)
    if rhs is None:
        rhs = FitzHughNagumo(grid, params, xp=xp)
    return UPDATERS[scheme](rhs, dt, xp=xp)
