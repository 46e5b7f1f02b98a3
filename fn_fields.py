"""
fn_fields.py

Field state of the FitzHugh-Nagumo medium and the cross-gradient detector.

- FieldState holds the excitation u and recovery v on a Grid.
- seed_from_phase() maps a phase field to the initial (u, v):
      u = 2 cos(phase) - 0.4,   v = sin(phase) - 0.4
- cross_gradient() computes grad u x grad v with boundary-aware central
  differences. Its magnitude peaks on the scroll-wave filament; the first
  grid point of maximum magnitude seeds the curve tracer.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from fn_grid import Grid


KNOT_THRESHOLD = 0.1


@dataclass
class CrossGradient:
    x: np.ndarray
    y: np.ndarray
    z: np.ndarray

    @property
    def magnitude(self) -> np.ndarray:
        return np.sqrt(self.x * self.x + self.y * self.y + self.z * self.z)


@dataclass
class SeedResult:
    """Location of the strongest cross-gradient, and whether a knot is present."""
    index: tuple
    position: np.ndarray
    max_magnitude: float
    knot_exists: bool


class FieldState:
    """
    The two coupled fields u, v (float64, grid.shape).

    The arrays are owned by this object and updated in place by the
    integrator. The cross-gradient is derived data, recomputed on demand.
    """

    def __init__(self, grid: Grid, u: Optional[np.ndarray] = None, v: Optional[np.ndarray] = None):
        self.grid = grid
        self.u = self._checked(u, "u")
        self.v = self._checked(v, "v")
        self.ucv: Optional[CrossGradient] = None

    def _checked(self, arr, name: str) -> np.ndarray:
        if arr is None:
            return np.zeros(self.grid.shape, dtype=np.float64)
        arr = np.ascontiguousarray(arr, dtype=np.float64)
        if arr.shape != self.grid.shape:
            raise ValueError(f"{name} has shape {arr.shape}, expected {self.grid.shape}")
        return arr

    @classmethod
    def from_phase(cls, grid: Grid, phase: np.ndarray) -> "FieldState":
        u, v = seed_from_phase(phase)
        return cls(grid, u, v)

    def update_cross_gradient(self) -> CrossGradient:
        self.ucv = cross_gradient(self.grid, self.u, self.v)
        return self.ucv

    def find_seed(self, threshold: float = KNOT_THRESHOLD) -> SeedResult:
        ucv = self.update_cross_gradient()
        return find_seed(self.grid, ucv, threshold)


def seed_from_phase(phase: np.ndarray):
    """Initial (u, v) from a phase field."""
    phase = np.asarray(phase, dtype=np.float64)
    u = 2.0 * np.cos(phase) - 0.4
    v = np.sin(phase) - 0.4
    return u, v


def central_gradient(grid: Grid, f: np.ndarray, xp=np):
    """
    Central differences 0.5*(f[i+1] - f[i-1])/h along each axis, with the
    grid's per-axis neighbour wrap.
    """
    grads = []
    for axis in range(3):
        up = xp.asarray(grid.neighbour_indices(axis, +1))
        dn = xp.asarray(grid.neighbour_indices(axis, -1))
        grads.append(0.5 * (xp.take(f, up, axis=axis) - xp.take(f, dn, axis=axis)) / grid.h)
    return grads


def cross_gradient(grid: Grid, u: np.ndarray, v: np.ndarray) -> CrossGradient:
    dxu, dyu, dzu = central_gradient(grid, u)
    dxv, dyv, dzv = central_gradient(grid, v)
    return CrossGradient(
        x=dyu * dzv - dzu * dyv,
        y=dzu * dxv - dxu * dzv,
        z=dxu * dyv - dyu * dxv,
    )


def find_seed(grid: Grid, ucv: CrossGradient, threshold: float = KNOT_THRESHOLD) -> SeedResult:
    mag = ucv.magnitude
    n = int(np.argmax(mag))          # first maximum in (i, j, k) order
    ijk = grid.unravel(n)
    max_mag = float(mag.ravel()[n])
    return SeedResult(
        index=ijk,
        position=grid.position(ijk),
        max_magnitude=max_mag,
        knot_exists=bool(max_mag >= threshold),
    )
