"""
curve_tracer.py

Follow the scroll-wave filament through the field.

The filament sits on the ridge of |grad u x grad v|, and the cross-gradient
vector itself points along it. Starting from the seed point:

  1) trilinearly interpolate grad u x grad v at the current point and
     normalise it -> direction
  2) trial point = current + 2*lambda/(32 pi) * direction
  3) refine the trial point with a VectorOptimizer on -|grad u x grad v|
  4) record the next point (see `placement` below)
  5) stop once back within lambda/(2 pi) of the start after more than 32
     steps, or after max_steps, or when the walk leaves the grid
  6) close the gap with 15 evenly spaced points
  7) relax to uniform arc-length spacing (3 passes)

Placement: with placement="half_step" (the default) the recorded point is
current + 0.5*lambda/(32 pi) * direction and the optimizer result is only
kept in TraceResult.refined. placement="optimizer" records the refined point
instead.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, List, Optional, Sequence

import numpy as np

from fn_fields import CrossGradient, central_gradient
from fn_grid import Grid
from vector_optimizer import ScipyVectorOptimizer, VectorOptimizer


WAVELENGTH = 21.3

# (iinc, jinc, kinc) for the 8 corners: m%2, (m/2)%2, (m/4)%2
_CORNER_OFFSETS = np.array([(m % 2, (m // 2) % 2, (m // 4) % 2) for m in range(8)], dtype=int)


# -----------------------------------------------------------------------------
# Trilinear interpolation
# -----------------------------------------------------------------------------

@dataclass
class CornerStencil:
    i: np.ndarray
    j: np.ndarray
    k: np.ndarray
    weights: np.ndarray

    def interpolate(self, *fields) -> np.ndarray:
        return np.array([f[self.i, self.j, self.k] @ self.weights for f in fields])


def corner_stencil(grid: Grid, point: Sequence[float], clamp: bool = False) -> Optional[CornerStencil]:
    """
    The 8 grid points enclosing `point` and their trilinear weights.

    Returns None when the lower corner lies outside the grid, unless clamp is
    set, in which case the corner is pulled back onto the grid and the
    weights extrapolate.
    """
    if not np.all(np.isfinite(point)):
        return None
    idx = list(grid.lower_corner(point))
    if clamp:
        idx = [min(max(idx[a], 0), grid.shape[a] - 1) for a in range(3)]
    elif not grid.corner_in_grid(idx):
        return None

    frac = (np.asarray(point, dtype=float) - grid.position(idx)) / grid.h
    ijk = [
        np.array([grid.wrap(a, idx[a], int(o)) for o in _CORNER_OFFSETS[:, a]])
        for a in range(3)
    ]
    w = np.where(_CORNER_OFFSETS == 1, frac[None, :], 1.0 - frac[None, :]).prod(axis=1)
    return CornerStencil(ijk[0], ijk[1], ijk[2], w)


# -----------------------------------------------------------------------------
# Curve containers
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class CurvePoint:
    position: np.ndarray
    a: np.ndarray
    writhe: float
    twist: float
    length: float


@dataclass
class KnotCurve:
    """
    Ordered closed polygon, stored as arrays.

    positions and frame are (N, 3). writhe, twist and length are per-segment
    (segment s joins point s to point s+1 mod N).
    """
    positions: np.ndarray
    frame: Optional[np.ndarray] = None
    writhe: Optional[np.ndarray] = None
    twist: Optional[np.ndarray] = None
    length: Optional[np.ndarray] = None

    def __post_init__(self):
        self.positions = np.asarray(self.positions, dtype=float)
        n = len(self.positions)
        if self.frame is None:
            self.frame = np.zeros((n, 3))
        for name in ("writhe", "twist", "length"):
            if getattr(self, name) is None:
                setattr(self, name, np.zeros(n))

    def __len__(self) -> int:
        return len(self.positions)

    def __getitem__(self, s: int) -> CurvePoint:
        s = s % len(self)
        return CurvePoint(
            position=self.positions[s],
            a=self.frame[s],
            writhe=float(self.writhe[s]),
            twist=float(self.twist[s]),
            length=float(self.length[s]),
        )

    def __iter__(self) -> Iterator[CurvePoint]:
        for s in range(len(self)):
            yield self[s]

    def total_length(self) -> float:
        seg = np.roll(self.positions, -1, axis=0) - self.positions
        return float(np.linalg.norm(seg, axis=1).sum())


class TraceStatus(str, Enum):
    CLOSED = "closed"            # came back within the capture radius
    STEP_CAP = "step_cap"        # ran out of steps
    OUT_OF_GRID = "out_of_grid"  # walked off the grid
    LOST = "lost"                # cross-gradient vanished, no direction


@dataclass
class TraceResult:
    curve: KnotCurve
    status: TraceStatus
    steps: int
    closure_distance: float
    refined: np.ndarray = field(default_factory=lambda: np.zeros((0, 3)))
    grown: np.ndarray = field(default_factory=lambda: np.zeros((0, 3)))

    @property
    def complete(self) -> bool:
        return self.status is TraceStatus.CLOSED


# -----------------------------------------------------------------------------
# Post-processing
# -----------------------------------------------------------------------------

def fill_gap(points: np.ndarray, n_fill: int = 15) -> np.ndarray:
    """Append n_fill points stepping from the last point towards the first."""
    points = np.asarray(points, dtype=float)
    step = (points[0] - points[-1]) / (n_fill + 1)
    extra = points[-1] + step * np.arange(1, n_fill + 1)[:, None]
    return np.vstack([points, extra])


def relax_arclength(points: np.ndarray, passes: int = 3) -> np.ndarray:
    """
    Redistribute points to uniform spacing total/N.

    Each pass walks the loop once, sliding point s+1 along the edge from s so
    that it sits dl away from the (already moved) point s. The wrap-around
    step moves point 0 too, hence several passes.
    """
    pts = np.array(points, dtype=float)
    n = len(pts)
    for _ in range(passes):
        seg = np.roll(pts, -1, axis=0) - pts
        dl = np.linalg.norm(seg, axis=1).sum() / n
        for s in range(n):
            nxt = (s + 1) % n
            d = pts[nxt] - pts[s]
            norm = np.sqrt(d @ d)
            if norm > 0:
                pts[nxt] = pts[s] + dl * d / norm
    return pts


# -----------------------------------------------------------------------------
# Tracer
# -----------------------------------------------------------------------------

class CurveTracer:
    """Grow a closed curve along the cross-gradient ridge from a seed point."""

    PLACEMENTS = ("half_step", "optimizer")

    def __init__(self, grid: Grid, wavelength: float = WAVELENGTH,
                 optimizer: Optional[VectorOptimizer] = None,
                 placement: str = "half_step",
                 min_steps: int = 32,
                 max_steps: int = 50000,
                 gap_points: int = 15,
                 relax_passes: int = 3):
        if placement not in self.PLACEMENTS:
            raise ValueError(f"Unknown placement '{placement}'. Expected one of {self.PLACEMENTS}")
        self.grid = grid
        self.wavelength = float(wavelength)
        self.optimizer = optimizer if optimizer is not None else ScipyVectorOptimizer()
        self.placement = placement
        self.min_steps = int(min_steps)
        self.max_steps = int(max_steps)
        self.gap_points = int(gap_points)
        self.relax_passes = int(relax_passes)

    @property
    def trial_step(self) -> float:
        return 2.0 * self.wavelength / (32.0 * np.pi)

    @property
    def record_step(self) -> float:
        return 0.5 * self.wavelength / (32.0 * np.pi)

    @property
    def capture_radius(self) -> float:
        return self.wavelength / (2.0 * np.pi)

    def _ridge_functions(self, ucv: CrossGradient):
        grid = self.grid
        mag = ucv.magnitude
        gx, gy, gz = central_gradient(grid, mag)

        def objective(p):
            st = corner_stencil(grid, p, clamp=True)
            if st is None:
                return 0.0
            return -float(np.linalg.norm(st.interpolate(ucv.x, ucv.y, ucv.z)))

        def gradient(p):
            st = corner_stencil(grid, p, clamp=True)
            if st is None:
                return np.zeros(3)
            return -st.interpolate(gx, gy, gz)

        return objective, gradient

    def trace(self, ucv: CrossGradient, seed: Sequence[float]) -> TraceResult:
        objective, gradient = self._ridge_functions(ucv)

        start = np.asarray(seed, dtype=float)
        points: List[np.ndarray] = [start]
        refined: List[np.ndarray] = []
        status = TraceStatus.STEP_CAP
        s = 1

        while True:
            prev = points[-1]
            st = corner_stencil(self.grid, prev)
            if st is None:
                status = TraceStatus.OUT_OF_GRID
                break

            d = st.interpolate(ucv.x, ucv.y, ucv.z)
            norm = np.linalg.norm(d)
            if not norm > 0:
                status = TraceStatus.LOST
                break
            direction = d / norm

            trial = prev + self.trial_step * direction
            best = self.optimizer.minimize(objective, gradient, trial)
            refined.append(np.asarray(best, dtype=float))

            if self.placement == "optimizer":
                new = np.asarray(best, dtype=float)
            else:
                new = prev + self.record_step * direction
            points.append(new)

            if np.linalg.norm(start - new) < self.capture_radius and s > self.min_steps:
                status = TraceStatus.CLOSED
                break
            if s > self.max_steps:
                status = TraceStatus.STEP_CAP
                break
            s += 1

        grown = np.array(points)
        closure = float(np.linalg.norm(grown[0] - grown[-1]))
        filled = fill_gap(grown, self.gap_points)
        relaxed = relax_arclength(filled, self.relax_passes)

        return TraceResult(
            curve=KnotCurve(relaxed),
            status=status,
            steps=len(grown) - 1,
            closure_distance=closure,
            refined=np.array(refined) if refined else np.zeros((0, 3)),
            grown=grown,
        )
