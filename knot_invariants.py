"""
knot_invariants.py

Writhe, twist and length of a traced filament.

For a closed polygon r_0 .. r_{N-1} with parameter step ds = 2 pi / N:

  t_s      = (r_{s+1} - r_s) / ds                     forward difference
  length_s = |r_{s+1} - r_s|
  writhe_s = sum_{m != s} ds (dr . (t_s x t_m)) / (4 pi |dr|^3)
             dr = midpoint(s) - midpoint(m)
  twist_s  = t_s . (a_s x b_s) / (2 pi |t_s|),   b_s = (a_{s+1} - a_s) / ds

Totals are sum(writhe_s * ds), sum(twist_s * ds) and sum(length_s).

The frame vector a is grad u interpolated onto the curve, with its component
along the (central-difference) tangent removed, normalised.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np

from curve_tracer import KnotCurve, TraceResult, TraceStatus, corner_stencil
from fn_fields import central_gradient
from fn_grid import Grid


# Rows of the writhe double sum handled per block
_WRITHE_BLOCK = 256


@dataclass(frozen=True)
class InvariantSample:
    time: float
    writhe: float
    twist: float
    length: float
    status: TraceStatus = TraceStatus.CLOSED

    @property
    def complete(self) -> bool:
        """False when the curve was cut short instead of closing on itself."""
        return self.status is TraceStatus.CLOSED


def compute_frame(grid: Grid, u: np.ndarray, positions: np.ndarray) -> np.ndarray:
    """
    Unit vector a along grad u, perpendicular to the curve tangent.

    Where the projected gradient vanishes (e.g. a quiescent field) a is left
    as the zero vector.
    """
    pts = np.asarray(positions, dtype=float)
    gx, gy, gz = central_gradient(grid, np.asarray(u))

    grad = np.zeros_like(pts)
    for s, p in enumerate(pts):
        st = corner_stencil(grid, p, clamp=True)
        if st is not None:
            grad[s] = st.interpolate(gx, gy, gz)

    tangent = 0.5 * (np.roll(pts, -1, axis=0) - np.roll(pts, 1, axis=0))
    tt = np.einsum("ij,ij->i", tangent, tangent)
    gt = np.einsum("ij,ij->i", grad, tangent)
    coef = np.divide(gt, tt, out=np.zeros_like(gt), where=tt > 0)
    proj = grad - coef[:, None] * tangent

    norm = np.linalg.norm(proj, axis=1)
    return np.divide(proj, norm[:, None], out=np.zeros_like(proj), where=norm[:, None] > 0)


def writhe_density(positions: np.ndarray) -> np.ndarray:
    """Per-segment writhe density (before the final * ds)."""
    r = np.asarray(positions, dtype=float)
    n = len(r)
    ds = 2.0 * np.pi / n
    r1 = np.roll(r, -1, axis=0)
    t = (r1 - r) / ds
    mid = 0.5 * (r1 + r)

    out = np.zeros(n)
    for s0 in range(0, n, _WRITHE_BLOCK):
        s1 = min(s0 + _WRITHE_BLOCK, n)
        rows = np.arange(s0, s1)

        dr = mid[s0:s1, None, :] - mid[None, :, :]                 # (b, n, 3)
        txt = np.cross(t[s0:s1, None, :], t[None, :, :])           # (b, n, 3)
        num = np.einsum("bnk,bnk->bn", dr, txt)
        dist2 = np.einsum("bnk,bnk->bn", dr, dr)

        # s == m is excluded exactly, as are coincident midpoints
        dist2[rows - s0, rows] = 0.0
        skip = dist2 == 0.0
        num[skip] = 0.0
        dist2[skip] = 1.0

        out[s0:s1] = ds * (num / (4.0 * np.pi * dist2 * np.sqrt(dist2))).sum(axis=1)
    return out


def twist_density(positions: np.ndarray, frame: np.ndarray) -> np.ndarray:
    r = np.asarray(positions, dtype=float)
    a = np.asarray(frame, dtype=float)
    n = len(r)
    ds = 2.0 * np.pi / n

    t = (np.roll(r, -1, axis=0) - r) / ds
    b = (np.roll(a, -1, axis=0) - a) / ds
    triple = np.einsum("ij,ij->i", t, np.cross(a, b))
    tnorm = np.linalg.norm(t, axis=1)
    return np.divide(triple, 2.0 * np.pi * tnorm, out=np.zeros(n), where=tnorm > 0)


def segment_lengths(positions: np.ndarray) -> np.ndarray:
    r = np.asarray(positions, dtype=float)
    return np.linalg.norm(np.roll(r, -1, axis=0) - r, axis=1)


def integrate_invariants(curve: KnotCurve) -> Tuple[float, float, float]:
    """
    Fill the per-segment writhe, twist and length of `curve` from its
    positions and frame; return (writhe, twist, length) totals.
    """
    n = len(curve)
    ds = 2.0 * np.pi / n
    curve.writhe = writhe_density(curve.positions)
    curve.twist = twist_density(curve.positions, curve.frame)
    curve.length = segment_lengths(curve.positions)
    return (
        float(curve.writhe.sum() * ds),
        float(curve.twist.sum() * ds),
        float(curve.length.sum()),
    )


def compute_invariants(grid: Grid, u: np.ndarray, curve: KnotCurve) -> Tuple[float, float, float]:
    """Frame from the u field, then the three integrals."""
    curve.frame = compute_frame(grid, u, curve.positions)
    return integrate_invariants(curve)


def measure_knot(grid: Grid, u: np.ndarray, trace: TraceResult, time: float) -> InvariantSample:
    writhe, twist, length = compute_invariants(grid, u, trace.curve)
    return InvariantSample(time=float(time), writhe=writhe, twist=twist,
                           length=length, status=trace.status)
