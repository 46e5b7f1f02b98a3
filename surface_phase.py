"""
surface_phase.py

Surface-to-phase initialisation for the FitzHugh-Nagumo knot simulator.

A closed oriented surface S with boundary K (the knot) defines a phase field
that winds once around K. For a grid point p we use the discrete solid-angle
sum over the triangulated surface:

    phase(p) = sum_f (r_f . n_f) * A_f / (2 |r_f|^3),     r_f = c_f - p

with c_f, n_f, A_f the facet centroid, unit normal and area. Facets with
|r_f| == 0 are skipped. The raw sum is wrapped into (-pi, pi] by whole
multiples of 2*pi; crossing S jumps the raw sum by 2*pi, so the wrapped field
is smooth everywhere except on K.

Also here:
- read_stl_surface()     : ASCII STL ingestion
- fit_surface_to_box()   : autoscaling into the simulation box
- phase_from_function()  : analytic initial phase (e.g. a straight pole)
"""

from __future__ import annotations

import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from fn_grid import Grid
from fn_io import InputFormatError


TWO_PI = 2.0 * np.pi

# Keep each (points x facets) work array around this many elements.
_CHUNK_ELEMENTS = 2_000_000


@dataclass(frozen=True)
class SurfaceFacet:
    vertices: np.ndarray   # (3, 3), one vertex per row
    normal: np.ndarray     # (3,), outward unit normal
    centroid: np.ndarray   # (3,)
    area: float


def triangle_area(vertices: np.ndarray) -> float:
    """Heron's formula on the three edge lengths."""
    v = np.asarray(vertices, dtype=float)
    r10 = np.linalg.norm(v[1] - v[0])
    r20 = np.linalg.norm(v[2] - v[0])
    r21 = np.linalg.norm(v[2] - v[1])
    s = 0.5 * (r10 + r20 + r21)
    return float(np.sqrt(max(s * (s - r10) * (s - r20) * (s - r21), 0.0)))


def make_facet(vertices: Sequence[Sequence[float]], normal: Sequence[float]) -> SurfaceFacet:
    verts = np.asarray(vertices, dtype=float).reshape(3, 3)
    return SurfaceFacet(
        vertices=verts,
        normal=np.asarray(normal, dtype=float),
        centroid=verts.mean(axis=0),
        area=triangle_area(verts),
    )


def pack_facets(facets: Sequence[SurfaceFacet]) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Stack facet centroids, normals and areas into arrays."""
    if len(facets) == 0:
        raise ValueError("Surface has no facets")
    centroids = np.array([f.centroid for f in facets], dtype=float)
    normals = np.array([f.normal for f in facets], dtype=float)
    areas = np.array([f.area for f in facets], dtype=float)
    return centroids, normals, areas


# -----------------------------------------------------------------------------
# Phase wrapping
# -----------------------------------------------------------------------------

def wrap_phase(phase):
    """
    Wrap into (-pi, pi] by subtracting whole turns.

    Values are never clamped; -pi maps to +pi.
    """
    phase = np.asarray(phase, dtype=float)
    wrapped = np.pi - np.mod(np.pi - phase, TWO_PI)
    # np.mod may round up to exactly 2*pi
    wrapped = np.where(wrapped <= -np.pi, wrapped + TWO_PI, wrapped)
    if wrapped.ndim == 0:
        return float(wrapped)
    return wrapped


# -----------------------------------------------------------------------------
# Solid-angle sum
# -----------------------------------------------------------------------------

def _raw_phase(points: np.ndarray, centroids: np.ndarray, normals: np.ndarray,
               areas: np.ndarray) -> np.ndarray:
    """Unwrapped solid-angle sum for an (P, 3) block of points."""
    n_points = len(points)
    total = np.zeros(n_points, dtype=float)
    step = max(1, _CHUNK_ELEMENTS // max(n_points, 1))

    px = points[:, 0:1]
    py = points[:, 1:2]
    pz = points[:, 2:3]

    for start in range(0, len(centroids), step):
        c = centroids[start:start + step]
        nrm = normals[start:start + step]
        a = areas[start:start + step]

        rx = c[None, :, 0] - px
        ry = c[None, :, 1] - py
        rz = c[None, :, 2] - pz
        r = np.sqrt(rx * rx + ry * ry + rz * rz)

        rdotn = rx * nrm[None, :, 0] + ry * nrm[None, :, 1] + rz * nrm[None, :, 2]
        with np.errstate(divide="ignore", invalid="ignore"):
            term = np.where(r > 0, rdotn * a[None, :] / (2.0 * r * r * r), 0.0)
        total += term.sum(axis=1)

    return total


def phase_at_points(points, facets: Sequence[SurfaceFacet]) -> np.ndarray:
    """Wrapped phase at arbitrary (P, 3) positions."""
    pts = np.atleast_2d(np.asarray(points, dtype=float))
    centroids, normals, areas = pack_facets(facets)
    return wrap_phase(_raw_phase(pts, centroids, normals, areas))


def compute_phase_field(grid: Grid, facets: Sequence[SurfaceFacet],
                        workers: int = 1) -> np.ndarray:
    """
    Phase on every grid point, shape grid.shape.

    The x axis is split into slabs with disjoint write sets; with workers > 1
    the slabs are evaluated on a thread pool.
    """
    centroids, normals, areas = pack_facets(facets)
    phase = np.empty(grid.shape, dtype=float)

    ys = grid.coords(1)
    zs = grid.coords(2)
    Y, Z = np.meshgrid(ys, zs, indexing="ij")
    yz = np.column_stack([Y.ravel(), Z.ravel()])
    xs = grid.coords(0)

    def slab(i: int) -> None:
        pts = np.column_stack([np.full(len(yz), xs[i]), yz])
        raw = _raw_phase(pts, centroids, normals, areas)
        phase[i] = wrap_phase(raw).reshape(grid.ny, grid.nz)

    if workers > 1:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            list(pool.map(slab, range(grid.nx)))
    else:
        for i in range(grid.nx):
            slab(i)

    return phase


def phase_from_function(grid: Grid, func: Callable[[np.ndarray, np.ndarray, np.ndarray], np.ndarray]) -> np.ndarray:
    """Evaluate an analytic phase func(X, Y, Z) on the grid and wrap it."""
    X, Y, Z = grid.mesh()
    return wrap_phase(np.broadcast_to(func(X, Y, Z), grid.shape))


def pole_phase(x0: float = 0.0, y0: float = 0.0):
    """Phase winding once around a straight line parallel to z through (x0, y0)."""
    def func(X, Y, Z):
        return np.arctan2(Y - y0, X - x0)
    return func


PHASE_FUNCTIONS = {
    "pole": pole_phase,
}


# -----------------------------------------------------------------------------
# STL ingestion
# -----------------------------------------------------------------------------

def _expect(lines: List[str], pos: int, keyword: str, path: str) -> List[str]:
    if pos >= len(lines):
        raise InputFormatError(f"{path}: unexpected end of file, expected '{keyword}' at line {pos + 1}")
    tokens = lines[pos].split()
    if not tokens or tokens[0] != keyword:
        raise InputFormatError(f"{path}: expected '{keyword}' at line {pos + 1}, got '{lines[pos].strip()}'")
    return tokens


def _floats(tokens: List[str], path: str, lineno: int) -> List[float]:
    try:
        values = [float(t) for t in tokens]
    except ValueError as exc:
        raise InputFormatError(f"{path}: bad number at line {lineno}") from exc
    if len(values) != 3:
        raise InputFormatError(f"{path}: expected 3 coordinates at line {lineno}")
    return values


def read_stl_surface(path: str) -> List[SurfaceFacet]:
    """
    Read an ASCII STL file.

    Each facet is:

        facet normal nx ny nz
          outer loop
            vertex x y z   (x3)
          endloop
        endfacet

    and the file ends with 'endsolid'. Coordinates are returned unscaled.
    """
    if not os.path.isfile(path):
        raise FileNotFoundError(f"Surface file not found: {path}")

    with open(path) as f:
        lines = [ln for ln in f.read().splitlines() if ln.strip()]

    _expect(lines, 0, "solid", path)
    facets = []
    pos = 1
    while True:
        if pos >= len(lines):
            raise InputFormatError(f"{path}: missing 'endsolid'")
        tokens = lines[pos].split()
        if tokens[0] == "endsolid":
            break

        tokens = _expect(lines, pos, "facet", path)
        if len(tokens) < 2 or tokens[1] != "normal":
            raise InputFormatError(f"{path}: expected 'facet normal' at line {pos + 1}")
        normal = _floats(tokens[2:], path, pos + 1)
        _expect(lines, pos + 1, "outer", path)

        verts = []
        for j in range(3):
            vt = _expect(lines, pos + 2 + j, "vertex", path)
            verts.append(_floats(vt[1:], path, pos + 3 + j))

        _expect(lines, pos + 5, "endloop", path)
        _expect(lines, pos + 6, "endfacet", path)
        facets.append(make_facet(verts, normal))
        pos += 7

    if not facets:
        raise InputFormatError(f"{path}: no facets found")
    return facets


def fit_surface_to_box(facets: Sequence[SurfaceFacet], grid: Grid,
                       box_fraction: float = 0.8,
                       preserve_ratios: bool = False,
                       displacement: Sequence[float] = (0.0, 0.0, 0.0)) -> List[SurfaceFacet]:
    """
    Rescale a surface about its bounding-box midpoint to fill box_fraction of
    the grid along each axis.

    Normals are transformed with the cofactor of the scaling, so they stay
    normal to the scaled facets; areas are recomputed.
    """
    verts = np.array([f.vertices for f in facets], dtype=float)   # (F, 3, 3)
    lo = verts.reshape(-1, 3).min(axis=0)
    hi = verts.reshape(-1, 3).max(axis=0)
    span = hi - lo
    target = np.array([box_fraction * grid.shape[a] * grid.h for a in range(3)])

    scale = np.ones(3)
    nonflat = span > 0
    scale[nonflat] = target[nonflat] / span[nonflat]
    if preserve_ratios:
        scale[:] = scale[nonflat].min() if nonflat.any() else 1.0

    midpoint = 0.5 * (lo + hi)
    shift = np.asarray(displacement, dtype=float)
    cof = np.array([scale[1] * scale[2], scale[0] * scale[2], scale[0] * scale[1]])

    out = []
    for f, v in zip(facets, verts):
        new_verts = scale * (v - midpoint) + shift
        n = cof * f.normal
        norm = np.linalg.norm(n)
        if norm > 0:
            n = n / norm
        out.append(make_facet(new_verts, n))

    if sum(f.area for f in out) == 0:
        raise InputFormatError("Surface has zero total area after scaling")
    return out


def load_surface(path: str, grid: Grid, box_fraction: float = 0.8,
                 preserve_ratios: bool = False,
                 displacement: Optional[Sequence[float]] = None) -> List[SurfaceFacet]:
    """read_stl_surface() followed by fit_surface_to_box()."""
    raw = read_stl_surface(path)
    return fit_surface_to_box(raw, grid, box_fraction=box_fraction,
                              preserve_ratios=preserve_ratios,
                              displacement=displacement or (0.0, 0.0, 0.0))


def total_area(facets: Sequence[SurfaceFacet]) -> float:
    return float(sum(f.area for f in facets))
