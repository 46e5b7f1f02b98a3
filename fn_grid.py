"""
fn_grid.py

Structured 3D grid for the FitzHugh-Nagumo knot simulator.

- Dimensions (nx, ny, nz), spacing h, one boundary mode per axis.
- Linear index: n = i*ny*nz + j*nz + k (C order of an (nx, ny, nz) array).
- Cell-centred coordinates: x[i] = (i + 0.5 - nx/2) * h.

Neighbour lookup along an axis depends on that axis' boundary mode:

    REFLECTING : index -1 -> 0, index N -> N-1   (zero-flux ghost)
    PERIODIC   : index -1 -> N-1, index N -> 0

These are two different functions and are kept apart on purpose.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence, Tuple

import numpy as np


class BoundaryMode(Enum):
    REFLECTING = "reflecting"
    PERIODIC = "periodic"


AXES = ("x", "y", "z")


def wrap_reflecting(i, step: int, n: int):
    """Clamp i+step into [0, n-1]. Works on ints and integer arrays."""
    if isinstance(i, (int, np.integer)):
        return min(max(int(i) + step, 0), n - 1)
    return np.clip(np.asarray(i) + step, 0, n - 1)


def wrap_periodic(i, step: int, n: int):
    """(i+step) mod n. Works on ints and integer arrays."""
    if isinstance(i, (int, np.integer)):
        return (int(i) + step) % n
    return (np.asarray(i) + step) % n


def boundary_modes(boundary: str) -> Tuple[BoundaryMode, BoundaryMode, BoundaryMode]:
    """
    Translate a boundary preset into per-axis modes.

    Presets:
        "reflecting"                      all axes reflecting
        "periodic"                        all axes periodic
        "periodic-x" / "-y" / "-z"        one axis periodic, the rest reflecting
    """
    key = boundary.strip().lower()
    if key == "reflecting":
        return (BoundaryMode.REFLECTING,) * 3
    if key == "periodic":
        return (BoundaryMode.PERIODIC,) * 3
    if key.startswith("periodic-") and key[-1] in AXES and len(key) == len("periodic-") + 1:
        axis = AXES.index(key[-1])
        modes = [BoundaryMode.REFLECTING] * 3
        modes[axis] = BoundaryMode.PERIODIC
        return tuple(modes)
    raise ValueError(
        f"Unknown boundary '{boundary}'. Expected 'reflecting', 'periodic' "
        f"or 'periodic-x|y|z'."
    )


@dataclass(frozen=True)
class Grid:
    nx: int
    ny: int
    nz: int
    h: float
    boundary: Tuple[BoundaryMode, BoundaryMode, BoundaryMode] = (BoundaryMode.REFLECTING,) * 3

    def __post_init__(self):
        for name in ("nx", "ny", "nz"):
            if int(getattr(self, name)) < 2:
                raise ValueError(f"Grid dimension {name} must be >= 2, got {getattr(self, name)}")
        if not self.h > 0:
            raise ValueError(f"Grid spacing must be positive, got {self.h}")
        if len(self.boundary) != 3:
            raise ValueError("boundary must give one mode per axis")

    @classmethod
    def from_boundary(cls, nx: int, ny: int, nz: int, h: float, boundary: str = "reflecting") -> "Grid":
        return cls(int(nx), int(ny), int(nz), float(h), boundary_modes(boundary))

    # ----------------------------
    # Shape / indexing
    # ----------------------------

    @property
    def shape(self) -> Tuple[int, int, int]:
        return (self.nx, self.ny, self.nz)

    @property
    def size(self) -> int:
        return self.nx * self.ny * self.nz

    def index(self, i: int, j: int, k: int) -> int:
        """Linear index of (i, j, k)."""
        return (i * self.ny + j) * self.nz + k

    def unravel(self, n: int) -> Tuple[int, int, int]:
        """Inverse of index()."""
        i, rem = divmod(int(n), self.ny * self.nz)
        j, k = divmod(rem, self.nz)
        return i, j, k

    # ----------------------------
    # Coordinates
    # ----------------------------

    def coords(self, axis: int) -> np.ndarray:
        n = self.shape[axis]
        return (np.arange(n) + 0.5 - n / 2.0) * self.h

    @property
    def origin(self) -> Tuple[float, float, float]:
        return tuple(float(self.coords(a)[0]) for a in range(3))

    def position(self, ijk: Sequence[int]) -> np.ndarray:
        """Physical coordinates of grid point (i, j, k)."""
        return np.array(
            [(ijk[a] + 0.5 - self.shape[a] / 2.0) * self.h for a in range(3)],
            dtype=float,
        )

    def mesh(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        return np.meshgrid(self.coords(0), self.coords(1), self.coords(2), indexing="ij")

    # ----------------------------
    # Boundary-aware neighbours
    # ----------------------------

    def is_periodic(self, axis: int) -> bool:
        return self.boundary[axis] is BoundaryMode.PERIODIC

    def wrap(self, axis: int, i, step: int):
        """Neighbour index of i shifted by step along axis."""
        n = self.shape[axis]
        if self.is_periodic(axis):
            return wrap_periodic(i, step, n)
        return wrap_reflecting(i, step, n)

    def neighbour_indices(self, axis: int, step: int) -> np.ndarray:
        """Neighbour index for every index along an axis (gather array)."""
        return self.wrap(axis, np.arange(self.shape[axis]), step)

    def lower_corner(self, point: Sequence[float]) -> Tuple[int, int, int]:
        """
        Grid point "below" a physical position, int((x/h) - 0.5 + N/2).

        The conversion truncates toward zero, so positions slightly below the
        first grid point still map to index 0.
        """
        return tuple(int((point[a] / self.h) - 0.5 + self.shape[a] / 2.0) for a in range(3))

    def corner_in_grid(self, ijk: Sequence[int]) -> bool:
        return all(0 <= ijk[a] <= self.shape[a] - 1 for a in range(3))

    def describe_boundary(self) -> str:
        modes = [m.value for m in self.boundary]
        if len(set(modes)) == 1:
            return modes[0]
        return "periodic-" + "".join(AXES[a] for a in range(3) if self.is_periodic(a))


def make_grid(nx: int, ny: int, nz: int, h: float, boundary: str = "reflecting",
              block_size: Optional[int] = None) -> Grid:
    """Build a Grid, optionally checking the accelerator block-size constraint."""
    grid = Grid.from_boundary(nx, ny, nz, h, boundary)
    if block_size is not None:
        check_block_divisibility(grid, block_size)
    return grid


def check_block_divisibility(grid: Grid, block_size: int) -> None:
    if block_size <= 0:
        raise ValueError(f"block_size must be positive, got {block_size}")
    bad = [f"{AXES[a]}={grid.shape[a]}" for a in range(3) if grid.shape[a] % block_size]
    if bad:
        raise ValueError(
            f"Grid dimensions must be multiples of block size {block_size} "
            f"for the GPU backend ({', '.join(bad)})"
        )
