"""
fn_io.py

File formats for the FitzHugh-Nagumo knot simulator.

Inputs
------
- Restart files (phase or uv): a fixed 10-line header, then one value per
  line in (k, j, i) order (k slowest). A uv file carries a second block for v
  after a 2-line header. The VTK snapshots written below are valid restart
  files.

Outputs
-------
- uv_plot<T>.vtk   : STRUCTURED_POINTS with SCALARS u, v, ucrossv
- phi.vtk          : STRUCTURED_POINTS with SCALARS Phi
- knotplot<T>.vtk  : UNSTRUCTURED_GRID, cyclic line cells, vector A and
                     per-cell Writhe / Twist / Length
- info.txt         : tab-separated key/value run summary
- writhe.txt       : append-only tab-separated (Time, Writhe, Twist, Length)
"""

from __future__ import annotations

import os
from datetime import datetime
from typing import Dict, Iterable, Tuple

import numpy as np
import pandas as pd

from fn_grid import Grid


HEADER_LINES = 10
BLOCK_HEADER_LINES = 2
SERIES_COLUMNS = ("Time", "Writhe", "Twist", "Length")


class InputFormatError(ValueError):
    """Raised when an input file is truncated or malformed."""


# -----------------------------------------------------------------------------
# Restart readers
# -----------------------------------------------------------------------------

def _read_block(path: str, skip: int, count: int, label: str) -> np.ndarray:
    try:
        df = pd.read_csv(
            path,
            header=None,
            skiprows=skip,
            nrows=count,
            sep=r"\s+",
            usecols=[0],
            dtype=float,
            skip_blank_lines=False,
        )
    except FileNotFoundError:
        raise
    except (ValueError, pd.errors.ParserError) as exc:
        # EmptyDataError is a ValueError subclass
        raise InputFormatError(f"{path}: could not read {label} block ({exc})") from exc

    values = df.iloc[:, 0].to_numpy(dtype=float)
    if values.size != count:
        raise InputFormatError(
            f"{path}: {label} block truncated, expected {count} values, found {values.size}"
        )
    if np.isnan(values).any():
        raise InputFormatError(f"{path}: {label} block has missing values")
    return values


def _kji_to_grid(values: np.ndarray, grid: Grid) -> np.ndarray:
    """(k, j, i)-ordered flat values -> C-ordered (nx, ny, nz) array."""
    return np.ascontiguousarray(values.reshape(grid.nz, grid.ny, grid.nx).transpose(2, 1, 0))


def _grid_to_kji(arr: np.ndarray) -> np.ndarray:
    return np.asarray(arr).transpose(2, 1, 0).ravel()


def read_scalar_blocks(path: str, grid: Grid, n_blocks: int = 1) -> Tuple[np.ndarray, ...]:
    """
    Read n_blocks consecutive scalar blocks from a restart file.
    """
    if not os.path.isfile(path):
        raise FileNotFoundError(f"Restart file not found: {path}")

    blocks = []
    skip = HEADER_LINES
    for b in range(n_blocks):
        values = _read_block(path, skip, grid.size, label=f"#{b + 1}")
        blocks.append(_kji_to_grid(values, grid))
        skip += grid.size + BLOCK_HEADER_LINES
    return tuple(blocks)


def read_phase_file(path: str, grid: Grid) -> np.ndarray:
    (phase,) = read_scalar_blocks(path, grid, n_blocks=1)
    return phase


def read_uv_file(path: str, grid: Grid) -> Tuple[np.ndarray, np.ndarray]:
    u, v = read_scalar_blocks(path, grid, n_blocks=2)
    return u, v


# -----------------------------------------------------------------------------
# VTK writers
# -----------------------------------------------------------------------------

def time_label(t: float) -> str:
    """Compact time label used in snapshot filenames (60.0 -> '60')."""
    return f"{t:g}"


def write_structured_points(path: str, grid: Grid, fields: Dict[str, np.ndarray],
                            title: str = "UV fields") -> str:
    """Write named scalar fields as a legacy ASCII STRUCTURED_POINTS file."""
    x0, y0, z0 = grid.origin
    with open(path, "w") as f:
        f.write("# vtk DataFile Version 3.0\n")
        f.write(f"{title}\n")
        f.write("ASCII\nDATASET STRUCTURED_POINTS\n")
        f.write(f"DIMENSIONS {grid.nx} {grid.ny} {grid.nz}\n")
        f.write(f"ORIGIN {x0:.17g} {y0:.17g} {z0:.17g}\n")
        f.write(f"SPACING {grid.h:.17g} {grid.h:.17g} {grid.h:.17g}\n")
        f.write(f"POINT_DATA {grid.size}\n")
        for name, arr in fields.items():
            arr = np.asarray(arr)
            if arr.shape != grid.shape:
                raise ValueError(f"Field '{name}' has shape {arr.shape}, expected {grid.shape}")
            f.write(f"SCALARS {name} float\nLOOKUP_TABLE default\n")
            np.savetxt(f, _grid_to_kji(arr), fmt="%.17g")
    return path


def write_uv_vtk(out_dir: str, grid: Grid, u: np.ndarray, v: np.ndarray,
                 ucv_mag: np.ndarray, t: float) -> str:
    path = os.path.join(out_dir, f"uv_plot{time_label(t)}.vtk")
    return write_structured_points(path, grid, {"u": u, "v": v, "ucrossv": ucv_mag})


def write_phase_vtk(out_dir: str, grid: Grid, phase: np.ndarray) -> str:
    path = os.path.join(out_dir, "phi.vtk")
    return write_structured_points(path, grid, {"Phi": phase}, title="Knot")


def write_knot_vtk(out_dir: str, curve, t: float) -> str:
    """
    Write a traced curve as a closed polyline.

    `curve` needs positions (N, 3), frame (N, 3) and per-segment writhe,
    twist and length arrays (see curve_tracer.KnotCurve).
    """
    path = os.path.join(out_dir, f"knotplot{time_label(t)}.vtk")
    pts = np.asarray(curve.positions)
    n = len(pts)

    with open(path, "w") as f:
        f.write("# vtk DataFile Version 3.0\nKnot\nASCII\nDATASET UNSTRUCTURED_GRID\n")
        f.write(f"POINTS {n} float\n")
        np.savetxt(f, pts, fmt="%.10g")

        f.write(f"\n\nCELLS {n} {3 * n}\n")
        for i in range(n):
            f.write(f"2 {i} {(i + 1) % n}\n")

        f.write(f"\n\nCELL_TYPES {n}\n")
        f.write("3\n" * n)

        f.write(f"\n\nPOINT_DATA {n}\n\n")
        f.write("\nVECTORS A float\n")
        np.savetxt(f, np.asarray(curve.frame), fmt="%.10g")

        f.write(f"\n\nCELL_DATA {n}\n\n")
        for name, values in (("Writhe", curve.writhe), ("Twist", curve.twist), ("Length", curve.length)):
            f.write(f"\nSCALARS {name} float\nLOOKUP_TABLE default\n")
            np.savetxt(f, np.asarray(values), fmt="%.10g")
    return path


# -----------------------------------------------------------------------------
# Run metadata and invariant series
# -----------------------------------------------------------------------------

def write_run_info(out_dir: str, items: Iterable[Tuple[str, object]]) -> str:
    """Write info.txt: one 'key<TAB>value' line per item, plus the start time."""
    path = os.path.join(out_dir, "info.txt")
    with open(path, "w") as f:
        f.write(f"run started at\t{datetime.now().strftime('%a %b %d %H:%M:%S %Y')}\n")
        for key, value in items:
            if isinstance(value, (tuple, list)):
                value = "\t".join(str(x) for x in value)
            f.write(f"{key}\t{value}\n")
    return path


def read_run_info(path: str) -> Dict[str, str]:
    info = {}
    with open(path) as f:
        for line in f:
            line = line.rstrip("\n")
            if not line:
                continue
            key, _, value = line.partition("\t")
            info[key] = value
    return info


class InvariantSeriesWriter:
    """
    Append-only writer for writhe.txt.

    The header is written once when the writer is created; every append()
    adds one row and flushes it to disk.
    """

    def __init__(self, path: str):
        self.path = path
        with open(self.path, "w") as f:
            f.write("\t".join(SERIES_COLUMNS) + "\n")

    def append(self, sample) -> None:
        with open(self.path, "a") as f:
            f.write(f"{sample.time:.10g}\t{sample.writhe:.10g}\t{sample.twist:.10g}\t{sample.length:.10g}\n")


def load_invariant_series(path: str) -> pd.DataFrame:
    if not os.path.isfile(path):
        raise FileNotFoundError(f"Could not find invariant series: {path}")
    return pd.read_csv(path, sep="\t")
