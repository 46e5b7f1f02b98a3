#!/usr/bin/env python
"""
plot_invariants.py

Utility script for the FitzHugh-Nagumo knot simulator.

- Loads writhe.txt from a run directory
- Plots:
    1) Writhe vs time
    2) Twist vs time
    3) Writhe + Twist (self-linking) vs time
    4) Filament length vs time

Usage:

    python plot_invariants.py --run_dir output_knot
"""

import os
import argparse

import pandas as pd
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt

from fn_io import load_invariant_series


def load_invariants(run_dir: str) -> pd.DataFrame:
    """
    Load writhe.txt from the given run directory and add the Linking column
    (Writhe + Twist).
    """
    df = load_invariant_series(os.path.join(run_dir, "writhe.txt"))
    df["Linking"] = df["Writhe"] + df["Twist"]
    return df


def plot_column(df: pd.DataFrame, run_dir: str, column: str, ylabel: str, fname: str) -> str:
    t = df["Time"].values

    plt.figure()
    plt.plot(t, df[column].values, marker="o")
    plt.xlabel("time")
    plt.ylabel(ylabel)
    plt.title(f"{ylabel} vs time")
    plt.grid(True)

    out_path = os.path.join(run_dir, fname)
    plt.tight_layout()
    plt.savefig(out_path, dpi=150)
    plt.close()
    print(f"[plot] Saved {column.lower()} plot to {out_path}")
    return out_path


def plot_writhe_twist(df: pd.DataFrame, run_dir: str) -> str:
    """
    Writhe, twist and their sum on one set of axes. For a curve that does
    not reconnect the sum should stay near an integer.
    """
    t = df["Time"].values

    plt.figure()
    plt.plot(t, df["Writhe"].values, marker="o", label="writhe")
    plt.plot(t, df["Twist"].values, marker="s", label="twist")
    plt.plot(t, df["Linking"].values, linestyle="--", label="writhe + twist")
    plt.xlabel("time")
    plt.ylabel("invariant")
    plt.title("Writhe and twist vs time")
    plt.legend()
    plt.grid(True)

    out_path = os.path.join(run_dir, "writhe_twist.png")
    plt.tight_layout()
    plt.savefig(out_path, dpi=150)
    plt.close()
    print(f"[plot] Saved writhe/twist plot to {out_path}")
    return out_path


def make_all_plots(run_dir: str):
    df = load_invariants(run_dir)
    return [
        plot_column(df, run_dir, "Writhe", "writhe", "writhe.png"),
        plot_column(df, run_dir, "Twist", "twist", "twist.png"),
        plot_column(df, run_dir, "Length", "filament length", "length.png"),
        plot_writhe_twist(df, run_dir),
    ]


def main():
    parser = argparse.ArgumentParser(
        description="Plot writhe, twist and length from FN knot runs."
    )
    parser.add_argument(
        "--run_dir",
        type=str,
        default="output_knot",
        help="Directory containing writhe.txt.",
    )
    args = parser.parse_args()

    run_dir = args.run_dir
    print(f"[info] Loading invariants from: {run_dir}")

    df = load_invariants(run_dir)
    if df.empty:
        print("[info] writhe.txt has no samples yet, nothing to plot.")
        return

    print("[info] Data summary:")
    print(df.describe())

    make_all_plots(run_dir)

    print("[done] All plots generated.")


if __name__ == "__main__":
    main()
