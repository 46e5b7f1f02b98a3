"""
vector_optimizer.py

Local minimisers over a 3-component point.

The curve tracer only needs "start here, go downhill on f using grad f, stop
after a small budget". Anything implementing VectorOptimizer.minimize() can be
plugged in.

- ScipyVectorOptimizer    : scipy.optimize.minimize (conjugate gradient by
                            default), the usual choice.
- SteepestDescentOptimizer: fixed-step gradient descent with a norm test.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable

import numpy as np
from scipy.optimize import minimize


Objective = Callable[[np.ndarray], float]
Gradient = Callable[[np.ndarray], np.ndarray]


class VectorOptimizer(ABC):
    """Refine a start point by local minimisation of an objective."""

    def __init__(self, max_iter: int = 100, gtol: float = 1e-3):
        self.max_iter = int(max_iter)
        self.gtol = float(gtol)

    @abstractmethod
    def minimize(self, objective: Objective, gradient: Gradient, start) -> np.ndarray:
        ...


class ScipyVectorOptimizer(VectorOptimizer):
    """Wraps scipy.optimize.minimize with an analytic gradient."""

    def __init__(self, max_iter: int = 100, gtol: float = 1e-3, method: str = "CG"):
        super().__init__(max_iter=max_iter, gtol=gtol)
        self.method = method

    def minimize(self, objective: Objective, gradient: Gradient, start) -> np.ndarray:
        x0 = np.asarray(start, dtype=float)
        res = minimize(
            objective,
            x0,
            jac=gradient,
            method=self.method,
            options={"maxiter": self.max_iter, "gtol": self.gtol},
        )
        x = np.asarray(res.x, dtype=float)
        # a failed line search can leave non-finite iterates; fall back to the start
        if not np.all(np.isfinite(x)):
            return x0
        return x


class SteepestDescentOptimizer(VectorOptimizer):
    """x <- x - step * grad f(x) until |grad f| < gtol or max_iter is reached."""

    def __init__(self, max_iter: int = 100, gtol: float = 1e-3, step: float = 0.01):
        super().__init__(max_iter=max_iter, gtol=gtol)
        self.step = float(step)

    def minimize(self, objective: Objective, gradient: Gradient, start) -> np.ndarray:
        x = np.asarray(start, dtype=float).copy()
        for _ in range(self.max_iter):
            g = np.asarray(gradient(x), dtype=float)
            if np.linalg.norm(g) < self.gtol:
                break
            x = x - self.step * g
        return x


OPTIMIZERS = {
    "cg": lambda: ScipyVectorOptimizer(method="CG"),
    "bfgs": lambda: ScipyVectorOptimizer(method="BFGS"),
    "steepest": SteepestDescentOptimizer,
}


def make_optimizer(name: str = "cg") -> VectorOptimizer:
    if name not in OPTIMIZERS:
        raise ValueError(f"Unknown optimizer '{name}'. Expected one of {sorted(OPTIMIZERS)}")
    return OPTIMIZERS[name]()
