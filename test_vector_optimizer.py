"""
Tests for vector_optimizer.
"""

import numpy as np
import pytest

from vector_optimizer import SteepestDescentOptimizer, make_optimizer


CENTRE = np.array([1.0, -2.0, 0.5])


def bowl(x):
    d = np.asarray(x) - CENTRE
    return float(d @ d)


def bowl_grad(x):
    return 2.0 * (np.asarray(x) - CENTRE)


@pytest.mark.parametrize("name", ["cg", "bfgs"])
def test_scipy_finds_minimum(name):
    opt = make_optimizer(name)
    x = opt.minimize(bowl, bowl_grad, np.zeros(3))
    np.testing.assert_allclose(x, CENTRE, atol=1e-3)


def test_steepest_finds_minimum():
    opt = SteepestDescentOptimizer(step=0.25)
    x = opt.minimize(bowl, bowl_grad, np.zeros(3))
    np.testing.assert_allclose(x, CENTRE, atol=1e-3)


def test_steepest_respects_iteration_budget():
    opt = SteepestDescentOptimizer(max_iter=1, step=0.25)
    x = opt.minimize(bowl, bowl_grad, np.zeros(3))
    np.testing.assert_allclose(x, 0.5 * CENTRE)


def test_start_point_not_mutated():
    start = np.zeros(3)
    make_optimizer("steepest").minimize(bowl, bowl_grad, start)
    make_optimizer("cg").minimize(bowl, bowl_grad, start)
    np.testing.assert_array_equal(start, 0.0)


def test_unknown_optimizer():
    with pytest.raises(ValueError):
        make_optimizer("newton")
