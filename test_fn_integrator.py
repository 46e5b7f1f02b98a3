"""
Tests for fn_integrator: FN right-hand side, Euler/RK4 updaters, boundary
handling and backend selection.
"""

from types import SimpleNamespace

import numpy as np
import pytest

import fn_integrator
from fn_fields import FieldState
from fn_grid import Grid
from fn_integrator import (
    EulerUpdater,
    FitzHughNagumo,
    ReactionParams,
    RK4Updater,
    make_updater,
)


def linear_decay(u, v):
    return -u, -0.5 * v


def integrate(updater_cls, dt, t_end=1.0):
    state = SimpleNamespace(u=np.ones(3), v=np.ones(3))
    up = updater_cls(linear_decay, dt)
    up.attach(state)
    up.advance(int(round(t_end / dt)))
    return state


def random_state(grid, seed=0):
    rng = np.random.default_rng(seed)
    return FieldState(grid, rng.uniform(-2, 2, grid.shape), rng.uniform(-1, 1, grid.shape))


# ==============================================================================
# Order of accuracy
# ==============================================================================

class TestConvergence:

    @pytest.mark.parametrize("cls, ratio", [(RK4Updater, 16.0), (EulerUpdater, 2.0)])
    def test_observed_order(self, cls, ratio):
        errors = []
        for dt in (0.1, 0.05):
            st = integrate(cls, dt)
            errors.append(abs(st.u[0] - np.exp(-1.0)) + abs(st.v[0] - np.exp(-0.5)))
        assert errors[0] / errors[1] == pytest.approx(ratio, rel=0.15)

    def test_rk4_is_accurate(self):
        st = integrate(RK4Updater, 0.01)
        np.testing.assert_allclose(st.u, np.exp(-1.0), rtol=1e-9)
        np.testing.assert_allclose(st.v, np.exp(-0.5), rtol=1e-9)


# ==============================================================================
# Right-hand side
# ==============================================================================

class TestRHS:

    def test_laplacian_of_quadratic(self):
        grid = Grid.from_boundary(8, 8, 8, 0.5)
        X, Y, Z = grid.mesh()
        lap = FitzHughNagumo(grid).laplacian(X ** 2 + Y ** 2 + Z ** 2)
        np.testing.assert_allclose(lap[1:-1, 1:-1, 1:-1], 6.0, rtol=1e-10)

    def test_uniform_kinetics(self):
        grid = Grid.from_boundary(4, 4, 4, 1.0)
        p = ReactionParams()
        u = np.full(grid.shape, 0.7)
        v = np.full(grid.shape, -0.2)
        du, dv = FitzHughNagumo(grid, p)(u, v)
        np.testing.assert_allclose(du, (0.7 - 0.7 ** 3 / 3 + 0.2) / p.epsilon)
        np.testing.assert_allclose(dv, p.epsilon * (0.7 + p.beta + p.gamma * 0.2))

    def test_euler_advances_v_with_updated_u(self):
        grid = Grid.from_boundary(4, 4, 4, 1.0)
        st = FieldState(grid, np.full(grid.shape, 1.5), np.full(grid.shape, 0.3))
        dt = 0.1
        up = make_updater(grid, dt, scheme="euler")
        up.attach(st)
        up.step()
        p = ReactionParams()
        u_new = 1.5 + dt * (1.5 - 1.5 ** 3 / 3 - 0.3) / p.epsilon
        v_new = 0.3 + dt * p.epsilon * (u_new + p.beta - p.gamma * 0.3)
        np.testing.assert_allclose(st.u, u_new)
        np.testing.assert_allclose(st.v, v_new)


# ==============================================================================
# Boundaries
# ==============================================================================

class TestBoundaries:

    @pytest.mark.parametrize("scheme", ["rk4", "euler"])
    def test_reflecting_equals_mirrored_periodic(self, scheme):
        small = Grid.from_boundary(4, 5, 6, 0.5, "reflecting")
        big = Grid.from_boundary(4, 5, 12, 0.5, "periodic-z")

        a = random_state(small)
        b = FieldState(big,
                       np.concatenate([a.u, a.u[:, :, ::-1]], axis=2),
                       np.concatenate([a.v, a.v[:, :, ::-1]], axis=2))

        for grid, st in ((small, a), (big, b)):
            up = make_updater(grid, 0.01, scheme=scheme)
            up.attach(st)
            up.advance(3)

        np.testing.assert_allclose(b.u[:, :, :6], a.u, rtol=1e-13, atol=1e-13)
        np.testing.assert_allclose(b.v[:, :, :6], a.v, rtol=1e-13, atol=1e-13)
        np.testing.assert_allclose(b.u[:, :, 6:], a.u[:, :, ::-1], rtol=1e-13, atol=1e-13)

    def test_periodic_translation_invariance(self):
        grid = Grid.from_boundary(6, 6, 6, 1.0, "periodic")
        a = random_state(grid, seed=3)
        b = FieldState(grid, np.roll(a.u, 2, axis=0), np.roll(a.v, 2, axis=0))
        for st in (a, b):
            up = make_updater(grid, 0.02)
            up.attach(st)
            up.advance(2)
        np.testing.assert_allclose(b.u, np.roll(a.u, 2, axis=0), rtol=1e-13, atol=1e-13)


# ==============================================================================
# Updater plumbing
# ==============================================================================

class TestUpdater:

    def test_numpy_backend_mutates_state_in_place(self):
        grid = Grid.from_boundary(4, 4, 4, 1.0)
        st = random_state(grid)
        u_id = id(st.u)
        before = st.u.copy()
        up = make_updater(grid, 0.01)
        up.attach(st)
        up.step()
        up.sync(st)
        assert id(st.u) == u_id
        assert up.n_steps == 1
        assert not np.array_equal(st.u, before)

    def test_divergence_propagates_silently(self):
        grid = Grid.from_boundary(4, 4, 4, 1.0)
        st = FieldState(grid, np.full(grid.shape, 1e120), np.zeros(grid.shape))
        up = make_updater(grid, 0.5, scheme="euler")
        up.attach(st)
        with np.errstate(all="ignore"):
            up.advance(4)
        assert not np.isfinite(st.u).all()

    def test_step_requires_attach(self):
        up = RK4Updater(linear_decay, 0.1)
        with pytest.raises(RuntimeError):
            up.step()

    def test_bad_arguments(self):
        grid = Grid.from_boundary(8, 8, 8, 1.0)
        with pytest.raises(ValueError):
            make_updater(grid, 0.01, scheme="leapfrog")
        with pytest.raises(ValueError):
            make_updater(grid, 0.01, backend="opencl")
        with pytest.raises(ValueError):
            make_updater(grid, 0.0)

    def test_cupy_block_size_checked_first(self):
        grid = Grid.from_boundary(8, 12, 8, 1.0)
        with pytest.raises(ValueError, match="block size"):
            make_updater(grid, 0.01, backend="cupy", block_size=8)

    def test_cupy_missing_is_runtime_error(self):
        if fn_integrator._HAS_CUPY:
            pytest.skip("CuPy is installed")
        grid = Grid.from_boundary(8, 8, 8, 1.0)
        with pytest.raises(RuntimeError):
            make_updater(grid, 0.01, backend="cupy")


def test_cupy_matches_numpy():
    cp = pytest.importorskip("cupy")
    try:
        cp.cuda.runtime.getDeviceCount()
    except Exception:
        pytest.skip("no CUDA device")

    grid = Grid.from_boundary(8, 8, 8, 0.5)
    a = random_state(grid, seed=7)
    b = FieldState(grid, a.u.copy(), a.v.copy())

    for backend, st in (("numpy", a), ("cupy", b)):
        up = make_updater(grid, 0.01, backend=backend)
        up.attach(st)
        up.advance(5)
        up.sync(st)

    np.testing.assert_allclose(b.u, a.u, rtol=1e-10, atol=1e-12)
    np.testing.assert_allclose(b.v, a.v, rtol=1e-10, atol=1e-12)
