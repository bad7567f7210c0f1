import numpy as np
import pytest

from simp_topopt.core import backends
from simp_topopt.core.assembly import apply_boundary_conditions, assemble_stiffness_matrix
from simp_topopt.core.backends import (
    NumpyPCGSolver,
    ScipyPCGSolver,
    SolverHandle,
    create_solver,
    reset_solver_cache,
    self_test,
)
from simp_topopt.preprocessing.presets import CANTILEVER


@pytest.fixture(autouse=True)
def _fresh_cache():
    reset_solver_cache()
    yield
    reset_solver_cache()


def _cantilever_system(nelx=12, nely=6):
    rho = np.random.default_rng(2).uniform(0.3, 1.0, nelx * nely)
    setup = CANTILEVER.setup(nelx, nely)
    K = assemble_stiffness_matrix(nelx, nely, rho)
    f_mod = apply_boundary_conditions(K, setup.forces, setup.fixed_dofs)
    return K, f_mod


def test_both_backends_pass_self_test():
    assert self_test(NumpyPCGSolver())
    assert self_test(ScipyPCGSolver())


def test_accelerated_backend_agrees_with_reference():
    K, f = _cantilever_system()
    ref = NumpyPCGSolver().solve(K, f, np.zeros(K.n), 1e-10, 10000)
    acc = ScipyPCGSolver().solve(K, f, np.zeros(K.n), 1e-10, 10000)
    np.testing.assert_allclose(acc.x, ref.x, rtol=1e-5, atol=1e-9)
    assert acc.iterations > 0
    assert acc.residual < 1e-10 * max(np.linalg.norm(f), 1.0) * 10


def test_backends_do_not_modify_initial_guess():
    K, f = _cantilever_system(4, 2)
    x0 = np.zeros(K.n)
    for solver in (NumpyPCGSolver(), ScipyPCGSolver()):
        solver.solve(K, f, x0, 1e-8, 1000)
        assert np.all(x0 == 0.0)


def test_create_solver_prefers_accelerated_and_caches():
    first = create_solver(prefer_accelerated=True)
    second = create_solver(prefer_accelerated=True)
    assert isinstance(first, ScipyPCGSolver)
    assert first is second
    assert backends.preferred_solver_type() == "accelerated"


def test_create_solver_reference_when_not_preferred():
    assert isinstance(create_solver(prefer_accelerated=False), NumpyPCGSolver)


def test_create_solver_falls_back_when_probe_fails(monkeypatch, caplog):
    def broken(self, *args, **kwargs):
        raise RuntimeError("no accelerator")

    monkeypatch.setattr(ScipyPCGSolver, "__init__", broken)
    solver = create_solver(prefer_accelerated=True)
    assert isinstance(solver, NumpyPCGSolver)
    assert backends.preferred_solver_type() == "reference"
    assert any("unavailable" in rec.message for rec in caplog.records)


def test_solver_handle_selects_once():
    handle = SolverHandle()
    assert not handle.ready and handle.solver_type == "none"
    solver = handle.ensure()
    assert handle.ready
    assert handle.ensure() is solver
    assert handle.solver_type == "accelerated"
