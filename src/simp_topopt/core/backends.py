"""
Interchangeable PCG solver backends.

Every backend implements `Solver.solve(K, b, x0, tol, max_iter) -> SolveResult`
with the same stopping rule as `conjugate_gradient`. The accelerated backend runs
SciPy's compiled sparse kernels; the reference backend is the pure NumPy PCG.
`create_solver` probes the accelerated backend once, caches the outcome and
falls back to the reference solver when the probe fails.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .assembly import CSRMatrix
from .solver import SolveResult, conjugate_gradient, jacobi_preconditioner

logger = logging.getLogger(__name__)


class Solver(ABC):
    """Common interface for PCG implementations."""

    name: str = "abstract"

    @abstractmethod
    def solve(
        self,
        K: CSRMatrix,
        b: np.ndarray,
        x0: np.ndarray,
        tol: float,
        max_iter: int,
    ) -> SolveResult:
        """Solve K x = b; x0 is never modified."""


class NumpyPCGSolver(Solver):
    """Reference backend wrapping `conjugate_gradient`."""

    name = "numpy"

    def solve(self, K, b, x0, tol, max_iter):
        x = np.array(x0, dtype=float, copy=True)
        return conjugate_gradient(K, b, x, tol, max_iter)


class ScipyPCGSolver(Solver):
    """Accelerated backend: scipy.sparse.linalg.cg with a Jacobi preconditioner."""

    name = "scipy"

    def __init__(self) -> None:
        import scipy.sparse as sp
        from scipy.sparse.linalg import cg

        self._sp = sp
        self._cg = cg

    def solve(self, K, b, x0, tol, max_iter):
        b = np.asarray(b, dtype=float)
        A = K.to_scipy()
        M = self._sp.diags(jacobi_preconditioner(K))
        atol = tol * max(float(np.linalg.norm(b)), 1.0)

        count = [0]

        def _count(_xk):
            count[0] += 1

        x, info = self._cg(
            A,
            b,
            x0=np.array(x0, dtype=float, copy=True),
            rtol=0.0,
            atol=atol,
            maxiter=max_iter,
            M=M,
            callback=_count,
        )
        if info < 0:
            raise RuntimeError(f"scipy cg reported illegal input (info={info})")
        residual = float(np.linalg.norm(b - A @ x))
        return SolveResult(np.asarray(x, dtype=float), count[0], residual)


def self_test(solver: Solver) -> bool:
    """Solve [[4, 1], [1, 3]] x = [1, 2]; the exact solution sums to 8/11."""
    K = CSRMatrix(
        values=np.array([4.0, 1.0, 1.0, 3.0]),
        col_indices=np.array([0, 1, 0, 1], dtype=np.int64),
        row_pointers=np.array([0, 2, 4], dtype=np.int64),
        n=2,
    )
    result = solver.solve(K, np.array([1.0, 2.0]), np.zeros(2), 1e-10, 100)
    return abs(float(np.sum(result.x)) - 8.0 / 11.0) <= 1e-6


_accelerated: Optional[Solver] = None
_accelerated_probed = False
_reference: Optional[Solver] = None


def _reference_solver() -> Solver:
    global _reference
    if _reference is None:
        _reference = NumpyPCGSolver()
    return _reference


def _probe_accelerated() -> Optional[Solver]:
    global _accelerated, _accelerated_probed
    if _accelerated_probed:
        return _accelerated
    _accelerated_probed = True
    try:
        candidate = ScipyPCGSolver()
        if not self_test(candidate):
            raise RuntimeError("self-test solution mismatch")
    except (ImportError, RuntimeError, ValueError, TypeError) as exc:
        logger.warning("Accelerated solver unavailable, using NumPy PCG: %s", exc)
        return None
    _accelerated = candidate
    logger.info("Using accelerated solver backend '%s'", candidate.name)
    return _accelerated


def create_solver(prefer_accelerated: bool = True) -> Solver:
    """Return the best available backend; never raises for a missing accelerator."""
    if prefer_accelerated:
        solver = _probe_accelerated()
        if solver is not None:
            return solver
    return _reference_solver()


def preferred_solver_type() -> str:
    """'accelerated' once the probe succeeded, otherwise 'reference'."""
    return "accelerated" if _accelerated is not None else "reference"


def reset_solver_cache() -> None:
    """Forget the probe outcome (used by tests)."""
    global _accelerated, _accelerated_probed, _reference
    _accelerated = None
    _accelerated_probed = False
    _reference = None


@dataclass
class SolverHandle:
    """Owned solver selection for a long-lived session."""
    solver: Optional[Solver] = None
    ready: bool = False

    def ensure(self, prefer_accelerated: bool = True) -> Solver:
        if not self.ready or self.solver is None:
            self.solver = create_solver(prefer_accelerated)
            self.ready = True
        return self.solver

    @property
    def solver_type(self) -> str:
        if self.solver is None:
            return "none"
        return "reference" if isinstance(self.solver, NumpyPCGSolver) else "accelerated"
