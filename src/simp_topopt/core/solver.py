"""
Jacobi-preconditioned conjugate gradient for the SPD stiffness system.

- `conjugate_gradient`: basic PCG on a CSRMatrix, allocates its own work vectors.
- `conjugate_gradient_fast`: same algorithm on raw CSR arrays, writing only into
  caller-owned `x` and a `SolverScratch`, so the optimizer loop allocates nothing.

Both stop when ||r|| < tol * max(||b||, 1) and break out on |p^T A p| < 1e-30.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import NamedTuple, Optional, Sequence, Tuple

import numpy as np

from .assembly import (
    CSRMatrix,
    apply_boundary_conditions,
    apply_boundary_conditions_fast,
    assemble_stiffness_matrix,
    assemble_stiffness_matrix_fast,
)
from .config import CG_PARAMS
from .connectivity import MeshConnectivity


class SolveResult(NamedTuple):
    x: np.ndarray
    iterations: int
    residual: float


def csr_matvec(A: CSRMatrix, x: np.ndarray, y: Optional[np.ndarray] = None) -> np.ndarray:
    """y = A @ x."""
    prod = A.values * x[A.col_indices]
    out = np.bincount(A.row_ids(), weights=prod, minlength=A.n)
    if y is None:
        return out
    y[:] = out
    return y


def jacobi_preconditioner(A: CSRMatrix) -> np.ndarray:
    """Inverse diagonal of A; rows with a zero or missing diagonal get 1."""
    diag = A.diagonal()
    inv_diag = np.ones(A.n, dtype=float)
    nz = diag != 0.0
    inv_diag[nz] = 1.0 / diag[nz]
    return inv_diag


def conjugate_gradient(
    A: CSRMatrix,
    b: np.ndarray,
    x0: np.ndarray,
    tol: float = CG_PARAMS["tol"],
    max_iter: int = int(CG_PARAMS["max_iter"]),
) -> SolveResult:
    """
    Solve A x = b by Jacobi PCG. `x0` is the initial guess and is updated in place.

    Returns a SolveResult whose `iterations` is 0 when x0 already satisfies the
    tolerance, otherwise the number of iterations executed.
    """
    x = x0
    b = np.asarray(b, dtype=float)
    row_ids = A.row_ids()

    def matvec(v: np.ndarray) -> np.ndarray:
        return np.bincount(row_ids, weights=A.values * v[A.col_indices], minlength=A.n)

    inv_diag = jacobi_preconditioner(A)
    r = b - matvec(x)
    rnorm = float(np.linalg.norm(r))
    threshold = tol * max(float(np.linalg.norm(b)), 1.0)
    if rnorm < threshold:
        return SolveResult(x, 0, rnorm)

    z = inv_diag * r
    p = z.copy()
    rz = float(np.dot(r, z))
    breakdown = CG_PARAMS["breakdown_tol"]

    k = -1
    for k in range(max_iter):
        Ap = matvec(p)
        pAp = float(np.dot(p, Ap))
        if abs(pAp) < breakdown:
            break
        alpha = rz / pAp
        x += alpha * p
        r -= alpha * Ap
        rnorm = float(np.linalg.norm(r))
        if rnorm < threshold:
            break
        z = inv_diag * r
        rz_new = float(np.dot(r, z))
        beta = rz_new / rz
        rz = rz_new
        p = z + beta * p
    return SolveResult(x, k + 1, rnorm)


# ----------------------------------------------------------------------
# Allocation-free variant
# ----------------------------------------------------------------------
@dataclass
class SolverScratch:
    """Work vectors owned by one optimizer and reused across solves."""
    r: np.ndarray
    z: np.ndarray
    p: np.ndarray
    Ap: np.ndarray
    inv_diag: np.ndarray
    gather: np.ndarray


def create_solver_scratch(n_dofs: int, nnz: int) -> SolverScratch:
    return SolverScratch(
        r=np.zeros(n_dofs),
        z=np.zeros(n_dofs),
        p=np.zeros(n_dofs),
        Ap=np.zeros(n_dofs),
        inv_diag=np.zeros(n_dofs),
        gather=np.zeros(nnz),
    )


def _matvec_into(
    values: np.ndarray,
    col_indices: np.ndarray,
    row_starts: np.ndarray,
    x: np.ndarray,
    gather: np.ndarray,
    out: np.ndarray,
) -> None:
    # every FEM row holds at least its diagonal, so reduceat segments are never empty
    np.take(x, col_indices, out=gather)
    np.multiply(values, gather, out=gather)
    np.add.reduceat(gather, row_starts, out=out)


def conjugate_gradient_fast(
    values: np.ndarray,
    col_indices: np.ndarray,
    row_pointers: np.ndarray,
    n: int,
    b: np.ndarray,
    x: np.ndarray,
    scratch: SolverScratch,
    tol: float = CG_PARAMS["tol"],
    max_iter: int = int(CG_PARAMS["max_iter"]),
    diag_indices: Optional[np.ndarray] = None,
) -> Tuple[int, float]:
    """
    Jacobi PCG writing only into `x` and `scratch`.

    `diag_indices` (CSR slot of each diagonal) skips the diagonal search when the
    caller already has it. Returns (iterations, residual) with the same
    semantics as `conjugate_gradient`.
    """
    r, z, p, Ap, inv_diag, gather = (
        scratch.r, scratch.z, scratch.p, scratch.Ap, scratch.inv_diag, scratch.gather
    )
    row_starts = row_pointers[:-1]

    # --- Jacobi preconditioner ---
    if diag_indices is None:
        A = CSRMatrix(values, col_indices, row_pointers, n)
        inv_diag[:] = jacobi_preconditioner(A)
    else:
        np.take(values, diag_indices, out=inv_diag)
        zero = inv_diag == 0.0
        inv_diag[zero] = 1.0
        np.reciprocal(inv_diag, out=inv_diag)

    # --- initial residual ---
    _matvec_into(values, col_indices, row_starts, x, gather, r)
    np.subtract(b, r, out=r)
    rnorm = float(np.sqrt(np.dot(r, r)))
    threshold = tol * max(float(np.sqrt(np.dot(b, b))), 1.0)
    if rnorm < threshold:
        return 0, rnorm

    np.multiply(inv_diag, r, out=z)
    p[:] = z
    rz = float(np.dot(r, z))
    breakdown = CG_PARAMS["breakdown_tol"]

    k = -1
    for k in range(max_iter):
        _matvec_into(values, col_indices, row_starts, p, gather, Ap)
        pAp = float(np.dot(p, Ap))
        if abs(pAp) < breakdown:
            break
        alpha = rz / pAp
        # x += alpha p ; r -= alpha Ap  (z doubles as a temporary)
        np.multiply(p, alpha, out=z)
        np.add(x, z, out=x)
        np.multiply(Ap, alpha, out=z)
        np.subtract(r, z, out=r)
        rnorm = float(np.sqrt(np.dot(r, r)))
        if rnorm < threshold:
            break
        np.multiply(inv_diag, r, out=z)
        rz_new = float(np.dot(r, z))
        beta = rz_new / rz
        rz = rz_new
        np.multiply(p, beta, out=p)
        np.add(p, z, out=p)
    return k + 1, rnorm


# ----------------------------------------------------------------------
# Full pipelines
# ----------------------------------------------------------------------
def solve_fem(
    nelx: int,
    nely: int,
    densities: np.ndarray,
    forces: np.ndarray,
    fixed_dofs: Sequence[int],
    penal: float = 3.0,
    Emin: float = 1e-9,
    E0: float = 1.0,
    nu: float = 0.3,
) -> np.ndarray:
    """Assemble, apply BCs and solve K u = f from a zero initial guess."""
    K = assemble_stiffness_matrix(nelx, nely, densities, penal, Emin, E0, nu)
    f_mod = apply_boundary_conditions(K, forces, fixed_dofs)
    u = np.zeros(K.n)
    return conjugate_gradient(K, f_mod, u, CG_PARAMS["tol"], int(CG_PARAMS["max_iter"])).x


def solve_fem_optimized(
    mesh: MeshConnectivity,
    densities: np.ndarray,
    forces: np.ndarray,
    fixed_dofs: np.ndarray,
    u: np.ndarray,
    scratch: SolverScratch,
    values: np.ndarray,
    penal: float = 3.0,
    Emin: float = 1e-9,
    E0: float = 1.0,
    tol: float = CG_PARAMS["tol"],
    max_iter: int = int(CG_PARAMS["max_iter"]),
    contributions: Optional[np.ndarray] = None,
) -> Tuple[int, float]:
    """
    Allocation-light pipeline on caller-owned buffers.

    `u` is reset to zero and overwritten with the solution; `values` holds the
    BC-modified stiffness afterwards. Returns (iterations, residual).
    """
    assemble_stiffness_matrix_fast(mesh, densities, penal, Emin, E0, values, contributions)
    f_mod = apply_boundary_conditions_fast(mesh, values, forces, fixed_dofs)
    u.fill(0.0)
    return conjugate_gradient_fast(
        values,
        mesh.col_indices,
        mesh.row_pointers,
        mesh.n_dofs,
        f_mod,
        u,
        scratch,
        tol,
        max_iter,
        diag_indices=mesh.diag_indices,
    )
