"""
Global stiffness assembly in CSR format and Dirichlet boundary conditions.

Two assembly paths with identical numerical results:
- `assemble_stiffness_matrix`: map-based accumulation, simple and slow; kept as
  a reference oracle for testing.
- `assemble_stiffness_matrix_fast`: scatter-add into a preallocated values
  array through the precomputed element -> CSR map.

Boundary conditions are applied by identity-row elimination: for every fixed
DOF the row and column are zeroed, the diagonal set to 1 and the load zeroed.
This keeps K symmetric so that PCG stays applicable.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple

import numpy as np
import scipy.sparse as sp

from .config import FEM_PARAMS
from .connectivity import MeshConnectivity
from .fem import element_dof_table, element_stiffness, total_dofs


@dataclass
class CSRMatrix:
    """Square sparse matrix in compressed sparse row form."""
    values: np.ndarray
    col_indices: np.ndarray
    row_pointers: np.ndarray
    n: int

    @property
    def nnz(self) -> int:
        return int(self.values.size)

    def copy(self) -> "CSRMatrix":
        return CSRMatrix(
            self.values.copy(), self.col_indices.copy(), self.row_pointers.copy(), self.n
        )

    def row_ids(self) -> np.ndarray:
        """Row index of every stored entry."""
        return np.repeat(np.arange(self.n, dtype=np.int64), np.diff(self.row_pointers))

    def diagonal(self) -> np.ndarray:
        diag = np.zeros(self.n, dtype=float)
        on_diag = self.col_indices == self.row_ids()
        diag[self.col_indices[on_diag]] = self.values[on_diag]
        return diag

    def to_dense(self) -> np.ndarray:
        dense = np.zeros((self.n, self.n), dtype=float)
        np.add.at(dense, (self.row_ids(), self.col_indices), self.values)
        return dense

    def to_scipy(self) -> sp.csr_matrix:
        return sp.csr_matrix(
            (self.values, self.col_indices, self.row_pointers), shape=(self.n, self.n)
        )


def simp_modulus(rho, penal: float, Emin: float, E0: float):
    """SIMP law E(rho) = Emin + rho^penal * (E0 - Emin); works on scalars and arrays."""
    return Emin + np.power(rho, penal) * (E0 - Emin)


# ----------------------------------------------------------------------
# Assembly
# ----------------------------------------------------------------------
def assemble_stiffness_matrix(
    nelx: int,
    nely: int,
    densities: np.ndarray,
    penal: float = 3.0,
    Emin: float = 1e-9,
    E0: float = 1.0,
    nu: float = 0.3,
) -> CSRMatrix:
    """Reference assembly of K(rho) via a (row, col) -> value map.

    Near-zero off-diagonal sums are dropped; diagonal slots are always kept.
    """
    densities = np.asarray(densities, dtype=float)
    if densities.shape != (nelx * nely,):
        raise ValueError(
            f"densities must have shape ({nelx * nely},), got {densities.shape}"
        )
    KE = element_stiffness(1.0, nu)
    n = total_dofs(nelx, nely)
    drop_tol = FEM_PARAMS["assembly_drop_tol"]

    entries: Dict[Tuple[int, int], float] = {}
    E = simp_modulus(densities, penal, Emin, E0)
    for e, dofs in enumerate(element_dof_table(nelx, nely).tolist()):
        ke = E[e] * KE
        for i, r in enumerate(dofs):
            for j, c in enumerate(dofs):
                entries[(r, c)] = entries.get((r, c), 0.0) + ke[i, j]

    rows: list = [[] for _ in range(n)]
    for (r, c), v in entries.items():
        if abs(v) > drop_tol or r == c:
            rows[r].append((c, v))

    row_pointers = np.zeros(n + 1, dtype=np.int64)
    cols, vals = [], []
    for r, row in enumerate(rows):
        row.sort()
        cols.extend(c for c, _ in row)
        vals.extend(v for _, v in row)
        row_pointers[r + 1] = len(cols)
    return CSRMatrix(
        np.asarray(vals, dtype=float), np.asarray(cols, dtype=np.int64), row_pointers, n
    )


def assemble_stiffness_matrix_fast(
    mesh: MeshConnectivity,
    densities: np.ndarray,
    penal: float,
    Emin: float,
    E0: float,
    values: np.ndarray,
    contributions: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Assemble K(rho) into `values` (length mesh.nnz) using the element -> CSR map.

    `contributions` is an optional (n_elem, 64) work buffer reused across calls.
    Returns `values`.
    """
    if contributions is None:
        contributions = np.empty((mesh.n_elem, 64), dtype=float)
    E = simp_modulus(np.asarray(densities, dtype=float), penal, Emin, E0)
    np.multiply(E[:, None], mesh.KE.reshape(1, 64), out=contributions)
    values.fill(0.0)
    np.add.at(values, mesh.elem_to_csr.ravel(), contributions.ravel())
    return values


# ----------------------------------------------------------------------
# Boundary conditions
# ----------------------------------------------------------------------
def _eliminate(
    values: np.ndarray,
    col_indices: np.ndarray,
    row_pointers: np.ndarray,
    n: int,
    f: np.ndarray,
    fixed_dofs: Iterable[int],
) -> np.ndarray:
    fixed = np.unique(np.fromiter(fixed_dofs, dtype=np.int64))
    f_mod = np.array(f, dtype=float, copy=True)
    if fixed.size == 0:
        return f_mod

    is_fixed = np.zeros(n, dtype=bool)
    is_fixed[fixed] = True
    row_ids = np.repeat(np.arange(n, dtype=np.int64), np.diff(row_pointers))

    # fixed rows become identity rows; fixed columns are cleared everywhere else
    values[is_fixed[row_ids] | is_fixed[col_indices]] = 0.0
    fixed_diag = is_fixed[row_ids] & (col_indices == row_ids)
    values[fixed_diag] = 1.0

    f_mod[fixed] = 0.0
    return f_mod


def apply_boundary_conditions(K: CSRMatrix, f: np.ndarray, fixed_dofs: Iterable[int]) -> np.ndarray:
    """Apply Dirichlet BCs to K in place; return a modified copy of f."""
    return _eliminate(K.values, K.col_indices, K.row_pointers, K.n, f, fixed_dofs)


def apply_boundary_conditions_fast(
    mesh: MeshConnectivity,
    values: np.ndarray,
    f: np.ndarray,
    fixed_dofs: np.ndarray,
) -> np.ndarray:
    """Same as apply_boundary_conditions on a values array sharing the mesh pattern."""
    fixed = np.asarray(fixed_dofs, dtype=np.int64)
    f_mod = np.array(f, dtype=float, copy=True)
    if fixed.size == 0:
        return f_mod
    is_fixed = np.zeros(mesh.n_dofs, dtype=bool)
    is_fixed[fixed] = True
    values[is_fixed[mesh.row_ids] | is_fixed[mesh.col_indices]] = 0.0
    values[mesh.diag_indices[fixed]] = 1.0
    f_mod[fixed] = 0.0
    return f_mod
