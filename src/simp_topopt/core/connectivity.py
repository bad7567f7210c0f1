"""
Mesh connectivity precomputation for fast CSR stiffness assembly.

The global sparsity pattern of K depends only on (nelx, nely), so it is built
once per mesh together with an element -> CSR slot map. Assembly then reduces
to a scatter-add of E(rho_e) * KE into a preallocated values array.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List

import numpy as np

from .fem import element_dof_table, element_stiffness, total_dofs

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MeshConnectivity:
    """Immutable per-mesh data shared by assembly, BCs and the PCG solver.

    Attributes
    ----------
    nelx, nely : int
        Mesh dimensions in elements.
    n_dofs, n_elem, nnz : int
        Number of DOFs, elements and stored CSR entries.
    element_dofs : (n_elem, 8) int
        Element -> global DOF table.
    row_pointers : (n_dofs + 1,) int
        CSR row offsets.
    col_indices : (nnz,) int
        CSR column indices, sorted within each row.
    row_ids : (nnz,) int
        Row of every CSR slot (expanded row_pointers).
    diag_indices : (n_dofs,) int
        CSR slot holding the diagonal of each row.
    elem_to_csr : (n_elem, 64) int
        Entry [e, 8*i + j] is the CSR slot receiving KE[i, j] of element e.
    KE : (8, 8) float
        Unit-modulus element stiffness for the mesh's Poisson ratio.
    """
    nelx: int
    nely: int
    n_dofs: int
    n_elem: int
    nnz: int
    element_dofs: np.ndarray
    row_pointers: np.ndarray
    col_indices: np.ndarray
    row_ids: np.ndarray
    diag_indices: np.ndarray
    elem_to_csr: np.ndarray
    KE: np.ndarray


def precompute_mesh_connectivity(nelx: int, nely: int, nu: float = 0.3) -> MeshConnectivity:
    """Build the CSR pattern and element -> CSR map for a nelx x nely mesh."""
    for name, value in (("nelx", nelx), ("nely", nely)):
        if isinstance(value, bool) or not isinstance(value, (int, np.integer)) or value <= 0:
            raise ValueError(f"{name} must be a positive integer, got {value!r}")
    nelx, nely = int(nelx), int(nely)

    n_dofs = total_dofs(nelx, nely)
    edofs = element_dof_table(nelx, nely)
    n_elem = edofs.shape[0]

    # --- pass 1: collect distinct columns per row ---
    row_cols: List[set] = [set() for _ in range(n_dofs)]
    for dofs in edofs.tolist():
        for r in dofs:
            row_cols[r].update(dofs)

    row_pointers = np.zeros(n_dofs + 1, dtype=np.int64)
    sorted_rows = [sorted(cols) for cols in row_cols]
    row_pointers[1:] = np.cumsum([len(cols) for cols in sorted_rows])
    nnz = int(row_pointers[-1])
    col_indices = np.fromiter(
        (c for cols in sorted_rows for c in cols), dtype=np.int64, count=nnz
    )

    # --- pass 2: resolve each (row, col) pair to its CSR slot ---
    lookup: List[Dict[int, int]] = []
    for r, cols in enumerate(sorted_rows):
        start = int(row_pointers[r])
        lookup.append({c: start + k for k, c in enumerate(cols)})

    elem_to_csr = np.empty((n_elem, 64), dtype=np.int64)
    for e, dofs in enumerate(edofs.tolist()):
        elem_to_csr[e] = [lookup[r][c] for r in dofs for c in dofs]
    del lookup

    row_ids = np.repeat(np.arange(n_dofs, dtype=np.int64), np.diff(row_pointers))
    diag_indices = np.array(
        [row_pointers[r] + cols.index(r) for r, cols in enumerate(sorted_rows)],
        dtype=np.int64,
    )

    KE = element_stiffness(1.0, nu)
    for arr in (edofs, row_pointers, col_indices, row_ids, diag_indices, elem_to_csr, KE):
        arr.flags.writeable = False

    logger.debug("Connectivity for %dx%d mesh: %d DOFs, nnz=%d", nelx, nely, n_dofs, nnz)
    return MeshConnectivity(
        nelx=nelx,
        nely=nely,
        n_dofs=n_dofs,
        n_elem=n_elem,
        nnz=nnz,
        element_dofs=edofs,
        row_pointers=row_pointers,
        col_indices=col_indices,
        row_ids=row_ids,
        diag_indices=diag_indices,
        elem_to_csr=elem_to_csr,
        KE=KE,
    )
