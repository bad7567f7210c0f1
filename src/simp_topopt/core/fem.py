"""
Finite-element model for a regular 2D Q4 plane-stress mesh.

Node and element numbering
--------------------------
- Nodes are numbered column by column from the bottom-left corner:
  node(x, y) = (nely + 1) * x + y, with y = 0 at the bottom.
- Elements follow the same column-major order: elem(elx, ely) = elx * nely + ely.
- Each node carries two DOFs (ux, uy) at 2*node and 2*node + 1.

References: Sigmund, "A 99 line topology optimization code written in Matlab" (2001).
"""

from __future__ import annotations

import numpy as np


def element_stiffness(E: float = 1.0, nu: float = 0.3) -> np.ndarray:
    """
    Analytic 8x8 stiffness matrix of a unit-square bilinear quad in plane stress.

    DOF order is (ux, uy) for the nodes BL, BR, TR, TL. The result is symmetric
    with a positive diagonal and scales linearly with E.
    """
    k = np.array([
        0.5 - nu / 6.0,
        0.125 + nu / 8.0,
        -0.25 - nu / 12.0,
        -0.125 + 3.0 * nu / 8.0,
        -0.25 + nu / 12.0,
        -0.125 - nu / 8.0,
        nu / 6.0,
        0.125 - 3.0 * nu / 8.0,
    ])
    pattern = np.array([
        [0, 1, 2, 3, 4, 5, 6, 7],
        [1, 0, 7, 6, 5, 4, 3, 2],
        [2, 7, 0, 5, 6, 3, 4, 1],
        [3, 6, 5, 0, 7, 2, 1, 4],
        [4, 5, 6, 7, 0, 1, 2, 3],
        [5, 4, 3, 2, 1, 0, 7, 6],
        [6, 3, 4, 1, 2, 7, 0, 5],
        [7, 2, 1, 4, 3, 6, 5, 0],
    ])
    return (E / (1.0 - nu * nu)) * k[pattern]


def element_dofs(elx: int, ely: int, nelx: int, nely: int) -> np.ndarray:
    """Global DOFs of element (elx, ely) in the order BL, BR, TR, TL (x then y per node)."""
    n1 = (nely + 1) * elx + ely
    n2 = (nely + 1) * (elx + 1) + ely
    return np.array(
        [2 * n1, 2 * n1 + 1, 2 * n2, 2 * n2 + 1, 2 * n2 + 2, 2 * n2 + 3, 2 * n1 + 2, 2 * n1 + 3],
        dtype=np.int64,
    )


def element_dof_table(nelx: int, nely: int) -> np.ndarray:
    """Vectorized element_dofs for the whole mesh, shape (nelx*nely, 8)."""
    elx, ely = np.divmod(np.arange(nelx * nely, dtype=np.int64), nely)
    n1 = (nely + 1) * elx + ely
    n2 = (nely + 1) * (elx + 1) + ely
    return np.stack(
        [2 * n1, 2 * n1 + 1, 2 * n2, 2 * n2 + 1, 2 * n2 + 2, 2 * n2 + 3, 2 * n1 + 2, 2 * n1 + 3],
        axis=1,
    )


def total_dofs(nelx: int, nely: int) -> int:
    return 2 * (nelx + 1) * (nely + 1)


def node_index(x: int, y: int, nely: int) -> int:
    return (nely + 1) * x + y


def element_index(elx: int, ely: int, nely: int) -> int:
    return elx * nely + ely


def is_symmetric(matrix: np.ndarray, tol: float = 1e-10) -> bool:
    matrix = np.asarray(matrix)
    return bool(np.all(np.abs(matrix - matrix.T) <= tol))


def has_positive_diagonal(matrix: np.ndarray) -> bool:
    return bool(np.all(np.diag(matrix) > 0.0))
