"""
Mesh-independency filters on the regular element grid.

Hat weights w_ij = max(0, rmin - dist(i, j)) between element centres are
precomputed once per (nelx, nely, rmin) and stored both per element and as flat
CSR-like rows (indptr / indices / weights) for vectorized application.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List

import numpy as np

from .config import FEM_PARAMS


@dataclass(frozen=True)
class FilterData:
    """Precomputed, row-normalized filter weights.

    Attributes
    ----------
    nelx, nely : int
        Mesh dimensions.
    rmin : float
        Filter radius in element lengths.
    neighbor_indices : list of (k_e,) int arrays
        Elements within rmin of each element (including itself).
    neighbor_weights : list of (k_e,) float arrays
        Matching hat weights, normalized to sum to 1 per element.
    indptr, indices, weights : ndarray
        The same data flattened into CSR rows.
    """
    nelx: int
    nely: int
    rmin: float
    neighbor_indices: List[np.ndarray]
    neighbor_weights: List[np.ndarray]
    indptr: np.ndarray
    indices: np.ndarray
    weights: np.ndarray

    @property
    def n_elem(self) -> int:
        return self.nelx * self.nely

    def row_ids(self) -> np.ndarray:
        return np.repeat(np.arange(self.n_elem, dtype=np.int64), np.diff(self.indptr))


def prepare_filter(nelx: int, nely: int, rmin: float) -> FilterData:
    """Precompute neighbor lists and normalized hat weights.

    An element with no neighbor strictly inside rmin (only possible for
    rmin == 0) filters to itself with weight 1.
    """
    if rmin < 0.0:
        raise ValueError(f"rmin must be >= 0, got {rmin}")
    search = int(math.ceil(rmin))
    ptr = [0]
    idx: List[int] = []
    wts: List[float] = []
    neighbor_indices: List[np.ndarray] = []
    neighbor_weights: List[np.ndarray] = []

    # element order is column-major: e = elx * nely + ely
    for elx in range(nelx):
        x0, x1 = max(0, elx - search), min(nelx - 1, elx + search)
        for ely in range(nely):
            y0, y1 = max(0, ely - search), min(nely - 1, ely + search)
            row_idx, row_w = [], []
            for nx in range(x0, x1 + 1):
                for ny in range(y0, y1 + 1):
                    w = rmin - math.hypot(elx - nx, ely - ny)
                    if w > 0.0:
                        row_idx.append(nx * nely + ny)
                        row_w.append(w)
            if not row_idx:
                row_idx, row_w = [elx * nely + ely], [1.0]
            w_arr = np.asarray(row_w, dtype=float)
            w_arr /= w_arr.sum()
            i_arr = np.asarray(row_idx, dtype=np.int64)
            neighbor_indices.append(i_arr)
            neighbor_weights.append(w_arr)
            idx.extend(row_idx)
            wts.extend(w_arr.tolist())
            ptr.append(len(idx))

    return FilterData(
        nelx=nelx,
        nely=nely,
        rmin=float(rmin),
        neighbor_indices=neighbor_indices,
        neighbor_weights=neighbor_weights,
        indptr=np.asarray(ptr, dtype=np.int64),
        indices=np.asarray(idx, dtype=np.int64),
        weights=np.asarray(wts, dtype=float),
    )


def apply_sensitivity_filter(
    fd: FilterData, densities: np.ndarray, dc: np.ndarray
) -> np.ndarray:
    """
    dc'[e] = sum_i w_i rho_i dc_i / (max(rho_e, 1e-9) * sum_i w_i)
    """
    densities = np.asarray(densities, dtype=float)
    dc = np.asarray(dc, dtype=float)
    rows = fd.row_ids()
    weighted = fd.weights * densities[fd.indices] * dc[fd.indices]
    num = np.bincount(rows, weights=weighted, minlength=fd.n_elem)
    wsum = np.bincount(rows, weights=fd.weights, minlength=fd.n_elem)
    rho_e = np.maximum(densities, FEM_PARAMS["filter_density_floor"])
    return num / (rho_e * wsum)


def apply_density_filter(fd: FilterData, densities: np.ndarray) -> np.ndarray:
    """Weighted average of neighbor densities (weights already normalized)."""
    densities = np.asarray(densities, dtype=float)
    return np.bincount(
        fd.row_ids(), weights=fd.weights * densities[fd.indices], minlength=fd.n_elem
    )


def verify_filter_weights(fd: FilterData, tol: float = 1e-10) -> bool:
    return all(abs(float(w.sum()) - 1.0) <= tol for w in fd.neighbor_weights)


def neighbor_counts(fd: FilterData) -> np.ndarray:
    return np.diff(fd.indptr)
