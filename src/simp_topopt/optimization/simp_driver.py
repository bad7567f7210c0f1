"""SIMP compliance minimization with an optimality-criteria update.

This module provides `SIMPOptimizer`, which owns the mesh connectivity, solver
buffers and filter for one design problem and advances the design one OC
iteration at a time.

Notes
-----
- Stiffness: K(rho) = sum_e (Emin + rho_e^p (E0 - Emin)) KE.
- Compliance: c = sum_e E(rho_e) u_e^T KE u_e.
- Sensitivity: dc_e = -p rho_e^(p-1) (E0 - Emin) u_e^T KE u_e, then filtered.
- OC update: bisection on the Lagrange multiplier of the volume constraint
  with move limit 0.2 and density bounds [0.001, 1].
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, fields
from typing import Any, Deque, Dict, Iterable, List, Mapping, Optional, Union

import numpy as np
import pandas as pd

from ..core.assembly import (
    CSRMatrix,
    apply_boundary_conditions_fast,
    assemble_stiffness_matrix_fast,
    simp_modulus,
)
from ..core.backends import Solver
from ..core.config import CG_PARAMS, HISTORY_MAX_POINTS, OC_PARAMS, SIMPConfig
from ..core.connectivity import MeshConnectivity, precompute_mesh_connectivity
from ..core.filter import FilterData, apply_sensitivity_filter, prepare_filter
from ..core.solver import SolverScratch, conjugate_gradient_fast, create_solver_scratch
from ..preprocessing.presets import ProblemDefinition, scale_problem

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OptimizationState:
    """Snapshot of the optimizer after an iteration; arrays are copies."""
    densities: np.ndarray
    strain_energy: np.ndarray
    compliance: float
    volume: float
    iteration: int
    converged: bool
    change: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "densities": [float(v) for v in self.densities],
            "strain_energy": [float(v) for v in self.strain_energy],
            "compliance": float(self.compliance),
            "volume": float(self.volume),
            "iteration": int(self.iteration),
            "converged": bool(self.converged),
            "change": float(self.change),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "OptimizationState":
        return cls(
            densities=np.asarray(data["densities"], dtype=float),
            strain_energy=np.asarray(data["strain_energy"], dtype=float),
            compliance=float(data["compliance"]),
            volume=float(data["volume"]),
            iteration=int(data["iteration"]),
            converged=bool(data["converged"]),
            change=float(data["change"]),
        )


@dataclass(frozen=True)
class HistoryPoint:
    iteration: int
    compliance: float
    change: float
    volume: float


class SIMPOptimizer:
    """
    Stateful SIMP optimizer for a nelx x nely Q4 mesh.

    Parameters
    ----------
    config : SIMPConfig, dict or None
        Optimizer settings; dict entries override the defaults.
    solver : Solver, optional
        Backend used for K u = f. When omitted the allocation-free
        `conjugate_gradient_fast` runs on the optimizer's own scratch buffers.
    """

    def __init__(
        self,
        config: Union[SIMPConfig, Mapping[str, Any], None] = None,
        solver: Optional[Solver] = None,
    ) -> None:
        if config is None:
            config = SIMPConfig()
        elif not isinstance(config, SIMPConfig):
            config = SIMPConfig.from_dict(config)
        self._config = config
        self._solver = solver
        self.history: Deque[HistoryPoint] = deque(maxlen=HISTORY_MAX_POINTS)
        self._last_solve = (0, 0.0)
        self._build()
        self.reset()

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------
    def _build(self) -> None:
        """(Re)allocate everything that depends on mesh size, nu or rmin."""
        cfg = self._config
        self.mesh: MeshConnectivity = precompute_mesh_connectivity(cfg.nelx, cfg.nely, cfg.nu)
        self.filter_data: FilterData = prepare_filter(cfg.nelx, cfg.nely, cfg.rmin)
        n_elem, n_dofs = self.mesh.n_elem, self.mesh.n_dofs

        self._scratch: SolverScratch = create_solver_scratch(n_dofs, self.mesh.nnz)
        self._values = np.zeros(self.mesh.nnz)
        self._contributions = np.empty((n_elem, 64))

        self._densities = np.full(n_elem, cfg.volfrac)
        self._forces = np.zeros(n_dofs)
        self._fixed_dofs = np.zeros(0, dtype=np.int64)
        self._u = np.zeros(n_dofs)
        self._dc = np.zeros(n_elem)
        self._xold = np.zeros(n_elem)
        self._xnew = np.zeros(n_elem)
        self._strain_energy = np.zeros(n_elem)

    @property
    def n_elem(self) -> int:
        return self.mesh.n_elem

    @property
    def n_dofs(self) -> int:
        return self.mesh.n_dofs

    @property
    def solver(self) -> Optional[Solver]:
        return self._solver

    def set_forces(self, forces: Iterable[float]) -> None:
        forces = np.asarray(forces, dtype=float)
        if forces.shape != (self.n_dofs,):
            raise ValueError(f"forces must have length {self.n_dofs}, got shape {forces.shape}")
        self._forces = forces.copy()

    def set_fixed_dofs(self, fixed_dofs: Iterable[int]) -> None:
        self._fixed_dofs = np.unique(np.asarray(list(fixed_dofs), dtype=np.int64))

    def setup_problem(self, problem: ProblemDefinition) -> None:
        """Rescale a reference-grid problem onto this mesh and install its loads and supports."""
        forces, fixed = scale_problem(problem, self._config.nelx, self._config.nely)
        self.set_forces(forces)
        self.set_fixed_dofs(fixed)

    def set_densities(self, densities: Iterable[float]) -> None:
        """Replace the current design, e.g. with a non-uniform starting layout."""
        densities = np.asarray(densities, dtype=float)
        if densities.shape != (self.n_elem,):
            raise ValueError(f"densities must have length {self.n_elem}, got shape {densities.shape}")
        np.clip(densities, OC_PARAMS["density_min"], OC_PARAMS["density_max"], out=self._densities)
        self._volume = float(self._densities.mean())

    # ------------------------------------------------------------------
    # Iteration
    # ------------------------------------------------------------------
    def reset(self) -> None:
        cfg = self._config
        self._densities.fill(cfg.volfrac)
        self._iteration = 0
        self._compliance = float("inf")
        self._volume = cfg.volfrac
        self._change = 1.0
        self._converged = False
        self._u.fill(0.0)
        self.history.clear()

    def step(self) -> OptimizationState:
        """Run one OC iteration; a no-op once converged."""
        if self._converged:
            return self.get_state()
        cfg = self._config

        np.copyto(self._xold, self._densities)

        # --- FE solve ---
        iterations, residual, threshold = self._solve()

        # --- compliance and sensitivities ---
        ue = self._u[self.mesh.element_dofs]                    # (ne, 8)
        np.einsum("ij,ij->i", ue @ self.mesh.KE, ue, out=self._strain_energy)
        E = simp_modulus(self._densities, cfg.penal, cfg.Emin, cfg.E0)
        self._compliance = float(np.dot(E, self._strain_energy))
        np.multiply(
            -cfg.penal * (cfg.E0 - cfg.Emin) * np.power(self._densities, cfg.penal - 1.0),
            self._strain_energy,
            out=self._dc,
        )

        dc_filtered = apply_sensitivity_filter(self.filter_data, self._densities, self._dc)
        self._before_update(dc_filtered)
        self._update_densities(dc_filtered)

        self._change = float(np.max(np.abs(self._densities - self._xold)))
        self._volume = float(self._densities.mean())
        self._iteration += 1
        if self._change < cfg.tolx or self._iteration >= cfg.max_iter:
            self._converged = True

        self.history.append(
            HistoryPoint(self._iteration, self._compliance, self._change, self._volume)
        )
        logger.debug(
            "iter %d | c=%.4f | vol=%.4f | change=%.4f | pcg %d its (res %.2e)",
            self._iteration, self._compliance, self._volume, self._change, iterations, residual,
        )
        if residual >= threshold:
            logger.warning(
                "PCG stopped after %d iterations with residual %.3e (target %.3e)",
                iterations, residual, threshold,
            )
        if self._converged:
            logger.info(
                "Converged after %d iterations: compliance=%.4f, change=%.4f",
                self._iteration, self._compliance, self._change,
            )
        return self.get_state()

    def run_iterations(self, n: int) -> OptimizationState:
        state = self.get_state()
        for _ in range(n):
            if state.converged:
                break
            state = self.step()
        return state

    def run(self) -> OptimizationState:
        """Iterate until convergence or max_iter."""
        return self.run_iterations(self._config.max_iter)

    def _solve(self):
        cfg = self._config
        mesh = self.mesh
        tol, max_iter = CG_PARAMS["tol"], int(CG_PARAMS["max_iter"])

        assemble_stiffness_matrix_fast(
            mesh, self._densities, cfg.penal, cfg.Emin, cfg.E0, self._values, self._contributions
        )
        f_mod = apply_boundary_conditions_fast(mesh, self._values, self._forces, self._fixed_dofs)
        threshold = tol * max(float(np.linalg.norm(f_mod)), 1.0)
        self._u.fill(0.0)

        if self._solver is None:
            iterations, residual = conjugate_gradient_fast(
                self._values,
                mesh.col_indices,
                mesh.row_pointers,
                mesh.n_dofs,
                f_mod,
                self._u,
                self._scratch,
                tol,
                max_iter,
                diag_indices=mesh.diag_indices,
            )
        else:
            K = CSRMatrix(self._values, mesh.col_indices, mesh.row_pointers, mesh.n_dofs)
            result = self._solver.solve(K, f_mod, self._u, tol, max_iter)
            self._u[:] = result.x
            iterations, residual = result.iterations, result.residual
        self._last_solve = (iterations, residual)
        return iterations, residual, threshold

    def _before_update(self, dc_filtered: np.ndarray) -> None:
        """Hook run between filtering and the OC update."""

    def _apply_density_floors(self, xnew: np.ndarray) -> None:
        """Hook to raise trial densities in place after the OC bounds."""

    def _update_densities(self, dc: np.ndarray) -> None:
        cfg = self._config
        move = OC_PARAMS["move"]
        lo_bound, hi_bound = OC_PARAMS["density_min"], OC_PARAMS["density_max"]
        xold, xnew = self._xold, self._xnew
        lower = np.maximum(0.0, xold - move)
        upper = np.minimum(1.0, xold + move)
        neg_dc = np.maximum(-dc, 0.0)

        l1, l2 = OC_PARAMS["lambda_lower"], OC_PARAMS["lambda_upper"]
        while (l2 - l1) / (l1 + l2) > OC_PARAMS["bisection_tol"]:
            lmid = 0.5 * (l2 + l1)
            if lmid <= 0.0:
                # zero sensitivities drive lambda to underflow; keep the last trial
                break
            np.multiply(xold, np.sqrt(neg_dc / lmid), out=xnew)
            np.clip(xnew, lower, upper, out=xnew)
            np.clip(xnew, lo_bound, hi_bound, out=xnew)
            self._apply_density_floors(xnew)
            if xnew.mean() > cfg.volfrac:
                l1 = lmid
            else:
                l2 = lmid
        np.copyto(self._densities, xnew)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    def is_converged(self) -> bool:
        return self._converged

    def get_state(self) -> OptimizationState:
        return OptimizationState(
            densities=self._densities.copy(),
            strain_energy=self._strain_energy.copy(),
            compliance=self._compliance,
            volume=self._volume,
            iteration=self._iteration,
            converged=self._converged,
            change=self._change,
        )

    def get_densities(self) -> np.ndarray:
        return self._densities.copy()

    def get_displacements(self) -> np.ndarray:
        return self._u.copy()

    def get_config(self) -> SIMPConfig:
        return self._config

    @property
    def last_solve(self):
        """(iterations, residual) of the most recent PCG solve."""
        return self._last_solve

    def history_frame(self) -> pd.DataFrame:
        columns = [f.name for f in fields(HistoryPoint)]
        frame = pd.DataFrame([[getattr(p, c) for c in columns] for p in self.history], columns=columns)
        return frame.set_index("iteration")

    def history_points(self) -> List[Dict[str, float]]:
        return [
            {"iteration": p.iteration, "compliance": p.compliance, "change": p.change, "volume": p.volume}
            for p in self.history
        ]

    # ------------------------------------------------------------------
    # Reconfiguration
    # ------------------------------------------------------------------
    def update_config(self, partial: Optional[Mapping[str, Any]] = None, **overrides: Any) -> None:
        """
        Merge overrides into the config and reset.

        Passing nelx, nely or rmin rebuilds connectivity, filter and buffers,
        and clears forces and fixed DOFs. A new nu only refreshes KE.
        """
        changes = dict(partial or {})
        changes.update(overrides)
        new_config = self._config.with_overrides(**changes)
        rebuild = any(key in changes for key in ("nelx", "nely", "rmin"))
        nu_changed = new_config.nu != self._config.nu
        self._config = new_config
        if rebuild:
            logger.info(
                "Rebuilding %dx%d mesh (rmin=%.3g)",
                new_config.nelx, new_config.nely, new_config.rmin,
            )
            self._build()
        elif nu_changed:
            self.mesh = precompute_mesh_connectivity(new_config.nelx, new_config.nely, new_config.nu)
        self.reset()
