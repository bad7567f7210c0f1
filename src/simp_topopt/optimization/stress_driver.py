"""Stress- and wall-thickness-aware SIMP for soft materials.

`StressConstrainedOptimizer` reuses the compliance pipeline of `SIMPOptimizer`
and changes two things:

1. After filtering, it screens element stresses from strain energy and derives
   a per-element minimum density that keeps the estimated stress under the
   allowable.
2. The OC update raises trial densities to that floor, and to the minimum
   wall-thickness density, once an element is already partly solid.

The activation thresholds (0.1 for the stress floor, 0.3 for the wall floor)
are heuristics that keep void regions free to disappear.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Union

import numpy as np

from ..core.backends import Solver
from ..core.config import MaterialProperties, SIMPConfig, StressConfig
from .simp_driver import OptimizationState, SIMPOptimizer
from .stress import (
    STRESS_FLOOR_ACTIVATION,
    WALL_FLOOR_ACTIVATION,
    StressField,
    StressSummary,
    allowable_stress,
    analyze_stress_field,
    minimum_density,
    summarize_stress_analysis,
)

logger = logging.getLogger(__name__)

SOFT_MATERIAL_NU = 0.45


@dataclass(frozen=True)
class StressOptimizationState(OptimizationState):
    """OptimizationState plus stress screening results."""
    rupture_risk: np.ndarray = None
    min_density_field: np.ndarray = None
    stress_summary: StressSummary = None
    meets_stress_constraint: bool = True
    wall_thickness_valid: bool = True

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(
            rupture_risk=[float(v) for v in self.rupture_risk],
            min_density_field=[float(v) for v in self.min_density_field],
            stress_summary=self.stress_summary.to_dict(),
            meets_stress_constraint=bool(self.meets_stress_constraint),
            wall_thickness_valid=bool(self.wall_thickness_valid),
        )
        return data


class StressConstrainedOptimizer(SIMPOptimizer):
    """
    SIMP optimizer with stress and minimum-wall density floors.

    Parameters
    ----------
    config : SIMPConfig, dict or None
        Base SIMP settings; nu defaults to 0.45 for nearly incompressible elastomers.
    stress_config : StressConfig, dict or None
        Material, safety factor and wall-thickness settings.
    solver : Solver, optional
        PCG backend, see SIMPOptimizer.
    """

    def __init__(
        self,
        config: Union[SIMPConfig, Mapping[str, Any], None] = None,
        stress_config: Union[StressConfig, Mapping[str, Any], None] = None,
        solver: Optional[Solver] = None,
    ) -> None:
        if config is None:
            config = SIMPConfig(nu=SOFT_MATERIAL_NU)
        elif not isinstance(config, SIMPConfig):
            config = SIMPConfig.from_dict({"nu": SOFT_MATERIAL_NU, **dict(config)})
        if stress_config is None:
            stress_config = StressConfig()
        elif not isinstance(stress_config, StressConfig):
            stress_config = StressConfig().with_overrides(**dict(stress_config))
        self._stress_config = stress_config
        super().__init__(config, solver)

    def _build(self) -> None:
        super()._build()
        self._min_density_field = np.zeros(self.n_elem)
        self._rupture_risk = np.zeros(self.n_elem)
        self._stress_field: Optional[StressField] = None

    def reset(self) -> None:
        super().reset()
        self._min_density_field.fill(0.0)
        self._rupture_risk.fill(0.0)
        self._stress_field = None
        self._stress_summary = StressSummary(min_safety_margin=self._stress_config.safety_factor)

    @property
    def stress_config(self) -> StressConfig:
        return self._stress_config

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------
    def _before_update(self, dc_filtered: np.ndarray) -> None:
        if self._stress_config.enable_stress_constraint:
            self._update_stress_constraints()

    def _update_stress_constraints(self) -> None:
        sc = self._stress_config
        element_volume = sc.element_size ** 3
        field = analyze_stress_field(
            self._strain_energy, self._densities, sc.material, element_volume, sc.safety_factor
        )
        self._stress_field = field
        self._stress_summary = summarize_stress_analysis(field, sc.material, sc.safety_factor)
        np.copyto(self._rupture_risk, field.rupture_risk)

        allowable = allowable_stress(sc.material, sc.safety_factor, sc.use_fatigue_limit)
        penal = self._config.penal
        # stress scaled back to the reference (full-density) level
        applied = field.von_mises * self._densities
        self._min_density_field[:] = [
            minimum_density(s, allowable, penal) if vm > 0.0 else 0.0
            for s, vm in zip(applied.tolist(), field.von_mises.tolist())
        ]
        logger.debug(
            "stress: max vm=%.4g, at risk=%d, passes=%s",
            self._stress_summary.max_von_mises,
            self._stress_summary.elements_at_risk,
            self._stress_summary.passes_constraint,
        )

    def _apply_density_floors(self, xnew: np.ndarray) -> None:
        sc = self._stress_config
        if sc.enable_stress_constraint:
            floor = self._min_density_field
            mask = (xnew > STRESS_FLOOR_ACTIVATION) & (xnew < floor)
            xnew[mask] = floor[mask]
        wall = sc.min_density_wall
        mask = (xnew > WALL_FLOOR_ACTIVATION) & (xnew < wall)
        xnew[mask] = wall

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    def _wall_thickness_valid(self) -> bool:
        d = self._densities
        wall = self._stress_config.min_density_wall
        return not bool(np.any((d > WALL_FLOOR_ACTIVATION) & (d < wall)))

    def get_state(self) -> StressOptimizationState:
        base = super().get_state()
        return StressOptimizationState(
            densities=base.densities,
            strain_energy=base.strain_energy,
            compliance=base.compliance,
            volume=base.volume,
            iteration=base.iteration,
            converged=base.converged,
            change=base.change,
            rupture_risk=self._rupture_risk.copy(),
            min_density_field=self._min_density_field.copy(),
            stress_summary=self._stress_summary,
            meets_stress_constraint=self._stress_summary.passes_constraint,
            wall_thickness_valid=self._wall_thickness_valid(),
        )

    def get_rupture_risk(self) -> np.ndarray:
        return self._rupture_risk.copy()

    def get_stress_summary(self) -> StressSummary:
        return self._stress_summary

    def get_stress_field(self) -> Optional[StressField]:
        return self._stress_field

    # ------------------------------------------------------------------
    # Setters
    # ------------------------------------------------------------------
    def set_material(self, material: MaterialProperties) -> None:
        self._stress_config = self._stress_config.with_overrides(material=material)

    def set_safety_factor(self, factor: float) -> None:
        self._stress_config = self._stress_config.with_overrides(
            safety_factor=max(1.0, min(5.0, float(factor)))
        )

    def set_min_wall_thickness(self, thickness: float) -> None:
        self._stress_config = self._stress_config.with_overrides(
            min_wall_thickness=max(0.1, float(thickness))
        )

    def update_stress_config(self, **overrides: Any) -> None:
        self._stress_config = self._stress_config.with_overrides(**overrides)
