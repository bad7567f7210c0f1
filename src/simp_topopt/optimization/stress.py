"""Stress estimates and soft-material design checks used by the stress-constrained driver.

All stresses are in MPa and lengths in mm. The von Mises estimate derived from
element strain energy is an approximation intended for screening designs, not
for final verification.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, List

import numpy as np

from ..core.config import MATERIALS, MaterialProperties, OC_PARAMS

# Risk level at which an element counts as close to rupture.
RUPTURE_RISK_THRESHOLD = 0.8
# Elements below this density are treated as void by the density floors.
STRESS_FLOOR_ACTIVATION = 0.1
WALL_FLOOR_ACTIVATION = 0.3


def get_material(material_id: str) -> MaterialProperties:
    try:
        return MATERIALS[material_id]
    except KeyError:
        raise KeyError(f"Unknown material '{material_id}'. Available: {sorted(MATERIALS)}") from None


def materials_by_category(category: str) -> List[MaterialProperties]:
    return [m for m in MATERIALS.values() if m.category == category]


def printable_materials() -> List[MaterialProperties]:
    return [m for m in MATERIALS.values() if m.printable]


def allowable_stress(
    material: MaterialProperties, safety_factor: float = 2.0, use_fatigue: bool = False
) -> float:
    """Ultimate (or fatigue, when characterised) stress divided by the safety factor."""
    if use_fatigue and material.fatigue_limit:
        return material.fatigue_limit / safety_factor
    return material.ultimate_stress / safety_factor


def minimum_density(applied_stress: float, allowable: float, penal: float = 3.0) -> float:
    """
    Density needed to bring a full-density stress under the allowable.

    With SIMP scaling sigma ~ sigma_0 / rho^p, rho_min = (sigma_0 / sigma_allow)^(1/p),
    clamped to [0.001, 1]. Returns 0 when no floor is needed.
    """
    if applied_stress <= allowable:
        return 0.0
    rho = (applied_stress / allowable) ** (1.0 / penal)
    return min(OC_PARAMS["density_max"], max(OC_PARAMS["density_min"], rho))


def von_mises_from_strain_energy(strain_energy, youngs_modulus, element_volume):
    """sigma_vm ~ sqrt(2 E U / V); 0 where U <= 0 or V <= 0. Accepts scalars or arrays."""
    U = np.asarray(strain_energy, dtype=float)
    E = np.broadcast_to(np.asarray(youngs_modulus, dtype=float), U.shape)
    V = np.broadcast_to(np.asarray(element_volume, dtype=float), U.shape)
    valid = (U > 0.0) & (V > 0.0)
    out = np.zeros(U.shape, dtype=float)
    out[valid] = np.sqrt(np.maximum(2.0 * E[valid] * U[valid] / V[valid], 0.0))
    return float(out) if out.ndim == 0 else out


@dataclass
class StressField:
    """Per-element stress screening results."""
    von_mises: np.ndarray
    safety_margin: np.ndarray
    rupture_risk: np.ndarray

    @property
    def max_principal(self) -> np.ndarray:
        return 1.1 * self.von_mises

    @property
    def min_principal(self) -> np.ndarray:
        return -0.3 * self.von_mises


def analyze_stress_field(
    strain_energy: np.ndarray,
    densities: np.ndarray,
    material: MaterialProperties,
    element_volume: float,
    safety_factor: float = 2.0,
) -> StressField:
    """Estimate von Mises stress with E_eff = E * rho^3 and V_eff = V * rho."""
    densities = np.asarray(densities, dtype=float)
    allowable = allowable_stress(material, safety_factor)
    effective_E = material.youngs_modulus * densities ** 3
    vm = von_mises_from_strain_energy(strain_energy, effective_E, element_volume * densities)
    vm = np.atleast_1d(vm)
    loaded = vm > 0.0
    margin = np.where(loaded, allowable / np.where(loaded, vm, 1.0), np.inf)
    risk = np.minimum(1.0, vm / material.ultimate_stress)
    return StressField(von_mises=vm, safety_margin=margin, rupture_risk=risk)


def find_rupture_risk_elements(field: StressField, threshold: float = RUPTURE_RISK_THRESHOLD) -> np.ndarray:
    return np.flatnonzero(field.rupture_risk >= threshold)


@dataclass
class StressSummary:
    """Design-level stress summary.

    Attributes
    ----------
    max_von_mises, avg_von_mises : float
        Peak and mean element stress.
    min_safety_margin : float
        Smallest allowable / actual ratio; equals the safety factor when no element is loaded.
    elements_at_risk : int
        Elements with rupture risk >= 0.8.
    passes_constraint : bool
        Whether the peak stress is within the allowable.
    recommendation : str
        Human-readable verdict.
    """
    max_von_mises: float = 0.0
    avg_von_mises: float = 0.0
    min_safety_margin: float = 2.0
    elements_at_risk: int = 0
    passes_constraint: bool = True
    recommendation: str = "Ready to optimize."

    def to_dict(self) -> Dict[str, object]:
        return {
            "max_von_mises": self.max_von_mises,
            "avg_von_mises": self.avg_von_mises,
            "min_safety_margin": self.min_safety_margin,
            "elements_at_risk": self.elements_at_risk,
            "passes_constraint": self.passes_constraint,
            "recommendation": self.recommendation,
        }


def summarize_stress_analysis(
    field: StressField, material: MaterialProperties, safety_factor: float = 2.0
) -> StressSummary:
    vm = field.von_mises
    max_vm = float(vm.max()) if vm.size else 0.0
    avg_vm = float(vm.mean()) if vm.size else 0.0
    min_margin = float(field.safety_margin.min()) if vm.size else math.inf
    at_risk = int(np.count_nonzero(field.rupture_risk >= RUPTURE_RISK_THRESHOLD))
    passes = max_vm <= allowable_stress(material, safety_factor)

    if min_margin >= safety_factor:
        recommendation = "Design meets safety requirements. Safe for fabrication."
    elif min_margin >= 1.0:
        recommendation = (
            f"Design has reduced safety margin ({min_margin:.2f}x). "
            "Consider increasing wall thickness."
        )
    else:
        recommendation = (
            "WARNING: Design exceeds material limits! "
            "Increase density or choose stronger material."
        )

    return StressSummary(
        max_von_mises=max_vm,
        avg_von_mises=avg_vm,
        min_safety_margin=safety_factor if math.isinf(min_margin) else min_margin,
        elements_at_risk=at_risk,
        passes_constraint=passes,
        recommendation=recommendation,
    )


def estimate_wall_thickness(density: float, element_size: float) -> float:
    return density * element_size


@dataclass
class WallThicknessCheck:
    passes: bool
    violations: int
    min_found: float


def check_wall_thickness(
    densities: np.ndarray, element_size: float, min_wall_thickness: float
) -> WallThicknessCheck:
    """Count solid-ish elements (rho > 0.1) thinner than the minimum wall."""
    densities = np.asarray(densities, dtype=float)
    required = min(OC_PARAMS["density_max"], min_wall_thickness / element_size)
    solid = densities > STRESS_FLOOR_ACTIVATION
    violations = int(np.count_nonzero(solid & (densities < required)))
    min_found = float(densities[solid].min()) if np.any(solid) else 1.0
    min_found = min(min_found, 1.0)
    return WallThicknessCheck(
        passes=violations == 0,
        violations=violations,
        min_found=estimate_wall_thickness(min_found, element_size),
    )


def format_stress(mpa: float) -> str:
    if mpa >= 1:
        return f"{mpa:.2f} MPa"
    if mpa >= 0.001:
        return f"{mpa * 1000:.1f} kPa"
    return f"{mpa * 1e6:.0f} Pa"


@dataclass
class MuscleDesign:
    wall_thickness: float
    inner_diameter: float
    safety_margin: float


def muscle_wall_thickness(
    max_pressure: float,
    diameter: float,
    material: MaterialProperties,
    safety_factor: float = 2.0,
) -> MuscleDesign:
    """
    Wall thickness of a pneumatic muscle from the thick-walled cylinder (Lame) hoop stress.

    r_i = r_o * sqrt((sigma - p) / (sigma + p)). When the pressure exceeds the
    allowable stress the tube is solid and the margin is 0.
    """
    outer = diameter / 2.0
    if max_pressure <= 0.0:
        return MuscleDesign(wall_thickness=0.0, inner_diameter=diameter, safety_margin=math.inf)
    sigma = allowable_stress(material, safety_factor)
    ratio = (sigma - max_pressure) / (sigma + max_pressure)
    if ratio <= 0.0:
        return MuscleDesign(wall_thickness=outer, inner_diameter=0.0, safety_margin=0.0)
    inner = outer * math.sqrt(ratio)
    hoop = max_pressure * (inner ** 2 + outer ** 2) / (outer ** 2 - inner ** 2)
    return MuscleDesign(
        wall_thickness=outer - inner,
        inner_diameter=2.0 * inner,
        safety_margin=sigma / hoop if hoop > 0.0 else math.inf,
    )
