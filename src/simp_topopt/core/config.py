"""
Configuration dataclasses and numerical constants for SIMP topology optimization.

This module contains the optimizer configuration (mesh, SIMP law, filter,
stopping rule), the soft-material / stress-constraint settings, and the
tuned constants shared by the optimality-criteria update and the PCG solver.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Dict, Mapping, Optional

import numpy as np


class ConfigError(ValueError):
    """Raised when a configuration value is outside its valid domain."""


# --- tuned constants ---
MESH_DEFAULTS: Dict[str, int] = {
    "min_elements": 1,
    "max_elements": 1000,
}

OC_PARAMS: Dict[str, float] = {
    "move": 0.2,
    "density_min": 0.001,
    "density_max": 1.0,
    "lambda_lower": 0.0,
    "lambda_upper": 1e9,
    "bisection_tol": 1e-3,
}

CG_PARAMS: Dict[str, float] = {
    "tol": 1e-8,
    "max_iter": 10000,
    "breakdown_tol": 1e-30,
}

FEM_PARAMS: Dict[str, float] = {
    "assembly_drop_tol": 1e-15,
    "filter_density_floor": 1e-9,
}

HISTORY_MAX_POINTS = 250


@dataclass(frozen=True)
class SIMPConfig:
    """SIMP compliance-minimization configuration.

    Attributes
    ----------
    nelx, nely : int
        Number of elements along x and y.
    volfrac : float
        Target volume fraction in (0, 1]; also the initial uniform density.
    penal : float
        SIMP penalization exponent (robust default 3).
    rmin : float
        Sensitivity filter radius in element units.
    max_iter : int
        Hard iteration cap for the optimizer.
    tolx : float
        Convergence threshold on the max absolute density change.
    Emin, E0 : float
        Void and solid Young's moduli.
    nu : float
        Poisson's ratio used for the element stiffness.
    """
    nelx: int = 60
    nely: int = 20
    volfrac: float = 0.5
    penal: float = 3.0
    rmin: float = 1.5
    max_iter: int = 200
    tolx: float = 0.01
    Emin: float = 1e-9
    E0: float = 1.0
    nu: float = 0.3

    def __post_init__(self) -> None:
        self.validate()
        # numpy integers are accepted but stored as int so to_dict stays JSON-safe
        for name in ("nelx", "nely", "max_iter"):
            object.__setattr__(self, name, int(getattr(self, name)))

    def validate(self) -> None:
        """Raise ConfigError if any field is outside its valid domain."""
        lo, hi = MESH_DEFAULTS["min_elements"], MESH_DEFAULTS["max_elements"]
        for name in ("nelx", "nely"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
                raise ConfigError(f"{name} must be an integer, got {value!r}")
            if not lo <= value <= hi:
                raise ConfigError(f"{name} must be in [{lo}, {hi}], got {value}")
        if not 0.0 < self.volfrac <= 1.0:
            raise ConfigError(f"volfrac must be in (0, 1], got {self.volfrac}")
        if self.penal < 1.0:
            raise ConfigError(f"penal must be >= 1, got {self.penal}")
        if self.rmin < 0.0:
            raise ConfigError(f"rmin must be >= 0, got {self.rmin}")
        if isinstance(self.max_iter, bool) or not isinstance(self.max_iter, (int, np.integer)) or self.max_iter <= 0:
            raise ConfigError(f"max_iter must be a positive integer, got {self.max_iter!r}")
        if self.tolx <= 0.0:
            raise ConfigError(f"tolx must be > 0, got {self.tolx}")
        if self.Emin < 0.0:
            raise ConfigError(f"Emin must be >= 0, got {self.Emin}")
        if self.E0 <= 0.0:
            raise ConfigError(f"E0 must be > 0, got {self.E0}")
        if not -1.0 < self.nu < 0.5:
            raise ConfigError(f"nu must be in (-1, 0.5), got {self.nu}")

    def with_overrides(self, **overrides: Any) -> "SIMPConfig":
        """Return a validated copy with the given fields replaced."""
        _check_keys(type(self), overrides)
        return replace(self, **overrides)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]] = None) -> "SIMPConfig":
        data = dict(data or {})
        _check_keys(cls, data)
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class MaterialProperties:
    """Soft material properties (stresses and modulus in MPa).

    Attributes
    ----------
    id : str
        Lookup key in MATERIALS.
    name : str
        Display name of the material.
    ultimate_stress : float
        Stress at rupture.
    youngs_modulus : float
        Initial (tangent) modulus.
    fatigue_limit : float or None
        Stress for infinite cyclic life; None when not characterised.
    category : str
        One of 'elastomer', 'hydrogel', 'foam'.
    printable : bool
        Whether the material can be 3D printed.
    """
    id: str = "ecoflex-0030"
    name: str = "Ecoflex 00-30"
    ultimate_stress: float = 1.4
    youngs_modulus: float = 0.069
    fatigue_limit: Optional[float] = 0.2
    category: str = "elastomer"
    printable: bool = False


# Manufacturer datasheet values.
MATERIALS: Dict[str, MaterialProperties] = {
    m.id: m
    for m in (
        MaterialProperties("ecoflex-0030", "Ecoflex 00-30", 1.4, 0.069, 0.2),
        MaterialProperties("ecoflex-0050", "Ecoflex 00-50", 2.2, 0.083, 0.35),
        MaterialProperties("dragon-skin-10", "Dragon Skin 10", 2.8, 0.151, 0.4),
        MaterialProperties("dragon-skin-30", "Dragon Skin 30", 3.4, 0.59, 0.6),
        MaterialProperties("sylgard-184", "Sylgard 184 PDMS", 6.7, 2.6, 1.0),
        MaterialProperties("tpu-95a", "TPU 95A (Flexible)", 35.0, 26.0, 8.0, printable=True),
        MaterialProperties("tpu-80a", "TPU 80A (Soft)", 20.0, 8.0, 4.0, printable=True),
        MaterialProperties("ninjaflex", "NinjaFlex TPU", 26.0, 12.0, 5.0, printable=True),
        MaterialProperties("paam-hydrogel", "PAAm Hydrogel (Tough)", 0.8, 0.03, 0.1, "hydrogel"),
        MaterialProperties("alginate-hydrogel", "Alginate Hydrogel", 0.1, 0.05, None, "hydrogel", True),
        MaterialProperties("poron-foam", "PORON Urethane Foam", 0.4, 0.15, 0.08, "foam"),
        MaterialProperties("hasel-dielectric", "HASEL Dielectric Elastomer", 3.0, 0.5, 0.5),
    )
}


@dataclass(frozen=True)
class StressConfig:
    """Stress-constraint settings layered on top of SIMPConfig.

    Attributes
    ----------
    material : MaterialProperties
        Material whose allowable stress drives the density floor.
    safety_factor : float
        Divisor applied to ultimate (or fatigue) stress, clamped to [1, 5].
    min_wall_thickness : float
        Minimum printable wall, same length unit as element_size.
    element_size : float
        Physical edge length of one element.
    enable_stress_constraint : bool
        Apply the stress-driven density floor during the OC update.
    use_fatigue_limit : bool
        Use fatigue_limit instead of ultimate_stress for the allowable stress.
    """
    material: MaterialProperties = field(default_factory=MaterialProperties)
    safety_factor: float = 2.0
    min_wall_thickness: float = 1.0
    element_size: float = 1.0
    enable_stress_constraint: bool = True
    use_fatigue_limit: bool = False

    def __post_init__(self) -> None:
        if self.element_size <= 0.0:
            raise ConfigError(f"element_size must be > 0, got {self.element_size}")
        if self.safety_factor <= 0.0:
            raise ConfigError(f"safety_factor must be > 0, got {self.safety_factor}")

    @property
    def allowable_stress(self) -> float:
        if self.use_fatigue_limit and self.material.fatigue_limit:
            return self.material.fatigue_limit / self.safety_factor
        return self.material.ultimate_stress / self.safety_factor

    @property
    def min_density_wall(self) -> float:
        """Wall thickness in element units, capped at full density."""
        return min(OC_PARAMS["density_max"], self.min_wall_thickness / self.element_size)

    def with_overrides(self, **overrides: Any) -> "StressConfig":
        _check_keys(type(self), overrides)
        return replace(self, **overrides)


def _check_keys(cls: type, data: Mapping[str, Any]) -> None:
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown {cls.__name__} keys: {unknown}")
