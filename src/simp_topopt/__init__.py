"""
simp-topopt - 2D SIMP Topology Optimization
===========================================

Compliance minimization on a regular Q4 mesh with a Jacobi-PCG solver,
sensitivity filtering, an optimality-criteria update, and a stress-constrained
variant for soft materials.
"""

__version__ = "1.0.0"

from .core.config import SIMPConfig, StressConfig, MaterialProperties, ConfigError
from .optimization.simp_driver import SIMPOptimizer, OptimizationState
from .optimization.stress_driver import StressConstrainedOptimizer

__all__ = [
    "SIMPConfig",
    "StressConfig",
    "MaterialProperties",
    "ConfigError",
    "SIMPOptimizer",
    "OptimizationState",
    "StressConstrainedOptimizer",
]
