"""Optimization drivers.

Exports
-------
SIMPOptimizer : Compliance minimization with OC update
StressConstrainedOptimizer : SIMP with stress and wall-thickness density floors
"""

from .simp_driver import SIMPOptimizer, OptimizationState, HistoryPoint
from .stress_driver import StressConstrainedOptimizer, StressOptimizationState

__all__ = [
    "SIMPOptimizer",
    "OptimizationState",
    "HistoryPoint",
    "StressConstrainedOptimizer",
    "StressOptimizationState",
]
