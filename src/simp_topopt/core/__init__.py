"""Core FE, assembly, solver and filter building blocks."""

from .config import SIMPConfig, StressConfig, MaterialProperties, ConfigError, MATERIALS
from .fem import element_stiffness, element_dofs, total_dofs, node_index, element_index
from .connectivity import MeshConnectivity, precompute_mesh_connectivity
from .assembly import (
    CSRMatrix,
    assemble_stiffness_matrix,
    assemble_stiffness_matrix_fast,
    apply_boundary_conditions,
    apply_boundary_conditions_fast,
)
from .solver import (
    SolveResult,
    SolverScratch,
    conjugate_gradient,
    conjugate_gradient_fast,
    create_solver_scratch,
    solve_fem,
    solve_fem_optimized,
)
from .backends import Solver, NumpyPCGSolver, ScipyPCGSolver, SolverHandle, create_solver
from .filter import FilterData, prepare_filter, apply_sensitivity_filter, apply_density_filter

__all__ = [
    "SIMPConfig",
    "StressConfig",
    "MaterialProperties",
    "ConfigError",
    "MATERIALS",
    "element_stiffness",
    "element_dofs",
    "total_dofs",
    "node_index",
    "element_index",
    "MeshConnectivity",
    "precompute_mesh_connectivity",
    "CSRMatrix",
    "assemble_stiffness_matrix",
    "assemble_stiffness_matrix_fast",
    "apply_boundary_conditions",
    "apply_boundary_conditions_fast",
    "SolveResult",
    "SolverScratch",
    "conjugate_gradient",
    "conjugate_gradient_fast",
    "create_solver_scratch",
    "solve_fem",
    "solve_fem_optimized",
    "Solver",
    "NumpyPCGSolver",
    "ScipyPCGSolver",
    "SolverHandle",
    "create_solver",
    "FilterData",
    "prepare_filter",
    "apply_sensitivity_filter",
    "apply_density_filter",
]
