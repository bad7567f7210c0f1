"""
Simple Example: MBB Beam and Soft Pneumatic Muscle
==================================================

This example demonstrates a basic workflow for simp-topopt.

Workflow:
1. Pick a preset load case and mesh resolution
2. Run SIMP compliance minimization to convergence
3. Inspect the convergence history
4. Re-run a pneumatic muscle wall with stress and wall-thickness floors
5. Export results

Run with the package installed (`pip install -e .`).
"""

from pathlib import Path

import numpy as np

from simp_topopt import SIMPConfig, SIMPOptimizer
from simp_topopt.core.backends import create_solver
from simp_topopt.optimization.stress import format_stress, get_material, muscle_wall_thickness
from simp_topopt.optimization.stress_driver import StressConstrainedOptimizer
from simp_topopt.preprocessing.presets import (
    MBB_BEAM,
    create_pneumatic_muscle_problem,
    get_resolution,
    mesh_dimensions,
)
from simp_topopt.utils.io_utils import save_csv, save_densities, save_json

OUT_DIR = Path(__file__).parent / "output"


def banner(title):
    print("\n" + "=" * 70)
    print(title)
    print("=" * 70)


def ascii_density(densities, nelx, nely, step=2):
    """Coarse text rendering of the design, top row first."""
    grid = np.asarray(densities).reshape(nelx, nely).T[::-1]
    chars = " .:-=+*#%@"
    for row in grid[::step]:
        print("".join(chars[min(int(v * len(chars)), len(chars) - 1)] for v in row[::step]))


def run_mbb():
    banner("STEP 1: MBB beam (low resolution)")
    nelx, nely = mesh_dimensions(MBB_BEAM, get_resolution("low"))
    config = SIMPConfig(nelx=nelx, nely=nely, volfrac=0.5, penal=3.0, rmin=1.5, max_iter=100)
    optimizer = SIMPOptimizer(config, solver=create_solver(prefer_accelerated=True))
    print(f"   - Mesh: {nelx} x {nely}, solver backend: {optimizer.solver.name}")

    setup = MBB_BEAM.setup(nelx, nely)
    optimizer.set_forces(setup.forces)
    optimizer.set_fixed_dofs(setup.fixed_dofs)

    banner("STEP 2: Optimize")
    state = optimizer.run()
    print(f"✅ Converged after {state.iteration} iterations")
    print(f"   - Compliance: {state.compliance:.4f}")
    print(f"   - Volume: {state.volume:.4f}")

    banner("STEP 3: Convergence history")
    history = optimizer.history_frame()
    print(history.iloc[::10].to_string(float_format=lambda v: f"{v:.4f}"))
    ascii_density(state.densities, nelx, nely)

    save_csv(history, OUT_DIR / "mbb_history.csv")
    save_densities(state.densities, nelx, nely, OUT_DIR / "mbb_densities.csv")
    return state


def run_muscle():
    banner("STEP 4: Pneumatic muscle wall (Dragon Skin 10)")
    material = get_material("dragon-skin-10")
    design = muscle_wall_thickness(max_pressure=0.1, diameter=20.0, material=material, safety_factor=2.0)
    print(f"   - Analytical wall for 0.1 MPa: {design.wall_thickness:.2f} mm")

    nelx = nely = 40
    forces, fixed, densities = create_pneumatic_muscle_problem(nelx, nely)
    optimizer = StressConstrainedOptimizer(
        {"nelx": nelx, "nely": nely, "volfrac": 0.4, "max_iter": 60},
        {"material": material, "element_size": 2.0, "min_wall_thickness": 1.0},
    )
    optimizer.set_forces(forces)
    optimizer.set_fixed_dofs(fixed)
    optimizer.set_densities(densities)

    state = optimizer.run()
    summary = state.stress_summary
    print(f"✅ Done after {state.iteration} iterations")
    print(f"   - Peak von Mises: {format_stress(summary.max_von_mises)}")
    print(f"   - Elements at risk: {summary.elements_at_risk}")
    print(f"   - Wall thickness valid: {state.wall_thickness_valid}")
    print(f"   - {summary.recommendation}")

    save_json(state.to_dict(), OUT_DIR / "muscle_state.json")
    return state


def main():
    banner("SIMP-TOPOPT - Simple Example")
    run_mbb()
    run_muscle()
    banner(f"✅ COMPLETE! Results written to {OUT_DIR}")


if __name__ == "__main__":
    main()
