"""
Benchmark load cases on the regular Q4 mesh.

Each preset turns (nelx, nely) into a global force vector and a list of fixed
DOFs, plus a coarse description of supports and loads for reporting.
`ProblemDefinition` describes the same kind of case on a reference grid and is
rescaled onto the optimizer's mesh by `SIMPOptimizer.setup_problem`.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Tuple

import numpy as np

from ..core.fem import node_index, total_dofs


@dataclass(frozen=True)
class Support:
    x: float
    y: float
    type: str  # 'pin', 'roller-x' or 'roller-y'


@dataclass(frozen=True)
class Load:
    x: float
    y: float
    dx: float
    dy: float


@dataclass
class PresetResult:
    forces: np.ndarray
    fixed_dofs: List[int]
    supports: List[Support] = field(default_factory=list)
    loads: List[Load] = field(default_factory=list)


@dataclass(frozen=True)
class Preset:
    """A named load case.

    Attributes
    ----------
    id : str
        Lookup key used by `get_preset` and the CLI.
    name, description : str
        Display text.
    aspect_ratio : float
        Preferred nelx / nely ratio.
    setup : callable
        (nelx, nely) -> PresetResult.
    """
    id: str
    name: str
    description: str
    aspect_ratio: float
    setup: Callable[[int, int], PresetResult]


def _mbb_setup(nelx: int, nely: int) -> PresetResult:
    forces = np.zeros(total_dofs(nelx, nely))
    # left edge: symmetry roller (x fixed)
    fixed = [2 * node_index(0, y, nely) for y in range(nely + 1)]
    # bottom-right: roller (y fixed)
    fixed.append(2 * node_index(nelx, 0, nely) + 1)
    forces[2 * node_index(0, nely, nely) + 1] = -1.0
    return PresetResult(
        forces=forces,
        fixed_dofs=fixed,
        supports=[Support(0, nely / 2, "roller-x"), Support(nelx, 0, "roller-y")],
        loads=[Load(0, nely, 0.0, -1.0)],
    )


def _cantilever_setup(nelx: int, nely: int) -> PresetResult:
    forces = np.zeros(total_dofs(nelx, nely))
    fixed: List[int] = []
    for y in range(nely + 1):
        n = node_index(0, y, nely)
        fixed.extend([2 * n, 2 * n + 1])
    mid_y = nely // 2
    forces[2 * node_index(nelx, mid_y, nely) + 1] = -1.0
    return PresetResult(
        forces=forces,
        fixed_dofs=fixed,
        supports=[Support(0, nely / 2, "pin")],
        loads=[Load(nelx, mid_y, 0.0, -1.0)],
    )


def _bridge_setup(nelx: int, nely: int) -> PresetResult:
    forces = np.zeros(total_dofs(nelx, nely))
    bl = node_index(0, 0, nely)
    fixed = [2 * bl, 2 * bl + 1, 2 * node_index(nelx, 0, nely) + 1]
    # unit load spread evenly over the top edge
    per_node = -1.0 / (nelx + 1)
    for x in range(nelx + 1):
        forces[2 * node_index(x, nely, nely) + 1] = per_node
    return PresetResult(
        forces=forces,
        fixed_dofs=fixed,
        supports=[Support(0, 0, "pin"), Support(nelx, 0, "roller-y")],
        loads=[Load(nelx / 2, nely, 0.0, -1.0)],
    )


MBB_BEAM = Preset(
    id="mbb",
    name="MBB Beam",
    description="Half of a simply supported beam with a central load; diagonal braces emerge.",
    aspect_ratio=3.0,
    setup=_mbb_setup,
)

CANTILEVER = Preset(
    id="cantilever",
    name="Cantilever",
    description="Beam clamped on the left with a tip load at mid-height of the right edge.",
    aspect_ratio=2.0,
    setup=_cantilever_setup,
)

BRIDGE = Preset(
    id="bridge",
    name="Bridge",
    description="Pinned and roller supports at the bottom corners with a distributed top load.",
    aspect_ratio=3.0,
    setup=_bridge_setup,
)

PRESETS: List[Preset] = [MBB_BEAM, CANTILEVER, BRIDGE]


def get_preset(preset_id: str) -> Preset:
    for preset in PRESETS:
        if preset.id == preset_id:
            return preset
    raise KeyError(f"Unknown preset '{preset_id}'. Available: {[p.id for p in PRESETS]}")


@dataclass(frozen=True)
class Resolution:
    id: str
    label: str
    base_nelx: int


RESOLUTIONS: List[Resolution] = [
    Resolution("low", "60x20", 60),
    Resolution("medium", "90x30", 90),
    Resolution("high", "120x40", 120),
]


def get_resolution(resolution_id: str) -> Resolution:
    for res in RESOLUTIONS:
        if res.id == resolution_id:
            return res
    raise KeyError(f"Unknown resolution '{resolution_id}'")


def mesh_dimensions(preset: Preset, resolution: Resolution) -> Tuple[int, int]:
    """(nelx, nely) for a preset at a given resolution, honoring its aspect ratio."""
    nelx = resolution.base_nelx
    # round half up, matching the rounding used when scaling problem coordinates
    nely = int(math.floor(nelx / preset.aspect_ratio + 0.5))
    return nelx, nely


# ----------------------------------------------------------------------
# Reference-grid problem descriptions
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class FixedNode:
    x: float
    y: float
    dof: str  # 'x', 'y' or 'both'


@dataclass(frozen=True)
class NodalLoad:
    x: float
    y: float
    fx: float = 0.0
    fy: float = 0.0


@dataclass
class ProblemDefinition:
    """Supports and loads given in the node coordinates of a nelx x nely reference grid."""
    name: str
    nelx: int
    nely: int
    fixed_nodes: List[FixedNode] = field(default_factory=list)
    loads: List[NodalLoad] = field(default_factory=list)
    description: str = ""

    @property
    def aspect_ratio(self) -> float:
        return self.nelx / self.nely

    @classmethod
    def from_dict(cls, data: Dict) -> "ProblemDefinition":
        return cls(
            name=data["name"],
            nelx=int(data["nelx"]),
            nely=int(data["nely"]),
            fixed_nodes=[FixedNode(**n) for n in data.get("fixed_nodes", [])],
            loads=[NodalLoad(**ld) for ld in data.get("loads", [])],
            description=data.get("description", ""),
        )


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def scale_problem(problem: ProblemDefinition, nelx: int, nely: int) -> Tuple[np.ndarray, List[int]]:
    """Map a problem onto a nelx x nely mesh; returns (forces, fixed_dofs)."""
    for node in problem.fixed_nodes:
        if node.dof not in ("x", "y", "both"):
            raise ValueError(f"dof must be 'x', 'y' or 'both', got {node.dof!r}")
    sx = nelx / problem.nelx
    sy = nely / problem.nely
    forces = np.zeros(total_dofs(nelx, nely))
    fixed: List[int] = []
    for node in problem.fixed_nodes:
        n = node_index(round_half_up(node.x * sx), round_half_up(node.y * sy), nely)
        if node.dof in ("x", "both"):
            fixed.append(2 * n)
        if node.dof in ("y", "both"):
            fixed.append(2 * n + 1)
    for load in problem.loads:
        n = node_index(round_half_up(load.x * sx), round_half_up(load.y * sy), nely)
        if load.fx != 0.0:
            forces[2 * n] = load.fx
        if load.fy != 0.0:
            forces[2 * n + 1] = load.fy
    return forces, fixed


def create_pneumatic_muscle_problem(
    nelx: int, nely: int, inner_radius_fraction: float = 0.3
) -> Tuple[np.ndarray, List[int], np.ndarray]:
    """
    Annular wall under internal pressure, clamped on the left edge.

    Returns (forces, fixed_dofs, initial_densities): solid inside the outer
    circle and void in the cavity and outside; a normalized pressure of 0.1
    pushes radially outward on nodes near the inner radius.
    """
    cx, cy = nelx / 2.0, nely / 2.0
    inner = min(nelx, nely) * inner_radius_fraction / 2.0
    outer = min(nelx, nely) / 2.0

    elx, ely = np.divmod(np.arange(nelx * nely), nely)
    dist = np.hypot(elx + 0.5 - cx, ely + 0.5 - cy)
    densities = np.where((dist >= inner) & (dist < outer), 1.0, 0.001)

    fixed: List[int] = []
    for y in range(nely + 1):
        n = node_index(0, y, nely)
        fixed.extend([2 * n, 2 * n + 1])

    pressure = 0.1
    forces = np.zeros(total_dofs(nelx, nely))
    for x in range(nelx):
        for y in range(nely + 1):
            d = math.hypot(x - cx, y - cy)
            if abs(d - inner) < 0.5 and d > 0.0:
                n = node_index(x, y, nely)
                forces[2 * n] += pressure * (x - cx) / d
                forces[2 * n + 1] += pressure * (y - cy) / d
    return forces, fixed, densities
