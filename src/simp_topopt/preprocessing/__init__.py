"""Problem definitions: benchmark presets and reference-grid problems."""

from .presets import (
    PRESETS,
    RESOLUTIONS,
    MBB_BEAM,
    CANTILEVER,
    BRIDGE,
    Preset,
    PresetResult,
    ProblemDefinition,
    FixedNode,
    NodalLoad,
    get_preset,
    mesh_dimensions,
)

__all__ = [
    "PRESETS",
    "RESOLUTIONS",
    "MBB_BEAM",
    "CANTILEVER",
    "BRIDGE",
    "Preset",
    "PresetResult",
    "ProblemDefinition",
    "FixedNode",
    "NodalLoad",
    "get_preset",
    "mesh_dimensions",
]
