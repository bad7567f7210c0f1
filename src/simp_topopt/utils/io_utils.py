"""IO helpers for run configuration, convergence histories and result artifacts."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import numpy as np
import pandas as pd
import yaml

from ..core.config import MATERIALS, ConfigError, SIMPConfig, StressConfig


def load_yaml(path: str | Path) -> dict:
    """Load a YAML file into a dictionary (empty files give {})."""
    with open(path, "r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def save_json(obj: Any, path: str | Path) -> None:
    """Serialize an object to JSON with indentation."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        json.dump(obj, handle, indent=2)


def load_json(path: str | Path) -> Any:
    with open(path, "r", encoding="utf-8") as handle:
        return json.load(handle)


def save_csv(df_or_arr: Any, path: str | Path) -> None:
    """Persist a pandas DataFrame or array-like object as CSV."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if hasattr(df_or_arr, "to_csv"):
        index_label = getattr(getattr(df_or_arr, "index", None), "name", None)
        df_or_arr.to_csv(path, index=True, index_label=index_label)
    else:
        pd.DataFrame(df_or_arr).to_csv(path, index=False)


def atomic_write_text(path: str | Path, text: str) -> None:
    """Atomically write text to a file by using a temporary file swap."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(text, encoding="utf-8")
    tmp_path.replace(path)


def load_run_config(path: str | Path) -> Tuple[SIMPConfig, Optional[StressConfig], Dict[str, Any]]:
    """
    Load a run file with optional `simp`, `stress` and `problem` sections.

    Example
    -------
    simp:
      nelx: 90
      nely: 30
      volfrac: 0.4
    stress:
      material: dragon-skin-10
      safety_factor: 2.5
    problem:
      preset: mbb

    Returns (simp_config, stress_config or None, problem_section).
    """
    raw = load_yaml(path)
    unknown = sorted(set(raw) - {"simp", "stress", "problem"})
    if unknown:
        raise ConfigError(f"Unknown top-level config sections: {unknown}")
    simp = SIMPConfig.from_dict(raw.get("simp"))

    stress = None
    if raw.get("stress") is not None:
        section = dict(raw["stress"])
        material = section.get("material")
        if isinstance(material, str):
            if material not in MATERIALS:
                raise ConfigError(f"Unknown material '{material}'")
            section["material"] = MATERIALS[material]
        stress = StressConfig().with_overrides(**section)
    return simp, stress, dict(raw.get("problem") or {})


def save_densities(densities: np.ndarray, nelx: int, nely: int, path: str | Path) -> None:
    """Write the density field as an nely x nelx grid, top row first."""
    grid = np.asarray(densities, dtype=float).reshape(nelx, nely).T[::-1]
    save_csv(grid, path)
