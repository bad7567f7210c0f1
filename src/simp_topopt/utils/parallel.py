"""
Process-level parallelism for independent optimization runs.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List


def run_parallel(tasks: Iterable, n_workers: int, func: Callable[[Any], Any]) -> List[Any]:
    """
    Run func over tasks with n_workers processes.
    - If n_workers==1, run sequentially (no pickling overhead).
    - If n_workers>1, use multiprocessing.Pool.map (func must be top-level).
    """
    tasks = list(tasks)
    if n_workers <= 1 or len(tasks) <= 1:
        return [func(t) for t in tasks]

    from multiprocessing import get_context
    ctx = get_context("spawn")  # optimizers share nothing, so spawn is safe everywhere
    with ctx.Pool(processes=min(n_workers, len(tasks))) as pool:
        return pool.map(func, tasks)


def run_preset_task(task: Dict[str, Any]) -> Dict[str, Any]:
    """
    Worker entry point: optimize one preset and return a summary dict.

    task keys: 'preset' (id), 'config' (SIMPConfig overrides), optional
    'max_iter' (iteration budget, defaults to the config's max_iter).
    """
    from ..core.config import SIMPConfig
    from ..optimization.simp_driver import SIMPOptimizer
    from ..preprocessing.presets import get_preset

    config = SIMPConfig.from_dict(task.get("config"))
    preset = get_preset(task["preset"])
    setup = preset.setup(config.nelx, config.nely)

    optimizer = SIMPOptimizer(config)
    optimizer.set_forces(setup.forces)
    optimizer.set_fixed_dofs(setup.fixed_dofs)
    state = optimizer.run_iterations(int(task.get("max_iter", config.max_iter)))
    return {
        "preset": preset.id,
        "nelx": config.nelx,
        "nely": config.nely,
        "iterations": state.iteration,
        "compliance": state.compliance,
        "volume": state.volume,
        "change": state.change,
        "converged": state.converged,
        "densities": state.densities.tolist(),
        "history": optimizer.history_points(),
    }
