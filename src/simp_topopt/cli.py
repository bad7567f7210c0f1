from __future__ import annotations

import argparse
from pathlib import Path
from typing import List, Optional

from .core.backends import create_solver
from .core.config import MATERIALS, SIMPConfig
from .optimization.simp_driver import SIMPOptimizer
from .optimization.stress_driver import StressConstrainedOptimizer
from .preprocessing.presets import PRESETS, get_preset
from .utils.io_utils import load_run_config, save_csv, save_densities, save_json
from .utils.logging_utils import get_logger
from .utils.parallel import run_parallel, run_preset_task

PRESET_IDS = [p.id for p in PRESETS]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="simp-topopt CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_common(sub):
        sub.add_argument("--config", default=None, help="YAML run file (simp/stress/problem sections)")
        sub.add_argument("--nelx", type=int, default=None)
        sub.add_argument("--nely", type=int, default=None)
        sub.add_argument("--volfrac", type=float, default=None)
        sub.add_argument("--penal", type=float, default=None)
        sub.add_argument("--rmin", type=float, default=None)
        sub.add_argument("--max-iter", type=int, default=None)
        sub.add_argument("--log-level", default="INFO")
        return sub

    run = add_common(subparsers.add_parser("run", help="Optimize a single preset"))
    run.add_argument("--preset", choices=PRESET_IDS, default=None)
    run.add_argument("--solver", choices=["auto", "reference", "accelerated", "builtin"], default="builtin")
    run.add_argument("--stress", action="store_true", help="Enable the soft-material stress constraints")
    run.add_argument("--material", choices=sorted(MATERIALS), default=None)
    run.add_argument("--history", default=None, help="CSV path for the convergence history")
    run.add_argument("--state", default=None, help="JSON path for the final state")
    run.add_argument("--densities", default=None, help="CSV path for the density grid")

    batch = add_common(subparsers.add_parser("batch", help="Optimize several presets in parallel"))
    batch.add_argument("--presets", nargs="+", choices=PRESET_IDS, default=PRESET_IDS)
    batch.add_argument("--n-workers", type=int, default=1)
    batch.add_argument("--out-dir", default="results")

    return parser


def _resolve_config(args) -> tuple:
    simp, stress, problem = (SIMPConfig(), None, {})
    if args.config:
        simp, stress, problem = load_run_config(args.config)
    overrides = {
        key: value
        for key, value in (
            ("nelx", args.nelx),
            ("nely", args.nely),
            ("volfrac", args.volfrac),
            ("penal", args.penal),
            ("rmin", args.rmin),
            ("max_iter", args.max_iter),
        )
        if value is not None
    }
    return simp.with_overrides(**overrides), stress, problem


def _run(args, logger) -> None:
    config, stress, problem = _resolve_config(args)
    preset = get_preset(args.preset or problem.get("preset", "mbb"))

    solver = None
    if args.solver != "builtin":
        solver = create_solver(prefer_accelerated=args.solver in ("auto", "accelerated"))
        logger.info("Using solver backend '%s'", solver.name)

    if args.stress or args.material or stress is not None:
        overrides = {"material": MATERIALS[args.material]} if args.material else {}
        stress_cfg = stress.with_overrides(**overrides) if stress is not None else overrides
        optimizer: SIMPOptimizer = StressConstrainedOptimizer(config, stress_cfg or None, solver=solver)
    else:
        optimizer = SIMPOptimizer(config, solver=solver)
    config = optimizer.get_config()

    setup = preset.setup(config.nelx, config.nely)
    optimizer.set_forces(setup.forces)
    optimizer.set_fixed_dofs(setup.fixed_dofs)
    logger.info("Optimizing %s on a %dx%d mesh (volfrac=%.2f)", preset.name, config.nelx, config.nely, config.volfrac)

    state = optimizer.run()
    logger.info(
        "Finished after %d iterations: compliance=%.4f volume=%.4f change=%.4f",
        state.iteration, state.compliance, state.volume, state.change,
    )
    if isinstance(optimizer, StressConstrainedOptimizer):
        logger.info("Stress check: %s", optimizer.get_stress_summary().recommendation)

    if args.history:
        save_csv(optimizer.history_frame(), args.history)
    if args.state:
        save_json(state.to_dict(), args.state)
    if args.densities:
        save_densities(state.densities, config.nelx, config.nely, args.densities)


def _batch(args, logger) -> None:
    config, _, _ = _resolve_config(args)
    tasks = []
    for preset_id in args.presets:
        preset = get_preset(preset_id)
        nelx = config.nelx
        nely = args.nely if args.nely is not None else max(1, int(round(nelx / preset.aspect_ratio)))
        tasks.append({"preset": preset_id, "config": config.with_overrides(nely=nely).to_dict()})

    logger.info("Running %d presets with %d workers", len(tasks), args.n_workers)
    results = run_parallel(tasks, args.n_workers, run_preset_task)

    out_dir = Path(args.out_dir)
    for result in results:
        save_json(result, out_dir / f"{result['preset']}_state.json")
        logger.info(
            "%s: %d iterations, compliance=%.4f, volume=%.4f",
            result["preset"], result["iterations"], result["compliance"], result["volume"],
        )
    summary = [{k: r[k] for k in ("preset", "nelx", "nely", "iterations", "compliance", "volume", "converged")} for r in results]
    save_json(summary, out_dir / "summary.json")


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = get_logger("simp_topopt", args.log_level)

    if args.command == "run":
        _run(args, logger)
    elif args.command == "batch":
        _batch(args, logger)
    else:
        parser.error(f"Unknown command {args.command}")


if __name__ == "__main__":
    main()
