import numpy as np
import pytest

from simp_topopt.core.config import ConfigError, MaterialProperties, SIMPConfig, StressConfig
from simp_topopt.optimization.stress import get_material
from simp_topopt.optimization.stress_driver import (
    SOFT_MATERIAL_NU,
    StressConstrainedOptimizer,
    StressOptimizationState,
)
from simp_topopt.preprocessing.presets import CANTILEVER, MBB_BEAM


def _make_optimizer(nelx=20, nely=8, stress_config=None, **overrides):
    config = {"nelx": nelx, "nely": nely, "volfrac": 0.4}
    config.update(overrides)
    opt = StressConstrainedOptimizer(config, stress_config or {"element_size": 2.0})
    setup = MBB_BEAM.setup(nelx, nely)
    opt.set_forces(setup.forces)
    opt.set_fixed_dofs(setup.fixed_dofs)
    return opt


def test_soft_material_poisson_ratio_default():
    assert StressConstrainedOptimizer().get_config().nu == SOFT_MATERIAL_NU
    assert StressConstrainedOptimizer({"nelx": 10, "nely": 5}).get_config().nu == SOFT_MATERIAL_NU
    explicit = StressConstrainedOptimizer(SIMPConfig(nelx=10, nely=5))
    assert explicit.get_config().nu == 0.3


def test_state_carries_stress_results():
    opt = _make_optimizer()
    state = opt.step()
    assert isinstance(state, StressOptimizationState)
    assert state.rupture_risk.shape == (opt.n_elem,)
    assert np.all((state.rupture_risk >= 0.0) & (state.rupture_risk <= 1.0))
    assert np.all((state.min_density_field >= 0.0) & (state.min_density_field <= 1.0))
    assert opt.get_stress_field() is not None
    assert state.meets_stress_constraint == state.stress_summary.passes_constraint
    data = state.to_dict()
    assert len(data["rupture_risk"]) == opt.n_elem
    assert data["stress_summary"]["recommendation"]


def test_wall_floor_removes_thin_intermediate_elements():
    opt = _make_optimizer()
    # uniform 0.4 sits between the wall activation (0.3) and the 0.5 wall density
    assert not opt.get_state().wall_thickness_valid
    for _ in range(5):
        state = opt.step()
        assert state.wall_thickness_valid
        d = state.densities
        assert not np.any((d > 0.3) & (d < 0.5))


def test_volume_and_bounds_still_hold():
    opt = _make_optimizer(stress_config={"element_size": 10.0})
    for _ in range(5):
        state = opt.step()
        assert state.densities.min() >= 0.001 - 1e-12
        assert state.densities.max() <= 1.0 + 1e-12
        assert state.volume == pytest.approx(0.4, abs=0.02)


def test_disabled_stress_constraint_skips_screening():
    opt = _make_optimizer(stress_config={"element_size": 2.0, "enable_stress_constraint": False})
    state = opt.step()
    assert opt.get_stress_field() is None
    assert np.all(state.rupture_risk == 0.0)
    assert state.stress_summary.recommendation == "Ready to optimize."


def test_reset_clears_stress_state():
    opt = _make_optimizer()
    opt.run_iterations(3)
    opt.reset()
    assert opt.get_stress_field() is None
    assert np.all(opt.get_rupture_risk() == 0.0)
    assert opt.get_stress_summary().min_safety_margin == opt.stress_config.safety_factor


def test_setters_clamp_and_validate():
    opt = StressConstrainedOptimizer({"nelx": 6, "nely": 3})
    opt.set_safety_factor(10.0)
    assert opt.stress_config.safety_factor == 5.0
    opt.set_safety_factor(0.2)
    assert opt.stress_config.safety_factor == 1.0
    opt.set_min_wall_thickness(0.0)
    assert opt.stress_config.min_wall_thickness == 0.1
    opt.set_material(get_material("tpu-95a"))
    assert opt.stress_config.material.id == "tpu-95a"
    opt.update_stress_config(use_fatigue_limit=True)
    assert opt.stress_config.allowable_stress == pytest.approx(8.0)
    with pytest.raises(ConfigError):
        opt.update_stress_config(bogus=1)


def test_stress_config_validation():
    with pytest.raises(ConfigError):
        StressConfig(element_size=0.0)
    with pytest.raises(ConfigError):
        StressConstrainedOptimizer(stress_config={"colour": "red"})
    assert StressConfig(min_wall_thickness=1.0, element_size=4.0).min_density_wall == 0.25


def _cantilever_optimizer(stress_config, nelx=20, nely=10):
    opt = StressConstrainedOptimizer({"nelx": nelx, "nely": nely, "volfrac": 0.4}, stress_config)
    setup = CANTILEVER.setup(nelx, nely)
    opt.set_forces(setup.forces)
    opt.set_fixed_dofs(setup.fixed_dofs)
    return opt


def test_wall_floor_never_exceeds_full_density():
    cfg = StressConfig(min_wall_thickness=2.0, element_size=1.0)
    assert cfg.min_density_wall == 1.0
    opt = _cantilever_optimizer(cfg)
    for _ in range(3):
        state = opt.step()
        assert state.densities.max() <= 1.0
    opt.set_min_wall_thickness(3.0)
    assert opt.stress_config.min_density_wall == 1.0
    for _ in range(2):
        assert opt.step().densities.max() <= 1.0


def test_stress_floor_raises_active_elements_only():
    weak = MaterialProperties("weak", "Weak", 1e-12, 1.0, None)
    opt = _cantilever_optimizer({"material": weak, "element_size": 10.0, "min_wall_thickness": 1.0})
    nelx, nely = 20, 10
    initial = np.full(nelx * nely, 0.4)
    void = np.array([elx * nely + ely for elx in range(4, 8) for ely in range(3, 7)])
    initial[void] = 0.001
    opt.set_densities(initial)

    state = opt.step()
    floor = state.min_density_field
    d = state.densities
    assert np.any(floor > 0.0)
    active = d > 0.1
    assert np.all(d[active] >= floor[active])
    # void elements stay void even where their stress would call for material
    assert np.all(d[void] <= 0.1)
    assert np.any(floor[void] > 0.0)
