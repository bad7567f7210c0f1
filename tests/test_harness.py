import numpy as np
import pytest

from simp_topopt.core.backends import reset_solver_cache
from simp_topopt.harness import (
    ConvergedEvent,
    ErrorEvent,
    InitCommand,
    InitializedEvent,
    OptimizationHarness,
    PausedEvent,
    ReadyEvent,
    StateEvent,
    StepCommand,
    deserialize_state,
    event_to_dict,
    parse_command,
    serialize_state,
)
from simp_topopt.preprocessing.presets import MBB_BEAM


@pytest.fixture(autouse=True)
def _fresh_cache():
    reset_solver_cache()
    yield
    reset_solver_cache()


def _init_message(nelx=12, nely=4, **config):
    setup = MBB_BEAM.setup(nelx, nely)
    config.update(nelx=nelx, nely=nely)
    return {
        "type": "init",
        "config": config,
        "forces": setup.forces.tolist(),
        "fixed_dofs": list(setup.fixed_dofs),
    }


@pytest.fixture
def harness():
    h = OptimizationHarness(prefer_accelerated=False)
    yield h
    h.handle({"type": "terminate"})


def test_ready_event_reports_solver(harness):
    event = harness.next_event(timeout=1)
    assert isinstance(event, ReadyEvent)
    assert event.solver_type == "reference"


def test_init_then_step(harness):
    harness.drain_events()
    harness.handle(_init_message())
    init = harness.next_event(timeout=1)
    assert isinstance(init, InitializedEvent)
    assert init.state["iteration"] == 0
    assert init.solver_type == "reference"

    harness.handle(StepCommand())
    event = harness.next_event(timeout=5)
    assert isinstance(event, StateEvent)
    assert event.state["iteration"] == 1
    assert len(event.state["densities"]) == 48


def test_commands_before_init_report_errors(harness):
    harness.drain_events()
    for kind in ("start", "step"):
        harness.handle({"type": kind})
        event = harness.next_event(timeout=1)
        assert isinstance(event, ErrorEvent)
        assert "not initialized" in event.message


def test_unknown_command_and_bad_init_report_errors(harness):
    harness.drain_events()
    harness.handle({"type": "explode"})
    assert isinstance(harness.next_event(timeout=1), ErrorEvent)
    harness.handle({"type": "init", "config": {"nelx": 4, "nely": 2}, "forces": [1.0]})
    event = harness.next_event(timeout=1)
    assert isinstance(event, ErrorEvent)
    assert "forces" in event.message


def test_start_runs_until_converged(harness):
    harness.handle(_init_message(max_iter=5))
    harness.drain_events()
    harness.handle({"type": "start"})
    assert harness.wait(timeout=30)
    events = harness.drain_events()
    states = [e for e in events if isinstance(e, StateEvent)]
    assert [e.state["iteration"] for e in states] == [1, 2, 3, 4, 5]
    assert isinstance(events[-1], ConvergedEvent)
    assert events[-1].state["converged"]
    assert not harness.is_running


def test_pause_stops_worker(harness):
    harness.handle(_init_message(max_iter=200, tolx=1e-9))
    harness.handle({"type": "start"})
    harness.handle({"type": "pause"})
    assert not harness.is_running
    events = harness.drain_events()
    assert isinstance(events[-1], PausedEvent)
    assert harness.wait(timeout=0)
    assert harness.optimizer.get_state().iteration < 200


def test_reset_restores_initial_state(harness):
    harness.handle(_init_message())
    harness.handle(StepCommand())
    harness.handle(StepCommand())
    harness.drain_events()
    harness.handle({"type": "reset"})
    event = harness.next_event(timeout=1)
    assert isinstance(event, InitializedEvent)
    assert event.state["iteration"] == 0
    np.testing.assert_allclose(event.state["densities"], 0.5)


def test_terminate_rejects_further_commands():
    h = OptimizationHarness(prefer_accelerated=False)
    h.handle(_init_message())
    h.handle({"type": "terminate"})
    assert h.terminated
    assert h.optimizer is None
    h.drain_events()
    h.handle(StepCommand())
    event = h.next_event(timeout=1)
    assert isinstance(event, ErrorEvent)
    assert event.message == "Harness terminated"


def test_accelerated_preference_selects_scipy_backend():
    h = OptimizationHarness(prefer_accelerated=True)
    assert h.next_event(timeout=1).solver_type == "accelerated"
    h.handle(_init_message())
    h.handle(StepCommand())
    events = h.drain_events()
    assert isinstance(events[-1], StateEvent)
    assert events[-1].state["compliance"] > 0.0
    h.handle({"type": "terminate"})


def test_parse_command_builds_init():
    command = parse_command({"type": "init", "config": {"nelx": 4}, "forces": [0.0], "fixed_dofs": [1]})
    assert command == InitCommand(config={"nelx": 4}, forces=[0.0], fixed_dofs=[1])
    with pytest.raises(ValueError):
        parse_command({})


def test_state_serialization_round_trip(harness):
    harness.handle(_init_message())
    state = harness.optimizer.step()
    data = serialize_state(state)
    restored = deserialize_state(data)
    np.testing.assert_array_equal(restored.densities, state.densities)
    assert restored.compliance == state.compliance
    assert event_to_dict(StateEvent(data))["type"] == "state"


def test_solver_failure_is_reported_not_fatal(harness):
    message = _init_message(max_iter=5)
    n_dofs = len(message["forces"])
    message["fixed_dofs"] = message["fixed_dofs"] + [n_dofs + 5]
    harness.handle(message)
    harness.drain_events()

    harness.handle(StepCommand())
    event = harness.next_event(timeout=5)
    assert isinstance(event, ErrorEvent)

    harness.handle({"type": "start"})
    assert harness.wait(timeout=10)
    assert not harness.is_running
    events = harness.drain_events()
    assert any(isinstance(e, ErrorEvent) for e in events)
    assert not any(isinstance(e, ConvergedEvent) for e in events)
