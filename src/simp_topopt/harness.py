"""
Background optimization session driven by commands and reporting through events.

An `OptimizationHarness` owns one optimizer, a solver selection held in a
`SolverHandle`, and an outbound event queue. `start` runs iterations on a
worker thread until convergence or `pause`; every other command executes
synchronously. Failures are reported as `ErrorEvent`s and never raised to the
caller of `handle`.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

from .core.backends import SolverHandle
from .optimization.simp_driver import OptimizationState, SIMPOptimizer

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------
# Commands
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class InitCommand:
    config: Dict[str, Any] = field(default_factory=dict)
    forces: List[float] = field(default_factory=list)
    fixed_dofs: List[int] = field(default_factory=list)


@dataclass(frozen=True)
class StartCommand:
    pass


@dataclass(frozen=True)
class PauseCommand:
    pass


@dataclass(frozen=True)
class ResetCommand:
    pass


@dataclass(frozen=True)
class StepCommand:
    pass


@dataclass(frozen=True)
class TerminateCommand:
    pass


Command = Union[InitCommand, StartCommand, PauseCommand, ResetCommand, StepCommand, TerminateCommand]

_COMMAND_TYPES = {
    "init": InitCommand,
    "start": StartCommand,
    "pause": PauseCommand,
    "reset": ResetCommand,
    "step": StepCommand,
    "terminate": TerminateCommand,
}


def parse_command(message: Mapping[str, Any]) -> Command:
    """Build a command from a {'type': ..., ...} message."""
    kind = message.get("type")
    if kind not in _COMMAND_TYPES:
        raise ValueError(f"Unknown command type {kind!r}")
    if kind == "init":
        return InitCommand(
            config=dict(message.get("config") or {}),
            forces=list(message.get("forces") or []),
            fixed_dofs=list(message.get("fixed_dofs") or []),
        )
    return _COMMAND_TYPES[kind]()


# ----------------------------------------------------------------------
# Events
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class ReadyEvent:
    solver_type: str
    type: str = "ready"


@dataclass(frozen=True)
class InitializedEvent:
    state: Dict[str, Any]
    solver_type: str
    type: str = "initialized"


@dataclass(frozen=True)
class StateEvent:
    state: Dict[str, Any]
    type: str = "state"


@dataclass(frozen=True)
class PausedEvent:
    type: str = "paused"


@dataclass(frozen=True)
class ConvergedEvent:
    state: Dict[str, Any]
    type: str = "converged"


@dataclass(frozen=True)
class ErrorEvent:
    message: str
    type: str = "error"


Event = Union[ReadyEvent, InitializedEvent, StateEvent, PausedEvent, ConvergedEvent, ErrorEvent]


def event_to_dict(event: Event) -> Dict[str, Any]:
    return asdict(event)


def serialize_state(state: OptimizationState) -> Dict[str, Any]:
    """Plain-Python form of a state; `deserialize_state` inverts it exactly."""
    return state.to_dict()


def deserialize_state(data: Mapping[str, Any]) -> OptimizationState:
    return OptimizationState.from_dict(data)


# ----------------------------------------------------------------------
# Harness
# ----------------------------------------------------------------------
class OptimizationHarness:
    """
    Command-driven optimization session.

    Parameters
    ----------
    prefer_accelerated : bool
        Try the accelerated PCG backend first when selecting the solver.
    """

    def __init__(self, prefer_accelerated: bool = True) -> None:
        self.events: "queue.Queue[Event]" = queue.Queue()
        self.solver_handle = SolverHandle()
        self._prefer_accelerated = prefer_accelerated
        self._optimizer: Optional[SIMPOptimizer] = None
        self._lock = threading.Lock()
        self._running = threading.Event()
        self._worker: Optional[threading.Thread] = None
        self._terminated = False

        self.solver_handle.ensure(prefer_accelerated)
        self._emit(ReadyEvent(self.solver_handle.solver_type))

    # --- plumbing ---
    def _emit(self, event: Event) -> None:
        self.events.put(event)

    def next_event(self, timeout: Optional[float] = None) -> Event:
        return self.events.get(timeout=timeout)

    def drain_events(self) -> List[Event]:
        out: List[Event] = []
        while True:
            try:
                out.append(self.events.get_nowait())
            except queue.Empty:
                return out

    @property
    def optimizer(self) -> Optional[SIMPOptimizer]:
        return self._optimizer

    @property
    def is_running(self) -> bool:
        return self._running.is_set()

    @property
    def terminated(self) -> bool:
        return self._terminated

    # --- dispatch ---
    def handle(self, command: Union[Command, Mapping[str, Any]]) -> None:
        """Execute one command; errors are emitted as ErrorEvent."""
        try:
            if isinstance(command, Mapping):
                command = parse_command(command)
            if self._terminated:
                raise RuntimeError("Harness terminated")
            if isinstance(command, InitCommand):
                self._on_init(command)
            elif isinstance(command, StartCommand):
                self._on_start()
            elif isinstance(command, PauseCommand):
                self._on_pause()
            elif isinstance(command, ResetCommand):
                self._on_reset()
            elif isinstance(command, StepCommand):
                self._on_step()
            elif isinstance(command, TerminateCommand):
                self._on_terminate()
            else:
                raise ValueError(f"Unsupported command {command!r}")
        except Exception as exc:
            logger.exception("Command failed")
            self._emit(ErrorEvent(str(exc)))

    def _on_init(self, command: InitCommand) -> None:
        self._stop_worker()
        solver = self.solver_handle.ensure(self._prefer_accelerated)
        optimizer = SIMPOptimizer(command.config, solver=solver)
        optimizer.set_forces(command.forces)
        optimizer.set_fixed_dofs(command.fixed_dofs)
        with self._lock:
            self._optimizer = optimizer
            state = optimizer.get_state()
        self._emit(InitializedEvent(serialize_state(state), self.solver_handle.solver_type))

    def _require_optimizer(self) -> SIMPOptimizer:
        if self._optimizer is None:
            raise RuntimeError("Optimizer not initialized")
        return self._optimizer

    def _on_start(self) -> None:
        self._require_optimizer()
        if not self.solver_handle.ready:
            raise RuntimeError("Solver not ready")
        if self._running.is_set():
            return
        self._running.set()
        self._worker = threading.Thread(target=self._loop, name="simp-harness", daemon=True)
        self._worker.start()

    def _loop(self) -> None:
        try:
            while self._running.is_set():
                with self._lock:
                    optimizer = self._optimizer
                    if optimizer is None:
                        break
                    state = optimizer.step()
                serialized = serialize_state(state)
                self._emit(StateEvent(serialized))
                if state.converged:
                    self._running.clear()
                    self._emit(ConvergedEvent(serialized))
        except Exception as exc:
            logger.exception("Optimization loop failed")
            self._emit(ErrorEvent(str(exc)))
        finally:
            self._running.clear()

    def _stop_worker(self) -> None:
        self._running.clear()
        worker = self._worker
        if worker is not None and worker is not threading.current_thread():
            worker.join()
        self._worker = None

    def _on_pause(self) -> None:
        self._stop_worker()
        self._emit(PausedEvent())

    def _on_reset(self) -> None:
        self._stop_worker()
        if self._optimizer is None:
            return
        with self._lock:
            self._optimizer.reset()
            state = self._optimizer.get_state()
        self._emit(InitializedEvent(serialize_state(state), self.solver_handle.solver_type))

    def _on_step(self) -> None:
        optimizer = self._require_optimizer()
        with self._lock:
            state = optimizer.step()
        self._emit(StateEvent(serialize_state(state)))

    def _on_terminate(self) -> None:
        self._stop_worker()
        with self._lock:
            self._optimizer = None
        self._terminated = True

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the worker loop exits; True if it did within timeout."""
        worker = self._worker
        if worker is None:
            return True
        worker.join(timeout)
        return not worker.is_alive()
