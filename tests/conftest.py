import io
import sys
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence, Tuple

import pytest
from rich.console import Console

# Ensure repository's src/ is on sys.path for tests
ROOT = Path(__file__).resolve().parent.parent
SRC = str(ROOT / "src")
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from netbrew.cli.core.engine import (  # noqa: E402
    Engine, Layer, Net, ParallelRunner, Solver, SolverAction, TunableLayer
)
from netbrew.cli.core.logger import setup_logger  # noqa: E402


class FakeClock:
    """Manually advanced time source, in seconds."""

    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTuner(TunableLayer):
    def __init__(self, on_tune: Optional[Callable[[], None]] = None):
        self.calls: List[Tuple[Any, Any, int]] = []
        self.on_tune = on_tune

    def tune(self, top, bottom, batch_size):
        self.calls.append((top, bottom, batch_size))
        if self.on_tune:
            self.on_tune()


class FakeLayer(Layer):
    """Layer whose forward/backward advance a fake clock by fixed costs."""

    def __init__(
        self,
        name: str,
        clock: Optional[FakeClock] = None,
        forward_cost: float = 0.0,
        backward_cost: float = 0.0,
        tunable: bool = False,
        on_tune: Optional[Callable[[], None]] = None
    ):
        self.name = name
        self.clock = clock
        self.forward_cost = forward_cost
        self.backward_cost = backward_cost
        self.forward_calls = 0
        self.backward_calls = 0
        self.tuner = FakeTuner(on_tune) if tunable else None

    def forward(self, bottom, top):
        self.forward_calls += 1
        if self.clock:
            self.clock.advance(self.forward_cost)

    def backward(self, top, propagate_down, bottom):
        self.backward_calls += 1
        if self.clock:
            self.clock.advance(self.backward_cost)

    def as_tunable(self):
        return self.tuner


class FakeNet(Net):
    """
    Network returning canned forward results in turn.

    ``batches`` is a list of (outputs, loss); forward cycles through it.
    """

    def __init__(
        self,
        layers: Sequence[Layer] = (),
        batches: Sequence[Tuple[List[Any], float]] = (),
        output_names: Sequence[str] = (),
        output_loss_weights: Sequence[float] = (),
        top_vecs: Optional[List[List[Any]]] = None
    ):
        self.layers = list(layers)
        self.bottom_vecs = [[] for _ in self.layers]
        self.top_vecs = top_vecs if top_vecs is not None else [[] for _ in self.layers]
        self.bottom_need_backward = [[] for _ in self.layers]
        self.output_names = list(output_names)
        self.output_loss_weights = list(output_loss_weights)
        self.batches = list(batches) or [([], 0.0)]
        self.forward_calls = 0
        self.backward_calls = 0
        self.copied: List[str] = []

    def forward(self):
        result = self.batches[self.forward_calls % len(self.batches)]
        self.forward_calls += 1
        return result

    def backward(self):
        self.backward_calls += 1

    def copy_trained_layers_from(self, path):
        self.copied.append(path)


class FakeSolver(Solver):
    """
    Solver that polls its action function once per iteration.

    ``on_iteration`` is called with the iteration number before polling, so
    tests can deliver signals at a chosen point. A snapshot request
    checkpoints and continues unless ``snapshot_halts`` is set, in which case
    it checkpoints and stops.
    """

    def __init__(
        self,
        max_iter: int = 10,
        net: Optional[Net] = None,
        test_nets: Sequence[Net] = (),
        on_iteration: Optional[Callable[[int], None]] = None,
        snapshot_halts: bool = False
    ):
        self.net = net or FakeNet()
        self.snapshot_halts = snapshot_halts
        self.test_nets = list(test_nets)
        self.iter = 0
        self.max_iter = max_iter
        self.on_iteration = on_iteration
        self.action_function = lambda: SolverAction.NONE
        self.snapshots: List[int] = []
        self.restored: List[str] = []
        self.solve_calls = 0

    def set_action_function(self, func):
        self.action_function = func

    def restore(self, path):
        self.restored.append(path)

    def solve(self):
        self.solve_calls += 1
        while self.iter < self.max_iter:
            if self.on_iteration:
                self.on_iteration(self.iter)
            action = self.action_function()
            if action == SolverAction.SNAPSHOT:
                self.snapshots.append(self.iter)
                if self.snapshot_halts:
                    break
            elif action == SolverAction.STOP:
                self.snapshots.append(self.iter)
                break
            self.iter += 1


class FakeParallelRunner(ParallelRunner):
    def __init__(self, solver: Solver):
        self.solver = solver
        self.runs: List[Tuple[List[int], Optional[str]]] = []

    def run(self, device_ids, resume_path=None):
        self.runs.append((list(device_ids), resume_path))
        self.solver.solve()


class FakeEngine(Engine):
    """Engine recording every call made by the harness."""

    name = "fake"

    def __init__(
        self,
        device_count: int = 0,
        net: Optional[Net] = None,
        solver: Optional[Solver] = None,
        with_runner: bool = False
    ):
        super().__init__()
        self.device_count = device_count
        self.net = net or FakeNet()
        self.solver = solver or FakeSolver()
        self.runner = FakeParallelRunner(self.solver) if with_runner else None
        self.calls: List[Tuple[Any, ...]] = []
        self.synchronized: List[Optional[int]] = []
        self.created_nets: List[Tuple[str, str, int, List[str]]] = []
        self.solver_params: List[Any] = []

    @property
    def accelerator_available(self):
        return self.device_count > 0

    def enumerate_devices(self, quiet=False):
        self.calls.append(("enumerate_devices", quiet))
        return self.device_count

    def set_devices(self, device_ids):
        self.calls.append(("set_devices", list(device_ids)))
        super().set_devices(device_ids)

    def set_device(self, device_id):
        self.calls.append(("set_device", device_id))
        super().set_device(device_id)

    def set_mode(self, mode):
        self.calls.append(("set_mode", mode))
        super().set_mode(mode)

    def set_solver_count(self, count):
        self.calls.append(("set_solver_count", count))
        super().set_solver_count(count)

    def synchronize(self, device_id):
        self.synchronized.append(device_id)

    def device_query(self):
        self.calls.append(("device_query", self.current_device))

    def teardown_device(self, device_id):
        self.calls.append(("teardown_device", device_id))

    def create_net(self, model, phase, level=0, stages=None):
        self.created_nets.append((model, phase, level, list(stages or [])))
        return self.net

    def create_solver(self, solver_param):
        self.solver_params.append(solver_param)
        return self.solver

    def parallel_runner(self, solver):
        return self.runner

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]


@pytest.fixture
def console():
    return Console(file=io.StringIO(), width=120)


@pytest.fixture
def logger(console):
    return setup_logger(console=console)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def solver_file(tmp_path):
    """Write a solver description and return its path."""

    def write(text: str = "net: net.yaml\nmax_iter: 10\n") -> str:
        path = tmp_path / "solver.yaml"
        path.write_text(text)
        return str(path)

    return write


class InterruptingEngine(FakeEngine):
    """Engine whose network construction is interrupted by the user."""

    def create_net(self, model, phase, level=0, stages=None):
        raise KeyboardInterrupt
