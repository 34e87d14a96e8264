"""
Training orchestration.

Drives an engine-provided solver through one training run:

    CONFIGURED -> RUNNING -> COMPLETED | CANCELLED

Configuration covers the solver description, stage/level overrides, the
resume-vs-finetune check and device selection. Running constructs the
solver, wires signal-driven cancellation, restores or finetunes and then
solves on one device or hands the solver to the engine's multi-device runner.
"""

from enum import Enum
from typing import List, Optional
import time

from pydantic import BaseModel, Field

from .config import BrewFlags, SolverParameter, load_solver_parameter
from .devices import DeviceResolver, DeviceSet, parse_stages
from .engine import ActionFunction, Engine, Solver, SolverAction
from .errors import ConfigurationError
from .logger import BrewLogger, get_logger
from .signals import SignalHandler, get_requested_action
from .utils import split_list


class TrainingState(str, Enum):
    """Lifecycle of a training run."""

    CONFIGURED = "configured"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TrainingResult(BaseModel):
    """Outcome of a training run."""

    state: TrainingState = Field(description="Final state")

    requested_action: SolverAction = Field(
        default=SolverAction.NONE,
        description="Last stop/snapshot request seen by the solver, if any"
    )

    iterations: Optional[int] = Field(
        default=None,
        description="Iteration count reported by the solver"
    )

    device_ids: List[int] = Field(default_factory=list)

    elapsed_seconds: float = Field(default=0.0, ge=0.0)


class TrainingOrchestrator:
    """
    Trains or finetunes a model through the engine's solver.

    Usage:
        orchestrator = TrainingOrchestrator(engine, flags)
        orchestrator.configure()
        result = orchestrator.run()
    """

    def __init__(
        self,
        engine: Engine,
        flags: BrewFlags,
        logger: Optional[BrewLogger] = None
    ):
        """
        Initialize the orchestrator.

        Args:
            engine: Execution engine
            flags: Effective command-line flags
            logger: Logger instance (None = use global logger)
        """
        self.engine = engine
        self.flags = flags
        self.logger = logger or get_logger()

        self.state = TrainingState.CONFIGURED
        self.solver_param: Optional[SolverParameter] = None
        self.devices = DeviceSet()
        self.solver: Optional[Solver] = None
        self._requested = SolverAction.NONE
        self._stop_requested = False
        self._sigint_action = SolverAction.NONE
        self._sighup_action = SolverAction.NONE
        self._configured = False

    def configure(self) -> SolverParameter:
        """
        Validate flags, load the solver description and select devices.

        Returns:
            The solver description with overrides applied

        Raises:
            ConfigurationError: On missing or conflicting flags
        """
        if not self.flags.solver:
            raise ConfigurationError("Need a solver definition to train.")
        if self.flags.snapshot and self.flags.weights:
            raise ConfigurationError(
                "Give a snapshot to resume training or weights to finetune "
                "but not both."
            )

        # Fail on a bad signal policy before anything is built
        self._sigint_action = get_requested_action(self.flags.sigint_effect)
        self._sighup_action = get_requested_action(self.flags.sighup_effect)

        solver_param = load_solver_parameter(self.flags.solver)
        solver_param.train_state.level = self.flags.level
        solver_param.train_state.stages = (
            list(solver_param.train_state.stages) + parse_stages(self.flags.stage)
        )

        resolver = DeviceResolver(self.engine, self.logger)
        self.devices = resolver.resolve(
            self.flags.gpu,
            allow_parallel=True,
            solver_param=solver_param
        )
        if not self.devices.is_cpu:
            solver_param.device_id = self.devices.primary

        self.solver_param = solver_param
        self._configured = True
        return solver_param

    def run(self) -> TrainingResult:
        """
        Construct the solver and optimize.

        Returns:
            TrainingResult with the final state
        """
        if not self._configured:
            self.configure()

        start = time.perf_counter()
        self.state = TrainingState.RUNNING

        with SignalHandler(self._sigint_action, self._sighup_action, self.logger) as handler:
            self.solver = self.engine.create_solver(self.solver_param)
            self.solver.set_action_function(self._watch(handler.get_action_function()))

            if self.flags.snapshot:
                self.logger.info(f"Resuming from {self.flags.snapshot}")
                self.solver.restore(self.flags.snapshot)
            elif self.flags.weights:
                self.copy_layers(self.solver, self.flags.weights)

            self.logger.info("Starting Optimization")
            if len(self.devices) > 1:
                self._run_parallel(self.solver)
            else:
                self.solver.solve()

        self.state = self._final_state()
        if self.state == TrainingState.COMPLETED:
            self.logger.info("Optimization Done.")
        else:
            self.logger.info(f"Optimization stopped early ({self._requested.value}).")

        if not self.devices.is_cpu:
            self.engine.teardown_device(self.devices.primary)

        return TrainingResult(
            state=self.state,
            requested_action=self._requested,
            iterations=getattr(self.solver, "iter", None),
            device_ids=list(self.devices.ids),
            elapsed_seconds=time.perf_counter() - start
        )

    def copy_layers(self, solver: Solver, model_list: str) -> None:
        """
        Finetune from one or more weights files.

        Files are applied in order to the training net and every test net,
        so later files override earlier ones.

        Args:
            solver: Solver whose nets receive the weights
            model_list: Comma-separated weights files
        """
        for model_name in split_list(model_list):
            self.logger.info(f"Finetuning from {model_name}")
            solver.net.copy_trained_layers_from(model_name)
            for test_net in solver.test_nets:
                test_net.copy_trained_layers_from(model_name)

    def _run_parallel(self, solver: Solver) -> None:
        runner = self.engine.parallel_runner(solver)
        if runner is None:
            raise ConfigurationError(
                "Multi-GPU execution not available: the engine provides no parallel runner"
            )
        runner.run(list(self.devices.ids), self.flags.snapshot or None)

    def _final_state(self) -> TrainingState:
        """
        Decide how the run ended from what the solver actually did.

        A snapshot request normally checkpoints and continues, so a request
        alone does not cancel a run. With a known iteration budget the run is
        cancelled only if the solver halted short of it; without one, only a
        stop request cancels.
        """
        if self._requested == SolverAction.NONE:
            return TrainingState.COMPLETED

        budget = self.solver_param.max_iter if self.solver_param else 0
        iterations = getattr(self.solver, "iter", None)
        if budget and iterations is not None:
            halted = iterations < budget
        else:
            halted = self._stop_requested
        return TrainingState.CANCELLED if halted else TrainingState.COMPLETED

    def _watch(self, action_function: ActionFunction) -> ActionFunction:
        """Wrap the polled callback to remember stop/snapshot requests."""

        def poll() -> SolverAction:
            action = action_function()
            if action != SolverAction.NONE:
                self._requested = action
                if action == SolverAction.STOP:
                    self._stop_requested = True
            return action

        return poll
