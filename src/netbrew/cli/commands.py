"""
Commands of the netbrew harness.

    netbrew <command> <args>

To add a command, add a method returning an int status to ``BrewCommands``
and register it in ``register_commands``.
"""

from typing import Callable, List, Optional

from .core.benchmark import BenchmarkHarness
from .core.config import BrewFlags, Phase
from .core.devices import DeviceResolver, DeviceSet, parse_phase, parse_stages
from .core.engine import Engine, Net, SolverAction, load_engine
from .core.errors import ConfigurationError
from .core.logger import BrewLogger, get_logger
from .core.metrics import DetectionAccumulator, ScoreAccumulator
from .core.registry import CommandRegistry
from .core.signals import SignalHandler, get_requested_action
from .core.trainer import TrainingOrchestrator
from .core.utils import split_list


EngineFactory = Callable[[], Engine]


class BrewCommands:
    """Command handlers sharing one flag set and one lazily built engine."""

    def __init__(
        self,
        flags: BrewFlags,
        registry: CommandRegistry,
        engine_factory: Optional[EngineFactory] = None,
        logger: Optional[BrewLogger] = None
    ):
        self.flags = flags
        self.registry = registry
        self.logger = logger or get_logger()
        self._engine_factory = engine_factory or (lambda: load_engine(flags.engine))
        self._engine: Optional[Engine] = None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self._engine = self._engine_factory()
            self.logger.debug(f"Engine: {self._engine.name}")
        return self._engine

    def _teardown(self, devices: DeviceSet) -> None:
        if not devices.is_cpu:
            self.engine.teardown_device(devices.primary)

    def actions(self) -> int:
        """List available commands."""
        return self.registry.list_actions()

    def device_query(self) -> int:
        """Show diagnostic information for devices, or enumerate them all."""
        gpu = self.flags.gpu.strip()
        if not gpu or gpu == "all":
            self.engine.enumerate_devices()
            return 0

        self.logger.info(f"Querying GPUs {gpu}")
        devices = DeviceResolver(self.engine, self.logger).parse(gpu)
        self.engine.set_devices(list(devices.ids))
        for device_id in devices:
            self.engine.set_device(device_id)
            self.engine.device_query()
        return 0

    def train(self) -> int:
        """Train or finetune a model."""
        orchestrator = TrainingOrchestrator(self.engine, self.flags, self.logger)
        orchestrator.configure()
        result = orchestrator.run()
        self.logger.debug(f"Training result: {result.model_dump()}")
        return 0

    def test(self) -> int:
        """Score a model."""
        if not self.flags.model:
            raise ConfigurationError("Need a model definition to score.")
        if not self.flags.weights:
            raise ConfigurationError("Need model weights to score.")
        stages = parse_stages(self.flags.stage)

        devices = DeviceResolver(self.engine, self.logger).resolve(self.flags.gpu)
        net = self.engine.create_net(self.flags.model, Phase.TEST, self.flags.level, stages)
        for weights in split_list(self.flags.weights):
            net.copy_trained_layers_from(weights)
        self.logger.info(f"Running for {self.flags.iterations} iterations.")

        if self.flags.detection:
            self._test_detection(net)
        else:
            self._test_scores(net)

        self._teardown(devices)
        return 0

    def _test_detection(self, net: Net) -> None:
        accumulator = DetectionAccumulator(self.logger)
        for _ in range(self.flags.iterations):
            outputs, _ = net.forward()
            accumulator.add_batch(outputs)

        for result in accumulator.evaluate(self.flags.ap, net.output_names):
            self.logger.info(
                f"    Test net output #{result.index}: {result.name} = {result.mean_ap:g}"
            )

    def _test_scores(self, net: Net) -> None:
        accumulator = ScoreAccumulator(net.output_names, net.output_loss_weights, self.logger)
        for _ in range(self.flags.iterations):
            outputs, loss = net.forward()
            accumulator.add_batch(outputs, loss)

        self.logger.info(f"Loss: {accumulator.mean_loss():g}")
        for result in accumulator.results():
            self.logger.info(result.describe())

    def time(self) -> int:
        """Benchmark the execution time of a model."""
        if not self.flags.model:
            raise ConfigurationError("Need a model definition to time.")
        phase = parse_phase(self.flags.phase, Phase.TRAIN)
        stages = parse_stages(self.flags.stage)

        devices = DeviceResolver(self.engine, self.logger).resolve(self.flags.gpu)
        net = self.engine.create_net(self.flags.model, phase, self.flags.level, stages)

        harness = BenchmarkHarness(
            self.engine,
            net,
            iterations=self.flags.iterations,
            phase=phase,
            per_layer=self.flags.lt,
            logger=self.logger
        )
        harness.run()

        self._teardown(devices)
        return 0

    def autotune(self) -> int:
        """Autotune every layer of a model that supports it."""
        if not self.flags.model:
            raise ConfigurationError("Need a model definition to tune.")

        handler = SignalHandler(
            get_requested_action(self.flags.sigint_effect),
            get_requested_action(self.flags.sighup_effect),
            self.logger
        )
        devices = DeviceResolver(self.engine, self.logger).resolve(
            self.flags.gpu, allow_parallel=True
        )
        net = self.engine.create_net(self.flags.model, Phase.TRAIN)

        tuned = 0
        with handler:
            for i, layer in enumerate(net.layers):
                action = handler.check_for_signals()
                if action == SolverAction.STOP:
                    self.logger.info("Tuning stopped early.")
                    break
                if action == SolverAction.SNAPSHOT:
                    # No solver state exists while tuning
                    self.logger.warning("Snapshot requested while tuning, ignored.")
                tunable = layer.as_tunable()
                if tunable is None:
                    continue
                top = net.top_vecs[i]
                bottom = net.bottom_vecs[i]
                self.logger.info(f"Tuning layer {layer.name}")
                tunable.tune(top, bottom, _batch_size(top))
                tuned += 1

        self.logger.info(f"Tuned {tuned} of {len(net.layers)} layers.")
        self._teardown(devices)
        return 0


def _batch_size(blobs: List[object]) -> int:
    shape = getattr(blobs[0], "shape", None) if blobs else None
    return int(shape[0]) if shape else 1


def register_commands(
    registry: CommandRegistry,
    flags: BrewFlags,
    engine_factory: Optional[EngineFactory] = None,
    logger: Optional[BrewLogger] = None
) -> BrewCommands:
    """
    Populate the registry with every command.

    Args:
        registry: Registry to populate
        flags: Effective flags shared by all commands
        engine_factory: Engine constructor (None = load from --engine)
        logger: Logger instance

    Returns:
        The BrewCommands instance backing the handlers
    """
    commands = BrewCommands(flags, registry, engine_factory, logger)
    registry.register("actions", commands.actions)
    registry.register("device_query", commands.device_query)
    registry.register("train", commands.train)
    registry.register("test", commands.test)
    registry.register("time", commands.time)
    registry.register("autotune", commands.autotune)
    return commands
