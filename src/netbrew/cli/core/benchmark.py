"""
Layer-by-layer execution benchmark.

Times forward (and, in the TRAIN phase, backward) sweeps over the layers of
an instantiated network. Accelerators run asynchronously, so every timer
start and stop is preceded by a device barrier; with per-layer timing each
layer is bracketed by its own barrier-synchronized timer so that device work
of one layer is never attributed to the next.
"""

from dataclasses import dataclass, field
from typing import Callable, List, Optional
import time

from pydantic import BaseModel, Field
from rich.table import Table

from .config import Phase
from .engine import Engine, Net
from .logger import BrewLogger, get_logger
from .utils import format_ms


Clock = Callable[[], float]


class Timer:
    """
    Wall-clock timer with an optional synchronization barrier.

    The barrier runs before reading the clock on both ``start`` and ``stop``.
    """

    def __init__(
        self,
        clock: Clock = time.perf_counter,
        barrier: Optional[Callable[[], None]] = None
    ):
        self.clock = clock
        self.barrier = barrier
        self._start = 0.0
        self._elapsed = 0.0
        self.running = False

    def start(self) -> None:
        if self.barrier:
            self.barrier()
        self._start = self.clock()
        self.running = True

    def stop(self) -> None:
        if not self.running:
            return
        if self.barrier:
            self.barrier()
        self._elapsed = self.clock() - self._start
        self.running = False

    def seconds(self) -> float:
        if self.running:
            self.stop()
        return self._elapsed

    def milliseconds(self) -> float:
        return self.seconds() * 1e3

    def microseconds(self) -> float:
        return self.seconds() * 1e6


@dataclass
class TimingRecord:
    """Cumulative per-layer forward and backward time in microseconds."""

    layer_names: List[str]
    forward_us: List[float] = field(default_factory=list)
    backward_us: List[float] = field(default_factory=list)

    def __post_init__(self):
        self.reset()

    def reset(self) -> None:
        self.forward_us = [0.0] * len(self.layer_names)
        self.backward_us = [0.0] * len(self.layer_names)

    def add_forward(self, index: int, microseconds: float) -> None:
        self.forward_us[index] += microseconds

    def add_backward(self, index: int, microseconds: float) -> None:
        self.backward_us[index] += microseconds


class LayerTiming(BaseModel):
    """Mean time of one layer per iteration."""

    name: str
    forward_ms: float = Field(ge=0.0)
    backward_ms: float = Field(ge=0.0)


class BenchmarkReport(BaseModel):
    """Averages produced by a benchmark run (all times in milliseconds)."""

    iterations: int
    phase: Phase
    initial_loss: float = 0.0
    layers: List[LayerTiming] = Field(default_factory=list)
    forward_ms: float = 0.0
    backward_ms: float = 0.0
    forward_backward_ms: float = 0.0
    total_ms: float = 0.0
    synchronizations: int = 0


class BenchmarkHarness:
    """
    Benchmarks the execution time of a network.

    The network is assumed to need no external input blobs.
    """

    def __init__(
        self,
        engine: Engine,
        net: Net,
        iterations: int,
        phase: Phase = Phase.TRAIN,
        per_layer: bool = False,
        clock: Clock = time.perf_counter,
        logger: Optional[BrewLogger] = None
    ):
        """
        Initialize the harness.

        Args:
            engine: Engine used for device barriers
            net: Network to benchmark
            iterations: Number of timed rounds
            phase: TRAIN also times backward sweeps
            per_layer: Time every layer individually
            clock: Time source in seconds
            logger: Logger instance (None = use global logger)
        """
        if iterations < 1:
            raise ValueError("iterations must be >= 1")
        self.engine = engine
        self.net = net
        self.iterations = iterations
        self.phase = phase
        self.per_layer = per_layer
        self.clock = clock
        self.logger = logger or get_logger()
        self.synchronizations = 0
        self.record = TimingRecord([layer.name for layer in net.layers])

    def synchronize(self) -> None:
        """Device barrier on the engine's current device."""
        self.engine.synchronize(self.engine.default_device_id)
        self.synchronizations += 1

    def _timer(self) -> Timer:
        return Timer(self.clock, self.synchronize)

    def warm_up(self) -> float:
        """One untimed pass so that lazy allocation happens before timing."""
        self.logger.info("Performing Forward")
        _, initial_loss = self.net.forward()
        self.logger.info(f"Initial loss: {initial_loss:g}")
        if self.phase == Phase.TRAIN:
            self.logger.info("Performing Backward")
            self.net.backward()
        return float(initial_loss)

    def run(self) -> BenchmarkReport:
        """
        Warm up, run all timed rounds and report averages.

        Returns:
            BenchmarkReport
        """
        initial_loss = self.warm_up()

        layers = self.net.layers
        bottom_vecs = self.net.bottom_vecs
        top_vecs = self.net.top_vecs
        bottom_need_backward = self.net.bottom_need_backward

        self.record.reset()
        self.synchronizations = 0

        self.logger.info("*** Benchmark begins ***")
        self.logger.info(f"Testing for {self.iterations} iterations.")

        total_timer = self._timer()
        total_timer.start()
        forward_timer = self._timer()
        backward_timer = self._timer()
        forward_time = 0.0
        backward_time = 0.0

        for j in range(self.iterations):
            iter_timer = Timer(self.clock)
            iter_timer.start()

            forward_timer.start()
            for i, layer in enumerate(layers):
                if self.per_layer:
                    layer_timer = self._timer()
                    layer_timer.start()
                    layer.forward(bottom_vecs[i], top_vecs[i])
                    layer_timer.stop()
                    self.record.add_forward(i, layer_timer.microseconds())
                else:
                    layer.forward(bottom_vecs[i], top_vecs[i])
            forward_timer.stop()
            forward_time += forward_timer.microseconds()

            if self.phase == Phase.TRAIN:
                backward_timer.start()
                for i in range(len(layers) - 1, -1, -1):
                    if self.per_layer:
                        layer_timer = self._timer()
                        layer_timer.start()
                        layers[i].backward(top_vecs[i], bottom_need_backward[i], bottom_vecs[i])
                        layer_timer.stop()
                        self.record.add_backward(i, layer_timer.microseconds())
                    else:
                        layers[i].backward(top_vecs[i], bottom_need_backward[i], bottom_vecs[i])
                backward_timer.stop()
                backward_time += backward_timer.microseconds()

            self.logger.info(
                f"Iteration: {j + 1} forward-backward time: "
                f"{format_ms(iter_timer.microseconds())}."
            )

        total_timer.stop()

        report = BenchmarkReport(
            iterations=self.iterations,
            phase=self.phase,
            initial_loss=initial_loss,
            forward_ms=forward_time / 1000 / self.iterations,
            backward_ms=backward_time / 1000 / self.iterations,
            forward_backward_ms=total_timer.milliseconds() / self.iterations,
            total_ms=total_timer.milliseconds(),
            synchronizations=self.synchronizations
        )
        if self.per_layer:
            report.layers = [
                LayerTiming(
                    name=name,
                    forward_ms=self.record.forward_us[i] / 1000 / self.iterations,
                    backward_ms=self.record.backward_us[i] / 1000 / self.iterations
                )
                for i, name in enumerate(self.record.layer_names)
            ]

        self.log_report(report)
        return report

    def log_report(self, report: BenchmarkReport) -> None:
        """Log per-layer and aggregate averages."""
        if report.layers:
            self.logger.info("Average time per layer: ")
            table = Table(title="Average time per layer", header_style="bold cyan")
            table.add_column("Layer", style="white")
            table.add_column("Forward (ms)", justify="right", style="green")
            table.add_column("Backward (ms)", justify="right", style="green")
            for layer in report.layers:
                self.logger.info(f"{layer.name:>10}\tforward: {layer.forward_ms:.5f} ms.")
                self.logger.info(f"{layer.name:>10}\tbackward: {layer.backward_ms:.5f} ms.")
                table.add_row(layer.name, f"{layer.forward_ms:.5f}", f"{layer.backward_ms:.5f}")
            self.logger.table(table)

        self.logger.info(f"Average Forward pass: {report.forward_ms:.5f} ms.")
        self.logger.info(f"Average Backward pass: {report.backward_ms:.5f} ms.")
        self.logger.info(f"Average Forward-Backward: {report.forward_backward_ms:.5f} ms.")
        self.logger.info(f"Total Time: {report.total_ms:.5f} ms.")
        self.logger.info("*** Benchmark ends ***")
