"""
Interfaces to the model-execution engine.

The harness never computes anything itself. Layers, networks, solvers and
the multi-device runner are provided by an engine plugin selected with
``--engine module:attribute``. The device half of the engine API (enumerate,
select, synchronize) has a concrete implementation on top of ``torch.cuda``
in ``TorchEngine``, which is the default engine.
"""

from abc import ABC, abstractmethod
from enum import Enum
import importlib
from typing import Any, Callable, List, Optional, Sequence, Tuple

import torch

from .errors import ConfigurationError
from .logger import get_logger


class ComputeMode(str, Enum):
    """Where the engine executes layers."""

    CPU = "CPU"
    GPU = "GPU"


class SolverAction(str, Enum):
    """Cancellation request polled by a solver between iterations."""

    NONE = "none"
    STOP = "stop"
    SNAPSHOT = "snapshot"


ActionFunction = Callable[[], SolverAction]


class TunableLayer(ABC):
    """Optional capability of layers that can autotune their kernels."""

    @abstractmethod
    def tune(self, top: Sequence[Any], bottom: Sequence[Any], batch_size: int) -> None:
        """Search kernel configurations for the given blobs."""


class Layer(ABC):
    """
    One layer of an instantiated network.

    Attributes:
        name: Layer name from the model description
    """

    name: str = ""

    @abstractmethod
    def forward(self, bottom: Sequence[Any], top: Sequence[Any]) -> Any:
        """Compute ``top`` from ``bottom``."""

    @abstractmethod
    def backward(
        self,
        top: Sequence[Any],
        propagate_down: Sequence[bool],
        bottom: Sequence[Any]
    ) -> None:
        """Propagate gradients from ``top`` into ``bottom``."""

    def as_tunable(self) -> Optional[TunableLayer]:
        """Return the autotuning capability, or None if unsupported."""
        return None


class Net(ABC):
    """
    An instantiated network.

    Attributes:
        layers: Layers in execution order
        bottom_vecs: Input blobs of each layer
        top_vecs: Output blobs of each layer
        bottom_need_backward: Per layer, which inputs receive gradients
        output_names: Name of each network output
        output_loss_weights: Loss weight of each network output
    """

    layers: List[Layer]
    bottom_vecs: List[List[Any]]
    top_vecs: List[List[Any]]
    bottom_need_backward: List[List[bool]]
    output_names: List[str]
    output_loss_weights: List[float]

    @abstractmethod
    def forward(self) -> Tuple[List[Any], float]:
        """Run a full forward pass, returning (outputs, loss)."""

    @abstractmethod
    def backward(self) -> None:
        """Run a full backward pass."""

    @abstractmethod
    def copy_trained_layers_from(self, path: str) -> None:
        """Copy parameters of layers with matching names from a weights file."""


class Solver(ABC):
    """
    An optimization driver owned by the engine.

    Attributes:
        net: Training network
        test_nets: Evaluation networks
        iter: Completed iterations
    """

    net: Net
    test_nets: List[Net]
    iter: int = 0

    @abstractmethod
    def set_action_function(self, func: ActionFunction) -> None:
        """Install the callback polled at iteration boundaries."""

    @abstractmethod
    def restore(self, path: str) -> None:
        """Restore full solver state from a checkpoint."""

    @abstractmethod
    def solve(self) -> None:
        """Optimize until the iteration budget is spent or a stop is requested."""


class ParallelRunner(ABC):
    """Multi-device collective execution of one solver."""

    @abstractmethod
    def run(self, device_ids: Sequence[int], resume_path: Optional[str] = None) -> None:
        """Train on all devices and return when done."""


class Engine:
    """
    Base engine: device bookkeeping and the runtime factory hooks.

    Subclasses override the device methods for real hardware and the
    ``create_*`` hooks for a network runtime.
    """

    name = "engine"

    def __init__(self):
        self.mode = ComputeMode.CPU
        self.devices: List[int] = []
        self.current_device: Optional[int] = None
        self.solver_count = 1
        self.logger = get_logger()

    # Device API

    @property
    def accelerator_available(self) -> bool:
        return False

    @property
    def default_device_id(self) -> Optional[int]:
        """Device used for synchronization, None in CPU mode."""
        if self.mode == ComputeMode.CPU:
            return None
        return self.current_device

    def enumerate_devices(self, quiet: bool = False) -> int:
        return 0

    def set_devices(self, device_ids: Sequence[int]) -> None:
        self.devices = list(device_ids)

    def set_device(self, device_id: int) -> None:
        self.current_device = device_id

    def set_mode(self, mode: ComputeMode) -> None:
        self.mode = mode

    def set_solver_count(self, count: int) -> None:
        self.solver_count = count

    def synchronize(self, device_id: Optional[int]) -> None:
        pass

    def device_query(self) -> None:
        pass

    def teardown_device(self, device_id: int) -> None:
        pass

    # Runtime API

    def create_net(
        self,
        model: str,
        phase: str,
        level: int = 0,
        stages: Optional[Sequence[str]] = None
    ) -> Net:
        raise ConfigurationError(
            f"Engine '{self.name}' cannot build networks; "
            "select a network runtime with --engine module:attribute"
        )

    def create_solver(self, solver_param: Any) -> Solver:
        raise ConfigurationError(
            f"Engine '{self.name}' cannot build solvers; "
            "select a network runtime with --engine module:attribute"
        )

    def parallel_runner(self, solver: Solver) -> Optional[ParallelRunner]:
        """Return the multi-device runner, or None if this build has none."""
        return None


class TorchEngine(Engine):
    """Device API backed by ``torch.cuda``."""

    name = "torch"

    @property
    def accelerator_available(self) -> bool:
        return torch.cuda.is_available()

    def enumerate_devices(self, quiet: bool = False) -> int:
        """
        Count (and optionally list) CUDA devices.

        Args:
            quiet: Only count, do not log

        Returns:
            Number of enumerable devices
        """
        if not torch.cuda.is_available():
            if not quiet:
                self.logger.info("No CUDA devices available")
            return 0

        count = torch.cuda.device_count()
        if not quiet:
            self.logger.info(f"Total devices: {count}")
            for i in range(count):
                self.logger.info(f"Device id: {i}, name: {torch.cuda.get_device_name(i)}")
        return count

    def set_devices(self, device_ids: Sequence[int]) -> None:
        count = torch.cuda.device_count() if torch.cuda.is_available() else 0
        for device_id in device_ids:
            if device_id >= count:
                raise ConfigurationError(
                    f"Device {device_id} is not available ({count} device(s) found)"
                )
        super().set_devices(device_ids)

    def set_device(self, device_id: int) -> None:
        torch.cuda.set_device(device_id)
        super().set_device(device_id)

    def synchronize(self, device_id: Optional[int]) -> None:
        if device_id is not None and torch.cuda.is_available():
            torch.cuda.synchronize(device_id)

    def device_query(self) -> None:
        """Log diagnostic information for the current device."""
        device_id = self.current_device if self.current_device is not None else 0
        props = torch.cuda.get_device_properties(device_id)
        self.logger.info(f"Device id:                     {device_id}")
        self.logger.info(f"Name:                          {props.name}")
        self.logger.info(f"Compute capability:            {props.major}.{props.minor}")
        self.logger.info(
            f"Total global memory:           {props.total_memory / (1024 ** 3):.2f} GB"
        )
        self.logger.info(f"Number of multiprocessors:     {props.multi_processor_count}")
        self.logger.info(f"CUDA version:                  {torch.version.cuda}")

    def teardown_device(self, device_id: int) -> None:
        if torch.cuda.is_available():
            torch.cuda.empty_cache()


def load_engine(reference: str) -> Engine:
    """
    Instantiate the engine named by a 'module:attribute' reference.

    The attribute may be an ``Engine`` subclass, a zero-argument factory or
    an ``Engine`` instance.

    Args:
        reference: e.g. "netbrew.cli.core.engine:TorchEngine"

    Returns:
        Engine instance

    Raises:
        ConfigurationError: If the reference cannot be resolved
    """
    module_name, _, attribute = reference.partition(":")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import engine module '{module_name}': {e}") from e

    target = getattr(module, attribute, None)
    if target is None:
        raise ConfigurationError(f"Engine module '{module_name}' has no attribute '{attribute}'")

    engine = target if isinstance(target, Engine) else target()
    if not isinstance(engine, Engine):
        raise ConfigurationError(f"'{reference}' did not produce an Engine")
    return engine
