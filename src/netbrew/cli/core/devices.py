"""
Device resolution.

Turns the ``--gpu`` flag into an ordered set of device ids and prepares the
engine accordingly: every listed device is registered before the first one
is made current.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .config import Phase, SolverParameter
from .engine import ComputeMode, Engine
from .errors import ConfigurationError
from .logger import BrewLogger, get_logger
from .utils import format_ids, split_list


ALL_DEVICES = "all"


@dataclass(frozen=True)
class DeviceSet:
    """Ordered device ids selected for one invocation; empty means CPU."""

    ids: Tuple[int, ...] = field(default_factory=tuple)

    @property
    def is_cpu(self) -> bool:
        return not self.ids

    @property
    def primary(self) -> Optional[int]:
        return self.ids[0] if self.ids else None

    def describe(self) -> str:
        return format_ids(self.ids) if self.ids else "CPU"

    def __len__(self) -> int:
        return len(self.ids)

    def __iter__(self):
        return iter(self.ids)


def parse_device_ids(spec: str) -> List[int]:
    """
    Parse a comma-separated list of device ids.

    Args:
        spec: e.g. "0,2,5"

    Returns:
        Ids in input order, duplicates kept

    Raises:
        ConfigurationError: On an empty, non-numeric or negative token
    """
    ids = []
    for token in spec.split(','):
        token = token.strip()
        if not token.isdecimal():
            raise ConfigurationError(f"Invalid device id '{token}' in --gpu={spec}")
        ids.append(int(token))
    return ids


class DeviceResolver:
    """Maps the user's device request to engine state."""

    def __init__(self, engine: Engine, logger: Optional[BrewLogger] = None):
        self.engine = engine
        self.logger = logger or get_logger()

    def parse(self, spec: str) -> DeviceSet:
        """
        Parse a device specification without touching engine state.

        ``"all"`` asks the engine for the number of enumerable devices.
        """
        spec = spec.strip()
        if not spec:
            return DeviceSet()

        if spec == ALL_DEVICES:
            if not self.engine.accelerator_available:
                raise ConfigurationError(
                    "Cannot use --gpu=all: no accelerator support available"
                )
            count = self.engine.enumerate_devices(quiet=True)
            return DeviceSet(tuple(range(count)))

        return DeviceSet(tuple(parse_device_ids(spec)))

    def resolve(
        self,
        spec: str,
        allow_parallel: bool = False,
        solver_param: Optional[SolverParameter] = None
    ) -> DeviceSet:
        """
        Resolve the device request and configure the engine.

        Args:
            spec: "", "all" or comma-separated ids
            allow_parallel: Tell the engine how many devices take part in solving
            solver_param: Solver description whose mode/device apply when
                          ``spec`` is empty

        Returns:
            The selected DeviceSet
        """
        if not spec.strip() and solver_param is not None and solver_param.requests_gpu():
            device_id = solver_param.device_id if solver_param.device_id is not None else 0
            spec = str(device_id)
            self.logger.debug(f"Device taken from solver description: {spec}")

        devices = self.parse(spec)

        if devices.is_cpu:
            self.logger.info("Use CPU.")
            self.engine.set_mode(ComputeMode.CPU)
            return devices

        # Register every device before any of them becomes current
        self.engine.set_devices(list(devices.ids))
        self.logger.info(f"Using GPUs {devices.describe()}")
        self.engine.set_device(devices.primary)
        self.engine.set_mode(ComputeMode.GPU)
        if allow_parallel:
            self.engine.set_solver_count(len(devices))

        return devices


def parse_phase(value: str, default: Phase) -> Phase:
    """
    Parse the --phase flag.

    Args:
        value: "", "TRAIN" or "TEST"
        default: Phase used when the flag is empty

    Returns:
        Selected Phase
    """
    if not value:
        return default
    try:
        return Phase(value)
    except ValueError:
        raise ConfigurationError('phase must be "TRAIN" or "TEST"') from None


def parse_stages(value: str) -> List[str]:
    """Parse the --stage flag into a list of stage names."""
    return split_list(value)
