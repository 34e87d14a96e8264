"""
Configuration models using Pydantic for type validation and serialization.

Two families of models live here:

- ``BrewFlags``: every command-line flag of the harness, with defaults and
  validators. Values are layered: model defaults, then an optional YAML file,
  then explicit command-line flags.
- ``SolverParameter``: the solver description handed to the execution engine.
  The harness only reads the handful of fields it acts on (mode, device,
  train state); every other key is preserved for the engine.
"""

from enum import Enum
from typing import Literal, Optional, Dict, Any, List
from pathlib import Path
from pydantic import BaseModel, Field, field_validator, ConfigDict, ValidationError
import yaml

from .errors import ConfigurationError
from .utils import load_yaml_config


APVersion = Literal['11point', 'MaxIntegral', 'Integral']

DEFAULT_ENGINE = "netbrew.cli.core.engine:TorchEngine"


class Phase(str, Enum):
    """Network phase."""

    TRAIN = "TRAIN"
    TEST = "TEST"


class SolverMode(str, Enum):
    """Compute mode requested by a solver description."""

    CPU = "CPU"
    GPU = "GPU"


class TrainState(BaseModel):
    """Level and stages used to filter layers of the training network."""

    level: int = Field(default=0, ge=0, description="Network level")
    stages: List[str] = Field(default_factory=list, description="Network stages")

    model_config = ConfigDict(validate_assignment=True)


class SolverParameter(BaseModel):
    """
    Solver description.

    Unknown keys are kept (``extra='allow'``) and passed through to the
    engine untouched.
    """

    net: Optional[str] = Field(
        default=None,
        description="Model description used for training and testing"
    )

    solver_mode: SolverMode = Field(
        default=SolverMode.CPU,
        description="Requested compute mode"
    )

    device_id: Optional[int] = Field(
        default=None,
        ge=0,
        description="Device requested by the description"
    )

    max_iter: int = Field(
        default=0,
        ge=0,
        description="Iteration budget"
    )

    snapshot: int = Field(
        default=0,
        ge=0,
        description="Checkpoint interval in iterations (0 = never)"
    )

    snapshot_prefix: Optional[str] = Field(
        default=None,
        description="Path prefix for checkpoints"
    )

    train_state: TrainState = Field(default_factory=TrainState)

    model_config = ConfigDict(validate_assignment=True, extra='allow')

    def requests_gpu(self) -> bool:
        """True when the description asks for accelerator execution."""
        return self.solver_mode == SolverMode.GPU


class BrewFlags(BaseModel):
    """
    All flags understood by the command harness.

    Field names follow the command-line flags (dashes become underscores).
    Phase and signal-effect values are only checked by the commands that
    use them, so a bad training policy does not block scoring or timing.
    """

    gpu: str = Field(
        default="",
        description="Device ids separated by ',' or 'all'; empty means CPU"
    )

    solver: str = Field(default="", description="Solver description file")

    model: str = Field(default="", description="Model description file")

    phase: str = Field(
        default="",
        description="Network phase override (checked by 'time', the only user)"
    )

    level: int = Field(default=0, ge=0, description="Network level")

    stage: str = Field(default="", description="Network stages separated by ','")

    snapshot: str = Field(default="", description="Solver state to resume from")

    weights: str = Field(
        default="",
        description="Pretrained weights separated by ','"
    )

    iterations: int = Field(
        default=50,
        ge=1,
        description="Number of iterations to run"
    )

    sigint_effect: str = Field(
        default='stop',
        description="Action on SIGINT: stop, snapshot or none"
    )

    sighup_effect: str = Field(
        default='snapshot',
        description="Action on SIGHUP: stop, snapshot or none"
    )

    lt: bool = Field(default=False, description="Per-layer timings")

    detection: bool = Field(default=False, description="Detection mAP scoring")

    ap: APVersion = Field(default='11point', description="AP interpolation method")

    engine: str = Field(
        default=DEFAULT_ENGINE,
        description="Engine factory as 'module:attribute'"
    )

    @field_validator('gpu', 'solver', 'model', 'phase', 'stage', 'snapshot', 'weights', mode='before')
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        """YAML ``null`` means 'not set'."""
        return "" if v is None else v

    @field_validator('engine')
    @classmethod
    def validate_engine_reference(cls, v: str) -> str:
        """Engine references must look like 'module:attribute'."""
        module, _, attribute = v.partition(":")
        if not module or not attribute:
            raise ValueError(f"engine must be 'module:attribute', got {v!r}")
        return v

    model_config = ConfigDict(validate_assignment=True, extra='forbid')


def build_flags(
    overrides: Dict[str, Any],
    config_path: Optional[Path] = None,
    defaults: Optional[Dict[str, Any]] = None
) -> BrewFlags:
    """
    Build the effective flag set.

    Precedence, lowest first: model defaults, ``defaults`` (environment),
    the YAML file, ``overrides``.

    Args:
        overrides: Flags given explicitly on the command line
        config_path: Optional YAML file with flag values
        defaults: Values taken from the environment

    Returns:
        Validated BrewFlags

    Raises:
        ConfigurationError: If the file cannot be read or a value is invalid
    """
    values: Dict[str, Any] = dict(defaults or {})

    if config_path is not None:
        if not config_path.exists():
            raise ConfigurationError(f"Config file not found: {config_path}")
        try:
            file_values = load_yaml_config(config_path) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Could not parse {config_path}: {e}") from e
        if not isinstance(file_values, dict):
            raise ConfigurationError(f"{config_path} must contain a mapping")
        values.update({k.replace('-', '_'): v for k, v in file_values.items()})

    values.update(overrides)

    try:
        return BrewFlags(**values)
    except ValidationError as e:
        raise ConfigurationError(_format_validation_error(e)) from e


def load_solver_parameter(path: str) -> SolverParameter:
    """
    Read a solver description or die.

    Args:
        path: Path to the YAML solver description

    Returns:
        Validated SolverParameter

    Raises:
        ConfigurationError: On a missing file, invalid YAML or invalid values
    """
    solver_path = Path(path)
    if not solver_path.is_file():
        raise ConfigurationError(f"Solver description not found: {path}")

    try:
        raw = load_yaml_config(solver_path) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse solver description {path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigurationError(f"Solver description {path} must be a mapping")

    try:
        return SolverParameter(**raw)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid solver description {path}: {_format_validation_error(e)}"
        ) from e


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item.get("loc", ())) or "value"
        parts.append(f"{location}: {item.get('msg', 'invalid')}")
    return "; ".join(parts)
