"""
Core module for netbrew.

Contains the harness logic:
- Configuration management (Pydantic models)
- Command registry and device resolution
- Training orchestration and cancellation
- Detection metrics and the benchmark harness
"""

from .config import BrewFlags, SolverParameter, Phase, build_flags, load_solver_parameter
from .engine import Engine, Layer, Net, Solver, TunableLayer, ParallelRunner, SolverAction, load_engine
from .errors import BrewError, FatalError, ConfigurationError, ConsistencyError
from .registry import CommandRegistry
from .devices import DeviceResolver, DeviceSet
from .trainer import TrainingOrchestrator, TrainingState, TrainingResult
from .metrics import compute_ap, DetectionAccumulator, ScoreAccumulator
from .benchmark import BenchmarkHarness, BenchmarkReport, TimingRecord, Timer

__all__ = [
    "BrewFlags",
    "SolverParameter",
    "Phase",
    "build_flags",
    "load_solver_parameter",
    "Engine",
    "Layer",
    "Net",
    "Solver",
    "TunableLayer",
    "ParallelRunner",
    "SolverAction",
    "load_engine",
    "BrewError",
    "FatalError",
    "ConfigurationError",
    "ConsistencyError",
    "CommandRegistry",
    "DeviceResolver",
    "DeviceSet",
    "TrainingOrchestrator",
    "TrainingState",
    "TrainingResult",
    "compute_ap",
    "DetectionAccumulator",
    "ScoreAccumulator",
    "BenchmarkHarness",
    "BenchmarkReport",
    "TimingRecord",
    "Timer",
]
