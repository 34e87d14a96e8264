"""
Utility functions for the netbrew command harness.

Provides helpers for YAML files, flag list parsing, conversion of engine
output blobs to NumPy arrays and human-readable formatting.
"""

from pathlib import Path
from typing import Any, Dict, List, Sequence
import numpy as np
import yaml


def load_yaml_config(path: Path) -> Dict[str, Any]:
    """
    Load YAML configuration file.

    Args:
        path: Path to YAML file

    Returns:
        Configuration dictionary
    """
    with open(path, 'r') as f:
        return yaml.safe_load(f)


def split_list(value: str) -> List[str]:
    """
    Split a comma-separated flag value.

    Args:
        value: Raw flag value (e.g., "a.bin,b.bin")

    Returns:
        Stripped items, empty items removed
    """
    return [item.strip() for item in value.split(',') if item.strip()]


def to_numpy(blob: Any) -> np.ndarray:
    """
    Convert an engine output blob to a host-side float array.

    Accepts NumPy arrays, torch tensors (any device) and nested sequences.

    Args:
        blob: Output blob produced by a forward pass

    Returns:
        Float64 NumPy array
    """
    if hasattr(blob, 'detach'):
        blob = blob.detach()
    if hasattr(blob, 'cpu'):
        blob = blob.cpu()
    if hasattr(blob, 'numpy'):
        blob = blob.numpy()
    return np.asarray(blob, dtype=np.float64)


def format_ms(microseconds: float) -> str:
    """
    Format microseconds as a millisecond string.

    Args:
        microseconds: Duration in microseconds

    Returns:
        Formatted string (e.g., "12.345 ms")
    """
    return f"{microseconds / 1000.0:.3f} ms"


def format_ids(ids: Sequence[int]) -> str:
    """Join device ids for logging, e.g. "0, 2, 5"."""
    return ", ".join(str(i) for i in ids)
