"""
netbrew: command line brew for model-execution engines.

Drives an external model-execution engine through training, scoring
(including detection mAP) and layer-by-layer benchmarking.

This package provides:
- An explicit command registry with a listing fallback
- Device resolution for CPU and accelerator execution
- Training orchestration with signal-driven cooperative cancellation
- Detection evaluation (AP/mAP) over streamed engine output
- Barrier-synchronized per-layer timing
"""

__version__ = "1.0.0"
