"""
caviarpd - Core Package

Cluster analysis via random partition distributions.

This package provides:
- The Ewens-Pitman attraction (EPA) partition sampler
- Parallel batch sampling with reproducible per-lane RNG streams
- Calibrated point estimation over a grid of masses
"""

__version__ = "0.1.0"

from .estimator import caviarpd
from .algorithms import (
    CalibrationConfig,
    CalibrationResult,
    Draws,
    run_calibration,
    sample_epa,
)

# Explicitly import subpackages to ensure they're discoverable
from . import algorithms
from . import utils

__all__ = [
    "caviarpd",
    "CalibrationConfig",
    "CalibrationResult",
    "Draws",
    "run_calibration",
    "sample_epa",
    "algorithms",
    "utils",
]
