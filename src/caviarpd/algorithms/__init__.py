"""
Algorithm Core Library - EPA sampling and calibrated partition estimation.

This module provides the numerical core with minimal dependencies, separate
from the high-level estimator. Designed for reuse and testing.
"""

from .similarity import SimilarityView, similarity_from_distance, jaccard_distance
from .permutation import Permutation
from .partition import PartitionBuilder, canonicalize
from .epa import (
    EpaParameters,
    sample_epa_partition,
    epa_log_probability,
    weighted_choice,
)
from .engine import (
    BatchSamplingError,
    Draws,
    plan_lanes,
    sample_batch,
    sample_epa,
)
from .masses import (
    MassGrid,
    build_mass_grid,
    expected_number_of_clusters,
    variance_number_of_clusters,
    find_mass,
    mass_bounds,
)
from .losses import (
    adjusted_rand_index,
    binder_loss,
    vi_loss,
    expected_loss,
    loss_table,
    psm,
)
from .summarization import SummaryFit, Summarizer, minimize_expected_loss
from .calibration import (
    CalibrationConfig,
    CalibrationResult,
    BisectionOutcome,
    bisect_loss_weight,
    run_calibration,
)
from .selection import MassSelection, select_mass_by_silhouette, silhouette_score_precomputed

__all__ = [
    # Similarity and sampler building blocks
    "SimilarityView",
    "similarity_from_distance",
    "jaccard_distance",
    "Permutation",
    "PartitionBuilder",
    "canonicalize",
    "EpaParameters",
    "sample_epa_partition",
    "epa_log_probability",
    "weighted_choice",
    # Batch sampling
    "BatchSamplingError",
    "Draws",
    "plan_lanes",
    "sample_batch",
    "sample_epa",
    # Mass grid
    "MassGrid",
    "build_mass_grid",
    "expected_number_of_clusters",
    "variance_number_of_clusters",
    "find_mass",
    "mass_bounds",
    # Losses and summarization
    "adjusted_rand_index",
    "binder_loss",
    "vi_loss",
    "expected_loss",
    "loss_table",
    "psm",
    "SummaryFit",
    "Summarizer",
    "minimize_expected_loss",
    # Calibration
    "CalibrationConfig",
    "CalibrationResult",
    "BisectionOutcome",
    "bisect_loss_weight",
    "run_calibration",
    "MassSelection",
    "select_mass_by_silhouette",
    "silhouette_score_precomputed",
]
