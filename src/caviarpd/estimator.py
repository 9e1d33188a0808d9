"""
High-level entry point: cluster analysis via random partition distributions.

Usage:
    from scipy.spatial.distance import pdist
    from caviarpd import caviarpd

    result = caviarpd(distance=pdist(X), n_clusters=(2, 4), n_samples=200, seed=1)
    result.estimate       # one label per item
    result.samples        # every EPA draw made during calibration
"""

from __future__ import annotations

from typing import Optional, Sequence, Tuple, Union
import numpy as np

from .algorithms.calibration import CalibrationConfig, CalibrationResult, run_calibration
from .algorithms.engine import Draws, sample_batch
from .algorithms.similarity import SimilarityView, similarity_from_distance
from .config import config
from .utils.logging_config import get_logger

logger = get_logger(__name__)

ClusterWindow = Union[int, Tuple[int, int], Sequence[int]]


def _cluster_window(n_clusters: ClusterWindow) -> Tuple[int, int]:
    values = np.atleast_1d(np.asarray(n_clusters))
    if values.size == 1:
        return int(values[0]), int(values[0])
    if values.size == 2:
        return int(values.min()), int(values.max())
    raise ValueError(f"n_clusters must be one value or a (min, max) pair, got {values.tolist()}")


def caviarpd(
    *,
    distance: Optional[np.ndarray] = None,
    similarity: Optional[np.ndarray] = None,
    n_clusters: Optional[ClusterWindow] = None,
    mass: Optional[Union[float, Sequence[float]]] = None,
    temperature: float = 10.0,
    discount: float = 0.0,
    n_samples: int = 100,
    grid_length: int = 5,
    n0: float = 10.0,
    tol: float = 0.01,
    loss: str = "binder",
    max_n_clusters: int = 0,
    n_runs: int = 16,
    n_lanes: Optional[int] = None,
    backend: Optional[str] = None,
    seed: Optional[int] = None,
    samples_only: bool = False,
) -> Union[CalibrationResult, Draws]:
    """
    Clustering estimate from pairwise distances or similarities.

    Args:
        distance: Square or condensed distance matrix; converted with
            ``exp(-temperature * d)``
        similarity: Square similarity matrix (instead of ``distance``)
        n_clusters: Target cluster count or (min, max) window
        mass: EPA mass, or explicit grid of masses
        temperature: Distance-to-similarity scale
        discount: EPA discount in [0, 1)
        n_samples: Draws per grid mass
        grid_length: Number of grid masses when derived from ``n_clusters``
        n0: Concentration of the loss-weight proposal
        tol: Loss-weight bracket width at which the search stops
        loss: "binder" or "VI"
        max_n_clusters: Cap on the number of clusters in estimates (0 = none)
        n_runs: Runs of the partition search per summary
        n_lanes: Worker lanes; None uses ``CAVIARPD_N_LANES``
        backend: "thread" or "process"; None uses ``CAVIARPD_BACKEND``
        seed: Master seed; None uses ``CAVIARPD_SEED`` (or fresh entropy)
        samples_only: Return the EPA draws for a single ``mass`` only

    Returns:
        CalibrationResult, or Draws when ``samples_only`` is True

    Raises:
        ValueError: On inconsistent or invalid arguments
    """
    if (distance is None) == (similarity is None):
        raise ValueError("must specify exactly one of 'distance' or 'similarity'")
    if distance is not None:
        similarity = similarity_from_distance(distance, temperature)
    view = SimilarityView(similarity)

    runtime = config.runtime
    n_lanes = runtime.n_lanes if n_lanes is None else n_lanes
    backend = runtime.backend if backend is None else backend
    seed = runtime.seed if seed is None else seed
    rng = np.random.default_rng(seed)

    if samples_only:
        if mass is None or np.ndim(mass) != 0:
            raise ValueError("samples_only requires a single 'mass' value")
        return sample_batch(
            n_samples, view, float(mass), discount, n_lanes=n_lanes, rng=rng, backend=backend
        )

    if n_clusters is None and mass is None:
        raise ValueError("must specify 'n_clusters', 'mass', or both")
    if n_clusters is None:
        lo, hi = 1, view.n_items
    else:
        lo, hi = _cluster_window(n_clusters)
    if mass is None:
        masses = None
    else:
        masses = np.atleast_1d(np.asarray(mass, dtype=np.float64)).tolist()
        # a lone mass is broadcast only when a cluster window asks for a sweep
        if len(masses) > 1:
            grid_length = len(masses)
        elif n_clusters is None:
            grid_length = 1

    cfg = CalibrationConfig(
        min_clusters=lo,
        max_clusters=hi,
        masses=masses,
        n_samples=n_samples,
        grid_length=grid_length,
        n0=n0,
        tol=tol,
        loss=loss,
        discount=discount,
        max_n_clusters=max_n_clusters,
        n_runs=n_runs,
        n_lanes=n_lanes,
        backend=backend,
    )
    logger.info(
        "Calibrating %d items: clusters in [%d, %d], %s loss, %d samples per mass",
        view.n_items, lo, hi, loss, n_samples,
    )
    return run_calibration(view, cfg, rng=rng)
