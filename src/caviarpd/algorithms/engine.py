"""
Parallel batch sampling of EPA partitions.

A batch of draws is split across worker lanes. Every lane gets its own RNG,
seeded from a value taken from the master RNG before any lane starts, and its
own contiguous block of the output buffer, so the result depends only on the
master seed, the lane count and the draw count.
"""

from __future__ import annotations

import math
import os
from concurrent.futures import (
    FIRST_EXCEPTION,
    ProcessPoolExecutor,
    ThreadPoolExecutor,
    wait,
)
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Union
import numpy as np

from .epa import EpaParameters, check_mass_discount, sample_epa_partition
from .losses import psm as _psm
from .partition import canonicalize
from .permutation import Permutation
from .similarity import SimilarityView
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

LABEL_DTYPE = np.int32
BACKENDS = ("thread", "process")


class BatchSamplingError(RuntimeError):
    """A worker lane failed; the batch produced no usable output."""


@dataclass
class Draws:
    """A batch of partitions over the same items, one canonical row per draw."""

    labels: np.ndarray
    n_clusters: np.ndarray

    def __post_init__(self):
        if self.labels.ndim != 2:
            raise ValueError(f"labels must be 2-D, got shape {self.labels.shape}")
        if self.n_clusters.shape != (self.labels.shape[0],):
            raise ValueError(
                f"n_clusters has shape {self.n_clusters.shape}, expected ({self.labels.shape[0]},)"
            )

    @classmethod
    def from_labels(cls, labels: np.ndarray) -> "Draws":
        """Canonicalize arbitrary label rows and count their clusters."""
        labels = np.atleast_2d(np.asarray(labels))
        canonical = np.stack([canonicalize(row) for row in labels]).astype(LABEL_DTYPE)
        n_clusters = (canonical.max(axis=1) + 1).astype(LABEL_DTYPE)
        return cls(labels=canonical, n_clusters=n_clusters)

    @property
    def n_draws(self) -> int:
        return int(self.labels.shape[0])

    @property
    def n_items(self) -> int:
        return int(self.labels.shape[1])

    def psm(self) -> np.ndarray:
        """Posterior similarity matrix (pairwise co-clustering frequency)."""
        return _psm(self.labels)

    def cluster_count_histogram(self) -> Dict[int, int]:
        counts, freq = np.unique(self.n_clusters, return_counts=True)
        return {int(k): int(f) for k, f in zip(counts, freq)}

    def one_based(self) -> np.ndarray:
        """Labels shifted to 1..k, the form expected by R-style tooling."""
        return self.labels.astype(np.int64) + 1


def resolve_n_lanes(n_lanes: int) -> int:
    """Map 0 to the detected core count."""
    if n_lanes < 0:
        raise ValueError(f"n_lanes must be >= 0, got {n_lanes}")
    if n_lanes == 0:
        return os.cpu_count() or 1
    return n_lanes


def plan_lanes(n_draws: int, n_lanes: int) -> List[Tuple[int, int]]:
    """
    Split ``n_draws`` into contiguous per-lane blocks.

    Each lane gets ``ceil(n_draws / n_lanes)`` draws until the total is
    reached; trailing lanes may get fewer or none.

    Returns:
        List of (start, count), one per lane, in lane order
    """
    quota = math.ceil(n_draws / n_lanes)
    plan = []
    for lane in range(n_lanes):
        start = min(lane * quota, n_draws)
        plan.append((start, min(quota, n_draws - start)))
    return plan


def _run_lane(
    similarity: Union[SimilarityView, np.ndarray],
    mass: float,
    discount: float,
    seed: int,
    n_draws: int,
    out_labels: Optional[np.ndarray] = None,
    out_counts: Optional[np.ndarray] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """Draw ``n_draws`` partitions into ``out_labels``/``out_counts``."""
    if not isinstance(similarity, SimilarityView):
        similarity = SimilarityView(similarity)
    n_items = similarity.n_items
    if out_labels is None:
        out_labels = np.empty((n_draws, n_items), dtype=LABEL_DTYPE)
    if out_counts is None:
        out_counts = np.empty(n_draws, dtype=LABEL_DTYPE)

    rng = np.random.default_rng(seed)
    params = EpaParameters(similarity, Permutation.natural(n_items), mass, discount)
    for d in range(n_draws):
        params.shuffle_permutation(rng)
        builder = sample_epa_partition(params, rng)
        builder.relabel_into(out_labels[d])
        out_counts[d] = builder.n_clusters
    return out_labels, out_counts


def sample_batch(
    n_draws: int,
    similarity: Union[SimilarityView, np.ndarray],
    mass: float,
    discount: float = 0.0,
    *,
    n_lanes: int = 0,
    rng: np.random.Generator,
    backend: str = "thread",
) -> Draws:
    """
    Draw a batch of EPA partitions across parallel lanes.

    Args:
        n_draws: Number of partitions to draw (exactly this many are returned)
        similarity: (n, n) similarity matrix or SimilarityView
        mass: EPA mass (concentration)
        discount: EPA discount in [0, 1)
        n_lanes: Worker lanes; 0 uses the detected core count
        rng: Master generator; only used here to derive one seed per lane
        backend: "thread" (lanes write into the shared buffer) or "process"
            (lanes return their block, which is copied into place)

    Returns:
        Draws with ``n_draws`` canonical label rows

    Raises:
        ValueError: On invalid configuration (before any sampling)
        BatchSamplingError: If any lane fails
    """
    if n_draws < 1:
        raise ValueError(f"n_draws must be >= 1, got {n_draws}")
    if backend not in BACKENDS:
        raise ValueError(f"backend must be one of {BACKENDS}, got '{backend}'")
    if not isinstance(similarity, SimilarityView):
        similarity = SimilarityView(similarity)
    check_mass_discount(mass, discount)
    n_lanes = resolve_n_lanes(n_lanes)
    n_items = similarity.n_items

    plan = plan_lanes(n_draws, n_lanes)
    seeds = rng.integers(0, 2**63 - 1, size=n_lanes, dtype=np.int64)

    labels = np.empty((n_draws, n_items), dtype=LABEL_DTYPE)
    n_clusters = np.empty(n_draws, dtype=LABEL_DTYPE)

    logger.debug(
        "Sampling %d draws of %d items (mass=%.4g, discount=%.4g) on %d %s lanes",
        n_draws, n_items, mass, discount, n_lanes, backend,
    )

    active = [(lane, start, count) for lane, (start, count) in enumerate(plan) if count > 0]
    executor_cls = ThreadPoolExecutor if backend == "thread" else ProcessPoolExecutor

    with executor_cls(max_workers=len(active)) as executor:
        futures = []
        for lane, start, count in active:
            seed = int(seeds[lane])
            if backend == "thread":
                future = executor.submit(
                    _run_lane, similarity, mass, discount, seed, count,
                    labels[start:start + count], n_clusters[start:start + count],
                )
            else:
                future = executor.submit(
                    _run_lane, similarity.as_array(), mass, discount, seed, count,
                )
            futures.append(future)

        _, pending = wait(futures, return_when=FIRST_EXCEPTION)
        for (lane, _, _), future in zip(active, futures):
            if future.done() and not future.cancelled() and future.exception() is not None:
                for other in pending:
                    other.cancel()
                exc = future.exception()
                logger.error("Sampling lane %d failed: %s", lane, exc)
                raise BatchSamplingError(f"sampling lane {lane} failed: {exc}") from exc

        if backend == "process":
            for (_, start, count), future in zip(active, futures):
                block_labels, block_counts = future.result()
                labels[start:start + count] = block_labels
                n_clusters[start:start + count] = block_counts

    logger.debug("Finished batch: mean cluster count %.3f", float(n_clusters.mean()))
    return Draws(labels=labels, n_clusters=n_clusters)


def sample_epa(
    n_samples: int,
    similarity: Union[SimilarityView, np.ndarray],
    mass: float,
    discount: float = 0.0,
    *,
    n_lanes: int = 0,
    seed: Optional[int] = None,
    backend: str = "thread",
    one_based: bool = False,
) -> np.ndarray:
    """
    Draw ``n_samples`` EPA partitions and return the label matrix.

    Args:
        n_samples: Number of draws
        similarity: (n, n) similarity matrix
        mass: EPA mass
        discount: EPA discount
        n_lanes: Worker lanes (0 = all cores)
        seed: Master seed; None draws fresh OS entropy
        backend: "thread" or "process"
        one_based: Return labels 1..k instead of 0..k-1

    Returns:
        (n_samples, n_items) integer array; row i holds draw i
    """
    rng = np.random.default_rng(seed)
    draws = sample_batch(
        n_samples, similarity, mass, discount, n_lanes=n_lanes, rng=rng, backend=backend
    )
    return draws.one_based() if one_based else draws.labels
