"""
Mass selection by silhouette width.

For each candidate mass, draw a batch, summarize it, and score the estimate
by its average silhouette width under the distance ``1 - psm``. The mass with
the widest silhouette wins.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence
import numpy as np

from .engine import sample_batch
from .losses import check_loss
from .similarity import SimilarityView
from .summarization import Summarizer, minimize_expected_loss
from ..utils.logging_config import get_logger

logger = get_logger(__name__)


def silhouette_score_precomputed(labels: np.ndarray, dist: np.ndarray) -> float:
    """
    Mean silhouette width for a precomputed distance matrix.

    Items in singleton clusters score 0. A single-cluster labelling has no
    silhouette and returns NaN.

    Args:
        labels: Cluster assignments
        dist: (n_items, n_items) distance matrix

    Returns:
        Mean silhouette width in [-1, 1], or NaN for one cluster
    """
    labels = np.asarray(labels)
    n = labels.size
    unique = np.unique(labels)
    if unique.size < 2:
        return float("nan")

    onehot = (labels[:, None] == unique[None, :]).astype(np.float64)
    sizes = onehot.sum(axis=0)
    totals = dist @ onehot  # (n, k) summed distance to each cluster
    own = np.searchsorted(unique, labels)

    sil = np.zeros(n, dtype=np.float64)
    for i in range(n):
        own_size = sizes[own[i]]
        if own_size <= 1:
            continue
        a = totals[i, own[i]] / (own_size - 1)
        other = np.delete(totals[i] / sizes, own[i])
        b = other.min()
        denom = max(a, b)
        sil[i] = (b - a) / denom if denom > 0 else 0.0
    return float(np.mean(sil))


@dataclass
class MassScore:
    mass: float
    n_clusters: int
    silhouette: float


@dataclass
class MassSelection:
    """Best mass and the score of every candidate."""

    best: float
    scores: List[MassScore] = field(default_factory=list)


def select_mass_by_silhouette(
    similarity,
    masses: Sequence[float],
    *,
    n_samples: int = 100,
    discount: float = 0.0,
    loss: str = "binder",
    max_n_clusters: int = 0,
    n_runs: int = 16,
    n_lanes: int = 0,
    rng: np.random.Generator,
    summarizer: Summarizer = minimize_expected_loss,
    backend: str = "thread",
) -> MassSelection:
    """
    Pick the mass whose estimate has the widest average silhouette.

    If every estimate is a single cluster the last mass is returned.

    Args:
        similarity: (n, n) similarity matrix or SimilarityView
        masses: Candidate masses, in the order they are tried
        n_samples: Draws per mass
        discount: EPA discount
        loss: "binder" or "VI"
        max_n_clusters: Cluster cap for the summarizer (0 = none)
        n_runs: Summarizer runs
        n_lanes: Worker lanes (0 = all cores)
        rng: Master generator
        summarizer: Loss-minimizing partition search
        backend: "thread" or "process"

    Returns:
        MassSelection
    """
    loss = check_loss(loss)
    masses = [float(m) for m in masses]
    if not masses:
        raise ValueError("masses must contain at least one value")
    if not isinstance(similarity, SimilarityView):
        similarity = SimilarityView(similarity)

    scores: List[MassScore] = []
    for mass in masses:
        draws = sample_batch(
            n_samples, similarity, mass, discount, n_lanes=n_lanes, rng=rng, backend=backend
        )
        fit = summarizer(draws, loss, 1.0, max_size=max_n_clusters, n_runs=n_runs, rng=rng)
        sil = silhouette_score_precomputed(fit.labels, 1.0 - draws.psm())
        scores.append(MassScore(mass=mass, n_clusters=fit.n_clusters, silhouette=sil))
        logger.debug("mass=%.4g clusters=%d silhouette=%.4f", mass, fit.n_clusters, sil)

    widths = np.array([s.silhouette for s in scores])
    if np.all(np.isnan(widths)):
        best: Optional[float] = masses[-1]
    else:
        best = masses[int(np.nanargmax(widths))]
    return MassSelection(best=best, scores=scores)
