"""
Calibrated point estimation over a grid of masses.

For every mass on the grid a batch of EPA draws is summarized repeatedly,
searching over the loss weight ``a`` until the estimate's cluster count lands
inside the requested window (or the search bracket collapses). The accepted
estimates, one per mass, are then summarized once more to give the final
estimate.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple
import numpy as np

from .engine import BACKENDS, Draws, LABEL_DTYPE, sample_batch
from .losses import check_loss
from .masses import MassGrid, build_mass_grid
from .similarity import SimilarityView
from .summarization import Summarizer, SummaryFit, minimize_expected_loss
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

WEIGHT_UPPER = 2.0
# keeps both Beta shape parameters positive
_PREVIOUS_EPS = 1e-9


@dataclass
class CalibrationConfig:
    """Configuration for calibrated estimation."""

    min_clusters: float = 2
    max_clusters: float = 2
    masses: Optional[Sequence[float]] = None  # explicit grid; None = derive from window
    n_samples: int = 100
    grid_length: int = 5
    n0: float = 10.0
    tol: float = 0.01
    loss: str = "binder"  # "binder" or "VI"
    discount: float = 0.0
    max_n_clusters: int = 0  # cap on clusters in each estimate, 0 = none
    n_runs: int = 16
    n_lanes: int = 0  # 0 = all cores
    backend: str = "thread"  # "thread" or "process"

    def validate(self) -> None:
        """
        Raises:
            ValueError: If any setting is out of range
        """
        if self.n_samples < 1:
            raise ValueError(f"n_samples must be >= 1, got {self.n_samples}")
        if min(self.min_clusters, self.max_clusters) < 1:
            raise ValueError(
                f"min_clusters and max_clusters must be >= 1, got "
                f"({self.min_clusters}, {self.max_clusters})"
            )
        if not self.n0 > 0:
            raise ValueError(f"n0 must be > 0, got {self.n0}")
        if not self.tol > 0:
            raise ValueError(f"tol must be > 0, got {self.tol}")
        check_loss(self.loss)
        if not 0.0 <= self.discount < 1.0:
            raise ValueError(f"discount must be in [0, 1), got {self.discount}")
        if self.max_n_clusters < 0:
            raise ValueError(f"max_n_clusters must be >= 0, got {self.max_n_clusters}")
        if self.n_runs < 1:
            raise ValueError(f"n_runs must be >= 1, got {self.n_runs}")
        if self.n_lanes < 0:
            raise ValueError(f"n_lanes must be >= 0, got {self.n_lanes}")
        if self.backend not in BACKENDS:
            raise ValueError(f"backend must be one of {BACKENDS}, got '{self.backend}'")

    @property
    def window(self) -> Tuple[float, float]:
        return tuple(sorted((float(self.min_clusters), float(self.max_clusters))))


@dataclass
class BisectionStep:
    """One summarizer evaluation during the loss-weight search."""

    lower: float
    upper: float
    a: float
    n_clusters: int


@dataclass
class BisectionOutcome:
    """Accepted estimate for one grid mass."""

    fit: SummaryFit
    a: float
    steps: List[BisectionStep] = field(default_factory=list)
    converged_by_width: bool = False

    @property
    def n_evaluations(self) -> int:
        return len(self.steps)


@dataclass
class CalibrationResult:
    """Results from calibrated estimation."""

    estimate: np.ndarray
    samples: np.ndarray
    masses: np.ndarray
    candidates: Draws
    loss_weights: np.ndarray
    outcomes: List[BisectionOutcome] = field(default_factory=list)
    grid: Optional[MassGrid] = None

    @property
    def n_clusters(self) -> int:
        return int(self.estimate.max()) + 1


def max_evaluations(tol: float) -> int:
    """
    Upper bound on summarizer calls per grid mass for a given ``tol``.

    The first move only cuts ``[0, 2]`` at the Beta proposal, which can leave
    the bracket almost as wide as before; later moves halve it. That costs
    one call more than ``ceil(log2(2 / tol))``, plus one for the final
    evaluation at the narrow bracket.
    """
    return max(math.ceil(math.log2(WEIGHT_UPPER / tol)), 0) + 2


def bisect_loss_weight(
    draws: Draws,
    previous: float,
    min_clusters: float,
    max_clusters: float,
    *,
    n0: float,
    tol: float,
    loss: str,
    rng: np.random.Generator,
    summarizer: Summarizer = minimize_expected_loss,
    max_size: int = 0,
    n_runs: int = 16,
) -> BisectionOutcome:
    """
    Search the loss weight until the estimate has an acceptable cluster count.

    The first weight is ``2 * Beta(n0 * previous / 2, n0 * (1 - previous / 2))``,
    centred on ``previous``. Too few clusters lowers the weight, too many
    raises it, moving the weight to the middle of the remaining bracket.
    The first move cuts ``[0, 2]`` at the proposal rather than halving it,
    so at most
    ``max_evaluations(tol)`` (``ceil(log2(2 / tol)) + 2``) summarizer calls
    are made. Once the bracket is no wider than ``tol`` the current estimate
    is accepted whatever its size.

    Args:
        draws: Batch of draws to summarize
        previous: Accepted weight from the previous grid mass, in [0, 2]
        min_clusters: Smallest acceptable cluster count
        max_clusters: Largest acceptable cluster count
        n0: Concentration of the Beta proposal (larger = closer to previous)
        tol: Bracket width at which the search stops
        loss: "binder" or "VI"
        rng: Generator for the proposal and the summarizer
        summarizer: Loss-minimizing partition search
        max_size: Cluster cap passed to the summarizer
        n_runs: Runs passed to the summarizer

    Returns:
        BisectionOutcome holding the accepted fit and the evaluation trace
    """
    if not 0.0 <= previous <= WEIGHT_UPPER:
        raise ValueError(f"previous loss weight must be in [0, 2], got {previous}")
    previous = min(max(previous, _PREVIOUS_EPS), WEIGHT_UPPER - _PREVIOUS_EPS)

    lower, upper = 0.0, WEIGHT_UPPER
    a = 2.0 * rng.beta(n0 * previous / 2.0, n0 * (1.0 - previous / 2.0))
    steps: List[BisectionStep] = []

    while True:
        fit = summarizer(draws, loss, a, max_size=max_size, n_runs=n_runs, rng=rng)
        k = fit.n_clusters
        steps.append(BisectionStep(lower=lower, upper=upper, a=a, n_clusters=k))
        if upper - lower <= tol:
            return BisectionOutcome(fit=fit, a=a, steps=steps, converged_by_width=True)
        if k < min_clusters:
            upper = a
            a = (lower + a) / 2.0
        elif k > max_clusters:
            lower = a
            a = (upper + a) / 2.0
        else:
            return BisectionOutcome(fit=fit, a=a, steps=steps)


def run_calibration(
    similarity,
    cfg: CalibrationConfig,
    *,
    rng: np.random.Generator,
    summarizer: Summarizer = minimize_expected_loss,
) -> CalibrationResult:
    """
    Calibrated partition estimate for a cluster-count window.

    Pipeline:
    1. Build the mass grid (explicit masses or inverted expected counts) and
       shuffle it
    2. For each mass, in grid order:
       - Draw ``cfg.n_samples`` EPA partitions in parallel
       - Store them in the sample matrix at the mass's row block
       - Search the loss weight (``bisect_loss_weight``), seeding the
         proposal with the weight accepted for the previous mass
    3. Summarize the accepted per-mass estimates with weight 1.0

    Args:
        similarity: (n, n) similarity matrix or SimilarityView
        cfg: CalibrationConfig
        rng: Master generator; all randomness flows from it
        summarizer: Loss-minimizing partition search

    Returns:
        CalibrationResult with the final estimate and all samples

    Raises:
        ValueError: On invalid configuration (before any sampling)
    """
    cfg.validate()
    if not isinstance(similarity, SimilarityView):
        similarity = SimilarityView(similarity)
    n_items = similarity.n_items
    loss = check_loss(cfg.loss)
    min_clusters, max_clusters = cfg.window

    grid = build_mass_grid(
        min_clusters, max_clusters, cfg.grid_length, n_items, masses=cfg.masses, rng=rng
    )
    grid_length = grid.grid_length
    if grid.fallbacks:
        logger.warning(
            "%d of %d grid masses fell back to the default mass", len(grid.fallbacks), grid_length
        )

    samples = np.empty((cfg.n_samples * grid_length, n_items), dtype=LABEL_DTYPE)
    candidate_labels = np.empty((grid_length, n_items), dtype=LABEL_DTYPE)
    loss_weights = np.empty(grid_length, dtype=np.float64)
    outcomes: List[BisectionOutcome] = []

    previous = 1.0
    for i, mass in enumerate(grid.masses):
        draws = sample_batch(
            cfg.n_samples, similarity, float(mass), cfg.discount,
            n_lanes=cfg.n_lanes, rng=rng, backend=cfg.backend,
        )
        samples[i * cfg.n_samples:(i + 1) * cfg.n_samples] = draws.labels

        outcome = bisect_loss_weight(
            draws, previous, min_clusters, max_clusters,
            n0=cfg.n0, tol=cfg.tol, loss=loss, rng=rng, summarizer=summarizer,
            max_size=cfg.max_n_clusters, n_runs=cfg.n_runs,
        )
        previous = outcome.a
        candidate_labels[i] = outcome.fit.labels
        loss_weights[i] = outcome.a
        outcomes.append(outcome)

        logger.info(
            "Grid point %d/%d: mass=%.4g a=%.4f clusters=%d evaluations=%d%s",
            i + 1, grid_length, mass, outcome.a, outcome.fit.n_clusters,
            outcome.n_evaluations,
            " (bracket collapsed)" if outcome.converged_by_width else "",
        )

    candidates = Draws.from_labels(candidate_labels)
    final = summarizer(
        candidates, loss, 1.0, max_size=cfg.max_n_clusters, n_runs=cfg.n_runs, rng=rng
    )

    return CalibrationResult(
        estimate=np.asarray(final.labels, dtype=LABEL_DTYPE),
        samples=samples,
        masses=grid.masses.copy(),
        candidates=candidates,
        loss_weights=loss_weights,
        outcomes=outcomes,
        grid=grid,
    )
