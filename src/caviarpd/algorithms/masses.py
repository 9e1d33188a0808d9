"""
Mass (concentration) grids for calibration.

Under the Ewens distribution the expected number of clusters among n items is
``sum_{i=0}^{n-1} mass / (mass + i)``, increasing in mass. Inverting it gives
a mass whose prior expected cluster count matches a target, which is how the
calibration grid is laid out when the caller does not supply masses.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple
import numpy as np
from scipy.optimize import brentq

from .losses import check_loss
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_MASS = 1.0
ROOT_XTOL = 1e-5


def expected_number_of_clusters(mass: float, n_items: int) -> float:
    """Prior expected cluster count for ``n_items`` items at ``mass``."""
    i = np.arange(n_items, dtype=np.float64)
    return float(np.sum(mass / (mass + i)))


def variance_number_of_clusters(mass: float, n_items: int) -> float:
    """Prior variance of the cluster count for ``n_items`` items at ``mass``."""
    i = np.arange(n_items, dtype=np.float64)
    return float(np.sum(mass * i / (mass + i) ** 2))


def find_mass(
    expected_clusters: float, n_items: int, *, xtol: float = ROOT_XTOL
) -> Optional[float]:
    """
    Mass whose expected cluster count equals ``expected_clusters``.

    Solves on the bracket ``(machine epsilon, expected_clusters)``.

    Returns:
        The mass, or None when the target has no root in the bracket or the
        solver does not converge (a warning is logged)
    """
    def f(mass):
        return expected_number_of_clusters(mass, n_items) - expected_clusters

    try:
        return float(brentq(f, sys.float_info.epsilon, expected_clusters, xtol=xtol))
    except (ValueError, RuntimeError) as exc:
        logger.warning(
            "Root finding failed for expected cluster count %.4g with %d items: %s",
            expected_clusters, n_items, exc,
        )
        return None


@dataclass
class MassGrid:
    """Masses to visit during calibration, already in visitation order."""

    masses: np.ndarray
    targets: Optional[np.ndarray] = None
    fallbacks: List[float] = field(default_factory=list)

    @property
    def grid_length(self) -> int:
        return int(self.masses.size)

    def __len__(self) -> int:
        return self.grid_length

    def __iter__(self):
        return iter(self.masses.tolist())


def normalize_cluster_window(
    min_clusters: float, max_clusters: float, grid_length: int, *, explicit: bool = False
) -> Tuple[float, float, int]:
    """
    Order the cluster bounds and fix the grid length.

    A derived grid over a window of one value has a single point; otherwise
    it has at least two. Explicit masses only require one point.
    """
    lo, hi = sorted((float(min_clusters), float(max_clusters)))
    if lo < 1:
        raise ValueError(f"cluster bounds must be >= 1, got ({min_clusters}, {max_clusters})")
    if grid_length < 0:
        raise ValueError(f"grid_length must be >= 0, got {grid_length}")
    if explicit:
        grid_length = max(int(grid_length), 1)
    elif lo == hi:
        grid_length = 1
    else:
        grid_length = max(int(grid_length), 2)
    return lo, hi, grid_length


def build_mass_grid(
    min_clusters: float,
    max_clusters: float,
    grid_length: int,
    n_items: int,
    *,
    masses: Optional[Sequence[float]] = None,
    rng: np.random.Generator,
) -> MassGrid:
    """
    Build and shuffle the grid of masses.

    Without explicit masses, ``grid_length`` targets start at
    ``min_clusters`` and step by ``(max_clusters - min_clusters) / grid_length``,
    so ``max_clusters`` itself is never a target. Each is inverted with
    ``find_mass``; targets that cannot be inverted fall back to mass 1.0 and
    are listed in ``MassGrid.fallbacks``.

    Args:
        min_clusters: Lower bound of the cluster window
        max_clusters: Upper bound of the cluster window (swapped if smaller)
        grid_length: Requested grid length
        n_items: Number of items being clustered
        masses: Optional explicit masses, of length 1 (broadcast) or
            grid_length
        rng: Generator used to shuffle the visitation order

    Returns:
        MassGrid in shuffled order

    Raises:
        ValueError: On an invalid window or explicit masses of the wrong
            length or sign
    """
    lo, hi, grid_length = normalize_cluster_window(
        min_clusters, max_clusters, grid_length, explicit=masses is not None
    )

    targets = None
    fallbacks: List[float] = []
    if masses is None:
        step = (hi - lo) / grid_length
        targets = lo + step * np.arange(grid_length)
        values = []
        for target in targets:
            mass = find_mass(float(target), n_items)
            if mass is None:
                logger.warning(
                    "Using default mass %.1f for target %.4g clusters", DEFAULT_MASS, target
                )
                fallbacks.append(float(target))
                mass = DEFAULT_MASS
            values.append(mass)
        grid = np.asarray(values, dtype=np.float64)
    else:
        given = np.atleast_1d(np.asarray(masses, dtype=np.float64))
        if np.any(~np.isfinite(given)) or np.any(given <= 0):
            raise ValueError(f"masses must be positive and finite, got {given.tolist()}")
        if given.size == 1:
            grid = np.repeat(given, grid_length)
        elif given.size == grid_length:
            grid = given.copy()
        else:
            raise ValueError(
                f"masses must have length 1 or grid_length ({grid_length}), got {given.size}"
            )

    order = rng.permutation(grid.size)
    grid = grid[order]
    if targets is not None:
        targets = targets[order]
    return MassGrid(masses=grid, targets=targets, fallbacks=fallbacks)


def mass_bounds(
    n_clusters: float,
    n_items: int,
    *,
    n_sd: float = 3.0,
    loss: str = "binder",
    bracket: Tuple[float, float] = (1e-4, 1e3),
) -> Tuple[Optional[float], Optional[float]]:
    """
    Range of masses plausibly producing ``n_clusters`` clusters.

    The lower bound solves ``E[k] + sd_lo * SD[k] = n_clusters`` and the
    upper bound ``E[k] - n_sd * SD[k] = n_clusters`` where ``sd_lo`` is
    ``n_sd`` for Binder and ``n_sd / 2`` for VI.

    Returns:
        (lower, upper); either is None when no root exists in ``bracket``
    """
    sd_lower = 0.5 * n_sd if check_loss(loss) == "vi" else n_sd

    def solve(offset):
        def f(m):
            return (
                expected_number_of_clusters(m, n_items)
                + offset * np.sqrt(variance_number_of_clusters(m, n_items))
                - n_clusters
            )
        try:
            return float(brentq(f, *bracket))
        except ValueError as exc:
            logger.warning("No mass bound for %.4g clusters: %s", n_clusters, exc)
            return None

    return solve(sd_lower), solve(-n_sd)
