"""
Point estimation of a partition from a batch of draws.

``minimize_expected_loss`` searches for the partition minimizing the expected
Binder or VI loss over the draws. It follows the SALSO recipe (Dahl, Johnson
and Mueller, 2022): several randomized runs, each started by greedy
sequential allocation or a random clustering, then improved by sweetening
scans that move one item at a time to its best cluster. The best run wins.

Any callable with the ``Summarizer`` signature can replace it, e.g. in tests
or to plug in a different search.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Tuple, Union
import numpy as np

from .engine import Draws
from .losses import check_loss, expected_binder_loss, expected_vi_loss, psm
from .partition import canonicalize
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

DrawsIn = Union[Draws, np.ndarray]


@dataclass
class SummaryFit:
    """Best partition found by a summarizer."""

    labels: np.ndarray
    expected_loss: float
    n_clusters: int
    n_scans: int = 0
    run: int = 0


class Summarizer(Protocol):
    def __call__(
        self,
        draws: DrawsIn,
        loss: str,
        a: float,
        *,
        max_size: int,
        n_runs: int,
        rng: np.random.Generator,
    ) -> SummaryFit: ...


def _xlog2x(x: np.ndarray) -> np.ndarray:
    out = np.zeros_like(x, dtype=np.float64)
    mask = x > 0
    out[mask] = x[mask] * np.log2(x[mask])
    return out


class _BinderCosts:
    """Cost of adding one item to each cluster under expected Binder loss."""

    def __init__(self, draws: Draws, a: float):
        self.a = a
        self.psm = psm(draws.labels)
        self.pair_weights = (2.0 - a) * (1.0 - self.psm) - a * self.psm
        np.fill_diagonal(self.pair_weights, 0.0)

    def add_costs(self, item: int, labels: np.ndarray, n_slots: int) -> np.ndarray:
        others = np.flatnonzero(labels >= 0)
        if others.size == 0:
            return np.zeros(n_slots)
        return np.bincount(
            labels[others], weights=self.pair_weights[item, others], minlength=n_slots
        )

    def total(self, labels: np.ndarray) -> float:
        return expected_binder_loss(labels, self.psm, self.a)


class _VICosts:
    """Cost of adding one item to each cluster under expected VI loss."""

    def __init__(self, draws: Draws, a: float):
        self.a = a
        self.draws = draws.labels.astype(np.int64)

    def add_costs(self, item: int, labels: np.ndarray, n_slots: int) -> np.ndarray:
        n_draws, n_items = self.draws.shape
        others = np.flatnonzero(labels >= 0)
        sizes = np.bincount(labels[others], minlength=n_slots).astype(np.float64)
        if others.size:
            same = (self.draws[:, others] == self.draws[:, [item]]).astype(np.float64)
            onehot = np.zeros((others.size, n_slots))
            onehot[np.arange(others.size), labels[others]] = 1.0
            joint = same @ onehot
        else:
            joint = np.zeros((n_draws, n_slots))
        size_delta = _xlog2x(sizes + 1.0) - _xlog2x(sizes)
        joint_delta = (_xlog2x(joint + 1.0) - _xlog2x(joint)).mean(axis=0)
        return ((2.0 - self.a) * size_delta - 2.0 * joint_delta) / n_items

    def total(self, labels: np.ndarray) -> float:
        return expected_vi_loss(labels, self.draws, self.a)


def _place(item: int, labels: np.ndarray, costs, cap: int, stay: int = -1) -> Tuple[int, bool]:
    """
    Allocate an unallocated ``item`` to its cheapest cluster.

    ``stay`` is the item's previous slot; it wins ties so that a move always
    strictly lowers the loss.

    Returns:
        (chosen slot, whether the partition changed)
    """
    allocated = labels[labels >= 0]
    # labels are only canonicalized between scans, so ``stay`` may sit past
    # the highest label still in use
    top = int(allocated.max()) if allocated.size else -1
    n_slots = max(top, stay) + 2
    sizes = np.bincount(allocated, minlength=n_slots)
    cost = costs.add_costs(item, labels, n_slots)

    candidates = np.flatnonzero(sizes > 0)
    empty = int(np.flatnonzero(sizes == 0)[0])
    if candidates.size < cap:
        candidates = np.append(candidates, empty)

    choice = int(candidates[np.argmin(cost[candidates])])
    if stay >= 0:
        home = stay if sizes[stay] > 0 else empty
        if home in candidates and cost[home] <= cost[choice]:
            choice = home
    labels[item] = choice

    if stay < 0:
        return choice, True
    was_singleton = sizes[stay] == 0
    changed = choice != stay and not (was_singleton and sizes[choice] == 0)
    return choice, changed


def _single_run(
    costs, n_items: int, cap: int, max_scans: int, prob_sequential: float,
    rng: np.random.Generator,
) -> Tuple[np.ndarray, int]:
    labels = np.full(n_items, -1, dtype=np.intp)
    if rng.random() < prob_sequential:
        for item in rng.permutation(n_items):
            _place(int(item), labels, costs, cap)
    else:
        k0 = int(rng.integers(1, cap + 1))
        labels[:] = canonicalize(rng.integers(0, k0, size=n_items))

    n_scans = 0
    for _ in range(max_scans):
        n_scans += 1
        changed = False
        for item in rng.permutation(n_items):
            item = int(item)
            old = int(labels[item])
            labels[item] = -1
            _, moved = _place(item, labels, costs, cap, stay=old)
            changed = changed or moved
        labels[:] = canonicalize(labels)
        if not changed:
            break
    return labels, n_scans


def minimize_expected_loss(
    draws: DrawsIn,
    loss: str = "binder",
    a: float = 1.0,
    *,
    max_size: int = 0,
    n_runs: int = 16,
    max_scans: int = 1000,
    prob_sequential_allocation: float = 0.5,
    rng: np.random.Generator,
) -> SummaryFit:
    """
    Find the partition minimizing expected loss over ``draws``.

    Args:
        draws: Draws or (n_draws, n_items) label matrix
        loss: "binder" or "VI"
        a: Loss weight in [0, 2]; larger values favour fewer clusters
        max_size: Maximum number of clusters in the estimate (0 = no limit)
        n_runs: Independent randomized runs; the best is returned
        max_scans: Upper bound on sweetening scans per run
        prob_sequential_allocation: Probability a run starts from greedy
            sequential allocation rather than a random clustering
        rng: NumPy random generator

    Returns:
        SummaryFit with canonical labels of the best run

    Raises:
        ValueError: On invalid arguments
    """
    loss = check_loss(loss)
    if not isinstance(draws, Draws):
        draws = Draws.from_labels(draws)
    if not 0.0 <= a <= 2.0:
        raise ValueError(f"loss weight a must be in [0, 2], got {a}")
    if n_runs < 1:
        raise ValueError(f"n_runs must be >= 1, got {n_runs}")
    if max_size < 0:
        raise ValueError(f"max_size must be >= 0, got {max_size}")
    if max_scans < 1:
        raise ValueError(f"max_scans must be >= 1, got {max_scans}")

    n_items = draws.n_items
    cap = max_size if max_size > 0 else n_items
    costs = _BinderCosts(draws, a) if loss == "binder" else _VICosts(draws, a)

    best = None
    for run in range(n_runs):
        labels, n_scans = _single_run(
            costs, n_items, cap, max_scans, prob_sequential_allocation, rng
        )
        value = costs.total(labels)
        if best is None or value < best.expected_loss:
            best = SummaryFit(
                labels=labels.astype(np.int32),
                expected_loss=value,
                n_clusters=int(labels.max()) + 1,
                n_scans=n_scans,
                run=run,
            )

    logger.debug(
        "Summarized %d draws with %s(a=%.4f): %d clusters, expected loss %.6f",
        draws.n_draws, loss, a, best.n_clusters, best.expected_loss,
    )
    return best
