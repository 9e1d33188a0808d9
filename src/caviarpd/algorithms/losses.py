"""
Loss functions between partitions and their expectations over draws.

Both losses take a weight ``a`` in [0, 2]:

- generalized Binder: a pair together in the truth but split in the estimate
  costs ``a``; a pair apart in the truth but joined in the estimate costs
  ``2 - a``. Reported as the average over the n(n-1)/2 pairs.
- generalized VI: ``(1/n) sum_i [a log2|c(i)| + (2-a) log2|e(i)| -
  2 log2|c(i) & e(i)|]`` where ``c(i)``/``e(i)`` are the truth/estimate
  clusters containing item i.

``a = 1`` gives the usual losses. Larger ``a`` makes splitting more
expensive, so loss minimizers produce fewer clusters.
"""

from __future__ import annotations

from typing import Dict, List, Mapping, Sequence
import numpy as np

LOSSES = ("binder", "vi")


def check_loss(loss: str) -> str:
    """Normalize a loss name, raising ValueError if unknown."""
    name = str(loss).lower()
    if name not in LOSSES:
        raise ValueError(f"loss must be 'binder' or 'VI', got '{loss}'")
    return name


def _xlog2x_sum(counts: np.ndarray) -> float:
    """Sum of c * log2(c) over positive counts."""
    c = np.asarray(counts, dtype=np.float64)
    c = c[c > 0]
    return float(np.sum(c * np.log2(c)))


def _check_pair(truth: Sequence[int], estimate: Sequence[int]) -> tuple[np.ndarray, np.ndarray]:
    truth = np.asarray(truth)
    estimate = np.asarray(estimate)
    if truth.shape != estimate.shape or truth.ndim != 1:
        raise ValueError(
            f"truth and estimate must be 1-D and equal length, got {truth.shape} and {estimate.shape}"
        )
    return truth, estimate


def psm(labels: np.ndarray) -> np.ndarray:
    """
    Posterior similarity matrix.

    Args:
        labels: (n_draws, n_items) label matrix

    Returns:
        (n_items, n_items) matrix whose (i, j) entry is the fraction of draws
        placing items i and j in the same cluster
    """
    labels = np.atleast_2d(np.asarray(labels))
    n_draws, n_items = labels.shape
    out = np.zeros((n_items, n_items), dtype=np.float64)
    for row in labels:
        out += row[:, None] == row[None, :]
    return out / n_draws


def binder_loss(truth: Sequence[int], estimate: Sequence[int], a: float = 1.0) -> float:
    """Generalized Binder loss between two partitions (pair-averaged)."""
    truth, estimate = _check_pair(truth, estimate)
    n = truth.size
    if n < 2:
        return 0.0
    iu = np.triu_indices(n, k=1)
    same_t = (truth[:, None] == truth[None, :])[iu]
    same_e = (estimate[:, None] == estimate[None, :])[iu]
    split = np.count_nonzero(same_t & ~same_e)
    joined = np.count_nonzero(~same_t & same_e)
    return float((a * split + (2.0 - a) * joined) / iu[0].size)


def vi_loss(truth: Sequence[int], estimate: Sequence[int], a: float = 1.0) -> float:
    """Generalized variation of information between two partitions (bits)."""
    truth, estimate = _check_pair(truth, estimate)
    n = truth.size
    if n == 0:
        return 0.0
    _, t_inv = np.unique(truth, return_inverse=True)
    _, e_inv = np.unique(estimate, return_inverse=True)
    t_inv = t_inv.reshape(-1)
    e_inv = e_inv.reshape(-1)
    n_e = e_inv.max() + 1
    joint = np.bincount(t_inv * n_e + e_inv)
    value = (
        a * _xlog2x_sum(np.bincount(t_inv))
        + (2.0 - a) * _xlog2x_sum(np.bincount(e_inv))
        - 2.0 * _xlog2x_sum(joint)
    )
    return float(value / n)


def expected_binder_loss(estimate: Sequence[int], psm_matrix: np.ndarray, a: float = 1.0) -> float:
    """Binder loss of ``estimate`` averaged over draws summarized by their PSM."""
    estimate = np.asarray(estimate)
    n = estimate.size
    if psm_matrix.shape != (n, n):
        raise ValueError(f"psm has shape {psm_matrix.shape}, expected ({n}, {n})")
    if n < 2:
        return 0.0
    iu = np.triu_indices(n, k=1)
    p = psm_matrix[iu]
    same = (estimate[:, None] == estimate[None, :])[iu]
    total = np.where(same, (2.0 - a) * (1.0 - p), a * p).sum()
    return float(total / iu[0].size)


def _grouped_xlog2x(labels: np.ndarray, n_groups_per_row: int) -> float:
    """Sum over rows of sum_c n_rc log2 n_rc for integer codes per row."""
    n_rows = labels.shape[0]
    keys = np.arange(n_rows, dtype=np.int64)[:, None] * n_groups_per_row + labels
    _, counts = np.unique(keys, return_counts=True)
    return _xlog2x_sum(counts)


def expected_vi_loss(estimate: Sequence[int], draws: np.ndarray, a: float = 1.0) -> float:
    """VI loss of ``estimate`` averaged over the rows of ``draws``."""
    estimate = np.asarray(estimate)
    draws = np.atleast_2d(np.asarray(draws)).astype(np.int64)
    n_draws, n = draws.shape
    if estimate.shape != (n,):
        raise ValueError(f"estimate has shape {estimate.shape}, expected ({n},)")
    if n == 0:
        return 0.0
    _, est = np.unique(estimate, return_inverse=True)
    est = est.reshape(-1).astype(np.int64)
    n_est = int(est.max()) + 1
    n_draw_labels = int(draws.max()) + 1

    draw_term = _grouped_xlog2x(draws, n_draw_labels) / n_draws
    est_term = _xlog2x_sum(np.bincount(est))
    joint_term = _grouped_xlog2x(draws * n_est + est[None, :], n_draw_labels * n_est) / n_draws
    return float((a * draw_term + (2.0 - a) * est_term - 2.0 * joint_term) / n)


def expected_loss(
    estimate: Sequence[int], draws: np.ndarray, loss: str = "binder", a: float = 1.0
) -> float:
    """Expected Binder or VI loss of ``estimate`` over a label matrix of draws."""
    if check_loss(loss) == "binder":
        return expected_binder_loss(estimate, psm(draws), a)
    return expected_vi_loss(estimate, draws, a)


def adjusted_rand_index(labels_a: Sequence[int], labels_b: Sequence[int]) -> float:
    """
    Adjusted Rand Index between two clusterings.

    Returns 1.0 for identical partitions and values near 0.0 for chance
    agreement.
    """
    labels_a, labels_b = _check_pair(labels_a, labels_b)
    n = labels_a.size
    comb_n = n * (n - 1) / 2.0
    if comb_n == 0:
        return 1.0

    _, a = np.unique(labels_a, return_inverse=True)
    _, b = np.unique(labels_b, return_inverse=True)
    contingency = np.zeros((a.max() + 1, b.max() + 1), dtype=np.int64)
    np.add.at(contingency, (a.reshape(-1), b.reshape(-1)), 1)

    def pairs(x):
        return (x * (x - 1) / 2.0).sum()

    sum_comb = pairs(contingency)
    sum_rows = pairs(contingency.sum(axis=1))
    sum_cols = pairs(contingency.sum(axis=0))
    expected = sum_rows * sum_cols / comb_n
    max_index = 0.5 * (sum_rows + sum_cols)
    if max_index == expected:
        return 1.0
    return float((sum_comb - expected) / (max_index - expected))


def loss_table(
    estimates: Mapping[str, Sequence[int]],
    truth: Sequence[int],
    order_by: str = "binder",
) -> List[Dict[str, float]]:
    """
    Compare several clustering estimates against a known partition.

    Args:
        estimates: Mapping from estimate name to label vector
        truth: Reference partition
        order_by: "binder", "vi" or "ari" (ARI sorts descending)

    Returns:
        One row per estimate with keys name, n_clusters, binder, vi, ari,
        sorted best-first
    """
    order_by = str(order_by).lower()
    if order_by not in ("binder", "vi", "ari"):
        raise ValueError(f"order_by must be 'binder', 'vi' or 'ari', got '{order_by}'")
    lengths = {len(v) for v in estimates.values()}
    if len(lengths) > 1 or (lengths and lengths != {len(truth)}):
        raise ValueError("all estimates must have the same length as truth")

    rows = []
    for name, est in estimates.items():
        rows.append({
            "name": name,
            "n_clusters": int(np.unique(est).size),
            "binder": binder_loss(truth, est),
            "vi": vi_loss(truth, est),
            "ari": adjusted_rand_index(truth, est),
        })
    rows.sort(key=lambda r: -r["ari"] if order_by == "ari" else r[order_by])
    return rows
