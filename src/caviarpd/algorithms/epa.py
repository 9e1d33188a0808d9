"""
Ewens-Pitman attraction (EPA) partition distribution.

Draws a partition by seating items one at a time in permutation order. An
item joins an existing cluster with probability proportional to its summed
similarity to that cluster (scaled so the existing clusters share
``i - discount * q`` of the mass), or opens a new cluster with weight
``mass + discount * q``, where ``i`` is the number of items already seated and
``q`` the number of clusters formed so far.

With constant similarity and ``discount = 0`` this is the Ewens (Chinese
restaurant process) distribution.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence
import numpy as np

from .partition import PartitionBuilder
from .permutation import Permutation
from .similarity import SimilarityView


@dataclass
class EpaParameters:
    """Parameters of one EPA distribution."""

    similarity: SimilarityView
    permutation: Permutation
    mass: float
    discount: float = 0.0

    def __post_init__(self):
        """Validate dimensions and the (mass, discount) range."""
        if not isinstance(self.similarity, SimilarityView):
            self.similarity = SimilarityView(self.similarity)
        if self.similarity.n_items != self.permutation.n_items:
            raise ValueError(
                f"similarity has {self.similarity.n_items} items but permutation "
                f"has {self.permutation.n_items}"
            )
        check_mass_discount(self.mass, self.discount)

    @property
    def n_items(self) -> int:
        return self.similarity.n_items

    def shuffle_permutation(self, rng: np.random.Generator) -> None:
        self.permutation.shuffle(rng)


def check_mass_discount(mass: float, discount: float) -> None:
    """
    Raises:
        ValueError: If discount is outside [0, 1) or mass <= -discount
    """
    if not np.isfinite(discount) or discount < 0.0 or discount >= 1.0:
        raise ValueError(f"discount must be in [0, 1), got {discount}")
    if not np.isfinite(mass) or mass <= -discount:
        raise ValueError(f"mass must be greater than -discount ({-discount}), got {mass}")


def weighted_choice(weights: np.ndarray, rng: np.random.Generator) -> int:
    """
    Pick an index with probability proportional to ``weights``.

    A vector whose total is zero falls back to a uniform choice. Infinite
    weights share all of the probability uniformly.

    Raises:
        ValueError: If ``weights`` is empty
        FloatingPointError: If any weight is NaN or negative
    """
    w = np.asarray(weights, dtype=np.float64)
    if w.size == 0:
        raise ValueError("weighted_choice needs at least one candidate")
    if np.any(np.isnan(w)) or np.any(w < 0.0):
        raise FloatingPointError(f"invalid allocation weights: {w.tolist()}")

    infinite = np.isinf(w)
    if infinite.any():
        return int(rng.choice(np.flatnonzero(infinite)))

    total = w.sum()
    if total <= 0.0:
        return int(rng.integers(0, w.size))
    return int(rng.choice(w.size, p=w / total))


def _allocation_weights(
    params: EpaParameters, builder: PartitionBuilder, position: int, item: int
) -> np.ndarray:
    """Weights over ``builder.available_labels()`` for the item at ``position``."""
    similarity = params.similarity
    seated = params.permutation.prefix(position)
    n_clusters = builder.n_clusters

    weights = np.empty(n_clusters + 1, dtype=np.float64)
    weights[n_clusters] = params.mass + params.discount * n_clusters
    if n_clusters == 0:
        return weights

    total = similarity.sum_of_row_subset(item, seated)
    if total > 0.0:
        scale = (position - params.discount * n_clusters) / total
        weights[:n_clusters] = scale * similarity.grouped_row_sums(
            item, seated, builder.labels_of(seated), n_clusters
        )
    else:
        # no attraction to anything seated so far
        weights[:n_clusters] = 0.0
    return weights


def sample_epa_partition(
    params: EpaParameters, rng: np.random.Generator
) -> PartitionBuilder:
    """
    Draw one partition from the EPA distribution.

    Items are visited in ``params.permutation`` order; the caller reshuffles
    the permutation between draws when permutation-averaged draws are wanted.

    Args:
        params: Distribution parameters
        rng: NumPy random generator (consumed)

    Returns:
        Fully allocated PartitionBuilder

    Raises:
        FloatingPointError: If the allocation weights become invalid
    """
    builder = PartitionBuilder.unallocated(params.n_items)
    for position in range(params.n_items):
        item = params.permutation.get(position)
        if position == 0:
            builder.allocate(item, 0)
            continue
        weights = _allocation_weights(params, builder, position, item)
        builder.allocate(item, weighted_choice(weights, rng))
    return builder


def epa_log_probability(labels: Sequence[int], params: EpaParameters) -> float:
    """
    Log-probability of a complete partition for the current permutation.

    Args:
        labels: Cluster label per item (any labelling of the partition)
        params: Distribution parameters

    Returns:
        Natural log of the probability that ``sample_epa_partition`` returns
        this partition when using ``params.permutation``
    """
    labels = np.asarray(labels)
    if labels.shape != (params.n_items,):
        raise ValueError(
            f"labels must have shape ({params.n_items},), got {labels.shape}"
        )

    builder = PartitionBuilder.unallocated(params.n_items)
    seen: dict = {}
    log_prob = 0.0
    for position in range(params.n_items):
        item = params.permutation.get(position)
        target = seen.setdefault(labels[item], len(seen))
        if position > 0:
            weights = _allocation_weights(params, builder, position, item)
            total = weights.sum()
            if total <= 0.0:
                log_prob -= float(np.log(weights.size))
            elif weights[target] <= 0.0:
                return float("-inf")
            else:
                log_prob += float(np.log(weights[target] / total))
        builder.allocate(item, target)
    return log_prob
