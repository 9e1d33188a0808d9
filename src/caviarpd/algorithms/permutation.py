"""
Item orderings for sequential partition construction.
"""

from __future__ import annotations

from typing import Iterator, Sequence
import numpy as np


class Permutation:
    """A mutable ordering of the item indices ``0..n-1``."""

    def __init__(self, order: np.ndarray):
        self._order = order

    @classmethod
    def natural(cls, n_items: int) -> "Permutation":
        """The identity ordering ``0, 1, ..., n-1``."""
        if n_items < 0:
            raise ValueError(f"n_items must be >= 0, got {n_items}")
        return cls(np.arange(n_items, dtype=np.intp))

    @classmethod
    def random(cls, n_items: int, rng: np.random.Generator) -> "Permutation":
        """A uniformly random ordering."""
        perm = cls.natural(n_items)
        perm.shuffle(rng)
        return perm

    @classmethod
    def from_sequence(cls, order: Sequence[int]) -> "Permutation":
        """
        Build a permutation from an explicit ordering.

        Raises:
            ValueError: If ``order`` is not a bijection on ``0..n-1``
        """
        arr = np.asarray(order)
        if arr.ndim != 1:
            raise ValueError(f"permutation must be 1-D, got shape {arr.shape}")
        if arr.size and not np.issubdtype(arr.dtype, np.integer):
            if not np.all(np.mod(arr, 1) == 0):
                raise ValueError("permutation must only contain integers")
        arr = arr.astype(np.intp)
        n = arr.size
        if n and (arr.min() < 0 or arr.max() >= n or np.unique(arr).size != n):
            raise ValueError("order is not a valid permutation of 0..n-1")
        return cls(arr.copy())

    @property
    def n_items(self) -> int:
        return int(self._order.size)

    def __len__(self) -> int:
        return self.n_items

    def __iter__(self) -> Iterator[int]:
        return iter(self._order.tolist())

    def __repr__(self) -> str:
        return f"Permutation({self._order.tolist()})"

    def shuffle(self, rng: np.random.Generator) -> None:
        """Shuffle in place."""
        rng.shuffle(self._order)

    def get(self, i: int) -> int:
        """Item visited at position ``i``."""
        return int(self._order[i])

    def prefix(self, i: int) -> np.ndarray:
        """Items visited before position ``i`` (a view, not a copy)."""
        return self._order[:i]

    def as_array(self) -> np.ndarray:
        return self._order.copy()
