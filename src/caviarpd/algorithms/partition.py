"""
Incremental clustering state and canonical labelling.

``PartitionBuilder`` holds a partial clustering while items are allocated one
at a time. Labels are dense: the active labels are always ``0..k-1``.
"""

from __future__ import annotations

from typing import List, Optional, Sequence
import numpy as np

UNALLOCATED = -1


def canonicalize(labels: Sequence[int]) -> np.ndarray:
    """
    Relabel a clustering into canonical form.

    Clusters are numbered 0, 1, 2, ... in order of first appearance when the
    items are scanned from index 0 upward, so two label vectors describing
    the same partition map to the same array.

    Args:
        labels: Cluster label per item (any hashable integers)

    Returns:
        int32 array of canonical labels
    """
    labels = np.asarray(labels)
    if labels.size == 0:
        return np.zeros(0, dtype=np.int32)
    _, first_idx, inverse = np.unique(labels, return_index=True, return_inverse=True)
    # rank of each unique label by where it first occurs
    rank = np.empty(first_idx.size, dtype=np.int32)
    rank[np.argsort(first_idx, kind="stable")] = np.arange(first_idx.size, dtype=np.int32)
    return rank[inverse.reshape(-1)]


class PartitionBuilder:
    """Partial clustering of ``n_items`` items built one allocation at a time."""

    def __init__(self, n_items: int):
        if n_items < 0:
            raise ValueError(f"n_items must be >= 0, got {n_items}")
        self._labels = np.full(n_items, UNALLOCATED, dtype=np.intp)
        self._members: List[List[int]] = []
        self._n_allocated = 0

    @classmethod
    def unallocated(cls, n_items: int) -> "PartitionBuilder":
        return cls(n_items)

    @property
    def n_items(self) -> int:
        return int(self._labels.size)

    @property
    def n_clusters(self) -> int:
        return len(self._members)

    @property
    def n_allocated(self) -> int:
        return self._n_allocated

    @property
    def is_complete(self) -> bool:
        return self._n_allocated == self.n_items

    @property
    def max_label(self) -> int:
        """Largest label in use (-1 when nothing is allocated)."""
        return self.n_clusters - 1

    def size_of(self, label: int) -> int:
        """Number of items in ``label``; the fresh label has size 0."""
        if label == self.n_clusters:
            return 0
        return len(self._members[label])

    def items_of(self, label: int) -> np.ndarray:
        """Items allocated to ``label`` in allocation order."""
        return np.asarray(self._members[label], dtype=np.intp)

    def label_of(self, item: int) -> int:
        """Label of ``item`` or ``UNALLOCATED``."""
        return int(self._labels[item])

    def labels_of(self, items: np.ndarray) -> np.ndarray:
        return self._labels[items]

    def available_labels(self) -> range:
        """Existing labels followed by one fresh label."""
        return range(self.n_clusters + 1)

    def allocate(self, item: int, label: int) -> None:
        """
        Assign ``item`` to ``label``.

        Raises:
            ValueError: If the item is already allocated or the label is
                neither existing nor the next fresh label
        """
        if not 0 <= item < self.n_items:
            raise ValueError(f"item {item} out of range for {self.n_items} items")
        if self._labels[item] != UNALLOCATED:
            raise ValueError(f"item {item} is already allocated to {self._labels[item]}")
        if not 0 <= label <= self.n_clusters:
            raise ValueError(
                f"label {label} is not available (labels in use: 0..{self.n_clusters - 1})"
            )
        if label == self.n_clusters:
            self._members.append([])
        self._members[label].append(item)
        self._labels[item] = label
        self._n_allocated += 1

    def labels(self) -> np.ndarray:
        """Raw labels in allocation order (``UNALLOCATED`` for pending items)."""
        return self._labels.copy()

    def relabel_into(self, out: Optional[np.ndarray] = None) -> np.ndarray:
        """
        Write canonical labels into ``out`` (allocated when None).

        Raises:
            ValueError: If some item has not been allocated yet
        """
        if not self.is_complete:
            raise ValueError(
                f"cannot relabel: {self.n_items - self._n_allocated} items unallocated"
            )
        canonical = canonicalize(self._labels)
        if out is None:
            return canonical
        out[:] = canonical
        return out
