"""
Read-only access to pairwise similarities.

Provides the square-matrix view used by the EPA sampler and helpers for
turning distances (or categorical data) into similarities.
"""

from __future__ import annotations

from typing import Sequence, Union
import numpy as np
from scipy.spatial.distance import squareform

ArrayLike = Union[np.ndarray, Sequence[float]]


class SimilarityView:
    """
    Bounds-checked, read-only n x n similarity matrix.

    The matrix is stored as a non-writeable float64 array so that worker lanes
    can share one instance without copying or locking. ``view[i, j]`` is the
    similarity from item ``i`` to item ``j``; symmetry is not enforced.

    Args:
        data: An (n, n) array, or a flat buffer of length n*n
        n_items: Required when ``data`` is flat
        order: Layout of a flat buffer, "C" (row-major) or "F" (column-major)

    Raises:
        ValueError: If the data is not square, contains negative or
            non-finite entries, or disagrees with ``n_items``
    """

    def __init__(self, data: ArrayLike, n_items: int | None = None, order: str = "C"):
        if isinstance(data, SimilarityView):
            data = data.as_array()
        arr = np.asarray(data, dtype=np.float64)
        if order not in ("C", "F"):
            raise ValueError(f"order must be 'C' or 'F', got {order!r}")

        if arr.ndim == 1:
            if n_items is None:
                n = int(round(np.sqrt(arr.size)))
            else:
                n = int(n_items)
            if n * n != arr.size:
                raise ValueError(
                    f"flat similarity buffer of length {arr.size} is not {n}x{n}"
                )
            arr = arr.reshape((n, n), order=order)
        elif arr.ndim == 2:
            if arr.shape[0] != arr.shape[1]:
                raise ValueError(f"similarity matrix must be square, got shape {arr.shape}")
            if n_items is not None and arr.shape[0] != n_items:
                raise ValueError(
                    f"similarity matrix has {arr.shape[0]} items but n_items={n_items}"
                )
        else:
            raise ValueError(f"Unsupported similarity shape: {arr.shape}")

        if arr.shape[0] < 1:
            raise ValueError("similarity matrix must contain at least one item")
        if not np.all(np.isfinite(arr)):
            raise ValueError("similarity matrix contains non-finite values")
        if np.any(arr < 0.0):
            raise ValueError("similarity matrix contains negative values")

        arr = np.array(arr, dtype=np.float64, order="C", copy=True)
        arr.setflags(write=False)
        self._data = arr

    @property
    def n_items(self) -> int:
        return self._data.shape[0]

    def __len__(self) -> int:
        return self.n_items

    def __getitem__(self, index: tuple[int, int]) -> float:
        i, j = index
        n = self.n_items
        if not (0 <= i < n and 0 <= j < n):
            raise IndexError(f"index ({i}, {j}) out of range for {n}x{n} similarity")
        return float(self._data[i, j])

    def __repr__(self) -> str:
        return f"SimilarityView(n_items={self.n_items})"

    def as_array(self) -> np.ndarray:
        """Return the underlying read-only (n, n) array."""
        return self._data

    def row(self, i: int) -> np.ndarray:
        """Read-only view of row ``i``."""
        return self._data[i]

    def sum_of_row_subset(self, row: int, columns: np.ndarray) -> float:
        """Sum of ``similarity[row, j]`` over ``j`` in ``columns``."""
        if len(columns) == 0:
            return 0.0
        return float(self._data[row, columns].sum())

    def grouped_row_sums(
        self, row: int, columns: np.ndarray, groups: np.ndarray, n_groups: int
    ) -> np.ndarray:
        """
        Per-group sums of ``similarity[row, columns]``.

        Args:
            row: Row index
            columns: Column indices
            groups: Group id in ``[0, n_groups)`` for each column
            n_groups: Number of groups

        Returns:
            Array of shape (n_groups,) whose entry g is the sum over columns
            belonging to group g
        """
        if len(columns) == 0:
            return np.zeros(n_groups, dtype=np.float64)
        return np.bincount(
            groups, weights=self._data[row, columns], minlength=n_groups
        )[:n_groups]

    def sum_of_triangle(self) -> float:
        """Sum of the strictly lower triangle."""
        return float(np.tril(self._data, k=-1).sum())


def similarity_from_distance(distance: ArrayLike, temperature: float = 10.0) -> np.ndarray:
    """
    Convert distances to similarities with ``exp(-temperature * d)``.

    Args:
        distance: Square (n, n) distance matrix or condensed distance vector
            (as returned by ``scipy.spatial.distance.pdist``)
        temperature: Non-negative scale; larger values sharpen the contrast
            between near and far items

    Returns:
        (n, n) similarity matrix with ones on the diagonal

    Raises:
        ValueError: If temperature is negative or distances are invalid
    """
    if temperature < 0:
        raise ValueError(f"temperature must be nonnegative, got {temperature}")
    d = np.asarray(distance, dtype=np.float64)
    if d.ndim == 1:
        d = squareform(d, checks=False)
    elif d.ndim != 2 or d.shape[0] != d.shape[1]:
        raise ValueError(f"distance must be square or condensed, got shape {d.shape}")
    if np.any(d < 0) or not np.all(np.isfinite(d)):
        raise ValueError("distance must be finite and nonnegative")
    return np.exp(-temperature * d)


def jaccard_distance(data: np.ndarray) -> np.ndarray:
    """
    Jaccard distance between rows of categorical data.

    Each column is expanded into one indicator per level (a two-level column
    keeps a single indicator), and the distance between two rows is the
    fraction of indicators set in either row that are not set in both.

    Args:
        data: (n_items, n_attributes) array of categorical values

    Returns:
        (n_items, n_items) distance matrix
    """
    data = np.asarray(data, dtype=object)
    if data.ndim != 2:
        raise ValueError(f"data must be 2-D, got shape {data.shape}")

    blocks = []
    for col in range(data.shape[1]):
        values = data[:, col]
        levels = sorted(set(values.tolist()), key=str)
        onehot = np.stack([values == lvl for lvl in levels], axis=1)
        if len(levels) == 2:
            onehot = onehot[:, :1]
        blocks.append(onehot)
    bits = np.concatenate(blocks, axis=1).astype(np.float64)

    both = bits @ bits.T
    count = bits.sum(axis=1)
    either = count[:, None] + count[None, :] - both
    with np.errstate(invalid="ignore", divide="ignore"):
        dist = np.where(either > 0, 1.0 - both / either, 0.0)
    np.fill_diagonal(dist, 0.0)
    return dist
