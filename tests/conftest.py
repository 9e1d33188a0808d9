"""
Pytest configuration and shared fixtures.

This file is automatically discovered by pytest and provides fixtures
available to all test modules.
"""

import numpy as np
import pytest

from caviarpd.algorithms.summarization import SummaryFit


@pytest.fixture
def rng():
    """Seeded generator so statistical checks are repeatable."""
    return np.random.default_rng(42)


@pytest.fixture
def block_groups():
    """Ground-truth groups: 12 items in 3 blocks of 4."""
    return np.repeat(np.arange(3), 4)


@pytest.fixture
def block_similarity(block_groups):
    """
    Similarity with three well-separated blocks.

    Items in the same block have similarity 1; items in different blocks
    have (practically) none, so once an item has a seated block-mate it only
    joins clusters holding one.
    """
    same = block_groups[:, None] == block_groups[None, :]
    return np.where(same, 1.0, 1e-9)


@pytest.fixture
def fake_summarizer():
    """
    Fixture factory for a summarizer whose cluster count is a function of a.

    Usage:
        summarizer = fake_summarizer(lambda a: 3)

    The returned callable records every call in ``summarizer.calls`` as
    (n_draws, loss, a) tuples.
    """
    def make(clusters_for_weight):
        calls = []

        def summarizer(draws, loss, a, *, max_size, n_runs, rng):
            calls.append((draws.n_draws, loss, a))
            n = draws.n_items
            k = int(min(max(clusters_for_weight(a), 1), n))
            labels = (np.arange(n) % k).astype(np.int32)
            return SummaryFit(labels=labels, expected_loss=0.0, n_clusters=k)

        summarizer.calls = calls
        return summarizer

    return make
