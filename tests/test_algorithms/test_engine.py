"""
Tests for parallel batch sampling.
"""

import os

import numpy as np
import pytest

from caviarpd.algorithms import engine
from caviarpd.algorithms.engine import (
    BatchSamplingError,
    Draws,
    plan_lanes,
    resolve_n_lanes,
    sample_batch,
    sample_epa,
)
from caviarpd.algorithms.masses import expected_number_of_clusters
from caviarpd.algorithms.partition import canonicalize


@pytest.fixture
def similarity():
    rng = np.random.default_rng(11)
    sim = rng.uniform(0.05, 1.0, size=(8, 8))
    return (sim + sim.T) / 2.0


# ---------------------------------------------------------------------------
# Lane planning
# ---------------------------------------------------------------------------

def test_plan_lanes_exact_count():
    """Test the lane blocks cover exactly n_draws draws."""
    assert plan_lanes(10, 4) == [(0, 3), (3, 3), (6, 3), (9, 1)]
    assert plan_lanes(8, 4) == [(0, 2), (2, 2), (4, 2), (6, 2)]
    assert plan_lanes(2, 4) == [(0, 1), (1, 1), (2, 0), (2, 0)]
    for n_draws in range(1, 30):
        for n_lanes in range(1, 9):
            assert sum(c for _, c in plan_lanes(n_draws, n_lanes)) == n_draws


def test_resolve_n_lanes():
    assert resolve_n_lanes(3) == 3
    assert resolve_n_lanes(0) == (os.cpu_count() or 1)
    with pytest.raises(ValueError):
        resolve_n_lanes(-1)


# ---------------------------------------------------------------------------
# Batches
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("n_lanes", [1, 3, 4, 16])
def test_sample_batch_shape_and_counts(similarity, n_lanes):
    """Test exact draw count, canonical rows and matching cluster counts."""
    draws = sample_batch(
        10, similarity, 1.0, n_lanes=n_lanes, rng=np.random.default_rng(0)
    )
    assert isinstance(draws, Draws)
    assert draws.labels.shape == (10, 8)
    assert draws.n_draws == 10
    assert draws.n_items == 8
    for row, k in zip(draws.labels, draws.n_clusters):
        np.testing.assert_array_equal(canonicalize(row), row)
        assert row.max() + 1 == k


def test_sample_batch_reproducible(similarity):
    """Test same seed and lane count give identical batches."""
    a = sample_batch(20, similarity, 2.0, 0.1, n_lanes=3, rng=np.random.default_rng(7))
    b = sample_batch(20, similarity, 2.0, 0.1, n_lanes=3, rng=np.random.default_rng(7))
    np.testing.assert_array_equal(a.labels, b.labels)
    np.testing.assert_array_equal(a.n_clusters, b.n_clusters)


def test_sample_batch_advances_master_rng(similarity):
    """Test consecutive batches from one generator differ."""
    rng = np.random.default_rng(7)
    a = sample_batch(20, similarity, 2.0, n_lanes=2, rng=rng)
    b = sample_batch(20, similarity, 2.0, n_lanes=2, rng=rng)
    assert not np.array_equal(a.labels, b.labels)


def test_process_backend_matches_thread_backend(similarity):
    """Test lanes are seeded identically whichever executor runs them."""
    threaded = sample_batch(
        9, similarity, 1.0, n_lanes=2, rng=np.random.default_rng(3), backend="thread"
    )
    processed = sample_batch(
        9, similarity, 1.0, n_lanes=2, rng=np.random.default_rng(3), backend="process"
    )
    np.testing.assert_array_equal(threaded.labels, processed.labels)
    np.testing.assert_array_equal(threaded.n_clusters, processed.n_clusters)


def test_lane_count_changes_draws_not_distribution():
    """Test one lane and four lanes agree on shape and cluster-count statistics."""
    constant = np.ones((8, 8))
    one = sample_batch(2000, constant, 1.0, n_lanes=1, rng=np.random.default_rng(13))
    four = sample_batch(2000, constant, 1.0, n_lanes=4, rng=np.random.default_rng(13))
    assert one.labels.shape == four.labels.shape == (2000, 8)
    assert one.n_clusters.shape == four.n_clusters.shape == (2000,)
    expected = expected_number_of_clusters(1.0, 8)
    assert one.n_clusters.mean() == pytest.approx(four.n_clusters.mean(), abs=0.15)
    assert one.n_clusters.mean() == pytest.approx(expected, abs=0.1)
    assert four.n_clusters.mean() == pytest.approx(expected, abs=0.1)


def test_diagonal_dominant_similarity_counts_in_range():
    sim = 0.1 + 0.9 * np.eye(5)
    draws = sample_batch(100, sim, 1.0, n_lanes=2, rng=np.random.default_rng(17))
    assert draws.labels.shape == (100, 5)
    assert draws.n_clusters.min() >= 1
    assert draws.n_clusters.max() <= 5
    np.testing.assert_array_equal(draws.n_clusters, draws.labels.max(axis=1) + 1)


@pytest.mark.parametrize(
    "kwargs, match",
    [
        ({"n_draws": 0}, "n_draws"),
        ({"mass": -1.0}, "mass"),
        ({"discount": 1.0}, "discount"),
        ({"backend": "gpu"}, "backend"),
        ({"n_lanes": -2}, "n_lanes"),
    ],
)
def test_sample_batch_validation(similarity, kwargs, match):
    """Test invalid configuration is rejected before sampling."""
    args = {"n_draws": 5, "mass": 1.0, "discount": 0.0, "n_lanes": 1, "backend": "thread"}
    args.update(kwargs)
    with pytest.raises(ValueError, match=match):
        sample_batch(
            args["n_draws"], similarity, args["mass"], args["discount"],
            n_lanes=args["n_lanes"], rng=np.random.default_rng(0), backend=args["backend"],
        )


def test_failing_lane_raises_batch_error(similarity, monkeypatch):
    """Test a lane failure surfaces as BatchSamplingError with its cause."""
    def broken(params, rng):
        raise FloatingPointError("invalid allocation weights")

    monkeypatch.setattr(engine, "sample_epa_partition", broken)
    with pytest.raises(BatchSamplingError) as excinfo:
        sample_batch(6, similarity, 1.0, n_lanes=2, rng=np.random.default_rng(0))
    assert isinstance(excinfo.value.__cause__, FloatingPointError)


def test_sample_epa_one_based(similarity):
    zero = sample_epa(5, similarity, 1.0, n_lanes=2, seed=4)
    one = sample_epa(5, similarity, 1.0, n_lanes=2, seed=4, one_based=True)
    assert zero.min() == 0
    np.testing.assert_array_equal(one, zero + 1)


# ---------------------------------------------------------------------------
# Draws
# ---------------------------------------------------------------------------

def test_draws_from_labels():
    """Test arbitrary label rows are canonicalized and counted."""
    draws = Draws.from_labels([[3, 3, 1], [2, 0, 2], [5, 6, 7]])
    np.testing.assert_array_equal(draws.labels, [[0, 0, 1], [0, 1, 0], [0, 1, 2]])
    np.testing.assert_array_equal(draws.n_clusters, [2, 2, 3])
    assert draws.cluster_count_histogram() == {2: 2, 3: 1}


def test_draws_psm():
    draws = Draws.from_labels([[0, 0, 1], [0, 1, 1]])
    psm = draws.psm()
    np.testing.assert_allclose(np.diag(psm), 1.0)
    np.testing.assert_allclose(psm, psm.T)
    assert psm[0, 1] == 0.5
    assert psm[0, 2] == 0.0


def test_draws_shape_validation():
    with pytest.raises(ValueError):
        Draws(labels=np.zeros(3, dtype=np.int32), n_clusters=np.ones(1, dtype=np.int32))
    with pytest.raises(ValueError):
        Draws(labels=np.zeros((2, 3), dtype=np.int32), n_clusters=np.ones(3, dtype=np.int32))
