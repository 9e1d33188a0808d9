"""
Tests for the high-level caviarpd() estimator.
"""

import numpy as np
import pytest
from scipy.spatial.distance import pdist

from caviarpd import caviarpd
from caviarpd.algorithms.calibration import CalibrationResult
from caviarpd.algorithms.engine import Draws
from caviarpd.config import RuntimeConfig, config
from caviarpd.estimator import _cluster_window


@pytest.fixture
def points():
    """Three tight groups of four points on a line."""
    rng = np.random.default_rng(0)
    centres = np.repeat([0.0, 5.0, 10.0], 4)
    return (centres + rng.normal(scale=0.05, size=12))[:, None]


def test_cluster_window():
    assert _cluster_window(3) == (3, 3)
    assert _cluster_window((5, 2)) == (2, 5)
    assert _cluster_window([2, 4]) == (2, 4)
    with pytest.raises(ValueError, match="n_clusters"):
        _cluster_window((1, 2, 3))


def test_requires_exactly_one_input(points):
    dist = pdist(points)
    with pytest.raises(ValueError, match="exactly one"):
        caviarpd(n_clusters=2)
    with pytest.raises(ValueError, match="exactly one"):
        caviarpd(distance=dist, similarity=np.ones((12, 12)), n_clusters=2)


def test_requires_clusters_or_mass(points):
    with pytest.raises(ValueError, match="n_clusters"):
        caviarpd(distance=pdist(points))


def test_samples_only(points):
    """Test samples_only returns the raw draws for one mass."""
    draws = caviarpd(
        distance=pdist(points), mass=1.0, n_samples=15, n_lanes=2, seed=1, samples_only=True
    )
    assert isinstance(draws, Draws)
    assert draws.labels.shape == (15, 12)
    with pytest.raises(ValueError, match="single"):
        caviarpd(distance=pdist(points), mass=[1.0, 2.0], samples_only=True)
    with pytest.raises(ValueError, match="single"):
        caviarpd(distance=pdist(points), samples_only=True)


def test_calibrated_estimate(points):
    """Test the estimate is a labelling of every item, within the window."""
    result = caviarpd(
        distance=pdist(points), n_clusters=(2, 4), n_samples=30, grid_length=3,
        n_lanes=2, seed=2,
    )
    assert isinstance(result, CalibrationResult)
    assert result.estimate.shape == (12,)
    assert result.samples.shape == (90, 12)
    assert result.masses.shape == (3,)
    for outcome in result.outcomes:
        assert outcome.converged_by_width or 2 <= outcome.fit.n_clusters <= 4


def test_calibrated_estimate_many_seeds(points):
    """Test the default partition search completes whatever the seed."""
    for seed in range(10):
        result = caviarpd(
            distance=pdist(points), n_clusters=(2, 3), n_samples=30, n_lanes=1, seed=seed
        )
        assert result.estimate.shape == (12,)
        assert result.samples.shape == (150, 12)


def test_mass_only_uses_one_grid_point():
    sim = np.ones((6, 6))
    result = caviarpd(similarity=sim, mass=0.5, n_samples=10, n_lanes=1, seed=3)
    np.testing.assert_allclose(result.masses, [0.5])
    assert result.samples.shape == (10, 6)
    # the whole range of cluster counts is acceptable
    assert result.outcomes[0].n_evaluations == 1


def test_mass_list_sets_grid_length():
    sim = np.ones((6, 6))
    result = caviarpd(
        similarity=sim, n_clusters=(1, 6), mass=[0.5, 1.0, 2.0], n_samples=4,
        grid_length=7, n_lanes=1, seed=3,
    )
    assert sorted(result.masses.tolist()) == [0.5, 1.0, 2.0]
    assert result.samples.shape == (12, 6)


def test_seed_reproducibility(points):
    kwargs = dict(distance=pdist(points), n_clusters=3, n_samples=20, n_lanes=2, seed=11)
    a = caviarpd(**kwargs)
    b = caviarpd(**kwargs)
    np.testing.assert_array_equal(a.estimate, b.estimate)
    np.testing.assert_array_equal(a.samples, b.samples)


def test_runtime_defaults_fill_unset_arguments(points, monkeypatch):
    """Test lanes, backend and seed fall back to the runtime configuration."""
    monkeypatch.setattr(config, "_runtime", RuntimeConfig(n_lanes=1, backend="thread", seed=9))
    a = caviarpd(distance=pdist(points), mass=1.0, n_samples=8, samples_only=True)
    b = caviarpd(distance=pdist(points), mass=1.0, n_samples=8, samples_only=True)
    np.testing.assert_array_equal(a.labels, b.labels)
