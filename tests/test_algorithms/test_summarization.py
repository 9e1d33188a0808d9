"""
Tests for expected-loss minimization.
"""

import numpy as np
import pytest

from caviarpd.algorithms.engine import Draws
from caviarpd.algorithms.losses import expected_loss
from caviarpd.algorithms.partition import canonicalize
from caviarpd.algorithms.summarization import (
    SummaryFit,
    _BinderCosts,
    _place,
    minimize_expected_loss,
)


def _half_split_draws():
    """Draws where within-block pairs co-cluster half the time, across never."""
    blocks = [0, 0, 0, 1, 1, 1]
    singletons = [0, 1, 2, 3, 4, 5]
    return Draws.from_labels([blocks, singletons] * 10)


@pytest.mark.parametrize("loss", ["binder", "VI"])
def test_recovers_unanimous_partition(loss):
    """Test identical draws are summarized by that partition with zero loss."""
    truth = [0, 0, 1, 1, 2, 1]
    draws = Draws.from_labels([truth] * 15)
    fit = minimize_expected_loss(draws, loss, 1.0, rng=np.random.default_rng(0))
    assert isinstance(fit, SummaryFit)
    np.testing.assert_array_equal(fit.labels, canonicalize(truth))
    assert fit.n_clusters == 3
    assert fit.expected_loss == pytest.approx(0.0, abs=1e-12)


def test_accepts_label_matrix():
    labels = np.array([[1, 1, 0], [1, 1, 0]])
    fit = minimize_expected_loss(labels, "binder", rng=np.random.default_rng(0))
    np.testing.assert_array_equal(fit.labels, [0, 0, 1])


def test_loss_weight_controls_cluster_count():
    """Test small weights split and large weights join (Binder)."""
    draws = _half_split_draws()
    rng = np.random.default_rng(1)
    low = minimize_expected_loss(draws, "binder", 0.1, rng=rng)
    high = minimize_expected_loss(draws, "binder", 1.9, rng=rng)
    assert low.n_clusters == 6
    assert high.n_clusters == 2
    np.testing.assert_array_equal(high.labels, [0, 0, 0, 1, 1, 1])


def test_vi_weight_monotone():
    draws = _half_split_draws()
    rng = np.random.default_rng(2)
    low = minimize_expected_loss(draws, "VI", 0.2, rng=rng)
    high = minimize_expected_loss(draws, "VI", 1.8, rng=rng)
    assert low.n_clusters >= high.n_clusters


def test_reported_loss_matches_labels():
    """Test the reported expected loss is that of the returned labels."""
    rng = np.random.default_rng(3)
    labels = rng.integers(0, 3, size=(30, 9))
    for loss in ("binder", "VI"):
        fit = minimize_expected_loss(labels, loss, 0.8, n_runs=4, rng=rng)
        assert fit.expected_loss == pytest.approx(expected_loss(fit.labels, labels, loss, 0.8))
        np.testing.assert_array_equal(fit.labels, canonicalize(fit.labels))


def test_max_size_caps_clusters():
    """Test the estimate never exceeds max_size clusters."""
    draws = Draws.from_labels([list(range(6))] * 5)
    for loss in ("binder", "VI"):
        fit = minimize_expected_loss(draws, loss, 1.0, max_size=2, rng=np.random.default_rng(4))
        assert fit.n_clusters <= 2


def test_more_runs_never_worse():
    rng_labels = np.random.default_rng(5)
    labels = rng_labels.integers(0, 4, size=(40, 12))
    one = minimize_expected_loss(labels, "binder", 1.0, n_runs=1, rng=np.random.default_rng(6))
    many = minimize_expected_loss(labels, "binder", 1.0, n_runs=32, rng=np.random.default_rng(6))
    assert many.expected_loss <= one.expected_loss + 1e-12


@pytest.mark.parametrize(
    "kwargs, match",
    [
        ({"a": 2.5}, "loss weight"),
        ({"a": -0.1}, "loss weight"),
        ({"n_runs": 0}, "n_runs"),
        ({"max_size": -1}, "max_size"),
        ({"loss": "squared"}, "loss"),
    ],
)
def test_invalid_arguments(kwargs, match):
    args = {"loss": "binder", "a": 1.0}
    args.update(kwargs)
    loss = args.pop("loss")
    a = args.pop("a")
    with pytest.raises(ValueError, match=match):
        minimize_expected_loss(
            [[0, 0, 1]], loss, a, rng=np.random.default_rng(0), **args
        )


def test_place_previous_slot_above_highest_label():
    """Test a singleton whose slot sits past every remaining label can be re-placed."""
    # [0, 1, 2] after item 1 merged into 0: item 2 is removed from slot 2
    labels = np.array([0, 0, -1])
    costs = _BinderCosts(Draws.from_labels(np.zeros((10, 3), dtype=int)), 1.0)
    choice, changed = _place(2, labels, costs, 3, stay=2)
    assert choice == 0
    assert changed
    assert labels.tolist() == [0, 0, 0]


def test_place_singleton_reopening_is_not_a_move():
    """Test a singleton that lands in a fresh slot does not count as a change."""
    labels = np.array([0, 0, -1])
    costs = _BinderCosts(Draws.from_labels([[0, 0, 1]] * 10), 1.0)
    choice, changed = _place(2, labels, costs, 3, stay=2)
    assert choice != 0
    assert not changed


@pytest.mark.parametrize("loss", ["binder", "VI"])
def test_random_initialization_many_seeds(loss):
    """Test runs started from random clusterings always finish with valid labels."""
    label_rng = np.random.default_rng(7)
    labels = label_rng.integers(0, 3, size=(25, 10))
    for seed in range(25):
        fit = minimize_expected_loss(
            labels, loss, 1.0, n_runs=3, prob_sequential_allocation=0.0,
            rng=np.random.default_rng(seed),
        )
        np.testing.assert_array_equal(fit.labels, canonicalize(fit.labels))
        assert 1 <= fit.n_clusters <= 10
        assert fit.expected_loss == pytest.approx(expected_loss(fit.labels, labels, loss, 1.0))
