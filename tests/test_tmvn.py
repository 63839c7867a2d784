import numpy as np
import pandas as pd
import pytest

from abcmove.inference import tmvn
from abcmove.inference.errors import OptimizationFailure
from abcmove.inference.tmvn import MapOptions, box_probability, estimate_map, fit_truncated_mvn


def test_box_probability_one_dimension():
    mass = box_probability(np.array([0.0]), np.array([[1.0]]), np.array([-1.96]), np.array([1.96]))
    assert mass == pytest.approx(0.95, abs=1e-3)


def test_box_probability_independent_dimensions():
    mass = box_probability(
        np.zeros(2), np.eye(2), np.array([-np.inf, 0.0]), np.array([0.0, np.inf]), seed=1
    )
    assert mass == pytest.approx(0.25, abs=1e-3)


def test_map_close_to_mean_for_interior_sample():
    rng = np.random.default_rng(0)
    sample = pd.DataFrame({"perception_range": rng.normal(5.0, 1.0, 200)})
    estimate = estimate_map(sample, np.array([0.0]), np.array([10.0]))
    assert list(estimate.index) == ["perception_range"]
    assert estimate["perception_range"] == pytest.approx(sample["perception_range"].mean(), abs=0.05)


def test_map_two_dimensional_interior_sample():
    rng = np.random.default_rng(1)
    cov = np.array([[0.25, 0.05], [0.05, 0.16]])
    values = rng.multivariate_normal([5.0, 4.0], cov, size=300)
    sample = pd.DataFrame(values, columns=["a", "b"])
    fit = fit_truncated_mvn(sample, np.array([0.0, 0.0]), np.array([10.0, 10.0]))
    np.testing.assert_allclose(fit.mean, values.mean(axis=0), atol=0.02)
    np.testing.assert_allclose(fit.covariance, np.cov(values, rowvar=False, bias=True), atol=0.02)


def test_map_stays_in_bounds_near_edge():
    rng = np.random.default_rng(2)
    values = 1.0 - np.abs(rng.normal(0.0, 0.2, 150))
    values = values[values > 0.0]
    sample = pd.DataFrame({"niche_optimum": values})
    estimate = estimate_map(sample, pd.Series({"niche_optimum": 0.0}), pd.Series({"niche_optimum": 1.0}))
    assert 0.0 <= estimate["niche_optimum"] <= 1.0
    assert estimate["niche_optimum"] > 0.8


def test_map_is_deterministic():
    rng = np.random.default_rng(3)
    sample = pd.DataFrame({"a": rng.normal(2.0, 0.5, 80)})
    opts = MapOptions(seed=7)
    first = estimate_map(sample, np.array([0.0]), np.array([4.0]), opts, position=3)
    second = estimate_map(sample, np.array([0.0]), np.array([4.0]), opts, position=3)
    assert first.equals(second)


def test_unfittable_samples_raise():
    constant = pd.DataFrame({"a": np.linspace(0, 1, 10), "b": np.full(10, 0.5)})
    with pytest.raises(OptimizationFailure):
        estimate_map(constant, np.zeros(2), np.ones(2))
    with pytest.raises(OptimizationFailure):
        estimate_map(pd.DataFrame({"a": [0.5]}), np.zeros(1), np.ones(1))
    with pytest.raises(OptimizationFailure):
        estimate_map(pd.DataFrame({"a": [0.1, np.nan, 0.3]}), np.zeros(1), np.ones(1))


def test_numerical_error_becomes_optimization_failure(monkeypatch):
    def broken_minimize(*args, **kwargs):
        raise np.linalg.LinAlgError("Matrix is not positive definite")

    monkeypatch.setattr(tmvn, "minimize", broken_minimize)
    sample = pd.DataFrame({"a": np.random.default_rng(2).normal(0.5, 0.1, 40)})
    with pytest.raises(OptimizationFailure, match="aborted"):
        estimate_map(sample, np.zeros(1), np.ones(1))
