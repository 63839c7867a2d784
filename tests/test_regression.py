import numpy as np
import pandas as pd
import pytest

from abcmove.inference.errors import SingularDesign
from abcmove.inference.regression import (
    center_summaries,
    fit_local_linear,
    regression_adjust,
    regression_adjust_with_coefficients,
)


def _linear_problem(n=200, seed=0):
    rng = np.random.default_rng(seed)
    params = pd.DataFrame({"a": rng.uniform(0, 10, n), "b": rng.uniform(-1, 1, n)})
    summaries = pd.DataFrame(
        {
            "s1": 2.0 * params["a"] + rng.normal(0, 0.01, n),
            "s2": -3.0 * params["b"] + rng.normal(0, 0.01, n),
        }
    )
    return params, summaries


def test_coefficients_recover_linear_relationship():
    params, summaries = _linear_problem()
    centered = center_summaries(summaries, pd.Series({"s1": 10.0, "s2": 0.0}))
    coef = fit_local_linear(params, centered)
    assert coef.shape == (2, 2)
    assert coef.loc["s1", "a"] == pytest.approx(0.5, abs=1e-3)
    assert coef.loc["s2", "b"] == pytest.approx(-1.0 / 3.0, abs=1e-3)
    assert abs(coef.loc["s1", "b"]) < 1e-3


def test_adjustment_moves_draws_to_observed_point():
    params, summaries = _linear_problem()
    observed = pd.Series({"s1": 10.0, "s2": 0.6})
    adjusted = regression_adjust(params, summaries, observed, np.array([0.0, -1.0]), np.array([10.0, 1.0]))
    np.testing.assert_allclose(adjusted["a"], 5.0, atol=0.05)
    np.testing.assert_allclose(adjusted["b"], -0.2, atol=0.05)


def test_adjusted_values_stay_in_bounds():
    rng = np.random.default_rng(4)
    n = 60
    params = pd.DataFrame({"a": rng.uniform(1, 15, n), "b": rng.uniform(0, 1, n)})
    summaries = pd.DataFrame(
        {"s1": params["a"] * 3 + rng.normal(0, 5, n), "s2": rng.normal(0, 1, n), "s3": params["b"]}
    )
    observed = pd.Series({"s1": 200.0, "s2": -10.0, "s3": 5.0})
    lower = pd.Series({"a": 1.0, "b": 0.0})
    upper = pd.Series({"a": 15.0, "b": 1.0})
    adjusted, coef = regression_adjust_with_coefficients(params, summaries, observed, lower, upper)
    assert list(coef.index) == ["s1", "s2", "s3"]
    assert (adjusted["a"] >= 1.0).all() and (adjusted["a"] <= 15.0).all()
    assert (adjusted["b"] >= 0.0).all() and (adjusted["b"] <= 1.0).all()
    assert ((adjusted["a"] == 15.0) | (adjusted["a"] == 1.0)).any()


def test_singular_design_is_explicit():
    params, summaries = _linear_problem(n=3)
    extra = summaries.assign(s3=1.0, s4=summaries["s1"] * 2)
    with pytest.raises(SingularDesign):
        regression_adjust(params, extra, extra.iloc[0], np.zeros(2) - 1, np.full(2, 10.0))

    params, summaries = _linear_problem(n=50)
    constant = summaries.assign(s2=0.5)
    with pytest.raises(SingularDesign):
        regression_adjust(params, constant, pd.Series({"s1": 1.0, "s2": 0.5}), np.array([0.0, -1.0]), np.array([10.0, 1.0]))
