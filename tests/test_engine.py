import numpy as np
import pandas as pd
import pytest

from abcmove import engine
from abcmove.config import EngineConfig
from abcmove.engine import get_estimate, prior_bounds
from abcmove.inference.errors import (
    DegenerateScale,
    DimensionMismatch,
    EmptyInput,
    InvalidProportion,
    InvalidWorkerCount,
)
from abcmove.inference.priors import default_movement_priors, sample_parameter_table
from abcmove.interfaces import build_selection

TRUTH = {"perception_range": 8.0, "niche_optimum": 0.5, "niche_range": 0.5, "observation_error": 1.0}
TARGETS = list(TRUTH)


def _summaries(params: pd.DataFrame, rng: np.random.Generator, noise: float = 1.0) -> pd.DataFrame:
    n = len(params)
    return pd.DataFrame(
        {
            "step_length": 0.8 * params["perception_range"] + rng.normal(0, 0.5 * noise, n),
            "env_mean": params["niche_optimum"] + rng.normal(0, 0.05 * noise, n),
            "env_sd": 0.5 * params["niche_range"] + rng.normal(0, 0.05 * noise, n),
            "turn_sd": params["observation_error"] + rng.normal(0, 0.1 * noise, n),
        }
    )


def _world(n, seed=0):
    rng = np.random.default_rng(seed)
    params = sample_parameter_table(default_movement_priors(), n, rng)
    simulated = _summaries(params, rng)
    observed = _summaries(pd.DataFrame([TRUTH]), rng, noise=0.0)
    return params, simulated, observed


def test_end_to_end_ten_thousand_draws():
    params, simulated, observed = _world(10000)
    selection = build_selection({"true": observed}, simulated, TARGETS)
    cfg = EngineConfig(proportion=0.001, compute_map=False)
    estimate = get_estimate(params, selection, cfg)

    target = estimate["true"]
    assert len(target.filtered) == 10
    assert list(target.filtered.columns) == TARGETS
    assert 1.0 <= target.median["perception_range"] <= 15.0
    assert abs(target.median["perception_range"] - TRUTH["perception_range"]) < 4.0
    assert list(target.quantiles.index) == [0.025, 0.975]
    assert (target.quantiles.loc[0.025] <= target.quantiles.loc[0.975]).all()
    assert target.adjusted is not None
    for col in TARGETS:
        assert (target.adjusted[col] >= estimate.lower[col]).all()
        assert (target.adjusted[col] <= estimate.upper[col]).all()
    assert estimate.proportion == 0.001
    assert estimate.target_parameters == TARGETS
    assert target.model_estimate["step_length"] == pytest.approx(6.4)
    assert estimate.failures() == {}


def test_inputs_are_not_mutated():
    params, simulated, observed = _world(500)
    params_copy, simulated_copy = params.copy(), simulated.copy()
    selection = build_selection({"true": observed}, simulated, TARGETS)
    get_estimate(params, selection, EngineConfig(proportion=0.1, compute_map=False))
    pd.testing.assert_frame_equal(params, params_copy)
    pd.testing.assert_frame_equal(simulated, simulated_copy)


def test_map_for_single_target_parameter():
    params, simulated, observed = _world(2000, seed=1)
    selection = build_selection({"true": observed}, simulated, ["perception_range"])
    calls = []
    estimate = get_estimate(
        params,
        selection,
        EngineConfig(proportion=0.05),
        progress=lambda done, total: calls.append((done, total)),
    )
    target = estimate["true"]
    lower, upper = estimate.lower["perception_range"], estimate.upper["perception_range"]
    assert target.map is not None and target.map_adjusted is not None
    for value in [target.map["perception_range"], target.map_adjusted["perception_range"]]:
        assert lower <= value <= upper
        assert abs(value - TRUTH["perception_range"]) < 2.5
    assert calls == [(1, 1), (1, 1)]

    summary = estimate.summary_frame()
    stats = set(summary["statistic"])
    assert {"median", "q0.025", "q0.975", "map", "median_adjusted", "map_adjusted"} <= stats


def test_regression_failure_is_recorded_per_target():
    params, simulated, observed = _world(2000, seed=2)
    flagged = simulated.assign(flag=(np.arange(len(simulated)) % 500 == 0).astype(float))
    selection = build_selection(
        {"good": observed, "bad": observed.assign(flag=0.0)},
        {"good": simulated, "bad": flagged},
        ["perception_range", "niche_optimum"],
    )
    estimate = get_estimate(params, selection, EngineConfig(proportion=0.05, compute_map=False))

    assert estimate["good"].adjusted is not None
    assert estimate["bad"].adjusted is None
    assert "SingularDesign" in estimate["bad"].regression_error
    assert list(estimate.failures()) == ["bad"]
    assert len(estimate["bad"].filtered) == 100
    failures = estimate.failure_frame()
    assert list(failures["stage"]) == ["regression"]


def test_torch_backend_selects_same_draws():
    params, simulated, observed = _world(3000, seed=3)
    selection = build_selection({"true": observed}, simulated, TARGETS)
    base = get_estimate(params, selection, EngineConfig(proportion=0.01, compute_map=False))
    torched = get_estimate(
        params,
        selection,
        EngineConfig(proportion=0.01, compute_map=False, backend="torch", device="cpu"),
    )
    np.testing.assert_array_equal(base["true"].indices, torched["true"].indices)


def test_global_errors_abort_before_work():
    params, simulated, observed = _world(300, seed=4)
    selection = build_selection({"true": observed}, simulated, TARGETS)
    with pytest.raises(InvalidProportion):
        get_estimate(params, selection, EngineConfig.model_construct(proportion=1.5))
    with pytest.raises(InvalidWorkerCount):
        get_estimate(params, selection, EngineConfig(parallel=0))
    short = build_selection({"true": observed}, simulated.iloc[:-1], TARGETS)
    with pytest.raises(DimensionMismatch):
        get_estimate(params, short, EngineConfig(compute_map=False))
    wrong = build_selection({"true": observed.drop(columns="turn_sd")}, simulated, TARGETS)
    with pytest.raises(DimensionMismatch):
        get_estimate(params, wrong, EngineConfig(compute_map=False))


def _count_filter_calls(monkeypatch):
    calls = []
    filter_draws = engine.filter_draws

    def counting(*args, **kwargs):
        calls.append(1)
        return filter_draws(*args, **kwargs)

    monkeypatch.setattr(engine, "filter_draws", counting)
    return calls


def test_missing_observed_value_fails_before_any_target_runs(monkeypatch):
    params, simulated, observed = _world(500, seed=6)
    calls = _count_filter_calls(monkeypatch)
    selection = build_selection(
        {"good": observed, "bad": observed.assign(env_sd=np.nan)}, simulated, TARGETS
    )
    with pytest.raises(EmptyInput, match="bad"):
        get_estimate(params, selection, EngineConfig(compute_map=False))
    assert calls == []


def test_degenerate_scale_policy_checked_before_any_target_runs(monkeypatch):
    params, simulated, observed = _world(500, seed=7)
    calls = _count_filter_calls(monkeypatch)
    flat = simulated.assign(env_mean=0.5)
    selection = build_selection(
        {"good": observed, "flat": observed.assign(env_mean=np.nan)},
        {"good": simulated, "flat": flat},
        TARGETS,
    )
    with pytest.raises(DegenerateScale, match="flat"):
        get_estimate(params, selection, EngineConfig(compute_map=False, degenerate_scale="raise"))
    assert calls == []

    # excluded dimensions may be missing from the observed summary
    estimate = get_estimate(params, selection, EngineConfig(proportion=0.05, compute_map=False))
    assert calls == [1, 1]
    assert len(estimate["flat"].filtered) == 25
    assert estimate["flat"].adjusted is not None
    assert estimate.failures() == {}


def test_prior_bounds_from_sample():
    params = pd.DataFrame({"a": [3.0, 1.0, 2.0], "b": [0.5, 0.1, 0.9]})
    lower, upper = prior_bounds(params, ["a", "b"])
    assert list(lower) == [1.0, 0.1]
    assert list(upper) == [3.0, 0.9]
