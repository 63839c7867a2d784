from __future__ import annotations

import logging
import time
from typing import Dict, Hashable, List, Optional, Tuple

import numpy as np
import pandas as pd

from abcmove.config import EngineConfig
from abcmove.inference.aggregate import ABCEstimate, TargetEstimate, summarise_sample
from abcmove.inference.batch import (
    LogProgress,
    MapOutcome,
    ProgressCallback,
    resolve_workers,
    run_map_batch,
)
from abcmove.inference.distance import (
    as_summary_vector,
    compute_distances,
    compute_distances_torch,
    reference_scale,
    usable_dimensions,
)
from abcmove.inference.errors import DegenerateScale, DimensionMismatch, EmptyInput, SingularDesign
from abcmove.inference.regression import regression_adjust_with_coefficients
from abcmove.inference.rejection import accepted_count, check_proportion, filter_draws, resolve_columns
from abcmove.interfaces import SummarySelection


# per-target reference scale and mask of usable summary dimensions
Scale = Tuple[np.ndarray, np.ndarray]


def prior_bounds(parameters: pd.DataFrame, columns: List[str]) -> Tuple[pd.Series, pd.Series]:
    """Observed min and max of each target column over the full prior sample."""
    subset = parameters[columns].astype(float)
    return subset.min(axis=0), subset.max(axis=0)


def _as_frame(simulated) -> pd.DataFrame:
    if isinstance(simulated, pd.DataFrame):
        return simulated.reset_index(drop=True)
    values = np.asarray(simulated, dtype=float)
    if values.ndim != 2:
        raise DimensionMismatch(f"simulated summaries must be 2-D, got shape {values.shape}")
    return pd.DataFrame(values, columns=[f"s{j}" for j in range(values.shape[1])])


def _validate(
    parameters: pd.DataFrame,
    selection: SummarySelection,
    degenerate: str,
) -> Tuple[Dict[Hashable, pd.DataFrame], Dict[Hashable, pd.Series], Dict[Hashable, Scale]]:
    n = len(parameters)
    if n == 0:
        raise EmptyInput("parameter sample is empty")
    if not selection.target_ids:
        raise EmptyInput("no observed summaries to infer from")
    simulated = {}
    observed = {}
    scales = {}
    for key in selection.target_ids:
        sim = _as_frame(selection.simulated[key])
        if len(sim) != n:
            raise DimensionMismatch(
                f"target {key}: {len(sim)} simulated summaries for {n} parameter draws"
            )
        obs = as_summary_vector(selection.observed[key], list(sim.columns))
        if obs.shape[0] != sim.shape[1]:
            raise DimensionMismatch(
                f"target {key}: observed summary has {obs.shape[0]} values, "
                f"simulated summaries have {sim.shape[1]}"
            )
        names = [str(c) for c in sim.columns]
        reference = reference_scale(sim)
        try:
            keep = usable_dimensions(reference, names, degenerate)
        except DegenerateScale as exc:
            raise DegenerateScale(f"target {key}: {exc}") from exc
        missing = [name for name, used, value in zip(names, keep, obs) if used and not np.isfinite(value)]
        if missing:
            # every distance would be NaN
            raise EmptyInput(f"target {key}: observed summary is missing values for {missing}")
        if not np.isfinite(sim.to_numpy(dtype=float)[:, keep]).all(axis=1).any():
            raise EmptyInput(f"target {key}: no simulated draw has a complete summary")
        simulated[key] = sim
        observed[key] = pd.Series(obs, index=sim.columns, name=key)
        scales[key] = (reference, keep)
    return simulated, observed, scales


def get_estimate(
    parameters: pd.DataFrame,
    selection: SummarySelection,
    config: Optional[EngineConfig] = None,
    progress: Optional[ProgressCallback] = None,
) -> ABCEstimate:
    """
    ABC rejection estimate for every target in the selection.

    Global settings (proportion, worker count, dimensions) and every
    target's observed and simulated summaries are checked before any work
    starts. Regression and MAP failures are recorded per target.
    """
    start = time.perf_counter()
    cfg = config or EngineConfig()
    proportion = check_proportion(cfg.proportion)
    mode = cfg.execution_mode()
    resolve_workers(mode)
    columns = resolve_columns(parameters, selection.target_parameters)
    simulated, observed, scales = _validate(parameters, selection, cfg.degenerate_scale)
    lower, upper = prior_bounds(parameters, columns)

    n = len(parameters)
    logging.info(
        "ABC rejection: %d target(s), keeping %d of %d draws (proportion %g)",
        len(observed), accepted_count(n, proportion), n, proportion,
    )

    parts: Dict[Hashable, dict] = {}
    for key, obs in observed.items():
        sim = simulated[key]
        reference, keep = scales[key]
        sim_used = sim.loc[:, keep]
        obs_used = obs[keep]
        if cfg.backend == "torch":
            distances = compute_distances_torch(sim_used, obs_used, reference[keep], device=cfg.device)
        else:
            distances = compute_distances(sim_used, obs_used, reference[keep])

        filtered, indices = filter_draws(parameters, distances, proportion, columns)
        median, quantiles = summarise_sample(filtered, cfg.ci_levels)
        part = {
            "filtered": filtered,
            "indices": indices,
            "median": median,
            "quantiles": quantiles,
            "model_estimate": obs,
        }

        if cfg.regression_adjust:
            try:
                adjusted, coefficients = regression_adjust_with_coefficients(
                    filtered, sim_used.iloc[indices], obs_used, lower, upper
                )
            except SingularDesign as exc:
                logging.warning("Regression adjustment failed for target %s: %s", key, exc)
                part["regression_error"] = f"{type(exc).__name__}: {exc}"
            else:
                median_adj, quantiles_adj = summarise_sample(adjusted, cfg.ci_levels)
                part.update(
                    adjusted=adjusted,
                    coefficients=coefficients,
                    median_adjusted=median_adj,
                    quantiles_adjusted=quantiles_adj,
                )
        parts[key] = part

    if cfg.compute_map:
        options = cfg.map_options()
        outcomes = run_map_batch(
            {key: part["filtered"] for key, part in parts.items()},
            mode,
            lower,
            upper,
            options=options,
            progress=progress or LogProgress("MAP", every=max(1, len(parts) // 10)),
            executor=cfg.executor,
        )
        _attach_map(parts, outcomes, "map")
        if cfg.regression_adjust:
            adjusted_targets = {
                key: part["adjusted"] for key, part in parts.items() if "adjusted" in part
            }
            outcomes_adj = run_map_batch(
                adjusted_targets,
                mode,
                lower,
                upper,
                options=options,
                progress=progress or LogProgress("MAP (adjusted)", every=max(1, len(parts) // 10)),
                executor=cfg.executor,
            )
            _attach_map(parts, outcomes_adj, "map_adjusted")

    elapsed = time.perf_counter() - start
    estimate = ABCEstimate(
        targets={key: TargetEstimate(**part) for key, part in parts.items()},
        target_parameters=columns,
        proportion=proportion,
        ci_levels=tuple(cfg.ci_levels),
        lower=lower,
        upper=upper,
        elapsed=elapsed,
        regression_adjusted=cfg.regression_adjust,
        map_computed=cfg.compute_map,
        n_draws=n,
    )
    n_failed = len(estimate.failures())
    logging.info("ABC estimate finished in %.2fs (%d target(s) with failures)", elapsed, n_failed)
    return estimate


def _attach_map(parts: Dict[Hashable, dict], outcomes: Dict[Hashable, MapOutcome], field: str) -> None:
    for key, outcome in outcomes.items():
        if outcome.ok:
            parts[key][field] = outcome.estimate
        else:
            parts[key][f"{field}_error"] = outcome.error
