"""
Regression Adjustment
=====================
Post-sampling local-linear correction of accepted parameter draws.

Accepted draws have summaries near, not equal to, the observed summary.
Within the accepted neighbourhood the parameters are regressed on the
summary deviations and the fitted slope contribution is subtracted, which
moves every draw to where it would sit had its summaries matched exactly
(Beaumont et al., 2002). Corrections never leave the prior support.
"""

from __future__ import annotations

from typing import Tuple, Union

import numpy as np
import pandas as pd

from abcmove.inference.distance import as_summary_vector
from abcmove.inference.errors import DimensionMismatch, SingularDesign

Bounds = Union[pd.Series, np.ndarray]


def center_summaries(
    filtered_summaries: Union[pd.DataFrame, np.ndarray],
    observed,
) -> pd.DataFrame:
    """Accepted summaries minus the observed summary, column by column."""
    if isinstance(filtered_summaries, pd.DataFrame):
        frame = filtered_summaries.reset_index(drop=True).astype(float)
        columns = list(frame.columns)
    else:
        values = np.asarray(filtered_summaries, dtype=float)
        if values.ndim != 2:
            raise DimensionMismatch(f"accepted summaries must be 2-D, got shape {values.shape}")
        frame = pd.DataFrame(values, columns=[f"s{j}" for j in range(values.shape[1])])
        columns = None
    obs = as_summary_vector(observed, columns)
    if obs.shape[0] != frame.shape[1]:
        raise DimensionMismatch(
            f"observed summary has {obs.shape[0]} values, accepted summaries have {frame.shape[1]}"
        )
    return frame - obs


def fit_local_linear(
    filtered_params: pd.DataFrame,
    centered: pd.DataFrame,
) -> pd.DataFrame:
    """
    Least-squares slopes of parameters on centred summaries.

    An intercept is fitted and dropped: the correction is evaluated at the
    observed summary, where the centred predictors are zero.

    Returns:
        Coefficient table, one row per summary dimension and one column
        per parameter
    """
    params = filtered_params.to_numpy(dtype=float)
    predictors = centered.to_numpy(dtype=float)
    if params.shape[0] != predictors.shape[0]:
        raise DimensionMismatch(
            f"{params.shape[0]} accepted draws but {predictors.shape[0]} summary rows"
        )
    if not (np.isfinite(params).all() and np.isfinite(predictors).all()):
        raise SingularDesign("regression design contains missing or infinite values")

    design = np.column_stack([np.ones(predictors.shape[0]), predictors])
    rank = np.linalg.matrix_rank(design)
    if rank < design.shape[1]:
        raise SingularDesign(
            f"regression design has rank {rank} < {design.shape[1]} "
            f"({design.shape[0]} accepted draws, {predictors.shape[1]} summaries)"
        )

    beta, _, _, _ = np.linalg.lstsq(design, params, rcond=None)
    return pd.DataFrame(beta[1:], index=centered.columns, columns=filtered_params.columns)


def clamp_to_bounds(sample: pd.DataFrame, lower: Bounds, upper: Bounds) -> pd.DataFrame:
    lo = np.asarray(lower, dtype=float)
    hi = np.asarray(upper, dtype=float)
    values = np.clip(sample.to_numpy(dtype=float), lo, hi)
    return pd.DataFrame(values, columns=sample.columns)


def apply_adjustment(
    filtered_params: pd.DataFrame,
    centered: pd.DataFrame,
    coefficients: pd.DataFrame,
    lower: Bounds,
    upper: Bounds,
) -> pd.DataFrame:
    correction = centered.to_numpy(dtype=float) @ coefficients.to_numpy(dtype=float)
    adjusted = pd.DataFrame(
        filtered_params.to_numpy(dtype=float) - correction,
        columns=filtered_params.columns,
    )
    return clamp_to_bounds(adjusted, lower, upper)


def regression_adjust(
    filtered_params: pd.DataFrame,
    filtered_summaries: Union[pd.DataFrame, np.ndarray],
    observed,
    lower: Bounds,
    upper: Bounds,
) -> pd.DataFrame:
    """Regression-adjusted accepted sample, clamped to [lower, upper]."""
    adjusted, _ = regression_adjust_with_coefficients(
        filtered_params, filtered_summaries, observed, lower, upper
    )
    return adjusted


def regression_adjust_with_coefficients(
    filtered_params: pd.DataFrame,
    filtered_summaries: Union[pd.DataFrame, np.ndarray],
    observed,
    lower: Bounds,
    upper: Bounds,
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    centered = center_summaries(filtered_summaries, observed)
    params = filtered_params.reset_index(drop=True)
    coefficients = fit_local_linear(params, centered)
    return apply_adjustment(params, centered, coefficients, lower, upper), coefficients
