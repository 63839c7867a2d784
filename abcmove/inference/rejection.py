"""
Rejection Filter
================
Keeps the closest fraction of simulated draws as the accepted posterior sample.
"""

from __future__ import annotations

import logging
import math
from typing import List, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from abcmove.inference.errors import DimensionMismatch, EmptyInput, InvalidProportion

ColumnSelector = Sequence[Union[str, int]]


def check_proportion(proportion: float) -> float:
    try:
        value = float(proportion)
    except (TypeError, ValueError) as exc:
        raise InvalidProportion(f"proportion must be a number, got {proportion!r}") from exc
    if not math.isfinite(value) or value <= 0.0 or value > 1.0:
        raise InvalidProportion(f"proportion must lie in (0, 1], got {proportion!r}")
    return value


def accepted_count(n: int, proportion: float) -> int:
    """ceil(n * proportion), clamped to [1, n]."""
    proportion = check_proportion(proportion)
    if n <= 0:
        raise EmptyInput("no draws to filter")
    # round first so that 10000 * 0.001 stays 10
    k = math.ceil(round(n * proportion, 9))
    return int(min(max(k, 1), n))


def resolve_columns(parameters: pd.DataFrame, target_columns: ColumnSelector) -> List[str]:
    """Map column names or integer positions onto parameter column names."""
    columns = []
    for col in target_columns:
        if isinstance(col, (int, np.integer)) and not isinstance(col, bool) and col not in parameters.columns:
            if not 0 <= int(col) < parameters.shape[1]:
                raise DimensionMismatch(f"target parameter position {col} out of range")
            columns.append(parameters.columns[int(col)])
        elif col in parameters.columns:
            columns.append(col)
        else:
            raise DimensionMismatch(f"unknown target parameter {col!r}")
    if not columns:
        raise DimensionMismatch("no target parameters selected")
    return columns


def filter_draws(
    parameters: pd.DataFrame,
    distances: np.ndarray,
    proportion: float,
    target_columns: ColumnSelector,
) -> Tuple[pd.DataFrame, np.ndarray]:
    """
    Select the draws with the smallest distances.

    Args:
        parameters: Full parameter sample, one row per simulated draw
        distances: Distance of each draw to the observed summary
        proportion: Fraction of draws to keep, in (0, 1]
        target_columns: Parameter columns under inference

    Returns:
        The retained rows (target columns only, ascending distance) and
        their original integer positions
    """
    proportion = check_proportion(proportion)
    n = len(parameters)
    if n == 0:
        raise EmptyInput("parameter sample is empty")
    distances = np.asarray(distances, dtype=float).reshape(-1)
    if distances.shape[0] != n:
        raise DimensionMismatch(f"{distances.shape[0]} distances for {n} parameter draws")
    columns = resolve_columns(parameters, target_columns)

    finite = np.isfinite(distances)
    n_finite = int(finite.sum())
    if n_finite == 0:
        raise EmptyInput("no draw has a finite distance")

    ranked = np.where(finite, distances, np.inf)
    order = np.argsort(ranked, kind="stable")

    k = accepted_count(n, proportion)
    if n_finite < k:
        logging.warning(
            "Only %d of %d requested draws have a finite distance; keeping %d",
            n_finite, k, n_finite,
        )
        k = n_finite

    indices = order[:k]
    filtered = parameters.iloc[indices][columns].reset_index(drop=True)
    return filtered, indices
