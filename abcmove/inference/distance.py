"""
Distance Engine
===============
Standardised Euclidean distance between simulated and observed summaries.

Each summary dimension is divided by a reference scale (by default the
range of that dimension across the simulated population) before the
dimensions are combined, so that no statistic dominates because of its units.
"""

from __future__ import annotations

import logging
import warnings
from typing import List, Literal, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
import torch

from abcmove.inference.errors import DegenerateScale, DimensionMismatch, EmptyInput

Matrix = Union[np.ndarray, pd.DataFrame]
Vector = Union[np.ndarray, pd.Series, pd.DataFrame, Sequence[float]]
DegeneratePolicy = Literal["exclude", "raise"]


def resolve_device(device: str) -> torch.device:
    """Map "auto" to CUDA when available, else CPU; other names pass through."""
    if device == "auto":
        return torch.device("cuda" if torch.cuda.is_available() else "cpu")
    return torch.device(device)


def as_summary_vector(observed: Vector, columns: Optional[Sequence[str]] = None) -> np.ndarray:
    """
    Flatten an observed summary into a 1-D float vector.

    A reference set given as a DataFrame with several rows is reduced to
    its column-wise mean. Labelled inputs are reordered to ``columns``.
    """
    if isinstance(observed, pd.DataFrame):
        if len(observed) == 0:
            raise EmptyInput("observed summary has no rows")
        frame = observed
        if columns is not None:
            frame = _align_columns(frame, columns)
        return frame.mean(axis=0).to_numpy(dtype=float)
    if isinstance(observed, pd.Series):
        series = observed
        if columns is not None:
            series = _align_columns(series.to_frame().T, columns).iloc[0]
        return series.to_numpy(dtype=float)
    values = np.asarray(observed, dtype=float)
    if values.ndim == 2:
        if values.shape[0] == 0:
            raise EmptyInput("observed summary has no rows")
        values = values.mean(axis=0)
    return values.reshape(-1)


def _align_columns(frame: pd.DataFrame, columns: Sequence[str]) -> pd.DataFrame:
    missing = [c for c in columns if c not in frame.columns]
    extra = [c for c in frame.columns if c not in set(columns)]
    if missing or extra:
        raise DimensionMismatch(
            f"observed summary columns differ from simulated: missing={missing}, extra={extra}"
        )
    return frame.loc[:, list(columns)]


def _column_names(simulated: Matrix) -> List[str]:
    if isinstance(simulated, pd.DataFrame):
        return [str(c) for c in simulated.columns]
    return [f"s{j}" for j in range(np.asarray(simulated).shape[1])]


def reference_scale(simulated: Matrix) -> np.ndarray:
    """Per-dimension range (max - min) of the simulated summaries, NaN ignored."""
    values = np.asarray(simulated, dtype=float)
    if values.ndim != 2:
        raise DimensionMismatch(f"simulated summaries must be 2-D, got shape {values.shape}")
    if values.shape[0] == 0:
        raise EmptyInput("no simulated summaries")
    with warnings.catch_warnings():
        # all-NaN columns give NaN, caught later as a degenerate scale
        warnings.simplefilter("ignore", RuntimeWarning)
        return np.nanmax(values, axis=0) - np.nanmin(values, axis=0)


def _check_inputs(
    simulated: Matrix,
    observed: Vector,
    reference: Vector,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    columns = list(simulated.columns) if isinstance(simulated, pd.DataFrame) else None
    sim = np.asarray(simulated, dtype=float)
    if sim.ndim != 2:
        raise DimensionMismatch(f"simulated summaries must be 2-D, got shape {sim.shape}")
    obs = as_summary_vector(observed, columns)
    ref = np.asarray(reference, dtype=float).reshape(-1)
    d = sim.shape[1]
    if obs.shape[0] != d or ref.shape[0] != d:
        raise DimensionMismatch(
            f"summary dimensions disagree: simulated={d}, observed={obs.shape[0]}, "
            f"reference={ref.shape[0]}"
        )
    return sim, obs, ref


def usable_dimensions(
    reference: np.ndarray,
    names: Sequence[str],
    degenerate: DegeneratePolicy = "exclude",
) -> np.ndarray:
    """Boolean mask of dimensions whose reference scale can be divided by."""
    bad = ~np.isfinite(reference) | (reference == 0)
    if not bad.any():
        return ~bad
    bad_names = [n for n, b in zip(names, bad) if b]
    if bad.all():
        raise DegenerateScale(f"every summary dimension has a zero or undefined scale: {bad_names}")
    if degenerate == "raise":
        raise DegenerateScale(f"zero or undefined reference scale for {bad_names}")
    logging.warning("Excluding degenerate summary dimensions from distance: %s", bad_names)
    return ~bad


def compute_distances(
    simulated: Matrix,
    observed: Vector,
    reference: Vector,
    degenerate: DegeneratePolicy = "exclude",
) -> np.ndarray:
    """
    Distance of every simulated summary row to the observed summary.

    distance[i] = sqrt(sum_j ((simulated[i, j] - observed[j]) / reference[j]) ** 2)

    Rows with missing summaries give NaN, which the rejection filter never
    accepts.
    """
    sim, obs, ref = _check_inputs(simulated, observed, reference)
    keep = usable_dimensions(ref, _column_names(simulated), degenerate)
    deviation = (sim[:, keep] - obs[keep]) / ref[keep]
    return np.sqrt(np.sum(deviation ** 2, axis=1))


def compute_distances_torch(
    simulated: Matrix,
    observed: Vector,
    reference: Vector,
    device: str = "auto",
    degenerate: DegeneratePolicy = "exclude",
) -> np.ndarray:
    """
    Torch version of compute_distances.

    Runs in float64 on ``device`` so the ranking matches the numpy path;
    returns a numpy array on the CPU.
    """
    sim, obs, ref = _check_inputs(simulated, observed, reference)
    keep = usable_dimensions(ref, _column_names(simulated), degenerate)
    dev = resolve_device(device)
    sim_t = torch.as_tensor(sim[:, keep], dtype=torch.float64, device=dev)
    obs_t = torch.as_tensor(obs[keep], dtype=torch.float64, device=dev)
    ref_t = torch.as_tensor(ref[keep], dtype=torch.float64, device=dev)
    deviation = (sim_t - obs_t) / ref_t
    distances = torch.sqrt(torch.sum(deviation ** 2, dim=1))
    return distances.detach().cpu().numpy()
