"""
Estimate Aggregation
====================
Per-target posterior summaries collected into one result object.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Hashable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd


def summarise_sample(
    sample: pd.DataFrame,
    ci_levels: Sequence[float] = (0.025, 0.975),
) -> Tuple[pd.Series, pd.DataFrame]:
    """Column medians and quantiles (linear interpolation) of a sample."""
    median = sample.median(axis=0)
    median.name = "median"
    quantiles = sample.quantile(list(ci_levels), interpolation="linear")
    return median, quantiles


@dataclass(frozen=True)
class TargetEstimate:
    """Posterior summaries for one inference target."""

    filtered: pd.DataFrame
    indices: np.ndarray
    median: pd.Series
    quantiles: pd.DataFrame
    model_estimate: pd.Series
    map: Optional[pd.Series] = None
    map_error: Optional[str] = None
    adjusted: Optional[pd.DataFrame] = None
    median_adjusted: Optional[pd.Series] = None
    quantiles_adjusted: Optional[pd.DataFrame] = None
    map_adjusted: Optional[pd.Series] = None
    map_adjusted_error: Optional[str] = None
    regression_error: Optional[str] = None
    coefficients: Optional[pd.DataFrame] = None

    @property
    def errors(self) -> Dict[str, str]:
        found = {
            "regression": self.regression_error,
            "map": self.map_error,
            "map_adjusted": self.map_adjusted_error,
        }
        return {stage: msg for stage, msg in found.items() if msg is not None}

    @property
    def failed(self) -> bool:
        return bool(self.errors)


@dataclass(frozen=True)
class ABCEstimate:
    """
    Result of one inference call.

    ``targets`` maps each target id to its TargetEstimate, in the order the
    observed summaries were given.
    """

    targets: Dict[Hashable, TargetEstimate]
    target_parameters: List[str]
    proportion: float
    ci_levels: Tuple[float, ...]
    lower: pd.Series
    upper: pd.Series
    elapsed: float = 0.0
    regression_adjusted: bool = False
    map_computed: bool = False
    n_draws: int = 0

    def __getitem__(self, key: Hashable) -> TargetEstimate:
        return self.targets[key]

    def __len__(self) -> int:
        return len(self.targets)

    def failures(self) -> Dict[Hashable, Dict[str, str]]:
        return {key: est.errors for key, est in self.targets.items() if est.failed}

    def summary_frame(self) -> pd.DataFrame:
        """
        Long-form table with one row per (target, parameter, statistic).

        Statistics: median, q<level> for each credible level, map, and their
        ``_adjusted`` counterparts when regression adjustment ran.
        """
        rows = []
        for key, est in self.targets.items():
            blocks = [("", est.median, est.quantiles, est.map)]
            if est.median_adjusted is not None:
                blocks.append(("_adjusted", est.median_adjusted, est.quantiles_adjusted, est.map_adjusted))
            for suffix, median, quantiles, map_est in blocks:
                for param in self.target_parameters:
                    rows.append(_row(key, param, f"median{suffix}", median[param]))
                    for level in quantiles.index:
                        rows.append(_row(key, param, f"q{level:g}{suffix}", quantiles.loc[level, param]))
                    if map_est is not None:
                        rows.append(_row(key, param, f"map{suffix}", map_est[param]))
        return pd.DataFrame(rows, columns=["target", "parameter", "statistic", "value"])

    def failure_frame(self) -> pd.DataFrame:
        rows = [
            {"target": key, "stage": stage, "error": msg}
            for key, errors in self.failures().items()
            for stage, msg in errors.items()
        ]
        return pd.DataFrame(rows, columns=["target", "stage", "error"])


def _row(target: Hashable, parameter: str, statistic: str, value: float) -> Dict[str, object]:
    return {"target": target, "parameter": parameter, "statistic": statistic, "value": float(value)}
