"""
Collaborator Interfaces
=======================
Call signatures of the components the inference engine consumes but does
not implement (movement simulator, summary statistics, surrogate
predictor), plus the summary selection handed to the engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Hashable, List, Mapping, Protocol, Sequence, Union

import numpy as np
import pandas as pd

from abcmove.inference.errors import DimensionMismatch, EmptyInput


class Simulator(Protocol):
    """Runs the individual-based movement model, one trajectory per parameter row."""

    def __call__(
        self,
        environment: Any,
        iterations: int,
        parameters: pd.DataFrame,
        seed: int,
    ) -> List[pd.DataFrame]:
        ...


class SummaryFunction(Protocol):
    """Reduces one trajectory table to a fixed-length, named summary vector."""

    def __call__(self, trajectory: pd.DataFrame) -> pd.Series:
        ...


class SurrogatePredictor(Protocol):
    def __call__(
        self,
        training_summaries: pd.DataFrame,
        training_parameters: pd.DataFrame,
        new_summaries: pd.DataFrame,
    ) -> pd.DataFrame:
        ...


@dataclass(frozen=True)
class SummarySelection:
    """
    Observed and simulated summaries for every inference target.

    ``simulated[target]`` is index-aligned with the parameter sample.
    ``target_parameters`` names the parameter columns under inference; the
    remaining columns are held fixed and ignored.
    """

    observed: Dict[Hashable, Union[pd.Series, pd.DataFrame, np.ndarray]]
    simulated: Dict[Hashable, pd.DataFrame]
    target_parameters: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        missing = [key for key in self.observed if key not in self.simulated]
        if missing:
            raise DimensionMismatch(f"no simulated summaries for targets {missing}")

    @property
    def target_ids(self) -> List[Hashable]:
        return list(self.observed.keys())


def summarise_trajectories(
    trajectories: Sequence[pd.DataFrame],
    summary_fn: SummaryFunction,
) -> pd.DataFrame:
    """
    Apply a summary function to every trajectory.

    Raises DimensionMismatch when the function does not return the same
    statistic names for every trajectory.
    """
    if len(trajectories) == 0:
        raise EmptyInput("no trajectories to summarise")
    rows = []
    names = None
    for i, trajectory in enumerate(trajectories):
        stats = pd.Series(summary_fn(trajectory), dtype=float)
        if names is None:
            names = list(stats.index)
        elif list(stats.index) != names:
            raise DimensionMismatch(
                f"trajectory {i} produced statistics {list(stats.index)}, expected {names}"
            )
        rows.append(stats.to_numpy())
    return pd.DataFrame(np.vstack(rows), columns=names)


def build_selection(
    observed: Union[pd.DataFrame, Mapping[Hashable, Any]],
    simulated: Union[pd.DataFrame, Mapping[Hashable, pd.DataFrame]],
    target_parameters: Sequence[str],
) -> SummarySelection:
    """
    Assemble a SummarySelection.

    ``observed`` is either a mapping target -> summary or a DataFrame with
    one row per target (the index provides the target ids). A single
    simulated DataFrame is shared by every target.
    """
    if isinstance(observed, pd.DataFrame):
        observed_map = {key: row for key, row in observed.iterrows()}
    else:
        observed_map = dict(observed)
    if isinstance(simulated, pd.DataFrame):
        simulated_map = {key: simulated for key in observed_map}
    else:
        simulated_map = dict(simulated)
    return SummarySelection(
        observed=observed_map,
        simulated=simulated_map,
        target_parameters=list(target_parameters),
    )
