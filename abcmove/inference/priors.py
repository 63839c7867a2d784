"""
Prior Distributions
===================
Uniform priors for the movement model parameters and the prior
sample the inference engine filters.

The engine takes the prior support of each target parameter from the
observed range of the sampled table, not from these definitions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple

import numpy as np
import pandas as pd


@dataclass(frozen=True)
class ParameterPrior:
    """Uniform prior on [low, high] for a single parameter."""

    name: str
    low: float
    high: float

    def __post_init__(self) -> None:
        if not self.high > self.low:
            raise ValueError(f"prior for {self.name} needs low < high, got [{self.low}, {self.high}]")

    def sample(self, rng: np.random.Generator, n: int = 1) -> np.ndarray:
        return rng.uniform(self.low, self.high, size=n)

    def support(self) -> Tuple[float, float]:
        return float(self.low), float(self.high)


def default_movement_priors() -> Dict[str, ParameterPrior]:
    """Priors for the four habitat-selection movement parameters."""
    priors = [
        # radius (cells) within which the environment is perceived
        ParameterPrior("perception_range", 1.0, 15.0),
        # preferred environmental value and width of the niche
        ParameterPrior("niche_optimum", 0.0, 1.0),
        ParameterPrior("niche_range", 0.05, 1.0),
        # sd of the positional observation error
        ParameterPrior("observation_error", 0.0, 2.0),
    ]
    return {prior.name: prior for prior in priors}


def sample_parameter_table(
    priors: Dict[str, ParameterPrior],
    n: int,
    rng: np.random.Generator,
) -> pd.DataFrame:
    """
    Draw n parameter sets, one column per prior.

    Returns a DataFrame whose row i is the i-th simulated draw.
    """
    return pd.DataFrame({name: prior.sample(rng, n=n) for name, prior in priors.items()})
