"""
Truncated Multivariate Normal MAP
=================================
Point estimate for an accepted (or regression-adjusted) posterior sample.

A multivariate normal truncated to the prior box [lower, upper] is fitted
by maximum likelihood and its mean is reported as the MAP estimate.

Parameterisation: theta = (mu, vech(L)) where Sigma = L L^T and the
diagonal of L is stored on the log scale, so every iterate is positive
definite. mu is box-constrained to the prior support through L-BFGS-B.

    log L(theta) = sum_i log N(x_i; mu, Sigma) - n log P(lower <= X <= upper)

The box probability is the Genz quasi-Monte-Carlo estimate from scipy with
a fixed seed, which keeps the objective a deterministic function of theta.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

import numpy as np
import pandas as pd
from scipy import linalg
from scipy.optimize import minimize
from scipy.stats import multivariate_normal, norm

from abcmove.inference.errors import DimensionMismatch, OptimizationFailure

Sample = Union[pd.DataFrame, np.ndarray]
Bounds = Union[pd.Series, np.ndarray]

_PENALTY = 1e100
_LOG_2PI = float(np.log(2.0 * np.pi))


@dataclass(frozen=True)
class MapOptions:
    """Optimiser settings shared by every MAP fit in a batch."""

    restarts: int = 2  # extra attempts from jittered starting means
    maxiter: int = 500
    ftol: float = 1e-9
    cdf_maxpts: int = 20000  # QMC points per dimension for the box probability
    seed: int = 42


@dataclass(frozen=True)
class TruncatedNormalFit:
    mean: np.ndarray
    covariance: np.ndarray
    log_likelihood: float
    iterations: int


def box_probability(
    mean: np.ndarray,
    cov: np.ndarray,
    lower: np.ndarray,
    upper: np.ndarray,
    seed: int = 0,
    maxpts: Optional[int] = None,
) -> float:
    """P(lower <= X <= upper) for X ~ N(mean, cov)."""
    d = mean.shape[0]
    if d == 1:
        sd = float(np.sqrt(cov[0, 0]))
        return float(norm.cdf(upper[0], mean[0], sd) - norm.cdf(lower[0], mean[0], sd))
    dist = multivariate_normal(
        mean=mean,
        cov=cov,
        seed=seed,
        maxpts=maxpts if maxpts is not None else 1000000 * d,
    )
    return float(dist.cdf(upper, lower_limit=lower))


def _tril(d: int) -> Tuple[np.ndarray, np.ndarray]:
    return np.tril_indices(d)


def _pack(mean: np.ndarray, cov: np.ndarray) -> np.ndarray:
    d = mean.shape[0]
    chol = np.linalg.cholesky(cov)
    rows, cols = _tril(d)
    entries = chol[rows, cols].copy()
    on_diag = rows == cols
    entries[on_diag] = np.log(entries[on_diag])
    return np.concatenate([mean, entries])


def _unpack(theta: np.ndarray, d: int) -> Tuple[np.ndarray, np.ndarray]:
    mean = theta[:d]
    chol = np.zeros((d, d))
    rows, cols = _tril(d)
    chol[rows, cols] = theta[d:]
    chol[np.diag_indices(d)] = np.exp(np.diagonal(chol))
    return mean, chol


def _neg_log_likelihood(
    theta: np.ndarray,
    x: np.ndarray,
    lower: np.ndarray,
    upper: np.ndarray,
    seed: int,
    maxpts: int,
) -> float:
    n, d = x.shape
    with np.errstate(over="ignore", invalid="ignore"):
        mean, chol = _unpack(theta, d)
    if not np.all(np.isfinite(chol)):
        return _PENALTY
    diag = np.diagonal(chol)
    if np.any(diag <= 0.0):
        return _PENALTY

    z = linalg.solve_triangular(chol, (x - mean).T, lower=True)
    log_det = 2.0 * float(np.sum(np.log(diag)))
    log_density = -0.5 * float(np.sum(z ** 2)) - 0.5 * n * (d * _LOG_2PI + log_det)

    try:
        mass = box_probability(mean, chol @ chol.T, lower, upper, seed=seed, maxpts=maxpts)
    except (ValueError, np.linalg.LinAlgError):
        # numerically singular covariance for scipy
        return _PENALTY
    if not np.isfinite(mass) or mass <= 0.0:
        return _PENALTY

    value = -(log_density - n * np.log(min(mass, 1.0)))
    return float(value) if np.isfinite(value) else _PENALTY


def _sample_values(sample: Sample) -> Tuple[np.ndarray, List[str]]:
    if isinstance(sample, pd.DataFrame):
        return sample.to_numpy(dtype=float), [str(c) for c in sample.columns]
    values = np.asarray(sample, dtype=float)
    if values.ndim == 1:
        values = values.reshape(-1, 1)
    return values, [f"p{j}" for j in range(values.shape[1])]


def _bound_values(bounds: Bounds, names: List[str]) -> np.ndarray:
    if isinstance(bounds, pd.Series) and set(names) <= set(map(str, bounds.index)):
        bounds = pd.Series(bounds.to_numpy(), index=[str(i) for i in bounds.index]).loc[names]
    values = np.asarray(bounds, dtype=float).reshape(-1)
    if values.shape[0] != len(names):
        raise DimensionMismatch(f"{values.shape[0]} bounds for {len(names)} parameters")
    return values


def _prepare(
    sample: Sample,
    lower: Bounds,
    upper: Bounds,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray, List[str]]:
    x, names = _sample_values(sample)
    lo = _bound_values(lower, names)
    hi = _bound_values(upper, names)
    n, d = x.shape
    if n < 2:
        raise OptimizationFailure(f"cannot fit a truncated normal to {n} draw(s)")
    if not np.isfinite(x).all():
        raise OptimizationFailure("sample contains missing or infinite values")
    if not np.all(hi > lo):
        raise OptimizationFailure("truncation support has zero width in some dimension")

    cov = np.cov(x, rowvar=False).reshape(d, d)
    if np.linalg.matrix_rank(cov) < d:
        raise OptimizationFailure(
            f"sample covariance is singular ({n} draws, {d} parameters)"
        )
    return x, lo, hi, cov, names


def _converged(result, lo: np.ndarray, hi: np.ndarray) -> bool:
    """
    Optimiser convergence, accepting a failed line search at a stationary point.

    With finite-difference gradients L-BFGS-B often stops with an abnormal
    line search once the gradient is at noise level; that counts as converged
    when the projected gradient is negligible.
    """
    if result.success:
        return True
    if result.status != 2 or result.jac is None:
        return False
    d = lo.shape[0]
    grad = np.array(result.jac, dtype=float)
    mean = result.x[:d]
    at_lower = (mean <= lo) & (grad[:d] > 0)
    at_upper = (mean >= hi) & (grad[:d] < 0)
    grad[:d][at_lower | at_upper] = 0.0
    return bool(np.max(np.abs(grad)) <= 1e-4 * max(1.0, abs(float(result.fun))))


def _fit_prepared(
    x: np.ndarray,
    lo: np.ndarray,
    hi: np.ndarray,
    cov: np.ndarray,
    options: MapOptions,
    start_mean: Optional[np.ndarray] = None,
) -> TruncatedNormalFit:
    d = x.shape[1]
    mean0 = np.clip(x.mean(axis=0) if start_mean is None else start_mean, lo, hi)
    try:
        theta0 = _pack(mean0, cov)
    except np.linalg.LinAlgError as exc:
        raise OptimizationFailure(f"sample covariance is not positive definite: {exc}") from exc

    bounds = [(float(a), float(b)) for a, b in zip(lo, hi)]
    bounds += [(None, None)] * (theta0.shape[0] - d)

    try:
        result = minimize(
            _neg_log_likelihood,
            theta0,
            args=(x, lo, hi, options.seed, options.cdf_maxpts * d),
            method="L-BFGS-B",
            bounds=bounds,
            options={"maxiter": options.maxiter, "ftol": options.ftol},
        )
    except (ValueError, np.linalg.LinAlgError) as exc:
        raise OptimizationFailure(f"L-BFGS-B aborted: {exc}") from exc
    if not _converged(result, lo, hi) or not np.isfinite(result.fun) or result.fun >= _PENALTY:
        raise OptimizationFailure(f"L-BFGS-B did not converge: {result.message}")

    mean, chol = _unpack(result.x, d)
    return TruncatedNormalFit(
        mean=mean,
        covariance=chol @ chol.T,
        log_likelihood=-float(result.fun),
        iterations=int(result.nit),
    )


def fit_truncated_mvn(
    sample: Sample,
    lower: Bounds,
    upper: Bounds,
    options: Optional[MapOptions] = None,
    start_mean: Optional[np.ndarray] = None,
) -> TruncatedNormalFit:
    """Maximum-likelihood truncated normal fit, raising OptimizationFailure."""
    x, lo, hi, cov, _ = _prepare(sample, lower, upper)
    return _fit_prepared(x, lo, hi, cov, options or MapOptions(), start_mean)


def estimate_map(
    sample: Sample,
    lower: Bounds,
    upper: Bounds,
    options: Optional[MapOptions] = None,
    position: int = 0,
) -> pd.Series:
    """
    MAP estimate of an accepted sample under a truncated normal fit.

    Failed fits are retried ``options.restarts`` times from jittered start
    means. The jitter generator is seeded from (seed, position), so a target
    gets the same result whichever worker runs it.

    Returns:
        Fitted mean clamped to [lower, upper], indexed by parameter name
    """
    options = options or MapOptions()
    x, lo, hi, cov, names = _prepare(sample, lower, upper)
    rng = np.random.default_rng(np.random.SeedSequence([int(options.seed), int(position)]))
    spread = np.sqrt(np.diagonal(cov))

    last_error: Optional[OptimizationFailure] = None
    for attempt in range(options.restarts + 1):
        start = None
        if attempt > 0:
            start = x.mean(axis=0) + rng.normal(0.0, 1.0, size=x.shape[1]) * spread
            logging.debug("Retrying MAP fit (attempt %d): %s", attempt + 1, last_error)
        try:
            fit = _fit_prepared(x, lo, hi, cov, options, start_mean=start)
        except OptimizationFailure as exc:
            last_error = exc
            continue
        return pd.Series(np.clip(fit.mean, lo, hi), index=names, name="map")

    raise OptimizationFailure(
        f"MAP fit failed after {options.restarts + 1} attempt(s): {last_error}"
    )
