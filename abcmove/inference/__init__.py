"""
ABC Inference Engine
====================
Rejection ABC with post-sampling regression adjustment and truncated
normal MAP estimation.

Key components:
1. Distance: range-standardised Euclidean distance to the observed summary
2. Rejection: keep the closest ceil(N * proportion) draws
3. Regression: local-linear correction of accepted draws
4. MAP: mean of a truncated multivariate normal fitted to the accepted draws
5. Batch: sequential or pooled MAP fits across targets

References:
- Beaumont, M. A., et al. (2002). Approximate Bayesian computation in population genetics
- Wilhelm, S. & Manjunath, B. G. (2010). tmvtnorm: truncated multivariate normal
"""

from abcmove.inference.errors import (
    ABCError,
    DimensionMismatch,
    DegenerateScale,
    InvalidProportion,
    EmptyInput,
    InvalidWorkerCount,
    SingularDesign,
    OptimizationFailure,
)

from abcmove.inference.distance import (
    compute_distances,
    compute_distances_torch,
    reference_scale,
)

from abcmove.inference.rejection import (
    accepted_count,
    filter_draws,
)

from abcmove.inference.regression import (
    fit_local_linear,
    regression_adjust,
)

from abcmove.inference.tmvn import (
    MapOptions,
    TruncatedNormalFit,
    estimate_map,
    fit_truncated_mvn,
)

from abcmove.inference.batch import (
    Sequential,
    Parallel,
    ParallelAuto,
    MapOutcome,
    LogProgress,
    available_cpus,
    parse_execution_mode,
    resolve_workers,
    run_map_batch,
)

from abcmove.inference.aggregate import (
    ABCEstimate,
    TargetEstimate,
    summarise_sample,
)

__all__ = [
    "ABCError",
    "DimensionMismatch",
    "DegenerateScale",
    "InvalidProportion",
    "EmptyInput",
    "InvalidWorkerCount",
    "SingularDesign",
    "OptimizationFailure",
    "compute_distances",
    "compute_distances_torch",
    "reference_scale",
    "accepted_count",
    "filter_draws",
    "fit_local_linear",
    "regression_adjust",
    "MapOptions",
    "TruncatedNormalFit",
    "estimate_map",
    "fit_truncated_mvn",
    "Sequential",
    "Parallel",
    "ParallelAuto",
    "MapOutcome",
    "LogProgress",
    "available_cpus",
    "parse_execution_mode",
    "resolve_workers",
    "run_map_batch",
    "ABCEstimate",
    "TargetEstimate",
    "summarise_sample",
]
