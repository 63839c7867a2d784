"""
Inference Errors
================
Error taxonomy for the ABC engine.

Configuration errors (bad proportion, worker count, mismatched summaries)
abort a call before any work starts. Target-local errors (singular
regression design, MAP fit failure) are recorded on that target's result.
"""

from __future__ import annotations


class ABCError(Exception):
    """Base class for every error raised by the inference engine."""


class DimensionMismatch(ABCError, ValueError):
    """Summary vectors or aligned arrays disagree in length."""


class DegenerateScale(ABCError, ValueError):
    """A standardisation reference is zero or not finite."""


class InvalidProportion(ABCError, ValueError):
    """Acceptance proportion outside (0, 1]."""


class EmptyInput(ABCError, ValueError):
    """No draws (or no finite distances) to filter."""


class InvalidWorkerCount(ABCError, ValueError):
    """Parallel worker count is not a positive integer."""


class SingularDesign(ABCError, ArithmeticError):
    """Regression design matrix is rank deficient."""


class OptimizationFailure(ABCError, RuntimeError):
    """Truncated normal maximum-likelihood fit did not converge."""
