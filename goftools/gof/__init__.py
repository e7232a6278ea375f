#!/usr/bin/env python3

""" Goodness-of-fit statistics and their p-values.

Provides the binned chi squared family (Pearson, Neyman, Baker-Cousins and the RooFit curve
variant), the unbinned empirical distribution statistics (Kolmogorov-Smirnov and Anderson-Darling),
and sampling distributions from toys for p-values where the asymptotic approximations don't hold.
"""

__all__ = [
    "base",
    "chi_squared",
    "empirical",
    "sampling",
    "statistics",
]

from .base import (  # noqa: F401
    DegenerateSampleError, DistributionMismatchError, FitNonConvergenceError, GoFError, InsufficientBinsError,
    InvalidRangeError, TestResult, anderson_darling_probability, chi_squared_probability, kolmogorov_probability
)
from .chi_squared import (  # noqa: F401
    BakerCousinsChiSquared, ChiSquaredTestBase, NeymanChiSquared, PearsonChiSquared, RooFitChiSquared
)
from .empirical import anderson_darling, kolmogorov_smirnov  # noqa: F401
from .statistics import StatisticKind, TestSettings, compute_statistic  # noqa: F401
from .sampling import (  # noqa: F401
    GoodnessOfFit, SamplingDistribution, build_distribution, extend_distribution, read_distributions, toy_p_value,
    write_distributions
)
