#!/usr/bin/env python3

""" Base module for goodness-of-fit tests.

Contains the exceptions which are raised by the tests, the result container, and the helpers
to convert test statistics into p-values.
"""

import logging
import math
from dataclasses import dataclass
from typing import Type, TypeVar

import numpy as np
import scipy.special

logger = logging.getLogger(__name__)

_T_TestResult = TypeVar("_T_TestResult", bound="TestResult")


class GoFError(Exception):
    """ Base class for all goodness-of-fit errors. """

    pass


class InvalidRangeError(GoFError):
    """ Raised if the observable range or the binning is malformed. """

    pass


class InsufficientBinsError(GoFError):
    """ Raised if fewer than two usable bins remain for a chi squared test. """

    pass


class DegenerateSampleError(GoFError):
    """ Raised if the sample is too small or the model CDF is singular at a sample point. """

    pass


class FitNonConvergenceError(GoFError):
    """ Raised by the model if the fit failed. The message will include further details. """

    pass


class DistributionMismatchError(GoFError):
    """ Raised if a sampling distribution was built for a different statistic than requested. """

    pass


@dataclass(frozen=True)
class TestResult:
    """ Result of a goodness-of-fit test.

    Attributes:
        p_value: p-value of the test. NaN if the test could not be performed.
        statistic: Value of the test statistic.
        ndf: Number of degrees of freedom. 0 for tests which don't have any.
    """

    # Keep pytest from trying to collect this class.
    __test__ = False

    p_value: float
    statistic: float
    ndf: int = 0

    @classmethod
    def failed(cls: Type[_T_TestResult]) -> _T_TestResult:
        """ Sentinel result for a test which could not be computed. """
        return cls(p_value=np.nan, statistic=np.nan, ndf=0)

    @property
    def is_valid(self) -> bool:
        return not (math.isnan(self.p_value) or math.isnan(self.statistic))


def chi_squared_probability(chi_2: float, ndf: float) -> float:
    """ Calculate the probability of obtaining a chi squared at least as large as the given value.

    This is the upper tail of the chi squared distribution, calculated via the regularized upper
    incomplete gamma function, Q(ndf / 2, chi_2 / 2).

    Args:
        chi_2: Chi squared value.
        ndf: Number of degrees of freedom.
    Returns:
        Probability that the data is consistent with the model.
    """
    if ndf <= 0:
        raise ValueError(f"Number of degrees of freedom must be positive. Provided: {ndf}")
    p_value = float(scipy.special.gammaincc(ndf / 2, max(chi_2, 0.0) / 2))
    # Protect against rounding slightly outside of the allowed range.
    return min(max(p_value, 0.0), 1.0)


def kolmogorov_probability(d: float, n: int) -> float:
    """ Asymptotic p-value for the Kolmogorov-Smirnov statistic.

    Uses the Kolmogorov distribution survival function with the usual finite sample correction,
    evaluated at ``D * (sqrt(n) + 0.12 + 0.11 / sqrt(n))``.

    Args:
        d: Kolmogorov-Smirnov statistic.
        n: Number of entries in the sample.
    Returns:
        p-value.
    """
    sqrt_n = np.sqrt(n)
    return float(min(max(scipy.special.kolmogorov(d * (sqrt_n + 0.12 + 0.11 / sqrt_n)), 0.0), 1.0))


def anderson_darling_probability(a_2: float) -> float:
    """ Asymptotic p-value for the Anderson-Darling statistic.

    Uses the approximation of the limiting distribution from Marsaglia & Marsaglia (2004),
    which is evaluated piecewise for A^2 < 2 and A^2 >= 2.

    Args:
        a_2: Anderson-Darling statistic.
    Returns:
        p-value.
    """
    if a_2 <= 0:
        return 1.0
    if a_2 < 2:
        cdf = (
            np.exp(-1.2337141 / a_2) / np.sqrt(a_2)
            * (2.00012 + (0.247105 - (0.0649821 - (0.0347962 - (0.011672 - 0.00168691 * a_2) * a_2) * a_2) * a_2) * a_2)
        )
    else:
        cdf = np.exp(
            -np.exp(1.0776 - (2.30695 - (0.43424 - (0.082433 - (0.008056 - 0.0003146 * a_2) * a_2) * a_2) * a_2) * a_2)
        )
    return float(min(max(1 - cdf, 0.0), 1.0))
