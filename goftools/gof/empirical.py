#!/usr/bin/env python3

""" Goodness-of-fit tests based on the empirical distribution function.

These compare an unbinned sample to the model CDF, so they don't depend on any binning choice.
"""

import logging
from typing import Any, Callable, Union

import numpy as np

from goftools.gof import base as gof_base

logger = logging.getLogger(__name__)

T_CDF = Union[Callable[[np.ndarray], Any], Any]


def _cdf_values(sample: np.ndarray, cdf: T_CDF) -> np.ndarray:
    """ Evaluate the model CDF at the sorted sample points, validating the result.

    Args:
        sample: Unbinned sample. It will be sorted.
        cdf: Either an object with a ``cumulative(x)`` method (ie. the model) or a callable CDF.
    Returns:
        CDF values at each sorted sample point.
    Raises:
        DegenerateSampleError: If the sample is too small or the CDF is 0 or 1 at any sample point.
    """
    sample = np.sort(np.asarray(sample, dtype=np.float64))
    if len(sample) < 2:
        raise gof_base.DegenerateSampleError(f"Need at least two entries in the sample. Provided: {len(sample)}")
    func = getattr(cdf, "cumulative", cdf)
    values = np.asarray(func(sample), dtype=np.float64)
    if np.any(~np.isfinite(values)) or np.any(values <= 0) or np.any(values >= 1):
        raise gof_base.DegenerateSampleError(
            "Model CDF evaluates to 0 or 1 (or outside of [0, 1]) at a sample point, so the test is singular."
        )
    return values


def kolmogorov_smirnov_statistic(cdf_values: np.ndarray) -> float:
    r""" Calculate the Kolmogorov-Smirnov statistic from the CDF values at the sorted sample points.

    .. math::

        D = \max_{i} \max \left( |\frac{i}{n} - F(x_{i})|, |\frac{i - 1}{n} - F(x_{i})| \right)

    Args:
        cdf_values: Model CDF evaluated at the sample points, sorted ascending.
    Returns:
        The KS statistic.
    """
    n = len(cdf_values)
    i = np.arange(1, n + 1)
    d_plus = np.abs(i / n - cdf_values)
    d_minus = np.abs((i - 1) / n - cdf_values)
    return float(np.max(np.maximum(d_plus, d_minus)))


def anderson_darling_statistic(cdf_values: np.ndarray) -> float:
    r""" Calculate the Anderson-Darling statistic from the CDF values at the sorted sample points.

    .. math::

        A^{2} = -n - \frac{1}{n} \sum_{i=1}^{n} (2i - 1) \left( \ln F(x_{i}) + \ln (1 - F(x_{n + 1 - i})) \right)

    Args:
        cdf_values: Model CDF evaluated at the sample points, sorted ascending.
    Returns:
        The AD statistic.
    """
    n = len(cdf_values)
    i = np.arange(1, n + 1)
    # log1p is more precise than log(1 - F) when F is small.
    terms = (2 * i - 1) * (np.log(cdf_values) + np.log1p(-cdf_values[::-1]))
    return float(-n - np.sum(terms) / n)


def kolmogorov_smirnov(sample: np.ndarray, cdf: T_CDF) -> gof_base.TestResult:
    """ Kolmogorov-Smirnov test of the sample against the model CDF.

    Args:
        sample: Unbinned sample.
        cdf: Either the model or a callable CDF.
    Returns:
        Result of the test, with the asymptotic p-value.
    Raises:
        DegenerateSampleError: If the sample is too small or the CDF is singular.
    """
    cdf_values = _cdf_values(sample, cdf)
    d = kolmogorov_smirnov_statistic(cdf_values)
    p_value = gof_base.kolmogorov_probability(d, len(cdf_values))
    logger.debug(f"KS: D={d}, n={len(cdf_values)}, p-value={p_value}")
    return gof_base.TestResult(p_value=p_value, statistic=d)


def anderson_darling(sample: np.ndarray, cdf: T_CDF) -> gof_base.TestResult:
    """ Anderson-Darling test of the sample against the model CDF.

    Args:
        sample: Unbinned sample.
        cdf: Either the model or a callable CDF.
    Returns:
        Result of the test, with the asymptotic p-value.
    Raises:
        DegenerateSampleError: If the sample is too small or the CDF is singular.
    """
    cdf_values = _cdf_values(sample, cdf)
    a_2 = anderson_darling_statistic(cdf_values)
    p_value = gof_base.anderson_darling_probability(a_2)
    logger.debug(f"AD: A^2={a_2}, n={len(cdf_values)}, p-value={p_value}")
    return gof_base.TestResult(p_value=p_value, statistic=a_2)
