#!/usr/bin/env python3

""" Chi squared goodness-of-fit tests for binned data.

Each test rebins the histogram to ensure a minimum expected count per bin, calculates the test
statistic, and converts it into a p-value via the upper tail of the chi squared distribution.
The number of degrees of freedom is the number of bins used minus one, minus the number of
parameters which were determined from the same data.

Some useful references on the various flavors of chi squared:

- S. Baker and R. D. Cousins, Nucl. Instrum. Meth. 221 (1984) 437.
- https://www.nbi.dk/~petersen/Teaching/Stat2015/Week3/week3.html
"""

from __future__ import annotations

import abc
import logging
from typing import Any, Callable, Optional, Tuple

import numpy as np

from goftools import histogram
from goftools.gof import base as gof_base

logger = logging.getLogger(__name__)

# Default minimum expected count per bin.
DEFAULT_MIN_EXPECTED = 5.0


def _pearson_chi_squared(observed: np.ndarray, expected: np.ndarray) -> Tuple[float, int]:
    r""" Actual implementation of the Pearson chi squared.

    .. math::

        \chi^{2} = \sum_{i, E_{i} > 0} \frac{(O_{i} - E_{i})^{2}}{E_{i}}

    Args:
        observed: Observed counts.
        expected: Expected counts.
    Returns:
        (chi squared, number of bins used).
    """
    used = expected > 0
    return float(np.sum(np.square(observed[used] - expected[used]) / expected[used])), int(np.sum(used))


def _neyman_chi_squared(observed: np.ndarray, expected: np.ndarray) -> Tuple[float, int]:
    r""" Actual implementation of the Neyman chi squared.

    .. math::

        \chi^{2} = \sum_{i, O_{i} > 0} \frac{(O_{i} - E_{i})^{2}}{O_{i}}

    Note:
        Bins without any observed counts are excluded from the sum (and the number of bins used).
        This is known to bias the statistic, but it's the conventional definition, so we keep it.

    Args:
        observed: Observed counts.
        expected: Expected counts.
    Returns:
        (chi squared, number of bins used).
    """
    used = observed > 0
    return float(np.sum(np.square(observed[used] - expected[used]) / observed[used])), int(np.sum(used))


def _baker_cousins_chi_squared(observed: np.ndarray, expected: np.ndarray) -> Tuple[float, int]:
    r""" Actual implementation of the Baker-Cousins likelihood chi squared.

    .. math::

        \chi^{2} = 2 \sum_{i} \left( O_{i} \log{\frac{O_{i}}{E_{i}}} - (O_{i} - E_{i}) \right)

    where bins with O_i = 0 only contribute 2 E_i. Bins without any expected counts are skipped.

    Args:
        observed: Observed counts.
        expected: Expected counts.
    Returns:
        (chi squared, number of bins used).
    """
    used = expected > 0
    o = observed[used]
    e = expected[used]
    # Only take the log where there are observed counts. Elsewhere, the term is 0.
    log_term = np.zeros_like(o)
    np.multiply(o, np.log(np.divide(o, e, out=np.ones_like(o), where=o > 0)), out=log_term, where=o > 0)
    return float(2 * np.sum(log_term - (o - e))), int(np.sum(used))


class ChiSquaredTestBase(abc.ABC):
    """ Base chi squared goodness-of-fit test.

    Args:
        min_expected: Minimum expected count per bin. The histogram is rebinned to satisfy it before
            calculating the statistic. None disables the rebinning. Default: 5.

    Attributes:
        name: Name of the test.
        min_expected: Minimum expected count per bin.
        _statistic: Function to be used to calculate the actual statistic.
    """

    name: str
    _statistic: Callable[[np.ndarray, np.ndarray], Tuple[float, int]]

    def __init__(self, min_expected: Optional[float] = DEFAULT_MIN_EXPECTED):
        self.min_expected = min_expected

    def __repr__(self) -> str:
        return f"{type(self).__name__}(min_expected={self.min_expected})"

    @staticmethod
    def _expected_values(h: histogram.BinnedHistogram) -> np.ndarray:
        """ Expected values to compare against. """
        return h.expected

    @classmethod
    def _call_statistic(cls, observed: np.ndarray, expected: np.ndarray) -> Tuple[float, int]:
        """ Wrapper to allow access to the statistic as if it's unbound. """
        return cls._statistic(observed, expected)  # type: ignore

    def statistic(self, h: histogram.BinnedHistogram) -> Tuple[float, int, histogram.BinnedHistogram]:
        """ Calculate the test statistic, rebinning as necessary.

        Args:
            h: Histogram containing the observed and expected values.
        Returns:
            (statistic, number of bins used, histogram used for the calculation).
        """
        if self.min_expected is not None:
            h = histogram.rebin(h, min_expected=self.min_expected)
        value, n_used = self._call_statistic(h.observed, self._expected_values(h))
        return value, n_used, h

    def __call__(self, h: histogram.BinnedHistogram, extra_ndf: int = 0) -> gof_base.TestResult:
        """ Perform the test.

        Args:
            h: Histogram containing the observed and expected values.
            extra_ndf: Number of parameters determined from the data (ie. floating fit parameters),
                which are subtracted from the degrees of freedom. Default: 0.
        Returns:
            Result of the test.
        Raises:
            InsufficientBinsError: If fewer than two bins are usable after rebinning.
        """
        value, n_used, h_used = self.statistic(h)
        if n_used < 2:
            raise gof_base.InsufficientBinsError(
                f"{self.name}: only {n_used} usable bins remain after rebinning {h.n_bins} bins"
                f" (to {h_used.n_bins}) with min_expected={self.min_expected}."
            )
        ndf = max(n_used - 1 - extra_ndf, 1)
        p_value = gof_base.chi_squared_probability(value, ndf)
        logger.debug(f"{self.name}: chi_2={value}, ndf={ndf}, p-value={p_value}")
        return gof_base.TestResult(p_value=p_value, statistic=value, ndf=ndf)

    def __eq__(self, other: Any) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return self.min_expected == other.min_expected


class PearsonChiSquared(ChiSquaredTestBase):
    """ Pearson chi squared test, using the expected values as the variance. """

    name = "Pearson"
    _statistic = _pearson_chi_squared


class NeymanChiSquared(ChiSquaredTestBase):
    """ Neyman chi squared test, using the observed values as the variance.

    Bins without any observed counts are excluded.
    """

    name = "Neyman"
    _statistic = _neyman_chi_squared


class BakerCousinsChiSquared(ChiSquaredTestBase):
    """ Baker-Cousins likelihood ratio chi squared test for Poisson distributed counts. """

    name = "BC"
    _statistic = _baker_cousins_chi_squared


class RooFitChiSquared(ChiSquaredTestBase):
    """ Chi squared of the observed counts against the plotted model curve.

    This has the same form as the Pearson chi squared, but the expected values are determined from
    the sampled model curve rather than by integrating the density over each bin. It corresponds to
    the residuals which are seen when overlaying the model curve on the data, and is numerically
    close to the Pearson chi squared for a fine enough curve.
    """

    name = "RooFit"
    _statistic = _pearson_chi_squared

    @staticmethod
    def _expected_values(h: histogram.BinnedHistogram) -> np.ndarray:
        assert h.curve_expected is not None
        return h.curve_expected
