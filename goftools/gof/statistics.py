#!/usr/bin/env python3

""" Registry of the available test statistics.

Maps each kind of statistic onto the test which computes it, so the toy generation and the toy
study can treat all tests uniformly.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Type

import numpy as np

from goftools import histogram, yaml
from goftools.gof import base as gof_base
from goftools.gof import chi_squared, empirical

logger = logging.getLogger(__name__)


class StatisticKind(enum.Enum):
    """ Kinds of goodness-of-fit statistics. """

    AD = "AD"
    KS = "KS"
    Pearson = "Pearson"
    Neyman = "Neyman"
    BC = "BC"
    RooFit = "RooFit"

    def __str__(self) -> str:
        return self.name

    @property
    def is_binned(self) -> bool:
        return self in _chi_squared_tests

    to_yaml = classmethod(yaml.enum_to_yaml)
    from_yaml = classmethod(yaml.enum_from_yaml)


_chi_squared_tests: Dict[StatisticKind, Type[chi_squared.ChiSquaredTestBase]] = {
    StatisticKind.Pearson: chi_squared.PearsonChiSquared,
    StatisticKind.Neyman: chi_squared.NeymanChiSquared,
    StatisticKind.BC: chi_squared.BakerCousinsChiSquared,
    StatisticKind.RooFit: chi_squared.RooFitChiSquared,
}


@dataclass(frozen=True)
class TestSettings:
    """ Settings which are needed to compute the statistics.

    Attributes:
        observable_range: Range to which the sample is restricted.
        n_bins: Number of equal width bins for the binned tests.
        bin_edges: Reference binning for the binned tests. Overrides n_bins if set.
        min_expected: Minimum expected count per bin for the rebinning.
        integration: Integration method for the expected counts.
    """

    # Keep pytest from trying to collect this class.
    __test__ = False

    observable_range: histogram.ObservableRange
    n_bins: Optional[int] = 100
    bin_edges: Optional[np.ndarray] = None
    min_expected: Optional[float] = chi_squared.DEFAULT_MIN_EXPECTED
    integration: str = "simpson"

    def build_histogram(self, sample: np.ndarray, model: Any) -> histogram.BinnedHistogram:
        """ Bin the sample according to these settings. """
        return histogram.build_histogram(
            sample, model.density, self.observable_range,
            n_bins=self.n_bins, bin_edges=self.bin_edges, integration=self.integration,
        )


def chi_squared_test(kind: StatisticKind, min_expected: Optional[float] = chi_squared.DEFAULT_MIN_EXPECTED
                     ) -> chi_squared.ChiSquaredTestBase:
    """ Create the chi squared test corresponding to the kind. """
    try:
        return _chi_squared_tests[kind](min_expected=min_expected)
    except KeyError as e:
        raise ValueError(f"{kind} is not a binned statistic.") from e


def compute_statistic(kind: StatisticKind, sample: np.ndarray, model: Any, settings: TestSettings,
                      extra_ndf: int = 0, h: Optional[histogram.BinnedHistogram] = None) -> gof_base.TestResult:
    """ Compute the requested statistic (and its asymptotic p-value) for a sample.

    Args:
        kind: Kind of statistic.
        sample: Unbinned sample.
        model: Model providing ``density(x)`` and ``cumulative(x)``.
        settings: Range and binning settings.
        extra_ndf: Number of parameters determined from the sample. Only used for the binned tests.
        h: Already binned sample. If not provided, it is built from the sample when needed.
    Returns:
        Result of the test.
    Raises:
        GoFError: If the statistic can't be computed.
    """
    if kind.is_binned:
        if h is None:
            h = settings.build_histogram(sample, model)
        return chi_squared_test(kind, min_expected=settings.min_expected)(h, extra_ndf=extra_ndf)
    restricted = settings.observable_range.restrict(sample)
    if kind == StatisticKind.AD:
        return empirical.anderson_darling(restricted, model)
    return empirical.kolmogorov_smirnov(restricted, model)
