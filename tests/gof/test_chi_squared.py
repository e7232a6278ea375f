#!/usr/bin/env python3

""" Tests for the chi squared goodness-of-fit tests. """

import logging
from typing import Any, Type

import numpy as np
import pytest
import scipy.stats

from goftools import histogram
from goftools.gof import base, chi_squared

logger = logging.getLogger(__name__)

_all_tests = [
    chi_squared.PearsonChiSquared,
    chi_squared.NeymanChiSquared,
    chi_squared.BakerCousinsChiSquared,
    chi_squared.RooFitChiSquared,
]
_all_test_ids = ["Pearson", "Neyman", "BC", "RooFit"]


@pytest.mark.parametrize("chi_2, ndf", [
    (0, 2),
    (3.5, 4),
    (100, 10),
], ids = ["Zero", "Moderate", "Large"])
def test_chi_squared_probability(logging_mixin: Any, chi_2: float, ndf: int) -> None:
    """ Test the chi squared probability against the scipy survival function. """
    assert np.isclose(base.chi_squared_probability(chi_2, ndf), scipy.stats.chi2.sf(chi_2, ndf))


def test_chi_squared_probability_invalid_ndf(logging_mixin: Any) -> None:
    with pytest.raises(ValueError):
        base.chi_squared_probability(1, 0)


@pytest.mark.parametrize("test_class", _all_tests, ids = _all_test_ids)
def test_perfect_agreement(logging_mixin: Any, test_class: Type[chi_squared.ChiSquaredTestBase]) -> None:
    """ Observed equal to expected gives a statistic of 0 and a p-value of 1. """
    h = histogram.BinnedHistogram.from_bins([(0, 1, 10, 10), (1, 2, 10, 10), (2, 3, 10, 10)])

    result = test_class()(h, extra_ndf=0)

    assert result.statistic == pytest.approx(0)
    assert result.ndf == 2
    assert result.p_value == pytest.approx(1)


def test_pearson_value(logging_mixin: Any) -> None:
    h = histogram.BinnedHistogram.from_bins([(0, 1, 12, 10), (1, 2, 8, 10), (2, 3, 10, 10)])

    result = chi_squared.PearsonChiSquared()(h)

    assert result.statistic == pytest.approx(0.8)
    assert result.ndf == 2
    assert result.p_value == pytest.approx(scipy.stats.chi2.sf(0.8, 2))


def test_neyman_skips_empty_bins(logging_mixin: Any) -> None:
    """ Bins without observed counts don't contribute, and aren't counted as used. """
    h = histogram.BinnedHistogram.from_bins([(0, 1, 8, 10), (1, 2, 0, 10), (2, 3, 10, 10), (3, 4, 12, 10)])

    result = chi_squared.NeymanChiSquared(min_expected=None)(h)

    assert result.statistic == pytest.approx(4 / 8 + 4 / 12)
    assert result.ndf == 2


def test_baker_cousins_value(logging_mixin: Any) -> None:
    """ Bins with zero observed counts contribute 2 E. """
    h = histogram.BinnedHistogram.from_bins([(0, 1, 0, 6), (1, 2, 10, 5), (2, 3, 5, 5)])

    result = chi_squared.BakerCousinsChiSquared()(h)

    expected = 2 * 6 + 2 * (10 * np.log(2) - 5)
    assert result.statistic == pytest.approx(expected)
    assert result.ndf == 2


def test_extra_ndf(logging_mixin: Any) -> None:
    """ Fit parameters reduce the degrees of freedom, but never below 1. """
    h = histogram.BinnedHistogram.from_bins([(i, i + 1, 10, 10) for i in range(5)])
    test = chi_squared.PearsonChiSquared()

    assert test(h, extra_ndf=2).ndf == 2
    assert test(h, extra_ndf=10).ndf == 1


def test_rebin_before_statistic(logging_mixin: Any) -> None:
    """ Bins below the minimum expected count are merged before computing the statistic. """
    h = histogram.BinnedHistogram.from_bins([(0, 1, 1, 2), (1, 2, 5, 3), (2, 3, 6, 5), (3, 4, 5, 5)])

    value, n_used, h_used = chi_squared.PearsonChiSquared(min_expected=5).statistic(h)

    assert n_used == 3
    assert np.allclose(h_used.expected, [5, 5, 5])
    assert value == pytest.approx(1 / 5 + 1 / 5 + 0)


@pytest.mark.parametrize("test_class", _all_tests, ids = _all_test_ids)
def test_insufficient_bins(logging_mixin: Any, test_class: Type[chi_squared.ChiSquaredTestBase]) -> None:
    """ Everything is merged into one bin, so the test can't be performed. """
    h = histogram.BinnedHistogram.from_bins([(0, 1, 1, 1), (1, 2, 2, 1), (2, 3, 1, 1)])

    with pytest.raises(base.InsufficientBinsError):
        test_class(min_expected=5)(h)


def test_roofit_uses_curve(logging_mixin: Any) -> None:
    """ The RooFit flavor compares against the sampled curve expectation. """
    h = histogram.BinnedHistogram(
        bin_edges=[0, 1, 2], observed=[10, 10], expected=[10, 10], curve_expected=[8, 12],
    )

    pearson = chi_squared.PearsonChiSquared()(h)
    roofit = chi_squared.RooFitChiSquared()(h)

    assert pearson.statistic == pytest.approx(0)
    assert roofit.statistic == pytest.approx(4 / 8 + 4 / 12)


@pytest.mark.parametrize("test_class", _all_tests, ids = _all_test_ids)
def test_p_value_range(logging_mixin: Any, observable_range: histogram.ObservableRange,
                       test_class: Type[chi_squared.ChiSquaredTestBase]) -> None:
    """ The p-value is always in [0, 1], even for badly mismatched data. """
    rng = np.random.default_rng(42)
    for scale in [1, 3, 10]:
        sample = rng.exponential(scale, size=300)
        h = histogram.build_histogram(sample, lambda x: np.ones_like(x), observable_range, n_bins=20)
        result = test_class()(h)
        assert 0 <= result.p_value <= 1
        assert result.statistic >= 0
