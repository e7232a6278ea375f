#!/usr/bin/env python3

""" Tests for the sampling distributions and the combined goodness-of-fit interface. """

import logging
from pathlib import Path
from typing import Any

import numpy as np
import pytest
import scipy.stats

from goftools import histogram, model
from goftools.gof import base, sampling, statistics

logger = logging.getLogger(__name__)

StatisticKind = statistics.StatisticKind


@pytest.fixture
def settings(observable_range: histogram.ObservableRange) -> statistics.TestSettings:
    return statistics.TestSettings(observable_range=observable_range, n_bins=10)


class TestSamplingDistribution:
    @pytest.fixture
    def distribution(self, logging_mixin: Any) -> sampling.SamplingDistribution:
        return sampling.SamplingDistribution(kind=StatisticKind.AD, values=np.linspace(0.01, 10, 1000))

    def test_floor_of_p_value(self, distribution: sampling.SamplingDistribution) -> None:
        """ A statistic above all of the toys gives 1 / n_toys rather than 0. """
        assert distribution.n_toys == 1000
        assert distribution.p_value(100) == pytest.approx(0.001)
        assert sampling.toy_p_value(distribution, 100, kind=StatisticKind.AD) == pytest.approx(0.001)

    def test_maximum_p_value(self, distribution: sampling.SamplingDistribution) -> None:
        """ A statistic at or below all of the toys gives 1. """
        assert distribution.p_value(0.01) == 1
        assert distribution.p_value(-5) == 1

    def test_intermediate_p_value(self, distribution: sampling.SamplingDistribution) -> None:
        # Half of the values are >= the midpoint.
        assert distribution.p_value(np.median(distribution.values)) == pytest.approx(0.5, abs=1e-3)

    def test_nan(self, distribution: sampling.SamplingDistribution) -> None:
        assert np.isnan(distribution.p_value(np.nan))
        assert np.isnan(sampling.SamplingDistribution(kind=StatisticKind.KS).p_value(1))

    def test_mismatch(self, distribution: sampling.SamplingDistribution) -> None:
        with pytest.raises(base.DistributionMismatchError):
            sampling.toy_p_value(distribution, 1, kind=StatisticKind.KS)

    def test_values_are_a_copy(self, distribution: sampling.SamplingDistribution) -> None:
        values = distribution.values
        values[:] = 0

        assert distribution.p_value(100) == pytest.approx(0.001)

    def test_attempted_toys(self, distribution: sampling.SamplingDistribution) -> None:
        """ Skipped toys are counted so that extending continues with the next unused toy. """
        assert distribution.n_attempted == 1000

        distribution.extend([20, 30], n_attempted=3)

        assert distribution.n_toys == 1002
        assert distribution.n_attempted == 1003
        assert distribution.copy().n_attempted == 1003
        with pytest.raises(ValueError):
            distribution.extend([1, 2], n_attempted=1)
        with pytest.raises(ValueError):
            sampling.SamplingDistribution(kind=StatisticKind.KS, values=[1, 2], n_attempted=1)

    def test_quantile(self, distribution: sampling.SamplingDistribution) -> None:
        assert distribution.quantile(0.5) == pytest.approx(np.median(distribution.values))
        with pytest.raises(ValueError):
            sampling.SamplingDistribution(kind=StatisticKind.AD).quantile(0.5)

    def test_yaml_round_trip(self, distribution: sampling.SamplingDistribution, tmp_path: Path) -> None:
        """ Sampling distributions can be stored and reused. """
        other = sampling.SamplingDistribution(kind=StatisticKind.Pearson, values=[1.5, 2.5], n_attempted=3)
        filename = tmp_path / "distributions.yaml"

        sampling.write_distributions(filename, [distribution, other])
        result = sampling.read_distributions(filename)

        assert set(result) == {StatisticKind.AD, StatisticKind.Pearson}
        assert result[StatisticKind.AD] == distribution
        assert result[StatisticKind.Pearson] == other
        assert result[StatisticKind.Pearson].n_attempted == 3


class TestBuildDistribution:
    @pytest.mark.parametrize("kind", [StatisticKind.AD, StatisticKind.KS, StatisticKind.Pearson],
                             ids = ["AD", "KS", "Pearson"])
    def test_build(self, logging_mixin: Any, linear_model: model.FitModel,
                   settings: statistics.TestSettings, kind: StatisticKind) -> None:
        distribution = sampling.build_distribution(linear_model, 50, kind, settings, n_events=200, seed=1)

        assert distribution.kind == kind
        assert distribution.n_toys == 50
        assert np.all(distribution.values >= 0)

    @pytest.mark.parametrize("kind", [StatisticKind.AD, StatisticKind.KS], ids = ["AD", "KS"])
    def test_p_values_are_uniform(self, logging_mixin: Any, linear_model: model.FitModel,
                                  settings: statistics.TestSettings, kind: StatisticKind) -> None:
        """ Samples from the model itself give toy p-values which are uniform on [0, 1]. """
        distribution = sampling.build_distribution(linear_model, 2000, kind, settings, n_events=200, seed=11)

        p_values = []
        for i in range(200):
            sample = linear_model.generate(200, seed=10_000 + i)
            result = statistics.compute_statistic(kind, sample, linear_model, settings)
            p_values.append(sampling.toy_p_value(distribution, result.statistic, kind=kind))

        assert np.all((np.array(p_values) >= 1 / 2000) & (np.array(p_values) <= 1))
        assert scipy.stats.kstest(p_values, "uniform").pvalue > 1e-3

    def test_reproducible_with_workers(self, logging_mixin: Any, linear_model: model.FitModel,
                                       settings: statistics.TestSettings) -> None:
        """ The distribution only depends on the seed, not on the number of workers. """
        serial = sampling.build_distribution(linear_model, 40, StatisticKind.KS, settings, n_events=100, seed=3)
        parallel = sampling.build_distribution(
            linear_model, 40, StatisticKind.KS, settings, n_events=100, seed=3, workers=4,
        )
        different_seed = sampling.build_distribution(linear_model, 40, StatisticKind.KS, settings, n_events=100, seed=4)

        assert serial == parallel
        assert serial != different_seed

    def test_extend(self, logging_mixin: Any, linear_model: model.FitModel, settings: statistics.TestSettings) -> None:
        """ Extending continues the toys, so it's equivalent to building all of them at once. """
        full = sampling.build_distribution(linear_model, 30, StatisticKind.AD, settings, n_events=100, seed=5)
        partial = sampling.build_distribution(linear_model, 10, StatisticKind.AD, settings, n_events=100, seed=5)

        result = sampling.extend_distribution(partial, linear_model, 20, settings, n_events=100, seed=5)

        assert result is partial
        assert result == full

    def test_model_unchanged_with_refit(self, logging_mixin: Any, linear_model: model.FitModel,
                                        settings: statistics.TestSettings) -> None:
        """ Refitting the toys uses private copies of the model. """
        snapshot = linear_model.snapshot()

        distribution = sampling.build_distribution(
            linear_model, 5, StatisticKind.BC, settings, n_events=200, seed=6, refit=True, extra_ndf=1,
        )

        assert distribution.n_toys == 5
        assert linear_model.snapshot() == snapshot

    @pytest.mark.parametrize("n_toys, n_events", [(0, 100), (10, 0)], ids = ["No toys", "No events"])
    def test_validation(self, logging_mixin: Any, linear_model: model.FitModel,
                        settings: statistics.TestSettings, n_toys: int, n_events: int) -> None:
        with pytest.raises(ValueError):
            sampling.build_distribution(linear_model, n_toys, StatisticKind.AD, settings, n_events=n_events)

    def test_failed_toys_are_skipped(self, logging_mixin: Any, linear_model: model.FitModel,
                                     settings: statistics.TestSettings, mocker: Any) -> None:
        """ Toys where the statistic can't be computed don't contribute. """
        results = iter([base.TestResult(p_value=0.5, statistic=1.0), base.InsufficientBinsError("Test"),
                        base.TestResult(p_value=0.5, statistic=2.0)])

        def fake_statistic(*args: Any, **kwargs: Any) -> base.TestResult:
            value = next(results)
            if isinstance(value, Exception):
                raise value
            return value

        mocker.patch("goftools.gof.sampling.statistics.compute_statistic", side_effect=fake_statistic)

        distribution = sampling.build_distribution(linear_model, 3, StatisticKind.Pearson, settings, n_events=10)

        assert np.allclose(distribution.values, [1.0, 2.0])
        assert distribution.n_attempted == 3

    def test_extend_after_skipped_toy(self, logging_mixin: Any, linear_model: model.FitModel,
                                      settings: statistics.TestSettings, mocker: Any) -> None:
        """ Extending after a skipped toy doesn't reuse the seed of any previous toy. """
        full = sampling.build_distribution(linear_model, 10, StatisticKind.KS, settings, n_events=100, seed=5)
        compute_statistic = statistics.compute_statistic
        calls = []

        def skip_second_toy(*args: Any, **kwargs: Any) -> base.TestResult:
            calls.append(1)
            if len(calls) == 2:
                raise base.InsufficientBinsError("Test")
            return compute_statistic(*args, **kwargs)

        mocker.patch("goftools.gof.sampling.statistics.compute_statistic", side_effect=skip_second_toy)

        distribution = sampling.build_distribution(linear_model, 5, StatisticKind.KS, settings, n_events=100, seed=5)
        sampling.extend_distribution(distribution, linear_model, 5, settings, n_events=100, seed=5)

        assert distribution.n_toys == 9
        assert distribution.n_attempted == 10
        assert len(np.unique(distribution.values)) == 9
        # Every toy except the skipped one (index 1) is the same as when building all of them at once.
        assert np.allclose(distribution.values, np.delete(full.values, 1))


class TestGoodnessOfFit:
    @pytest.fixture
    def gof(self, logging_mixin: Any, linear_model: model.FitModel,
            settings: statistics.TestSettings) -> sampling.GoodnessOfFit:
        sample = linear_model.generate(500, seed=1234)
        return sampling.GoodnessOfFit(sample, linear_model, settings)

    @pytest.mark.parametrize("method", [
        "ad_test", "ks_test", "pearson_test", "neyman_test", "bc_test", "roofit_test",
    ])
    def test_asymptotic(self, gof: sampling.GoodnessOfFit, method: str) -> None:
        result = getattr(gof, method)()

        assert result.is_valid
        assert 0 <= result.p_value <= 1

    def test_binned_ndf(self, gof: sampling.GoodnessOfFit) -> None:
        """ 10 bins, with enough entries that no rebinning is needed. """
        assert gof.pearson_test().ndf == 9
        gof.extra_ndf = 1
        assert gof.pearson_test().ndf == 8

    def test_toys_not_configured(self, gof: sampling.GoodnessOfFit) -> None:
        with pytest.raises(ValueError, match="set_toys"):
            gof.ad_test(use_toys=True)

    def test_toys(self, gof: sampling.GoodnessOfFit) -> None:
        gof.set_toys(50, seed=2)

        result = gof.ks_test(use_toys=True)

        assert gof.sampling_distribution(StatisticKind.KS).n_toys == 50
        assert 1 / 50 <= result.p_value <= 1
        # The distribution is cached.
        assert gof.sampling_distribution(StatisticKind.KS) is gof.sampling_distribution(StatisticKind.KS)

    def test_shared_distribution_not_modified(self, gof: sampling.GoodnessOfFit) -> None:
        distribution = sampling.SamplingDistribution(kind=StatisticKind.AD, values=[-2, -1, 100])
        gof.set_sampling_distribution(StatisticKind.AD, distribution)

        result = gof.ad_test(use_toys=True)

        assert distribution.n_toys == 3
        assert result.p_value == pytest.approx(1 / 3)

    def test_set_mismatched_distribution(self, gof: sampling.GoodnessOfFit) -> None:
        distribution = sampling.SamplingDistribution(kind=StatisticKind.AD, values=[0.1])
        with pytest.raises(base.DistributionMismatchError):
            gof.set_sampling_distribution(StatisticKind.KS, distribution)
