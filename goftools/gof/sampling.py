#!/usr/bin/env python3

""" Sampling distributions of the test statistics from toys.

Pseudo-samples ("toys") are generated from the model and the requested statistic is recomputed on
each of them, which gives the distribution of the statistic under the null hypothesis. The p-value
of an observed statistic is then the fraction of the toys with a statistic at least as large.

A sampling distribution can be expensive to build, so it can be passed around and reused (for
example, between the trials of a toy study). The functions here never modify a distribution which
is passed in, except for ``extend_distribution(...)``, which is the explicit request to do so.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Sequence, Type, TypeVar, Union, cast

import numpy as np
import ruamel.yaml

from goftools import histogram, utils, yaml
from goftools.gof import base as gof_base
from goftools.gof import statistics

logger = logging.getLogger(__name__)

_T_SamplingDistribution = TypeVar("_T_SamplingDistribution", bound="SamplingDistribution")


class SamplingDistribution:
    """ Distribution of a test statistic from toys.

    The values can only be added via ``extend(...)``.

    Args:
        kind: Kind of statistic stored in the distribution.
        values: Initial statistic values. Default: None.
        n_attempted: Number of toys which were generated for the values, including the toys which
            were skipped. Default: the number of values.

    Attributes:
        kind: Kind of statistic stored in the distribution.
        n_attempted: Number of toys which were generated. The next toy index when extending.
    """

    def __init__(self, kind: statistics.StatisticKind, values: Optional[Iterable[float]] = None,
                 n_attempted: Optional[int] = None):
        self.kind = kind
        self._values = np.array([] if values is None else list(values), dtype=np.float64)
        self.n_attempted = len(self._values) if n_attempted is None else int(n_attempted)
        if self.n_attempted < len(self._values):
            raise ValueError(
                f"Attempted toys ({self.n_attempted}) must be at least the number of values ({len(self._values)})."
            )
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind}, n_toys={self.n_toys})"

    def __len__(self) -> int:
        return self.n_toys

    def __eq__(self, other: Any) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return (
            self.kind == other.kind
            and self.n_attempted == other.n_attempted
            and np.array_equal(self._values, other._values)
        )

    @property
    def values(self) -> np.ndarray:
        """ Copy of the stored statistic values. """
        return self._values.copy()

    @property
    def n_toys(self) -> int:
        return len(self._values)

    def extend(self, values: Iterable[float], n_attempted: Optional[int] = None) -> None:
        """ Append statistic values to the distribution.

        Args:
            values: Statistic values to append.
            n_attempted: Number of toys generated for the values. Default: the number of values.
        """
        new_values = np.asarray(list(values), dtype=np.float64)
        if n_attempted is None:
            n_attempted = len(new_values)
        if n_attempted < len(new_values):
            raise ValueError(
                f"Attempted toys ({n_attempted}) must be at least the number of values ({len(new_values)})."
            )
        with self._lock:
            self._values = np.concatenate([self._values, new_values])
            self.n_attempted += n_attempted

    def copy(self: _T_SamplingDistribution) -> _T_SamplingDistribution:
        return type(self)(kind=self.kind, values=self._values, n_attempted=self.n_attempted)

    def p_value(self, observed: float) -> float:
        """ Fraction of the toys with a statistic at least as large as the observed value.

        The p-value is floored at ``1 / n_toys``, since we can't claim more than that from a finite
        number of toys.

        Args:
            observed: Observed value of the statistic.
        Returns:
            The p-value, or NaN if there are no toys or the observed value is NaN.
        """
        if self.n_toys == 0 or np.isnan(observed):
            return np.nan
        n_at_least = int(np.sum(self._values >= observed))
        return max(n_at_least, 1) / self.n_toys

    def quantile(self, q: Union[float, np.ndarray]) -> Union[float, np.ndarray]:
        """ Quantile(s) of the stored statistic values. """
        if self.n_toys == 0:
            raise ValueError("Cannot determine the quantile of an empty sampling distribution.")
        return cast(Union[float, np.ndarray], np.quantile(self._values, q))

    @classmethod
    def to_yaml(cls: Type[_T_SamplingDistribution], representer: ruamel.yaml.representer.BaseRepresenter,
                obj: _T_SamplingDistribution) -> ruamel.yaml.nodes.MappingNode:
        """ Encode YAML representation. """
        members = {"kind": obj.kind, "values": obj._values, "n_attempted": obj.n_attempted}
        return cast(ruamel.yaml.nodes.MappingNode, representer.represent_mapping(f"!{cls.__name__}", members))

    @classmethod
    def from_yaml(cls: Type[_T_SamplingDistribution], constructor: ruamel.yaml.constructor.BaseConstructor,
                  data: ruamel.yaml.nodes.MappingNode) -> _T_SamplingDistribution:
        """ Decode YAML representation. """
        members = {
            constructor.construct_object(key_node): constructor.construct_object(value_node)
            for key_node, value_node in data.value
        }
        return cls(kind=members["kind"], values=members["values"], n_attempted=members.get("n_attempted"))


def toy_p_value(distribution: SamplingDistribution, observed: float,
                kind: Optional[statistics.StatisticKind] = None) -> float:
    """ p-value of the observed statistic using the sampling distribution.

    Args:
        distribution: Sampling distribution from toys.
        observed: Observed value of the statistic.
        kind: Kind of the observed statistic. If provided, it is checked against the distribution.
    Returns:
        The p-value. See ``SamplingDistribution.p_value(...)``.
    Raises:
        DistributionMismatchError: If the distribution is for a different kind of statistic.
    """
    if kind is not None and distribution.kind != kind:
        raise gof_base.DistributionMismatchError(
            f"Sampling distribution is for {distribution.kind}, but the statistic is {kind}."
        )
    return distribution.p_value(observed)


def _toy_statistic(model: Any, kind: statistics.StatisticKind, settings: statistics.TestSettings,
                   n_events: int, seed: int, refit: bool, extra_ndf: int) -> Optional[float]:
    """ Generate a single toy and compute the statistic for it.

    Returns:
        The statistic value, or None if it couldn't be computed for this toy.
    """
    # The model is only modified when we refit, so we only need a private copy in that case.
    toy_model = model.clone() if refit else model
    sample = toy_model.generate(n_events, seed)
    try:
        if refit:
            toy_model.refit(sample)
        return statistics.compute_statistic(kind, sample, toy_model, settings, extra_ndf=extra_ndf).statistic
    except gof_base.GoFError as e:
        logger.warning(f"Skipping toy with seed {seed} for {kind}: {e}")
        return None


def _generate_toys(model: Any, n_toys: int, kind: statistics.StatisticKind, settings: statistics.TestSettings,
                   n_events: int, seed: int, workers: int, refit: bool, extra_ndf: int,
                   first_toy_index: int) -> np.ndarray:
    # Validation
    if n_toys <= 0:
        raise ValueError(f"Number of toys must be positive. Provided: {n_toys}")
    if n_events <= 0:
        raise ValueError(f"Number of events per toy must be positive. Provided: {n_events}")

    indices = list(range(first_toy_index, first_toy_index + n_toys))
    values = utils.map_in_order(
        lambda i: _toy_statistic(
            model, kind, settings, n_events=n_events, seed=utils.derive_seed(seed, i),
            refit=refit, extra_ndf=extra_ndf,
        ),
        indices,
        workers=utils.clamp_workers(workers),
    )
    valid = np.array([v for v in values if v is not None], dtype=np.float64)
    if len(valid) < n_toys:
        logger.warning(f"Only {len(valid)} of {n_toys} toys for {kind} were usable.")
    return valid


def build_distribution(model: Any, n_toys: int, kind: statistics.StatisticKind,
                       settings: statistics.TestSettings, n_events: int, seed: int = 0, workers: int = 1,
                       refit: bool = False, extra_ndf: int = 0) -> SamplingDistribution:
    """ Build the sampling distribution of a statistic from toys generated from the model.

    Each toy uses a seed derived from the base seed and the toy index, so the distribution is
    reproducible regardless of the number of workers.

    Args:
        model: Model used to generate the toys and compute the statistic.
        n_toys: Number of toys.
        kind: Kind of statistic.
        settings: Range and binning settings.
        n_events: Number of events in each toy.
        seed: Base seed. Default: 0.
        workers: Number of worker threads. Default: 1.
        refit: If True, a private copy of the model is refit to each toy before computing the statistic.
        extra_ndf: Number of fit parameters to subtract for the binned statistics. Default: 0.
    Returns:
        The sampling distribution.
    """
    logger.debug(f"Building sampling distribution for {kind} with {n_toys} toys of {n_events} events")
    values = _generate_toys(
        model, n_toys, kind, settings, n_events=n_events, seed=seed, workers=workers,
        refit=refit, extra_ndf=extra_ndf, first_toy_index=0,
    )
    return SamplingDistribution(kind=kind, values=values, n_attempted=n_toys)


def extend_distribution(distribution: SamplingDistribution, model: Any, n_toys: int,
                        settings: statistics.TestSettings, n_events: int, seed: int = 0, workers: int = 1,
                        refit: bool = False, extra_ndf: int = 0) -> SamplingDistribution:
    """ Add toys to an existing sampling distribution. The distribution is modified in place.

    The new toys continue the toy indexing from the number of toys which were already generated
    for the distribution (including any skipped toys), so extending a distribution built with the
    same seed never repeats a toy.

    Args:
        distribution: Distribution to extend.
        model, n_toys, settings, n_events, seed, workers, refit, extra_ndf: See ``build_distribution(...)``.
    Returns:
        The (same) extended distribution.
    """
    values = _generate_toys(
        model, n_toys, distribution.kind, settings, n_events=n_events, seed=seed, workers=workers,
        refit=refit, extra_ndf=extra_ndf, first_toy_index=distribution.n_attempted,
    )
    distribution.extend(values, n_attempted=n_toys)
    return distribution


def write_distributions(filename: Union[Path, str], distributions: Sequence[SamplingDistribution]) -> None:
    """ Write sampling distributions to YAML so they can be reused later. """
    yaml.dump(list(distributions), filename, classes_to_register=[statistics.StatisticKind, SamplingDistribution])


def read_distributions(filename: Union[Path, str]) -> Dict[statistics.StatisticKind, SamplingDistribution]:
    """ Read sampling distributions written by ``write_distributions(...)``.

    Returns:
        Distributions keyed by the kind of statistic.
    """
    distributions = yaml.load(filename, classes_to_register=[statistics.StatisticKind, SamplingDistribution])
    return {d.kind: d for d in distributions}


class GoodnessOfFit:
    """ Goodness-of-fit tests of a single dataset against the model.

    Computes any of the statistics with the asymptotic p-value, or with the p-value from a sampling
    distribution. The sampling distributions are either supplied (and then shared, so they are never
    modified here) or built from toys on first use and cached.

    Args:
        sample: Unbinned sample.
        model: Model providing ``density``, ``cumulative`` and ``generate``.
        settings: Range and binning settings.
        extra_ndf: Number of floating fit parameters, subtracted from the chi squared degrees of freedom.

    Attributes:
        sample: Unbinned sample, restricted to the range and sorted.
        model: Model.
        settings: Range and binning settings.
        extra_ndf: Number of floating fit parameters.
        n_toys: Number of toys used when a sampling distribution needs to be built. 0 if toys aren't configured.
    """

    def __init__(self, sample: np.ndarray, model: Any, settings: statistics.TestSettings, extra_ndf: int = 0):
        self.sample = settings.observable_range.restrict(sample)
        self.model = model
        self.settings = settings
        self.extra_ndf = extra_ndf
        self.n_toys = 0
        self._toy_options: Dict[str, Any] = {}
        self._histogram: Optional[histogram.BinnedHistogram] = None
        self._distributions: Dict[statistics.StatisticKind, SamplingDistribution] = {}

    @property
    def histogram(self) -> histogram.BinnedHistogram:
        """ The binned sample. It's only created when needed. """
        if self._histogram is None:
            self._histogram = self.settings.build_histogram(self.sample, self.model)
        return self._histogram

    def set_toys(self, n_toys: int, n_events: Optional[int] = None, workers: int = 1, seed: int = 0,
                 refit: bool = False) -> None:
        """ Configure the toys which are used to build sampling distributions.

        Args:
            n_toys: Number of toys.
            n_events: Number of events in each toy. Default: the size of the sample.
            workers: Number of worker threads. Default: 1.
            seed: Base seed. Default: 0.
            refit: Whether to refit the model to each toy. Default: False.
        """
        if n_toys <= 0:
            raise ValueError(f"Number of toys must be positive. Provided: {n_toys}")
        self.n_toys = n_toys
        self._toy_options = {
            "n_events": n_events if n_events is not None else len(self.sample),
            "workers": workers,
            "seed": seed,
            "refit": refit,
        }

    def set_sampling_distribution(self, kind: statistics.StatisticKind, distribution: SamplingDistribution) -> None:
        """ Use an existing sampling distribution for the given kind of statistic.

        The distribution is shared, so it will not be modified.

        Raises:
            DistributionMismatchError: If the distribution was built for a different statistic.
        """
        if distribution.kind != kind:
            raise gof_base.DistributionMismatchError(
                f"Cannot use a sampling distribution for {distribution.kind} as the distribution for {kind}."
            )
        self._distributions[kind] = distribution

    def sampling_distribution(self, kind: statistics.StatisticKind) -> SamplingDistribution:
        """ Retrieve the sampling distribution for the kind of statistic, building it if necessary. """
        if kind not in self._distributions:
            if self.n_toys <= 0:
                raise ValueError(f"No sampling distribution for {kind} and toys aren't configured. Call set_toys(...).")
            self._distributions[kind] = build_distribution(
                self.model, self.n_toys, kind, self.settings, extra_ndf=self.extra_ndf, **self._toy_options,
            )
        return self._distributions[kind]

    def test(self, kind: statistics.StatisticKind) -> gof_base.TestResult:
        """ Perform the test with the asymptotic p-value. """
        h = self.histogram if kind.is_binned else None
        return statistics.compute_statistic(kind, self.sample, self.model, self.settings, extra_ndf=self.extra_ndf, h=h)

    def toy_test(self, kind: statistics.StatisticKind) -> gof_base.TestResult:
        """ Perform the test with the p-value determined from the sampling distribution. """
        result = self.test(kind)
        p_value = toy_p_value(self.sampling_distribution(kind), result.statistic, kind=kind)
        return gof_base.TestResult(p_value=p_value, statistic=result.statistic, ndf=result.ndf)

    def _run(self, kind: statistics.StatisticKind, use_toys: bool) -> gof_base.TestResult:
        return self.toy_test(kind) if use_toys else self.test(kind)

    def ad_test(self, use_toys: bool = False) -> gof_base.TestResult:
        return self._run(statistics.StatisticKind.AD, use_toys)

    def ks_test(self, use_toys: bool = False) -> gof_base.TestResult:
        return self._run(statistics.StatisticKind.KS, use_toys)

    def pearson_test(self, use_toys: bool = False) -> gof_base.TestResult:
        return self._run(statistics.StatisticKind.Pearson, use_toys)

    def neyman_test(self, use_toys: bool = False) -> gof_base.TestResult:
        return self._run(statistics.StatisticKind.Neyman, use_toys)

    def bc_test(self, use_toys: bool = False) -> gof_base.TestResult:
        return self._run(statistics.StatisticKind.BC, use_toys)

    def roofit_test(self, use_toys: bool = False) -> gof_base.TestResult:
        return self._run(statistics.StatisticKind.RooFit, use_toys)
