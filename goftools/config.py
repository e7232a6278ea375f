#!/usr/bin/env python3

""" Configuration of a toy study.

The configuration is usually stored in YAML, such as:

.. code-block:: yaml

    toy_study:
        n_trials: 1000
        n_events: 1000
        n_toys: 1000
        n_bins: 100
        min_expected: 5
        observable_range: [0, 10]
        workers: 4
        seed: 12345
        toy_kinds: [!StatisticKind AD, !StatisticKind KS]

The kinds can also be given as plain strings.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence, Tuple, Type, TypeVar, Union, cast

from goftools import histogram, yaml
from goftools.gof import base as gof_base
from goftools.gof import chi_squared, statistics

logger = logging.getLogger(__name__)

_T_StudyConfig = TypeVar("_T_StudyConfig", bound="StudyConfig")


def load_configuration(filename: Union[Path, str]) -> yaml.DictLike:
    """ Load a configuration from a file.

    Args:
        filename: Filename of the YAML configuration file. Statistic kinds can be given with
            the ``!StatisticKind`` tag.
    Returns:
        dict-like object containing the loaded configuration
    """
    return cast(yaml.DictLike, yaml.load(filename, classes_to_register=[statistics.StatisticKind]))


def _to_kind(value: Union[str, statistics.StatisticKind]) -> statistics.StatisticKind:
    if isinstance(value, statistics.StatisticKind):
        return value
    try:
        return statistics.StatisticKind[str(value)]
    except KeyError as e:
        raise ValueError(f"Unknown statistic kind '{value}'. Possible values: {[str(k) for k in statistics.StatisticKind]}") from e


@dataclass(frozen=True)
class StudyConfig:
    """ Configuration of a toy study.

    Attributes:
        n_trials: Number of trials (pseudo-datasets) in the study.
        n_events: Number of events in each pseudo-dataset.
        n_toys: Number of toys used to build each sampling distribution.
        observable_range: Range to which all computations are restricted.
        n_bins: Number of bins for the binned tests.
        min_expected: Minimum expected count per bin for the rebinning.
        workers: Number of worker threads.
        seed: Base seed of the study.
        progress_interval: Number of trials between progress messages.
        toy_kinds: Kinds of statistics which also get a toy based p-value after the fit.
        toy_n_events: Number of events per toy. Default: None, which uses n_events.
        refit_toys: Whether to refit the model to each toy when building a sampling distribution.
    """

    n_trials: int
    n_events: int
    observable_range: histogram.ObservableRange
    n_toys: int = 1000
    n_bins: int = 100
    min_expected: float = chi_squared.DEFAULT_MIN_EXPECTED
    workers: int = 1
    seed: int = 0
    progress_interval: int = 100
    toy_kinds: Tuple[statistics.StatisticKind, ...] = field(
        default=(statistics.StatisticKind.AD, statistics.StatisticKind.KS)
    )
    toy_n_events: Optional[int] = None
    refit_toys: bool = False

    def __post_init__(self) -> None:
        """ Validate the configuration, so that we fail before running any trials. """
        if not isinstance(self.observable_range, histogram.ObservableRange):
            object.__setattr__(self, "observable_range", histogram.ObservableRange.from_sequence(self.observable_range))
        if self.n_bins <= 0:
            raise gof_base.InvalidRangeError(f"Number of bins must be positive. Provided: {self.n_bins}")
        for name in ["n_trials", "n_events", "n_toys", "workers", "progress_interval"]:
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive. Provided: {getattr(self, name)}")
        if self.toy_n_events is not None and self.toy_n_events <= 0:
            raise ValueError(f"toy_n_events must be positive. Provided: {self.toy_n_events}")
        if self.seed < 0:
            raise ValueError(f"Seed must be non-negative. Provided: {self.seed}")
        object.__setattr__(self, "toy_kinds", tuple(_to_kind(k) for k in self.toy_kinds))

    @classmethod
    def from_config(cls: Type[_T_StudyConfig], config: Mapping[str, Any]) -> _T_StudyConfig:
        """ Create the study configuration from a (YAML) dict-like configuration.

        Args:
            config: Configuration section describing the study.
        Returns:
            The study configuration.
        """
        options = dict(config)
        try:
            options["observable_range"] = histogram.ObservableRange.from_sequence(list(options["observable_range"]))
        except KeyError as e:
            raise ValueError("Configuration must specify the observable_range.") from e
        if "toy_kinds" in options:
            kinds: Sequence[Any] = options["toy_kinds"]
            options["toy_kinds"] = tuple(kinds)
        logger.debug(f"Study options: {options}")
        return cls(**options)

    @property
    def events_per_toy(self) -> int:
        return self.toy_n_events if self.toy_n_events is not None else self.n_events

    def test_settings(self) -> statistics.TestSettings:
        """ Range and binning settings for the tests. """
        return statistics.TestSettings(
            observable_range=self.observable_range, n_bins=self.n_bins, min_expected=self.min_expected,
        )
