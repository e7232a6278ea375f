#!/usr/bin/env python3

""" Tests for the study configuration. """

import logging
from pathlib import Path
from typing import Any

import pytest

from goftools import config, histogram
from goftools.gof import base, statistics

logger = logging.getLogger(__name__)


@pytest.fixture
def config_filename(logging_mixin: Any, tmp_path: Path) -> Path:
    """ Write a basic configuration. """
    filename = tmp_path / "config.yaml"
    filename.write_text(
        """
toy_study:
    n_trials: 200
    n_events: 1000
    n_toys: 500
    n_bins: 50
    min_expected: 5
    observable_range: [0, 10]
    workers: 2
    seed: 12345
    toy_kinds: [!StatisticKind AD, KS]
    refit_toys: true
"""
    )
    return filename


def test_load_configuration(config_filename: Path) -> None:
    """ Test loading the configuration from YAML and creating the study configuration. """
    raw = config.load_configuration(config_filename)
    study_config = config.StudyConfig.from_config(raw["toy_study"])

    assert study_config.n_trials == 200
    assert study_config.n_events == 1000
    assert study_config.n_toys == 500
    assert study_config.workers == 2
    assert study_config.seed == 12345
    assert study_config.refit_toys is True
    assert study_config.observable_range == histogram.ObservableRange(0, 10)
    assert study_config.toy_kinds == (statistics.StatisticKind.AD, statistics.StatisticKind.KS)
    # Defaults
    assert study_config.progress_interval == 100
    assert study_config.events_per_toy == 1000


def test_test_settings(logging_mixin: Any) -> None:
    study_config = config.StudyConfig(n_trials=1, n_events=10, observable_range=[1, 2], n_bins=7, min_expected=2)

    settings = study_config.test_settings()

    assert settings.observable_range == histogram.ObservableRange(1, 2)
    assert settings.n_bins == 7
    assert settings.min_expected == 2


def test_toy_n_events(logging_mixin: Any) -> None:
    study_config = config.StudyConfig(n_trials=1, n_events=10, observable_range=[0, 1], toy_n_events=50)

    assert study_config.events_per_toy == 50


@pytest.mark.parametrize("kwargs, exception", [
    ({"n_bins": 0}, base.InvalidRangeError),
    ({"observable_range": [1, 0]}, base.InvalidRangeError),
    ({"observable_range": [0, 1, 2]}, base.InvalidRangeError),
    ({"n_trials": 0}, ValueError),
    ({"n_events": -1}, ValueError),
    ({"n_toys": 0}, ValueError),
    ({"workers": 0}, ValueError),
    ({"seed": -1}, ValueError),
    ({"toy_n_events": 0}, ValueError),
    ({"toy_kinds": ["chi2"]}, ValueError),
], ids = [
    "No bins", "Inverted range", "Too many range values", "No trials", "Negative events", "No toys",
    "No workers", "Negative seed", "No toy events", "Unknown kind",
])
def test_validation(logging_mixin: Any, kwargs: Any, exception: Any) -> None:
    """ Invalid configuration fails before running anything. """
    options = {"n_trials": 1, "n_events": 10, "observable_range": [0, 10]}
    options.update(kwargs)

    with pytest.raises(exception):
        config.StudyConfig(**options)


def test_missing_range(logging_mixin: Any) -> None:
    with pytest.raises(ValueError, match="observable_range"):
        config.StudyConfig.from_config({"n_trials": 1, "n_events": 10})
