""" Shared fixtures for the tests. """

import logging
from typing import Any, Union

import numpy as np
import pytest

from goftools import histogram, model

# Set logging level as a global variable to simplify configuration.
# This is not ideal, but fine for simple tests.
logging_level = logging.DEBUG


@pytest.fixture
def logging_mixin(caplog: Any) -> None:
    """ Logging mixin to capture logging messages from modules.

    It logs at the debug level, which is probably most useful for when a test fails.
    """
    caplog.set_level(logging_level)


def linear(x: Union[np.ndarray, float], slope: float) -> Union[np.ndarray, float]:
    """ Linear density over [0, 10] which is positive for |slope| < 1. """
    return 1 + slope * (np.asarray(x) - 5) / 5


@pytest.fixture
def observable_range() -> histogram.ObservableRange:
    return histogram.ObservableRange(0, 10)


@pytest.fixture
def linear_model(observable_range: histogram.ObservableRange) -> model.FitModel:
    """ Simple one parameter model for testing. """
    return model.FitModel(linear, observable_range, parameters={"slope": 0.2}, limits={"slope": (-0.9, 0.9)})
