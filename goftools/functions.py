#!/usr/bin/env python3

""" Functions for use as model densities.

The densities don't need to be normalized. They are normalized over the observable range by the model.
"""

import logging
from typing import Sequence, Union

import numpy as np
import numpy.polynomial.chebyshev
import scipy.special

logger = logging.getLogger(__name__)


def gaussian(x: Union[np.ndarray, float], mean: float, sigma: float) -> Union[np.ndarray, float]:
    r""" Normalized gaussian.

    .. math::

        f = 1 / \sqrt{2 * \pi * \sigma^{2}} * \exp{-\frac{(x - \mu)^{2}}{(2 * \sigma^{2}}}

    Args:
        x: Value(s) where the gaussian should be evaluated.
        mean: Mean of the gaussian distribution.
        sigma: Width of the gaussian distribution.
    Returns:
        Calculated gaussian value(s).
    """
    return 1.0 / np.sqrt(2 * np.pi * np.square(sigma)) * np.exp(-1.0 / 2.0 * np.square((x - mean) / sigma))


def chebychev(x: Union[np.ndarray, float], coefficients: Sequence[float],
              x_min: float, x_max: float) -> Union[np.ndarray, float]:
    r""" Chebychev polynomial series over the range [x_min, x_max].

    The constant term is fixed to 1, so the coefficients start from the linear term:

    .. math::

        f = 1 + \sum_{i} a_{i} T_{i + 1}(x')

    where x' is x mapped onto [-1, 1].

    Args:
        x: Value(s) where the polynomial should be evaluated.
        coefficients: Coefficients of the first and higher order polynomials.
        x_min: Lower edge of the range.
        x_max: Upper edge of the range.
    Returns:
        Polynomial value(s).
    """
    x_prime = (2 * np.asarray(x, dtype=np.float64) - x_min - x_max) / (x_max - x_min)
    return numpy.polynomial.chebyshev.chebval(x_prime, [1.0, *coefficients])  # type: ignore


def signal_plus_background(x: Union[np.ndarray, float], mean: float, sigma1: float, sigma2: float,
                           sig1frac: float, a0: float, a1: float, bkgfrac: float,
                           x_min: float = 0.0, x_max: float = 10.0) -> Union[np.ndarray, float]:
    """ Two gaussians with a common mean on top of a second order Chebychev background.

    Each component is normalized over [x_min, x_max] before they are combined, so the fractions
    are the fractions of events in that range.

    Args:
        x: Value(s) where the density should be evaluated.
        mean: Mean of both gaussians.
        sigma1: Width of the first gaussian.
        sigma2: Width of the second gaussian.
        sig1frac: Fraction of the signal in the first gaussian.
        a0: First order Chebychev coefficient.
        a1: Second order Chebychev coefficient.
        bkgfrac: Fraction of background.
        x_min: Lower edge of the range. Default: 0.
        x_max: Upper edge of the range. Default: 10.
    Returns:
        Density value(s).
    """
    # The integral of T_1 over the range vanishes and T_2 integrates to -2/3 (relative to the width).
    background = chebychev(x, [a0, a1], x_min, x_max) / ((x_max - x_min) * (1 - a1 / 3))
    signal = sig1frac * _truncated_gaussian(x, mean, sigma1, x_min, x_max) \
        + (1 - sig1frac) * _truncated_gaussian(x, mean, sigma2, x_min, x_max)
    return bkgfrac * background + (1 - bkgfrac) * signal  # type: ignore


def _truncated_gaussian(x: Union[np.ndarray, float], mean: float, sigma: float,
                        x_min: float, x_max: float) -> Union[np.ndarray, float]:
    norm = 0.5 * (
        scipy.special.erf((x_max - mean) / (np.sqrt(2) * sigma)) - scipy.special.erf((x_min - mean) / (np.sqrt(2) * sigma))
    )
    return gaussian(x, mean, sigma) / norm  # type: ignore
