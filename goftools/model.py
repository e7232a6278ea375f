#!/usr/bin/env python3

""" Model which provides the density, CDF, sample generation and fitting for the tests.

The goodness-of-fit tests only need the model as an oracle (see ``ModelOracle``). ``FitModel`` is
a complete implementation for one dimensional densities, which performs an unbinned maximum
likelihood fit with Minuit.

Some useful references on understanding binned vs unbinned fitting, likelihoods, etc:

- https://www.nbi.dk/~petersen/Teaching/Stat2015/Week3/week3.html
- https://www.nbi.dk/~petersen/Teaching/Stat2017/Week3/AS2017_1205_Likelihood.pdf
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Tuple, Type, TypeVar

import iminuit
import numpy as np
import scipy.integrate

from goftools import histogram
from goftools.gof import base as gof_base

logger = logging.getLogger(__name__)

_T_FitModel = TypeVar("_T_FitModel", bound="FitModel")
_T_FitResult = TypeVar("_T_FitResult", bound="FitResult")
_T_ParameterSnapshot = TypeVar("_T_ParameterSnapshot", bound="ParameterSnapshot")

# Smallest density value used in the log likelihood, so that the log is always defined.
_MIN_DENSITY = 1e-300


@dataclass(frozen=True)
class ParameterSnapshot:
    """ Immutable capture of the model parameter values.

    Attributes:
        names: Names of the parameters.
        values: Values of the parameters, in the same order as the names.
    """

    names: Tuple[str, ...]
    values: Tuple[float, ...]

    @classmethod
    def from_mapping(cls: Type[_T_ParameterSnapshot], values: Mapping[str, float]) -> _T_ParameterSnapshot:
        return cls(names=tuple(values), values=tuple(float(v) for v in values.values()))

    def as_dict(self) -> Dict[str, float]:
        return dict(zip(self.names, self.values))

    def __getitem__(self, name: str) -> float:
        return self.as_dict()[name]


class ModelOracle(Protocol):
    """ Interface of the model which is required by the tests and the toy study. """

    def density(self, x: np.ndarray) -> np.ndarray:
        ...

    def cumulative(self, x: np.ndarray) -> np.ndarray:
        ...

    def generate(self, n: int, seed: int) -> np.ndarray:
        ...

    def refit(self, data: np.ndarray) -> ParameterSnapshot:
        ...

    def parameter_count(self) -> int:
        ...

    def snapshot(self) -> ParameterSnapshot:
        ...

    def restore(self, snapshot: ParameterSnapshot) -> None:
        ...

    def clone(self) -> "ModelOracle":
        ...


@dataclass
class FitResult:
    """ Result of an unbinned maximum likelihood fit.

    Attributes:
        parameters: Names of the parameters used in the fit.
        free_parameters: Names of the free parameters used in the fit.
        fixed_parameters: Names of the fixed parameters used in the fit.
        values_at_minimum: Values of the parameters at the minimum.
        errors_on_parameters: Errors on the parameters determined via the fit.
        n_fit_data_points: Number of data points used in the fit.
        minimum_val: Value of the negative log likelihood at the minimum.
    """

    parameters: List[str]
    free_parameters: List[str]
    fixed_parameters: List[str]
    values_at_minimum: Dict[str, float]
    errors_on_parameters: Dict[str, float]
    n_fit_data_points: int
    minimum_val: float

    @classmethod
    def from_minuit(cls: Type[_T_FitResult], minuit: iminuit.Minuit, n_fit_data_points: int) -> _T_FitResult:
        """ Create a fit result form the Minuit fit object.

        Args:
            minuit: Minuit fit object after performing the fit.
            n_fit_data_points: Number of data points used in the fit.
        """
        parameters = list(minuit.parameters)
        fixed_parameters = [p for p in parameters if minuit.fixed[p]]
        # Can't just use set(parameters) - set(fixed_parameters) because set() is unordered!
        free_parameters = [p for p in parameters if p not in set(fixed_parameters)]
        return cls(
            parameters=parameters,
            free_parameters=free_parameters,
            fixed_parameters=fixed_parameters,
            values_at_minimum={p: float(minuit.values[p]) for p in parameters},
            errors_on_parameters={p: float(minuit.errors[p]) for p in parameters},
            n_fit_data_points=n_fit_data_points,
            minimum_val=float(minuit.fval),
        )


class FitModel:
    """ One dimensional model, normalized over the observable range.

    The density is normalized numerically, and the CDF is tabulated on a uniform grid. Samples are
    generated by inverting the tabulated CDF, so they exactly follow ``cumulative(x)``.

    Args:
        f: Density ``f(x, **parameters)``. Doesn't need to be normalized, but must be non-negative
            over the range and vectorized.
        observable_range: Range over which the model is defined.
        parameters: Initial parameter values.
        limits: Limits on parameters for the fit. Default: None.
        fixed: Names of parameters which are fixed in the fit. Default: None.
        n_grid: Number of grid points used to tabulate the CDF. Default: 2001.
        strategy: Minuit strategy. Default: 1.

    Attributes:
        f: Density function.
        observable_range: Range over which the model is defined.
        limits: Limits on parameters for the fit.
        fixed: Names of the parameters which are fixed in the fit.
        fit_result: Result of the last successful fit. None if not yet fit.
    """

    def __init__(self, f: Callable[..., Any], observable_range: histogram.ObservableRange,
                 parameters: Mapping[str, float], limits: Optional[Mapping[str, Tuple[float, float]]] = None,
                 fixed: Optional[Iterable[str]] = None, n_grid: int = 2001, strategy: int = 1):
        # Validation
        if n_grid < 2:
            raise ValueError(f"Need at least two grid points. Provided: {n_grid}")
        available = iminuit.util.describe(f)[1:]
        unknown = [p for p in parameters if p not in available]
        if unknown:
            raise ValueError(f"Parameters {unknown} are not arguments of the function. Available: {available}")
        self.f = f
        self.observable_range = observable_range
        self.limits: Dict[str, Tuple[float, float]] = dict(limits if limits else {})
        self.fixed = set(fixed if fixed else [])
        for name in list(self.limits) + list(self.fixed):
            if name not in parameters:
                raise ValueError(f"Limit or fixed parameter '{name}' is not a model parameter.")
        self.n_grid = n_grid
        self.strategy = strategy
        self.fit_result: Optional[FitResult] = None
        self._values: Dict[str, float] = {k: float(v) for k, v in parameters.items()}
        self._grid = np.linspace(observable_range.min, observable_range.max, n_grid)
        self._update()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(f={getattr(self.f, '__name__', self.f)}, parameters={self._values})"

    @property
    def parameters(self) -> Dict[str, float]:
        """ Copy of the current parameter values. """
        return dict(self._values)

    def _normalization(self, values: Mapping[str, float]) -> Tuple[np.ndarray, float]:
        """ Evaluate the function on the grid, and determine its integral over the range. """
        y = np.asarray(self.f(self._grid, **values), dtype=np.float64)
        return y, float(scipy.integrate.trapezoid(y, self._grid))

    def _update(self) -> None:
        """ Tabulate the CDF for the current parameter values. """
        y, norm = self._normalization(self._values)
        if not np.isfinite(norm) or norm <= 0:
            raise ValueError(f"Model density must have a positive integral over the range. Parameters: {self._values}")
        cdf = scipy.integrate.cumulative_trapezoid(np.clip(y, 0, None), self._grid, initial=0)
        # Assign together so readers never see an inconsistent state.
        self._norm, self._cdf = norm, cdf / cdf[-1]

    def density(self, x: np.ndarray) -> np.ndarray:
        """ Normalized density at x. """
        return np.asarray(self.f(x, **self._values), dtype=np.float64) / self._norm

    def cumulative(self, x: np.ndarray) -> np.ndarray:
        """ CDF at x. It is 0 below the range and 1 above it. """
        return np.interp(x, self._grid, self._cdf, left=0.0, right=1.0)

    def generate(self, n: int, seed: int) -> np.ndarray:
        """ Generate a sorted sample of n values from the model.

        Args:
            n: Number of values.
            seed: Seed for the random number generator.
        Returns:
            Sorted sample.
        """
        rng = np.random.default_rng(seed)
        return np.sort(np.interp(rng.random(n), self._cdf, self._grid))

    def parameter_count(self) -> int:
        """ Number of parameters which float in the fit. """
        return len([p for p in self._values if p not in self.fixed])

    def snapshot(self) -> ParameterSnapshot:
        return ParameterSnapshot.from_mapping(self._values)

    def restore(self, snapshot: ParameterSnapshot) -> None:
        """ Set the parameters to the values stored in the snapshot. """
        values = snapshot.as_dict()
        if set(values) != set(self._values):
            raise ValueError(f"Snapshot parameters {list(values)} don't match the model parameters {list(self._values)}")
        self._values = values
        self._update()

    def clone(self: _T_FitModel) -> _T_FitModel:
        """ Independent copy of the model, with the current parameter values. """
        model = type(self)(
            f=self.f, observable_range=self.observable_range, parameters=self._values, limits=self.limits,
            fixed=self.fixed, n_grid=self.n_grid, strategy=self.strategy,
        )
        model.fit_result = self.fit_result
        return model

    def negative_log_likelihood(self, data: np.ndarray, values: Mapping[str, float]) -> float:
        """ Unbinned negative log likelihood of the data for the given parameter values. """
        _, norm = self._normalization(values)
        if not np.isfinite(norm) or norm <= 0:
            # Outside of the physical parameter space, so disfavor it as strongly as possible.
            return 1e300
        density = np.asarray(self.f(data, **values), dtype=np.float64) / norm
        return float(-np.sum(np.log(np.clip(density, _MIN_DENSITY, None))))

    def refit(self, data: np.ndarray) -> ParameterSnapshot:
        """ Fit the model to the data with an unbinned maximum likelihood fit.

        On success, the model parameters are updated to the values at the minimum.

        Args:
            data: Unbinned sample. Values outside of the range are ignored.
        Returns:
            Snapshot of the fitted parameters.
        Raises:
            FitNonConvergenceError: If the fit failed. The model parameters are left unchanged.
        """
        data = self.observable_range.restrict(data)
        names = list(self._values)

        def cost(values: np.ndarray) -> float:
            return self.negative_log_likelihood(data, dict(zip(names, values)))

        minuit = iminuit.Minuit(cost, np.array([self._values[n] for n in names]), name=names)
        minuit.errordef = iminuit.Minuit.LIKELIHOOD
        for name, limit in self.limits.items():
            minuit.limits[name] = limit
        for name in self.fixed:
            minuit.fixed[name] = True
        minuit.strategy = self.strategy
        minuit.migrad()
        # Just in case (doesn't hurt anything, but may help in a few cases).
        minuit.hesse()

        # Check that the fit is actually good
        if not minuit.valid:
            raise gof_base.FitNonConvergenceError(f"Minimization failed! The fit is invalid! fmin: {minuit.fmin}")

        self.fit_result = FitResult.from_minuit(minuit, n_fit_data_points=len(data))
        self._values = dict(self.fit_result.values_at_minimum)
        self._update()
        logger.debug(f"Fit converged: {self._values}")
        return self.snapshot()
