#!/usr/bin/env python3

""" Histogram related classes and functionality.

Converts an unbinned sample into observed counts and uses the model density to determine the
expected counts in each bin. Also contains the rebinning which ensures a minimum expected count
per bin, as is required for the chi squared asymptotics to hold.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional, Sequence, Tuple, Type, TypeVar, Union, cast

import numpy as np
import scipy.integrate

from goftools.gof.base import InvalidRangeError

# Setup logger
logger = logging.getLogger(__name__)

_T = TypeVar("_T", bound="BinnedHistogram")
_T_Range = TypeVar("_T_Range", bound="ObservableRange")

# Number of points per bin used to sample the model curve.
CURVE_POINTS_PER_BIN = 10


@dataclass(frozen=True)
class ObservableRange:
    """ Closed interval restricting all computations to a sub-domain of the observable.

    Attributes:
        min: Lower edge of the range.
        max: Upper edge of the range.
    """

    min: float
    max: float

    def __post_init__(self) -> None:
        if not (np.isfinite(self.min) and np.isfinite(self.max)):
            raise InvalidRangeError(f"Range must be finite. Provided: [{self.min}, {self.max}]")
        if not self.min < self.max:
            raise InvalidRangeError(f"Range must satisfy min < max. Provided: [{self.min}, {self.max}]")

    @classmethod
    def from_sequence(cls: Type[_T_Range], values: Sequence[float]) -> _T_Range:
        """ Create the range from a two element sequence, as it would be written in a configuration. """
        if len(values) != 2:
            raise InvalidRangeError(f"Range requires exactly two values. Provided: {values}")
        return cls(min=float(values[0]), max=float(values[1]))

    @property
    def width(self) -> float:
        return self.max - self.min

    def contains(self, values: Union[float, np.ndarray]) -> Union[bool, np.ndarray]:
        """ Whether the value(s) are inside the (closed) range. """
        return (values >= self.min) & (values <= self.max)  # type: ignore

    def restrict(self, sample: np.ndarray) -> np.ndarray:
        """ Restrict the sample to the range, returning the in-range values sorted ascending. """
        sample = np.asarray(sample, dtype=np.float64)
        return np.sort(sample[self.contains(sample)])


def _quad(f: Callable[..., Any], bin_edges: np.ndarray) -> np.ndarray:
    """ Integrate over the given function in each bin using QUADPACK.

    This option is fairly slow because we can't take advantage of vectorized numpy operations.

    Args:
        f: Function to integrate.
        bin_edges: Bin edges of the histogram.
    Returns:
        Integral over each bin.
    """
    values = []
    for lower, upper in zip(bin_edges[:-1], bin_edges[1:]):
        res, _ = scipy.integrate.quad(func=lambda x: float(f(x)), a=lower, b=upper)
        values.append(res)
    return np.array(values)


def _simpson_38(f: Callable[..., Any], bin_edges: np.ndarray) -> np.ndarray:
    """ Integrate over each histogram bin with the Simpson 3/8 rule.

    Implemented via the expression at https://en.wikipedia.org/wiki/Simpson%27s_rule#Simpson's_3/8_rule .

    Args:
        f: Function to integrate. Must be vectorized.
        bin_edges: Bin edges of the histogram.
    Returns:
        Integral over each bin.
    """
    a = bin_edges[:-1]
    b = bin_edges[1:]
    # Recall that bin_edges[1:] - bin_edges[:-1] is the bin widths
    return (b - a) / 8 * (f(a) + 3 * f((2 * a + b) / 3) + 3 * f((a + 2 * b) / 3) + f(b))


_integration_methods = {
    "simpson": _simpson_38,
    "quad": _quad,
}


def integrate_bins(f: Callable[..., Any], bin_edges: np.ndarray, method: str = "simpson") -> np.ndarray:
    """ Integrate the given function over each bin.

    Args:
        f: Function to integrate.
        bin_edges: Bin edges.
        method: Either "simpson" (Simpson's 3/8 rule, the default) or "quad" (QUADPACK, slow).
    Returns:
        Integral over each bin.
    """
    try:
        integrate = _integration_methods[method]
    except KeyError as e:
        raise ValueError(
            f"Unknown integration method '{method}'. Possible values: {list(_integration_methods)}"
        ) from e
    return integrate(f, np.asarray(bin_edges, dtype=np.float64))


def curve_bin_averages(f: Callable[..., Any], bin_edges: np.ndarray, points_per_bin: int = CURVE_POINTS_PER_BIN) -> np.ndarray:
    """ Integrate a sampled curve of the function over each bin.

    The function is sampled on a uniform grid and linearly interpolated between the points, which is
    what a plotted curve of the function represents. The interpolated curve is then integrated over
    each bin with the trapezoid rule.

    Args:
        f: Function to sample. Must be vectorized.
        bin_edges: Bin edges.
        points_per_bin: Number of grid intervals per (average width) bin.
    Returns:
        Integral of the curve over each bin.
    """
    bin_edges = np.asarray(bin_edges, dtype=np.float64)
    n_points = max(points_per_bin, 1) * (len(bin_edges) - 1) + 1
    grid = np.linspace(bin_edges[0], bin_edges[-1], n_points)
    curve = f(grid)
    values = []
    for lower, upper in zip(bin_edges[:-1], bin_edges[1:]):
        # Include the bin edges so the interpolated curve is integrated exactly over the bin.
        inside = grid[(grid > lower) & (grid < upper)]
        x = np.concatenate(([lower], inside, [upper]))
        values.append(scipy.integrate.trapezoid(np.interp(x, grid, curve), x))
    return np.array(values)


def find_bin(bin_edges: np.ndarray, value: float) -> int:
    """ Determine the index position where the value should be inserted.

    This is basically ``ROOT.TH1.FindBin(value)``, but it can used for any set of bin_edges.

    Note:
        Bins are 0-indexed here, while in ROOT they are 1-indexed.

    Args:
        bin_edges: Bin edges of the histogram.
        value: Value to find within those bin edges.
    Returns:
        Index of the bin where that value would reside in the histogram.
    """
    # By specifying ``side = "right"``, it finds values as arr[i] <= value < arr[i + 1],
    # so we subtract one to get the bin index.
    return cast(int, np.searchsorted(bin_edges, value, side="right")) - 1


@dataclass
class BinnedHistogram:
    """ Observed and expected counts in contiguous bins.

    Args:
        bin_edges: The histogram bin edges.
        observed: Observed counts in each bin.
        expected: Expected counts in each bin, determined by integrating the model density.
        curve_expected: Expected counts determined from the sampled model curve. Default: None,
            which uses the expected values.

    Attributes:
        bin_edges: The histogram bin edges.
        observed: Observed counts in each bin.
        expected: Expected counts in each bin.
        curve_expected: Expected counts determined from the sampled model curve.
    """

    bin_edges: np.ndarray
    observed: np.ndarray
    expected: np.ndarray
    curve_expected: Optional[np.ndarray] = field(default=None)

    def __post_init__(self) -> None:
        """ Perform validation on the inputs. """
        self.bin_edges = np.array(self.bin_edges, dtype=np.float64)
        self.observed = np.array(self.observed, dtype=np.float64)
        self.expected = np.array(self.expected, dtype=np.float64)
        if self.curve_expected is None:
            self.curve_expected = self.expected.copy()
        else:
            self.curve_expected = np.array(self.curve_expected, dtype=np.float64)

        # Ensure that they're the appropriate length
        if not (len(self.bin_edges) - 1 == len(self.observed) == len(self.expected) == len(self.curve_expected)):
            raise ValueError(
                f"Length of input arrays doesn't match! Bin edges should be one longer than the counts."
                f" Lengths: bin_edges: {len(self.bin_edges)}, observed: {len(self.observed)},"
                f" expected: {len(self.expected)}, curve_expected: {len(self.curve_expected)}"
            )
        if len(self.observed) == 0:
            raise InvalidRangeError("Histogram requires at least one bin.")
        if np.any(np.diff(self.bin_edges) <= 0):
            raise InvalidRangeError(f"Bin edges must be strictly increasing. Provided: {self.bin_edges}")
        for name in ["observed", "expected", "curve_expected"]:
            if np.any(getattr(self, name) < 0):
                raise ValueError(f"Counts must be non-negative, but {name} contains negative values.")

    @classmethod
    def from_bins(cls: Type[_T], bins: Iterable[Tuple[float, float, float, float]]) -> _T:
        """ Create a histogram from ``(edge_low, edge_high, observed, expected)`` tuples.

        Args:
            bins: Bins in increasing order. They must be contiguous.
        Returns:
            The histogram.
        """
        bins = list(bins)
        if not bins:
            raise InvalidRangeError("Histogram requires at least one bin.")
        for (_, upper, *_), (lower, *_) in zip(bins[:-1], bins[1:]):
            if upper != lower:
                raise InvalidRangeError(f"Bins must be contiguous. Upper edge {upper} != next lower edge {lower}")
        bin_edges = [b[0] for b in bins] + [bins[-1][1]]
        return cls(
            bin_edges=np.array(bin_edges),
            observed=np.array([b[2] for b in bins]),
            expected=np.array([b[3] for b in bins]),
        )

    @property
    def n_bins(self) -> int:
        return len(self.observed)

    @property
    def bin_widths(self) -> np.ndarray:
        """ Bin widths calculated from the bin edges. """
        return self.bin_edges[1:] - self.bin_edges[:-1]

    def find_bin(self, value: float) -> int:
        """ Find the bin corresponding to the specified value. See ``find_bin(...)`` in this module. """
        return find_bin(self.bin_edges, value)

    def copy(self: _T) -> _T:
        """ Copies the object. """
        return type(self)(
            bin_edges=self.bin_edges.copy(),
            observed=self.observed.copy(),
            expected=self.expected.copy(),
            curve_expected=None if self.curve_expected is None else self.curve_expected.copy(),
        )

    def __eq__(self, other: Any) -> bool:
        """ Check for equality of the bin edges and counts. """
        if type(other) is not type(self):
            return NotImplemented
        if self.n_bins != other.n_bins:
            return False
        return all(
            np.allclose(getattr(self, name), getattr(other, name))
            for name in ["bin_edges", "observed", "expected", "curve_expected"]
        )


def _validate_bin_edges(bin_edges: np.ndarray, observable_range: ObservableRange) -> np.ndarray:
    bin_edges = np.asarray(bin_edges, dtype=np.float64)
    if bin_edges.ndim != 1 or len(bin_edges) < 2:
        raise InvalidRangeError(f"Need at least two bin edges. Provided: {bin_edges}")
    if np.any(np.diff(bin_edges) <= 0):
        raise InvalidRangeError(f"Bin edges must be strictly increasing. Provided: {bin_edges}")
    if bin_edges[0] < observable_range.min or bin_edges[-1] > observable_range.max:
        raise InvalidRangeError(
            f"Bin edges [{bin_edges[0]}, {bin_edges[-1]}] exceed the observable range"
            f" [{observable_range.min}, {observable_range.max}]"
        )
    return bin_edges


def build_histogram(sample: np.ndarray, density: Callable[..., Any], observable_range: ObservableRange,
                    n_bins: Optional[int] = None, bin_edges: Optional[np.ndarray] = None,
                    integration: str = "simpson",
                    curve_points_per_bin: int = CURVE_POINTS_PER_BIN) -> BinnedHistogram:
    """ Bin the sample and determine the expected counts from the model.

    The expected counts are determined by integrating the model density over each bin, normalized to
    the integral over the binned range and scaled to the number of entries in that range.

    Args:
        sample: Unbinned sample.
        density: Model density. Must be vectorized. It doesn't need to be normalized.
        observable_range: Range to which the sample is restricted.
        n_bins: Number of equal width bins spanning the range. Either this or bin_edges must be given.
        bin_edges: Existing reference binning. It must lie within the range.
        integration: Integration method for the density. See ``integrate_bins(...)``.
        curve_points_per_bin: Number of grid points per bin when sampling the model curve.
    Returns:
        The binned histogram.
    Raises:
        InvalidRangeError: If the binning is malformed.
    """
    # Validation
    if bin_edges is None:
        if n_bins is None or n_bins <= 0:
            raise InvalidRangeError(f"Number of bins must be positive. Provided: {n_bins}")
        bin_edges = np.linspace(observable_range.min, observable_range.max, n_bins + 1)
    else:
        bin_edges = _validate_bin_edges(bin_edges, observable_range)

    # Observed counts. The upper edge of the range is included in the last bin (as with np.histogram).
    values = np.asarray(sample, dtype=np.float64)
    values = values[(values >= bin_edges[0]) & (values <= bin_edges[-1])]
    observed, _ = np.histogram(values, bins=bin_edges)
    n_entries = len(values)

    # Expected counts, scaled to the number of entries.
    integrals = integrate_bins(density, bin_edges, method=integration)
    curve_integrals = curve_bin_averages(density, bin_edges, points_per_bin=curve_points_per_bin)
    expected = _normalize(integrals, n_entries)
    curve_expected = _normalize(curve_integrals, n_entries)
    logger.debug(f"Built histogram with {len(observed)} bins and {n_entries} entries")

    return BinnedHistogram(bin_edges=bin_edges, observed=observed, expected=expected, curve_expected=curve_expected)


def _normalize(integrals: np.ndarray, n_entries: int) -> np.ndarray:
    total = np.sum(integrals)
    if not total > 0:
        raise InvalidRangeError(f"Model density integrates to {total} over the binned range.")
    # Guard against tiny negative values from the numerical integration.
    return np.clip(integrals, 0, None) / total * n_entries


def rebin(histogram: BinnedHistogram, min_expected: float = 5.0) -> BinnedHistogram:
    """ Merge adjacent bins until each has at least the minimum expected count.

    Bins are scanned left to right, accumulating until the accumulated expected count reaches the
    minimum. If the final accumulated group is still below the minimum, it is merged into the previous
    group. This stops when no bin violates the minimum or only one bin remains.

    Note:
        This is a greedy merge, not a globally optimal one.

    Args:
        histogram: Histogram to rebin. It is not modified.
        min_expected: Minimum expected count per bin. Default: 5.
    Returns:
        A new, rebinned histogram.
    """
    if min_expected <= 0 or np.all(histogram.expected >= min_expected):
        return histogram.copy()

    # Determine the groups of bins to merge as [start, stop) index pairs.
    groups = []
    start = 0
    accumulated = 0.0
    for i, value in enumerate(histogram.expected):
        accumulated += value
        if accumulated >= min_expected:
            groups.append([start, i + 1])
            start = i + 1
            accumulated = 0.0
    if start < histogram.n_bins:
        if groups:
            # Short trailing group, so merge it into the previous one.
            groups[-1][1] = histogram.n_bins
        else:
            groups.append([start, histogram.n_bins])

    assert histogram.curve_expected is not None
    bin_edges = np.array([histogram.bin_edges[g[0]] for g in groups] + [histogram.bin_edges[-1]])
    merged = {
        name: np.array([np.sum(values[g[0]:g[1]]) for g in groups])
        for name, values in [
            ("observed", histogram.observed),
            ("expected", histogram.expected),
            ("curve_expected", histogram.curve_expected),
        ]
    }
    logger.debug(f"Rebinned from {histogram.n_bins} to {len(groups)} bins with min_expected={min_expected}")

    return type(histogram)(bin_edges=bin_edges, **merged)
