#!/usr/bin/env python3

""" Toy study of the goodness-of-fit tests.

Each trial generates a pseudo-dataset from the model at the reference parameters, tests it before
fitting, refits the model, and then tests it again after the fit (with both the asymptotic p-values
and the p-values from the shared sampling distributions). This characterizes the distributions of
the statistics and p-values, which should be uniform if the asymptotic approximations hold.
"""

import enum
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from goftools import config as study_config
from goftools import histogram, utils
from goftools.gof import base as gof_base
from goftools.gof import sampling, statistics

logger = logging.getLogger(__name__)

# All of the statistics, in the order in which they're stored.
ALL_KINDS: Tuple[statistics.StatisticKind, ...] = tuple(statistics.StatisticKind)

# Seed streams, so the trials and the sampling distributions don't share seeds.
_TRIAL_STREAM = 0
_DISTRIBUTION_STREAM = 1


class Phase(enum.Enum):
    """ Phases of a single trial, in the order in which they're executed. """

    reset = 0
    generate = 1
    test_before = 2
    refit = 3
    test_after = 4
    test_after_toys = 5
    record = 6

    def __str__(self) -> str:
        return self.name


T_Results = Mapping[statistics.StatisticKind, gof_base.TestResult]


@dataclass(frozen=True)
class TrialRecord:
    """ Results of a single trial.

    Missing results (for example, after a failed fit) are stored as failed results (ie. NaN).

    Attributes:
        index: Index of the trial.
        before: Results of the tests before the fit.
        after: Results of the tests after the fit, with the asymptotic p-values.
        after_toys: Results of the tests after the fit, with the p-values from toys.
        fit_converged: Whether the fit converged.
        completed: Whether the trial was run at all. False if the study was stopped before the trial.
    """

    index: int
    before: T_Results
    after: T_Results
    after_toys: T_Results
    fit_converged: bool
    completed: bool = True

    @classmethod
    def not_run(cls, index: int) -> "TrialRecord":
        """ Record for a trial which wasn't run. """
        return cls(index=index, before={}, after={}, after_toys={}, fit_converged=False, completed=False)

    def row(self, kinds: Sequence[statistics.StatisticKind],
            toy_kinds: Sequence[statistics.StatisticKind]) -> Dict[str, float]:
        """ Values of the record, keyed by column name. """
        failed = gof_base.TestResult.failed()
        values: Dict[str, float] = {}
        for kind in kinds:
            before = self.before.get(kind, failed)
            after = self.after.get(kind, failed)
            values[f"{kind}_pvalue_before"] = before.p_value
            values[f"{kind}_stat_before"] = before.statistic
            values[f"{kind}_pvalue_after"] = after.p_value
            values[f"{kind}_stat_after"] = after.statistic
            if kind in toy_kinds:
                values[f"{kind}_pvalue_after_toys"] = self.after_toys.get(kind, failed).p_value
        return values


def column_names(kinds: Sequence[statistics.StatisticKind], toy_kinds: Sequence[statistics.StatisticKind]) -> List[str]:
    """ Names of the output columns. """
    return list(TrialRecord.not_run(0).row(kinds, toy_kinds))


@dataclass
class ToyStudyResult:
    """ Results of a toy study, with one record per requested trial.

    Attributes:
        records: Records, sorted by the trial index.
        kinds: Kinds of statistics which were computed.
        toy_kinds: Kinds of statistics which have toy based p-values.
        cancelled: True if the study was stopped before all trials were run.
    """

    records: List[TrialRecord]
    kinds: Tuple[statistics.StatisticKind, ...] = ALL_KINDS
    toy_kinds: Tuple[statistics.StatisticKind, ...] = ()
    cancelled: bool = False
    _columns: Optional[Dict[str, np.ndarray]] = field(default=None, init=False, repr=False, compare=False)

    @property
    def n_trials(self) -> int:
        return len(self.records)

    @property
    def n_completed(self) -> int:
        return sum(r.completed for r in self.records)

    @property
    def fit_converged(self) -> np.ndarray:
        return np.array([r.fit_converged for r in self.records], dtype=bool)

    @property
    def columns(self) -> Dict[str, np.ndarray]:
        """ Output table, as column name -> float64 array with one entry per trial. """
        if self._columns is None:
            names = column_names(self.kinds, self.toy_kinds)
            rows = [r.row(self.kinds, self.toy_kinds) for r in self.records]
            self._columns = {name: np.array([row[name] for row in rows], dtype=np.float64) for name in names}
        return self._columns

    def to_numpy(self) -> np.ndarray:
        """ Output table as a structured array. """
        columns = self.columns
        arr = np.zeros(self.n_trials, dtype=[(name, np.float64) for name in columns])
        for name, values in columns.items():
            arr[name] = values
        return arr

    def summary(self) -> Dict[str, Tuple[float, float]]:
        """ Summarize each column by the fraction of failed (NaN) values and the mean of the rest.

        Returns:
            Column name -> (fraction of NaN, mean of the valid values).
        """
        output = {}
        for name, values in self.columns.items():
            valid = values[~np.isnan(values)]
            nan_fraction = 1 - len(valid) / len(values) if len(values) else np.nan
            mean = float(np.mean(valid)) if len(valid) else np.nan
            output[name] = (nan_fraction, mean)
            logger.info(f"{name}: mean={mean:.4g}, failed fraction={nan_fraction:.3g}")
        return output


@dataclass
class _Trial:
    """ Mutable state of a trial in progress. Private to a single trial. """

    index: int
    seed: int
    model: Any = None
    sample: Optional[np.ndarray] = None
    before: Dict[statistics.StatisticKind, gof_base.TestResult] = field(default_factory=dict)
    after: Dict[statistics.StatisticKind, gof_base.TestResult] = field(default_factory=dict)
    after_toys: Dict[statistics.StatisticKind, gof_base.TestResult] = field(default_factory=dict)
    fit_converged: bool = False
    record: Optional[TrialRecord] = None


class ToyStudy:
    """ Repeatedly generate, test, refit and test pseudo-datasets.

    The model is never modified. Each trial works on a private copy which is restored to the reference
    parameters (the parameters of the model when the study was created).

    Args:
        model: Model providing the density, CDF, generation and fit.
        config: Study configuration.
        kinds: Statistics to compute. Default: all of them.
        sampling_distributions: Existing sampling distributions to use for the toy based p-values.
            They are shared, so they won't be modified. Any which are missing for ``config.toy_kinds``
            are built from the reference model when the study is run.

    Attributes:
        model: Model.
        config: Study configuration.
        kinds: Statistics to compute.
        reference: Reference parameter values.
    """

    def __init__(self, model: Any, config: study_config.StudyConfig,
                 kinds: Sequence[statistics.StatisticKind] = ALL_KINDS,
                 sampling_distributions: Optional[Mapping[statistics.StatisticKind, sampling.SamplingDistribution]] = None):
        self.model = model
        self.config = config
        self.kinds = tuple(kinds)
        self.reference = model.snapshot()
        self.settings = config.test_settings()
        self._distributions: Dict[statistics.StatisticKind, sampling.SamplingDistribution] = {}
        for kind, distribution in (sampling_distributions or {}).items():
            if distribution.kind != kind:
                raise gof_base.DistributionMismatchError(
                    f"Sampling distribution for {distribution.kind} was provided for {kind}."
                )
            self._distributions[kind] = distribution
        self._handlers: Dict[Phase, Callable[[_Trial], Optional[Phase]]] = {
            Phase.reset: self._reset,
            Phase.generate: self._generate,
            Phase.test_before: self._test_before,
            Phase.refit: self._refit,
            Phase.test_after: self._test_after,
            Phase.test_after_toys: self._test_after_toys,
            Phase.record: self._record,
        }

    @property
    def toy_kinds(self) -> Tuple[statistics.StatisticKind, ...]:
        return tuple(k for k in self.config.toy_kinds if k in self.kinds)

    def _reference_model(self) -> Any:
        model = self.model.clone()
        model.restore(self.reference)
        return model

    def sampling_distributions(self) -> Dict[statistics.StatisticKind, sampling.SamplingDistribution]:
        """ Sampling distributions for the toy based p-values, building any which are missing. """
        for position, kind in enumerate(statistics.StatisticKind):
            if kind not in self.toy_kinds or kind in self._distributions:
                continue
            logger.info(f"Building sampling distribution for {kind} with {self.config.n_toys} toys.")
            self._distributions[kind] = sampling.build_distribution(
                self._reference_model(), self.config.n_toys, kind, self.settings,
                n_events=self.config.events_per_toy,
                seed=utils.derive_seed(self.config.seed, position, stream=_DISTRIBUTION_STREAM),
                workers=self.config.workers,
                refit=self.config.refit_toys,
                extra_ndf=self.model.parameter_count() if self.config.refit_toys else 0,
            )
        return dict(self._distributions)

    def _test_all(self, sample: np.ndarray, model: Any, extra_ndf: int) -> Dict[statistics.StatisticKind, gof_base.TestResult]:
        """ Compute all of the statistics, storing failed results for those which can't be computed. """
        h: Optional[histogram.BinnedHistogram] = None
        if any(kind.is_binned for kind in self.kinds):
            try:
                h = self.settings.build_histogram(sample, model)
            except gof_base.GoFError as e:
                logger.debug(f"Unable to bin the sample: {e}")
        results = {}
        for kind in self.kinds:
            if kind.is_binned and h is None:
                results[kind] = gof_base.TestResult.failed()
                continue
            try:
                results[kind] = statistics.compute_statistic(kind, sample, model, self.settings, extra_ndf=extra_ndf, h=h)
            except gof_base.GoFError as e:
                logger.debug(f"Unable to compute {kind}: {e}")
                results[kind] = gof_base.TestResult.failed()
        return results

    def _reset(self, trial: _Trial) -> Phase:
        trial.model = self._reference_model()
        return Phase.generate

    def _generate(self, trial: _Trial) -> Phase:
        trial.sample = trial.model.generate(self.config.n_events, trial.seed)
        return Phase.test_before

    def _test_before(self, trial: _Trial) -> Phase:
        assert trial.sample is not None
        trial.before = self._test_all(trial.sample, trial.model, extra_ndf=0)
        return Phase.refit

    def _refit(self, trial: _Trial) -> Phase:
        try:
            trial.model.refit(trial.sample)
        except gof_base.FitNonConvergenceError as e:
            logger.warning(f"Fit failed for trial {trial.index}: {e}")
            return Phase.record
        trial.fit_converged = True
        return Phase.test_after

    def _test_after(self, trial: _Trial) -> Phase:
        assert trial.sample is not None
        trial.after = self._test_all(trial.sample, trial.model, extra_ndf=trial.model.parameter_count())
        return Phase.test_after_toys

    def _test_after_toys(self, trial: _Trial) -> Phase:
        for kind in self.toy_kinds:
            result = trial.after.get(kind, gof_base.TestResult.failed())
            p_value = sampling.toy_p_value(self._distributions[kind], result.statistic, kind=kind)
            trial.after_toys[kind] = gof_base.TestResult(p_value=p_value, statistic=result.statistic, ndf=result.ndf)
        return Phase.record

    def _record(self, trial: _Trial) -> None:
        trial.record = TrialRecord(
            index=trial.index, before=dict(trial.before), after=dict(trial.after),
            after_toys=dict(trial.after_toys), fit_converged=trial.fit_converged,
        )
        return None

    def run_trial(self, index: int) -> TrialRecord:
        """ Run a single trial.

        The trial only depends on its index (through the seed) and the reference parameters, so it
        gives the same result regardless of the other trials.

        Args:
            index: Index of the trial.
        Returns:
            Record of the trial.
        """
        if any(kind not in self._distributions for kind in self.toy_kinds):
            self.sampling_distributions()
        trial = _Trial(index=index, seed=utils.derive_seed(self.config.seed, index, stream=_TRIAL_STREAM))
        phase: Optional[Phase] = Phase.reset
        while phase is not None:
            logger.debug(f"Trial {index}: {phase}")
            phase = self._handlers[phase](trial)
        assert trial.record is not None
        return trial.record

    def run(self, stop_event: Optional[threading.Event] = None) -> ToyStudyResult:
        """ Run the study.

        Trials are run in batches of ``config.progress_interval``. If the stop event is set, the study
        stops after the batch which is in progress, and the trials which weren't run are recorded as
        such (with NaN values).

        Args:
            stop_event: Event to request early termination. Default: None.
        Returns:
            Results of the study, with one record per requested trial.
        """
        # Build the shared distributions before running any trials so they're only built once.
        self.sampling_distributions()
        n_trials = self.config.n_trials
        workers = utils.clamp_workers(self.config.workers)
        records: Dict[int, TrialRecord] = {}
        cancelled = False
        for batch in utils.batched(list(range(n_trials)), self.config.progress_interval):
            if stop_event is not None and stop_event.is_set():
                logger.info(f"Stopping the study after {len(records)}/{n_trials} trials.")
                cancelled = True
                break
            logger.info(f"{batch[0]}/{n_trials}")
            for record in utils.map_in_order(self.run_trial, batch, workers=workers):
                records[record.index] = record

        return ToyStudyResult(
            records=[records.get(i, TrialRecord.not_run(i)) for i in range(n_trials)],
            kinds=self.kinds,
            toy_kinds=self.toy_kinds,
            cancelled=cancelled,
        )
