# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
import time
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Sequence, Tuple

# Third-Party Imports
import numpy as np
import pandas as pd
from skbio.stats.distance import DistanceMatrix

# Local Imports
from mangrove_16s import constants
from mangrove_16s.amplicon_data.table import AbundanceTable
from mangrove_16s.errors import AnalysisError
from mangrove_16s.metadata.samples import SampleMetadata
from mangrove_16s.stats.design import Design, default_designs
from mangrove_16s.stats.differential import differential_abundance
from mangrove_16s.stats.dispersion import dispersion_test
from mangrove_16s.stats.nonparametric import (
    kruskal_by_factor, pairwise_wilcoxon, shapiro_by_group
)
from mangrove_16s.stats.permanova import pairwise_permanova, permanova
from mangrove_16s.stats.results import TestFailure
from mangrove_16s.utils.progress import track_tests

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger('mangrove_16s')

# =================================== DATA CLASSES =================================== #

class TestKind(str, Enum):
    __test__ = False

    NORMALITY = 'shapiro'
    KRUSKAL = 'kruskal'
    PAIRWISE_WILCOXON = 'pairwise_wilcoxon'
    PERMANOVA = 'permanova'
    PAIRWISE_PERMANOVA = 'pairwise_permanova'
    DISPERSION = 'betadisper'
    DIFFERENTIAL_ABUNDANCE = 'differential_abundance'


class RunState(str, Enum):
    CONFIGURED = 'configured'
    EXECUTED = 'executed'
    RECORDED = 'recorded'
    FAILED = 'failed'


@dataclass(frozen=True)
class TestSpec:
    """A configured test: what to run on which factors."""
    __test__ = False

    kind: TestKind
    factors: Tuple[str, ...]
    design: Optional[Design] = None
    metric: Optional[str] = None
    contrast: Optional[Tuple[Any, Any]] = None

    @property
    def label(self) -> str:
        target = self.design.label if self.design else ', '.join(self.factors)
        parts = [self.kind.value, target]
        if self.metric:
            parts.append(self.metric)
        if self.contrast:
            parts.append(f"{self.contrast[0]} vs {self.contrast[1]}")
        return ' | '.join(parts)


@dataclass(frozen=True)
class TestParameters:
    __test__ = False

    permutations: int = constants.DEFAULT_PERMUTATIONS
    alpha: float = constants.DEFAULT_ALPHA
    correction: str = constants.DEFAULT_CORRECTION
    da_correction: str = constants.DEFAULT_DA_CORRECTION
    da_alpha: float = constants.DEFAULT_ALPHA
    lfc_threshold: float = constants.DEFAULT_LFC_THRESHOLD
    da_rank: Optional[str] = None
    dispersion_permutations: int = 0


@dataclass(frozen=True)
class BatteryInputs:
    """Everything a test may read; shipped whole to worker processes."""
    metadata: SampleMetadata
    distance_matrix: Optional[DistanceMatrix] = None
    alpha_diversity: Optional[pd.DataFrame] = None
    table: Optional[AbundanceTable] = None
    metric: str = constants.DEFAULT_METRIC


@dataclass
class TestRun:
    """Lifecycle of one test: configured → executed → recorded, or failed."""
    __test__ = False

    spec: TestSpec
    seed: np.random.SeedSequence
    state: RunState = RunState.CONFIGURED
    result: Any = None
    failure: Optional[TestFailure] = None
    processing_time: float = 0.0

    def mark_executed(self, result: Any, processing_time: float) -> None:
        self._require(RunState.CONFIGURED)
        self.result, self.processing_time = result, processing_time
        self.state = RunState.EXECUTED

    def mark_recorded(self) -> None:
        self._require(RunState.EXECUTED)
        self.state = RunState.RECORDED

    def mark_failed(self, failure: TestFailure, processing_time: float) -> None:
        self._require(RunState.CONFIGURED)
        self.failure, self.processing_time = failure, processing_time
        self.state = RunState.FAILED

    def _require(self, state: RunState) -> None:
        if self.state is not state:
            raise RuntimeError(
                f"Test '{self.spec.label}' is {self.state.value}, expected {state.value}"
            )


class TaskResult(NamedTuple):
    """Structured result returned by worker processes."""
    index: int
    result: Any
    failure: Optional[TestFailure]
    processing_time: float

# ===================================== RUNNERS ====================================== #

def _require_input(value, what: str):
    if value is None:
        raise ValueError(f"Test needs {what}, which was not provided")
    return value


def _run_normality(spec, inputs, seed, params):
    alpha_df = _require_input(inputs.alpha_diversity, 'alpha diversity')
    return tuple(shapiro_by_group(alpha_df, inputs.metadata, spec.factors[0], [spec.metric]))


def _run_kruskal(spec, inputs, seed, params):
    alpha_df = _require_input(inputs.alpha_diversity, 'alpha diversity')
    return kruskal_by_factor(alpha_df[spec.metric], inputs.metadata, spec.factors[0], spec.metric)


def _run_pairwise_wilcoxon(spec, inputs, seed, params):
    alpha_df = _require_input(inputs.alpha_diversity, 'alpha diversity')
    return pairwise_wilcoxon(
        alpha_df[spec.metric], inputs.metadata, spec.factors[0], spec.metric,
        correction=params.correction, alpha=params.alpha,
    )


def _run_permanova(spec, inputs, seed, params):
    dm = _require_input(inputs.distance_matrix, 'a distance matrix')
    return permanova(
        dm, inputs.metadata, spec.design, permutations=params.permutations,
        seed=seed, metric=inputs.metric,
    )


def _run_pairwise_permanova(spec, inputs, seed, params):
    dm = _require_input(inputs.distance_matrix, 'a distance matrix')
    return pairwise_permanova(
        dm, inputs.metadata, spec.factors[0], permutations=params.permutations,
        seed=seed, correction=params.correction, alpha=params.alpha,
        metric=inputs.metric,
    )


def _run_dispersion(spec, inputs, seed, params):
    dm = _require_input(inputs.distance_matrix, 'a distance matrix')
    return dispersion_test(
        dm, inputs.metadata, spec.factors[0],
        permutations=params.dispersion_permutations, seed=seed, metric=inputs.metric,
    )


def _run_differential(spec, inputs, seed, params):
    table = _require_input(inputs.table, 'an abundance table')
    numerator, denominator = spec.contrast
    return differential_abundance(
        table.with_metadata(inputs.metadata), spec.factors[0], numerator, denominator,
        alpha=params.da_alpha, lfc_threshold=params.lfc_threshold,
        correction=params.da_correction, rank=params.da_rank,
    )


RUNNERS: Dict[TestKind, Callable] = {
    TestKind.NORMALITY: _run_normality,
    TestKind.KRUSKAL: _run_kruskal,
    TestKind.PAIRWISE_WILCOXON: _run_pairwise_wilcoxon,
    TestKind.PERMANOVA: _run_permanova,
    TestKind.PAIRWISE_PERMANOVA: _run_pairwise_permanova,
    TestKind.DISPERSION: _run_dispersion,
    TestKind.DIFFERENTIAL_ABUNDANCE: _run_differential,
}


def run_single_test(
    index: int,
    spec: TestSpec,
    inputs: BatteryInputs,
    seed: np.random.SeedSequence,
    params: TestParameters,
) -> TaskResult:
    """Execute one test; analysis errors become a :class:`TestFailure`."""
    start = time.time()
    factors = spec.design.label if spec.design else ', '.join(spec.factors)
    try:
        result = RUNNERS[spec.kind](spec, inputs, seed, params)
    except AnalysisError as e:
        failure = TestFailure(spec.kind.value, factors, e.status, str(e), spec.metric)
        return TaskResult(index, None, failure, time.time() - start)
    except (ValueError, KeyError, np.linalg.LinAlgError) as e:
        failure = TestFailure(spec.kind.value, factors, 'error',
                              f"{type(e).__name__}: {e}", spec.metric)
        return TaskResult(index, None, failure, time.time() - start)
    return TaskResult(index, result, None, time.time() - start)

# ================================== TEST BATTERY ==================================== #

def build_specs(
    factors: Sequence[str] = constants.DEFAULT_FACTORS,
    alpha_metrics: Sequence[str] = (),
    designs: Optional[Sequence[Design]] = None,
    posthoc_factors: Sequence[str] = (constants.ZONE_COLUMN,),
    dispersion_factors: Optional[Sequence[str]] = None,
    contrasts: Sequence[Dict[str, Any]] = (),
    beta: bool = True,
) -> List[TestSpec]:
    """Assemble the standard set of tests.

    Alpha metrics get Shapiro-Wilk and Kruskal-Wallis per factor plus
    pairwise Wilcoxon on ``posthoc_factors``; the distance matrix gets one
    PERMANOVA per design, pairwise PERMANOVA on ``posthoc_factors`` and a
    dispersion test per factor; each contrast gets a differential abundance
    run.
    """
    specs = []
    for metric in alpha_metrics:
        for factor in factors:
            specs.append(TestSpec(TestKind.NORMALITY, (factor,), metric=metric))
            specs.append(TestSpec(TestKind.KRUSKAL, (factor,), metric=metric))
        for factor in posthoc_factors:
            specs.append(TestSpec(TestKind.PAIRWISE_WILCOXON, (factor,), metric=metric))
    if beta:
        for design in (default_designs() if designs is None else designs):
            design = Design.parse(design)
            specs.append(TestSpec(TestKind.PERMANOVA, design.factors, design=design))
        for factor in posthoc_factors:
            specs.append(TestSpec(TestKind.PAIRWISE_PERMANOVA, (factor,)))
        for factor in (factors if dispersion_factors is None else dispersion_factors):
            specs.append(TestSpec(TestKind.DISPERSION, (factor,)))
    for contrast in contrasts:
        specs.append(TestSpec(
            TestKind.DIFFERENTIAL_ABUNDANCE, (contrast['factor'],),
            contrast=(contrast['numerator'], contrast['denominator']),
        ))
    return specs


class TestBattery:
    """
    Configured set of statistical tests run over one dataset.

    Every test receives its own child of ``SeedSequence(random_state)``,
    assigned in configuration order, so results are identical whether the
    battery runs sequentially or across ``n_jobs`` worker processes. A test
    that fails is recorded as a :class:`TestFailure` and never stops the
    others.

    Attributes:
        runs:   One :class:`TestRun` per configured test, in order.
        inputs: Shared data the tests read.
        params: Permutation count, significance level and corrections.
    """
    __test__ = False

    def __init__(
        self,
        inputs: BatteryInputs,
        specs: Sequence[TestSpec],
        params: Optional[TestParameters] = None,
        random_state: Optional[int] = constants.DEFAULT_RANDOM_STATE,
    ):
        self.inputs = inputs
        self.params = params or TestParameters()
        self.random_state = random_state
        seeds = np.random.SeedSequence(random_state).spawn(len(specs))
        self.runs: List[TestRun] = [TestRun(spec, seed) for spec, seed in zip(specs, seeds)]

    def __len__(self) -> int:
        return len(self.runs)

    def __repr__(self) -> str:
        states = pd.Series([r.state.value for r in self.runs]).value_counts().to_dict()
        return f"TestBattery({len(self)} tests, {states})"

    # ------------------------------------------------------------------ running --- #

    def run(self, n_jobs: int = constants.DEFAULT_N_JOBS) -> List[Any]:
        """Execute every configured test and record the outcomes.

        Args:
            n_jobs: Worker processes; 1 runs in-process.

        Returns:
            Recorded results and failures, in configuration order.
        """
        pending = [i for i, r in enumerate(self.runs) if r.state is RunState.CONFIGURED]
        if not pending:
            return self.results
        logger.info(f"Running {len(pending)} statistical tests (n_jobs={n_jobs})")

        with track_tests(len(pending)) as advance:
            if n_jobs > 1:
                with ProcessPoolExecutor(max_workers=n_jobs) as executor:
                    futures = [
                        executor.submit(run_single_test, i, self.runs[i].spec,
                                        self.inputs, self.runs[i].seed, self.params)
                        for i in pending
                    ]
                    for future in as_completed(futures):
                        task = future.result()
                        self._store(task)
                        advance(task.failure is not None)
            else:
                for i in pending:
                    run = self.runs[i]
                    task = run_single_test(i, run.spec, self.inputs, run.seed, self.params)
                    self._store(task)
                    advance(task.failure is not None)

        for run in self.runs:
            if run.state is RunState.EXECUTED:
                run.mark_recorded()

        n_failed = sum(r.state is RunState.FAILED for r in self.runs)
        logger.info(
            f"Statistical tests complete: {len(self.runs) - n_failed} recorded, "
            f"{n_failed} failed"
        )
        return self.results

    def _store(self, task: TaskResult) -> None:
        run = self.runs[task.index]
        if task.failure is not None:
            logger.warning(f"Test '{run.spec.label}' failed: {task.failure.message}")
            run.mark_failed(task.failure, task.processing_time)
        else:
            run.mark_executed(task.result, task.processing_time)

    # ------------------------------------------------------------------ results --- #

    @property
    def results(self) -> List[Any]:
        """Flattened results (and failures) of finished tests."""
        out = []
        for run in self.runs:
            if run.state is RunState.FAILED:
                out.append(run.failure)
            elif run.state is RunState.RECORDED:
                out.extend(run.result if isinstance(run.result, tuple) else [run.result])
        return out

    def by_kind(self, kind: TestKind) -> List[Any]:
        return [
            r.result for r in self.runs
            if r.spec.kind is kind and r.state is RunState.RECORDED
        ]

    @property
    def failures(self) -> List[TestFailure]:
        return [r.failure for r in self.runs if r.state is RunState.FAILED]

    def timings(self) -> pd.Series:
        return pd.Series(
            [r.processing_time for r in self.runs],
            index=[r.spec.label for r in self.runs],
            name='seconds',
        )
