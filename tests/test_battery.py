import pandas as pd
import pytest

from mangrove_16s.diversity.alpha import alpha_diversity
from mangrove_16s.diversity.beta import distance_matrix
from mangrove_16s.metadata.samples import SampleMetadata
from mangrove_16s.stats.battery import (
    BatteryInputs, RunState, TestBattery, TestKind, TestParameters, TestRun, TestSpec,
    build_specs, run_single_test
)
from mangrove_16s.stats.design import Design, Interaction
from mangrove_16s.stats.results import (
    KruskalResult, PermanovaResult, TestFailure
)
from mangrove_16s.utils.progress import TestCountColumn, get_progress_bar, track_tests

CONTRAST = {'factor': 'zone', 'numerator': 'Impaired', 'denominator': 'Fringe'}


@pytest.fixture
def inputs(table):
    return BatteryInputs(
        metadata=table.metadata,
        distance_matrix=distance_matrix(table),
        alpha_diversity=alpha_diversity(table),
        table=table,
    )


@pytest.fixture
def params():
    return TestParameters(permutations=49, lfc_threshold=0.5)


@pytest.fixture
def small_specs():
    return build_specs(
        factors=('zone', 'season'),
        alpha_metrics=('shannon',),
        designs=['zone', 'zone * season'],
        contrasts=[CONTRAST],
    )

# ================================== CONFIGURATION =================================== #

def test_build_specs_counts(small_specs):
    kinds = pd.Series([s.kind for s in small_specs]).value_counts()
    assert kinds[TestKind.NORMALITY] == 2
    assert kinds[TestKind.KRUSKAL] == 2
    assert kinds[TestKind.PAIRWISE_WILCOXON] == 1
    assert kinds[TestKind.PERMANOVA] == 2
    assert kinds[TestKind.PAIRWISE_PERMANOVA] == 1
    assert kinds[TestKind.DISPERSION] == 2
    assert kinds[TestKind.DIFFERENTIAL_ABUNDANCE] == 1
    assert len(small_specs) == 11


def test_build_specs_default_designs():
    specs = build_specs(alpha_metrics=())
    permanovas = [s for s in specs if s.kind is TestKind.PERMANOVA]
    assert len(permanovas) == 17
    assert permanovas[0].design == Design(('zone',))


def test_spec_label():
    spec = TestSpec(TestKind.PERMANOVA, ('zone', 'season'),
                    design=Design(('zone', 'season'), Interaction.FULL))
    assert spec.label == 'permanova | zone * season'
    spec = TestSpec(TestKind.DIFFERENTIAL_ABUNDANCE, ('zone',), contrast=('Impaired', 'Fringe'))
    assert spec.label == 'differential_abundance | zone | Impaired vs Fringe'

# ==================================== LIFECYCLE ===================================== #

def test_run_state_transitions():
    run = TestRun(TestSpec(TestKind.KRUSKAL, ('zone',), metric='shannon'), seed=None)
    assert run.state is RunState.CONFIGURED
    with pytest.raises(RuntimeError):
        run.mark_recorded()
    run.mark_executed('result', 0.1)
    assert run.state is RunState.EXECUTED
    with pytest.raises(RuntimeError):
        run.mark_failed(TestFailure('kruskal', 'zone', 'error', 'late'), 0.0)
    run.mark_recorded()
    assert run.state is RunState.RECORDED


def test_run_single_test_missing_input(table):
    spec = TestSpec(TestKind.PERMANOVA, ('zone',), design=Design(('zone',)))
    task = run_single_test(0, spec, BatteryInputs(metadata=table.metadata), None, TestParameters())
    assert task.result is None
    assert task.failure.status == 'error'

# ===================================== RUNNING ====================================== #

def test_sequential_run(inputs, params, small_specs):
    battery = TestBattery(inputs, small_specs, params, random_state=1)
    results = battery.run()
    assert all(r.state is RunState.RECORDED for r in battery.runs)
    assert battery.failures == []
    # Shapiro runs yield one result per group: 3 zones + 2 seasons
    assert len(results) == 5 + len(small_specs) - 2
    assert isinstance(battery.by_kind(TestKind.KRUSKAL)[0], KruskalResult)
    assert isinstance(battery.by_kind(TestKind.PERMANOVA)[1], PermanovaResult)
    assert len(battery.timings()) == len(small_specs)


def test_failure_recorded_and_others_run(table, inputs, params):
    frame = table.metadata.frame
    frame['site'] = 'only'
    metadata = SampleMetadata(frame)
    inputs = BatteryInputs(
        metadata=metadata, distance_matrix=inputs.distance_matrix,
        alpha_diversity=inputs.alpha_diversity, table=inputs.table,
    )
    specs = [
        TestSpec(TestKind.KRUSKAL, ('site',), metric='shannon'),
        TestSpec(TestKind.KRUSKAL, ('zone',), metric='shannon'),
        TestSpec(TestKind.PERMANOVA, ('site',), design=Design(('site',))),
    ]
    battery = TestBattery(inputs, specs, params)
    results = battery.run()
    states = [r.state for r in battery.runs]
    assert states == [RunState.FAILED, RunState.RECORDED, RunState.FAILED]
    assert isinstance(results[0], TestFailure)
    assert results[0].status == 'insufficient_groups'
    assert isinstance(results[1], KruskalResult)
    assert len(battery.failures) == 2


def test_rerun_is_noop(inputs, params):
    specs = [TestSpec(TestKind.KRUSKAL, ('zone',), metric='shannon')]
    battery = TestBattery(inputs, specs, params)
    first = battery.run()
    assert battery.run() == first


def test_seed_determinism(inputs, params):
    specs = build_specs(factors=('zone',), designs=['zone + season'], posthoc_factors=('zone',))
    first = TestBattery(inputs, specs, params, random_state=7).run()
    second = TestBattery(inputs, specs, params, random_state=7).run()
    assert first == second


def test_parallel_matches_sequential(inputs, params):
    specs = build_specs(factors=('zone',), designs=['zone', 'season'], posthoc_factors=())
    sequential = TestBattery(inputs, specs, params, random_state=3).run(n_jobs=1)
    parallel = TestBattery(inputs, specs, params, random_state=3).run(n_jobs=2)
    assert parallel == sequential


def test_progress_column_shows_failures():
    progress = get_progress_bar(disable=True)
    task_id = progress.add_task("tests", total=4, failed=0)
    progress.update(task_id, completed=3)
    assert TestCountColumn().render(progress.tasks[0]).plain.strip() == "3/4"
    progress.update(task_id, failed=2)
    assert TestCountColumn().render(progress.tasks[0]).plain.strip() == "3/4 (2 failed)"


def test_track_tests_disabled():
    with track_tests(2, disable=True) as advance:
        advance(False)
        advance(True)
