import numpy as np
import pandas as pd
import pytest

from mangrove_16s.amplicon_data.filtering import (
    filter_prevalence, group_prevalence_summary, prevalence_table
)
from mangrove_16s.amplicon_data.table import AbundanceTable


def _table_with_prevalence(prevalence: dict, phyla: dict, n_samples: int = 100) -> AbundanceTable:
    samples = [f"S{i:03d}" for i in range(n_samples)]
    counts = pd.DataFrame(0, index=samples, columns=list(prevalence))
    for taxon, n in prevalence.items():
        counts.iloc[:n, counts.columns.get_loc(taxon)] = 7
    taxonomy = pd.DataFrame(
        {'Kingdom': 'Bacteria', 'Phylum': [phyla[t] for t in prevalence]},
        index=list(prevalence),
    )
    return AbundanceTable(counts, taxonomy)


@pytest.fixture
def scenario_table():
    prevalence = {'rare': 1, 'common_a': 50, 'common_b': 60,
                  'sparse_b1': 3, 'sparse_b2': 3, 'lonely': 3}
    phyla = {'rare': 'Proteobacteria', 'common_a': 'Proteobacteria',
             'common_b': 'Proteobacteria', 'sparse_b1': 'Chloroflexi',
             'sparse_b2': 'Chloroflexi', 'lonely': 'Nitrospirota'}
    return _table_with_prevalence(prevalence, phyla)


def test_prevalence_table(scenario_table):
    prev = prevalence_table(scenario_table)
    assert prev.loc['rare', 'prevalence'] == 1
    assert prev.loc['common_b', 'prevalence'] == 60
    assert prev.loc['common_b', 'prevalence_fraction'] == pytest.approx(0.6)
    assert prev.loc['sparse_b1', 'total_abundance'] == 21
    assert prev.loc['lonely', 'Phylum'] == 'Nitrospirota'


def test_threshold_scenario(scenario_table):
    """100 samples at 0.02: prevalence 1 is dropped, prevalence 3 is kept."""
    result = filter_prevalence(scenario_table, threshold=0.02)
    kept = result.table.taxon_ids

    assert result.min_prevalence == pytest.approx(2.0)
    assert 'rare' not in kept
    assert {'sparse_b1', 'sparse_b2', 'common_a', 'common_b'} <= set(kept)


def test_phylum_with_single_prevalent_taxon_dropped(scenario_table):
    result = filter_prevalence(scenario_table, threshold=0.02)
    assert 'lonely' not in result.table.taxon_ids
    assert result.dropped_groups == ('Nitrospirota',)
    assert not result.prevalence.loc['lonely', 'retained']
    assert result.n_removed == 2


def test_samples_unchanged(scenario_table):
    result = filter_prevalence(scenario_table)
    assert result.table.sample_ids == scenario_table.sample_ids


def test_idempotent(table):
    once = filter_prevalence(table, threshold=0.5)
    twice = filter_prevalence(once.table, threshold=0.5)
    assert twice.table == once.table
    assert twice.n_removed == 0


def test_idempotent_with_group_drop(scenario_table):
    once = filter_prevalence(scenario_table, threshold=0.02)
    twice = filter_prevalence(once.table, threshold=0.02)
    assert twice.table == once.table


def test_rank_none_skips_group_rule(scenario_table):
    result = filter_prevalence(scenario_table, threshold=0.02, rank=None)
    assert 'lonely' in result.table.taxon_ids
    assert result.dropped_groups == ()


def test_invalid_threshold(scenario_table):
    with pytest.raises(ValueError):
        filter_prevalence(scenario_table, threshold=1.5)


def test_group_summary(scenario_table):
    summary = group_prevalence_summary(prevalence_table(scenario_table))
    assert summary.loc['Chloroflexi', 'n_taxa'] == 2
    assert summary.loc['Proteobacteria', 'total_prevalence'] == 111
    assert np.isclose(summary.loc['Chloroflexi', 'mean_prevalence'], 3.0)
