import numpy as np
import pandas as pd
import pytest

from mangrove_16s.amplicon_data.table import AbundanceTable
from mangrove_16s.errors import EstimationError, InsufficientGroups
from mangrove_16s.stats.differential import (
    differential_abundance, estimate_dispersion, size_factors
)

ENRICHED = [f"ASV{i:03d}" for i in range(6)]


@pytest.fixture
def table_with_zero(counts, taxonomy, metadata):
    counts = counts.copy()
    counts['ASVZERO'] = 0
    taxonomy = pd.concat([taxonomy, taxonomy.iloc[[0]].rename(index={'ASV000': 'ASVZERO'})])
    return AbundanceTable(counts, taxonomy, metadata=metadata)

# ================================== NORMALIZATION =================================== #

def test_size_factors_geometric_mean_one(counts):
    sf = size_factors(counts)
    assert np.exp(np.log(sf).mean()) == pytest.approx(1.0)
    assert (sf > 0).all()


def test_size_factors_track_depth():
    base = pd.DataFrame([[10, 20, 0, 5], [20, 40, 2, 10], [40, 80, 4, 20]],
                        index=['a', 'b', 'c'], columns=list('wxyz'))
    sf = size_factors(base)
    assert sf['b'] / sf['a'] == pytest.approx(2.0)
    assert sf['c'] / sf['b'] == pytest.approx(2.0)


def test_size_factors_empty_sample_raises():
    counts = pd.DataFrame([[1, 2], [0, 0]], index=['a', 'b'], columns=['x', 'y'])
    with pytest.raises(EstimationError):
        size_factors(counts)


def test_dispersion_clipped():
    sf = np.ones(6)
    groups = np.array(['a'] * 3 + ['b'] * 3)
    # Poisson-like data: the moment estimate is negative and clipped to the floor
    assert estimate_dispersion(np.array([5., 5., 5., 9., 9., 9.]), sf, groups) == pytest.approx(1e-8)
    assert estimate_dispersion(np.array([1., 50., 200., 0., 90., 3.]), sf, groups) > 0.5

# ============================= DIFFERENTIAL ABUNDANCE =============================== #

def test_enriched_taxa_detected(table):
    result = differential_abundance(table, 'zone', 'Impaired', 'Fringe', lfc_threshold=0.5)
    df = result.table
    assert set(ENRICHED) <= set(result.significant_taxa.index)
    assert (df.loc[ENRICHED, 'log2FoldChange'] > 0.5).all()
    others = df.drop(index=ENRICHED)
    assert others['significant'].sum() < 5
    assert result.contrast == 'Impaired vs Fringe'


def test_significance_rule(table):
    result = differential_abundance(table, 'zone', 'Impaired', 'Fringe')
    df = result.table
    expected = (
        (df['status'] == 'recorded')
        & (df['padj'] < result.alpha)
        & (df['log2FoldChange'].abs() > result.lfc_threshold)
    )
    assert (df['significant'] == expected).all()
    assert list(df.columns[:8]) == ['baseMean', 'log2FoldChange', 'lfcSE', 'stat',
                                    'pvalue', 'padj', 'significant', 'status']
    assert 'Phylum' in df.columns


def test_all_zero_taxon_not_computable(table_with_zero):
    result = differential_abundance(table_with_zero, 'zone', 'Impaired', 'Fringe')
    row = result.table.loc['ASVZERO']
    assert row['status'] == 'not_computable'
    assert np.isnan(row['padj'])
    assert not row['significant']

    summary = {r.feature: r for r in result.summary()}
    assert summary['ASVZERO'].p_value is None
    assert summary['ASVZERO'].significant is None
    assert summary['ASV000'].effect_size == pytest.approx(
        result.table.loc['ASV000', 'log2FoldChange'])


def test_padj_only_over_computable(table_with_zero):
    df = differential_abundance(table_with_zero, 'zone', 'Impaired', 'Fringe').table
    computable = df[df['status'] == 'recorded']
    assert computable['padj'].notna().all()
    assert (computable['padj'] >= computable['pvalue'] - 1e-12).all()


def test_collapsed_rank(table):
    result = differential_abundance(table, 'zone', 'Impaired', 'Fringe', rank='Phylum')
    assert len(result.table) == 5
    assert result.rank == 'Phylum'
    # Phylum0 holds every enriched taxon
    assert result.table.loc['Phylum0', 'log2FoldChange'] > 0.5


def test_missing_level_raises(table):
    deep = table.subset_samples(lambda row: row['zone'] != 'Impaired')
    with pytest.raises(InsufficientGroups):
        differential_abundance(deep, 'zone', 'Impaired', 'Fringe')


def test_needs_metadata(counts, taxonomy):
    with pytest.raises(ValueError):
        differential_abundance(AbundanceTable(counts, taxonomy), 'zone', 'Impaired', 'Fringe')
