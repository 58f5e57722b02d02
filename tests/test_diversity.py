import numpy as np
import pandas as pd
import pytest

from mangrove_16s.amplicon_data.table import AbundanceTable
from mangrove_16s.diversity.alpha import alpha_diversity
from mangrove_16s.diversity.beta import (
    distance_matrix, ordination_frame, pcoa, percent_explained
)
from mangrove_16s.errors import EstimationError


@pytest.fixture
def small_counts():
    return pd.DataFrame(
        [[10, 10, 0, 0], [1, 2, 3, 4], [5, 0, 1, 1], [0, 0, 0, 0]],
        index=['s1', 's2', 's3', 'empty'], columns=['a', 'b', 'c', 'd'],
    )

# ================================== ALPHA DIVERSITY ================================= #

def test_alpha_known_values(small_counts):
    alpha = alpha_diversity(small_counts)
    assert alpha.loc['s1', 'observed'] == 2
    assert alpha.loc['s1', 'shannon'] == pytest.approx(np.log(2))
    assert alpha.loc['s1', 'simpson'] == pytest.approx(0.5)
    p = np.array([1, 2, 3, 4]) / 10
    assert alpha.loc['s2', 'shannon'] == pytest.approx(-(p * np.log(p)).sum())
    assert alpha.loc['s2', 'simpson'] == pytest.approx(1 - (p ** 2).sum())


def test_chao1_bias_corrected(small_counts):
    alpha = alpha_diversity(small_counts, metrics=['chao1'])
    # s3: S_obs = 3, F1 = 2, F2 = 0 -> 3 + 2 * 1 / (2 * 1)
    assert alpha.loc['s3', 'chao1'] == pytest.approx(4.0)


def test_empty_sample(small_counts):
    alpha = alpha_diversity(small_counts)
    assert alpha.loc['empty', 'observed'] == 0
    assert np.isnan(alpha.loc['empty', 'shannon'])


def test_extra_metrics(small_counts):
    alpha = alpha_diversity(small_counts, metrics=['inverse_simpson', 'pielou_evenness'])
    assert alpha.loc['s1', 'inverse_simpson'] == pytest.approx(2.0)
    assert alpha.loc['s1', 'pielou_evenness'] == pytest.approx(1.0)


def test_alpha_on_table(table):
    alpha = alpha_diversity(table)
    assert alpha.index.tolist() == table.sample_ids
    assert list(alpha.columns) == ['observed', 'shannon', 'simpson', 'chao1']


def test_alpha_empty_table_raises():
    with pytest.raises(EstimationError):
        alpha_diversity(pd.DataFrame(index=['s1'], columns=[], dtype=int))
    with pytest.raises(EstimationError):
        alpha_diversity(pd.DataFrame(columns=['a'], dtype=int))


def test_alpha_unknown_metric(small_counts):
    with pytest.raises(ValueError):
        alpha_diversity(small_counts, metrics=['faith_pd_typo'])

# =================================== BETA DIVERSITY ================================= #

def test_braycurtis_symmetric_zero_diagonal(table):
    dm = distance_matrix(table)
    data = dm.data
    assert np.allclose(data, data.T)
    assert np.allclose(np.diag(data), 0)
    assert ((data >= 0) & (data <= 1)).all()
    assert list(dm.ids) == table.sample_ids


def test_braycurtis_known_value(small_counts):
    dm = distance_matrix(small_counts)
    # s1 vs s2: sum|x-y| = 9 + 8 + 3 + 4 = 24, sum(x+y) = 30
    assert dm['s1', 's2'] == pytest.approx(24 / 30)


def test_two_empty_samples_identical():
    counts = pd.DataFrame([[0, 0], [0, 0], [1, 3]], index=['e1', 'e2', 's'], columns=['a', 'b'])
    dm = distance_matrix(counts)
    assert dm['e1', 'e2'] == 0.0


def test_jaccard(small_counts):
    dm = distance_matrix(small_counts, metric='jaccard')
    # s1 has {a, b}; s3 has {a, c, d}
    assert dm['s1', 's3'] == pytest.approx(3 / 4)


def test_distance_deterministic(table):
    assert np.array_equal(distance_matrix(table).data, distance_matrix(table).data)


def test_unknown_metric(small_counts):
    with pytest.raises(ValueError):
        distance_matrix(small_counts, metric='unifrac')


def test_pcoa(table):
    ordination = pcoa(distance_matrix(table), n_dimensions=3)
    assert list(ordination.samples.columns) == ['PC1', 'PC2', 'PC3']
    assert ordination.samples.index.tolist() == table.sample_ids
    explained = percent_explained(ordination)
    assert (explained > 0).all()
    assert explained.sum() <= 100
    assert explained.is_monotonic_decreasing


def test_pcoa_magnitudes_deterministic(table):
    dm = distance_matrix(table)
    first, second = pcoa(dm), pcoa(dm)
    assert np.allclose(first.samples.abs(), second.samples.abs())
    assert np.allclose(first.eigvals, second.eigvals)


def test_pcoa_single_sample_raises(small_counts):
    with pytest.raises(EstimationError):
        pcoa(distance_matrix(small_counts.iloc[:1]))


def test_ordination_frame_joins_metadata(table):
    frame = ordination_frame(pcoa(distance_matrix(table)), table.metadata)
    assert {'PC1', 'PC2', 'zone', 'season'} <= set(frame.columns)


def test_distance_on_abundance_table(counts, taxonomy):
    dm_from_table = distance_matrix(AbundanceTable(counts, taxonomy))
    dm_from_frame = distance_matrix(counts)
    assert np.allclose(dm_from_table.data, dm_from_frame.data)
