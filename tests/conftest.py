import itertools

import numpy as np
import pandas as pd
import pytest

from mangrove_16s.amplicon_data.table import AbundanceTable
from mangrove_16s.metadata.samples import SampleMetadata

N_PHYLA = 5
TAXA_PER_PHYLUM = 6


def make_metadata_frame(replicates: int = 2) -> pd.DataFrame:
    """Full zone × season × depth factorial with ``replicates`` cores per cell."""
    rows = []
    cells = itertools.product(('Fringe', 'Basin', 'Impaired'), ('dry', 'flood'), (5, 20, 40))
    for zone, season, depth in cells:
        for rep in range(replicates):
            rows.append({
                'sample': f"{zone[0]}{season[0]}{depth}_{rep}",
                'zone': zone, 'season': season, 'depth': depth,
            })
    return pd.DataFrame(rows).set_index('sample')


def make_taxonomy(n_phyla: int = N_PHYLA, per_phylum: int = TAXA_PER_PHYLUM) -> pd.DataFrame:
    rows = {}
    for p in range(n_phyla):
        for g in range(per_phylum):
            rows[f"ASV{p * per_phylum + g:03d}"] = {
                'Kingdom': 'Bacteria',
                'Phylum': f"Phylum{p}",
                'Class': f"Class{p}",
                'Order': f"Order{p}",
                'Family': f"Family{p}_{g // 3}",
                'Genus': f"Genus{p}_{g}",
                'Species': None,
            }
    df = pd.DataFrame.from_dict(rows, orient='index')
    df.index.name = 'taxon'
    return df


def make_counts(metadata: pd.DataFrame, taxonomy: pd.DataFrame, seed: int = 0,
                zone_effect: float = 3.0) -> pd.DataFrame:
    """Negative binomial counts; the first six taxa are enriched in Impaired cores."""
    rng = np.random.default_rng(seed)
    n, m = len(metadata), len(taxonomy)
    base = rng.uniform(20, 200, size=m)
    mu = np.tile(base, (n, 1))
    impaired = (metadata['zone'] == 'Impaired').to_numpy()
    mu[np.ix_(impaired, np.arange(6))] *= zone_effect
    size = 5.0
    counts = rng.negative_binomial(size, size / (size + mu))
    return pd.DataFrame(counts, index=metadata.index, columns=taxonomy.index)


@pytest.fixture
def metadata_frame():
    return make_metadata_frame()


@pytest.fixture
def metadata(metadata_frame):
    return SampleMetadata(metadata_frame)


@pytest.fixture
def taxonomy():
    return make_taxonomy()


@pytest.fixture
def counts(metadata_frame, taxonomy):
    return make_counts(metadata_frame, taxonomy)


@pytest.fixture
def table(counts, taxonomy, metadata):
    return AbundanceTable(counts, taxonomy, metadata=metadata)
