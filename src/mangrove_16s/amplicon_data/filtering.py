# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

# Third-Party Imports
import pandas as pd

# ================================== LOCAL IMPORTS =================================== #

from mangrove_16s import constants
from mangrove_16s.amplicon_data.table import AbundanceTable

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger("mangrove_16s")

# =================================== DATA CLASSES =================================== #

@dataclass(frozen=True)
class PrevalenceFilterResult:
    """Filtered table plus the per-taxon statistics the decision was based on."""
    table: AbundanceTable
    prevalence: pd.DataFrame
    threshold: float
    min_prevalence: float
    rank: Optional[str]
    dropped_groups: Tuple[str, ...]

    @property
    def n_removed(self) -> int:
        return int((~self.prevalence['retained']).sum())

# ================================ TABLE FILTERING =================================== #

def prevalence_table(table: AbundanceTable) -> pd.DataFrame:
    """Per-taxon prevalence and total abundance.

    Args:
        table: Abundance table.

    Returns:
        DataFrame indexed by taxon with ``prevalence`` (number of samples with
        a non-zero count), ``prevalence_fraction``, ``total_abundance`` and
        the taxonomy ranks.
    """
    counts = table.to_dataframe()
    prevalence = (counts > 0).sum(axis=0)
    n_samples = table.n_samples
    df = pd.DataFrame({
        'prevalence': prevalence.astype(int),
        'prevalence_fraction': prevalence / n_samples if n_samples else 0.0,
        'total_abundance': counts.sum(axis=0).astype(int),
    })
    df.index.name = 'taxon'
    return df.join(table.taxonomy)


def group_prevalence_summary(
    prevalence: pd.DataFrame,
    rank: str = constants.DEFAULT_PREVALENCE_RANK
) -> pd.DataFrame:
    """Mean and total prevalence per taxonomic group (phylum by default)."""
    return prevalence.groupby(rank, sort=True).agg(
        n_taxa=('prevalence', 'size'),
        mean_prevalence=('prevalence', 'mean'),
        total_prevalence=('prevalence', 'sum'),
        total_abundance=('total_abundance', 'sum'),
    )


def filter_prevalence(
    table: AbundanceTable,
    threshold: float = constants.DEFAULT_PREVALENCE_THRESHOLD,
    rank: Optional[str] = constants.DEFAULT_PREVALENCE_RANK,
    min_taxa_per_group: int = constants.DEFAULT_MIN_TAXA_PER_PHYLUM,
    drop_unknown: bool = False,
) -> PrevalenceFilterResult:
    """Remove rare taxa by prevalence.

    A taxon is prevalent when it is observed in at least
    ``threshold × n_samples`` samples. Groups at ``rank`` (phyla by default)
    with fewer than ``min_taxa_per_group`` prevalent taxa are dropped
    entirely, then only prevalent taxa are kept. The sample set is never
    changed, so filtering the output again with the same arguments returns
    an identical table.

    Args:
        table:              Abundance table to filter.
        threshold:          Minimum prevalence as a fraction of samples.
        rank:               Rank whose sparsely represented groups are
                            dropped; ``None`` or a rank the table lacks
                            skips that step.
        min_taxa_per_group: Minimum number of prevalent taxa per group.
        drop_unknown:       Also drop taxa whose ``rank`` label is Unknown.

    Returns:
        PrevalenceFilterResult with the filtered table.
    """
    if not 0 <= threshold <= 1:
        raise ValueError(f"Prevalence threshold must be within [0, 1], got {threshold}")

    prevalence = prevalence_table(table)
    min_prevalence = threshold * table.n_samples
    passing = prevalence['prevalence'] >= min_prevalence

    dropped: Tuple[str, ...] = ()
    if rank is not None and rank in table.ranks:
        per_group = passing.groupby(prevalence[rank]).sum()
        dropped = tuple(sorted(per_group.index[per_group < min_taxa_per_group]))
        if drop_unknown and constants.UNKNOWN_TAXON not in dropped:
            dropped = tuple(sorted(dropped + (constants.UNKNOWN_TAXON,)))
        passing &= ~prevalence[rank].isin(dropped)

    prevalence['retained'] = passing
    filtered = table.select_taxa(prevalence.index[passing])

    logger.info(
        f"Prevalence filter (≥ {min_prevalence:.2f} of {table.n_samples} samples): "
        f"kept {filtered.n_taxa}/{table.n_taxa} taxa"
        + (f", dropped {len(dropped)} {rank} groups" if dropped else "")
    )
    if dropped:
        logger.debug(f"Dropped {rank} groups: {list(dropped)}")

    return PrevalenceFilterResult(
        table=filtered,
        prevalence=prevalence,
        threshold=threshold,
        min_prevalence=min_prevalence,
        rank=rank,
        dropped_groups=dropped,
    )
