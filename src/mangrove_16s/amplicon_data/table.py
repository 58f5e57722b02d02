# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

# Third‑Party Imports
import numpy as np
import pandas as pd
from biom import Table
from skbio import TreeNode

# ================================== LOCAL IMPORTS =================================== #

from mangrove_16s import constants
from mangrove_16s.errors import DimensionMismatch
from mangrove_16s.metadata.samples import SampleMetadata
from mangrove_16s.utils.taxonomy import normalize_taxonomy

# ========================== INITIALISATION & CONFIGURATION ========================== #

logger = logging.getLogger("mangrove_16s")

_KEEP = object()

# ================================ TABLE CONVERSION ================================== #

def table_to_df(table: Union[Dict, Table, pd.DataFrame]) -> pd.DataFrame:
    """Convert various table formats to samples × features DataFrame.

    Handles:
    - Pandas DataFrame (returns a copy)
    - BIOM Table (transposes to samples × features)
    - Dictionary of {sample_id: {feature: count}} mappings

    Args:
        table: Input table in various formats.

    Returns:
        DataFrame in samples × features orientation.

    Raises:
        TypeError: For unsupported input types
    """
    if isinstance(table, pd.DataFrame):  # samples × features
        return table.copy()
    if isinstance(table, Table):         # features × samples
        return table.to_dataframe(dense=True).T
    if isinstance(table, dict):          # samples × features
        return pd.DataFrame.from_dict(table, orient='index').fillna(0)
    raise TypeError("Input must be BIOM Table, dict, or DataFrame.")


def _describe_difference(name: str, left: Iterable[str], right: Iterable[str]) -> str:
    left, right = set(left), set(right)
    only_left = sorted(left - right)[:5]
    only_right = sorted(right - left)[:5]
    return (
        f"{name} IDs disagree: {len(left - right)} only in counts {only_left}, "
        f"{len(right - left)} only in the other input {only_right}"
    )


def _taxstring(value: Any) -> Optional[str]:
    """BIOM observation taxonomy is a list of rank labels or a single string."""
    if value is None or isinstance(value, str):
        return value
    return '; '.join(str(v) for v in value)


def _validate_counts(df: pd.DataFrame) -> pd.DataFrame:
    """Check counts are finite, non-negative integers and return them as int64."""
    if df.index.has_duplicates:
        raise DimensionMismatch("Duplicate sample IDs in count table")
    if df.columns.has_duplicates:
        raise DimensionMismatch("Duplicate taxon IDs in count table")
    values = df.to_numpy(dtype=float)
    if values.size:
        if not np.isfinite(values).all():
            raise ValueError("Count table contains NaN or infinite values")
        if (values < 0).any():
            raise ValueError("Count table contains negative values")
        if not np.allclose(values, np.round(values)):
            raise ValueError("Count table contains non-integer values")
    counts = pd.DataFrame(
        np.round(values).astype(np.int64),
        index=df.index.astype(str), columns=df.columns.astype(str)
    )
    counts.index.name = 'sample'
    counts.columns.name = 'taxon'
    return counts

# ================================== TABLE CLASS ===================================== #

class AbundanceTable:
    """
    Sample × taxon count matrix with taxonomy, phylogeny and sample metadata.

    The table is a value object: every operation returns a new table and the
    stored frames are never exposed without copying. Sample and taxon order
    are preserved by all subsetting operations so downstream joins line up.

    Args:
        counts:   Non-negative integer counts, samples × taxa (DataFrame or
                  dict) or a BIOM Table (taxa × samples).
        taxonomy: Taxonomy table indexed by taxon ID, one column per rank.
        tree:     Optional phylogeny whose tips include every taxon ID.
        metadata: Optional sample metadata covering exactly the table's samples.

    Raises:
        DimensionMismatch: If sample or taxon ID sets disagree across inputs.
    """

    def __init__(
        self,
        counts: Union[Dict, Table, pd.DataFrame],
        taxonomy: pd.DataFrame,
        tree: Optional[TreeNode] = None,
        metadata: Optional[Union[SampleMetadata, pd.DataFrame]] = None,
    ):
        self._counts = _validate_counts(table_to_df(counts))
        taxa = self._counts.columns

        lower = {str(c).lower() for c in taxonomy.columns}
        ranks = (
            constants.TAXONOMIC_RANKS if lower & {'taxon', 'taxonomy'}
            else [str(c) for c in taxonomy.columns]
        )
        taxonomy = normalize_taxonomy(taxonomy, ranks=ranks)
        if taxonomy.index.has_duplicates:
            raise DimensionMismatch("Duplicate taxon IDs in taxonomy")
        if set(taxonomy.index) != set(taxa):
            raise DimensionMismatch(_describe_difference("Taxon", taxa, taxonomy.index))
        self._taxonomy = taxonomy.loc[taxa]

        if tree is not None:
            tips = {tip.name for tip in tree.tips()}
            missing = sorted(set(taxa) - tips)
            if missing:
                raise DimensionMismatch(
                    f"{len(missing)} taxa are not tips of the tree: {missing[:5]}"
                )
            if len(taxa) == 0:
                tree = None
            elif tips != set(taxa):
                tree = tree.shear(list(taxa))
                tree.prune()
        self._tree = tree

        if metadata is not None:
            if isinstance(metadata, pd.DataFrame):
                metadata = SampleMetadata(metadata)
            samples = self._counts.index
            if set(metadata.sample_ids) != set(samples):
                raise DimensionMismatch(
                    _describe_difference("Sample", samples, metadata.sample_ids)
                )
            metadata = metadata.subset(samples)
        self._metadata = metadata

    # ---------------------------------------------------------------- builders --- #

    @classmethod
    def from_biom(
        cls,
        table: Table,
        taxonomy: Optional[pd.DataFrame] = None,
        tree: Optional[TreeNode] = None,
        metadata: Optional[SampleMetadata] = None,
    ) -> "AbundanceTable":
        """Build from a BIOM table, reading taxonomy from observation metadata
        when no taxonomy table is given."""
        if taxonomy is None:
            obs_ids = table.ids(axis='observation')
            obs_meta = table.metadata(axis='observation')
            if obs_meta is None:
                raise DimensionMismatch("BIOM table has no taxonomy and none was given")
            taxonomy = pd.DataFrame(
                {'taxonomy': [_taxstring((m or {}).get('taxonomy')) for m in obs_meta]},
                index=pd.Index(obs_ids, name='taxon')
            )
            taxonomy = normalize_taxonomy(taxonomy)
        return cls(table, taxonomy, tree=tree, metadata=metadata)

    def _derive(
        self,
        counts: pd.DataFrame,
        taxonomy: Optional[pd.DataFrame] = None,
        tree: Any = _KEEP,
        metadata: Any = _KEEP,
    ) -> "AbundanceTable":
        taxonomy = self._taxonomy.loc[counts.columns] if taxonomy is None else taxonomy
        tree = self._tree if tree is _KEEP else tree
        if metadata is _KEEP:
            metadata = None if self._metadata is None else self._metadata.subset(counts.index)
        return AbundanceTable(counts, taxonomy, tree=tree, metadata=metadata)

    # --------------------------------------------------------------- accessors --- #

    @property
    def sample_ids(self) -> List[str]:
        return self._counts.index.tolist()

    @property
    def taxon_ids(self) -> List[str]:
        return self._counts.columns.tolist()

    @property
    def n_samples(self) -> int:
        return self._counts.shape[0]

    @property
    def n_taxa(self) -> int:
        return self._counts.shape[1]

    @property
    def shape(self):
        return self._counts.shape

    @property
    def ranks(self) -> List[str]:
        return self._taxonomy.columns.tolist()

    @property
    def taxonomy(self) -> pd.DataFrame:
        return self._taxonomy.copy()

    @property
    def tree(self) -> Optional[TreeNode]:
        return None if self._tree is None else self._tree.copy()

    @property
    def metadata(self) -> Optional[SampleMetadata]:
        return self._metadata

    def __repr__(self) -> str:
        return (
            f"AbundanceTable({self.n_samples} samples × {self.n_taxa} taxa, "
            f"tree={'yes' if self._tree is not None else 'no'}, "
            f"metadata={'yes' if self._metadata is not None else 'no'})"
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AbundanceTable):
            return NotImplemented
        return (
            self._counts.equals(other._counts)
            and self._taxonomy.equals(other._taxonomy)
        )

    __hash__ = None

    def to_dataframe(self) -> pd.DataFrame:
        """Counts as a samples × taxa DataFrame (copy)."""
        return self._counts.copy()

    def to_biom(self) -> Table:
        """Counts as a BIOM Table (taxa × samples) with taxonomy as observation metadata."""
        observation_metadata = [
            {'taxonomy': row.tolist()} for _, row in self._taxonomy.iterrows()
        ]
        return Table(
            self._counts.T.to_numpy(),
            observation_ids=self.taxon_ids,
            sample_ids=self.sample_ids,
            observation_metadata=observation_metadata,
        )

    # ------------------------------------------------------------------ totals --- #

    def row_sums(self) -> pd.Series:
        """Total counts per sample."""
        return self._counts.sum(axis=1).rename('total')

    def col_sums(self) -> pd.Series:
        """Total counts per taxon."""
        return self._counts.sum(axis=0).rename('total')

    # --------------------------------------------------------------- subsetting --- #

    def subset_samples(self, predicate: Callable[[pd.Series], bool]) -> "AbundanceTable":
        """Keep samples for which ``predicate(metadata_row)`` is true.

        The row is a Series named by sample ID; it is empty when the table
        carries no metadata.
        """
        keep = []
        for sample_id in self.sample_ids:
            row = (
                self._metadata.row(sample_id) if self._metadata is not None
                else pd.Series(dtype=object, name=sample_id)
            )
            if predicate(row):
                keep.append(sample_id)
        return self.select_samples(keep)

    def subset_taxa(self, predicate: Callable[[pd.Series], bool]) -> "AbundanceTable":
        """Keep taxa for which ``predicate(taxonomy_row)`` is true."""
        keep = [
            taxon_id for taxon_id, row in self._taxonomy.iterrows() if predicate(row)
        ]
        return self.select_taxa(keep)

    def select_samples(self, sample_ids: Iterable[str]) -> "AbundanceTable":
        """Keep the listed samples, in table order."""
        wanted = set(sample_ids)
        unknown = wanted - set(self.sample_ids)
        if unknown:
            raise DimensionMismatch(f"Unknown sample IDs: {sorted(unknown)[:5]}")
        keep = [s for s in self.sample_ids if s in wanted]
        return self._derive(self._counts.loc[keep])

    def select_taxa(self, taxon_ids: Iterable[str]) -> "AbundanceTable":
        """Keep the listed taxa, in table order."""
        wanted = set(taxon_ids)
        unknown = wanted - set(self.taxon_ids)
        if unknown:
            raise DimensionMismatch(f"Unknown taxon IDs: {sorted(unknown)[:5]}")
        keep = [t for t in self.taxon_ids if t in wanted]
        return self._derive(self._counts.loc[:, keep])

    def with_metadata(self, metadata: Optional[SampleMetadata]) -> "AbundanceTable":
        return self._derive(self._counts, metadata=metadata)

    # ---------------------------------------------------------- transformations --- #

    def relative(self) -> pd.DataFrame:
        """Per-sample proportions (samples × taxa); all-zero samples stay zero."""
        totals = self._counts.sum(axis=1).replace(0, np.nan)
        return self._counts.div(totals, axis=0).fillna(0.0)

    def collapse(self, rank: str) -> "AbundanceTable":
        """Sum counts of taxa sharing the same lineage down to ``rank``.

        Collapsed taxa are named by their label at ``rank``; labels shared by
        different lineages are disambiguated with the full lineage. The tree
        does not survive collapsing.
        """
        if rank not in self.ranks:
            raise KeyError(f"Unknown rank '{rank}'; available: {self.ranks}")
        kept_ranks = self.ranks[:self.ranks.index(rank) + 1]
        if self.n_taxa == 0:
            return self._derive(self._counts, taxonomy=self._taxonomy[kept_ranks], tree=None)
        lineage = self._taxonomy[kept_ranks].apply(lambda r: ';'.join(r), axis=1)

        grouped = self._counts.T.groupby(lineage, sort=False).sum().T
        lineages = grouped.columns.tolist()
        tax = pd.DataFrame(
            [lin.split(';') for lin in lineages], index=lineages, columns=kept_ranks
        )
        labels = tax[rank]
        duplicated = labels.duplicated(keep=False)
        new_ids = [
            lin if dup else label for lin, label, dup in zip(lineages, labels, duplicated)
        ]
        grouped.columns = new_ids
        tax.index = new_ids
        logger.debug(f"Collapsed {self.n_taxa} taxa to {len(new_ids)} at rank {rank}")
        return self._derive(grouped, taxonomy=tax, tree=None)

    def prune_tree(self) -> Optional[TreeNode]:
        """Tree restricted to the taxa in this table."""
        if self._tree is None:
            return None
        tree = self._tree.shear(self.taxon_ids)
        tree.prune()
        return tree
