# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from pathlib import Path
from typing import Optional, Union

# Third-Party Imports
import pandas as pd
from biom import load_table
from skbio import TreeNode

# Local Imports
from mangrove_16s.amplicon_data.table import AbundanceTable
from mangrove_16s.metadata.samples import SampleMetadata
from mangrove_16s.utils.taxonomy import import_taxonomy_tsv

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger("mangrove_16s")

# ==================================== FUNCTIONS ===================================== #

def _check_exists(path: Union[str, Path], what: str) -> Path:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"{what} file not found: {path}")
    return path


def import_table_tsv(tsv_path: Union[str, Path]) -> pd.DataFrame:
    """
    Load a count table TSV as written by DADA2 (samples × ASVs) or by
    ``biom convert --to-tsv`` (features × samples, first line a comment).

    Returns the table in the orientation found in the file; orientation is
    resolved against the taxonomy in :func:`load_abundance_table`.
    """
    tsv_path = _check_exists(tsv_path, "Count table")
    with open(tsv_path) as handle:
        first = handle.readline()
    skiprows = 1 if first.startswith('# Constructed from biom') else 0
    df = pd.read_csv(tsv_path, sep='\t', index_col=0, skiprows=skiprows)
    df.index = df.index.astype(str)
    df.columns = df.columns.astype(str)
    return df


def import_table(path: Union[str, Path]) -> pd.DataFrame:
    """Load a BIOM (transposed to samples × features) or TSV count table."""
    path = _check_exists(path, "Count table")
    if path.suffix == '.biom':
        return load_table(str(path)).to_dataframe(dense=True).T
    return import_table_tsv(path)


def import_tree(newick_path: Union[str, Path]) -> TreeNode:
    """Load a Newick phylogeny (e.g. from phangorn/FastTree)."""
    newick_path = _check_exists(newick_path, "Tree")
    return TreeNode.read(str(newick_path), format='newick')


def orient_counts(counts: pd.DataFrame, taxonomy: pd.DataFrame) -> pd.DataFrame:
    """Return ``counts`` as samples × taxa, transposing when taxa are rows."""
    taxa = set(taxonomy.index.astype(str))
    rows_are_taxa = set(counts.index.astype(str)) <= taxa
    cols_are_taxa = set(counts.columns.astype(str)) <= taxa
    if rows_are_taxa and not cols_are_taxa:
        return counts.T
    return counts


def load_abundance_table(
    table_path: Union[str, Path],
    taxonomy_path: Optional[Union[str, Path]] = None,
    metadata_path: Optional[Union[str, Path]] = None,
    tree_path: Optional[Union[str, Path]] = None,
) -> AbundanceTable:
    """
    Assemble an :class:`AbundanceTable` from upstream workflow outputs.

    A BIOM table without a taxonomy file takes its taxonomy from the
    observation metadata. Metadata rows for samples absent from the count
    table (e.g. samples that failed sequencing) are dropped with a warning;
    a count-table sample without metadata is a :class:`DimensionMismatch`.

    Args:
        table_path:    BIOM or TSV count table.
        taxonomy_path: Taxonomy TSV; optional for BIOM tables.
        metadata_path: Sample metadata TSV.
        tree_path:     Newick tree.

    Returns:
        Validated abundance table.
    """
    table_path = _check_exists(table_path, "Count table")
    biom_table = None
    if taxonomy_path:
        taxonomy = import_taxonomy_tsv(taxonomy_path)
        counts = orient_counts(import_table(table_path), taxonomy)
        sequenced = set(counts.index)
    elif table_path.suffix == '.biom':
        biom_table = load_table(str(table_path))
        sequenced = set(biom_table.ids(axis='sample'))
    else:
        raise ValueError(f"A taxonomy file is required for count table {table_path}")
    tree = import_tree(tree_path) if tree_path else None

    metadata = None
    if metadata_path:
        metadata = SampleMetadata.from_tsv(metadata_path)
        extra = [s for s in metadata.sample_ids if s not in sequenced]
        if extra:
            logger.warning(
                f"Dropping {len(extra)} metadata rows without counts: {extra[:5]}"
            )
            metadata = metadata.subset(
                [s for s in metadata.sample_ids if s in sequenced]
            )

    if biom_table is not None:
        table = AbundanceTable.from_biom(biom_table, tree=tree, metadata=metadata)
    else:
        table = AbundanceTable(counts, taxonomy, tree=tree, metadata=metadata)
    logger.info(f"Loaded {table}")
    return table


def export_table(df: pd.DataFrame, path: Union[str, Path], index: bool = True) -> Path:
    """Write a result table; format follows the suffix (.tsv, .csv, .xlsx)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix == '.xlsx':
        df.to_excel(path, index=index, engine='openpyxl')
    elif path.suffix == '.csv':
        df.to_csv(path, index=index)
    else:
        df.to_csv(path, sep='\t', index=index)
    logger.debug(f"Wrote {df.shape[0]} rows → {path}")
    return path
