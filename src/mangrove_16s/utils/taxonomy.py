# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from pathlib import Path
from typing import Dict, Sequence, Union

# Third-Party Imports
import pandas as pd

# Local Imports
from mangrove_16s import constants

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger('mangrove_16s')

# ================================= DEFAULT VALUES =================================== #

UNASSIGNED_LABELS = {'', 'unassigned', 'unclassified', 'na', 'nan', 'none', 'null'}

# ==================================== FUNCTIONS ===================================== #

def clean_label(value) -> str:
    """Return a rank label, or ``Unknown`` when the rank is missing."""
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return constants.UNKNOWN_TAXON
    label = str(value).strip()
    # Strip rank prefixes such as 'p__' left in DADA2/SILVA labels
    if len(label) >= 3 and label[1:3] == '__':
        label = label[3:].strip()
    if label.lower() in UNASSIGNED_LABELS:
        return constants.UNKNOWN_TAXON
    return label


def parse_taxstring(
    taxonomy: str,
    ranks: Sequence[str] = constants.TAXONOMIC_RANKS
) -> Dict[str, str]:
    """
    Split a QIIME-style taxonomy string into ranks.

    Prefixed strings ('d__Bacteria; p__Proteobacteria; ...') are placed by
    prefix; unprefixed strings are assigned to ranks positionally.

    Args:
        taxonomy: Raw taxonomy string.
        ranks:    Rank names to fill.

    Returns:
        Mapping rank → label with ``Unknown`` for every missing rank.
    """
    parsed = {rank: constants.UNKNOWN_TAXON for rank in ranks}
    if taxonomy is None or (not isinstance(taxonomy, str) and pd.isna(taxonomy)):
        return parsed

    parts = [p.strip() for p in str(taxonomy).split(';') if p.strip()]
    for position, part in enumerate(parts):
        if len(part) > 2 and part[1:3] == '__':
            rank = constants.RANK_PREFIXES.get(part[0].lower())
        else:
            rank = ranks[position] if position < len(ranks) else None
        if rank in parsed:
            parsed[rank] = clean_label(part)
    return parsed


def normalize_taxonomy(
    taxonomy: pd.DataFrame,
    ranks: Sequence[str] = constants.TAXONOMIC_RANKS
) -> pd.DataFrame:
    """
    Standardize a taxonomy table to one column per rank.

    Accepts either a QIIME2 export (``Feature ID`` / ``Taxon`` columns) or a
    DADA2 ``assignTaxonomy`` table with rank columns. Rank names are matched
    case-insensitively; ranks not present are filled with ``Unknown``.

    Args:
        taxonomy: Taxonomy table indexed by taxon id.
        ranks:    Rank names to produce.

    Returns:
        DataFrame (taxa × ranks) of strings.
    """
    df = taxonomy.copy()
    lower = {str(c).lower(): c for c in df.columns}

    for id_col in ('feature id', 'featureid', 'asv', 'otu id', '#otu id'):
        if id_col in lower:
            df = df.set_index(lower[id_col])
            break

    if 'taxon' in lower or 'taxonomy' in lower:
        col = lower.get('taxon', lower.get('taxonomy'))
        result = pd.DataFrame(
            [parse_taxstring(s, ranks) for s in df[col]],
            index=df.index, columns=list(ranks)
        )
    else:
        result = pd.DataFrame(index=df.index)
        for rank in ranks:
            source = lower.get(rank.lower())
            if rank == 'Kingdom' and source is None:
                source = lower.get('domain')
            result[rank] = (
                df[source].map(clean_label) if source is not None
                else constants.UNKNOWN_TAXON
            )

    result.index = result.index.astype(str)
    result.index.name = 'taxon'
    return result[list(ranks)].astype(str)


def import_taxonomy_tsv(
    tsv_path: Union[str, Path],
    ranks: Sequence[str] = constants.TAXONOMIC_RANKS
) -> pd.DataFrame:
    """
    Load a taxonomy TSV exported by QIIME2 or DADA2.

    Args:
        tsv_path: Path to taxonomy TSV.
        ranks:    Rank names to produce.

    Returns:
        Taxonomy DataFrame (taxa × ranks).
    """
    tsv_path = Path(tsv_path)
    if not tsv_path.exists():
        raise FileNotFoundError(f"Taxonomy file not found: {tsv_path}")
    df = pd.read_csv(tsv_path, sep='\t', dtype=str)
    lower = [str(c).lower() for c in df.columns]
    if not any(c in lower for c in ('feature id', 'featureid', 'asv', 'otu id', '#otu id')):
        df = df.set_index(df.columns[0])
    taxonomy = normalize_taxonomy(df, ranks)
    logger.debug(f"Loaded taxonomy for {len(taxonomy)} taxa from {tsv_path}")
    return taxonomy
