# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from pathlib import Path
from typing import Optional, Union

# Third-Party Imports
import numpy as np
import pandas as pd

# Local Imports
from mangrove_16s import constants
from mangrove_16s.amplicon_data.table import AbundanceTable
from mangrove_16s.metadata.samples import SampleMetadata

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger('mangrove_16s')

# ==================================== FUNCTIONS ===================================== #

def load_pathway_abundance(
    path: Union[str, Path],
    metadata: Optional[SampleMetadata] = None,
) -> AbundanceTable:
    """
    Load PICRUSt2 unstratified pathway abundances as an abundance table.

    Reads ``path_abun_unstrat.tsv`` (or its ``_descrip`` variant, whose
    ``description`` column becomes the pathway label). Predicted abundances
    are fractional and are rounded to integer counts so the prevalence
    filter, diversity metrics and NB models apply unchanged. The taxonomy
    has a single ``Pathway`` rank.

    Args:
        path:     PICRUSt2 pathway table (pathways × samples, may be gzipped).
        metadata: Sample metadata; restricted to the samples in the table.

    Returns:
        AbundanceTable of samples × pathways.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Pathway table not found: {path}")

    df = pd.read_csv(path, sep='\t', index_col=0)
    df.index = df.index.astype(str)
    df.index.name = 'taxon'

    if 'description' in df.columns:
        labels = df['description'].fillna(constants.UNKNOWN_TAXON).astype(str)
        df = df.drop(columns='description')
    else:
        labels = pd.Series(df.index, index=df.index)
    taxonomy = pd.DataFrame({constants.PATHWAY_RANK: labels}, index=df.index)

    counts = np.rint(df.T.astype(float)).astype(np.int64)
    counts.index = counts.index.astype(str)

    if metadata is not None:
        missing = [s for s in counts.index if s not in metadata]
        if missing:
            logger.warning(f"Dropping {len(missing)} pathway samples without metadata")
            counts = counts.drop(index=missing)
        metadata = metadata.subset(counts.index)

    table = AbundanceTable(counts, taxonomy, metadata=metadata)
    logger.info(f"Loaded {table.n_taxa} pathways for {table.n_samples} samples from {path}")
    return table
