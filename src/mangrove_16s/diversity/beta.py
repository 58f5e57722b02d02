# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from typing import Optional, Union

# Third-Party Imports
import numpy as np
import pandas as pd
from scipy.spatial.distance import pdist, squareform
from skbio.stats.distance import DistanceMatrix
from skbio.stats.ordination import OrdinationResults

# Local Imports
from mangrove_16s import constants
from mangrove_16s.amplicon_data.table import AbundanceTable
from mangrove_16s.errors import EstimationError
from mangrove_16s.metadata.samples import SampleMetadata

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger('mangrove_16s')

# =============================== HELPER FUNCTIONS ==================================== #

def _as_counts(table: Union[AbundanceTable, pd.DataFrame]) -> pd.DataFrame:
    return table.to_dataframe() if isinstance(table, AbundanceTable) else table


def gower_center(dm: DistanceMatrix) -> np.ndarray:
    """Double-centred matrix G = -1/2 · J D² J used by PCoA and PERMANOVA."""
    d2 = dm.data ** 2
    n = d2.shape[0]
    j = np.eye(n) - np.full((n, n), 1.0 / n)
    return -0.5 * j @ d2 @ j


def principal_axes(dm: DistanceMatrix):
    """Eigen-decomposition of the Gower-centred matrix, largest first.

    Eigenvector signs are fixed so the entry with the largest absolute value
    on each axis is positive.
    """
    eigvals, eigvecs = np.linalg.eigh(gower_center(dm))
    order = np.argsort(eigvals)[::-1]
    eigvals, eigvecs = eigvals[order], eigvecs[:, order]
    flip = np.sign(eigvecs[np.abs(eigvecs).argmax(axis=0), np.arange(eigvecs.shape[1])])
    flip[flip == 0] = 1
    return eigvals, eigvecs * flip

# =============================== CORE FUNCTIONALITY ================================== #

def distance_matrix(
    table: Union[AbundanceTable, pd.DataFrame],
    metric: str = constants.DEFAULT_METRIC
) -> DistanceMatrix:
    """Compute a pairwise sample dissimilarity matrix.

    ``braycurtis`` is Σ|x - y| / Σ(x + y) on raw counts; ``jaccard`` works on
    presence/absence. Two samples without reads are identical (distance 0).
    The matrix is built from the condensed pair vector, so it is symmetric
    with a zero diagonal by construction.

    Args:
        table:  Abundance table (or samples × taxa DataFrame).
        metric: One of :data:`constants.KNOWN_BETA_METRICS`.

    Returns:
        DistanceMatrix over the table's samples, in table order.

    Raises:
        EstimationError: If the table has no samples.
        ValueError:      For unknown metrics.
    """
    df = _as_counts(table)
    if df.shape[0] == 0:
        raise EstimationError("Cannot compute distances for a table with no samples")
    if metric not in constants.KNOWN_BETA_METRICS:
        raise ValueError(
            f"Unknown metric '{metric}'; choose from {constants.KNOWN_BETA_METRICS}"
        )

    data = df.to_numpy(dtype=float)
    if metric == 'jaccard':
        data = data > 0
    with np.errstate(invalid='ignore', divide='ignore'):
        condensed = pdist(data, metric=metric) if len(df) > 1 else np.empty(0)
    condensed = np.nan_to_num(condensed, nan=0.0)
    return DistanceMatrix(squareform(condensed, checks=False), ids=df.index.astype(str).tolist())


def pcoa(
    dm: DistanceMatrix,
    n_dimensions: int = constants.DEFAULT_N_PCOA
) -> OrdinationResults:
    """Principal Coordinate Analysis of a distance matrix.

    Percent variance explained per axis is 100 · λ_i / Σ|λ| over all
    eigenvalues, negative ones included. Coordinates are deterministic for a
    given matrix up to the sign convention applied in :func:`principal_axes`.

    Args:
        dm:           Distance matrix.
        n_dimensions: Number of axes to return.

    Returns:
        OrdinationResults with ``samples`` (PC1..PCk) and
        ``proportion_explained`` as fractions of Σ|λ|.

    Raises:
        EstimationError: For fewer than two samples or an all-zero matrix.
    """
    if n_dimensions < 1:
        raise ValueError("n_dimensions must be ≥ 1")
    if dm.shape[0] < 2:
        raise EstimationError("PCoA needs at least 2 samples")

    eigvals, eigvecs = principal_axes(dm)
    total = np.abs(eigvals).sum()
    if np.isclose(total, 0.0):
        raise EstimationError("Distance matrix is degenerate (all distances zero)")

    n_positive = int((eigvals > 1e-10 * total).sum())
    if n_dimensions > n_positive:
        logger.warning(
            f"Requested {n_dimensions} PCoA axes but only {n_positive} have positive "
            f"eigenvalues; returning {n_positive}"
        )
        n_dimensions = max(n_positive, 1)

    axes = [f"PC{i + 1}" for i in range(n_dimensions)]
    coords = eigvecs[:, :n_dimensions] * np.sqrt(np.clip(eigvals[:n_dimensions], 0, None))

    return OrdinationResults(
        short_method_name='PCoA',
        long_method_name='Principal Coordinate Analysis',
        eigvals=pd.Series(eigvals[:n_dimensions], index=axes),
        samples=pd.DataFrame(coords, index=list(dm.ids), columns=axes),
        proportion_explained=pd.Series(eigvals[:n_dimensions] / total, index=axes),
    )


def percent_explained(ordination: OrdinationResults) -> pd.Series:
    """Percent of Σ|λ| explained by each returned axis."""
    return (100 * ordination.proportion_explained).rename('percent_explained')


def ordination_frame(
    ordination: OrdinationResults,
    metadata: Optional[SampleMetadata] = None
) -> pd.DataFrame:
    """Sample coordinates joined with metadata, for external plotting."""
    coords = ordination.samples.copy()
    coords.index.name = 'sample'
    if metadata is None:
        return coords
    return coords.join(metadata.frame, how='left')
