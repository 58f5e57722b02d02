# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from typing import Optional, Union

# Third-Party Imports
import numpy as np
import pandas as pd
from scipy.stats import f_oneway
from skbio.stats.distance import DistanceMatrix

# Local Imports
from mangrove_16s.diversity.beta import principal_axes
from mangrove_16s.errors import EstimationError, InsufficientGroups
from mangrove_16s.metadata.samples import SampleMetadata
from mangrove_16s.stats.results import DispersionResult

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger('mangrove_16s')

# ==================================================================================== #

def distances_to_centroid(dm: DistanceMatrix, groups: pd.Series) -> pd.Series:
    """Distance of each sample to its group centroid in full PCoA space.

    Axes with negative eigenvalues contribute negatively to the squared
    distance, as in vegan's ``betadisper``.
    """
    eigvals, eigvecs = principal_axes(dm)
    keep = np.abs(eigvals) > 1e-10 * np.abs(eigvals).max()
    eigvals, eigvecs = eigvals[keep], eigvecs[:, keep]
    coords = eigvecs * np.sqrt(np.abs(eigvals))
    positive = eigvals > 0

    labels = groups.loc[list(dm.ids)].to_numpy()
    z = np.zeros(len(labels))
    for level in pd.unique(labels):
        mask = labels == level
        delta = coords[mask] - coords[mask].mean(axis=0)
        sq = (delta[:, positive] ** 2).sum(axis=1) - (delta[:, ~positive] ** 2).sum(axis=1)
        z[mask] = np.sqrt(np.abs(sq))
    return pd.Series(z, index=list(dm.ids), name='distance_to_centroid')


def _anova(z: np.ndarray, labels: np.ndarray, levels):
    samples = [z[labels == level] for level in levels]
    f, p = f_oneway(*samples)
    grand = z.mean()
    ss_between = sum(len(s) * (s.mean() - grand) ** 2 for s in samples)
    ss_total = ((z - grand) ** 2).sum()
    eta = ss_between / ss_total if ss_total > 0 else np.nan
    return float(f), float(p), float(eta)


def dispersion_test(
    dm: DistanceMatrix,
    metadata: SampleMetadata,
    factor: str,
    permutations: int = 0,
    seed: Union[None, int, np.random.SeedSequence, np.random.Generator] = None,
    metric: Optional[str] = None,
) -> DispersionResult:
    """
    Test homogeneity of multivariate dispersion across levels of ``factor``.

    Runs a one-way ANOVA on distances to group centroids. With
    ``permutations > 0`` a permutation p-value is also computed by
    shuffling distances among groups.

    Raises:
        InsufficientGroups: Fewer than 2 levels.
        EstimationError:    No within-group degrees of freedom.
    """
    ids = [s for s in dm.ids if s in metadata]
    complete = metadata.complete_cases([factor], ids)
    if len(complete) < dm.shape[0]:
        dm = dm.filter(complete)
    groups = metadata.column(factor, dm.ids)
    levels = metadata.levels(factor, dm.ids)
    if len(levels) < 2:
        raise InsufficientGroups(
            f"Factor '{factor}' has {len(levels)} level(s); dispersion test needs 2"
        )
    df_between = len(levels) - 1
    df_within = dm.shape[0] - len(levels)
    if df_within < 1:
        raise EstimationError(
            f"No within-group degrees of freedom for '{factor}' ({dm.shape[0]} samples)"
        )

    z = distances_to_centroid(dm, groups)
    labels = groups.to_numpy()
    if np.allclose(z.to_numpy(), 0.0):
        raise EstimationError(f"All samples coincide with their '{factor}' centroid")
    f, p, eta = _anova(z.to_numpy(), labels, levels)

    perm_p = None
    if permutations > 0:
        rng = np.random.default_rng(seed)
        values = z.to_numpy()
        exceed = sum(
            _anova(rng.permutation(values), labels, levels)[0] >= f - 1e-8 * abs(f)
            for _ in range(permutations)
        )
        perm_p = (exceed + 1) / (permutations + 1)

    dispersion = tuple(
        (level, float(z[labels == level].mean())) for level in levels
    )
    logger.debug(f"betadisper '{factor}': F={f:.3f}, p={p:.4f}")
    return DispersionResult(
        factor=factor,
        f_statistic=f,
        p_value=p,
        eta_squared=eta,
        df_between=df_between,
        df_within=df_within,
        distances=z,
        group_dispersion=dispersion,
        permutation_p_value=perm_p,
        metric=metric,
    )
