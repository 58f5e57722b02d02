# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from itertools import combinations
from typing import Any, Dict, List, Sequence, Tuple

# Third-Party Imports
import numpy as np
import pandas as pd
from scipy.stats import kruskal, mannwhitneyu, shapiro
from statsmodels.stats.multitest import multipletests

# Local Imports
from mangrove_16s import constants
from mangrove_16s.errors import EstimationError, InsufficientGroups, NotComputable
from mangrove_16s.metadata.samples import SampleMetadata
from mangrove_16s.stats.results import (
    KruskalResult, NormalityResult, PairwiseComparison, PairwiseWilcoxonResult
)

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger('mangrove_16s')

# =============================== HELPER FUNCTIONS ==================================== #

def grouped_values(
    values: pd.Series,
    metadata: SampleMetadata,
    factor: str
) -> Dict[Any, np.ndarray]:
    """Non-missing ``values`` split by level of ``factor``, in level order."""
    ids = [s for s in values.index if s in metadata]
    ids = metadata.complete_cases([factor], ids)
    values = values.loc[ids].dropna()
    groups = metadata.column(factor, values.index)
    return {
        level: values[groups == level].to_numpy(dtype=float)
        for level in metadata.levels(factor, values.index)
    }

# ===================================== TESTS ======================================== #

def normality_test(values: Sequence[float]) -> Tuple[float, float]:
    """Shapiro-Wilk W and p-value.

    Raises:
        NotComputable: Fewer than 3 observations.
    """
    values = np.asarray(values, dtype=float)
    values = values[~np.isnan(values)]
    if len(values) < constants.MIN_NORMALITY_SAMPLES:
        raise NotComputable(
            f"Shapiro-Wilk needs at least {constants.MIN_NORMALITY_SAMPLES} "
            f"observations, got {len(values)}",
            n=len(values),
        )
    w, p = shapiro(values)
    return float(w), float(p)


def shapiro_by_group(
    alpha_df: pd.DataFrame,
    metadata: SampleMetadata,
    factor: str,
    metrics: Sequence[str] = None,
) -> List[NormalityResult]:
    """Shapiro-Wilk per (metric, level of ``factor``).

    Groups with fewer than 3 samples are recorded as ``not_computable``.
    """
    results = []
    for metric in metrics or alpha_df.columns:
        for level, values in grouped_values(alpha_df[metric], metadata, factor).items():
            try:
                w, p = normality_test(values)
            except NotComputable as e:
                results.append(NormalityResult(
                    metric=metric, factor=factor, group=level, n=len(values),
                    statistic=None, p_value=None, status=e.status, message=str(e),
                ))
                continue
            results.append(NormalityResult(
                metric=metric, factor=factor, group=level, n=len(values),
                statistic=w, p_value=p,
            ))
    return results


def kruskal_by_factor(
    values: pd.Series,
    metadata: SampleMetadata,
    factor: str,
    metric: str = None,
) -> KruskalResult:
    """Kruskal-Wallis H test of ``values`` across levels of ``factor``.

    Effect size is ε² = (H - k + 1) / (n - k), floored at 0.

    Raises:
        InsufficientGroups: Fewer than 2 non-empty groups.
        EstimationError:    All values identical.
    """
    metric = metric or values.name
    groups = {k: v for k, v in grouped_values(values, metadata, factor).items() if len(v)}
    if len(groups) < 2:
        raise InsufficientGroups(
            f"Kruskal-Wallis on '{metric}' by '{factor}' needs 2 groups, "
            f"got {len(groups)}"
        )
    try:
        h, p = kruskal(*groups.values())
    except ValueError as e:
        raise EstimationError(f"Kruskal-Wallis on '{metric}' by '{factor}': {e}") from e
    if np.isnan(h):
        raise EstimationError(f"Kruskal-Wallis on '{metric}' by '{factor}' is undefined")

    n = sum(len(v) for v in groups.values())
    k = len(groups)
    epsilon = max((h - k + 1) / (n - k), 0.0) if n > k else np.nan
    return KruskalResult(
        metric=metric, factor=factor, statistic=float(h), p_value=float(p),
        epsilon_squared=float(epsilon), n=n, n_groups=k,
    )


def pairwise_wilcoxon(
    values: pd.Series,
    metadata: SampleMetadata,
    factor: str,
    metric: str = None,
    correction: str = constants.DEFAULT_CORRECTION,
    alpha: float = constants.DEFAULT_ALPHA,
) -> PairwiseWilcoxonResult:
    """Two-sided Mann-Whitney U between every pair of levels of ``factor``.

    p-values are adjusted over all pairs with ``correction`` (any
    ``statsmodels`` multipletests method); a pair is significant when the
    adjusted p is below ``alpha``. Effect size is the rank-biserial
    correlation 1 - 2U / (n₁n₂).
    """
    metric = metric or values.name
    groups = {k: v for k, v in grouped_values(values, metadata, factor).items() if len(v)}
    if len(groups) < 2:
        raise InsufficientGroups(
            f"Pairwise tests on '{metric}' by '{factor}' need 2 groups, got {len(groups)}"
        )

    pairs = list(combinations(groups, 2))
    stats = []
    for a, b in pairs:
        u, p = mannwhitneyu(groups[a], groups[b], alternative='two-sided')
        rbc = 1 - 2 * u / (len(groups[a]) * len(groups[b]))
        stats.append((a, b, len(groups[a]) + len(groups[b]), float(u), float(rbc), float(p)))

    raw = np.array([s[-1] for s in stats])
    adjusted = multipletests(raw, method=correction)[1]
    comparisons = tuple(
        PairwiseComparison(
            group_a=a, group_b=b, n=n, statistic=u, effect_size=rbc,
            p_value=p, p_adj=float(adj), significant=bool(adj < alpha),
        )
        for (a, b, n, u, rbc, p), adj in zip(stats, adjusted)
    )
    logger.debug(
        f"Pairwise Wilcoxon '{metric}' by '{factor}': "
        f"{sum(c.significant for c in comparisons)}/{len(comparisons)} significant"
    )
    return PairwiseWilcoxonResult(
        metric=metric, factor=factor, comparisons=comparisons,
        correction=correction, alpha=alpha,
    )
