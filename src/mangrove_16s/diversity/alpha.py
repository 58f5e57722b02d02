# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from typing import Callable, Dict, Sequence, Union

# Third-Party Imports
import numpy as np
import pandas as pd
from skbio.diversity import alpha

# Local Imports
from mangrove_16s import constants
from mangrove_16s.amplicon_data.table import AbundanceTable
from mangrove_16s.errors import EstimationError

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger('mangrove_16s')

# ================================ METRIC FUNCTIONS ================================== #

def observed(counts: np.ndarray) -> float:
    """Number of taxa with a non-zero count."""
    return float(np.count_nonzero(counts))


def shannon(counts: np.ndarray) -> float:
    """Shannon index, natural log: -Σ p ln p."""
    return float(alpha.shannon(counts, base=np.e))


def simpson(counts: np.ndarray) -> float:
    """Gini-Simpson index: 1 - Σ p²."""
    return float(alpha.simpson(counts))


def inverse_simpson(counts: np.ndarray) -> float:
    """Inverse Simpson: 1 / Σ p²."""
    return float(1.0 / (1.0 - alpha.simpson(counts)))


def chao1(counts: np.ndarray) -> float:
    """Bias-corrected Chao1: S_obs + F1(F1 - 1) / (2(F2 + 1))."""
    return float(alpha.chao1(counts, bias_corrected=True))


def ace(counts: np.ndarray) -> float:
    """Abundance-based coverage estimator (rare threshold 10)."""
    try:
        return float(alpha.ace(counts, rare_threshold=10))
    except ValueError as e:
        # Raised when every rare taxon is a singleton
        logger.warning(f"ACE undefined for sample: {e}")
        return np.nan


def pielou_evenness(counts: np.ndarray) -> float:
    """Pielou's J: H / ln(S_obs); undefined for fewer than two taxa."""
    s_obs = np.count_nonzero(counts)
    if s_obs < 2:
        return np.nan
    return shannon(counts) / np.log(s_obs)


ALPHA_METRICS: Dict[str, Callable[[np.ndarray], float]] = {
    'observed': observed,
    'shannon': shannon,
    'simpson': simpson,
    'chao1': chao1,
    'ace': ace,
    'inverse_simpson': inverse_simpson,
    'pielou_evenness': pielou_evenness,
}

# ==================================== FUNCTIONS ===================================== #

def alpha_diversity(
    table: Union[AbundanceTable, pd.DataFrame],
    metrics: Sequence[str] = constants.DEFAULT_ALPHA_METRICS,
) -> pd.DataFrame:
    """
    Calculate alpha diversity metrics for each sample.

    Samples with no reads get 0 for ``observed`` and NaN for every other
    metric, which is undefined on an empty community.

    Args:
        table:   Abundance table (or samples × taxa integer DataFrame).
        metrics: Names from :data:`ALPHA_METRICS`.

    Returns:
        DataFrame with alpha diversity values (samples × metrics).

    Raises:
        EstimationError: If the table has no samples or no taxa.
        ValueError:      For unknown metric names.
    """
    df = table.to_dataframe() if isinstance(table, AbundanceTable) else table
    if df.shape[0] == 0 or df.shape[1] == 0:
        raise EstimationError(
            f"Cannot estimate alpha diversity on a {df.shape[0]} × {df.shape[1]} table"
        )
    unknown = [m for m in metrics if m not in ALPHA_METRICS]
    if unknown:
        raise ValueError(
            f"Unsupported alpha diversity metric(s): {unknown}; "
            f"choose from {list(ALPHA_METRICS)}"
        )

    counts = df.to_numpy(dtype=np.int64)
    totals = counts.sum(axis=1)
    results = pd.DataFrame(index=df.index, columns=list(metrics), dtype=float)
    for metric in metrics:
        func = ALPHA_METRICS[metric]
        results[metric] = [
            func(row) if total > 0 else (0.0 if metric == 'observed' else np.nan)
            for row, total in zip(counts, totals)
        ]

    n_empty = int((totals == 0).sum())
    if n_empty:
        logger.warning(f"{n_empty} samples have no reads; their diversity is undefined")
    logger.debug(f"Computed {len(metrics)} alpha metrics for {len(df)} samples")
    return results
