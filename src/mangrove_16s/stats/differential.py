# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
import warnings
from typing import Any, Optional

# Third-Party Imports
import numpy as np
import pandas as pd
import statsmodels.api as sm
from statsmodels.stats.multitest import multipletests
from statsmodels.tools.sm_exceptions import ConvergenceWarning, PerfectSeparationError

# Local Imports
from mangrove_16s import constants
from mangrove_16s.amplicon_data.table import AbundanceTable
from mangrove_16s.errors import EstimationError, InsufficientGroups
from mangrove_16s.stats.results import RECORDED, DifferentialAbundanceResult

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger('mangrove_16s')

MIN_DISPERSION = 1e-8
MAX_DISPERSION = 1e3

# ================================== NORMALIZATION =================================== #

def size_factors(counts: pd.DataFrame) -> pd.Series:
    """
    Median-of-ratios size factors, robust to zero-inflated tables.

    The per-taxon reference is the geometric mean of its positive counts
    taken over all samples (DESeq2's ``poscounts``); each sample's factor is
    the median ratio to that reference over its non-zero taxa. Factors are
    scaled to a geometric mean of 1.

    Raises:
        EstimationError: A sample has no reads.
    """
    data = counts.to_numpy(dtype=float)
    empty = counts.index[data.sum(axis=1) == 0].tolist()
    if empty:
        raise EstimationError(f"Cannot normalize samples without reads: {empty[:5]}")

    with np.errstate(divide='ignore'):
        logs = np.where(data > 0, np.log(data), np.nan)
    log_ref = np.nansum(logs, axis=0) / data.shape[0]
    ratios = logs - log_ref
    ratios[:, log_ref <= 0] = np.nan
    # Samples whose taxa all fall below the reference floor fall back to all taxa
    fallback = np.all(np.isnan(ratios), axis=1)
    if fallback.any():
        ratios[fallback] = (logs - log_ref)[fallback]
    sf = np.exp(np.nanmedian(ratios, axis=1))
    sf = sf / np.exp(np.mean(np.log(sf)))
    return pd.Series(sf, index=counts.index, name='size_factor')


def estimate_dispersion(
    normalized: np.ndarray,
    sf: np.ndarray,
    groups: np.ndarray
) -> float:
    """Method-of-moments NB dispersion pooled over groups.

    Within each group α = (s² - m · mean(1/s)) / m²; group estimates are
    averaged with weights n_g - 1 and clipped to a positive range.
    """
    num, den = 0.0, 0
    for level in np.unique(groups):
        mask = groups == level
        y = normalized[mask]
        if mask.sum() < 2 or y.mean() <= 0:
            continue
        m, v = y.mean(), y.var(ddof=1)
        num += (mask.sum() - 1) * (v - m * np.mean(1 / sf[mask])) / m ** 2
        den += mask.sum() - 1
    alpha = num / den if den else MIN_DISPERSION
    return float(np.clip(alpha, MIN_DISPERSION, MAX_DISPERSION))

# ================================ PER-TAXON FITTING ================================= #

def _fit_taxon(y: np.ndarray, design: np.ndarray, offset: np.ndarray, alpha: float):
    model = sm.GLM(
        y, design,
        family=sm.families.NegativeBinomial(alpha=alpha),
        offset=offset,
    )
    with warnings.catch_warnings():
        warnings.simplefilter('ignore', ConvergenceWarning)
        fit = model.fit()
    beta, se = float(fit.params[1]), float(fit.bse[1])
    if not (np.isfinite(beta) and np.isfinite(se)) or se <= 0:
        raise EstimationError("non-finite coefficient")
    return beta, se, float(fit.pvalues[1])


def differential_abundance(
    table: AbundanceTable,
    factor: str,
    numerator: Any,
    denominator: Any,
    alpha: float = constants.DEFAULT_ALPHA,
    lfc_threshold: float = constants.DEFAULT_LFC_THRESHOLD,
    correction: str = constants.DEFAULT_DA_CORRECTION,
    rank: Optional[str] = None,
) -> DifferentialAbundanceResult:
    """
    Negative binomial differential abundance for one two-level contrast.

    For each taxon a GLM ``log μ = β₀ + β₁·[numerator] + log s`` is fitted
    with a moment-estimated dispersion; β₁ is tested with a Wald test and
    reported as log2 fold change. p-values are BH-adjusted over computable
    taxa. A taxon is significant when ``padj < alpha`` and
    ``|log2FoldChange| > lfc_threshold``. Taxa that cannot be fitted (all
    zero in the contrast, separation, non-convergence) are kept in the
    output with status ``not_computable``.

    Args:
        table:         Abundance table with metadata.
        factor:        Metadata column defining the contrast.
        numerator:     Level whose abundance is compared ...
        denominator:   ... against this reference level.
        alpha:         Adjusted p-value cut-off.
        lfc_threshold: Minimum absolute log2 fold change.
        correction:    ``statsmodels`` multipletests method.
        rank:          Collapse to this rank before testing.

    Raises:
        InsufficientGroups: Either level has no samples.
    """
    if table.metadata is None:
        raise ValueError("Differential abundance needs sample metadata")
    if rank is not None:
        table = table.collapse(rank)

    groups = table.metadata.column(factor, table.sample_ids)
    keep = groups.isin([numerator, denominator])
    n_num = int((groups == numerator).sum())
    n_den = int((groups == denominator).sum())
    if n_num == 0 or n_den == 0:
        raise InsufficientGroups(
            f"Contrast {numerator} vs {denominator} on '{factor}' has "
            f"{n_num} and {n_den} samples"
        )
    if n_num + n_den < 3:
        raise InsufficientGroups(
            f"Contrast {numerator} vs {denominator} has only {n_num + n_den} samples"
        )

    counts = table.to_dataframe().loc[keep.to_numpy()]
    labels = groups[keep].to_numpy()
    empty = counts.sum(axis=1) == 0
    if empty.any():
        logger.warning(f"Excluding {int(empty.sum())} samples without reads from contrast")
        counts, labels = counts.loc[~empty], labels[~empty.to_numpy()]

    sf = size_factors(counts)
    offset = np.log(sf.to_numpy())
    indicator = (labels == numerator).astype(float)
    design = sm.add_constant(indicator, has_constant='add')
    normalized = counts.to_numpy(dtype=float) / sf.to_numpy()[:, None]

    records = []
    for j, taxon in enumerate(counts.columns):
        y = counts.iloc[:, j].to_numpy()
        record = {
            'baseMean': float(normalized[:, j].mean()),
            'log2FoldChange': np.nan, 'lfcSE': np.nan, 'stat': np.nan,
            'pvalue': np.nan, 'status': 'not_computable',
        }
        if y.sum() == 0:
            records.append(record)
            continue
        disp = estimate_dispersion(normalized[:, j], sf.to_numpy(), labels)
        try:
            beta, se, p = _fit_taxon(y, design, offset, disp)
        except (EstimationError, PerfectSeparationError, ValueError,
                np.linalg.LinAlgError) as e:
            logger.debug(f"NB fit failed for {taxon}: {e}")
            records.append(record)
            continue
        record.update({
            'log2FoldChange': beta / np.log(2), 'lfcSE': se / np.log(2),
            'stat': beta / se, 'pvalue': p, 'status': RECORDED,
        })
        records.append(record)

    df = pd.DataFrame(records, index=counts.columns)
    df.index.name = 'taxon'
    df['padj'] = np.nan
    computable = df['status'] == RECORDED
    if computable.any():
        df.loc[computable, 'padj'] = multipletests(
            df.loc[computable, 'pvalue'].to_numpy(), method=correction
        )[1]
    df['significant'] = (
        computable
        & (df['padj'] < alpha)
        & (df['log2FoldChange'].abs() > lfc_threshold)
    )
    df = df[['baseMean', 'log2FoldChange', 'lfcSE', 'stat', 'pvalue', 'padj',
             'significant', 'status']].join(table.taxonomy)

    logger.info(
        f"DA {factor}: {numerator} vs {denominator} - "
        f"{int(df['significant'].sum())}/{len(df)} taxa significant "
        f"({int((~computable).sum())} not computable)"
    )
    return DifferentialAbundanceResult(
        factor=factor,
        numerator=numerator,
        denominator=denominator,
        table=df,
        alpha=alpha,
        lfc_threshold=lfc_threshold,
        rank=rank,
    )
