# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from itertools import combinations
from typing import Any, Dict, List, Optional, Sequence, Union

# Third-Party Imports
import numpy as np
from skbio.stats.distance import DistanceMatrix
from statsmodels.stats.multitest import multipletests

# Local Imports
from mangrove_16s import constants
from mangrove_16s.diversity.beta import gower_center
from mangrove_16s.errors import EstimationError, InsufficientGroups
from mangrove_16s.metadata.samples import SampleMetadata
from mangrove_16s.stats.design import Design, term_blocks, term_label
from mangrove_16s.stats.results import (
    PairwiseComparison, PairwisePermanovaResult, PermanovaResult, PermanovaTerm
)

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger('mangrove_16s')

SeedLike = Union[None, int, np.random.SeedSequence, np.random.Generator]

# =============================== HELPER FUNCTIONS ==================================== #

def _projection(x: np.ndarray) -> np.ndarray:
    return x @ np.linalg.pinv(x)


def _check_groups(
    metadata: SampleMetadata,
    factors: Sequence[str],
    samples: Sequence[str]
) -> Dict[str, List[Any]]:
    levels = {}
    for factor in factors:
        observed = metadata.levels(factor, samples)
        if len(observed) < 2:
            raise InsufficientGroups(
                f"Factor '{factor}' has {len(observed)} level(s) among "
                f"{len(samples)} samples; at least 2 are required"
            )
        levels[factor] = observed
    return levels


def _restrict(
    dm: DistanceMatrix,
    metadata: SampleMetadata,
    factors: Sequence[str]
) -> DistanceMatrix:
    """Drop samples lacking metadata or any of ``factors``."""
    ids = [s for s in dm.ids if s in metadata]
    complete = metadata.complete_cases(factors, ids)
    if len(complete) < dm.shape[0]:
        logger.debug(
            f"Excluding {dm.shape[0] - len(complete)} samples with missing "
            f"{list(factors)}"
        )
    return dm.filter(complete) if len(complete) < dm.shape[0] else dm

# =============================== CORE FUNCTIONALITY ================================== #

def permanova(
    dm: DistanceMatrix,
    metadata: SampleMetadata,
    design: Design,
    permutations: int = constants.DEFAULT_PERMUTATIONS,
    seed: SeedLike = None,
    metric: Optional[str] = None,
) -> PermanovaResult:
    """
    Permutational multivariate ANOVA with sequential sums of squares.

    Terms enter in :attr:`Design.terms` order; each term's SS is the variance
    of the Gower-centred matrix explained on top of the previous terms, so
    R² values of the terms and the residual add up to 1. p-values are
    ``(#{F* ≥ F} + 1) / (permutations + 1)`` over sample-label permutations
    drawn from ``seed``.

    Args:
        dm:           Distance matrix.
        metadata:     Sample metadata covering the design's factors.
        design:       Factors and interaction structure.
        permutations: Number of permutations; 0 skips the test.
        seed:         Seed or generator; equal seeds give equal p-values.
        metric:       Distance metric name, reported with the result.

    Returns:
        PermanovaResult with one entry per term plus residual and total.

    Raises:
        InsufficientGroups: A factor has fewer than 2 levels.
        EstimationError:    No residual degrees of freedom, or zero total
                            dispersion.
    """
    dm = _restrict(dm, metadata, design.factors)
    samples = list(dm.ids)
    n = len(samples)
    levels = _check_groups(metadata, design.factors, samples)

    frame = metadata.frame.loc[samples, list(design.factors)]
    blocks = term_blocks(frame, design, levels)

    g = gower_center(dm)
    total_ss = float(np.trace(g))
    if np.isclose(total_ss, 0.0):
        raise EstimationError("All pairwise distances are zero; PERMANOVA is undefined")

    # Cumulative projections H_0 (intercept) .. H_K (full model)
    x = np.ones((n, 1))
    hats = [_projection(x)]
    ranks = [1]
    for block in blocks:
        x = np.column_stack([x, block])
        hats.append(_projection(x))
        ranks.append(int(np.linalg.matrix_rank(x)))

    df_terms = np.diff(ranks)
    df_res = n - ranks[-1]
    if df_res <= 0:
        raise EstimationError(
            f"No residual degrees of freedom for {design} with {n} samples"
        )
    increments = [hats[k + 1] - hats[k] for k in range(len(blocks))]
    h_full = hats[-1]

    def f_stats(gm: np.ndarray) -> np.ndarray:
        ss = np.array([np.sum(m * gm) for m in increments])
        ss_res = total_ss - np.sum(h_full * gm)
        with np.errstate(invalid='ignore', divide='ignore'):
            return (ss / df_terms) / (ss_res / df_res)

    ss_terms = np.array([np.sum(m * g) for m in increments])
    residual_ss = total_ss - float(np.sum(h_full * g))
    observed = f_stats(g)

    p_values = np.full(len(blocks), np.nan)
    if permutations > 0:
        rng = np.random.default_rng(seed)
        exceed = np.zeros(len(blocks))
        tol = 1e-8 * np.abs(observed)
        for _ in range(permutations):
            p = rng.permutation(n)
            exceed += f_stats(g[np.ix_(p, p)]) >= observed - tol
        p_values = (exceed + 1) / (permutations + 1)

    terms = []
    for k, term in enumerate(design.terms):
        df_k = int(df_terms[k])
        if df_k == 0:
            logger.warning(f"Term '{term_label(term)}' in {design} has no degrees of freedom")
        terms.append(PermanovaTerm(
            term=term_label(term),
            df=df_k,
            sum_of_squares=float(ss_terms[k]),
            mean_squares=float(ss_terms[k] / df_k) if df_k else None,
            f_statistic=float(observed[k]) if df_k else None,
            r2=float(ss_terms[k] / total_ss),
            p_value=float(p_values[k]) if df_k and permutations > 0 else None,
        ))

    logger.debug(
        f"PERMANOVA {design} (n={n}, {permutations} perms): "
        + ", ".join(f"{t.term} R²={t.r2:.3f}" for t in terms)
    )
    return PermanovaResult(
        design=design,
        terms=tuple(terms),
        residual_df=int(df_res),
        residual_ss=float(residual_ss),
        total_df=n - 1,
        total_ss=total_ss,
        n_samples=n,
        permutations=permutations,
        metric=metric,
    )


def pairwise_permanova(
    dm: DistanceMatrix,
    metadata: SampleMetadata,
    factor: str,
    permutations: int = constants.DEFAULT_PERMUTATIONS,
    seed: SeedLike = None,
    correction: str = constants.DEFAULT_CORRECTION,
    alpha: float = constants.DEFAULT_ALPHA,
    metric: Optional[str] = None,
) -> PairwisePermanovaResult:
    """
    One-factor PERMANOVA on every pair of levels of ``factor``.

    p-values are adjusted across all pairs (Bonferroni by default:
    ``min(p × n_pairs, 1)``). Each pair draws its permutations from its own
    child of ``seed``, so results do not depend on evaluation order.
    """
    dm = _restrict(dm, metadata, [factor])
    levels = _check_groups(metadata, [factor], list(dm.ids))[factor]
    pairs = list(combinations(levels, 2))
    if isinstance(seed, np.random.Generator):
        seed = np.random.SeedSequence(seed.integers(2**32))
    elif not isinstance(seed, np.random.SeedSequence):
        seed = np.random.SeedSequence(seed)
    child_seeds = seed.spawn(len(pairs))

    groups = metadata.column(factor, dm.ids)
    stats = []
    for (a, b), child in zip(pairs, child_seeds):
        ids = groups.index[groups.isin([a, b])].tolist()
        result = permanova(
            dm.filter(ids), metadata, Design((factor,)),
            permutations=permutations, seed=child,
        )
        stats.append((a, b, len(ids), result.terms[0]))

    raw = np.array([t.p_value if t.p_value is not None else np.nan for *_, t in stats])
    adjusted = np.full(len(raw), np.nan)
    mask = ~np.isnan(raw)
    if mask.any():
        adjusted[mask] = multipletests(raw[mask], method=correction)[1]

    comparisons = tuple(
        PairwiseComparison(
            group_a=a, group_b=b, n=n,
            statistic=t.f_statistic, effect_size=t.r2, p_value=t.p_value,
            p_adj=None if np.isnan(adj) else float(adj),
            significant=None if np.isnan(adj) else bool(adj < alpha),
        )
        for (a, b, n, t), adj in zip(stats, adjusted)
    )
    return PairwisePermanovaResult(
        factor=factor,
        comparisons=comparisons,
        permutations=permutations,
        correction=correction,
        metric=metric,
    )
